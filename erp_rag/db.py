"""LanceDB connection and table schemas for documents and chunks."""

from __future__ import annotations

import os
import logging
from typing import Tuple

import lancedb
import pyarrow as pa
from lancedb.table import Table

log = logging.getLogger("api.db")

# Below this many vectors a flat scan is exact and fast enough.
ANN_MIN_ROWS = 4096


def documents_schema() -> pa.Schema:
    return pa.schema([
        pa.field("id", pa.string(), nullable=False),
        pa.field("doc_type", pa.string(), nullable=False),
        pa.field("entity_table", pa.string()),
        pa.field("entity_id", pa.string()),
        pa.field("title", pa.string()),
        pa.field("raw_text", pa.string()),
        pa.field("updated_at", pa.timestamp("us", tz="UTC")),
    ])


def chunks_schema(embed_dim: int) -> pa.Schema:
    return pa.schema([
        pa.field("id", pa.string(), nullable=False),
        pa.field("document_id", pa.string(), nullable=False),
        # copied from the parent document so vector search can prefilter on it
        pa.field("doc_type", pa.string(), nullable=False),
        pa.field("chunk_index", pa.int32()),
        pa.field("chunk_text", pa.string()),
        pa.field("embedding", pa.list_(pa.float32(), embed_dim)),
    ])


def get_db(uri: str) -> lancedb.DBConnection:
    if "://" not in uri:
        os.makedirs(uri, exist_ok=True)
    return lancedb.connect(uri)


def get_or_create_tables(conn: lancedb.DBConnection, embed_dim: int) -> Tuple[Table, Table]:
    names = conn.table_names()
    docs = conn.open_table("documents") if "documents" in names else conn.create_table(
        "documents", schema=documents_schema()
    )
    chunks = conn.open_table("chunks") if "chunks" in names else conn.create_table(
        "chunks", schema=chunks_schema(embed_dim)
    )

    log.info(f"LanceDB ready. EMBED_DIM={embed_dim}. Docs={docs.count_rows()} Chunks={chunks.count_rows()}")

    # Only attempt index when there are enough vectors to train it
    try:
        n = chunks.count_rows()
        if n >= ANN_MIN_ROWS:
            chunks.create_index(
                vector_column_name="embedding",
                index_type="IVF_HNSW_PQ",
                metric="cosine",
            )
            log.info(f"ANN index ensured on chunks.embedding (rows={n})")
        else:
            log.info(f"Skipping index creation (rows={n}); using exact search.")
    except Exception as e:
        log.info(f"Index creation skipped ({e.__class__.__name__}): {e}")

    return docs, chunks

"""Document store over the LanceDB ``documents`` and ``chunks`` tables.

``DocumentStore`` is the only component that touches LanceDB.  LanceDB's
Python API is blocking, so every operation runs in the default executor and
is bounded by ``statement_timeout``; a timeout or any LanceDB failure is
raised as ``StoreError``.

Read side (used by retrieval):

``search_substring(pattern, doc_types, limit)``
    Chunks of documents whose ``raw_text`` contains ``pattern``
    (case-insensitive).  Documents are visited in doc-type priority order,
    then title, then id, and chunks in ``chunk_index`` order, so results are
    stable for a fixed corpus.

``search_vector(vector, doc_types, limit)``
    The ``limit`` nearest chunks by cosine distance, restricted to
    ``doc_types``, ordered by distance then chunk id.

A document being re-ingested may transiently have no chunks; readers simply
see fewer results.  Chunks whose document row is missing are skipped.

Write side (used by ingestion): documents are upserted by their natural key
``(doc_type, entity_table, entity_id)`` and their chunks are replaced
wholesale (delete, then insert).  ``clear(doc_types)`` drops whole
document kinds ahead of a full reload.
"""

from __future__ import annotations

import asyncio
import functools
import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from lancedb.table import Table

from erp_rag.errors import StoreError
from erp_rag.models import DOC_TYPE_PRIORITY, CandidateMatch, Chunk, Document

log = logging.getLogger("api.storage")

_DOC_COLUMNS = ["id", "doc_type", "entity_table", "entity_id", "title", "updated_at"]
_CHUNK_COLUMNS = ["id", "document_id", "doc_type", "chunk_index", "chunk_text"]


def _q(value: str) -> str:
    """Quote a string literal for a LanceDB filter."""
    return "'" + str(value).replace("'", "''") + "'"


def _in(column: str, values: Iterable[str]) -> str:
    return f"{column} IN ({', '.join(_q(v) for v in values)})"


def _eq_or_null(column: str, value: Optional[str]) -> str:
    return f"{column} IS NULL" if value is None else f"{column} = {_q(value)}"


def chunk_id_for(document_id: str, chunk_index: int) -> str:
    return hashlib.sha1(f"{document_id}:{chunk_index}".encode("utf-8")).hexdigest()[:20]


class DocumentStore:
    """Async facade over the LanceDB tables."""

    def __init__(self, documents: Table, chunks: Table, embed_dim: int, statement_timeout: float = 8.0) -> None:
        self.documents = documents
        self.chunks = chunks
        self.embed_dim = embed_dim
        self.statement_timeout = statement_timeout

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(fn, *args)),
                timeout=self.statement_timeout,
            )
        except asyncio.TimeoutError as exc:
            raise StoreError(f"{fn.__name__} exceeded statement timeout of {self.statement_timeout}s") from exc
        except StoreError:
            raise
        except Exception as exc:
            raise StoreError(f"{fn.__name__} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Row helpers (blocking)
    #
    @staticmethod
    def _select(table: Table, where: str, columns: Sequence[str]) -> List[Dict[str, Any]]:
        n = table.count_rows(where)
        if not n:
            return []
        return table.search().where(where).select(list(columns)).limit(n).to_list()

    def _documents_by_id(self, ids: Iterable[str]) -> Dict[str, Dict[str, Any]]:
        ids = list(dict.fromkeys(ids))
        if not ids:
            return {}
        rows = self._select(self.documents, _in("id", ids), _DOC_COLUMNS)
        return {r["id"]: r for r in rows}

    @staticmethod
    def _match(doc: Dict[str, Any], chunk: Dict[str, Any], distance: Optional[float] = None) -> CandidateMatch:
        return CandidateMatch(
            chunk_id=chunk["id"],
            doc_type=doc["doc_type"],
            entity_table=doc.get("entity_table"),
            entity_id=doc.get("entity_id"),
            title=doc.get("title") or "",
            chunk_text=chunk.get("chunk_text") or "",
            distance=distance,
        )

    # ------------------------------------------------------------------
    # Search
    #
    def _search_substring(self, pattern: str, doc_types: Sequence[str], limit: int) -> List[CandidateMatch]:
        needle = (pattern or "").strip().lower()
        if not needle or limit <= 0:
            return []
        docs = self._select(self.documents, _in("doc_type", doc_types), _DOC_COLUMNS + ["raw_text"])
        hits = [d for d in docs if needle in (d.get("raw_text") or "").lower()]
        if not hits:
            return []
        hits.sort(key=lambda d: (DOC_TYPE_PRIORITY.get(d["doc_type"], 99), d.get("title") or "", d["id"]))

        chunk_rows = self._select(self.chunks, _in("document_id", [d["id"] for d in hits]), _CHUNK_COLUMNS)
        by_doc: Dict[str, List[Dict[str, Any]]] = {}
        for row in chunk_rows:
            by_doc.setdefault(row["document_id"], []).append(row)

        out: List[CandidateMatch] = []
        for doc in hits:
            for row in sorted(by_doc.get(doc["id"], []), key=lambda r: r["chunk_index"]):
                out.append(self._match(doc, row))
                if len(out) >= limit:
                    return out
        return out

    async def search_substring(self, pattern: str, doc_types: Sequence[str], limit: int) -> List[CandidateMatch]:
        return await self._run(self._search_substring, pattern, tuple(doc_types), limit)

    def _search_vector(self, vector: Sequence[float], doc_types: Sequence[str], limit: int) -> List[CandidateMatch]:
        vec = np.asarray(vector, dtype="float32")
        if vec.ndim != 1 or vec.shape[0] != self.embed_dim:
            raise StoreError(f"query vector has shape {vec.shape}, expected ({self.embed_dim},)")
        if limit <= 0 or not self.chunks.count_rows():
            return []
        rows = (
            self.chunks.search(vec, vector_column_name="embedding")
            .distance_type("cosine")
            .where(_in("doc_type", doc_types), prefilter=True)
            .select(_CHUNK_COLUMNS)
            .limit(limit)
            .to_list()
        )
        docs = self._documents_by_id(r["document_id"] for r in rows)
        out: List[CandidateMatch] = []
        for row in rows:
            doc = docs.get(row["document_id"])
            if doc is None:
                log.debug(f"chunk {row['id']} has no document row (re-ingestion in progress?)")
                continue
            out.append(self._match(doc, row, float(row["_distance"])))
        out.sort(key=lambda m: (m.distance, m.chunk_id))
        return out

    async def search_vector(self, vector: Sequence[float], doc_types: Sequence[str], limit: int) -> List[CandidateMatch]:
        return await self._run(self._search_vector, vector, tuple(doc_types), limit)

    # ------------------------------------------------------------------
    # Documents and chunks
    #
    def _find_document(self, doc_type: str, entity_table: Optional[str], entity_id: Optional[str]) -> Optional[Document]:
        where = " AND ".join([
            f"doc_type = {_q(doc_type)}",
            _eq_or_null("entity_table", entity_table),
            _eq_or_null("entity_id", entity_id),
        ])
        rows = self.documents.search().where(where).limit(1).to_list()
        return Document(**{k: rows[0].get(k) for k in Document.model_fields}) if rows else None

    async def find_document(self, doc_type: str, entity_table: Optional[str], entity_id: Optional[str]) -> Optional[Document]:
        return await self._run(self._find_document, doc_type, entity_table, entity_id)

    def _upsert_document(
        self,
        doc_type: str,
        entity_table: Optional[str],
        entity_id: Optional[str],
        title: str,
        raw_text: str,
    ) -> Tuple[Document, bool]:
        """Insert or update by natural key.  Returns ``(document, changed)``."""
        existing = self._find_document(doc_type, entity_table, entity_id)
        if existing and existing.raw_text == raw_text and existing.title == title:
            return existing, False

        doc = Document(
            id=existing.id if existing else uuid.uuid4().hex,
            doc_type=doc_type,
            entity_table=entity_table,
            entity_id=entity_id,
            title=title,
            raw_text=raw_text,
            updated_at=datetime.now(timezone.utc),
        )
        if existing:
            self.documents.delete(f"id = {_q(doc.id)}")
        self.documents.add([doc.model_dump()])
        return doc, True

    async def upsert_document(
        self,
        doc_type: str,
        entity_table: Optional[str],
        entity_id: Optional[str],
        title: str,
        raw_text: str,
    ) -> Tuple[Document, bool]:
        return await self._run(self._upsert_document, doc_type, entity_table, entity_id, title, raw_text)

    def _replace_chunks(self, document: Document, texts: Sequence[str], embeddings: Sequence[Sequence[float]]) -> int:
        if len(texts) != len(embeddings):
            raise ValueError("texts and embeddings must have the same length")
        rows = []
        for idx, (text, vec) in enumerate(zip(texts, embeddings)):
            arr = np.asarray(vec, dtype="float32")
            if arr.shape != (self.embed_dim,):
                raise StoreError(f"embedding for chunk {idx} has shape {arr.shape}, expected ({self.embed_dim},)")
            rows.append({
                "id": chunk_id_for(document.id, idx),
                "document_id": document.id,
                "doc_type": document.doc_type,
                "chunk_index": idx,
                "chunk_text": text,
                "embedding": arr.tolist(),
            })
        self.chunks.delete(f"document_id = {_q(document.id)}")
        if rows:
            self.chunks.add(rows)
        return len(rows)

    async def replace_chunks(self, document: Document, texts: Sequence[str], embeddings: Sequence[Sequence[float]]) -> int:
        return await self._run(self._replace_chunks, document, list(texts), list(embeddings))

    def _clear(self, doc_types: Sequence[str]) -> int:
        where = _in("doc_type", doc_types)
        n = self.documents.count_rows(where)
        self.chunks.delete(where)
        self.documents.delete(where)
        log.info(f"Cleared {n} document(s) of type {list(doc_types)}")
        return n

    async def clear(self, doc_types: Sequence[str]) -> int:
        """Delete every document of ``doc_types`` with its chunks.  Returns the document count."""
        return await self._run(self._clear, list(doc_types))

    def _list_documents(self) -> List[Dict[str, Any]]:
        n = self.documents.count_rows()
        if not n:
            return []
        rows = self.documents.search().select(_DOC_COLUMNS).limit(n).to_list()
        rows.sort(key=lambda d: (DOC_TYPE_PRIORITY.get(d["doc_type"], 99), d.get("title") or "", d["id"]))
        return rows

    async def list_documents(self) -> List[Dict[str, Any]]:
        return await self._run(self._list_documents)

    def _get_document(self, document_id: str) -> Optional[Tuple[Document, List[Chunk]]]:
        rows = self.documents.search().where(f"id = {_q(document_id)}").limit(1).to_list()
        if not rows:
            return None
        doc = Document(**{k: rows[0].get(k) for k in Document.model_fields})
        chunk_rows = self._select(self.chunks, f"document_id = {_q(document_id)}", _CHUNK_COLUMNS)
        chunks = [
            Chunk(id=r["id"], document_id=r["document_id"], chunk_index=r["chunk_index"], chunk_text=r["chunk_text"])
            for r in sorted(chunk_rows, key=lambda r: r["chunk_index"])
        ]
        return doc, chunks

    async def get_document(self, document_id: str) -> Optional[Tuple[Document, List[Chunk]]]:
        return await self._run(self._get_document, document_id)

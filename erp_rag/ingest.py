"""API endpoints for loading catalog records and reference text.

``POST /ingest/records``
    Accepts products and materials as JSON, renders each one to the
    labelled-line layout (see ``erp_rag.records``), chunks and embeds the
    text and upserts it under the natural key
    ``(doc_type, entity_table, entity_id)``.

``POST /ingest/reference``
    Accepts one schema or dictionary document.  Reference documents have no
    source table; they are keyed by their normalised title so re-posting the
    same title replaces the earlier text.

Both routes are dev tooling and answer 503 unless ``DEV_MODE`` is on.
With ``rebuild`` set, every stored product and material is dropped before
the payload is loaded, so records deleted upstream stop being retrievable.

A document whose title and text are unchanged is skipped without
re-embedding.  Embeddings are computed before anything is written, so an
embedding failure leaves the previously stored version intact.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from fastapi import APIRouter, HTTPException, Request

from erp_rag.config import settings
from erp_rag.errors import RagError
from erp_rag.models import RECORD_DOC_TYPES, IngestRecordsPayload, IngestReferencePayload, IngestResponse
from erp_rag.records import material_title, product_title, render_material, render_product
from erp_rag.utils import chunk_text

log = logging.getLogger("api.ingest")

ingest_router = APIRouter(tags=["ingest"])

PRODUCTS_TABLE = "products"
MATERIALS_TABLE = "materials"


def _ensure_dev() -> None:
    if not settings.dev_mode:
        raise HTTPException(status_code=503, detail="DEV_MODE is off.")


def reference_key(title: str) -> str:
    return " ".join(title.split()).lower()


async def ingest_document(
    store,
    llm,
    doc_type: str,
    entity_table: Optional[str],
    entity_id: Optional[str],
    title: str,
    raw_text: str,
    chunk_size: int = 1400,
    overlap: int = 200,
) -> Tuple[int, bool]:
    """Store one document and its chunks.  Returns ``(chunks_written, changed)``."""
    existing = await store.find_document(doc_type, entity_table, entity_id)
    if existing and existing.raw_text == raw_text and existing.title == title:
        log.debug(f"Skipping unchanged {doc_type} {entity_id!r}")
        return 0, False

    texts = chunk_text(raw_text, chunk_size, overlap) or [raw_text]
    embeddings = [await llm.embed(t) for t in texts]

    doc, _ = await store.upsert_document(doc_type, entity_table, entity_id, title, raw_text)
    written = await store.replace_chunks(doc, texts, embeddings)
    log.info(f"Ingested {doc_type} '{title}' id={doc.id} chunks={written}")
    return written, True


@ingest_router.post("/ingest/records", response_model=IngestResponse)
async def ingest_records(payload: IngestRecordsPayload, request: Request) -> IngestResponse:
    """Load products and materials into the document store."""
    _ensure_dev()
    store = request.app.state.store
    llm = request.app.state.llm

    items = [
        ("product", PRODUCTS_TABLE, p.id, product_title(p), render_product(p)) for p in payload.products
    ] + [
        ("material", MATERIALS_TABLE, m.id, material_title(m), render_material(m)) for m in payload.materials
    ]
    if not items:
        raise HTTPException(status_code=400, detail="No products or materials in payload")

    if payload.rebuild:
        try:
            cleared = await store.clear(RECORD_DOC_TYPES)
        except RagError as exc:
            log.error(f"Clearing records before rebuild failed: {exc}")
            raise HTTPException(status_code=502, detail=f"Rebuild failed: {exc}")
        log.info(f"Rebuild: cleared {cleared} record document(s)")

    documents = chunks = unchanged = 0
    for doc_type, table, entity_id, title, text in items:
        try:
            written, changed = await ingest_document(
                store, llm, doc_type, table, str(entity_id), title, text,
                settings.chunk_size, settings.chunk_overlap,
            )
        except RagError as exc:
            log.error(f"Ingestion of {doc_type} {entity_id!r} failed: {exc}")
            raise HTTPException(status_code=502, detail=f"Ingestion failed at {doc_type} {entity_id}: {exc}")
        if changed:
            documents += 1
            chunks += written
        else:
            unchanged += 1

    log.info(f"Record ingestion done: documents={documents} chunks={chunks} unchanged={unchanged}")
    return IngestResponse(status="ok", documents=documents, chunks=chunks, unchanged=unchanged)


@ingest_router.post("/ingest/reference", response_model=IngestResponse)
async def ingest_reference(payload: IngestReferencePayload, request: Request) -> IngestResponse:
    """Load one schema or dictionary document."""
    _ensure_dev()
    title = payload.title.strip()
    text = payload.text.strip()
    if not title or not text:
        raise HTTPException(status_code=400, detail="Empty title or text")
    try:
        written, changed = await ingest_document(
            request.app.state.store, request.app.state.llm,
            payload.doc_type, None, reference_key(title), title, text,
            settings.chunk_size, settings.chunk_overlap,
        )
    except RagError as exc:
        log.error(f"Ingestion of {payload.doc_type} '{title}' failed: {exc}")
        raise HTTPException(status_code=502, detail=f"Ingestion failed: {exc}")
    if not changed:
        return IngestResponse(status="unchanged", documents=0, chunks=0, unchanged=1)
    return IngestResponse(status="ok", documents=1, chunks=written)

"""Main application setup for the ERP catalog question answering service.

This module constructs the FastAPI application, configures logging and
CORS, mounts the ask, ingestion and evaluation routers, and exposes utility
endpoints for health checks, listing documents and retrieving a single
document with its chunks.  The Ollama client, the LanceDB-backed
``DocumentStore`` and the ``AskPipeline`` are created once in the lifespan
handler and kept on ``app.state``.

Run with::

    uvicorn erp_rag.app:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from erp_rag.config import settings
from erp_rag.db import get_db, get_or_create_tables
from erp_rag.errors import StoreError
from erp_rag.evaluation import eval_router
from erp_rag.ingest import ingest_router
from erp_rag.llm import OllamaClient
from erp_rag.models import DocumentsResponse, DocumentSummary, DocumentWithChunksResponse
from erp_rag.pipeline import build_pipeline
from erp_rag.query import query_router
from erp_rag.storage import DocumentStore


# Configure logging according to settings
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    stream=sys.stdout,
)
log = logging.getLogger("api.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    llm = OllamaClient(
        settings.ollama_host,
        settings.ollama_embed_model,
        settings.ollama_gen_model,
        llm_timeout=settings.llm_timeout,
        embed_timeout=settings.embed_timeout,
        embed_retries=settings.embed_retries,
    )
    docs, chunks = get_or_create_tables(get_db(settings.lancedb_uri), settings.embed_dim)
    store = DocumentStore(docs, chunks, settings.embed_dim, statement_timeout=settings.store_timeout)

    app.state.llm = llm
    app.state.store = store
    app.state.pipeline = build_pipeline(settings, llm, store)
    log.info(f"Service ready: gen_model={settings.ollama_gen_model} embed_model={settings.ollama_embed_model}")
    try:
        yield
    finally:
        await llm.aclose()


app = FastAPI(title="ERP Catalog RAG", version="1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount routers
app.include_router(query_router)
app.include_router(ingest_router)
app.include_router(eval_router)


@app.get("/health")
def health() -> dict:
    """Return a simple health status."""
    return {"status": "ok"}


@app.get("/documents", response_model=DocumentsResponse)
async def list_documents(request: Request) -> DocumentsResponse:
    """List all ingested documents."""
    try:
        rows = await request.app.state.store.list_documents()
    except StoreError as exc:
        raise HTTPException(503, f"Document store unavailable: {exc}")
    return DocumentsResponse(documents=[DocumentSummary(**r) for r in rows])


@app.get("/document/{doc_id}", response_model=DocumentWithChunksResponse)
async def get_document(doc_id: str, request: Request) -> DocumentWithChunksResponse:
    """Retrieve a single document and its chunks by ID."""
    try:
        found = await request.app.state.store.get_document(doc_id)
    except StoreError as exc:
        raise HTTPException(503, f"Document store unavailable: {exc}")
    if found is None:
        raise HTTPException(404, "Document not found")
    document, chunks = found
    return DocumentWithChunksResponse(document=document, chunks=chunks)

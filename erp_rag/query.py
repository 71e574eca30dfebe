"""API endpoint for asking questions about the catalog.

``POST /ask`` takes a natural language question and returns an ``Answer``.
The pipeline itself lives on ``app.state.pipeline`` (built at start-up).
A retrieval failure is the only error surfaced as an HTTP error (503); every
other failure inside the pipeline still produces an ``Answer`` with
``grounded=false``.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from erp_rag.errors import RetrievalError
from erp_rag.models import Answer, AskPayload

log = logging.getLogger("api.query")

query_router = APIRouter(tags=["query"])


@query_router.post("/ask", response_model=Answer)
async def ask(payload: AskPayload, request: Request) -> Answer:
    question = payload.question.strip()
    if not question:
        raise HTTPException(400, "Please provide a question.")

    pipeline = request.app.state.pipeline
    try:
        return await pipeline.ask(question)
    except RetrievalError as exc:
        log.error(f"Retrieval failed for question {question!r}: {exc}")
        return JSONResponse(status_code=503, content={"error": "retrieval_failed", "detail": str(exc)})

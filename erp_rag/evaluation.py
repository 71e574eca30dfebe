"""Dev-only smoke evaluation: run a fixed question set through ``ask``."""

from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, HTTPException, Request

from erp_rag.config import settings
from erp_rag.errors import RetrievalError
from erp_rag.models import EvalResponse, EvalResult

log = logging.getLogger("api.evaluation")

eval_router = APIRouter(tags=["eval"])

EVAL_QUESTIONS: List[str] = [
    "How many transformers are 500 kVA?",
    "How many products have cooling type ONAN?",
    "Have we built a transformer product with Radiator from Hyundai?",
    "How long does it normally take for us to build a transformer with 1000kVA?",
    "List low-voltage transformers in inventory",
    "How many quotations are pending currently?",
    "What assets do we have?",
    "How many customers do we have and with whom have we done the most deals?",
    "Show me the BOM for Product XYZ",
    "Do we have Transformers?",
]


@eval_router.get("/eval", response_model=EvalResponse)
async def run_eval(request: Request) -> EvalResponse:
    if not settings.dev_mode:
        raise HTTPException(503, "DEV_MODE is off.")

    pipeline = request.app.state.pipeline
    results: List[EvalResult] = []
    for q in EVAL_QUESTIONS:
        try:
            out = await pipeline.ask(q)
        except RetrievalError as exc:
            log.warning(f"Eval question {q!r} failed at retrieval: {exc}")
            results.append(EvalResult(question=q, grounded=False, confidence=0.0, missing_data=[str(exc)], answer=""))
            continue
        results.append(EvalResult(
            question=q,
            grounded=out.grounded,
            confidence=out.confidence,
            missing_data=out.missing_data,
            answer=out.answer_text,
        ))

    grounded_true = sum(1 for r in results if r.grounded)
    low_confidence = sum(1 for r in results if r.confidence < 0.5)
    log.info(f"Eval run: total={len(results)} grounded={grounded_true} low_confidence={low_confidence}")
    return EvalResponse(total=len(results), grounded_true=grounded_true, low_confidence=low_confidence, results=results)

"""Build the final ``Answer`` from an arbitration winner."""

from __future__ import annotations

import logging
from typing import Dict, List

from erp_rag.models import Answer, CandidateAnswer, CandidateMatch, Citation

log = logging.getLogger("api.assembler")


def assemble_answer(winner: CandidateAnswer, evidence: List[CandidateMatch]) -> Answer:
    """
    Copy the winning candidate into an ``Answer`` whose citations are a
    subset of ``evidence``.  Cited ids that are not in the evidence are
    dropped, duplicates collapse to their first occurrence and titles are
    taken from the evidence rather than from the model.
    """
    by_id: Dict[str, CandidateMatch] = {m.chunk_id: m for m in evidence}
    citations: List[Citation] = []
    seen = set()
    for c in winner.citations:
        cid = (c.chunk_id or "").strip()
        if cid in seen:
            continue
        match = by_id.get(cid)
        if match is None:
            log.info(f"Dropping citation {cid!r}: not in evidence")
            continue
        seen.add(cid)
        citations.append(Citation(chunk_id=cid, title=match.title))

    return Answer(
        answer_text=winner.answer,
        matches=list(evidence),
        citations=citations,
        grounded=winner.grounded,
        confidence=winner.confidence,
        missing_data=list(winner.missing_data),
        next_questions=list(winner.next_questions),
    )

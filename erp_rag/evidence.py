"""Reduce retrieved candidates to the chunks that actually support an answer.

A completion call proposes a ``keep`` set of chunk ids.  That proposal is
never trusted as is:

1. ids that were not retrieved are dropped;
2. every kept chunk must also pass the admission predicate for the
   question's evidence class (see ``admits``);
3. at most ``max_keep`` chunks survive, in retrieval order.

If nothing is admitted, semantic questions (use case, category,
constrained) fall back to the single top-ranked candidate that passes the
admission predicate of their class.  Identifier questions fall back to no
evidence at all, since a guessed identifier match is worse than admitting
nothing.
"""

from __future__ import annotations

import logging
import math
from typing import List

from erp_rag.intents import (
    EvidenceClass,
    category_terms,
    classify_question,
    direct_match_tokens,
)
from erp_rag.models import RECORD_DOC_TYPES, CandidateMatch, FilterOutput
from erp_rag.prompts import FILTER_PROMPT, build_sources_text
from erp_rag.records import RecordFields, parse_record
from erp_rag.utils import contains_spec, contains_term, key_terms, spec_phrases, token_in_text

log = logging.getLogger("api.evidence")


def _identity_match(question: str, fields: RecordFields) -> bool:
    """Name/code/barcode line matches what the question names."""
    tokens = direct_match_tokens(question)
    strong = [t for t in tokens if not t.isdigit()]
    for tok in strong or tokens:
        if any(token_in_text(tok, line) for line in fields.identifier_lines):
            return True
    q = question.lower()
    return any(len(v) >= 3 and v.lower() in q for v in fields.identifier_lines)


def _constraint_match(question: str, fields: RecordFields, term_ratio: float) -> bool:
    lines = fields.searchable_lines
    specs = spec_phrases(question)
    if not all(contains_spec(number, unit, lines) for number, unit in specs):
        return False
    spec_tokens = {n for n, _ in specs} | {u for _, u in specs}
    words = [t for t in key_terms(question) if t not in spec_tokens and not t.isdigit()]
    if not words:
        return bool(specs)
    needed = max(1, math.ceil(len(words) * term_ratio))
    return sum(1 for w in words if contains_term(w, lines)) >= needed


def admits(
    evidence_class: EvidenceClass,
    question: str,
    match: CandidateMatch,
    min_overlap: int = 1,
    term_ratio: float = 0.5,
) -> bool:
    """Admission predicate for one candidate chunk."""
    if match.doc_type not in RECORD_DOC_TYPES:
        # reference text only ever supports suitability-style questions
        if evidence_class is not EvidenceClass.USE_CASE:
            return False
        terms = key_terms(question)
        return sum(1 for t in terms if contains_term(t, [match.chunk_text])) >= min_overlap

    fields = parse_record(match.chunk_text)

    if evidence_class is EvidenceClass.IDENTIFIER:
        return _identity_match(question, fields)

    if evidence_class is EvidenceClass.CATEGORY:
        lines = fields.names + fields.categories
        return any(contains_term(t, lines) for t in category_terms(question))

    if evidence_class is EvidenceClass.CONSTRAINED:
        return _constraint_match(question, fields, term_ratio)

    # use case / suitability
    if fields.is_bare:
        return _identity_match(question, fields)
    concept_lines = fields.attributes + fields.categories
    if fields.description:
        concept_lines = [fields.description] + concept_lines
    overlap = sum(1 for t in key_terms(question) if contains_term(t, concept_lines))
    return overlap >= min_overlap


class EvidenceFilter:
    def __init__(
        self,
        llm,
        max_keep: int = 8,
        min_overlap: int = 1,
        term_ratio: float = 0.5,
        temperature: float = 0.0,
    ) -> None:
        self.llm = llm
        self.max_keep = max_keep
        self.min_overlap = min_overlap
        self.term_ratio = term_ratio
        self.temperature = temperature

    def _admits(self, evidence_class: EvidenceClass, question: str, match: CandidateMatch) -> bool:
        return admits(evidence_class, question, match, self.min_overlap, self.term_ratio)

    async def filter(self, question: str, candidates: List[CandidateMatch]) -> List[CandidateMatch]:
        if not candidates:
            return []
        evidence_class = classify_question(question)

        out = await self.llm.complete(
            FILTER_PROMPT,
            {
                "question": question,
                "sources": build_sources_text(candidates),
                "evidence_class": evidence_class.value,
                "max_keep": self.max_keep,
            },
            FilterOutput,
            self.temperature,
        )

        retrieved = {c.chunk_id for c in candidates}
        keep = {str(cid).strip() for cid in out.keep_chunk_ids}
        unknown = keep - retrieved
        if unknown:
            log.warning(f"Filter proposed {len(unknown)} chunk id(s) that were not retrieved: {sorted(unknown)}")

        admitted = []
        for c in candidates:
            if c.chunk_id not in keep:
                continue
            if self._admits(evidence_class, question, c):
                admitted.append(c)
            else:
                log.info(f"Rejected chunk {c.chunk_id} ({c.title}) by {evidence_class.value} admission rule")
        admitted = admitted[: self.max_keep]

        if admitted:
            log.info(f"Evidence class={evidence_class.value}: kept {len(admitted)}/{len(candidates)}")
            return admitted
        return self._fallback(evidence_class, question, candidates)

    def _fallback(self, evidence_class: EvidenceClass, question: str, candidates: List[CandidateMatch]) -> List[CandidateMatch]:
        if evidence_class is not EvidenceClass.IDENTIFIER:
            for c in candidates:
                if self._admits(evidence_class, question, c):
                    log.info(f"No chunk kept; falling back to top admissible candidate {c.chunk_id}")
                    return [c]
        log.info(f"No evidence admitted for {evidence_class.value} question")
        return []

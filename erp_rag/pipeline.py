"""The ``ask`` pipeline: reformulate, retrieve, filter, arbitrate.

Each stage is a separate component so it can be replaced in tests.  Failure
handling differs by stage:

* rewrite failures are absorbed by the reformulator (raw question is used);
* retrieval failures propagate as ``RetrievalError``;
* filter and arbitration failures are turned into an ungrounded answer with
  zero confidence and a ``missing_data`` entry naming the failed stage.
"""

from __future__ import annotations

import logging
import time

from erp_rag.arbitration import PERMISSIVE, STRICT, AnswerArbitrator, AnswerPolicy
from erp_rag.config import Settings
from erp_rag.errors import RagError
from erp_rag.evidence import EvidenceFilter
from erp_rag.models import Answer
from erp_rag.reformulator import QueryReformulator
from erp_rag.retriever import HybridRetriever

log = logging.getLogger("api.pipeline")


def _failure_answer(stage: str, exc: Exception, matches=None) -> Answer:
    return Answer(
        answer_text="I couldn't complete an answer for this question because an internal step failed. Please try again.",
        matches=list(matches or []),
        grounded=False,
        confidence=0.0,
        missing_data=[f"{stage} failed: {exc}"],
    )


class AskPipeline:
    def __init__(
        self,
        reformulator: QueryReformulator,
        retriever: HybridRetriever,
        evidence_filter: EvidenceFilter,
        arbitrator: AnswerArbitrator,
        retrieval_limit: int = 10,
    ) -> None:
        self.reformulator = reformulator
        self.retriever = retriever
        self.evidence_filter = evidence_filter
        self.arbitrator = arbitrator
        self.retrieval_limit = retrieval_limit

    async def ask(self, question: str) -> Answer:
        started = time.perf_counter()
        question = (question or "").strip()

        query = await self.reformulator.reformulate(question)
        candidates = await self.retriever.retrieve(query, self.retrieval_limit)
        log.info(f"Retrieved {len(candidates)} candidate chunk(s)")

        try:
            evidence = await self.evidence_filter.filter(question, candidates)
        except RagError as exc:
            log.error(f"Evidence filter failed: {exc}")
            return _failure_answer("evidence filtering", exc, candidates)

        try:
            answer = await self.arbitrator.arbitrate(question, evidence)
        except RagError as exc:
            log.error(f"Answer arbitration failed: {exc}")
            return _failure_answer("answer generation", exc, evidence)

        log.info(
            f"Answered in {time.perf_counter() - started:.2f}s "
            f"grounded={answer.grounded} confidence={answer.confidence:.2f} citations={len(answer.citations)}"
        )
        return answer


def build_pipeline(settings: Settings, llm, store) -> AskPipeline:
    """Wire the pipeline components from settings."""
    policies = (
        AnswerPolicy(STRICT.name, STRICT.template, settings.strict_temperature),
        AnswerPolicy(PERMISSIVE.name, PERMISSIVE.template, settings.permissive_temperature),
    )
    return AskPipeline(
        reformulator=QueryReformulator(
            llm,
            timeout=settings.reformulate_timeout,
            temperature=settings.reformulate_temperature,
        ),
        retriever=HybridRetriever(
            store,
            llm,
            over_fetch=settings.vector_over_fetch,
            max_tokens=settings.lexical_max_tokens,
            min_lexical_hits=settings.lexical_min_hits,
        ),
        evidence_filter=EvidenceFilter(
            llm,
            max_keep=settings.evidence_max_keep,
            min_overlap=settings.use_case_min_overlap,
            term_ratio=settings.constraint_term_ratio,
        ),
        arbitrator=AnswerArbitrator(llm, policies),
        retrieval_limit=settings.retrieval_limit,
    )

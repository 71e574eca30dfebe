"""Dual-candidate answer generation and deterministic arbitration.

Two answer policies see the same question and the same filtered evidence:

``strict``
    Conservative: only states what the sources say, prefers "don't know".

``permissive``
    Treats a name/code/barcode match as found and answers from partial
    information.

Both run concurrently and each proposes citations.  ``score_candidate``
then grades them with a fixed rubric:

====================================================  =====
self-reported grounded / not grounded                  +3/-1
confidence >= 0.9 while not grounded                   -2
confidence >= 0.7                                      +1
any cited chunk id not in the evidence                 -5
all citations valid and non-empty                      +1
denies existence although the evidence holds a
direct match for a name/code token of the question     -10
affirms existence with such a direct match             +1
====================================================  =====

A candidate citing outside the evidence never beats one that does not;
otherwise the higher score wins and ties go to the permissive candidate.
The winner is passed through ``assemble_answer`` so citations are rebuilt
from the evidence rather than taken from the model.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Set

from erp_rag.assembler import assemble_answer
from erp_rag.intents import (
    AnswerIntent,
    Polarity,
    answer_polarity,
    category_terms,
    classify_intent,
    direct_match_tokens,
)
from erp_rag.models import Answer, CandidateAnswer, CandidateMatch
from erp_rag.prompts import PERMISSIVE_ANSWER_PROMPT, STRICT_ANSWER_PROMPT, build_sources_text
from erp_rag.utils import token_in_text

log = logging.getLogger("api.arbitration")


@dataclass(frozen=True)
class AnswerPolicy:
    name: str
    template: str
    temperature: float


STRICT = AnswerPolicy("strict", STRICT_ANSWER_PROMPT, 0.0)
PERMISSIVE = AnswerPolicy("permissive", PERMISSIVE_ANSWER_PROMPT, 0.2)


@dataclass
class Scored:
    policy: str
    candidate: CandidateAnswer
    score: int
    citations_valid: bool = True


@dataclass
class Verdict:
    winner: Scored
    loser: Scored


def has_direct_match(question: str, evidence: Iterable[CandidateMatch]) -> bool:
    """A name/code/barcode token from the question appears verbatim in the evidence."""
    tokens = direct_match_tokens(question)
    if not tokens:
        return False
    text = "\n".join(m.chunk_text or "" for m in evidence)
    return any(token_in_text(tok, text) for tok in tokens)


def citations_valid(candidate: CandidateAnswer, evidence_ids: Set[str]) -> bool:
    return all(c.chunk_id in evidence_ids for c in candidate.citations)


def score_candidate(candidate: CandidateAnswer, evidence_ids: Set[str], direct_match: bool) -> int:
    score = 3 if candidate.grounded is True else -1
    if candidate.confidence >= 0.9 and candidate.grounded is not True:
        score -= 2
    if candidate.confidence >= 0.7:
        score += 1

    if not citations_valid(candidate, evidence_ids):
        score -= 5
    elif candidate.citations:
        score += 1

    polarity = answer_polarity(candidate.answer)
    if direct_match and polarity is Polarity.NEGATIVE:
        score -= 10
    elif direct_match and polarity is Polarity.AFFIRMATIVE:
        score += 1
    return score


def pick_winner(first: Scored, second: Scored) -> Verdict:
    """Valid citations beat invalid ones, then higher score wins; a tie goes to ``second``."""
    if first.citations_valid != second.citations_valid:
        if first.citations_valid:
            return Verdict(winner=first, loser=second)
        return Verdict(winner=second, loser=first)
    if first.score > second.score:
        return Verdict(winner=first, loser=second)
    return Verdict(winner=second, loser=first)


def empty_evidence_answer(question: str, intent: AnswerIntent) -> CandidateAnswer:
    """Answer for a question with no admitted evidence.

    For existence questions the empty evidence set is itself the finding, so
    the negative answer is reported as grounded.  Anything else is a plain
    "don't know".
    """
    if intent in (AnswerIntent.CATEGORY, AnswerIntent.EXISTENCE):
        subject = " ".join(direct_match_tokens(question)) or " ".join(category_terms(question)) or "matching records"
        return CandidateAnswer(
            intent=intent,
            answer=f"No, I couldn't find any {subject} in the catalog.",
            grounded=True,
            confidence=0.6,
            next_questions=["Would you like to search by a product code, barcode or attribute instead?"],
        )
    return CandidateAnswer(
        intent=intent,
        answer="I don't know. No catalog record supports an answer to this question.",
        grounded=False,
        confidence=0.1,
        missing_data=["No catalog records matched the question."],
    )


class AnswerArbitrator:
    def __init__(self, llm, policies: Sequence[AnswerPolicy] = (STRICT, PERMISSIVE)) -> None:
        if len(policies) != 2:
            raise ValueError("arbitration needs exactly two policies")
        self.llm = llm
        self.policies = tuple(policies)

    async def generate(self, policy: AnswerPolicy, question: str, evidence: List[CandidateMatch], intent: AnswerIntent) -> CandidateAnswer:
        return await self.llm.complete(
            policy.template,
            {
                "question": question,
                "sources": build_sources_text(evidence),
                "intent_hint": intent.value,
            },
            CandidateAnswer,
            policy.temperature,
        )

    async def duel(self, question: str, evidence: List[CandidateMatch]) -> Verdict:
        intent = classify_intent(question)
        results = await asyncio.gather(
            *(self.generate(p, question, evidence, intent) for p in self.policies),
            return_exceptions=True,
        )
        for policy, result in zip(self.policies, results):
            if isinstance(result, BaseException):
                log.error(f"Answer policy {policy.name} failed: {result!r}")
                raise result

        evidence_ids = {m.chunk_id for m in evidence}
        direct = has_direct_match(question, evidence)
        first, second = (
            Scored(p.name, c, score_candidate(c, evidence_ids, direct), citations_valid(c, evidence_ids))
            for p, c in zip(self.policies, results)
        )
        verdict = pick_winner(first, second)
        log.info(
            f"Arbitration intent={intent.value} direct_match={direct} "
            f"{first.policy}={first.score} {second.policy}={second.score} winner={verdict.winner.policy}"
        )
        return verdict

    async def arbitrate(self, question: str, evidence: List[CandidateMatch]) -> Answer:
        if not evidence:
            winner = empty_evidence_answer(question, classify_intent(question))
            return assemble_answer(winner, evidence)
        verdict = await self.duel(question, evidence)
        return assemble_answer(verdict.winner.candidate, evidence)

"""Pure classifiers for the decisions the pipeline branches on.

Every branch point in the pipeline is decided by exactly one function in this
module and expressed as an enum:

``classify_query``
    Retrieval mode for a retrieval query (identifier-like or semantic).

``classify_question``
    Evidence admission class for the user's question.

``classify_intent``
    The answer intent the generators must follow.

``answer_polarity``
    Whether an answer text affirms or denies existence.

None of these functions perform I/O so they can be tested directly.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import List, Optional

from erp_rag.utils import key_terms, singularize


class RetrievalMode(str, Enum):
    IDENTIFIER = "identifier"
    SEMANTIC = "semantic"


class EvidenceClass(str, Enum):
    USE_CASE = "use_case"
    IDENTIFIER = "identifier"
    CATEGORY = "category"
    CONSTRAINED = "constrained"


class AnswerIntent(str, Enum):
    DETAIL = "detail"
    LOOKUP = "lookup"
    EXISTENCE = "existence"
    CATEGORY = "category"


class Polarity(str, Enum):
    AFFIRMATIVE = "affirmative"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


_CODE_WORD = re.compile(r"\b(?:bar)?code\b", re.IGNORECASE)
_DIGIT_RUN = re.compile(r"\b\d{4,}\b")
_CODE_TOKEN = re.compile(r"\b[a-z0-9]+[-:][a-z0-9/-]+\b", re.IGNORECASE)
_NAME_HINT = re.compile(r"\bnamed?\s+(?!of\b)[\"']?(.+?)[\"']?\s*\??$", re.IGNORECASE)

_EXISTENCE = re.compile(
    r"^\s*(?:"
    r"(?:do|does|did)\s+(?:we|you|they)\s+(?:have|make|sell|stock|carry|build|manufacture|produce|offer)"
    r"|have\s+(?:we|you)\s+(?:ever\s+)?(?:built|made|manufactured|produced|got)"
    r"|(?:is|are)\s+there"
    r"|any\b"
    r")",
    re.IGNORECASE,
)
_EXISTENCE_LEAD = re.compile(
    r"^\s*(?:(?:do|does|did)\s+(?:we|you|they)\s+\w+"
    r"|have\s+(?:we|you)\s+(?:ever\s+)?\w+"
    r"|(?:is|are)\s+there)\s+(?:any|a|an|some|the)?\s*",
    re.IGNORECASE,
)
_LOOKUP = re.compile(
    r"^\s*(?:please\s+)?(?:look\s*up|lookup|show|find|get|display|fetch|pull\s+up|open)\b",
    re.IGNORECASE,
)
_USE_CASE = re.compile(
    r"\b(?:suitable|suitability|suited|appropriate|recommend\w*|good\s+for|best\s+for"
    r"|use\s+for|used\s+for|usable|application|applications|need\s+(?:a|an|something))\b",
    re.IGNORECASE,
)
_CONSTRAINED = re.compile(
    r"\b(?:list|which|how\s+many|all|with|having|rated|over|under|above|below|between|at\s+least)\b",
    re.IGNORECASE,
)
_NUMBER = re.compile(r"\d")

_NEGATIVE_LEAD = re.compile(
    r"^\s*(?:no\b|not\s+found\b|none\b|nope\b"
    r"|we\s+do(?:n't|\s+not)\s+have\b|there\s+(?:is|are)\s+no\b)",
    re.IGNORECASE,
)
_NOT_FOUND = re.compile(
    r"\b(?:could(?:n't| not)|can(?:'t|not)|did(?:n't| not)|was unable to|were unable to)\s+(?:find|locate)\b",
    re.IGNORECASE,
)
_AFFIRMATIVE_LEAD = re.compile(r"^\s*(?:yes\b|yep\b|indeed\b)", re.IGNORECASE)


def is_identifier_like(text: str) -> bool:
    s = (text or "").strip()
    return bool(_CODE_WORD.search(s) or _DIGIT_RUN.search(s) or _CODE_TOKEN.search(s))


def classify_query(query: str) -> RetrievalMode:
    """Pick lexical-first retrieval for code/barcode shaped queries."""
    return RetrievalMode.IDENTIFIER if is_identifier_like(query) else RetrievalMode.SEMANTIC


def extract_identifier_tokens(text: str, limit: int = 5, include_text: bool = True) -> List[str]:
    """Return digit runs, code-like tokens and (optionally) the whole text.

    Order is digit runs, then code tokens, then the full string, with
    duplicates removed and the list capped at ``limit``.
    """
    s = (text or "").strip()
    out: List[str] = []
    for tok in _DIGIT_RUN.findall(s) + _CODE_TOKEN.findall(s):
        if tok not in out:
            out.append(tok)
    if include_text and s and s not in out:
        out.append(s)
    return out[:limit]


def extract_name_hint(question: str) -> Optional[str]:
    """``"Product with name Refresh Tears?"`` -> ``"Refresh Tears"``."""
    m = _NAME_HINT.search((question or "").strip())
    if not m:
        return None
    hint = m.group(1).strip().strip("\"'").strip()
    return hint or None


def direct_match_tokens(question: str) -> List[str]:
    """Name/code/barcode tokens from a question that count as a direct match
    when they appear verbatim in evidence text."""
    tokens = extract_identifier_tokens(question, limit=10, include_text=False)
    hint = extract_name_hint(question)
    if hint and hint not in tokens:
        tokens.append(hint)
    return tokens


def is_existence_question(question: str) -> bool:
    return bool(_EXISTENCE.search(question or ""))


def category_terms(question: str) -> List[str]:
    """Key terms of an existence question with the leading phrase removed.

    ``"Do we have Transformers?"`` -> ``["transformer"]``
    """
    rest = _EXISTENCE_LEAD.sub("", question or "", count=1)
    return [singularize(t) for t in key_terms(rest)]


def _names_identifier(question: str) -> bool:
    """The question points at one record by code, barcode or name.

    Letter-only hyphen words such as ``low-voltage`` only count when nothing
    else marks the question as a list or existence question.
    """
    if _CODE_WORD.search(question) or _DIGIT_RUN.search(question) or extract_name_hint(question):
        return True
    tokens = _CODE_TOKEN.findall(question)
    if any(_NUMBER.search(t) for t in tokens):
        return True
    return bool(tokens) and not _CONSTRAINED.search(question) and not is_existence_question(question)


def classify_question(question: str) -> EvidenceClass:
    """Choose which evidence admission rules apply to ``question``."""
    q = question or ""
    if _names_identifier(q):
        return EvidenceClass.IDENTIFIER
    if _USE_CASE.search(q):
        return EvidenceClass.USE_CASE
    if is_existence_question(q):
        terms = category_terms(q)
        if len(terms) == 1 and not _NUMBER.search(q):
            return EvidenceClass.CATEGORY
        return EvidenceClass.CONSTRAINED
    if _CONSTRAINED.search(q) or _NUMBER.search(q):
        return EvidenceClass.CONSTRAINED
    return EvidenceClass.USE_CASE


def classify_intent(question: str) -> AnswerIntent:
    """Four-way answer intent used for formatting and empty-evidence answers."""
    q = question or ""
    if is_existence_question(q):
        if classify_question(q) is EvidenceClass.CATEGORY:
            return AnswerIntent.CATEGORY
        return AnswerIntent.EXISTENCE
    if _LOOKUP.search(q):
        return AnswerIntent.LOOKUP
    return AnswerIntent.DETAIL


def answer_polarity(answer_text: str) -> Polarity:
    text = (answer_text or "").strip()
    if _NEGATIVE_LEAD.search(text) or _NOT_FOUND.search(text[:120]):
        return Polarity.NEGATIVE
    if _AFFIRMATIVE_LEAD.search(text):
        return Polarity.AFFIRMATIVE
    return Polarity.NEUTRAL

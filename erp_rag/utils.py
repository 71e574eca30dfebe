"""Text helpers shared by retrieval, evidence filtering and ingestion.

Tokenisation and stopword handling follow one convention everywhere:
lowercase alphanumeric tokens, with generic English words and words that
describe the catalog itself (``product``, ``item``, ``inventory``...)
removed.  Comparisons that have to tolerate formatting variants such as
``11kV`` / ``11 kV`` / ``11-kV`` go through ``compact``.
"""

from __future__ import annotations

import re
from typing import Iterable, List

# A minimal set of English stopwords
COMMON_STOPWORDS = {
    "what", "is", "the", "a", "an", "and", "or", "to", "of", "in", "on",
    "for", "by", "with", "as", "at", "from", "into", "about", "it", "its",
    "do", "does", "did", "we", "you", "they", "our", "us", "i", "me", "my",
    "have", "has", "had", "be", "are", "was", "were", "there", "any", "some",
    "that", "this", "these", "those", "which", "who", "how", "many", "much",
    "can", "could", "would", "should", "will", "please", "tell", "give",
    "show", "list", "find", "look", "up", "get", "all", "me", "need", "want",
    "ever", "built", "build", "made", "make", "sell", "stock", "carry",
    "if", "than", "more", "less", "over", "under", "above", "below", "not",
}
# Terms that describe the catalog rather than a record in it.
DOMAIN_STOPWORDS = {
    "product", "products", "material", "materials", "item", "items",
    "record", "records", "catalog", "catalogue", "inventory", "erp",
    "entry", "entries", "type", "types", "kind", "kinds", "one", "ones",
    "details", "detail", "info", "information", "code", "barcode", "name",
    "suitable", "suitability", "suited", "appropriate", "recommend",
    "recommended", "good", "best", "use", "used", "usable", "application",
    "applications", "currently", "normally",
}

_TOKEN = re.compile(r"[a-z0-9']+")
_SPEC = re.compile(
    r"(?<![\w.])(\d+(?:[.,]\d+)?)\s*-?\s*"
    r"(mva|kva|va|kv|mv|v|mw|kw|w|khz|hz|ka|ma|a|mm|cm|km|m|kg|g|ml|l|bar|psi|rpm|nm|ohm|°c|%)?(?![\w])",
    re.IGNORECASE,
)
_WS = re.compile(r"[\s\-_]+")


def tokenize(text: str) -> list[str]:
    return _TOKEN.findall((text or "").lower())


def key_terms(text: str) -> list[str]:
    """Distinct content tokens of ``text`` in order of appearance."""
    out: List[str] = []
    for tok in tokenize(text):
        tok = tok.strip("'")
        if len(tok) < 2 or tok in COMMON_STOPWORDS or tok in DOMAIN_STOPWORDS:
            continue
        if tok not in out:
            out.append(tok)
    return out


def singularize(word: str) -> str:
    if len(word) > 4 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 4 and word.endswith(("ches", "shes", "sses", "xes")):
        return word[:-2]
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def compact(text: str) -> str:
    """Lowercase and drop whitespace/hyphens so formatting variants compare equal."""
    return _WS.sub("", (text or "").lower())


def spec_phrases(text: str) -> list[tuple[str, str]]:
    """Number/unit pairs: ``"500 kVA transformers"`` -> ``[("500", "kva")]``."""
    out: List[tuple[str, str]] = []
    for number, unit in _SPEC.findall(text or ""):
        pair = (number.replace(",", "."), unit.lower())
        if pair not in out:
            out.append(pair)
    return out


def contains_spec(number: str, unit: str, lines: Iterable[str]) -> bool:
    """True if some line carries ``number`` with ``unit``, either inline
    (``500 kVA``) or in attribute form (``- Rated Power (kVA): 500``)."""
    inline = compact(number + unit)
    value = re.compile(rf"(?<![\d.]){re.escape(number)}(?![\d])")
    for line in lines:
        lower = (line or "").lower()
        if inline in compact(lower):
            return True
        if value.search(lower) and (not unit or f"({unit})" in lower or unit in tokenize(lower)):
            return True
    return False


def token_in_text(token: str, text: str) -> bool:
    """Case-insensitive containment; all-digit tokens must be a whole number."""
    if token.isdigit():
        return re.search(rf"(?<!\d){re.escape(token)}(?!\d)", text or "") is not None
    return token.lower() in (text or "").lower()


def contains_term(term: str, texts: Iterable[str]) -> bool:
    """Case-insensitive containment that also accepts singular/compact variants."""
    needles = {term.lower(), singularize(term.lower())}
    for text in texts:
        lower = (text or "").lower()
        squeezed = compact(lower)
        for needle in needles:
            if needle and (needle in lower or compact(needle) in squeezed):
                return True
    return False


def chunk_text(text: str, size: int = 1400, overlap: int = 200) -> List[str]:
    """
    Split text into overlapping character chunks.  Windows restart
    ``overlap`` characters before the previous end so that attribute lines
    cut at a boundary still appear whole in one chunk.
    """
    cleaned = (text or "").replace("\r\n", "\n").strip()
    if not cleaned:
        return []
    start, n = 0, len(cleaned)
    chunks: List[str] = []
    while start < n:
        end = min(n, start + size)
        chunks.append(cleaned[start:end])
        if end == n:
            break
        start = max(0, end - overlap)
    return chunks

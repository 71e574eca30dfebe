"""Hybrid (lexical + vector) retrieval over catalog chunks.

Queries that look like identifiers (an explicit ``code``/``barcode`` word, a
run of four or more digits, or a hyphen/colon joined token such as
``TX-3150-33/11``) are answered lexical-first: exact substring hits on record
text are trusted over semantic neighbours.  Everything else goes straight to
vector search.

Vector search pulls an over-fetched window of nearest chunks and re-ranks it
by document kind (product < material < dictionary < schema) before
distance, because schema and dictionary text is often closer in embedding
space than the record that actually answers the question.

Any embedding or store failure is raised as ``RetrievalError``; retrieval
never returns a partial result.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from erp_rag.errors import RagError, RetrievalError
from erp_rag.intents import RetrievalMode, classify_query, extract_identifier_tokens
from erp_rag.models import DOC_TYPE_PRIORITY, DOC_TYPES, RECORD_DOC_TYPES, CandidateMatch

log = logging.getLogger("api.retriever")


def rerank_by_doc_type(matches: Iterable[CandidateMatch]) -> List[CandidateMatch]:
    """Order by doc-type priority, then ascending distance, then chunk id."""
    return sorted(
        matches,
        key=lambda m: (
            DOC_TYPE_PRIORITY.get(m.doc_type, 99),
            m.distance if m.distance is not None else float("inf"),
            m.chunk_id,
        ),
    )


def _merge(*groups: Iterable[CandidateMatch]) -> List[CandidateMatch]:
    merged: Dict[str, CandidateMatch] = {}
    for group in groups:
        for m in group:
            merged.setdefault(m.chunk_id, m)
    return list(merged.values())


class HybridRetriever:
    def __init__(
        self,
        store,
        llm,
        over_fetch: int = 4,
        max_tokens: int = 5,
        min_lexical_hits: int = 3,
    ) -> None:
        self.store = store
        self.llm = llm
        self.over_fetch = over_fetch
        self.max_tokens = max_tokens
        self.min_lexical_hits = min_lexical_hits

    async def retrieve(self, query: str, limit: int) -> List[CandidateMatch]:
        if limit <= 0:
            return []
        mode = classify_query(query)
        log.info(f"Retrieval mode={mode.value} limit={limit} query={query!r}")
        try:
            if mode is RetrievalMode.IDENTIFIER:
                return await self._lexical_first(query, limit)
            return await self.search_vector(query, limit)
        except RagError as exc:
            raise RetrievalError(f"Retrieval failed for {query!r}: {exc}") from exc

    async def search_lexical(self, query: str, limit: int) -> List[CandidateMatch]:
        """Substring search for each identifier token, merged in token order."""
        tokens = extract_identifier_tokens(query, limit=self.max_tokens)
        found: List[CandidateMatch] = []
        for tok in tokens:
            rows = await self.store.search_substring(tok, RECORD_DOC_TYPES, limit)
            found = _merge(found, rows)
            log.debug(f"Lexical token {tok!r}: {len(rows)} rows, {len(found)} distinct so far")
            if len(found) >= limit:
                break
        return found

    async def search_vector(self, query: str, limit: int) -> List[CandidateMatch]:
        vector = await self.llm.embed(query)
        window = await self.store.search_vector(vector, DOC_TYPES, limit * self.over_fetch)
        return rerank_by_doc_type(window)[:limit]

    async def _lexical_first(self, query: str, limit: int) -> List[CandidateMatch]:
        lexical = await self.search_lexical(query, limit)
        if len(lexical) >= min(self.min_lexical_hits, limit):
            return lexical[:limit]
        log.info(f"Lexical search found {len(lexical)} chunk(s); merging vector results")
        vector = await self.search_vector(query, limit)
        return _merge(lexical, vector)[:limit]

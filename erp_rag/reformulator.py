"""Rewrite a user question into a retrieval query.

The index text is made of labelled fields, so a keyword/spec string biased
toward those labels retrieves better than the raw question.  Rewriting is
best effort: on any failure, timeout or empty output the raw question is used
and the request carries on.
"""

from __future__ import annotations

import asyncio
import logging

from erp_rag.intents import extract_identifier_tokens
from erp_rag.models import RagQueryOutput
from erp_rag.prompts import REWRITE_PROMPT

log = logging.getLogger("api.reformulator")


class QueryReformulator:
    def __init__(self, llm, timeout: float = 15.0, temperature: float = 0.0) -> None:
        self.llm = llm
        self.timeout = timeout
        self.temperature = temperature

    async def reformulate(self, question: str) -> str:
        try:
            out = await asyncio.wait_for(
                self.llm.complete(REWRITE_PROMPT, {"question": question}, RagQueryOutput, self.temperature),
                timeout=self.timeout,
            )
        except Exception as exc:
            log.warning(f"Query rewrite failed, using raw question: {exc!r}")
            return question

        query = (out.rag_query or "").strip()
        if not query:
            return question

        # identifiers must survive the rewrite verbatim or lexical retrieval misses them
        missing = [
            tok for tok in extract_identifier_tokens(question, include_text=False)
            if tok.lower() not in query.lower()
        ]
        if missing:
            query = f"{query} {' '.join(missing)}"
        log.info(f"Rewrote question -> {query!r}")
        return query

"""Exceptions raised by the question answering pipeline."""

from __future__ import annotations


class RagError(Exception):
    """Base class for pipeline errors."""


class UpstreamError(RagError):
    """The embedding/completion server was unreachable, timed out or returned 5xx."""


class CompletionError(RagError):
    """A completion came back malformed or failed schema validation."""


class StoreError(RagError):
    """The document store failed or exceeded its statement timeout."""


class RetrievalError(RagError):
    """Retrieval could not produce candidates.  Fatal to the request."""

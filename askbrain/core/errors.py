"""Exception types raised by the RAG pipeline.

A failed hybrid search has no exception type: it yields an empty candidate
set and the turn is flagged as degraded.
"""


class RagError(Exception):
    """Base class for RAG pipeline failures."""


class NotFoundError(RagError):
    """Thread or message is absent, or not owned by the caller."""


class EmbeddingError(RagError):
    """Query embedding failed or returned a vector of the wrong size."""


class GenerationError(RagError):
    """The generation endpoint failed, timed out, or returned nothing."""


class PersistenceError(RagError):
    """A thread/message/feedback write or read against the store failed."""

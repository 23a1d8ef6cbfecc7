"""Error taxonomy for the retrieval pipeline."""


class KnowledgeError(Exception):
    """Base class for knowledge/retrieval errors."""


class InvalidQueryError(KnowledgeError, ValueError):
    """The query is empty or otherwise unusable. Not retried, not degraded."""


class EmbeddingError(KnowledgeError):
    """The embedding provider failed or returned a malformed vector."""


class VectorIndexUnavailable(KnowledgeError):
    """The store has no usable native vector index."""


class KnowledgeStoreUnavailable(KnowledgeError):
    """The knowledge store cannot be reached at all."""

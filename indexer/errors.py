"""Exception taxonomy for ruling ingestion and retrieval.

A missing ruling (HTTP 404) is not an exception; the crawler reports it as
an outcome. Everything below is raised by one component and caught by the
pipeline that drives it.
"""


class RulingCorpusError(Exception):
    """Base class for all ruling corpus errors."""
    pass


class ConfigurationError(RulingCorpusError):
    """Raised for invalid configuration such as an empty or inverted ID range."""
    pass


class FetchError(RulingCorpusError):
    """Raised when a ruling page cannot be fetched."""

    def __init__(self, message: str, status_code: int = 0):
        super().__init__(message)
        self.status_code = status_code


class TransientFetchError(FetchError):
    """Raised when a fetch kept failing with retryable errors until retries ran out."""
    pass


class MalformedDocument(RulingCorpusError):
    """Raised when a fetched page is not a usable ruling."""
    pass


class EmbeddingServiceError(RulingCorpusError):
    """Raised when the embedding provider fails or times out."""
    pass


class DimensionMismatch(RulingCorpusError, ValueError):
    """Raised when two vectors of different length are compared."""
    pass


class StoreError(RulingCorpusError):
    """Raised when the ruling store cannot complete a read or write."""
    pass

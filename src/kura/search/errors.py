"""Search error taxonomy.

Only ValidationError and AllSourcesUnavailable ever reach a caller.
BackendError subclasses are raised by collaborator adapters and absorbed by
the orchestrator, which records them as BackendDegraded.
"""

from dataclasses import dataclass
from typing import Optional


class SearchError(Exception):
    """Base exception for errors surfaced to search callers."""

    code = "SEARCH_ERROR"
    retryable = False


class ValidationError(SearchError):
    """Raised when a search request is malformed. No backend is called."""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field


class AllSourcesUnavailable(SearchError):
    """Raised when no search backend could answer the query."""

    code = "SERVICE_UNAVAILABLE"
    retryable = True

    def __init__(self, message: str = "Search is temporarily unavailable") -> None:
        super().__init__(message)
        self.message = message


class BackendError(Exception):
    """Base exception for collaborator failures."""

    backend = "backend"


class BackendTimeout(BackendError):
    """Raised when a collaborator call exceeds its time budget."""

    pass


class BackendRateLimited(BackendError):
    """Raised when a collaborator rejects the call for rate limiting."""

    pass


class BackendAuthFailed(BackendError):
    """Raised when a collaborator rejects our credentials."""

    pass


class BackendUnavailable(BackendError):
    """Raised when a collaborator cannot be reached or fails internally."""

    pass


class EmbeddingTimeout(BackendTimeout):
    """Embedding provider timed out."""

    backend = "embedding"


class EmbeddingRateLimited(BackendRateLimited):
    """Embedding provider rate limited the request."""

    backend = "embedding"


class EmbeddingAuthFailed(BackendAuthFailed):
    """Embedding provider rejected the API key."""

    backend = "embedding"


class EmbeddingUnavailable(BackendUnavailable):
    """Embedding provider is not configured or not reachable."""

    backend = "embedding"


class VectorIndexUnavailable(BackendUnavailable):
    """Vector index query failed."""

    backend = "vector"


class LexicalIndexUnavailable(BackendUnavailable):
    """Lexical index query failed."""

    backend = "lexical"


@dataclass(frozen=True)
class BackendDegraded:
    """A recoverable backend failure observed during one search."""

    backend: str
    error_class: str
    message: str
    elapsed_ms: int

    @classmethod
    def from_exception(cls, backend: str, error: BaseException, elapsed_ms: int) -> "BackendDegraded":
        """Build a record from the exception that disabled a backend."""
        if isinstance(error, (TimeoutError, BackendTimeout)):
            error_class = "Timeout"
        elif isinstance(error, BackendRateLimited):
            error_class = "RateLimited"
        elif isinstance(error, BackendAuthFailed):
            error_class = "AuthFailed"
        else:
            error_class = "Unavailable"
        return cls(
            backend=backend,
            error_class=error_class,
            message=str(error) or type(error).__name__,
            elapsed_ms=elapsed_ms,
        )

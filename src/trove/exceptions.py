"""Custom exception hierarchy for Trove."""


class TroveError(Exception):
    """Base exception for all Trove errors."""


class ParseError(TroveError):
    """Raised when a document cannot be parsed under its detected kind.

    The chunker recovers from this by falling back to a plain text split.
    """


class InvalidInputError(TroveError):
    """Raised when a caller passes input that can never succeed (e.g. empty text)."""


class ProviderError(TroveError):
    """Raised on embedding backend failures.

    Attributes:
        transient: ``True`` for faults worth retrying (connection refused,
            rate limiting, timeouts).  Contract violations such as a vector
            of the wrong dimensionality are not transient.
    """

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class VectorStoreError(TroveError):
    """Raised when the vector backend is unreachable or rejects a read/write."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class FileSystemError(TroveError):
    """Raised when a source file is missing, oversized, or unreadable."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path


class ConfigError(TroveError):
    """Raised on invalid configuration, including dimensionality disagreements."""


class NotInitializedError(TroveError):
    """Raised when an engine operation is called before ``initialize()``."""


class IndexingCancelledError(TroveError):
    """Raised when a long-running index operation is cancelled cooperatively."""

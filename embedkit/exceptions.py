"""Error types raised by the embedding cache, worker and service."""


class EmbeddingError(Exception):
    """Base class for all embedkit errors."""

    pass


class NotReadyError(EmbeddingError):
    """Worker has not been spawned or has not reported readiness."""

    pass


class WorkerTimeoutError(EmbeddingError, TimeoutError):
    """No response arrived for a request within its deadline."""

    pass


class WorkerError(EmbeddingError):
    """Worker reported a failure (model load failure, encode error)."""

    pass


class WorkerCrashedError(EmbeddingError):
    """Worker process exited unexpectedly."""

    def __init__(self, message: str, returncode: int | None = None) -> None:
        super().__init__(message)
        self.returncode = returncode


class WorkerShutdownError(EmbeddingError):
    """Request rejected because the worker is shutting down."""

    pass


class DimensionMismatchError(EmbeddingError, ValueError):
    """Generator produced a vector of unexpected length."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Expected embedding of dimension {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class RequestTooLargeError(EmbeddingError, ValueError):
    """Encoded request exceeds the worker pipe's message size limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Embed request is {size} bytes, limit is {limit}")
        self.size = size
        self.limit = limit


class StorageError(EmbeddingError):
    """Durable cache I/O failure."""

    pass

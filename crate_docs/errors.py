"""Custom exceptions for crate documentation caching."""

from typing import Optional


class CrateDocsError(Exception):
    """Base exception for all cache, acquisition and generation errors."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message}\nHint: {self.hint}"
        return self.message


class NotFoundError(CrateDocsError):
    """Requested crate, member, file or task does not exist."""

    pass


class InvalidInputError(CrateDocsError):
    """Malformed identifier, path traversal or conflicting source selectors."""

    pass


class UpstreamError(CrateDocsError):
    """Registry download or git operation failed."""

    pass


class ToolchainMissingError(CrateDocsError):
    """Required Rust toolchain is not installed."""

    pass


class GenerationError(CrateDocsError):
    """rustdoc JSON generation failed."""

    def __init__(self, message: str, hint: Optional[str] = None, reason: str = "failed"):
        super().__init__(message, hint)
        self.reason = reason


class OperationTimeoutError(CrateDocsError):
    """A subprocess or HTTP call exceeded its wall-clock limit."""

    pass


class CacheIOError(CrateDocsError):
    """Filesystem operation on the cache failed."""

    pass


class TaskCancelledError(CrateDocsError):
    """A background caching task observed its cancellation signal."""

    pass

"""Error types for cache-dance.

Every error carries a stable ``code`` so callers (the CLI, log sinks)
can react without parsing messages.
"""

from __future__ import annotations

from collections.abc import Sequence


class CacheDanceError(Exception):
    """Base error for cache transfer operations."""

    def __init__(self, message: str, code: str = "cache_dance_error") -> None:
        super().__init__(message)
        self.code = code


class ConfigError(CacheDanceError):
    """Raised when the cache map or a mount descriptor is malformed."""

    def __init__(self, message: str, code: str = "config_error") -> None:
        super().__init__(message, code=code)


class BuilderExecutionError(CacheDanceError):
    """Raised when a builder (or helper) process fails or cannot start."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        command: str | None = None,
        code: str = "builder_error",
    ) -> None:
        super().__init__(message, code=code)
        self.exit_code = exit_code
        self.command = command


class RelocationError(CacheDanceError):
    """Raised when a staged tree cannot be moved into its destination."""

    def __init__(
        self,
        message: str,
        path: str | None = None,
        code: str = "relocation_error",
    ) -> None:
        super().__init__(message, code=code)
        self.path = path


class CleanupError(CacheDanceError):
    """Teardown failure. Logged by cleanup helpers, never raised from them."""

    def __init__(self, message: str, code: str = "cleanup_error") -> None:
        super().__init__(message, code=code)


class CacheTransferError(CacheDanceError):
    """Raised after all jobs settled when at least one of them failed.

    Attributes:
        failures: Mapping of cache source to the error that failed it.
    """

    def __init__(
        self,
        failures: dict[str, BaseException],
        code: str = "transfer_failed",
    ) -> None:
        sources = ", ".join(sorted(failures))
        super().__init__(
            f"{len(failures)} cache transfer(s) failed: {sources}", code=code
        )
        self.failures = failures

    @property
    def sources(self) -> Sequence[str]:
        return sorted(self.failures)


class TransferTimeoutError(CacheDanceError):
    """Raised when the whole transfer exceeds its deadline."""

    def __init__(self, timeout: float, code: str = "transfer_timeout") -> None:
        super().__init__(f"Cache transfer timed out after {timeout} seconds", code=code)
        self.timeout = timeout


__all__ = [
    "BuilderExecutionError",
    "CacheDanceError",
    "CacheTransferError",
    "CleanupError",
    "ConfigError",
    "RelocationError",
    "TransferTimeoutError",
]

"""Error taxonomy for koresolve.

Every error carries a stable ``code`` string for structured handling by
callers (CLI, build workers). Errors raised while building the target map
abort the whole phase; base image errors are scoped to a single target.
"""

from __future__ import annotations

from enum import Enum


class KoResolveError(Exception):
    """Base error for all koresolve operations."""

    def __init__(self, message: str, code: str = "koresolve_error") -> None:
        """Initialize KoResolveError.

        Args:
            message: Error description.
            code: Error code for structured error handling.
        """
        super().__init__(message)
        self.code = code


class ConfigError(KoResolveError):
    """Raised when module identity or project configuration cannot be established."""

    def __init__(self, message: str, code: str = "config_error") -> None:
        super().__init__(message, code=code)


class PathError(KoResolveError):
    """Raised when a configured dir/main does not resolve to an existing location."""

    def __init__(self, path: str, reason: str, code: str = "path_error") -> None:
        """Initialize PathError.

        Args:
            path: The offending path.
            reason: Why the path was rejected.
            code: Error code for structured error handling.
        """
        super().__init__(f"{reason}: {path}", code=code)
        self.path = path
        self.reason = reason


class DuplicateTargetError(KoResolveError):
    """Raised when two build configs resolve to the same import path."""

    def __init__(
        self,
        import_path: str,
        first_id: str,
        second_id: str,
        code: str = "duplicate_target",
    ) -> None:
        """Initialize DuplicateTargetError.

        Args:
            import_path: The import path both configs resolve to.
            first_id: Identifier of the config that claimed the path first.
            second_id: Identifier of the conflicting config.
            code: Error code for structured error handling.
        """
        super().__init__(
            f"Build configs {first_id!r} and {second_id!r} both resolve to "
            f"import path {import_path}",
            code=code,
        )
        self.import_path = import_path
        self.first_id = first_id
        self.second_id = second_id


class InvalidReferenceError(KoResolveError):
    """Raised when an image reference string is malformed."""

    def __init__(self, reference: str, reason: str, code: str = "invalid_reference") -> None:
        super().__init__(f"Invalid image reference {reference!r}: {reason}", code=code)
        self.reference = reference


class RegistryErrorKind(str, Enum):
    """Classification of remote registry failures."""

    NOT_FOUND = "not_found"
    AUTH = "auth"
    TRANSIENT = "transient"
    # Any other client error (400, 405, ...); the status code says which
    REJECTED = "rejected"


class RegistryError(KoResolveError):
    """Raised when a registry lookup fails.

    Only ``TRANSIENT`` failures are worth retrying.
    """

    def __init__(
        self,
        message: str,
        kind: RegistryErrorKind,
        status_code: int | None = None,
    ) -> None:
        """Initialize RegistryError.

        Args:
            message: Error description.
            kind: Failure classification.
            status_code: HTTP status code, when the failure came from a response.
        """
        super().__init__(message, code=f"registry_{kind.value}")
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Whether the failure may succeed on a later attempt."""
        return self.kind is RegistryErrorKind.TRANSIENT


class PlatformNotFoundError(KoResolveError):
    """Raised when an image index has no manifest for the requested platform."""

    def __init__(
        self,
        reference: str,
        platform: str,
        available: list[str] | None = None,
        code: str = "platform_not_found",
    ) -> None:
        message = f"No manifest for platform {platform} in {reference}"
        if available:
            message += f" (available: {', '.join(available)})"
        super().__init__(message, code=code)
        self.reference = reference
        self.platform = platform
        self.available = available or []


class PlatformMismatchError(KoResolveError):
    """Raised when a single-platform image does not match the requested platform."""

    def __init__(
        self,
        reference: str,
        requested: str,
        actual: str,
        code: str = "platform_mismatch",
    ) -> None:
        super().__init__(
            f"Image {reference} is built for {actual}, but {requested} was requested",
            code=code,
        )
        self.reference = reference
        self.requested = requested
        self.actual = actual


class ResolveTimeoutError(KoResolveError, TimeoutError):
    """Raised when a caller's deadline expires while waiting on a resolution."""

    def __init__(self, key: str, timeout: float, code: str = "timeout") -> None:
        super().__init__(
            f"Timed out after {timeout:.1f}s waiting for base image {key}",
            code=code,
        )
        self.key = key
        self.timeout = timeout


__all__ = [
    "ConfigError",
    "DuplicateTargetError",
    "InvalidReferenceError",
    "KoResolveError",
    "PathError",
    "PlatformMismatchError",
    "PlatformNotFoundError",
    "RegistryError",
    "RegistryErrorKind",
    "ResolveTimeoutError",
]

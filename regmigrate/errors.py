"""Error types raised by regmigrate."""

from typing import List, Optional


class MigrateError(Exception):
    """Base class for all regmigrate errors."""


class ConfigError(MigrateError, ValueError):
    """Malformed migration plan or missing required settings."""


class Cancelled(MigrateError):
    """An operation was aborted through its cancel token."""

    def __init__(self, message: str = "operation cancelled"):
        super().__init__(message)


class RegistryError(MigrateError):
    """A registry request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class PermissionDenied(RegistryError):
    """The registry rejected the request (authentication or authorization)."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 suggestions: Optional[List[str]] = None):
        self.suggestions = suggestions or []
        super().__init__(message, status_code)


class NotFound(RegistryError):
    """Repository, tag or digest does not exist."""


class TransportError(RegistryError):
    """Network or TLS failure talking to a registry."""


class SchemeMismatch(TransportError):
    """An HTTPS client talked to a plaintext-only server."""


class NoMatchingPlatform(MigrateError):
    """No index entry matched the requested architectures."""

    def __init__(self, platforms: List[str]):
        self.platforms = list(platforms)
        super().__init__(f"no image found for architectures {self.platforms}")


class PlatformMismatch(MigrateError):
    """A single-architecture image does not match the requested architectures."""

    def __init__(self, architecture: str, platforms: List[str]):
        self.architecture = architecture
        self.platforms = list(platforms)
        super().__init__(f"image architecture {architecture} does not match {self.platforms}")


class CopyError(MigrateError):
    """A copy step failed; wraps the underlying error with the step name."""

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {cause}")

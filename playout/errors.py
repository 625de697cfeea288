"""
Error taxonomy shared by the playout components.
"""

from __future__ import annotations

from typing import Iterable, List, Optional


class PlayoutError(RuntimeError):
    """Base class for playout related errors."""


class ValidationError(PlayoutError):
    """Raised when an inbound batch fails validation; carries every message."""

    def __init__(self, errors: Iterable[str], message: Optional[str] = None) -> None:
        self.errors: List[str] = list(errors)
        super().__init__(message or f"Validation failed: {len(self.errors)} errors")


class NotFoundError(PlayoutError):
    """Raised when a referenced row or connection does not exist."""


class SchemaParseError(PlayoutError):
    """Raised when a connection's remote schema cannot be parsed."""


class NetworkError(PlayoutError):
    """Raised when an outbound call fails or returns a non-2xx status."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class NetworkTimeoutError(NetworkError):
    """Raised when an outbound call exceeds its deadline."""


class TransactionFailure(PlayoutError):
    """Raised when an atomic store write cannot be applied; nothing was committed."""


class ConfigError(PlayoutError):
    """Raised when the configuration file or environment is invalid."""

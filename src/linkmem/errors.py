"""Error types raised by the memory store, link graph and index layers.

Audit findings are never raised; they are returned as report data. Only lookups
and mutations against missing or malformed memories raise.
"""

from __future__ import annotations


class LinkmemError(Exception):
    """Base class for all linkmem errors."""


class NotFoundError(LinkmemError, LookupError):
    """A memory could not be resolved by id or title."""

    def __init__(self, message: str, *, side: str | None = None) -> None:
        super().__init__(message)
        self.side = side


class ValidationError(LinkmemError, ValueError):
    """Malformed header, missing required field, or protected-field collision.

    ``fields`` lists every offending field, not just the first one found.
    """

    def __init__(self, message: str, *, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = list(fields or [])


class StorageError(LinkmemError):
    """A write could not be verified by reading it back."""


class StorageConflictError(StorageError):
    """A rename target is already occupied by another file."""

"""Custom exceptions for labdesk."""

from __future__ import annotations

from typing import Any


class LabDeskError(Exception):
    """Base exception for all labdesk errors."""


class PersistenceError(LabDeskError):
    """Database connection, query or write error."""


class ConfigError(LabDeskError):
    """Configuration error."""


class ValidationError(LabDeskError):
    """Data validation error or a refused status transition."""


class NotFoundError(LabDeskError):
    """Entity not found."""


class PartialFailure(LabDeskError):
    """A bulk operation where some sub-operations failed.

    Successful sub-operations are not rolled back; ``failed`` lists
    ``{"id": ..., "reason": ...}`` entries the caller can retry one by one.
    """

    def __init__(self, succeeded: list[str], failed: list[dict[str, Any]]) -> None:
        self.succeeded = list(succeeded)
        self.failed = list(failed)
        ids = ", ".join(f["id"] for f in self.failed)
        super().__init__(f"{len(self.failed)} of {len(self.succeeded) + len(self.failed)} failed: {ids}")

"""Exceptions raised by the CharterDesk domain modules."""
from __future__ import annotations

from typing import Any, Dict, Optional


class CharterDeskError(Exception):
    """Base exception for the back office."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "GENERIC_ERROR"
        self.context = context or {}


class NotFoundError(CharterDeskError, LookupError):
    """A record does not exist for the requesting tenant."""


class TenantAccessError(CharterDeskError):
    """A record belongs to a different tenant."""


class ValidationError(CharterDeskError, ValueError):
    """Input data failed validation."""


class WorkflowError(CharterDeskError):
    """A status change is not allowed from the current status."""


class ActionLinkError(CharterDeskError):
    """An action link is unknown, inactive, expired, exhausted or mismatched."""


class RateLimitError(CharterDeskError):
    """Too many requests from one source."""


__all__ = [
    "ActionLinkError",
    "CharterDeskError",
    "NotFoundError",
    "RateLimitError",
    "TenantAccessError",
    "ValidationError",
    "WorkflowError",
]

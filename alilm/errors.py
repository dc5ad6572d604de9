"""
Error taxonomy for the identity/hierarchy/versioning core.

Every failure the core surfaces is one of these types; the HTTP layer maps
them to status codes and callers can branch on ``retryable``.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class CoreError(Exception):
    """Base class for typed core failures."""

    code = "core_error"
    retryable = False

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "retryable": self.retryable, "details": self.details}


class NotFound(CoreError):
    """Missing node, parent or version (soft-deleted nodes count as missing)."""

    code = "not_found"


class ConstraintViolation(CoreError):
    """Immutable field changed, hierarchy cycle, or re-parent bounds exceeded."""

    code = "constraint_violation"


class AllocationExhausted(ConstraintViolation):
    """Every slug candidate was already taken. Safe to retry the request."""

    code = "allocation_exhausted"
    retryable = True


class ConcurrentModification(CoreError):
    """An optimistic content commit lost the race more times than allowed."""

    code = "concurrent_modification"
    retryable = True


class ParentMoved(ConcurrentModification):
    """The parent was moved or deleted between placement and insert."""

    code = "parent_moved"


class ValidationFailure(CoreError):
    """Malformed content tree: unit text mismatch, unknown type, missing ids."""

    code = "validation_failure"


__all__ = [
    "CoreError",
    "NotFound",
    "ConstraintViolation",
    "AllocationExhausted",
    "ConcurrentModification",
    "ParentMoved",
    "ValidationFailure",
]

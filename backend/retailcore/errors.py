"""
Error taxonomy for the POS core.

Every service raises one of these; routes turn them into JSON responses with
the attached status code. Anything raised inside a transactional unit rolls
the whole unit back (see services/concurrency.run_in_transaction).
"""

from __future__ import annotations


class CoreError(Exception):
    """Base class for business errors surfaced to callers."""
    status_code = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "details": self.details}


class NotFoundError(CoreError):
    """Receipt, shift, store or item absent (or owned by another tenant)."""
    status_code = 404


class ValidationError(CoreError):
    """400-level input problem: bad quantities, non-positive amounts, missing fields."""
    status_code = 400


class ConflictError(CoreError):
    """409-level business rule conflict: open shift exists, insufficient stock, over-refund."""
    status_code = 409


class ConcurrencyError(CoreError):
    """Lock contention or serialization failure. Safe to retry the whole operation."""
    status_code = 409


class InternalError(CoreError):
    """Unexpected persistence failure."""
    status_code = 500

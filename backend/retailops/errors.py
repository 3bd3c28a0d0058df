# Overview: Domain error taxonomy shared by services and routes.

"""
Every request-terminal failure in the fulfillment core is a DomainError.

Each subclass carries:
- code:        machine-readable identifier the UI switches on
- http_status: status the routes answer with
- details:     structured context (locked_by, requires, violations, ...)

Side-effect failures are NOT DomainErrors; they are caught where they happen,
logged, and attached to an otherwise successful response as warnings.
"""

from __future__ import annotations

from typing import Any


class DomainError(ValueError):
    """Base class for all business-rule failures."""

    code = "DOMAIN_ERROR"
    http_status = 400

    def __init__(self, message: str, *, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message, "code": self.code}
        payload.update(self.details)
        return payload


class ValidationError(DomainError):
    """400-level input problem (malformed or missing input)."""

    code = "VALIDATION_ERROR"


class InvalidTransition(DomainError):
    """Requested status is not a declared edge for the order's channel."""

    code = "INVALID_TRANSITION"
    http_status = 422


class AccessDenied(DomainError):
    """Actor's role or lock ownership forbids the operation."""

    code = "ACCESS_DENIED"
    http_status = 403

    def __init__(self, message: str, *, locked_by=None, details: dict[str, Any] | None = None):
        details = dict(details or {})
        if locked_by is not None:
            details["locked_by"] = locked_by
        super().__init__(message, details=details)
        self.locked_by = locked_by


class MissingRequiredField(DomainError):
    """A transition or request is missing mandatory fields."""

    code = "MISSING_REQUIRED_FIELD"

    def __init__(self, message: str, *, fields: list[str], details: dict[str, Any] | None = None):
        details = dict(details or {})
        details.setdefault("requires", {})
        details["requires"]["fields"] = list(fields)
        super().__init__(message, details=details)
        self.fields = list(fields)


class NotFound(DomainError):
    """Referenced order, transaction, variant, rider or vendor is absent."""

    code = "NOT_FOUND"
    http_status = 404


class ReturnQuantityExceeded(DomainError):
    """Return would exceed what is still returnable against the purchase."""

    code = "RETURN_QUANTITY_EXCEEDED"
    http_status = 422

    def __init__(self, message: str, *, violations: list[dict]):
        super().__init__(message, details={"violations": violations})
        self.violations = violations


class InsufficientStock(DomainError):
    """Stock mutation would drive a counter negative."""

    code = "INSUFFICIENT_STOCK"
    http_status = 409


class RiderUnavailable(DomainError):
    """Rider is inactive, unavailable, or at daily capacity."""

    code = "RIDER_UNAVAILABLE"
    http_status = 409


class Conflict(DomainError):
    """Concurrent modification or stale status."""

    code = "CONFLICT"
    http_status = 409


class DependencyFailure(DomainError):
    """The store (or the atomic stock primitive) is unavailable."""

    code = "DEPENDENCY_FAILURE"
    http_status = 503


def error_response(exc: DomainError):
    """Flask (body, status) tuple for a domain error."""
    return exc.to_dict(), exc.http_status

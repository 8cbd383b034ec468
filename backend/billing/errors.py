# Overview: Typed domain errors raised by the billing lifecycle services.

from __future__ import annotations


class BillingError(Exception):
    """
    Base class for expected, typed billing outcomes.

    Routes translate these into JSON responses using `status_code`.
    None of them is fatal: the caller decides what to do next.
    """
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(BillingError):
    """400-level input problem (malformed or inconsistent monetary input)."""
    status_code = 400


class NotFoundError(BillingError):
    """Referenced entity does not exist or is outside the tenant scope."""
    status_code = 404


class InvalidTransitionError(BillingError):
    """Operation is not legal from the entity's current status."""
    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        current_status: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, details)
        self.entity_type = entity_type
        self.current_status = current_status

    def to_dict(self) -> dict:
        payload = super().to_dict()
        if self.current_status is not None:
            payload["current_status"] = self.current_status
        return payload


class AlreadyPaidError(InvalidTransitionError):
    """Invoice has already been paid."""


class CanceledInvoiceError(InvalidTransitionError):
    """Invoice was canceled and can no longer be paid."""


class PlanPricingNotFoundError(BillingError):
    """No pricing row can produce an MRR figure for the plan."""
    status_code = 422


class ConcurrentModificationError(BillingError):
    """Lost a race against a concurrent writer on the same row or counter."""
    status_code = 409

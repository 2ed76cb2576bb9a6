# Overview: Domain error taxonomy shared by services and routes.

"""
Domain errors.

Every error a service raises on purpose is a DomainError. Routes turn them
into JSON with the carried status_code; anything else is a 500.

NotFoundError is used both for "absent" and for "exists in another site".
Callers must not be able to tell the two apart.
"""


class DomainError(Exception):
    """Base class for business-rule failures."""
    status_code = 400

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        payload = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class NotFoundError(DomainError):
    status_code = 404


class BadRequestError(DomainError):
    status_code = 400


class InvalidTransitionError(BadRequestError):
    """State machine violation (e.g. COMPLETED -> APPROVED)."""


class InsufficientStockError(BadRequestError):
    """OUT movement would drive quantity on hand below zero."""


class CapacityExceededError(BadRequestError):
    """IN movement would overfill the owning cold room."""


class InsufficientDataError(BadRequestError):
    """Source document is not eligible for invoicing or payment."""


class ConflictError(DomainError):
    status_code = 409


class InvoiceAlreadyExistsError(ConflictError):
    def __init__(self, source_type: str, source_id: int):
        super().__init__(
            f"Invoice already exists for {source_type} {source_id}",
            details={"source_type": source_type, "source_id": source_id},
        )


class ConcurrentModificationError(ConflictError):
    """Lost an optimistic race: another request already moved the record."""


class PaymentGatewayError(DomainError):
    """Mobile-money gateway rejected the call or could not be reached."""

    def __init__(self, message: str, *, status_code: int = 502, details: dict | None = None):
        super().__init__(message, details=details)
        self.status_code = status_code

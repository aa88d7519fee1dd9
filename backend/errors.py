"""Error hierarchy for the billing core.

Each error carries the HTTP status the API layer answers with.
"""


class BillingError(Exception):
    """Base exception for all billing errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(BillingError):
    """Record does not exist or belongs to another account."""

    status_code = 404


class InvalidSelectionError(BillingError):
    """Selection references items the caller may not invoice."""

    status_code = 400


class NoContactError(BillingError):
    """Client has no contact address to deliver to."""

    status_code = 400


class TransportError(BillingError):
    """Outbound mail could not be delivered."""

    status_code = 502


class PersistenceError(BillingError):
    """A database write failed and was rolled back."""

    status_code = 500


class ConflictError(BillingError):
    """Record is still referenced and cannot be removed."""

    status_code = 409

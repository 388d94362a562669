"""
Error taxonomy for the billing engine.

Every error carries an HTTP-like ``status_code`` so that an outer layer
(API, bot handler) can map it to a response without inspecting the type.
"""


class BillingError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BillingError, ValueError):
    """Missing/malformed input, out-of-window reading period, rent over cap."""
    status_code = 400


class NotFoundError(BillingError, LookupError):
    status_code = 404


class ConflictError(BillingError):
    """Period overlap, pending payment on the bill. Safe to retry once resolved."""
    status_code = 409

    def __init__(self, message: str, bill_number: str = None):
        super().__init__(message)
        self.bill_number = bill_number


class StateError(BillingError):
    """Operation is not valid for the bill's current status."""
    status_code = 409


class DataIntegrityError(BillingError):
    """Negative usage, reading already billed. Needs manual correction."""
    status_code = 422

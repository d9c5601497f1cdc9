"""
errors.py — Error Taxonomy of the Pizza Service

Every failure the service reports to a caller is a ServiceError subclass.
Each class fixes the HTTP status code and the short machine-readable reason
used in the JSON error body; `details` carries extra diagnostic fields
(e.g. the raw gateway response of a declined payment).
"""

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Base class for all errors that map onto an HTTP error response."""

    status_code = 500
    reason = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.reason, "message": self.message}
        body.update(self.details)
        return body


class InvalidRequest(ServiceError):
    status_code = 400
    reason = "invalid_request"


class Conflict(ServiceError):
    status_code = 400
    reason = "conflict"


class Unauthorized(ServiceError):
    status_code = 403
    reason = "unauthorized"

    def __init__(self, message: str = "Missing required token in header, or token is invalid.", details=None):
        super().__init__(message, details)


class NotFound(ServiceError):
    status_code = 404
    reason = "not_found"


class EmptyCart(ServiceError):
    status_code = 403
    reason = "empty_cart"


class EmptyOrder(ServiceError):
    status_code = 400
    reason = "empty_order"


class PaymentFailed(ServiceError):
    """The gateway declined the charge or could not be reached."""

    status_code = 400
    reason = "payment_failed"

    def __init__(self, message: str, gateway_response: Any = None):
        super().__init__(message, {"paymentDetails": gateway_response})
        self.gateway_response = gateway_response


class CatalogUnavailable(ServiceError):
    status_code = 500
    reason = "catalog_unavailable"


class StorageError(ServiceError):
    status_code = 500
    reason = "storage_error"


class CorruptRecord(StorageError):
    reason = "corrupt_record"


class PartialSuccess(ServiceError):
    """
    The payment went through but a later step (persisting the order or the
    user's order list) failed. The charge is never reversed automatically.
    """

    status_code = 500
    reason = "partial_success"

    def __init__(self, message: str, order_id: str, receipt: Any = None):
        super().__init__(message, {"orderId": order_id, "receipt": receipt})
        self.order_id = order_id
        self.receipt = receipt

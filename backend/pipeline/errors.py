"""
Order Service Errors
====================
Error taxonomy shared by the pipeline agents and the HTTP layer.

Every error carries a machine-readable ``code``, the HTTP status it maps to
and the decision inputs (``details``) that produced it.
"""

from typing import Any, Optional


class OrderServiceError(Exception):
    """Base class for all business and infrastructure errors"""

    code: str = "internal_error"
    status_code: int = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "message": self.message, **self.details}


class OrderNotFound(OrderServiceError):
    code = "not_found"
    status_code = 404

    def __init__(self, order_id: str):
        super().__init__(f"Order not found: {order_id}", order_id=order_id)
        self.order_id = order_id


class InvalidSignature(OrderServiceError):
    code = "invalid_signature"
    status_code = 400

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class MalformedEvent(OrderServiceError):
    code = "malformed_event"
    status_code = 400


class AlreadyPaid(OrderServiceError):
    code = "already_paid"
    status_code = 409

    def __init__(self, order_id: str, link_id: Optional[str] = None):
        super().__init__("Order is already paid", order_id=order_id, link_id=link_id)


class NotCancellable(OrderServiceError):
    code = "not_cancellable"
    status_code = 409

    def __init__(
        self,
        order_id: str,
        reason: str,
        payment_method: str,
        payment_status: str,
        status: str,
    ):
        super().__init__(
            f"Order cannot be cancelled: {reason}",
            order_id=order_id,
            reason=reason,
            payment_method=payment_method,
            payment_status=payment_status,
            status=status,
        )
        self.reason = reason


class InvalidOrderState(OrderServiceError):
    code = "invalid_order_state"
    status_code = 409


class GatewayError(OrderServiceError):
    """Remote payment gateway failure, with the gateway's own description"""

    code = "gateway_error"
    status_code = 502

    def __init__(
        self,
        description: str,
        gateway_code: Optional[str] = None,
        http_status: Optional[int] = None,
        **details: Any,
    ):
        super().__init__(
            description,
            gateway_code=gateway_code,
            http_status=http_status,
            **details,
        )
        self.description = description
        self.gateway_code = gateway_code
        self.http_status = http_status


class DuplicateReference(GatewayError):
    """Gateway rejected a link because its reference string already exists"""

    code = "duplicate_reference"


class TransientStoreError(OrderServiceError):
    code = "store_unavailable"
    status_code = 503

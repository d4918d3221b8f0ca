# services/__init__.py
# ============================================================================
# FOODIE ORDER SERVICE: SERVICES MODULE
# ============================================================================
# Remote collaborators: the Razorpay payment-link gateway
# ============================================================================

from services.razorpay_client import (
    IPaymentGateway,
    RazorpayClient,
)

__all__ = [
    "IPaymentGateway",
    "RazorpayClient",
]

# schemas/order_models.py
# ============================================================================
# FOODIE ORDER SERVICE: ORDER, DELIVERY AND PAYMENT LINK SCHEMAS
# ============================================================================
# Two independent state machines live on one Order document:
#   status          placed → pending_payment → preparing → on_the_way → delivered
#                   (or canceled)
#   payment_status  pending → paid | failed
# Documents are stored with snake_case names; the API renders camelCase.
# ============================================================================

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_order_id() -> str:
    return f"ord_{uuid.uuid4().hex[:16]}"


def new_delivery_id() -> str:
    return f"drv_{uuid.uuid4().hex[:16]}"


class CamelModel(BaseModel):
    """Snake_case in Python and in the store, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# SECTION 1: ENUMS
# ============================================================================

class PaymentMethod(str, Enum):
    COD = "COD"
    UPI = "UPI"


class OrderStatus(str, Enum):
    PLACED = "placed"
    PENDING_PAYMENT = "pending_payment"
    PREPARING = "preparing"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"
    CANCELED = "canceled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatus.PAID, PaymentStatus.FAILED})


class DeliveryStatus(str, Enum):
    PREPARING = "preparing"
    ON_THE_WAY = "on_the_way"
    DELIVERED = "delivered"


class CancelReason(str, Enum):
    CUSTOMER = "customer"
    PAYMENT_FAILED = "payment_failed"


class LinkStatus(str, Enum):
    """Remote payment link lifecycle as reported by the gateway"""
    CREATED = "created"
    ISSUED = "issued"
    PROCESSING = "processing"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


REUSABLE_LINK_STATUSES = frozenset({
    LinkStatus.CREATED.value,
    LinkStatus.ISSUED.value,
    LinkStatus.PROCESSING.value,
    LinkStatus.PARTIALLY_PAID.value,
})
DEAD_LINK_STATUSES = frozenset({LinkStatus.CANCELLED.value, LinkStatus.EXPIRED.value})


def normalize_link_status(raw_status: Optional[str]) -> PaymentStatus:
    """Map a gateway link status onto the local payment axis."""
    value = (raw_status or "").lower()
    if value == LinkStatus.PAID.value:
        return PaymentStatus.PAID
    if value in DEAD_LINK_STATUSES:
        return PaymentStatus.FAILED
    return PaymentStatus.PENDING


# ============================================================================
# SECTION 2: VALUE OBJECTS
# ============================================================================

class Coordinates(CamelModel):
    lat: float = 0.0
    lng: float = 0.0


class OrderItem(CamelModel):
    name: str
    quantity: int = Field(default=1, ge=1)
    price: float = Field(default=0.0, ge=0)


class Customer(CamelModel):
    name: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None


# ============================================================================
# SECTION 3: AGGREGATES
# ============================================================================

class Order(CamelModel):
    """Aggregate root: fulfillment axis + payment axis"""
    id: str
    payment_method: PaymentMethod
    status: OrderStatus = OrderStatus.PLACED
    payment_status: PaymentStatus = PaymentStatus.PENDING

    total: float
    currency: str = "INR"
    items: List[OrderItem] = Field(default_factory=list)
    customer: Customer = Field(default_factory=Customer)
    destination: Coordinates = Field(default_factory=Coordinates)

    # Payment link (UPI only)
    link_id: Optional[str] = None
    link_url: Optional[str] = None
    link_attempt: int = 0

    cancel_reason: Optional[CancelReason] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    canceled_at: Optional[datetime] = None

    @property
    def amount_paise(self) -> int:
        return int(round(self.total * 100))

    @property
    def is_canceled(self) -> bool:
        return self.status == OrderStatus.CANCELED


class DeliveryRecord(CamelModel):
    """Synthetic courier for one order"""
    id: str = Field(default_factory=new_delivery_id)
    order_id: str
    position: Coordinates
    destination: Coordinates
    delivery_status: DeliveryStatus = DeliveryStatus.PREPARING
    updated_at: datetime = Field(default_factory=utcnow)


class PaymentLink(CamelModel):
    """Remote payment link (owned by the gateway)"""
    id: str
    short_url: Optional[str] = None
    status: str = LinkStatus.CREATED.value
    reference_id: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    notes: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @classmethod
    def from_gateway(cls, payload: Dict[str, Any]) -> "PaymentLink":
        """Build from a raw gateway entity (snake_case keys)."""
        notes = payload.get("notes") or {}
        return cls(
            id=payload["id"],
            short_url=payload.get("short_url"),
            status=payload.get("status") or LinkStatus.CREATED.value,
            reference_id=payload.get("reference_id"),
            amount=payload.get("amount"),
            currency=payload.get("currency"),
            notes=notes if isinstance(notes, dict) else {},
        )


# ============================================================================
# SECTION 4: REQUESTS
# ============================================================================

class OrderRequest(CamelModel):
    """New order as submitted by the app. Destination is validated later."""
    payment_method: PaymentMethod
    total: float = Field(gt=0)
    items: List[OrderItem] = Field(default_factory=list)
    customer: Customer = Field(default_factory=Customer)
    destination: Optional[Any] = None


class PaymentLinkRequest(CamelModel):
    amount: Optional[float] = Field(default=None, gt=0)
    customer: Optional[Customer] = None


# ============================================================================
# SECTION 5: RESULTS
# ============================================================================

class PaymentStatusView(CamelModel):
    """Answer of the status resolver: {referenceId, status, rawStatus}"""
    reference_id: str
    status: PaymentStatus
    raw_status: str


class CancellationResult(CamelModel):
    order_id: str
    canceled: bool = True
    already: bool = False


__all__ = [
    "utcnow",
    "new_order_id",
    "new_delivery_id",
    "CamelModel",
    "PaymentMethod",
    "OrderStatus",
    "PaymentStatus",
    "TERMINAL_PAYMENT_STATUSES",
    "DeliveryStatus",
    "CancelReason",
    "LinkStatus",
    "REUSABLE_LINK_STATUSES",
    "DEAD_LINK_STATUSES",
    "normalize_link_status",
    "Coordinates",
    "OrderItem",
    "Customer",
    "Order",
    "DeliveryRecord",
    "PaymentLink",
    "OrderRequest",
    "PaymentLinkRequest",
    "PaymentStatusView",
    "CancellationResult",
]

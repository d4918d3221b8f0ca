# schemas/event_definitions.py
# ============================================================================
# FOODIE ORDER SERVICE: GATEWAY WEBHOOK EVENT SCHEMAS
# ============================================================================
# Purpose: Type-safe parsing of Razorpay webhook bodies.
#
# Webhooks are parsed once, at the boundary, into a tagged union:
#   PaymentLinkPaidEvent | PaymentCapturedEvent | PaymentFailedEvent
#   | UnrecognizedEvent
# A recognized event type with the wrong shape is rejected (MalformedEvent)
# instead of being probed field by field downstream.
# ============================================================================

import json
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from pipeline.errors import MalformedEvent


# ============================================================================
# SECTION 1: EVENT TYPES
# ============================================================================

EVENT_PAYMENT_LINK_PAID = "payment_link.paid"
EVENT_PAYMENT_CAPTURED = "payment.captured"
EVENT_PAYMENT_FAILED = "payment.failed"

RECOGNIZED_EVENT_TYPES = frozenset({
    EVENT_PAYMENT_LINK_PAID,
    EVENT_PAYMENT_CAPTURED,
    EVENT_PAYMENT_FAILED,
})


# ============================================================================
# SECTION 2: ENTITIES
# ============================================================================

class OrderNotes(BaseModel):
    """The notes map every link we create carries: referenceId = order id."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    reference_id: str = Field(alias="referenceId", min_length=1)


class PaymentEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    method: Optional[str] = None
    error_description: Optional[str] = None
    notes: OrderNotes


class LinkedPaymentEntity(BaseModel):
    """Payment attached to a payment_link.paid event; notes are not required."""
    model_config = ConfigDict(extra="ignore")

    id: str
    amount: Optional[int] = None
    method: Optional[str] = None
    status: Optional[str] = None


class PaymentLinkEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: Optional[str] = None
    reference_id: Optional[str] = None
    amount_paid: Optional[int] = None
    notes: OrderNotes


class PaymentContainer(BaseModel):
    entity: PaymentEntity


class LinkedPaymentContainer(BaseModel):
    entity: LinkedPaymentEntity


class PaymentLinkContainer(BaseModel):
    entity: PaymentLinkEntity


class PaymentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment: PaymentContainer


class PaymentLinkPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_link: PaymentLinkContainer
    payment: Optional[LinkedPaymentContainer] = None


# ============================================================================
# SECTION 3: EVENTS (TAGGED UNION)
# ============================================================================

class GatewayEventBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    account_id: Optional[str] = None
    created_at: Optional[int] = None


class PaymentLinkPaidEvent(GatewayEventBase):
    event: Literal["payment_link.paid"]
    payload: PaymentLinkPayload

    @property
    def order_id(self) -> str:
        return self.payload.payment_link.entity.notes.reference_id

    @property
    def link_id(self) -> str:
        return self.payload.payment_link.entity.id

    @property
    def payment_id(self) -> Optional[str]:
        payment = self.payload.payment
        return payment.entity.id if payment else None


class PaymentCapturedEvent(GatewayEventBase):
    event: Literal["payment.captured"]
    payload: PaymentPayload

    @property
    def order_id(self) -> str:
        return self.payload.payment.entity.notes.reference_id

    @property
    def payment_id(self) -> str:
        return self.payload.payment.entity.id


class PaymentFailedEvent(GatewayEventBase):
    event: Literal["payment.failed"]
    payload: PaymentPayload

    @property
    def order_id(self) -> str:
        return self.payload.payment.entity.notes.reference_id

    @property
    def payment_id(self) -> str:
        return self.payload.payment.entity.id

    @property
    def error_description(self) -> Optional[str]:
        return self.payload.payment.entity.error_description


class UnrecognizedEvent(BaseModel):
    """Any event type we do not act on. Acknowledged, never applied."""
    event: str


RecognizedEvent = Annotated[
    Union[PaymentLinkPaidEvent, PaymentCapturedEvent, PaymentFailedEvent],
    Field(discriminator="event"),
]

GatewayEvent = Union[
    PaymentLinkPaidEvent,
    PaymentCapturedEvent,
    PaymentFailedEvent,
    UnrecognizedEvent,
]

_recognized_adapter: TypeAdapter = TypeAdapter(RecognizedEvent)


# ============================================================================
# SECTION 4: PARSING
# ============================================================================

def parse_gateway_event(raw_body: bytes) -> GatewayEvent:
    """Parse a verified webhook body into exactly one union variant."""
    try:
        data: Any = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedEvent("Webhook body is not valid JSON") from e

    if not isinstance(data, dict) or not isinstance(data.get("event"), str):
        raise MalformedEvent("Webhook body has no event type")

    event_type: str = data["event"]
    if event_type not in RECOGNIZED_EVENT_TYPES:
        return UnrecognizedEvent(event=event_type)

    try:
        return _recognized_adapter.validate_python(data)
    except ValidationError as e:
        raise MalformedEvent(
            f"Malformed {event_type} event",
            event_type=event_type,
            errors=[_describe_error(err) for err in e.errors()],
        ) from e


def _describe_error(err: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in err.get("loc", ()))
    return f"{location}: {err.get('msg', 'invalid')}"


__all__ = [
    "EVENT_PAYMENT_LINK_PAID",
    "EVENT_PAYMENT_CAPTURED",
    "EVENT_PAYMENT_FAILED",
    "RECOGNIZED_EVENT_TYPES",
    "OrderNotes",
    "PaymentEntity",
    "PaymentLinkEntity",
    "PaymentLinkPaidEvent",
    "PaymentCapturedEvent",
    "PaymentFailedEvent",
    "UnrecognizedEvent",
    "GatewayEvent",
    "parse_gateway_event",
]

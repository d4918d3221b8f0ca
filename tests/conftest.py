"""
Shared fixtures: test config, an in-memory payment gateway stub and a
fully wired OrderPipeline on the in-memory store.
"""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from config import ServiceConfig
from pipeline.agent_integrations import OrderPipeline
from pipeline.errors import DuplicateReference, GatewayError
from schemas.order_models import (
    Coordinates,
    Customer,
    DeliveryRecord,
    DeliveryStatus,
    Order,
    PaymentLink,
    PaymentMethod,
    new_order_id,
)
from services.razorpay_client import IPaymentGateway
from storage.document_store import StoreFactory

WEBHOOK_SECRET = "whsec_test_secret"


def make_config(**overrides: Any) -> ServiceConfig:
    """ServiceConfig with slow simulator timings unless a test overrides them."""
    cfg = ServiceConfig()
    defaults = {
        "ENV": "test",
        "STORE_BACKEND": "memory",
        "RAZORPAY_WEBHOOK_SECRET": WEBHOOK_SECRET,
        "PUBLIC_BASE_URL": "http://foodie.test",
        "SIM_START_DELAY_SECONDS": 60.0,
        "SIM_TICK_SECONDS": 60.0,
        "SIM_RESUME_ON_START": False,
    }
    for key, value in {**defaults, **overrides}.items():
        setattr(cfg, key, value)
    return cfg


# ── Gateway stub ───────────────────────────────────────────────

class FakeGateway(IPaymentGateway):
    """In-memory Razorpay: links keyed by id, references must be unique."""

    def __init__(self):
        self.links: Dict[str, PaymentLink] = {}
        self.created: List[Dict[str, Any]] = []
        self.fetched: List[str] = []
        self.taken_references: set = set()
        self.fail_with: Optional[GatewayError] = None
        self._ids = itertools.count(1)
        self.closed = False

    def add_link(self, reference: str, status: str = "created", order_id: Optional[str] = None) -> PaymentLink:
        n = next(self._ids)
        link = PaymentLink(
            id=f"plink_{n}",
            short_url=f"https://rzp.io/i/{n}",
            status=status,
            reference_id=reference,
            notes={"referenceId": order_id or reference.rsplit("-", 1)[0]},
        )
        self.links[link.id] = link
        return link

    def set_status(self, link_id: str, status: str) -> None:
        self.links[link_id] = self.links[link_id].model_copy(update={"status": status})

    async def create_link(
        self,
        amount: int,
        currency: str,
        reference: str,
        notes: Dict[str, Any],
        callback_url: str,
        description: str,
        customer: Optional[Customer] = None,
    ) -> PaymentLink:
        if self.fail_with is not None:
            raise self.fail_with
        exists = any(link.reference_id == reference for link in self.links.values())
        if exists or reference in self.taken_references:
            raise DuplicateReference(
                "Payment Link with this reference_id already exists",
                gateway_code="BAD_REQUEST_ERROR",
                http_status=400,
            )
        self.created.append({
            "amount": amount,
            "currency": currency,
            "reference": reference,
            "notes": notes,
            "callback_url": callback_url,
            "description": description,
            "customer": customer,
        })
        link = self.add_link(reference, order_id=notes.get("referenceId"))
        return link.model_copy(update={"amount": amount, "currency": currency})

    async def fetch_link(self, link_id: str) -> PaymentLink:
        self.fetched.append(link_id)
        return self.links[link_id].model_copy()

    async def list_links_by_reference(self, reference: str) -> List[PaymentLink]:
        return [link.model_copy() for link in self.links.values() if link.reference_id == reference]

    async def close(self) -> None:
        self.closed = True


# ── Fixtures ───────────────────────────────────────────────────

@pytest.fixture
def config() -> ServiceConfig:
    return make_config()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def pipeline(config, gateway):
    p = OrderPipeline(config, StoreFactory("memory"), gateway)
    yield p
    await p.simulators.shutdown()


async def seed_order(
    pipeline: OrderPipeline,
    payment_method: PaymentMethod = PaymentMethod.UPI,
    with_delivery: bool = True,
    destination: Coordinates = Coordinates(lat=12.9750, lng=77.5990),
    position: Optional[Coordinates] = None,
    **fields: Any,
) -> Order:
    """Store an order (and its delivery record) without starting a simulator."""
    order = await pipeline.orders.create(
        Order(
            id=new_order_id(),
            payment_method=payment_method,
            total=fields.pop("total", 249.0),
            destination=destination,
            **fields,
        )
    )
    if with_delivery:
        await pipeline.deliveries.create(
            DeliveryRecord(
                order_id=order.id,
                position=position or Coordinates(lat=12.9716, lng=77.5946),
                destination=destination,
                delivery_status=DeliveryStatus.PREPARING,
            )
        )
    return order

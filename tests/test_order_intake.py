"""
Order intake: destination validation, order + delivery creation, first link.
"""

import pytest

from pipeline.agents.order_intake import parse_destination
from pipeline.errors import GatewayError, OrderNotFound
from schemas.order_models import (
    Coordinates,
    DeliveryStatus,
    OrderItem,
    OrderRequest,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)


class TestParseDestination:

    def test_valid(self):
        coords, degraded = parse_destination({"lat": 12.98, "lng": 77.6})
        assert coords == Coordinates(lat=12.98, lng=77.6)
        assert degraded is None

    def test_numeric_strings_and_long_names(self):
        coords, degraded = parse_destination({"latitude": "12.98", "longitude": "77.6"})
        assert coords == Coordinates(lat=12.98, lng=77.6)
        assert degraded is None

    @pytest.mark.parametrize("raw, reason", [
        (None, "missing"),
        ("12.98,77.6", "not_an_object"),
        ({"lat": 12.98}, "invalid_coordinates"),
        ({"lat": 91, "lng": 77.6}, "invalid_coordinates"),
        ({"lat": 12.98, "lng": -181}, "invalid_coordinates"),
        ({"lat": "north", "lng": 77.6}, "invalid_coordinates"),
        ({"lat": float("nan"), "lng": 77.6}, "invalid_coordinates"),
        ({"lat": True, "lng": 77.6}, "invalid_coordinates"),
    ])
    def test_degraded_to_origin(self, raw, reason):
        coords, degraded = parse_destination(raw)
        assert coords == Coordinates(lat=0.0, lng=0.0)
        assert degraded == reason


def request(payment_method, **overrides):
    fields = {
        "payment_method": payment_method,
        "total": 349.0,
        "items": [OrderItem(name="Masala Dosa", quantity=2, price=120), OrderItem(name="Filter Coffee", price=109)],
        "destination": {"lat": 12.98, "lng": 77.6},
    }
    fields.update(overrides)
    return OrderRequest(**fields)


class TestCreateOrder:

    async def test_cod_order(self, pipeline, gateway):
        order, link = await pipeline.intake.create_order(request(PaymentMethod.COD))

        assert link is None
        assert gateway.created == []
        assert order.id.startswith("ord_")
        assert order.payment_status == PaymentStatus.PENDING
        assert order.destination == Coordinates(lat=12.98, lng=77.6)
        assert pipeline.simulators.is_running(order.id)

        record = await pipeline.deliveries.get_for_order(order.id)
        assert record.delivery_status == DeliveryStatus.PREPARING
        assert record.position == Coordinates(lat=pipeline.config.RESTAURANT_LAT, lng=pipeline.config.RESTAURANT_LNG)
        assert record.destination == order.destination

    async def test_upi_order_gets_link(self, pipeline, gateway):
        order, link = await pipeline.intake.create_order(request(PaymentMethod.UPI))

        assert link is not None
        assert order.link_id == link.id
        assert order.status == OrderStatus.PENDING_PAYMENT
        assert gateway.created[0]["amount"] == 34900
        assert gateway.created[0]["reference"] == f"{order.id}-1"

    async def test_bad_destination_is_not_fatal(self, pipeline):
        order, _ = await pipeline.intake.create_order(request(PaymentMethod.COD, destination={"lat": "?"}))
        assert order.destination == Coordinates(lat=0.0, lng=0.0)

    async def test_gateway_failure_keeps_order(self, pipeline, gateway):
        gateway.fail_with = GatewayError("Authentication failed", gateway_code="BAD_REQUEST_ERROR", http_status=401)

        with pytest.raises(GatewayError) as exc:
            await pipeline.intake.create_order(request(PaymentMethod.UPI))
        order_id = exc.value.details["order_id"]

        order, record = await pipeline.intake.get_order(order_id)
        assert order.link_id is None
        assert record is not None
        assert pipeline.simulators.is_running(order_id)

        # Retry once the gateway recovers
        gateway.fail_with = None
        link = await pipeline.links.ensure_link(order_id)
        assert link.reference_id == f"{order_id}-1"

    async def test_get_unknown_order(self, pipeline):
        with pytest.raises(OrderNotFound):
            await pipeline.intake.get_order("ord_missing")

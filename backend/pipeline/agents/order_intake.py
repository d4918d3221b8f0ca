"""
Order Intake
============
Creates an order with its delivery record, issues the first payment link
for UPI orders and starts the delivery simulator.

A bad destination never fails the order: it is replaced by (0, 0) and
logged as destination_degraded.
"""

import math
from typing import Any, Optional, Tuple

import structlog

from config import ServiceConfig
from pipeline.agents.payment_links import PaymentLinkManager
from pipeline.agents.transitions import SimulatorHook
from pipeline.errors import GatewayError, OrderNotFound
from schemas.order_models import (
    Coordinates,
    DeliveryRecord,
    Order,
    OrderRequest,
    PaymentLink,
    PaymentMethod,
    new_order_id,
)
from storage.repositories import DeliveryRepository, OrderRepository

logger = structlog.get_logger(component="order_intake")


def _coordinate(raw: Any, limit: float) -> Optional[float]:
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value) or abs(value) > limit:
        return None
    return value


def parse_destination(raw: Any) -> Tuple[Coordinates, Optional[str]]:
    """Return (coordinates, degradation reason or None)."""
    if raw is None:
        return Coordinates(), "missing"
    if not isinstance(raw, dict):
        return Coordinates(), "not_an_object"

    lat = _coordinate(raw.get("lat", raw.get("latitude")), 90.0)
    lng = _coordinate(raw.get("lng", raw.get("longitude")), 180.0)
    if lat is None or lng is None:
        return Coordinates(), "invalid_coordinates"
    return Coordinates(lat=lat, lng=lng), None


class OrderIntake:
    def __init__(
        self,
        orders: OrderRepository,
        deliveries: DeliveryRepository,
        links: PaymentLinkManager,
        start_simulator: SimulatorHook,
        config: ServiceConfig,
    ):
        self.orders = orders
        self.deliveries = deliveries
        self.links = links
        self.start_simulator = start_simulator
        self.config = config

    async def create_order(self, request: OrderRequest) -> Tuple[Order, Optional[PaymentLink]]:
        order_id = new_order_id()
        log = logger.bind(order_id=order_id)

        destination, degraded = parse_destination(request.destination)
        if degraded:
            log.warning("destination_degraded", reason=degraded, raw=repr(request.destination)[:200])

        order = await self.orders.create(
            Order(
                id=order_id,
                payment_method=request.payment_method,
                total=request.total,
                currency=self.config.CURRENCY,
                items=request.items,
                customer=request.customer,
                destination=destination,
            )
        )
        await self.deliveries.create(
            DeliveryRecord(
                order_id=order_id,
                position=Coordinates(lat=self.config.RESTAURANT_LAT, lng=self.config.RESTAURANT_LNG),
                destination=destination,
            )
        )
        log.info(
            "order_created",
            payment_method=order.payment_method.value,
            total=order.total,
            items=len(order.items),
        )

        link = None
        try:
            if order.payment_method == PaymentMethod.UPI:
                link = await self.links.ensure_link(order_id)
        except GatewayError as e:
            e.details["order_id"] = order_id
            log.error("order_payment_link_failed", error=e.description, gateway_code=e.gateway_code)
            raise
        finally:
            await self.start_simulator(order_id)

        return (await self.orders.get(order_id)) or order, link

    async def get_order(self, order_id: str) -> Tuple[Order, Optional[DeliveryRecord]]:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order, await self.deliveries.get_for_order(order_id)

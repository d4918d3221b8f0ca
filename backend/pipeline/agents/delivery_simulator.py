"""
Delivery Simulator
==================
Synthetic courier per order: preparing -> on_the_way -> delivered.

The driver starts at the restaurant, waits out the preparation delay, then
moves one fixed step per tick toward the destination on each axis until it
is within the arrival threshold. COD orders are marked paid on delivery.

Each run is an asyncio task owned by SimulatorRegistry, so cancelling an
order can cancel (and wait for) its simulator before writing the
cancelled state.
"""

import asyncio
import math
from typing import Awaitable, Callable, Dict, Optional

import structlog

from config import ServiceConfig
from pipeline.errors import OrderServiceError
from schemas.order_models import (
    Coordinates,
    DeliveryStatus,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from storage.repositories import DeliveryRepository, OrderRepository

logger = structlog.get_logger(component="delivery_simulator")

Sleep = Callable[[float], Awaitable[None]]


# =============================================================================
# MOVEMENT
# =============================================================================

def _step_toward(current: float, target: float, step: float) -> float:
    delta = target - current
    return current + math.copysign(min(step, abs(delta)), delta)


def advance_position(position: Coordinates, destination: Coordinates, step: float) -> Coordinates:
    """One tick of movement, clamped so the driver never overshoots."""
    return Coordinates(
        lat=_step_toward(position.lat, destination.lat, step),
        lng=_step_toward(position.lng, destination.lng, step),
    )


def has_arrived(position: Coordinates, destination: Coordinates, threshold: float) -> bool:
    return (
        abs(destination.lat - position.lat) <= threshold
        and abs(destination.lng - position.lng) <= threshold
    )


# =============================================================================
# TASK REGISTRY
# =============================================================================

class SimulatorRegistry:
    """At most one live simulator task per order id"""

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def start(self, order_id: str, factory: Callable[[], Awaitable[None]]) -> bool:
        if self.is_running(order_id):
            return False

        task = asyncio.create_task(factory(), name=f"delivery-sim-{order_id}")
        self._tasks[order_id] = task
        task.add_done_callback(lambda t: self._forget(order_id, t))
        return True

    def _forget(self, order_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(order_id) is task:
            del self._tasks[order_id]

    def is_running(self, order_id: str) -> bool:
        task = self._tasks.get(order_id)
        return task is not None and not task.done()

    @property
    def active_count(self) -> int:
        return sum(1 for task in self._tasks.values() if not task.done())

    async def cancel(self, order_id: str) -> bool:
        """Cancel the order's simulator and wait until it has stopped."""
        task = self._tasks.pop(order_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.wait([task])
        logger.info("simulator_stopped", order_id=order_id)
        return True

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
        logger.info("simulators_shutdown", count=len(tasks))


# =============================================================================
# SIMULATOR
# =============================================================================

class DeliverySimulator:
    """Drives one order's delivery record to completion"""

    def __init__(
        self,
        orders: OrderRepository,
        deliveries: DeliveryRepository,
        config: ServiceConfig,
        sleep: Optional[Sleep] = None,
    ):
        self.orders = orders
        self.deliveries = deliveries
        self.config = config
        self._sleep = sleep or asyncio.sleep

    async def _live_order(self, order_id: str) -> Optional[Order]:
        """The order, or None once it is gone or cancelled."""
        order = await self.orders.get(order_id)
        if order is None or order.is_canceled:
            return None
        return order

    async def run(self, order_id: str) -> None:
        log = logger.bind(order_id=order_id)
        try:
            await self._drive(order_id, log)
        except asyncio.CancelledError:
            log.info("simulator_cancelled")
            raise
        except OrderServiceError as e:
            log.error("simulator_persistence_failed", error=e.message, code=e.code)

    async def _drive(self, order_id: str, log) -> None:
        record = await self.deliveries.get_for_order(order_id)
        if record is None:
            log.warning("simulator_no_delivery_record")
            return
        if record.delivery_status == DeliveryStatus.DELIVERED:
            return

        if await self._live_order(order_id) is None:
            log.info("simulator_order_inactive", phase="start")
            return

        if record.delivery_status == DeliveryStatus.PREPARING:
            await self.orders.update(order_id, status=OrderStatus.PREPARING)
            log.info("delivery_preparing", delay=self.config.SIM_START_DELAY_SECONDS)
            await self._sleep(self.config.SIM_START_DELAY_SECONDS)

            if await self._live_order(order_id) is None:
                log.info("simulator_order_inactive", phase="preparing")
                return
            record = await self.deliveries.update(record.id, delivery_status=DeliveryStatus.ON_THE_WAY)
            if record is None:
                log.info("simulator_delivery_record_gone")
                return
            await self.orders.update(order_id, status=OrderStatus.ON_THE_WAY)
            log.info("delivery_on_the_way", lat=record.position.lat, lng=record.position.lng)

        position = record.position
        destination = record.destination
        while True:
            await self._sleep(self.config.SIM_TICK_SECONDS)

            order = await self._live_order(order_id)
            if order is None:
                log.info("simulator_order_inactive", phase="on_the_way")
                return

            position = advance_position(position, destination, self.config.SIM_STEP_DEGREES)
            if has_arrived(position, destination, self.config.SIM_ARRIVAL_THRESHOLD):
                await self._complete(order, record.id, destination, log)
                return

            if await self.deliveries.update(record.id, position=position) is None:
                log.info("simulator_delivery_record_gone")
                return

    async def _complete(self, order: Order, delivery_id: str, destination: Coordinates, log) -> None:
        await self.deliveries.update(
            delivery_id,
            position=destination,
            delivery_status=DeliveryStatus.DELIVERED,
        )
        updates = {"status": OrderStatus.DELIVERED}
        if order.payment_method == PaymentMethod.COD:
            updates["payment_status"] = PaymentStatus.PAID
        await self.orders.update(order.id, **updates)
        log.info(
            "delivery_completed",
            payment_method=order.payment_method.value,
            cod_marked_paid=order.payment_method == PaymentMethod.COD,
        )

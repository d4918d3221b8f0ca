"""
Cancellation Guard
==================
Decides whether an order may be cancelled and carries out the cancellation.

    status=canceled                      -> ok, already=True, nothing written
    status=delivered                     -> NotCancellable("already_delivered")
    payment_status=paid                  -> NotCancellable("not_cancellable")
    COD, not delivered                   -> cancellable
    UPI, payment pending or link pending -> cancellable
    anything else                        -> NotCancellable("not_cancellable")

The order is kept (status=canceled, cancel_reason=customer); its delivery
records are deleted. The simulator is stopped before anything is written.
"""

from typing import Optional

import structlog

from pipeline.agents.delivery_simulator import SimulatorRegistry
from pipeline.agents.transitions import SimulatorHook
from pipeline.errors import NotCancellable, OrderNotFound, OrderServiceError
from schemas.order_models import (
    CancellationResult,
    CancelReason,
    Order,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
    utcnow,
)
from storage.repositories import DeliveryRepository, OrderRepository

logger = structlog.get_logger(component="cancellation")


def check_cancellable(order: Order) -> bool:
    """
    Raise NotCancellable if the order may not be cancelled.

    Returns True when the order is already cancelled (nothing to do).
    """
    if order.status == OrderStatus.CANCELED:
        return True

    if order.status == OrderStatus.DELIVERED:
        reason = "already_delivered"
    elif order.payment_status == PaymentStatus.PAID:
        # A paid order is never cancelled, whatever its fulfillment status
        reason = "not_cancellable"
    elif order.payment_method == PaymentMethod.COD:
        return False
    elif order.payment_status == PaymentStatus.PENDING or order.status == OrderStatus.PENDING_PAYMENT:
        return False
    else:
        reason = "not_cancellable"

    raise NotCancellable(
        order.id,
        reason=reason,
        payment_method=order.payment_method.value,
        payment_status=order.payment_status.value,
        status=order.status.value,
    )


class CancellationGuard:
    def __init__(
        self,
        orders: OrderRepository,
        deliveries: DeliveryRepository,
        simulators: SimulatorRegistry,
        resume_simulator: Optional[SimulatorHook] = None,
    ):
        self.orders = orders
        self.deliveries = deliveries
        self.simulators = simulators
        self.resume_simulator = resume_simulator

    async def _load(self, order_id: str) -> Order:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def cancel(self, order_id: str) -> CancellationResult:
        log = logger.bind(order_id=order_id)

        order = await self._load(order_id)
        if check_cancellable(order):
            log.info("cancel_already_cancelled")
            return CancellationResult(order_id=order_id, canceled=True, already=True)

        await self.simulators.cancel(order_id)

        # Re-check: the simulator or a webhook may have moved the order meanwhile
        order = await self._load(order_id)
        try:
            if check_cancellable(order):
                return CancellationResult(order_id=order_id, canceled=True, already=True)
        except NotCancellable as e:
            log.info("cancel_rejected_after_stop", reason=e.reason)
            if e.reason != "already_delivered" and self.resume_simulator is not None:
                await self.resume_simulator(order_id)
            raise

        await self.orders.update(
            order_id,
            status=OrderStatus.CANCELED,
            cancel_reason=CancelReason.CUSTOMER,
            canceled_at=utcnow(),
        )

        try:
            removed = await self.deliveries.delete_for_order(order_id)
        except OrderServiceError as e:
            log.warning("cancel_delivery_cleanup_failed", error=e.message)
            removed = 0

        log.info(
            "order_cancelled",
            payment_method=order.payment_method.value,
            previous_status=order.status.value,
            deliveries_removed=removed,
        )
        return CancellationResult(order_id=order_id, canceled=True, already=False)

"""
Payment Transitions
===================
The two payment-axis transitions every reconciliation source funnels into:

    paid    payment_status=paid, status back to placed if it was waiting
    failed  payment_status=failed, status=canceled (reason payment_failed)

A dead link found by polling only records payment_status=failed: the order
stays open so a new link can be issued for it.

Both are absolute assignments guarded by the current order state, so
replaying an event, or receiving events out of order, converges on the same
document.
"""

from typing import Awaitable, Callable, Optional

import structlog

from pipeline.errors import OrderNotFound
from schemas.order_models import (
    CancelReason,
    Order,
    OrderStatus,
    PaymentStatus,
    utcnow,
)
from storage.repositories import OrderRepository

logger = structlog.get_logger(component="payment_transitions")

SimulatorHook = Callable[[str], Awaitable[object]]


def _failed_by_payment(order: Order) -> bool:
    return order.is_canceled and order.cancel_reason == CancelReason.PAYMENT_FAILED


class PaymentTransitions:
    """
    Applies paid / failed outcomes to an order.

    ``on_revived`` restarts the delivery simulator for an order a paid event
    brings back from payment failure; ``on_failed`` stops it before the
    failed state is written.
    """

    def __init__(
        self,
        orders: OrderRepository,
        on_revived: Optional[SimulatorHook] = None,
        on_failed: Optional[SimulatorHook] = None,
    ):
        self.orders = orders
        self.on_revived = on_revived
        self.on_failed = on_failed

    async def _load(self, order_id: str) -> Order:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def mark_paid(self, order_id: str, source: str, **context) -> Order:
        order = await self._load(order_id)
        log = logger.bind(order_id=order_id, source=source, **context)

        if order.is_canceled and order.cancel_reason == CancelReason.CUSTOMER:
            log.warning(
                "payment_after_customer_cancel",
                payment_status=order.payment_status.value,
            )
            return order

        revived = _failed_by_payment(order)
        updates = {}
        if order.payment_status != PaymentStatus.PAID:
            updates["payment_status"] = PaymentStatus.PAID
        if revived or order.status == OrderStatus.PENDING_PAYMENT:
            updates["status"] = OrderStatus.PLACED
        if revived:
            updates["cancel_reason"] = None
            updates["canceled_at"] = None

        if not updates:
            log.debug("payment_paid_already_applied", status=order.status.value)
            return order

        updated = await self.orders.update(order_id, **updates)
        if updated is None:
            raise OrderNotFound(order_id)
        log.info(
            "payment_marked_paid",
            previous_status=order.status.value,
            status=updated.status.value,
            revived=revived,
        )

        if revived and self.on_revived is not None:
            await self.on_revived(order_id)
        return updated

    async def mark_failed(self, order_id: str, source: str, **context) -> Order:
        order = await self._load(order_id)
        log = logger.bind(order_id=order_id, source=source, **context)

        skip = self._failed_skip_reason(order)
        if skip:
            log.info("payment_failed_ignored", reason=skip, status=order.status.value)
            return order

        if order.is_canceled:
            # Customer already cancelled: record the payment outcome only
            updated = await self.orders.update(order_id, payment_status=PaymentStatus.FAILED)
            log.info("payment_marked_failed", status=order.status.value, simulator_stopped=False)
            return updated or order

        if self.on_failed is not None:
            await self.on_failed(order_id)

        # The simulator may have moved the order while it was being stopped
        order = await self._load(order_id)
        skip = self._failed_skip_reason(order)
        if skip:
            log.info("payment_failed_ignored", reason=skip, status=order.status.value)
            return order

        updated = await self.orders.update(
            order_id,
            payment_status=PaymentStatus.FAILED,
            status=OrderStatus.CANCELED,
            cancel_reason=CancelReason.PAYMENT_FAILED,
            canceled_at=utcnow(),
        )
        if updated is None:
            raise OrderNotFound(order_id)
        log.info("payment_marked_failed", previous_status=order.status.value, simulator_stopped=True)
        return updated

    async def record_link_failed(self, order_id: str, source: str, **context) -> Order:
        """Set payment_status=failed without cancelling the order."""
        order = await self._load(order_id)
        log = logger.bind(order_id=order_id, source=source, **context)

        if order.payment_status in (PaymentStatus.PAID, PaymentStatus.FAILED):
            log.debug("payment_link_failure_ignored", payment_status=order.payment_status.value)
            return order

        updated = await self.orders.update(order_id, payment_status=PaymentStatus.FAILED)
        if updated is None:
            raise OrderNotFound(order_id)
        log.info("payment_link_failure_recorded", status=order.status.value)
        return updated

    @staticmethod
    def _failed_skip_reason(order: Order) -> Optional[str]:
        if order.payment_status == PaymentStatus.PAID:
            return "already_paid"
        if order.status == OrderStatus.DELIVERED:
            return "already_delivered"
        if order.payment_status == PaymentStatus.FAILED and order.is_canceled:
            return "already_failed"
        return None

"""
Payment Link Lifecycle Manager
==============================
Creates, reuses and re-issues the Razorpay payment link for a UPI order.

Rules:
- A live remote link (created / issued / processing / partially_paid) is
  reused as-is.
- A paid remote link means the order is paid: apply it locally, refuse.
- A cancelled or expired link is abandoned (never cancelled remotely) and a
  new one is created under the next attempt number. So is a link in a status
  the gateway has not documented.
- Every attempt carries a unique reference "<order_id>-<attempt>". When the
  gateway reports that reference as taken, the existing link is adopted; if
  none can be found the next attempt number is tried once.

Calls for the same order are serialized in-process by a per-order lock.
"""

import asyncio
from collections import defaultdict
from typing import Dict, Optional, Tuple

import structlog

from config import ServiceConfig
from pipeline.agents.transitions import PaymentTransitions
from pipeline.errors import AlreadyPaid, DuplicateReference, InvalidOrderState, OrderNotFound
from schemas.order_models import (
    DEAD_LINK_STATUSES,
    REUSABLE_LINK_STATUSES,
    Customer,
    LinkStatus,
    Order,
    OrderStatus,
    PaymentLink,
    PaymentMethod,
    PaymentStatus,
)
from services.razorpay_client import IPaymentGateway
from storage.repositories import OrderRepository

logger = structlog.get_logger(component="payment_links")


def link_reference(order_id: str, attempt: int) -> str:
    return f"{order_id}-{attempt}"


class PaymentLinkManager:
    """Idempotent ensure_link() per order"""

    def __init__(
        self,
        orders: OrderRepository,
        gateway: IPaymentGateway,
        transitions: PaymentTransitions,
        config: ServiceConfig,
    ):
        self.orders = orders
        self.gateway = gateway
        self.transitions = transitions
        self.config = config
        # Dropped once the last caller for an order leaves
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock_users: Dict[str, int] = defaultdict(int)

    def callback_url(self, order_id: str) -> str:
        return f"{self.config.PUBLIC_BASE_URL}/api/payments/callback?orderId={order_id}"

    async def ensure_link(
        self,
        order_id: str,
        amount: Optional[float] = None,
        customer: Optional[Customer] = None,
    ) -> PaymentLink:
        """
        Return a payable link for the order, creating one when needed.

        Args:
            order_id: Order to collect payment for
            amount: Amount in rupees; defaults to the order total
            customer: Overrides the customer stored on the order

        Raises:
            OrderNotFound, InvalidOrderState, AlreadyPaid, GatewayError
        """
        self._lock_users[order_id] += 1
        try:
            async with self._locks[order_id]:
                return await self._ensure_locked(order_id, amount, customer)
        finally:
            self._lock_users[order_id] -= 1
            if not self._lock_users[order_id]:
                del self._lock_users[order_id]
                self._locks.pop(order_id, None)

    async def _ensure_locked(
        self,
        order_id: str,
        amount: Optional[float],
        customer: Optional[Customer],
    ) -> PaymentLink:
        log = logger.bind(order_id=order_id)
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        self._check_linkable(order)

        if order.link_id:
            existing = await self.gateway.fetch_link(order.link_id)
            status = existing.status.lower()
            if status == LinkStatus.PAID.value:
                log.info("payment_link_already_paid", link_id=existing.id)
                await self.transitions.mark_paid(order_id, source="payment_link", link_id=existing.id)
                raise AlreadyPaid(order_id, link_id=existing.id)
            if status in REUSABLE_LINK_STATUSES:
                log.info("payment_link_reused", link_id=existing.id, link_status=status)
                return existing
            if status in DEAD_LINK_STATUSES:
                log.info("payment_link_stale", link_id=existing.id, link_status=status)
            else:
                log.warning("payment_link_unknown_status", link_id=existing.id, link_status=status)

        amount_paise = int(round(amount * 100)) if amount is not None else order.amount_paise
        link, attempt = await self._create(
            order,
            order.link_attempt + 1,
            amount_paise,
            customer or order.customer,
        )
        await self._persist(order_id, link, attempt)
        log.info("payment_link_issued", link_id=link.id, attempt=attempt, amount=amount_paise)
        return link

    @staticmethod
    def _check_linkable(order: Order) -> None:
        if order.payment_method != PaymentMethod.UPI:
            raise InvalidOrderState(
                "Payment links are only issued for UPI orders",
                order_id=order.id,
                payment_method=order.payment_method.value,
            )
        if order.is_canceled:
            raise InvalidOrderState(
                "Order is cancelled",
                order_id=order.id,
                status=order.status.value,
            )
        if order.payment_status == PaymentStatus.PAID:
            raise AlreadyPaid(order.id, link_id=order.link_id)

    async def _create(
        self,
        order: Order,
        attempt: int,
        amount_paise: int,
        customer: Customer,
    ) -> Tuple[PaymentLink, int]:
        reference = link_reference(order.id, attempt)
        try:
            return await self._submit(order, reference, amount_paise, customer), attempt
        except DuplicateReference:
            adopted = await self._find_by_reference(reference)
            if adopted is not None:
                logger.info("payment_link_adopted", order_id=order.id, link_id=adopted.id, reference=reference)
                return adopted, attempt

        attempt += 1
        reference = link_reference(order.id, attempt)
        logger.warning("payment_link_reference_retry", order_id=order.id, reference=reference)
        return await self._submit(order, reference, amount_paise, customer), attempt

    async def _submit(
        self,
        order: Order,
        reference: str,
        amount_paise: int,
        customer: Customer,
    ) -> PaymentLink:
        return await self.gateway.create_link(
            amount=amount_paise,
            currency=self.config.CURRENCY,
            reference=reference,
            notes={"referenceId": order.id},
            callback_url=self.callback_url(order.id),
            description=self.config.PAYMENT_DESCRIPTION,
            customer=customer,
        )

    async def _find_by_reference(self, reference: str) -> Optional[PaymentLink]:
        for link in await self.gateway.list_links_by_reference(reference):
            if link.reference_id == reference:
                return link
        return None

    async def _persist(self, order_id: str, link: PaymentLink, attempt: int) -> None:
        fields = {
            "link_id": link.id,
            "link_url": link.short_url,
            "link_attempt": attempt,
            "payment_status": PaymentStatus.PENDING,
        }
        current = await self.orders.get(order_id)
        if current is None:
            raise OrderNotFound(order_id)
        if current.payment_status == PaymentStatus.PAID:
            # Paid while the link was being created: keep the paid state as is
            del fields["payment_status"]
        elif current.status in (OrderStatus.PLACED, OrderStatus.PENDING_PAYMENT):
            # A re-issued link never rewinds fulfillment
            fields["status"] = OrderStatus.PENDING_PAYMENT
        await self.orders.update(order_id, **fields)

"""
Status Resolver
===============
Answers "what is the payment status of order X".

Local state first: a terminal payment_status (paid / failed) is returned
without touching the gateway. Otherwise the order's current link is fetched,
its status normalized, and any disagreement written back. A paid link goes
through the same paid transition the webhook uses; a dead link only records
payment_status=failed, leaving fulfillment and the simulator untouched.
"""

import structlog

from pipeline.agents.transitions import PaymentTransitions
from pipeline.errors import OrderNotFound
from schemas.order_models import (
    TERMINAL_PAYMENT_STATUSES,
    PaymentStatus,
    PaymentStatusView,
    normalize_link_status,
)
from services.razorpay_client import IPaymentGateway
from storage.repositories import OrderRepository

logger = structlog.get_logger(component="status_resolver")

NO_LINK = "no_link"


class StatusResolver:
    """Local-first, gateway-fallback, self-healing status lookup"""

    def __init__(
        self,
        orders: OrderRepository,
        gateway: IPaymentGateway,
        transitions: PaymentTransitions,
    ):
        self.orders = orders
        self.gateway = gateway
        self.transitions = transitions

    async def resolve(self, order_id: str, force_remote: bool = False) -> PaymentStatusView:
        order = await self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)

        local = order.payment_status
        if local in TERMINAL_PAYMENT_STATUSES and (not force_remote or not order.link_id):
            return PaymentStatusView(reference_id=order_id, status=local, raw_status=local.value)

        if not order.link_id:
            return PaymentStatusView(reference_id=order_id, status=PaymentStatus.PENDING, raw_status=NO_LINK)

        link = await self.gateway.fetch_link(order.link_id)
        remote = normalize_link_status(link.status)

        if remote != local:
            logger.info(
                "payment_status_corrected",
                order_id=order_id,
                link_id=link.id,
                local_status=local.value,
                remote_status=remote.value,
                raw_status=link.status,
            )
            if remote == PaymentStatus.PAID:
                order = await self.transitions.mark_paid(order_id, source="status_resolver", link_id=link.id)
            elif remote == PaymentStatus.FAILED:
                # Expired or cancelled link: the order stays open for a re-issue
                order = await self.transitions.record_link_failed(
                    order_id, source="status_resolver", link_id=link.id
                )

        # Paid is terminal locally even if the remote record says otherwise
        status = PaymentStatus.PAID if order.payment_status == PaymentStatus.PAID else remote
        return PaymentStatusView(reference_id=order_id, status=status, raw_status=link.status)

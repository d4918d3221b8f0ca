"""
Event Reconciler
================
Turns Razorpay webhooks and browser-redirect callbacks into order
transitions.

Webhooks: the HMAC-SHA256 signature is checked over the exact raw body
before anything is parsed. Once it passes, the sender always gets
{"ok": true}; an unknown order or a store outage is logged and dropped so
the gateway does not keep redelivering an event we cannot apply.

Callbacks: the query string a browser brings back is never trusted. The
status resolver re-fetches the gateway's record and heals local state.
"""

import hashlib
import hmac
from typing import Any, Dict, Optional

import structlog

from config import ServiceConfig
from pipeline.agents.status_resolver import StatusResolver
from pipeline.agents.transitions import PaymentTransitions
from pipeline.errors import InvalidSignature, OrderNotFound, TransientStoreError
from schemas.event_definitions import (
    GatewayEvent,
    PaymentCapturedEvent,
    PaymentFailedEvent,
    PaymentLinkPaidEvent,
    parse_gateway_event,
)

logger = structlog.get_logger(component="reconciler")


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


class EventReconciler:
    """Webhook + callback entry points"""

    def __init__(
        self,
        transitions: PaymentTransitions,
        resolver: StatusResolver,
        config: ServiceConfig,
    ):
        self.transitions = transitions
        self.resolver = resolver
        self.config = config

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> None:
        secret = self.config.RAZORPAY_WEBHOOK_SECRET
        if not secret:
            logger.warning("webhook_signature_unverified", reason="no_webhook_secret")
            return
        if not signature:
            raise InvalidSignature("Missing signature")
        expected = compute_signature(raw_body, secret)
        if not hmac.compare_digest(expected, signature.strip()):
            raise InvalidSignature()

    async def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        try:
            self.verify_signature(raw_body, signature)
        except InvalidSignature:
            logger.warning("webhook_signature_mismatch", body_bytes=len(raw_body))
            raise

        event = parse_gateway_event(raw_body)
        log = logger.bind(event_type=event.event)

        try:
            await self._apply(event, log)
        except (OrderNotFound, TransientStoreError) as e:
            log.error("webhook_event_dropped", error=e.message, code=e.code)

        return {"ok": True}

    async def _apply(self, event: GatewayEvent, log) -> None:
        if isinstance(event, PaymentLinkPaidEvent):
            log.info("webhook_received", order_id=event.order_id, link_id=event.link_id)
            await self.transitions.mark_paid(
                event.order_id,
                source="webhook",
                link_id=event.link_id,
                payment_id=event.payment_id,
            )
        elif isinstance(event, PaymentCapturedEvent):
            log.info("webhook_received", order_id=event.order_id, payment_id=event.payment_id)
            await self.transitions.mark_paid(event.order_id, source="webhook", payment_id=event.payment_id)
        elif isinstance(event, PaymentFailedEvent):
            log.info(
                "webhook_received",
                order_id=event.order_id,
                payment_id=event.payment_id,
                error_description=event.error_description,
            )
            await self.transitions.mark_failed(event.order_id, source="webhook", payment_id=event.payment_id)
        else:
            log.info("webhook_ignored")

    async def handle_callback(
        self,
        order_id: str,
        reported_status: Optional[str],
        payment_link_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        view = await self.resolver.resolve(order_id, force_remote=True)
        logger.info(
            "payment_callback",
            order_id=order_id,
            reported_status=reported_status,
            verified_status=view.status.value,
            payment_link_id=payment_link_id,
        )
        return {
            "orderId": order_id,
            "reportedStatus": reported_status,
            "status": view.status.value,
            "rawStatus": view.raw_status,
        }

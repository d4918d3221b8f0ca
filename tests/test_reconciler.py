"""
Webhook parsing, signature verification and event reconciliation.
"""

import json

import pytest

from conftest import WEBHOOK_SECRET, make_config, seed_order
from pipeline.agents.reconciler import EventReconciler, compute_signature
from pipeline.errors import InvalidSignature, MalformedEvent
from schemas.event_definitions import (
    PaymentCapturedEvent,
    PaymentFailedEvent,
    PaymentLinkPaidEvent,
    UnrecognizedEvent,
    parse_gateway_event,
)
from schemas.order_models import CancelReason, OrderStatus, PaymentMethod, PaymentStatus


def link_paid_body(order_id, link_id="plink_1"):
    return json.dumps({
        "entity": "event",
        "account_id": "acc_test",
        "event": "payment_link.paid",
        "payload": {
            "payment_link": {"entity": {
                "id": link_id,
                "status": "paid",
                "reference_id": f"{order_id}-1",
                "amount_paid": 24900,
                "notes": {"referenceId": order_id},
            }},
            "payment": {"entity": {"id": "pay_1", "amount": 24900, "method": "upi"}},
        },
        "created_at": 1718000000,
    }).encode()


def payment_body(event, order_id, **entity):
    return json.dumps({
        "event": event,
        "payload": {"payment": {"entity": {
            "id": "pay_1",
            "amount": 24900,
            "status": "captured" if event == "payment.captured" else "failed",
            "notes": {"referenceId": order_id},
            **entity,
        }}},
    }).encode()


def sign(body):
    return compute_signature(body, WEBHOOK_SECRET)


class TestParseGatewayEvent:

    def test_payment_link_paid(self):
        event = parse_gateway_event(link_paid_body("ord_1"))
        assert isinstance(event, PaymentLinkPaidEvent)
        assert event.order_id == "ord_1"
        assert event.link_id == "plink_1"
        assert event.payment_id == "pay_1"

    def test_payment_captured(self):
        event = parse_gateway_event(payment_body("payment.captured", "ord_1"))
        assert isinstance(event, PaymentCapturedEvent)
        assert event.order_id == "ord_1"

    def test_payment_failed(self):
        body = payment_body("payment.failed", "ord_1", error_description="Payment declined by bank")
        event = parse_gateway_event(body)
        assert isinstance(event, PaymentFailedEvent)
        assert event.error_description == "Payment declined by bank"

    def test_unknown_event_type(self):
        event = parse_gateway_event(b'{"event": "refund.processed", "payload": {}}')
        assert isinstance(event, UnrecognizedEvent)
        assert event.event == "refund.processed"

    @pytest.mark.parametrize("body", [
        b"not json",
        b"[1, 2]",
        b'{"payload": {}}',
        b'{"event": 42}',
    ])
    def test_unparseable_bodies(self, body):
        with pytest.raises(MalformedEvent):
            parse_gateway_event(body)

    def test_recognized_event_without_notes(self):
        body = json.dumps({
            "event": "payment.captured",
            "payload": {"payment": {"entity": {"id": "pay_1"}}},
        }).encode()
        with pytest.raises(MalformedEvent) as exc:
            parse_gateway_event(body)
        assert exc.value.details["event_type"] == "payment.captured"
        assert any("notes" in err for err in exc.value.details["errors"])


class TestSignature:

    async def test_invalid_signature_rejected_without_mutation(self, pipeline):
        order = await seed_order(pipeline)
        with pytest.raises(InvalidSignature):
            await pipeline.reconciler.handle_webhook(link_paid_body(order.id), "deadbeef")
        assert (await pipeline.orders.get(order.id)).payment_status == PaymentStatus.PENDING

    async def test_missing_signature_rejected(self, pipeline):
        order = await seed_order(pipeline)
        with pytest.raises(InvalidSignature):
            await pipeline.reconciler.handle_webhook(link_paid_body(order.id), None)

    async def test_signature_covers_exact_bytes(self, pipeline):
        order = await seed_order(pipeline)
        body = link_paid_body(order.id)
        signature = sign(body)
        with pytest.raises(InvalidSignature):
            await pipeline.reconciler.handle_webhook(body + b" ", signature)

    async def test_no_secret_skips_verification(self, pipeline):
        order = await seed_order(pipeline)
        reconciler = EventReconciler(
            pipeline.transitions,
            pipeline.resolver,
            make_config(RAZORPAY_WEBHOOK_SECRET=""),
        )
        assert await reconciler.handle_webhook(link_paid_body(order.id), None) == {"ok": True}
        assert (await pipeline.orders.get(order.id)).payment_status == PaymentStatus.PAID


class TestWebhookTransitions:

    async def test_link_paid_marks_order_paid(self, pipeline):
        order = await seed_order(pipeline, status=OrderStatus.PENDING_PAYMENT)
        body = link_paid_body(order.id)
        assert await pipeline.reconciler.handle_webhook(body, sign(body)) == {"ok": True}

        updated = await pipeline.orders.get(order.id)
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.status == OrderStatus.PLACED

    async def test_captured_keeps_later_fulfillment_state(self, pipeline):
        order = await seed_order(pipeline, status=OrderStatus.ON_THE_WAY)
        body = payment_body("payment.captured", order.id)
        await pipeline.reconciler.handle_webhook(body, sign(body))

        updated = await pipeline.orders.get(order.id)
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.status == OrderStatus.ON_THE_WAY

    async def test_duplicate_delivery_is_idempotent(self, pipeline):
        order = await seed_order(pipeline, status=OrderStatus.PENDING_PAYMENT)
        body = link_paid_body(order.id)
        await pipeline.reconciler.handle_webhook(body, sign(body))
        first = await pipeline.orders.get(order.id)
        await pipeline.reconciler.handle_webhook(body, sign(body))
        second = await pipeline.orders.get(order.id)
        assert second == first

    async def test_failed_cancels_order(self, pipeline):
        order = await seed_order(pipeline, status=OrderStatus.PENDING_PAYMENT)
        await pipeline.start_simulator(order.id)
        body = payment_body("payment.failed", order.id)
        await pipeline.reconciler.handle_webhook(body, sign(body))

        updated = await pipeline.orders.get(order.id)
        assert updated.payment_status == PaymentStatus.FAILED
        assert updated.status == OrderStatus.CANCELED
        assert updated.cancel_reason == CancelReason.PAYMENT_FAILED
        assert not pipeline.simulators.is_running(order.id)

    async def test_failed_after_paid_is_ignored(self, pipeline):
        order = await seed_order(pipeline, status=OrderStatus.PENDING_PAYMENT)
        paid = link_paid_body(order.id)
        failed = payment_body("payment.failed", order.id)
        await pipeline.reconciler.handle_webhook(paid, sign(paid))
        await pipeline.reconciler.handle_webhook(failed, sign(failed))

        updated = await pipeline.orders.get(order.id)
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.status == OrderStatus.PLACED

    async def test_failed_after_delivery_is_ignored(self, pipeline):
        order = await seed_order(pipeline, status=OrderStatus.DELIVERED)
        body = payment_body("payment.failed", order.id)
        await pipeline.reconciler.handle_webhook(body, sign(body))
        assert (await pipeline.orders.get(order.id)).status == OrderStatus.DELIVERED

    async def test_paid_revives_payment_failed_order(self, pipeline):
        order = await seed_order(pipeline, status=OrderStatus.PENDING_PAYMENT)
        failed = payment_body("payment.failed", order.id)
        paid = payment_body("payment.captured", order.id)
        await pipeline.reconciler.handle_webhook(failed, sign(failed))
        await pipeline.reconciler.handle_webhook(paid, sign(paid))

        updated = await pipeline.orders.get(order.id)
        assert updated.payment_status == PaymentStatus.PAID
        assert updated.status == OrderStatus.PLACED
        assert updated.cancel_reason is None
        assert pipeline.simulators.is_running(order.id)

    async def test_paid_after_customer_cancel_is_not_applied(self, pipeline):
        order = await seed_order(pipeline, payment_method=PaymentMethod.UPI)
        await pipeline.cancellation.cancel(order.id)
        body = link_paid_body(order.id)
        assert await pipeline.reconciler.handle_webhook(body, sign(body)) == {"ok": True}

        updated = await pipeline.orders.get(order.id)
        assert updated.status == OrderStatus.CANCELED
        assert updated.payment_status == PaymentStatus.PENDING

    async def test_unrecognized_event_acknowledged(self, pipeline):
        order = await seed_order(pipeline)
        body = json.dumps({"event": "order.paid", "payload": {}}).encode()
        assert await pipeline.reconciler.handle_webhook(body, sign(body)) == {"ok": True}
        assert await pipeline.orders.get(order.id) == order

    async def test_unknown_order_acknowledged(self, pipeline):
        body = link_paid_body("ord_missing")
        assert await pipeline.reconciler.handle_webhook(body, sign(body)) == {"ok": True}

    async def test_malformed_signed_event_raises(self, pipeline):
        body = b'{"event": "payment.failed", "payload": {}}'
        with pytest.raises(MalformedEvent):
            await pipeline.reconciler.handle_webhook(body, sign(body))


class TestCallback:

    async def test_reported_status_is_not_trusted(self, pipeline, gateway):
        order = await seed_order(pipeline)
        link = await pipeline.links.ensure_link(order.id)

        result = await pipeline.reconciler.handle_callback(order.id, "paid", payment_link_id=link.id)
        assert result["reportedStatus"] == "paid"
        assert result["status"] == "pending"
        assert (await pipeline.orders.get(order.id)).payment_status == PaymentStatus.PENDING

    async def test_callback_heals_from_gateway(self, pipeline, gateway):
        order = await seed_order(pipeline)
        link = await pipeline.links.ensure_link(order.id)
        gateway.set_status(link.id, "paid")

        result = await pipeline.reconciler.handle_callback(order.id, "paid", payment_link_id=link.id)
        assert result["status"] == "paid"
        assert result["rawStatus"] == "paid"
        assert (await pipeline.orders.get(order.id)).payment_status == PaymentStatus.PAID

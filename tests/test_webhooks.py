"""Tests for the webhooks blueprint and event dispatch.

Covers:
- Signature verification (missing header, missing secret, Stripe disabled,
  invalid signature, real signed payloads)
- CORS preflight
- Idempotent event processing (duplicate events skipped)
- Routing of checkout / payment_intent / subscription / unknown events
- Handler failures answered with 500 so Stripe redelivers
"""

import json
from unittest.mock import patch

from app.extensions import db
from app.models.purchase import Purchase
from app.models.service_consumption import ServiceConsumption
from app.models.stripe_event import StripeEvent
from app.services.stripe_gateway import DisabledGateway, StripeGateway, EXTENSION_KEY


def _checkout_session(session_id="cs_test_1", line_items=None):
    return {
        "id": session_id,
        "object": "checkout.session",
        "payment_status": "paid",
        "customer": None,
        "customer_details": {"email": "jane@example.com"},
        "currency": "usd",
        "amount_total": 5000,
        "payment_intent": "pi_test_1",
        "line_items": {"object": "list", "data": line_items or []},
    }


def _line_item(price_id="price_abc", quantity=1, unit_amount=5000):
    return {
        "id": f"li_{price_id}",
        "quantity": quantity,
        "price": {
            "id": price_id,
            "unit_amount": unit_amount,
            "product": {"id": "prod_xyz", "name": "Logo Package", "metadata": {}},
        },
    }


def _post(client, data="{}", signature="valid_sig"):
    headers = {"Stripe-Signature": signature} if signature else {}
    return client.post(
        "/stripe/webhooks",
        data=data,
        content_type="application/json",
        headers=headers,
    )


class TestWebhookSignature:
    """Tests for webhook signature validation."""

    def test_missing_signature_returns_400(self, client, gateway):
        """POST /stripe/webhooks without signature -> 400."""
        resp = _post(client, signature=None)
        assert resp.status_code == 400
        assert b"Missing Stripe signature header" in resp.data
        gateway.construct_event.assert_not_called()

    def test_missing_secret_returns_400(self, client, app, gateway, monkeypatch):
        """No STRIPE_WEBHOOK_SECRET -> 400, distinct from a bad signature."""
        monkeypatch.setitem(app.config, "STRIPE_WEBHOOK_SECRET", None)
        resp = _post(client)
        assert resp.status_code == 400
        assert b"Missing webhook endpoint secret" in resp.data
        gateway.construct_event.assert_not_called()

    def test_stripe_disabled_returns_400(self, client, app):
        """No Stripe API key -> disabled gateway -> 400 'Stripe not initialized'."""
        original = app.extensions[EXTENSION_KEY]
        app.extensions[EXTENSION_KEY] = DisabledGateway()
        try:
            resp = _post(client)
        finally:
            app.extensions[EXTENSION_KEY] = original
        assert resp.status_code == 400
        assert b"Stripe not initialized" in resp.data

    def test_invalid_signature_returns_400(self, client, app, sign):
        """A signature made with the wrong secret is rejected with the reason."""
        payload = json.dumps({"id": "evt_1", "type": "charge.refunded"})
        resp = _post(client, data=payload, signature=sign(payload, secret="whsec_other"))
        assert resp.status_code == 400
        assert resp.mimetype == "text/plain"
        assert b"Webhook signature verification failed" in resp.data

    def test_tampered_payload_returns_400(self, client, sign):
        """Body changed after signing -> 400, nothing processed."""
        payload = json.dumps({"id": "evt_1", "type": "payment_intent.succeeded",
                              "data": {"object": {"id": "pi_1"}}})
        signature = sign(payload)
        resp = _post(client, data=payload.replace("pi_1", "pi_2"), signature=signature)
        assert resp.status_code == 400
        assert StripeEvent.query.count() == 0

    def test_signed_non_object_body_returns_400(self, client, sign):
        """Correctly signed JSON that is not an event object -> 400 text, no writes."""
        payload = "[1, 2]"
        resp = _post(client, data=payload, signature=sign(payload))
        assert resp.status_code == 400
        assert resp.mimetype == "text/plain"
        assert b"Invalid payload" in resp.data
        assert StripeEvent.query.count() == 0

    def test_valid_signature_unknown_event_is_noop(self, client, sign):
        """charge.refunded (not handled) -> 200 and no datastore writes."""
        payload = json.dumps({
            "id": "evt_refund_001",
            "type": "charge.refunded",
            "data": {"object": {"id": "ch_1"}},
        })
        resp = _post(client, data=payload, signature=sign(payload))
        assert resp.status_code == 200
        assert resp.data == b""
        assert StripeEvent.query.count() == 0
        assert Purchase.query.count() == 0
        assert ServiceConsumption.query.count() == 0

    def test_signed_checkout_end_to_end(self, client, gateway, seed_data, sign):
        """Real signature check + mocked Stripe API -> purchase recorded."""
        gateway.construct_event.side_effect = StripeGateway("sk_test_fake").construct_event
        session = _checkout_session(line_items=[_line_item(quantity=2)])
        gateway.retrieve_session.return_value = session
        payload = json.dumps({
            "id": "evt_signed_001",
            "type": "checkout.session.completed",
            "data": {"object": {k: v for k, v in session.items() if k != "line_items"}},
        }, indent=2)

        resp = _post(client, data=payload, signature=sign(payload))

        assert resp.status_code == 200
        purchase = Purchase.query.one()
        assert purchase.total_amount == 10000
        assert purchase.product_name == "Logo Design"


class TestWebhookCors:

    def test_options_preflight_returns_204(self, client):
        resp = client.options("/stripe/webhooks")
        assert resp.status_code == 204
        assert resp.headers["Access-Control-Allow-Origin"] == "*"
        assert resp.headers["Access-Control-Allow-Methods"] == "POST"
        assert "stripe-signature" in resp.headers["Access-Control-Allow-Headers"]

    def test_post_response_carries_cors_headers(self, client):
        resp = _post(client, signature=None)
        assert resp.headers["Access-Control-Allow-Origin"] == "*"


class TestWebhookIdempotency:
    """Tests for duplicate event handling."""

    def test_duplicate_event_is_skipped(self, client, gateway, app):
        """Event ID already in stripe_events -> 200, handler not run."""
        existing = StripeEvent(
            stripe_event_id="evt_duplicate_123",
            event_type="checkout.session.completed",
        )
        db.session.add(existing)
        db.session.commit()

        gateway.construct_event.return_value = {
            "id": "evt_duplicate_123",
            "type": "checkout.session.completed",
            "data": {"object": {"id": "cs_dup"}},
        }

        resp = _post(client)
        assert resp.status_code == 200
        gateway.retrieve_session.assert_not_called()
        assert Purchase.query.count() == 0

    def test_redelivered_checkout_creates_purchase_once(self, client, gateway, seed_data):
        """Same checkout event delivered twice -> one purchase, one entitlement."""
        gateway.construct_event.return_value = {
            "id": "evt_redeliver_001",
            "type": "checkout.session.completed",
            "data": {"object": _checkout_session()},
        }
        gateway.retrieve_session.return_value = _checkout_session(
            line_items=[_line_item()]
        )

        assert _post(client).status_code == 200
        assert _post(client).status_code == 200

        assert Purchase.query.count() == 1
        assert ServiceConsumption.query.count() == 1
        assert gateway.retrieve_session.call_count == 1

    def test_handled_event_is_recorded(self, client, gateway):
        gateway.construct_event.return_value = {
            "id": "evt_pi_001",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_nothing"}},
        }
        resp = _post(client)
        assert resp.status_code == 200

        evt = StripeEvent.query.filter_by(stripe_event_id="evt_pi_001").first()
        assert evt is not None
        assert evt.event_type == "payment_intent.succeeded"


class TestWebhookDispatch:
    """Routing by event type."""

    def test_async_payment_succeeded_routes_to_checkout(self, client, gateway, seed_data):
        gateway.construct_event.return_value = {
            "id": "evt_async_001",
            "type": "checkout.session.async_payment_succeeded",
            "data": {"object": _checkout_session(session_id="cs_async")},
        }
        gateway.retrieve_session.return_value = _checkout_session(
            session_id="cs_async", line_items=[_line_item()]
        )

        resp = _post(client)
        assert resp.status_code == 200
        assert Purchase.query.filter_by(stripe_session_id="cs_async").count() == 1

    def test_subscription_event_is_logged_only(self, client, gateway):
        gateway.construct_event.return_value = {
            "id": "evt_sub_001",
            "type": "customer.subscription.updated",
            "data": {"object": {"id": "sub_1", "status": "active"}},
        }
        resp = _post(client)
        assert resp.status_code == 200
        assert Purchase.query.count() == 0
        gateway.retrieve_session.assert_not_called()

    def test_unknown_event_accepted(self, client, gateway):
        """Unknown event type -> 200, not recorded, no handler called."""
        gateway.construct_event.return_value = {
            "id": "evt_unknown_001",
            "type": "some.unknown.event",
            "data": {"object": {}},
        }
        resp = _post(client)
        assert resp.status_code == 200
        assert StripeEvent.query.count() == 0

    def test_handler_exception_returns_500(self, client, gateway):
        """Session cannot be retrieved at all -> 500 so Stripe retries."""
        gateway.construct_event.return_value = {
            "id": "evt_fail_001",
            "type": "checkout.session.completed",
            "data": {"object": _checkout_session(session_id="cs_fail")},
        }
        gateway.retrieve_session.side_effect = RuntimeError("stripe is down")

        resp = _post(client)
        assert resp.status_code == 500
        assert b"Webhook handler failed" in resp.data
        assert StripeEvent.query.count() == 0

    @patch("app.services.webhook_service.reconcile_payment_intent")
    def test_reconcile_failure_returns_500(self, mock_reconcile, client, gateway):
        mock_reconcile.side_effect = RuntimeError("database unavailable")
        gateway.construct_event.return_value = {
            "id": "evt_pi_fail",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_1"}},
        }
        resp = _post(client)
        assert resp.status_code == 500
        assert StripeEvent.query.count() == 0

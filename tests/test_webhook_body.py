"""Tests for raw body capture and payload selection."""

import json

from werkzeug.test import EnvironBuilder

from app.middleware.raw_body import (
    RAW_BODY_ENVIRON_KEY,
    RawBodyMiddleware,
    select_raw_payload,
)
from app.services.stripe_gateway import StripeGateway


class TestSelectRawPayload:

    def test_raw_bytes_preferred(self):
        payload = select_raw_payload(raw_body=b'{"a": 1}', body=b"ignored")
        assert payload.data == b'{"a": 1}'
        assert payload.source == "raw_body"
        assert not payload.degraded

    def test_raw_string_encoded(self):
        payload = select_raw_payload(raw_body='{"name": "café"}', body=b"ignored")
        assert payload.data == '{"name": "café"}'.encode("utf-8")
        assert payload.source == "raw_body_str"

    def test_body_bytes(self):
        payload = select_raw_payload(body=b'{"b": 2}')
        assert payload.data == b'{"b": 2}'
        assert payload.source == "body"

    def test_body_string(self):
        payload = select_raw_payload(body='{"b": 2}')
        assert payload.data == b'{"b": 2}'
        assert payload.source == "body_str"

    def test_parsed_body_is_degraded(self):
        payload = select_raw_payload(body={"id": "evt_1", "type": "x"})
        assert payload.source == "parsed_json"
        assert payload.degraded
        assert json.loads(payload.data) == {"id": "evt_1", "type": "x"}

    def test_empty_body_is_degraded(self):
        payload = select_raw_payload(body=b"")
        assert payload.data == b""
        assert payload.source == "empty"
        assert payload.degraded


class TestRawBodyMiddleware:

    def _run(self, path, method="POST", data=b""):
        seen = {}

        def inner_app(environ, start_response):
            seen["raw"] = environ.get(RAW_BODY_ENVIRON_KEY)
            seen["body"] = environ["wsgi.input"].read()
            start_response("200 OK", [])
            return [b""]

        middleware = RawBodyMiddleware(inner_app, ["/stripe/webhooks"])
        environ = EnvironBuilder(path=path, method=method, data=data,
                                 content_type="application/json").get_environ()
        middleware(environ, lambda status, headers: None)
        return seen

    def test_captures_webhook_body_and_rewinds(self):
        body = b'{\n  "id": "evt_1",\n  "type": "charge.refunded"\n}'
        seen = self._run("/stripe/webhooks", data=body)
        assert seen["raw"] == body
        assert seen["body"] == body

    def test_other_paths_untouched(self):
        seen = self._run("/api/purchases", data=b"{}")
        assert seen["raw"] is None

    def test_non_post_untouched(self):
        seen = self._run("/stripe/webhooks", method="OPTIONS")
        assert seen["raw"] is None


class TestSignedBodyThroughApp:

    def test_exact_bytes_reach_verifier(self, client, sign):
        """Oddly formatted JSON keeps its signature through the app."""
        payload = '{"id":"evt_fmt_001",   "type": "charge.refunded",\n"data":{"object":{}}}'
        resp = client.post(
            "/stripe/webhooks",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign(payload)},
        )
        assert resp.status_code == 200

    def test_string_body_fallback_verifies(self, sign):
        """No raw buffer, body as the signed UTF-8 string -> verification passes."""
        raw = '{"id": "evt_str_001", "type": "charge.refunded", "note": "naïve"}'
        payload = select_raw_payload(raw_body=None, body=raw)

        event = StripeGateway("sk_test_fake").construct_event(
            payload.data, sign(raw), "whsec_test_fake"
        )
        assert event["id"] == "evt_str_001"

"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events. CSRF-exempt.
The raw body is captured by RawBodyMiddleware before Flask parses it.

Responses (Stripe is the only client):
    204  OPTIONS preflight
    400  missing signature / missing secret / Stripe disabled / bad signature
    500  handler failed, Stripe will redeliver
    200  processed (even if some line items were skipped)
"""

import logging

from flask import Blueprint, Response, request

from app.middleware.raw_body import extract_raw_payload
from app.services.errors import WebhookError
from app.services.webhook_service import handle_webhook_event, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.after_request
def add_cors_headers(response):
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "POST"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, stripe-signature"
    return response


def _text(message, status):
    return Response(message, status=status, mimetype="text/plain")


@webhooks_bp.route("/webhooks", methods=["POST", "OPTIONS"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to handle_webhook_event (idempotent via stripe_events table)
    4. Return 200 to acknowledge receipt, 500 to ask for redelivery
    """
    if request.method == "OPTIONS":
        return _text("", 204)

    payload = extract_raw_payload(request)
    sig_header = request.headers.get("Stripe-Signature")

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload.data, sig_header)
    except WebhookError as e:
        return _text(e.message, e.status_code)

    # --- Process event (idempotent) ---
    success, message = handle_webhook_event(event)

    if success:
        return _text("", 200)
    logger.error(f"Webhook processing failed: {message}")
    return _text("Webhook handler failed", 500)

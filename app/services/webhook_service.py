"""Webhook service — signature verification and event dispatch.

Responsible for:
- Verifying the Stripe-Signature header against the raw body
- Routing typed events to their handlers
- Idempotency via the stripe_events table
- Owning the commit for everything a handler wrote

Retry contract with Stripe: handle_webhook_event() returning success means
the blueprint answers 200 and Stripe never redelivers; returning failure
means 500 and Stripe retries later. Any handler change has to keep that
mapping, it is the only retry mechanism there is.
"""

import logging

from flask import current_app

from app.extensions import db
from app.models.stripe_event import StripeEvent
from app.services.checkout_service import handle_checkout_completed
from app.services.errors import (
    MissingSignatureError,
    MissingWebhookSecretError,
    PaymentsDisabledError,
    SignatureVerificationFailed,
)
from app.services.events import (
    CheckoutCompleted,
    PaymentIntentSucceeded,
    SubscriptionChanged,
    Unhandled,
    parse_event,
)
from app.services.purchase_service import reconcile_payment_intent
from app.services.stripe_gateway import get_payment_gateway

logger = logging.getLogger(__name__)


def redact(value, keep=8):
    """First `keep` characters followed by '...', for log lines."""
    if not value:
        return None
    return f"{value[:keep]}..."


# ──────────────────────────────────────────────
# Verification
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify a webhook body and return the decoded event dict.

    Raises (all answered with 400):
        MissingSignatureError      no Stripe-Signature header
        MissingWebhookSecretError  STRIPE_WEBHOOK_SECRET not configured
        PaymentsDisabledError      STRIPE_SECRET_KEY not configured
        SignatureVerificationFailed
    """
    if not sig_header:
        logger.error("Webhook received without Stripe-Signature header")
        raise MissingSignatureError()

    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        logger.error("Webhook endpoint secret is not configured")
        raise MissingWebhookSecretError()

    gateway = get_payment_gateway()
    if not gateway.enabled:
        logger.error("Webhook received but Stripe is not initialized")
        raise PaymentsDisabledError()

    try:
        event = gateway.construct_event(payload, sig_header, secret)
    except SignatureVerificationFailed as e:
        logger.error(
            f"Webhook signature verification failed: {e.reason} "
            f"(signature={redact(sig_header, 20)}, secret={redact(secret)}, "
            f"payload_length={len(payload or b'')})"
        )
        raise

    logger.info(f"Webhook signature verified: {event.get('type')} (ID: {event.get('id')})")
    return event


# ──────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────

def _handle_checkout(event, gateway):
    handle_checkout_completed(event, gateway)


def _handle_payment_intent(event, gateway):
    reconcile_payment_intent(event.payment_intent_id)


def _handle_subscription_changed(event, gateway):
    """Subscriptions are not reconciled into purchases; log only."""
    logger.info(f"Subscription changed: {event.subscription_id} ({event.event_type})")


def _handle_unhandled(event, gateway):
    logger.info(f"Unhandled event type {event.event_type} (ID: {event.event_id})")


HANDLERS = {
    CheckoutCompleted: _handle_checkout,
    PaymentIntentSucceeded: _handle_payment_intent,
    SubscriptionChanged: _handle_subscription_changed,
    Unhandled: _handle_unhandled,
}


def dispatch(event, gateway):
    """Run the handler for a typed event. Never raises for unknown types."""
    HANDLERS.get(type(event), _handle_unhandled)(event, gateway)


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: handled events are recorded in stripe_events, in the same
    commit as their writes. A duplicate event ID returns immediately.
    Unhandled event types write nothing at all.

    Returns (success: bool, message: str).
    """
    typed = parse_event(event)

    tracked = bool(typed.event_id) and not isinstance(typed, Unhandled)

    try:
        if tracked and StripeEvent.seen(typed.event_id):
            logger.info(f"Duplicate webhook event {typed.event_id}, skipping")
            return True, "already_processed"

        logger.info(f"Processing {typed.event_type} (ID: {typed.event_id})")
        dispatch(typed, get_payment_gateway())

        if tracked:
            StripeEvent.record(typed.event_id, typed.event_type)
        db.session.commit()
    except Exception as e:
        logger.error(
            f"Error handling webhook {typed.event_type} (ID: {typed.event_id}): {e}",
            exc_info=True,
        )
        db.session.rollback()
        return False, str(e)

    logger.info(f"Successfully processed {typed.event_type} event")
    return True, "processed"

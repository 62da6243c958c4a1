"""Checkout service — turns a completed Checkout Session into purchases.

Flow for checkout.session.completed / async_payment_succeeded:
  1. Re-fetch the session with line items + products expanded
     (falls back to the bare session; if that fails too, raise)
  2. Resolve the customer email (session details, upgraded from the
     Stripe customer record when available)
  3. Take line items from the session, or list them separately
  4. Match + record each line item in its own SAVEPOINT; one bad item
     never blocks the others
"""

import logging

from app.extensions import db
from app.services.errors import PurchaseRecordError
from app.services.events import CheckoutSessionRef
from app.services.purchase_service import (
    UNKNOWN_EMAIL,
    CheckoutContext,
    record_purchase,
)
from app.services.service_matcher import CatalogIndex, match_service, resolve_product

logger = logging.getLogger(__name__)

SESSION_EXPAND = ["line_items", "line_items.data.price.product"]
LINE_ITEMS_EXPAND = ["data.price.product"]


def _retrieve_full_session(session_id, gateway):
    """Fetch the session with expansions, or bare as a fallback.

    Raises whatever the bare fetch raises when both attempts fail.
    """
    try:
        session = gateway.retrieve_session(session_id, expand=SESSION_EXPAND)
        full = CheckoutSessionRef.from_stripe(session)
        logger.info(
            f"Retrieved full session {session_id}. "
            f"Line items: {len(full.line_items or [])}"
        )
        return full
    except Exception as e:
        logger.error(f"Error retrieving session {session_id} with expansions: {e}")

    session = gateway.retrieve_session(session_id)
    logger.warning(f"Retrieved session {session_id} without expansions as fallback")
    return CheckoutSessionRef.from_stripe(session)


def _resolve_customer_email(session, gateway):
    """Prefer the Stripe customer's email over the one typed at checkout."""
    email = session.customer_email
    if not session.customer_id:
        return email

    try:
        customer = gateway.retrieve_customer(session.customer_id)
    except Exception as e:
        logger.warning(
            f"Error retrieving customer {session.customer_id} (not critical): {e}"
        )
        return email

    if customer.get("deleted"):
        return email
    return customer.get("email") or email


def _get_line_items(session_id, full_session, gateway):
    if full_session.line_items is not None:
        return full_session.line_items

    logger.warning(
        f"No line items in session {session_id}, listing them separately"
    )
    try:
        result = gateway.list_line_items(session_id, expand=LINE_ITEMS_EXPAND)
    except Exception as e:
        logger.error(f"Error retrieving line items for session {session_id}: {e}")
        return []

    line_items = result.get("data") or []
    if not line_items:
        logger.warning(f"No line items found for session {session_id}")
    return line_items


def process_line_item(line_item, context, catalog, gateway):
    """Resolve product + service for one line item and record the purchase."""
    price = line_item.get("price") or {}
    product = resolve_product(price, gateway)
    match = match_service(price, product, catalog)
    return record_purchase(line_item, price, product, match, context)


def handle_checkout_completed(event, gateway):
    """Record purchases for every line item of a completed checkout.

    Returns the number of line items recorded. Per-item failures are
    logged and skipped; session retrieval failures and purchase insert
    failures propagate to the dispatcher.
    """
    session = event.session
    logger.info(
        f"Processing {event.event_type} for session {session.id} "
        f"(payment_status={session.payment_status}, "
        f"amount_total={session.amount_total} {session.currency})"
    )

    full_session = _retrieve_full_session(session.id, gateway)

    context = CheckoutContext(
        session_id=session.id,
        customer_email=_resolve_customer_email(session, gateway) or UNKNOWN_EMAIL,
        customer_id=session.customer_id or full_session.customer_id,
        payment_status=session.payment_status,
        currency=session.currency,
        amount_total=session.amount_total,
        payment_intent_id=session.payment_intent_id or full_session.payment_intent_id,
    )

    line_items = _get_line_items(session.id, full_session, gateway)
    catalog = CatalogIndex.load()

    recorded = 0
    for index, line_item in enumerate(line_items, start=1):
        price = line_item.get("price") or {}
        logger.info(
            f"Processing line item {index}/{len(line_items)} of session {session.id}: "
            f"price={price.get('id')} quantity={line_item.get('quantity')}"
        )
        try:
            with db.session.begin_nested():
                process_line_item(line_item, context, catalog, gateway)
            recorded += 1
        except PurchaseRecordError:
            raise
        except Exception as e:
            logger.error(
                f"Error processing line item {index} of session {session.id} "
                f"(event {event.event_id}): {e}",
                exc_info=True,
            )

    logger.info(
        f"Completed checkout session {session.id}: "
        f"{recorded}/{len(line_items)} line items recorded"
    )
    return recorded

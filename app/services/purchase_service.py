"""Purchase service — purchase records and service entitlements.

Responsible for:
- Recording one Purchase per checkout line item
- Linking purchases to users by email
- Creating / refreshing the matching ServiceConsumption (entitlement)
- Flipping pending purchases to paid on payment_intent.succeeded
- Read queries for the admin and user dashboards

Writes only flush(); the webhook dispatcher owns the commit.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models.purchase import Purchase
from app.models.service_consumption import ServiceConsumption
from app.models.user import User
from app.services.errors import PurchaseRecordError

logger = logging.getLogger(__name__)

UNKNOWN_EMAIL = "unknown@example.com"
MAX_QUERY_LIMIT = 200


@dataclass(frozen=True)
class CheckoutContext:
    """Session-level values shared by every line item of one checkout."""

    session_id: str
    customer_email: str
    customer_id: Optional[str]
    payment_status: Optional[str]
    currency: str
    amount_total: int
    payment_intent_id: Optional[str]


def _now():
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────
# Identity
# ──────────────────────────────────────────────

def find_user_by_email(email):
    """Exact-match user lookup.

    A failed lookup is logged and treated as "no user": a missing link
    must never block recording the purchase.
    """
    if not email:
        return None
    try:
        with db.session.begin_nested():
            return User.query.filter_by(email=email).first()
    except SQLAlchemyError as e:
        logger.error(f"Error finding user by email {email}: {e}")
        return None


# ──────────────────────────────────────────────
# Purchases
# ──────────────────────────────────────────────

def record_purchase(line_item, price, product, match, context):
    """Insert a Purchase for one line item, then upsert the entitlement.

    Always inserts. The entitlement is only written when the checkout
    email belongs to a known user; guest purchases stay unlinked.

    Raises PurchaseRecordError if the purchase row cannot be written.
    """
    price = price or {}
    user = find_user_by_email(context.customer_email)

    quantity = line_item.get("quantity") or 1
    unit_price = price.get("unit_amount") or 0
    now = _now()

    purchase = Purchase(
        user_id=user.id if user else None,
        user_email=context.customer_email,
        user_name=(user.display_name if user else None) or context.customer_email,
        stripe_session_id=context.session_id,
        stripe_customer_id=context.customer_id,
        stripe_product_id=product.get("id"),
        stripe_price_id=price.get("id"),
        stripe_payment_intent_id=context.payment_intent_id,
        product_name=match.service_name,
        product_description=product.get("description"),
        category=match.category,
        service_type=match.service_type,
        service_id=match.service_id,
        quantity=quantity,
        unit_price=unit_price,
        total_amount=unit_price * quantity,
        currency=context.currency,
        status="purchased",
        payment_status="paid" if context.payment_status == "paid" else "pending",
        metadata_=dict(product.get("metadata") or {}),
        purchased_at=now,
        created_at=now,
        updated_at=now,
    )

    try:
        db.session.add(purchase)
        db.session.flush()
    except SQLAlchemyError as e:
        raise PurchaseRecordError(
            f"Could not record purchase for session {context.session_id}: {e}"
        ) from e

    logger.info(
        f"Created purchase record {purchase.id} for {context.customer_email} "
        f"({purchase.product_name}, {purchase.total_amount} {purchase.currency})"
    )

    if user is None:
        logger.info(
            f"No user found for {context.customer_email}, skipping service consumption"
        )
        return purchase

    # The purchase is kept even if the entitlement write fails.
    try:
        with db.session.begin_nested():
            upsert_service_consumption(user, purchase)
    except SQLAlchemyError as e:
        logger.error(
            f"Error creating/updating service consumption for user {user.id} "
            f"(purchase {purchase.id}): {e}"
        )

    return purchase


def upsert_service_consumption(user, purchase):
    """Create or refresh the user's entitlement for this purchase.

    Keyed on (user, category, Stripe product). An existing record is reset
    to "purchased" and its note overwritten; otherwise a new record starts
    now. Look-up-then-write, so not safe against concurrent deliveries.
    """
    now = _now()
    existing = ServiceConsumption.query.filter_by(
        user_id=user.id,
        service_category=purchase.category,
        stripe_product_id=purchase.stripe_product_id,
    ).first()

    if existing:
        existing.status = "purchased"
        existing.purchase_id = purchase.stripe_session_id
        existing.purchased_at = now
        existing.total_amount = purchase.total_amount
        existing.updated_at = now
        existing.notes = f"Updated from purchase: {purchase.product_name}"
        db.session.flush()
        logger.info(f"Updated service consumption record for user {user.id}")
        return existing

    consumption = ServiceConsumption(
        user_id=user.id,
        user_email=purchase.user_email,
        user_name=purchase.user_name,
        service_id=purchase.service_id or purchase.stripe_product_id,
        service_name=purchase.product_name,
        service_category=purchase.category,
        service_type=purchase.service_type,
        purchase_id=purchase.stripe_session_id,
        stripe_product_id=purchase.stripe_product_id,
        total_amount=purchase.total_amount,
        currency=purchase.currency,
        status="purchased",
        start_date=now,
        purchased_at=now,
        created_at=now,
        updated_at=now,
        notes=f"Purchased: {purchase.product_name}",
    )
    db.session.add(consumption)
    db.session.flush()
    logger.info(f"Created new service consumption record for user {user.id}")
    return consumption


def reconcile_payment_intent(payment_intent_id):
    """Mark every purchase for this payment intent as paid.

    Zero matches is normal (unrelated payment, or the checkout has not been
    processed yet). Safe to repeat: already-paid rows are rewritten with
    the same status and a fresh timestamp.

    Returns the number of purchases updated.
    """
    if not payment_intent_id:
        return 0

    purchases = Purchase.query.filter_by(
        stripe_payment_intent_id=payment_intent_id
    ).all()

    now = _now()
    for purchase in purchases:
        purchase.payment_status = "paid"
        purchase.paid_at = now
        purchase.updated_at = now

    if purchases:
        db.session.flush()
        logger.info(
            f"Updated {len(purchases)} purchase records for payment intent {payment_intent_id}"
        )
    return len(purchases)


# ──────────────────────────────────────────────
# Queries
# ──────────────────────────────────────────────

def clamp_limit(limit, default=50):
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        return default
    return max(1, min(limit, MAX_QUERY_LIMIT))


def list_purchases(limit=50, user_id=None):
    """Newest purchases first.

    Returns (purchases, has_more).
    """
    query = Purchase.query
    if user_id:
        query = query.filter_by(user_id=user_id)
    rows = (
        query
        .order_by(Purchase.purchased_at.desc(), Purchase.created_at.desc())
        .limit(limit + 1)
        .all()
    )
    return rows[:limit], len(rows) > limit


def purchase_stats(top_categories=5):
    """Revenue and category breakdown (paid purchases only), counts by status."""
    counts = dict(
        db.session.query(Purchase.payment_status, db.func.count(Purchase.id))
        .group_by(Purchase.payment_status)
        .all()
    )
    revenue = (
        db.session.query(db.func.coalesce(db.func.sum(Purchase.total_amount), 0))
        .filter(Purchase.payment_status == "paid")
        .scalar()
    )
    revenue = int(revenue or 0)
    paid = counts.get("paid", 0)

    category_revenue = db.func.sum(Purchase.total_amount)
    categories = (
        db.session.query(
            Purchase.category,
            db.func.count(Purchase.id),
            category_revenue,
        )
        .filter(Purchase.payment_status == "paid")
        .group_by(Purchase.category)
        .order_by(category_revenue.desc(), Purchase.category.asc())
        .limit(top_categories)
        .all()
    )

    return {
        "totalPurchases": sum(counts.values()),
        "totalRevenue": revenue,
        "paidPurchases": paid,
        "pendingPurchases": counts.get("pending", 0),
        "failedPurchases": counts.get("failed", 0),
        "averageOrderValue": revenue / paid if paid else 0,
        "topCategories": [
            {"category": category, "count": count, "revenue": int(total or 0)}
            for category, count, total in categories
        ],
    }


def purchased_services_for_user(user_id):
    """Paid purchases and entitlements for the user dashboard."""
    purchases = (
        Purchase.query
        .filter_by(user_id=user_id, payment_status="paid")
        .order_by(Purchase.purchased_at.desc())
        .all()
    )
    consumptions = (
        ServiceConsumption.query
        .filter_by(user_id=user_id)
        .order_by(ServiceConsumption.purchased_at.desc())
        .all()
    )
    return purchases, consumptions

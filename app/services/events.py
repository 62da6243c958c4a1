"""Typed view of the Stripe events the webhook understands.

parse_event() turns a verified event dict into one of:

    CheckoutCompleted        checkout.session.completed
                             checkout.session.async_payment_succeeded
    PaymentIntentSucceeded   payment_intent.succeeded
    SubscriptionChanged      customer.subscription.created / .updated
    Unhandled                anything else

Handlers receive these instead of digging through event["data"]["object"].
"""

from dataclasses import dataclass
from typing import Optional

CHECKOUT_EVENT_TYPES = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
)
PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
SUBSCRIPTION_EVENT_TYPES = (
    "customer.subscription.created",
    "customer.subscription.updated",
)


def ref_id(value):
    """Stripe references are either an ID string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


@dataclass(frozen=True)
class CheckoutSessionRef:
    id: str
    payment_status: Optional[str] = None
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    currency: str = "usd"
    amount_total: int = 0
    payment_intent_id: Optional[str] = None
    line_items: Optional[list] = None  # None when not expanded

    @classmethod
    def from_stripe(cls, session):
        customer_details = session.get("customer_details") or {}
        line_items = session.get("line_items")
        if isinstance(line_items, dict):
            line_items = line_items.get("data")
        else:
            line_items = None
        return cls(
            id=session.get("id"),
            payment_status=session.get("payment_status"),
            customer_id=ref_id(session.get("customer")),
            customer_email=customer_details.get("email"),
            currency=session.get("currency") or "usd",
            amount_total=session.get("amount_total") or 0,
            payment_intent_id=ref_id(session.get("payment_intent")),
            line_items=line_items,
        )


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    event_type: str
    session: CheckoutSessionRef


@dataclass(frozen=True)
class PaymentIntentSucceeded:
    event_id: str
    event_type: str
    payment_intent_id: str


@dataclass(frozen=True)
class SubscriptionChanged:
    event_id: str
    event_type: str
    subscription_id: Optional[str]


@dataclass(frozen=True)
class Unhandled:
    event_id: str
    event_type: str


def parse_event(event):
    """Map a verified Stripe event dict to its typed variant."""
    event_id = event.get("id")
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type in CHECKOUT_EVENT_TYPES:
        return CheckoutCompleted(
            event_id, event_type, CheckoutSessionRef.from_stripe(obj)
        )
    if event_type == PAYMENT_INTENT_SUCCEEDED:
        return PaymentIntentSucceeded(event_id, event_type, obj.get("id"))
    if event_type in SUBSCRIPTION_EVENT_TYPES:
        return SubscriptionChanged(event_id, event_type, obj.get("id"))
    return Unhandled(event_id, event_type)

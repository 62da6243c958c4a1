"""Stripe gateway — the only place the webhook pipeline talks to Stripe.

The gateway is created once per app in create_app() and stored in
app.extensions["payment_gateway"]. Handlers fetch it with
get_payment_gateway() instead of reaching for a module-level client:

- StripeGateway:   real calls, API key passed per request
- DisabledGateway: installed when STRIPE_SECRET_KEY is missing; every
                   call raises PaymentsDisabledError

All return values are plain dicts so handlers can use .get() regardless
of the stripe library version.
"""

import logging

import stripe
from flask import current_app

from app.services.errors import PaymentsDisabledError, SignatureVerificationFailed

logger = logging.getLogger(__name__)

EXTENSION_KEY = "payment_gateway"


def _plain(obj):
    """Convert a StripeObject (or list result) into plain dicts."""
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    if hasattr(obj, "to_dict"):
        obj = obj.to_dict()
    if isinstance(obj, dict):
        return {key: _plain(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(value) for value in obj]
    return obj


class PaymentGateway:
    """Interface used by the webhook handlers."""

    enabled = True

    def construct_event(self, payload, sig_header, secret):
        raise NotImplementedError

    def retrieve_session(self, session_id, expand=None):
        raise NotImplementedError

    def list_line_items(self, session_id, expand=None):
        raise NotImplementedError

    def retrieve_product(self, product_id):
        raise NotImplementedError

    def retrieve_customer(self, customer_id):
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    """PaymentGateway backed by the stripe library."""

    def __init__(self, api_key, api_version=None):
        self.api_key = api_key
        self.api_version = api_version

    def _request_options(self):
        options = {"api_key": self.api_key}
        if self.api_version:
            options["stripe_version"] = self.api_version
        return options

    def construct_event(self, payload, sig_header, secret):
        """Verify the Stripe-Signature header and decode the event body.

        Returns the event as a plain dict.
        Raises SignatureVerificationFailed with the library's reason.
        """
        try:
            event = stripe.Webhook.construct_event(
                payload, sig_header, secret, api_key=self.api_key
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureVerificationFailed(str(e)) from e
        except ValueError as e:
            raise SignatureVerificationFailed(f"Invalid payload: {e}") from e
        except (AttributeError, TypeError) as e:
            # Signed JSON that is not an object (e.g. a list) fails in construct_from
            raise SignatureVerificationFailed(f"Invalid payload: not an event object ({e})") from e

        event = _plain(event)
        if not isinstance(event, dict):
            raise SignatureVerificationFailed("Invalid payload: not an event object")
        return event

    def retrieve_session(self, session_id, expand=None):
        params = {"expand": expand} if expand else {}
        session = stripe.checkout.Session.retrieve(
            session_id, **params, **self._request_options()
        )
        return _plain(session)

    def list_line_items(self, session_id, expand=None):
        params = {"expand": expand} if expand else {}
        result = stripe.checkout.Session.list_line_items(
            session_id, **params, **self._request_options()
        )
        return _plain(result)

    def retrieve_product(self, product_id):
        return _plain(stripe.Product.retrieve(product_id, **self._request_options()))

    def retrieve_customer(self, customer_id):
        return _plain(stripe.Customer.retrieve(customer_id, **self._request_options()))


class DisabledGateway(PaymentGateway):
    """Stand-in used when no Stripe API key is configured."""

    enabled = False

    def _disabled(self, *args, **kwargs):
        raise PaymentsDisabledError()

    construct_event = _disabled
    retrieve_session = _disabled
    list_line_items = _disabled
    retrieve_product = _disabled
    retrieve_customer = _disabled


def init_payment_gateway(app, gateway=None):
    """Attach a payment gateway to the app.

    An explicit gateway wins (tests inject fakes this way). Otherwise a
    StripeGateway is built from STRIPE_SECRET_KEY, or a DisabledGateway
    when the key is missing.
    """
    if gateway is None:
        api_key = app.config.get("STRIPE_SECRET_KEY")
        if api_key:
            gateway = StripeGateway(api_key, app.config.get("STRIPE_API_VERSION"))
        else:
            app.logger.warning("STRIPE_SECRET_KEY not set, payment features disabled")
            gateway = DisabledGateway()

    app.extensions[EXTENSION_KEY] = gateway
    return gateway


def get_payment_gateway():
    """Return the gateway bound to the current app."""
    return current_app.extensions[EXTENSION_KEY]

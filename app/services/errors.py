"""Webhook pipeline exceptions.

Verification errors carry the HTTP status the webhook blueprint answers
with. Anything else escaping the dispatcher becomes a 500, which is what
makes Stripe redeliver the event later.
"""


class WebhookError(Exception):
    """Base class for errors that reject an inbound webhook."""

    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class MissingSignatureError(WebhookError):
    def __init__(self):
        super().__init__("Missing Stripe signature header")


class MissingWebhookSecretError(WebhookError):
    def __init__(self):
        super().__init__("Missing webhook endpoint secret")


class PaymentsDisabledError(WebhookError):
    """Raised by the disabled gateway when STRIPE_SECRET_KEY is not set."""

    def __init__(self):
        super().__init__("Stripe not initialized")


class SignatureVerificationFailed(WebhookError):
    def __init__(self, reason):
        super().__init__(f"Webhook signature verification failed: {reason}")
        self.reason = reason


class LineItemError(Exception):
    """A single checkout line item could not be turned into a purchase."""


class PurchaseRecordError(Exception):
    """The purchase row itself could not be written.

    Unlike other per-item failures this one must reach the dispatcher, so
    the event is answered with a 500 and redelivered.
    """

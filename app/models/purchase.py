"""Purchase model.

One row per checkout line item, written by the Stripe webhook pipeline.
Rows are inserted once and afterwards only touched by the payment-intent
reconciler (payment_status pending -> paid).

Amounts are integers in the currency's minor unit (cents), as Stripe
sends them. total_amount is always unit_price * quantity.
"""

import uuid

from app.extensions import db


class Purchase(db.Model):
    __tablename__ = "purchases"

    PAYMENT_STATUSES = ["pending", "paid", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )

    # --- Buyer ---
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # set only when the checkout email matches a user
    user_email = db.Column(db.String(255), nullable=False)
    user_name = db.Column(db.String(255))

    # --- Stripe references ---
    stripe_session_id = db.Column(db.String(255), nullable=False, index=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    stripe_product_id = db.Column(db.String(255), nullable=True)
    stripe_price_id = db.Column(db.String(255), nullable=True)
    stripe_payment_intent_id = db.Column(
        db.String(255), nullable=True, index=True
    )

    # --- Resolved service ---
    product_name = db.Column(db.String(255))
    product_description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(100), nullable=False, default="unknown")
    service_type = db.Column(db.String(100), nullable=False, default="unknown")
    service_id = db.Column(db.String(36), nullable=True)

    # --- Amounts ---
    quantity = db.Column(db.Integer, nullable=False, default=1)
    unit_price = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(10), nullable=False, default="usd")

    # --- Status ---
    status = db.Column(db.String(50), nullable=False, default="purchased")
    payment_status = db.Column(
        db.String(20), nullable=False, default="pending"
    )  # pending | paid | failed

    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # Stripe product metadata, named metadata_ to avoid the declarative clash

    # --- Timestamps ---
    purchased_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="purchases")

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "userEmail": self.user_email,
            "userName": self.user_name,
            "stripeSessionId": self.stripe_session_id,
            "stripeCustomerId": self.stripe_customer_id,
            "stripeProductId": self.stripe_product_id,
            "stripePriceId": self.stripe_price_id,
            "stripePaymentIntentId": self.stripe_payment_intent_id,
            "productName": self.product_name,
            "productDescription": self.product_description,
            "category": self.category,
            "serviceType": self.service_type,
            "serviceId": self.service_id,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "totalAmount": self.total_amount,
            "currency": self.currency,
            "status": self.status,
            "paymentStatus": self.payment_status,
            "metadata": self.metadata_ or {},
            "purchasedAt": _iso(self.purchased_at),
            "paidAt": _iso(self.paid_at),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Purchase {self.product_name} x{self.quantity} ({self.payment_status})>"


def _iso(value):
    return value.isoformat() if value else None

"""Service consumption model (a user's entitlement to a purchased service).

At most one row per (user_id, service_category, stripe_product_id). The
webhook pipeline enforces this with a look-up-then-upsert; there is no
unique constraint, so two concurrent first purchases can still race.
"""

import uuid

from app.extensions import db


class ServiceConsumption(db.Model):
    __tablename__ = "service_consumption"

    # The webhook only ever writes "purchased"; the rest are set by admins.
    STATUSES = ["purchased", "active", "completed", "paused", "cancelled"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    user_email = db.Column(db.String(255))
    user_name = db.Column(db.String(255))

    service_id = db.Column(db.String(255), nullable=True)
    service_name = db.Column(db.String(255))
    service_category = db.Column(db.String(100), nullable=False)
    service_type = db.Column(db.String(100))

    # purchase_id holds the Stripe checkout session ID of the latest purchase
    purchase_id = db.Column(db.String(255))
    stripe_product_id = db.Column(db.String(255), nullable=True)
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(10), nullable=False, default="usd")

    status = db.Column(db.String(50), nullable=False, default="purchased")
    start_date = db.Column(db.DateTime(timezone=True), nullable=True)
    end_date = db.Column(db.DateTime(timezone=True), nullable=True)
    purchased_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.Index(
            "ix_service_consumption_lookup",
            "user_id",
            "service_category",
            "stripe_product_id",
        ),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="service_consumptions")

    def to_dict(self):
        def iso(value):
            return value.isoformat() if value else None

        return {
            "id": self.id,
            "userId": self.user_id,
            "userEmail": self.user_email,
            "userName": self.user_name,
            "serviceId": self.service_id,
            "serviceName": self.service_name,
            "serviceCategory": self.service_category,
            "serviceType": self.service_type,
            "purchaseId": self.purchase_id,
            "stripeProductId": self.stripe_product_id,
            "totalAmount": self.total_amount,
            "currency": self.currency,
            "status": self.status,
            "startDate": iso(self.start_date),
            "endDate": iso(self.end_date),
            "purchasedAt": iso(self.purchased_at),
            "notes": self.notes,
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ServiceConsumption {self.service_name} ({self.status})>"

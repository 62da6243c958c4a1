"""User model.

Mirrors the identity provider's user record: email, display name and the
role claim used for admin gating. Credentials live with the identity
provider, not here. Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from app.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    ROLES = ["admin", "user"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    display_name = db.Column(db.String(255))
    role = db.Column(db.String(20), nullable=False, default="user")  # admin | user
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    purchases = db.relationship("Purchase", back_populates="user", lazy="dynamic")
    service_consumptions = db.relationship(
        "ServiceConsumption", back_populates="user", lazy="dynamic"
    )

    @property
    def is_admin(self):
        return self.role == "admin"

    def __repr__(self):
        return f"<User {self.email}>"

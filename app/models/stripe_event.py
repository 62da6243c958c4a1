"""Processed webhook event ledger.

Only events that were actually handled land here, keyed by Stripe event
ID and committed together with the purchases they produced. Unknown
event types never get a row.
"""

import uuid

from app.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(db.String(255), unique=True, nullable=False)
    event_type = db.Column(db.String(255), nullable=False)
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    @classmethod
    def seen(cls, event_id):
        """True if this Stripe event ID has already been handled."""
        if not event_id:
            return False
        return cls.query.filter_by(stripe_event_id=event_id).first() is not None

    @classmethod
    def record(cls, event_id, event_type):
        """Add a ledger row to the current session (caller commits)."""
        entry = cls(stripe_event_id=event_id, event_type=event_type)
        db.session.add(entry)
        return entry

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} {self.event_type}>"

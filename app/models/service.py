"""Service catalog model.

Admin-curated services shown on the marketing site. Each service carries
two offering lists in service_details:

    {
        "leftSection":  {"title": "...", "services": [offering, ...]},
        "rightSection": {"title": "...", "services": [offering, ...]},
    }

An offering is {"icon", "title", "description", "price"} where "price" is
an optional Stripe price ID. The webhook pipeline reads this table to map
a purchased price back to a service; it never writes it.
"""

import uuid

from app.extensions import db


class Service(db.Model):
    __tablename__ = "services"

    SECTIONS = ("leftSection", "rightSection")

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    title = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(100), nullable=True)
    icon = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)
    service_details = db.Column(db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def section_offerings(self, section):
        """Offerings of one section, skipping entries that are not objects.

        service_details is free JSON (see `flask import-services`), so a
        section may be missing, a list, or hold nulls and strings.
        """
        details = self.service_details
        if not isinstance(details, dict):
            return []
        block = details.get(section)
        if not isinstance(block, dict):
            return []
        services = block.get("services")
        if not isinstance(services, list):
            return []
        return [offering for offering in services if isinstance(offering, dict)]

    def offerings(self):
        """Left-section offerings followed by right-section offerings."""
        result = []
        for section in self.SECTIONS:
            result.extend(self.section_offerings(section))
        return result

    def __repr__(self):
        return f"<Service {self.title} ({self.category})>"

"""Service matcher — maps a purchased Stripe price to a catalog service.

Resolution, first match wins:
  1. product metadata (service_type / category), defaulting to "unknown"
  2. a catalog offering whose "price" equals the line item's price ID
     overrides category, name and service ID, and sets type "service"
  3. otherwise the metadata values and the raw product name stand

This is a heuristic: offerings without a price ID can never match, and a
product without metadata resolves to "unknown". Neither is an error.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models.service import Service
from app.services.errors import LineItemError

logger = logging.getLogger(__name__)

UNKNOWN = "unknown"
UNKNOWN_PRODUCT_NAME = "Unknown Product"


@dataclass(frozen=True)
class CatalogOffering:
    service_id: str
    category: Optional[str]
    title: Optional[str]
    service_title: Optional[str]


@dataclass(frozen=True)
class ServiceMatch:
    service_id: Optional[str]
    service_name: Optional[str]
    category: str
    service_type: str


class CatalogIndex:
    """price ID -> first catalog offering carrying it.

    Built once per checkout event. Insertion order reproduces the linear
    scan: catalog order, then left section before right, then offering
    order. Later duplicates of a price ID are ignored.
    """

    def __init__(self):
        self._by_price = {}

    def __len__(self):
        return len(self._by_price)

    def add(self, price_id, offering):
        self._by_price.setdefault(price_id, offering)

    def lookup(self, price_id):
        return self._by_price.get(price_id)

    @classmethod
    def build(cls, services):
        index = cls()
        for service in services:
            for offering in service.offerings():
                price_id = offering.get("price")
                if not isinstance(price_id, str) or not price_id:
                    continue
                index.add(price_id, CatalogOffering(
                    service_id=service.id,
                    category=service.category,
                    title=offering.get("title"),
                    service_title=service.title,
                ))
        return index

    @classmethod
    def load(cls):
        """Build the index from the services table.

        A failed catalog read is not fatal: every line item then falls back
        to its product metadata.
        """
        try:
            with db.session.begin_nested():
                services = (
                    Service.query
                    .order_by(Service.order.asc(), Service.created_at.asc())
                    .all()
                )
        except SQLAlchemyError as e:
            logger.error(f"Service catalog unavailable, matching by metadata only: {e}")
            return cls()

        try:
            return cls.build(services)
        except Exception as e:
            logger.error(
                f"Service catalog could not be indexed, matching by metadata only: {e}",
                exc_info=True,
            )
            return cls()


def resolve_product(price, gateway):
    """Return the line item's product as a dict, fetching it if needed.

    If the product is only an ID and the fetch fails, a minimal stand-in
    is returned so the purchase can still be recorded.
    Raises LineItemError when the line item has no product at all.
    """
    product = (price or {}).get("product")
    if not product:
        raise LineItemError("Line item has no product")

    if isinstance(product, dict):
        return product

    product_id = product
    try:
        product = gateway.retrieve_product(product_id)
        logger.info(f"Retrieved product {product_id}: {product.get('name')}")
        return product
    except Exception as e:
        logger.warning(
            f"Could not retrieve product {product_id}, continuing with basic info: {e}"
        )
        return {
            "id": product_id,
            "name": UNKNOWN_PRODUCT_NAME,
            "description": None,
            "metadata": {},
        }


def match_service(price, product, catalog):
    """Resolve (service_id, service_name, category, service_type)."""
    metadata = product.get("metadata") or {}
    service_type = metadata.get("service_type") or UNKNOWN
    category = metadata.get("category") or UNKNOWN
    service_id = None
    service_name = product.get("name")

    price_id = (price or {}).get("id")
    if price_id:
        offering = catalog.lookup(price_id)
        if offering:
            service_id = offering.service_id
            service_name = offering.title or product.get("name")
            category = offering.category or category
            service_type = "service"
            logger.info(
                f"Matched price {price_id} to service: {service_name} "
                f"({offering.service_title})"
            )

    return ServiceMatch(
        service_id=service_id,
        service_name=service_name,
        category=category,
        service_type=service_type,
    )

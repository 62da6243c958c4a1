"""Purchases blueprint — /api/*

Read-only JSON endpoints over the records the Stripe webhook writes.

Routes:
- GET /api/purchases                               admin: newest purchases
- GET /api/purchases/stats                         admin: revenue + status counts
- GET /api/users/<user_id>/purchased-services      the user (or an admin):
                                                   paid purchases + entitlements
"""

from flask import Blueprint, current_app, jsonify, request

from app.decorators import admin_required, self_or_admin_required
from app.extensions import limiter
from app.services.purchase_service import (
    clamp_limit,
    list_purchases,
    purchase_stats,
    purchased_services_for_user,
)

purchases_bp = Blueprint("purchases", __name__, url_prefix="/api")


@purchases_bp.route("/purchases")
@admin_required
def purchase_list():
    """All purchases, optionally filtered by ?user_id=, newest first."""
    limit = clamp_limit(request.args.get("limit"))
    purchases, has_more = list_purchases(
        limit=limit, user_id=request.args.get("user_id")
    )
    return jsonify({
        "success": True,
        "purchases": [p.to_dict() for p in purchases],
        "count": len(purchases),
        "hasMore": has_more,
    })


@purchases_bp.route("/purchases/stats")
@admin_required
def purchase_stats_view():
    return jsonify({"success": True, "stats": purchase_stats()})


@purchases_bp.route("/users/<user_id>/purchased-services")
@limiter.limit(lambda: current_app.config["PURCHASED_SERVICES_RATE_LIMIT"])
@self_or_admin_required
def purchased_services(user_id):
    """Dashboard view of what a user has bought and can access."""
    purchases, consumptions = purchased_services_for_user(user_id)
    return jsonify({
        "success": True,
        "purchases": [p.to_dict() for p in purchases],
        "serviceConsumption": [c.to_dict() for c in consumptions],
        "count": len(purchases),
    })

# Overview: Flask API routes for notifications; read-only projections polled by the client.

from flask import Blueprint, request, jsonify

from ..errors import AgroFlowError
from ..services import notification_service
from ..decorators import customer_scope_denied, require_auth, require_staff
from agroflow.time_utils import parse_iso_date, to_iso_date, today


notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/notifications")


def _as_of():
    """Optional ?as_of=YYYY-MM-DD query param (defaults to today, UTC)."""
    raw = request.args.get("as_of")
    if not raw:
        return today()
    try:
        return parse_iso_date(raw) or today()
    except ValueError:
        return None


@notifications_bp.get("/customer/<int:customer_id>")
@require_auth
def customer_notifications_route(customer_id: int):
    denied = customer_scope_denied(customer_id)
    if denied:
        return denied

    as_of = _as_of()
    if as_of is None:
        return jsonify({"error": "as_of must be an ISO-8601 date"}), 400

    try:
        notifications = notification_service.derive_notifications(customer_id, as_of=as_of)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code

    return jsonify({
        "customer_id": customer_id,
        "as_of": to_iso_date(as_of),
        "notifications": notifications,
        "count": len(notifications),
    }), 200


@notifications_bp.get("/customer/<int:customer_id>/aging")
@require_auth
def customer_aging_route(customer_id: int):
    denied = customer_scope_denied(customer_id)
    if denied:
        return denied

    as_of = _as_of()
    if as_of is None:
        return jsonify({"error": "as_of must be an ISO-8601 date"}), 400

    try:
        aging = notification_service.customer_aging(customer_id, as_of=as_of)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify(aging), 200


@notifications_bp.get("/overdue")
@require_auth
@require_staff
def overdue_route():
    as_of = _as_of()
    if as_of is None:
        return jsonify({"error": "as_of must be an ISO-8601 date"}), 400

    report = notification_service.overdue_report(as_of)
    return jsonify({
        "as_of": to_iso_date(as_of),
        "customers": report,
        "count": len(report),
    }), 200

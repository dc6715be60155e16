# Overview: Flask API routes for the dashboard; headline numbers and trends.

from flask import Blueprint, request, jsonify

from ..errors import AgroFlowError
from ..services import reporting_service
from ..decorators import require_auth, require_staff


dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.get("/summary")
@require_auth
@require_staff
def summary_route():
    return jsonify(reporting_service.dashboard_summary()), 200


@dashboard_bp.get("/sales-trends")
@require_auth
@require_staff
def sales_trends_route():
    """Query params: period (daily|weekly|monthly), start, end"""
    try:
        result = reporting_service.sales_trends(
            period=request.args.get("period", "daily"),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify(result), 200


@dashboard_bp.get("/top-products")
@require_auth
@require_staff
def top_products_route():
    try:
        rows = reporting_service.top_products(
            limit=request.args.get("limit", 5, type=int),
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"items": rows, "count": len(rows)}), 200

# Overview: Flask API routes for credit and payment analytics.

from flask import Blueprint, request, jsonify

from ..errors import AgroFlowError
from ..services import reporting_service
from ..decorators import require_admin, require_auth


analytics_bp = Blueprint("analytics", __name__, url_prefix="/api/analytics")


@analytics_bp.get("/credit")
@require_auth
@require_admin
def credit_analytics_route():
    try:
        result = reporting_service.credit_analytics(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify(result), 200


@analytics_bp.get("/payments")
@require_auth
@require_admin
def payment_analytics_route():
    try:
        result = reporting_service.payment_analytics(
            start=request.args.get("start"),
            end=request.args.get("end"),
        )
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify(result), 200


@analytics_bp.get("/customer-segments")
@require_auth
@require_admin
def customer_segments_route():
    return jsonify(reporting_service.customer_segments()), 200

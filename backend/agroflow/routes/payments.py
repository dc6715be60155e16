# Overview: Flask API routes for payments operations; parses input and returns JSON responses.

"""
Payment Processing API Routes

ENDPOINTS:
- POST /api/payments/                      - Post a payment (sale or customer)
- POST /api/payments/bulk                  - Post many customer payments
- GET  /api/payments/<id>                  - Payment detail
- GET  /api/payments/customer/<id>         - Customer payment history
- GET  /api/payments/sales/<id>/summary    - Sale payment summary
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import AgroFlowError, PaymentVerificationFailed
from ..services import payment_service, sales_service
from ..validation import PaymentRequest
from ..decorators import customer_scope_denied, is_customer_principal, require_auth, require_staff


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/")
@require_auth
def add_payment():
    """
    Post a payment.

    Request body:
    {
        "sale_id": 123,            # or "customer_id" for oldest-first allocation
        "amount": 25.00,           # or "amount_cents": 2500
        "method": "cash",          # cash, bank_transfer, credit_card, check, online
        "date": "2024-01-15",      # optional
        "reference": "TXN-1",      # optional
        "notes": "...",            # optional
        "verification": {...}      # required for online payments
    }

    Customer principals may only pay their own sales.
    """
    try:
        payment_request = PaymentRequest.from_json(request.get_json(silent=True))

        if is_customer_principal():
            owner_id = payment_request.customer_id
            if payment_request.sale_id is not None:
                owner_id = sales_service.get_sale(payment_request.sale_id).customer_id
            denied = customer_scope_denied(owner_id)
            if denied:
                return denied

        payments = payment_service.post_payment(payment_request, actor_user_id=g.current_user.id)
    except AgroFlowError as e:
        if isinstance(e, PaymentVerificationFailed):
            current_app.logger.warning("Payment verification failed: %s", e.details)
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to post payment")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({
        "payments": [p.to_dict() for p in payments],
        "count": len(payments),
    }), 201


@payments_bp.post("/bulk")
@require_auth
@require_staff
def bulk_payments():
    """
    Post a list of customer payments; each row succeeds or fails on its own.

    Body: a JSON list, or {"payments": [...]}.
    """
    data = request.get_json(silent=True)
    rows = data.get("payments") if isinstance(data, dict) else data

    try:
        result = payment_service.post_bulk_payments(rows, actor_user_id=g.current_user.id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to post bulk payments")
        return jsonify({"error": "Internal server error"}), 500

    if result["failed"]:
        current_app.logger.warning(
            "Bulk payment batch %s: %d of %d rows failed",
            result["batch_reference"],
            len(result["failed"]),
            len(result["failed"]) + len(result["processed"]),
        )

    return jsonify(result), 200


@payments_bp.get("/<int:payment_id>")
@require_auth
def get_payment(payment_id: int):
    try:
        payment = payment_service.get_payment(payment_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code

    denied = customer_scope_denied(payment.customer_id)
    if denied:
        return denied

    return jsonify({"payment": payment.to_dict()}), 200


@payments_bp.get("/customer/<int:customer_id>")
@require_auth
def customer_payments(customer_id: int):
    denied = customer_scope_denied(customer_id)
    if denied:
        return denied
    try:
        payments = payment_service.list_customer_payments(customer_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"items": [p.to_dict() for p in payments], "count": len(payments)}), 200


@payments_bp.get("/sales/<int:sale_id>/summary")
@require_auth
def get_payment_summary(sale_id: int):
    """
    Get payment summary for a sale.

    Returns:
    - total_due_cents / total_paid_cents / remaining_cents
    - payment_status: UNPAID, PARTIAL, PAID
    - payments: list of payment records
    """
    try:
        sale = sales_service.get_sale(sale_id)
        denied = customer_scope_denied(sale.customer_id)
        if denied:
            return denied
        summary = payment_service.payment_summary(sale_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get payment summary")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(summary), 200

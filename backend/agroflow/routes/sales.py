# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/agroflow/routes/sales.py
"""Sales API routes with role enforcement"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import AgroFlowError, PaymentVerificationFailed
from ..models.sales import METHOD_ONLINE
from ..services import payment_service, sales_service
from ..services.gateway_service import get_gateway, verify_with_retry
from ..validation import GatewayVerification, PaymentRequest, SaleRequest, ValidationError
from ..decorators import customer_scope_denied, require_auth, require_staff


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.get("")
@require_auth
@require_staff
def list_sales_route():
    """
    List sales, newest first.

    Query params: search, status, payment_type, customer_id, page, per_page
    """
    result = sales_service.list_sales(
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        search=request.args.get("search"),
        status=request.args.get("status"),
        payment_type=request.args.get("payment_type"),
        customer_id=request.args.get("customer_id", type=int),
    )
    return result


@sales_bp.post("")
@require_auth
@require_staff
def create_sale_route():
    """
    Post a sale: stock, price snapshot and (for credit) the customer balance
    move together or not at all.

    Available to: admin, staff
    """
    try:
        sale_request = SaleRequest.from_json(request.get_json(silent=True))
        sale = sales_service.post_sale(sale_request, actor_user_id=g.current_user.id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to post sale")
        return jsonify({"error": "Internal server error"}), 500

    if sale.credit_limit_warning:
        current_app.logger.warning(
            "Credit sale %s posted over limit for customer %s",
            sale.document_number,
            sale.customer_id,
        )

    return jsonify({"sale": sale.to_dict()}), 201


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    try:
        sale = sales_service.get_sale(sale_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code

    denied = customer_scope_denied(sale.customer_id)
    if denied:
        return denied

    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/cancel")
@require_auth
@require_staff
def cancel_sale_route(sale_id: int):
    """
    Cancel a pending, unpaid sale: restock and release reserved credit.

    Available to: admin, staff
    """
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    if not reason:
        return jsonify({"error": "reason required"}), 400

    try:
        sale = sales_service.cancel_sale(sale_id, reason=reason[:255], actor_user_id=g.current_user.id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.post("/<int:sale_id>/generate-qr")
@require_auth
def generate_qr_route(sale_id: int):
    """Open the gateway order for an online sale and return the UPI QR payload."""
    try:
        sale = sales_service.get_sale(sale_id)
        denied = customer_scope_denied(sale.customer_id)
        if denied:
            return denied
        checkout = payment_service.prepare_online_checkout(sale_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to generate payment QR")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(checkout), 200


@sales_bp.post("/<int:sale_id>/verify-payment")
@require_auth
def verify_payment_route(sale_id: int):
    """
    Accept the gateway callback payload (order id, payment id, signature).

    Verification is retried with bounded backoff; the payment is only posted
    on a positive verdict. Amount defaults to the remaining balance.
    """
    data = request.get_json(silent=True) or {}

    try:
        sale = sales_service.get_sale(sale_id)
        denied = customer_scope_denied(sale.customer_id)
        if denied:
            return denied

        verification = GatewayVerification.from_json(data)
        if sale.gateway_order_id and verification.order_id != sale.gateway_order_id:
            raise ValidationError("order_id does not match the sale")

        gateway = get_gateway()
        if not verify_with_retry(gateway, verification):
            raise PaymentVerificationFailed(
                "Payment verification failed",
                {"sale_id": sale.id, "order_id": verification.order_id},
            )

        payload = {
            "sale_id": sale.id,
            "method": METHOD_ONLINE,
            "reference": verification.payment_id,
            "verification": {
                "order_id": verification.order_id,
                "payment_id": verification.payment_id,
                "signature": verification.signature,
            },
        }
        if data.get("amount") is not None:
            payload["amount"] = data["amount"]
        else:
            payload["amount_cents"] = data.get("amount_cents", sale.remaining_cents)

        payment_request = PaymentRequest.from_json(payload)
        payments = payment_service.post_payment(
            payment_request,
            actor_user_id=g.current_user.id,
            gateway_verified=True,
        )
    except PaymentVerificationFailed as e:
        current_app.logger.warning("Gateway verification failed for sale %s", sale_id)
        return jsonify(e.to_dict()), e.status_code
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return jsonify({"error": "Internal server error"}), 500

    sale = sales_service.get_sale(sale_id)
    return jsonify({
        "verified": True,
        "payment": payments[0].to_dict(),
        "sale": sale.to_dict(),
    }), 200


@sales_bp.post("/<int:sale_id>/cash-payment")
@require_auth
@require_staff
def cash_payment_route(sale_id: int):
    """Settle the remaining balance in cash. Available to: admin, staff"""
    try:
        payment = payment_service.record_cash_payment(sale_id, actor_user_id=g.current_user.id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record cash payment")
        return jsonify({"error": "Internal server error"}), 500

    sale = sales_service.get_sale(sale_id)
    return jsonify({"payment": payment.to_dict(), "sale": sale.to_dict()}), 201


@sales_bp.get("/customer/<int:customer_id>")
@require_auth
def customer_sales_route(customer_id: int):
    denied = customer_scope_denied(customer_id)
    if denied:
        return denied
    try:
        sales = sales_service.list_customer_sales(customer_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)}), 200

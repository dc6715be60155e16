# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

# backend/agroflow/routes/customers.py
"""
Customer management routes.

SECURITY: All routes require authentication.
- Listing requires admin or staff
- Create / update / deactivate require admin
- Customer principals may read only their own account resources
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import AgroFlowError
from ..models import Customer
from ..services import credit_ledger_service, customers_service, payment_service, sales_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
)
from ..decorators import customer_scope_denied, require_admin, require_auth, require_staff

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={
        "name", "code", "email", "phone", "address", "notes",
        "credit_limit_cents", "credit_score", "is_active",
    },
    required_on_create={"name", "code"},
    aliases={
        "creditLimit": "credit_limit",
        "creditScore": "credit_score",
        "isActive": "is_active",
    },
    money_fields={"credit_limit": "credit_limit_cents"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
@require_auth
@require_staff
def list_customers_route():
    """
    List customers.

    Query params:
    - search: str (optional) - name, code, email or phone
    - page / per_page: int (optional) - pagination (default 20, max 100)
    - include_inactive: bool (optional)
    """
    result = customers_service.list_customers(
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        search=request.args.get("search"),
        include_inactive=request.args.get("include_inactive", "").lower() in ("1", "true", "yes"),
    )
    return result


@customers_bp.post("")
@require_auth
@require_admin
def create_customer_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
        customer = customers_service.create_customer(patch=patch)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.get("/<int:customer_id>")
@require_auth
def get_customer_route(customer_id: int):
    denied = customer_scope_denied(customer_id)
    if denied:
        return denied
    try:
        customer = customers_service.get_customer(customer_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.put("/<int:customer_id>")
@require_auth
@require_admin
def update_customer_route(customer_id: int):
    """
    Update a customer. The credit limit may not drop below the current
    balance; the balance itself is not writable.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
        customer = customers_service.update_customer(customer_id=customer_id, patch=patch)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"customer": customer.to_dict()}), 200


@customers_bp.delete("/<int:customer_id>")
@require_auth
@require_admin
def deactivate_customer_route(customer_id: int):
    """Soft-delete: the customer is deactivated, history is kept."""
    try:
        customer = customers_service.deactivate_customer(customer_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"ok": True, "customer": customer.to_dict()}), 200


@customers_bp.get("/<int:customer_id>/sales")
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


@customers_bp.get("/<int:customer_id>/payments")
@require_auth
def customer_payments_route(customer_id: int):
    denied = customer_scope_denied(customer_id)
    if denied:
        return denied
    try:
        payments = payment_service.list_customer_payments(customer_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"items": [p.to_dict() for p in payments], "count": len(payments)}), 200


@customers_bp.get("/<int:customer_id>/statement")
@require_auth
def customer_statement_route(customer_id: int):
    denied = customer_scope_denied(customer_id)
    if denied:
        return denied
    try:
        statement = customers_service.customer_statement(customer_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify(statement), 200


@customers_bp.get("/<int:customer_id>/credit")
@require_auth
def customer_credit_route(customer_id: int):
    """Credit position plus the balance journal."""
    denied = customer_scope_denied(customer_id)
    if denied:
        return denied
    try:
        summary = credit_ledger_service.credit_summary(customer_id)
        entries = credit_ledger_service.ledger_entries(customer_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"credit": summary, "entries": [entry.to_dict() for entry in entries]}), 200

# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/agroflow/routes/products.py
"""
Product management routes.

SECURITY: All routes require authentication.
- Read operations require admin or staff
- Write operations require admin
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import AgroFlowError
from ..models import Product
from ..services import products_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    flatten_supplier,
)
from ..decorators import require_admin, require_auth, require_staff

_PRODUCT_FIELDS = {
    "sku", "name", "description", "category", "price_cents", "stock_threshold",
    "supplier_name", "supplier_contact", "supplier_email", "supplier_phone",
    "is_active",
}
_PRODUCT_ALIASES = {
    "stockThreshold": "stock_threshold",
    "isActive": "is_active",
}

# quantity is only accepted on create; sales move it afterwards
PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=_PRODUCT_FIELDS | {"quantity"},
    required_on_create={"sku", "name", "price_cents"},
    aliases=_PRODUCT_ALIASES,
    money_fields={"price": "price_cents"},
)
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=_PRODUCT_FIELDS,
    aliases=_PRODUCT_ALIASES,
    money_fields={"price": "price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_auth
@require_staff
def list_products_route():
    """
    List products with optional pagination.

    Query params:
    - search: str (optional) - name, SKU or category
    - category: str (optional)
    - low_stock: bool (optional) - only products at or below threshold
    - page / per_page: int (optional)
    """
    result = products_service.list_products(
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
        search=request.args.get("search"),
        category=request.args.get("category"),
        low_stock=request.args.get("low_stock", "").lower() in ("1", "true", "yes"),
        include_inactive=request.args.get("include_inactive", "").lower() in ("1", "true", "yes"),
    )
    return result


@products_bp.get("/low-stock")
@require_auth
@require_staff
def low_stock_route():
    products = products_service.low_stock_products()
    return jsonify({"items": [p.to_dict() for p in products], "count": len(products)}), 200


@products_bp.post("")
@require_auth
@require_admin
def create_product_route():
    payload = flatten_supplier(request.get_json(silent=True) or {})

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
        enforce_rules_product(patch)  # Handles price validation including max check
        product = products_service.create_product(patch=patch)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"product": product.to_dict()}), 201


@products_bp.get("/<int:product_id>")
@require_auth
@require_staff
def get_product_route(product_id: int):
    try:
        product = products_service.get_product(product_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"product": product.to_dict()}), 200


@products_bp.put("/<int:product_id>")
@require_auth
@require_admin
def update_product_route(product_id: int):
    payload = flatten_supplier(request.get_json(silent=True) or {})

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
        enforce_rules_product(patch)
        product = products_service.update_product(product_id=product_id, patch=patch)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"product": product.to_dict()}), 200


@products_bp.delete("/<int:product_id>")
@require_auth
@require_admin
def deactivate_product_route(product_id: int):
    """Soft-delete: preserve IDs and historical sale references."""
    try:
        product = products_service.deactivate_product(product_id)
    except AgroFlowError as e:
        return jsonify(e.to_dict()), e.status_code
    return jsonify({"ok": True, "product": product.to_dict()}), 200

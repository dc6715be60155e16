# backend/agroflow/services/products_service.py
"""
Products Service

Catalogue maintenance. Stock on hand is set once at creation; afterwards
only sale posting and cancellation move it.
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..errors import ProductNotFound
from ..models import Product
from ..validation import ConflictError, ValidationError

PRODUCT_MUTABLE_FIELDS = {
    "sku", "name", "description", "category", "price_cents", "stock_threshold",
    "supplier_name", "supplier_contact", "supplier_email", "supplier_phone",
    "is_active",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _ensure_sku_available(sku: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Product).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("SKU already exists.")


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if not product:
        raise ProductNotFound(f"Product {product_id} not found", {"product_id": product_id})
    return product


def list_products(
    *,
    page: int | None = None,
    per_page: int | None = None,
    search: str | None = None,
    category: str | None = None,
    low_stock: bool = False,
    include_inactive: bool = False,
) -> dict:
    """
    Product listing with optional pagination.

    Args:
        page: Page number (1-indexed). If None, returns all items.
        per_page: Items per page (default 20, max 100)
        search: matches name, SKU or category
        low_stock: only products at or below their stock threshold

    Returns:
        Dict with 'items', 'count', and pagination metadata if paginated.
    """
    base_query = db.session.query(Product)
    if not include_inactive:
        base_query = base_query.filter(Product.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        base_query = base_query.filter(or_(
            Product.name.ilike(pattern),
            Product.sku.ilike(pattern),
            Product.category.ilike(pattern),
        ))
    if category:
        base_query = base_query.filter(Product.category == category)
    if low_stock:
        base_query = base_query.filter(Product.quantity <= Product.stock_threshold)

    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    # If no pagination requested, return all items
    if page is None:
        products = base_query.all()
        return {
            "items": [p.to_dict() for p in products],
            "count": len(products),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(
            Product.is_active.is_(True),
            Product.quantity <= Product.stock_threshold,
        )
        .order_by(Product.quantity.asc(), Product.name.asc())
        .all()
    )


def create_product(*, patch: dict) -> Product:
    """
    Create product using a validated patch dict.

    Raises:
        ValidationError: sku or name missing
        ConflictError: If SKU already exists
    """
    sku = patch.get("sku")
    if not sku or not patch.get("name"):
        raise ValidationError("sku and name are required")

    _ensure_sku_available(sku)

    p = Product(quantity=patch.get("quantity") or 0, is_active=True)
    apply_product_patch(p, patch)

    db.session.add(p)
    db.session.commit()
    return p


def update_product(*, product_id: int, patch: dict) -> Product:
    """
    Update a product. quantity is not accepted here.

    Raises:
        ProductNotFound: unknown product
        ConflictError: If new SKU already exists
    """
    p = get_product(product_id)

    if "quantity" in patch:
        raise ValidationError("quantity cannot be changed after creation")

    if "sku" in patch and patch["sku"] != p.sku:
        _ensure_sku_available(patch["sku"], exclude_id=p.id)

    apply_product_patch(p, patch)
    db.session.commit()
    return p


def deactivate_product(product_id: int) -> Product:
    """Soft-delete only: preserve IDs and historical sale references."""
    p = get_product(product_id)
    if p.is_active:
        p.is_active = False
    db.session.commit()
    return p

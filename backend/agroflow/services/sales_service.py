"""
Sale Posting Service

WHY: A sale moves stock, snapshots prices and (for credit sales) moves the
customer's credit balance. All three happen in one transaction or not at
all: any failed check rolls the session back, leaving stock and balances
exactly as they were.

PAYMENT TYPES:
- cash: paid on the spot; a cash Payment is recorded and the sale completes
- credit: credit reserved through the ledger; pending until paid in full
- online: a gateway order is opened; pending until a verified payment lands
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import or_

from agroflow.extensions import db
from agroflow.errors import (
    CreditLimitExceeded,
    CustomerNotFound,
    InsufficientStock,
    ProductNotFound,
    SaleNotFound,
    SaleStateError,
)
from agroflow.models import Customer, Payment, Product, Sale, SaleItem
from agroflow.models.sales import (
    METHOD_CASH,
    PAYMENT_TYPE_CASH,
    PAYMENT_TYPE_CREDIT,
    PAYMENT_TYPE_ONLINE,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PENDING,
)
from agroflow.time_utils import utcnow
from agroflow.money import MAX_AMOUNT_CENTS
from agroflow.validation import SaleRequest, ValidationError
from agroflow.services import credit_ledger_service
from agroflow.services.concurrency import begin_write, conditional_update, lock_for_update, run_with_retry
from agroflow.services.gateway_service import PaymentGateway, get_gateway


def _document_number(sale_id: int) -> str:
    return f"S-{sale_id:06d}"


def _aggregate_quantities(request: SaleRequest) -> dict[int, int]:
    requested: dict[int, int] = {}
    for item in request.items:
        requested[item.product_id] = requested.get(item.product_id, 0) + item.quantity
    return requested


def _load_products(product_ids) -> dict[int, Product]:
    products = db.session.query(Product).filter(Product.id.in_(list(product_ids))).all()
    found = {p.id: p for p in products if p.is_active}
    missing = sorted(pid for pid in product_ids if pid not in found)
    if missing:
        raise ProductNotFound(
            f"Product {missing[0]} not found" if len(missing) == 1 else "Products not found",
            {"product_ids": missing},
        )
    return found


def _decrement_stock(requested: dict[int, int], products: dict[int, Product]) -> None:
    """
    Conditionally decrement every product, collecting all shortfalls before
    failing so the caller sees the full list. Sorted ids give concurrent
    postings the same lock order.
    """
    insufficient = []
    for product_id in sorted(requested):
        qty = requested[product_id]
        updated = conditional_update(
            Product,
            row_id=product_id,
            condition=Product.quantity >= qty,
            values={"quantity": Product.quantity - qty},
        )
        if not updated:
            product = products[product_id]
            db.session.refresh(product)
            insufficient.append({
                "product_id": product_id,
                "sku": product.sku,
                "requested_quantity": qty,
                "available_quantity": product.quantity,
            })

    if insufficient:
        raise InsufficientStock(
            "Insufficient stock to post sale",
            details={"items": insufficient},
        )


def _reserve_sale_credit(sale: Sale) -> None:
    try:
        credit_ledger_service.reserve_credit(
            sale.customer_id,
            sale.total_amount_cents,
            sale_id=sale.id,
            note=f"Credit sale {sale.document_number}",
        )
    except CreditLimitExceeded:
        if credit_ledger_service.credit_limit_policy() != credit_ledger_service.POLICY_WARN:
            raise
        credit_ledger_service.reserve_credit(
            sale.customer_id,
            sale.total_amount_cents,
            sale_id=sale.id,
            allow_over_limit=True,
            note=f"Credit sale {sale.document_number} (over limit)",
        )
        sale.credit_limit_warning = True


def post_sale(
    request: SaleRequest,
    *,
    actor_user_id: int | None = None,
    gateway: PaymentGateway | None = None,
) -> Sale:
    """
    Validate and commit a sale.

    Raises:
        CustomerNotFound: customer missing or inactive
        ProductNotFound: any product missing or inactive
        InsufficientStock: any line exceeds stock on hand
        CreditLimitExceeded: credit sale over limit under the "block" policy
        ValidationError: sale total above the maximum amount
    """
    def _op() -> Sale:
        begin_write()

        customer = db.session.get(Customer, request.customer_id)
        if not customer or not customer.is_active:
            raise CustomerNotFound(
                f"Customer {request.customer_id} not found",
                {"customer_id": request.customer_id},
            )

        requested = _aggregate_quantities(request)
        products = _load_products(requested.keys())
        sale_total = sum(products[i.product_id].price_cents * i.quantity for i in request.items)
        if sale_total > MAX_AMOUNT_CENTS:
            raise ValidationError(
                "Sale total exceeds the maximum amount",
                {"total_amount_cents": sale_total, "max_amount_cents": MAX_AMOUNT_CENTS},
            )
        _decrement_stock(requested, products)

        now = utcnow()
        sale = Sale(
            customer_id=customer.id,
            payment_type=request.payment_type,
            status=SALE_STATUS_PENDING,
            paid_amount_cents=0,
            created_by_user_id=actor_user_id,
            created_at=now,
        )

        total = 0
        for position, item in enumerate(request.items):
            product = products[item.product_id]
            line_total = product.price_cents * item.quantity
            total += line_total
            sale.items.append(SaleItem(
                product_id=product.id,
                position=position,
                name=product.name,
                quantity=item.quantity,
                unit_price_cents=product.price_cents,
                line_total_cents=line_total,
            ))
        sale.total_amount_cents = total

        if request.payment_type == PAYMENT_TYPE_CREDIT:
            details = request.credit_details
            due_date = details.due_date if details else None
            if due_date is None:
                term_days = current_app.config.get("DEFAULT_CREDIT_TERM_DAYS", 30)
                due_date = now.date() + timedelta(days=term_days)
            sale.due_date = due_date
            sale.interest_rate_bps = details.interest_rate_bps if details else 0

        db.session.add(sale)
        db.session.flush()
        sale.document_number = _document_number(sale.id)

        if total == 0:
            # Nothing owed: complete regardless of payment type
            sale.status = SALE_STATUS_COMPLETED
            sale.completed_at = now
        elif request.payment_type == PAYMENT_TYPE_CREDIT:
            _reserve_sale_credit(sale)
        elif request.payment_type == PAYMENT_TYPE_CASH:
            db.session.add(Payment(
                customer_id=customer.id,
                sale_id=sale.id,
                amount_cents=total,
                method=METHOD_CASH,
                paid_at=now,
                reference=sale.document_number,
                created_by_user_id=actor_user_id,
                created_at=now,
            ))
            sale.paid_amount_cents = total
            sale.status = SALE_STATUS_COMPLETED
            sale.completed_at = now
        elif request.payment_type == PAYMENT_TYPE_ONLINE:
            order = (gateway or get_gateway()).create_order(
                total,
                current_app.config.get("CURRENCY", "INR"),
                receipt=sale.document_number,
            )
            sale.gateway_order_id = order.order_id

        customer.last_purchase_at = now
        db.session.commit()
        return sale

    return run_with_retry(_op)


def cancel_sale(sale_id: int, *, reason: str, actor_user_id: int | None = None) -> Sale:
    """
    Cancel a pending sale that has not received any payment.

    Restocks every line and, for credit sales, releases the reserved credit.
    """
    def _op() -> Sale:
        begin_write()
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleNotFound(f"Sale {sale_id} not found", {"sale_id": sale_id})

        if sale.status != SALE_STATUS_PENDING:
            raise SaleStateError(
                f"Cannot cancel a {sale.status} sale",
                {"sale_id": sale.id, "status": sale.status},
            )
        if sale.paid_amount_cents > 0:
            raise SaleStateError(
                "Cannot cancel a sale that has received payments",
                {"sale_id": sale.id, "paid_amount_cents": sale.paid_amount_cents},
            )

        for item in sale.items:
            conditional_update(
                Product,
                row_id=item.product_id,
                values={"quantity": Product.quantity + item.quantity},
            )

        if sale.payment_type == PAYMENT_TYPE_CREDIT and sale.total_amount_cents > 0:
            credit_ledger_service.release_credit(
                sale.customer_id,
                sale.total_amount_cents,
                sale_id=sale.id,
                note=f"Credit sale {sale.document_number} cancelled",
            )

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by_user_id = actor_user_id
        sale.cancel_reason = reason

        db.session.commit()
        return sale

    return run_with_retry(_op)


def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found", {"sale_id": sale_id})
    return sale


def list_sales(
    *,
    page: int | None = None,
    per_page: int | None = None,
    search: str | None = None,
    status: str | None = None,
    payment_type: str | None = None,
    customer_id: int | None = None,
) -> dict:
    """
    Sale listing with optional filters and pagination (newest first).

    search matches document number or customer name/code.
    """
    base_query = db.session.query(Sale).join(Customer, Customer.id == Sale.customer_id)

    if search:
        pattern = f"%{search.strip()}%"
        base_query = base_query.filter(or_(
            Sale.document_number.ilike(pattern),
            Customer.name.ilike(pattern),
            Customer.code.ilike(pattern),
        ))
    if status:
        base_query = base_query.filter(Sale.status == status)
    if payment_type:
        base_query = base_query.filter(Sale.payment_type == payment_type)
    if customer_id:
        base_query = base_query.filter(Sale.customer_id == customer_id)

    base_query = base_query.order_by(Sale.created_at.desc(), Sale.id.desc())

    # If no pagination requested, return all items
    if page is None:
        sales = base_query.all()
        return {
            "items": [s.to_dict(include_items=False) for s in sales],
            "count": len(sales),
        }

    per_page = min(per_page or 20, 100)  # Default 20, max 100
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    sales = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [s.to_dict(include_items=False) for s in sales],
        "count": len(sales),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def list_customer_sales(customer_id: int) -> list[Sale]:
    if not db.session.get(Customer, customer_id):
        raise CustomerNotFound(f"Customer {customer_id} not found", {"customer_id": customer_id})
    return (
        db.session.query(Sale)
        .filter_by(customer_id=customer_id)
        .order_by(Sale.created_at.desc(), Sale.id.desc())
        .all()
    )


def open_credit_sales(customer_id: int) -> list[Sale]:
    """Pending credit sales, oldest obligation first (due date, then id)."""
    return (
        db.session.query(Sale)
        .filter(
            Sale.customer_id == customer_id,
            Sale.payment_type == PAYMENT_TYPE_CREDIT,
            Sale.status == SALE_STATUS_PENDING,
        )
        .order_by(Sale.due_date.asc(), Sale.id.asc())
        .populate_existing()
        .all()
    )

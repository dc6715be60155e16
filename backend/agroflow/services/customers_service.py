# backend/agroflow/services/customers_service.py
"""
Customers Service

Customer master data and the credit account header (limit). The balance
itself is never written here: it belongs to the credit ledger.

- create_customer / update_customer take a validated patch dict
- customers are deactivated, never deleted (sales and payments keep
  pointing at them)
"""
from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..errors import CustomerNotFound
from ..models import Customer, Payment, Sale
from ..models.sales import SALE_STATUS_CANCELLED
from ..validation import ConflictError, ValidationError
from ..services.credit_ledger_service import credit_summary
from ..services.concurrency import begin_write, conditional_update, run_with_retry
from agroflow.money import cents_to_json
from agroflow.time_utils import to_iso_date, to_utc_z

# credit_balance_cents is moved only by the credit ledger
CUSTOMER_MUTABLE_FIELDS = {
    "name", "code", "email", "phone", "address", "notes",
    "credit_limit_cents", "credit_score", "is_active",
}


def apply_customer_patch(c: Customer, patch: dict) -> None:
    for k, v in patch.items():
        if k not in CUSTOMER_MUTABLE_FIELDS:
            continue
        setattr(c, k, v)


def _ensure_code_available(code: str, exclude_id: int | None = None) -> None:
    query = db.session.query(Customer).filter(Customer.code == code)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    if query.first():
        raise ConflictError("Customer code already exists.")


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise CustomerNotFound(f"Customer {customer_id} not found", {"customer_id": customer_id})
    return customer


def list_customers(
    *,
    page: int | None = None,
    per_page: int | None = None,
    search: str | None = None,
    include_inactive: bool = False,
) -> dict:
    """
    Customer listing with optional search and pagination.

    search matches name, code, email or phone (case-insensitive).
    """
    base_query = db.session.query(Customer)
    if not include_inactive:
        base_query = base_query.filter(Customer.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        base_query = base_query.filter(or_(
            Customer.name.ilike(pattern),
            Customer.code.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.phone.ilike(pattern),
        ))
    base_query = base_query.order_by(Customer.name.asc(), Customer.id.asc())

    if page is None:
        customers = base_query.all()
        return {
            "items": [c.to_dict() for c in customers],
            "count": len(customers),
        }

    per_page = min(per_page or 20, 100)
    page = max(page, 1)

    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1

    customers = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [c.to_dict() for c in customers],
        "count": len(customers),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def create_customer(*, patch: dict) -> Customer:
    """
    Create a customer from a validated patch dict.

    Raises:
        ValidationError: name or code missing
        ConflictError: code already used by another customer
    """
    if not patch.get("name") or not patch.get("code"):
        raise ValidationError("name and code are required")

    _ensure_code_available(patch["code"])

    c = Customer(credit_balance_cents=0, credit_limit_cents=0, is_active=True)
    apply_customer_patch(c, patch)

    db.session.add(c)
    db.session.commit()
    return c


def update_customer(*, customer_id: int, patch: dict) -> Customer:
    """
    Update a customer.

    Lowering the limit below what the customer already owes is rejected;
    the existing balance is never rewritten to fit a new limit. The limit is
    written with a conditional update under the write lock, so a credit sale
    posted concurrently cannot slip its balance above the new limit.
    """
    def _op() -> Customer:
        begin_write()
        c = get_customer(customer_id)

        if "code" in patch and patch["code"] != c.code:
            _ensure_code_available(patch["code"], exclude_id=c.id)

        new_limit = patch.get("credit_limit_cents")
        if new_limit is not None:
            updated = conditional_update(
                Customer,
                row_id=c.id,
                condition=Customer.credit_balance_cents <= new_limit,
                values={"credit_limit_cents": new_limit},
            )
            if not updated:
                db.session.refresh(c)
                raise ValidationError(
                    "credit_limit cannot be lower than the outstanding balance",
                    {
                        "credit_limit_cents": new_limit,
                        "credit_balance_cents": c.credit_balance_cents,
                    },
                )

        apply_customer_patch(c, {k: v for k, v in patch.items() if k != "credit_limit_cents"})
        db.session.commit()
        return c

    return run_with_retry(_op)


def deactivate_customer(customer_id: int) -> Customer:
    c = get_customer(customer_id)
    if c.is_active:
        c.is_active = False
    db.session.commit()
    return c


def customer_statement(customer_id: int) -> dict:
    """
    Account statement: every sale (debit) and payment (credit) for the
    customer, newest first, with the current credit position.
    """
    c = get_customer(customer_id)

    sales = db.session.query(Sale).filter_by(customer_id=c.id).all()
    payments = db.session.query(Payment).filter_by(customer_id=c.id).all()

    lines = []
    for s in sales:
        lines.append({
            "kind": "sale",
            "id": s.id,
            "occurred_at": s.created_at,
            "document_number": s.document_number,
            "payment_type": s.payment_type,
            "status": s.status,
            "amount": cents_to_json(s.total_amount_cents),
            "amount_cents": s.total_amount_cents,
            "due_date": to_iso_date(s.due_date),
        })
    for p in payments:
        lines.append({
            "kind": "payment",
            "id": p.id,
            "occurred_at": p.paid_at,
            "sale_id": p.sale_id,
            "method": p.method,
            "reference": p.reference,
            "amount": cents_to_json(p.amount_cents),
            "amount_cents": p.amount_cents,
        })

    lines.sort(key=lambda line: (line["occurred_at"], line["kind"] == "payment", line["id"]), reverse=True)
    for line in lines:
        line["occurred_at"] = to_utc_z(line["occurred_at"])

    return {
        "customer": c.to_dict(),
        "credit": credit_summary(c.id),
        "lines": lines,
        "totals": {
            "sales_cents": sum(s.total_amount_cents for s in sales if s.status != SALE_STATUS_CANCELLED),
            "payments_cents": sum(p.amount_cents for p in payments),
        },
    }

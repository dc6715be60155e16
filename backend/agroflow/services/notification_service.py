# Overview: Read-side projection of credit notifications and aging; never writes.

"""
Notification / Aging Deriver

Signals are recomputed from sales and customer balances on every call;
nothing is persisted. The same data and the same as_of date always produce
the same list in the same order.

SIGNAL TYPES:
- overdue: pending credit sale whose due date has passed
- upcoming: pending credit sale due within the upcoming window
- credit_warning: balance / limit at or above the warning threshold
"""

from __future__ import annotations

from datetime import date

from flask import current_app

from agroflow.extensions import db
from agroflow.errors import CustomerNotFound
from agroflow.models import Customer, Sale
from agroflow.models.sales import PAYMENT_TYPE_CREDIT, SALE_STATUS_PENDING
from agroflow.money import cents_to_json
from agroflow.time_utils import to_iso_date, today

NOTIFICATION_OVERDUE = "overdue"
NOTIFICATION_UPCOMING = "upcoming"
NOTIFICATION_CREDIT_WARNING = "credit_warning"

AGING_BUCKETS = ("current", "1_30", "31_60", "61_90", "over_90")


def _get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise CustomerNotFound(f"Customer {customer_id} not found", {"customer_id": customer_id})
    return customer


def _open_credit_sales(customer_id: int) -> list[Sale]:
    return (
        db.session.query(Sale)
        .filter(
            Sale.customer_id == customer_id,
            Sale.payment_type == PAYMENT_TYPE_CREDIT,
            Sale.status == SALE_STATUS_PENDING,
            Sale.due_date.isnot(None),
        )
        .order_by(Sale.id.asc())
        .all()
    )


def _sale_signal(kind: str, sale: Sale, as_of: date) -> dict:
    days = (sale.due_date - as_of).days
    signal = {
        "type": kind,
        "customer_id": sale.customer_id,
        "sale_id": sale.id,
        "document_number": sale.document_number,
        "amount": cents_to_json(sale.remaining_cents),
        "amount_cents": sale.remaining_cents,
        "due_date": to_iso_date(sale.due_date),
    }
    if kind == NOTIFICATION_OVERDUE:
        signal["days_overdue"] = -days
        signal["message"] = f"Payment for {sale.document_number} is {-days} day(s) overdue"
    else:
        signal["days_until_due"] = days
        signal["message"] = f"Payment for {sale.document_number} is due in {days} day(s)"
    return signal


def _utilization(customer: Customer) -> float:
    limit = customer.credit_limit_cents or 0
    balance = customer.credit_balance_cents or 0
    if limit == 0:
        return 1.0 if balance > 0 else 0.0
    return balance / limit


def derive_notifications(
    customer_id: int,
    *,
    as_of: date | None = None,
    upcoming_days: int | None = None,
    warning_threshold: float | None = None,
) -> list[dict]:
    """
    Notifications for one customer as of a calendar date.

    Ordering: overdue (most overdue first), upcoming (soonest first), then
    the credit warning; ties broken by sale id.
    """
    config = current_app.config
    as_of = as_of or today()
    if upcoming_days is None:
        upcoming_days = config.get("NOTIFICATION_UPCOMING_DAYS", 7)
    if warning_threshold is None:
        warning_threshold = config.get("CREDIT_WARNING_THRESHOLD", 0.9)

    customer = _get_customer(customer_id)

    overdue = []
    upcoming = []
    for sale in _open_credit_sales(customer.id):
        if sale.remaining_cents <= 0:
            continue
        days = (sale.due_date - as_of).days
        if days < 0:
            overdue.append(sale)
        elif days <= upcoming_days:
            upcoming.append(sale)

    overdue.sort(key=lambda s: (s.due_date, s.id))
    upcoming.sort(key=lambda s: (s.due_date, s.id))

    notifications = [_sale_signal(NOTIFICATION_OVERDUE, s, as_of) for s in overdue]
    notifications.extend(_sale_signal(NOTIFICATION_UPCOMING, s, as_of) for s in upcoming)

    ratio = _utilization(customer)
    if customer.credit_balance_cents > 0 and ratio >= warning_threshold:
        notifications.append({
            "type": NOTIFICATION_CREDIT_WARNING,
            "customer_id": customer.id,
            "current_balance": cents_to_json(customer.credit_balance_cents),
            "credit_limit": cents_to_json(customer.credit_limit_cents),
            "current_balance_cents": customer.credit_balance_cents,
            "credit_limit_cents": customer.credit_limit_cents,
            "utilization": round(ratio, 4),
            "message": f"Credit utilization at {ratio:.0%} of limit",
        })

    return notifications


def _bucket_for(days_overdue: int) -> str:
    if days_overdue <= 0:
        return "current"
    if days_overdue <= 30:
        return "1_30"
    if days_overdue <= 60:
        return "31_60"
    if days_overdue <= 90:
        return "61_90"
    return "over_90"


def customer_aging(customer_id: int, *, as_of: date | None = None) -> dict:
    """Outstanding credit per aging bucket (days past due date)."""
    as_of = as_of or today()
    customer = _get_customer(customer_id)

    buckets = {name: 0 for name in AGING_BUCKETS}
    for sale in _open_credit_sales(customer.id):
        buckets[_bucket_for((as_of - sale.due_date).days)] += sale.remaining_cents

    return {
        "customer_id": customer.id,
        "as_of": to_iso_date(as_of),
        "buckets_cents": buckets,
        "buckets": {name: cents_to_json(value) for name, value in buckets.items()},
        "total_outstanding_cents": sum(buckets.values()),
    }


def overdue_report(as_of: date | None = None) -> list[dict]:
    """Overdue signals across all active customers, grouped per customer."""
    as_of = as_of or today()
    customer_ids = [
        row.id
        for row in (
            db.session.query(Customer.id)
            .join(Sale, Sale.customer_id == Customer.id)
            .filter(
                Customer.is_active.is_(True),
                Sale.payment_type == PAYMENT_TYPE_CREDIT,
                Sale.status == SALE_STATUS_PENDING,
                Sale.due_date < as_of,
            )
            .distinct()
            .order_by(Customer.id.asc())
            .all()
        )
    ]

    report = []
    for customer_id in customer_ids:
        overdue = [
            n for n in derive_notifications(customer_id, as_of=as_of)
            if n["type"] == NOTIFICATION_OVERDUE
        ]
        if overdue:
            customer = db.session.get(Customer, customer_id)
            report.append({
                "customer_id": customer.id,
                "customer_name": customer.name,
                "customer_code": customer.code,
                "total_overdue_cents": sum(n["amount_cents"] for n in overdue),
                "notifications": overdue,
            })
    return report

# Overview: Service-layer operations for dashboard and analytics; read-only aggregates.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import func

from agroflow.extensions import db
from agroflow.models import Customer, Payment, Product, Sale, SaleItem
from agroflow.models.sales import (
    PAYMENT_TYPE_CREDIT,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PENDING,
)
from agroflow.money import cents_to_json
from agroflow.time_utils import parse_iso_datetime, to_utc_z, utcnow
from agroflow.validation import ValidationError


class ReportError(ValidationError):
    """Raised when report parameters are invalid."""
    kind = "ReportError"


SEGMENT_NO_CREDIT = "no_credit"
SEGMENT_LOW = "low"
SEGMENT_MEDIUM = "medium"
SEGMENT_HIGH = "high"

# Utilization upper bounds (exclusive) for low / medium; anything above is high
SEGMENT_LOW_MAX = 0.3
SEGMENT_MEDIUM_MAX = 0.7


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise ReportError("start and end must be ISO-8601 dates or datetimes")
    if start_dt and end_dt and start_dt > end_dt:
        raise ReportError("start must be before end")
    return start_dt, end_dt


def _apply_range(query, column, start_dt, end_dt):
    if start_dt:
        query = query.filter(column >= start_dt)
    if end_dt:
        query = query.filter(column <= end_dt)
    return query


def dashboard_summary(as_of: datetime | None = None) -> dict:
    """Headline numbers for the dashboard: today's takings, stock alerts, credit out."""
    now = as_of or utcnow()
    day_start = datetime(now.year, now.month, now.day)
    day_end = day_start + timedelta(days=1)

    today_revenue = db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0)).filter(
        Payment.paid_at >= day_start,
        Payment.paid_at < day_end,
    ).scalar()

    today_sales = db.session.query(func.count(Sale.id)).filter(
        Sale.created_at >= day_start,
        Sale.created_at < day_end,
        Sale.status != SALE_STATUS_CANCELLED,
    ).scalar()

    total_products = db.session.query(func.count(Product.id)).filter(
        Product.is_active.is_(True),
    ).scalar()

    low_stock = db.session.query(func.count(Product.id)).filter(
        Product.is_active.is_(True),
        Product.quantity <= Product.stock_threshold,
    ).scalar()

    pending_credit = db.session.query(func.coalesce(func.sum(Customer.credit_balance_cents), 0)).scalar()

    pending_sales = db.session.query(func.count(Sale.id)).filter(
        Sale.status == SALE_STATUS_PENDING,
    ).scalar()

    total_customers = db.session.query(func.count(Customer.id)).filter(
        Customer.is_active.is_(True),
    ).scalar()

    return {
        "as_of": to_utc_z(now),
        "today_revenue": cents_to_json(int(today_revenue or 0)),
        "today_revenue_cents": int(today_revenue or 0),
        "today_sales": int(today_sales or 0),
        "total_products": int(total_products or 0),
        "low_stock_products": int(low_stock or 0),
        "pending_credit": cents_to_json(int(pending_credit or 0)),
        "pending_credit_cents": int(pending_credit or 0),
        "pending_sales": int(pending_sales or 0),
        "total_customers": int(total_customers or 0),
    }


def sales_trends(*, period: str = "daily", start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    if period == "daily":
        period_expr = func.strftime("%Y-%m-%d", Sale.created_at)
    elif period == "weekly":
        period_expr = func.strftime("%Y-W%W", Sale.created_at)
    elif period == "monthly":
        period_expr = func.strftime("%Y-%m", Sale.created_at)
    else:
        raise ReportError("period must be daily, weekly, or monthly")

    query = db.session.query(
        period_expr.label("period"),
        func.count(Sale.id).label("sales_count"),
        func.coalesce(func.sum(Sale.total_amount_cents), 0).label("total_cents"),
        func.coalesce(func.sum(Sale.paid_amount_cents), 0).label("paid_cents"),
    ).filter(Sale.status != SALE_STATUS_CANCELLED)
    query = _apply_range(query, Sale.created_at, start_dt, end_dt)

    rows = query.group_by("period").order_by("period").all()
    return {
        "period": period,
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "rows": [
            {
                "period": row.period,
                "sales_count": int(row.sales_count or 0),
                "total": cents_to_json(int(row.total_cents or 0)),
                "total_cents": int(row.total_cents or 0),
                "paid_cents": int(row.paid_cents or 0),
            }
            for row in rows
        ],
    }


def top_products(*, limit: int = 5, start: str | None = None, end: str | None = None) -> list[dict]:
    if limit < 1:
        raise ReportError("limit must be >= 1")
    start_dt, end_dt = _parse_range(start, end)

    query = db.session.query(
        SaleItem.product_id.label("product_id"),
        Product.name.label("name"),
        Product.sku.label("sku"),
        func.sum(SaleItem.quantity).label("quantity_sold"),
        func.sum(SaleItem.line_total_cents).label("revenue_cents"),
    ).join(Sale, Sale.id == SaleItem.sale_id).join(
        Product, Product.id == SaleItem.product_id,
    ).filter(Sale.status != SALE_STATUS_CANCELLED)
    query = _apply_range(query, Sale.created_at, start_dt, end_dt)

    rows = (
        query.group_by(SaleItem.product_id, Product.name, Product.sku)
        .order_by(func.sum(SaleItem.quantity).desc(), SaleItem.product_id.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": row.product_id,
            "name": row.name,
            "sku": row.sku,
            "quantity_sold": int(row.quantity_sold or 0),
            "revenue": cents_to_json(int(row.revenue_cents or 0)),
            "revenue_cents": int(row.revenue_cents or 0),
        }
        for row in rows
    ]


def credit_analytics(*, start: str | None = None, end: str | None = None) -> dict:
    """
    Credit position:
    - total_credit_extended: credit sales posted in range (not cancelled)
    - outstanding_credit: current sum of customer balances
    - average_collection_period: mean days from credit sale to full payment
    - credit_utilization: outstanding / total limits, as a percentage
    """
    start_dt, end_dt = _parse_range(start, end)

    credit_sales = db.session.query(Sale).filter(
        Sale.payment_type == PAYMENT_TYPE_CREDIT,
        Sale.status != SALE_STATUS_CANCELLED,
    )
    credit_sales = _apply_range(credit_sales, Sale.created_at, start_dt, end_dt).all()

    extended = sum(s.total_amount_cents for s in credit_sales)
    collected = [
        (s.completed_at - s.created_at).total_seconds() / 86400
        for s in credit_sales
        if s.status == SALE_STATUS_COMPLETED and s.completed_at and s.created_at
    ]
    avg_collection = round(sum(collected) / len(collected), 1) if collected else None

    outstanding, total_limit = db.session.query(
        func.coalesce(func.sum(Customer.credit_balance_cents), 0),
        func.coalesce(func.sum(Customer.credit_limit_cents), 0),
    ).filter(Customer.is_active.is_(True)).one()
    outstanding = int(outstanding or 0)
    total_limit = int(total_limit or 0)

    return {
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "total_credit_extended": cents_to_json(extended),
        "total_credit_extended_cents": extended,
        "outstanding_credit": cents_to_json(outstanding),
        "outstanding_credit_cents": outstanding,
        "average_collection_period": avg_collection,
        "credit_utilization": round(outstanding * 100 / total_limit, 2) if total_limit else 0.0,
        "credit_sales_count": len(credit_sales),
    }


def payment_analytics(*, start: str | None = None, end: str | None = None) -> dict:
    start_dt, end_dt = _parse_range(start, end)

    query = db.session.query(
        Payment.method.label("method"),
        func.count(Payment.id).label("payment_count"),
        func.coalesce(func.sum(Payment.amount_cents), 0).label("total_cents"),
    )
    query = _apply_range(query, Payment.paid_at, start_dt, end_dt)
    rows = query.group_by(Payment.method).order_by(Payment.method.asc()).all()

    by_method = [
        {
            "method": row.method,
            "count": int(row.payment_count or 0),
            "total": cents_to_json(int(row.total_cents or 0)),
            "total_cents": int(row.total_cents or 0),
        }
        for row in rows
    ]
    total_cents = sum(m["total_cents"] for m in by_method)
    return {
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "total_received": cents_to_json(total_cents),
        "total_received_cents": total_cents,
        "payment_count": sum(m["count"] for m in by_method),
        "by_method": by_method,
    }


def segment_for(customer: Customer) -> str:
    if not customer.credit_limit_cents:
        return SEGMENT_NO_CREDIT
    ratio = customer.credit_balance_cents / customer.credit_limit_cents
    if ratio < SEGMENT_LOW_MAX:
        return SEGMENT_LOW
    if ratio < SEGMENT_MEDIUM_MAX:
        return SEGMENT_MEDIUM
    return SEGMENT_HIGH


def customer_segments() -> dict:
    """Active customers bucketed by credit utilization."""
    segments = {
        SEGMENT_NO_CREDIT: [],
        SEGMENT_LOW: [],
        SEGMENT_MEDIUM: [],
        SEGMENT_HIGH: [],
    }
    customers = (
        db.session.query(Customer)
        .filter(Customer.is_active.is_(True))
        .order_by(Customer.id.asc())
        .all()
    )
    for c in customers:
        segments[segment_for(c)].append({
            "id": c.id,
            "name": c.name,
            "code": c.code,
            "credit_limit_cents": c.credit_limit_cents,
            "credit_balance_cents": c.credit_balance_cents,
        })

    return {
        "segments": [
            {"segment": name, "count": len(members), "customers": members}
            for name, members in segments.items()
        ],
        "total_customers": len(customers),
    }

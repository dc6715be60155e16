# Overview: Service-layer operations for payment; encapsulates business logic and database work.

"""
Payment Posting Service

WHY: Record money received and apply it against outstanding sales.

DESIGN PRINCIPLES:
- Payments are separate from sales (many-to-one relationship)
- Installments: one sale can receive several payments (credit sales)
- No overpayment: paid_amount never exceeds total_amount
- Credit sales release credit through the ledger for every applied amount
- Online payments are accepted only with a positive gateway verdict
- Immutable: payments are never edited or deleted
"""

from __future__ import annotations

import secrets

from flask import current_app

from agroflow.extensions import db
from agroflow.errors import (
    AgroFlowError,
    CustomerNotFound,
    OverpaymentRejected,
    PaymentNotFound,
    PaymentVerificationFailed,
    SaleNotFound,
    SaleStateError,
)
from agroflow.models import Customer, Payment, Sale
from agroflow.models.sales import (
    METHOD_CASH,
    METHOD_ONLINE,
    PAYMENT_TYPE_CREDIT,
    PAYMENT_TYPE_ONLINE,
    SALE_STATUS_CANCELLED,
    SALE_STATUS_COMPLETED,
    SALE_STATUS_PENDING,
)
from agroflow.time_utils import utcnow
from agroflow.validation import GatewayVerification, PaymentRequest, ValidationError
from agroflow.services import credit_ledger_service
from agroflow.services.concurrency import begin_write, conditional_update, lock_for_update, run_with_retry
from agroflow.services.gateway_service import PaymentGateway, get_gateway, upi_payment_request
from agroflow.services.sales_service import open_credit_sales


# =============================================================================
# PAYMENT STATUS (CONSTANTS)
# =============================================================================

PAYMENT_STATUS_UNPAID = "UNPAID"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"


# =============================================================================
# PAYMENT POSTING
# =============================================================================

def post_payment(
    request: PaymentRequest,
    *,
    gateway: PaymentGateway | None = None,
    actor_user_id: int | None = None,
    batch_reference: str | None = None,
    gateway_verified: bool = False,
) -> list[Payment]:
    """
    Post a payment against one sale (sale_id) or across a customer's open
    credit sales (customer_id only, oldest obligation first).

    Returns the Payment rows created (one per sale the amount touched).

    gateway_verified: the caller already holds a positive gateway verdict for
    request.verification (verify-payment route), so the gateway is not asked
    again.

    Raises:
        SaleNotFound / CustomerNotFound: unknown reference
        SaleStateError: sale cancelled
        OverpaymentRejected: amount exceeds what is owed
        PaymentVerificationFailed: online payment not verified by the gateway
    """
    if request.method == METHOD_ONLINE:
        # A gateway order belongs to one sale, so online money cannot be split
        if request.sale_id is None:
            raise ValidationError("online payments must reference a sale_id")
        if gateway_verified:
            if request.verification is None:
                raise PaymentVerificationFailed("Online payments require gateway verification")
        else:
            _verify_online_payment(request.verification, gateway)

    def _op() -> list[Payment]:
        begin_write()
        if request.sale_id is not None:
            sale = _lock_sale(request.sale_id)
            if request.customer_id is not None and request.customer_id != sale.customer_id:
                raise ValidationError("sale_id does not belong to customer_id")
            payments = [_apply_to_sale(sale, request.amount_cents, request, actor_user_id)]
        else:
            payments = _allocate_to_customer(request, actor_user_id)

        if batch_reference:
            for payment in payments:
                payment.batch_reference = batch_reference
        db.session.commit()
        return payments

    return run_with_retry(_op)


def record_cash_payment(sale_id: int, *, actor_user_id: int | None = None) -> Payment:
    """Settle the full remaining balance of a sale in cash."""
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found", {"sale_id": sale_id})
    if sale.remaining_cents <= 0:
        raise OverpaymentRejected(
            "Sale has no remaining balance due",
            {"sale_id": sale.id, "remaining_cents": sale.remaining_cents},
        )
    request = PaymentRequest(
        amount_cents=sale.remaining_cents,
        method=METHOD_CASH,
        sale_id=sale.id,
        reference=sale.document_number,
    )
    return post_payment(request, actor_user_id=actor_user_id)[0]


def post_bulk_payments(rows, *, actor_user_id: int | None = None) -> dict:
    """
    Post a list of customer payments, each in its own transaction.

    A failing row never affects the others. Online rows are rejected since
    there is no interactive gateway checkout in a bulk upload.

    Returns {"batch_reference", "processed": [...], "failed": [...]}.
    """
    if not isinstance(rows, list):
        raise ValidationError("Bulk payload must be a list of payments")

    batch_reference = f"BULK-{secrets.token_hex(6).upper()}"
    processed = []
    failed = []

    for index, row in enumerate(rows):
        try:
            request = PaymentRequest.from_json(row)
            if request.method == METHOD_ONLINE:
                raise ValidationError("online payments cannot be posted in bulk")
            payments = post_payment(
                request,
                actor_user_id=actor_user_id,
                batch_reference=batch_reference,
            )
            processed.append({
                "index": index,
                "payments": [p.to_dict() for p in payments],
            })
        except AgroFlowError as exc:
            db.session.rollback()
            failed.append({"index": index, **exc.to_dict()})

    return {
        "batch_reference": batch_reference,
        "processed": processed,
        "failed": failed,
    }


def prepare_online_checkout(sale_id: int, *, gateway: PaymentGateway | None = None) -> dict:
    """
    Open (or reuse) the gateway order for an online sale and build the UPI
    request rendered as a QR code by the client.
    """
    gateway = gateway or get_gateway()

    def _op() -> dict:
        begin_write()
        sale = _lock_sale(sale_id)
        if sale.payment_type != PAYMENT_TYPE_ONLINE:
            raise SaleStateError("Sale is not an online sale", {"sale_id": sale.id})
        if sale.status != SALE_STATUS_PENDING:
            raise SaleStateError(f"Cannot take payment for a {sale.status} sale", {"sale_id": sale.id})

        if not sale.gateway_order_id:
            order = gateway.create_order(
                sale.remaining_cents,
                current_app.config.get("CURRENCY", "INR"),
                receipt=sale.document_number,
            )
            sale.gateway_order_id = order.order_id
        db.session.commit()
        return upi_payment_request(sale=sale, order_id=sale.gateway_order_id)

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment(payment_id: int) -> Payment:
    payment = db.session.get(Payment, payment_id)
    if not payment:
        raise PaymentNotFound(f"Payment {payment_id} not found", {"payment_id": payment_id})
    return payment


def list_sale_payments(sale_id: int) -> list[Payment]:
    if not db.session.get(Sale, sale_id):
        raise SaleNotFound(f"Sale {sale_id} not found", {"sale_id": sale_id})
    return (
        db.session.query(Payment)
        .filter_by(sale_id=sale_id)
        .order_by(Payment.paid_at.asc(), Payment.id.asc())
        .all()
    )


def list_customer_payments(customer_id: int) -> list[Payment]:
    if not db.session.get(Customer, customer_id):
        raise CustomerNotFound(f"Customer {customer_id} not found", {"customer_id": customer_id})
    return (
        db.session.query(Payment)
        .filter_by(customer_id=customer_id)
        .order_by(Payment.paid_at.desc(), Payment.id.desc())
        .all()
    )


def payment_summary(sale_id: int) -> dict:
    """
    Payment summary for a sale.

    Returns:
        - total_due_cents / total_paid_cents / remaining_cents
        - payment_status: UNPAID, PARTIAL, PAID
        - payments: list of payment records
    """
    sale = db.session.get(Sale, sale_id)
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found", {"sale_id": sale_id})

    if sale.paid_amount_cents == 0 and sale.total_amount_cents > 0:
        status = PAYMENT_STATUS_UNPAID
    elif sale.paid_amount_cents < sale.total_amount_cents:
        status = PAYMENT_STATUS_PARTIAL
    else:
        status = PAYMENT_STATUS_PAID

    return {
        "sale_id": sale.id,
        "sale_status": sale.status,
        "total_due_cents": sale.total_amount_cents,
        "total_paid_cents": sale.paid_amount_cents,
        "remaining_cents": sale.remaining_cents,
        "payment_status": status,
        "payments": [p.to_dict() for p in list_sale_payments(sale.id)],
    }


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _verify_online_payment(verification: GatewayVerification | None, gateway: PaymentGateway | None) -> None:
    if verification is None:
        raise PaymentVerificationFailed("Online payments require gateway verification")
    gateway = gateway or get_gateway()
    if not gateway.verify(verification.order_id, verification.payment_id, verification.signature):
        raise PaymentVerificationFailed(
            "Payment verification failed",
            {"order_id": verification.order_id, "payment_id": verification.payment_id},
        )


def _lock_sale(sale_id: int) -> Sale:
    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
    if not sale:
        raise SaleNotFound(f"Sale {sale_id} not found", {"sale_id": sale_id})
    return sale


def _overpayment(sale: Sale, amount_cents: int) -> OverpaymentRejected:
    return OverpaymentRejected(
        "Payment exceeds remaining balance",
        {
            "sale_id": sale.id,
            "total_amount_cents": sale.total_amount_cents,
            "paid_amount_cents": sale.paid_amount_cents,
            "remaining_cents": sale.remaining_cents,
            "requested_cents": amount_cents,
        },
    )


def _apply_to_sale(sale: Sale, amount_cents: int, request: PaymentRequest, actor_user_id: int | None) -> Payment:
    if sale.status == SALE_STATUS_CANCELLED:
        raise SaleStateError("Cannot add payment to a cancelled sale", {"sale_id": sale.id})

    if sale.paid_amount_cents + amount_cents > sale.total_amount_cents:
        raise _overpayment(sale, amount_cents)

    verification = request.verification if request.method == METHOD_ONLINE else None
    if verification:
        if sale.gateway_order_id and verification.order_id != sale.gateway_order_id:
            raise PaymentVerificationFailed(
                "Gateway order does not match the sale",
                {"sale_id": sale.id, "order_id": verification.order_id},
            )
        already = (
            db.session.query(Payment.id)
            .filter_by(gateway_payment_id=verification.payment_id)
            .first()
        )
        if already:
            raise PaymentVerificationFailed(
                "Gateway payment already applied",
                {"payment_id": verification.payment_id, "existing_payment_id": already.id},
            )

    # paid + amount <= total is re-checked by the database in the same write
    applied = conditional_update(
        Sale,
        row_id=sale.id,
        condition=(Sale.status != SALE_STATUS_CANCELLED)
        & (Sale.paid_amount_cents + amount_cents <= Sale.total_amount_cents),
        values={"paid_amount_cents": Sale.paid_amount_cents + amount_cents},
    )
    if not applied:
        db.session.refresh(sale)
        raise _overpayment(sale, amount_cents)
    db.session.refresh(sale)

    now = utcnow()
    payment = Payment(
        customer_id=sale.customer_id,
        sale_id=sale.id,
        amount_cents=amount_cents,
        method=request.method,
        paid_at=request.paid_at or now,
        reference=request.reference,
        notes=request.notes,
        gateway_order_id=verification.order_id if verification else None,
        gateway_payment_id=verification.payment_id if verification else None,
        verified=verification is not None,
        created_by_user_id=actor_user_id,
        created_at=now,
    )
    db.session.add(payment)
    db.session.flush()

    if sale.payment_type == PAYMENT_TYPE_CREDIT:
        credit_ledger_service.release_credit(
            sale.customer_id,
            amount_cents,
            sale_id=sale.id,
            payment_id=payment.id,
            note=f"Payment on {sale.document_number}",
        )

    if sale.paid_amount_cents == sale.total_amount_cents:
        sale.status = SALE_STATUS_COMPLETED
        sale.completed_at = now

    return payment


def _allocate_to_customer(request: PaymentRequest, actor_user_id: int | None) -> list[Payment]:
    customer = db.session.get(Customer, request.customer_id)
    if not customer:
        raise CustomerNotFound(
            f"Customer {request.customer_id} not found",
            {"customer_id": request.customer_id},
        )

    open_sales = open_credit_sales(customer.id)
    outstanding = sum(s.remaining_cents for s in open_sales)
    if request.amount_cents > outstanding:
        raise OverpaymentRejected(
            "Payment exceeds outstanding credit",
            {
                "customer_id": customer.id,
                "outstanding_cents": outstanding,
                "requested_cents": request.amount_cents,
            },
        )

    batch_reference = None
    remaining = request.amount_cents
    allocations = []
    for sale in open_sales:
        if remaining <= 0:
            break
        applied = min(remaining, sale.remaining_cents)
        if applied <= 0:
            continue
        allocations.append((sale, applied))
        remaining -= applied

    if len(allocations) > 1:
        batch_reference = f"SPLIT-{secrets.token_hex(6).upper()}"

    payments = []
    for sale, applied in allocations:
        locked = _lock_sale(sale.id)
        payment = _apply_to_sale(locked, applied, request, actor_user_id)
        payment.batch_reference = batch_reference
        payments.append(payment)
    return payments

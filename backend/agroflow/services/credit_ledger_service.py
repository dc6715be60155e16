# Overview: Service-layer operations for the credit ledger; owns all credit balance arithmetic.

from __future__ import annotations

from flask import current_app

from agroflow.extensions import db
from agroflow.errors import CreditLimitExceeded, CustomerNotFound, OverpaymentRejected
from agroflow.models import CreditLedgerEntry, Customer
from agroflow.time_utils import utcnow
from agroflow.validation import ValidationError
from agroflow.services.concurrency import conditional_update

"""
Credit Ledger Invariants (authoritative)

- customers.credit_balance_cents changes only through reserve_credit()
  and release_credit(); no other module writes it.
- Every change is a single conditional UPDATE guarded by the limit (reserve)
  or by the outstanding balance (release), followed by an append-only
  CreditLedgerEntry in the same transaction.
- Amounts are integer minor units. Nothing here commits: the posting
  service that calls in owns the transaction and its rollback.
- 0 <= credit_balance_cents <= credit_limit_cents holds whenever the
  credit limit policy is "block".
"""

ENTRY_RESERVE = "RESERVE"
ENTRY_RELEASE = "RELEASE"

POLICY_BLOCK = "block"
POLICY_WARN = "warn"
RELEASE_REJECT = "reject"
RELEASE_CLAMP = "clamp"


def credit_limit_policy() -> str:
    policy = current_app.config.get("CREDIT_LIMIT_POLICY", POLICY_BLOCK)
    if policy not in (POLICY_BLOCK, POLICY_WARN):
        raise ValueError(f"Unknown CREDIT_LIMIT_POLICY: {policy}")
    return policy


def credit_release_policy() -> str:
    policy = current_app.config.get("CREDIT_RELEASE_POLICY", RELEASE_REJECT)
    if policy not in (RELEASE_REJECT, RELEASE_CLAMP):
        raise ValueError(f"Unknown CREDIT_RELEASE_POLICY: {policy}")
    return policy


def _get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise CustomerNotFound(f"Customer {customer_id} not found", {"customer_id": customer_id})
    return customer


def _require_positive(amount_cents: int) -> None:
    if not isinstance(amount_cents, int) or isinstance(amount_cents, bool) or amount_cents <= 0:
        raise ValidationError("amount must be a positive integer number of minor units")


def _append_entry(
    *,
    customer: Customer,
    entry_type: str,
    amount_cents: int,
    sale_id: int | None,
    payment_id: int | None,
    note: str | None,
) -> CreditLedgerEntry:
    entry = CreditLedgerEntry(
        customer_id=customer.id,
        sale_id=sale_id,
        payment_id=payment_id,
        entry_type=entry_type,
        amount_cents=amount_cents,
        balance_after_cents=customer.credit_balance_cents,
        over_limit=customer.credit_balance_cents > customer.credit_limit_cents,
        occurred_at=utcnow(),
        note=note,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def reserve_credit(
    customer_id: int,
    amount_cents: int,
    *,
    sale_id: int | None = None,
    allow_over_limit: bool = False,
    note: str | None = None,
) -> int:
    """
    Add amount_cents to the customer's outstanding balance.

    Fails with CreditLimitExceeded when balance + amount would exceed the
    limit. allow_over_limit skips the guard; the "warn" policy uses it after
    a first blocked attempt, and the resulting journal entry is marked
    over_limit.

    Returns the new balance in minor units.
    """
    _require_positive(amount_cents)
    customer = _get_customer(customer_id)

    condition = None
    if not allow_over_limit:
        condition = Customer.credit_balance_cents + amount_cents <= Customer.credit_limit_cents

    updated = conditional_update(
        Customer,
        row_id=customer_id,
        condition=condition,
        values={"credit_balance_cents": Customer.credit_balance_cents + amount_cents},
    )
    db.session.refresh(customer)

    if not updated:
        raise CreditLimitExceeded(
            "Credit limit exceeded",
            {
                "customer_id": customer_id,
                "credit_limit_cents": customer.credit_limit_cents,
                "credit_balance_cents": customer.credit_balance_cents,
                "requested_cents": amount_cents,
                "available_cents": customer.available_credit_cents,
            },
        )

    _append_entry(
        customer=customer,
        entry_type=ENTRY_RESERVE,
        amount_cents=amount_cents,
        sale_id=sale_id,
        payment_id=None,
        note=note,
    )
    return customer.credit_balance_cents


def release_credit(
    customer_id: int,
    amount_cents: int,
    *,
    sale_id: int | None = None,
    payment_id: int | None = None,
    note: str | None = None,
) -> int:
    """
    Subtract amount_cents from the customer's outstanding balance.

    Releasing more than the outstanding balance is governed by
    CREDIT_RELEASE_POLICY: "reject" raises OverpaymentRejected, "clamp"
    releases only what is owed.

    Returns the new balance in minor units.
    """
    _require_positive(amount_cents)
    customer = _get_customer(customer_id)

    if credit_release_policy() == RELEASE_CLAMP:
        amount_cents = min(amount_cents, customer.credit_balance_cents)
        if amount_cents == 0:
            return customer.credit_balance_cents

    updated = conditional_update(
        Customer,
        row_id=customer_id,
        condition=Customer.credit_balance_cents >= amount_cents,
        values={"credit_balance_cents": Customer.credit_balance_cents - amount_cents},
    )
    db.session.refresh(customer)

    if not updated:
        raise OverpaymentRejected(
            "Release exceeds outstanding credit balance",
            {
                "customer_id": customer_id,
                "credit_balance_cents": customer.credit_balance_cents,
                "requested_cents": amount_cents,
            },
        )

    _append_entry(
        customer=customer,
        entry_type=ENTRY_RELEASE,
        amount_cents=amount_cents,
        sale_id=sale_id,
        payment_id=payment_id,
        note=note,
    )
    return customer.credit_balance_cents


def available_credit(customer_id: int) -> int:
    """Pure read: credit_limit - credit_balance (negative when over limit)."""
    return _get_customer(customer_id).available_credit_cents


def credit_summary(customer_id: int) -> dict:
    customer = _get_customer(customer_id)
    limit = customer.credit_limit_cents
    balance = customer.credit_balance_cents
    return {
        "customer_id": customer.id,
        "credit_limit_cents": limit,
        "credit_balance_cents": balance,
        "available_credit_cents": limit - balance,
        "utilization": round(balance / limit, 4) if limit else (1.0 if balance else 0.0),
    }


def ledger_entries(customer_id: int) -> list[CreditLedgerEntry]:
    _get_customer(customer_id)
    return (
        db.session.query(CreditLedgerEntry)
        .filter_by(customer_id=customer_id)
        .order_by(CreditLedgerEntry.occurred_at.asc(), CreditLedgerEntry.id.asc())
        .all()
    )

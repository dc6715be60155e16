from __future__ import annotations

from agroflow.extensions import db
from agroflow.money import cents_to_json
from agroflow.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer master data with a credit account.

    CREDIT ACCOUNT:
    - credit_limit_cents: maximum balance the customer may carry
    - credit_balance_cents: amount currently owed across open credit sales

    credit_balance_cents is only ever mutated through
    services.credit_ledger_service (conditional UPDATE + journal entry).
    Customers are never deleted; deactivation hides them from new sales.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_customers_code"),
        db.CheckConstraint("credit_limit_cents >= 0", name="ck_customers_limit_non_negative"),
        db.CheckConstraint("credit_balance_cents >= 0", name="ck_customers_balance_non_negative"),
        db.Index("ix_customers_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    credit_limit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    # Supplied by an external scoring process; informational only
    credit_score = db.Column(db.Integer, nullable=True)

    last_purchase_at = db.Column(db.DateTime(timezone=True), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def available_credit_cents(self) -> int:
        return (self.credit_limit_cents or 0) - (self.credit_balance_cents or 0)

    def __repr__(self) -> str:
        return f"<Customer id={self.id} code={self.code!r} balance={self.credit_balance_cents}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "notes": self.notes,
            "credit_limit": cents_to_json(self.credit_limit_cents),
            "credit_balance": cents_to_json(self.credit_balance_cents),
            "available_credit": cents_to_json(self.available_credit_cents),
            "credit_limit_cents": self.credit_limit_cents,
            "credit_balance_cents": self.credit_balance_cents,
            "credit_score": self.credit_score,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class CreditLedgerEntry(db.Model):
    """
    Append-only journal of credit balance mutations.

    ENTRY TYPES:
    - RESERVE: credit sale posted (balance increases)
    - RELEASE: payment applied or credit sale cancelled (balance decreases)

    IMMUTABLE: Entries are written in the same transaction as the balance
    change they record and are never updated or deleted.
    """
    __tablename__ = "credit_ledger_entries"
    __table_args__ = (
        db.Index("ix_credit_ledger_customer_occurred", "customer_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    payment_id = db.Column(db.Integer, db.ForeignKey("payments.id"), nullable=True, index=True)

    entry_type = db.Column(db.String(16), nullable=False)  # RESERVE, RELEASE
    amount_cents = db.Column(db.Integer, nullable=False)
    balance_after_cents = db.Column(db.Integer, nullable=False)
    over_limit = db.Column(db.Boolean, nullable=False, default=False)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    note = db.Column(db.String(255), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("ledger_entries", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "payment_id": self.payment_id,
            "entry_type": self.entry_type,
            "amount": cents_to_json(self.amount_cents),
            "amount_cents": self.amount_cents,
            "balance_after": cents_to_json(self.balance_after_cents),
            "balance_after_cents": self.balance_after_cents,
            "over_limit": self.over_limit,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
        }

from __future__ import annotations

from agroflow.extensions import db
from agroflow.money import cents_to_json
from agroflow.time_utils import to_iso_date, to_utc_z

PAYMENT_TYPE_CASH = "cash"
PAYMENT_TYPE_CREDIT = "credit"
PAYMENT_TYPE_ONLINE = "online"
PAYMENT_TYPES = (PAYMENT_TYPE_CASH, PAYMENT_TYPE_CREDIT, PAYMENT_TYPE_ONLINE)

SALE_STATUS_PENDING = "pending"
SALE_STATUS_COMPLETED = "completed"
SALE_STATUS_CANCELLED = "cancelled"

METHOD_CASH = "cash"
METHOD_BANK_TRANSFER = "bank_transfer"
METHOD_CREDIT_CARD = "credit_card"
METHOD_CHECK = "check"
METHOD_ONLINE = "online"
PAYMENT_METHODS = (METHOD_CASH, METHOD_BANK_TRANSFER, METHOD_CREDIT_CARD, METHOD_CHECK, METHOD_ONLINE)


class Sale(db.Model):
    """
    Sale document.

    LIFECYCLE:
    - pending: credit or online sale awaiting payment
    - completed: paid_amount_cents == total_amount_cents
    - cancelled: pending sale withdrawn; stock restored, unpaid credit released

    Items are written once at posting and never edited. paid_amount_cents
    and status are only changed by services.payment_service (and
    cancel_sale for the cancelled state).
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("document_number", name="uq_sales_document_number"),
        db.CheckConstraint("paid_amount_cents <= total_amount_cents", name="ck_sales_paid_le_total"),
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_sales_paid_non_negative"),
        db.Index("ix_sales_customer_status", "customer_id", "status"),
        db.Index("ix_sales_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "S-000123"), assigned after insert
    document_number = db.Column(db.String(64), nullable=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    payment_type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=SALE_STATUS_PENDING, index=True)

    # All amounts in minor units
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Credit details (payment_type == credit)
    due_date = db.Column(db.Date, nullable=True, index=True)
    interest_rate_bps = db.Column(db.Integer, nullable=True)
    credit_limit_warning = db.Column(db.Boolean, nullable=False, default=False)

    # Online sales: gateway order awaiting a verified payment
    gateway_order_id = db.Column(db.String(64), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.position",
    )

    @property
    def remaining_cents(self) -> int:
        return (self.total_amount_cents or 0) - (self.paid_amount_cents or 0)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "document_number": self.document_number,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else None,
            "payment_type": self.payment_type,
            "status": self.status,
            "total_amount": cents_to_json(self.total_amount_cents),
            "paid_amount": cents_to_json(self.paid_amount_cents),
            "remaining_amount": cents_to_json(self.remaining_cents),
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "credit_details": None,
            "credit_limit_warning": self.credit_limit_warning,
            "gateway_order_id": self.gateway_order_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
        }
        if self.payment_type == PAYMENT_TYPE_CREDIT:
            data["credit_details"] = {
                "due_date": to_iso_date(self.due_date),
                "interest_rate_bps": self.interest_rate_bps,
            }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """Line item on a sale with name and price snapshots taken at posting."""
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "position": self.position,
            "name": self.name,
            "quantity": self.quantity,
            "unit_price": cents_to_json(self.unit_price_cents),
            "line_total": cents_to_json(self.line_total_cents),
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Payment(db.Model):
    """
    Payment received from a customer.

    METHODS: cash, bank_transfer, credit_card, check, online

    A payment is applied against exactly one sale when sale_id is set.
    Online payments are only created after the gateway verified them; the
    gateway signature itself is never stored, only the verified flag and
    the order/payment ids for reconciliation.

    IMMUTABLE: Payments are never edited or deleted.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        db.Index("ix_payments_customer_paid_at", "customer_id", "paid_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False, index=True)

    # Business date of the payment (may be back-dated by bulk imports)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    gateway_order_id = db.Column(db.String(64), nullable=True)
    gateway_payment_id = db.Column(db.String(64), nullable=True, unique=True)
    verified = db.Column(db.Boolean, nullable=False, default=False)

    # Shared by all rows created from one bulk upload or one split payment
    batch_reference = db.Column(db.String(64), nullable=True, index=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("payments", lazy=True))
    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_id": self.sale_id,
            "amount": cents_to_json(self.amount_cents),
            "amount_cents": self.amount_cents,
            "method": self.method,
            "paid_at": to_utc_z(self.paid_at),
            "reference": self.reference,
            "notes": self.notes,
            "gateway_order_id": self.gateway_order_id,
            "gateway_payment_id": self.gateway_payment_id,
            "verified": self.verified,
            "batch_reference": self.batch_reference,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }

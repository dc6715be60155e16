from __future__ import annotations

from agroflow.extensions import db
from agroflow.money import cents_to_json
from agroflow.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with stock on hand.

    STOCK DESIGN:
    quantity is set when the product is created. Afterwards only sale
    posting (decrement) and sale cancellation (restock) change it, both via
    a conditional UPDATE in services.sales_service. The check constraint
    backs the "never negative" rule at the database level.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.CheckConstraint("quantity >= 0", name="ck_products_quantity_non_negative"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    category = db.Column(db.String(64), nullable=True, index=True)

    # Authoritative storage in minor units (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    supplier_name = db.Column(db.String(255), nullable=True)
    supplier_contact = db.Column(db.String(255), nullable=True)
    supplier_email = db.Column(db.String(255), nullable=True)
    supplier_phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_low_stock(self) -> bool:
        return (self.quantity or 0) <= (self.stock_threshold or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": cents_to_json(self.price_cents),
            "price_cents": self.price_cents,
            "quantity": self.quantity,
            "stock_threshold": self.stock_threshold,
            "is_low_stock": self.is_low_stock,
            "supplier": {
                "name": self.supplier_name,
                "contact_info": self.supplier_contact,
                "email": self.supplier_email,
                "phone": self.supplier_phone,
            },
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }

from __future__ import annotations

import uuid

from ..extensions import db
from stockledger.time_utils import to_utc_z


def new_id() -> str:
    return uuid.uuid4().hex


MOVEMENT_ENTRY = "entry"
MOVEMENT_SALE = "sale"
MOVEMENT_CONSIGNMENT_SALE = "consignment_sale"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_RETURN = "return"

MOVEMENT_KINDS = (
    MOVEMENT_ENTRY,
    MOVEMENT_SALE,
    MOVEMENT_CONSIGNMENT_SALE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
)


class Product(db.Model):
    """
    Product master data.

    QUANTITY DESIGN DECISION:
    Product.quantity is a materialized view of the stock_movements ledger.
    - quantity == SUM(stock_movements.quantity_delta) for the product
    - Only inventory_service writes it, in the same transaction that
      appends or removes the movement (snapshot restore replaces both)
    - Product edits never accept a quantity; corrections are adjustments

    SKU is a display code; it is not required to be unique.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_category", "category"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(120), nullable=False, default="General")

    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    # Compressed data URL or external reference
    image = db.Column(db.Text, nullable=True)

    # Units per case used when receiving or selling in bulk
    default_bulk_size = db.Column(db.Integer, nullable=True)

    updated_at = db.Column(db.DateTime, nullable=False)

    movements = db.relationship(
        "StockMovement",
        backref="product",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} quantity={self.quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "sku": self.sku,
            "category": self.category,
            "quantity": self.quantity,
            "price_cents": self.price_cents,
            "image": self.image,
            "default_bulk_size": self.default_bulk_size,
            "updated_at": to_utc_z(self.updated_at),
        }


class StockMovement(db.Model):
    """
    One ledger row: a signed change to a product's quantity.

    Rows are never edited. A mistake is corrected by deleting the row,
    which applies the inverse delta to the product (see
    inventory_service.reverse_movement).
    """
    __tablename__ = "stock_movements"

    id = db.Column(db.String(32), primary_key=True, default=new_id)

    product_id = db.Column(db.String(32), db.ForeignKey("products.id"), nullable=False, index=True)

    kind = db.Column(db.String(32), nullable=False, index=True)

    # entries/returns > 0, sales/consignment < 0, adjustments either way
    quantity_delta = db.Column(db.Integer, nullable=False)

    occurred_at = db.Column(db.DateTime, nullable=False, index=True)

    note = db.Column(db.String(255), nullable=True)

    __table_args__ = (
        db.Index("ix_movements_product_occurred", "product_id", "occurred_at"),
    )

    def __repr__(self) -> str:
        return f"<StockMovement id={self.id} kind={self.kind} delta={self.quantity_delta} product_id={self.product_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "kind": self.kind,
            "quantity_delta": self.quantity_delta,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
        }

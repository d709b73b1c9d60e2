# backend/stockledger/services/products_service.py
"""
Products Service

Product rows carry a ledger-derived quantity. Product edits never set it:
- create_product books any opening stock as an 'adjustment' movement
- update_product rejects a quantity field outright
- delete_product removes the product together with its movements
"""
from __future__ import annotations

import random
import string

from ..extensions import db
from ..models import Product
from ..validation import ValidationError, NotFoundError, is_strict_int
from stockledger.time_utils import utcnow
from .concurrency import run_locked
from .inventory_service import record_opening_stock
from .settings_service import ensure_category

PRODUCT_MUTABLE_FIELDS = {"sku", "name", "category", "price_cents", "image", "default_bulk_size"}

_SKU_ALPHABET = string.ascii_uppercase + string.digits


def generate_sku() -> str:
    """Short readable display code, e.g. '8X29-A1'. Not guaranteed unique."""
    part1 = "".join(random.choices(_SKU_ALPHABET, k=4))
    part2 = "".join(random.choices(_SKU_ALPHABET, k=2))
    return f"{part1}-{part2}"


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def list_products(*, category: str | None = None, search: str | None = None) -> list[Product]:
    q = db.session.query(Product)
    if category:
        q = q.filter(Product.category == category)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter((Product.name.ilike(like)) | (Product.sku.ilike(like)))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def get_product(product_id: str) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def create_product(*, patch: dict, initial_quantity: int = 0) -> Product:
    """
    Create a product. Opening stock goes through the ledger.

    A category not yet in the config list is appended to it.
    """
    if "quantity" in patch:
        raise ValidationError("quantity is derived from stock movements; use initial_quantity")
    if not patch.get("name"):
        raise ValidationError("name is required")
    if not is_strict_int(initial_quantity) or initial_quantity < 0:
        raise ValidationError("initial_quantity must be a non-negative integer")

    def _op():
        now = utcnow()
        product = Product(quantity=0, updated_at=now)
        apply_product_patch(product, patch)
        if not product.sku:
            product.sku = generate_sku()
        if not product.category:
            product.category = "General"
        db.session.add(product)
        db.session.flush()

        record_opening_stock(product, initial_quantity, now)

        ensure_category(product.category)
        db.session.commit()
        return product

    return run_locked(_op)


def update_product(*, product_id: str, patch: dict) -> Product:
    if "quantity" in patch:
        raise ValidationError("quantity is derived from stock movements; record an adjustment instead")

    def _op():
        product = get_product(product_id)
        apply_product_patch(product, patch)
        product.updated_at = utcnow()
        if "category" in patch:
            ensure_category(product.category)
        db.session.commit()
        return product

    return run_locked(_op)


def delete_product(*, product_id: str) -> None:
    """Delete a product and its ledger rows (ORM cascade)."""
    def _op():
        product = get_product(product_id)
        db.session.delete(product)
        db.session.commit()

    run_locked(_op)

# Overview: Ledger engine; every stock-affecting operation appends or removes a movement and updates the product in the same transaction.

# backend/stockledger/services/inventory_service.py

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import func

from ..extensions import db
from ..models import (
    Debt,
    Product,
    StockMovement,
    MOVEMENT_ENTRY,
    MOVEMENT_SALE,
    MOVEMENT_CONSIGNMENT_SALE,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_RETURN,
)
from ..validation import (
    ValidationError,
    NotFoundError,
    MissingClientError,
    is_strict_int,
    require_positive_int,
    require_non_negative_int,
)
from stockledger.time_utils import utcnow
from .concurrency import run_locked
from . import debt_service
"""
Inventory Ledger Invariants (authoritative)

Inventory model:
- stock_movements is the source of truth. Product.quantity is a cache:
    product.quantity == SUM(quantity_delta) over the product's movements
- The cache is only written here, in the same transaction as the
  movement insert/delete that changes it.

Signs:
- entry, return       -> positive delta
- sale, consignment   -> negative delta
- adjustment          -> any non-zero delta

Business rules:
- Overselling is allowed. A sale may drive quantity below zero; the
  shortfall is reported back to the caller, never blocked.
- There is no movement edit. reverse_movement() deletes the row and
  applies the inverse delta, whatever the kind. Reversing an entry whose
  units were already sold may leave quantity negative.
- Every operation validates all of its input before the first write.
"""

DEFAULT_BULK_SIZE = 12
CONSIGNMENT_TERM_DAYS = 30
SALE_KINDS = (MOVEMENT_SALE, MOVEMENT_CONSIGNMENT_SALE)


@dataclass(frozen=True)
class CartLine:
    """One POS cart row. unit_count is in cases when is_bulk is set."""
    product_id: str
    unit_count: int
    unit_price_cents: int
    is_bulk: bool = False
    bulk_size: int | None = None

    @property
    def line_total_cents(self) -> int:
        return self.unit_count * self.unit_price_cents


@dataclass
class SaleResult:
    kind: str
    movements: list[StockMovement]
    total_cents: int
    debt: Debt | None = None
    shortfalls: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "movements": [m.to_dict() for m in self.movements],
            "total_cents": self.total_cents,
            "debt": self.debt.to_dict() if self.debt else None,
            "shortfalls": self.shortfalls,
        }


def _get_product(product_id: str) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def _resolve_bulk_size(product: Product, is_bulk: bool, bulk_size) -> int:
    if not is_bulk:
        return 1
    if bulk_size is None:
        return product.default_bulk_size or DEFAULT_BULK_SIZE
    return require_positive_int("bulk_size", bulk_size)


def _append_movement_inner(
    *,
    product: Product,
    kind: str,
    quantity_delta: int,
    occurred_dt: datetime,
    note: str | None = None,
) -> StockMovement:
    """Core append: insert the movement and move the cached quantity with it.

    No locking or commit; callers run inside run_locked().
    """
    mv = StockMovement(
        product_id=product.id,
        kind=kind,
        quantity_delta=quantity_delta,
        occurred_at=occurred_dt,
        note=note,
    )
    product.quantity = (product.quantity or 0) + quantity_delta
    product.updated_at = occurred_dt
    db.session.add(mv)
    db.session.flush()
    return mv


def record_entry(
    product_id: str,
    units_added: int,
    is_bulk: bool = False,
    bulk_size: int | None = None,
    note: str | None = None,
) -> StockMovement:
    """
    Receive stock.

    Total units = units_added x bulk_size (bulk) or units_added (loose).
    When a bulk entry omits bulk_size the product's default case size is
    used. No upper bound on the resulting quantity.
    """
    require_positive_int("units_added", units_added)
    if bulk_size is not None:
        require_positive_int("bulk_size", bulk_size)

    def _op():
        product = _get_product(product_id)
        size = _resolve_bulk_size(product, is_bulk, bulk_size)
        total_units = units_added * size
        if total_units <= 0:
            raise ValidationError("entry must add at least one unit")

        if note:
            entry_note = note
        elif is_bulk:
            entry_note = f"Entry: {units_added} cases (x{size})"
        else:
            entry_note = f"Entry: {units_added} units"

        mv = _append_movement_inner(
            product=product,
            kind=MOVEMENT_ENTRY,
            quantity_delta=total_units,
            occurred_dt=utcnow(),
            note=entry_note,
        )
        db.session.commit()
        return mv

    return run_locked(_op)


def record_opening_stock(product: Product, units: int, occurred_dt: datetime | None = None) -> StockMovement | None:
    """
    Book a new product's opening stock as an adjustment.

    Must be called inside a locked operation; does not commit. Zero units
    books nothing.
    """
    require_non_negative_int("initial_quantity", units)
    if not units:
        return None
    return _append_movement_inner(
        product=product,
        kind=MOVEMENT_ADJUSTMENT,
        quantity_delta=units,
        occurred_dt=occurred_dt or utcnow(),
        note="Opening stock",
    )


def record_adjustment(product_id: str, quantity_delta: int, note: str | None = None) -> StockMovement:
    """Manual correction (shrink, count differences, opening stock)."""
    if not is_strict_int(quantity_delta) or quantity_delta == 0:
        raise ValidationError("quantity_delta must be a non-zero integer")

    def _op():
        product = _get_product(product_id)
        mv = _append_movement_inner(
            product=product,
            kind=MOVEMENT_ADJUSTMENT,
            quantity_delta=quantity_delta,
            occurred_dt=utcnow(),
            note=note or "Adjustment",
        )
        db.session.commit()
        return mv

    return run_locked(_op)


def record_return(product_id: str, units: int, note: str | None = None) -> StockMovement:
    """Customer return: goods come back into stock."""
    require_positive_int("units", units)

    def _op():
        product = _get_product(product_id)
        mv = _append_movement_inner(
            product=product,
            kind=MOVEMENT_RETURN,
            quantity_delta=units,
            occurred_dt=utcnow(),
            note=note or f"Return: {units} units",
        )
        db.session.commit()
        return mv

    return run_locked(_op)


def _validate_cart(lines) -> list[CartLine]:
    if not lines:
        raise ValidationError("cart is empty")
    validated = []
    for line in lines:
        if not isinstance(line, CartLine):
            raise ValidationError("cart lines must be CartLine values")
        require_positive_int("unit_count", line.unit_count)
        require_non_negative_int("unit_price_cents", line.unit_price_cents)
        if line.bulk_size is not None:
            require_positive_int("bulk_size", line.bulk_size)
        validated.append(line)
    return validated


def record_sale(lines, kind: str = MOVEMENT_SALE, client_name: str | None = None) -> SaleResult:
    """
    Check out a cart.

    kind='sale': cash sale. kind='consignment_sale': credit sale; a Debt
    for the cart total is opened against client_name (required) and the
    client is registered if new.

    Quantity may go negative; affected products come back in
    SaleResult.shortfalls so the caller can warn. Nothing is written if
    any line, the kind, or the client is invalid.
    """
    if kind not in SALE_KINDS:
        raise ValidationError(f"Invalid sale kind: {kind}. Must be one of {list(SALE_KINDS)}")

    client = (client_name or "").strip() or None
    if kind == MOVEMENT_CONSIGNMENT_SALE and client is None:
        raise MissingClientError("A consignment sale requires a client name")

    cart = _validate_cart(lines)
    total_cents = sum(line.line_total_cents for line in cart)

    def _op():
        # Resolve every product and unit count before touching anything
        resolved = []
        for line in cart:
            product = _get_product(line.product_id)
            size = _resolve_bulk_size(product, line.is_bulk, line.bulk_size)
            resolved.append((product, line.unit_count * size))

        now = utcnow()
        note = f"Sale to {(client or 'General customer').upper()}"

        movements = [
            _append_movement_inner(
                product=product,
                kind=kind,
                quantity_delta=-units,
                occurred_dt=now,
                note=note,
            )
            for product, units in resolved
        ]

        debt = None
        if kind == MOVEMENT_CONSIGNMENT_SALE:
            debt = debt_service._create_debt_inner(
                debtor_name=client,
                amount_cents=total_cents,
                description=f"Purchase (ticket {random.randint(0, 999)})",
                due_date=(now + timedelta(days=CONSIGNMENT_TERM_DAYS)).date(),
            )

        shortfalls = []
        seen = set()
        for product, _units in resolved:
            if product.id in seen:
                continue
            seen.add(product.id)
            if product.quantity < 0:
                shortfalls.append({
                    "product_id": product.id,
                    "name": product.name,
                    "quantity": product.quantity,
                })

        db.session.commit()
        return SaleResult(
            kind=kind,
            movements=movements,
            total_cents=total_cents,
            debt=debt,
            shortfalls=shortfalls,
        )

    return run_locked(_op)


def reverse_movement(movement_id: str) -> Product | None:
    """
    Undo a movement: apply the inverse delta and delete the row.

    Returns the updated product (None if the movement pointed at a product
    that no longer exists, e.g. after restoring an older backup).
    """
    def _op():
        mv = db.session.query(StockMovement).filter_by(id=movement_id).first()
        if mv is None:
            raise NotFoundError(f"Movement {movement_id} not found")

        product = db.session.query(Product).filter_by(id=mv.product_id).first()
        if product is not None:
            product.quantity = (product.quantity or 0) - mv.quantity_delta
            product.updated_at = utcnow()

        db.session.delete(mv)
        db.session.commit()
        return product

    return run_locked(_op)


def get_ledger_quantity(product_id: str) -> int:
    """Quantity recomputed from the ledger, ignoring the cached column."""
    q = db.session.query(
        func.coalesce(func.sum(StockMovement.quantity_delta), 0)
    ).filter(StockMovement.product_id == product_id)
    return int(q.scalar() or 0)


def verify_ledger() -> list[dict]:
    """Products whose cached quantity disagrees with their movements."""
    sums = dict(
        db.session.query(StockMovement.product_id, func.sum(StockMovement.quantity_delta))
        .group_by(StockMovement.product_id)
        .all()
    )
    drift = []
    for product in db.session.query(Product).order_by(Product.name.asc()).all():
        ledger_qty = int(sums.get(product.id) or 0)
        if ledger_qty != product.quantity:
            drift.append({
                "product_id": product.id,
                "name": product.name,
                "quantity": product.quantity,
                "ledger_quantity": ledger_qty,
            })
    return drift


def list_movements(*, product_id: str | None = None, limit: int = 200) -> list[StockMovement]:
    q = db.session.query(StockMovement)
    if product_id is not None:
        _get_product(product_id)
        q = q.filter(StockMovement.product_id == product_id)
    return (
        q.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )

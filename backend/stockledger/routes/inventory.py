# Overview: Flask API routes for the stock ledger; every write goes through inventory_service.

# backend/stockledger/routes/inventory.py
"""
Inventory ledger routes.

Quantities are plain integers (no floats, no numeric strings). Sales
carry a cart of lines; a consignment sale also needs client_name and
opens a debt for the cart total.

Overselling is reported, not blocked: a sale that leaves a product below
zero still succeeds and lists the product under "shortfalls".
"""
from flask import Blueprint, request, current_app

from ..services import inventory_service
from ..services.inventory_service import CartLine
from ..models import MOVEMENT_SALE
from ..validation import ValidationError, NotFoundError


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

CART_LINE_FIELDS = {"product_id", "unit_count", "unit_price_cents", "is_bulk", "bulk_size"}


def _json_object() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _require(payload: dict, *keys: str) -> None:
    missing = sorted(k for k in keys if payload.get(k) is None)
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def _cart_lines(raw) -> list[CartLine]:
    if not isinstance(raw, list):
        raise ValidationError("lines must be a list")
    lines = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValidationError("each cart line must be an object")
        unknown = set(item) - CART_LINE_FIELDS
        if unknown:
            raise ValidationError(f"Field not allowed: {sorted(unknown)[0]}")
        _require(item, "product_id", "unit_count", "unit_price_cents")
        lines.append(CartLine(
            product_id=str(item["product_id"]),
            unit_count=item["unit_count"],
            unit_price_cents=item["unit_price_cents"],
            is_bulk=bool(item.get("is_bulk", False)),
            bulk_size=item.get("bulk_size"),
        ))
    return lines


@inventory_bp.post("/entries")
def record_entry_route():
    """
    Receive stock.

    Body: product_id, units_added, is_bulk (optional), bulk_size
    (optional; defaults to the product's case size), note (optional).
    """
    try:
        payload = _json_object()
        _require(payload, "product_id", "units_added")
        mv = inventory_service.record_entry(
            str(payload["product_id"]),
            payload["units_added"],
            is_bulk=bool(payload.get("is_bulk", False)),
            bulk_size=payload.get("bulk_size"),
            note=payload.get("note"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"movement": mv.to_dict(), "product": mv.product.to_dict()}, 201


@inventory_bp.post("/adjustments")
def record_adjustment_route():
    try:
        payload = _json_object()
        _require(payload, "product_id", "quantity_delta")
        mv = inventory_service.record_adjustment(
            str(payload["product_id"]),
            payload["quantity_delta"],
            note=payload.get("note"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"movement": mv.to_dict(), "product": mv.product.to_dict()}, 201


@inventory_bp.post("/returns")
def record_return_route():
    try:
        payload = _json_object()
        _require(payload, "product_id", "units")
        mv = inventory_service.record_return(
            str(payload["product_id"]),
            payload["units"],
            note=payload.get("note"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"movement": mv.to_dict(), "product": mv.product.to_dict()}, 201


@inventory_bp.post("/sales")
def record_sale_route():
    """
    Check out a cart.

    Body: {"kind": "sale"|"consignment_sale", "client_name": str|null,
           "lines": [{"product_id", "unit_count", "unit_price_cents",
                      "is_bulk", "bulk_size"}]}
    """
    try:
        payload = _json_object()
        result = inventory_service.record_sale(
            _cart_lines(payload.get("lines")),
            kind=payload.get("kind") or MOVEMENT_SALE,
            client_name=payload.get("client_name"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to record sale")
        return {"error": "Internal server error"}, 500

    if result.shortfalls:
        current_app.logger.info(
            "Sale left %d product(s) below zero: %s",
            len(result.shortfalls),
            ", ".join(s["product_id"] for s in result.shortfalls),
        )
    return result.to_dict(), 201


@inventory_bp.get("/movements")
def list_movements_route():
    """
    Ledger history, newest first.

    Query params:
    - product_id: str (optional)
    - limit: int (optional, default 200, max 1000)
    """
    limit = request.args.get("limit", default=200, type=int)
    limit = max(1, min(limit, 1000))
    try:
        movements = inventory_service.list_movements(
            product_id=request.args.get("product_id") or None,
            limit=limit,
        )
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"items": [m.to_dict() for m in movements], "count": len(movements)}


@inventory_bp.delete("/movements/<movement_id>")
def reverse_movement_route(movement_id: str):
    """Undo a movement: its delta is taken back off the product and the row is deleted."""
    try:
        product = inventory_service.reverse_movement(movement_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"ok": True, "product": product.to_dict() if product else None}, 200


@inventory_bp.get("/verify")
def verify_ledger_route():
    drift = inventory_service.verify_ledger()
    return {"ok": not drift, "drift": drift}

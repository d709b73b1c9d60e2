# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/stockledger/routes/products.py
"""
Product catalog routes.

Quantity is never writable here: opening stock is passed as
initial_quantity on create and goes through the ledger; later changes
use the inventory routes.
"""
from flask import Blueprint, request, current_app

from ..models import Product
from ..services import products_service, reporting_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    NotFoundError,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={"sku", "name", "category", "price_cents", "image", "default_bulk_size"},
    required_on_create={"name"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products.

    Query params:
    - category: str (optional) - exact category match
    - q: str (optional) - substring of name or sku
    """
    products = products_service.list_products(
        category=request.args.get("category") or None,
        search=request.args.get("q") or None,
    )
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/low-stock")
def low_stock_products():
    products = reporting_service.list_low_stock_products()
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/<product_id>")
def get_product(product_id: str):
    try:
        product = products_service.get_product(product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return product.to_dict()


@products_bp.post("")
def create_product_route():
    """Create a product; body may carry initial_quantity (booked as an adjustment)."""
    payload = dict(request.get_json(silent=True) or {})
    initial_quantity = payload.pop("initial_quantity", 0)

    try:
        if "quantity" in payload:
            raise ValidationError("quantity is derived from stock movements; use initial_quantity")
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
        created = products_service.create_product(patch=patch, initial_quantity=initial_quantity)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to create product")
        return {"error": "Internal server error"}, 500

    return created.to_dict(), 201


@products_bp.put("/<product_id>")
def update_product_route(product_id: str):
    payload = request.get_json(silent=True) or {}

    try:
        if isinstance(payload, dict) and "quantity" in payload:
            raise ValidationError("quantity is derived from stock movements; record an adjustment instead")
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
        updated = products_service.update_product(product_id=product_id, patch=patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return updated.to_dict(), 200


@products_bp.delete("/<product_id>")
def delete_product_route(product_id: str):
    """Delete a product together with its stock movements."""
    try:
        products_service.delete_product(product_id=product_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"ok": True}, 200

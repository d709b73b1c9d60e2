# Overview: Flask API routes for debts, clients and payments; the FIFO allocation itself lives in debt_service.

# backend/stockledger/routes/debts.py
"""
Debt and client routes, plus the read-only reports built on them.

Payments are lump sums against a client, not against a single debt:
POST /api/clients/<name>/payments spreads the amount over the client's
open debts, oldest due date first. Any overpayment is discarded and
reported back as discarded_cents.
"""
from flask import Blueprint, request, current_app

from ..models import Debt
from ..services import debt_service, reporting_service
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_debt,
    ValidationError,
    NotFoundError,
)

DEBT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"debtor_name", "amount_cents", "description", "due_date"},
    required_on_create={"debtor_name", "amount_cents", "due_date"},
)

DEBT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"debtor_name", "amount_cents", "description", "due_date", "is_paid"},
)

debts_bp = Blueprint("debts", __name__, url_prefix="/api")


# =============================================================================
# DEBTS
# =============================================================================

@debts_bp.get("/debts")
def list_debts_route():
    """
    Query params:
    - client: str (optional) - exact debtor name
    - open_only: bool (optional) - "true" hides paid debts
    """
    open_only = request.args.get("open_only", "").lower() in ("1", "true", "yes")
    debts = debt_service.list_debts(
        client_name=request.args.get("client") or None,
        include_paid=not open_only,
    )
    return {"items": [d.to_dict() for d in debts], "count": len(debts)}


@debts_bp.post("/debts")
def create_debt_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Debt, payload=payload, policy=DEBT_CREATE_POLICY, partial=False)
        enforce_rules_debt(patch)
        debt = debt_service.create_debt(
            debtor_name=patch["debtor_name"],
            amount_cents=patch["amount_cents"],
            due_date=patch["due_date"],
            description=patch.get("description"),
        )
    except ValidationError as e:
        return {"error": str(e)}, 400

    return debt.to_dict(), 201


@debts_bp.put("/debts/<debt_id>")
def update_debt_route(debt_id: str):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Debt, payload=payload, policy=DEBT_UPDATE_POLICY, partial=True)
        enforce_rules_debt(patch)
        debt = debt_service.update_debt(debt_id, patch)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return debt.to_dict(), 200


@debts_bp.post("/debts/<debt_id>/toggle")
def toggle_debt_route(debt_id: str):
    try:
        debt = debt_service.toggle_debt_paid(debt_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return debt.to_dict(), 200


@debts_bp.delete("/debts/<debt_id>")
def delete_debt_route(debt_id: str):
    try:
        debt_service.delete_debt(debt_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"ok": True}, 200


# =============================================================================
# CLIENTS
# =============================================================================

@debts_bp.get("/clients")
def list_clients_route():
    names = debt_service.list_clients()
    return {"items": names, "count": len(names)}


@debts_bp.post("/clients")
def add_client_route():
    payload = request.get_json(silent=True) or {}
    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        name = debt_service.add_client(payload.get("name"))
    except ValidationError as e:
        return {"error": str(e)}, 400
    return {"name": name}, 201


@debts_bp.delete("/clients/<name>")
def delete_client_route(name: str):
    """Delete a client and every debt recorded against it."""
    try:
        removed = debt_service.delete_client(name)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"ok": True, "debts_removed": removed}, 200


@debts_bp.post("/clients/<name>/payments")
def settle_payment_route(name: str):
    """Body: {"amount_cents": int > 0}"""
    payload = request.get_json(silent=True) or {}

    try:
        if not isinstance(payload, dict):
            raise ValidationError("Invalid JSON payload")
        result = debt_service.settle_payment(name, payload.get("amount_cents"))
    except ValidationError as e:
        return {"error": str(e)}, 400
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to apply payment")
        return {"error": "Internal server error"}, 500

    if result.discarded_cents:
        current_app.logger.info(
            "Payment from %r exceeded open debts; %d cents discarded",
            name,
            result.discarded_cents,
        )
    return result.to_dict(), 200


@debts_bp.post("/clients/<name>/settle")
def settle_all_route(name: str):
    """Mark every open debt of the client paid."""
    try:
        debts = debt_service.settle_all(name)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    return {"client_name": name, "debts": [d.to_dict() for d in debts]}, 200


# =============================================================================
# REPORTS
# =============================================================================

@debts_bp.get("/reports/summary")
def dashboard_summary_route():
    return reporting_service.get_dashboard_summary()


@debts_bp.get("/reports/clients")
def client_balances_route():
    balances = reporting_service.get_client_balances()
    return {"items": balances, "count": len(balances)}

# Overview: Service-layer operations for debts and clients; FIFO payment allocation.

"""
Debt Service

WHY: Credit (consignment) sales and manual IOUs leave clients owing
money. Payments arrive as lump sums and must be spread over the client's
open debts in a predictable order.

DESIGN PRINCIPLES:
- FIFO settlement: oldest due date first; same-day ties keep insertion
  order (Debt.seq)
- No credit balance: money beyond what is owed is discarded, never
  stored as a negative amount
- A fully covered debt is marked paid with a zero remaining amount
- Every batch runs as one locked transaction; callers never see half a
  settlement
- Clients outlive their debts. Only delete_client removes a name, and it
  takes that client's debts with it
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import Client, Debt
from ..validation import (
    ValidationError,
    NotFoundError,
    require_positive_int,
    require_non_negative_int,
)
from stockledger.time_utils import parse_iso_date
from .concurrency import run_locked


@dataclass
class SettlementResult:
    client_name: str
    applied_cents: int
    discarded_cents: int
    debts: list[Debt] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "client_name": self.client_name,
            "applied_cents": self.applied_cents,
            "discarded_cents": self.discarded_cents,
            "debts": [d.to_dict() for d in self.debts],
        }


# =============================================================================
# CLIENTS
# =============================================================================

def _clean_name(name) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("client name is required")
    return name.strip()


def _client_exists(name: str) -> bool:
    return db.session.query(Client.id).filter_by(name=name).first() is not None


def _ensure_client(name: str) -> None:
    """Register a client name if new. Caller holds the lock and commits."""
    if not _client_exists(name):
        db.session.add(Client(name=name))
        db.session.flush()


def _require_client(name: str) -> None:
    if not _client_exists(name):
        raise NotFoundError(f"Client {name!r} not found")


def list_clients() -> list[str]:
    return [c.name for c in db.session.query(Client).order_by(Client.id.asc()).all()]


def add_client(name: str) -> str:
    name = _clean_name(name)

    def _op():
        _ensure_client(name)
        db.session.commit()
        return name

    return run_locked(_op)


def delete_client(name: str) -> int:
    """Remove a client and every debt recorded against it. Returns debts removed."""
    def _op():
        client = db.session.query(Client).filter_by(name=name).first()
        if client is None:
            raise NotFoundError(f"Client {name!r} not found")
        removed = db.session.query(Debt).filter_by(debtor_name=name).delete(synchronize_session="fetch")
        db.session.delete(client)
        db.session.commit()
        return removed

    return run_locked(_op)


# =============================================================================
# DEBTS
# =============================================================================

def _next_seq() -> int:
    return int(db.session.query(func.coalesce(func.max(Debt.seq), 0)).scalar() or 0) + 1


def _create_debt_inner(
    *,
    debtor_name: str,
    amount_cents: int,
    description: str | None,
    due_date: date,
    is_paid: bool = False,
) -> Debt:
    """Insert a debt and register its client. No locking or commit."""
    debt = Debt(
        seq=_next_seq(),
        debtor_name=debtor_name,
        amount_cents=amount_cents,
        description=description,
        due_date=due_date,
        is_paid=is_paid,
    )
    db.session.add(debt)
    _ensure_client(debtor_name)
    db.session.flush()
    return debt


def _coerce_due_date(value) -> date:
    try:
        due = parse_iso_date(value)
    except ValueError:
        raise ValidationError("due_date must be an ISO-8601 date")
    if due is None:
        raise ValidationError("due_date is required")
    return due


def create_debt(
    *,
    debtor_name: str,
    amount_cents: int,
    due_date,
    description: str | None = None,
) -> Debt:
    """Manual debt entry (IOU outside the POS)."""
    debtor_name = _clean_name(debtor_name)
    require_non_negative_int("amount_cents", amount_cents)
    due = _coerce_due_date(due_date)

    def _op():
        debt = _create_debt_inner(
            debtor_name=debtor_name,
            amount_cents=amount_cents,
            description=description,
            due_date=due,
        )
        db.session.commit()
        return debt

    return run_locked(_op)


DEBT_MUTABLE_FIELDS = {"debtor_name", "amount_cents", "description", "due_date", "is_paid"}


def update_debt(debt_id: str, patch: dict) -> Debt:
    """Edit a debt. A new debtor name is registered as a client."""
    def _op():
        debt = db.session.query(Debt).filter_by(id=debt_id).first()
        if debt is None:
            raise NotFoundError(f"Debt {debt_id} not found")
        for k, v in patch.items():
            if k not in DEBT_MUTABLE_FIELDS:
                continue
            setattr(debt, k, v)
        _ensure_client(debt.debtor_name)
        db.session.commit()
        return debt

    return run_locked(_op)


def toggle_debt_paid(debt_id: str) -> Debt:
    def _op():
        debt = db.session.query(Debt).filter_by(id=debt_id).first()
        if debt is None:
            raise NotFoundError(f"Debt {debt_id} not found")
        debt.is_paid = not debt.is_paid
        db.session.commit()
        return debt

    return run_locked(_op)


def delete_debt(debt_id: str) -> None:
    """Delete one debt. The client stays known."""
    def _op():
        debt = db.session.query(Debt).filter_by(id=debt_id).first()
        if debt is None:
            raise NotFoundError(f"Debt {debt_id} not found")
        db.session.delete(debt)
        db.session.commit()

    run_locked(_op)


def list_debts(*, client_name: str | None = None, include_paid: bool = True) -> list[Debt]:
    q = db.session.query(Debt)
    if client_name is not None:
        q = q.filter(Debt.debtor_name == client_name)
    if not include_paid:
        q = q.filter(Debt.is_paid.is_(False))
    return q.order_by(Debt.due_date.asc(), Debt.seq.asc()).all()


def _open_debts_fifo(client_name: str) -> list[Debt]:
    return (
        db.session.query(Debt)
        .filter(Debt.debtor_name == client_name, Debt.is_paid.is_(False))
        .order_by(Debt.due_date.asc(), Debt.seq.asc())
        .all()
    )


# =============================================================================
# SETTLEMENT
# =============================================================================

def settle_payment(client_name: str, amount_cents: int) -> SettlementResult:
    """
    Apply a lump-sum payment to a client's open debts, oldest due first.

    Each debt the remaining payment fully covers is marked paid (amount
    zeroed); the first debt it cannot cover is reduced and allocation
    stops. Anything left after every debt is covered is discarded.

    Raises:
        ValidationError: amount is not a positive integer
        NotFoundError: client is unknown
    """
    require_positive_int("amount_cents", amount_cents)

    def _op():
        _require_client(client_name)

        remaining = amount_cents
        touched: list[Debt] = []
        for debt in _open_debts_fifo(client_name):
            if remaining <= 0:
                break
            if remaining >= debt.amount_cents:
                remaining -= debt.amount_cents
                debt.amount_cents = 0
                debt.is_paid = True
            else:
                debt.amount_cents -= remaining
                remaining = 0
            touched.append(debt)

        db.session.commit()
        return SettlementResult(
            client_name=client_name,
            applied_cents=amount_cents - remaining,
            discarded_cents=remaining,
            debts=touched,
        )

    return run_locked(_op)


def settle_all(client_name: str) -> list[Debt]:
    """Mark every open debt of the client paid, whatever the amounts."""
    def _op():
        _require_client(client_name)
        debts = _open_debts_fifo(client_name)
        for debt in debts:
            debt.is_paid = True
        db.session.commit()
        return debts

    return run_locked(_op)

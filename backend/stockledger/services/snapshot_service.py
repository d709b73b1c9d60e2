# Overview: Snapshot serializer; packages the whole entity store for backup, sync and restore.

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import Client, Debt, Product, StockMovement, MOVEMENT_KINDS
from ..validation import ValidationError, is_strict_int
from stockledger.time_utils import utcnow, to_utc_z, parse_iso_datetime, parse_iso_date
from .concurrency import run_locked, store_lock
from .settings_service import _get_or_create_config, normalize_restored_config

"""
Snapshot format (local export file and remote replica share it):

    {
      "products": [...Product.to_dict()],
      "debts":    [...Debt.to_dict()],
      "history":  [...StockMovement.to_dict()],
      "clients":  ["name", ...],
      "config":   {...SystemConfig.to_dict()},
      "timestamp": "2026-10-18T12:00:00Z"
    }

Restore rules:
- Each collection present in the snapshot replaces the local one
  wholesale. A collection key missing from the document leaves the local
  collection as it is.
- Config fields are replaced one by one, except LOCAL_ONLY_CONFIG_FIELDS:
  the device's own remote credential never comes from another replica.
- No item-level merge. Last writer wins for the whole snapshot.
"""

COLLECTION_KEYS = ("products", "debts", "history", "clients")
LOCAL_ONLY_CONFIG_FIELDS = {"drive_client_id"}


@dataclass(frozen=True)
class Snapshot:
    """Immutable capture of the entity store. None means 'not in this document'."""
    products: tuple | None
    debts: tuple | None
    history: tuple | None
    clients: tuple | None
    config: dict | None
    timestamp: str | None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {}
        for key in COLLECTION_KEYS:
            items = getattr(self, key)
            if items is not None:
                data[key] = copy.deepcopy(list(items))
        if self.config is not None:
            data["config"] = copy.deepcopy(self.config)
        data["timestamp"] = self.timestamp
        return data

    def to_json(self, *, indent: int | None = None) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        """Shape-check a decoded document. Raises ValidationError."""
        if not isinstance(data, dict):
            raise ValidationError("Backup must be a JSON object")

        collections: dict[str, tuple | None] = {}
        for key in COLLECTION_KEYS:
            items = data.get(key)
            if items is None:
                collections[key] = None
                continue
            if not isinstance(items, list):
                raise ValidationError(f"Backup field '{key}' must be a list")
            if key == "clients":
                if not all(isinstance(n, str) for n in items):
                    raise ValidationError("Backup field 'clients' must be a list of names")
            elif not all(isinstance(i, dict) and i.get("id") for i in items):
                raise ValidationError(f"Every item in '{key}' must be an object with an id")
            collections[key] = tuple(copy.deepcopy(items))

        config = data.get("config")
        if config is not None and not isinstance(config, dict):
            raise ValidationError("Backup field 'config' must be an object")

        timestamp = data.get("timestamp")
        if timestamp is not None and not isinstance(timestamp, str):
            raise ValidationError("Backup field 'timestamp' must be a string")

        return cls(
            products=collections["products"],
            debts=collections["debts"],
            history=collections["history"],
            clients=collections["clients"],
            config=copy.deepcopy(config) if config is not None else None,
            timestamp=timestamp,
        )


def build_snapshot() -> Snapshot:
    """Capture every collection and the config under the store lock."""
    with store_lock:
        products = tuple(
            p.to_dict()
            for p in db.session.query(Product).order_by(Product.name.asc(), Product.id.asc()).all()
        )
        debts = tuple(d.to_dict() for d in db.session.query(Debt).order_by(Debt.seq.asc()).all())
        history = tuple(
            m.to_dict()
            for m in db.session.query(StockMovement)
            .order_by(StockMovement.occurred_at.asc(), StockMovement.id.asc())
            .all()
        )
        clients = tuple(c.name for c in db.session.query(Client).order_by(Client.id.asc()).all())
        config = _get_or_create_config().to_dict()
        db.session.commit()

    return Snapshot(
        products=products,
        debts=debts,
        history=history,
        clients=clients,
        config=config,
        timestamp=to_utc_z(utcnow()),
    )


def _parse_dt(value, field_name: str):
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO-8601 datetime")


def _int(value, field_name: str, default: int | None = 0):
    # no float or string coercion: 3.7 must not quietly become 3
    if value is None:
        return default
    if not is_strict_int(value):
        raise ValidationError(f"{field_name} must be an integer")
    return value


def _bool(value, field_name: str, default: bool = False) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a boolean")
    return value


def _str(value, field_name: str, default: str | None = None) -> str | None:
    if value is None:
        return default
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")
    return value


def _product_from_dict(d: dict) -> Product:
    price = _int(d.get("price_cents"), "price_cents")
    if price < 0:
        raise ValidationError("price_cents must be >= 0")
    bulk = _int(d.get("default_bulk_size"), "default_bulk_size", default=None)
    if bulk is not None and bulk <= 0:
        raise ValidationError("default_bulk_size must be a positive integer")
    return Product(
        id=str(d["id"]),
        name=_str(d.get("name"), "name", default=""),
        sku=_str(d.get("sku"), "sku", default=""),
        category=_str(d.get("category"), "category") or "General",
        quantity=_int(d.get("quantity"), "quantity"),
        price_cents=price,
        image=_str(d.get("image"), "image"),
        default_bulk_size=bulk,
        updated_at=_parse_dt(d.get("updated_at"), "updated_at") or utcnow(),
    )


def _movement_from_dict(d: dict) -> StockMovement:
    kind = d.get("kind")
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(f"Unknown movement kind: {kind}")
    return StockMovement(
        id=str(d["id"]),
        product_id=_str(d.get("product_id"), "product_id", default=""),
        kind=kind,
        quantity_delta=_int(d.get("quantity_delta"), "quantity_delta"),
        occurred_at=_parse_dt(d.get("occurred_at"), "occurred_at") or utcnow(),
        note=_str(d.get("note"), "note"),
    )


def _debt_from_dict(d: dict, position: int) -> Debt:
    try:
        due = parse_iso_date(d.get("due_date"))
    except ValueError:
        raise ValidationError("due_date must be an ISO-8601 date")
    if due is None:
        raise ValidationError("due_date is required")
    amount = _int(d.get("amount_cents"), "amount_cents")
    if amount < 0:
        raise ValidationError("amount_cents must be >= 0")
    return Debt(
        id=str(d["id"]),
        seq=_int(d.get("seq"), "seq", default=position),
        debtor_name=_str(d.get("debtor_name"), "debtor_name", default=""),
        amount_cents=amount,
        description=_str(d.get("description"), "description"),
        due_date=due,
        is_paid=_bool(d.get("is_paid"), "is_paid"),
    )


def apply_snapshot(snapshot: Snapshot) -> None:
    """
    Replace the local store with the snapshot's contents.

    Every row is built (and validated) before anything is deleted, so a
    malformed document leaves local data untouched.
    """
    products = [_product_from_dict(d) for d in snapshot.products] if snapshot.products is not None else None
    history = [_movement_from_dict(d) for d in snapshot.history] if snapshot.history is not None else None
    debts = (
        [_debt_from_dict(d, i + 1) for i, d in enumerate(snapshot.debts)]
        if snapshot.debts is not None
        else None
    )
    clients = list(dict.fromkeys(n for n in snapshot.clients if n)) if snapshot.clients is not None else None

    config_patch = normalize_restored_config(snapshot.config or {}, keep_local=LOCAL_ONLY_CONFIG_FIELDS)

    def _op():
        if history is not None:
            db.session.query(StockMovement).delete(synchronize_session=False)
        if products is not None:
            db.session.query(Product).delete(synchronize_session=False)
        if debts is not None:
            db.session.query(Debt).delete(synchronize_session=False)
        if clients is not None:
            db.session.query(Client).delete(synchronize_session=False)
        db.session.flush()
        # identity map may still hold deleted rows with the same ids
        db.session.expunge_all()

        if products is not None:
            db.session.add_all(products)
        if history is not None:
            db.session.add_all(history)
        if debts is not None:
            db.session.add_all(debts)
        if clients is not None:
            db.session.add_all(Client(name=n) for n in clients)

        cfg = _get_or_create_config()
        for key, value in config_patch.items():
            setattr(cfg, key, value)

        db.session.commit()

    run_locked(_op)


# =============================================================================
# LOCAL BACKUP FILES
# =============================================================================

def backup_filename(slug: str | None = None) -> str:
    slug = slug or current_app.config["APP_SLUG"]
    return f"{slug}-backup-{utcnow().date().isoformat()}.json"


def export_backup(directory: str | Path | None = None) -> Path:
    """Write a pretty-printed snapshot to {slug}-backup-{YYYY-MM-DD}.json."""
    target_dir = Path(directory or current_app.config["BACKUP_DIR"])
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / backup_filename()
    path.write_text(build_snapshot().to_json(indent=2), encoding="utf-8")
    return path


def load_backup(raw: str | bytes) -> Snapshot:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        raise ValidationError("Backup is not valid JSON")
    return Snapshot.from_dict(data)


def import_backup(path: str | Path) -> Snapshot:
    """Read an exported file and restore it."""
    snapshot = load_backup(Path(path).read_text(encoding="utf-8"))
    apply_snapshot(snapshot)
    return snapshot

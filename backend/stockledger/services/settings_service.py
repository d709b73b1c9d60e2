from __future__ import annotations

from datetime import datetime
from typing import Any

from ..extensions import db
from ..models import SystemConfig, SYSTEM_CONFIG_ID, DEFAULT_CATEGORIES
from ..validation import ValidationError, is_strict_int
from stockledger.time_utils import utcnow, parse_iso_datetime
from .concurrency import run_locked

"""
Configuration update surface.

The settings form and API clients send partial patches. Patches are
merged shallowly: recognized fields are validated and applied, anything
else is ignored. Sync bookkeeping (last_sync, drive_backup_file_id) is
not patchable; only record_sync() and a snapshot restore write it.
"""


def _text(max_len: int):
    def _check(key: str, value: Any) -> str:
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"{key} must be a non-empty string")
        value = value.strip()
        if len(value) > max_len:
            raise ValidationError(f"{key} exceeds max length {max_len}")
        return value
    return _check


def _optional_text(key: str, value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string or null")
    return value.strip() or None


def _non_negative_int(key: str, value: Any) -> int:
    if not is_strict_int(value) or value < 0:
        raise ValidationError(f"{key} must be a non-negative integer")
    return value


def _bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be a boolean")
    return value


def _categories(key: str, value: Any) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(c, str) for c in value):
        raise ValidationError(f"{key} must be a list of strings")
    cleaned: list[str] = []
    for c in value:
        c = c.strip()
        if c and c not in cleaned:
            cleaned.append(c)
    return cleaned


def _optional_datetime(key: str, value: Any) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")


# field -> validator returning the normalized value
PATCHABLE_FIELDS = {
    "shop_name": _text(255),
    "currency_symbol": _text(8),
    "tax_rate_bps": _non_negative_int,
    "categories": _categories,
    "enable_low_stock_warning": _bool,
    "low_stock_threshold": _non_negative_int,
    "drive_client_id": _optional_text,
    "drive_folder_id": _optional_text,
}

# camelCase names used by the web UI and older exports
FIELD_ALIASES = {
    "shopName": "shop_name",
    "currencySymbol": "currency_symbol",
    "categories": "categories",
    "enableLowStockWarning": "enable_low_stock_warning",
    "lowStockThreshold": "low_stock_threshold",
    "googleDriveClientId": "drive_client_id",
    "googleDriveFolderId": "drive_folder_id",
}

# sync bookkeeping a restore may carry over; never user-patchable
RESTORE_ONLY_FIELDS = {
    "drive_backup_file_id": _optional_text,
    "last_sync": _optional_datetime,
    "updated_at": _optional_datetime,
}


def _tax_rate_to_bps(value: Any) -> int:
    """taxRate arrives as a decimal fraction (0.16 == 16%)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("taxRate must be a number")
    if value < 0:
        raise ValidationError("taxRate must be >= 0")
    return int(round(value * 10_000))


def normalize_config_patch(patch: Any) -> dict:
    """Map a raw patch to validated column values; unknown keys are dropped."""
    if patch is None:
        return {}
    if not isinstance(patch, dict):
        raise ValidationError("Invalid JSON payload")

    cleaned: dict = {}
    for raw_key, value in patch.items():
        if raw_key == "taxRate":
            cleaned["tax_rate_bps"] = _tax_rate_to_bps(value)
            continue
        key = FIELD_ALIASES.get(raw_key, raw_key)
        validator = PATCHABLE_FIELDS.get(key)
        if validator is None:
            continue
        cleaned[key] = validator(raw_key, value)
    return cleaned


def normalize_restored_config(config: dict, *, keep_local: set[str] | None = None) -> dict:
    """
    Validate a config object read from a snapshot.

    Same per-field rules as a settings patch, plus the sync bookkeeping
    fields. Keys in keep_local or not recognized are dropped. Raises
    ValidationError before anything is written.
    """
    cleaned: dict = {}
    for key, value in config.items():
        if keep_local and key in keep_local:
            continue
        validator = PATCHABLE_FIELDS.get(key) or RESTORE_ONLY_FIELDS.get(key)
        if validator is None:
            continue
        cleaned[key] = validator(key, value)
    return cleaned


def _get_or_create_config() -> SystemConfig:
    cfg = db.session.query(SystemConfig).filter_by(id=SYSTEM_CONFIG_ID).first()
    if cfg is None:
        cfg = SystemConfig(id=SYSTEM_CONFIG_ID, categories=list(DEFAULT_CATEGORIES), updated_at=utcnow())
        db.session.add(cfg)
        db.session.flush()
    return cfg


def get_config() -> SystemConfig:
    """Return the config row, creating the defaults on first read."""
    def _op():
        cfg = _get_or_create_config()
        db.session.commit()
        return cfg

    return run_locked(_op)


def update_config(patch: dict) -> SystemConfig:
    """Shallow-merge a partial patch into the config row."""
    cleaned = normalize_config_patch(patch)

    def _op():
        cfg = _get_or_create_config()
        for key, value in cleaned.items():
            setattr(cfg, key, value)
        if cleaned:
            cfg.updated_at = utcnow()
        db.session.commit()
        return cfg

    return run_locked(_op)


def ensure_category(category: str) -> None:
    """
    Append a category to the config list if it is new.

    Must be called inside a locked operation; does not commit.
    """
    cfg = _get_or_create_config()
    current = list(cfg.categories or [])
    if category and category not in current:
        # reassign so the JSON column is flagged dirty
        cfg.categories = current + [category]


def record_sync(*, file_id: str | None, synced_at: datetime) -> SystemConfig:
    """Stamp a successful push. Only the synchronizer calls this."""
    def _op():
        cfg = _get_or_create_config()
        if file_id:
            cfg.drive_backup_file_id = file_id
        cfg.last_sync = synced_at
        db.session.commit()
        return cfg

    return run_locked(_op)


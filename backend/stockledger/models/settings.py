from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z

SYSTEM_CONFIG_ID = 1

DEFAULT_CATEGORIES = ["General", "Electronics", "Food", "Clothing", "Home"]


class SystemConfig(db.Model):
    """
    Single-row shop configuration (id is always SYSTEM_CONFIG_ID).

    Replaced, never deleted. drive_client_id identifies this device to
    the remote replica and survives snapshot restores; last_sync and
    drive_backup_file_id are written only by the synchronizer.
    """
    __tablename__ = "system_config"

    id = db.Column(db.Integer, primary_key=True)

    shop_name = db.Column(db.String(255), nullable=False, default="My Shop")
    currency_symbol = db.Column(db.String(8), nullable=False, default="$")
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=1600)
    categories = db.Column(db.JSON, nullable=False, default=lambda: list(DEFAULT_CATEGORIES))
    enable_low_stock_warning = db.Column(db.Boolean, nullable=False, default=True)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=5)

    drive_client_id = db.Column(db.String(255), nullable=True)
    drive_backup_file_id = db.Column(db.String(255), nullable=True)
    drive_folder_id = db.Column(db.String(255), nullable=True)
    last_sync = db.Column(db.DateTime, nullable=True)

    updated_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self) -> dict:
        return {
            "shop_name": self.shop_name,
            "currency_symbol": self.currency_symbol,
            "tax_rate_bps": self.tax_rate_bps,
            "categories": list(self.categories or []),
            "enable_low_stock_warning": self.enable_low_stock_warning,
            "low_stock_threshold": self.low_stock_threshold,
            "drive_client_id": self.drive_client_id,
            "drive_backup_file_id": self.drive_backup_file_id,
            "drive_folder_id": self.drive_folder_id,
            "last_sync": to_utc_z(self.last_sync),
            "updated_at": to_utc_z(self.updated_at),
        }

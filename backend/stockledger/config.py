# backend/stockledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///stockledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Used for the local export filename and the remote backup object name
    APP_SLUG = os.environ.get("APP_SLUG", "stockledger")
    BACKUP_DIR = os.environ.get("BACKUP_DIR", "backups")

    # Remote replica: one JSON file on Google Drive, located by name
    REMOTE_BACKUP_NAME = os.environ.get("REMOTE_BACKUP_NAME", "stockledger_backup.json")
    SYNC_GRACE_SECONDS = int(os.environ.get("SYNC_GRACE_SECONDS", "60"))
    SYNC_HTTP_TIMEOUT = float(os.environ.get("SYNC_HTTP_TIMEOUT", "20"))
    DRIVE_API_BASE = os.environ.get("DRIVE_API_BASE", "https://www.googleapis.com/drive/v3")
    DRIVE_UPLOAD_BASE = os.environ.get("DRIVE_UPLOAD_BASE", "https://www.googleapis.com/upload/drive/v3")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_DIR = os.environ.get("LOG_DIR")  # rotating file log is enabled only when set

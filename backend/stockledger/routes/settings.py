# Overview: Flask API routes for the shop configuration row.

from flask import Blueprint, request

from ..services import settings_service
from ..validation import ValidationError

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
def get_settings():
    return settings_service.get_config().to_dict()


@settings_bp.patch("")
def patch_settings():
    """
    Shallow-merge a partial config.

    Unknown fields (including last_sync and drive_backup_file_id) are
    ignored; recognized fields with the wrong type are a 400.
    """
    payload = request.get_json(silent=True)
    try:
        cfg = settings_service.update_config(payload)
    except ValidationError as e:
        return {"error": str(e)}, 400
    return cfg.to_dict(), 200

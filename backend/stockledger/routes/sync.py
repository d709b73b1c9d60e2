# Overview: Flask API routes for local backup files and the remote replica (push, check, pull).

# backend/stockledger/routes/sync.py
"""
Backup and replica sync routes.

Remote credentials: the caller's Google Drive access token arrives as
`Authorization: Bearer <token>` and is used for that request only; it
is never stored.

A pull replaces local data wholesale, so it requires {"confirm": true}.
Without "force" it only restores when the remote is newer than the last
push (beyond the grace window); with "force" it restores whatever the
remote holds.
"""
from flask import Blueprint, Response, request, current_app

from ..services import snapshot_service, settings_service
from ..services.sync_service import (
    SyncAuthError,
    SyncInProgressError,
    SyncNetworkError,
    SyncError,
    get_synchronizer,
)
from ..validation import ValidationError, NotFoundError
from stockledger.time_utils import to_utc_z

sync_bp = Blueprint("sync", __name__, url_prefix="/api")


def _bearer_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if header.startswith("Bearer "):
        return header[len("Bearer "):].strip() or None
    return None


def _sync_error_response(e: SyncError):
    if isinstance(e, SyncAuthError):
        return {"error": str(e)}, 401
    if isinstance(e, SyncInProgressError):
        return {"error": str(e)}, 409
    if isinstance(e, SyncNetworkError):
        current_app.logger.warning("Remote sync failed: %s", e)
        return {"error": str(e)}, 502
    current_app.logger.exception("Unexpected sync failure")
    return {"error": "Internal server error"}, 500


# =============================================================================
# LOCAL BACKUP FILES
# =============================================================================

@sync_bp.get("/backup/export")
def export_backup_route():
    """Download the whole store as {slug}-backup-{YYYY-MM-DD}.json."""
    snapshot = snapshot_service.build_snapshot()
    return Response(
        snapshot.to_json(indent=2),
        mimetype="application/json",
        headers={"Content-Disposition": f'attachment; filename="{snapshot_service.backup_filename()}"'},
    )


@sync_bp.post("/backup/import")
def import_backup_route():
    """
    Restore from an exported file (multipart field "file") or a raw JSON body.

    Collections missing from the document are left as they are.
    """
    upload = request.files.get("file")
    raw = upload.read() if upload is not None else request.get_data()

    try:
        snapshot = snapshot_service.load_backup(raw)
        snapshot_service.apply_snapshot(snapshot)
    except ValidationError as e:
        return {"error": str(e)}, 400
    except Exception:
        current_app.logger.exception("Failed to import backup")
        return {"error": "Internal server error"}, 500

    current_app.logger.info("Imported backup taken at %s", snapshot.timestamp)
    return {"ok": True, "timestamp": snapshot.timestamp}, 200


# =============================================================================
# REMOTE REPLICA
# =============================================================================

@sync_bp.get("/sync/status")
def sync_status_route():
    cfg = settings_service.get_config()
    status = get_synchronizer().status()
    status.update({
        "last_sync": to_utc_z(cfg.last_sync),
        "drive_backup_file_id": cfg.drive_backup_file_id,
        "linked": bool(cfg.drive_client_id),
    })
    return status


@sync_bp.post("/sync/push")
def push_route():
    sync = get_synchronizer()
    try:
        with sync.make_remote(_bearer_token()) as remote:
            remote_file = sync.push(remote)
    except SyncError as e:
        return _sync_error_response(e)

    cfg = settings_service.get_config()
    return {"ok": True, "remote_file": remote_file.to_dict(), "last_sync": to_utc_z(cfg.last_sync)}, 200


@sync_bp.post("/sync/check")
def check_route():
    """Is the remote newer than our last push? Never changes local data."""
    sync = get_synchronizer()
    try:
        with sync.make_remote(_bearer_token()) as remote:
            decision = sync.check_remote_newer(remote)
    except SyncError as e:
        return _sync_error_response(e)

    if decision is None:
        return {"remote_newer": False}, 200
    return {"remote_newer": True, "decision": decision.to_dict()}, 200


@sync_bp.post("/sync/pull")
def pull_route():
    """
    Replace local data with the remote snapshot.

    Body: {"confirm": true, "force": bool}
    """
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict) or payload.get("confirm") is not True:
        return {"error": "Restoring replaces all local data; resend with {\"confirm\": true}"}, 400

    sync = get_synchronizer()
    try:
        with sync.make_remote(_bearer_token()) as remote:
            if payload.get("force") is True:
                decision = sync.request_restore(remote)
            else:
                decision = sync.check_remote_newer(remote)
            if decision is None:
                return {"restored": False, "reason": "Remote backup is not newer than the last sync"}, 200
            snapshot = sync.pull(remote, decision)
    except SyncError as e:
        return _sync_error_response(e)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {"restored": True, "timestamp": snapshot.timestamp, "decision": decision.to_dict()}, 200


@sync_bp.post("/sync/hidden")
def app_hidden_route():
    """The UI was backgrounded: start a push if this device is linked. Returns at once."""
    sync = get_synchronizer()
    token = _bearer_token()
    if not token:
        return {"scheduled": False, "reason": "no access token"}, 202

    try:
        thread = sync.on_app_hidden(sync.make_remote(token))
    except SyncError as e:
        return _sync_error_response(e)
    return {"scheduled": thread is not None}, 202

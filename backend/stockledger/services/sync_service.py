# Overview: Replica synchronizer; pushes/pulls whole snapshots between this device and one remote backup file.

"""
Replica Sync Service

WHY: The shop runs on one device but keeps a backup copy in the cloud
that another device may have written while this one was offline.

DESIGN PRINCIPLES:
- Two replicas only: local store and one remote JSON file, found by a
  well-known name and cached by id in config.drive_backup_file_id
- Last writer wins for the whole snapshot; a pull replaces, never merges
- No network I/O under the store lock: snapshots are copied out before
  the request and applied after it returns
- A pull needs a SyncConflictDeferred decision object. Nothing in this
  module pulls on its own; a person confirms first
- One sync at a time per app; a second request while one is running is
  rejected with SyncInProgressError (background pushes are skipped)
- Background pushes are fire-and-forget on a daemon thread: no retry,
  never blocking shutdown

STATE MACHINE:
    IDLE -> UPLOADING -> IDLE
    IDLE -> CHECKING_REMOTE -> IDLE   (returns a decision or None)
    IDLE -> RESTORING -> IDLE         (only with a decision)
"""

from __future__ import annotations

import json
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

import httpx
from flask import current_app

from ..validation import ValidationError, NotFoundError
from stockledger.time_utils import utcnow, parse_iso_datetime, to_utc_z
from . import settings_service, snapshot_service

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 60
EPOCH = datetime(1970, 1, 1)


class SyncError(Exception):
    """Raised for remote replica failures. Local data is never touched."""
    pass


class SyncAuthError(SyncError):
    """Remote rejected the credentials (missing/expired token, no access)."""
    pass


class SyncNetworkError(SyncError):
    """Remote unreachable, failing, or returned something unusable."""
    pass


class SyncInProgressError(SyncError):
    """Another push/pull/check is already running."""
    pass


class RemoteFileMissingError(SyncError):
    """A remote file id no longer resolves."""
    pass


class SyncState(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    CHECKING_REMOTE = "checking_remote"
    RESTORING = "restoring"


@dataclass(frozen=True)
class RemoteFile:
    id: str
    modified_time: datetime | None = None

    def to_dict(self) -> dict:
        return {"id": self.id, "modified_time": to_utc_z(self.modified_time)}


@dataclass(frozen=True)
class SyncConflictDeferred:
    """
    Not an error: the remote replica is a restore candidate.

    Returned by check_remote_newer()/request_restore() and required by
    pull(). Whoever holds one has to get an explicit yes from a person
    before passing it on.
    """
    file_id: str
    remote_modified_at: datetime | None
    last_sync: datetime | None

    def to_dict(self) -> dict:
        return {
            "file_id": self.file_id,
            "remote_modified_at": to_utc_z(self.remote_modified_at),
            "last_sync": to_utc_z(self.last_sync),
        }


def is_remote_newer(
    remote_modified: datetime | None,
    last_sync: datetime | None,
    grace_seconds: int = DEFAULT_GRACE_SECONDS,
) -> bool:
    """
    True when the remote copy is meaningfully newer than our last push.

    The grace window absorbs clock skew and the gap between stamping
    last_sync and the remote's own modified time.
    """
    if remote_modified is None:
        return False
    baseline = last_sync or EPOCH
    return remote_modified > baseline + timedelta(seconds=grace_seconds)


# =============================================================================
# REMOTE STORES
# =============================================================================

class RemoteStore:
    """Where the remote replica lives. Subclasses talk to a real backend."""

    def find_file(self, name: str) -> RemoteFile | None:
        raise NotImplementedError

    def upload(self, name: str, payload: dict, *, file_id: str | None = None) -> RemoteFile:
        """Create the file (file_id None) or replace its content."""
        raise NotImplementedError

    def download(self, file_id: str) -> Any:
        raise NotImplementedError

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class DriveRemoteStore(RemoteStore):
    """Google Drive v3 REST, authenticated with a user OAuth access token."""

    def __init__(
        self,
        access_token: str,
        *,
        folder_id: str | None = None,
        api_base: str = "https://www.googleapis.com/drive/v3",
        upload_base: str = "https://www.googleapis.com/upload/drive/v3",
        timeout: float = 20.0,
        client: httpx.Client | None = None,
    ):
        if not access_token:
            raise SyncAuthError("Drive access token required")
        self.folder_id = folder_id
        self.api_base = api_base.rstrip("/")
        self.upload_base = upload_base.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {access_token}"}

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        headers = dict(self._headers)
        headers.update(kwargs.pop("headers", {}))
        try:
            resp = self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise SyncNetworkError(f"Remote unreachable: {exc}") from exc

        if resp.status_code in (401, 403):
            raise SyncAuthError(f"Remote rejected credentials (HTTP {resp.status_code})")
        if resp.status_code == 404:
            raise RemoteFileMissingError("Remote file not found")
        if resp.status_code >= 400:
            raise SyncNetworkError(f"Remote returned HTTP {resp.status_code}")
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise SyncNetworkError("Remote returned invalid JSON") from exc

    @staticmethod
    def _remote_file(data: dict) -> RemoteFile:
        try:
            modified = parse_iso_datetime(data.get("modifiedTime"))
        except ValueError:
            modified = None
        return RemoteFile(id=data["id"], modified_time=modified)

    def find_file(self, name: str) -> RemoteFile | None:
        query = f"name = '{name}' and trashed = false"
        if self.folder_id:
            query += f" and '{self.folder_id}' in parents"
        resp = self._request(
            "GET",
            f"{self.api_base}/files",
            params={
                "q": query,
                "fields": "files(id, modifiedTime)",
                "orderBy": "modifiedTime desc",
                "spaces": "drive",
            },
        )
        files = self._json(resp).get("files") or []
        if not files:
            return None
        return self._remote_file(files[0])

    def upload(self, name: str, payload: dict, *, file_id: str | None = None) -> RemoteFile:
        metadata: dict[str, Any] = {"name": name, "mimeType": "application/json"}
        if file_id is None and self.folder_id:
            metadata["parents"] = [self.folder_id]

        boundary = f"stockledger-{uuid.uuid4().hex}"
        body = (
            f"--{boundary}\r\n"
            "Content-Type: application/json; charset=UTF-8\r\n\r\n"
            f"{json.dumps(metadata)}\r\n"
            f"--{boundary}\r\n"
            "Content-Type: application/json\r\n\r\n"
            f"{json.dumps(payload, ensure_ascii=False)}\r\n"
            f"--{boundary}--\r\n"
        ).encode("utf-8")

        if file_id:
            method, url = "PATCH", f"{self.upload_base}/files/{file_id}"
        else:
            method, url = "POST", f"{self.upload_base}/files"

        resp = self._request(
            method,
            url,
            params={"uploadType": "multipart", "fields": "id,modifiedTime"},
            content=body,
            headers={"Content-Type": f"multipart/related; boundary={boundary}"},
        )
        return self._remote_file(self._json(resp))

    def download(self, file_id: str) -> Any:
        resp = self._request("GET", f"{self.api_base}/files/{file_id}", params={"alt": "media"})
        return self._json(resp)


def drive_remote_from_config(access_token: str, *, client: httpx.Client | None = None) -> DriveRemoteStore:
    """Build a Drive store from app config and the shop's configured folder."""
    cfg = settings_service.get_config()
    return DriveRemoteStore(
        access_token,
        folder_id=cfg.drive_folder_id,
        api_base=current_app.config["DRIVE_API_BASE"],
        upload_base=current_app.config["DRIVE_UPLOAD_BASE"],
        timeout=current_app.config["SYNC_HTTP_TIMEOUT"],
        client=client,
    )


# =============================================================================
# SYNCHRONIZER
# =============================================================================

class ReplicaSynchronizer:
    """One per app (app.extensions['replica_sync']). Remotes are passed per call."""

    def __init__(self, app=None, remote_factory=None):
        self.state = SyncState.IDLE
        self.last_error: str | None = None
        # access token -> RemoteStore; Google Drive unless replaced
        self.remote_factory = remote_factory or drive_remote_from_config
        self._inflight = threading.Lock()
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        app.extensions["replica_sync"] = self

    def make_remote(self, access_token: str | None) -> RemoteStore:
        if not access_token:
            raise SyncAuthError("Drive access token required")
        return self.remote_factory(access_token)

    @property
    def busy(self) -> bool:
        return self._inflight.locked()

    def status(self) -> dict:
        return {"state": self.state.value, "busy": self.busy, "last_error": self.last_error}

    @contextmanager
    def _cycle(self, state: SyncState):
        if not self._inflight.acquire(blocking=False):
            raise SyncInProgressError("A sync is already in progress")
        self.state = state
        try:
            yield
            self.last_error = None
        except SyncError as exc:
            self.last_error = str(exc)
            raise
        finally:
            self.state = SyncState.IDLE
            self._inflight.release()

    @staticmethod
    def _remote_name() -> str:
        return current_app.config["REMOTE_BACKUP_NAME"]

    @staticmethod
    def _grace_seconds() -> int:
        return int(current_app.config.get("SYNC_GRACE_SECONDS", DEFAULT_GRACE_SECONDS))

    def push(self, remote: RemoteStore) -> RemoteFile:
        """
        Upload the current snapshot, then stamp last_sync.

        Raises SyncAuthError / SyncNetworkError / SyncInProgressError; on
        any failure local config is left as it was.
        """
        with self._cycle(SyncState.UPLOADING):
            snapshot = snapshot_service.build_snapshot()
            payload = snapshot.to_dict()
            name = self._remote_name()

            cached_id = (snapshot.config or {}).get("drive_backup_file_id")
            file_id = cached_id
            if not file_id:
                found = remote.find_file(name)
                file_id = found.id if found else None

            try:
                remote_file = remote.upload(name, payload, file_id=file_id)
            except RemoteFileMissingError:
                if not cached_id:
                    raise
                logger.warning("Cached remote file %s is gone; locating %s by name", cached_id, name)
                found = remote.find_file(name)
                remote_file = remote.upload(name, payload, file_id=found.id if found else None)

            synced_at = utcnow()
            settings_service.record_sync(file_id=remote_file.id, synced_at=synced_at)
            logger.info("Pushed snapshot %s to remote file %s", snapshot.timestamp, remote_file.id)
            return remote_file

    def check_remote_newer(self, remote: RemoteStore) -> SyncConflictDeferred | None:
        """
        Compare the remote file's modified time with local last_sync.

        Returns a SyncConflictDeferred when the remote is newer by more than
        the grace window, else None. Never changes local data.
        """
        with self._cycle(SyncState.CHECKING_REMOTE):
            remote_file = remote.find_file(self._remote_name())
            if remote_file is None:
                return None

            last_sync = settings_service.get_config().last_sync
            if not is_remote_newer(remote_file.modified_time, last_sync, self._grace_seconds()):
                return None

            logger.info(
                "Remote file %s modified %s is newer than last sync %s",
                remote_file.id,
                to_utc_z(remote_file.modified_time),
                to_utc_z(last_sync),
            )
            return SyncConflictDeferred(
                file_id=remote_file.id,
                remote_modified_at=remote_file.modified_time,
                last_sync=last_sync,
            )

    def request_restore(self, remote: RemoteStore) -> SyncConflictDeferred:
        """Manual restore: a decision for the current remote file, however old."""
        with self._cycle(SyncState.CHECKING_REMOTE):
            remote_file = remote.find_file(self._remote_name())
            if remote_file is None:
                raise NotFoundError("No remote backup found")
            return SyncConflictDeferred(
                file_id=remote_file.id,
                remote_modified_at=remote_file.modified_time,
                last_sync=settings_service.get_config().last_sync,
            )

    def pull(self, remote: RemoteStore, decision: SyncConflictDeferred) -> snapshot_service.Snapshot:
        """Download the remote snapshot and replace local data with it."""
        if not isinstance(decision, SyncConflictDeferred):
            raise ValidationError("pull requires a restore decision from check_remote_newer or request_restore")

        with self._cycle(SyncState.RESTORING):
            data = remote.download(decision.file_id)
            try:
                snapshot = snapshot_service.Snapshot.from_dict(data)
                snapshot_service.apply_snapshot(snapshot)
            except ValidationError as exc:
                raise SyncNetworkError(f"Remote backup is not a valid snapshot: {exc}") from exc
            logger.info("Restored snapshot %s from remote file %s", snapshot.timestamp, decision.file_id)
            return snapshot

    def push_in_background(self, remote: RemoteStore) -> threading.Thread | None:
        """
        Fire-and-forget push on a daemon thread. Takes ownership of remote.

        Skipped when a sync is already running. Failures are logged, not
        retried.
        """
        if self.busy:
            logger.info("Background push skipped: sync already in progress")
            remote.close()
            return None

        app = current_app._get_current_object()

        def _run():
            with app.app_context():
                try:
                    self.push(remote)
                except SyncInProgressError:
                    logger.info("Background push skipped: sync already in progress")
                except SyncError as exc:
                    logger.warning("Background push failed: %s", exc)
                except Exception:
                    logger.exception("Background push failed")
                finally:
                    remote.close()

        thread = threading.Thread(target=_run, name="stockledger-background-push", daemon=True)
        thread.start()
        return thread

    def on_app_hidden(self, remote: RemoteStore) -> threading.Thread | None:
        """The UI went to the background: push if this device is linked."""
        if not settings_service.get_config().drive_client_id:
            remote.close()
            return None
        return self.push_in_background(remote)


def get_synchronizer() -> ReplicaSynchronizer:
    return current_app.extensions["replica_sync"]

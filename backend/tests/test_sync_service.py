"""
Replica synchronizer tests.

Verifies:
- the 60s grace window decides whether the remote counts as newer
- a push stamps last_sync and caches the remote file id; a failed push
  changes nothing locally
- a pull only runs with a restore decision
- overlapping syncs are rejected
- the Google Drive client speaks the Drive v3 REST dialect (MockTransport)
"""

import json
from datetime import datetime, timedelta

import httpx
import pytest

from stockledger.models import Product
from stockledger.services import settings_service
from stockledger.services.sync_service import (
    DriveRemoteStore,
    RemoteFileMissingError,
    SyncAuthError,
    SyncConflictDeferred,
    SyncInProgressError,
    SyncNetworkError,
    SyncState,
    is_remote_newer,
)
from stockledger.time_utils import utcnow
from stockledger.validation import ValidationError, NotFoundError


REMOTE_NAME = "stockledger_backup.json"


def _remote_doc(product_name="Remote Water"):
    return {
        "products": [{
            "id": "p-remote",
            "name": product_name,
            "sku": "WATR-01",
            "category": "Drinks",
            "quantity": 0,
            "price_cents": 1000,
            "updated_at": "2026-10-01T10:00:00Z",
        }],
        "history": [],
        "debts": [],
        "clients": [],
        "config": {"shop_name": "Remote Shop", "drive_client_id": "other-device"},
        "timestamp": "2026-10-01T10:00:00Z",
    }


# =============================================================================
# GRACE WINDOW
# =============================================================================


class TestIsRemoteNewer:
    last_sync = datetime(2026, 10, 18, 12, 0, 0)

    def test_within_grace_is_not_newer(self):
        assert is_remote_newer(self.last_sync + timedelta(seconds=30), self.last_sync) is False

    def test_exactly_at_grace_is_not_newer(self):
        assert is_remote_newer(self.last_sync + timedelta(seconds=60), self.last_sync) is False

    def test_beyond_grace_is_newer(self):
        assert is_remote_newer(self.last_sync + timedelta(seconds=90), self.last_sync) is True

    def test_never_synced_counts_as_epoch(self):
        assert is_remote_newer(datetime(2020, 1, 1), None) is True

    def test_unknown_remote_time_is_not_newer(self):
        assert is_remote_newer(None, self.last_sync) is False

    def test_custom_grace(self):
        assert is_remote_newer(self.last_sync + timedelta(seconds=30), self.last_sync, grace_seconds=10) is True


# =============================================================================
# PUSH
# =============================================================================


class TestPush:

    def test_push_uploads_snapshot_and_stamps_last_sync(self, db_session, synchronizer, remote, make_product):
        make_product("Cola", initial_quantity=3)
        before = utcnow()

        remote_file = synchronizer.push(remote)

        cfg = settings_service.get_config()
        assert cfg.drive_backup_file_id == remote_file.id
        assert cfg.last_sync >= before
        stored = remote.files[remote_file.id]
        assert stored["name"] == REMOTE_NAME
        assert [p["name"] for p in stored["payload"]["products"]] == ["Cola"]
        assert synchronizer.state == SyncState.IDLE

    def test_second_push_replaces_cached_file(self, db_session, synchronizer, remote):
        first = synchronizer.push(remote)
        second = synchronizer.push(remote)

        assert second.id == first.id
        assert len(remote.files) == 1
        assert remote.calls[-1] == ("upload", first.id)

    def test_push_reuses_file_found_by_name(self, db_session, synchronizer, remote):
        existing = remote.put(REMOTE_NAME, {}, utcnow() - timedelta(days=1))

        remote_file = synchronizer.push(remote)

        assert remote_file.id == existing
        assert len(remote.files) == 1

    def test_stale_cached_id_falls_back_to_name_lookup(self, db_session, synchronizer, remote):
        settings_service.record_sync(file_id="deleted-elsewhere", synced_at=utcnow() - timedelta(days=2))

        remote_file = synchronizer.push(remote)

        assert remote_file.id != "deleted-elsewhere"
        assert settings_service.get_config().drive_backup_file_id == remote_file.id

    @pytest.mark.parametrize("error", [SyncNetworkError("offline"), SyncAuthError("expired token")])
    def test_failed_push_leaves_local_state_untouched(self, db_session, synchronizer, remote, error):
        remote.fail_with = error

        with pytest.raises(type(error)):
            synchronizer.push(remote)

        cfg = settings_service.get_config()
        assert cfg.last_sync is None
        assert cfg.drive_backup_file_id is None
        assert synchronizer.last_error == str(error)
        assert synchronizer.state == SyncState.IDLE
        assert synchronizer.busy is False

    def test_overlapping_sync_is_rejected(self, db_session, synchronizer, remote):
        synchronizer._inflight.acquire()
        try:
            with pytest.raises(SyncInProgressError):
                synchronizer.push(remote)
        finally:
            synchronizer._inflight.release()

        assert remote.calls == []


# =============================================================================
# CHECK / PULL
# =============================================================================


class TestCheckAndPull:

    def test_no_remote_file_means_nothing_newer(self, db_session, synchronizer, remote):
        assert synchronizer.check_remote_newer(remote) is None

    def test_remote_within_grace_after_push_is_not_newer(self, db_session, synchronizer, remote):
        remote_file = synchronizer.push(remote)
        last_sync = settings_service.get_config().last_sync
        remote.files[remote_file.id]["modified_time"] = last_sync + timedelta(seconds=30)

        assert synchronizer.check_remote_newer(remote) is None

    def test_remote_beyond_grace_yields_decision(self, db_session, synchronizer, remote):
        remote_file = synchronizer.push(remote)
        last_sync = settings_service.get_config().last_sync
        modified = last_sync + timedelta(seconds=90)
        remote.files[remote_file.id]["modified_time"] = modified

        decision = synchronizer.check_remote_newer(remote)

        assert decision == SyncConflictDeferred(
            file_id=remote_file.id,
            remote_modified_at=modified,
            last_sync=last_sync,
        )

    def test_never_synced_device_sees_remote_as_newer(self, db_session, synchronizer, remote):
        remote.put(REMOTE_NAME, _remote_doc(), utcnow() - timedelta(days=30))

        assert synchronizer.check_remote_newer(remote) is not None

    def test_check_does_not_change_local_data(self, db_session, synchronizer, remote, make_product):
        make_product("Local Cola")
        remote.put(REMOTE_NAME, _remote_doc(), utcnow())

        synchronizer.check_remote_newer(remote)

        assert [p.name for p in db_session.query(Product).all()] == ["Local Cola"]
        assert ("download", "remote-1") not in remote.calls

    def test_pull_requires_decision(self, db_session, synchronizer, remote):
        remote.put(REMOTE_NAME, _remote_doc(), utcnow())

        with pytest.raises(ValidationError):
            synchronizer.pull(remote, None)

        assert remote.calls == []

    def test_pull_replaces_local_data(self, db_session, synchronizer, remote, make_product):
        make_product("Local Cola")
        settings_service.update_config({"drive_client_id": "this-device"})
        remote.put(REMOTE_NAME, _remote_doc(), utcnow())

        decision = synchronizer.check_remote_newer(remote)
        snapshot = synchronizer.pull(remote, decision)

        assert snapshot.timestamp == "2026-10-01T10:00:00Z"
        assert [p.name for p in db_session.query(Product).all()] == ["Remote Water"]
        cfg = settings_service.get_config()
        assert cfg.shop_name == "Remote Shop"
        assert cfg.drive_client_id == "this-device"

    def test_pull_of_malformed_remote_changes_nothing(self, db_session, synchronizer, remote, make_product):
        make_product("Local Cola")
        file_id = remote.put(REMOTE_NAME, {"products": "not a list"}, utcnow())
        decision = SyncConflictDeferred(file_id=file_id, remote_modified_at=utcnow(), last_sync=None)

        with pytest.raises(SyncNetworkError):
            synchronizer.pull(remote, decision)

        assert [p.name for p in db_session.query(Product).all()] == ["Local Cola"]

    def test_pull_of_remote_with_bad_config_is_network_error(self, db_session, synchronizer, remote, make_product):
        make_product("Local Cola")
        settings_service.update_config({"shop_name": "Local Shop"})
        file_id = remote.put(REMOTE_NAME, {"config": {"shop_name": None}}, utcnow())
        decision = SyncConflictDeferred(file_id=file_id, remote_modified_at=utcnow(), last_sync=None)

        with pytest.raises(SyncNetworkError):
            synchronizer.pull(remote, decision)

        assert settings_service.get_config().shop_name == "Local Shop"
        assert synchronizer.state == SyncState.IDLE

    def test_manual_restore_ignores_age(self, db_session, synchronizer, remote):
        synchronizer.push(remote)

        decision = synchronizer.request_restore(remote)

        assert isinstance(decision, SyncConflictDeferred)
        assert synchronizer.check_remote_newer(remote) is None

    def test_manual_restore_without_remote(self, db_session, synchronizer, remote):
        with pytest.raises(NotFoundError):
            synchronizer.request_restore(remote)


# =============================================================================
# BACKGROUND PUSH
# =============================================================================


class TestBackgroundPush:

    def test_background_push_completes(self, db_session, synchronizer, remote):
        thread = synchronizer.push_in_background(remote)
        thread.join(timeout=10)

        db_session.expire_all()
        assert settings_service.get_config().last_sync is not None
        assert len(remote.files) == 1
        assert remote.closed is True

    def test_background_push_failure_is_logged(self, db_session, synchronizer, remote, caplog):
        remote.fail_with = SyncNetworkError("offline")

        with caplog.at_level("WARNING", logger="stockledger.services.sync_service"):
            thread = synchronizer.push_in_background(remote)
            thread.join(timeout=10)

        assert "Background push failed: offline" in caplog.text
        db_session.expire_all()
        assert settings_service.get_config().last_sync is None

    def test_background_push_skipped_while_busy(self, db_session, synchronizer, remote):
        synchronizer._inflight.acquire()
        try:
            assert synchronizer.push_in_background(remote) is None
        finally:
            synchronizer._inflight.release()

        assert remote.calls == []

    def test_hidden_without_link_does_nothing(self, db_session, synchronizer, remote):
        assert synchronizer.on_app_hidden(remote) is None
        assert remote.calls == []

    def test_hidden_with_link_pushes(self, db_session, synchronizer, remote):
        settings_service.update_config({"drive_client_id": "this-device"})

        thread = synchronizer.on_app_hidden(remote)
        thread.join(timeout=10)

        assert len(remote.files) == 1


# =============================================================================
# GOOGLE DRIVE CLIENT
# =============================================================================


def _drive(handler, **kwargs):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return DriveRemoteStore(
        "token-123",
        api_base="https://drive.test/drive/v3",
        upload_base="https://drive.test/upload/drive/v3",
        client=client,
        **kwargs,
    )


class TestDriveRemoteStore:

    def test_find_file_queries_by_name(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={"files": [
                {"id": "file-1", "modifiedTime": "2026-10-18T12:00:00.123Z"},
            ]})

        found = _drive(handler, folder_id="folder-9").find_file(REMOTE_NAME)

        request = seen["request"]
        assert request.method == "GET"
        assert request.url.path == "/drive/v3/files"
        assert request.headers["Authorization"] == "Bearer token-123"
        q = request.url.params["q"]
        assert f"name = '{REMOTE_NAME}'" in q
        assert "trashed = false" in q
        assert "'folder-9' in parents" in q
        assert found.id == "file-1"
        assert found.modified_time == datetime(2026, 10, 18, 12, 0, 0, 123000)

    def test_find_file_none(self):
        found = _drive(lambda request: httpx.Response(200, json={"files": []})).find_file(REMOTE_NAME)

        assert found is None

    def test_upload_creates_with_multipart(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={"id": "new-file", "modifiedTime": "2026-10-18T12:00:00Z"})

        result = _drive(handler, folder_id="folder-9").upload(REMOTE_NAME, {"products": []})

        request = seen["request"]
        assert request.method == "POST"
        assert request.url.path == "/upload/drive/v3/files"
        assert request.url.params["uploadType"] == "multipart"
        assert request.headers["Content-Type"].startswith("multipart/related; boundary=")
        body = request.content.decode("utf-8")
        assert json.dumps({"name": REMOTE_NAME, "mimeType": "application/json", "parents": ["folder-9"]}) in body
        assert '{"products": []}' in body
        assert result.id == "new-file"

    def test_upload_replaces_existing_with_patch(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json={"id": "file-1", "modifiedTime": "2026-10-18T12:00:00Z"})

        _drive(handler, folder_id="folder-9").upload(REMOTE_NAME, {}, file_id="file-1")

        request = seen["request"]
        assert request.method == "PATCH"
        assert request.url.path == "/upload/drive/v3/files/file-1"
        assert '"parents"' not in request.content.decode("utf-8")

    def test_download_reads_media(self):
        seen = {}

        def handler(request):
            seen["request"] = request
            return httpx.Response(200, json=_remote_doc())

        data = _drive(handler).download("file-1")

        assert seen["request"].url.params["alt"] == "media"
        assert data["products"][0]["id"] == "p-remote"

    @pytest.mark.parametrize("status,error", [
        (401, SyncAuthError),
        (403, SyncAuthError),
        (404, RemoteFileMissingError),
        (500, SyncNetworkError),
        (503, SyncNetworkError),
    ])
    def test_http_errors_are_mapped(self, status, error):
        store = _drive(lambda request: httpx.Response(status, json={"error": "nope"}))

        with pytest.raises(error):
            store.download("file-1")

    def test_transport_failure_is_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(SyncNetworkError):
            _drive(handler).find_file(REMOTE_NAME)

    def test_invalid_json_is_network_error(self):
        store = _drive(lambda request: httpx.Response(200, content=b"<html>"))

        with pytest.raises(SyncNetworkError):
            store.download("file-1")

    def test_missing_token(self):
        with pytest.raises(SyncAuthError):
            DriveRemoteStore("")

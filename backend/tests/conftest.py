"""
Pytest fixtures for stockledger backend tests.

Provides the test database, a Flask test client, product factories and
an in-memory stand-in for the remote replica.
"""

import copy

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.services import products_service
from stockledger.services.sync_service import (
    RemoteFile,
    RemoteStore,
    RemoteFileMissingError,
    get_synchronizer,
)
from stockledger.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_DIR': None,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: create a product through the service (opening stock via the ledger)."""
    def _make(name="Cola 600ml", *, initial_quantity=0, price_cents=1500, category="Food", default_bulk_size=None):
        patch = {"name": name, "price_cents": price_cents, "category": category}
        if default_bulk_size is not None:
            patch["default_bulk_size"] = default_bulk_size
        return products_service.create_product(patch=patch, initial_quantity=initial_quantity)
    return _make


class FakeRemoteStore(RemoteStore):
    """In-memory remote replica. files: id -> {name, payload, modified_time}."""

    def __init__(self):
        self.files = {}
        self.calls = []
        self.fail_with = None
        self.closed = False

    def _maybe_fail(self):
        if self.fail_with is not None:
            raise self.fail_with

    def put(self, name, payload, modified_time, file_id=None):
        file_id = file_id or f"remote-{len(self.files) + 1}"
        self.files[file_id] = {
            "name": name,
            "payload": copy.deepcopy(payload),
            "modified_time": modified_time,
        }
        return file_id

    def find_file(self, name):
        self.calls.append(("find", name))
        self._maybe_fail()
        matches = [(fid, f) for fid, f in self.files.items() if f["name"] == name]
        if not matches:
            return None
        fid, f = max(matches, key=lambda m: m[1]["modified_time"])
        return RemoteFile(id=fid, modified_time=f["modified_time"])

    def upload(self, name, payload, *, file_id=None):
        self.calls.append(("upload", file_id))
        self._maybe_fail()
        if file_id is not None and file_id not in self.files:
            raise RemoteFileMissingError("Remote file not found")
        modified = utcnow()
        file_id = self.put(name, payload, modified, file_id=file_id)
        return RemoteFile(id=file_id, modified_time=modified)

    def download(self, file_id):
        self.calls.append(("download", file_id))
        self._maybe_fail()
        if file_id not in self.files:
            raise RemoteFileMissingError("Remote file not found")
        return copy.deepcopy(self.files[file_id]["payload"])

    def close(self):
        self.closed = True


@pytest.fixture(scope='function')
def remote():
    return FakeRemoteStore()


@pytest.fixture(scope='function')
def synchronizer(app, db_session, remote):
    """The app's synchronizer, reset and wired to the fake remote for any token."""
    sync = get_synchronizer()
    original_factory = sync.remote_factory
    sync.last_error = None
    sync.remote_factory = lambda token: remote

    yield sync

    sync.remote_factory = original_factory
    sync.last_error = None

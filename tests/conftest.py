# tests/conftest.py
"""
Pytest configuration and fixtures.
"""

import os
import threading

import pytest

# Set test environment before settings are read anywhere
os.environ.setdefault("TESTING", "1")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("MCE_AUTH_BASE_URI", "https://test.auth.marketingcloudapis.com")
os.environ.setdefault("MCE_REST_BASE_URI", "https://test.rest.marketingcloudapis.com")
os.environ.setdefault("MCE_CLIENT_ID", "test-client-id")
os.environ.setdefault("MCE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("MCE_SCOPE", "data_extensions_read data_extensions_write")


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "db: tests that use a SQLite database file")


# -----------------------------------------------------------------------------
# Database
# -----------------------------------------------------------------------------


@pytest.fixture
def session_factory(tmp_path):
    """Session factory over a fresh SQLite file with foreign keys enforced."""
    from retention_sync import models  # noqa: F401
    from retention_sync.database import Base, make_engine, make_session_factory

    engine = make_engine(f"sqlite:///{tmp_path / 'sync.db'}")
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


# -----------------------------------------------------------------------------
# Wire object builders
# -----------------------------------------------------------------------------


@pytest.fixture
def make_folder():
    from retention_sync.services.marketing_cloud.types import Folder

    def build(folder_id: str, parent_id: str = "0", name: str | None = None, **extra) -> Folder:
        return Folder(
            id=folder_id,
            parent_id=parent_id,
            name=name or f"Folder {folder_id}",
            type="dataextension",
            **extra,
        )

    return build


@pytest.fixture
def make_data_extension():
    from retention_sync.services.marketing_cloud.types import DataExtension

    def build(de_id: str, category_id: str, **extra):
        values = {
            "id": de_id,
            "name": f"DE {de_id}",
            "key": f"key-{de_id}",
            "category_id": category_id,
        }
        values.update(extra)
        return DataExtension(**values)

    return build


# -----------------------------------------------------------------------------
# Fake Marketing Cloud client
# -----------------------------------------------------------------------------


class FakeMarketingCloudClient:
    """
    In-memory stand-in for MarketingCloudClient.

    roots: folders returned by list_root_folders
    children: folder id -> direct children
    data_extensions: folder id -> list of pages (each a list of DataExtension)
    update_errors: data extension id -> exception raised by update_data_retention
    """

    def __init__(self, roots=None, children=None, data_extensions=None, update_errors=None):
        self.roots = roots or []
        self.children = children or {}
        self.data_extensions = data_extensions or {}
        self.update_errors = update_errors or {}
        self.root_error = None
        self.subfolder_errors: dict = {}

        self._lock = threading.Lock()
        self.subfolder_calls: list[str] = []
        self.page_calls: list[tuple[str, int, int]] = []
        self.updates: list[tuple[str, object]] = []

    def list_root_folders(self):
        if self.root_error:
            raise self.root_error
        return list(self.roots)

    def list_subfolders(self, folder_id):
        with self._lock:
            self.subfolder_calls.append(folder_id)
        if folder_id in self.subfolder_errors:
            raise self.subfolder_errors[folder_id]
        return list(self.children.get(folder_id, []))

    def list_data_extensions(self, folder_id, page=1, page_size=96):
        with self._lock:
            self.page_calls.append((folder_id, page, page_size))
        pages = self.data_extensions.get(folder_id, [])
        if page - 1 < len(pages):
            return list(pages[page - 1])
        return []

    def update_data_retention(self, data_extension_id, config):
        with self._lock:
            self.updates.append((data_extension_id, config))
        if data_extension_id in self.update_errors:
            raise self.update_errors[data_extension_id]

    def close(self):
        pass


@pytest.fixture
def fake_client_cls():
    return FakeMarketingCloudClient

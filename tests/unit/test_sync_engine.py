"""
Unit tests for SyncEngine.

Drives full runs against the in-memory fake client and real stores on a
SQLite file. Pools are sized to one worker so database writes are serialized.
"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from retention_sync.logging_config import trace_id_var
from retention_sync.models import RetentionUpdateStatus, SyncJobStatus
from retention_sync.services.errors import PermanentAPIError, PersistenceError, SyncAbortedError, TransientAPIError
from retention_sync.services.stores import DataExtensionStore, FolderStore, SyncJobStore
from retention_sync.services.sync_engine import SyncConfig, SyncEngine, partition_folders

pytestmark = pytest.mark.db


class FailingFolderStore(FolderStore):
    """FolderStore that refuses to persist the given ids."""

    def __init__(self, session_factory, failing):
        super().__init__(session_factory)
        self.failing = set(failing)

    def upsert(self, folder):
        if folder.id in self.failing:
            raise PersistenceError(f"cannot write {folder.id}", entity_id=folder.id)
        super().upsert(folder)


class FailingDataExtensionStore(DataExtensionStore):
    """DataExtensionStore that refuses to persist the given ids."""

    def __init__(self, session_factory, failing):
        super().__init__(session_factory)
        self.failing = set(failing)

    def upsert(self, de):
        if de.id in self.failing:
            raise PersistenceError(f"cannot write {de.id}", entity_id=de.id)
        super().upsert(de)


def sequential_config(**overrides):
    values = {
        "top_level_concurrency": 1,
        "subfolder_concurrency": 1,
        "data_extension_concurrency": 1,
        "page_size": 2,
        "resolver_max_passes": 2,
    }
    values.update(overrides)
    return SyncConfig(**values)


@pytest.fixture
def stores(session_factory):
    return FolderStore(session_factory), DataExtensionStore(session_factory), SyncJobStore(session_factory)


@pytest.fixture
def build_engine(stores):
    folder_store, de_store, job_store = stores

    def build(client, config=None, folder_store_override=None):
        return SyncEngine(
            client=client,
            folder_store=folder_store_override or folder_store,
            data_extension_store=de_store,
            job_store=job_store,
            config=config or sequential_config(),
        )

    return build


@pytest.fixture
def tree(make_folder, make_data_extension):
    """
    T1 (top-level)
    ├── C1 (also returned by the root fetch)
    │   └── G1: de4
    ├── C2: de2, de3
    └── de1
    """
    t1 = make_folder("T1")
    c1 = make_folder("C1", parent_id="T1")
    c2 = make_folder("C2", parent_id="T1")
    g1 = make_folder("G1", parent_id="C1")
    return {
        "roots": [t1, c1],
        "children": {"T1": [c1, c2], "C1": [g1]},
        "data_extensions": {
            "T1": [[make_data_extension("de1", "T1")]],
            "C2": [[make_data_extension("de2", "C2"), make_data_extension("de3", "C2")]],
            "G1": [[make_data_extension("de4", "G1")]],
        },
    }


class TestPartitionFolders:
    def test_split_on_root_sentinel(self, make_folder):
        top, children = partition_folders([make_folder("1"), make_folder("2", parent_id="1"), make_folder("3", "")])
        assert [f.id for f in top] == ["1", "3"]
        assert [f.id for f in children] == ["2"]


class TestSyncAll:
    """Tests for SyncEngine.sync_all."""

    def test_full_tree(self, fake_client_cls, build_engine, stores, tree):
        client = fake_client_cls(**tree)
        engine = build_engine(client)

        result = engine.sync_all()

        folder_store, de_store, job_store = stores
        assert result.metrics.snapshot() == {
            "folders_succeeded": 1,
            "folders_failed": 0,
            "subfolders_succeeded": 3,
            "subfolders_failed": 0,
            "data_extensions_succeeded": 4,
            "data_extensions_failed": 0,
            "total_succeeded": 8,
            "total_failed": 0,
        }
        # T1 plus C1, which the root fetch returned as well
        assert result.roots_walked == 2
        assert folder_store.count() == 4
        assert folder_store.get("G1").parent_id == "C1"
        assert {de_id for de_id, _ in client.updates} == {"de1", "de2", "de3", "de4"}
        assert de_store.get_retention("de3").last_api_update_status == RetentionUpdateStatus.SUCCEEDED.value

    def test_each_folder_walked_once(self, fake_client_cls, build_engine, tree):
        """C1 arrives from both the root fetch and T1's children but is walked once."""
        client = fake_client_cls(**tree)

        build_engine(client).sync_all()

        assert sorted(client.subfolder_calls) == ["C1", "C2", "G1", "T1"]

    def test_full_page_then_empty_page(self, fake_client_cls, build_engine, make_folder, make_data_extension):
        """A full first page triggers exactly one more fetch."""
        top = make_folder("T1")
        page = [make_data_extension(f"de{i}", "T1") for i in range(96)]
        client = fake_client_cls(roots=[top], data_extensions={"T1": [page]})

        result = build_engine(client, sequential_config(page_size=96)).sync_all()

        assert client.page_calls == [("T1", 1, 96), ("T1", 2, 96)]
        assert result.metrics.data_extensions_succeeded == 96

    def test_short_page_stops_paging(self, fake_client_cls, build_engine, tree):
        client = fake_client_cls(**tree)

        build_engine(client).sync_all()

        # page_size is 2: C2's full first page needs a second fetch, the others do not
        assert [call for call in client.page_calls if call[0] == "C2"] == [("C2", 1, 2), ("C2", 2, 2)]
        assert [call for call in client.page_calls if call[0] == "T1"] == [("T1", 1, 2)]

    def test_push_failure_counts_leaf_failure(self, fake_client_cls, build_engine, stores, tree):
        client = fake_client_cls(**tree, update_errors={"de2": PermanentAPIError("invalid field", status_code=400)})

        result = build_engine(client).sync_all()

        folder_store, de_store, job_store = stores
        assert result.metrics.data_extensions_succeeded == 3
        assert result.metrics.data_extensions_failed == 1
        # Persisted even though the push failed
        assert de_store.get("de2") is not None
        retention = de_store.get_retention("de2")
        assert retention.last_api_update_status == RetentionUpdateStatus.FAILED.value
        assert retention.api_update_retry_count == 1

        jobs = {job.job_metadata["folder_id"]: job for job in job_store.list_recent_jobs()}
        assert set(jobs) == {"T1", "C2", "G1"}
        assert jobs["C2"].status == SyncJobStatus.COMPLETED.value
        assert (jobs["C2"].processed_items, jobs["C2"].succeeded_items, jobs["C2"].failed_items) == (2, 1, 1)

    def test_metrics_cover_every_attempt(self, fake_client_cls, build_engine, tree):
        client = fake_client_cls(**tree, update_errors={"de1": PermanentAPIError("nope", status_code=400)})

        result = build_engine(client).sync_all()

        # 1 top-level, 3 subfolders, 4 data extensions
        assert result.total_succeeded + result.total_failed == 8

    def test_root_fetch_failure_aborts(self, fake_client_cls, build_engine):
        client = fake_client_cls()
        client.root_error = TransientAPIError("gateway timeout", status_code=504)

        with pytest.raises(SyncAbortedError):
            build_engine(client).sync_all()

    def test_top_level_failure_aborts_after_drain(self, fake_client_cls, build_engine, session_factory, make_folder):
        client = fake_client_cls(roots=[make_folder("T1"), make_folder("T2"), make_folder("T3")])
        failing = FailingFolderStore(session_factory, failing=["T2"])

        with pytest.raises(SyncAbortedError) as exc_info:
            build_engine(client, folder_store_override=failing).sync_all()

        metrics = exc_info.value.metrics
        assert metrics.folders_succeeded == 2
        assert metrics.folders_failed == 1
        assert client.subfolder_calls == []
        assert failing.count() == 2

    def test_resolver_drops_are_counted(self, fake_client_cls, build_engine, make_folder):
        orphan = make_folder("O", parent_id="GONE")
        client = fake_client_cls(roots=[make_folder("T1"), orphan], children={"T1": [orphan]})

        result = build_engine(client).sync_all()

        assert "O" in result.dropped_folders
        assert result.metrics.subfolders_failed == 1
        # A dropped folder is not retried by the walk
        assert "O" not in client.subfolder_calls

    def test_saved_child_with_unfetched_parent_is_walked(
        self, fake_client_cls, build_engine, stores, make_folder, make_data_extension
    ):
        """A child whose parent row exists from an earlier run becomes a walk root."""
        folder_store = stores[0]
        folder_store.upsert(make_folder("P"))
        child = make_folder("X", parent_id="P")
        client = fake_client_cls(
            roots=[make_folder("T1"), child],
            data_extensions={"X": [[make_data_extension("dex", "X")]]},
        )

        result = build_engine(client).sync_all()

        assert result.roots_walked == 2
        assert "X" in client.subfolder_calls
        assert result.metrics.data_extensions_succeeded == 1

    def test_subfolder_fetch_failure_still_walks_fetched_folders(self, fake_client_cls, build_engine, tree):
        """C1 came back from the root fetch, so it is walked even when T1's children cannot be listed."""
        client = fake_client_cls(**tree)
        client.subfolder_errors["T1"] = TransientAPIError("busy", status_code=503)

        result = build_engine(client).sync_all()

        assert {de_id for de_id, _ in client.updates} == {"de1", "de4"}
        assert result.metrics.data_extensions_succeeded == 2
        assert result.metrics.subfolders_succeeded == 2
        assert {"C1", "G1"} <= set(client.subfolder_calls)
        # C2 is only known through T1's listing
        assert "C2" not in client.subfolder_calls

    def test_child_persist_failure_skips_subtree(self, fake_client_cls, build_engine, session_factory, tree):
        client = fake_client_cls(**tree)
        failing = FailingFolderStore(session_factory, failing=["C2"])

        result = build_engine(client, folder_store_override=failing).sync_all()

        assert result.metrics.subfolders_failed == 1
        assert result.metrics.subfolders_succeeded == 2
        assert "C2" not in client.subfolder_calls
        assert {de_id for de_id, _ in client.updates} == {"de1", "de4"}

    def test_second_run_is_idempotent(self, fake_client_cls, build_engine, stores, tree):
        build_engine(fake_client_cls(**tree)).sync_all()
        result = build_engine(fake_client_cls(**tree)).sync_all()

        folder_store, de_store, _ = stores
        assert result.total_failed == 0
        assert folder_store.count() == 4
        assert len(de_store.list_by_folder("C2")) == 2

    def test_persist_failure_is_not_a_job_outcome(
        self, fake_client_cls, stores, session_factory, make_folder, make_data_extension
    ):
        """A data extension that never reached the push is a leaf failure but not a job item."""
        folder_store, _, job_store = stores
        client = fake_client_cls(
            roots=[make_folder("T1")],
            data_extensions={"T1": [[make_data_extension("ok", "T1"), make_data_extension("bad", "T1")]]},
        )
        engine = SyncEngine(
            client=client,
            folder_store=folder_store,
            data_extension_store=FailingDataExtensionStore(session_factory, failing=["bad"]),
            job_store=job_store,
            config=sequential_config(),
        )

        result = engine.sync_all()

        assert result.metrics.data_extensions_succeeded == 1
        assert result.metrics.data_extensions_failed == 1
        assert [de_id for de_id, _ in client.updates] == ["ok"]
        [job] = job_store.list_recent_jobs()
        assert job.status == SyncJobStatus.COMPLETED.value
        assert (job.processed_items, job.succeeded_items, job.failed_items) == (1, 1, 0)

    def test_trace_id_restored_after_run(self, fake_client_cls, build_engine, tree):
        token = trace_id_var.set("outer")
        try:
            result = build_engine(fake_client_cls(**tree)).sync_all()
            assert trace_id_var.get() == "outer"
            assert result.run_id != "outer"
        finally:
            trace_id_var.reset(token)

    def test_trace_id_restored_after_abort(self, fake_client_cls, build_engine):
        client = fake_client_cls()
        client.root_error = TransientAPIError("gateway timeout", status_code=504)

        with pytest.raises(SyncAbortedError):
            build_engine(client).sync_all()

        assert trace_id_var.get() is None


class TestRetryPendingUpdates:
    """Tests for SyncEngine.retry_pending_updates."""

    def test_retries_failed_rows(self, fake_client_cls, build_engine, stores, tree):
        first = fake_client_cls(**tree, update_errors={"de2": PermanentAPIError("throttled", status_code=429)})
        build_engine(first).sync_all()

        retry_client = fake_client_cls()
        outcome = build_engine(retry_client).retry_pending_updates(limit=10)

        assert outcome == {"attempted": 1, "succeeded": 1, "failed": 0}
        assert [de_id for de_id, _ in retry_client.updates] == ["de2"]
        de_store = stores[1]
        assert de_store.get_retention("de2").last_api_update_status == RetentionUpdateStatus.SUCCEEDED.value

    def test_nothing_pending(self, fake_client_cls, build_engine):
        assert build_engine(fake_client_cls()).retry_pending_updates() == {"attempted": 0, "succeeded": 0, "failed": 0}


class SlowFakeClient:
    """
    Wraps the fake client with a short delay on each call and records how many
    calls overlap.

    Subfolder listings are tracked per parent of the listed folder; retention
    pushes are tracked per owning folder.
    """

    def __init__(self, inner, delay=0.02):
        self.inner = inner
        self.delay = delay
        self.parents = {child.id: parent for parent, kids in inner.children.items() for child in kids}
        self.owners = {
            de.id: folder_id for folder_id, pages in inner.data_extensions.items() for page in pages for de in page
        }
        self._lock = threading.Lock()
        self._listing: dict[str, int] = {}
        self._pushing: dict[str, int] = {}
        self.peak_listing: dict[str, int] = {}
        self.peak_pushing: dict[str, int] = {}
        self.events: list[tuple[str, str]] = []

    def _enter(self, current, peak, key):
        with self._lock:
            current[key] = current.get(key, 0) + 1
            peak[key] = max(peak.get(key, 0), current[key])

    def _leave(self, current, key):
        with self._lock:
            current[key] -= 1

    def list_root_folders(self):
        return self.inner.list_root_folders()

    def list_subfolders(self, folder_id):
        parent = self.parents.get(folder_id, "")
        self._enter(self._listing, self.peak_listing, parent)
        try:
            time.sleep(self.delay)
            return self.inner.list_subfolders(folder_id)
        finally:
            self._leave(self._listing, parent)

    def list_data_extensions(self, folder_id, page=1, page_size=96):
        with self._lock:
            self.events.append(("fetch", folder_id))
        return self.inner.list_data_extensions(folder_id, page=page, page_size=page_size)

    def update_data_retention(self, data_extension_id, config):
        owner = self.owners[data_extension_id]
        self._enter(self._pushing, self.peak_pushing, owner)
        try:
            time.sleep(self.delay)
            self.inner.update_data_retention(data_extension_id, config)
        finally:
            self._leave(self._pushing, owner)
            with self._lock:
                self.events.append(("pushed", owner))

    def close(self):
        pass


class TestDefaultConcurrency:
    """Concurrency bounds at the default SyncConfig, with stores mocked out."""

    @pytest.fixture
    def slow_client(self, fake_client_cls, make_folder, make_data_extension):
        top = make_folder("T1")
        kids = [make_folder(f"C{i}", parent_id="T1") for i in range(12)]
        data_extensions = {"T1": [[make_data_extension(f"t1-de{i}", "T1") for i in range(25)]]}
        for kid in kids:
            data_extensions[kid.id] = [[make_data_extension(f"{kid.id}-de{i}", kid.id) for i in range(3)]]
        inner = fake_client_cls(roots=[top], children={"T1": kids}, data_extensions=data_extensions)
        return SlowFakeClient(inner)

    @pytest.fixture
    def result(self, slow_client):
        engine = SyncEngine(
            client=slow_client,
            folder_store=MagicMock(),
            data_extension_store=MagicMock(),
            job_store=MagicMock(),
            config=SyncConfig(),
        )
        return engine.sync_all()

    def test_children_walked_at_most_five_at_a_time(self, slow_client, result):
        assert result.metrics.subfolders_succeeded == 12
        assert 1 < slow_client.peak_listing["T1"] <= 5

    def test_pushes_bounded_per_folder(self, slow_client, result):
        assert len(slow_client.inner.updates) == 25 + 12 * 3
        assert 1 < slow_client.peak_pushing["T1"] <= 10
        assert all(peak <= 10 for peak in slow_client.peak_pushing.values())

    def test_parent_data_extensions_wait_for_children(self, slow_client, result):
        events = slow_client.events
        parent_fetch = events.index(("fetch", "T1"))
        last_child_event = max(i for i, (_, folder_id) in enumerate(events) if folder_id != "T1")
        assert last_child_event < parent_fetch

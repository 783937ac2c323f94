# retention_sync/services/sync_engine.py
"""
Sync engine: mirrors the remote folder tree and pushes retention settings.

Run stages:
1. fetch_roots        - pull the root folder set (failure aborts the run)
2. persist_top_level  - folders whose parent is the root sentinel, bounded
                        pool; any failure aborts the run after the pool drains
3. persist_children   - remaining fetched folders through the HierarchyResolver
4. walk_tree          - from every persisted fetched folder, recursively fetch
                        children and data extensions, persist them, and push
                        the normalized retention configuration to each data
                        extension

Past stage 2 nothing propagates: failures are logged, counted in SyncMetrics,
and recorded on the per-batch SyncJob rows.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field

from retention_sync.config import Settings
from retention_sync.logging_config import folder_id_var, log_stage, trace_id_var
from retention_sync.models import RetentionUnit
from retention_sync.services.errors import SyncAbortedError
from retention_sync.services.hierarchy_resolver import HierarchyResolver
from retention_sync.services.marketing_cloud.client import MarketingCloudClient, iter_data_extension_pages
from retention_sync.services.marketing_cloud.types import DataExtension, Folder, RetentionConfig
from retention_sync.services.progress_tracker import ProgressTracker
from retention_sync.services.retention_pusher import RetentionPusher
from retention_sync.services.stores.data_extension_store import DataExtensionStore
from retention_sync.services.stores.folder_store import FolderStore
from retention_sync.services.stores.sync_job_store import SyncJobStore
from retention_sync.services.sync_metrics import SyncMetrics
from retention_sync.services.worker_pool import BoundedPool

logger = logging.getLogger(__name__)


@dataclass
class SyncConfig:
    """Concurrency bounds, paging and the configuration pushed to every data extension."""

    top_level_concurrency: int = 10
    subfolder_concurrency: int = 5
    data_extension_concurrency: int = 10
    page_size: int = 96
    resolver_max_passes: int = 5
    retry_ceiling: int = 5
    retention: RetentionConfig = field(default_factory=RetentionConfig.normalized)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SyncConfig":
        return cls(
            top_level_concurrency=settings.TOP_LEVEL_CONCURRENCY,
            subfolder_concurrency=settings.SUBFOLDER_CONCURRENCY,
            data_extension_concurrency=settings.DATA_EXTENSION_CONCURRENCY,
            page_size=settings.DATA_EXTENSION_PAGE_SIZE,
            resolver_max_passes=settings.RESOLVER_MAX_PASSES,
            retry_ceiling=settings.RETENTION_MAX_RETRIES,
            retention=RetentionConfig.normalized(
                period_length=settings.RETENTION_PERIOD_LENGTH,
                unit=RetentionUnit.from_name(settings.RETENTION_PERIOD_UNIT),
                row_based=settings.RETENTION_ROW_BASED,
                delete_at_end=settings.RETENTION_DELETE_AT_END,
                reset_on_import=settings.RETENTION_RESET_ON_IMPORT,
            ),
        )


@dataclass
class SyncRunResult:
    run_id: str
    metrics: SyncMetrics
    dropped_folders: dict[str, str] = field(default_factory=dict)
    roots_walked: int = 0
    duration_ms: int = 0

    @property
    def total_succeeded(self) -> int:
        return self.metrics.total_succeeded

    @property
    def total_failed(self) -> int:
        return self.metrics.total_failed

    def summary(self) -> dict:
        return {
            "run_id": self.run_id,
            "duration_ms": self.duration_ms,
            "roots_walked": self.roots_walked,
            "dropped_folders": len(self.dropped_folders),
            **self.metrics.snapshot(),
        }


def partition_folders(folders: list[Folder]) -> tuple[list[Folder], list[Folder]]:
    """Split fetched folders into (top-level, children) by the root sentinel."""
    top_level = [f for f in folders if f.is_top_level]
    children = [f for f in folders if not f.is_top_level]
    return top_level, children


class SyncEngine:
    """
    Orchestrates one full sync run.

    Usage:
        engine = SyncEngine.from_settings(get_settings())
        result = engine.sync_all()
        print(result.summary())
    """

    def __init__(
        self,
        client: MarketingCloudClient,
        folder_store: FolderStore,
        data_extension_store: DataExtensionStore,
        job_store: SyncJobStore,
        config: SyncConfig | None = None,
        pusher: RetentionPusher | None = None,
        tracker: ProgressTracker | None = None,
        clock=time.monotonic,
    ):
        self.client = client
        self.folder_store = folder_store
        self.data_extension_store = data_extension_store
        self.job_store = job_store
        self.config = config or SyncConfig()
        self.pusher = pusher or RetentionPusher(client, data_extension_store)
        self.tracker = tracker or ProgressTracker(job_store, clock=clock)
        self.resolver = HierarchyResolver(folder_store.upsert, max_passes=self.config.resolver_max_passes)
        self._clock = clock

        self.metrics = SyncMetrics()
        self._lock = threading.Lock()
        self._visited: set[str] = set()
        self._claimed: set[str] = set()
        self._dropped: set[str] = set()

    @classmethod
    def from_settings(cls, settings: Settings, session_factory=None) -> "SyncEngine":
        return cls(
            client=MarketingCloudClient.from_settings(settings),
            folder_store=FolderStore(session_factory),
            data_extension_store=DataExtensionStore(session_factory),
            job_store=SyncJobStore(session_factory),
            config=SyncConfig.from_settings(settings),
        )

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def sync_all(self) -> SyncRunResult:
        """
        Run every stage once.

        Returns:
            SyncRunResult with the run's metrics and any folders the resolver dropped

        Raises:
            SyncAbortedError: root fetch failed or a top-level folder could not be persisted
        """
        run_id = str(uuid.uuid4())
        token = trace_id_var.set(run_id)
        try:
            return self._run(run_id)
        finally:
            trace_id_var.reset(token)

    def _run(self, run_id: str) -> SyncRunResult:
        started = self._clock()
        self.metrics = SyncMetrics()
        with self._lock:
            self._visited = set()
            self._claimed = set()
            self._dropped = set()

        logger.info(f"Sync run {run_id} started", extra={"event": "sync_started"})

        with log_stage("fetch_roots"):
            try:
                folders = self.client.list_root_folders()
            except Exception as e:
                raise SyncAbortedError(f"failed to fetch root folders: {e}", metrics=self.metrics) from e

        top_level, children = partition_folders(folders)
        known = {f.id: f for f in folders}
        logger.info(
            f"Fetched {len(folders)} folders: {len(top_level)} top-level, {len(children)} children",
            extra={"event": "folders_partitioned", "items_total": len(folders)},
        )

        with log_stage("persist_top_level"):
            self._persist_top_level(top_level)

        with log_stage("persist_children"):
            resolved = self.resolver.resolve(children, known)
            self.metrics.add_subfolder_success(len(resolved.saved))
            self.metrics.add_subfolder_failure(len(resolved.dropped))
            with self._lock:
                self._claimed.update(resolved.saved)
                self._claimed.update(resolved.dropped)
                self._dropped = set(resolved.dropped)

        # Every persisted fetched folder is a walk root; the visited set keeps
        # folders also reached through their parent from being walked twice
        roots = list(top_level)
        roots.extend(known[folder_id] for folder_id in resolved.saved)

        with log_stage("walk_tree"):
            with BoundedPool(self.config.top_level_concurrency, name="walk-root") as pool:
                for root in roots:
                    pool.submit(self.walk_tree, root)
                pool.wait()

        duration_ms = int((self._clock() - started) * 1000)
        result = SyncRunResult(
            run_id=run_id,
            metrics=self.metrics,
            dropped_folders=resolved.dropped,
            roots_walked=len(roots),
            duration_ms=duration_ms,
        )
        snapshot = self.metrics.snapshot()
        logger.info(
            f"Sync run {run_id} finished: {snapshot['total_succeeded']} succeeded, "
            f"{snapshot['total_failed']} failed ({duration_ms}ms)",
            extra={
                "event": "sync_complete",
                "duration_ms": duration_ms,
                "items_succeeded": snapshot["total_succeeded"],
                "items_failed": snapshot["total_failed"],
            },
        )
        return result

    def _persist_top_level(self, top_level: list[Folder]) -> None:
        with BoundedPool(self.config.top_level_concurrency, name="top-level") as pool:
            for folder in top_level:
                pool.submit(self._persist_top_level_folder, folder)
            futures = pool.wait()

        failed = [folder.id for folder, future in zip(top_level, futures) if future.exception() is not None]
        if failed:
            raise SyncAbortedError(
                f"{len(failed)} top-level folders failed to persist: {', '.join(failed[:10])}",
                metrics=self.metrics,
            )

    def _persist_top_level_folder(self, folder: Folder) -> None:
        try:
            self.folder_store.upsert(folder)
        except Exception as e:
            self.metrics.add_folder_failure()
            logger.error(
                f"Failed to persist top-level folder {folder.id}: {e}",
                extra={"event": "folder_persist_failed", "folder_id": folder.id, "folder_name": folder.name},
            )
            raise
        self.metrics.add_folder_success()
        with self._lock:
            self._claimed.add(folder.id)

    # -------------------------------------------------------------------------
    # Tree walk
    # -------------------------------------------------------------------------

    def walk_tree(self, folder: Folder) -> None:
        """
        Sync everything below an already persisted folder.

        Children are walked on a bounded per-folder pool and joined before
        this folder's data extensions are processed. Each folder is walked at
        most once per run.
        """
        with self._lock:
            if folder.id in self._visited:
                return
            self._visited.add(folder.id)

        token = folder_id_var.set(folder.id)
        try:
            try:
                subfolders = self.client.list_subfolders(folder.id)
            except Exception as e:
                logger.warning(
                    f"Failed to fetch subfolders of {folder.id}: {e}",
                    extra={"event": "subfolders_fetch_failed", "folder_id": folder.id},
                )
                subfolders = []

            if subfolders:
                with BoundedPool(self.config.subfolder_concurrency, name="walk-child") as pool:
                    for child in subfolders:
                        pool.submit(self._walk_child, child)
                    pool.wait()

            self._sync_data_extensions(folder)
        finally:
            folder_id_var.reset(token)

    def _walk_child(self, child: Folder) -> None:
        with self._lock:
            if child.id in self._dropped:
                return
            needs_persist = child.id not in self._claimed
            self._claimed.add(child.id)

        if needs_persist:
            try:
                self.folder_store.upsert(child)
            except Exception as e:
                self.metrics.add_subfolder_failure()
                logger.error(
                    f"Failed to persist subfolder {child.id}: {e}",
                    extra={"event": "subfolder_persist_failed", "folder_id": child.id, "parent_id": child.parent_id},
                )
                return
            self.metrics.add_subfolder_success()

        self.walk_tree(child)

    # -------------------------------------------------------------------------
    # Data extensions
    # -------------------------------------------------------------------------

    def fetch_data_extensions(self, folder_id: str) -> list[DataExtension]:
        """Fetch every page for a folder; stops at the first short or empty page."""
        items: list[DataExtension] = []
        pages_fetched = 0
        try:
            for batch in iter_data_extension_pages(self.client, folder_id, self.config.page_size):
                items.extend(batch)
                pages_fetched += 1
        except Exception as e:
            page = pages_fetched + 1
            logger.warning(
                f"Failed to fetch data extensions of folder {folder_id} page {page}: {e}",
                extra={"event": "data_extensions_fetch_failed", "folder_id": folder_id, "page": page},
            )
        return items

    def _sync_data_extensions(self, folder: Folder) -> None:
        items = self.fetch_data_extensions(folder.id)
        if not items:
            return

        started = self._clock()
        job_id = self.tracker.start_batch(folder, len(items))

        # One slot per item, written only by the worker that owns the index.
        # outcomes: persisted and pushed. pushes: None until a push is attempted.
        outcomes = [False] * len(items)
        pushes: list[bool | None] = [None] * len(items)
        with BoundedPool(self.config.data_extension_concurrency, name="data-extension") as pool:
            for index, de in enumerate(items):
                pool.submit(self._process_data_extension, index, de, outcomes, pushes)
            pool.wait()

        succeeded = sum(outcomes)
        self.metrics.add_data_extensions(succeeded, len(items) - succeeded)

        # The job counts remote update outcomes only
        pushed_ok = sum(1 for result in pushes if result is True)
        pushed_failed = sum(1 for result in pushes if result is False)
        self.tracker.finish_batch(job_id, pushed_ok + pushed_failed, pushed_ok, pushed_failed, started)

    def _process_data_extension(
        self,
        index: int,
        de: DataExtension,
        outcomes: list[bool],
        pushes: list[bool | None],
    ) -> None:
        try:
            self.data_extension_store.upsert(de)
        except Exception as e:
            logger.error(
                f"Failed to persist data extension {de.id}: {e}",
                extra={"event": "data_extension_persist_failed", "data_extension_id": de.id},
            )
            return

        try:
            self.pusher.push(de.id, self.config.retention)
        except Exception:
            # Already logged and tracked by the pusher
            pushes[index] = False
            return

        pushes[index] = True
        outcomes[index] = True

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def retry_pending_updates(self, limit: int = 100) -> dict:
        """
        Push the configuration again for data extensions left pending or failed.

        Rows at or above the retry ceiling are skipped by the query.
        """
        rows = self.data_extension_store.list_needing_retention_update(
            limit=limit,
            max_retries=self.config.retry_ceiling,
        )
        succeeded = failed = 0
        for retention, name in rows:
            try:
                self.pusher.push(retention.data_extension_id, self.config.retention)
                succeeded += 1
            except Exception:
                failed += 1

        logger.info(
            f"Retried {len(rows)} pending retention updates: {succeeded} succeeded, {failed} failed",
            extra={"event": "retry_pending_complete", "items_succeeded": succeeded, "items_failed": failed},
        )
        return {"attempted": len(rows), "succeeded": succeeded, "failed": failed}

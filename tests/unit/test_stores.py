"""
Unit tests for the record stores.

Uses a SQLite file per test with foreign keys enforced.
"""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest

from retention_sync.models import MAX_UPDATE_ERROR_LENGTH, RetentionUpdateStatus, SyncJobStatus
from retention_sync.services.errors import ParentMissingError
from retention_sync.services.marketing_cloud.types import RetentionConfig
from retention_sync.services.stores import (
    DataExtensionStore,
    FolderStore,
    SyncJobStore,
    Violation,
    classify_integrity_error,
)

pytestmark = pytest.mark.db


@pytest.fixture
def folder_store(session_factory):
    return FolderStore(session_factory)


@pytest.fixture
def de_store(session_factory):
    return DataExtensionStore(session_factory)


@pytest.fixture
def job_store(session_factory):
    return SyncJobStore(session_factory)


@pytest.fixture
def pushed_config():
    return RetentionConfig.normalized()


class TestClassifyIntegrityError:
    """Tests for classify_integrity_error."""

    def _error(self, message, pgcode=None):
        orig = Exception(message)
        orig.pgcode = pgcode
        return SimpleNamespace(orig=orig)

    def test_pgcode_unique(self):
        assert classify_integrity_error(self._error("whatever", "23505")) == Violation.UNIQUE

    def test_pgcode_foreign_key(self):
        assert classify_integrity_error(self._error("whatever", "23503")) == Violation.FOREIGN_KEY

    def test_postgres_messages(self):
        assert (
            classify_integrity_error(self._error('duplicate key value violates unique constraint "folders_pkey"'))
            == Violation.UNIQUE
        )
        assert (
            classify_integrity_error(self._error('insert violates foreign key constraint "fk_parent_folder"'))
            == Violation.FOREIGN_KEY
        )

    def test_sqlite_messages(self):
        assert classify_integrity_error(self._error("UNIQUE constraint failed: folders.id")) == Violation.UNIQUE
        assert classify_integrity_error(self._error("FOREIGN KEY constraint failed")) == Violation.FOREIGN_KEY

    def test_other(self):
        assert classify_integrity_error(self._error("NOT NULL constraint failed: folders.name")) == Violation.OTHER


class TestFolderStore:
    """Tests for FolderStore."""

    def test_root_sentinel_stored_as_null(self, folder_store, make_folder):
        folder_store.upsert(make_folder("1", parent_id="0"))
        folder_store.upsert(make_folder("2", parent_id=""))

        assert folder_store.get("1").parent_id is None
        assert folder_store.get("2").parent_id is None

    def test_upsert_updates_existing(self, folder_store, make_folder):
        folder_store.upsert(make_folder("1", name="Old"))
        folder_store.upsert(make_folder("1", name="New", description="now described"))

        row = folder_store.get("1")
        assert row.name == "New"
        assert row.description == "now described"
        assert folder_store.count() == 1

    def test_missing_parent_raises_parent_missing(self, folder_store, make_folder):
        with pytest.raises(ParentMissingError) as exc_info:
            folder_store.upsert(make_folder("2", parent_id="1"))

        assert exc_info.value.entity_id == "2"
        assert folder_store.get("2") is None

    def test_batch_is_one_transaction(self, folder_store, make_folder):
        """A bad row rolls back the whole batch."""
        with pytest.raises(ParentMissingError):
            folder_store.upsert_batch([make_folder("1"), make_folder("2", parent_id="missing")])

        assert folder_store.count() == 0

    def test_batch_parent_first(self, folder_store, make_folder):
        folder_store.upsert_batch([make_folder("1"), make_folder("2", parent_id="1"), make_folder("3", parent_id="2")])

        assert [f.id for f in folder_store.list_children("1")] == ["2"]
        assert folder_store.count() == 3


class TestDataExtensionStore:
    """Tests for DataExtensionStore."""

    @pytest.fixture
    def folder(self, folder_store, make_folder):
        folder = make_folder("100")
        folder_store.upsert(folder)
        return folder

    def test_upsert_with_retention_block(self, de_store, folder, make_data_extension):
        de = make_data_extension(
            "de-1",
            "100",
            data_retention_properties=RetentionConfig(
                data_retention_period_length=6,
                data_retention_period_unit_of_measure=3,
                is_row_based_retention=False,
            ),
        )
        de_store.upsert(de)

        assert de_store.get("de-1").category_id == "100"
        retention = de_store.get_retention("de-1")
        assert retention.data_retention_period_length == 6
        assert retention.data_retention_period_unit_of_measure == 3

    def test_upsert_twice_updates(self, de_store, folder, make_data_extension):
        de_store.upsert(make_data_extension("de-1", "100", row_count=1))
        de_store.upsert(make_data_extension("de-1", "100", row_count=42))

        assert de_store.get("de-1").row_count == 42
        assert len(de_store.list_by_folder("100")) == 1

    def test_unknown_folder_raises_parent_missing(self, de_store, make_data_extension):
        with pytest.raises(ParentMissingError):
            de_store.upsert(make_data_extension("de-1", "nope"))

    def test_mark_pending_creates_tracking_row(self, de_store, folder, make_data_extension, pushed_config):
        de_store.upsert(make_data_extension("de-1", "100"))

        de_store.mark_update_pending("de-1", pushed_config)

        retention = de_store.get_retention("de-1")
        assert retention.last_api_update_status == RetentionUpdateStatus.PENDING.value
        assert retention.api_update_retry_count == 0
        assert retention.last_api_update_at is not None

    def test_failed_increments_and_truncates(self, de_store, folder, make_data_extension, pushed_config):
        de_store.upsert(make_data_extension("de-1", "100"))
        de_store.mark_update_pending("de-1", pushed_config)

        de_store.mark_update_failed("de-1", pushed_config, "x" * 5000)
        de_store.mark_update_failed("de-1", pushed_config, "again")

        retention = de_store.get_retention("de-1")
        assert retention.last_api_update_status == RetentionUpdateStatus.FAILED.value
        assert retention.api_update_retry_count == 2
        assert retention.last_api_update_error == "again"

        de_store.mark_update_failed("de-1", pushed_config, "y" * 5000)
        assert len(de_store.get_retention("de-1").last_api_update_error) == MAX_UPDATE_ERROR_LENGTH

    def test_succeeded_resets_counter_and_overwrites_config(
        self, de_store, folder, make_data_extension, pushed_config
    ):
        de_store.upsert(
            make_data_extension(
                "de-1",
                "100",
                data_retention_properties=RetentionConfig(
                    data_retention_period_length=12,
                    data_retention_period_unit_of_measure=6,
                    is_row_based_retention=False,
                    is_delete_at_end_of_retention_period=True,
                ),
            )
        )
        de_store.mark_update_failed("de-1", pushed_config, "timeout")

        de_store.mark_update_succeeded("de-1", pushed_config)

        retention = de_store.get_retention("de-1")
        assert retention.last_api_update_status == RetentionUpdateStatus.SUCCEEDED.value
        assert retention.api_update_retry_count == 0
        assert retention.last_api_update_error is None
        assert retention.data_retention_period_length == 1
        assert retention.data_retention_period_unit_of_measure == 5
        assert retention.is_row_based_retention is True
        # Only period, unit and row-based are overwritten
        assert retention.is_delete_at_end_of_retention_period is True

    def test_pending_does_not_touch_counter(self, de_store, folder, make_data_extension, pushed_config):
        de_store.upsert(make_data_extension("de-1", "100"))
        de_store.mark_update_failed("de-1", pushed_config, "err")

        de_store.mark_update_pending("de-1", pushed_config)

        assert de_store.get_retention("de-1").api_update_retry_count == 1

    def test_list_needing_update_respects_ceiling(self, de_store, folder, make_data_extension, pushed_config):
        for de_id in ("ok", "pending", "failed", "exhausted"):
            de_store.upsert(make_data_extension(de_id, "100"))

        de_store.mark_update_succeeded("ok", pushed_config)
        de_store.mark_update_pending("pending", pushed_config)
        de_store.mark_update_failed("failed", pushed_config, "err")
        for _ in range(5):
            de_store.mark_update_failed("exhausted", pushed_config, "err")

        rows = de_store.list_needing_retention_update(limit=10, max_retries=5)

        ids = {retention.data_extension_id for retention, _ in rows}
        assert ids == {"pending", "failed"}
        assert {name for _, name in rows} == {"DE pending", "DE failed"}

    def test_reset_update_status(self, de_store, folder, make_data_extension, pushed_config):
        de_store.upsert(make_data_extension("de-1", "100"))
        for _ in range(5):
            de_store.mark_update_failed("de-1", pushed_config, "err")

        assert de_store.reset_update_status("de-1") is True

        retention = de_store.get_retention("de-1")
        assert retention.last_api_update_status == RetentionUpdateStatus.PENDING.value
        assert retention.api_update_retry_count == 0
        assert retention.last_api_update_error is None
        assert de_store.reset_update_status("missing") is False


class TestSyncJobStore:
    """Tests for SyncJobStore."""

    def test_create_job_is_running(self, job_store):
        job_id = job_store.create_job(total_items=10, metadata={"folder_id": "1"})

        job = job_store.get_job(job_id)
        assert job.status == SyncJobStatus.RUNNING.value
        assert job.total_items == 10
        assert job.job_metadata == {"folder_id": "1"}

    def test_update_progress_is_additive_with_rates(self, job_store):
        job_id = job_store.create_job(total_items=4)

        job_store.update_progress(job_id, processed=3, succeeded=2, failed=1)
        job_store.update_progress(job_id, processed=1, succeeded=1, failed=0)

        job = job_store.get_job(job_id)
        assert (job.processed_items, job.succeeded_items, job.failed_items) == (4, 3, 1)
        assert job.success_rate == pytest.approx(75.0)
        assert job.error_rate == pytest.approx(25.0)

    def test_rates_rounded_to_two_decimals(self, job_store):
        job_id = job_store.create_job(total_items=3)
        job_store.update_progress(job_id, processed=3, succeeded=1, failed=2)

        job = job_store.get_job(job_id)
        assert job.success_rate == pytest.approx(33.33)
        assert job.error_rate == pytest.approx(66.67)

    def test_complete_fail_cancel(self, job_store):
        completed = job_store.create_job()
        failed = job_store.create_job()
        cancelled = job_store.create_job()

        job_store.complete_job(completed, duration_ms=1500, avg_processing_time_ms=150)
        job_store.fail_job(failed, "remote down")
        job_store.cancel_job(cancelled)

        assert job_store.get_job(completed).status == SyncJobStatus.COMPLETED.value
        assert job_store.get_job(completed).duration_ms == 1500
        assert job_store.get_job(completed).completed_at is not None
        assert job_store.get_job(failed).error_message == "remote down"
        assert job_store.get_job(cancelled).status == SyncJobStatus.CANCELLED.value

    def test_update_unknown_job_raises(self, job_store):
        import uuid

        with pytest.raises(LookupError):
            job_store.update_progress(uuid.uuid4(), 1, 1, 0)

    def test_get_job_with_bad_id(self, job_store):
        assert job_store.get_job("not-a-uuid") is None

    def test_list_recent_jobs_filters_by_status(self, job_store):
        done = job_store.create_job()
        job_store.create_job()
        job_store.complete_job(done, 10, 1)

        completed = job_store.list_recent_jobs(status=SyncJobStatus.COMPLETED.value)
        assert [job.id for job in completed] == [done]
        assert len(job_store.list_recent_jobs()) == 2

    def test_summarize_jobs(self, job_store):
        first = job_store.create_job(total_items=2)
        job_store.update_progress(first, 2, 2, 0)
        job_store.complete_job(first, 100, 50)
        second = job_store.create_job(total_items=2)
        job_store.update_progress(second, 2, 1, 1)
        job_store.fail_job(second, "boom")

        summary = job_store.summarize_jobs(since=datetime.now(UTC) - timedelta(hours=1))

        assert summary["total_jobs"] == 2
        assert summary["completed_jobs"] == 1
        assert summary["failed_jobs"] == 1
        assert summary["total_items_processed"] == 4
        assert summary["total_succeeded"] == 3
        assert summary["total_failed"] == 1
        assert summary["avg_success_rate"] == pytest.approx(75.0)

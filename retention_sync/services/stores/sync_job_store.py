"""
Sync job persistence.

Lifecycle: create (running) -> update_progress (additive counters, rates
recomputed) -> complete / fail / cancel. Rates are percentages of processed
items rounded to two decimals.
"""

import logging
import uuid
from datetime import UTC, datetime

from sqlalchemy import func

from retention_sync.models import SyncJob, SyncJobStatus, SyncJobType
from retention_sync.services.stores.base import BaseStore

logger = logging.getLogger(__name__)


def percentage(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 2)


def _as_uuid(job_id) -> uuid.UUID:
    return job_id if isinstance(job_id, uuid.UUID) else uuid.UUID(str(job_id))


class SyncJobStore(BaseStore):
    """CRUD and aggregate queries for sync_jobs."""

    def create_job(
        self,
        job_type: str = SyncJobType.DATA_RETENTION_UPDATE.value,
        total_items: int = 0,
        metadata: dict | None = None,
        status: str = SyncJobStatus.RUNNING.value,
    ) -> uuid.UUID:
        """Create a job row and return its id."""

        def apply(db):
            job = SyncJob(
                id=uuid.uuid4(),
                job_type=job_type,
                status=status,
                total_items=total_items,
                job_metadata=metadata or {},
                started_at=datetime.now(UTC),
            )
            db.add(job)
            return job.id

        job_id = self.write(apply)
        logger.info(
            f"Created sync job {job_id}",
            extra={"event": "job_created", "job_id": str(job_id), "items_total": total_items},
        )
        return job_id

    def update_progress(self, job_id, processed: int, succeeded: int, failed: int) -> None:
        """Add to the job counters and recompute success/error rates."""

        def apply(db):
            job = self._require(db, job_id)
            job.processed_items = (job.processed_items or 0) + processed
            job.succeeded_items = (job.succeeded_items or 0) + succeeded
            job.failed_items = (job.failed_items or 0) + failed
            job.success_rate = percentage(job.succeeded_items, job.processed_items)
            job.error_rate = percentage(job.failed_items, job.processed_items)

        self.write(apply, entity_id=str(job_id))

    def complete_job(self, job_id, duration_ms: int, avg_processing_time_ms: int) -> None:
        def apply(db):
            job = self._require(db, job_id)
            job.status = SyncJobStatus.COMPLETED.value
            job.completed_at = datetime.now(UTC)
            job.duration_ms = duration_ms
            job.avg_processing_time_ms = avg_processing_time_ms

        self.write(apply, entity_id=str(job_id))
        logger.info(
            f"Sync job {job_id} completed",
            extra={"event": "job_completed", "job_id": str(job_id), "duration_ms": duration_ms},
        )

    def fail_job(self, job_id, error_message: str) -> None:
        def apply(db):
            job = self._require(db, job_id)
            job.status = SyncJobStatus.FAILED.value
            job.completed_at = datetime.now(UTC)
            job.error_message = error_message

        self.write(apply, entity_id=str(job_id))
        logger.warning(f"Sync job {job_id} failed: {error_message}", extra={"event": "job_failed", "job_id": str(job_id)})

    def cancel_job(self, job_id) -> None:
        def apply(db):
            job = self._require(db, job_id)
            job.status = SyncJobStatus.CANCELLED.value
            job.completed_at = datetime.now(UTC)

        self.write(apply, entity_id=str(job_id))
        logger.info(f"Sync job {job_id} cancelled", extra={"event": "job_cancelled", "job_id": str(job_id)})

    def get_job(self, job_id) -> SyncJob | None:
        try:
            job_uuid = _as_uuid(job_id)
        except ValueError:
            return None
        with self.session() as db:
            return db.get(SyncJob, job_uuid)

    def list_recent_jobs(
        self,
        limit: int = 20,
        status: str | None = None,
        job_type: str | None = None,
    ) -> list[SyncJob]:
        with self.session() as db:
            query = db.query(SyncJob)
            if status:
                query = query.filter(SyncJob.status == status)
            if job_type:
                query = query.filter(SyncJob.job_type == job_type)
            return query.order_by(SyncJob.created_at.desc()).limit(limit).all()

    def summarize_jobs(self, since: datetime) -> dict:
        """Aggregate job counts and averages for jobs created since `since`."""
        with self.session() as db:
            row = (
                db.query(
                    func.count(SyncJob.id),
                    func.coalesce(func.sum(SyncJob.total_items), 0),
                    func.coalesce(func.sum(SyncJob.succeeded_items), 0),
                    func.coalesce(func.sum(SyncJob.failed_items), 0),
                    func.avg(SyncJob.success_rate),
                    func.avg(SyncJob.error_rate),
                    func.avg(SyncJob.duration_ms),
                )
                .filter(SyncJob.created_at >= since)
                .one()
            )
            status_counts = dict(
                db.query(SyncJob.status, func.count(SyncJob.id))
                .filter(SyncJob.created_at >= since)
                .group_by(SyncJob.status)
                .all()
            )

        total_jobs, total_items, succeeded, failed, avg_success, avg_error, avg_duration = row
        return {
            "total_jobs": total_jobs,
            "completed_jobs": status_counts.get(SyncJobStatus.COMPLETED.value, 0),
            "failed_jobs": status_counts.get(SyncJobStatus.FAILED.value, 0),
            "running_jobs": status_counts.get(SyncJobStatus.RUNNING.value, 0),
            "total_items_processed": int(total_items),
            "total_succeeded": int(succeeded),
            "total_failed": int(failed),
            "avg_success_rate": round(float(avg_success), 2) if avg_success is not None else None,
            "avg_error_rate": round(float(avg_error), 2) if avg_error is not None else None,
            "avg_duration_ms": int(avg_duration) if avg_duration is not None else None,
        }

    @staticmethod
    def _require(db, job_id) -> SyncJob:
        job = db.get(SyncJob, _as_uuid(job_id))
        if job is None:
            raise LookupError(f"sync job {job_id} not found")
        return job

"""
Durable per-batch job records.

One SyncJob per folder's data extension batch: created as running before the
batch, updated once with the outcome counts, then completed with timing.
Tracking is best effort; every failure here is logged and swallowed so it can
never fail the batch it describes.
"""

import logging
import time
import uuid

from retention_sync.models import SyncJobType
from retention_sync.services.marketing_cloud.types import Folder
from retention_sync.services.stores.sync_job_store import SyncJobStore

logger = logging.getLogger(__name__)


class ProgressTracker:
    """Wraps SyncJobStore with the start/finish protocol used by the engine."""

    def __init__(self, job_store: SyncJobStore, clock=time.monotonic):
        self.job_store = job_store
        self._clock = clock

    def start_batch(self, folder: Folder, total: int) -> uuid.UUID | None:
        """Create a running job for a batch. Returns None for empty batches or on failure."""
        if total <= 0:
            return None

        metadata = {
            "folder_id": folder.id,
            "folder_name": folder.name,
            "total_data_extensions": total,
        }
        try:
            return self.job_store.create_job(
                job_type=SyncJobType.DATA_RETENTION_UPDATE.value,
                total_items=total,
                metadata=metadata,
            )
        except Exception as e:
            logger.warning(
                f"Failed to create sync job for folder {folder.id}: {e}",
                extra={"event": "job_create_failed", "folder_id": folder.id},
            )
            return None

    def finish_batch(
        self,
        job_id: uuid.UUID | None,
        processed: int,
        succeeded: int,
        failed: int,
        started_at: float,
    ) -> None:
        """
        Record outcome counts and complete the job.

        Args:
            job_id: Id from start_batch (no-op when None)
            processed: Items in the batch
            succeeded: Items whose persistence and push both succeeded
            failed: Everything else
            started_at: Clock reading taken when the batch started
        """
        if job_id is None:
            return

        duration_ms = int((self._clock() - started_at) * 1000)
        avg_ms = duration_ms // processed if processed > 0 else 0

        try:
            self.job_store.update_progress(job_id, processed, succeeded, failed)
        except Exception as e:
            logger.warning(
                f"Failed to update progress for sync job {job_id}: {e}",
                extra={"event": "job_progress_failed", "job_id": str(job_id)},
            )

        try:
            self.job_store.complete_job(job_id, duration_ms, avg_ms)
        except Exception as e:
            logger.warning(
                f"Failed to complete sync job {job_id}: {e}",
                extra={"event": "job_complete_failed", "job_id": str(job_id)},
            )
            return

        logger.info(
            f"Batch finished: {succeeded}/{processed} succeeded, {failed} failed ({duration_ms}ms)",
            extra={
                "event": "batch_finished",
                "job_id": str(job_id),
                "items_processed": processed,
                "items_succeeded": succeeded,
                "items_failed": failed,
                "duration_ms": duration_ms,
            },
        )

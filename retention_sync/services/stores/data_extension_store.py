"""
Data extension persistence and retention push tracking.

A data extension and its embedded retention block are written in the same
transaction. The tracking columns on data_retention_properties record the
state of the last push to the remote API:

- pending: push requested; retry counter unchanged
- succeeded: retry counter reset to 0, stored period/unit/row-based
  overwritten with the pushed configuration
- failed: retry counter +1, error text truncated to 1000 characters
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import or_

from retention_sync.models import (
    MAX_UPDATE_ERROR_LENGTH,
    DataExtension as DataExtensionRow,
    DataRetentionProperties,
    RetentionUpdateStatus,
)
from retention_sync.services.marketing_cloud.types import DataExtension, RetentionConfig
from retention_sync.services.stores.base import BaseStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5


def data_extension_row_values(de: DataExtension) -> dict:
    return {
        "name": de.name,
        "key": de.key,
        "description": de.description or None,
        "is_active": de.is_active,
        "is_sendable": de.is_sendable,
        "sendable_custom_object_field": de.sendable_custom_object_field or None,
        "sendable_subscriber_field": de.sendable_subscriber_field or None,
        "is_testable": de.is_testable,
        "category_id": de.category_id,
        "owner_id": de.owner_id,
        "is_object_deletable": de.is_object_deletable,
        "is_field_addition_allowed": de.is_field_addition_allowed,
        "is_field_modification_allowed": de.is_field_modification_allowed,
        "created_date": de.created_date,
        "created_by_id": de.created_by_id,
        "created_by_name": de.created_by_name or None,
        "modified_date": de.modified_date,
        "modified_by_id": de.modified_by_id or None,
        "modified_by_name": de.modified_by_name or None,
        "owner_name": de.owner_name or None,
        "partner_api_object_type_id": de.partner_api_object_type_id or None,
        "partner_api_object_type_name": de.partner_api_object_type_name or None,
        "row_count": de.row_count,
        "field_count": de.field_count,
    }


def retention_values(config: RetentionConfig) -> dict:
    return {
        "data_retention_period_length": config.data_retention_period_length,
        "data_retention_period_unit_of_measure": config.data_retention_period_unit_of_measure,
        "is_delete_at_end_of_retention_period": config.is_delete_at_end_of_retention_period,
        "is_row_based_retention": config.is_row_based_retention,
        "is_reset_retention_period_on_import": config.is_reset_retention_period_on_import,
    }


def truncate_error(error: str | None) -> str | None:
    if error is None:
        return None
    return error[:MAX_UPDATE_ERROR_LENGTH]


class DataExtensionStore(BaseStore):
    """Stores DataExtension rows and their retention tracking."""

    def upsert(self, de: DataExtension) -> None:
        """
        Insert or update a data extension and its retention block.

        Raises:
            ParentMissingError: owning folder does not exist
            PersistenceError: any other database failure
        """
        self.write(lambda db: self._apply(db, de), entity_id=de.id)

    def upsert_batch(self, data_extensions: list[DataExtension]) -> None:
        if not data_extensions:
            return

        def apply_all(db):
            for de in data_extensions:
                self._apply(db, de)

        self.write(apply_all)

    def get(self, data_extension_id: str) -> DataExtensionRow | None:
        with self.session() as db:
            return db.query(DataExtensionRow).filter(DataExtensionRow.id == data_extension_id).first()

    def get_retention(self, data_extension_id: str) -> DataRetentionProperties | None:
        with self.session() as db:
            return db.get(DataRetentionProperties, data_extension_id)

    def list_by_folder(self, folder_id: str) -> list[DataExtensionRow]:
        with self.session() as db:
            return (
                db.query(DataExtensionRow)
                .filter(DataExtensionRow.category_id == folder_id)
                .order_by(DataExtensionRow.modified_date.desc())
                .all()
            )

    def _apply(self, db, de: DataExtension) -> None:
        values = data_extension_row_values(de)
        existing = db.get(DataExtensionRow, de.id)
        if existing is None:
            db.add(DataExtensionRow(id=de.id, **values))
            logger.debug(f"Creating data extension {de.id}", extra={"data_extension_id": de.id})
        else:
            for column, value in values.items():
                setattr(existing, column, value)
            logger.debug(f"Updating existing data extension {de.id}", extra={"data_extension_id": de.id})

        if de.data_retention_properties is not None:
            # Parent row must be flushed before the retention row references it
            db.flush()
            retention = db.get(DataRetentionProperties, de.id)
            config_values = retention_values(de.data_retention_properties)
            if retention is None:
                db.add(DataRetentionProperties(data_extension_id=de.id, **config_values))
            else:
                for column, value in config_values.items():
                    setattr(retention, column, value)

    # -------------------------------------------------------------------------
    # Retention push tracking
    # -------------------------------------------------------------------------

    def mark_update_pending(self, data_extension_id: str, config: RetentionConfig) -> None:
        """Record that a push is about to happen. Creates the tracking row if missing."""
        self._record_update(data_extension_id, RetentionUpdateStatus.PENDING, config, None)

    def mark_update_succeeded(self, data_extension_id: str, config: RetentionConfig) -> None:
        self._record_update(data_extension_id, RetentionUpdateStatus.SUCCEEDED, config, None)

    def mark_update_failed(self, data_extension_id: str, config: RetentionConfig, error: str) -> None:
        self._record_update(data_extension_id, RetentionUpdateStatus.FAILED, config, error)

    def _record_update(
        self,
        data_extension_id: str,
        status: RetentionUpdateStatus,
        config: RetentionConfig,
        error: str | None,
    ) -> None:
        def apply(db):
            retention = db.get(DataRetentionProperties, data_extension_id)
            if retention is None:
                retention = DataRetentionProperties(
                    data_extension_id=data_extension_id,
                    api_update_retry_count=0,
                )
                db.add(retention)

            retention.last_api_update_at = datetime.now(UTC)
            retention.last_api_update_status = status.value
            retention.last_api_update_error = truncate_error(error)

            if status == RetentionUpdateStatus.SUCCEEDED:
                retention.api_update_retry_count = 0
                retention.data_retention_period_length = config.data_retention_period_length
                retention.data_retention_period_unit_of_measure = config.data_retention_period_unit_of_measure
                retention.is_row_based_retention = config.is_row_based_retention
            elif status == RetentionUpdateStatus.FAILED:
                retention.api_update_retry_count = (retention.api_update_retry_count or 0) + 1

        self.write(apply, entity_id=data_extension_id)

    def list_needing_retention_update(
        self,
        limit: int = 100,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> list[tuple[DataRetentionProperties, str]]:
        """
        Tracking rows in pending/failed below the retry ceiling, oldest attempt first.

        Returns:
            List of (retention row, data extension name)
        """
        with self.session() as db:
            rows = (
                db.query(DataRetentionProperties, DataExtensionRow.name)
                .join(DataExtensionRow, DataRetentionProperties.data_extension_id == DataExtensionRow.id)
                .filter(
                    DataRetentionProperties.last_api_update_status.in_(
                        [RetentionUpdateStatus.PENDING.value, RetentionUpdateStatus.FAILED.value]
                    )
                )
                .filter(
                    or_(
                        DataRetentionProperties.api_update_retry_count < max_retries,
                        DataRetentionProperties.api_update_retry_count.is_(None),
                    )
                )
                .order_by(
                    DataRetentionProperties.last_api_update_at.asc().nulls_first(),
                    DataRetentionProperties.api_update_retry_count.asc(),
                )
                .limit(limit)
                .all()
            )
            return [(retention, name) for retention, name in rows]

    def reset_update_status(self, data_extension_id: str) -> bool:
        """Put a row back into pending with a clean retry counter. Returns False if absent."""

        def apply(db):
            retention = db.get(DataRetentionProperties, data_extension_id)
            if retention is None:
                return False
            retention.last_api_update_status = RetentionUpdateStatus.PENDING.value
            retention.last_api_update_error = None
            retention.api_update_retry_count = 0
            return True

        return self.write(apply, entity_id=data_extension_id)

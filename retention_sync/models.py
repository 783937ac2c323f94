# retention_sync/models.py
"""
Retention sync database models

Tables:
- Folder: Marketing Cloud folder hierarchy (self-referencing through parent_id)
- DataExtension: Data extensions, each owned by exactly one folder
- DataRetentionProperties: 1:1 retention block per data extension plus the
  state of the last push to the remote API
- SyncJob: One row per data extension batch processed by the sync engine
"""

from datetime import UTC, datetime
from enum import Enum, IntEnum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from retention_sync.database import Base


def _utcnow() -> datetime:
    return datetime.now(UTC)


# -----------------------------------------------------------------------------
# Enums
# -----------------------------------------------------------------------------

# Remote value meaning "this folder has no parent"
ROOT_PARENT_SENTINEL = "0"


class RetentionUnit(IntEnum):
    """Unit-of-measure codes used by the remote retention API."""
    DAYS = 3
    WEEKS = 4
    MONTHS = 5
    YEARS = 6

    @classmethod
    def from_name(cls, name: str) -> "RetentionUnit":
        return cls[name.strip().upper()]


class RetentionUpdateStatus(str, Enum):
    """State of the last retention push for a data extension."""
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SyncJobStatus(str, Enum):
    """Lifecycle of a sync job row."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SyncJobType(str, Enum):
    DATA_RETENTION_UPDATE = "data_retention_update"


# Bounded length for last_api_update_error
MAX_UPDATE_ERROR_LENGTH = 1000


# -----------------------------------------------------------------------------
# Folder
# -----------------------------------------------------------------------------

class Folder(Base):
    """Folder (category) in the remote hierarchy."""
    __tablename__ = "folders"

    id = Column(String(255), primary_key=True)
    type = Column(String(100), nullable=False)
    last_updated = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Integer, default=0, nullable=False)
    # NULL for root folders; the remote "0" sentinel is never stored
    parent_id = Column(String(255), ForeignKey("folders.id", ondelete="CASCADE"), nullable=True)
    name = Column(String(500), nullable=False)
    description = Column(Text, nullable=True)
    icon_type = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    parent = relationship("Folder", remote_side=[id], back_populates="children")
    children = relationship("Folder", back_populates="parent", passive_deletes=True)
    data_extensions = relationship("DataExtension", back_populates="folder", passive_deletes=True)

    __table_args__ = (
        Index("ix_folders_parent_id", "parent_id"),
        Index("ix_folders_type", "type"),
        Index("ix_folders_name", "name"),
    )


# -----------------------------------------------------------------------------
# DataExtension
# -----------------------------------------------------------------------------

class DataExtension(Base):
    """Data extension (leaf record) owned by a folder."""
    __tablename__ = "data_extensions"

    id = Column(String(255), primary_key=True)
    name = Column(String(500), nullable=False)
    key = Column(String(500), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    is_sendable = Column(Boolean, default=False, nullable=False)
    sendable_custom_object_field = Column(String(500), nullable=True)
    sendable_subscriber_field = Column(String(500), nullable=True)
    is_testable = Column(Boolean, default=False, nullable=False)
    category_id = Column(String(255), ForeignKey("folders.id", ondelete="CASCADE"), nullable=False)
    owner_id = Column(Integer, default=0, nullable=False)
    is_object_deletable = Column(Boolean, default=True, nullable=False)
    is_field_addition_allowed = Column(Boolean, default=True, nullable=False)
    is_field_modification_allowed = Column(Boolean, default=True, nullable=False)
    created_date = Column(DateTime(timezone=True), nullable=True)
    created_by_id = Column(Integer, default=0, nullable=False)
    created_by_name = Column(String(500), nullable=True)
    modified_date = Column(DateTime(timezone=True), nullable=True)
    modified_by_id = Column(Integer, nullable=True)
    modified_by_name = Column(String(500), nullable=True)
    owner_name = Column(String(500), nullable=True)
    partner_api_object_type_id = Column(Integer, nullable=True)
    partner_api_object_type_name = Column(String(500), nullable=True)
    row_count = Column(Integer, default=0, nullable=False)
    field_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    folder = relationship("Folder", back_populates="data_extensions")
    retention = relationship(
        "DataRetentionProperties",
        back_populates="data_extension",
        uselist=False,
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_data_extensions_category_id", "category_id"),
        Index("ix_data_extensions_modified_date", "modified_date"),
        Index("ix_data_extensions_name", "name"),
    )


# -----------------------------------------------------------------------------
# DataRetentionProperties
# -----------------------------------------------------------------------------

class DataRetentionProperties(Base):
    """
    Retention block for a data extension, plus push tracking.

    Tracking rules:
    - api_update_retry_count resets to 0 on success and increments on failure
    - Only a succeeded push overwrites period/unit/row-based with the pushed values
    - Rows in pending/failed below the retry ceiling are picked up by reconciliation
    """
    __tablename__ = "data_retention_properties"

    data_extension_id = Column(
        String(255),
        ForeignKey("data_extensions.id", ondelete="CASCADE"),
        primary_key=True,
    )
    data_retention_period_length = Column(Integer, default=0, nullable=False)
    data_retention_period_unit_of_measure = Column(Integer, default=0, nullable=False)  # RetentionUnit
    is_delete_at_end_of_retention_period = Column(Boolean, default=False, nullable=False)
    is_row_based_retention = Column(Boolean, default=False, nullable=False)
    is_reset_retention_period_on_import = Column(Boolean, default=False, nullable=False)

    # Push tracking
    last_api_update_at = Column(DateTime(timezone=True), nullable=True)
    last_api_update_status = Column(String(50), default=RetentionUpdateStatus.PENDING.value, nullable=True)
    last_api_update_error = Column(Text, nullable=True)
    api_update_retry_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    data_extension = relationship("DataExtension", back_populates="retention")

    __table_args__ = (
        Index("ix_data_retention_properties_api_update_status", "last_api_update_status"),
        Index("ix_data_retention_properties_last_api_update_at", "last_api_update_at"),
        CheckConstraint(
            "last_api_update_status IN ('pending', 'succeeded', 'failed')",
            name="chk_api_update_status",
        ),
    )


# -----------------------------------------------------------------------------
# SyncJob
# -----------------------------------------------------------------------------

class SyncJob(Base):
    """
    Durable record of one data extension batch.

    Created as running before the batch, updated once with counts, then
    completed with timing. Rates are percentages of processed items.
    """
    __tablename__ = "sync_jobs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    job_type = Column(String(100), nullable=False)
    status = Column(String(50), default=SyncJobStatus.PENDING.value, nullable=False)
    started_at = Column(DateTime(timezone=True), default=_utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    total_items = Column(Integer, default=0, nullable=False)
    processed_items = Column(Integer, default=0, nullable=False)
    succeeded_items = Column(Integer, default=0, nullable=False)
    failed_items = Column(Integer, default=0, nullable=False)
    error_rate = Column(Numeric(5, 2, asdecimal=False), default=0.0, nullable=False)
    success_rate = Column(Numeric(5, 2, asdecimal=False), default=0.0, nullable=False)

    duration_ms = Column(Integer, nullable=True)
    avg_processing_time_ms = Column(Integer, nullable=True)
    job_metadata = Column("metadata", JSON().with_variant(JSONB(), "postgresql"), nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        Index("ix_sync_jobs_status", "status"),
        Index("ix_sync_jobs_created_at", "created_at"),
        Index("ix_sync_jobs_job_type", "job_type"),
        Index("ix_sync_jobs_status_created_at", "status", "created_at"),
        CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name="chk_sync_job_status",
        ),
    )

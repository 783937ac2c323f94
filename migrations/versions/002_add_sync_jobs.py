"""Add sync_jobs table for per-batch progress records.

One row per data extension batch. The engine creates it as running, adds the
outcome counts once, then completes it with duration and average per-item
time. Rates are percentages of processed items.

Revision ID: 002_add_sync_jobs
Revises: 001_initial_schema
Create Date: 2025-06-09
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '002_add_sync_jobs'
down_revision: Union[str, Sequence[str], None] = '001_initial_schema'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create sync_jobs table."""
    op.create_table(
        'sync_jobs',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('job_type', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='pending'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('processed_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('succeeded_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('failed_items', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_rate', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0.00'),
        sa.Column('success_rate', sa.Numeric(precision=5, scale=2), nullable=False, server_default='0.00'),
        sa.Column('duration_ms', sa.Integer(), nullable=True),
        sa.Column('avg_processing_time_ms', sa.Integer(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'cancelled')",
            name='chk_sync_job_status',
        ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_jobs_status', 'sync_jobs', ['status'], unique=False)
    op.create_index('ix_sync_jobs_created_at', 'sync_jobs', ['created_at'], unique=False)
    op.create_index('ix_sync_jobs_job_type', 'sync_jobs', ['job_type'], unique=False)
    op.create_index('ix_sync_jobs_status_created_at', 'sync_jobs', ['status', 'created_at'], unique=False)
    op.create_index('ix_sync_jobs_metadata', 'sync_jobs', ['metadata'], unique=False, postgresql_using='gin')

    print("  Created sync_jobs table with indexes")


def downgrade() -> None:
    """Drop sync_jobs table."""
    op.drop_index('ix_sync_jobs_metadata', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_status_created_at', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_job_type', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_created_at', table_name='sync_jobs')
    op.drop_index('ix_sync_jobs_status', table_name='sync_jobs')
    op.drop_table('sync_jobs')

    print("  Dropped sync_jobs table")

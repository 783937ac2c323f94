"""Track retention pushes on data_retention_properties.

Adds the state of the last push to the remote API: when it happened, its
status (pending/succeeded/failed), the error text and a retry counter used by
the reconciliation query.

Revision ID: 003_add_retention_update_tracking
Revises: 002_add_sync_jobs
Create Date: 2025-06-16
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '003_add_retention_update_tracking'
down_revision: Union[str, Sequence[str], None] = '002_add_sync_jobs'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add push tracking columns, status constraint and indexes."""
    print("  Adding retention update tracking columns...")

    op.add_column('data_retention_properties', sa.Column('last_api_update_at', sa.DateTime(timezone=True), nullable=True))
    op.add_column(
        'data_retention_properties',
        sa.Column('last_api_update_status', sa.String(length=50), nullable=True, server_default='pending'),
    )
    op.add_column('data_retention_properties', sa.Column('last_api_update_error', sa.Text(), nullable=True))
    op.add_column(
        'data_retention_properties',
        sa.Column('api_update_retry_count', sa.Integer(), nullable=False, server_default='0'),
    )

    op.create_check_constraint(
        'chk_api_update_status',
        'data_retention_properties',
        "last_api_update_status IN ('pending', 'succeeded', 'failed')",
    )

    # Reconciliation reads pending/failed rows only
    op.create_index(
        'ix_data_retention_properties_api_update_status',
        'data_retention_properties',
        ['last_api_update_status'],
        unique=False,
        postgresql_where=sa.text("last_api_update_status IN ('pending', 'failed')"),
    )
    op.create_index(
        'ix_data_retention_properties_last_api_update_at',
        'data_retention_properties',
        ['last_api_update_at'],
        unique=False,
    )

    print("  Added retention update tracking")


def downgrade() -> None:
    """Remove push tracking."""
    op.drop_index('ix_data_retention_properties_last_api_update_at', table_name='data_retention_properties')
    op.drop_index('ix_data_retention_properties_api_update_status', table_name='data_retention_properties')
    op.drop_constraint('chk_api_update_status', 'data_retention_properties', type_='check')
    op.drop_column('data_retention_properties', 'api_update_retry_count')
    op.drop_column('data_retention_properties', 'last_api_update_error')
    op.drop_column('data_retention_properties', 'last_api_update_status')
    op.drop_column('data_retention_properties', 'last_api_update_at')

    print("  Removed retention update tracking")

"""Initial schema: folders, data_extensions, data_retention_properties.

Folders are self-referencing through parent_id (NULL for top-level folders).
Deleting a folder cascades to its subfolders, their data extensions and the
retention rows that hang off them.

Revision ID: 001_initial_schema
Revises:
Create Date: 2025-06-02
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create folders, data_extensions and data_retention_properties."""
    op.create_table(
        'folders',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=100), nullable=False),
        sa.Column('last_updated', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('parent_id', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('icon_type', sa.String(length=100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['parent_id'], ['folders.id'], name='fk_parent_folder', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_folders_parent_id', 'folders', ['parent_id'], unique=False)
    op.create_index('ix_folders_type', 'folders', ['type'], unique=False)
    op.create_index('ix_folders_name', 'folders', ['name'], unique=False)

    op.create_table(
        'data_extensions',
        sa.Column('id', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('key', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_sendable', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sendable_custom_object_field', sa.String(length=500), nullable=True),
        sa.Column('sendable_subscriber_field', sa.String(length=500), nullable=True),
        sa.Column('is_testable', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('category_id', sa.String(length=255), nullable=False),
        sa.Column('owner_id', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_object_deletable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_field_addition_allowed', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_field_modification_allowed', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_id', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by_name', sa.String(length=500), nullable=True),
        sa.Column('modified_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('modified_by_id', sa.Integer(), nullable=True),
        sa.Column('modified_by_name', sa.String(length=500), nullable=True),
        sa.Column('owner_name', sa.String(length=500), nullable=True),
        sa.Column('partner_api_object_type_id', sa.Integer(), nullable=True),
        sa.Column('partner_api_object_type_name', sa.String(length=500), nullable=True),
        sa.Column('row_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('field_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['category_id'], ['folders.id'], name='fk_data_extension_category', ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', name='uq_data_extensions_key')
    )
    op.create_index('ix_data_extensions_category_id', 'data_extensions', ['category_id'], unique=False)
    op.create_index('ix_data_extensions_modified_date', 'data_extensions', ['modified_date'], unique=False)
    op.create_index('ix_data_extensions_name', 'data_extensions', ['name'], unique=False)

    op.create_table(
        'data_retention_properties',
        sa.Column('data_extension_id', sa.String(length=255), nullable=False),
        sa.Column('data_retention_period_length', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('data_retention_period_unit_of_measure', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_delete_at_end_of_retention_period', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_row_based_retention', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_reset_retention_period_on_import', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(
            ['data_extension_id'], ['data_extensions.id'],
            name='fk_retention_data_extension', ondelete='CASCADE',
        ),
        sa.PrimaryKeyConstraint('data_extension_id')
    )

    print("  Created folders, data_extensions and data_retention_properties tables")


def downgrade() -> None:
    """Drop all three tables."""
    op.drop_table('data_retention_properties')
    op.drop_index('ix_data_extensions_name', table_name='data_extensions')
    op.drop_index('ix_data_extensions_modified_date', table_name='data_extensions')
    op.drop_index('ix_data_extensions_category_id', table_name='data_extensions')
    op.drop_table('data_extensions')
    op.drop_index('ix_folders_name', table_name='folders')
    op.drop_index('ix_folders_type', table_name='folders')
    op.drop_index('ix_folders_parent_id', table_name='folders')
    op.drop_table('folders')

    print("  Dropped folders, data_extensions and data_retention_properties tables")

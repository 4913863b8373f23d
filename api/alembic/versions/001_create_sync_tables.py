"""create_sync_tables

Revision ID: 001
Revises:
Create Date: 2026-10-01 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not inspector.has_table('sync_queue'):
        op.create_table('sync_queue',
        sa.Column('seq', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('table_name', sa.String(length=100), nullable=False),
        sa.Column('record_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('local_data', sa.JSON(), nullable=False),
        sa.Column('remote_data', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('retryable', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('seq')
        )
        op.create_index(op.f('ix_sync_queue_id'), 'sync_queue', ['id'], unique=True)
        op.create_index(op.f('ix_sync_queue_table_name'), 'sync_queue', ['table_name'], unique=False)
        op.create_index(op.f('ix_sync_queue_record_id'), 'sync_queue', ['record_id'], unique=False)
        op.create_index(op.f('ix_sync_queue_status'), 'sync_queue', ['status'], unique=False)

    if not inspector.has_table('sync_log'):
        op.create_table('sync_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('sync_id', sa.String(length=64), nullable=True),
        sa.Column('table_name', sa.String(length=100), nullable=False),
        sa.Column('record_id', sa.String(length=64), nullable=False),
        sa.Column('action', sa.String(length=20), nullable=False),
        sa.Column('direction', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sync_duration_ms', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_sync_log_sync_id'), 'sync_log', ['sync_id'], unique=False)
        op.create_index(op.f('ix_sync_log_record_id'), 'sync_log', ['record_id'], unique=False)
        op.create_index(op.f('ix_sync_log_created_at'), 'sync_log', ['created_at'], unique=False)

    if not inspector.has_table('sync_conflicts'):
        op.create_table('sync_conflicts',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('record_id', sa.String(length=64), nullable=False),
        sa.Column('table_name', sa.String(length=100), nullable=False),
        sa.Column('local_data', sa.JSON(), nullable=True),
        sa.Column('remote_data', sa.JSON(), nullable=True),
        sa.Column('resolution', sa.String(length=20), nullable=True),
        sa.Column('merged_data', sa.JSON(), nullable=True),
        sa.Column('resolved_by', sa.String(length=100), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
        )
        op.create_index(op.f('ix_sync_conflicts_record_id'), 'sync_conflicts', ['record_id'], unique=False)
        op.create_index(op.f('ix_sync_conflicts_resolution'), 'sync_conflicts', ['resolution'], unique=False)

    if not inspector.has_table('sync_config'):
        op.create_table('sync_config',
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('key')
        )


def downgrade() -> None:
    """Downgrade schema."""
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table in ('sync_config', 'sync_conflicts', 'sync_log', 'sync_queue'):
        if inspector.has_table(table):
            op.drop_table(table)

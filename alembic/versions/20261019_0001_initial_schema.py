"""Initial schema - processed telemetry, tenant deliveries, fetch logs

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Processed telemetry: one row per (supplier, event_id)
    op.create_table(
        'processed_telemetry',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('supplier', sa.String(50), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('type', sa.String(100), nullable=True),
        sa.Column('device_id', sa.String(100), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('forwarded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('supplier', 'event_id', name='uq_processed_telemetry_supplier_event'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'forwarded', 'failed', 'error')",
            name='ck_processed_telemetry_status',
        ),
    )
    op.create_index('idx_processed_telemetry_supplier_status', 'processed_telemetry', ['supplier', 'status'])
    op.create_index('idx_processed_telemetry_occurred_at', 'processed_telemetry', ['occurred_at'])

    # Tenant deliveries: one row per (supplier, event_id, tenant)
    op.create_table(
        'telemetry_deliveries',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('supplier', sa.String(50), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('tenant', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('attempts', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('forwarded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            'supplier', 'event_id', 'tenant',
            name='uq_telemetry_deliveries_supplier_event_tenant',
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'forwarded', 'failed', 'error')",
            name='ck_telemetry_deliveries_status',
        ),
    )
    op.create_index('idx_telemetry_deliveries_status', 'telemetry_deliveries', ['status'])

    # Fetch watermarks for api-poll suppliers
    op.create_table(
        'supplier_fetch_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('supplier', sa.String(50), nullable=False),
        sa.Column('resource', sa.String(100), nullable=False),
        sa.Column('last_fetched_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_item_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('supplier', 'resource', name='uq_supplier_fetch_logs_supplier_resource'),
    )


def downgrade() -> None:
    op.drop_table('supplier_fetch_logs')
    op.drop_index('idx_telemetry_deliveries_status', 'telemetry_deliveries')
    op.drop_table('telemetry_deliveries')
    op.drop_index('idx_processed_telemetry_occurred_at', 'processed_telemetry')
    op.drop_index('idx_processed_telemetry_supplier_status', 'processed_telemetry')
    op.drop_table('processed_telemetry')

"""create_trip_sync_tables

Revision ID: 3f2a9c1d7e40
Revises:
Create Date: 2025-02-03 09:12:41

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f2a9c1d7e40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_DETECTION_CHECK = "detection_method IN ('string_parse', 'status_bit', 'speed_inference', 'unknown')"


def _canonical_position_columns():
    return [
        sa.Column('gps_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('speed', sa.Float(), nullable=True),
        sa.Column('heading', sa.Float(), nullable=True),
        sa.Column('altitude', sa.Float(), nullable=True),
        sa.Column('ignition_on', sa.Boolean(), nullable=True),
        sa.Column('ignition_confidence', sa.Float(), nullable=True),
        sa.Column('detection_method', sa.String(length=20), nullable=False),
        sa.Column('status_text', sa.String(length=500), nullable=True),
        sa.Column('total_mileage_m', sa.Float(), nullable=True),
        sa.Column('speed_sensor_error', sa.Boolean(), nullable=False),
    ]


def upgrade() -> None:
    """
    Create the trip sync schema:
    - devices: vehicle registry with vendor binding
    - position_history: immutable positions, unique per (device_id, gps_time)
    - position_cache: latest position per device
    - trips: segmented trips, unique per (device_id, start_time, end_time)
    - trip_sync_status: per-device sync state machine and cursor
    """
    op.create_table(
        'devices',
        sa.Column('device_id', sa.String(length=64), nullable=False),
        sa.Column('vendor_id', sa.String(length=64), nullable=False),
        sa.Column('vendor', sa.String(length=32), server_default='gps51', nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('device_id'),
    )
    op.create_index(op.f('ix_devices_vendor_id'), 'devices', ['vendor_id'], unique=False)

    op.create_table(
        'position_history',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('device_id', sa.String(length=64), nullable=False),
        *_canonical_position_columns(),
        sa.Column('recorded_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['device_id'], ['devices.device_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('device_id', 'gps_time', name='uq_position_device_time'),
        sa.CheckConstraint(_DETECTION_CHECK, name='check_position_detection_method'),
        sa.CheckConstraint(
            'ignition_confidence IS NULL OR (ignition_confidence >= 0 AND ignition_confidence <= 1)',
            name='check_position_confidence_range'
        ),
    )
    op.create_index(op.f('ix_position_history_device_id'), 'position_history', ['device_id'], unique=False)
    op.create_index('idx_position_device_time', 'position_history', ['device_id', 'gps_time'], unique=False)

    op.create_table(
        'position_cache',
        sa.Column('device_id', sa.String(length=64), nullable=False),
        *_canonical_position_columns(),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['device_id'], ['devices.device_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('device_id'),
        sa.CheckConstraint(_DETECTION_CHECK, name='check_cache_detection_method'),
    )

    op.create_table(
        'trips',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('device_id', sa.String(length=64), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('start_latitude', sa.Float(), nullable=True),
        sa.Column('start_longitude', sa.Float(), nullable=True),
        sa.Column('end_latitude', sa.Float(), nullable=True),
        sa.Column('end_longitude', sa.Float(), nullable=True),
        sa.Column('distance_km', sa.Float(), server_default='0', nullable=False),
        sa.Column('distance_source', sa.String(length=16), nullable=False),
        sa.Column('duration_seconds', sa.Integer(), nullable=True),
        sa.Column('avg_speed', sa.Float(), nullable=True),
        sa.Column('max_speed', sa.Float(), nullable=True),
        sa.Column('detection_mode', sa.String(length=16), nullable=False),
        sa.Column('continuity_flag', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['device_id'], ['devices.device_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('device_id', 'start_time', 'end_time', name='uq_trip_device_bounds'),
        sa.CheckConstraint('end_time IS NULL OR end_time > start_time', name='check_trip_time_order'),
        sa.CheckConstraint('distance_km >= 0', name='check_trip_distance_non_negative'),
        sa.CheckConstraint("detection_mode IN ('ignition', 'speed')", name='check_trip_detection_mode'),
        sa.CheckConstraint(
            "distance_source IN ('odometer', 'haversine', 'placeholder')",
            name='check_trip_distance_source'
        ),
    )
    op.create_index(op.f('ix_trips_device_id'), 'trips', ['device_id'], unique=False)
    op.create_index('idx_trips_device_start_time', 'trips', ['device_id', 'start_time'], unique=False)

    op.create_table(
        'trip_sync_status',
        sa.Column('device_id', sa.String(length=64), nullable=False),
        sa.Column('sync_status', sa.String(length=16), server_default='idle', nullable=False),
        sa.Column('cursor', sa.DateTime(timezone=True), nullable=True),
        sa.Column('backoff_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trips_total', sa.Integer(), nullable=False),
        sa.Column('trips_processed', sa.Integer(), nullable=False),
        sa.Column('progress_percent', sa.Float(), nullable=False),
        sa.Column('current_operation', sa.String(length=200), nullable=True),
        sa.Column('last_error', sa.String(length=1000), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sync_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['device_id'], ['devices.device_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('device_id'),
        sa.CheckConstraint(
            "sync_status IN ('idle', 'running', 'error', 'backoff')",
            name='check_sync_status_state'
        ),
    )


def downgrade() -> None:
    op.drop_table('trip_sync_status')
    op.drop_index('idx_trips_device_start_time', table_name='trips')
    op.drop_index(op.f('ix_trips_device_id'), table_name='trips')
    op.drop_table('trips')
    op.drop_table('position_cache')
    op.drop_index('idx_position_device_time', table_name='position_history')
    op.drop_index(op.f('ix_position_history_device_id'), table_name='position_history')
    op.drop_table('position_history')
    op.drop_index(op.f('ix_devices_vendor_id'), table_name='devices')
    op.drop_table('devices')

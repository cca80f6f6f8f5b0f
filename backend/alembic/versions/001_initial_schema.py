"""Initial Fix It schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

Users, properties and roster, vendors, requests, scheduled maintenance,
activity feeds, media, notifications, audit log and the jobs outbox.
Enum columns store member names.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from fixit.models.enums import (
    AssigneeKind,
    AuditAction,
    AuditStatus,
    Category,
    EntityKind,
    GlobalRole,
    JobStatus,
    NotificationKind,
    Priority,
    PropertyType,
    RegistrationStatus,
    RequestStatus,
    ScheduleStatus,
    UnitStatus,
    VendorStatus,
)

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = [
    GlobalRole, RegistrationStatus, PropertyType, UnitStatus, VendorStatus, Category,
    Priority, RequestStatus, ScheduleStatus, AssigneeKind, EntityKind, NotificationKind,
    AuditAction, AuditStatus, JobStatus,
]


def pg_enum(enum_cls) -> postgresql.ENUM:
    """Named type shared across tables; created once in upgrade()."""
    return postgresql.ENUM(*enum_cls.__members__, name=enum_cls.__name__.lower(), create_type=False)


def uuid_col(name: str, *args, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, **kwargs)


def timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def item_columns(table: str) -> list:
    """Header, assignment and public-link columns shared by requests and schedules."""
    return [
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', pg_enum(Category), nullable=False),
        uuid_col('property_id', sa.ForeignKey('properties.id', ondelete='CASCADE'), nullable=False),
        uuid_col('unit_id', sa.ForeignKey('units.id', ondelete='SET NULL'), nullable=True),
        uuid_col('created_by_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_to_kind', pg_enum(AssigneeKind), nullable=True),
        uuid_col('assigned_to_id', nullable=True),
        uuid_col('assigned_by_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assigned_at', sa.DateTime(), nullable=True),
        sa.Column('public_token_hash', sa.String(64), nullable=True, unique=True),
        sa.Column('public_link_enabled', sa.Boolean(), default=False),
        sa.Column('public_link_expires_at', sa.DateTime(), nullable=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint(
            '(assigned_to_kind IS NULL) = (assigned_to_id IS NULL)',
            name=f'ck_{table}_assignee_coherent',
        ),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_cls in ENUMS:
        pg_enum(enum_cls).create(bind, checkfirst=True)

    # === USERS ===
    op.create_table(
        'users',
        uuid_col('id', primary_key=True),
        sa.Column('email', sa.String(255), unique=True, nullable=False, index=True),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('password_hash', sa.String(255), nullable=True),
        sa.Column('federated_id', sa.String(128), unique=True, nullable=True),
        sa.Column('role', pg_enum(GlobalRole), nullable=False),
        sa.Column('registration_status', pg_enum(RegistrationStatus), nullable=False, index=True),
        sa.Column('notification_channels', postgresql.JSONB(), nullable=False),
        sa.Column('is_email_verified', sa.Boolean(), default=False),
        sa.Column('is_synthetic', sa.Boolean(), default=False),
        sa.Column('email_verification_token_hash', sa.String(64), nullable=True, index=True),
        sa.Column('email_verification_expires_at', sa.DateTime(), nullable=True),
        sa.Column('password_reset_token_hash', sa.String(64), nullable=True, index=True),
        sa.Column('password_reset_expires_at', sa.DateTime(), nullable=True),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        *timestamps(),
    )

    # === PROPERTIES ===
    op.create_table(
        'properties',
        uuid_col('id', primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('property_type', pg_enum(PropertyType), nullable=False),
        sa.Column('street', sa.String(255), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('zip_code', sa.String(20), nullable=True),
        sa.Column('country', sa.String(100), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        uuid_col('created_by_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_active', sa.Boolean(), default=True),
        *timestamps(),
    )

    # === UNITS ===
    op.create_table(
        'units',
        uuid_col('id', primary_key=True),
        uuid_col('property_id', sa.ForeignKey('properties.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('unit_name', sa.String(100), nullable=False),
        sa.Column('floor', sa.String(20), nullable=True),
        sa.Column('status', pg_enum(UnitStatus), nullable=False),
        *timestamps(),
    )

    # === PROPERTY USERS (roster) ===
    op.create_table(
        'property_users',
        uuid_col('id', primary_key=True),
        uuid_col('user_id', sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        uuid_col('property_id', sa.ForeignKey('properties.id', ondelete='CASCADE'), nullable=False),
        uuid_col('unit_id', sa.ForeignKey('units.id', ondelete='CASCADE'), nullable=True),
        sa.Column('roles', postgresql.JSONB(), nullable=False),
        sa.Column('has_tenant_role', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), default=True),
        sa.Column('start_date', sa.DateTime(), nullable=True),
        sa.Column('end_date', sa.DateTime(), nullable=True),
        uuid_col('invited_by_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *timestamps(),
        sa.CheckConstraint(
            'has_tenant_role = false OR unit_id IS NOT NULL',
            name='ck_property_users_tenant_requires_unit',
        ),
    )
    op.create_index('ix_property_users_user_property', 'property_users', ['user_id', 'property_id', 'is_active'])

    # === VENDORS ===
    op.create_table(
        'vendors',
        uuid_col('id', primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('services', postgresql.JSONB(), nullable=False),
        sa.Column('contact_person', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(50), nullable=False),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('status', pg_enum(VendorStatus), nullable=False),
        sa.Column('average_rating', sa.Float(), default=0),
        sa.Column('rating_count', sa.Integer(), default=0),
        sa.Column('total_jobs_completed', sa.Integer(), default=0),
        sa.Column('notes', sa.Text(), nullable=True),
        uuid_col('added_by_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        *timestamps(),
    )

    op.create_table(
        'vendor_properties',
        uuid_col('vendor_id', sa.ForeignKey('vendors.id', ondelete='CASCADE'), primary_key=True),
        uuid_col('property_id', sa.ForeignKey('properties.id', ondelete='CASCADE'), primary_key=True),
    )

    # === SCHEDULED MAINTENANCE ===
    # last_generated_request_id FK is added after requests exists
    op.create_table(
        'scheduled_maintenance',
        uuid_col('id', primary_key=True),
        *item_columns('scheduled_maintenance'),
        sa.Column('status', pg_enum(ScheduleStatus), nullable=False),
        sa.Column('scheduled_date', sa.DateTime(), nullable=False),
        sa.Column('recurring', sa.Boolean(), default=False),
        sa.Column('frequency', postgresql.JSONB(), nullable=True),
        sa.Column('next_due_date', sa.DateTime(), nullable=True),
        sa.Column('paused_due_date', sa.DateTime(), nullable=True),
        sa.Column('last_executed_at', sa.DateTime(), nullable=True),
        uuid_col('last_generated_request_id', nullable=True),
        *timestamps(),
    )
    op.create_index('ix_scheduled_maintenance_due_status', 'scheduled_maintenance', ['next_due_date', 'status'])
    op.create_index('ix_scheduled_maintenance_property_status', 'scheduled_maintenance', ['property_id', 'status'])

    # === REQUESTS ===
    op.create_table(
        'requests',
        uuid_col('id', primary_key=True),
        *item_columns('requests'),
        sa.Column('priority', pg_enum(Priority), nullable=False),
        sa.Column('status', pg_enum(RequestStatus), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('feedback', postgresql.JSONB(), nullable=True),
        uuid_col(
            'generated_from_schedule_id',
            sa.ForeignKey('scheduled_maintenance.id', ondelete='SET NULL'),
            nullable=True,
            index=True,
        ),
        sa.Column('generated_for_due_date', sa.DateTime(), nullable=True),
        *timestamps(),
        # At most one request per schedule occurrence
        sa.UniqueConstraint(
            'generated_from_schedule_id', 'generated_for_due_date',
            name='uq_requests_schedule_occurrence',
        ),
    )
    op.create_index('ix_requests_property_status', 'requests', ['property_id', 'status'])
    op.create_index('ix_requests_assigned_status', 'requests', ['assigned_to_id', 'status'])
    op.create_index('ix_requests_created_by_status', 'requests', ['created_by_id', 'status'])

    op.create_foreign_key(
        'fk_scheduled_maintenance_last_request',
        'scheduled_maintenance', 'requests',
        ['last_generated_request_id'], ['id'],
        ondelete='SET NULL',
    )

    # === STATUS HISTORY ===
    op.create_table(
        'status_history',
        uuid_col('id', primary_key=True),
        sa.Column('entity_kind', pg_enum(EntityKind), nullable=False),
        uuid_col('entity_id', nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        uuid_col('changed_by_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.UniqueConstraint('entity_kind', 'entity_id', 'sequence', name='uq_status_history_sequence'),
    )

    # === COMMENTS ===
    op.create_table(
        'comments',
        uuid_col('id', primary_key=True),
        sa.Column('context_kind', pg_enum(EntityKind), nullable=False),
        uuid_col('context_id', nullable=False),
        uuid_col('sender_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('is_internal_note', sa.Boolean(), default=False),
        sa.Column('is_external', sa.Boolean(), default=False),
        sa.Column('external_name', sa.String(255), nullable=True),
        sa.Column('external_phone', sa.String(50), nullable=True),
        *timestamps(),
    )
    op.create_index('ix_comments_context', 'comments', ['context_kind', 'context_id', 'created_at'])

    op.create_table(
        'comment_mentions',
        uuid_col('id', primary_key=True),
        uuid_col('comment_id', sa.ForeignKey('comments.id', ondelete='CASCADE'), nullable=False, index=True),
        uuid_col('user_id', sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('context_kind', pg_enum(EntityKind), nullable=False),
        uuid_col('context_id', nullable=False),
        sa.Column('is_read', sa.Boolean(), default=False),
        sa.Column('read_at', sa.DateTime(), nullable=True),
    )

    # === MEDIA ===
    op.create_table(
        'media',
        uuid_col('id', primary_key=True),
        sa.Column('filename', sa.String(255), nullable=False),
        sa.Column('mime_type', sa.String(100), nullable=False),
        sa.Column('size', sa.BigInteger(), nullable=False),
        sa.Column('url', sa.String(1024), nullable=False),
        sa.Column('thumbnail_url', sa.String(1024), nullable=True),
        sa.Column('public_id', sa.String(500), nullable=False, index=True),
        uuid_col('uploaded_by_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('owner_kind', pg_enum(EntityKind), nullable=False),
        uuid_col('owner_id', nullable=False),
        sa.Column('tags', postgresql.JSONB(), nullable=False),
        sa.Column('is_public', sa.Boolean(), default=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_media_owner', 'media', ['owner_kind', 'owner_id', 'created_at'])

    # === NOTIFICATIONS ===
    op.create_table(
        'notifications',
        uuid_col('id', primary_key=True),
        uuid_col('recipient_id', sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        uuid_col('sender_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('kind', pg_enum(NotificationKind), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('link', sa.String(1024), nullable=True),
        sa.Column('related_kind', pg_enum(EntityKind), nullable=True),
        uuid_col('related_id', nullable=True),
        sa.Column('is_read', sa.Boolean(), default=False),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('email_payload', postgresql.JSONB(), nullable=True),
        sa.Column('sms_payload', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_notifications_recipient_read', 'notifications', ['recipient_id', 'is_read', 'created_at'])
    op.create_index('ix_notifications_related', 'notifications', ['related_kind', 'related_id'])

    # === AUDIT LOGS ===
    op.create_table(
        'audit_logs',
        uuid_col('id', primary_key=True),
        uuid_col('user_id', sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('action', pg_enum(AuditAction), nullable=False, index=True),
        sa.Column('resource_type', sa.String(50), nullable=True),
        uuid_col('resource_id', nullable=True),
        sa.Column('old_value', postgresql.JSONB(), nullable=True),
        sa.Column('new_value', postgresql.JSONB(), nullable=True),
        sa.Column('details', postgresql.JSONB(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('external_user_identifier', sa.String(100), nullable=True),
        sa.Column('status', pg_enum(AuditStatus), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_audit_logs_resource', 'audit_logs', ['resource_type', 'resource_id'])

    # === JOBS OUTBOX ===
    op.create_table(
        'jobs_outbox',
        uuid_col('id', primary_key=True),
        sa.Column('type', sa.String(100), nullable=False, index=True),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('status', pg_enum(JobStatus), nullable=False, index=True),
        sa.Column('unique_scope', sa.String(500), nullable=False, unique=True),
        sa.Column('attempts', sa.Integer(), default=0),
        sa.Column('max_attempts', sa.Integer(), default=3),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('run_after', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_jobs_outbox_pending', 'jobs_outbox', ['status', 'run_after'])

    op.create_table(
        'scheduler_leases',
        sa.Column('name', sa.String(100), primary_key=True),
        sa.Column('holder', sa.String(200), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('acquired_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('scheduler_leases')
    op.drop_table('jobs_outbox')
    op.drop_table('audit_logs')
    op.drop_table('notifications')
    op.drop_table('media')
    op.drop_table('comment_mentions')
    op.drop_table('comments')
    op.drop_table('status_history')
    op.drop_constraint('fk_scheduled_maintenance_last_request', 'scheduled_maintenance', type_='foreignkey')
    op.drop_table('requests')
    op.drop_table('scheduled_maintenance')
    op.drop_table('vendor_properties')
    op.drop_table('vendors')
    op.drop_table('property_users')
    op.drop_table('units')
    op.drop_table('properties')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_cls in reversed(ENUMS):
        pg_enum(enum_cls).drop(bind, checkfirst=True)

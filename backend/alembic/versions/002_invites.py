"""Property invitations

Revision ID: 002_invites
Revises: 001_initial
Create Date: 2026-10-18

Adds:
- invitestatus enum
- invites table
- invite/report values on auditaction and entitykind
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = '002_invites'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        "DO $$ BEGIN "
        "CREATE TYPE invitestatus AS ENUM ('PENDING', 'ACCEPTED', 'REVOKED', 'EXPIRED'); "
        "EXCEPTION WHEN duplicate_object THEN null; END $$"
    )

    # New enum values must be committed before use
    op.execute("COMMIT")
    op.execute("ALTER TYPE entitykind ADD VALUE IF NOT EXISTS 'INVITE'")
    for value in ('INVITE_SENT', 'INVITE_ACCEPTED', 'INVITE_REVOKED', 'REPORT_EXPORTED'):
        op.execute(f"ALTER TYPE auditaction ADD VALUE IF NOT EXISTS '{value}'")
    op.execute("BEGIN")

    op.create_table(
        'invites',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('roles', postgresql.JSONB(), nullable=False),
        sa.Column('property_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('properties.id', ondelete='CASCADE'), nullable=False),
        sa.Column('unit_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('units.id', ondelete='CASCADE'), nullable=True),
        sa.Column('token_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('status', postgresql.ENUM(name='invitestatus', create_type=False), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('invited_by_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('accepted_by_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('revoked_by_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_invites_email_status', 'invites', ['email', 'status'])
    op.create_index('ix_invites_property_status', 'invites', ['property_id', 'status'])


def downgrade() -> None:
    op.drop_index('ix_invites_property_status', table_name='invites')
    op.drop_index('ix_invites_email_status', table_name='invites')
    op.drop_table('invites')
    op.execute("DROP TYPE IF EXISTS invitestatus")
    # Postgres cannot drop enum values; the added auditaction/entitykind values stay

"""Initial helpdesk schema.

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19

Creates:
- organizations, organization_domains, requesters, agents
- tickets, ticket_messages, ticket_attachments, ticket_events
"""
from alembic import op
import sqlalchemy as sa

from helpdesk.db.types import UtcDateTime

# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=32)


TICKET_CHANNEL = ('email_graph', 'email_imap', 'webhook', 'api')


def upgrade() -> None:
    # ==========================================================================
    # Directory
    # ==========================================================================
    op.create_table(
        'organizations',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('is_fallback', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', UtcDateTime(), nullable=False),
    )
    op.create_index(
        'uq_organizations_fallback',
        'organizations',
        ['is_fallback'],
        unique=True,
        postgresql_where=sa.text('is_fallback'),
        sqlite_where=sa.text('is_fallback = 1'),
    )
    op.create_table(
        'organization_domains',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'organization_id',
            sa.Integer(),
            sa.ForeignKey('organizations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('domain', sa.String(255), nullable=False),
        sa.UniqueConstraint('domain', name='uq_organization_domains_domain'),
    )
    op.create_table(
        'requesters',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'organization_id',
            sa.Integer(),
            sa.ForeignKey('organizations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(320), nullable=True),
        sa.Column('external_ref', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', UtcDateTime(), nullable=False),
    )
    op.create_index(
        'uq_requesters_org_email_active',
        'requesters',
        ['organization_id', 'email'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )
    op.create_index('idx_requesters_external_ref', 'requesters', ['external_ref'])
    op.create_table(
        'agents',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(320), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', UtcDateTime(), nullable=False),
    )

    # ==========================================================================
    # Tickets
    # ==========================================================================
    op.create_table(
        'tickets',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('public_id', sa.Uuid(), nullable=False, unique=True),
        sa.Column('organization_id', sa.Integer(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column(
            'requester_id',
            sa.Integer(),
            sa.ForeignKey('requesters.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'assignee_id', sa.Integer(), sa.ForeignKey('agents.id', ondelete='SET NULL'), nullable=True
        ),
        sa.Column('subject', sa.Text(), nullable=False),
        sa.Column('subject_norm', sa.Text(), nullable=False),
        sa.Column('from_email', sa.String(320), nullable=True),
        sa.Column(
            'status',
            _enum('ticket_status', 'new', 'open', 'pending', 'resolved', 'closed'),
            nullable=False,
        ),
        sa.Column('priority', _enum('ticket_priority', 'low', 'normal', 'high', 'urgent'), nullable=False),
        sa.Column('channel', _enum('ticket_channel', *TICKET_CHANNEL), nullable=False),
        sa.Column('created_at', UtcDateTime(), nullable=False),
        sa.Column('first_response_at', UtcDateTime(), nullable=True),
        sa.Column('last_resolved_at', UtcDateTime(), nullable=True),
        sa.Column('last_closed_at', UtcDateTime(), nullable=True),
        sa.Column('last_activity_at', UtcDateTime(), nullable=False),
    )
    op.create_index('idx_tickets_org_status', 'tickets', ['organization_id', 'status'])
    op.create_index('idx_tickets_assignee', 'tickets', ['assignee_id'])
    op.create_index('idx_tickets_from_email_created', 'tickets', ['from_email', 'created_at'])
    op.create_index('idx_tickets_activity', 'tickets', ['last_activity_at'])

    op.create_table(
        'ticket_messages',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('direction', _enum('message_direction', 'inbound', 'outbound'), nullable=False),
        sa.Column('is_internal', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            'author_agent_id',
            sa.Integer(),
            sa.ForeignKey('agents.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('body_text', sa.Text(), nullable=True),
        sa.Column('body_html', sa.Text(), nullable=True),
        sa.Column('from_email', sa.String(320), nullable=True),
        sa.Column('to_email', sa.String(320), nullable=True),
        sa.Column('cc_emails', sa.JSON(), nullable=False),
        sa.Column('provider_message_id', sa.String(512), nullable=True),
        sa.Column('thread_key', sa.String(512), nullable=True),
        sa.Column('created_at', UtcDateTime(), nullable=False),
        sa.UniqueConstraint(
            'ticket_id', 'provider_message_id', name='uq_ticket_messages_provider_id'
        ),
    )
    op.create_index(
        'idx_ticket_messages_ticket_created', 'ticket_messages', ['ticket_id', 'created_at']
    )
    op.create_index('idx_ticket_messages_thread_key', 'ticket_messages', ['thread_key'])
    op.create_index('idx_ticket_messages_provider_id', 'ticket_messages', ['provider_message_id'])

    op.create_table(
        'ticket_attachments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'message_id',
            sa.Integer(),
            sa.ForeignKey('ticket_messages.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('filename', sa.String(512), nullable=False),
        sa.Column('mime_type', sa.String(255), nullable=False),
        sa.Column('size_bytes', sa.Integer(), nullable=False),
        sa.Column('provider', _enum('ticket_channel', *TICKET_CHANNEL), nullable=False),
        sa.Column('provider_ref', sa.String(1024), nullable=True),
        sa.Column('is_inline', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('content_id', sa.String(512), nullable=True),
    )
    op.create_index('idx_ticket_attachments_message', 'ticket_attachments', ['message_id'])

    op.create_table(
        'ticket_events',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            'ticket_id', sa.Integer(), sa.ForeignKey('tickets.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column(
            'event_type',
            _enum(
                'ticket_event_type',
                'created',
                'message_sent',
                'status_changed',
                'priority_changed',
                'assigned',
            ),
            nullable=False,
        ),
        sa.Column('actor_type', _enum('actor_type', 'system', 'agent', 'requester'), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('old_value', sa.String(64), nullable=True),
        sa.Column('new_value', sa.String(64), nullable=True),
        sa.Column('event_data', sa.JSON(), nullable=False),
        sa.Column('created_at', UtcDateTime(), nullable=False),
    )
    op.create_index(
        'idx_ticket_events_ticket_created', 'ticket_events', ['ticket_id', 'created_at']
    )


def downgrade() -> None:
    op.drop_table('ticket_events')
    op.drop_table('ticket_attachments')
    op.drop_table('ticket_messages')
    op.drop_table('tickets')
    op.drop_table('agents')
    op.drop_table('requesters')
    op.drop_table('organization_domains')
    op.drop_table('organizations')

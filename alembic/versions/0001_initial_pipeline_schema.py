"""Initial pipeline schema: tenants, call_events, analysis_jobs

Revision ID: 0001_initial_pipeline_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_initial_pipeline_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    ]


def upgrade() -> None:
    """
    Creates:
    1. tenants - one row per business, routed by subdomain or assistant id
    2. call_events - raw call records keyed by the upstream call id
    3. analysis_jobs - durable queue for deferred AI analysis
    """

    op.create_table(
        'tenants',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('subdomain', sa.String(length=63), nullable=False),
        sa.Column('inbound_assistant_id', sa.String(length=128), nullable=True),
        sa.Column('business_type', sa.String(length=50), nullable=False, server_default='general'),
        sa.Column('timezone', sa.String(length=64), nullable=False, server_default='UTC'),
        sa.Column('metadata_json', postgresql.JSONB(), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_tenants_subdomain', 'tenants', ['subdomain'], unique=True)
    op.create_index('ix_tenants_inbound_assistant_id', 'tenants', ['inbound_assistant_id'], unique=True)

    op.create_table(
        'call_events',
        sa.Column('id', sa.String(length=128), primary_key=True),
        sa.Column('tenant_id', sa.String(length=64), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column('provider', sa.String(length=50), nullable=False, server_default='vapi'),
        sa.Column('assistant_id', sa.String(length=128), nullable=True),
        sa.Column('caller_number', sa.String(length=50), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='completed'),
        sa.Column('transcript', sa.Text(), nullable=False, server_default=''),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('recording_url', sa.String(length=1024), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ended_reason', sa.String(length=255), nullable=True),
        sa.Column('raw_metadata', postgresql.JSONB(), nullable=True),
        sa.Column('analysis_status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('sentiment_score', sa.Float(), nullable=True),
        sa.Column('sentiment_label', sa.String(length=20), nullable=True),
        sa.Column('products_mentioned', postgresql.JSONB(), nullable=True),
        sa.Column('issues_identified', postgresql.JSONB(), nullable=True),
        sa.Column('opportunity_value', sa.Integer(), nullable=True),
        sa.Column('analysis_summary', sa.Text(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processing_version', sa.String(length=50), nullable=True),
        sa.Column('processing_error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "analysis_status IN ('pending','done','failed')",
            name='ck_call_events_analysis_status',
        ),
    )
    op.create_index('ix_call_events_tenant_id', 'call_events', ['tenant_id'])
    op.create_index('ix_call_events_tenant_created', 'call_events', ['tenant_id', 'created_at'])
    op.create_index('ix_call_events_tenant_analysis_status', 'call_events', ['tenant_id', 'analysis_status'])

    op.create_table(
        'analysis_jobs',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('tenant_id', sa.String(length=64), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'call_event_id',
            sa.String(length=128),
            sa.ForeignKey('call_events.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('queue_name', sa.String(length=100), nullable=False, server_default='ai-processing'),
        sa.Column('job_name', sa.String(length=100), nullable=False, server_default='process-call'),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='waiting'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('attempt_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('run_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('locked_by', sa.String(length=200), nullable=True),
        sa.Column('lease_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('enqueued_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('waiting','active','completed','failed')",
            name='ck_analysis_jobs_status',
        ),
    )
    op.create_index('ix_analysis_jobs_tenant_id', 'analysis_jobs', ['tenant_id'])
    op.create_index('ix_analysis_jobs_call_event_id', 'analysis_jobs', ['call_event_id'])
    op.create_index('ix_analysis_jobs_status', 'analysis_jobs', ['status'])
    op.create_index('ix_analysis_jobs_queue_status_run_at', 'analysis_jobs', ['queue_name', 'status', 'run_at'])
    op.create_index('ix_analysis_jobs_status_lease', 'analysis_jobs', ['status', 'lease_expires_at'])

    # At most one live (waiting/active) job per call event
    op.create_index(
        'uq_analysis_jobs_live_key',
        'analysis_jobs',
        ['idempotency_key'],
        unique=True,
        postgresql_where=sa.text("status IN ('waiting','active')"),
    )


def downgrade() -> None:
    op.drop_index('uq_analysis_jobs_live_key', table_name='analysis_jobs')
    op.drop_index('ix_analysis_jobs_status_lease', table_name='analysis_jobs')
    op.drop_index('ix_analysis_jobs_queue_status_run_at', table_name='analysis_jobs')
    op.drop_index('ix_analysis_jobs_status', table_name='analysis_jobs')
    op.drop_index('ix_analysis_jobs_call_event_id', table_name='analysis_jobs')
    op.drop_index('ix_analysis_jobs_tenant_id', table_name='analysis_jobs')
    op.drop_table('analysis_jobs')

    op.drop_index('ix_call_events_tenant_analysis_status', table_name='call_events')
    op.drop_index('ix_call_events_tenant_created', table_name='call_events')
    op.drop_index('ix_call_events_tenant_id', table_name='call_events')
    op.drop_table('call_events')

    op.drop_index('ix_tenants_inbound_assistant_id', table_name='tenants')
    op.drop_index('ix_tenants_subdomain', table_name='tenants')
    op.drop_table('tenants')

"""scan core baseline: tenants, settings, scans, risk, breaches, job queue

Revision ID: m1_scan_core_baseline
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa

revision = 'm1_scan_core_baseline'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ── tenant ──
    op.create_table(
        'tenant',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('domain', sa.String(255), nullable=True),
        sa.Column('email_domains', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tenant_domain', 'tenant', ['domain'])

    # ── user ──
    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(120), nullable=True),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_user_tenant_id', 'user', ['tenant_id'])
    op.create_index('ix_user_email', 'user', ['email'], unique=True)

    # ── tenant_settings (schedule + notification preferences) ──
    op.create_table(
        'tenant_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False),
        sa.Column('auto_scan_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('frequency', sa.String(20), nullable=False, server_default='daily'),
        sa.Column('scan_time', sa.String(5), nullable=False, server_default='02:00'),
        sa.Column('scan_day', sa.String(10), nullable=False, server_default='monday'),
        sa.Column('scan_types', sa.JSON(), nullable=False),
        sa.Column('timezone', sa.String(64), nullable=False, server_default='UTC'),
        sa.Column('last_auto_scan_at', sa.DateTime(), nullable=True),
        sa.Column('notify_new_breach', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('notify_scan_complete', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notify_high_risk', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('weekly_digest', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('notification_email', sa.String(255), nullable=False, server_default=''),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_tenant_settings_tenant_id', 'tenant_settings', ['tenant_id'], unique=True)
    op.create_index('ix_tenant_settings_auto_scan_enabled', 'tenant_settings', ['auto_scan_enabled'])
    op.create_index('ix_tenant_settings_weekly_digest', 'tenant_settings', ['weekly_digest'])

    # ── scan_record ──
    op.create_table(
        'scan_record',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False),
        sa.Column('domain', sa.String(255), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('scan_types', sa.JSON(), nullable=False),
        sa.Column('trigger', sa.String(20), nullable=False, server_default='manual'),
        sa.Column('ports', sa.JSON(), nullable=False),
        sa.Column('ssl', sa.JSON(), nullable=True),
        sa.Column('subdomains', sa.JSON(), nullable=False),
        sa.Column('outdated_software', sa.JSON(), nullable=False),
        sa.Column('discovered_paths', sa.JSON(), nullable=False),
        sa.Column('vulnerabilities', sa.JSON(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('error', sa.String(500), nullable=True),
    )
    op.create_index('ix_scan_record_tenant_id', 'scan_record', ['tenant_id'])
    op.create_index('ix_scan_record_status', 'scan_record', ['status'])
    op.create_index('ix_scan_record_tenant_started', 'scan_record', ['tenant_id', 'started_at'])

    # ── risk_assessment ──
    op.create_table(
        'risk_assessment',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False),
        sa.Column('scan_id', sa.Integer(), sa.ForeignKey('scan_record.id', ondelete='SET NULL'), nullable=True),
        sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('category', sa.String(20), nullable=False, server_default='Low'),
        sa.Column('findings', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_risk_assessment_tenant_id', 'risk_assessment', ['tenant_id'])
    op.create_index('ix_risk_assessment_scan_id', 'risk_assessment', ['scan_id'])
    op.create_index('ix_risk_assessment_created_at', 'risk_assessment', ['created_at'])

    # ── breach_record ──
    op.create_table(
        'breach_record',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('breach_name', sa.String(255), nullable=False),
        sa.Column('breach_date', sa.String(32), nullable=True),
        sa.Column('data_classes', sa.JSON(), nullable=False),
        sa.Column('source', sa.String(20), nullable=False, server_default='hibp'),
        sa.Column('severity', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('detected_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('tenant_id', 'email', 'breach_name', name='uq_breach_tenant_email_name'),
    )
    op.create_index('ix_breach_record_tenant_id', 'breach_record', ['tenant_id'])
    op.create_index('ix_breach_record_detected_at', 'breach_record', ['detected_at'])

    # ── queued_job ──
    op.create_table(
        'queued_job',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(40), nullable=False, server_default='scheduled-scan'),
        sa.Column('tenant_id', sa.Integer(), sa.ForeignKey('tenant.id', ondelete='CASCADE'), nullable=False),
        sa.Column('domain', sa.String(255), nullable=False),
        sa.Column('scan_types', sa.JSON(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('status', sa.String(20), nullable=False, server_default='waiting'),
        sa.Column('attempts_made', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('backoff_seconds', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('run_at', sa.DateTime(), nullable=False),
        sa.Column('enqueued_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.String(500), nullable=True),
        sa.Column('scan_id', sa.Integer(), sa.ForeignKey('scan_record.id', ondelete='SET NULL'), nullable=True),
    )
    op.create_index('ix_queued_job_tenant_id', 'queued_job', ['tenant_id'])
    op.create_index('ix_queued_job_status', 'queued_job', ['status'])
    op.create_index('ix_queued_job_run_at', 'queued_job', ['run_at'])


def downgrade():
    op.drop_table('queued_job')
    op.drop_table('breach_record')
    op.drop_table('risk_assessment')
    op.drop_table('scan_record')
    op.drop_table('tenant_settings')
    op.drop_table('user')
    op.drop_table('tenant')

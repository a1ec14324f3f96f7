"""workflow orchestrator schema

Revision ID: 001
Revises: 
Create Date: 2026-10-17 00:00:00.000000

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

JSONType = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # Create workflows table
    op.create_table(
        'workflows',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.String(100), nullable=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('definition', JSONType, nullable=False),
        sa.Column('trigger_config', JSONType, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_template', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('execution_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_executed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_workflows_tenant_id', 'workflows', ['tenant_id'])
    op.create_index('idx_workflows_active', 'workflows', ['is_active'])
    op.create_index('idx_workflows_template', 'workflows', ['is_template'])

    # Create workflow_instances table
    op.create_table(
        'workflow_instances',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('workflow_id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.String(100), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('current_step', sa.String(100), nullable=True),
        sa.Column('context', JSONType, nullable=False),
        sa.Column('input_data', JSONType, nullable=True),
        sa.Column('output_data', JSONType, nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('waiting_for_event', sa.String(200), nullable=True),
        sa.Column('resume_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'paused', 'completed', 'failed', 'cancelled')",
            name='workflow_instances_status_check',
        ),
    )
    op.create_index('ix_workflow_instances_tenant_id', 'workflow_instances', ['tenant_id'])
    op.create_index('ix_workflow_instances_waiting_for_event', 'workflow_instances', ['waiting_for_event'])
    op.create_index('idx_instances_workflow', 'workflow_instances', ['workflow_id'])
    op.create_index('idx_instances_status', 'workflow_instances', ['status'])
    op.create_index('idx_instances_started', 'workflow_instances', ['started_at'])

    # Create workflow_steps table
    op.create_table(
        'workflow_steps',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('instance_id', sa.Uuid(), nullable=False),
        sa.Column('step_id', sa.String(100), nullable=False),
        sa.Column('step_name', sa.String(200), nullable=False),
        sa.Column('step_type', sa.String(50), nullable=False),
        sa.Column('input_data', JSONType, nullable=True),
        sa.Column('output_data', JSONType, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['instance_id'], ['workflow_instances.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed', 'skipped')",
            name='workflow_steps_status_check',
        ),
    )
    op.create_index('idx_steps_instance', 'workflow_steps', ['instance_id'])
    op.create_index('idx_steps_status', 'workflow_steps', ['status'])

    # Create workflow_templates table
    op.create_table(
        'workflow_templates',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('icon', sa.String(50), nullable=True),
        sa.Column('definition', JSONType, nullable=False),
        sa.Column('is_official', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('usage_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # Create workflow_schedules table
    op.create_table(
        'workflow_schedules',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('workflow_id', sa.Uuid(), nullable=False),
        sa.Column('schedule_type', sa.String(20), nullable=False),
        sa.Column('schedule_config', JSONType, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_run_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            "schedule_type IN ('once', 'daily', 'weekly', 'monthly', 'cron')",
            name='workflow_schedules_type_check',
        ),
    )
    op.create_index('idx_schedules_active', 'workflow_schedules', ['is_active'])
    op.create_index('idx_schedules_next_run', 'workflow_schedules', ['next_run_at'])

    # Create workflow_processing_queue table
    op.create_table(
        'workflow_processing_queue',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('workflow_id', sa.Uuid(), nullable=True),
        sa.Column('instance_id', sa.Uuid(), nullable=True),
        sa.Column('event_id', sa.Uuid(), nullable=True),
        sa.Column('payload', JSONType, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_run_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['workflow_id'], ['workflows.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['instance_id'], ['workflow_instances.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled')",
            name='workflow_queue_status_check',
        ),
    )
    op.create_index('idx_queue_status_next_run', 'workflow_processing_queue', ['status', 'next_run_at'])
    op.create_index('idx_queue_instance', 'workflow_processing_queue', ['instance_id'])

    # Create events table
    op.create_table(
        'events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('tenant_id', sa.String(100), nullable=True),
        sa.Column('event_type', sa.String(200), nullable=False),
        sa.Column('event_source', sa.String(100), nullable=False),
        sa.Column('event_data', JSONType, nullable=False),
        sa.Column('metadata', JSONType, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name='events_status_check',
        ),
    )
    op.create_index('ix_events_tenant_id', 'events', ['tenant_id'])
    op.create_index('ix_events_event_type', 'events', ['event_type'])
    op.create_index('ix_events_event_source', 'events', ['event_source'])
    op.create_index('idx_events_status', 'events', ['status'])
    op.create_index('idx_events_created', 'events', ['created_at'])

    # Create approval_requests table
    op.create_table(
        'approval_requests',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('instance_id', sa.Uuid(), nullable=False),
        sa.Column('step_id', sa.String(100), nullable=False),
        sa.Column('approvers', JSONType, nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('request_data', JSONType, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('decided_by', sa.String(255), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('feedback', sa.Text(), nullable=True),
        sa.Column('decision_timeout', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['instance_id'], ['workflow_instances.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'expired', 'cancelled')",
            name='approval_requests_status_check',
        ),
    )
    op.create_index('idx_approvals_status', 'approval_requests', ['status'])
    op.create_index('idx_approvals_instance', 'approval_requests', ['instance_id'])


def downgrade() -> None:
    op.drop_table('approval_requests')
    op.drop_table('events')
    op.drop_table('workflow_processing_queue')
    op.drop_table('workflow_schedules')
    op.drop_table('workflow_templates')
    op.drop_table('workflow_steps')
    op.drop_table('workflow_instances')
    op.drop_table('workflows')

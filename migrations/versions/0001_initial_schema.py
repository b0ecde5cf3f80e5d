"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-09-28 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')
PENDING_USER = "status = 'PENDING' AND user_id IS NOT NULL"
PENDING_TENANT = "status = 'PENDING' AND user_id IS NULL"


def _id() -> sa.Column:
    return sa.Column('id', sa.Uuid(), nullable=False)


def _created_at(name: str = 'created_at') -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False)


def _fk(table: str, column: str, target: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        [column], [f'{target}.id'], name=op.f(f'fk_{table}_{column}_{target}')
    )


def _pk(table: str) -> sa.PrimaryKeyConstraint:
    return sa.PrimaryKeyConstraint('id', name=op.f(f'pk_{table}'))


def _index(table: str, *columns: str) -> None:
    for column in columns:
        op.create_index(op.f(f'ix_{table}_{column}'), table, [column], unique=False)


def upgrade() -> None:
    # Tenancy
    op.create_table(
        'tenants',
        _id(),
        sa.Column('name', sa.String(length=255), nullable=False),
        _created_at(),
        _pk('tenants'),
    )
    op.create_table(
        'users',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('linkedin_id', sa.String(length=100), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=True),
        sa.Column('email_notifications', sa.Boolean(), nullable=True),
        _created_at(),
        _fk('users', 'tenant_id', 'tenants'),
        _pk('users'),
        sa.UniqueConstraint('email', name=op.f('uq_users_email')),
    )
    _index('users', 'tenant_id')
    op.create_table(
        'alert_settings',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('default_notice_days', sa.Integer(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=True),
        _fk('alert_settings', 'tenant_id', 'tenants'),
        _pk('alert_settings'),
        sa.UniqueConstraint('tenant_id', name=op.f('uq_alert_settings_tenant_id')),
    )
    for table, name_column, length in (
        ('integration_settings', 'provider', 50),
        ('feature_flags', 'key', 100),
    ):
        op.create_table(
            table,
            _id(),
            sa.Column('tenant_id', sa.Uuid(), nullable=False),
            sa.Column(name_column, sa.String(length=length), nullable=False),
            sa.Column('enabled', sa.Boolean(), nullable=True),
            _fk(table, 'tenant_id', 'tenants'),
            _pk(table),
        )
        _index(table, 'tenant_id')

    # Inventory
    op.create_table(
        'entities',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        _fk('entities', 'tenant_id', 'tenants'),
        _pk('entities'),
    )
    _index('entities', 'tenant_id')
    op.create_table(
        'departments',
        _id(),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        _fk('departments', 'entity_id', 'entities'),
        _pk('departments'),
    )
    _index('departments', 'entity_id')
    op.create_table(
        'softwares',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=100), nullable=True),
        _fk('softwares', 'tenant_id', 'tenants'),
        _pk('softwares'),
    )
    _index('softwares', 'tenant_id')
    op.create_table(
        'contracts',
        _id(),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('software_id', sa.Uuid(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('notice_days', sa.Integer(), nullable=True),
        sa.Column('cost_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        _created_at(),
        _fk('contracts', 'entity_id', 'entities'),
        _fk('contracts', 'software_id', 'softwares'),
        _pk('contracts'),
    )
    _index('contracts', 'entity_id', 'software_id', 'end_date')
    op.create_table(
        'usages',
        _id(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('software_id', sa.Uuid(), nullable=False),
        _created_at(),
        _fk('usages', 'user_id', 'users'),
        _fk('usages', 'software_id', 'softwares'),
        _pk('usages'),
    )
    _index('usages', 'user_id')

    # Workflow
    op.create_table(
        'reviews',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('software_id', sa.Uuid(), nullable=False),
        sa.Column('rating', sa.Integer(), nullable=False),
        sa.Column('strengths', sa.Text(), nullable=True),
        sa.Column('weaknesses', sa.Text(), nullable=True),
        sa.Column('improvement', sa.Text(), nullable=True),
        _created_at(),
        _fk('reviews', 'tenant_id', 'tenants'),
        _fk('reviews', 'user_id', 'users'),
        _fk('reviews', 'software_id', 'softwares'),
        _pk('reviews'),
    )
    _index('reviews', 'tenant_id', 'user_id')
    op.create_table(
        'requests',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('requester_id', sa.Uuid(), nullable=False),
        sa.Column('software_ref', sa.String(length=255), nullable=True),
        sa.Column('description_need', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        _created_at(),
        _fk('requests', 'tenant_id', 'tenants'),
        _fk('requests', 'requester_id', 'users'),
        _pk('requests'),
    )
    _index('requests', 'tenant_id', 'requester_id')
    op.create_table(
        'votes',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('request_id', sa.Uuid(), nullable=False),
        sa.Column('voter_id', sa.Uuid(), nullable=False),
        _created_at(),
        _fk('votes', 'tenant_id', 'tenants'),
        _fk('votes', 'request_id', 'requests'),
        _fk('votes', 'voter_id', 'users'),
        _pk('votes'),
    )
    _index('votes', 'tenant_id', 'request_id')
    op.create_table(
        'purchase_projects',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('software_id', sa.Uuid(), nullable=True),
        sa.Column('request_id', sa.Uuid(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=True),
        _created_at(),
        _fk('purchase_projects', 'tenant_id', 'tenants'),
        _fk('purchase_projects', 'software_id', 'softwares'),
        _fk('purchase_projects', 'request_id', 'requests'),
        _pk('purchase_projects'),
    )
    _index('purchase_projects', 'tenant_id')
    op.create_table(
        'tasks',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('assignee_id', sa.Uuid(), nullable=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('done', sa.Boolean(), nullable=True),
        _created_at('updated_at'),
        _fk('tasks', 'tenant_id', 'tenants'),
        _fk('tasks', 'project_id', 'purchase_projects'),
        _fk('tasks', 'assignee_id', 'users'),
        _pk('tasks'),
    )
    _index('tasks', 'tenant_id', 'project_id', 'assignee_id', 'due_date')
    op.create_table(
        'economy_items',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('software_id', sa.Uuid(), nullable=True),
        sa.Column('estimated_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        _fk('economy_items', 'tenant_id', 'tenants'),
        _fk('economy_items', 'software_id', 'softwares'),
        _pk('economy_items'),
    )
    _index('economy_items', 'tenant_id')
    op.create_table(
        'import_batches',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('created_by_id', sa.Uuid(), nullable=True),
        sa.Column('source', sa.String(length=50), nullable=True),
        _created_at(),
        _fk('import_batches', 'tenant_id', 'tenants'),
        _fk('import_batches', 'created_by_id', 'users'),
        _pk('import_batches'),
    )
    _index('import_batches', 'tenant_id')

    # Engagement
    op.create_table(
        'badges',
        _id(),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('label', sa.String(length=255), nullable=False),
        _pk('badges'),
        sa.UniqueConstraint('code', name=op.f('uq_badges_code')),
    )
    op.create_table(
        'user_badges',
        _id(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('badge_id', sa.Uuid(), nullable=False),
        _created_at('earned_at'),
        _fk('user_badges', 'user_id', 'users'),
        _fk('user_badges', 'badge_id', 'badges'),
        _pk('user_badges'),
    )
    _index('user_badges', 'user_id')
    op.create_table(
        'beta_feedbacks',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        _created_at(),
        _fk('beta_feedbacks', 'tenant_id', 'tenants'),
        _fk('beta_feedbacks', 'user_id', 'users'),
        _pk('beta_feedbacks'),
    )
    _index('beta_feedbacks', 'tenant_id', 'user_id')

    # Notifications
    op.create_table(
        'notifications',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('payload', JSON_TYPE, nullable=True),
        sa.Column('read_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _fk('notifications', 'tenant_id', 'tenants'),
        _fk('notifications', 'user_id', 'users'),
        _pk('notifications'),
    )
    _index('notifications', 'tenant_id', 'user_id', 'created_at')
    op.create_table(
        'push_subscriptions',
        _id(),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('endpoint', sa.Text(), nullable=False),
        _created_at(),
        _fk('push_subscriptions', 'user_id', 'users'),
        _pk('push_subscriptions'),
    )
    _index('push_subscriptions', 'user_id')
    op.create_table(
        'alert_dispatch_markers',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('kind', sa.String(length=32), nullable=False),
        sa.Column('subject_id', sa.Uuid(), nullable=False),
        sa.Column('recipient_id', sa.Uuid(), nullable=False),
        sa.Column('alert_date', sa.Date(), nullable=False),
        _created_at(),
        _fk('alert_dispatch_markers', 'tenant_id', 'tenants'),
        _fk('alert_dispatch_markers', 'recipient_id', 'users'),
        _pk('alert_dispatch_markers'),
        sa.UniqueConstraint(
            'kind', 'subject_id', 'recipient_id', 'alert_date',
            name='uq_alert_dispatch_markers_key',
        ),
    )
    _index('alert_dispatch_markers', 'tenant_id', 'recipient_id')
    op.create_table(
        'outbound_events',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('type', sa.String(length=64), nullable=False),
        sa.Column('payload', JSON_TYPE, nullable=True),
        sa.Column('status', sa.String(length=16), nullable=True),
        sa.Column('try_count', sa.Integer(), nullable=True),
        _created_at(),
        _fk('outbound_events', 'tenant_id', 'tenants'),
        _pk('outbound_events'),
    )
    _index('outbound_events', 'tenant_id')

    # Compliance: no foreign keys, rows outlive their subjects
    op.create_table(
        'deletion_queue',
        _id(),
        sa.Column('user_id', sa.Uuid(), nullable=True),
        sa.Column('tenant_id', sa.Uuid(), nullable=True),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('purge_after', sa.DateTime(timezone=True), nullable=False),
        _created_at('requested_at'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        _pk('deletion_queue'),
    )
    _index('deletion_queue', 'user_id', 'tenant_id')
    op.create_index(
        'ix_deletion_queue_status_purge_after', 'deletion_queue', ['status', 'purge_after']
    )
    op.create_index(
        'uq_deletion_queue_pending_user', 'deletion_queue', ['user_id'], unique=True,
        postgresql_where=sa.text(PENDING_USER), sqlite_where=sa.text(PENDING_USER),
    )
    op.create_index(
        'uq_deletion_queue_pending_tenant', 'deletion_queue', ['tenant_id'], unique=True,
        postgresql_where=sa.text(PENDING_TENANT), sqlite_where=sa.text(PENDING_TENANT),
    )
    op.create_table(
        'audit_logs',
        _id(),
        sa.Column('tenant_id', sa.Uuid(), nullable=False),
        sa.Column('actor_id', sa.Uuid(), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=50), nullable=False),
        sa.Column('entity_id', sa.String(length=255), nullable=True),
        sa.Column('diff', JSON_TYPE, nullable=True),
        sa.Column('source_ip', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        _created_at(),
        _pk('audit_logs'),
    )
    _index('audit_logs', 'tenant_id', 'actor_id', 'action', 'created_at')
    op.create_index('ix_audit_tenant_time', 'audit_logs', ['tenant_id', 'created_at'])
    op.create_index('ix_audit_entity', 'audit_logs', ['tenant_id', 'entity_type', 'entity_id'])


def downgrade() -> None:
    for table in (
        'audit_logs',
        'deletion_queue',
        'outbound_events',
        'alert_dispatch_markers',
        'push_subscriptions',
        'notifications',
        'beta_feedbacks',
        'user_badges',
        'badges',
        'import_batches',
        'economy_items',
        'tasks',
        'purchase_projects',
        'votes',
        'requests',
        'reviews',
        'usages',
        'contracts',
        'softwares',
        'departments',
        'entities',
        'feature_flags',
        'integration_settings',
        'alert_settings',
        'users',
        'tenants',
    ):
        op.drop_table(table)

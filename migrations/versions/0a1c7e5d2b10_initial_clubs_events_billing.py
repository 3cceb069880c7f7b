"""initial schema: users, clubs, events, billing, audit

Revision ID: 0a1c7e5d2b10
Revises:
Create Date: 2026-10-19 10:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0a1c7e5d2b10'
down_revision = None
branch_labels = None
depends_on = None

TS = sa.DateTime(timezone=True)


def _timestamps(updated=True):
    cols = [sa.Column('created_at', TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP"))]
    if updated:
        cols.append(sa.Column('updated_at', TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")))
    return cols


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('display_name', sa.String(length=120), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='user'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("role IN ('user','admin')", name='ck_users_role_valid'),
    )
    op.create_index('uq_users_email_lower', 'users', [sa.text('lower(email)')], unique=True)

    op.create_table(
        'club_plans',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('title', sa.String(length=80), nullable=False),
        sa.Column('price_monthly', sa.Integer(), nullable=False),
        sa.Column('currency_code', sa.String(length=3), nullable=False, server_default='KZT'),
        sa.Column('max_members', sa.Integer(), nullable=True),
        sa.Column('max_event_participants', sa.Integer(), nullable=True),
        sa.Column('allow_paid_events', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('allow_csv_export', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_public', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        'billing_products',
        sa.Column('code', sa.String(length=40), primary_key=True),
        sa.Column('title', sa.String(length=120), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False, server_default='credit'),
        sa.Column('price', sa.Integer(), nullable=False),
        sa.Column('currency_code', sa.String(length=3), nullable=False, server_default='KZT'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('constraints', sa.JSON(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        'billing_policies',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('grace_period_days', sa.Integer(), nullable=False, server_default='7'),
        sa.Column('pending_ttl_minutes', sa.Integer(), nullable=False, server_default='60'),
        *_timestamps(),
    )
    op.create_table(
        'billing_policy_actions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('policy_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('is_allowed', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['policy_id'], ['billing_policies.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('policy_id', 'status', 'action', name='uq_billing_policy_actions_key'),
    )

    op.create_table(
        'clubs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('visibility', sa.String(length=20), nullable=False, server_default='public'),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('archived_at', TS, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.CheckConstraint("visibility IN ('public','private')", name='ck_clubs_visibility_valid'),
    )
    op.create_index('ix_clubs_city', 'clubs', ['city'])
    op.create_index('ix_clubs_created_by_user_id', 'clubs', ['created_by_user_id'])

    op.create_table(
        'club_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='member'),
        sa.Column('invited_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['invited_by_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('club_id', 'user_id', name='uq_club_members_club_user'),
        sa.CheckConstraint(
            "role IN ('owner','admin','organizer','member','pending')",
            name='ck_club_members_role_valid',
        ),
    )
    op.create_index('ix_club_members_club_id', 'club_members', ['club_id'])
    op.create_index('ix_club_members_user_id', 'club_members', ['user_id'])

    op.create_table(
        'club_join_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('requester_user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('message', sa.String(length=500), nullable=True),
        sa.Column('decided_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['requester_user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['decided_by_user_id'], ['users.id'], ondelete='SET NULL'),
        sa.CheckConstraint(
            "status IN ('pending','approved','rejected')",
            name='ck_club_join_requests_status_valid',
        ),
    )
    op.create_index('ix_club_join_requests_club_id', 'club_join_requests', ['club_id'])
    op.create_index('ix_club_join_requests_requester_user_id', 'club_join_requests', ['requester_user_id'])
    op.create_index(
        'uq_club_join_requests_pending',
        'club_join_requests',
        ['club_id', 'requester_user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        'events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('starts_at', TS, nullable=True),
        sa.Column('max_participants', sa.Integer(), nullable=True),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('price', sa.Integer(), nullable=True),
        sa.Column('club_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='draft'),
        sa.Column('published_at', TS, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.CheckConstraint("status IN ('draft','published')", name='ck_events_status_valid'),
        sa.CheckConstraint(
            "max_participants IS NULL OR max_participants > 0",
            name='ck_events_max_participants_positive',
        ),
    )
    op.create_index('ix_events_club_id', 'events', ['club_id'])
    op.create_index('ix_events_created_by_user_id', 'events', ['created_by_user_id'])
    op.create_index('ix_events_status', 'events', ['status'])

    op.create_table(
        'event_participants',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('display_name', sa.String(length=120), nullable=True),
        sa.Column('registered_at', TS, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('event_id', 'user_id', name='uq_event_participants_event_user'),
    )
    op.create_index('ix_event_participants_event_id', 'event_participants', ['event_id'])
    op.create_index('ix_event_participants_user_id', 'event_participants', ['user_id'])

    op.create_table(
        'club_subscriptions',
        sa.Column('club_id', sa.Integer(), primary_key=True),
        sa.Column('plan_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('current_period_start', TS, nullable=True),
        sa.Column('current_period_end', TS, nullable=True),
        sa.Column('grace_until', TS, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['plan_id'], ['club_plans.id'], ondelete='RESTRICT'),
        sa.CheckConstraint(
            "status IN ('pending','active','grace','expired')",
            name='ck_club_subscriptions_status_valid',
        ),
    )
    op.create_index('ix_club_subscriptions_plan_id', 'club_subscriptions', ['plan_id'])
    op.create_index('ix_club_subscriptions_status', 'club_subscriptions', ['status'])
    op.create_index('ix_club_subscriptions_current_period_end', 'club_subscriptions', ['current_period_end'])

    op.create_table(
        'billing_transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('club_id', sa.Integer(), nullable=True),
        sa.Column('plan_id', sa.String(length=32), nullable=True),
        sa.Column('product_code', sa.String(length=40), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('provider', sa.String(length=40), nullable=False),
        sa.Column('provider_payment_id', sa.String(length=255), nullable=True),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('currency_code', sa.String(length=3), nullable=False, server_default='KZT'),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('period_start', TS, nullable=True),
        sa.Column('period_end', TS, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['plan_id'], ['club_plans.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('provider_payment_id', name='uq_billing_transactions_provider_payment_id'),
        sa.CheckConstraint(
            "status IN ('pending','completed','failed','refunded')",
            name='ck_billing_transactions_status_valid',
        ),
        sa.CheckConstraint('amount >= 0', name='ck_billing_transactions_amount_nonneg'),
    )
    op.create_index('ix_billing_transactions_user_id', 'billing_transactions', ['user_id'])
    op.create_index('ix_billing_transactions_club_id', 'billing_transactions', ['club_id'])
    op.create_index('ix_billing_transactions_status', 'billing_transactions', ['status'])

    op.create_table(
        'club_subscription_entitlements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan_id', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='active'),
        sa.Column('valid_from', TS, nullable=False),
        sa.Column('valid_until', TS, nullable=False),
        sa.Column('club_id', sa.Integer(), nullable=True),
        sa.Column('consumed_at', TS, nullable=True),
        sa.Column('source_transaction_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['plan_id'], ['club_plans.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['source_transaction_id'], ['billing_transactions.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('club_id', name='uq_cse_club_id'),
        sa.UniqueConstraint('source_transaction_id', name='uq_cse_source_transaction_id'),
        sa.CheckConstraint(
            "status IN ('active','consumed','expired','cancelled')",
            name='ck_cse_status_valid',
        ),
        sa.CheckConstraint(
            "status <> 'consumed' OR (club_id IS NOT NULL AND consumed_at IS NOT NULL)",
            name='ck_cse_consumed_linked',
        ),
        sa.CheckConstraint('valid_until > valid_from', name='ck_cse_window'),
    )
    op.create_index('ix_club_subscription_entitlements_user_id', 'club_subscription_entitlements', ['user_id'])
    op.create_index('ix_cse_user_status', 'club_subscription_entitlements', ['user_id', 'status'])

    op.create_table(
        'billing_credits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('credit_code', sa.String(length=40), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='available'),
        sa.Column('source', sa.String(length=20), nullable=False, server_default='user'),
        sa.Column('source_transaction_id', sa.Integer(), nullable=False),
        sa.Column('consumed_event_id', sa.Integer(), nullable=True),
        sa.Column('consumed_at', TS, nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['source_transaction_id'], ['billing_transactions.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['consumed_event_id'], ['events.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('source_transaction_id', name='uq_billing_credits_source_transaction_id'),
        sa.CheckConstraint("status IN ('available','consumed')", name='ck_billing_credits_status_valid'),
        sa.CheckConstraint("source IN ('user','admin','system')", name='ck_billing_credits_source_valid'),
        sa.CheckConstraint(
            "status <> 'consumed' OR consumed_at IS NOT NULL",
            name='ck_billing_credits_consumed_at',
        ),
    )
    op.create_index('ix_billing_credits_user_id', 'billing_credits', ['user_id'])
    op.create_index('ix_billing_credits_consumed_event_id', 'billing_credits', ['consumed_event_id'])
    op.create_index(
        'ix_billing_credits_user_code_status', 'billing_credits', ['user_id', 'credit_code', 'status']
    )

    op.create_table(
        'admin_audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('action_type', sa.String(length=64), nullable=False),
        sa.Column('target_type', sa.String(length=10), nullable=False),
        sa.Column('target_id', sa.String(length=64), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('result', sa.String(length=10), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('related_entity_id', sa.String(length=64), nullable=True),
        sa.Column('error_code', sa.String(length=64), nullable=True),
        *_timestamps(updated=False),
        sa.CheckConstraint("target_type IN ('user','club')", name='ck_admin_audit_target_type'),
        sa.CheckConstraint("result IN ('success','rejected')", name='ck_admin_audit_result'),
        sa.CheckConstraint('length(trim(reason)) > 0', name='ck_admin_audit_reason_nonempty'),
        sa.CheckConstraint(
            "result <> 'rejected' OR error_code IS NOT NULL",
            name='ck_admin_audit_rejected_has_code',
        ),
    )
    op.create_index('ix_admin_audit_logs_actor_id', 'admin_audit_logs', ['actor_id'])
    op.create_index('ix_admin_audit_logs_action_type', 'admin_audit_logs', ['action_type'])
    op.create_index('ix_admin_audit_logs_created_at', 'admin_audit_logs', ['created_at'])
    op.create_index('ix_admin_audit_target', 'admin_audit_logs', ['target_type', 'target_id'])

    op.create_table(
        'club_audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('club_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('action_code', sa.String(length=64), nullable=False),
        sa.Column('target_user_id', sa.Integer(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(['club_id'], ['clubs.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_club_audit_logs_club_created', 'club_audit_logs', ['club_id', 'created_at'])

    op.create_table(
        'billing_event_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider', sa.String(length=40), nullable=False, server_default='stripe'),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=80), nullable=False),
        sa.Column('signature_valid', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('processed_at', TS, nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint('provider', 'provider_event_id', name='uq_billing_event_logs_provider_event'),
    )
    op.create_index('ix_billing_event_logs_provider_event_id', 'billing_event_logs', ['provider_event_id'])
    op.create_index('ix_billing_event_logs_type', 'billing_event_logs', ['type'])


def downgrade():
    op.drop_table('billing_event_logs')
    op.drop_table('club_audit_logs')
    op.drop_table('admin_audit_logs')
    op.drop_table('billing_credits')
    op.drop_table('club_subscription_entitlements')
    op.drop_table('billing_transactions')
    op.drop_table('club_subscriptions')
    op.drop_table('event_participants')
    op.drop_table('events')
    op.drop_index('uq_club_join_requests_pending', table_name='club_join_requests')
    op.drop_table('club_join_requests')
    op.drop_table('club_members')
    op.drop_table('clubs')
    op.drop_table('billing_policy_actions')
    op.drop_table('billing_policies')
    op.drop_table('billing_products')
    op.drop_table('club_plans')
    op.drop_index('uq_users_email_lower', table_name='users')
    op.drop_table('users')

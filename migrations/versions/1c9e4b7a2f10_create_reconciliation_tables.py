"""create reconciliation tables

Revision ID: 1c9e4b7a2f10
Revises:
Create Date: 2026-10-18 09:12:44.108213

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '1c9e4b7a2f10'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('tenants',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('subdomain', sa.String(length=100), nullable=False),
    sa.Column('contact_email', sa.String(length=255), nullable=True),
    sa.Column('subscription_status', sa.String(length=50), nullable=True),
    sa.Column('plan_type', sa.String(length=50), nullable=False),
    sa.Column('trial_started_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('trial_ends_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('max_students', sa.Integer(), nullable=True),
    sa.Column('max_teachers', sa.Integer(), nullable=True),
    sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
    sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
    sa.Column('payment_linked_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('linked_session_id', sa.String(length=255), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('subdomain')
    )
    with op.batch_alter_table('tenants', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_tenants_contact_email'), ['contact_email'], unique=False)
        batch_op.create_index(batch_op.f('ix_tenants_stripe_customer_id'), ['stripe_customer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_tenants_stripe_subscription_id'), ['stripe_subscription_id'], unique=False)

    op.create_table('pending_payments',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('stripe_session_id', sa.String(length=255), nullable=False),
    sa.Column('stripe_customer_id', sa.String(length=255), nullable=True),
    sa.Column('stripe_subscription_id', sa.String(length=255), nullable=True),
    sa.Column('tracking_id', sa.String(length=64), nullable=True),
    sa.Column('customer_email', sa.String(length=255), nullable=True),
    sa.Column('plan_type', sa.String(length=50), nullable=True),
    sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=True),
    sa.Column('currency', sa.String(length=3), nullable=True),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=True),
    sa.Column('linking_method', sa.String(length=50), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('linked_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('stripe_session_id')
    )
    with op.batch_alter_table('pending_payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_pending_payments_created_at'), ['created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_pending_payments_customer_email'), ['customer_email'], unique=False)
        batch_op.create_index(batch_op.f('ix_pending_payments_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_pending_payments_stripe_subscription_id'), ['stripe_subscription_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_pending_payments_tracking_id'), ['tracking_id'], unique=False)

    op.create_table('session_retry_queue',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=False),
    sa.Column('session_id', sa.String(length=255), nullable=True),
    sa.Column('tracking_id', sa.String(length=64), nullable=True),
    sa.Column('admin_email', sa.String(length=255), nullable=True),
    sa.Column('retry_count', sa.Integer(), nullable=False),
    sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('last_attempt_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('processed', sa.Boolean(), nullable=False),
    sa.Column('success', sa.Boolean(), nullable=True),
    sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    with op.batch_alter_table('session_retry_queue', schema=None) as batch_op:
        batch_op.create_index('ix_session_retry_queue_due', ['processed', 'retry_count', 'next_retry_at'], unique=False)

    op.create_table('stripe_events',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('stripe_event_id', sa.String(length=255), nullable=False),
    sa.Column('event_type', sa.String(length=255), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('attempts', sa.Integer(), nullable=False),
    sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('stripe_event_id')
    )
    with op.batch_alter_table('stripe_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stripe_events_event_type'), ['event_type'], unique=False)

    op.create_table('audit_events',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('tenant_id', sa.String(length=36), nullable=True),
    sa.Column('action', sa.String(length=255), nullable=False),
    sa.Column('metadata', sa.JSON(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ),
    sa.PrimaryKeyConstraint('id')
    )


def downgrade():
    op.drop_table('audit_events')
    with op.batch_alter_table('stripe_events', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_stripe_events_event_type'))

    op.drop_table('stripe_events')
    with op.batch_alter_table('session_retry_queue', schema=None) as batch_op:
        batch_op.drop_index('ix_session_retry_queue_due')

    op.drop_table('session_retry_queue')
    with op.batch_alter_table('pending_payments', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_pending_payments_tracking_id'))
        batch_op.drop_index(batch_op.f('ix_pending_payments_stripe_subscription_id'))
        batch_op.drop_index(batch_op.f('ix_pending_payments_status'))
        batch_op.drop_index(batch_op.f('ix_pending_payments_customer_email'))
        batch_op.drop_index(batch_op.f('ix_pending_payments_created_at'))

    op.drop_table('pending_payments')
    with op.batch_alter_table('tenants', schema=None) as batch_op:
        batch_op.drop_index(batch_op.f('ix_tenants_stripe_subscription_id'))
        batch_op.drop_index(batch_op.f('ix_tenants_stripe_customer_id'))
        batch_op.drop_index(batch_op.f('ix_tenants_contact_email'))

    op.drop_table('tenants')

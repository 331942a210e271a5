"""Billing tables migration.

Revision ID: 001
Revises:
Create Date: 2024-01-01 00:00:00.000000

Creates payments, invoices, payment_methods and subscriptions.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


PAYMENT_STATUS = sa.Enum(
    'pending', 'completed', 'failed', 'refunded', 'overdue', name='payment_status'
)
PAYMENT_METHOD_CODE = sa.Enum(
    'credit_card', 'paypal', 'bank_transfer', 'cash', 'stripe', name='payment_method_code'
)
PAYMENT_GATEWAY = sa.Enum('paypal', 'stripe', 'manual', name='payment_gateway')
PAYMENT_METHOD_TYPE = sa.Enum(
    'credit_card', 'paypal', 'bank_account', 'stripe', name='payment_method_type'
)
SUBSCRIPTION_FREQUENCY = sa.Enum(
    'monthly', 'quarterly', 'semi-annual', 'annual', name='subscription_frequency'
)
SUBSCRIPTION_STATUS = sa.Enum(
    'active', 'cancelled', 'expired', 'suspended', name='subscription_status'
)


def upgrade() -> None:
    # Create payments table
    op.create_table(
        'payments',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('status', PAYMENT_STATUS, nullable=False, server_default='pending'),
        sa.Column('payment_method', PAYMENT_METHOD_CODE, nullable=False, server_default='credit_card'),
        sa.Column('payment_gateway', PAYMENT_GATEWAY, nullable=False, server_default='manual'),
        sa.Column('transaction_id', sa.String(255), nullable=True),
        sa.Column('gateway_response', sa.JSON(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('payment_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payments_student_id', 'payments', ['student_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_due_date', 'payments', ['due_date'])

    # Create invoices table
    op.create_table(
        'invoices',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('invoice_number', sa.String(50), nullable=False),
        sa.Column('payment_id', sa.String(36), nullable=False),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('status', PAYMENT_STATUS, nullable=False, server_default='pending'),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('issue_date', sa.DateTime(), nullable=False),
        sa.Column('paid_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('invoice_number'),
        sa.UniqueConstraint('payment_id'),
    )
    op.create_index('ix_invoices_student_id', 'invoices', ['student_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])

    # Create payment_methods table
    op.create_table(
        'payment_methods',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('type', PAYMENT_METHOD_TYPE, nullable=False),
        sa.Column('provider', PAYMENT_GATEWAY, nullable=False),
        sa.Column('token', sa.String(255), nullable=True),
        sa.Column('last_four', sa.String(4), nullable=True),
        sa.Column('expiry_date', sa.String(7), nullable=True),
        sa.Column('card_brand', sa.String(50), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('billing_details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_payment_methods_student_id', 'payment_methods', ['student_id'])

    # Create subscriptions table
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('student_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('frequency', SUBSCRIPTION_FREQUENCY, nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('next_billing_date', sa.Date(), nullable=False),
        sa.Column('status', SUBSCRIPTION_STATUS, nullable=False, server_default='active'),
        sa.Column('payment_method_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['payment_method_id'], ['payment_methods.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_subscriptions_student_id', 'subscriptions', ['student_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_next_billing_date', 'subscriptions', ['next_billing_date'])


def downgrade() -> None:
    op.drop_index('ix_subscriptions_next_billing_date', table_name='subscriptions')
    op.drop_index('ix_subscriptions_status', table_name='subscriptions')
    op.drop_index('ix_subscriptions_student_id', table_name='subscriptions')
    op.drop_table('subscriptions')

    op.drop_index('ix_payment_methods_student_id', table_name='payment_methods')
    op.drop_table('payment_methods')

    op.drop_index('ix_invoices_status', table_name='invoices')
    op.drop_index('ix_invoices_student_id', table_name='invoices')
    op.drop_table('invoices')

    op.drop_index('ix_payments_due_date', table_name='payments')
    op.drop_index('ix_payments_status', table_name='payments')
    op.drop_index('ix_payments_student_id', table_name='payments')
    op.drop_table('payments')

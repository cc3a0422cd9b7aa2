"""Initial migration - create invoices, transactions, product_categories, sync_logs and merchant_configs tables

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _money(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        'invoices',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('mx_invoice_id', sa.BigInteger(), nullable=False, unique=True),
        sa.Column('merchant_id', sa.String(64), nullable=True),
        sa.Column('invoice_number', sa.BigInteger(), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_number', sa.String(100), nullable=True),
        sa.Column('customer_id', sa.BigInteger(), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('invoice_date', sa.DateTime(), nullable=True),
        sa.Column('due_date', sa.DateTime(), nullable=True),
        sa.Column('api_created', sa.DateTime(), nullable=True),
        _money('subtotal_amount'),
        _money('tax_amount'),
        _money('discount_amount'),
        _money('total_amount'),
        _money('balance'),
        _money('paid_amount'),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('receipt_number', sa.String(100), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('return_quantity', sa.Integer(), nullable=True),
        sa.Column('return_status', sa.String(50), nullable=True),
        sa.Column('source_type', sa.String(50), nullable=True),
        sa.Column('invoice_type', sa.String(50), nullable=True),
        sa.Column('terms', sa.String(100), nullable=True),
        sa.Column('memo', sa.Text(), nullable=True),
        sa.Column('is_tax_exempt', sa.Boolean(), nullable=True),
        sa.Column('data_sent_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('data_sent_by', sa.String(255), nullable=True),
        sa.Column('data_sent_at', sa.DateTime(), nullable=True),
        sa.Column('data_sent_notes', sa.Text(), nullable=True),
        sa.Column('ordered_by_provider_at', sa.DateTime(), nullable=True),
        sa.Column('raw_data_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('balance >= 0', name='ck_invoices_balance_non_negative'),
        sa.CheckConstraint('paid_amount >= 0', name='ck_invoices_paid_amount_non_negative'),
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'])
    op.create_index('ix_invoices_merchant_id', 'invoices', ['merchant_id'])
    op.create_index('ix_invoices_data_sent_status', 'invoices', ['data_sent_status'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('mx_payment_id', sa.BigInteger(), nullable=False, unique=True),
        sa.Column('merchant_id', sa.String(64), nullable=True),
        _money('amount', nullable=False),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('status', sa.String(50), nullable=True),
        sa.Column('transaction_date', sa.DateTime(), nullable=True),
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_code', sa.String(100), nullable=True),
        sa.Column('card_type', sa.String(50), nullable=True),
        sa.Column('card_last4', sa.String(4), nullable=True),
        sa.Column('auth_code', sa.String(50), nullable=True),
        sa.Column('auth_message', sa.String(255), nullable=True),
        sa.Column('response_code', sa.String(20), nullable=True),
        sa.Column('reference_number', sa.String(100), nullable=True),
        sa.Column('client_reference', sa.String(100), nullable=True),
        _money('tax_amount'),
        _money('surcharge_amount'),
        sa.Column('surcharge_label', sa.String(100), nullable=True),
        _money('refunded_amount'),
        _money('settled_amount'),
        sa.Column('tender_type', sa.String(50), nullable=True),
        sa.Column('transaction_type', sa.String(50), nullable=True),
        sa.Column('source', sa.String(50), nullable=True),
        sa.Column('batch', sa.String(50), nullable=True),
        sa.Column('mx_invoice_id', sa.BigInteger(), nullable=True),
        sa.Column('mx_invoice_number', sa.BigInteger(), nullable=True),
        sa.Column('invoice_id', sa.String(36), sa.ForeignKey('invoices.id'), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=True),
        sa.Column('product_category', sa.String(100), nullable=True),
        sa.Column('raw_data_json', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('amount >= 0', name='ck_transactions_amount_non_negative'),
        sa.CheckConstraint('refunded_amount >= 0', name='ck_transactions_refunded_amount_non_negative'),
        sa.CheckConstraint('settled_amount >= 0', name='ck_transactions_settled_amount_non_negative'),
    )
    op.create_index('ix_transactions_merchant_id', 'transactions', ['merchant_id'])
    op.create_index('ix_transactions_mx_invoice_id', 'transactions', ['mx_invoice_id'])
    op.create_index('ix_transactions_transaction_date', 'transactions', ['transaction_date'])
    op.create_index('ix_transactions_invoice_id', 'transactions', ['invoice_id'])

    op.create_table(
        'product_categories',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('merchant_id', sa.String(64), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('merchant_id', 'product_name', name='uq_product_categories_merchant_product'),
    )

    op.create_table(
        'sync_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('merchant_id', sa.String(64), nullable=True),
        sa.Column('sync_type', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='started'),
        sa.Column('records_processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('api_calls_made', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_processed_id', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('cancel_requested', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_sync_logs_started_at', 'sync_logs', ['started_at'])
    op.create_index('ix_sync_logs_status', 'sync_logs', ['status'])

    op.create_table(
        'merchant_configs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('merchant_id', sa.String(64), nullable=False, unique=True),
        sa.Column('consumer_key', sa.String(255), nullable=False),
        sa.Column('consumer_secret', sa.String(255), nullable=False),
        sa.Column('webhook_secret', sa.String(255), nullable=True),
        sa.Column('environment', sa.String(20), nullable=False, server_default='production'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('merchant_configs')

    op.drop_index('ix_sync_logs_status', table_name='sync_logs')
    op.drop_index('ix_sync_logs_started_at', table_name='sync_logs')
    op.drop_table('sync_logs')

    op.drop_table('product_categories')

    op.drop_index('ix_transactions_invoice_id', table_name='transactions')
    op.drop_index('ix_transactions_transaction_date', table_name='transactions')
    op.drop_index('ix_transactions_mx_invoice_id', table_name='transactions')
    op.drop_index('ix_transactions_merchant_id', table_name='transactions')
    op.drop_table('transactions')

    op.drop_index('ix_invoices_data_sent_status', table_name='invoices')
    op.drop_index('ix_invoices_merchant_id', table_name='invoices')
    op.drop_index('ix_invoices_invoice_number', table_name='invoices')
    op.drop_table('invoices')

"""Create order engine schema

Revision ID: 001_order_engine
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_order_engine'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade():
    """Create catalogue, quote/order, billing, stock and audit tables"""

    # ====================
    # PRODUCTS
    # ====================
    op.create_table(
        'products',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('sku', sa.String(50), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('price_per_sqm', sa.Numeric(14, 2), nullable=False),
        sa.Column('default_wastage_percent', sa.Numeric(6, 2), nullable=False),
        sa.Column('thickness', sa.Numeric(6, 2), nullable=True),
        sa.Column('current_stock', sa.Numeric(14, 3), nullable=False),
        sa.Column('reserved_stock', sa.Numeric(14, 3), nullable=False),
        sa.Column('reorder_point', sa.Numeric(14, 3), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_products_name', 'products', ['name'])
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)

    # ====================
    # CUSTOMERS
    # ====================
    op.create_table(
        'customers',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('company_name', sa.String(200), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('phone', sa.String(30), nullable=True),
        sa.Column('address', sa.Text, nullable=True),
        sa.Column('credit_limit', sa.Numeric(14, 2), nullable=False),
        sa.Column('credit_hold', sa.Boolean, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_customers_name', 'customers', ['name'])

    # ====================
    # QUOTES / ORDERS
    # ====================
    op.create_table(
        'quotes',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('quote_number', sa.String(30), nullable=False),
        sa.Column('order_number', sa.String(30), nullable=True),
        sa.Column('customer_id', sa.Uuid(), sa.ForeignKey('customers.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('customer_name', sa.String(200), nullable=True),
        sa.Column('sales_rep_id', sa.String(100), nullable=False),
        sa.Column('sales_rep_name', sa.String(200), nullable=False),
        sa.Column('quote_date', sa.Date, nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('discount_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('sub_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('tax', sa.Numeric(14, 2), nullable=False),
        sa.Column('grand_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('stock_reserved', sa.Boolean, nullable=False),
        sa.Column('stock_deducted', sa.Boolean, nullable=False),
        sa.Column('completion_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_quotes_quote_number', 'quotes', ['quote_number'], unique=True)
    op.create_index('ix_quotes_order_number', 'quotes', ['order_number'], unique=True)
    op.create_index('ix_quotes_status', 'quotes', ['status'])
    op.create_index('ix_quote_status_created', 'quotes', ['status', 'created_at'])
    op.create_index('ix_quote_customer_status', 'quotes', ['customer_id', 'status'])

    op.create_table(
        'quote_items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('quote_id', sa.Uuid(), sa.ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('width', sa.Numeric(10, 3), nullable=False),
        sa.Column('height', sa.Numeric(10, 3), nullable=False),
        sa.Column('pieces', sa.Integer, nullable=False),
        sa.Column('depth', sa.Numeric(6, 3), nullable=False),
        sa.Column('price_per_sqm', sa.Numeric(14, 2), nullable=False),
        sa.Column('wastage_percent', sa.Numeric(6, 2), nullable=False),
        sa.Column('discount_percent', sa.Numeric(6, 2), nullable=False),
        sa.Column('total_sqm', sa.Numeric(14, 3), nullable=False),
        sa.Column('raw_price', sa.Numeric(14, 2), nullable=False),
        sa.Column('final_price', sa.Numeric(14, 2), nullable=False),
        sa.Column('is_completed', sa.Boolean, nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
    )
    op.create_index('ix_quote_items_quote_id', 'quote_items', ['quote_id'])

    op.create_table(
        'quote_approval_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('quote_id', sa.Uuid(), sa.ForeignKey('quotes.id', ondelete='CASCADE'), nullable=False),
        sa.Column('actor_id', sa.String(100), nullable=False),
        sa.Column('actor_name', sa.String(200), nullable=False),
        sa.Column('actor_role', sa.String(50), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('from_status', sa.String(50), nullable=False),
        sa.Column('to_status', sa.String(50), nullable=False),
        sa.Column('comment', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_quote_approval_logs_quote_id', 'quote_approval_logs', ['quote_id'])
    op.create_index('ix_quote_approval_logs_created_at', 'quote_approval_logs', ['created_at'])

    # ====================
    # BILLING
    # ====================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('invoice_number', sa.String(30), nullable=False),
        sa.Column('quote_id', sa.Uuid(), sa.ForeignKey('quotes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('order_number', sa.String(30), nullable=True),
        sa.Column('customer_id', sa.Uuid(), sa.ForeignKey('customers.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('invoice_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(50), nullable=False),
        sa.Column('issue_date', sa.Date, nullable=False),
        sa.Column('due_date', sa.Date, nullable=False),
        sa.Column('net_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('amount_paid', sa.Numeric(14, 2), nullable=False),
        sa.Column('balance_due', sa.Numeric(14, 2), nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_by', sa.String(100), nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'], unique=True)
    op.create_index('ix_invoices_quote_id', 'invoices', ['quote_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoice_customer_status', 'invoices', ['customer_id', 'status'])
    op.create_index('ix_invoice_status_due', 'invoices', ['status', 'due_date'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('invoice_id', sa.Uuid(), sa.ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('quote_id', sa.Uuid(), sa.ForeignKey('quotes.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('method', sa.String(50), nullable=False),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('payment_date', sa.Date, nullable=False),
        sa.Column('recorded_by', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_payments_invoice_id', 'payments', ['invoice_id'])
    op.create_index('ix_payments_quote_id', 'payments', ['quote_id'])

    # ====================
    # STOCK LEDGER
    # ====================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('product_id', sa.Uuid(), sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('movement_type', sa.String(50), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('quote_id', sa.Uuid(), sa.ForeignKey('quotes.id', ondelete='SET NULL'), nullable=True),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.Column('actor_name', sa.String(200), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movement_product_created', 'stock_movements', ['product_id', 'created_at'])

    # ====================
    # AUDIT & SETTINGS
    # ====================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('actor_id', sa.String(100), nullable=True),
        sa.Column('actor_name', sa.String(200), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(100), nullable=True),
        sa.Column('old_values', sa.JSON, nullable=True),
        sa.Column('new_values', sa.JSON, nullable=True),
        sa.Column('reason', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('ix_audit_entity', 'audit_logs', ['entity_type', 'entity_id'])

    op.create_table(
        'app_settings',
        sa.Column('key', sa.String(100), primary_key=True),
        sa.Column('value', sa.String(500), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_by', sa.String(100), nullable=True),
    )


def downgrade():
    """Drop all order engine tables"""
    op.drop_table('app_settings')
    op.drop_table('audit_logs')
    op.drop_table('stock_movements')
    op.drop_table('payments')
    op.drop_table('invoices')
    op.drop_table('quote_approval_logs')
    op.drop_table('quote_items')
    op.drop_table('quotes')
    op.drop_table('customers')
    op.drop_table('products')

"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the transaction-core schema:
- products / discount_rules: catalog and automatic discounts
- suppliers / purchase_orders / purchase_order_lines: receiving
- stock_movements: append-only stock ledger (on-hand = SUM(quantity_delta))
- shifts / drawer_events: shift state machine and cash-drawer log
- transactions / transaction_lines / refunds / refund_lines: sales lifecycle
- idempotency_records: checkout dedupe by client key
- audit_events / document_sequences
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('margin_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'sku', name='uq_products_store_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_store_id', 'products', ['store_id'])
    op.create_index('ix_products_store_active', 'products', ['store_id', 'is_active'])

    op.create_table(
        'discount_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),  # PERCENT | FLAT
        sa.Column('percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('flat_cents', sa.Integer(), nullable=True),
        sa.Column('min_subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_discount_rules_store_id', 'discount_rules', ['store_id'])
    op.create_index('ix_discount_rules_is_active', 'discount_rules', ['is_active'])

    # ============================================================================
    # Receiving
    # ============================================================================
    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'purchase_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('created_by_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('received_by_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_number', name='uq_purchase_orders_store_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_orders_store_id', 'purchase_orders', ['store_id'])
    op.create_index('ix_purchase_orders_supplier_id', 'purchase_orders', ['supplier_id'])
    op.create_index('ix_purchase_orders_status', 'purchase_orders', ['status'])

    op.create_table(
        'purchase_order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('purchase_order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_ordered', sa.Integer(), nullable=False),
        sa.Column('quantity_received', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('purchase_order_id', 'product_id', name='uq_po_lines_po_product'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_purchase_order_lines_purchase_order_id', 'purchase_order_lines', ['purchase_order_id'])

    # ============================================================================
    # stock_movements: append-only ledger, never updated in place
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        # SALE -qty, VOID_REVERSAL +qty, REFUND_REVERSAL +qty, RECEIVE +qty
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=False),
        sa.Column('reference_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_reason', 'stock_movements', ['reason'])
    op.create_index('ix_stock_movements_occurred_at', 'stock_movements', ['occurred_at'])
    op.create_index('ix_stock_movements_store_product', 'stock_movements',
                    ['store_id', 'product_id', 'quantity_delta'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])

    # ============================================================================
    # Shifts
    # ============================================================================
    # open_slot is 1 while OPEN and NULL once CLOSED, so the unique constraint
    # allows one open shift per (store, cashier) and any number of closed ones.
    op.create_table(
        'shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('terminal_id', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('open_slot', sa.Integer(), nullable=True),
        sa.Column('opening_cash_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('closing_cash_cents', sa.Integer(), nullable=True),
        sa.Column('expected_cash_cents', sa.Integer(), nullable=True),
        sa.Column('variance_cents', sa.Integer(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'cashier_id', 'open_slot', name='uq_shifts_one_open'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_shifts_store_id', 'shifts', ['store_id'])
    op.create_index('ix_shifts_cashier_id', 'shifts', ['cashier_id'])
    op.create_index('ix_shifts_status', 'shifts', ['status'])
    op.create_index('ix_shifts_opened_at', 'shifts', ['opened_at'])
    op.create_index('ix_shifts_store_cashier_status', 'shifts', ['store_id', 'cashier_id', 'status'])

    # ============================================================================
    # Transactions
    # ============================================================================
    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('refunded_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tax_rate_percent', sa.Numeric(5, 2), nullable=False, server_default='0'),
        sa.Column('pricing_mode', sa.String(length=16), nullable=False, server_default='AUTO'),
        sa.Column('pricing_note', sa.String(length=255), nullable=True),
        sa.Column('applied_rules', sa.JSON(), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('payment_reference', sa.String(length=128), nullable=True),
        sa.Column('cash_received_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('change_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('terminal_id', sa.String(length=64), nullable=True),
        sa.Column('idempotency_key', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.Column('voided_by_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_number', name='uq_transactions_store_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transactions_store_id', 'transactions', ['store_id'])
    op.create_index('ix_transactions_status', 'transactions', ['status'])
    op.create_index('ix_transactions_cashier_id', 'transactions', ['cashier_id'])
    op.create_index('ix_transactions_shift_id', 'transactions', ['shift_id'])
    op.create_index('ix_transactions_store_status_created', 'transactions',
                    ['store_id', 'status', 'created_at'])
    op.create_index('ix_transactions_idempotency', 'transactions',
                    ['store_id', 'cashier_id', 'idempotency_key'])

    op.create_table(
        'transaction_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('line_due_cents', sa.Integer(), nullable=False),
        sa.Column('refunded_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('restocked_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', 'line_number', name='uq_transaction_lines_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transaction_lines_transaction_id', 'transaction_lines', ['transaction_id'])
    op.create_index('ix_transaction_lines_product_id', 'transaction_lines', ['product_id'])

    op.create_table(
        'drawer_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('affects_cash', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_drawer_events_shift_id', 'drawer_events', ['shift_id'])
    op.create_index('ix_drawer_events_store_id', 'drawer_events', ['store_id'])
    op.create_index('ix_drawer_events_event_type', 'drawer_events', ['event_type'])
    op.create_index('ix_drawer_events_transaction_id', 'drawer_events', ['transaction_id'])
    op.create_index('ix_drawer_events_occurred_at', 'drawer_events', ['occurred_at'])
    op.create_index('ix_drawer_events_shift_occurred', 'drawer_events', ['shift_id', 'occurred_at'])

    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_number', name='uq_refunds_store_docnum'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_refunds_store_id', 'refunds', ['store_id'])
    op.create_index('ix_refunds_transaction_id', 'refunds', ['transaction_id'])
    op.create_index('ix_refunds_shift_id', 'refunds', ['shift_id'])

    op.create_table(
        'refund_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('refund_id', sa.Integer(), nullable=False),
        sa.Column('transaction_line_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('restocked_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['refund_id'], ['refunds.id'], ),
        sa.ForeignKeyConstraint(['transaction_line_id'], ['transaction_lines.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_refund_lines_refund_id', 'refund_lines', ['refund_id'])

    # ============================================================================
    # Idempotency, audit, numbering
    # ============================================================================
    op.create_table(
        'idempotency_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('cashier_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('transaction_id', sa.Integer(), nullable=True),
        sa.Column('response', sa.JSON(), nullable=True),
        sa.Column('error_code', sa.String(length=64), nullable=True),
        sa.Column('error_message', sa.String(length=255), nullable=True),
        sa.Column('error_details', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'cashier_id', 'key', name='uq_idempotency_scope_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_idempotency_records_expires_at', 'idempotency_records', ['expires_at'])

    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('actor_role', sa.String(length=16), nullable=True),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('detail', sa.JSON(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_action', 'audit_events', ['action'])
    op.create_index('ix_audit_events_store_occurred', 'audit_events', ['store_id', 'occurred_at'])
    op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'])

    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_type', name='uq_doc_sequences_store_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_store_id', 'document_sequences', ['store_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('document_sequences')
    op.drop_table('audit_events')
    op.drop_table('idempotency_records')
    op.drop_table('refund_lines')
    op.drop_table('refunds')
    op.drop_table('drawer_events')
    op.drop_table('transaction_lines')
    op.drop_table('transactions')
    op.drop_table('shifts')
    op.drop_table('stock_movements')
    op.drop_table('purchase_order_lines')
    op.drop_table('purchase_orders')
    op.drop_table('suppliers')
    op.drop_table('discount_rules')
    op.drop_table('products')

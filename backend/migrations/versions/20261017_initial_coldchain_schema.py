"""Initial cold-chain schema

Revision ID: 20261017_initial
Revises:
Create Date: 2026-10-17

This migration adds:
1. Sites (tenant boundary)
2. Cold rooms, products and the append-only stock movement ledger
3. Rentable assets: cold boxes, cold plates, tricycles
4. Orders and order items
5. Rentals
6. Invoices, invoice items and the per-site/per-year invoice sequence
7. Payments
8. Audit log
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261017_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
    ]


def _asset_table(name, identifier_column, extra_column):
    op.create_table(name,
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        identifier_column,
        extra_column,
        sa.Column('status', sa.String(length=16), nullable=False, server_default='AVAILABLE'),
        sa.Column('daily_rate', sa.Numeric(14, 2), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(identifier_column.name),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table(name, schema=None) as batch_op:
        batch_op.create_index(batch_op.f(f'ix_{name}_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f(f'ix_{name}_status'), ['status'], unique=False)


def upgrade():
    # ==========================================================================
    # 1. SITES
    # ==========================================================================
    op.create_table('sites',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 2. COLD ROOMS, PRODUCTS, STOCK LEDGER
    # ==========================================================================
    op.create_table('cold_rooms',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('total_capacity_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('used_capacity_kg', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='AVAILABLE'),
        sa.Column('daily_rate', sa.Numeric(14, 2), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('used_capacity_kg >= 0 AND used_capacity_kg <= total_capacity_kg', name='ck_cold_rooms_capacity'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cold_rooms', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cold_rooms_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cold_rooms_status'), ['status'], unique=False)
        batch_op.create_index('ix_cold_rooms_site_status', ['site_id', 'status'], unique=False)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('cold_room_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False, server_default='kg'),
        sa.Column('selling_price_per_unit', sa.Numeric(14, 2), nullable=False),
        sa.Column('quantity_kg', sa.Numeric(14, 3), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OUT_OF_STOCK'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('quantity_kg >= 0', name='ck_products_quantity_non_negative'),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['cold_room_id'], ['cold_rooms.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('products', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_products_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_products_cold_room_id'), ['cold_room_id'], unique=False)
        batch_op.create_index('ix_products_site_status', ['site_id', 'status'], unique=False)

    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('cold_room_id', sa.Integer(), nullable=False),
        sa.Column('quantity_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('reversal_of_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('quantity_kg > 0', name='ck_stock_movements_positive'),
        sa.CheckConstraint("direction IN ('IN', 'OUT')", name='ck_stock_movements_direction'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['cold_room_id'], ['cold_rooms.id'], ),
        sa.ForeignKeyConstraint(['reversal_of_id'], ['stock_movements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reversal_of_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_movements_product_id'), ['product_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_cold_room_id'), ['cold_room_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_movements_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_stock_movements_product_created', ['product_id', 'created_at'], unique=False)

    # ==========================================================================
    # 3. RENTABLE ASSETS
    # ==========================================================================
    _asset_table(
        'cold_boxes',
        sa.Column('identification_number', sa.String(length=64), nullable=False),
        sa.Column('size_liters', sa.Integer(), nullable=True),
    )
    _asset_table(
        'cold_plates',
        sa.Column('identification_number', sa.String(length=64), nullable=False),
        sa.Column('cooling_temperature', sa.Numeric(6, 2), nullable=True),
    )
    _asset_table(
        'tricycles',
        sa.Column('plate_number', sa.String(length=32), nullable=False),
        sa.Column('capacity', sa.String(length=64), nullable=True),
    )

    # ==========================================================================
    # 4. ORDERS
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('delivery_address', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='REQUESTED'),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.String(length=255), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_client_id'), ['client_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_status'), ['status'], unique=False)
        batch_op.create_index('ix_orders_site_status_created', ['site_id', 'status', 'created_at'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_kg', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(14, 2), nullable=False),
        sa.Column('subtotal', sa.Numeric(14, 2), nullable=False),
        sa.CheckConstraint('quantity_kg > 0', name='ck_order_items_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_items_order_id'), ['order_id'], unique=False)

    # ==========================================================================
    # 5. RENTALS
    # ==========================================================================
    op.create_table('rentals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('asset_type', sa.String(length=16), nullable=False),
        sa.Column('cold_box_id', sa.Integer(), nullable=True),
        sa.Column('cold_plate_id', sa.Integer(), nullable=True),
        sa.Column('tricycle_id', sa.Integer(), nullable=True),
        sa.Column('cold_room_id', sa.Integer(), nullable=True),
        sa.Column('rental_start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('rental_end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('estimated_fee', sa.Numeric(14, 2), nullable=False),
        sa.Column('actual_fee', sa.Numeric(14, 2), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='REQUESTED'),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint(
            '(CASE WHEN cold_box_id IS NULL THEN 0 ELSE 1 END)'
            ' + (CASE WHEN cold_plate_id IS NULL THEN 0 ELSE 1 END)'
            ' + (CASE WHEN tricycle_id IS NULL THEN 0 ELSE 1 END)'
            ' + (CASE WHEN cold_room_id IS NULL THEN 0 ELSE 1 END) = 1',
            name='ck_rentals_single_asset',
        ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.ForeignKeyConstraint(['cold_box_id'], ['cold_boxes.id'], ),
        sa.ForeignKeyConstraint(['cold_plate_id'], ['cold_plates.id'], ),
        sa.ForeignKeyConstraint(['tricycle_id'], ['tricycles.id'], ),
        sa.ForeignKeyConstraint(['cold_room_id'], ['cold_rooms.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rentals', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_rentals_client_id'), ['client_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rentals_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rentals_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_rentals_cold_box_id'), ['cold_box_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rentals_cold_plate_id'), ['cold_plate_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rentals_tricycle_id'), ['tricycle_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rentals_cold_room_id'), ['cold_room_id'], unique=False)
        batch_op.create_index('ix_rentals_site_status', ['site_id', 'status'], unique=False)

    # ==========================================================================
    # 6. INVOICES
    # ==========================================================================
    op.create_table('invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('rental_id', sa.Integer(), nullable=True),
        sa.Column('client_id', sa.Integer(), nullable=False),
        sa.Column('site_id', sa.Integer(), nullable=False),
        sa.Column('subtotal', sa.Numeric(14, 2), nullable=False),
        sa.Column('tax_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='UNPAID'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('void_reason', sa.String(length=255), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('(order_id IS NULL) <> (rental_id IS NULL)', name='ck_invoices_single_source'),
        sa.CheckConstraint('paid_amount >= 0', name='ck_invoices_paid_non_negative'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['rental_id'], ['rentals.id'], ),
        sa.ForeignKeyConstraint(['site_id'], ['sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number'),
        sa.UniqueConstraint('order_id'),
        sa.UniqueConstraint('rental_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('invoices', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_invoices_client_id'), ['client_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoices_site_id'), ['site_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_invoices_status'), ['status'], unique=False)
        batch_op.create_index('ix_invoices_site_status_created', ['site_id', 'status', 'created_at'], unique=False)

    op.create_table('invoice_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('unit_price', sa.Numeric(14, 2), nullable=False),
        sa.Column('subtotal', sa.Numeric(14, 2), nullable=False),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('invoice_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_invoice_items_invoice_id'), ['invoice_id'], unique=False)

    op.create_table('invoice_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('prefix', sa.String(length=160), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('prefix', name='uq_invoice_sequences_prefix'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 7. PAYMENTS
    # ==========================================================================
    op.create_table('payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False, server_default='MOBILE_MONEY'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('phone_number', sa.String(length=32), nullable=True),
        sa.Column('gateway_transaction_ref', sa.String(length=64), nullable=True),
        sa.Column('failure_reason', sa.String(length=255), nullable=True),
        sa.Column('initiated_by', sa.Integer(), nullable=True),
        sa.Column('marked_paid_by', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('amount > 0', name='ck_payments_positive'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('gateway_transaction_ref'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payments_invoice_id'), ['invoice_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_created_at'), ['created_at'], unique=False)

    # ==========================================================================
    # 8. AUDIT LOG
    # ==========================================================================
    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_logs', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_logs_actor_id'), ['actor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_logs_action'), ['action'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_logs_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_audit_logs_entity', ['entity_type', 'entity_id'], unique=False)


def downgrade():
    for table in (
        'audit_logs',
        'payments',
        'invoice_sequences',
        'invoice_items',
        'invoices',
        'rentals',
        'order_items',
        'orders',
        'tricycles',
        'cold_plates',
        'cold_boxes',
        'stock_movements',
        'products',
        'cold_rooms',
        'sites',
    ):
        op.drop_table(table)

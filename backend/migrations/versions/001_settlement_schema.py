"""
Alembic migration: Create catalog, order, inventory ledger and payment tables.

Creates the read-mostly catalog tables, orders with their items and
append-only status history, the append-only inventory ledger and the
payment records used for settlement. Uniqueness of order numbers,
storefront order ids and payment transaction ids backs the idempotency
of order ingestion and settlement.

Revision ID: 001
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ORDER_STATUS = postgresql.ENUM(
    'pending', 'processing', 'shipped', 'delivered', 'cancelled', 'refunded',
    name='order_status',
    create_type=False,
)
ORDER_PAYMENT_STATUS = postgresql.ENUM(
    'pending', 'paid', 'failed', 'refunded',
    name='order_payment_status',
    create_type=False,
)
INVENTORY_CHANGE_TYPE = postgresql.ENUM(
    'manual', 'order', 'return', 'adjustment', 'sync',
    name='inventory_change_type',
    create_type=False,
)
PAYMENT_TYPE = postgresql.ENUM(
    'commission', 'subscription', 'refund', 'other',
    name='payment_type',
    create_type=False,
)
PAYMENT_RECORD_STATUS = postgresql.ENUM(
    'pending', 'completed', 'failed', 'refunded',
    name='payment_record_status',
    create_type=False,
)
PAYMENT_METHOD = postgresql.ENUM(
    'credit_card', 'bank_transfer', 'paypal', 'system', 'other',
    name='payment_method',
    create_type=False,
)

ENUMS = (
    ORDER_STATUS,
    ORDER_PAYMENT_STATUS,
    INVENTORY_CHANGE_TYPE,
    PAYMENT_TYPE,
    PAYMENT_RECORD_STATUS,
    PAYMENT_METHOD,
)


def _id_column() -> sa.Column:
    return sa.Column(
        'id',
        postgresql.UUID(as_uuid=True),
        nullable=False,
        server_default=sa.text('gen_random_uuid()'),
        comment='Unique identifier for the record',
    )


def _created_at() -> sa.Column:
    return sa.Column(
        'created_at',
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text('now()'),
        comment='Timestamp when record was created',
    )


def _updated_at() -> sa.Column:
    return sa.Column(
        'updated_at',
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text('now()'),
        comment='Timestamp when record was last updated',
    )


def _money(name: str, nullable: bool = False, default: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.Numeric(precision=12, scale=2),
        nullable=nullable,
        server_default=sa.text('0') if default else None,
    )


def upgrade() -> None:
    """
    Upgrade database schema to the settlement model.

    Creates enum types first, then tables in foreign key order.
    """
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    # Catalog
    op.create_table(
        'suppliers',
        _id_column(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('company_name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id', name='pk_suppliers'),
    )
    op.create_index('ix_suppliers_user_id', 'suppliers', ['user_id'])

    op.create_table(
        'sourcing_agents',
        _id_column(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column(
            'commission_rate',
            sa.Numeric(precision=5, scale=2),
            nullable=True,
            comment='Commission percentage earned on agent-owned products',
        ),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id', name='pk_sourcing_agents'),
        sa.CheckConstraint(
            'commission_rate IS NULL OR (commission_rate >= 0 AND commission_rate <= 100)',
            name='ck_sourcing_agents_commission_rate',
        ),
    )
    op.create_index('ix_sourcing_agents_user_id', 'sourcing_agents', ['user_id'])

    op.create_table(
        'dropshippers',
        _id_column(),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('store_name', sa.String(length=255), nullable=False),
        sa.Column(
            'storefront_id',
            sa.String(length=255),
            nullable=True,
            comment='Storefront domain used to match incoming webhooks',
        ),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id', name='pk_dropshippers'),
        sa.UniqueConstraint('storefront_id', name='uq_dropshippers_storefront_id'),
    )
    op.create_index('ix_dropshippers_user_id', 'dropshippers', ['user_id'])

    op.create_table(
        'products',
        _id_column(),
        sa.Column('supplier_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('sourcing_agent_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=True),
        _money('price'),
        _money('cost_price', nullable=True),
        sa.Column(
            'commission_rate',
            sa.Numeric(precision=5, scale=2),
            nullable=False,
            server_default=sa.text('3'),
            comment='Platform commission percentage',
        ),
        sa.Column('inventory_quantity', sa.Integer(), nullable=True),
        sa.Column('external_product_id', sa.String(length=255), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.ForeignKeyConstraint(
            ['supplier_id'], ['suppliers.id'],
            name='fk_products_supplier_id', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['sourcing_agent_id'], ['sourcing_agents.id'],
            name='fk_products_sourcing_agent_id', ondelete='RESTRICT',
        ),
        sa.CheckConstraint(
            '(supplier_id IS NULL) <> (sourcing_agent_id IS NULL)',
            name='ck_products_single_owner',
        ),
        sa.CheckConstraint('price >= 0', name='ck_products_price_non_negative'),
        sa.CheckConstraint(
            'commission_rate >= 0 AND commission_rate <= 100',
            name='ck_products_commission_rate',
        ),
    )
    op.create_index('ix_products_supplier_id', 'products', ['supplier_id'])
    op.create_index('ix_products_sourcing_agent_id', 'products', ['sourcing_agent_id'])
    op.create_index('ix_products_external_product_id', 'products', ['external_product_id'])

    op.create_table(
        'product_variants',
        _id_column(),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=True),
        _money('price'),
        _money('cost_price', nullable=True),
        sa.Column('inventory_quantity', sa.Integer(), nullable=True),
        sa.Column('external_variant_id', sa.String(length=255), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id', name='pk_product_variants'),
        sa.ForeignKeyConstraint(
            ['product_id'], ['products.id'],
            name='fk_product_variants_product_id', ondelete='CASCADE',
        ),
        sa.CheckConstraint('price >= 0', name='ck_product_variants_price_non_negative'),
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])
    op.create_index(
        'ix_product_variants_external',
        'product_variants',
        ['product_id', 'external_variant_id'],
    )

    # Orders
    op.create_table(
        'orders',
        _id_column(),
        sa.Column(
            'order_number',
            sa.String(length=50),
            nullable=False,
            comment='Human-readable order number',
        ),
        sa.Column('dropshipper_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('supplier_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            'external_order_id',
            sa.String(length=255),
            nullable=True,
            comment='Storefront order id used for webhook deduplication',
        ),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column(
            'shipping_address',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _money('subtotal'),
        _money('shipping_cost', default=True),
        _money('tax', default=True),
        _money('total'),
        _money('commission', default=True),
        _money('sourcing_agent_commission', default=True),
        sa.Column(
            'payout_amount',
            sa.Numeric(precision=12, scale=2),
            nullable=False,
            comment='Amount owed to the supplier after commissions',
        ),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', ORDER_STATUS, nullable=False, server_default='pending'),
        sa.Column(
            'payment_status',
            ORDER_PAYMENT_STATUS,
            nullable=False,
            server_default='pending',
        ),
        sa.Column('tracking_number', sa.String(length=255), nullable=True),
        sa.Column('tracking_url', sa.String(length=1000), nullable=True),
        sa.Column('shipping_method', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default=sa.text('1')),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id', name='pk_orders'),
        sa.ForeignKeyConstraint(
            ['dropshipper_id'], ['dropshippers.id'],
            name='fk_orders_dropshipper_id', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['supplier_id'], ['suppliers.id'],
            name='fk_orders_supplier_id', ondelete='RESTRICT',
        ),
        sa.UniqueConstraint('external_order_id', name='uq_orders_external_order_id'),
        sa.CheckConstraint(
            'subtotal >= 0 AND shipping_cost >= 0 AND tax >= 0 AND total >= 0',
            name='ck_orders_amounts_non_negative',
        ),
        sa.CheckConstraint(
            'total = subtotal + shipping_cost + tax',
            name='ck_orders_total_balances',
        ),
        sa.CheckConstraint(
            'payout_amount = total - commission - sourcing_agent_commission',
            name='ck_orders_payout_balances',
        ),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_dropshipper_id', 'orders', ['dropshipper_id'])
    op.create_index('ix_orders_supplier_id', 'orders', ['supplier_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_supplier_created', 'orders', ['supplier_id', 'created_at'])
    op.create_index('ix_orders_dropshipper_created', 'orders', ['dropshipper_id', 'created_at'])

    op.create_table(
        'order_items',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('variant_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('external_product_id', sa.String(length=255), nullable=True),
        sa.Column('external_variant_id', sa.String(length=255), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=100), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        _money('price'),
        _money('total'),
        sa.Column('supplier_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('sourcing_agent_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('commission_rate', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column(
            'sourcing_agent_commission_rate',
            sa.Numeric(precision=5, scale=2),
            nullable=True,
        ),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id', name='pk_order_items'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'],
            name='fk_order_items_order_id', ondelete='CASCADE',
        ),
        sa.ForeignKeyConstraint(
            ['product_id'], ['products.id'],
            name='fk_order_items_product_id', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['variant_id'], ['product_variants.id'],
            name='fk_order_items_variant_id', ondelete='RESTRICT',
        ),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('price >= 0', name='ck_order_items_price_non_negative'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])

    op.create_table(
        'order_status_history',
        _id_column(),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            'position',
            sa.Integer(),
            nullable=False,
            comment="Zero-based position in the order's history",
        ),
        sa.Column('status', ORDER_STATUS, nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('changed_by', postgresql.UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id', name='pk_order_status_history'),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'],
            name='fk_order_status_history_order_id', ondelete='CASCADE',
        ),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    # Inventory ledger
    op.create_table(
        'inventory_ledger_entries',
        _id_column(),
        sa.Column('product_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('variant_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('previous_quantity', sa.Integer(), nullable=False),
        sa.Column('new_quantity', sa.Integer(), nullable=False),
        sa.Column('change_amount', sa.Integer(), nullable=False),
        sa.Column('change_type', INVENTORY_CHANGE_TYPE, nullable=False),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id', name='pk_inventory_ledger_entries'),
        sa.ForeignKeyConstraint(
            ['product_id'], ['products.id'],
            name='fk_inventory_ledger_product_id', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['variant_id'], ['product_variants.id'],
            name='fk_inventory_ledger_variant_id', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'],
            name='fk_inventory_ledger_order_id', ondelete='RESTRICT',
        ),
        sa.CheckConstraint(
            'change_amount = new_quantity - previous_quantity',
            name='ck_inventory_ledger_change_amount',
        ),
    )
    op.create_index(
        'ix_inventory_ledger_product_created',
        'inventory_ledger_entries',
        ['product_id', 'created_at'],
    )
    op.create_index(
        'ix_inventory_ledger_variant_created',
        'inventory_ledger_entries',
        ['variant_id', 'created_at'],
    )
    op.create_index(
        'ix_inventory_ledger_entries_order_id',
        'inventory_ledger_entries',
        ['order_id'],
    )

    # Payments
    op.create_table(
        'payments',
        _id_column(),
        sa.Column('type', PAYMENT_TYPE, nullable=False),
        _money('amount'),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', PAYMENT_RECORD_STATUS, nullable=False, server_default='pending'),
        sa.Column('payment_method', PAYMENT_METHOD, nullable=False, server_default='system'),
        sa.Column('supplier_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('sourcing_agent_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('order_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('subscription_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('transaction_id', sa.String(length=255), nullable=False),
        sa.Column(
            'details',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.ForeignKeyConstraint(
            ['supplier_id'], ['suppliers.id'],
            name='fk_payments_supplier_id', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['sourcing_agent_id'], ['sourcing_agents.id'],
            name='fk_payments_sourcing_agent_id', ondelete='RESTRICT',
        ),
        sa.ForeignKeyConstraint(
            ['order_id'], ['orders.id'],
            name='fk_payments_order_id', ondelete='RESTRICT',
        ),
        sa.UniqueConstraint('transaction_id', name='uq_payments_transaction_id'),
        sa.CheckConstraint(
            '(supplier_id IS NULL) <> (sourcing_agent_id IS NULL)',
            name='ck_payments_single_payee',
        ),
    )
    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_subscription_id', 'payments', ['subscription_id'])
    op.create_index('ix_payments_supplier_created', 'payments', ['supplier_id', 'created_at'])
    op.create_index('ix_payments_agent_created', 'payments', ['sourcing_agent_id', 'created_at'])


def downgrade() -> None:
    """
    Downgrade database schema by dropping all settlement tables.

    Drops tables in reverse foreign key order, then the enum types.
    """
    op.drop_table('payments')
    op.drop_table('inventory_ledger_entries')
    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('dropshippers')
    op.drop_table('sourcing_agents')
    op.drop_table('suppliers')

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)

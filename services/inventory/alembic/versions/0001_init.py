from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

QUANTITY = sa.Numeric(18, 4, asdecimal=False)

def upgrade():
    op.create_table(
        'inventory',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('merchant_id', sa.String(64), nullable=False, index=True),
        sa.Column('store_id', sa.String(64), nullable=True),
        sa.Column('product_id', sa.String(64), nullable=False, index=True),
        sa.Column('variant_id', sa.String(64), nullable=True),
        sa.Column('quantity', QUANTITY, nullable=False, server_default='0'),
        sa.Column('reserved_quantity', QUANTITY, nullable=False, server_default='0'),
        sa.Column('reorder_point', QUANTITY, nullable=False, server_default='0'),
        sa.Column('reorder_quantity', QUANTITY, nullable=False, server_default='0'),
        sa.Column('last_counted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            'merchant_id', 'store_id', 'product_id', 'variant_id',
            name='uq_inventory_stock_key',
            postgresql_nulls_not_distinct=True,
        ),
        sa.CheckConstraint('quantity >= 0', name='ck_inventory_quantity_nonneg'),
    )
    op.create_table(
        'inventory_movements',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('merchant_id', sa.String(64), nullable=False),
        sa.Column('store_id', sa.String(64), nullable=True),
        sa.Column('product_id', sa.String(64), nullable=False),
        sa.Column('variant_id', sa.String(64), nullable=True),
        sa.Column('movement_type', sa.String(30), nullable=False),
        sa.Column('quantity_change', QUANTITY, nullable=False),
        sa.Column('quantity_before', QUANTITY, nullable=False),
        sa.Column('quantity_after', QUANTITY, nullable=False),
        sa.Column('reference_type', sa.String(50), nullable=True),
        sa.Column('reference_id', sa.String(100), nullable=True),
        sa.Column('notes', sa.String(500), nullable=False, server_default=''),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, index=True),
    )
    op.create_index(
        'ix_inventory_movements_key', 'inventory_movements',
        ['merchant_id', 'product_id', 'store_id', 'variant_id'],
    )
    op.create_index(
        'ix_inventory_movements_reference', 'inventory_movements',
        ['reference_type', 'reference_id'],
    )

def downgrade():
    op.drop_table('inventory_movements')
    op.drop_table('inventory')

"""initial stash ledger schema

Revision ID: b7c1d2e3f4a5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete stashbook schema:
- products, containers: reference data
- stock_movements: append-only movement ledger
- sequence_counters: per-folder deposit sequences
- deposit_records: deposit approval workflow
- weekly_paid_aggregates / weekly_paid_entries: derived weekly paid totals
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c1d2e3f4a5'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ============================================================================
    # products: reference data the ledger points at
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('image_url', sa.String(length=1024), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])

    # ============================================================================
    # containers: named stock buckets ("baús")
    # ============================================================================
    op.create_table(
        'containers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_containers_name'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # stock_movements: append-only ledger
    # No FK on container_id / deposit_record_id: deleting either must leave
    # the ledger untouched (container deletion is gated by a reverse count).
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=8), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('container_id', sa.Integer(), nullable=True),
        sa.Column('container_name', sa.String(length=128), nullable=True),
        sa.Column('actor_uid', sa.String(length=128), nullable=False),
        sa.Column('actor_name', sa.String(length=255), nullable=True),
        sa.Column('actor_role_level', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('deposit_record_id', sa.Integer(), nullable=True),
        sa.Column('transfer_ref', sa.String(length=32), nullable=True),
        sa.Column('paired_movement_id', sa.Integer(), nullable=True),
        sa.Column('reverses_movement_id', sa.Integer(), nullable=True),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_stock_movements_quantity_positive'),
        sa.CheckConstraint("type IN ('in', 'out')", name='ck_stock_movements_type'),
        sa.UniqueConstraint('idempotency_key', name='uq_stock_movements_idempotency_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_reason', 'stock_movements', ['reason'])
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_container_id', 'stock_movements', ['container_id'])
    op.create_index('ix_stock_movements_deposit_record_id', 'stock_movements', ['deposit_record_id'])
    op.create_index('ix_stock_movements_transfer_ref', 'stock_movements', ['transfer_ref'])
    op.create_index('ix_stock_movements_reverses_movement_id', 'stock_movements', ['reverses_movement_id'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_stock_movements_product_container', 'stock_movements', ['product_id', 'container_id'])
    op.create_index(
        'ix_stock_movements_product_reason_created',
        'stock_movements',
        ['product_id', 'reason', 'created_at'],
    )

    # ============================================================================
    # sequence_counters: last issued deposit sequence per folder
    # ============================================================================
    op.create_table(
        'sequence_counters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope_key', sa.String(length=32), nullable=False),
        sa.Column('last_value', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('scope_key', name='uq_sequence_counters_scope'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # deposit_records: approval workflow
    # ============================================================================
    op.create_table(
        'deposit_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deposit_identifier', sa.String(length=32), nullable=False),
        sa.Column('deposit_seq', sa.Integer(), nullable=False),
        sa.Column('folder_number', sa.String(length=16), nullable=False),
        sa.Column('created_by_uid', sa.String(length=128), nullable=False),
        sa.Column('created_by_name', sa.String(length=255), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('efedrina', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('po_aluminio', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('embalagem_plastica', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('folhas_papel', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('valor_dinheiro', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('note', sa.String(length=500), nullable=True),
        sa.Column('proof_url', sa.String(length=1024), nullable=True),
        sa.Column('proof_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('meta_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('manufactured', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('confirmed_flag', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('refused', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('confirmed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('meta_paid_week', sa.String(length=10), nullable=True),
        sa.Column('last_status_by_uid', sa.String(length=128), nullable=True),
        sa.Column('last_status_by_name', sa.String(length=255), nullable=True),
        sa.Column('last_status_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deposit_identifier', name='uq_deposit_records_identifier'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_deposit_records_created_by_uid', 'deposit_records', ['created_by_uid'])
    op.create_index('ix_deposit_records_product_id', 'deposit_records', ['product_id'])
    op.create_index('ix_deposit_records_created_at', 'deposit_records', ['created_at'])
    op.create_index(
        'ix_deposit_records_creator_created',
        'deposit_records',
        ['created_by_uid', 'created_at'],
    )

    # ============================================================================
    # weekly_paid_*: derived paid totals per member and ISO week
    # ============================================================================
    op.create_table(
        'weekly_paid_aggregates',
        sa.Column('id', sa.String(length=160), nullable=False),
        sa.Column('user_uid', sa.String(length=128), nullable=False),
        sa.Column('iso_week', sa.String(length=10), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_weekly_paid_aggregates_user_uid', 'weekly_paid_aggregates', ['user_uid'])
    op.create_index('ix_weekly_paid_aggregates_iso_week', 'weekly_paid_aggregates', ['iso_week'])

    op.create_table(
        'weekly_paid_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('aggregate_id', sa.String(length=160), nullable=False),
        sa.Column('resource_key', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['aggregate_id'], ['weekly_paid_aggregates.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('aggregate_id', 'resource_key', name='uq_weekly_paid_entries_key'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_weekly_paid_entries_aggregate_id', 'weekly_paid_entries', ['aggregate_id'])


def downgrade():
    op.drop_table('weekly_paid_entries')
    op.drop_table('weekly_paid_aggregates')
    op.drop_table('deposit_records')
    op.drop_table('sequence_counters')
    op.drop_table('stock_movements')
    op.drop_table('containers')
    op.drop_table('products')

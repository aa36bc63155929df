"""initial_schema

Revision ID: 2026_10_19_120000
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '2026_10_19_120000'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'indexers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('owner', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('last_run', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_indexers_status_last_run', 'indexers', ['status', 'last_run'])
    op.create_index('ix_indexers_owner', 'indexers', ['owner'])

    op.create_table(
        'indexer_configs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('indexer_id', sa.Integer(), nullable=False),
        sa.Column('key', sa.Text(), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['indexer_id'], ['indexers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('indexer_id', 'key', name='uq_indexer_configs_indexer_key'),
    )

    op.create_table(
        'indexer_jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('indexer_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['indexer_id'], ['indexers.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_indexer_jobs_indexer_created', 'indexer_jobs', ['indexer_id', 'created_at'])

    op.create_table(
        'blocks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.Column('block_hash', sa.Text(), nullable=False),
        sa.Column('parent_hash', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('block_number', name='uq_blocks_block_number'),
    )
    op.create_index('ix_blocks_block_hash', 'blocks', ['block_hash'])

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('block_id', sa.Integer(), nullable=False),
        sa.Column('tx_hash', sa.Text(), nullable=False),
        sa.Column('transaction_index', sa.Integer(), nullable=False),
        sa.Column('from_address', sa.Text(), nullable=False),
        sa.Column('to_address', sa.Text(), nullable=True),
        sa.Column('value', sa.Numeric(78, 0), nullable=False),
        sa.Column('gas_price', sa.Numeric(78, 0), nullable=True),
        sa.Column('gas_used', sa.BigInteger(), nullable=True),
        sa.Column('status', sa.Integer(), nullable=True),
        sa.Column('input', sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(['block_id'], ['blocks.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tx_hash', name='uq_transactions_tx_hash'),
    )
    op.create_index('ix_transactions_block_id', 'transactions', ['block_id'])
    op.create_index('ix_transactions_from_address', 'transactions', ['from_address'])
    op.create_index('ix_transactions_to_address', 'transactions', ['to_address'])

    op.create_table(
        'events',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('transaction_id', sa.Integer(), nullable=False),
        sa.Column('address', sa.Text(), nullable=False),
        sa.Column('event_name', sa.Text(), nullable=False),
        sa.Column('topics', sa.JSON(), nullable=False),
        sa.Column('data', sa.Text(), nullable=False),
        sa.Column('log_index', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['transaction_id'], ['transactions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_id', 'log_index', name='uq_events_transaction_log_index'),
    )
    op.create_index('ix_events_address_event_name', 'events', ['address', 'event_name'])

    op.create_table(
        'token_transfers',
        sa.Column('event_id', sa.Text(), nullable=False),
        sa.Column('token_address', sa.Text(), nullable=False),
        sa.Column('from_address', sa.Text(), nullable=False),
        sa.Column('to_address', sa.Text(), nullable=False),
        sa.Column('value', sa.Numeric(78, 0), nullable=False),
        sa.Column('transaction_hash', sa.Text(), nullable=False),
        sa.Column('block_number', sa.BigInteger(), nullable=False),
        sa.ForeignKeyConstraint(['event_id'], ['events.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('event_id'),
    )
    op.create_index('ix_token_transfers_token_block', 'token_transfers', ['token_address', 'block_number'])
    op.create_index('ix_token_transfers_from', 'token_transfers', ['from_address'])
    op.create_index('ix_token_transfers_to', 'token_transfers', ['to_address'])


def downgrade() -> None:
    op.drop_table('token_transfers')
    op.drop_table('events')
    op.drop_table('transactions')
    op.drop_table('blocks')
    op.drop_table('indexer_jobs')
    op.drop_table('indexer_configs')
    op.drop_table('indexers')

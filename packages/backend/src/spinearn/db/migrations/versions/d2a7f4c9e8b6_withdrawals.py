"""withdrawals: admin review columns

Learn: Players' withdrawal requests usually already exist in the shared
database (the hosted backend creates them). If the table is there we only
add the review columns this service writes; on a fresh database we create
the whole table.

Revision ID: d2a7f4c9e8b6
Revises: 8c4e6d21a5f3
Create Date: 2026-10-19 14:05:17.000000
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'd2a7f4c9e8b6'
down_revision: Union[str, None] = '8c4e6d21a5f3'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


REVIEW_COLUMNS = ('admin_notes', 'processed_by', 'processed_at')


def _review_columns() -> list[sa.Column]:
    return [
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('processed_by', postgresql.UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())

    if not inspector.has_table('withdrawals'):
        op.create_table(
            'withdrawals',
            sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
            sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
            sa.Column('coin_amount', sa.Integer(), nullable=False),
            sa.Column('esewa_number', sa.String(length=20), nullable=False),
            sa.Column('status', sa.String(length=20), server_default='pending', nullable=False),
            sa.Column('requested_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
            *_review_columns(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id']),
            sa.PrimaryKeyConstraint('id'),
        )
    else:
        existing = {c['name'] for c in inspector.get_columns('withdrawals')}
        for column in _review_columns():
            if column.name not in existing:
                op.add_column('withdrawals', column)

    op.create_index('idx_withdrawals_status', 'withdrawals', ['status', 'requested_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_withdrawals_status', table_name='withdrawals')
    for name in REVIEW_COLUMNS:
        op.drop_column('withdrawals', name)

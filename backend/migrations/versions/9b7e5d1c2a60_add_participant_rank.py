"""add final rank to participant

Revision ID: 9b7e5d1c2a60
Revises: 4c2a9e7b1d3f
Create Date: 2026-10-20 09:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '9b7e5d1c2a60'
down_revision = '4c2a9e7b1d3f'
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    cols = {c['name'] for c in insp.get_columns('participant')}
    with op.batch_alter_table('participant') as batch_op:
        if 'rank' not in cols:
            batch_op.add_column(sa.Column('rank', sa.Integer(), nullable=True))


def downgrade():
    with op.batch_alter_table('participant') as batch_op:
        batch_op.drop_column('rank')

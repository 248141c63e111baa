"""create singleton game_state table

Revision ID: 5b7e0c1d2a9f
Revises:
Create Date: 2026-10-18 00:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5b7e0c1d2a9f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    # Tables created by `flask state-reset` already match this revision
    if 'game_state' in set(insp.get_table_names()):
        return
    op.create_table(
        'game_state',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('state', sa.JSON(), nullable=False),
        sa.Column('updated_at', sa.Float(), nullable=True),
    )


def downgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    if 'game_state' in set(insp.get_table_names()):
        op.drop_table('game_state')

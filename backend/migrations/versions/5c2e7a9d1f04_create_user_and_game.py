"""create user and game tables for bingo sessions

Revision ID: 5c2e7a9d1f04
Revises:
Create Date: 2026-10-18 00:00:00
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2e7a9d1f04'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    insp = sa.inspect(bind)
    existing_tables = set(insp.get_table_names())

    if 'user' not in existing_tables:
        op.create_table(
            'user',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
            sa.Column('role', sa.String(length=32), nullable=False, server_default='user'),
            sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)

    if 'game' not in existing_tables:
        op.create_table(
            'game',
            sa.Column('id', sa.Integer(), primary_key=True),
            sa.Column('room_code', sa.String(length=8), nullable=False),
            sa.Column('game_type', sa.String(length=16), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False),
            sa.Column('end_reason', sa.String(length=16), nullable=True),
            sa.Column('first_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('second_user_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=False),
            sa.Column('winner_id', sa.Integer(), sa.ForeignKey('user.id'), nullable=True),
            sa.Column('active_pair_key', sa.String(length=32), nullable=True, unique=True),
            sa.Column('win_pattern', sa.String(length=16), nullable=False),
            sa.Column('required_lines', sa.Integer(), nullable=False),
            sa.Column('max_number', sa.Integer(), nullable=False),
            sa.Column('shared_board', sa.Boolean(), nullable=False),
            sa.Column('first_board', sa.JSON(), nullable=False),
            sa.Column('second_board', sa.JSON(), nullable=False),
            sa.Column('called_numbers', sa.JSON(), nullable=False),
            sa.Column('current_turn', sa.String(length=8), nullable=False),
            sa.Column('last_called_number', sa.Integer(), nullable=True),
            sa.Column('last_called_by', sa.Integer(), nullable=True),
            sa.Column('first_completed_lines', sa.Integer(), nullable=False),
            sa.Column('second_completed_lines', sa.Integer(), nullable=False),
            sa.Column('ready_user_ids', sa.JSON(), nullable=False),
            sa.Column('invitation_accepted', sa.Boolean(), nullable=False),
            sa.Column('invitation_expires_at', sa.Float(), nullable=False),
            sa.Column('created_at', sa.Float(), nullable=False),
            sa.Column('started_at', sa.Float(), nullable=True),
            sa.Column('completed_at', sa.Float(), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False),
        )
        op.create_index('ix_game_room_code', 'game', ['room_code'], unique=True)
        op.create_index('ix_game_status', 'game', ['status'])
        op.create_index('ix_game_first_user_id', 'game', ['first_user_id'])
        op.create_index('ix_game_second_user_id', 'game', ['second_user_id'])


def downgrade():
    op.drop_table('game')
    op.drop_table('user')

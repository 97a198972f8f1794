"""create user, quiz, question, participant and score_record tables

Revision ID: 4c2a9e7b1d3f
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '4c2a9e7b1d3f'
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
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('email', sa.String(length=120), nullable=True),
            sa.Column('password_hash', sa.String(length=256), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_user_username', 'user', ['username'], unique=True)
        op.create_index('ix_user_email', 'user', ['email'], unique=True)

    if 'quiz' not in existing_tables:
        op.create_table(
            'quiz',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('code', sa.String(length=6), nullable=False),
            sa.Column('title', sa.String(length=200), nullable=False),
            sa.Column('category', sa.String(length=100), nullable=False),
            sa.Column('created_by', sa.String(length=64), nullable=False),
            sa.Column('creator_name', sa.String(length=64), nullable=False),
            sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_quiz_code', 'quiz', ['code'], unique=True)
        op.create_index('ix_quiz_created_by', 'quiz', ['created_by'])
        op.create_index('ix_quiz_status', 'quiz', ['status'])

    if 'question' not in existing_tables:
        op.create_table(
            'question',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('quiz_id', sa.Integer(), nullable=False),
            sa.Column('position', sa.Integer(), nullable=False),
            sa.Column('text', sa.Text(), nullable=False),
            sa.Column('kind', sa.String(length=16), nullable=False),
            sa.Column('options', sa.Text(), nullable=True),
            sa.Column('correct_answer', sa.Text(), nullable=False),
            sa.Column('time_limit', sa.Integer(), nullable=False, server_default='30'),
            sa.ForeignKeyConstraint(['quiz_id'], ['quiz.id']),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_question_quiz_id', 'question', ['quiz_id'])

    if 'participant' not in existing_tables:
        op.create_table(
            'participant',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('quiz_id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('score', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['quiz_id'], ['quiz.id']),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('quiz_id', 'user_id', name='uq_participant_quiz_user'),
        )
        op.create_index('ix_participant_quiz_id', 'participant', ['quiz_id'])

    if 'score_record' not in existing_tables:
        op.create_table(
            'score_record',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('quiz_id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('username', sa.String(length=64), nullable=False),
            sa.Column('score', sa.Integer(), nullable=False),
            sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(['quiz_id'], ['quiz.id']),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index('ix_score_record_quiz_id', 'score_record', ['quiz_id'])


def downgrade():
    op.drop_index('ix_score_record_quiz_id', table_name='score_record')
    op.drop_table('score_record')
    op.drop_index('ix_participant_quiz_id', table_name='participant')
    op.drop_table('participant')
    op.drop_index('ix_question_quiz_id', table_name='question')
    op.drop_table('question')
    op.drop_index('ix_quiz_status', table_name='quiz')
    op.drop_index('ix_quiz_created_by', table_name='quiz')
    op.drop_index('ix_quiz_code', table_name='quiz')
    op.drop_table('quiz')
    op.drop_index('ix_user_email', table_name='user')
    op.drop_index('ix_user_username', table_name='user')
    op.drop_table('user')

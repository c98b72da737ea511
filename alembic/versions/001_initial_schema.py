"""Initial schema: users, cooking sessions, coaching interactions, progress

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table('users',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('skill_level', sa.String(length=20), server_default='beginner', nullable=False),
        sa.Column('preferences', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    op.create_table('cooking_sessions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('recipe_id', sa.String(length=36), nullable=False),
        sa.Column('recipe_name', sa.String(length=255), nullable=False),
        sa.Column('current_step', sa.Integer(), server_default='0', nullable=False),
        sa.Column('total_steps', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), server_default='active', nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('feedback', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('skill_improvements', postgresql.JSONB(astext_type=sa.Text()), server_default='[]', nullable=False),
        sa.Column('context', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cooking_sessions_user_id', 'cooking_sessions', ['user_id'], unique=False)
    op.create_index('ix_cooking_sessions_recipe_id', 'cooking_sessions', ['recipe_id'], unique=False)
    op.create_index('ix_cooking_sessions_status', 'cooking_sessions', ['status'], unique=False)
    op.create_index('ix_cooking_sessions_started_at', 'cooking_sessions', ['started_at'], unique=False)

    op.create_table('coaching_interactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('session_id', sa.String(length=36), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('user_input', sa.Text(), nullable=True),
        sa.Column('coach_response', sa.Text(), nullable=False),
        sa.Column('interaction_type', sa.String(length=40), nullable=False),
        sa.Column('context', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('response_time', sa.Integer(), nullable=True),
        sa.Column('user_satisfaction', sa.Integer(), nullable=True),
        sa.Column('provider', sa.String(length=40), nullable=True),
        sa.CheckConstraint('user_satisfaction BETWEEN 1 AND 5', name='ck_coaching_interactions_satisfaction'),
        sa.ForeignKeyConstraint(['session_id'], ['cooking_sessions.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_coaching_interactions_session_id', 'coaching_interactions', ['session_id'], unique=False)
    op.create_index('ix_coaching_interactions_type', 'coaching_interactions', ['interaction_type'], unique=False)
    op.create_index('ix_coaching_interactions_timestamp', 'coaching_interactions', ['timestamp'], unique=False)

    op.create_table('user_progress',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=36), nullable=False),
        sa.Column('recipe_id', sa.String(length=36), nullable=False),
        sa.Column('recipe_name', sa.String(length=255), nullable=False),
        sa.Column('completion_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('average_time', sa.Integer(), nullable=True),
        sa.Column('best_time', sa.Integer(), nullable=True),
        sa.Column('last_cooked', sa.DateTime(timezone=True), nullable=True),
        sa.Column('mastery_level', sa.Integer(), server_default='0', nullable=False),
        sa.Column('skills_learned', postgresql.JSONB(astext_type=sa.Text()), server_default='[]', nullable=False),
        sa.Column('difficulty_rating', sa.Float(), nullable=True),
        sa.Column('personal_notes', sa.Text(), nullable=True),
        sa.Column('adaptations', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.CheckConstraint('mastery_level BETWEEN 0 AND 100', name='ck_user_progress_mastery_range'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'recipe_id', name='uq_user_progress_user_recipe')
    )
    op.create_index('ix_user_progress_user_id', 'user_progress', ['user_id'], unique=False)
    op.create_index('ix_user_progress_recipe_id', 'user_progress', ['recipe_id'], unique=False)
    op.create_index('ix_user_progress_mastery_level', 'user_progress', ['mastery_level'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_user_progress_mastery_level', table_name='user_progress')
    op.drop_index('ix_user_progress_recipe_id', table_name='user_progress')
    op.drop_index('ix_user_progress_user_id', table_name='user_progress')
    op.drop_table('user_progress')
    op.drop_index('ix_coaching_interactions_timestamp', table_name='coaching_interactions')
    op.drop_index('ix_coaching_interactions_type', table_name='coaching_interactions')
    op.drop_index('ix_coaching_interactions_session_id', table_name='coaching_interactions')
    op.drop_table('coaching_interactions')
    op.drop_index('ix_cooking_sessions_started_at', table_name='cooking_sessions')
    op.drop_index('ix_cooking_sessions_status', table_name='cooking_sessions')
    op.drop_index('ix_cooking_sessions_recipe_id', table_name='cooking_sessions')
    op.drop_index('ix_cooking_sessions_user_id', table_name='cooking_sessions')
    op.drop_table('cooking_sessions')
    op.drop_table('users')

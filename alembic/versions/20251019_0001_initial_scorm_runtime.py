"""initial scorm runtime tables

Revision ID: 20251019_0001
Revises:
Create Date: 2025-10-19
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '20251019_0001'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_PREDICATE = sa.text("status IN ('not_started', 'in_progress')")


def upgrade() -> None:
    op.create_table(
        'scorm_packages',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column(
            'version', sa.String(length=8), nullable=False,
            server_default='1.2'
        ),
        sa.Column('entry_path', sa.String(length=500), nullable=True),
        sa.Column('content_root', sa.String(length=500), nullable=False),
        sa.Column(
            'created_at', sa.DateTime(),
            server_default=sa.text('CURRENT_TIMESTAMP')
        ),
        sa.Column(
            'updated_at', sa.DateTime(),
            server_default=sa.text('CURRENT_TIMESTAMP')
        ),
    )

    op.create_table(
        'scorm_sessions',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column(
            'package_id', sa.Integer,
            sa.ForeignKey('scorm_packages.id', ondelete='CASCADE'),
            nullable=False
        ),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('attempt', sa.Integer, nullable=False),
        sa.Column(
            'status', sa.String(length=32), nullable=False,
            server_default='not_started'
        ),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('total_time', sa.String(length=64), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('ended_at', sa.DateTime(), nullable=True),
        sa.Column('json_data', sa.JSON(), nullable=False),
        sa.Column(
            'created_at', sa.DateTime(),
            server_default=sa.text('CURRENT_TIMESTAMP')
        ),
        sa.Column(
            'updated_at', sa.DateTime(),
            server_default=sa.text('CURRENT_TIMESTAMP')
        ),
        sa.UniqueConstraint(
            'package_id', 'user_id', 'attempt',
            name='uq_scorm_sessions_attempt'
        ),
    )
    op.create_index(
        'ix_scorm_sessions_package_id', 'scorm_sessions', ['package_id']
    )
    op.create_index(
        'ix_scorm_sessions_user_id', 'scorm_sessions', ['user_id']
    )
    # At most one not_started/in_progress session per (package, user)
    op.create_index(
        'uq_scorm_sessions_active_pair', 'scorm_sessions',
        ['package_id', 'user_id'], unique=True,
        sqlite_where=ACTIVE_PREDICATE,
        postgresql_where=ACTIVE_PREDICATE,
    )

    op.create_table(
        'scorm_interactions',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column(
            'session_id', sa.Integer,
            sa.ForeignKey('scorm_sessions.id', ondelete='CASCADE'),
            nullable=False
        ),
        sa.Column('element', sa.String(length=255), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column(
            'timestamp', sa.DateTime(),
            server_default=sa.text('CURRENT_TIMESTAMP')
        ),
    )
    op.create_index(
        'ix_scorm_interactions_session_ts', 'scorm_interactions',
        ['session_id', 'timestamp']
    )


def downgrade() -> None:
    op.drop_index(
        'ix_scorm_interactions_session_ts', table_name='scorm_interactions'
    )
    op.drop_table('scorm_interactions')
    op.drop_index('uq_scorm_sessions_active_pair', table_name='scorm_sessions')
    op.drop_index('ix_scorm_sessions_user_id', table_name='scorm_sessions')
    op.drop_index('ix_scorm_sessions_package_id', table_name='scorm_sessions')
    op.drop_table('scorm_sessions')
    op.drop_table('scorm_packages')

"""Create catalog policy, evaluation and run tables

Revision ID: d3f1a9c47e20
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'd3f1a9c47e20'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # -- Policies: versioned, single active row --
    op.create_table(
        'catalog_policies',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('version', sa.Integer(), nullable=False, unique=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('policy_config', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        'uq_catalog_policies_single_active', 'catalog_policies', ['is_active'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )

    # -- Evaluations: composite key (media item, policy version) --
    op.create_table(
        'media_catalog_evaluations',
        sa.Column('media_item_id', sa.Text(), primary_key=True),
        sa.Column('policy_version', sa.Integer(), primary_key=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('reasons', sa.JSON(), nullable=False),
        sa.Column('relevance_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('breakout_rule_id', sa.Text(), nullable=True),
        sa.Column('evaluated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('run_id', sa.Text(), nullable=True),
    )
    op.create_index('ix_media_catalog_evaluations_run_status',
                    'media_catalog_evaluations', ['run_id', 'status'])
    op.create_index('ix_media_catalog_evaluations_version_status',
                    'media_catalog_evaluations', ['policy_version', 'status'])

    # -- Runs --
    op.create_table(
        'catalog_evaluation_runs',
        sa.Column('id', sa.Text(), primary_key=True),
        sa.Column('status', sa.Text(), nullable=False, server_default='running'),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cursor', sa.Text(), nullable=True),
        sa.Column('target_policy_id', sa.Integer(), sa.ForeignKey('catalog_policies.id'), nullable=False),
        sa.Column('target_policy_version', sa.Integer(), nullable=False),
        sa.Column('total_ready_snapshot', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('snapshot_cutoff', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('eligible', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ineligible', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pending', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('review', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_sample', sa.JSON(), nullable=False),
        sa.Column('promoted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('promoted_by', sa.Text(), nullable=True),
    )
    op.create_index('ix_catalog_evaluation_runs_status_started',
                    'catalog_evaluation_runs', ['status', 'started_at'])


def downgrade() -> None:
    op.drop_index('ix_catalog_evaluation_runs_status_started', table_name='catalog_evaluation_runs')
    op.drop_table('catalog_evaluation_runs')
    op.drop_index('ix_media_catalog_evaluations_version_status', table_name='media_catalog_evaluations')
    op.drop_index('ix_media_catalog_evaluations_run_status', table_name='media_catalog_evaluations')
    op.drop_table('media_catalog_evaluations')
    op.drop_index('uq_catalog_policies_single_active', table_name='catalog_policies')
    op.drop_table('catalog_policies')

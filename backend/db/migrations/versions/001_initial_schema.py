"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _mirror_columns() -> list[sa.Column]:
    """Columns every mirrored GitHub table shares."""
    return [
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
    ]


def upgrade() -> None:
    # Linked GitHub accounts
    op.create_table(
        'github_integrations',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(64), nullable=False),
        sa.Column('username', sa.String(255), nullable=True),
        sa.Column('avatar_url', sa.Text(), nullable=True),
        sa.Column('profile_url', sa.Text(), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=True),
        sa.Column('token_type', sa.String(50), nullable=True),
        sa.Column('scope', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('connected_at', sa.DateTime(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('sync_stats', postgresql.JSONB(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_github_integrations_user_id', 'github_integrations', ['user_id'], unique=True)

    op.create_table(
        'github_organizations',
        *_mirror_columns(),
        sa.Column('login', sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_github_organizations_user_id', 'github_organizations', ['user_id'])
    op.create_index('uq_gh_orgs_user_login', 'github_organizations', ['user_id', 'login'], unique=True)

    op.create_table(
        'github_repositories',
        *_mirror_columns(),
        sa.Column('org_login', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_github_repositories_user_id', 'github_repositories', ['user_id'])
    op.create_index('idx_gh_repos_org', 'github_repositories', ['user_id', 'org_login'])
    op.create_index(
        'uq_gh_repos_user_org_name', 'github_repositories',
        ['user_id', 'org_login', 'name'], unique=True,
    )

    op.create_table(
        'github_commits',
        *_mirror_columns(),
        sa.Column('org_login', sa.String(255), nullable=False),
        sa.Column('repo_name', sa.String(255), nullable=False),
        sa.Column('sha', sa.String(40), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_github_commits_user_id', 'github_commits', ['user_id'])
    op.create_index('idx_gh_commits_repo', 'github_commits', ['user_id', 'repo_name'])
    op.create_index(
        'uq_gh_commits_user_repo_sha', 'github_commits',
        ['user_id', 'repo_name', 'sha'], unique=True,
    )

    op.create_table(
        'github_pull_requests',
        *_mirror_columns(),
        sa.Column('org_login', sa.String(255), nullable=False),
        sa.Column('repo_name', sa.String(255), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_github_pull_requests_user_id', 'github_pull_requests', ['user_id'])
    op.create_index('idx_gh_prs_repo', 'github_pull_requests', ['user_id', 'repo_name'])
    op.create_index(
        'uq_gh_prs_user_repo_number', 'github_pull_requests',
        ['user_id', 'repo_name', 'number'], unique=True,
    )

    op.create_table(
        'github_issues',
        *_mirror_columns(),
        sa.Column('org_login', sa.String(255), nullable=False),
        sa.Column('repo_name', sa.String(255), nullable=False),
        sa.Column('number', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_github_issues_user_id', 'github_issues', ['user_id'])
    op.create_index('idx_gh_issues_repo', 'github_issues', ['user_id', 'repo_name'])
    op.create_index(
        'uq_gh_issues_user_repo_number', 'github_issues',
        ['user_id', 'repo_name', 'number'], unique=True,
    )

    op.create_table(
        'github_issue_timeline_events',
        *_mirror_columns(),
        sa.Column('org_login', sa.String(255), nullable=False),
        sa.Column('repo_name', sa.String(255), nullable=False),
        sa.Column('issue_number', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_github_issue_timeline_events_user_id', 'github_issue_timeline_events', ['user_id'])
    op.create_index(
        'idx_gh_timeline_issue', 'github_issue_timeline_events',
        ['user_id', 'repo_name', 'issue_number'],
    )
    op.create_index(
        'uq_gh_timeline_user_issue_event', 'github_issue_timeline_events',
        ['user_id', 'issue_number', 'event_id'], unique=True,
    )

    op.create_table(
        'github_members',
        *_mirror_columns(),
        sa.Column('org_login', sa.String(255), nullable=False),
        sa.Column('login', sa.String(255), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_github_members_user_id', 'github_members', ['user_id'])
    op.create_index(
        'uq_gh_members_user_org_login', 'github_members',
        ['user_id', 'org_login', 'login'], unique=True,
    )


def downgrade() -> None:
    op.drop_table('github_members')
    op.drop_table('github_issue_timeline_events')
    op.drop_table('github_issues')
    op.drop_table('github_pull_requests')
    op.drop_table('github_commits')
    op.drop_table('github_repositories')
    op.drop_table('github_organizations')
    op.drop_table('github_integrations')

"""create_marketplace_tables

Revision ID: c3a1f0e2b7d4
Revises:
Create Date: 2026-10-01 09:00:00.000000+00:00

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'c3a1f0e2b7d4'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create users, projects and applications."""
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'])
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_role'), 'users', ['role'])

    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('created_by_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(length=100), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('max_applicants', sa.Integer(), nullable=True),
        sa.Column('current_applicants', sa.Integer(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.CheckConstraint('current_applicants >= 0', name='ck_projects_current_applicants_non_negative'),
        sa.CheckConstraint(
            'max_applicants IS NULL OR current_applicants <= max_applicants',
            name='ck_projects_capacity',
        ),
    )
    op.create_index(op.f('ix_projects_id'), 'projects', ['id'])
    op.create_index(op.f('ix_projects_created_by_id'), 'projects', ['created_by_id'])
    op.create_index(op.f('ix_projects_status'), 'projects', ['status'])

    op.create_table(
        'applications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('project_id', sa.Uuid(), sa.ForeignKey('projects.id'), nullable=False),
        sa.Column('student_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('cover_letter', sa.Text(), nullable=False),
        sa.Column('resume_url', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewer_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('project_id', 'student_id', name='unique_project_student_application'),
    )
    op.create_index(op.f('ix_applications_id'), 'applications', ['id'])
    op.create_index(op.f('ix_applications_project_id'), 'applications', ['project_id'])
    op.create_index(op.f('ix_applications_student_id'), 'applications', ['student_id'])
    op.create_index(op.f('ix_applications_status'), 'applications', ['status'])


def downgrade() -> None:
    """Drop marketplace tables."""
    op.drop_table('applications')
    op.drop_table('projects')
    op.drop_table('users')

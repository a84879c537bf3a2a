"""create_gig_tables

Revision ID: create_gig_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00

"""
from alembic import op
import sqlalchemy as sa
from gigengine.database_types import JSON, GUID, UTCDateTime


revision = 'create_gig_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    tables = inspector.get_table_names()

    # users is owned by the accounts service; only create it for standalone deployments
    if 'users' not in tables:
        op.create_table(
            'users',
            sa.Column('id', GUID(), primary_key=True),
            sa.Column('email', sa.String(), nullable=False),
            sa.Column('full_name', sa.String(255), nullable=True),
            sa.Column('created_at', sa.DateTime(), nullable=False),
            sa.Column('updated_at', sa.DateTime(), nullable=False),
        )
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'gigs',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('poster_id', GUID(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('sub_category', sa.String(100), nullable=True),
        sa.Column('urgency', sa.String(20), nullable=False, server_default='medium'),
        sa.Column('experience_level', sa.String(20), nullable=False, server_default='intermediate'),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('address', sa.String(500), nullable=False),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('country', sa.String(100), nullable=True, server_default='India'),
        sa.Column('pincode', sa.String(20), nullable=True),
        sa.Column('landmark', sa.String(255), nullable=True),
        sa.Column('is_remote', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('allows_remote', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('service_radius', sa.Float(), nullable=True),
        sa.Column('tools_required', JSON(), nullable=False),
        sa.Column('materials_provided', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payment_rate', sa.Float(), nullable=False),
        sa.Column('payment_currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('payment_type', sa.String(20), nullable=False),
        sa.Column('payment_total_budget', sa.Float(), nullable=True),
        sa.Column('payment_advance', sa.Float(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('start_date', UTCDateTime(), nullable=True),
        sa.Column('end_date', UTCDateTime(), nullable=True),
        sa.Column('duration_hours', sa.Float(), nullable=True),
        sa.Column('deadline', UTCDateTime(), nullable=True),
        sa.Column('is_flexible', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('preferred_time', sa.String(20), nullable=False, server_default='anytime'),
        sa.Column('contact_preference', sa.String(20), nullable=False, server_default='both'),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('recurring_pattern', sa.String(20), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('assigned_to', GUID(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('posted_at', UTCDateTime(), nullable=True),
        sa.Column('expires_at', UTCDateTime(), nullable=True),
        sa.Column('completion_date', UTCDateTime(), nullable=True),
        sa.Column('views', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('applications_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', UTCDateTime(), nullable=False),
        sa.Column('updated_at', UTCDateTime(), nullable=False),
        sa.CheckConstraint('views >= 0', name='ck_gigs_views_non_negative'),
        sa.CheckConstraint('applications_count >= 0', name='ck_gigs_applications_count_non_negative'),
    )
    op.create_index('idx_gigs_status_posted_at', 'gigs', ['status', 'posted_at'])
    op.create_index('idx_gigs_category_status', 'gigs', ['category', 'status'])
    op.create_index('idx_gigs_poster_status', 'gigs', ['poster_id', 'status'])
    op.create_index('idx_gigs_assigned_status', 'gigs', ['assigned_to', 'status'])
    op.create_index('idx_gigs_rate_type', 'gigs', ['payment_rate', 'payment_type'])
    op.create_index('idx_gigs_expires_at', 'gigs', ['expires_at'])

    op.create_table(
        'gig_skills',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('gig_id', GUID(), sa.ForeignKey('gigs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('proficiency', sa.String(20), nullable=False),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index('idx_gig_skills_name', 'gig_skills', ['name'])
    op.create_index('idx_gig_skills_gig', 'gig_skills', ['gig_id', 'position'])

    op.create_table(
        'gig_applications',
        sa.Column('id', GUID(), primary_key=True),
        sa.Column('gig_id', GUID(), sa.ForeignKey('gigs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('applicant_id', GUID(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('applied_at', UTCDateTime(), nullable=False),
        sa.Column('proposed_rate', sa.Float(), nullable=True),
        sa.Column('message', sa.String(1000), nullable=True),
        sa.Column('portfolio_links', JSON(), nullable=False),
        sa.Column('estimated_duration', sa.Float(), nullable=True),
        sa.Column('availability', UTCDateTime(), nullable=True),
        sa.UniqueConstraint('gig_id', 'applicant_id', name='uq_gig_applicant'),
    )
    op.create_index('idx_gig_applications_applicant', 'gig_applications', ['applicant_id', 'applied_at'])


def downgrade() -> None:
    op.drop_index('idx_gig_applications_applicant', table_name='gig_applications')
    op.drop_table('gig_applications')
    op.drop_index('idx_gig_skills_gig', table_name='gig_skills')
    op.drop_index('idx_gig_skills_name', table_name='gig_skills')
    op.drop_table('gig_skills')
    for index in (
        'idx_gigs_expires_at',
        'idx_gigs_rate_type',
        'idx_gigs_assigned_status',
        'idx_gigs_poster_status',
        'idx_gigs_category_status',
        'idx_gigs_status_posted_at',
    ):
        op.drop_index(index, table_name='gigs')
    op.drop_table('gigs')

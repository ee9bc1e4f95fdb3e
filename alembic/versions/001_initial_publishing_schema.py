"""Initial publishing schema: schools, workflow, ledger, social, payments

Revision ID: 001_initial_publishing_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_publishing_schema'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'schools',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('city', sa.String(120)),
        sa.Column('contact_email', sa.String(255)),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),

        # Cached balance; credit_transactions is authoritative
        sa.Column('coins', sa.Integer, nullable=False, server_default='0'),
        sa.Column('ledger_version', sa.Integer, nullable=False, server_default='0'),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_schools_id', 'schools', ['id'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255)),
        sa.Column('role', sa.String(20), nullable=False, server_default='school'),
        sa.Column('school_id', sa.Integer, sa.ForeignKey('schools.id'), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_school_id', 'users', ['school_id'])

    op.create_table(
        'submissions',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('school_id', sa.Integer, sa.ForeignKey('schools.id'), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('category', sa.String(30), nullable=False, server_default='other'),
        sa.Column('attachments', sa.JSON),
        sa.Column('status', sa.String(30), nullable=False, server_default='submitted_school'),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('version', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_submissions_id', 'submissions', ['id'])
    op.create_index('ix_submissions_school_id', 'submissions', ['school_id'])
    op.create_index('ix_submissions_status', 'submissions', ['status'])

    op.create_table(
        'blogs',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('submission_id', sa.Integer, sa.ForeignKey('submissions.id'), nullable=False, unique=True),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('content', sa.Text, nullable=False, server_default=''),
        sa.Column('slug', sa.String(500), nullable=False),
        sa.Column('meta_title', sa.String(500)),
        sa.Column('meta_description', sa.Text),
        sa.Column('seo_keywords', sa.JSON),
        sa.Column('tags', sa.JSON),
        sa.Column('category', sa.String(30)),
        sa.Column('featured_image', sa.String(1000)),
        sa.Column('reading_time', sa.Integer, nullable=False, server_default='1'),
        sa.Column('status', sa.String(30), nullable=False, server_default='draft_created'),
        sa.Column('assigned_school_id', sa.Integer, sa.ForeignKey('schools.id'), nullable=False),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('users.id'), nullable=False),

        # Publication record
        sa.Column('wordpress_post_id', sa.Integer, unique=True),
        sa.Column('wordpress_url', sa.String(1000)),
        sa.Column('published_at', sa.DateTime(timezone=True)),

        sa.Column('version', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_blogs_id', 'blogs', ['id'])
    op.create_index('ix_blogs_slug', 'blogs', ['slug'])
    op.create_index('ix_blogs_status', 'blogs', ['status'])
    op.create_index('ix_blogs_assigned_school_id', 'blogs', ['assigned_school_id'])

    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('school_id', sa.Integer, sa.ForeignKey('schools.id'), nullable=False),
        sa.Column('type', sa.String(20), nullable=False),
        sa.Column('coins', sa.Integer, nullable=False),
        sa.Column('description', sa.String(500), nullable=False),
        sa.Column('related_blog_id', sa.Integer, sa.ForeignKey('blogs.id')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_credit_transactions_id', 'credit_transactions', ['id'])
    op.create_index('ix_credit_transactions_created_at', 'credit_transactions', ['created_at'])
    op.create_index('idx_credit_tx_school', 'credit_transactions', ['school_id', 'id'])
    op.create_index('idx_credit_tx_blog', 'credit_transactions', ['related_blog_id'])

    op.create_table(
        'publish_attempts',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('blog_id', sa.Integer, sa.ForeignKey('blogs.id'), nullable=False, unique=True),
        sa.Column('status', sa.String(30), nullable=False, server_default='in_flight'),
        sa.Column('acting_user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('wordpress_post_id', sa.Integer),
        sa.Column('error', sa.Text),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('finished_at', sa.DateTime(timezone=True)),
    )

    op.create_table(
        'social_connections',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('school_id', sa.Integer, sa.ForeignKey('schools.id', ondelete='CASCADE'), nullable=False),
        sa.Column('platform', sa.String(20), nullable=False),
        sa.Column('connected', sa.Boolean, nullable=False, server_default=sa.false()),

        # Encrypted token data
        sa.Column('access_token', sa.Text),
        sa.Column('refresh_token', sa.Text),
        sa.Column('enc_version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('enc_kid', sa.String(50), nullable=False, server_default='default'),

        # Token lifecycle
        sa.Column('expires_at', sa.DateTime(timezone=True)),
        sa.Column('target_id', sa.String(255)),
        sa.Column('platform_metadata', sa.JSON),
        sa.Column('refresh_failures', sa.Integer, nullable=False, server_default='0'),
        sa.Column('token_version', sa.Integer, nullable=False, server_default='0'),
        sa.Column('last_refreshed_at', sa.DateTime(timezone=True)),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('school_id', 'platform', name='uq_social_connection_school_platform'),
    )
    op.create_index('ix_social_connections_id', 'social_connections', ['id'])
    op.create_index('idx_social_connections_expires', 'social_connections', ['expires_at'])

    op.create_table(
        'social_posts',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('blog_id', sa.Integer, sa.ForeignKey('blogs.id'), nullable=False),
        sa.Column('platform', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('remote_post_id', sa.String(255)),
        sa.Column('error_code', sa.String(50)),
        sa.Column('error_message', sa.Text),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_social_posts_id', 'social_posts', ['id'])
    op.create_index('ix_social_posts_blog_id', 'social_posts', ['blog_id'])

    op.create_table(
        'payment_orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('school_id', sa.Integer, sa.ForeignKey('schools.id'), nullable=False),
        sa.Column('provider_order_id', sa.String(255), nullable=False, unique=True),
        sa.Column('provider_payment_id', sa.String(255)),
        sa.Column('amount_paise', sa.Integer, nullable=False),
        sa.Column('coins', sa.Integer, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='created'),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('users.id')),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('paid_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_payment_orders_id', 'payment_orders', ['id'])
    op.create_index('ix_payment_orders_school_id', 'payment_orders', ['school_id'])


def downgrade() -> None:
    op.drop_table('payment_orders')
    op.drop_table('social_posts')
    op.drop_table('social_connections')
    op.drop_table('publish_attempts')
    op.drop_table('credit_transactions')
    op.drop_table('blogs')
    op.drop_table('submissions')
    op.drop_table('users')
    op.drop_table('schools')

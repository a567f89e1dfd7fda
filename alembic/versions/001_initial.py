"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-17 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Users and holiday profiles are owned by the profile store
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('notifications_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email')
    )

    op.create_table(
        'holiday_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=True),
        sa.Column('adults', sa.Integer(), nullable=False),
        sa.Column('children', sa.Integer(), nullable=False),
        sa.Column('flex_type', sa.String(length=16), nullable=False),
        sa.Column('date_start', sa.Date(), nullable=True),
        sa.Column('date_end', sa.Date(), nullable=True),
        sa.Column('nights_min', sa.Integer(), nullable=True),
        sa.Column('nights_max', sa.Integer(), nullable=True),
        sa.Column('pets', sa.Boolean(), nullable=False),
        sa.Column('min_bedrooms', sa.Integer(), nullable=False),
        sa.Column('accommodation_type', sa.String(length=64), nullable=True),
        sa.Column('peak_tolerance', sa.String(length=16), nullable=False),
        sa.Column('region', sa.String(length=128), nullable=True),
        sa.Column('park_ids', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('providers', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('check_frequency_hours', sa.Integer(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], )
    )

    # Fingerprints table
    op.create_table(
        'fingerprints',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('profile_id', sa.Integer(), nullable=False),
        sa.Column('provider_code', sa.String(length=32), nullable=False),
        sa.Column('canonical_hash', sa.String(length=64), nullable=False),
        sa.Column('canonical_payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('check_frequency_hours', sa.Integer(), nullable=False),
        sa.Column('last_scheduled_at', sa.DateTime(), nullable=True),
        sa.Column('enabled', sa.Boolean(), nullable=False),
        sa.Column('snoozed_until', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['profile_id'], ['holiday_profiles.id'], ),
        sa.UniqueConstraint(
            'profile_id', 'provider_code', 'canonical_hash', name='uq_fingerprint_profile_provider_hash'
        )
    )
    op.create_index('ix_fingerprints_enabled_last_scheduled', 'fingerprints', ['enabled', 'last_scheduled_at'])

    # Fetch runs table
    op.create_table(
        'fetch_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('fingerprint_id', sa.Integer(), nullable=True),
        sa.Column('provider_code', sa.String(length=32), nullable=False),
        sa.Column('run_type', sa.String(length=32), nullable=False),
        sa.Column('request_id', sa.String(length=64), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('finished_at', sa.DateTime(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=True),
        sa.Column('provider_status', sa.String(length=32), nullable=True),
        sa.Column('http_status', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('candidates_count', sa.Integer(), nullable=False),
        sa.Column('matched_count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['fingerprint_id'], ['fingerprints.id'], )
    )
    op.create_index('ix_fetch_runs_fingerprint_id', 'fetch_runs', ['fingerprint_id'])

    # Observations table (append-only)
    op.create_table(
        'observations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('fingerprint_id', sa.Integer(), nullable=False),
        sa.Column('fetch_run_id', sa.Integer(), nullable=True),
        sa.Column('series_key', sa.String(length=64), nullable=False),
        sa.Column('stay_start_date', sa.Date(), nullable=False),
        sa.Column('stay_nights', sa.Integer(), nullable=False),
        sa.Column('price_total', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('price_per_night', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('availability', sa.String(length=16), nullable=False),
        sa.Column('accom_type', sa.String(length=128), nullable=True),
        sa.Column('observed_at', sa.DateTime(), nullable=False),
        sa.Column('source_url', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['fingerprint_id'], ['fingerprints.id'], ),
        sa.ForeignKeyConstraint(['fetch_run_id'], ['fetch_runs.id'], )
    )
    op.create_index('ix_observations_fingerprint_id', 'observations', ['fingerprint_id'])
    op.create_index('ix_observations_series_key', 'observations', ['series_key'])

    # Insights table
    op.create_table(
        'insights',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('fingerprint_id', sa.Integer(), nullable=False),
        sa.Column('series_key', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('dedupe_key', sa.String(length=64), nullable=False),
        sa.Column('summary', sa.Text(), nullable=False),
        sa.Column('details', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['fingerprint_id'], ['fingerprints.id'], ),
        sa.UniqueConstraint('dedupe_key')
    )
    op.create_index('ix_insights_fingerprint_id', 'insights', ['fingerprint_id'])

    # Alerts table
    op.create_table(
        'alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('insight_id', sa.Integer(), nullable=False),
        sa.Column('dedupe_key', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['insight_id'], ['insights.id'], ),
        sa.UniqueConstraint('dedupe_key')
    )

    # Deals table
    op.create_table(
        'deals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('provider_code', sa.String(length=32), nullable=False),
        sa.Column('source', sa.String(length=32), nullable=False),
        sa.Column('source_ref', sa.String(length=64), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('discount_value', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('voucher_code', sa.String(length=64), nullable=True),
        sa.Column('ends_at', sa.Date(), nullable=True),
        sa.Column('source_url', sa.Text(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('first_seen_at', sa.DateTime(), nullable=False),
        sa.Column('last_seen_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider_code', 'source_ref', name='uq_deal_provider_source_ref')
    )


def downgrade() -> None:
    op.drop_table('deals')
    op.drop_table('alerts')
    op.drop_index('ix_insights_fingerprint_id', table_name='insights')
    op.drop_table('insights')
    op.drop_index('ix_observations_series_key', table_name='observations')
    op.drop_index('ix_observations_fingerprint_id', table_name='observations')
    op.drop_table('observations')
    op.drop_index('ix_fetch_runs_fingerprint_id', table_name='fetch_runs')
    op.drop_table('fetch_runs')
    op.drop_index('ix_fingerprints_enabled_last_scheduled', table_name='fingerprints')
    op.drop_table('fingerprints')
    op.drop_table('holiday_profiles')
    op.drop_table('users')

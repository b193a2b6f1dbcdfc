"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2025-01-15 00:00:00.000000

This is the baseline migration that creates all tables for the Training
Tracker. It mirrors database/models.py and avoids dialect-specific types
so the same revision runs on PostgreSQL and SQLite.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # Create people table
    op.create_table(
        'people',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('display_name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('email', name='uq_people_email'),
    )
    op.create_index('ix_people_display_name', 'people', ['display_name'])
    op.create_index('ix_people_active', 'people', ['is_active'])

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('username', sa.String(100)),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', sa.String(20), nullable=False, server_default='user'),
        sa.Column('person_id', sa.Integer(),
                  sa.ForeignKey('people.id', ondelete='SET NULL')),
        *_timestamps(),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sa.UniqueConstraint('person_id', name='uq_users_person'),
        sa.CheckConstraint("role IN ('admin', 'manager', 'user')", name='ck_users_role'),
    )

    # Create user_sessions table
    op.create_table(
        'user_sessions',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('token', sa.String(128), nullable=False),
        sa.Column('user_id', sa.Integer(),
                  sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('person_id', sa.Integer()),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint('token', name='uq_user_sessions_token'),
    )
    op.create_index('ix_user_sessions_user_id', 'user_sessions', ['user_id'])
    op.create_index('ix_sessions_expires', 'user_sessions', ['expires_at'])

    # Create catalog tables
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('name', name='uq_categories_name'),
    )

    op.create_table(
        'providers',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('name', name='uq_providers_name'),
    )

    op.create_table(
        'courses',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text()),
        sa.Column('type', sa.String(100), nullable=False,
                  server_default='Individual Training'),
        sa.Column('category_id', sa.Integer(),
                  sa.ForeignKey('categories.id', ondelete='SET NULL')),
        sa.Column('provider_id', sa.Integer(),
                  sa.ForeignKey('providers.id', ondelete='SET NULL')),
        sa.Column('validity_days', sa.Integer()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('name', name='uq_courses_name'),
        sa.CheckConstraint('validity_days IS NULL OR validity_days >= 0',
                           name='ck_courses_validity'),
    )
    op.create_index('ix_courses_active', 'courses', ['is_active'])

    # Create training_records table
    op.create_table(
        'training_records',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('person_id', sa.Integer(),
                  sa.ForeignKey('people.id', ondelete='CASCADE'), nullable=False),
        sa.Column('course_id', sa.Integer(),
                  sa.ForeignKey('courses.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('completion_date', sa.Date(), nullable=False),
        sa.Column('expiry_date', sa.Date()),
        sa.Column('notes', sa.Text()),
        sa.Column('assessor', sa.String(200)),
        *_timestamps(),
        sa.CheckConstraint('expiry_date IS NULL OR expiry_date >= completion_date',
                           name='ck_training_records_expiry'),
    )
    op.create_index('ix_training_records_person_id', 'training_records', ['person_id'])
    op.create_index('ix_training_records_course_id', 'training_records', ['course_id'])
    op.create_index('ix_training_records_expiry', 'training_records', ['expiry_date'])

    # Create third_party_certifications table
    op.create_table(
        'third_party_certifications',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('person_id', sa.Integer(),
                  sa.ForeignKey('people.id', ondelete='CASCADE'), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('provider', sa.String(200), nullable=False),
        sa.Column('completion_date', sa.Date(), nullable=False),
        sa.Column('expiry_date', sa.Date()),
        sa.Column('notes', sa.Text()),
        *_timestamps(),
        sa.CheckConstraint('expiry_date IS NULL OR expiry_date >= completion_date',
                           name='ck_third_party_expiry'),
    )
    op.create_index('ix_third_party_certifications_person_id',
                    'third_party_certifications', ['person_id'])
    op.create_index('ix_third_party_expiry', 'third_party_certifications', ['expiry_date'])

    # Create attachments table
    op.create_table(
        'attachments',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('training_record_id', sa.Integer(),
                  sa.ForeignKey('training_records.id', ondelete='CASCADE')),
        sa.Column('certification_id', sa.Integer(),
                  sa.ForeignKey('third_party_certifications.id', ondelete='CASCADE')),
        sa.Column('file_path', sa.String(500), nullable=False),
        sa.Column('file_name', sa.String(255)),
        sa.Column('mime_type', sa.String(100)),
        *_timestamps(),
        sa.CheckConstraint('(training_record_id IS NULL) <> (certification_id IS NULL)',
                           name='ck_attachments_single_owner'),
    )
    op.create_index('ix_attachments_training_record_id', 'attachments', ['training_record_id'])
    op.create_index('ix_attachments_certification_id', 'attachments', ['certification_id'])


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse order
    op.drop_table('attachments')
    op.drop_table('third_party_certifications')
    op.drop_table('training_records')
    op.drop_table('courses')
    op.drop_table('providers')
    op.drop_table('categories')
    op.drop_table('user_sessions')
    op.drop_table('users')
    op.drop_table('people')

"""create_course_portal_schema

Revision ID: 3f9a1c2e7b40
Revises:
Create Date: 2026-10-19 09:12:44.512301

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c2e7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Auth provider tables
    op.create_table(
        'auth_identities',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('handle', sa.String(50), nullable=False),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('last_sign_in_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_auth_identities_handle', 'auth_identities', ['handle'], unique=True)

    op.create_table(
        'auth_sessions',
        sa.Column('jti', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='false'),
        sa.PrimaryKeyConstraint('jti'),
        sa.ForeignKeyConstraint(['user_id'], ['auth_identities.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_auth_sessions_user_id', 'auth_sessions', ['user_id'])

    # Directory tables
    user_type = sa.Enum('USER', 'ADMIN', name='usertype')
    op.create_table(
        'profiles',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('phone_number', sa.String(30), nullable=True),
        sa.Column('school', sa.String(), nullable=True),
        sa.Column('college', sa.String(), nullable=True),
        sa.Column('major', sa.String(), nullable=True),
        sa.Column('grade_year', sa.String(20), nullable=True),
        sa.Column('user_type', user_type, nullable=False, server_default='USER'),
        sa.Column('access_expiry_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['id'], ['auth_identities.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_profiles_username', 'profiles', ['username'], unique=True)
    op.create_index('ix_profiles_user_type', 'profiles', ['user_type'])

    op.create_table(
        'subjects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )
    op.create_index('ix_subjects_id', 'subjects', ['id'])

    op.create_table(
        'courses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('subject_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('keywords', sa.String(), nullable=True),
        sa.Column('created_by_admin_id', sa.String(36), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['subject_id'], ['subjects.id']),
        sa.ForeignKeyConstraint(['created_by_admin_id'], ['profiles.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_courses_id', 'courses', ['id'])
    op.create_index('ix_courses_subject_id', 'courses', ['subject_id'])
    op.create_index('ix_courses_title', 'courses', ['title'])

    # Chapter positions are not unique: reassigning a chapter keeps its value
    op.create_table(
        'chapters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('video_storage_path', sa.String(), nullable=False, server_default='placeholder.mp4'),
        sa.Column('order_in_course', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['course_id'], ['courses.id']),
    )
    op.create_index('ix_chapters_id', 'chapters', ['id'])
    op.create_index('idx_chapters_course_order', 'chapters', ['course_id', 'order_in_course'])

    op.create_table(
        'user_chapter_progress',
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('chapter_id', sa.Integer(), nullable=False),
        sa.Column('watched_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('user_id', 'chapter_id'),
        sa.ForeignKeyConstraint(['user_id'], ['profiles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['chapter_id'], ['chapters.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_progress_user_watched', 'user_chapter_progress', ['user_id', 'watched_at'])


def downgrade() -> None:
    op.drop_index('idx_progress_user_watched', table_name='user_chapter_progress')
    op.drop_table('user_chapter_progress')

    op.drop_index('idx_chapters_course_order', table_name='chapters')
    op.drop_index('ix_chapters_id', table_name='chapters')
    op.drop_table('chapters')

    op.drop_index('ix_courses_title', table_name='courses')
    op.drop_index('ix_courses_subject_id', table_name='courses')
    op.drop_index('ix_courses_id', table_name='courses')
    op.drop_table('courses')

    op.drop_index('ix_subjects_id', table_name='subjects')
    op.drop_table('subjects')

    op.drop_index('ix_profiles_user_type', table_name='profiles')
    op.drop_index('ix_profiles_username', table_name='profiles')
    op.drop_table('profiles')
    sa.Enum(name='usertype').drop(op.get_bind(), checkfirst=True)

    op.drop_index('ix_auth_sessions_user_id', table_name='auth_sessions')
    op.drop_table('auth_sessions')

    op.drop_index('ix_auth_identities_handle', table_name='auth_identities')
    op.drop_table('auth_identities')

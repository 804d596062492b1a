"""Media delivery models migration.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create media_assets table
    op.create_table(
        'media_assets',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('kind', sa.Enum('image', 'video', 'audio', 'animated_image', name='mediakind'), nullable=False),
        sa.Column('original_path', sa.String(1024), nullable=False),
        sa.Column('processed_path', sa.String(1024), nullable=True),
        sa.Column('thumbnail_path', sa.String(1024), nullable=True),
        sa.Column('file_size', sa.BigInteger(), nullable=True),
        sa.Column('width', sa.Integer(), nullable=True),
        sa.Column('height', sa.Integer(), nullable=True),
        sa.Column('duration', sa.Float(), nullable=True),
        sa.Column('manifest', postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default='{}'),
        sa.Column('processing_status', sa.Enum('pending', 'processing', 'completed', 'failed', name='processingstatus'), nullable=False, server_default='pending'),
        sa.Column('processing_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    # Create user_roles table
    op.create_table(
        'user_roles',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('role', sa.String(64), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'role', name='uq_user_roles_user_role'),
    )

    # Create media_access_grants table
    op.create_table(
        'media_access_grants',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('media_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('granted_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'media_id', name='uq_media_access_user_media'),
    )

    # Create indexes
    op.create_index('ix_media_assets_original_path', 'media_assets', ['original_path'])
    op.create_index('ix_media_assets_processing_status', 'media_assets', ['processing_status'])
    op.create_index('ix_user_roles_user_id', 'user_roles', ['user_id'])
    op.create_index('ix_media_access_grants_user_id', 'media_access_grants', ['user_id'])
    op.create_index('ix_media_access_grants_media_id', 'media_access_grants', ['media_id'])


def downgrade() -> None:
    op.drop_index('ix_media_access_grants_media_id')
    op.drop_index('ix_media_access_grants_user_id')
    op.drop_index('ix_user_roles_user_id')
    op.drop_index('ix_media_assets_processing_status')
    op.drop_index('ix_media_assets_original_path')
    op.drop_table('media_access_grants')
    op.drop_table('user_roles')
    op.drop_table('media_assets')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS processingstatus')
    op.execute('DROP TYPE IF EXISTS mediakind')

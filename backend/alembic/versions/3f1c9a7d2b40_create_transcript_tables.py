"""create_transcript_tables

Revision ID: 3f1c9a7d2b40
Revises:
Create Date: 2026-10-18 10:12:31.504118

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c9a7d2b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create transcripts and transcript_segments."""
    op.create_table(
        'transcripts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.String(length=100), nullable=False),
        sa.Column('case_id', sa.String(length=100), nullable=False),
        sa.Column('hearing_id', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('language', sa.String(length=10), nullable=True),
        sa.Column('transcription_service', sa.String(length=50), nullable=True),
        sa.Column('recording_url', sa.String(length=1000), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=True),
        sa.Column('reviewed_by', sa.String(length=100), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_transcripts_org', 'transcripts', ['organization_id'])
    op.create_index('idx_transcripts_hearing', 'transcripts', ['hearing_id'])
    op.create_index('idx_transcripts_status', 'transcripts', ['status'])

    op.create_table(
        'transcript_segments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.String(length=100), nullable=False),
        sa.Column('transcript_id', sa.Uuid(), nullable=False),
        sa.Column('speaker_id', sa.String(length=100), nullable=True),
        sa.Column('segment_number', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.Integer(), nullable=False),
        sa.Column('end_time', sa.Integer(), nullable=False),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('original_text', sa.Text(), nullable=True),
        sa.Column('confidence', sa.Integer(), nullable=True),
        sa.Column('origin', sa.String(length=20), nullable=False),
        sa.Column('is_edited', sa.Boolean(), nullable=False),
        sa.Column('edited_by', sa.String(length=100), nullable=True),
        sa.Column('edited_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'metadata',
            sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql'),
            nullable=True,
        ),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['transcript_id'], ['transcripts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_segments_org', 'transcript_segments', ['organization_id'])
    op.create_index('idx_segments_number', 'transcript_segments', ['transcript_id', 'segment_number'])
    op.create_index('idx_segments_start_time', 'transcript_segments', ['transcript_id', 'start_time'])


def downgrade() -> None:
    """Drop transcript tables."""
    op.drop_index('idx_segments_start_time', table_name='transcript_segments')
    op.drop_index('idx_segments_number', table_name='transcript_segments')
    op.drop_index('idx_segments_org', table_name='transcript_segments')
    op.drop_table('transcript_segments')
    op.drop_index('idx_transcripts_status', table_name='transcripts')
    op.drop_index('idx_transcripts_hearing', table_name='transcripts')
    op.drop_index('idx_transcripts_org', table_name='transcripts')
    op.drop_table('transcripts')

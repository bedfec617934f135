"""speakers_annotations_unique_numbers

Revision ID: 8b5e2c4f1a93
Revises: 3f1c9a7d2b40
Create Date: 2026-10-19 09:41:07.215830

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b5e2c4f1a93'
down_revision: Union[str, None] = '3f1c9a7d2b40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Make segment numbers unique per transcript; add speakers and annotations."""
    # Restarted live sessions used to number from 0 again
    op.execute(
        """
        UPDATE transcript_segments
        SET segment_number = ordered.position
        FROM (
            SELECT id,
                   ROW_NUMBER() OVER (
                       PARTITION BY transcript_id
                       ORDER BY segment_number, start_time, created_at
                   ) - 1 AS position
            FROM transcript_segments
        ) AS ordered
        WHERE transcript_segments.id = ordered.id
          AND transcript_segments.segment_number <> ordered.position
        """
    )
    op.drop_index('idx_segments_number', table_name='transcript_segments')
    op.create_index(
        'idx_segments_number',
        'transcript_segments',
        ['transcript_id', 'segment_number'],
        unique=True,
    )

    op.create_table(
        'transcript_speakers',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.String(length=100), nullable=False),
        sa.Column('transcript_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('user_id', sa.String(length=100), nullable=True),
        sa.Column('speaker_label', sa.String(length=20), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['transcript_id'], ['transcripts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_speakers_org', 'transcript_speakers', ['organization_id'])
    op.create_index('idx_speakers_transcript', 'transcript_speakers', ['transcript_id'])
    op.create_index('idx_speakers_role', 'transcript_speakers', ['role'])

    op.create_table(
        'transcript_annotations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('organization_id', sa.String(length=100), nullable=False),
        sa.Column('transcript_id', sa.Uuid(), nullable=False),
        sa.Column('segment_id', sa.Uuid(), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('start_time', sa.Integer(), nullable=True),
        sa.Column('end_time', sa.Integer(), nullable=True),
        sa.Column('color', sa.String(length=20), nullable=True),
        sa.Column('created_by', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['transcript_id'], ['transcripts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['segment_id'], ['transcript_segments.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_annotations_org', 'transcript_annotations', ['organization_id'])
    op.create_index('idx_annotations_transcript', 'transcript_annotations', ['transcript_id'])
    op.create_index('idx_annotations_segment', 'transcript_annotations', ['segment_id'])
    op.create_index('idx_annotations_type', 'transcript_annotations', ['type'])


def downgrade() -> None:
    """Drop speakers and annotations; segment numbers keep their values."""
    op.drop_index('idx_annotations_type', table_name='transcript_annotations')
    op.drop_index('idx_annotations_segment', table_name='transcript_annotations')
    op.drop_index('idx_annotations_transcript', table_name='transcript_annotations')
    op.drop_index('idx_annotations_org', table_name='transcript_annotations')
    op.drop_table('transcript_annotations')

    op.drop_index('idx_speakers_role', table_name='transcript_speakers')
    op.drop_index('idx_speakers_transcript', table_name='transcript_speakers')
    op.drop_index('idx_speakers_org', table_name='transcript_speakers')
    op.drop_table('transcript_speakers')

    op.drop_index('idx_segments_number', table_name='transcript_segments')
    op.create_index('idx_segments_number', 'transcript_segments', ['transcript_id', 'segment_number'])

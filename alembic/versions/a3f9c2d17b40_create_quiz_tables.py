"""create_quiz_tables

Revision ID: a3f9c2d17b40
Revises:
Create Date: 2026-10-19 10:12:44.310276

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = 'a3f9c2d17b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Generated question sets, written once
    op.create_table(
        'question_sets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('set_id', sa.String(40), nullable=False),
        sa.Column('class_number', sa.Integer(), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('chapter', sa.String(), nullable=False),
        sa.Column('topic', sa.String(), nullable=False),
        sa.Column('difficulty_label', sa.String(10), nullable=True),
        sa.Column('questions', sa.JSON(), nullable=False),
        sa.Column('difficulty_level', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('set_id')
    )
    op.create_index(op.f('ix_question_sets_id'), 'question_sets', ['id'])
    op.create_index('idx_question_sets_coordinate', 'question_sets', ['class_number', 'subject', 'chapter', 'topic'])
    op.create_index('idx_question_sets_created_at', 'question_sets', ['created_at'])

    # Graded attempts, append-only
    op.create_table(
        'question_set_attempts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('attempt_id', sa.String(40), nullable=False),
        sa.Column('student_id', sa.String(), nullable=False),
        sa.Column('school_id', sa.String(), nullable=True),
        sa.Column('set_id', sa.String(40), nullable=False),

        # Coordinate copied from the set
        sa.Column('class_number', sa.Integer(), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('chapter', sa.String(), nullable=False),
        sa.Column('topic', sa.String(), nullable=False),
        sa.Column('difficulty_label', sa.String(10), nullable=True),

        sa.Column('answers', sa.JSON(), nullable=False),
        sa.Column('correct_count', sa.Integer(), nullable=False),
        sa.Column('incorrect_count', sa.Integer(), nullable=False),
        sa.Column('total_questions', sa.Integer(), nullable=False),
        sa.Column('score_percentage', sa.Float(), nullable=False),
        sa.Column('features_aggregated', sa.JSON(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['set_id'], ['question_sets.set_id']),
        sa.UniqueConstraint('attempt_id')
    )
    op.create_index(op.f('ix_question_set_attempts_id'), 'question_set_attempts', ['id'])
    op.create_index(
        'idx_attempts_student_coordinate',
        'question_set_attempts',
        ['student_id', 'class_number', 'subject', 'chapter', 'topic'],
    )
    op.create_index('idx_attempts_student_submitted_at', 'question_set_attempts', ['student_id', 'submitted_at'])
    op.create_index('idx_attempts_set_id', 'question_set_attempts', ['set_id'])

    # Running skill statistics, optimistic concurrency on version
    op.create_table(
        'student_skill_stats',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.String(), nullable=False),
        sa.Column('school_id', sa.String(), nullable=True),
        sa.Column('class_number', sa.Integer(), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('topic', sa.String(), nullable=False, server_default=''),
        sa.Column('total_questions_answered', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('correct_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('incorrect_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accuracy_percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('skills', sa.JSON(), nullable=False),
        sa.Column('features_avg', sa.JSON(), nullable=False),
        sa.Column('last_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('student_id', 'subject', 'topic', name='uq_stats_student_subject_topic')
    )
    op.create_index(op.f('ix_student_skill_stats_id'), 'student_skill_stats', ['id'])
    op.create_index('idx_stats_class_subject', 'student_skill_stats', ['school_id', 'class_number', 'subject'])

    # Chapter text used as generation input
    op.create_table(
        'syllabus_chapters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('class_number', sa.Integer(), nullable=False),
        sa.Column('subject', sa.String(), nullable=False),
        sa.Column('chapter', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('class_number', 'subject', 'chapter', name='uq_syllabus_chapter')
    )
    op.create_index(op.f('ix_syllabus_chapters_id'), 'syllabus_chapters', ['id'])


def downgrade() -> None:
    op.drop_index(op.f('ix_syllabus_chapters_id'), table_name='syllabus_chapters')
    op.drop_table('syllabus_chapters')

    op.drop_index('idx_stats_class_subject', table_name='student_skill_stats')
    op.drop_index(op.f('ix_student_skill_stats_id'), table_name='student_skill_stats')
    op.drop_table('student_skill_stats')

    op.drop_index('idx_attempts_set_id', table_name='question_set_attempts')
    op.drop_index('idx_attempts_student_submitted_at', table_name='question_set_attempts')
    op.drop_index('idx_attempts_student_coordinate', table_name='question_set_attempts')
    op.drop_index(op.f('ix_question_set_attempts_id'), table_name='question_set_attempts')
    op.drop_table('question_set_attempts')

    op.drop_index('idx_question_sets_created_at', table_name='question_sets')
    op.drop_index('idx_question_sets_coordinate', table_name='question_sets')
    op.drop_index(op.f('ix_question_sets_id'), table_name='question_sets')
    op.drop_table('question_sets')

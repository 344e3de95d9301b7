from sqlalchemy import Column, Integer, String, DateTime, Float, ForeignKey, JSON, Text
from sqlalchemy import UniqueConstraint, Index
from sqlalchemy.orm import declarative_base

from schemas.quiz import utc_now

Base = declarative_base()


class QuestionSetRecord(Base):
    """Generated question set; written once, never updated"""

    __tablename__ = "question_sets"

    id = Column(Integer, primary_key=True, index=True)
    set_id = Column(String(40), unique=True, nullable=False)
    class_number = Column(Integer, nullable=False)
    subject = Column(String, nullable=False)  # lower-cased
    chapter = Column(String, nullable=False)
    topic = Column(String, nullable=False)
    difficulty_label = Column(String(10), nullable=True)  # easy, medium, hard or NULL
    questions = Column(JSON, nullable=False)  # Ordered list of question documents
    difficulty_level = Column(Integer, nullable=False)  # 1-10
    created_at = Column(DateTime, default=utc_now, nullable=False)
    created_by = Column(String, nullable=True)  # student whose request triggered generation

    __table_args__ = (
        Index("idx_question_sets_coordinate", "class_number", "subject", "chapter", "topic"),
        Index("idx_question_sets_created_at", "created_at"),
    )


class QuizAttemptRecord(Base):
    """Graded submission; append-only"""

    __tablename__ = "question_set_attempts"

    id = Column(Integer, primary_key=True, index=True)
    attempt_id = Column(String(40), unique=True, nullable=False)
    student_id = Column(String, nullable=False)
    school_id = Column(String, nullable=True)
    set_id = Column(String(40), ForeignKey("question_sets.set_id"), nullable=False)

    # Coordinate copied from the set for query convenience
    class_number = Column(Integer, nullable=False)
    subject = Column(String, nullable=False)
    chapter = Column(String, nullable=False)
    topic = Column(String, nullable=False)
    difficulty_label = Column(String(10), nullable=True)

    answers = Column(JSON, nullable=False)
    correct_count = Column(Integer, nullable=False)
    incorrect_count = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    score_percentage = Column(Float, nullable=False)
    features_aggregated = Column(JSON, nullable=False)
    submitted_at = Column(DateTime, default=utc_now, nullable=False)

    __table_args__ = (
        Index("idx_attempts_student_coordinate", "student_id", "class_number", "subject", "chapter", "topic"),
        Index("idx_attempts_student_submitted_at", "student_id", "submitted_at"),
        Index("idx_attempts_set_id", "set_id"),
    )


class StudentSkillStatsRecord(Base):
    """Running skill statistics per student and subject (topic='' is the subject-level row)"""

    __tablename__ = "student_skill_stats"

    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(String, nullable=False)
    school_id = Column(String, nullable=True)
    class_number = Column(Integer, nullable=False)
    subject = Column(String, nullable=False)
    topic = Column(String, nullable=False, default="")
    total_questions_answered = Column(Integer, nullable=False, default=0)
    correct_count = Column(Integer, nullable=False, default=0)
    incorrect_count = Column(Integer, nullable=False, default=0)
    accuracy_percentage = Column(Float, nullable=False, default=0.0)
    skills = Column(JSON, nullable=False)  # skill name -> {score, mastery_level, questions_answered}
    features_avg = Column(JSON, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utc_now, nullable=False)

    # Optimistic concurrency: every UPDATE is conditional on the version that was read
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("student_id", "subject", "topic", name="uq_stats_student_subject_topic"),
        Index("idx_stats_class_subject", "school_id", "class_number", "subject"),
    )


class SyllabusChapter(Base):
    """Extracted chapter text used as generation input"""

    __tablename__ = "syllabus_chapters"

    id = Column(Integer, primary_key=True, index=True)
    class_number = Column(Integer, nullable=False)
    subject = Column(String, nullable=False)  # lower-cased
    chapter = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now, nullable=False)

    __table_args__ = (UniqueConstraint("class_number", "subject", "chapter", name="uq_syllabus_chapter"),)

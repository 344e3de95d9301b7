"""
Store interfaces used by the quiz engine and their SQLAlchemy implementations.

The resolver, grader and aggregator only see the abstract stores, so they can
run against the in-memory implementations in tests.
"""

from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Sequence, Set, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from models import QuestionSetRecord, QuizAttemptRecord, StudentSkillStatsRecord
from schemas.quiz import (
    Attempt,
    CatalogEntry,
    CurriculumCoordinate,
    DifficultyLabel,
    FeatureVector,
    Question,
    QuestionAnswer,
    QuestionSet,
    SkillScore,
    SkillStats,
    SkillStatsKey,
    TopicPerformance,
    normalize_subject,
)
from utils.error_handling import ConcurrencyConflict, safe_database_operation
from utils.structured_logging import LogCategory, get_logger

logger = get_logger("quiz.stores")

StatsMerge = Callable[[Optional[SkillStats]], SkillStats]
StatsUpdate = Tuple[SkillStatsKey, StatsMerge]

DEFAULT_HISTORY_LIMIT = 20
DEFAULT_UPDATE_RETRIES = 5


# ============================================================================
# INTERFACES
# ============================================================================


class QuestionSetStore(ABC):
    """Write-once storage of generated question sets"""

    @abstractmethod
    def find_by_coordinate(self, coordinate: CurriculumCoordinate) -> List[QuestionSet]:
        """All sets servable for the coordinate, oldest first."""

    @abstractmethod
    def get(self, set_id: str) -> Optional[QuestionSet]:
        ...

    @abstractmethod
    def add(self, question_set: QuestionSet) -> QuestionSet:
        ...

    @abstractmethod
    def catalog(self, class_number: int, subject: str) -> List[CatalogEntry]:
        """Chapters and topics that have sets, with their set counts."""


class AttemptStore(ABC):
    """Append-only storage of graded attempts"""

    @abstractmethod
    def add(self, attempt: Attempt, commit: bool = True) -> Attempt:
        """Store an attempt; with ``commit=False`` it is only staged in the
        caller's unit of work (see ``SkillStatsStore.update_many``)."""

    @abstractmethod
    def get(self, attempt_id: str) -> Optional[Attempt]:
        ...

    @abstractmethod
    def attempted_set_ids(self, student_id: str, coordinate: CurriculumCoordinate) -> Set[str]:
        ...

    @abstractmethod
    def list_for_student(
        self,
        student_id: str,
        subject: Optional[str] = None,
        chapter: Optional[str] = None,
        topic: Optional[str] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[Attempt]:
        """Newest first."""

    @abstractmethod
    def topic_performance(self, student_id: str, subject: str) -> List[TopicPerformance]:
        """Per-topic attempt count, mean score and last attempt, most recent topic first."""


class SkillStatsStore(ABC):
    """Running statistics records; the only store with concurrent mutation"""

    @abstractmethod
    def get(self, key: SkillStatsKey) -> Optional[SkillStats]:
        ...

    @abstractmethod
    def list_for_student(self, student_id: str) -> List[SkillStats]:
        """Subject-level records of a student."""

    @abstractmethod
    def list_for_class(self, school_id: str, class_number: int, subject: str) -> List[SkillStats]:
        """Subject-level records of every student of a class."""

    @abstractmethod
    def update_many(
        self,
        updates: Sequence[StatsUpdate],
        before_commit: Optional[Callable[[], object]] = None,
    ) -> List[SkillStats]:
        """Atomically replace each record at ``key`` with ``merge(current)``.

        Either every record changes or none does. ``merge`` receives None
        when no record exists yet and must be a pure function: implementations
        may call it more than once when a concurrent writer wins.
        ``before_commit`` runs after every merge succeeded, inside the same
        unit of work, so writes it stages commit together with the records.
        Keys must be distinct. Results come back in ``updates`` order.
        """

    def update(self, key: SkillStatsKey, merge: StatsMerge) -> SkillStats:
        return self.update_many([(key, merge)])[0]


# ============================================================================
# RECORD CONVERSION
# ============================================================================


def _label_value(label: Optional[DifficultyLabel]) -> Optional[str]:
    return label.value if label is not None else None


def _coordinate_filter(model, coordinate: CurriculumCoordinate):
    labels = coordinate.matching_difficulty_labels()
    values = sorted(label.value for label in labels if label is not None)
    label_clause = model.difficulty_label.in_(values)
    if None in labels:
        label_clause = or_(label_clause, model.difficulty_label.is_(None))
    return [
        model.class_number == coordinate.class_number,
        model.subject == coordinate.subject,
        model.chapter == coordinate.chapter,
        model.topic == coordinate.topic,
        label_clause,
    ]


def _coordinate_from_record(record) -> CurriculumCoordinate:
    return CurriculumCoordinate(
        class_number=record.class_number,
        subject=record.subject,
        chapter=record.chapter,
        topic=record.topic,
        difficulty_label=record.difficulty_label,
    )


def question_set_from_record(record: QuestionSetRecord) -> QuestionSet:
    return QuestionSet(
        set_id=record.set_id,
        coordinate=_coordinate_from_record(record),
        questions=[Question.model_validate(q) for q in record.questions],
        difficulty_level=record.difficulty_level,
        created_at=record.created_at,
        created_by=record.created_by,
    )


def attempt_from_record(record: QuizAttemptRecord) -> Attempt:
    return Attempt(
        attempt_id=record.attempt_id,
        student_id=record.student_id,
        school_id=record.school_id,
        set_id=record.set_id,
        coordinate=_coordinate_from_record(record),
        answers=[QuestionAnswer.model_validate(a) for a in record.answers],
        correct_count=record.correct_count,
        incorrect_count=record.incorrect_count,
        total_questions=record.total_questions,
        score_percentage=record.score_percentage,
        features_aggregated=FeatureVector.model_validate(record.features_aggregated),
        submitted_at=record.submitted_at,
    )


def stats_from_record(record: StudentSkillStatsRecord) -> SkillStats:
    return SkillStats(
        student_id=record.student_id,
        school_id=record.school_id,
        class_number=record.class_number,
        subject=record.subject,
        topic=record.topic or None,
        total_questions_answered=record.total_questions_answered,
        correct_count=record.correct_count,
        incorrect_count=record.incorrect_count,
        accuracy_percentage=record.accuracy_percentage,
        skills={name: SkillScore.model_validate(score) for name, score in (record.skills or {}).items()},
        features_avg=FeatureVector.model_validate(record.features_avg or {}),
        last_attempt_at=record.last_attempt_at,
        updated_at=record.updated_at,
        version=record.version,
    )


def _copy_stats_onto_record(stats: SkillStats, record: StudentSkillStatsRecord) -> None:
    record.school_id = stats.school_id
    record.class_number = stats.class_number
    record.total_questions_answered = stats.total_questions_answered
    record.correct_count = stats.correct_count
    record.incorrect_count = stats.incorrect_count
    record.accuracy_percentage = stats.accuracy_percentage
    record.skills = {name: score.model_dump(mode="json") for name, score in stats.skills.items()}
    record.features_avg = stats.features_avg.model_dump()
    record.last_attempt_at = stats.last_attempt_at
    record.updated_at = stats.updated_at


# ============================================================================
# SQLALCHEMY IMPLEMENTATIONS
# ============================================================================


class SqlQuestionSetStore(QuestionSetStore):
    def __init__(self, db: Session):
        self.db = db

    def find_by_coordinate(self, coordinate: CurriculumCoordinate) -> List[QuestionSet]:
        records = (
            self.db.query(QuestionSetRecord)
            .filter(*_coordinate_filter(QuestionSetRecord, coordinate))
            .order_by(QuestionSetRecord.created_at, QuestionSetRecord.set_id)
            .all()
        )
        return [question_set_from_record(r) for r in records]

    def get(self, set_id: str) -> Optional[QuestionSet]:
        record = self.db.query(QuestionSetRecord).filter(QuestionSetRecord.set_id == set_id).first()
        return question_set_from_record(record) if record else None

    def add(self, question_set: QuestionSet) -> QuestionSet:
        coordinate = question_set.coordinate
        record = QuestionSetRecord(
            set_id=question_set.set_id,
            class_number=coordinate.class_number,
            subject=coordinate.subject,
            chapter=coordinate.chapter,
            topic=coordinate.topic,
            difficulty_label=_label_value(coordinate.difficulty_label),
            questions=[q.model_dump(mode="json") for q in question_set.questions],
            difficulty_level=question_set.difficulty_level,
            created_at=question_set.created_at,
            created_by=question_set.created_by,
        )
        with safe_database_operation(self.db, "insert question set"):
            self.db.add(record)
            self.db.commit()
        return question_set

    def catalog(self, class_number: int, subject: str) -> List[CatalogEntry]:
        rows = (
            self.db.query(
                QuestionSetRecord.chapter,
                QuestionSetRecord.topic,
                func.count(QuestionSetRecord.id).label("set_count"),
            )
            .filter(
                QuestionSetRecord.class_number == class_number,
                QuestionSetRecord.subject == normalize_subject(subject),
            )
            .group_by(QuestionSetRecord.chapter, QuestionSetRecord.topic)
            .order_by(QuestionSetRecord.chapter, QuestionSetRecord.topic)
            .all()
        )
        return [CatalogEntry(chapter=row.chapter, topic=row.topic, set_count=row.set_count) for row in rows]


class SqlAttemptStore(AttemptStore):
    def __init__(self, db: Session):
        self.db = db

    def add(self, attempt: Attempt, commit: bool = True) -> Attempt:
        coordinate = attempt.coordinate
        record = QuizAttemptRecord(
            attempt_id=attempt.attempt_id,
            student_id=attempt.student_id,
            school_id=attempt.school_id,
            set_id=attempt.set_id,
            class_number=coordinate.class_number,
            subject=coordinate.subject,
            chapter=coordinate.chapter,
            topic=coordinate.topic,
            difficulty_label=_label_value(coordinate.difficulty_label),
            answers=[a.model_dump() for a in attempt.answers],
            correct_count=attempt.correct_count,
            incorrect_count=attempt.incorrect_count,
            total_questions=attempt.total_questions,
            score_percentage=attempt.score_percentage,
            features_aggregated=attempt.features_aggregated.model_dump(),
            submitted_at=attempt.submitted_at,
        )
        if not commit:
            self.db.add(record)
            return attempt
        with safe_database_operation(self.db, "insert attempt"):
            self.db.add(record)
            self.db.commit()
        return attempt

    def get(self, attempt_id: str) -> Optional[Attempt]:
        record = self.db.query(QuizAttemptRecord).filter(QuizAttemptRecord.attempt_id == attempt_id).first()
        return attempt_from_record(record) if record else None

    def attempted_set_ids(self, student_id: str, coordinate: CurriculumCoordinate) -> Set[str]:
        rows = (
            self.db.query(QuizAttemptRecord.set_id)
            .filter(QuizAttemptRecord.student_id == student_id, *_coordinate_filter(QuizAttemptRecord, coordinate))
            .distinct()
            .all()
        )
        return {row.set_id for row in rows}

    def list_for_student(
        self,
        student_id: str,
        subject: Optional[str] = None,
        chapter: Optional[str] = None,
        topic: Optional[str] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> List[Attempt]:
        query = self.db.query(QuizAttemptRecord).filter(QuizAttemptRecord.student_id == student_id)
        if subject:
            query = query.filter(QuizAttemptRecord.subject == normalize_subject(subject))
        if chapter:
            query = query.filter(QuizAttemptRecord.chapter == chapter.strip())
        if topic:
            query = query.filter(QuizAttemptRecord.topic == topic.strip())

        records = query.order_by(QuizAttemptRecord.submitted_at.desc(), QuizAttemptRecord.id.desc()).limit(limit).all()
        return [attempt_from_record(r) for r in records]

    def topic_performance(self, student_id: str, subject: str) -> List[TopicPerformance]:
        last_attempt = func.max(QuizAttemptRecord.submitted_at)
        rows = (
            self.db.query(
                QuizAttemptRecord.topic,
                func.count(QuizAttemptRecord.id).label("attempts"),
                func.avg(QuizAttemptRecord.score_percentage).label("avg_score"),
                last_attempt.label("last_attempt"),
            )
            .filter(
                QuizAttemptRecord.student_id == student_id,
                QuizAttemptRecord.subject == normalize_subject(subject),
            )
            .group_by(QuizAttemptRecord.topic)
            .order_by(last_attempt.desc())
            .all()
        )
        return [
            TopicPerformance(
                topic=row.topic,
                attempts=row.attempts,
                avg_score=float(row.avg_score),
                last_attempt=row.last_attempt,
            )
            for row in rows
        ]


class SqlSkillStatsStore(SkillStatsStore):
    """Stats rows updated with optimistic concurrency on the ``version`` column"""

    def __init__(self, db: Session, max_retries: int = DEFAULT_UPDATE_RETRIES):
        self.db = db
        self.max_retries = max_retries

    def _query_key(self, key: SkillStatsKey):
        return self.db.query(StudentSkillStatsRecord).filter(
            StudentSkillStatsRecord.student_id == key.student_id,
            StudentSkillStatsRecord.subject == normalize_subject(key.subject),
            StudentSkillStatsRecord.topic == (key.topic or ""),
        )

    def get(self, key: SkillStatsKey) -> Optional[SkillStats]:
        record = self._query_key(key).first()
        return stats_from_record(record) if record else None

    def list_for_student(self, student_id: str) -> List[SkillStats]:
        records = (
            self.db.query(StudentSkillStatsRecord)
            .filter(StudentSkillStatsRecord.student_id == student_id, StudentSkillStatsRecord.topic == "")
            .order_by(StudentSkillStatsRecord.subject)
            .all()
        )
        return [stats_from_record(r) for r in records]

    def list_for_class(self, school_id: str, class_number: int, subject: str) -> List[SkillStats]:
        records = (
            self.db.query(StudentSkillStatsRecord)
            .filter(
                StudentSkillStatsRecord.school_id == school_id,
                StudentSkillStatsRecord.class_number == class_number,
                StudentSkillStatsRecord.subject == normalize_subject(subject),
                StudentSkillStatsRecord.topic == "",
            )
            .order_by(StudentSkillStatsRecord.student_id)
            .all()
        )
        return [stats_from_record(r) for r in records]

    def update_many(
        self,
        updates: Sequence[StatsUpdate],
        before_commit: Optional[Callable[[], object]] = None,
    ) -> List[SkillStats]:
        """One transaction per try: a lost race on any key rolls back every
        staged row, including whatever ``before_commit`` added."""
        keys = [key for key, _ in updates]
        for attempt_no in range(1, self.max_retries + 1):
            staged = []
            for key, merge in updates:
                # populate_existing: never merge onto a row state cached by this session
                record = self._query_key(key).populate_existing().first()
                staged.append((key, record, merge(stats_from_record(record) if record else None)))

            records = []
            try:
                with safe_database_operation(self.db, "update skill stats"):
                    if before_commit is not None:
                        before_commit()
                    for key, record, merged in staged:
                        if record is None:
                            record = StudentSkillStatsRecord(
                                student_id=key.student_id,
                                subject=normalize_subject(key.subject),
                                topic=key.topic or "",
                            )
                            self.db.add(record)
                        _copy_stats_onto_record(merged, record)
                        records.append(record)
                    self.db.commit()
            except (StaleDataError, IntegrityError):
                logger.warning(
                    "Skill stats write lost to a concurrent update, retrying",
                    category=LogCategory.AGGREGATION,
                    student_id=keys[0].student_id,
                    extra={"keys": [list(k) for k in keys], "attempt": attempt_no},
                )
                continue

            return [stats_from_record(r) for r in records]

        raise ConcurrencyConflict(
            "Skill statistics are being updated concurrently; nothing was recorded, please retry",
            details={"student_id": keys[0].student_id, "keys": [list(k) for k in keys]},
        )

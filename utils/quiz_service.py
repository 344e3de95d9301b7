"""
Quiz Service

Orchestrates the two request flows of the engine (request a quiz, submit a
quiz) and the read-side analytics over attempts and statistics. Everything
it touches is injected, so the same service runs over the SQLAlchemy stores
in the API and over the in-memory stores in tests.
"""

import random
from typing import Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from config import settings
from schemas.quiz import (
    AllStudentStatsResponse,
    AttemptDetailResponse,
    CatalogResponse,
    ClassSkillSummary,
    CurriculumCoordinate,
    GenerateQuizRequest,
    GenerateQuizResponse,
    QuizHistoryResponse,
    SkillStatsKey,
    StudentStatsResponse,
    SubmitQuizRequest,
    SubmitQuizResponse,
    TopicPerformanceResponse,
    TopicSetStats,
    normalize_subject,
)
from utils.chapter_text import SyllabusChapterTextProvider
from utils.error_handling import NotFoundError, ValidationError, format_validation_errors, require_found
from utils.grader import Grader, answers_to_mapping
from utils.question_set_resolver import QuestionSetResolver, QuestionSource
from utils.quiz_stores import (
    DEFAULT_HISTORY_LIMIT,
    AttemptStore,
    QuestionSetStore,
    SkillStatsStore,
    SqlAttemptStore,
    SqlQuestionSetStore,
    SqlSkillStatsStore,
)
from utils.skill_aggregator import SkillAggregator, aggregate_class, focus_areas
from utils.structured_logging import LogCategory, get_logger, log_execution

logger = get_logger("quiz.service")

NEW_SET_MESSAGE = "Here's a fresh set of questions for you!"
REUSED_SET_MESSAGE = "Found a question set you haven't attempted yet."


class QuizService:
    def __init__(
        self,
        sets: QuestionSetStore,
        attempts: AttemptStore,
        stats: SkillStatsStore,
        resolver: QuestionSetResolver,
        grader: Optional[Grader] = None,
        aggregator: Optional[SkillAggregator] = None,
        track_topic_stats: bool = True,
        max_num_questions: int = 20,
    ):
        self.sets = sets
        self.attempts = attempts
        self.stats = stats
        self.resolver = resolver
        self.grader = grader or Grader()
        self.aggregator = aggregator or SkillAggregator()
        self.track_topic_stats = track_topic_stats
        self.max_num_questions = max_num_questions

    # ------------------------------------------------------------------
    # Request flows
    # ------------------------------------------------------------------

    @log_execution(LogCategory.GENERATION)
    def generate_quiz(self, request: GenerateQuizRequest) -> GenerateQuizResponse:
        """Serve an unattempted set for the coordinate, generating one if needed."""
        if request.num_questions is not None and request.num_questions > self.max_num_questions:
            raise ValidationError(
                f"num_questions must be between 1 and {self.max_num_questions}",
                details={"num_questions": request.num_questions},
            )

        coordinate = parse_coordinate(
            class_number=request.class_number,
            subject=request.subject,
            chapter=request.chapter,
            topic=request.topic,
            difficulty_label=request.difficulty_label,
        )
        question_set, is_new = self.resolver.resolve(request.student_id, coordinate, request.num_questions)

        return GenerateQuizResponse(
            set_id=question_set.set_id,
            questions=[q.to_public() for q in question_set.questions],
            difficulty_level=question_set.difficulty_level,
            is_new_set=is_new,
            message=NEW_SET_MESSAGE if is_new else REUSED_SET_MESSAGE,
        )

    @log_execution(LogCategory.GRADING)
    def submit_quiz(self, request: SubmitQuizRequest) -> SubmitQuizResponse:
        """Grade a submission, store the attempt and fold it into the student's statistics."""
        if not request.answers:
            raise ValidationError("answers must contain at least one entry")

        question_set = require_found(self.sets.get(request.set_id), "Question set", request.set_id)

        graded = self.grader.grade(
            question_set,
            answers_to_mapping(request.answers),
            student_id=request.student_id,
            school_id=request.school_id,
        )
        attempt = graded.attempt
        topic = attempt.coordinate.topic

        updates = [
            (
                SkillStatsKey(attempt.student_id, attempt.coordinate.subject),
                lambda current: self.aggregator.merge(current, attempt, graded.skill_breakdown),
            )
        ]
        if self.track_topic_stats:
            updates.append(
                (
                    SkillStatsKey(attempt.student_id, attempt.coordinate.subject, topic),
                    lambda current: self.aggregator.merge(current, attempt, graded.skill_breakdown, topic=topic),
                )
            )

        # Attempt row and statistics commit together or not at all
        subject_stats = self.stats.update_many(
            updates,
            before_commit=lambda: self.attempts.add(attempt, commit=False),
        )[0]

        logger.info(
            "Recorded attempt and updated skill statistics",
            category=LogCategory.AGGREGATION,
            student_id=attempt.student_id,
            set_id=attempt.set_id,
            attempt_id=attempt.attempt_id,
            extra={"accuracy_percentage": subject_stats.accuracy_percentage, "version": subject_stats.version},
        )

        return SubmitQuizResponse(
            attempt_id=attempt.attempt_id,
            score_total=attempt.score_total,
            score_percentage=attempt.score_percentage,
            correct_count=attempt.correct_count,
            incorrect_count=attempt.incorrect_count,
            total_questions=attempt.total_questions,
            features_aggregated=attempt.features_aggregated,
            skill_breakdown=graded.skill_breakdown,
            skill_stats=subject_stats,
        )

    # ------------------------------------------------------------------
    # Analytics
    # ------------------------------------------------------------------

    def history(
        self,
        student_id: str,
        subject: Optional[str] = None,
        chapter: Optional[str] = None,
        topic: Optional[str] = None,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> QuizHistoryResponse:
        attempts = self.attempts.list_for_student(student_id, subject=subject, chapter=chapter, topic=topic, limit=limit)
        return QuizHistoryResponse(attempts=attempts, count=len(attempts))

    def attempt_details(self, attempt_id: str) -> AttemptDetailResponse:
        attempt = require_found(self.attempts.get(attempt_id), "Attempt", attempt_id)
        return AttemptDetailResponse(attempt=attempt, question_set=self.sets.get(attempt.set_id))

    def student_stats(self, student_id: str, subject: str, topic: Optional[str] = None) -> StudentStatsResponse:
        key = SkillStatsKey(student_id, normalize_subject(subject), topic.strip() if topic else None)
        stats = self.stats.get(key)
        if stats is None:
            raise NotFoundError(
                "No statistics found for this student and subject",
                details={"student_id": student_id, "subject": key.subject, "topic": key.topic},
            )
        return StudentStatsResponse(stats=stats, focus_areas=focus_areas(stats))

    def all_student_stats(self, student_id: str) -> AllStudentStatsResponse:
        stats = self.stats.list_for_student(student_id)
        return AllStudentStatsResponse(stats=stats, count=len(stats))

    def topic_performance(self, student_id: str, subject: str) -> TopicPerformanceResponse:
        topics = self.attempts.topic_performance(student_id, subject)
        return TopicPerformanceResponse(topics=topics, count=len(topics))

    def set_overview(self, student_id: str, coordinate: CurriculumCoordinate) -> TopicSetStats:
        return self.resolver.topic_set_stats(student_id, coordinate)

    def catalog(self, class_number: int, subject: str) -> CatalogResponse:
        topics = self.sets.catalog(class_number, subject)
        return CatalogResponse(topics=topics, count=len(topics))

    def class_stats(self, school_id: str, class_number: int, subject: str) -> ClassSkillSummary:
        subject = normalize_subject(subject)
        return aggregate_class(self.stats.list_for_class(school_id, class_number, subject), school_id, class_number, subject)


def parse_coordinate(**fields) -> CurriculumCoordinate:
    """Build a CurriculumCoordinate, reporting bad fields as a ValidationError."""
    try:
        return CurriculumCoordinate(**fields)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid curriculum coordinate",
            details=format_validation_errors(e.errors(include_url=False, include_context=False)),
        ) from e


def build_quiz_service(db: Session, generate_questions: QuestionSource, rng: Optional[random.Random] = None) -> QuizService:
    """Wire a QuizService over the SQLAlchemy stores of one session."""
    sets = SqlQuestionSetStore(db)
    attempts = SqlAttemptStore(db)
    resolver = QuestionSetResolver(
        sets,
        attempts,
        get_chapter_text=SyllabusChapterTextProvider(db).get_chapter_text,
        generate_questions=generate_questions,
        rng=rng,
        default_num_questions=settings.QUIZ_DEFAULT_NUM_QUESTIONS,
        generation_timeout=settings.GENERATION_TIMEOUT_SECONDS,
    )
    return QuizService(
        sets,
        attempts,
        SqlSkillStatsStore(db, max_retries=settings.STATS_UPDATE_MAX_RETRIES),
        resolver,
        track_topic_stats=settings.TRACK_TOPIC_STATS,
        max_num_questions=settings.QUIZ_MAX_NUM_QUESTIONS,
    )

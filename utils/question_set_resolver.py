"""
Question Set Resolution

Serves a student a previously generated question set for the requested
curriculum coordinate when one exists that the student has not attempted,
and only otherwise pays for a new generation call.

Two concurrent resolutions for a never-seen coordinate can both generate.
Both sets are valid and interchangeable, and later requests reuse either, so
the duplicate is tolerated rather than prevented with a lock.
"""

import math
import random
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, List, Optional, Tuple

from schemas.quiz import CurriculumCoordinate, Question, QuestionSet, TopicSetStats, utc_now
from utils.error_handling import ContentUnavailable, GenerationFailed
from utils.quiz_stores import AttemptStore, QuestionSetStore
from utils.structured_logging import LogCategory, get_logger, log_execution

logger = get_logger("quiz.resolver")

ChapterTextSource = Callable[[int, str, str], str]
QuestionSource = Callable[[str, CurriculumCoordinate, int], List[Question]]

DEFAULT_NUM_QUESTIONS = 10
DEFAULT_GENERATION_TIMEOUT = 90.0


def new_set_id() -> str:
    return f"set_{uuid.uuid4().hex[:12]}"


def difficulty_level_for(questions: List[Question]) -> int:
    """Mean question difficulty (0-1) rescaled to a 1-10 level, rounding halves up."""
    mean = sum(q.difficulty_score for q in questions) / len(questions)
    level = int(math.floor(mean * 10 + 0.5))
    return max(1, min(10, level))


class QuestionSetResolver:
    def __init__(
        self,
        sets: QuestionSetStore,
        attempts: AttemptStore,
        get_chapter_text: ChapterTextSource,
        generate_questions: QuestionSource,
        rng: Optional[random.Random] = None,
        default_num_questions: int = DEFAULT_NUM_QUESTIONS,
        generation_timeout: float = DEFAULT_GENERATION_TIMEOUT,
        clock: Callable = utc_now,
        id_factory: Callable[[], str] = new_set_id,
    ):
        self.sets = sets
        self.attempts = attempts
        self.get_chapter_text = get_chapter_text
        self.generate_questions = generate_questions
        self.rng = rng or random.Random()
        self.default_num_questions = default_num_questions
        self.generation_timeout = generation_timeout
        self.clock = clock
        self.id_factory = id_factory

    @log_execution()
    def resolve(
        self, student_id: str, coordinate: CurriculumCoordinate, num_questions: Optional[int] = None
    ) -> Tuple[QuestionSet, bool]:
        """
        Return a question set for the student and whether it was newly generated.

        Raises:
            ContentUnavailable: no chapter text exists for the coordinate
            GenerationFailed: generation errored, timed out or produced no questions
        """
        candidates = self.sets.find_by_coordinate(coordinate)
        if candidates:
            attempted = self.attempts.attempted_set_ids(student_id, coordinate)
            unattempted = [s for s in candidates if s.set_id not in attempted]
            if unattempted:
                chosen = self.rng.choice(unattempted)
                logger.info(
                    "Reusing existing question set",
                    category=LogCategory.GENERATION,
                    student_id=student_id,
                    set_id=chosen.set_id,
                    extra={"available_sets": len(candidates), "unattempted_sets": len(unattempted)},
                )
                return chosen, False

        count = num_questions or self.default_num_questions
        return self._generate(student_id, coordinate, count), True

    def topic_set_stats(self, student_id: str, coordinate: CurriculumCoordinate) -> TopicSetStats:
        set_ids = {s.set_id for s in self.sets.find_by_coordinate(coordinate)}
        attempted = len(set_ids & self.attempts.attempted_set_ids(student_id, coordinate))
        return TopicSetStats(
            total_sets=len(set_ids),
            attempted_sets=attempted,
            unattempted_sets=len(set_ids) - attempted,
        )

    def _generate(self, student_id: str, coordinate: CurriculumCoordinate, count: int) -> QuestionSet:
        logger.info(
            f"Generating new question set of {count} questions",
            category=LogCategory.GENERATION,
            student_id=student_id,
            extra={"subject": coordinate.subject, "chapter": coordinate.chapter, "topic": coordinate.topic},
        )

        chapter_text = self.get_chapter_text(coordinate.class_number, coordinate.subject, coordinate.chapter)
        if not chapter_text or not chapter_text.strip():
            raise ContentUnavailable(
                f"No content found for {coordinate.subject} > {coordinate.chapter}. Please ensure syllabus is uploaded."
            )

        questions = self._prepare(self._call_generator(chapter_text, coordinate, count), count)
        if not questions:
            raise GenerationFailed("Question generator returned 0 questions. Please try again.")

        question_set = QuestionSet(
            set_id=self.id_factory(),
            coordinate=coordinate,
            questions=questions,
            difficulty_level=difficulty_level_for(questions),
            created_at=self.clock(),
            created_by=student_id,
        )
        self.sets.add(question_set)

        logger.info(
            "Stored new question set",
            category=LogCategory.GENERATION,
            student_id=student_id,
            set_id=question_set.set_id,
            extra={"questions": len(questions), "difficulty_level": question_set.difficulty_level},
        )
        return question_set

    def _call_generator(self, chapter_text: str, coordinate: CurriculumCoordinate, count: int) -> List[Question]:
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="question-generation")
        future = pool.submit(self.generate_questions, chapter_text, coordinate, count)
        try:
            return list(future.result(timeout=self.generation_timeout) or [])
        except FutureTimeoutError as e:
            future.cancel()
            logger.error(
                f"Question generation timed out after {self.generation_timeout}s",
                category=LogCategory.GENERATION,
            )
            raise GenerationFailed(f"Question generation timed out after {self.generation_timeout}s") from e
        except GenerationFailed:
            raise
        except Exception as e:
            logger.error("Question generation failed", category=LogCategory.GENERATION, exception=e)
            raise GenerationFailed(f"Failed to generate questions: {e}") from e
        finally:
            # Do not wait for a timed-out worker
            pool.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _prepare(questions: List[Question], count: int) -> List[Question]:
        questions = questions[:count]
        ids = [q.id for q in questions]
        if len(set(ids)) != len(ids):
            questions = [q.model_copy(update={"id": f"Q{i}"}) for i, q in enumerate(questions, 1)]
        return questions

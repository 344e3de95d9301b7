"""
Grading of quiz submissions.

Every question of the set is graded, answered or not. Unanswered questions
are stored with selected_option_index -1 and count as incorrect, so the score
is always relative to the full set.
"""

import uuid
from collections import OrderedDict
from typing import Callable, Dict, List, Mapping, Optional

from pydantic import BaseModel

from schemas.quiz import (
    FEATURE_NAMES,
    UNANSWERED_OPTION_INDEX,
    Attempt,
    FeatureVector,
    QuestionAnswer,
    QuestionSet,
    SkillScore,
    utc_now,
)
from utils.error_handling import InvariantViolation
from utils.mastery import mastery_level_for
from utils.structured_logging import LogCategory, get_logger

logger = get_logger("quiz.grader")


class GradedAttempt(BaseModel):
    attempt: Attempt
    skill_breakdown: List[SkillScore]


def new_attempt_id() -> str:
    return f"attempt_{uuid.uuid4().hex[:12]}"


def aggregate_features(question_set: QuestionSet, answers: List[QuestionAnswer]) -> FeatureVector:
    """Mean feature vector of the correctly answered questions.

    With no correct answer the result is the zero vector.
    """
    correct_ids = {a.question_id for a in answers if a.is_correct}
    correct_questions = [q for q in question_set.questions if q.id in correct_ids]
    if not correct_questions:
        return FeatureVector.zero()

    totals = {name: 0.0 for name in FEATURE_NAMES}
    for question in correct_questions:
        for name in FEATURE_NAMES:
            totals[name] += getattr(question.features, name)

    count = len(correct_questions)
    return FeatureVector(**{name: min(1.0, totals[name] / count) for name in FEATURE_NAMES})


def skill_breakdown(question_set: QuestionSet, answers: List[QuestionAnswer]) -> List[SkillScore]:
    """Share of correctly answered questions per skill tag, in first-seen tag order."""
    correctness = {a.question_id: a.is_correct for a in answers}
    tallies: "OrderedDict[str, List[int]]" = OrderedDict()  # skill -> [correct, total]

    for question in question_set.questions:
        for skill in question.skills:
            tally = tallies.setdefault(skill, [0, 0])
            tally[1] += 1
            if correctness.get(question.id, False):
                tally[0] += 1

    breakdown = []
    for skill, (correct, total) in tallies.items():
        score = correct / total
        breakdown.append(
            SkillScore(
                skill_name=skill,
                score=score,
                mastery_level=mastery_level_for(score),
                questions_answered=total,
            )
        )
    return breakdown


class Grader:
    """Turns submitted answers into an Attempt and a per-skill breakdown"""

    def __init__(
        self,
        clock: Callable = utc_now,
        id_factory: Callable[[], str] = new_attempt_id,
    ):
        self.clock = clock
        self.id_factory = id_factory

    def grade(
        self,
        question_set: QuestionSet,
        answers: Mapping[str, int],
        student_id: str,
        school_id: Optional[str] = None,
    ) -> GradedAttempt:
        known_ids = {q.id for q in question_set.questions}
        unknown = sorted(set(answers) - known_ids)
        if unknown:
            logger.debug(
                "Ignoring answers for questions outside the set",
                category=LogCategory.GRADING,
                set_id=question_set.set_id,
                student_id=student_id,
                extra={"question_ids": unknown},
            )

        graded: List[QuestionAnswer] = []
        for question in question_set.questions:
            selected = answers.get(question.id, UNANSWERED_OPTION_INDEX)
            graded.append(
                QuestionAnswer(
                    question_id=question.id,
                    selected_option_index=selected,
                    is_correct=selected == question.correct_option_index,
                )
            )

        total = len(question_set.questions)
        correct = sum(1 for a in graded if a.is_correct)
        incorrect = sum(1 for a in graded if not a.is_correct)
        if correct + incorrect != total:
            raise InvariantViolation(
                f"graded {correct}+{incorrect} answers for a set of {total} questions"
            )

        attempt = Attempt(
            attempt_id=self.id_factory(),
            student_id=student_id,
            school_id=school_id,
            set_id=question_set.set_id,
            coordinate=question_set.coordinate,
            answers=graded,
            correct_count=correct,
            incorrect_count=incorrect,
            total_questions=total,
            score_percentage=100.0 * correct / total,
            features_aggregated=aggregate_features(question_set, graded),
            submitted_at=self.clock(),
        )

        logger.info(
            f"Graded attempt {correct}/{total}",
            category=LogCategory.GRADING,
            student_id=student_id,
            set_id=question_set.set_id,
            attempt_id=attempt.attempt_id,
            extra={"unanswered": total - len([s for s in answers if s in known_ids])},
        )

        return GradedAttempt(attempt=attempt, skill_breakdown=skill_breakdown(question_set, graded))


def answers_to_mapping(answers) -> Dict[str, int]:
    """Collapse submitted answer entries to question_id -> option; the last entry wins."""
    return {a.question_id: a.selected_option_index for a in answers}

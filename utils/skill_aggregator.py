"""
Skill Aggregation

Folds graded attempts into a student's running SkillStats. Skill scores and
the feature profile are question-count weighted means, so a 20-question
attempt moves the profile twice as much as a 10-question one and no attempt
history needs to be replayed.

Class aggregates are deliberately coarser: every student counts once,
regardless of how many questions they answered.
"""

from collections import OrderedDict
from typing import Callable, Dict, Iterable, List, Optional

from schemas.quiz import (
    FEATURE_NAMES,
    Attempt,
    ClassSkillSummary,
    FeatureVector,
    FocusAreas,
    MasteryLevel,
    SkillScore,
    SkillStats,
    utc_now,
)
from utils.mastery import mastery_level_for


def _clamp_unit(value: float) -> float:
    return min(1.0, max(0.0, value))


def weighted_mean(old_value: float, old_weight: int, new_value: float, new_weight: int) -> float:
    total_weight = old_weight + new_weight
    if total_weight == 0:
        return 0.0
    return (old_value * old_weight + new_value * new_weight) / total_weight


def merge_skill_scores(existing: Dict[str, SkillScore], new_scores: Iterable[SkillScore]) -> Dict[str, SkillScore]:
    merged = OrderedDict((name, score) for name, score in existing.items())

    for new in new_scores:
        current = merged.get(new.skill_name)
        if current is None:
            merged[new.skill_name] = new
            continue

        score = _clamp_unit(
            weighted_mean(current.score, current.questions_answered, new.score, new.questions_answered)
        )
        merged[new.skill_name] = SkillScore(
            skill_name=new.skill_name,
            score=score,
            mastery_level=mastery_level_for(score),
            questions_answered=current.questions_answered + new.questions_answered,
        )

    return dict(merged)


def merge_features(existing: FeatureVector, old_weight: int, new: FeatureVector, new_weight: int) -> FeatureVector:
    return FeatureVector(
        **{
            name: _clamp_unit(weighted_mean(getattr(existing, name), old_weight, getattr(new, name), new_weight))
            for name in FEATURE_NAMES
        }
    )


class SkillAggregator:
    """Merges attempts into running statistics records"""

    def __init__(self, clock: Callable = utc_now):
        self.clock = clock

    def merge(
        self,
        existing: Optional[SkillStats],
        attempt: Attempt,
        attempt_skill_scores: List[SkillScore],
        topic: Optional[str] = None,
    ) -> SkillStats:
        """
        Return the statistics record after folding in ``attempt``.

        Args:
            existing: Current record, or None for the first attempt
            attempt: The graded attempt
            attempt_skill_scores: The attempt's per-skill breakdown
            topic: Topic of the record being built when ``existing`` is None
                (None builds the subject-level record)
        """
        now = self.clock()

        if existing is None:
            return SkillStats(
                student_id=attempt.student_id,
                school_id=attempt.school_id,
                class_number=attempt.coordinate.class_number,
                subject=attempt.coordinate.subject,
                topic=topic,
                total_questions_answered=attempt.total_questions,
                correct_count=attempt.correct_count,
                incorrect_count=attempt.incorrect_count,
                accuracy_percentage=100.0 * attempt.correct_count / attempt.total_questions,
                skills={s.skill_name: s for s in attempt_skill_scores},
                features_avg=attempt.features_aggregated,
                last_attempt_at=attempt.submitted_at,
                updated_at=now,
            )

        total = existing.total_questions_answered + attempt.total_questions
        correct = existing.correct_count + attempt.correct_count
        incorrect = existing.incorrect_count + attempt.incorrect_count

        return existing.model_copy(
            update={
                "school_id": existing.school_id or attempt.school_id,
                "total_questions_answered": total,
                "correct_count": correct,
                "incorrect_count": incorrect,
                "accuracy_percentage": 100.0 * correct / total if total else 0.0,
                "skills": merge_skill_scores(existing.skills, attempt_skill_scores),
                "features_avg": merge_features(
                    existing.features_avg,
                    existing.total_questions_answered,
                    attempt.features_aggregated,
                    attempt.total_questions,
                ),
                "last_attempt_at": attempt.submitted_at,
                "updated_at": now,
            }
        )


def aggregate_class(
    stats: List[SkillStats], school_id: str, class_number: int, subject: str
) -> ClassSkillSummary:
    """Unweighted class means of accuracy and of each skill score."""
    if not stats:
        return ClassSkillSummary(
            school_id=school_id, class_number=class_number, subject=subject, total_students=0, avg_accuracy=0.0
        )

    skill_totals: "OrderedDict[str, List[float]]" = OrderedDict()
    for record in stats:
        for skill in record.skills.values():
            skill_totals.setdefault(skill.skill_name, []).append(skill.score)

    avg_skills = []
    for name, scores in skill_totals.items():
        avg = sum(scores) / len(scores)
        avg_skills.append(
            SkillScore(skill_name=name, score=avg, mastery_level=mastery_level_for(avg), questions_answered=0)
        )

    return ClassSkillSummary(
        school_id=school_id,
        class_number=class_number,
        subject=subject,
        total_students=len(stats),
        avg_accuracy=sum(s.accuracy_percentage for s in stats) / len(stats),
        avg_skills=avg_skills,
    )


def focus_areas(stats: SkillStats, limit: int = 3) -> FocusAreas:
    """Weakest skills below "competent" and the weakest cognitive feature."""
    weak = [s for s in stats.skills.values() if s.mastery_level.rank < MasteryLevel.COMPETENT.rank]
    weak.sort(key=lambda s: (s.score, s.skill_name))

    weakest_feature = None
    if stats.total_questions_answered:
        features = stats.features_avg.as_dict()
        weakest_feature = min(FEATURE_NAMES, key=lambda name: features[name])

    return FocusAreas(weak_skills=weak[:limit], weakest_feature=weakest_feature)

"""Score to mastery label conversion shared by grading, merging and class aggregates."""

from schemas.quiz import MasteryLevel

LEARNER_THRESHOLD = 0.4
COMPETENT_THRESHOLD = 0.6
EXPERT_THRESHOLD = 0.8


def mastery_level_for(score: float) -> MasteryLevel:
    """Map a skill score in [0, 1] to its mastery label.

    Boundaries are inclusive on the upper label: 0.4 is already "learner".
    """
    if score < LEARNER_THRESHOLD:
        return MasteryLevel.NOVICE
    if score < COMPETENT_THRESHOLD:
        return MasteryLevel.LEARNER
    if score < EXPERT_THRESHOLD:
        return MasteryLevel.COMPETENT
    return MasteryLevel.EXPERT

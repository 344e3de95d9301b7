from datetime import datetime

import pytest

from schemas.quiz import FeatureVector, MasteryLevel, SkillScore, SkillStats
from utils.grader import Grader
from utils.mastery import mastery_level_for
from utils.skill_aggregator import SkillAggregator, aggregate_class, focus_areas, weighted_mean
from conftest import FixedClock, build_question, build_question_set


@pytest.fixture
def question_set(coordinate):
    # Q1-Q5 numerical, Q6-Q10 memorization; correct option is always 1
    questions = [
        build_question(
            f"Q{i}",
            correct_option_index=1,
            skills=["numerical"] if i <= 5 else ["memorization"],
            features=FeatureVector(memorization=0.2, reasoning=0.4, numerical=0.8, language=0.1)
            if i <= 5
            else FeatureVector(memorization=0.9, reasoning=0.2, numerical=0.0, language=0.5),
        )
        for i in range(1, 11)
    ]
    return build_question_set("set_ten", coordinate, questions=questions)


@pytest.fixture
def grader():
    return Grader(clock=FixedClock())


@pytest.fixture
def aggregator():
    return SkillAggregator(clock=FixedClock(datetime(2024, 6, 1)))


def answer(correct_ids):
    return {f"Q{i}": (1 if i in correct_ids else 0) for i in range(1, 11)}


def make_stats(student_id, accuracy, skills, features=None, total=10):
    correct = int(round(total * accuracy / 100))
    return SkillStats(
        student_id=student_id,
        school_id="school-1",
        class_number=9,
        subject="physics",
        total_questions_answered=total,
        correct_count=correct,
        incorrect_count=total - correct,
        accuracy_percentage=accuracy,
        skills={
            name: SkillScore(skill_name=name, score=score, mastery_level=mastery_level_for(score), questions_answered=5)
            for name, score in skills.items()
        },
        features_avg=features or FeatureVector(),
        updated_at=datetime(2024, 1, 1),
    )


class TestSkillAggregatorMerge:
    def test_first_attempt_initialises_record(self, grader, aggregator, question_set):
        graded = grader.grade(question_set, answer({1, 2, 3, 4, 6, 7}), student_id="student-1", school_id="school-1")
        stats = aggregator.merge(None, graded.attempt, graded.skill_breakdown)

        assert stats.student_id == "student-1"
        assert stats.school_id == "school-1"
        assert stats.class_number == 9
        assert stats.subject == "physics"
        assert stats.topic is None
        assert stats.total_questions_answered == 10
        assert stats.correct_count == 6
        assert stats.accuracy_percentage == pytest.approx(60.0)
        assert stats.skills["numerical"].score == pytest.approx(0.8)
        assert stats.features_avg == graded.attempt.features_aggregated
        assert stats.last_attempt_at == graded.attempt.submitted_at

    def test_topic_record(self, grader, aggregator, question_set):
        graded = grader.grade(question_set, answer({1}), student_id="student-1")
        stats = aggregator.merge(None, graded.attempt, graded.skill_breakdown, topic="Speed and Velocity")
        assert stats.topic == "Speed and Velocity"

    def test_six_then_eight_of_ten(self, grader, aggregator, question_set):
        first = grader.grade(question_set, answer({1, 2, 3, 4, 6, 7}), student_id="student-1")
        second = grader.grade(question_set, answer({1, 2, 3, 4, 5, 6, 7, 8}), student_id="student-1")

        stats = aggregator.merge(None, first.attempt, first.skill_breakdown)
        stats = aggregator.merge(stats, second.attempt, second.skill_breakdown)

        assert stats.total_questions_answered == 20
        assert stats.correct_count == 14
        assert stats.incorrect_count == 6
        assert stats.accuracy_percentage == pytest.approx(70.0)

        numerical = stats.skills["numerical"]
        assert numerical.score == pytest.approx(0.9)
        assert numerical.questions_answered == 10
        assert numerical.mastery_level == MasteryLevel.EXPERT

        memorization = stats.skills["memorization"]
        assert memorization.score == pytest.approx(0.5)
        assert memorization.mastery_level == MasteryLevel.LEARNER

        expected_numerical = (
            first.attempt.features_aggregated.numerical * 10 + second.attempt.features_aggregated.numerical * 10
        ) / 20
        assert stats.features_avg.numerical == pytest.approx(expected_numerical)
        assert stats.last_attempt_at == second.attempt.submitted_at

    def test_merge_matches_counts_over_all_attempts(self, grader, aggregator, question_set):
        answer_sets = [{1, 6}, {1, 2, 3, 6, 7, 8, 9}, {2, 4, 5, 10}]
        stats = None
        for correct_ids in answer_sets:
            graded = grader.grade(question_set, answer(correct_ids), student_id="student-1")
            stats = aggregator.merge(stats, graded.attempt, graded.skill_breakdown)

        numerical_correct = sum(len([i for i in ids if i <= 5]) for ids in answer_sets)
        memorization_correct = sum(len([i for i in ids if i > 5]) for ids in answer_sets)

        assert stats.skills["numerical"].score == pytest.approx(numerical_correct / 15)
        assert stats.skills["memorization"].score == pytest.approx(memorization_correct / 15)
        assert stats.skills["numerical"].questions_answered == 15
        assert stats.correct_count == numerical_correct + memorization_correct
        assert stats.accuracy_percentage == pytest.approx(100.0 * stats.correct_count / 30)

    def test_new_skill_inserted_as_is(self, grader, aggregator, question_set, coordinate):
        first = grader.grade(question_set, answer({1}), student_id="student-1")
        stats = aggregator.merge(None, first.attempt, first.skill_breakdown)

        language_set = build_question_set(
            "set_lang", coordinate, questions=[build_question("Q1", correct_option_index=1, skills=["language"])]
        )
        second = grader.grade(language_set, {"Q1": 1}, student_id="student-1")
        stats = aggregator.merge(stats, second.attempt, second.skill_breakdown)

        assert stats.skills["language"].score == 1.0
        assert stats.skills["language"].questions_answered == 1
        assert stats.skills["numerical"].questions_answered == 5

    def test_merge_does_not_modify_existing(self, grader, aggregator, question_set):
        first = grader.grade(question_set, answer({1}), student_id="student-1")
        existing = aggregator.merge(None, first.attempt, first.skill_breakdown)
        second = grader.grade(question_set, answer({1, 2, 3}), student_id="student-1")

        aggregator.merge(existing, second.attempt, second.skill_breakdown)

        assert existing.total_questions_answered == 10
        assert existing.correct_count == 1


class TestClassAggregate:
    def test_unweighted_means(self):
        stats = [
            make_stats("student-1", 60.0, {"numerical": 0.8, "memorization": 0.4}),
            make_stats("student-2", 80.0, {"numerical": 0.4}, total=40),
        ]
        summary = aggregate_class(stats, "school-1", 9, "physics")

        assert summary.total_students == 2
        assert summary.avg_accuracy == pytest.approx(70.0)

        skills = {s.skill_name: s for s in summary.avg_skills}
        assert skills["numerical"].score == pytest.approx(0.6)
        assert skills["numerical"].mastery_level == MasteryLevel.COMPETENT
        assert skills["numerical"].questions_answered == 0
        assert skills["memorization"].score == pytest.approx(0.4)

    def test_empty_class(self):
        summary = aggregate_class([], "school-1", 9, "physics")
        assert summary.total_students == 0
        assert summary.avg_accuracy == 0.0
        assert summary.avg_skills == []


class TestFocusAreas:
    def test_weak_skills_sorted_and_limited(self):
        stats = make_stats(
            "student-1",
            50.0,
            {"reasoning": 0.3, "numerical": 0.3, "memorization": 0.5, "language": 0.9, "application": 0.1},
            features=FeatureVector(memorization=0.6, reasoning=0.2, numerical=0.4, language=0.7),
        )
        areas = focus_areas(stats)

        assert [s.skill_name for s in areas.weak_skills] == ["application", "numerical", "reasoning"]
        assert areas.weakest_feature == "reasoning"

    def test_no_weak_skills(self):
        stats = make_stats("student-1", 90.0, {"numerical": 0.9})
        assert focus_areas(stats).weak_skills == []


def test_weighted_mean_with_no_weight():
    assert weighted_mean(0.5, 0, 0.7, 0) == 0.0

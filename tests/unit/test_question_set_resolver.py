import random
import threading
from datetime import datetime
from unittest.mock import MagicMock

import pytest

from schemas.quiz import CurriculumCoordinate, DifficultyLabel, FeatureVector
from utils.error_handling import ContentUnavailable, GenerationFailed
from utils.grader import Grader
from utils.memory_stores import InMemoryAttemptStore, InMemoryQuestionSetStore
from utils.question_set_resolver import QuestionSetResolver, difficulty_level_for
from conftest import CHAPTER_TEXT, FakeQuestionGenerator, FixedClock, build_question, build_question_set


@pytest.fixture
def sets():
    return InMemoryQuestionSetStore()


@pytest.fixture
def attempts():
    return InMemoryAttemptStore()


@pytest.fixture
def chapter_text():
    return MagicMock(return_value=CHAPTER_TEXT)


@pytest.fixture
def generator():
    return FakeQuestionGenerator()


@pytest.fixture
def resolver(sets, attempts, chapter_text, generator):
    return QuestionSetResolver(
        sets,
        attempts,
        get_chapter_text=chapter_text,
        generate_questions=generator,
        rng=random.Random(42),
        default_num_questions=5,
        generation_timeout=2.0,
        clock=FixedClock(),
    )


def attempt_set(attempts, question_set, student_id="student-1"):
    graded = Grader().grade(question_set, {"Q1": 0}, student_id=student_id)
    attempts.add(graded.attempt)


class TestReuse:
    def test_reuses_unattempted_set(self, resolver, sets, coordinate, generator):
        stored = sets.add(build_question_set("set_existing", coordinate))

        question_set, is_new = resolver.resolve("student-1", coordinate)

        assert question_set.set_id == stored.set_id
        assert is_new is False
        assert generator.calls == []

    def test_never_serves_attempted_set(self, resolver, sets, attempts, coordinate):
        first = sets.add(build_question_set("set_a", coordinate, created_at=datetime(2024, 1, 1)))
        second = sets.add(build_question_set("set_b", coordinate, created_at=datetime(2024, 1, 2)))
        attempt_set(attempts, first)

        for _ in range(10):
            question_set, is_new = resolver.resolve("student-1", coordinate)
            assert question_set.set_id == second.set_id
            assert is_new is False

    def test_other_students_attempts_do_not_count(self, resolver, sets, attempts, coordinate):
        stored = sets.add(build_question_set("set_a", coordinate))
        attempt_set(attempts, stored, student_id="student-2")

        question_set, is_new = resolver.resolve("student-1", coordinate)
        assert question_set.set_id == "set_a"
        assert is_new is False

    def test_seeded_choice_is_deterministic(self, sets, attempts, chapter_text, generator, coordinate):
        for i in range(5):
            sets.add(build_question_set(f"set_{i}", coordinate, created_at=datetime(2024, 1, i + 1)))

        def pick(seed):
            resolver = QuestionSetResolver(sets, attempts, chapter_text, generator, rng=random.Random(seed))
            return [resolver.resolve("student-1", coordinate)[0].set_id for _ in range(5)]

        assert pick(7) == pick(7)

    def test_medium_request_reuses_unlabelled_set(self, resolver, sets, coordinate):
        sets.add(build_question_set("set_plain", coordinate))
        medium = coordinate.model_copy(update={"difficulty_label": DifficultyLabel.MEDIUM})

        question_set, is_new = resolver.resolve("student-1", medium)
        assert question_set.set_id == "set_plain"
        assert is_new is False

    def test_hard_request_does_not_reuse_unlabelled_set(self, resolver, sets, coordinate, generator):
        sets.add(build_question_set("set_plain", coordinate))
        hard = coordinate.model_copy(update={"difficulty_label": DifficultyLabel.HARD})

        question_set, is_new = resolver.resolve("student-1", hard)
        assert is_new is True
        assert question_set.coordinate.difficulty_label == DifficultyLabel.HARD
        assert len(generator.calls) == 1


class TestGeneration:
    def test_generates_when_no_sets_exist(self, resolver, sets, coordinate, generator, chapter_text):
        question_set, is_new = resolver.resolve("student-1", coordinate, num_questions=4)

        assert is_new is True
        assert question_set.set_id.startswith("set_")
        assert len(question_set.set_id) == len("set_") + 12
        assert len(question_set.questions) == 4
        assert question_set.created_by == "student-1"
        assert question_set.coordinate == coordinate
        assert sets.get(question_set.set_id) == question_set

        chapter_text.assert_called_once_with(9, "physics", "Motion")
        assert generator.calls[0]["chapter_text"] == CHAPTER_TEXT
        assert generator.calls[0]["count"] == 4

    def test_uses_default_count(self, resolver, coordinate, generator):
        resolver.resolve("student-1", coordinate)
        assert generator.calls[0]["count"] == 5

    def test_generates_when_all_sets_attempted(self, resolver, sets, attempts, coordinate):
        stored = sets.add(build_question_set("set_a", coordinate))
        attempt_set(attempts, stored)

        question_set, is_new = resolver.resolve("student-1", coordinate)

        assert is_new is True
        assert question_set.set_id != stored.set_id
        assert len(sets.find_by_coordinate(coordinate)) == 2

    def test_generated_set_is_reused_next_time_by_others(self, resolver, coordinate, generator):
        generated, _ = resolver.resolve("student-1", coordinate)
        reused, is_new = resolver.resolve("student-2", coordinate)

        assert reused.set_id == generated.set_id
        assert is_new is False
        assert len(generator.calls) == 1

    def test_missing_chapter_text(self, resolver, coordinate, chapter_text, generator):
        chapter_text.side_effect = ContentUnavailable("no syllabus")

        with pytest.raises(ContentUnavailable):
            resolver.resolve("student-1", coordinate)
        assert generator.calls == []

    def test_blank_chapter_text(self, resolver, coordinate, chapter_text):
        chapter_text.return_value = "   \n"

        with pytest.raises(ContentUnavailable):
            resolver.resolve("student-1", coordinate)

    def test_zero_questions(self, sets, attempts, chapter_text, coordinate):
        resolver = QuestionSetResolver(sets, attempts, chapter_text, MagicMock(return_value=[]))

        with pytest.raises(GenerationFailed):
            resolver.resolve("student-1", coordinate)
        assert sets.find_by_coordinate(coordinate) == []

    def test_generator_error(self, sets, attempts, chapter_text, coordinate):
        resolver = QuestionSetResolver(sets, attempts, chapter_text, MagicMock(side_effect=RuntimeError("boom")))

        with pytest.raises(GenerationFailed) as exc_info:
            resolver.resolve("student-1", coordinate)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_generation_timeout(self, sets, attempts, chapter_text, coordinate):
        release = threading.Event()

        def slow_generator(text, hints, count):
            release.wait(5)
            return []

        resolver = QuestionSetResolver(sets, attempts, chapter_text, slow_generator, generation_timeout=0.05)
        try:
            with pytest.raises(GenerationFailed, match="timed out"):
                resolver.resolve("student-1", coordinate)
        finally:
            release.set()
        assert sets.find_by_coordinate(coordinate) == []

    def test_extra_questions_dropped(self, sets, attempts, chapter_text, coordinate):
        questions = [build_question(f"Q{i}") for i in range(1, 8)]
        resolver = QuestionSetResolver(sets, attempts, chapter_text, MagicMock(return_value=questions))

        question_set, _ = resolver.resolve("student-1", coordinate, num_questions=3)
        assert [q.id for q in question_set.questions] == ["Q1", "Q2", "Q3"]

    def test_duplicate_ids_renumbered(self, sets, attempts, chapter_text, coordinate):
        questions = [build_question("Q1"), build_question("Q1"), build_question("Q2")]
        resolver = QuestionSetResolver(sets, attempts, chapter_text, MagicMock(return_value=questions))

        question_set, _ = resolver.resolve("student-1", coordinate, num_questions=3)
        assert [q.id for q in question_set.questions] == ["Q1", "Q2", "Q3"]


class TestDifficultyLevel:
    @pytest.mark.parametrize(
        "scores, expected",
        [
            ([0.0, 0.0], 1),
            ([0.47], 5),
            ([0.75], 8),
            ([0.5, 0.7], 6),
            ([0.25], 3),
            ([0.94], 9),
            ([1.0, 1.0], 10),
        ],
    )
    def test_rescaled_mean(self, scores, expected):
        questions = [build_question(f"Q{i}", difficulty_score=s) for i, s in enumerate(scores, 1)]
        assert difficulty_level_for(questions) == expected

    def test_generated_set_level(self, resolver, coordinate):
        # FakeQuestionGenerator scores every question 0.52
        question_set, _ = resolver.resolve("student-1", coordinate)
        assert question_set.difficulty_level == 5


class TestTopicSetStats:
    def test_counts(self, resolver, sets, attempts, coordinate):
        first = sets.add(build_question_set("set_a", coordinate))
        sets.add(build_question_set("set_b", coordinate))
        attempt_set(attempts, first)
        attempt_set(attempts, first)

        stats = resolver.topic_set_stats("student-1", coordinate)
        assert stats.total_sets == 2
        assert stats.attempted_sets == 1
        assert stats.unattempted_sets == 1

    def test_no_sets(self, resolver, coordinate):
        stats = resolver.topic_set_stats("student-1", coordinate)
        assert (stats.total_sets, stats.attempted_sets, stats.unattempted_sets) == (0, 0, 0)

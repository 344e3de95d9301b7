from unittest.mock import MagicMock

import openai
import pytest

from schemas.question_generation import GeneratedFeatures, GeneratedQuestion, GeneratedQuestionBatch
from schemas.quiz import DifficultyLabel
from utils.error_handling import GenerationFailed
from utils.question_generator import (
    MAX_CHAPTER_TEXT_CHARS,
    OpenAIQuestionGenerator,
    build_generation_prompt,
    difficulty_from_features,
    to_question,
)
from conftest import CHAPTER_TEXT


def generated(question_id, options=None, **features):
    values = dict(memorization=0.2, reasoning=0.8, numerical=0.6, language=0.4)
    values.update(features)
    return GeneratedQuestion(
        id=question_id,
        question="A car covers 100 m in 5 s. What is its speed?",
        options=options or ["10 m/s", "20 m/s", "25 m/s", "50 m/s"],
        correct_option_index=1,
        skills=["numerical", "reasoning"],
        features=GeneratedFeatures(**values),
    )


def mock_client(batch):
    client = MagicMock()
    client.chat.completions.parse.return_value.choices = [MagicMock(message=MagicMock(parsed=batch))]
    return client


class TestOpenAIQuestionGenerator:
    def test_returns_validated_questions(self, coordinate):
        client = mock_client(GeneratedQuestionBatch(questions=[generated("Q1"), generated("Q2", numerical=1.4)]))
        generator = OpenAIQuestionGenerator(client=client, model="test-model")

        questions = generator.generate_questions(CHAPTER_TEXT, coordinate, 2)

        assert [q.id for q in questions] == ["Q1", "Q2"]
        assert questions[0].difficulty_score == pytest.approx(0.5)
        assert questions[1].features.numerical == 1.0
        assert questions[0].skills == ["numerical", "reasoning"]

        kwargs = client.chat.completions.parse.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["response_format"] is GeneratedQuestionBatch
        assert CHAPTER_TEXT in kwargs["messages"][1]["content"]

    def test_invalid_questions_are_dropped(self, coordinate):
        batch = GeneratedQuestionBatch(questions=[generated("Q1", options=["a", "b", "c"]), generated("Q2")])
        generator = OpenAIQuestionGenerator(client=mock_client(batch))

        questions = generator.generate_questions(CHAPTER_TEXT, coordinate, 2)
        assert [q.id for q in questions] == ["Q2"]

    def test_short_chapter_text(self, coordinate):
        client = mock_client(GeneratedQuestionBatch(questions=[]))
        generator = OpenAIQuestionGenerator(client=client)

        with pytest.raises(GenerationFailed):
            generator.generate_questions("Too short", coordinate, 5)
        client.chat.completions.parse.assert_not_called()

    def test_long_chapter_text_is_truncated(self, coordinate):
        client = mock_client(GeneratedQuestionBatch(questions=[generated("Q1")]))
        generator = OpenAIQuestionGenerator(client=client)

        generator.generate_questions("x" * (MAX_CHAPTER_TEXT_CHARS + 500), coordinate, 1)

        user_message = client.chat.completions.parse.call_args.kwargs["messages"][1]["content"]
        assert user_message.count("x") == MAX_CHAPTER_TEXT_CHARS

    def test_api_error(self, coordinate):
        client = MagicMock()
        client.chat.completions.parse.side_effect = openai.OpenAIError("service unavailable")
        generator = OpenAIQuestionGenerator(client=client)

        with pytest.raises(GenerationFailed):
            generator.generate_questions(CHAPTER_TEXT, coordinate, 5)

    def test_unparsable_response(self, coordinate):
        generator = OpenAIQuestionGenerator(client=mock_client(None))

        with pytest.raises(GenerationFailed):
            generator.generate_questions(CHAPTER_TEXT, coordinate, 5)


class TestPromptAndScoring:
    def test_prompt_mentions_coordinate_and_count(self, coordinate):
        prompt = build_generation_prompt(coordinate, 7)

        assert "EXACTLY 7" in prompt
        assert "Speed and Velocity" in prompt
        assert "Class 9" in prompt
        assert "Overall difficulty: medium" in prompt

    def test_prompt_uses_requested_difficulty(self, coordinate):
        hard = coordinate.model_copy(update={"difficulty_label": DifficultyLabel.HARD})
        assert "Overall difficulty: hard" in build_generation_prompt(hard, 3)

    def test_difficulty_is_mean_of_features(self):
        question = to_question(generated("Q1", memorization=0.1, reasoning=0.3, numerical=0.5, language=0.7))
        assert question.difficulty_score == pytest.approx(0.4)
        assert difficulty_from_features(question.features) == pytest.approx(0.4)

"""
Question Generation

OpenAI-backed implementation of the question generation collaborator: given
chapter text, curriculum hints and a count, returns validated multiple-choice
questions with skill tags, feature scores and a difficulty score.
"""

from functools import lru_cache
from typing import List, Optional

import openai
from pydantic import ValidationError as PydanticValidationError

from config import settings
from schemas.question_generation import GeneratedQuestion, GeneratedQuestionBatch
from schemas.quiz import FEATURE_NAMES, CurriculumCoordinate, FeatureVector, Question
from utils.error_handling import GenerationFailed
from utils.structured_logging import LogCategory, get_logger

logger = get_logger("quiz.generator")

MIN_CHAPTER_TEXT_LENGTH = 100
MAX_CHAPTER_TEXT_CHARS = 24000


@lru_cache(maxsize=1)
def get_openai_client():
    """
    Get singleton OpenAI client instance.

    Returns:
        OpenAI client configured with the API key and generation timeout from settings
    """
    return openai.OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.GENERATION_TIMEOUT_SECONDS)


def _class_level_description(class_number: int) -> str:
    if class_number <= 5:
        return "primary school (simple language, basic concepts, foundational knowledge)"
    elif class_number <= 8:
        return "middle school (moderate complexity, introduction to advanced topics)"
    elif class_number <= 10:
        return "secondary school (detailed concepts, application-based)"
    return "senior secondary (advanced concepts, analytical thinking)"


def build_generation_prompt(hints: CurriculumCoordinate, count: int) -> str:
    difficulty = hints.difficulty_label.value if hints.difficulty_label else "medium"
    return f"""You are an experienced school teacher and assessment designer for Class {hints.class_number}, \
{_class_level_description(hints.class_number)}.

Write EXACTLY {count} multiple-choice questions on the topic "{hints.topic}" from the chapter \
"{hints.chapter}" ({hints.subject}). Overall difficulty: {difficulty}.

RULES:
1. Every question must come from the chapter content provided by the user.
2. Each question has exactly 4 options and exactly one correct option (correct_option_index 0-3).
3. Mix the question types: calculation-based questions where the subject allows it, conceptual \
reasoning questions, and definition or fact recall questions.
4. Tag each question with 1-3 skills (for example "numerical", "reasoning", "memorization", "language").
5. Score each question's features from 0.0 to 1.0:
   - memorization: how much it relies on recalling facts or definitions
   - reasoning: how much conceptual or logical thinking it needs
   - numerical: how much calculation it needs
   - language: how much reading comprehension it needs
   A calculation question should score numerical >= 0.7, a reasoning question reasoning >= 0.7.
6. Use age-appropriate language. Math may be written in LaTeX.
7. Use ids Q1, Q2, ... in order."""


def difficulty_from_features(features: FeatureVector) -> float:
    """Equal-weight mean of the four feature intensities."""
    values = features.as_dict()
    return round(sum(values[name] for name in FEATURE_NAMES) / len(FEATURE_NAMES), 4)


def to_question(generated: GeneratedQuestion) -> Question:
    raw = generated.features.model_dump()
    features = FeatureVector(**{name: min(1.0, max(0.0, float(raw[name]))) for name in FEATURE_NAMES})
    return Question(
        id=generated.id.strip(),
        question=generated.question,
        options=generated.options,
        correct_option_index=generated.correct_option_index,
        skills=generated.skills,
        features=features,
        difficulty_score=difficulty_from_features(features),
    )


class OpenAIQuestionGenerator:
    """Generates questions with an OpenAI chat model using structured output"""

    def __init__(self, client=None, model: Optional[str] = None):
        self._client = client
        self.model = model or settings.LLM_MODEL_NAME

    @property
    def client(self):
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def generate_questions(self, chapter_text: str, hints: CurriculumCoordinate, count: int) -> List[Question]:
        text = (chapter_text or "").strip()
        if len(text) < MIN_CHAPTER_TEXT_LENGTH:
            raise GenerationFailed(
                f"Chapter text is too short ({len(text)} chars). Minimum {MIN_CHAPTER_TEXT_LENGTH} characters required"
            )

        logger.info(
            f"Requesting {count} questions from {self.model}",
            category=LogCategory.GENERATION,
            extra={"subject": hints.subject, "chapter": hints.chapter, "topic": hints.topic, "text_length": len(text)},
        )

        try:
            response = self.client.chat.completions.parse(
                model=self.model,
                messages=[
                    {"role": "system", "content": build_generation_prompt(hints, count)},
                    {"role": "user", "content": f"CHAPTER CONTENT:\n{text[:MAX_CHAPTER_TEXT_CHARS]}"},
                ],
                response_format=GeneratedQuestionBatch,
            )
        except openai.OpenAIError as e:
            logger.error("Question generation request failed", category=LogCategory.GENERATION, exception=e)
            raise GenerationFailed(f"Failed to generate questions: {e}") from e

        batch = response.choices[0].message.parsed
        if batch is None:
            raise GenerationFailed("Model returned no parsable question batch")

        questions = []
        for index, generated in enumerate(batch.questions):
            try:
                questions.append(to_question(generated))
            except PydanticValidationError as e:
                # One malformed question does not sink the batch
                logger.warning(
                    f"Dropping invalid generated question {index}",
                    category=LogCategory.GENERATION,
                    extra={"errors": e.errors(include_url=False, include_context=False)},
                )

        logger.info(
            f"Generated {len(questions)} valid questions",
            category=LogCategory.GENERATION,
            extra={"returned": len(batch.questions)},
        )
        return questions

"""
Typed records for the quiz engine and the request/response shapes of the quiz API
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FEATURE_NAMES = ("memorization", "reasoning", "numerical", "language")

OPTIONS_PER_QUESTION = 4
UNANSWERED_OPTION_INDEX = -1


def utc_now() -> datetime:
    """Naive UTC timestamp, the form every persisted datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_subject(subject: str) -> str:
    return subject.strip().lower()


# ============================================================================
# ENUMS
# ============================================================================


class DifficultyLabel(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class MasteryLevel(str, Enum):
    NOVICE = "novice"
    LEARNER = "learner"
    COMPETENT = "competent"
    EXPERT = "expert"

    @property
    def rank(self) -> int:
        return _MASTERY_RANKS[self]


_MASTERY_RANKS = {
    MasteryLevel.NOVICE: 0,
    MasteryLevel.LEARNER: 1,
    MasteryLevel.COMPETENT: 2,
    MasteryLevel.EXPERT: 3,
}


# ============================================================================
# CURRICULUM AND QUESTIONS
# ============================================================================


class CurriculumCoordinate(BaseModel):
    """Identifies a teachable unit: class, subject, chapter, topic and optional difficulty"""

    model_config = ConfigDict(frozen=True)

    class_number: int = Field(..., ge=1)
    subject: str
    chapter: str
    topic: str
    difficulty_label: Optional[DifficultyLabel] = None

    @field_validator("subject")
    @classmethod
    def normalize_subject(cls, value: str) -> str:
        value = normalize_subject(value)
        if not value:
            raise ValueError("subject must not be empty")
        return value

    @field_validator("chapter", "topic")
    @classmethod
    def strip_text(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value

    @property
    def class_label(self) -> str:
        return f"Class {self.class_number}"

    def matching_difficulty_labels(self) -> FrozenSet[Optional[DifficultyLabel]]:
        """Labels of stored sets this coordinate may be served from.

        A missing label and "medium" are interchangeable.
        """
        if self.difficulty_label in (None, DifficultyLabel.MEDIUM):
            return frozenset({None, DifficultyLabel.MEDIUM})
        return frozenset({self.difficulty_label})

    def matches(self, other: "CurriculumCoordinate") -> bool:
        return (
            self.class_number == other.class_number
            and self.subject == other.subject
            and self.chapter == other.chapter
            and self.topic == other.topic
            and other.difficulty_label in self.matching_difficulty_labels()
        )


class FeatureVector(BaseModel):
    """Cognitive-demand intensities of a question, attempt or running profile"""

    model_config = ConfigDict(frozen=True)

    memorization: float = Field(0.0, ge=0.0, le=1.0)
    reasoning: float = Field(0.0, ge=0.0, le=1.0)
    numerical: float = Field(0.0, ge=0.0, le=1.0)
    language: float = Field(0.0, ge=0.0, le=1.0)

    @classmethod
    def zero(cls) -> "FeatureVector":
        return cls()

    def as_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in FEATURE_NAMES}


class Question(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=1, description="Prompt text, may contain LaTeX")
    options: List[str] = Field(..., min_length=OPTIONS_PER_QUESTION, max_length=OPTIONS_PER_QUESTION)
    correct_option_index: int = Field(..., ge=0, le=OPTIONS_PER_QUESTION - 1)
    skills: List[str] = Field(..., min_length=1)
    features: FeatureVector
    difficulty_score: float = Field(..., ge=0.0, le=1.0)

    @field_validator("skills")
    @classmethod
    def clean_skills(cls, value: List[str]) -> List[str]:
        cleaned = []
        for skill in value:
            skill = skill.strip()
            if skill and skill not in cleaned:
                cleaned.append(skill)
        if not cleaned:
            raise ValueError("question needs at least one skill tag")
        return cleaned

    @model_validator(mode="after")
    def check_answer_key(self) -> "Question":
        if self.correct_option_index >= len(self.options):
            raise ValueError("correct_option_index does not index an option")
        return self

    def to_public(self) -> "PublicQuestion":
        return PublicQuestion(
            id=self.id,
            question=self.question,
            options=list(self.options),
            skills=list(self.skills),
            difficulty_score=self.difficulty_score,
        )


class PublicQuestion(BaseModel):
    """Question as served to a student, without the answer key"""

    id: str
    question: str
    options: List[str]
    skills: List[str]
    difficulty_score: float


class QuestionSet(BaseModel):
    """Immutable batch of generated questions shared by every student of a coordinate"""

    model_config = ConfigDict(frozen=True)

    set_id: str
    coordinate: CurriculumCoordinate
    questions: List[Question] = Field(..., min_length=1)
    difficulty_level: int = Field(..., ge=1, le=10)
    created_at: datetime
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def check_unique_question_ids(self) -> "QuestionSet":
        ids = [q.id for q in self.questions]
        if len(ids) != len(set(ids)):
            raise ValueError("question ids must be unique within a set")
        return self


# ============================================================================
# ATTEMPTS
# ============================================================================


class QuestionAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    question_id: str
    selected_option_index: int = Field(..., ge=UNANSWERED_OPTION_INDEX, le=OPTIONS_PER_QUESTION - 1)
    is_correct: bool


class Attempt(BaseModel):
    """One graded submission of one student against one question set"""

    model_config = ConfigDict(frozen=True)

    attempt_id: str
    student_id: str
    school_id: Optional[str] = None
    set_id: str
    coordinate: CurriculumCoordinate
    answers: List[QuestionAnswer]
    correct_count: int = Field(..., ge=0)
    incorrect_count: int = Field(..., ge=0)
    total_questions: int = Field(..., ge=1)
    score_percentage: float = Field(..., ge=0.0, le=100.0)
    features_aggregated: FeatureVector
    submitted_at: datetime

    @property
    def score_total(self) -> int:
        return self.correct_count


# ============================================================================
# SKILL STATISTICS
# ============================================================================


class SkillScore(BaseModel):
    skill_name: str
    score: float = Field(..., ge=0.0, le=1.0)
    mastery_level: MasteryLevel
    questions_answered: int = Field(..., ge=0)


class SkillStatsKey(NamedTuple):
    student_id: str
    subject: str
    topic: Optional[str] = None


class SkillStats(BaseModel):
    """Running statistics of one student for a subject, or for one topic of it"""

    student_id: str
    school_id: Optional[str] = None
    class_number: int
    subject: str
    topic: Optional[str] = None
    total_questions_answered: int = Field(0, ge=0)
    correct_count: int = Field(0, ge=0)
    incorrect_count: int = Field(0, ge=0)
    accuracy_percentage: float = Field(0.0, ge=0.0, le=100.0)
    skills: Dict[str, SkillScore] = Field(default_factory=dict)
    features_avg: FeatureVector = Field(default_factory=FeatureVector)
    last_attempt_at: Optional[datetime] = None
    updated_at: datetime
    version: int = 0


class FocusAreas(BaseModel):
    """Study-plan hints derived from a statistics record"""

    weak_skills: List[SkillScore] = Field(default_factory=list)
    weakest_feature: Optional[str] = None


class ClassSkillSummary(BaseModel):
    school_id: str
    class_number: int
    subject: str
    total_students: int
    avg_accuracy: float
    avg_skills: List[SkillScore] = Field(default_factory=list)


# ============================================================================
# ANALYTICS RECORDS
# ============================================================================


class TopicPerformance(BaseModel):
    topic: str
    attempts: int
    avg_score: float
    last_attempt: datetime


class TopicSetStats(BaseModel):
    total_sets: int
    attempted_sets: int
    unattempted_sets: int


class CatalogEntry(BaseModel):
    chapter: str
    topic: str
    set_count: int


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================


class GenerateQuizRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    school_id: str = Field(..., min_length=1)
    class_number: int = Field(..., ge=1)
    subject: str = Field(..., min_length=1)
    chapter: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1)
    difficulty_label: Optional[DifficultyLabel] = None
    num_questions: Optional[int] = Field(None, ge=1)


class GenerateQuizResponse(BaseModel):
    set_id: str
    questions: List[PublicQuestion]
    difficulty_level: int
    is_new_set: bool
    message: Optional[str] = None


class AnswerSubmission(BaseModel):
    question_id: str
    selected_option_index: int = Field(..., ge=0, le=OPTIONS_PER_QUESTION - 1)


class SubmitQuizRequest(BaseModel):
    student_id: str = Field(..., min_length=1)
    school_id: str = Field(..., min_length=1)
    set_id: str = Field(..., min_length=1)
    answers: List[AnswerSubmission] = Field(default_factory=list)


class SubmitQuizResponse(BaseModel):
    attempt_id: str
    score_total: int
    score_percentage: float
    correct_count: int
    incorrect_count: int
    total_questions: int
    features_aggregated: FeatureVector
    skill_breakdown: List[SkillScore]
    skill_stats: SkillStats


class QuizHistoryResponse(BaseModel):
    attempts: List[Attempt]
    count: int


class AttemptDetailResponse(BaseModel):
    attempt: Attempt
    question_set: Optional[QuestionSet] = None


class StudentStatsResponse(BaseModel):
    stats: SkillStats
    focus_areas: FocusAreas


class AllStudentStatsResponse(BaseModel):
    stats: List[SkillStats]
    count: int


class TopicPerformanceResponse(BaseModel):
    topics: List[TopicPerformance]
    count: int


class CatalogResponse(BaseModel):
    topics: List[CatalogEntry]
    count: int

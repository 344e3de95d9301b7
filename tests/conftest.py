import pytest
import os
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment variables
os.environ["NODE_ENV"] = "test"
os.environ["POSTGRES_USER"] = "test_user"
os.environ["POSTGRES_PASSWORD"] = "test_password"
os.environ["POSTGRES_HOST"] = "localhost"
os.environ["POSTGRES_DATABASE"] = "test_db"
os.environ["POSTGRES_PORT"] = "5432"
os.environ["OPENAI_API_KEY"] = "test_openai_key"
os.environ["LOG_LEVEL"] = "WARNING"

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from app import app
from db import get_db
from models import Base, SyllabusChapter
from routes.quiz import get_question_generator
from schemas.quiz import CurriculumCoordinate, FeatureVector, Question, QuestionSet

CHAPTER_TEXT = (
    "Motion is the change in position of an object with time. Speed is the distance travelled per unit time, "
    "while velocity is speed in a given direction. Acceleration is the rate of change of velocity. "
    "Uniform motion covers equal distances in equal intervals of time."
)


class FakeQuestionGenerator:
    """Stands in for the OpenAI generator; records every call"""

    def __init__(self):
        self.calls = []

    def __call__(self, chapter_text, hints, count):
        self.calls.append({"chapter_text": chapter_text, "hints": hints, "count": count})
        return [
            build_question(
                f"Q{i}",
                correct_option_index=0,
                skills=["numerical", "reasoning"] if i % 2 else ["memorization"],
                features=FeatureVector(memorization=0.4, reasoning=0.6, numerical=0.5, language=0.3),
                difficulty_score=0.52,
            )
            for i in range(1, count + 1)
        ]


def build_question(question_id, correct_option_index=0, skills=("numerical",), features=None, difficulty_score=0.5):
    return Question(
        id=question_id,
        question=f"Question {question_id}?",
        options=["A", "B", "C", "D"],
        correct_option_index=correct_option_index,
        skills=list(skills),
        features=features or FeatureVector(memorization=0.5, reasoning=0.5, numerical=0.5, language=0.5),
        difficulty_score=difficulty_score,
    )


def build_question_set(set_id, coordinate, questions=None, created_at=None, difficulty_level=5):
    return QuestionSet(
        set_id=set_id,
        coordinate=coordinate,
        questions=questions or [build_question(f"Q{i}") for i in range(1, 4)],
        difficulty_level=difficulty_level,
        created_at=created_at or datetime(2024, 1, 1),
        created_by="student-seed",
    )


class FixedClock:
    """Deterministic clock advancing one second per call"""

    def __init__(self, start=datetime(2024, 3, 1, 9, 0, 0)):
        self.current = start

    def __call__(self):
        now = self.current
        self.current = self.current + timedelta(seconds=1)
        return now


@pytest.fixture(scope="function")
def test_engine():
    """In-memory SQLite shared across threads of one test"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def test_db(test_engine):
    """Create test database session"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def fake_generator():
    return FakeQuestionGenerator()


@pytest.fixture
def coordinate():
    return CurriculumCoordinate(class_number=9, subject="Physics", chapter="Motion", topic="Speed and Velocity")


@pytest.fixture
def seeded_chapter(test_db):
    """Chapter text for class 9 physics, chapter Motion"""
    chapter = SyllabusChapter(class_number=9, subject="physics", chapter="Motion", content=CHAPTER_TEXT)
    test_db.add(chapter)
    test_db.commit()
    return chapter


@pytest.fixture(scope="function")
def client(test_db, fake_generator):
    """Create test client with test database and fake question generator"""

    def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_question_generator] = lambda: fake_generator

    with TestClient(app) as test_client:
        yield test_client

    # Clean up dependency override
    app.dependency_overrides.clear()


@pytest.fixture
def sample_generate_request():
    """Quiz request for the seeded chapter"""
    return {
        "student_id": "student-1",
        "school_id": "school-1",
        "class_number": 9,
        "subject": "Physics",
        "chapter": "Motion",
        "topic": "Speed and Velocity",
        "num_questions": 4,
    }

"""Test configuration."""
import os
import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest
from dotenv import load_dotenv

# Set test environment before any imports
os.environ["ENV"] = "test"
_test_dir = Path(tempfile.mkdtemp(prefix="kidlingo-test-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_test_dir / 'test.db'}"
os.environ["DATA_DIR"] = str(_test_dir / "data")
os.environ.pop("LOG_DIR", None)
os.environ.pop("PARENT_TELEGRAM_IDS", None)

# Load test environment variables
test_env_path = Path(__file__).parent.parent.parent.parent / ".env.test"
load_dotenv(test_env_path)

# Import after environment setup
from sqlalchemy.orm import Session

from kidlingo.config import ensure_directories
from kidlingo.models.base import Base, SessionLocal, engine, init_db
from kidlingo.models.lesson_models import (
    ChoiceExercise,
    ExerciseType,
    Lesson,
    VocabularyItem,
)
from kidlingo.services.lesson_service import LessonService
from kidlingo.services.session_service import LessonSessionService


@pytest.fixture(autouse=True)
def setup_test_environment():
    """Set up test environment before each test."""
    # Ensure test directories exist
    ensure_directories()

    yield

    # Lessons left open by a test must not leak into the next one
    LessonSessionService.active_lessons.clear()
    LessonService._cache.clear()


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    Base.metadata.drop_all(bind=engine)
    init_db()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def choice_exercise(question: str = "Pick the first option") -> ChoiceExercise:
    return ChoiceExercise(
        type=ExerciseType.MULTIPLE_CHOICE,
        question=question,
        options=("right", "wrong"),
        correct_answer=0,
    )


@pytest.fixture
def make_lesson() -> Callable[..., Lesson]:
    """Build lessons with choice exercises whose right answer is option 0."""
    def _make_lesson(exercise_count: int = 3, vocabulary_count: int = 0, lesson_id: str = "test") -> Lesson:
        return Lesson(
            id=lesson_id,
            title=f"Lesson {lesson_id}",
            vocabulary=tuple(
                VocabularyItem(word=f"word{i}", translation=f"translation{i}")
                for i in range(vocabulary_count)
            ),
            exercises=tuple(choice_exercise(f"Question {i}") for i in range(exercise_count)),
        )
    return _make_lesson

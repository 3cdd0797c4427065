"""Tests for lesson session service."""
from typing import Callable
from unittest.mock import Mock

import pytest
from faker import Faker
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from kidlingo.models.lesson_models import Lesson
from kidlingo.models.models import LessonProgress, LessonResult, User
from kidlingo.models.player_models import Direction, Phase
from kidlingo.services.lesson_player import InvalidStateError
from kidlingo.services.lesson_service import LessonNotFoundError, LessonService
from kidlingo.services.progress_service import ProgressService
from kidlingo.services.session_service import LessonSessionService

fake = Faker()

SESSION_KEY = 777


@pytest.fixture
def user(db: Session) -> User:
    """Create a test user."""
    user = User(telegram_id=SESSION_KEY, username=fake.user_name(), display_name=fake.first_name())
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def lesson(make_lesson: Callable[..., Lesson]) -> Lesson:
    return make_lesson(exercise_count=3, vocabulary_count=1, lesson_id="colors")


@pytest.fixture
def lesson_service(lesson: Lesson) -> Mock:
    """Create a lesson service serving one lesson."""
    lesson_service = Mock(spec=LessonService)
    lesson_service.get_lesson.side_effect = lambda lesson_id: lesson if lesson_id == lesson.id else None
    return lesson_service


@pytest.fixture
def session_service(db: Session, lesson_service: Mock) -> LessonSessionService:
    """Create a session service instance."""
    return LessonSessionService(lesson_service, ProgressService(db), max_adaptive_retries=2)


def test_open_lesson(session_service: LessonSessionService, user: User) -> None:
    """Test opening a lesson starts a fresh attempt."""
    player = session_service.open_lesson(SESSION_KEY, user.id, "colors")

    assert player.state.phase == Phase.VOCABULARY
    active = session_service.get_active(SESSION_KEY)
    assert active.player is player
    assert active.user_id == user.id
    # Sessions are shared across service instances
    assert LessonSessionService.active_lessons[SESSION_KEY] is active


def test_open_missing_lesson(session_service: LessonSessionService, user: User) -> None:
    """Test opening a lesson that does not exist."""
    with pytest.raises(LessonNotFoundError):
        session_service.open_lesson(SESSION_KEY, user.id, "missing")
    assert session_service.get_active(SESSION_KEY) is None


def test_play_lesson_to_the_end(session_service: LessonSessionService, db: Session, user: User) -> None:
    """Test a full lesson records a result and leaves no snapshot."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)

    outcome = session_service.answer(SESSION_KEY, 1)
    assert not outcome.is_correct
    assert outcome.requeued
    assert session_service.continue_lesson(SESSION_KEY) is None
    # Progress is saved after every exercise
    assert db.query(LessonProgress).count() == 1

    for _ in range(3):
        assert session_service.answer(SESSION_KEY, 0).is_correct
        summary = session_service.continue_lesson(SESSION_KEY)

    assert summary.score == 3
    assert summary.total == 3
    assert summary.percentage == 100
    assert session_service.get_active(SESSION_KEY) is None
    assert db.query(LessonProgress).count() == 0
    result = db.query(LessonResult).one()
    assert result.user_id == user.id
    assert result.lesson_id == "colors"
    assert result.percentage == 100


def test_answer_twice_is_rejected(session_service: LessonSessionService, user: User) -> None:
    """Test the same exercise cannot be answered twice."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    session_service.answer(SESSION_KEY, 0)

    with pytest.raises(InvalidStateError):
        session_service.answer(SESSION_KEY, 0)


def test_answer_during_vocabulary_is_rejected(session_service: LessonSessionService, user: User) -> None:
    """Test there is nothing to answer on a vocabulary card."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")

    with pytest.raises(InvalidStateError):
        session_service.answer(SESSION_KEY, 0)


def test_abandon_and_resume(session_service: LessonSessionService, db: Session, user: User) -> None:
    """Test leaving a lesson and coming back later."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    session_service.answer(SESSION_KEY, 0)
    session_service.continue_lesson(SESSION_KEY)
    # The answer given before leaving counts
    session_service.answer(SESSION_KEY, 1)

    session_service.abandon(SESSION_KEY)
    assert session_service.get_active(SESSION_KEY) is None

    player = session_service.open_lesson(SESSION_KEY, user.id, "colors")
    assert player.state.phase == Phase.EXERCISE
    assert player.state.exercise_queue == [0, 1, 2, 1]
    assert player.state.exercise_pointer == 2
    assert player.state.score == 1
    assert player.current_exercise_index == 2


def test_abandon_during_vocabulary_saves_nothing(
    session_service: LessonSessionService, db: Session, user: User
) -> None:
    """Test there is nothing to resume before the exercises."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.abandon(SESSION_KEY)

    assert db.query(LessonProgress).count() == 0
    # Leaving twice is harmless
    session_service.abandon(SESSION_KEY)


def test_abandon_after_last_answer_completes(
    session_service: LessonSessionService, db: Session, user: User
) -> None:
    """Test leaving right after the last answer still reports the result."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    for _ in range(2):
        session_service.answer(SESSION_KEY, 0)
        session_service.continue_lesson(SESSION_KEY)
    session_service.answer(SESSION_KEY, 0)

    session_service.abandon(SESSION_KEY)

    assert db.query(LessonResult).count() == 1
    assert db.query(LessonProgress).count() == 0


def test_opening_another_lesson_leaves_the_current_one(
    session_service: LessonSessionService, lesson_service: Mock, make_lesson: Callable[..., Lesson],
    db: Session, user: User
) -> None:
    """Test one lesson at a time per session."""
    other = make_lesson(exercise_count=1, lesson_id="greetings")
    lessons = {"colors": lesson_service.get_lesson("colors"), "greetings": other}
    lesson_service.get_lesson.side_effect = lessons.get

    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    session_service.answer(SESSION_KEY, 0)
    session_service.continue_lesson(SESSION_KEY)

    player = session_service.open_lesson(SESSION_KEY, user.id, "greetings")

    assert player.lesson.id == "greetings"
    assert db.query(LessonProgress).filter(LessonProgress.lesson_id == "colors").count() == 1


def test_guest_plays_without_storage(session_service: LessonSessionService, db: Session) -> None:
    """Test guests can play but nothing is stored."""
    session_service.open_lesson(SESSION_KEY, None, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    for _ in range(3):
        session_service.answer(SESSION_KEY, 0)
        summary = session_service.continue_lesson(SESSION_KEY)

    assert summary.percentage == 100
    assert db.query(LessonResult).count() == 0
    assert db.query(LessonProgress).count() == 0


def test_save_failure_does_not_stop_the_lesson(session_service: LessonSessionService, user: User) -> None:
    """Test the learner keeps playing when progress cannot be saved."""
    progress_service = session_service.progress_service
    progress_service.save_snapshot = Mock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))
    progress_service.db = Mock(wraps=progress_service.db)

    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    session_service.answer(SESSION_KEY, 0)

    assert session_service.continue_lesson(SESSION_KEY) is None
    progress_service.save_snapshot.assert_called_once()
    progress_service.db.rollback.assert_called_once()
    assert session_service.get_active(SESSION_KEY).player.state.exercise_pointer == 1


def test_record_failure_still_finishes(session_service: LessonSessionService, user: User) -> None:
    """Test a lesson ends even when its result cannot be stored."""
    progress_service = session_service.progress_service
    progress_service.record_result = Mock(side_effect=OperationalError("INSERT", {}, Exception("locked")))

    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    for _ in range(3):
        session_service.answer(SESSION_KEY, 0)
        summary = session_service.continue_lesson(SESSION_KEY)

    assert summary.score == 3
    assert session_service.get_active(SESSION_KEY) is None


def test_load_failure_starts_fresh(session_service: LessonSessionService, user: User) -> None:
    """Test an unreadable progress store gives a fresh attempt."""
    session_service.progress_service.load_snapshot = Mock(side_effect=OperationalError("SELECT", {}, Exception("gone")))

    player = session_service.open_lesson(SESSION_KEY, user.id, "colors")

    assert player.state.phase == Phase.VOCABULARY


def test_save_all(session_service: LessonSessionService, db: Session, user: User) -> None:
    """Test saving every lesson in the exercise phase."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    session_service.open_lesson(SESSION_KEY + 1, None, "colors")

    session_service.save_all()

    progress = db.query(LessonProgress).one()
    assert progress.user_id == user.id


def test_no_active_lesson(session_service: LessonSessionService) -> None:
    """Test calls without an open lesson."""
    assert session_service.move_vocabulary(SESSION_KEY, Direction.NEXT) is None
    assert session_service.answer(SESSION_KEY, 0) is None
    assert session_service.continue_lesson(SESSION_KEY) is None
    assert session_service.finish(SESSION_KEY) is None


def test_save_all_after_answer_resumes_past_it(session_service: LessonSessionService, user: User) -> None:
    """Test shutting down right after an answer does not replay that exercise."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    session_service.answer(SESSION_KEY, 1)

    session_service.save_all()
    LessonSessionService.active_lessons.clear()

    player = session_service.open_lesson(SESSION_KEY, user.id, "colors")
    assert player.state.exercise_queue == [0, 1, 2, 0]
    assert player.state.exercise_pointer == 1
    assert player.state.answer_history == [False]
    assert player.state.retry_counts == {0: 1}
    assert player.current_exercise_index == 1


def test_save_all_after_last_answer_records_result(
    session_service: LessonSessionService, db: Session, user: User
) -> None:
    """Test shutting down after the last answer reports the lesson."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    for _ in range(2):
        session_service.answer(SESSION_KEY, 0)
        session_service.continue_lesson(SESSION_KEY)
    session_service.answer(SESSION_KEY, 0)

    session_service.save_all()

    assert session_service.get_active(SESSION_KEY) is None
    assert db.query(LessonResult).count() == 1
    assert db.query(LessonProgress).count() == 0


@pytest.mark.parametrize("stored", [
    '{"exercise_queue": [0], "exercise_pointer": 0, "retry_counts": [1]}',
    '{"exercise_queue": [0], "exercise_pointer": 0, "mastered": 3}',
    '{"exercise_queue": ["x"], "exercise_pointer": 0}',
])
def test_corrupt_snapshot_starts_fresh(
    session_service: LessonSessionService, db: Session, user: User, stored: str
) -> None:
    """Test a stored snapshot of the wrong shape is treated as missing."""
    db.add(LessonProgress(user_id=user.id, lesson_id="colors", snapshot=stored))
    db.commit()

    player = session_service.open_lesson(SESSION_KEY, user.id, "colors")

    assert player.state.phase == Phase.VOCABULARY
    assert player.state.exercise_queue == [0, 1, 2]


def test_discard_saves_nothing(session_service: LessonSessionService, db: Session, user: User) -> None:
    """Test discarding a lesson for a learner who was removed."""
    session_service.open_lesson(SESSION_KEY, user.id, "colors")
    session_service.move_vocabulary(SESSION_KEY, Direction.NEXT)
    session_service.answer(SESSION_KEY, 0)

    session_service.discard(SESSION_KEY)

    assert session_service.get_active(SESSION_KEY) is None
    assert db.query(LessonProgress).count() == 0
    assert db.query(LessonResult).count() == 0
    # Discarding twice is harmless
    session_service.discard(SESSION_KEY)

"""Tests for user service."""
import pytest
from faker import Faker
from sqlalchemy.orm import Session

from kidlingo.models.models import LessonProgress, LessonResult, User
from kidlingo.services.user_service import UserService

fake = Faker()


@pytest.fixture
def user_service(db: Session) -> UserService:
    """Create a user service instance."""
    return UserService(db)


def test_get_or_create_user(user_service: UserService) -> None:
    """Test user creation and retrieval."""
    # Create new user
    telegram_id = fake.random_int()
    username = fake.user_name()
    user = user_service.get_or_create_user(
        telegram_id=telegram_id,
        username=username,
        display_name="Ana",
    )

    assert user.telegram_id == telegram_id
    assert user.username == username
    assert user.display_name == "Ana"
    assert user.role == "student"
    assert user.avatar == "🧒"

    # Get existing user
    existing_user = user_service.get_or_create_user(
        telegram_id=telegram_id,
        username="renamed",
        display_name="Someone else",
    )
    assert existing_user.id == user.id
    assert existing_user.display_name == "Ana"
    assert user_service.get_users_count() == 1


def test_display_name_fallbacks(user_service: UserService) -> None:
    """Test the display name when Telegram gives no first name."""
    with_username = user_service.get_or_create_user(telegram_id=1001, username="ana_k")
    without_anything = user_service.get_or_create_user(telegram_id=1002)

    assert with_username.display_name == "ana_k"
    assert without_anything.display_name == "Learner 1002"


def test_get_user(user_service: UserService) -> None:
    """Test user lookups."""
    user = user_service.get_or_create_user(telegram_id=fake.random_int(), username=fake.user_name())

    assert user_service.get_user(user.id).telegram_id == user.telegram_id
    assert user_service.get_user_by_telegram_id(user.telegram_id).id == user.id
    assert user_service.get_user(user.id + 1000) is None


def test_delete_user(user_service: UserService, db: Session) -> None:
    """Test deleting a user removes their results and progress."""
    user = user_service.get_or_create_user(telegram_id=fake.random_int(), username=fake.user_name())
    other = user_service.get_or_create_user(telegram_id=user.telegram_id + 1, username=fake.user_name())
    for owner in (user, other):
        db.add(LessonResult(user_id=owner.id, lesson_id="colors", score=1, total_questions=2, percentage=50))
        db.add(LessonProgress(user_id=owner.id, lesson_id="greetings", snapshot="{}"))
    db.commit()

    user_service.delete_user(user.id)

    assert user_service.get_user(user.id) is None
    assert db.query(LessonResult).filter(LessonResult.user_id == user.id).count() == 0
    assert db.query(LessonProgress).filter(LessonProgress.user_id == user.id).count() == 0
    assert db.query(LessonResult).filter(LessonResult.user_id == other.id).count() == 1
    assert user_service.get_users_count() == 1


def test_delete_missing_user(user_service: UserService) -> None:
    """Test deleting a user that does not exist."""
    with pytest.raises(ValueError):
        user_service.delete_user(12345)


def test_create_parent(user_service: UserService) -> None:
    """Test parents get their own avatar."""
    parent = user_service.get_or_create_user(telegram_id=fake.random_int(), display_name="Mom", role="parent")

    assert parent.role == "parent"
    assert parent.avatar == "👨‍👩‍👧‍👦"


def test_set_role(user_service: UserService) -> None:
    """Test promoting a learner to parent and back."""
    user = user_service.get_or_create_user(telegram_id=fake.random_int(), username=fake.user_name())

    parent = user_service.set_role(user.id, "parent")
    assert parent.id == user.id
    assert parent.role == "parent"
    assert parent.avatar == "👨‍👩‍👧‍👦"

    assert user_service.set_role(user.id, "student").avatar == "🧒"

    with pytest.raises(ValueError):
        user_service.set_role(user.id, "teacher")
    with pytest.raises(ValueError):
        user_service.set_role(user.id + 1000, "parent")


def test_get_learners(user_service: UserService) -> None:
    """Test only students are listed, oldest first."""
    first = user_service.get_or_create_user(telegram_id=2001, display_name="Ana")
    user_service.get_or_create_user(telegram_id=2002, display_name="Mom", role="parent")
    second = user_service.get_or_create_user(telegram_id=2003, display_name="Radu")

    assert [learner.id for learner in user_service.get_learners()] == [first.id, second.id]

"""User service for managing learners."""
from typing import List, Optional
import logging

from sqlalchemy.orm import Session

from kidlingo.models.models import LessonProgress, LessonResult, User

# Configure logging
logger = logging.getLogger(__name__)

STUDENT = "student"
PARENT = "parent"
ROLE_AVATARS = {STUDENT: "🧒", PARENT: "👨‍👩‍👧‍👦"}


class UserService:
    """Service for managing learners."""

    def __init__(self, db: Session):
        """Initialize the service with a database session."""
        self.db = db

    def get_user_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        """Get user by telegram ID."""
        return self.db.query(User).filter(User.telegram_id == telegram_id).first()

    def get_user(self, user_id: int) -> Optional[User]:
        """Get user by ID."""
        return self.db.query(User).filter(User.id == user_id).first()

    def get_or_create_user(
        self,
        telegram_id: int,
        username: Optional[str] = None,
        display_name: Optional[str] = None,
        role: str = STUDENT,
    ) -> User:
        """Get existing user or create a new one. Existing users are not modified."""
        user = self.get_user_by_telegram_id(telegram_id)
        if not user:
            user = User(
                telegram_id=telegram_id,
                username=username,
                display_name=display_name or username or f"Learner {telegram_id}",
                role=role,
                avatar=ROLE_AVATARS.get(role, ROLE_AVATARS[STUDENT]),
            )
            self.db.add(user)
            self.db.commit()
            self.db.refresh(user)
            logger.info(f"User created: {user.display_name} ({telegram_id}), role {role}")

        return user

    def delete_user(self, user_id: int) -> None:
        """Delete a user together with their results and saved progress."""
        user = self.get_user(user_id)
        if not user:
            raise ValueError(f"User {user_id} not found")

        self.db.query(LessonResult).filter(LessonResult.user_id == user_id).delete()
        self.db.query(LessonProgress).filter(LessonProgress.user_id == user_id).delete()
        self.db.delete(user)
        self.db.commit()
        logger.info(f"User {user_id} deleted")

    def get_users_count(self) -> int:
        """Get number of registered users."""
        return self.db.query(User).count()

    def set_role(self, user_id: int, role: str) -> User:
        """Make the user a student or a parent."""
        if role not in ROLE_AVATARS:
            raise ValueError(f"Unknown role: {role}")
        user = self.get_user(user_id)
        if not user:
            raise ValueError(f"User {user_id} not found")

        user.role = role
        user.avatar = ROLE_AVATARS[role]
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"User {user_id} is now a {role}")
        return user

    def get_learners(self) -> List[User]:
        """Get all students in the order they joined."""
        return (
            self.db.query(User)
            .filter(User.role == STUDENT)
            .order_by(User.created_at, User.id)
            .all()
        )

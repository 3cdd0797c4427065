"""Database models for the app."""
from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    Float,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from kidlingo.models.base import Base, TimestampMixin


class User(Base, TimestampMixin):
    """User model."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    telegram_id = Column(Integer, unique=True, nullable=False)
    username = Column(String, nullable=True)
    display_name = Column(String, nullable=False)
    role = Column(String, nullable=False, default="student")  # student, parent
    avatar = Column(String, default="🧒")

    # Relationships
    results = relationship("LessonResult", back_populates="user", cascade="all, delete-orphan")
    progress = relationship("LessonProgress", back_populates="user", cascade="all, delete-orphan")


class LessonResult(Base, TimestampMixin):
    """Result of a completed lesson attempt."""

    __tablename__ = "lesson_results"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    lesson_id = Column(String, nullable=False)
    score = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    percentage = Column(Float, nullable=False)
    time_spent_seconds = Column(Integer, default=0)

    # Relationships
    user = relationship("User", back_populates="results")


class LessonProgress(Base, TimestampMixin):
    """Resumable snapshot of an unfinished lesson attempt."""

    __tablename__ = "lesson_progress"
    __table_args__ = (UniqueConstraint("user_id", "lesson_id"),)

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    lesson_id = Column(String, nullable=False)
    snapshot = Column(Text, nullable=False, default="{}")  # JSON encoded Snapshot

    # Relationships
    user = relationship("User", back_populates="progress")

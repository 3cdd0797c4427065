"""Lesson service for loading lessons from JSON files."""
import json
import logging
from pathlib import Path
from typing import ClassVar, Dict, List, Optional

from kidlingo.config import settings
from kidlingo.models.lesson_models import Lesson, LessonInfo

logger = logging.getLogger(__name__)


class LessonNotFoundError(LookupError):
    """Requested lesson does not exist."""


class LessonService:
    """Service for reading lesson content from the lessons directory."""

    # Loaded lessons per directory, shared across all instances
    _cache: ClassVar[Dict[Path, List[Lesson]]] = {}

    def __init__(self, lessons_dir: Optional[Path] = None):
        """Initialize the service with the directory holding lesson files."""
        self.lessons_dir = Path(lessons_dir or settings.paths.lessons_dir)

    def _load_lessons(self) -> List[Lesson]:
        """Read every lesson file; files starting with '_' are skipped."""
        lessons = []
        if not self.lessons_dir.is_dir():
            logger.warning(f"Lessons directory {self.lessons_dir} does not exist")
            return lessons

        for path in sorted(self.lessons_dir.glob("*.json")):
            if path.name.startswith("_"):
                continue
            try:
                with open(path, encoding="utf-8") as f:
                    lessons.append(Lesson.from_dict(json.load(f)))
            except (OSError, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Failed to load lesson {path.name}: {e}")

        lessons.sort(key=lambda lesson: lesson.order)
        logger.info(f"Loaded {len(lessons)} lessons from {self.lessons_dir}")
        return lessons

    def get_lessons(self) -> List[Lesson]:
        """Get all lessons, loading them on first use."""
        if self.lessons_dir not in self._cache:
            self._cache[self.lessons_dir] = self._load_lessons()
        return self._cache[self.lessons_dir]

    def reload_lessons(self) -> None:
        """Drop the cache and read the lesson files again."""
        self._cache[self.lessons_dir] = self._load_lessons()

    def get_lesson(self, lesson_id: str) -> Optional[Lesson]:
        """Get a lesson by its ID."""
        return next((lesson for lesson in self.get_lessons() if lesson.id == lesson_id), None)

    def get_lesson_infos(self) -> List[LessonInfo]:
        """Get metadata of all lessons without their content."""
        return [LessonInfo.from_lesson(lesson) for lesson in self.get_lessons()]

    def get_lessons_count(self) -> int:
        """Get number of available lessons."""
        return len(self.get_lessons())

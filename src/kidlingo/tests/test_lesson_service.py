"""Tests for lesson service."""
import json
from pathlib import Path

import pytest

from kidlingo.services.lesson_service import LessonService


def write_lesson(lessons_dir: Path, file_name: str, lesson_id: str, order=None) -> None:
    data = {
        "id": lesson_id,
        "title": lesson_id.title(),
        "vocabulary": [{"word": "bună", "translation": "hello"}],
        "exercises": [
            {"type": "multiple_choice", "question": "?", "options": ["a", "b"], "correctAnswer": 0},
        ],
    }
    if order is not None:
        data["order"] = order
    (lessons_dir / file_name).write_text(json.dumps(data), encoding="utf-8")


@pytest.fixture
def lessons_dir(tmp_path: Path) -> Path:
    """Create a lessons directory with a few lesson files."""
    write_lesson(tmp_path, "a.json", "colors", order=2)
    write_lesson(tmp_path, "b.json", "greetings", order=1)
    write_lesson(tmp_path, "c.json", "extras")
    write_lesson(tmp_path, "_template.json", "template", order=0)
    (tmp_path / "broken.json").write_text("{not json", encoding="utf-8")
    (tmp_path / "invalid.json").write_text(json.dumps({"id": "no-title"}), encoding="utf-8")
    (tmp_path / "notes.txt").write_text("not a lesson", encoding="utf-8")
    return tmp_path


def test_get_lessons_sorted_by_order(lessons_dir: Path) -> None:
    """Test lessons are sorted by order, lessons without one go last."""
    lessons = LessonService(lessons_dir).get_lessons()

    assert [lesson.id for lesson in lessons] == ["greetings", "colors", "extras"]


def test_broken_and_private_files_are_skipped(lessons_dir: Path) -> None:
    """Test unreadable files and files starting with '_' are left out."""
    ids = {lesson.id for lesson in LessonService(lessons_dir).get_lessons()}

    assert "template" not in ids
    assert "no-title" not in ids


def test_get_lesson(lessons_dir: Path) -> None:
    """Test lesson lookup by id."""
    service = LessonService(lessons_dir)

    lesson = service.get_lesson("colors")
    assert lesson is not None
    assert lesson.title == "Colors"
    assert len(lesson.exercises) == 1
    assert service.get_lesson("missing") is None


def test_lesson_infos(lessons_dir: Path) -> None:
    """Test lesson metadata listing."""
    infos = LessonService(lessons_dir).get_lesson_infos()

    assert [info.id for info in infos] == ["greetings", "colors", "extras"]
    assert all(info.exercise_count == 1 and info.vocabulary_count == 1 for info in infos)


def test_lessons_are_cached_until_reload(lessons_dir: Path) -> None:
    """Test lesson files are read once per directory."""
    service = LessonService(lessons_dir)
    assert service.get_lessons_count() == 3

    write_lesson(lessons_dir, "d.json", "numbers", order=5)
    assert LessonService(lessons_dir).get_lessons_count() == 3

    service.reload_lessons()
    assert LessonService(lessons_dir).get_lessons_count() == 4


def test_missing_directory(tmp_path: Path) -> None:
    """Test a missing lessons directory gives no lessons."""
    service = LessonService(tmp_path / "missing")

    assert service.get_lessons() == []
    assert service.get_lesson("colors") is None

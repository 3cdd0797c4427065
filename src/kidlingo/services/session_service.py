"""Service for running lessons: drives the lesson player and persists its progress."""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, ClassVar, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from kidlingo import monitoring
from kidlingo.models.lesson_models import Lesson
from kidlingo.models.player_models import AnswerOutcome, Direction, LessonSummary, Phase, Snapshot
from kidlingo.services.exercise_methods import check_answer
from kidlingo.services.lesson_player import InvalidStateError, LessonPlayer
from kidlingo.services.lesson_service import LessonNotFoundError, LessonService
from kidlingo.services.progress_service import ProgressService


logger = logging.getLogger(__name__)


@dataclass
class ActiveLesson:
    """A lesson currently being played by one learner."""
    user_id: Optional[int]  # None for guests
    lesson: Lesson
    player: LessonPlayer


class LessonSessionService:
    """Service for playing lessons.

    Active lessons live in memory, one per session key (the Telegram user id).
    Progress writes never interrupt a lesson: failures are logged and the
    learner keeps playing.
    """

    # Class-level fields (shared across all instances)
    active_lessons: ClassVar[Dict[int, ActiveLesson]] = {}

    def __init__(self, lesson_service: LessonService, progress_service: ProgressService,
                 max_adaptive_retries: Optional[int] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        """Initialize the session service."""
        self.lesson_service = lesson_service
        self.progress_service = progress_service
        self.max_adaptive_retries = max_adaptive_retries
        self.clock = clock

    def get_active(self, session_key: int) -> Optional[ActiveLesson]:
        """Get the lesson being played under the session key."""
        return self.active_lessons.get(session_key)

    def open_lesson(self, session_key: int, user_id: Optional[int], lesson_id: str) -> LessonPlayer:
        """Start a lesson, resuming the saved attempt if there is one."""
        lesson = self.lesson_service.get_lesson(lesson_id)
        if not lesson:
            raise LessonNotFoundError(f"Lesson {lesson_id} not found")

        if session_key in self.active_lessons:
            logger.debug(f"Session {session_key} switches lessons, leaving the current one")
            self.abandon(session_key)

        snapshot = self._load_snapshot(user_id, lesson_id)
        player = LessonPlayer(self.max_adaptive_retries, self.clock)
        player.start_attempt(lesson, snapshot)
        self.active_lessons[session_key] = ActiveLesson(user_id=user_id, lesson=lesson, player=player)

        if snapshot is not None:
            monitoring.lessons_resumed.labels(lesson_id=lesson_id).inc()
        else:
            monitoring.lessons_started.labels(lesson_id=lesson_id).inc()
        monitoring.active_lessons.set(len(self.active_lessons))
        logger.info(f"Session {session_key} (user {user_id}) opened lesson {lesson_id}, "
                    f"{'resumed' if snapshot is not None else 'fresh'} attempt")
        return player

    def move_vocabulary(self, session_key: int, direction: Direction) -> Optional[LessonPlayer]:
        """Show the previous or next vocabulary card."""
        active = self.get_active(session_key)
        if not active:
            return None
        active.player.advance_vocabulary(direction)
        return active.player

    def answer(self, session_key: int, answer: Any) -> Optional[AnswerOutcome]:
        """Check the learner's answer to the current exercise and record it."""
        active = self.get_active(session_key)
        if not active:
            return None

        exercise = active.player.current_exercise
        if exercise is None:
            raise InvalidStateError("There is no exercise to answer")
        is_correct = check_answer(exercise, answer)
        outcome = active.player.submit_answer(is_correct)

        monitoring.exercise_answers.labels(
            exercise_type=exercise.type.value,
            result="correct" if is_correct else "wrong",
        ).inc()
        if outcome.requeued:
            monitoring.adaptive_retries.inc()
        return outcome

    def continue_lesson(self, session_key: int) -> Optional[LessonSummary]:
        """Move past the answered exercise.

        Returns the summary when that was the last exercise, None otherwise.
        """
        active = self.get_active(session_key)
        if not active:
            return None

        active.player.advance_pointer()
        if active.player.is_complete:
            return self.finish(session_key)

        self._save_snapshot(active)
        return None

    def finish(self, session_key: int) -> Optional[LessonSummary]:
        """Report a completed lesson and end the session."""
        active = self.get_active(session_key)
        if not active:
            return None

        summary = active.player.complete()
        del self.active_lessons[session_key]
        self._report(active, summary)
        return summary

    def abandon(self, session_key: int) -> None:
        """Leave the lesson, saving where the learner stopped."""
        active = self.active_lessons.pop(session_key, None)
        if not active:
            return
        monitoring.active_lessons.set(len(self.active_lessons))
        self._store(active)
        logger.info(f"Session {session_key} left lesson {active.lesson.id}")

    def discard(self, session_key: int) -> None:
        """Forget the lesson without saving anything, for learners who were removed."""
        active = self.active_lessons.pop(session_key, None)
        if active:
            monitoring.active_lessons.set(len(self.active_lessons))
            logger.info(f"Session {session_key} discarded lesson {active.lesson.id}")

    def save_all(self) -> None:
        """Save snapshots of every lesson in the exercise phase."""
        for session_key, active in list(self.active_lessons.items()):
            if active.player.state.phase != Phase.EXERCISE:
                continue
            if active.player.is_answered and active.player.state.exercise_pointer + 1 >= \
                    len(active.player.state.exercise_queue):
                # Last answer given, the result gets reported
                del self.active_lessons[session_key]
            self._store(active)

    def _store(self, active: ActiveLesson) -> None:
        """Persist a lesson being left: the result if it is done, the snapshot otherwise."""
        player = active.player
        # The snapshot has no room for a given answer, so move past it first
        if player.is_answered:
            player.advance_pointer()

        if player.is_complete:
            self._report(active, player.complete())
        elif player.state.phase == Phase.EXERCISE:
            self._save_snapshot(active)

    def _report(self, active: ActiveLesson, summary: LessonSummary) -> None:
        lesson_id = active.lesson.id
        monitoring.lessons_completed.labels(lesson_id=lesson_id).inc()
        monitoring.lesson_score.observe(summary.percentage)
        monitoring.lesson_duration.observe(summary.elapsed_seconds)
        monitoring.active_lessons.set(len(self.active_lessons))
        try:
            self.progress_service.record_result(
                active.user_id, lesson_id, summary.score, summary.total, summary.elapsed_seconds
            )
            self.progress_service.clear_snapshot(active.user_id, lesson_id)
        except SQLAlchemyError as e:
            logger.error(f"Error recording result of lesson {lesson_id} for user {active.user_id}: {e}")
            monitoring.persistence_errors.labels(operation="record_result").inc()
            self.progress_service.db.rollback()

    def _load_snapshot(self, user_id: Optional[int], lesson_id: str) -> Optional[Snapshot]:
        try:
            return self.progress_service.load_snapshot(user_id, lesson_id)
        except SQLAlchemyError as e:
            logger.error(f"Error loading snapshot of lesson {lesson_id} for user {user_id}: {e}")
            monitoring.persistence_errors.labels(operation="load_snapshot").inc()
            self.progress_service.db.rollback()
            return None

    def _save_snapshot(self, active: ActiveLesson) -> None:
        try:
            self.progress_service.save_snapshot(active.user_id, active.lesson.id, active.player.snapshot())
        except SQLAlchemyError as e:
            logger.error(f"Error saving snapshot of lesson {active.lesson.id} for user {active.user_id}: {e}")
            monitoring.persistence_errors.labels(operation="save_snapshot").inc()
            self.progress_service.db.rollback()

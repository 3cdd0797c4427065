"""Lesson player: vocabulary cards, adaptive exercise queue and scoring.

The player owns the state of a single lesson attempt and performs no I/O.
Lesson content is passed in, snapshots are handed out, and persisting them
is up to the caller (see ``session_service``).
"""
import logging
from datetime import UTC, datetime
from typing import Callable, Iterable, List, Optional, Tuple

from kidlingo.config import settings
from kidlingo.models.lesson_models import Exercise, Lesson, VocabularyItem
from kidlingo.models.player_models import (
    AnswerOutcome,
    AttemptState,
    Direction,
    LessonSummary,
    Phase,
    Snapshot,
)


logger = logging.getLogger(__name__)


class LessonPlayerError(Exception):
    """Base class for lesson player errors."""


class InvalidStateError(LessonPlayerError):
    """Operation is not allowed in the current state of the attempt."""


class OutOfRangeError(LessonPlayerError):
    """Exercise index does not exist in the lesson."""


def round_percentage(score: int, total: int) -> int:
    """Percentage of score in total, halves rounded up."""
    return int(100 * score / total + 0.5)


class LessonPlayer:
    """Drives one lesson attempt: vocabulary -> exercises -> complete."""

    def __init__(self, max_adaptive_retries: Optional[int] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        if max_adaptive_retries is None:
            max_adaptive_retries = settings.lessons.max_adaptive_retries
        if max_adaptive_retries < 0:
            raise ValueError("max_adaptive_retries cannot be negative")
        self.max_adaptive_retries = max_adaptive_retries
        self.clock = clock or (lambda: datetime.now(UTC))
        self.lesson: Optional[Lesson] = None
        self.state: Optional[AttemptState] = None

    @property
    def exercise_count(self) -> int:
        return len(self.lesson.exercises) if self.lesson else 0

    @property
    def is_complete(self) -> bool:
        return self.state is not None and self.state.phase == Phase.COMPLETE

    def start_attempt(self, lesson: Lesson, snapshot: Optional[Snapshot] = None) -> AttemptState:
        """Start a fresh attempt, or resume the exercise phase from a snapshot."""
        exercise_count = len(lesson.exercises)
        if lesson.vocabulary:
            phase = Phase.VOCABULARY
        elif exercise_count:
            phase = Phase.EXERCISE
        else:
            phase = Phase.COMPLETE

        self.lesson = lesson
        self.state = AttemptState(
            phase=phase,
            started_at=self.clock(),
            exercise_queue=list(range(exercise_count)),
        )
        if snapshot is not None:
            self._resume(snapshot)

        logger.debug(f"Started attempt of lesson {lesson.id}: phase {self.state.phase.value}, "
                     f"queue {self.state.exercise_queue}, pointer {self.state.exercise_pointer}")
        return self.state

    def _check_index(self, exercise_index: int) -> None:
        if not 0 <= exercise_index < self.exercise_count:
            raise OutOfRangeError(
                f"Exercise {exercise_index} does not exist in lesson {self.lesson.id} "
                f"({self.exercise_count} exercises)"
            )

    def _valid_indices(self, indices: Iterable[int]) -> List[int]:
        """Drop indices that do not exist in the lesson."""
        valid = []
        for exercise_index in indices:
            try:
                self._check_index(exercise_index)
            except OutOfRangeError as e:
                logger.warning(f"Ignoring snapshot entry: {e}")
                continue
            valid.append(exercise_index)
        return valid

    def _resume(self, snapshot: Snapshot) -> None:
        """Apply a stored snapshot, correcting anything the lesson no longer has."""
        state = self.state
        pointer = min(max(snapshot.exercise_pointer, 0), len(snapshot.exercise_queue))
        # Entries removed before the pointer shift it back
        played = self._valid_indices(snapshot.exercise_queue[:pointer])
        remaining = self._valid_indices(snapshot.exercise_queue[pointer:])
        queue = played + remaining
        if not queue:
            queue = list(range(self.exercise_count))
            played = []

        state.phase = Phase.EXERCISE
        state.exercise_queue = queue
        state.exercise_pointer = len(played)
        state.mastered = set(self._valid_indices(sorted(snapshot.mastered)))
        state.retry_counts = {
            exercise_index: min(max(snapshot.retry_counts[exercise_index], 0), self.max_adaptive_retries)
            for exercise_index in self._valid_indices(sorted(snapshot.retry_counts))
        }
        state.answer_history = list(snapshot.answer_history)
        state.score = len(state.mastered)
        state.answered_pointer = None

        if state.exercise_pointer >= len(state.exercise_queue):
            state.phase = Phase.COMPLETE
        logger.info(f"Resumed lesson {self.lesson.id} at queue position {state.exercise_pointer} "
                    f"of {len(state.exercise_queue)}, score {state.score}")

    def _require_phase(self, phase: Phase) -> AttemptState:
        if self.state is None:
            raise InvalidStateError("No lesson attempt has been started")
        if self.state.phase != phase:
            raise InvalidStateError(
                f"Operation requires the {phase.value} phase, attempt is in the {self.state.phase.value} phase"
            )
        return self.state

    def advance_vocabulary(self, direction: Direction) -> AttemptState:
        """Move to the previous or next vocabulary card.

        Next on the last card starts the exercises.
        """
        state = self._require_phase(Phase.VOCABULARY)
        if direction == Direction.PREVIOUS:
            if state.vocab_cursor > 0:
                state.vocab_cursor -= 1
        elif state.vocab_cursor < len(self.lesson.vocabulary) - 1:
            state.vocab_cursor += 1
        else:
            state.phase = Phase.EXERCISE if self.exercise_count else Phase.COMPLETE
            state.exercise_pointer = 0
            logger.debug(f"Vocabulary of lesson {self.lesson.id} done, phase {state.phase.value}")
        return state

    def submit_answer(self, is_correct: bool) -> AnswerOutcome:
        """Record the answer for the exercise at the current queue position."""
        state = self._require_phase(Phase.EXERCISE)
        if state.answered_pointer == state.exercise_pointer:
            raise InvalidStateError(f"Queue position {state.exercise_pointer} has already been answered")

        exercise_index = state.exercise_queue[state.exercise_pointer]
        state.answer_history.append(bool(is_correct))
        state.answered_pointer = state.exercise_pointer
        requeued = False

        if is_correct:
            if exercise_index not in state.mastered:
                state.mastered.add(exercise_index)
                state.score = len(state.mastered)
        elif exercise_index not in state.mastered:
            retries = state.retry_counts.get(exercise_index, 0)
            if retries < self.max_adaptive_retries:
                state.retry_counts[exercise_index] = retries + 1
                state.exercise_queue.append(exercise_index)
                requeued = True
            else:
                logger.debug(f"Exercise {exercise_index} reached the retry bound, not requeued")

        logger.debug(f"Answer for exercise {exercise_index}: correct={is_correct}, requeued={requeued}, "
                     f"score={state.score}")
        return AnswerOutcome(
            exercise_index=exercise_index,
            is_correct=bool(is_correct),
            score=state.score,
            requeued=requeued,
        )

    def advance_pointer(self) -> AttemptState:
        """Move past the answered exercise; the end of the queue completes the attempt."""
        state = self._require_phase(Phase.EXERCISE)
        if state.answered_pointer != state.exercise_pointer:
            raise InvalidStateError(f"Queue position {state.exercise_pointer} has not been answered yet")

        state.exercise_pointer += 1
        # The queue grows with retries, so its current length decides the end
        if state.exercise_pointer >= len(state.exercise_queue):
            state.phase = Phase.COMPLETE
            logger.debug(f"Lesson {self.lesson.id} complete after {len(state.answer_history)} answers")
        return state

    def snapshot(self) -> Snapshot:
        """Capture the exercise state for resuming later."""
        if self.state is None:
            raise InvalidStateError("No lesson attempt has been started")
        state = self.state
        return Snapshot(
            exercise_pointer=state.exercise_pointer,
            answer_history=list(state.answer_history),
            exercise_queue=list(state.exercise_queue),
            retry_counts=dict(state.retry_counts),
            mastered=set(state.mastered),
            score=state.score,
        )

    def complete(self) -> LessonSummary:
        """Summarize a finished attempt."""
        state = self._require_phase(Phase.COMPLETE)
        total = self.exercise_count
        percentage = round_percentage(state.score, total) if total else 100
        elapsed = max(0, round((self.clock() - state.started_at).total_seconds()))
        return LessonSummary(
            score=state.score,
            total=total,
            percentage=percentage,
            elapsed_seconds=elapsed,
        )

    @property
    def current_vocabulary_item(self) -> Optional[VocabularyItem]:
        if self.state is None or self.state.phase != Phase.VOCABULARY:
            return None
        return self.lesson.vocabulary[self.state.vocab_cursor]

    @property
    def current_exercise_index(self) -> Optional[int]:
        if self.state is None or self.state.phase != Phase.EXERCISE:
            return None
        return self.state.exercise_queue[self.state.exercise_pointer]

    @property
    def current_exercise(self) -> Optional[Exercise]:
        exercise_index = self.current_exercise_index
        if exercise_index is None:
            return None
        return self.lesson.exercises[exercise_index]

    @property
    def is_answered(self) -> bool:
        """Whether the current queue position already has an answer."""
        return (self.state is not None
                and self.state.phase == Phase.EXERCISE
                and self.state.answered_pointer == self.state.exercise_pointer)

    def progress(self) -> Tuple[int, int]:
        """Current step and total steps (vocabulary cards + queued exercises)."""
        if self.state is None:
            return 0, 0
        vocabulary_count = len(self.lesson.vocabulary)
        total = vocabulary_count + len(self.state.exercise_queue)
        if self.state.phase == Phase.VOCABULARY:
            return self.state.vocab_cursor, total
        if self.state.phase == Phase.EXERCISE:
            return vocabulary_count + self.state.exercise_pointer, total
        return total, total

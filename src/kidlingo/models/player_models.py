"""Models for lesson attempt state."""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set


class Phase(Enum):
    """Lesson attempt phases."""
    VOCABULARY = "vocabulary"
    EXERCISE = "exercise"
    COMPLETE = "complete"


class Direction(Enum):
    """Vocabulary card navigation."""
    NEXT = "next"
    PREVIOUS = "previous"


@dataclass
class AttemptState:
    """Mutable state of one lesson attempt."""
    phase: Phase
    started_at: datetime
    vocab_cursor: int = 0
    exercise_queue: List[int] = field(default_factory=list)  # exercise indices, may repeat
    exercise_pointer: int = 0  # index into exercise_queue
    retry_counts: Dict[int, int] = field(default_factory=dict)
    mastered: Set[int] = field(default_factory=set)
    answer_history: List[bool] = field(default_factory=list)
    score: int = 0
    answered_pointer: Optional[int] = None  # queue position of the last recorded answer


# Container types of the stored snapshot fields
SNAPSHOT_FIELD_TYPES = {
    "exercise_queue": list,
    "answer_history": list,
    "retry_counts": dict,
    "mastered": list,
}


@dataclass
class Snapshot:
    """Serializable version of the exercise part of an AttemptState."""
    exercise_pointer: int
    answer_history: List[bool]
    exercise_queue: List[int]
    retry_counts: Dict[int, int]
    mastered: Set[int]
    score: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to JSON compatible data for storage."""
        return {
            "exercise_pointer": self.exercise_pointer,
            "answer_history": list(self.answer_history),
            "exercise_queue": list(self.exercise_queue),
            "retry_counts": {str(idx): count for idx, count in self.retry_counts.items()},
            "mastered": sorted(self.mastered),
            "score": self.score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Snapshot":
        """Create a Snapshot from stored data.

        Raises ValueError (or TypeError) if the data is not a snapshot at all.
        Indices are not checked against any lesson here.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Snapshot must be a mapping, got {type(data).__name__}")
        if "exercise_queue" not in data or "exercise_pointer" not in data:
            raise ValueError("Snapshot needs exercise_queue and exercise_pointer")
        for key, expected in SNAPSHOT_FIELD_TYPES.items():
            if data.get(key) is not None and not isinstance(data[key], expected):
                raise ValueError(f"Snapshot field {key} must be a {expected.__name__}, "
                                 f"got {type(data[key]).__name__}")
        return cls(
            exercise_pointer=int(data["exercise_pointer"]),
            answer_history=[bool(a) for a in data.get("answer_history") or []],
            exercise_queue=[int(idx) for idx in data["exercise_queue"]],
            retry_counts={int(idx): int(count) for idx, count in (data.get("retry_counts") or {}).items()},
            mastered={int(idx) for idx in data.get("mastered") or []},
            score=int(data.get("score") or 0),
        )


@dataclass
class AnswerOutcome:
    """Result of submitting an exercise answer."""
    exercise_index: int
    is_correct: bool
    score: int
    requeued: bool = False


@dataclass
class LessonSummary:
    """Final result of a completed attempt."""
    score: int
    total: int
    percentage: int
    elapsed_seconds: int

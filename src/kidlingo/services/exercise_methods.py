"""Exercise methods: answer checking and prompts per exercise type."""
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, final

from kidlingo.models.lesson_models import (
    ChoiceExercise,
    Exercise,
    ExerciseType,
    MatchExercise,
    TextAnswerExercise,
)


logger = logging.getLogger(__name__)

CALLBACK_PREFIX = "lesson_"


@dataclass
class ExercisePrompt:
    """Message and buttons presenting an exercise to the learner."""
    message: str
    buttons: List[List[Dict[str, str]]] = field(default_factory=list)
    expects_text: bool = False
    media: Optional[str] = None


def get_all_subclasses(cls):
    """Get all subclasses of a class."""
    all_subclasses = []
    for subclass in cls.__subclasses__():
        all_subclasses.append(subclass)
        all_subclasses.extend(get_all_subclasses(subclass))
    return all_subclasses


def normalize_text(text: str) -> str:
    return text.strip().lower()


class BaseExerciseMethod(ABC):
    """Base class for all exercise methods."""

    """Fields and methods that must be implemented by subclasses."""
    type: Optional[ExerciseType] = None

    @abstractmethod
    def check(self, exercise: Exercise, answer: Any) -> bool:
        """Whether the answer solves the exercise."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def _create_prompt(self, exercise: Exercise, **kwargs) -> ExercisePrompt:
        """Internal method to create a prompt. Must be implemented by subclasses."""
        raise NotImplementedError("Subclasses must implement this method")

    @abstractmethod
    def correct_answer_text(self, exercise: Exercise) -> str:
        """Text shown to the learner after a wrong answer."""
        raise NotImplementedError("Subclasses must implement this method")

    """Fields and methods that must not be overridden by subclasses."""
    @final
    def create_prompt(self, exercise: Exercise, **kwargs) -> ExercisePrompt:
        """Create the prompt for an exercise of this method's type."""
        if exercise.type != self.type:
            raise ValueError(f"{type(self).__name__} cannot present {exercise.type.value} exercises")
        return self._create_prompt(exercise, **kwargs)


class MultipleChoiceMethod(BaseExerciseMethod):
    """Question in the native language, pick the right option."""
    type: ExerciseType = ExerciseType.MULTIPLE_CHOICE
    label: str = "🇬🇧"

    def check(self, exercise: ChoiceExercise, answer: Any) -> bool:
        try:
            return int(answer) == exercise.correct_answer
        except (TypeError, ValueError):
            return False

    def correct_answer_text(self, exercise: ChoiceExercise) -> str:
        return exercise.options[exercise.correct_answer]

    def _question(self, exercise: ChoiceExercise) -> str:
        return f"{self.label} {exercise.question}"

    def _create_prompt(self, exercise: ChoiceExercise, **kwargs) -> ExercisePrompt:
        buttons = [
            [{"text": option, "callback_data": f"{CALLBACK_PREFIX}answer_{i}"}]
            for i, option in enumerate(exercise.options)
        ]
        return ExercisePrompt(message=self._question(exercise), buttons=buttons, media=exercise.media)


class MultipleChoiceTargetMethod(MultipleChoiceMethod):
    """Question in the target language, pick the right option."""
    type: ExerciseType = ExerciseType.MULTIPLE_CHOICE_IN_TARGET_LANGUAGE
    label: str = "🇷🇴"


class SelectImageMethod(MultipleChoiceMethod):
    """Pick the picture that shows the word."""
    type: ExerciseType = ExerciseType.SELECT_IMAGE
    label: str = "🖼️"


class ListenAndSelectMethod(MultipleChoiceMethod):
    """Listen to the recording, pick what was said."""
    type: ExerciseType = ExerciseType.LISTEN_AND_SELECT
    label: str = "🔊"

    def _question(self, exercise: ChoiceExercise) -> str:
        return f"{self.label} {exercise.question or 'Listen and choose what you hear'}"


class MatchMethod(BaseExerciseMethod):
    """Match target-language words with their translations.

    The answer is the ordered list of (left, right) pairings the learner tried.
    Pairs are index aligned, so a pairing is right when both indices are equal.
    The exercise counts as solved once every pair is matched with fewer
    mistakes than there are pairs.
    """
    type: ExerciseType = ExerciseType.MATCH

    @staticmethod
    def is_pair(left: int, right: int) -> bool:
        return left == right

    def matched_pairs(self, attempts: Sequence[Tuple[int, int]]) -> Set[int]:
        return {left for left, right in attempts if self.is_pair(left, right)}

    def mistakes(self, attempts: Sequence[Tuple[int, int]]) -> int:
        return sum(1 for left, right in attempts if not self.is_pair(left, right))

    def check(self, exercise: MatchExercise, answer: Any) -> bool:
        attempts = [tuple(attempt) for attempt in answer or ()]
        pair_count = len(exercise.pairs)
        if self.matched_pairs(attempts) != set(range(pair_count)):
            return False
        return self.mistakes(attempts) < pair_count

    def correct_answer_text(self, exercise: MatchExercise) -> str:
        return "\n".join(f"{pair.left} = {pair.right}" for pair in exercise.pairs)

    def _create_prompt(self, exercise: MatchExercise, attempts: Sequence[Tuple[int, int]] = (),
                       shuffle: bool = True, **kwargs) -> ExercisePrompt:
        """Prompt for the next unmatched left item."""
        matched = self.matched_pairs(attempts)
        remaining = [i for i in range(len(exercise.pairs)) if i not in matched]
        if not remaining:
            raise ValueError("All pairs are already matched")
        left = remaining[0]

        right_items = list(remaining)
        if shuffle:
            random.shuffle(right_items)
        buttons = [
            [{"text": exercise.pairs[right].right, "callback_data": f"{CALLBACK_PREFIX}match_{left}_{right}"}]
            for right in right_items
        ]
        done = "\n".join(f"✅ {exercise.pairs[i].left} = {exercise.pairs[i].right}" for i in sorted(matched))
        message = f"{exercise.instruction}\n\n"
        if done:
            message += f"{done}\n\n"
        message += f"🇷🇴 <b>{exercise.pairs[left].left}</b> = ?"
        return ExercisePrompt(message=message, buttons=buttons)


class TypeAnswerMethod(BaseExerciseMethod):
    """Type the answer to a question."""
    type: ExerciseType = ExerciseType.TYPE_ANSWER

    def check(self, exercise: TextAnswerExercise, answer: Any) -> bool:
        if not isinstance(answer, str) or not answer.strip():
            return False
        accepted = {normalize_text(a) for a in exercise.accepted_answers}
        return normalize_text(answer) in accepted

    def correct_answer_text(self, exercise: TextAnswerExercise) -> str:
        return exercise.answer

    def _create_prompt(self, exercise: TextAnswerExercise, **kwargs) -> ExercisePrompt:
        return ExercisePrompt(message=f"✍️ {exercise.question}\n\nType your answer:", expects_text=True)


class TranslateMethod(TypeAnswerMethod):
    """Translate a sentence."""
    type: ExerciseType = ExerciseType.TRANSLATE

    def _create_prompt(self, exercise: TextAnswerExercise, **kwargs) -> ExercisePrompt:
        instruction = exercise.instruction or "Translate:"
        return ExercisePrompt(message=f"📝 {instruction}\n\n<b>{exercise.question}</b>", expects_text=True)


_methods: Dict[ExerciseType, BaseExerciseMethod] = {}


def get_method(exercise_type: ExerciseType) -> BaseExerciseMethod:
    """Get the method handling an exercise type."""
    if not _methods:
        for method_class in get_all_subclasses(BaseExerciseMethod):
            _methods[method_class.type] = method_class()
        logger.debug(f"Registered exercise methods: {[t.value for t in _methods]}")
    method = _methods.get(exercise_type)
    if method is None:
        raise ValueError(f"No method for exercise type: {exercise_type}")
    return method


def check_answer(exercise: Exercise, answer: Any) -> bool:
    """Check an answer with the method for the exercise's type."""
    return get_method(exercise.type).check(exercise, answer)

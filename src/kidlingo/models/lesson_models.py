"""Models for lesson content loaded from JSON files."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


class ExerciseType(Enum):
    """Available exercise types."""
    MULTIPLE_CHOICE = "multiple_choice"  # Question in native language, pick an option
    MULTIPLE_CHOICE_IN_TARGET_LANGUAGE = "multiple_choice_in_target_language"  # Question in target language
    MATCH = "match"  # Match target words with their translations
    SELECT_IMAGE = "select_image"  # Pick the picture for a word
    LISTEN_AND_SELECT = "listen_and_select"  # Listen to audio, pick what was said
    TYPE_ANSWER = "type_answer"  # Type the answer
    TRANSLATE = "translate"  # Translate a sentence

    @classmethod
    def from_tag(cls, tag: str) -> "ExerciseType":
        """Get the exercise type for a lesson file tag."""
        tag = LEGACY_EXERCISE_TAGS.get(tag, tag)
        try:
            return cls(tag)
        except ValueError:
            raise ValueError(f"Unknown exercise type: {tag}") from None


# Tags written by older lesson files
LEGACY_EXERCISE_TAGS = {
    "multiple_choice_romanian": ExerciseType.MULTIPLE_CHOICE_IN_TARGET_LANGUAGE.value,
}

CHOICE_TYPES = frozenset({
    ExerciseType.MULTIPLE_CHOICE,
    ExerciseType.MULTIPLE_CHOICE_IN_TARGET_LANGUAGE,
    ExerciseType.SELECT_IMAGE,
    ExerciseType.LISTEN_AND_SELECT,
})
TEXT_ANSWER_TYPES = frozenset({
    ExerciseType.TYPE_ANSWER,
    ExerciseType.TRANSLATE,
})


@dataclass(frozen=True)
class VocabularyItem:
    """A word card shown before the exercises."""
    word: str
    translation: str
    pronunciation: Optional[str] = None
    example: Optional[str] = None
    example_translation: Optional[str] = None
    audio: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VocabularyItem":
        word = data.get("word", data.get("romanian"))
        translation = data.get("translation", data.get("english"))
        if not word or not translation:
            raise ValueError(f"Vocabulary item needs a word and a translation: {data}")
        example = data.get("example") or {}
        return cls(
            word=word,
            translation=translation,
            pronunciation=data.get("pronunciation"),
            example=example.get("sentence", example.get("romanian")),
            example_translation=example.get("translation", example.get("english")),
            audio=data.get("audio"),
        )


@dataclass(frozen=True)
class ChoiceExercise:
    """Pick one option out of several."""
    type: ExerciseType
    question: str
    options: Tuple[str, ...]
    correct_answer: int
    media: Optional[str] = None  # image or audio reference

    def __post_init__(self):
        if self.type not in CHOICE_TYPES:
            raise ValueError(f"{self.type.value} is not a choice exercise")
        if len(self.options) < 2:
            raise ValueError("Choice exercise needs at least two options")
        if not 0 <= self.correct_answer < len(self.options):
            raise ValueError(f"Correct answer {self.correct_answer} is not one of {len(self.options)} options")


@dataclass(frozen=True)
class MatchPair:
    """Target-language word and its translation."""
    left: str
    right: str


@dataclass(frozen=True)
class MatchExercise:
    """Match every left item with its right item."""
    pairs: Tuple[MatchPair, ...]
    instruction: str = "Match the pairs!"
    type: ExerciseType = field(default=ExerciseType.MATCH, init=False)

    def __post_init__(self):
        if not self.pairs:
            raise ValueError("Match exercise needs at least one pair")


@dataclass(frozen=True)
class TextAnswerExercise:
    """Type the answer to a question or translate a sentence."""
    type: ExerciseType
    question: str
    answer: str
    accept_alternatives: Tuple[str, ...] = ()
    instruction: Optional[str] = None

    def __post_init__(self):
        if self.type not in TEXT_ANSWER_TYPES:
            raise ValueError(f"{self.type.value} is not a text answer exercise")
        if not self.answer:
            raise ValueError("Text answer exercise needs an answer")

    @property
    def accepted_answers(self) -> Tuple[str, ...]:
        return (self.answer,) + tuple(self.accept_alternatives)


Exercise = Union[ChoiceExercise, MatchExercise, TextAnswerExercise]


def exercise_from_dict(data: Dict[str, Any]) -> Exercise:
    """Build an exercise variant from its lesson file representation."""
    exercise_type = ExerciseType.from_tag(data.get("type", ""))

    if exercise_type in CHOICE_TYPES:
        return ChoiceExercise(
            type=exercise_type,
            question=data.get("question", ""),
            options=tuple(data.get("options", ())),
            correct_answer=int(data.get("correctAnswer", data.get("correct_answer", -1))),
            media=data.get("image") or data.get("audio") or data.get("media"),
        )
    if exercise_type == ExerciseType.MATCH:
        pairs = []
        for pair in data.get("pairs", ()):
            left = pair.get("left", pair.get("romanian"))
            right = pair.get("right", pair.get("english"))
            if not left or not right:
                raise ValueError(f"Match pair needs two sides: {pair}")
            pairs.append(MatchPair(left=left, right=right))
        return MatchExercise(
            pairs=tuple(pairs),
            instruction=data.get("instruction") or "Match the pairs!",
        )

    # translate exercises carry the sentence to translate instead of a question
    question = data.get("sentence") if exercise_type == ExerciseType.TRANSLATE else data.get("question")
    return TextAnswerExercise(
        type=exercise_type,
        question=question or "",
        answer=data.get("answer", ""),
        accept_alternatives=tuple(data.get("acceptAlternatives", data.get("accept_alternatives", ()))),
        instruction=data.get("instruction"),
    )


@dataclass(frozen=True)
class Lesson:
    """A lesson: vocabulary cards followed by exercises."""
    id: str
    title: str
    vocabulary: Tuple[VocabularyItem, ...] = ()
    exercises: Tuple[Exercise, ...] = ()
    description: str = ""
    category: Optional[str] = None
    level: Optional[str] = None
    order: int = 999
    icon: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lesson":
        if not data.get("id") or not data.get("title"):
            raise ValueError("Lesson must have id and title")
        return cls(
            id=str(data["id"]),
            title=data["title"],
            vocabulary=tuple(VocabularyItem.from_dict(v) for v in data.get("vocabulary") or ()),
            exercises=tuple(exercise_from_dict(e) for e in data.get("exercises") or ()),
            description=data.get("description", ""),
            category=data.get("category"),
            level=data.get("level"),
            order=data.get("order") or 999,
            icon=data.get("icon", ""),
        )


@dataclass
class LessonInfo:
    """Lesson metadata without its content."""
    id: str
    title: str
    description: str
    category: Optional[str]
    level: Optional[str]
    order: int
    icon: str
    exercise_count: int
    vocabulary_count: int

    @classmethod
    def from_lesson(cls, lesson: Lesson) -> "LessonInfo":
        return cls(
            id=lesson.id,
            title=lesson.title,
            description=lesson.description,
            category=lesson.category,
            level=lesson.level,
            order=lesson.order,
            icon=lesson.icon,
            exercise_count=len(lesson.exercises),
            vocabulary_count=len(lesson.vocabulary),
        )

"""
Core data models for the Sheet Quiz Bot.
"""
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import List, Mapping, Optional, Tuple


OPTION_LABELS: Tuple[str, ...] = ("a", "b", "c", "d", "e")
DEFAULT_EXPLANATION = "No explanation provided."


class Phase(Enum):
    """Coarse state of a quiz session."""
    ANSWERING = "answering"
    REVIEWING = "reviewing"
    FINISHED = "finished"


class LoadState(Enum):
    """State of the one-shot question bank fetch."""
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class Question:
    """Represents a single multiple-choice question."""
    description: str
    prompt: str
    options: Mapping[str, str] = field(hash=False)
    correct_label: str
    explanation: str = DEFAULT_EXPLANATION

    def __post_init__(self):
        # The bank is shared by every channel; keep its option maps read-only
        object.__setattr__(self, "options", MappingProxyType(dict(self.options)))

    def visible_options(self) -> List[Tuple[str, str]]:
        """Return (label, text) pairs for options that have text, in label order."""
        return [
            (label, self.options.get(label, ""))
            for label in OPTION_LABELS
            if self.options.get(label)
        ]


@dataclass(frozen=True)
class QuizSession:
    """
    Immutable snapshot of one quiz widget.

    Transitions never mutate a session; they build a new one
    (see quiz_state.reduce).
    """
    questions: Tuple[Question, ...] = ()
    current_index: int = 0
    answers: Mapping[int, str] = field(default_factory=dict, hash=False)
    elapsed_times: Tuple[int, ...] = ()
    current_elapsed: int = 0
    phase: Phase = Phase.ANSWERING
    timer_paused: bool = False

    def __post_init__(self):
        object.__setattr__(self, "questions", tuple(self.questions))
        object.__setattr__(self, "answers", MappingProxyType(dict(self.answers)))

    @classmethod
    def empty(cls) -> "QuizSession":
        """Session before the question bank has been loaded."""
        return cls()

    @classmethod
    def fresh(cls, questions) -> "QuizSession":
        """Session positioned on the first question of a loaded bank."""
        return cls(questions=tuple(questions))

    @property
    def is_loaded(self) -> bool:
        return len(self.questions) > 0

    @property
    def total_questions(self) -> int:
        return len(self.questions)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def selected_label(self) -> Optional[str]:
        return self.answers.get(self.current_index)

    @property
    def is_last_question(self) -> bool:
        return self.is_loaded and self.current_index == len(self.questions) - 1

    @property
    def timer_should_run(self) -> bool:
        """True while the elapsed counter is supposed to advance."""
        return self.is_loaded and self.phase is Phase.ANSWERING and not self.timer_paused


@dataclass
class QuizSettings:
    """Configuration settings for the quiz source and timer."""
    source_url: str = "https://opensheet.elk.sh/1s3YjqTPWm1GrWl3DcAwMn4NVjg8B2Uh8qBRFjPEwJk4/Sheet1"
    request_timeout: Optional[float] = 15.0
    tick_interval: float = 1.0

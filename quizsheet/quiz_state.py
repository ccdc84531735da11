"""
Quiz state machine for the Sheet Quiz Bot.

Every user action is an event applied by ``reduce``, a pure function of
(session, event) -> session. Invalid events return the session unchanged.
Scoring and display helpers are derived from a session and never stored.
"""
import logging
from dataclasses import dataclass, replace
from typing import List, Union

from .models import Phase, QuizSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Select:
    """Choose an option label for the current question."""
    label: str


@dataclass(frozen=True)
class Submit:
    """Lock in the current selection and show the explanation."""


@dataclass(frozen=True)
class TogglePause:
    """Pause or resume the elapsed timer."""


@dataclass(frozen=True)
class Advance:
    """Next, Skip or Finish depending on where the session is."""


@dataclass(frozen=True)
class Restart:
    """Start over from the first question."""


@dataclass(frozen=True)
class Tick:
    """One timer period has elapsed."""


QuizEvent = Union[Select, Submit, TogglePause, Advance, Restart, Tick]


def _ignored(session: QuizSession, event: QuizEvent, reason: str) -> QuizSession:
    logger.debug(
        f"Ignoring {type(event).__name__}: {reason}",
        extra={
            'event_type': 'quiz_event_ignored',
            'quiz_event': type(event).__name__,
            'phase': session.phase.value,
            'reason': reason
        }
    )
    return session


def select(session: QuizSession, label: str) -> QuizSession:
    event = Select(label)
    if session.phase is not Phase.ANSWERING:
        return _ignored(session, event, "not answering")
    normalized = (label or "").strip().lower()
    if not normalized:
        return _ignored(session, event, "empty label")
    answers = dict(session.answers)
    answers[session.current_index] = normalized
    return replace(session, answers=answers)


def submit(session: QuizSession) -> QuizSession:
    if session.phase is not Phase.ANSWERING:
        return _ignored(session, Submit(), "not answering")
    if session.selected_label is None:
        return _ignored(session, Submit(), "no selection")
    return replace(session, phase=Phase.REVIEWING)


def toggle_pause(session: QuizSession) -> QuizSession:
    if session.phase is not Phase.ANSWERING:
        return _ignored(session, TogglePause(), "not answering")
    return replace(session, timer_paused=not session.timer_paused)


def advance(session: QuizSession) -> QuizSession:
    if session.phase is Phase.FINISHED:
        return _ignored(session, Advance(), "quiz finished")
    elapsed_times = session.elapsed_times + (session.current_elapsed,)
    if session.is_last_question:
        return replace(
            session,
            elapsed_times=elapsed_times,
            current_elapsed=0,
            timer_paused=False,
            phase=Phase.FINISHED
        )
    return replace(
        session,
        current_index=session.current_index + 1,
        elapsed_times=elapsed_times,
        current_elapsed=0,
        timer_paused=False,
        phase=Phase.ANSWERING
    )


def restart(session: QuizSession) -> QuizSession:
    return QuizSession.fresh(session.questions)


def tick(session: QuizSession) -> QuizSession:
    if not session.timer_should_run:
        return session
    return replace(session, current_elapsed=session.current_elapsed + 1)


def reduce(session: QuizSession, event: QuizEvent) -> QuizSession:
    """
    Apply an event to a session.

    Args:
        session: Current session snapshot
        event: One of the quiz events

    Returns:
        The next session, or the same object when the event does not apply
    """
    if not session.is_loaded:
        return _ignored(session, event, "questions not loaded")
    if isinstance(event, Tick):
        return tick(session)
    if isinstance(event, Select):
        return select(session, event.label)
    if isinstance(event, Submit):
        return submit(session)
    if isinstance(event, TogglePause):
        return toggle_pause(session)
    if isinstance(event, Advance):
        return advance(session)
    if isinstance(event, Restart):
        return restart(session)
    raise TypeError(f"Unknown quiz event: {event!r}")


def is_correct(session: QuizSession, index: int) -> bool:
    answer = session.answers.get(index)
    return answer is not None and answer == session.questions[index].correct_label


def score(session: QuizSession) -> int:
    """Number of questions whose recorded answer matches the correct label."""
    return sum(1 for i in range(len(session.questions)) if is_correct(session, i))


def total_time(session: QuizSession) -> int:
    return sum(session.elapsed_times)


def review_line(session: QuizSession, index: int) -> str:
    if index not in session.answers:
        return "Skipped"
    if is_correct(session, index):
        return "Correct"
    return f"Incorrect (Correct: {session.questions[index].correct_label.upper()})"


def review_lines(session: QuizSession) -> List[str]:
    return [review_line(session, i) for i in range(len(session.questions))]


def explanation_verdict(session: QuizSession) -> str:
    """Headline of the explanation panel for the current question."""
    if is_correct(session, session.current_index):
        return "Correct!"
    return f"Incorrect. Correct: {session.current_question.correct_label.upper()}"


def progress_percent(session: QuizSession) -> float:
    if not session.is_loaded:
        return 0
    return (session.current_index + 1) / len(session.questions) * 100


def format_time(seconds: int) -> str:
    """Format seconds as MM:SS."""
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes:02d}:{secs:02d}"

"""
Quiz session controller for the Sheet Quiz Bot.
Owns one quiz session per Discord channel, applies events and keeps the
tick timer in step with each session's phase.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from .config_manager import ConfigManager
from .models import LoadState, Phase, QuizSession
from .question_loader import QuestionLoader
from .quiz_engine import QuizEngine
from . import quiz_state
from .quiz_state import Advance, QuizEvent, Restart, Select, Submit, Tick, TogglePause


SessionListener = Callable[[QuizSession], Awaitable[Any]]


class QuizControllerError(Exception):
    """Base exception for quiz controller errors."""
    pass


class SessionNotFoundError(QuizControllerError):
    """Raised when attempting to operate on a non-existent session."""
    pass


class QuestionsNotReadyError(QuizControllerError):
    """Raised when a session is requested before the question bank loaded."""
    pass


class QuizController:
    """
    Orchestrates quiz sessions across Discord channels.

    Each channel holds at most one session. Sessions are immutable snapshots;
    every event replaces the stored snapshot with the reducer's result and
    then starts or stops the channel's tick timer so that a timer runs
    exactly while the session is answering and unpaused.
    """

    def __init__(self, question_loader: QuestionLoader, config_manager: ConfigManager):
        """
        Initialize the quiz controller.

        Args:
            question_loader: Source of the question bank
            config_manager: Instance for managing configuration
        """
        self.logger = logging.getLogger(__name__)
        self.question_loader = question_loader
        self.config_manager = config_manager
        self.quiz_engine = QuizEngine()

        # Sessions and tick listeners mapped by channel ID
        self._active_sessions: Dict[int, QuizSession] = {}
        self._listeners: Dict[int, SessionListener] = {}
        self._render_tasks: Dict[int, asyncio.Task] = {}

        self.logger.info("QuizController initialized")

    def open_session(self, channel_id: int) -> QuizSession:
        """
        Open a quiz session for a channel, replacing any existing one.

        The session is empty while the question bank is still loading;
        call populate_session once the load resolves.

        Args:
            channel_id: Discord channel identifier

        Returns:
            The new session
        """
        if channel_id in self._active_sessions:
            self.logger.info(f"Replacing existing session for channel {channel_id}")
            self.close_session(channel_id)

        if self.question_loader.is_ready():
            session = QuizSession.fresh(self.question_loader.questions)
        else:
            session = QuizSession.empty()

        self._active_sessions[channel_id] = session
        self._sync_timer(channel_id)
        self.logger.info(
            f"Opened quiz session for channel {channel_id}: questions={session.total_questions}",
            extra={
                'event_type': 'session_opened',
                'channel_id': channel_id,
                'question_count': session.total_questions,
                'timestamp': time.time()
            }
        )
        return session

    def populate_session(self, channel_id: int) -> QuizSession:
        """
        Fill an empty session with the loaded question bank.

        Raises:
            SessionNotFoundError: If the channel has no session
            QuestionsNotReadyError: If the question bank is not loaded
        """
        session = self._require_session(channel_id)
        if session.is_loaded:
            return session
        if self.question_loader.load_state is not LoadState.READY:
            raise QuestionsNotReadyError(
                f"Question bank is {self.question_loader.load_state.value}"
            )
        session = QuizSession.fresh(self.question_loader.questions)
        self._active_sessions[channel_id] = session
        self._sync_timer(channel_id)
        self.logger.info(f"Populated session for channel {channel_id} with {session.total_questions} questions")
        return session

    def get_session(self, channel_id: int) -> Optional[QuizSession]:
        """
        Get the session for a channel.

        Returns:
            QuizSession if one exists, None otherwise
        """
        return self._active_sessions.get(channel_id)

    def has_session(self, channel_id: int) -> bool:
        return channel_id in self._active_sessions

    def _require_session(self, channel_id: int) -> QuizSession:
        session = self._active_sessions.get(channel_id)
        if session is None:
            raise SessionNotFoundError(f"No quiz session in channel {channel_id}")
        return session

    def set_update_listener(self, channel_id: int, listener: Optional[SessionListener]) -> None:
        """Register the coroutine awaited with the new session after every tick."""
        if listener is None:
            self._listeners.pop(channel_id, None)
        else:
            self._listeners[channel_id] = listener

    def apply_event(self, channel_id: int, event: QuizEvent) -> Dict[str, Any]:
        """
        Apply a quiz event to a channel's session.

        Args:
            channel_id: Discord channel identifier
            event: Event to apply

        Returns:
            Dictionary with success status, whether the session changed and the session
        """
        try:
            session = self._require_session(channel_id)
            new_session = quiz_state.reduce(session, event)
            changed = new_session is not session
            self._active_sessions[channel_id] = new_session
            if changed:
                # A new question always gets its own tick task
                new_question = (
                    new_session.current_index != session.current_index
                    or isinstance(event, Restart)
                )
                self._sync_timer(channel_id, restart=new_question)
                self._log_transition(channel_id, event, session, new_session)
            return {
                'success': True,
                'changed': changed,
                'session': new_session,
                'message': f"{type(event).__name__} {'applied' if changed else 'ignored'}"
            }
        except QuizControllerError as e:
            return self._handle_session_error(channel_id, e, type(event).__name__)

    def select_option(self, channel_id: int, label: str) -> Dict[str, Any]:
        return self.apply_event(channel_id, Select(label))

    def submit_answer(self, channel_id: int) -> Dict[str, Any]:
        return self.apply_event(channel_id, Submit())

    def toggle_pause(self, channel_id: int) -> Dict[str, Any]:
        return self.apply_event(channel_id, TogglePause())

    def advance_question(self, channel_id: int) -> Dict[str, Any]:
        return self.apply_event(channel_id, Advance())

    def restart_quiz(self, channel_id: int) -> Dict[str, Any]:
        return self.apply_event(channel_id, Restart())

    def close_session(self, channel_id: int) -> bool:
        """
        Stop the timer and forget a channel's session.

        Returns:
            True if a session was closed, False if none existed
        """
        self.quiz_engine.cancel_timer(str(channel_id))
        self._cancel_render(channel_id)
        self._listeners.pop(channel_id, None)
        session = self._active_sessions.pop(channel_id, None)
        if session is None:
            self.logger.warning(
                f"Cannot close session for channel {channel_id}: no session exists",
                extra={
                    'event_type': 'session_close_no_session',
                    'channel_id': channel_id,
                    'timestamp': time.time()
                }
            )
            return False
        self.logger.info(f"Closed session for channel {channel_id}")
        return True

    def _sync_timer(self, channel_id: int, restart: bool = False) -> None:
        """Start or stop the tick timer to match the session phase."""
        session = self._active_sessions.get(channel_id)
        timer_key = str(channel_id)
        should_run = session is not None and session.timer_should_run
        if restart:
            self.quiz_engine.cancel_timer(timer_key)
        is_running = self.quiz_engine.is_timer_running(timer_key)

        if should_run and not is_running:
            self.quiz_engine.start_timer(
                timer_key,
                self.config_manager.get_tick_interval(),
                lambda: self._on_tick(channel_id)
            )
        elif not should_run and is_running:
            self.quiz_engine.cancel_timer(timer_key)

    async def _on_tick(self, channel_id: int) -> None:
        session = self._active_sessions.get(channel_id)
        if session is None:
            return
        new_session = quiz_state.reduce(session, Tick())
        if new_session is session:
            return
        self._active_sessions[channel_id] = new_session
        listener = self._listeners.get(channel_id)
        if listener is None:
            return
        pending = self._render_tasks.get(channel_id)
        if pending is not None and not pending.done():
            # Still editing; the next tick renders the newer session
            return
        self._render_tasks[channel_id] = asyncio.create_task(
            self._notify_listener(channel_id, listener, new_session)
        )

    async def _notify_listener(self, channel_id: int, listener: SessionListener, session: QuizSession) -> None:
        """Run the tick listener outside the tick loop so slow edits never delay the clock."""
        try:
            await listener(session)
        except Exception as e:
            self.logger.error(f"Tick listener failed for channel {channel_id}: {e}", exc_info=True)

    def _cancel_render(self, channel_id: int) -> None:
        task = self._render_tasks.pop(channel_id, None)
        if task is not None and not task.done():
            task.cancel()

    def _log_transition(self, channel_id: int, event: QuizEvent, before: QuizSession, after: QuizSession) -> None:
        self.logger.debug(
            f"Channel {channel_id}: {type(event).__name__} "
            f"{before.phase.value}#{before.current_index} -> {after.phase.value}#{after.current_index}",
            extra={
                'event_type': 'session_transition',
                'channel_id': channel_id,
                'quiz_event': type(event).__name__,
                'from_phase': before.phase.value,
                'to_phase': after.phase.value,
                'timestamp': time.time()
            }
        )
        if after.phase is Phase.FINISHED and before.phase is not Phase.FINISHED:
            self.logger.info(
                f"Quiz finished in channel {channel_id}: "
                f"{quiz_state.score(after)}/{after.total_questions} in {quiz_state.format_time(quiz_state.total_time(after))}"
            )

    def _handle_session_error(self, channel_id: int, error: Exception, operation: str) -> Dict[str, Any]:
        self.logger.warning(
            f"{operation} failed for channel {channel_id}: {error}",
            extra={
                'event_type': 'session_operation_failed',
                'channel_id': channel_id,
                'operation': operation,
                'error_type': type(error).__name__,
                'timestamp': time.time()
            }
        )
        return {
            'success': False,
            'changed': False,
            'session': None,
            'error': str(error),
            'user_message': self._get_user_friendly_error_message(error)
        }

    def _get_user_friendly_error_message(self, error: Exception) -> str:
        if isinstance(error, SessionNotFoundError):
            return "❌ There is no quiz open in this channel. Use `/quiz` to start one."
        if isinstance(error, QuestionsNotReadyError):
            return "⏳ Questions are not loaded yet."
        return "❌ An unexpected error occurred with the quiz session."

    def get_session_progress(self, channel_id: int) -> Optional[Dict[str, Any]]:
        """
        Get progress information for a session.

        Returns:
            Dictionary with progress info, None if no session
        """
        session = self._active_sessions.get(channel_id)
        if session is None:
            return None
        return {
            'loaded': session.is_loaded,
            'phase': session.phase.value,
            'current_question': session.current_index + 1,
            'total_questions': session.total_questions,
            'progress_percent': quiz_state.progress_percent(session),
            'current_elapsed': session.current_elapsed,
            'timer_paused': session.timer_paused,
            'answered': len(session.answers),
            'timer_running': self.quiz_engine.is_timer_running(str(channel_id))
        }

    def get_quiz_summary(self, channel_id: int) -> Optional[Dict[str, Any]]:
        """
        Get the final summary of a finished session.

        Returns:
            Dictionary with score, times and review lines, None unless finished
        """
        session = self._active_sessions.get(channel_id)
        if session is None or session.phase is not Phase.FINISHED:
            return None
        return {
            'score': quiz_state.score(session),
            'total_questions': session.total_questions,
            'total_time': quiz_state.total_time(session),
            'question_times': list(session.elapsed_times),
            'review_lines': quiz_state.review_lines(session)
        }

    async def shutdown(self) -> None:
        """Stop all timers and drop every session."""
        await self.quiz_engine.shutdown()
        render_tasks = [task for task in self._render_tasks.values() if not task.done()]
        for task in render_tasks:
            task.cancel()
        if render_tasks:
            await asyncio.wait(render_tasks)
        self._render_tasks.clear()
        self._active_sessions.clear()
        self._listeners.clear()

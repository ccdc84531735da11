"""
Timer engine for the Sheet Quiz Bot.
Runs the periodic elapsed-time tick for each quiz widget.
"""
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

# Set up logger for timer operations
logger = logging.getLogger(__name__)


class TimerLifecycleLogger:
    """Structured logging for timer lifecycle events."""

    @staticmethod
    def log_timer_start(channel_id: str, interval: float) -> None:
        """Log tick task start."""
        logger.info(
            f"Timer lifecycle: TICKING_START - Channel {channel_id}, Interval {interval}s",
            extra={
                'event_type': 'timer_ticking_start',
                'channel_id': channel_id,
                'interval': interval,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_tick(channel_id: str, tick_count: int) -> None:
        """Log tick events (throttled to avoid spam)."""
        if tick_count % 30 == 0:
            logger.debug(
                f"Timer lifecycle: TICK - Channel {channel_id}, {tick_count} ticks",
                extra={
                    'event_type': 'timer_tick',
                    'channel_id': channel_id,
                    'tick_count': tick_count,
                    'timestamp': time.time()
                }
            )

    @staticmethod
    def log_timer_completion(channel_id: str, completion_type: str, tick_count: int) -> None:
        """Log the end of a tick task."""
        logger.info(
            f"Timer lifecycle: COMPLETED - Channel {channel_id}, Type {completion_type}, Ticks {tick_count}",
            extra={
                'event_type': 'timer_completed',
                'channel_id': channel_id,
                'completion_type': completion_type,
                'tick_count': tick_count,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_state_transition(channel_id: str, from_state: str, to_state: str, reason: str = None) -> None:
        """Log timer state transitions."""
        logger.info(
            f"Timer lifecycle: STATE_TRANSITION - Channel {channel_id}, {from_state} -> {to_state}" +
            (f" ({reason})" if reason else ""),
            extra={
                'event_type': 'timer_state_transition',
                'channel_id': channel_id,
                'from_state': from_state,
                'to_state': to_state,
                'reason': reason,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_timer_error(channel_id: str, error_type: str, error_message: str, operation: str) -> None:
        """Log timer-related errors with context."""
        logger.error(
            f"Timer lifecycle: ERROR - Channel {channel_id}, Operation {operation}, Type {error_type}: {error_message}",
            extra={
                'event_type': 'timer_error',
                'channel_id': channel_id,
                'error_type': error_type,
                'error_message': error_message,
                'operation': operation,
                'timestamp': time.time()
            }
        )

    @staticmethod
    def log_race_condition_detected(channel_id: str, details: str) -> None:
        """Log race condition detection."""
        logger.warning(
            f"Timer lifecycle: RACE_CONDITION - Channel {channel_id}: {details}",
            extra={
                'event_type': 'timer_race_condition',
                'channel_id': channel_id,
                'details': details,
                'timestamp': time.time()
            }
        )


class QuizTimer:
    """Fixed-period ticker for one quiz widget."""

    def __init__(self, channel_id: str = None, interval: float = 1.0):
        """Initialize the timer."""
        self._task: Optional[asyncio.Task] = None
        self._is_cancelled = False
        self._channel_id = channel_id
        self._interval = interval
        self._tick_count = 0

    def start(self, tick_callback: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """
        Schedule the tick loop as a background task.

        Args:
            tick_callback: Awaited once per interval

        Returns:
            The created asyncio task
        """
        self._task = asyncio.create_task(self.run_ticks(tick_callback))
        return self._task

    async def run_ticks(self, tick_callback: Callable[[], Awaitable[Any]]) -> None:
        """Await tick_callback every interval until cancelled."""
        TimerLifecycleLogger.log_timer_start(self._channel_id, self._interval)
        try:
            while not self._is_cancelled:
                await asyncio.sleep(self._interval)
                if self._is_cancelled:
                    break
                self._tick_count += 1
                TimerLifecycleLogger.log_timer_tick(self._channel_id, self._tick_count)
                await tick_callback()
            TimerLifecycleLogger.log_timer_completion(self._channel_id, "stopped", self._tick_count)
        except asyncio.CancelledError:
            self._is_cancelled = True
            TimerLifecycleLogger.log_timer_completion(self._channel_id, "asyncio_cancelled", self._tick_count)
            raise
        except Exception as e:
            TimerLifecycleLogger.log_timer_error(
                self._channel_id,
                "tick_execution_error",
                str(e),
                "run_ticks"
            )
            raise

    def cancel(self) -> None:
        """Cancel the tick loop."""
        self._is_cancelled = True
        if self._task and not self._task.done():
            logger.debug(f"Cancelling timer task for channel {self._channel_id}")
            self._task.cancel()
            TimerLifecycleLogger.log_timer_state_transition(
                self._channel_id,
                "running",
                "cancelled",
                "task cancelled"
            )

    @property
    def is_running(self) -> bool:
        """True while the tick task is alive and not cancelled."""
        return self._task is not None and not self._task.done() and not self._is_cancelled

    @property
    def is_cancelled(self) -> bool:
        return self._is_cancelled

    @property
    def tick_count(self) -> int:
        return self._tick_count


class QuizEngine:
    """Keeps at most one running tick timer per channel."""

    def __init__(self):
        """Initialize the quiz engine."""
        self._timers: Dict[str, QuizTimer] = {}  # Channel ID -> Timer mapping

    def _verify_timer_readiness(self, channel_id: str) -> bool:
        """
        Verify no running timer exists before starting a new one.

        Inactive leftovers are removed.

        Args:
            channel_id: Discord channel identifier

        Returns:
            True if ready to start new timer, False if a running timer was found
        """
        timer = self._timers.get(channel_id)
        if timer is None:
            return True
        if timer.is_running:
            TimerLifecycleLogger.log_race_condition_detected(
                channel_id,
                "Active timer exists during readiness check"
            )
            return False
        del self._timers[channel_id]
        logger.debug(f"Cleaned up inactive timer for channel {channel_id}")
        return True

    def start_timer(
        self,
        channel_id: str,
        interval: float,
        tick_callback: Callable[[], Awaitable[Any]]
    ) -> bool:
        """
        Start the tick timer for a channel.

        Args:
            channel_id: Discord channel identifier
            interval: Seconds between ticks
            tick_callback: Awaited on every tick

        Returns:
            True if a new timer was started, False if one is already running
        """
        if not self._verify_timer_readiness(channel_id):
            return False
        timer = QuizTimer(channel_id, interval)
        self._timers[channel_id] = timer
        timer.start(tick_callback)
        logger.debug(
            f"Started tick task for channel {channel_id}",
            extra={
                'event_type': 'timer_task_started',
                'channel_id': channel_id,
                'task_id': str(id(timer._task)),
                'interval': interval,
                'timestamp': time.time()
            }
        )
        return True

    def cancel_timer(self, channel_id: str) -> bool:
        """
        Cancel and forget the timer for a channel.

        Args:
            channel_id: Discord channel identifier

        Returns:
            True if a timer was cancelled, False if none was tracked
        """
        timer = self._timers.pop(channel_id, None)
        if timer is None:
            logger.debug(
                f"No active timer found for channel {channel_id}",
                extra={
                    'event_type': 'timer_cancel_no_timer',
                    'channel_id': channel_id,
                    'timestamp': time.time()
                }
            )
            return False
        timer.cancel()
        return True

    async def wait_for_cancellation(self, timer: QuizTimer, timeout: float = 2.0) -> bool:
        """
        Wait until a cancelled timer's task has actually finished.

        Returns:
            True if the task finished within the timeout
        """
        task = timer._task
        if task is None or task.done():
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if task not in done:
            TimerLifecycleLogger.log_timer_error(
                timer._channel_id,
                "cancellation_timeout",
                f"Timer task did not finish within {timeout}s",
                "wait_for_cancellation"
            )
            return False
        return True

    def is_timer_running(self, channel_id: str) -> bool:
        timer = self._timers.get(channel_id)
        return timer is not None and timer.is_running

    def running_timer_count(self) -> int:
        return sum(1 for timer in self._timers.values() if timer.is_running)

    async def shutdown(self) -> None:
        """Cancel every timer and wait for the tasks to finish."""
        logger.info(f"Shutting down {self.running_timer_count()} running timers")
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        for timer in timers:
            await self.wait_for_cancellation(timer)

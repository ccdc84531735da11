"""
Unit tests for QuizController session management and timer syncing.
"""
import asyncio
import logging
import unittest
from unittest.mock import AsyncMock

from quizsheet.config_manager import ConfigManager
from quizsheet.models import LoadState, Phase, QuizSession
from quizsheet.question_loader import QuestionLoadError
from quizsheet.quiz_controller import QuestionsNotReadyError, QuizController, SessionNotFoundError
from quizsheet.quiz_state import Tick
from tests.fixtures import HttpFixtures, QuizFixtures

TICK = 0.05


class ControllerTestCase(unittest.IsolatedAsyncioTestCase):
    """Shared setup: a controller over a loaded three-question bank."""

    channel_id = 12345

    async def asyncSetUp(self):
        logging.disable(logging.CRITICAL)
        self.loader = HttpFixtures.create_loader(
            HttpFixtures.json_transport(QuizFixtures.create_sample_rows())
        )
        await self.loader.load_questions()
        self.config_manager = ConfigManager()
        self.config_manager.set_tick_interval(TICK)
        self.controller = QuizController(self.loader, self.config_manager)

    async def asyncTearDown(self):
        await self.controller.shutdown()
        logging.disable(logging.NOTSET)

    def timer_running(self, channel_id=None) -> bool:
        return self.controller.quiz_engine.is_timer_running(str(channel_id or self.channel_id))


class TestQuizControllerSessions(ControllerTestCase):
    """Test cases for opening, populating and closing sessions."""

    async def test_open_session_with_loaded_bank(self):
        session = self.controller.open_session(self.channel_id)
        self.assertTrue(session.is_loaded)
        self.assertEqual(session.total_questions, 3)
        self.assertEqual(session, QuizSession.fresh(self.loader.questions))
        self.assertTrue(self.controller.has_session(self.channel_id))
        self.assertTrue(self.timer_running())

    async def test_open_session_replaces_existing(self):
        self.controller.open_session(self.channel_id)
        self.controller.select_option(self.channel_id, "b")
        session = self.controller.open_session(self.channel_id)
        self.assertEqual(session.answers, {})
        self.assertEqual(self.controller.quiz_engine.running_timer_count(), 1)

    async def test_close_session(self):
        self.controller.open_session(self.channel_id)
        self.assertTrue(self.controller.close_session(self.channel_id))
        self.assertFalse(self.controller.has_session(self.channel_id))
        self.assertFalse(self.timer_running())
        self.assertFalse(self.controller.close_session(self.channel_id))

    async def test_event_without_session_fails(self):
        result = self.controller.submit_answer(999)
        self.assertFalse(result['success'])
        self.assertIn("/quiz", result['user_message'])

    async def test_populate_requires_session(self):
        with self.assertRaises(SessionNotFoundError):
            self.controller.populate_session(999)

    async def test_sessions_are_independent_per_channel(self):
        self.controller.open_session(1)
        self.controller.open_session(2)
        self.controller.select_option(1, "a")
        self.assertEqual(self.controller.get_session(1).answers, {0: "a"})
        self.assertEqual(self.controller.get_session(2).answers, {})


class TestQuizControllerLoading(unittest.IsolatedAsyncioTestCase):
    """Test cases for sessions opened before the question bank resolves."""

    channel_id = 777

    def setUp(self):
        logging.disable(logging.CRITICAL)

    def tearDown(self):
        logging.disable(logging.NOTSET)

    async def test_session_waits_for_load_then_populates(self):
        loader = HttpFixtures.create_loader(HttpFixtures.json_transport(QuizFixtures.create_sample_rows()))
        controller = QuizController(loader, ConfigManager())

        session = controller.open_session(self.channel_id)
        self.assertFalse(session.is_loaded)
        self.assertFalse(controller.quiz_engine.is_timer_running(str(self.channel_id)))
        self.assertFalse(controller.submit_answer(self.channel_id)['changed'])

        with self.assertRaises(QuestionsNotReadyError):
            controller.populate_session(self.channel_id)

        await loader.load_questions()
        session = controller.populate_session(self.channel_id)
        self.assertEqual(session.total_questions, 3)
        self.assertTrue(controller.quiz_engine.is_timer_running(str(self.channel_id)))
        await controller.shutdown()

    async def test_failed_load_keeps_session_empty(self):
        loader = HttpFixtures.create_loader(HttpFixtures.json_transport({}, status_code=500))
        controller = QuizController(loader, ConfigManager())
        controller.open_session(self.channel_id)

        with self.assertRaises(QuestionLoadError):
            await loader.load_questions()
        self.assertEqual(loader.load_state, LoadState.FAILED)
        with self.assertRaises(QuestionsNotReadyError):
            controller.populate_session(self.channel_id)
        self.assertFalse(controller.get_session(self.channel_id).is_loaded)
        await controller.shutdown()


class TestQuizControllerTimerSync(ControllerTestCase):
    """Test cases that the tick timer runs exactly while answering and unpaused."""

    async def test_submit_stops_timer(self):
        self.controller.open_session(self.channel_id)
        self.controller.select_option(self.channel_id, "b")
        self.assertTrue(self.timer_running())

        result = self.controller.submit_answer(self.channel_id)
        self.assertTrue(result['changed'])
        self.assertEqual(result['session'].phase, Phase.REVIEWING)
        self.assertFalse(self.timer_running())

    async def test_submit_without_selection_keeps_timer(self):
        self.controller.open_session(self.channel_id)
        result = self.controller.submit_answer(self.channel_id)
        self.assertTrue(result['success'])
        self.assertFalse(result['changed'])
        self.assertTrue(self.timer_running())

    async def test_pause_and_resume(self):
        self.controller.open_session(self.channel_id)
        self.controller.toggle_pause(self.channel_id)
        self.assertFalse(self.timer_running())
        self.controller.toggle_pause(self.channel_id)
        self.assertTrue(self.timer_running())

    async def test_next_restarts_timer_for_new_question(self):
        self.controller.open_session(self.channel_id)
        self.controller.select_option(self.channel_id, "b")
        self.controller.submit_answer(self.channel_id)
        self.controller.advance_question(self.channel_id)
        self.assertTrue(self.timer_running())
        self.assertEqual(self.controller.get_session(self.channel_id).current_index, 1)

    async def test_skip_replaces_tick_task(self):
        self.controller.open_session(self.channel_id)
        first = self.controller.quiz_engine._timers.get(str(self.channel_id))
        self.controller.advance_question(self.channel_id)
        second = self.controller.quiz_engine._timers.get(str(self.channel_id))
        self.assertIsNot(first, second)
        self.assertTrue(first.is_cancelled)
        self.assertEqual(self.controller.quiz_engine.running_timer_count(), 1)

    async def test_finish_stops_timer_and_restart_starts_it(self):
        self.controller.open_session(self.channel_id)
        for _ in range(3):
            self.controller.advance_question(self.channel_id)
        self.assertEqual(self.controller.get_session(self.channel_id).phase, Phase.FINISHED)
        self.assertFalse(self.timer_running())

        self.controller.restart_quiz(self.channel_id)
        self.assertTrue(self.timer_running())
        self.assertEqual(
            self.controller.get_session(self.channel_id),
            QuizSession.fresh(self.loader.questions)
        )

    async def test_ticks_accumulate_and_notify_listener(self):
        listener = AsyncMock()
        self.controller.open_session(self.channel_id)
        self.controller.set_update_listener(self.channel_id, listener)

        await asyncio.sleep(TICK * 8)

        session = self.controller.get_session(self.channel_id)
        self.assertGreater(session.current_elapsed, 0)
        listener.assert_awaited()
        self.assertIsInstance(listener.await_args.args[0], QuizSession)

    async def test_paused_session_does_not_tick(self):
        self.controller.open_session(self.channel_id)
        self.controller.toggle_pause(self.channel_id)
        before = self.controller.get_session(self.channel_id).current_elapsed
        await asyncio.sleep(TICK * 5)
        self.assertEqual(self.controller.get_session(self.channel_id).current_elapsed, before)

    async def test_listener_error_does_not_stop_timer(self):
        listener = AsyncMock(side_effect=RuntimeError("render failed"))
        self.controller.open_session(self.channel_id)
        self.controller.set_update_listener(self.channel_id, listener)
        await asyncio.sleep(TICK * 5)
        self.assertTrue(self.timer_running())
        self.assertGreaterEqual(listener.await_count, 1)

    async def test_slow_listener_does_not_slow_the_clock(self):
        async def slow_render(session):
            await asyncio.sleep(TICK * 3)

        listener = AsyncMock(side_effect=slow_render)
        self.controller.open_session(self.channel_id)
        self.controller.set_update_listener(self.channel_id, listener)

        await asyncio.sleep(TICK * 20)

        elapsed = self.controller.get_session(self.channel_id).current_elapsed
        self.assertGreaterEqual(elapsed, 15)
        # Renders overlapping a running one are skipped, not queued
        self.assertLess(listener.await_count, elapsed)

    async def test_close_session_cancels_pending_render(self):
        started = asyncio.Event()

        async def hanging_render(session):
            started.set()
            await asyncio.sleep(60)

        self.controller.open_session(self.channel_id)
        self.controller.set_update_listener(self.channel_id, hanging_render)
        await asyncio.wait_for(started.wait(), timeout=TICK * 10)
        render = self.controller._render_tasks[self.channel_id]

        self.controller.close_session(self.channel_id)
        with self.assertRaises(asyncio.CancelledError):
            await render

    async def test_on_tick_applies_tick_event(self):
        self.controller.open_session(self.channel_id)
        self.controller.toggle_pause(self.channel_id)
        self.controller.toggle_pause(self.channel_id)
        before = self.controller.get_session(self.channel_id)
        await self.controller._on_tick(self.channel_id)
        after = self.controller.get_session(self.channel_id)
        self.assertEqual(after.current_elapsed, before.current_elapsed + 1)


class TestQuizControllerReporting(ControllerTestCase):
    """Test cases for progress and summary reports."""

    async def test_progress(self):
        self.controller.open_session(self.channel_id)
        self.controller.advance_question(self.channel_id)
        progress = self.controller.get_session_progress(self.channel_id)
        self.assertEqual(progress['current_question'], 2)
        self.assertEqual(progress['total_questions'], 3)
        self.assertEqual(progress['phase'], "answering")
        self.assertTrue(progress['timer_running'])
        self.assertIsNone(self.controller.get_session_progress(999))

    async def test_summary_only_when_finished(self):
        self.controller.open_session(self.channel_id)
        self.assertIsNone(self.controller.get_quiz_summary(self.channel_id))

        # Bank answers: b, a, a
        self.controller.select_option(self.channel_id, "b")
        self.controller.submit_answer(self.channel_id)
        self.controller.advance_question(self.channel_id)
        self.controller.select_option(self.channel_id, "c")
        self.controller.submit_answer(self.channel_id)
        self.controller.advance_question(self.channel_id)
        self.controller.advance_question(self.channel_id)

        summary = self.controller.get_quiz_summary(self.channel_id)
        self.assertEqual(summary['score'], 1)
        self.assertEqual(summary['total_questions'], 3)
        self.assertEqual(len(summary['question_times']), 3)
        self.assertEqual(summary['review_lines'], ["Correct", "Incorrect (Correct: A)", "Skipped"])

    async def test_tick_event_via_apply_event(self):
        self.controller.open_session(self.channel_id)
        self.controller.toggle_pause(self.channel_id)
        result = self.controller.apply_event(self.channel_id, Tick())
        self.assertFalse(result['changed'])


if __name__ == '__main__':
    unittest.main()

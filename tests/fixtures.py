"""
Test fixtures and sample data for Sheet Quiz Bot tests.
"""
import json
from typing import Any, Dict, List
from unittest.mock import AsyncMock, Mock

import discord
import httpx

from quizsheet.models import Question, QuizSession
from quizsheet.question_loader import QuestionLoader

SOURCE_URL = "https://opensheet.example.test/sheet-id/Sheet1"


class QuizFixtures:
    """Centralized test fixtures for all test modules."""

    @staticmethod
    def make_question(correct: str = "a", **overrides) -> Question:
        fields = {
            'description': "Arithmetic",
            'prompt': "What is 2+2?",
            'options': {"a": "4", "b": "3", "c": "5", "d": "", "e": ""},
            'correct_label': correct,
            'explanation': "Two plus two is four.",
        }
        fields.update(overrides)
        return Question(**fields)

    @staticmethod
    def create_sample_questions() -> List[Question]:
        """Three questions whose correct labels are a, b and c."""
        return [
            QuizFixtures.make_question("a", prompt="First?"),
            QuizFixtures.make_question("b", prompt="Second?"),
            QuizFixtures.make_question("c", prompt="Third?"),
        ]

    @staticmethod
    def create_sample_session() -> QuizSession:
        return QuizSession.fresh(QuizFixtures.create_sample_questions())

    @staticmethod
    def create_sample_rows() -> List[Dict[str, Any]]:
        """Raw rows as the spreadsheet API returns them."""
        return [
            {
                "Description": "Geography",
                "Question": "What is the capital of France?",
                "Option A": "Berlin",
                "Option B": "Paris",
                "Option C": "Madrid",
                "Option D": "Rome",
                "Option E": "",
                "Correct Answer": "B",
                "Explanations": "Paris has been the capital since 987.",
            },
            {
                "Question": "Which planet is largest?",
                "Option A": "Jupiter",
                "Option B": "Mars",
                "Correct Answer": "a",
                "Explanation": "Jupiter is the largest planet.",
            },
            {
                "Question": "Pick one",
                "Option A": "Yes",
                "Option B": "No",
                "Correct Answer": "A",
            },
        ]


class HttpFixtures:
    """httpx transports standing in for the spreadsheet API."""

    @staticmethod
    def json_transport(payload: Any, status_code: int = 200, calls: List[httpx.Request] = None) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            if calls is not None:
                calls.append(request)
            return httpx.Response(status_code, json=payload)
        return httpx.MockTransport(handler)

    @staticmethod
    def text_transport(body: str, status_code: int = 200) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, text=body)
        return httpx.MockTransport(handler)

    @staticmethod
    def failing_transport(error: Exception) -> httpx.MockTransport:
        def handler(request: httpx.Request) -> httpx.Response:
            raise error
        return httpx.MockTransport(handler)

    @staticmethod
    def create_loader(transport: httpx.MockTransport) -> QuestionLoader:
        return QuestionLoader(SOURCE_URL, request_timeout=5, transport=transport)

    @staticmethod
    def sample_rows_json() -> str:
        return json.dumps(QuizFixtures.create_sample_rows())


class MockDiscordObjects:
    """Mock Discord objects for testing bot functionality."""

    @staticmethod
    def create_mock_interaction(channel_id: int = 12345, user_id: int = 67890) -> Mock:
        """Create mock Discord interaction."""
        interaction = Mock(spec=discord.Interaction)
        interaction.channel_id = channel_id
        interaction.user = Mock()
        interaction.user.id = user_id
        interaction.response = Mock()
        interaction.response.is_done.return_value = False
        interaction.response.send_message = AsyncMock()
        interaction.response.edit_message = AsyncMock()
        interaction.followup = Mock()
        interaction.followup.send = AsyncMock()
        interaction.original_response = AsyncMock(return_value=MockDiscordObjects.create_mock_message())
        return interaction

    @staticmethod
    def create_mock_message(message_id: int = 11111) -> Mock:
        """Create mock Discord message."""
        message = Mock(spec=discord.Message)
        message.id = message_id
        message.edit = AsyncMock()
        return message


def embed_text(embed: discord.Embed) -> str:
    """Flatten an embed into one string for assertions."""
    parts = [embed.title or "", embed.description or ""]
    for field in embed.fields:
        parts.append(field.name)
        parts.append(field.value)
    if embed.footer and embed.footer.text:
        parts.append(embed.footer.text)
    return "\n".join(parts)

"""
Question loader for the remote spreadsheet source and row validation.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from .models import DEFAULT_EXPLANATION, OPTION_LABELS, LoadState, Question


# Spreadsheet column headers -> option labels
OPTION_COLUMNS = {label: f"Option {label.upper()}" for label in OPTION_LABELS}
EXPLANATION_COLUMNS = ("Explanations", "Explanation")


class QuestionLoadError(Exception):
    """Raised when the question bank cannot be fetched or decoded."""
    pass


def _text(row: Dict[str, Any], column: str) -> str:
    value = row.get(column)
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def normalize_row(row: Dict[str, Any]) -> Question:
    """
    Map one spreadsheet row onto a Question.

    Missing text cells become empty strings, a missing explanation becomes
    the default placeholder and the correct answer is lowercased.

    Args:
        row: Raw row object keyed by column header

    Returns:
        Normalized Question
    """
    explanation = ""
    for column in EXPLANATION_COLUMNS:
        explanation = _text(row, column)
        if explanation:
            break

    return Question(
        description=_text(row, "Description"),
        prompt=_text(row, "Question"),
        options={label: _text(row, column) for label, column in OPTION_COLUMNS.items()},
        correct_label=_text(row, "Correct Answer").strip().lower(),
        explanation=explanation or DEFAULT_EXPLANATION
    )


class QuestionLoader:
    """Fetches the question bank once and keeps it for the process lifetime."""

    def __init__(
        self,
        source_url: str,
        request_timeout: Optional[float] = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        """
        Initialize QuestionLoader.

        Args:
            source_url: URL returning a JSON array of row objects
            request_timeout: Seconds before the request fails, None to wait forever
            transport: Optional httpx transport, used by tests
        """
        self.source_url = source_url
        self.request_timeout = request_timeout
        self._transport = transport
        self.logger = logging.getLogger(__name__)
        self.questions: List[Question] = []
        self.load_state = LoadState.LOADING
        self.load_error: Optional[str] = None
        self.row_errors: List[str] = []  # Rows skipped during normalization
        self._load_task: Optional[asyncio.Task] = None
        self._loaded = asyncio.Event()

    async def load_questions(self) -> List[Question]:
        """
        Fetch and normalize the question bank.

        Only the first call issues a request; later calls share its outcome.

        Returns:
            List of Question objects

        Raises:
            QuestionLoadError: If the fetch failed
        """
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._fetch_and_parse())
        await asyncio.shield(self._load_task)
        if self.load_state is LoadState.FAILED:
            raise QuestionLoadError(self.load_error)
        return self.questions

    async def wait_until_loaded(self) -> LoadState:
        """Wait for the fetch to resolve and return the resulting state."""
        await self._loaded.wait()
        return self.load_state

    async def _fetch_and_parse(self) -> None:
        try:
            rows = await self._fetch_rows()
            questions = self.parse_rows(rows)
            if not questions:
                raise QuestionLoadError("Source returned no questions")
            self.questions = questions
            self.load_state = LoadState.READY
            self.logger.info(f"Loaded {len(self.questions)} questions from {self.source_url}")
            if self.row_errors:
                self.logger.warning(f"Skipped {len(self.row_errors)} malformed rows")
        except QuestionLoadError as e:
            self.load_error = str(e)
            self.load_state = LoadState.FAILED
            self.logger.error(f"Failed to load questions from {self.source_url}: {e}")
        finally:
            self._loaded.set()

    async def _fetch_rows(self) -> List[Any]:
        """
        Issue the single GET request and decode the row array.

        Raises:
            QuestionLoadError: On transport errors, bad status, invalid JSON or a non-array body
        """
        try:
            async with httpx.AsyncClient(timeout=self.request_timeout, transport=self._transport) as client:
                response = await client.get(self.source_url)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            raise QuestionLoadError(f"Request timed out after {self.request_timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise QuestionLoadError(f"Source responded with HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise QuestionLoadError(f"Request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise QuestionLoadError(f"Invalid JSON from source: {e}") from e

        if not isinstance(data, list):
            raise QuestionLoadError(f"Expected a JSON array of rows, got {type(data).__name__}")
        return data

    def parse_rows(self, rows: List[Any]) -> List[Question]:
        """
        Normalize raw rows, skipping anything that is not a row object.

        Args:
            rows: Decoded JSON array

        Returns:
            List of Question objects
        """
        self.row_errors.clear()
        questions = []
        for i, row in enumerate(rows):
            if not isinstance(row, dict):
                error = f"Row {i} must be an object, got {type(row).__name__}"
                self.logger.warning(error)
                self.row_errors.append(error)
                continue
            questions.append(normalize_row(row))
        return questions

    def is_ready(self) -> bool:
        return self.load_state is LoadState.READY

    def get_question_count(self) -> int:
        return len(self.questions)

    def get_loading_summary(self) -> Dict[str, Any]:
        """
        Get a summary of the loading outcome.

        Returns:
            Dictionary with state, question count and errors
        """
        return {
            'state': self.load_state.value,
            'source_url': self.source_url,
            'question_count': len(self.questions),
            'error': self.load_error,
            'row_errors': list(self.row_errors),
            'has_errors': self.load_error is not None or bool(self.row_errors)
        }

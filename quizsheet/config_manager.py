"""
Configuration manager for Sheet Quiz Bot settings and parameters.
"""
import logging
import os
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from .models import QuizSettings


class ConfigManager:
    """Manages the question source and timer settings."""

    # Default configuration values
    DEFAULT_SOURCE_URL = QuizSettings.source_url
    DEFAULT_REQUEST_TIMEOUT = QuizSettings.request_timeout
    DEFAULT_TICK_INTERVAL = QuizSettings.tick_interval

    # Validation limits
    MIN_REQUEST_TIMEOUT = 1
    MAX_REQUEST_TIMEOUT = 300  # 5 minutes
    MIN_TICK_INTERVAL = 0.05
    MAX_TICK_INTERVAL = 60

    SOURCE_URL_ENV = "QUIZ_SOURCE_URL"

    def __init__(self):
        """Initialize ConfigManager with default settings."""
        self.logger = logging.getLogger(__name__)
        self._settings = QuizSettings()

    def get_quiz_settings(self) -> QuizSettings:
        """
        Get current quiz settings.

        Returns:
            Copy of the current QuizSettings
        """
        return QuizSettings(
            source_url=self._settings.source_url,
            request_timeout=self._settings.request_timeout,
            tick_interval=self._settings.tick_interval
        )

    def apply_config(self, quiz_config: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Apply the 'quiz' section of config.json, then environment overrides.

        Invalid values are logged and leave the defaults in place.

        Args:
            quiz_config: Mapping with optional source_url, request_timeout and tick_interval

        Returns:
            List of result dictionaries, one per applied setting
        """
        results = []
        if 'source_url' in quiz_config:
            results.append(self.set_source_url(quiz_config['source_url']))
        if 'request_timeout' in quiz_config:
            results.append(self.set_request_timeout(quiz_config['request_timeout']))
        if 'tick_interval' in quiz_config:
            results.append(self.set_tick_interval(quiz_config['tick_interval']))

        env_url = os.getenv(self.SOURCE_URL_ENV)
        if env_url:
            results.append(self.set_source_url(env_url))

        for result in results:
            if not result['success']:
                self.logger.warning(f"Ignoring invalid configuration: {result['error']}")
        return results

    def set_source_url(self, url: str) -> Dict[str, Any]:
        """
        Set the URL of the question source.

        Args:
            url: http(s) URL returning a JSON array of rows

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if not isinstance(url, str):
            error_msg = f"Source URL must be a string, got {type(url).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a URL, got {type(url).__name__}"
            }

        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            error_msg = f"Source URL must be an http(s) URL with a host: {url!r}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid URL: {url}"
            }

        self._settings.source_url = url.strip()
        self.logger.info(f"Question source set to {self._settings.source_url}")
        return {
            'success': True,
            'message': f"Question source set to {self._settings.source_url}",
            'user_message': "✅ Question source updated"
        }

    def get_source_url(self) -> str:
        return self._settings.source_url

    def set_request_timeout(self, timeout: Optional[float]) -> Dict[str, Any]:
        """
        Set the request timeout for the question fetch.

        Args:
            timeout: Seconds, or None to wait indefinitely

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if timeout is None:
            self._settings.request_timeout = None
            self.logger.info("Request timeout disabled")
            return {
                'success': True,
                'message': "Request timeout disabled",
                'user_message': "✅ The question fetch will wait indefinitely"
            }

        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            error_msg = f"Request timeout must be a number, got {type(timeout).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(timeout).__name__}"
            }

        if timeout < self.MIN_REQUEST_TIMEOUT or timeout > self.MAX_REQUEST_TIMEOUT:
            error_msg = (
                f"Request timeout must be between {self.MIN_REQUEST_TIMEOUT} "
                f"and {self.MAX_REQUEST_TIMEOUT} seconds"
            )
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {error_msg}"
            }

        self._settings.request_timeout = float(timeout)
        self.logger.info(f"Request timeout set to {timeout} seconds")
        return {
            'success': True,
            'message': f"Request timeout set to {timeout} seconds",
            'user_message': f"✅ Request timeout set to {timeout} seconds"
        }

    def get_request_timeout(self) -> Optional[float]:
        return self._settings.request_timeout

    def set_tick_interval(self, interval: float) -> Dict[str, Any]:
        """
        Set the period of the elapsed-time tick.

        Args:
            interval: Seconds between ticks

        Returns:
            Dictionary with success status, error message, and user-friendly message
        """
        if isinstance(interval, bool) or not isinstance(interval, (int, float)):
            error_msg = f"Tick interval must be a number, got {type(interval).__name__}"
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ Invalid input: Expected a number, got {type(interval).__name__}"
            }

        if interval < self.MIN_TICK_INTERVAL or interval > self.MAX_TICK_INTERVAL:
            error_msg = (
                f"Tick interval must be between {self.MIN_TICK_INTERVAL} "
                f"and {self.MAX_TICK_INTERVAL} seconds"
            )
            self.logger.error(error_msg)
            return {
                'success': False,
                'error': error_msg,
                'user_message': f"❌ {error_msg}"
            }

        self._settings.tick_interval = float(interval)
        self.logger.info(f"Tick interval set to {interval} seconds")
        return {
            'success': True,
            'message': f"Tick interval set to {interval} seconds",
            'user_message': f"✅ Timer ticks every {interval} seconds"
        }

    def get_tick_interval(self) -> float:
        return self._settings.tick_interval

    def validate_settings(self) -> Dict[str, Any]:
        """
        Validate current settings and return validation results.

        Returns:
            Dictionary with validation results and any issues found
        """
        validation_result = {
            "valid": True,
            "issues": []
        }

        parsed = urlparse(self._settings.source_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            validation_result["valid"] = False
            validation_result["issues"].append(
                f"Invalid source URL: {self._settings.source_url}"
            )

        timeout = self._settings.request_timeout
        if timeout is not None and not (self.MIN_REQUEST_TIMEOUT <= timeout <= self.MAX_REQUEST_TIMEOUT):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid request timeout: {timeout}")

        interval = self._settings.tick_interval
        if not (self.MIN_TICK_INTERVAL <= interval <= self.MAX_TICK_INTERVAL):
            validation_result["valid"] = False
            validation_result["issues"].append(f"Invalid tick interval: {interval}")

        return validation_result

    def get_settings_summary(self) -> str:
        """
        Get a formatted summary of current settings.

        Returns:
            Human-readable string describing current settings
        """
        timeout = self._settings.request_timeout
        timeout_str = f"{timeout:g} seconds" if timeout is not None else "none"
        return (
            f"Quiz Settings:\n"
            f"• Source: {self._settings.source_url}\n"
            f"• Request timeout: {timeout_str}\n"
            f"• Timer tick: {self._settings.tick_interval:g} seconds"
        )

#!/usr/bin/env python3
"""
Tests for URL / prompt validation and the retry helper
"""
import asyncio

import pytest

from config import RetrySettings
from utils import (
    MAX_PROMPT_LENGTH, is_rate_limit_error, is_valid_url, random_delay_seconds,
    sanitize_url, validate_prompt, with_retry,
)


class TestUrlValidation:
    """Only absolute http/https URLs are accepted"""

    @pytest.mark.parametrize("url", [
        "file:///etc/passwd",
        "javascript:alert(1)",
        "ftp://example.com/file",
        "data:text/html,<script>alert(1)</script>",
        "chrome://settings",
        "not-a-url",
        "",
        "   ",
        "http://",
        "http://[::1",
    ])
    def test_rejects_non_http_urls(self, url):
        assert is_valid_url(url) is False

    @pytest.mark.parametrize("url", [
        "http://example.com",
        "https://example.com/",
        "https://example.com/path?q=1&lang=en",
        "https://example.com/docs#section-2",
        "HTTPS://EXAMPLE.COM",
        "http://localhost:8080/health",
    ])
    def test_accepts_http_urls(self, url):
        assert is_valid_url(url) is True

    def test_never_raises_for_non_strings(self):
        assert is_valid_url(None) is False
        assert is_valid_url(42) is False


class TestSanitizeUrl:
    """Sanitising strips whitespace and quote/angle characters"""

    @pytest.mark.parametrize("raw", [
        "  https://example.com/<script>  ",
        "https://example.com/\"onmouseover='x'",
        "<>'\"",
        "https://example.com/a<b>c'd\"e",
    ])
    def test_removes_unsafe_characters(self, raw):
        cleaned = sanitize_url(raw)
        for ch in "<>'\"":
            assert ch not in cleaned

    def test_trims_and_keeps_the_rest(self):
        assert sanitize_url("  https://example.com/<x>  ") == "https://example.com/x"


class TestPromptValidation:
    """Prompts must be 1..9999 characters"""

    def test_boundaries(self):
        assert validate_prompt("") is False
        assert validate_prompt("a") is True
        assert validate_prompt("a" * (MAX_PROMPT_LENGTH - 1)) is True
        assert validate_prompt("a" * MAX_PROMPT_LENGTH) is False

    def test_non_string(self):
        assert validate_prompt(None) is False


class TestRandomDelay:
    def test_within_bounds(self):
        for _ in range(50):
            assert 2.0 <= random_delay_seconds(2000, 5000) <= 5.0

    def test_swapped_bounds(self):
        assert 1.0 <= random_delay_seconds(3000, 1000) <= 3.0


class TestWithRetry:
    """Exponential backoff applies to rate-limit errors only"""

    def test_retries_rate_limits_with_backoff(self):
        attempts = []
        sleeps = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise RuntimeError("HTTP 429 Too Many Requests")
            return "done"

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        retry = RetrySettings(max_attempts=3, initial_delay_ms=1000, max_delay_ms=10000, backoff_factor=2)
        result = asyncio.run(with_retry(operation, "test", retry, sleep=fake_sleep))

        assert result == "done"
        assert len(attempts) == 3
        assert sleeps == [1.0, 2.0]

    def test_delay_is_capped(self):
        sleeps = []

        async def operation():
            raise RuntimeError("rate limit exceeded")

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        retry = RetrySettings(max_attempts=4, initial_delay_ms=4000, max_delay_ms=5000, backoff_factor=3)
        with pytest.raises(RuntimeError):
            asyncio.run(with_retry(operation, "test", retry, sleep=fake_sleep))
        assert sleeps == [4.0, 5.0, 5.0]

    def test_other_errors_are_not_retried(self):
        attempts = []

        async def operation():
            attempts.append(1)
            raise ValueError("boom")

        with pytest.raises(ValueError):
            asyncio.run(with_retry(operation, "test", RetrySettings()))
        assert len(attempts) == 1

    def test_rate_limit_detection(self):
        assert is_rate_limit_error(RuntimeError("Rate limit hit"))
        assert is_rate_limit_error(RuntimeError("status 429"))
        assert not is_rate_limit_error(RuntimeError("status 500"))

#!/usr/bin/env python3
"""
Tests for environment-driven configuration
"""
import pytest
from pydantic import ValidationError

from config import ConfigurationError, DEFAULT_FIRECRAWL_API_URL, load_config


class TestDefaults:
    """An empty environment yields documented defaults"""

    def test_defaults(self):
        settings = load_config({})

        assert settings.page_fetcher == "browser"
        assert settings.screenshot_enabled is True
        assert settings.llm.configured is False
        assert settings.proxy.url == ""
        assert settings.scraping.viewport_width == 1920
        assert settings.scraping.viewport_height == 1080
        assert (settings.scraping.delay_min_ms, settings.scraping.delay_max_ms) == (1000, 3000)
        assert (settings.scraping.batch_delay_min_ms, settings.scraping.batch_delay_max_ms) == (2000, 5000)
        assert settings.retry.max_attempts == 3
        assert settings.retry.initial_delay_ms == 1000
        assert settings.retry.max_delay_ms == 10000
        assert settings.retry.backoff_factor == 2
        assert settings.firecrawl.api_url == DEFAULT_FIRECRAWL_API_URL
        assert settings.limits.max_batch_urls == 10
        assert settings.limits.max_extract_urls == 5
        assert settings.limits.max_schema_extract_urls == 10
        assert settings.server.transport == "stdio"
        assert settings.server.port == 3000
        assert settings.server.log_level == "INFO"

    def test_settings_are_frozen(self):
        settings = load_config({})
        with pytest.raises(ValidationError):
            settings.page_fetcher = "firecrawl"


class TestNumericParsing:
    """Non-numeric or zero values fall back to the default"""

    @pytest.mark.parametrize("raw, expected", [
        ("1280", 1280),
        ("abc", 1920),
        ("", 1920),
        ("0", 1920),
        (" 800 ", 800),
    ])
    def test_viewport_width(self, raw, expected):
        settings = load_config({"SCRAPING_VIEWPORT_WIDTH": raw})
        assert settings.scraping.viewport_width == expected

    def test_backoff_factor(self):
        assert load_config({"FIRECRAWL_RETRY_BACKOFF_FACTOR": "1.5"}).retry.backoff_factor == 1.5
        assert load_config({"FIRECRAWL_RETRY_BACKOFF_FACTOR": "fast"}).retry.backoff_factor == 2

    def test_schema_extract_limit(self):
        assert load_config({"MAX_SCHEMA_EXTRACT_URLS": "3"}).limits.max_schema_extract_urls == 3


class TestLLMSettings:
    def test_configured_requires_all_three(self):
        full = {"LLM_API_KEY": "k", "LLM_BASE_URL": "https://llm.example/v1", "LLM_MODEL": "m"}
        assert load_config(full).llm.configured is True
        for missing in full:
            env = dict(full)
            del env[missing]
            assert load_config(env).llm.configured is False


class TestTransportSelection:
    @pytest.mark.parametrize("env, expected", [
        ({"MCP_TRANSPORT": "http"}, "http"),
        ({"MCP_TRANSPORT": "SSE"}, "sse"),
        ({"MCP_TRANSPORT": "carrier-pigeon"}, "stdio"),
        ({"SSE_LOCAL": "true"}, "sse"),
        ({"HTTP_STREAMABLE_SERVER": "true"}, "http"),
        ({"MCP_TRANSPORT": "stdio", "SSE_LOCAL": "true"}, "stdio"),
        ({}, "stdio"),
    ])
    def test_transport(self, env, expected):
        assert load_config(env).server.transport == expected


class TestStartupChecks:
    def test_browser_needs_nothing(self):
        load_config({}).check_startup()

    def test_missing_llm_is_not_fatal(self):
        load_config({"PAGE_FETCHER": "browser"}).check_startup()

    def test_firecrawl_requires_key(self):
        with pytest.raises(ConfigurationError, match="FIRECRAWL_API_KEY"):
            load_config({"PAGE_FETCHER": "firecrawl"}).check_startup()

    def test_firecrawl_cloud_mode_takes_key_per_request(self):
        load_config({"PAGE_FETCHER": "firecrawl", "CLOUD_SERVICE": "true"}).check_startup()

    def test_unknown_fetcher_falls_back_to_browser(self):
        assert load_config({"PAGE_FETCHER": "lynx"}).page_fetcher == "browser"

    def test_screenshot_can_be_disabled(self):
        assert load_config({"ENABLE_SCREENSHOT_TOOL": "false"}).screenshot_enabled is False

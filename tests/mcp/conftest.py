"""
Shared fixtures for the MCP server tests
"""
import os
import sys

import httpx
import pytest

# Add deploy/docker to Python path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.join(project_root, 'deploy', 'docker'))

from config import load_config
from dispatcher import Dispatcher
from extraction import ExtractionClient
from fetchers import PageFetcher
from rotation import RotationPool
from schemas import ScrapedContent, ScreenshotResult

LLM_ENV = {
    "LLM_API_KEY": "test-key",
    "LLM_BASE_URL": "https://llm.example/v1",
    "LLM_MODEL": "test-model",
}


def page(url, title="Example", text="Hello world"):
    return ScrapedContent(
        url=url, title=title, content=text, markdown=text,
        html=f"<main>{text}</main>", success=True,
    )


def failed_page(url, error="Timeout 30000ms exceeded."):
    return ScrapedContent(url=url, success=False, error=error)


def llm_reply(content):
    return httpx.Response(200, json={"choices": [{"message": {"role": "assistant", "content": content}}]})


class StubFetcher(PageFetcher):
    """Records every call; answers from ``pages`` or with a default page"""

    def __init__(self, pages=None):
        self.pages = pages or {}
        self.calls = []
        self.screenshots = []

    async def fetch_page(self, url, only_main_content=True):
        self.calls.append((url, only_main_content))
        return self.pages.get(url) or page(url)

    async def capture_screenshot(self, url, width=1920, height=1080, full_page=False):
        self.screenshots.append((url, width, height, full_page))
        return ScreenshotResult(url=url, success=True, mime_type="image/png", data="iVBORw0KGgo=")


@pytest.fixture
def settings():
    return load_config({})


@pytest.fixture
def llm_settings():
    return load_config(dict(LLM_ENV))


@pytest.fixture
def fetcher():
    return StubFetcher()


@pytest.fixture
def make_dispatcher():
    """Factory: dispatcher over a stub fetcher, optional LLM handler, recorded sleeps"""

    def _make(settings, fetcher, llm_handler=None):
        llm_calls = []

        def handler(request):
            llm_calls.append(request)
            if llm_handler is None:
                raise AssertionError("LLM must not be called")
            return llm_handler(request)

        extractor = ExtractionClient(
            fetcher, settings.llm, RotationPool([]), transport=httpx.MockTransport(handler)
        )
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)

        dispatcher = Dispatcher(settings, fetcher, extractor, sleep=fake_sleep)
        dispatcher.llm_calls = llm_calls
        dispatcher.sleeps = sleeps
        return dispatcher

    return _make

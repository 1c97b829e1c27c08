# deploy/docker/fetchers.py
"""
Page fetchers.

``PageFetcher`` is the one capability the dispatcher and the extraction client
depend on. Two implementations exist:

• ``BrowserPageFetcher``  – local headless Chromium driven through Playwright,
  with proxy / user-agent rotation and a fixed human-like choreography.
• ``FirecrawlPageFetcher`` – the hosted Firecrawl scrape API over httpx.

Neither implementation raises from ``fetch_page`` or ``capture_screenshot``;
every failure is reported through ``success=False`` and ``error``.
"""

from __future__ import annotations
import asyncio, base64, logging, random
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional

import httpx
from playwright.async_api import async_playwright

from config import Settings
from rotation import RotationPool
from schemas import ScrapedContent, ScreenshotResult
from utils import is_valid_url, random_delay_seconds, sanitize_url, with_retry

logger = logging.getLogger(__name__)

INVALID_URL_ERROR = "Invalid URL format. Only http and https URLs are allowed."

# Chromium flags that hide the usual automation fingerprints.
STEALTH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
    "--disable-features=IsolateOrigins,site-per-process",
    "--disable-infobars",
    "--window-position=0,0",
    "--ignore-certificate-errors",
]

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
window.chrome = { runtime: {} };
"""

MAIN_CONTENT_SELECTORS = (
    "main",
    '[role="main"]',
    ".content",
    ".post-content",
    ".entry-content",
    "article",
    ".article-content",
    "#content",
    ".main-content",
)
MIN_MAIN_CONTENT_CHARS = 100

Sleep = Callable[[float], Awaitable[None]]


def _error_message(exc: BaseException) -> str:
    return str(exc).strip() or exc.__class__.__name__


class PageFetcher(ABC):
    @abstractmethod
    async def fetch_page(self, url: str, only_main_content: bool = True) -> ScrapedContent:
        ...

    @abstractmethod
    async def capture_screenshot(
        self, url: str, width: int = 1920, height: int = 1080, full_page: bool = False
    ) -> ScreenshotResult:
        ...

    def with_api_key(self, api_key: str) -> "PageFetcher":
        """Fetcher bound to a caller-supplied API key (cloud mode)."""
        return self


# ── local browser ───────────────────────────────────────────────
class BrowserPageFetcher(PageFetcher):
    def __init__(
        self,
        settings: Settings,
        proxies: RotationPool[str],
        user_agents: RotationPool[str],
        *,
        playwright_factory: Callable[[], Any] = async_playwright,
        sleep: Sleep = asyncio.sleep,
    ):
        self._scraping = settings.scraping
        self._proxy = settings.proxy
        self._proxies = proxies
        self._user_agents = user_agents
        self._playwright_factory = playwright_factory
        self._sleep = sleep

    def _proxy_settings(self, proxy: Optional[str]) -> Optional[Dict[str, str]]:
        if not proxy:
            return None
        settings = {"server": proxy}
        if self._proxy.has_credentials:
            settings["username"] = self._proxy.username
            settings["password"] = self._proxy.password
        return settings

    @asynccontextmanager
    async def _open_page(self, width: int, height: int) -> AsyncIterator[Any]:
        """Launch an isolated browser and yield a stealth-prepared page.

        The browser is closed on every exit path, including errors raised
        by the caller's block.
        """
        proxy = self._proxies.next()
        user_agent = self._user_agents.next()

        async with self._playwright_factory() as playwright:
            browser = await playwright.chromium.launch(
                headless=True,
                args=[*STEALTH_ARGS, f"--window-size={width},{height}"],
                proxy=self._proxy_settings(proxy),
            )
            try:
                context = await browser.new_context(
                    user_agent=user_agent,
                    viewport={"width": width, "height": height},
                    locale="en-US",
                )
                page = await context.new_page()
                await page.add_init_script(STEALTH_SCRIPT)
                logger.debug("Browser ready (proxy=%s, ua=%s)", proxy or "none", user_agent)
                yield page
            finally:
                await browser.close()

    async def _navigate(self, page: Any, url: str) -> None:
        await self._sleep(random_delay_seconds(self._scraping.delay_min_ms, self._scraping.delay_max_ms))
        await page.goto(url, wait_until="networkidle", timeout=self._scraping.navigation_timeout_ms)
        await self._simulate_human(page)

    async def _simulate_human(self, page: Any) -> None:
        await self._sleep(random.uniform(2, 5))
        await page.evaluate("(dy) => window.scrollBy(0, dy)", random.randint(100, 400))
        await self._sleep(random.uniform(0.5, 1.5))
        await page.evaluate("(dy) => window.scrollBy(0, dy)", -random.randint(50, 150))
        await self._sleep(1)

    async def _page_text(self, page: Any, only_main_content: bool) -> str:
        if only_main_content:
            for selector in MAIN_CONTENT_SELECTORS:
                element = await page.query_selector(selector)
                if element is None:
                    continue
                text = (await element.inner_text() or "").strip()
                if len(text) > MIN_MAIN_CONTENT_CHARS:
                    return text
        return (await page.inner_text("body") or "").strip()

    async def fetch_page(self, url: str, only_main_content: bool = True) -> ScrapedContent:
        if not is_valid_url(url):
            return ScrapedContent(url=url, success=False, error=INVALID_URL_ERROR)

        target = sanitize_url(url)
        try:
            async with self._open_page(self._scraping.viewport_width, self._scraping.viewport_height) as page:
                await self._navigate(page, target)
                title = await page.title()
                text = await self._page_text(page, only_main_content)
                html = await page.content()
        except Exception as exc:
            logger.warning("Scrape failed for %s: %s", target, exc)
            return ScrapedContent(url=url, success=False, error=_error_message(exc))

        logger.info("Scraped %s (%d chars)", target, len(text))
        return ScrapedContent(
            url=url, title=title or "", content=text, markdown=text, html=html, success=True
        )

    async def capture_screenshot(
        self, url: str, width: int = 1920, height: int = 1080, full_page: bool = False
    ) -> ScreenshotResult:
        if not is_valid_url(url):
            return ScreenshotResult(url=url, success=False, error=INVALID_URL_ERROR)

        target = sanitize_url(url)
        try:
            async with self._open_page(width, height) as page:
                await self._navigate(page, target)
                image = await page.screenshot(full_page=full_page, type="png")
        except Exception as exc:
            logger.warning("Screenshot failed for %s: %s", target, exc)
            return ScreenshotResult(url=url, success=False, error=_error_message(exc))

        return ScreenshotResult(
            url=url,
            success=True,
            mime_type="image/png",
            data=base64.b64encode(image).decode("ascii"),
        )


# ── hosted Firecrawl API ────────────────────────────────────────
class FirecrawlPageFetcher(PageFetcher):
    def __init__(
        self,
        settings: Settings,
        proxies: RotationPool[str],
        *,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._settings = settings
        self._proxies = proxies
        self._api_key = api_key if api_key is not None else settings.firecrawl.api_key
        self._transport = transport
        self._sleep = sleep

    def with_api_key(self, api_key: str) -> "FirecrawlPageFetcher":
        return FirecrawlPageFetcher(
            self._settings, self._proxies,
            api_key=api_key, transport=self._transport, sleep=self._sleep,
        )

    def _client(self) -> httpx.AsyncClient:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return httpx.AsyncClient(
            base_url=self._settings.firecrawl.api_url.rstrip("/"),
            headers=headers,
            timeout=self._settings.firecrawl.timeout_seconds,
            proxy=self._proxies.next(),
            transport=self._transport,
        )

    async def _scrape(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        async def call() -> Dict[str, Any]:
            async with self._client() as client:
                r = await client.post("/v1/scrape", json=payload)
                r.raise_for_status()
                return r.json()

        body = await with_retry(call, f"scrape {payload['url']}", self._settings.retry, sleep=self._sleep)
        if not body.get("success", False):
            raise RuntimeError(body.get("error") or "Firecrawl scrape failed")
        return body.get("data") or {}

    async def fetch_page(self, url: str, only_main_content: bool = True) -> ScrapedContent:
        if not is_valid_url(url):
            return ScrapedContent(url=url, success=False, error=INVALID_URL_ERROR)

        target = sanitize_url(url)
        try:
            data = await self._scrape({
                "url": target,
                "formats": ["markdown", "html"],
                "onlyMainContent": only_main_content,
            })
        except Exception as exc:
            logger.warning("Firecrawl scrape failed for %s: %s", target, exc)
            return ScrapedContent(url=url, success=False, error=_error_message(exc))

        markdown = data.get("markdown") or ""
        metadata = data.get("metadata") or {}
        return ScrapedContent(
            url=url,
            title=metadata.get("title") or "",
            content=markdown,
            markdown=markdown,
            html=data.get("html") or "",
            success=True,
        )

    async def capture_screenshot(
        self, url: str, width: int = 1920, height: int = 1080, full_page: bool = False
    ) -> ScreenshotResult:
        if not is_valid_url(url):
            return ScreenshotResult(url=url, success=False, error=INVALID_URL_ERROR)

        target = sanitize_url(url)
        # the hosted API renders at its own viewport; width/height are not forwarded
        try:
            data = await self._scrape({
                "url": target,
                "formats": ["screenshot@fullPage" if full_page else "screenshot"],
            })
            image = await self._inline_image(data.get("screenshot") or "")
        except Exception as exc:
            logger.warning("Firecrawl screenshot failed for %s: %s", target, exc)
            return ScreenshotResult(url=url, success=False, error=_error_message(exc))

        return ScreenshotResult(url=url, success=True, mime_type="image/png", data=image)

    async def _inline_image(self, ref: str) -> str:
        if not ref:
            raise RuntimeError("No screenshot returned")
        if ref.startswith("data:"):
            return ref.split(",", 1)[1]
        async with httpx.AsyncClient(
            timeout=self._settings.firecrawl.timeout_seconds, transport=self._transport
        ) as client:
            r = await client.get(ref)
            r.raise_for_status()
            return base64.b64encode(r.content).decode("ascii")


def build_fetcher(
    settings: Settings, proxies: RotationPool[str], user_agents: RotationPool[str]
) -> PageFetcher:
    if settings.page_fetcher == "firecrawl":
        logger.info("Using Firecrawl page fetcher (%s)", settings.firecrawl.api_url)
        return FirecrawlPageFetcher(settings, proxies)
    logger.info("Using local browser page fetcher")
    return BrowserPageFetcher(settings, proxies, user_agents)

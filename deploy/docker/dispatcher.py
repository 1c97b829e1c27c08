# deploy/docker/dispatcher.py
"""
Tool registry and dispatcher.

Each tool is a ``Dispatcher`` coroutine method decorated with ``@mcp_tool``;
the decorator records the tool name and its pydantic argument model, the
method docstring becomes the tool description and the model's JSON schema
becomes the published parameter contract. Tools are registered in
declaration order, which is also the order ``tools/list`` returns.
"""

from __future__ import annotations
import asyncio, inspect, json, logging, time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Type

from pydantic import BaseModel, ValidationError

from config import Settings
from extraction import INVALID_PROMPT_ERROR, ExtractionClient
from fetchers import PageFetcher, build_fetcher
from mcp_bridge import mcp_tool
from rotation import build_proxy_pool, build_user_agent_pool
from schemas import (
    BatchScrapeArgs,
    ExtractDataArgs,
    ExtractWithSchemaArgs,
    ScrapePageArgs,
    ScreenshotArgs,
    ToolInvocationResult,
)
from utils import is_valid_url, random_delay_seconds, validate_prompt

logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_PROMPT = "Extract data matching the provided schema"


class ToolError(Exception):
    """Expected tool failure; reported to the caller as an error result."""


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    args_model: Type[BaseModel]
    handler: Callable[..., Awaitable[str]]
    annotations: Dict[str, Any] = field(default_factory=dict)

    @property
    def input_schema(self) -> Dict[str, Any]:
        return self.args_model.model_json_schema(by_alias=True)

    def parse(self, arguments: Any) -> BaseModel:
        try:
            return self.args_model.model_validate(arguments)
        except ValidationError as exc:
            raise ToolError(f"Invalid arguments for {self.name}: {_describe(exc)}") from None


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
        for err in exc.errors()
    )


class ToolRegistry:
    def __init__(self, definitions: Iterable[ToolDefinition]):
        self._tools: Dict[str, ToolDefinition] = {}
        for definition in definitions:
            if definition.name in self._tools:
                raise ValueError(f"Duplicate tool name: {definition.name}")
            self._tools[definition.name] = definition

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools


@dataclass(frozen=True)
class ToolContext:
    fetcher: PageFetcher
    extractor: ExtractionClient


class Dispatcher:
    def __init__(
        self,
        settings: Settings,
        fetcher: PageFetcher,
        extractor: ExtractionClient,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._settings = settings
        self._limits = settings.limits
        self._fetcher = fetcher
        self._extractor = extractor
        self._sleep = sleep
        self.registry = ToolRegistry(self._collect_tools())

    def _collect_tools(self) -> Iterator[ToolDefinition]:
        members: Dict[str, Any] = {}
        for klass in reversed(type(self).__mro__):
            members.update(vars(klass))
        for attr, fn in members.items():
            if getattr(fn, "__mcp_kind__", None) != "tool":
                continue
            name = fn.__mcp_name__ or attr
            if name == "screenshot" and not self._settings.screenshot_enabled:
                continue
            yield ToolDefinition(
                name=name,
                description=inspect.getdoc(fn) or "",
                args_model=fn.__mcp_args__,
                handler=getattr(self, attr),
                annotations=fn.__mcp_annotations__,
            )

    # ── entry point ─────────────────────────────────────────────
    async def invoke(
        self, name: str, arguments: Optional[Mapping[str, Any]], api_key: Optional[str] = None
    ) -> ToolInvocationResult:
        """Run one tool call; never raises.

        Unknown tools, bad arguments, exceeded limits and failed single-page
        scrapes all come back as ``isError=True`` results.
        """
        started = time.perf_counter()
        logger.info("Received request for tool: %s", name)
        try:
            tool = self.registry.get(name)
            if tool is None:
                return ToolInvocationResult.failure(f"Unknown tool: {name}")
            if arguments is None:
                raise ToolError("No arguments provided")
            args = tool.parse(arguments)
            text = await tool.handler(args, self._context(api_key))
            return ToolInvocationResult.ok(text)
        except ToolError as exc:
            logger.error("Request failed: %s (tool=%s)", exc, name)
            return ToolInvocationResult.failure(f"Error: {exc}".strip())
        except Exception as exc:
            logger.exception("Unexpected failure in tool %s", name)
            return ToolInvocationResult.failure(f"Error: {exc}".strip())
        finally:
            logger.info(
                "Request for tool %s completed in %dms",
                name, (time.perf_counter() - started) * 1000,
            )

    def _context(self, api_key: Optional[str]) -> ToolContext:
        firecrawl = self._settings.firecrawl
        if self._settings.page_fetcher != "firecrawl" or not firecrawl.cloud_service:
            return ToolContext(self._fetcher, self._extractor)
        if not api_key:
            raise ToolError("No API key provided")
        fetcher = self._fetcher.with_api_key(api_key)
        return ToolContext(fetcher, self._extractor.with_fetcher(fetcher))

    # ── guards ──────────────────────────────────────────────────
    @staticmethod
    def _check_limit(tool: str, urls: List[str], limit: int) -> None:
        if len(urls) > limit:
            raise ToolError(f"Too many URLs for {tool}: {len(urls)} given, maximum is {limit}")

    @staticmethod
    def _require_valid_urls(urls: List[str]) -> None:
        for url in urls:
            if not is_valid_url(url):
                raise ToolError(f"Invalid URL: {url}")

    async def _pause_between(self, index: int) -> None:
        if index:
            scraping = self._settings.scraping
            await self._sleep(random_delay_seconds(scraping.batch_delay_min_ms, scraping.batch_delay_max_ms))

    async def _extract_each(self, ctx: ToolContext, urls: List[str], prompt: str, schema=None) -> str:
        results = []
        for index, url in enumerate(urls):
            await self._pause_between(index)
            try:
                extracted = await ctx.extractor.extract(url, prompt, schema)
            except Exception as exc:
                logger.exception("Extraction raised for %s", url)
                results.append({"url": url, "data": None, "success": False, "error": str(exc)})
                continue
            results.append(extracted.model_dump())
        return json.dumps(results, indent=2, default=str)

    # ── tools ───────────────────────────────────────────────────
    @mcp_tool("scrape_page", ScrapePageArgs, title="Page Scraper", readOnlyHint=True, openWorldHint=True)
    async def scrape_page(self, args: ScrapePageArgs, ctx: ToolContext) -> str:
        """Extract content from a single webpage"""
        page = await ctx.fetcher.fetch_page(args.url, args.only_main_content)
        if not page.success:
            raise ToolError(page.error or "Failed to scrape page")
        return page.markdown or page.content or page.html or "No content found"

    @mcp_tool("batch_scrape", BatchScrapeArgs, title="Batch Scraper", readOnlyHint=True, openWorldHint=True)
    async def batch_scrape(self, args: BatchScrapeArgs, ctx: ToolContext) -> str:
        """Scrape multiple URLs in a single request (max 10, processed one at a time)"""
        self._check_limit("batch_scrape", args.urls, self._limits.max_batch_urls)
        self._require_valid_urls(args.urls)

        results = []
        for index, url in enumerate(args.urls):
            await self._pause_between(index)
            try:
                page = await ctx.fetcher.fetch_page(url, args.only_main_content)
            except Exception as exc:
                logger.exception("Fetcher raised for %s", url)
                results.append({"url": url, "success": False, "error": str(exc)})
                continue
            results.append(page.summary())
        return json.dumps(results, indent=2)

    @mcp_tool("extract_data", ExtractDataArgs, title="LLM Data Extractor", readOnlyHint=True, openWorldHint=True)
    async def extract_data(self, args: ExtractDataArgs, ctx: ToolContext) -> str:
        """Extract structured data from webpages using LLM (max 5 URLs)"""
        self._check_limit("extract_data", args.urls, self._limits.max_extract_urls)
        self._require_valid_urls(args.urls)
        if not validate_prompt(args.prompt):
            raise ToolError(INVALID_PROMPT_ERROR)
        if args.enable_web_search:
            logger.debug("enableWebSearch requested but not supported; ignoring")
        return await self._extract_each(ctx, args.urls, args.prompt)

    @mcp_tool("extract_with_schema", ExtractWithSchemaArgs, title="Schema Extractor", readOnlyHint=True, openWorldHint=True)
    async def extract_with_schema(self, args: ExtractWithSchemaArgs, ctx: ToolContext) -> str:
        """Extract structured data using a JSON schema"""
        self._check_limit("extract_with_schema", args.urls, self._limits.max_schema_extract_urls)
        self._require_valid_urls(args.urls)
        prompt = args.prompt or DEFAULT_SCHEMA_PROMPT
        if not validate_prompt(prompt):
            raise ToolError(INVALID_PROMPT_ERROR)
        return await self._extract_each(ctx, args.urls, prompt, args.schema_)

    @mcp_tool("screenshot", ScreenshotArgs, title="Page Screenshot", readOnlyHint=True, openWorldHint=True)
    async def screenshot(self, args: ScreenshotArgs, ctx: ToolContext) -> str:
        """Capture a PNG screenshot of a webpage, returned inline as base64"""
        shot = await ctx.fetcher.capture_screenshot(args.url, args.width, args.height, args.full_page)
        if not shot.success:
            raise ToolError(shot.error or "Failed to capture screenshot")
        return json.dumps(shot.model_dump(by_alias=True, exclude_none=True), indent=2)


def build_dispatcher(settings: Settings) -> Dispatcher:
    proxies = build_proxy_pool(settings.proxy.url)
    user_agents = build_user_agent_pool(settings.scraping.user_agent)
    fetcher = build_fetcher(settings, proxies, user_agents)
    extractor = ExtractionClient(fetcher, settings.llm, proxies)
    return Dispatcher(settings, fetcher, extractor)

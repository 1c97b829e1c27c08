# deploy/docker/config.py
"""
Environment-driven configuration.

Everything the server needs is read once at start-up into a frozen
``Settings`` tree and handed to each component explicitly; nothing else in
the code base looks at ``os.environ``.
"""

from __future__ import annotations
import logging, os
from typing import Literal, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

logger = logging.getLogger(__name__)

DEFAULT_FIRECRAWL_API_URL = "https://api.firecrawl.dev"
TRANSPORT_MODES = ("stdio", "sse", "http")


class ConfigurationError(RuntimeError):
    """Start-up configuration that makes the server unusable."""


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class LLMSettings(_Frozen):
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: Optional[str] = None
    temperature: float = 0.1
    max_tokens: int = 4000
    timeout_seconds: float = 60.0
    max_response_bytes: int = 10 * 1024 * 1024

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.base_url and self.model)


class ProxySettings(_Frozen):
    url: str = ""
    username: str = ""
    password: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)


class ScrapingSettings(_Frozen):
    user_agent: str = ""
    viewport_width: int = 1920
    viewport_height: int = 1080
    delay_min_ms: int = 1000
    delay_max_ms: int = 3000
    batch_delay_min_ms: int = 2000
    batch_delay_max_ms: int = 5000
    navigation_timeout_ms: int = 30000


class RetrySettings(_Frozen):
    max_attempts: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_factor: float = 2


class FirecrawlSettings(_Frozen):
    api_key: Optional[str] = None
    api_url: str = DEFAULT_FIRECRAWL_API_URL
    cloud_service: bool = False
    timeout_seconds: float = 60.0


class LimitSettings(_Frozen):
    max_batch_urls: int = 10
    max_extract_urls: int = 5
    max_schema_extract_urls: int = 10


class ServerSettings(_Frozen):
    transport: Literal["stdio", "sse", "http"] = "stdio"
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    prometheus_enabled: bool = False


class Settings(_Frozen):
    page_fetcher: Literal["browser", "firecrawl"] = "browser"
    screenshot_enabled: bool = True
    llm: LLMSettings = LLMSettings()
    proxy: ProxySettings = ProxySettings()
    scraping: ScrapingSettings = ScrapingSettings()
    retry: RetrySettings = RetrySettings()
    firecrawl: FirecrawlSettings = FirecrawlSettings()
    limits: LimitSettings = LimitSettings()
    server: ServerSettings = ServerSettings()

    def check_startup(self) -> None:
        """Raise ``ConfigurationError`` for settings the server cannot start with.

        Missing LLM settings are deliberately not fatal: the scrape-only tools
        keep working and extraction reports the problem per call.
        """
        if (
            self.page_fetcher == "firecrawl"
            and not self.firecrawl.cloud_service
            and not self.firecrawl.api_key
        ):
            raise ConfigurationError("FIRECRAWL_API_KEY environment variable is required")


# ── env helpers ─────────────────────────────────────────────────
def _str(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name, "").strip()
    return value or None


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = _str(env, name)
    if raw is None:
        return default
    try:
        value = int(float(raw))
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default
    # zero means "not set"
    return value or default


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = _str(env, name)
    if raw is None:
        return default
    try:
        return float(raw) or default
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = _str(env, name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "on"}


def _transport(env: Mapping[str, str]) -> str:
    mode = (_str(env, "MCP_TRANSPORT") or "").lower()
    if mode in TRANSPORT_MODES:
        return mode
    if mode:
        logger.warning("Unknown MCP_TRANSPORT=%r, falling back to stdio", mode)
    if _bool(env, "SSE_LOCAL"):
        return "sse"
    if _bool(env, "HTTP_STREAMABLE_SERVER"):
        return "http"
    return "stdio"


def load_config(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from ``environ`` (defaults to the process env plus ``.env``)."""
    if environ is None:
        load_dotenv()
        environ = os.environ
    env = environ

    fetcher = (_str(env, "PAGE_FETCHER") or "browser").lower()
    if fetcher not in ("browser", "firecrawl"):
        logger.warning("Unknown PAGE_FETCHER=%r, falling back to browser", fetcher)
        fetcher = "browser"

    return Settings(
        page_fetcher=fetcher,
        screenshot_enabled=_bool(env, "ENABLE_SCREENSHOT_TOOL", True),
        llm=LLMSettings(
            api_key=_str(env, "LLM_API_KEY"),
            base_url=_str(env, "LLM_BASE_URL"),
            model=_str(env, "LLM_MODEL"),
        ),
        proxy=ProxySettings(
            url=_str(env, "PROXY_URL") or "",
            username=_str(env, "PROXY_USERNAME") or "",
            password=_str(env, "PROXY_PASSWORD") or "",
        ),
        scraping=ScrapingSettings(
            user_agent=_str(env, "SCRAPING_USER_AGENT") or "",
            viewport_width=_int(env, "SCRAPING_VIEWPORT_WIDTH", 1920),
            viewport_height=_int(env, "SCRAPING_VIEWPORT_HEIGHT", 1080),
            delay_min_ms=_int(env, "SCRAPING_DELAY_MIN", 1000),
            delay_max_ms=_int(env, "SCRAPING_DELAY_MAX", 3000),
            batch_delay_min_ms=_int(env, "SCRAPING_BATCH_DELAY_MIN", 2000),
            batch_delay_max_ms=_int(env, "SCRAPING_BATCH_DELAY_MAX", 5000),
        ),
        retry=RetrySettings(
            max_attempts=_int(env, "FIRECRAWL_RETRY_MAX_ATTEMPTS", 3),
            initial_delay_ms=_int(env, "FIRECRAWL_RETRY_INITIAL_DELAY", 1000),
            max_delay_ms=_int(env, "FIRECRAWL_RETRY_MAX_DELAY", 10000),
            backoff_factor=_float(env, "FIRECRAWL_RETRY_BACKOFF_FACTOR", 2),
        ),
        firecrawl=FirecrawlSettings(
            api_key=_str(env, "FIRECRAWL_API_KEY"),
            api_url=_str(env, "FIRECRAWL_API_URL") or DEFAULT_FIRECRAWL_API_URL,
            cloud_service=_bool(env, "CLOUD_SERVICE"),
        ),
        limits=LimitSettings(
            max_schema_extract_urls=_int(env, "MAX_SCHEMA_EXTRACT_URLS", 10),
        ),
        server=ServerSettings(
            transport=_transport(env),
            host=_str(env, "HOST") or "0.0.0.0",
            port=_int(env, "PORT", 3000),
            log_level=(_str(env, "LOG_LEVEL") or "INFO").upper(),
            prometheus_enabled=_bool(env, "PROMETHEUS_ENABLED"),
        ),
    )

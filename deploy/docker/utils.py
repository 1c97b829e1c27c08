# deploy/docker/utils.py

from __future__ import annotations
import asyncio, logging, random, sys
from typing import Awaitable, Callable, TypeVar
from urllib.parse import urlparse

T = TypeVar("T")

logger = logging.getLogger(__name__)

ALLOWED_SCHEMES = {"http", "https"}
MAX_PROMPT_LENGTH = 10000
_UNSAFE_URL_CHARS = str.maketrans("", "", "<>'\"")


# ── validation ──────────────────────────────────────────────────
def is_valid_url(url: str) -> bool:
    """True only for absolute http/https URLs with a host."""
    if not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
        return parsed.scheme.lower() in ALLOWED_SCHEMES and bool(parsed.netloc)
    except ValueError:
        return False


def sanitize_url(url: str) -> str:
    # callers validate first
    return url.strip().translate(_UNSAFE_URL_CHARS)


def validate_prompt(prompt: str) -> bool:
    return isinstance(prompt, str) and 1 <= len(prompt) < MAX_PROMPT_LENGTH


def random_delay_seconds(min_ms: int, max_ms: int) -> float:
    low, high = sorted((min_ms, max_ms))
    return random.uniform(low, high) / 1000


# ── logging ─────────────────────────────────────────────────────
def setup_logging(settings) -> None:
    # stdout belongs to the stdio transport, so always log to stderr
    logging.basicConfig(
        level=settings.server.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


# ── retry with exponential backoff ──────────────────────────────
def is_rate_limit_error(exc: BaseException) -> bool:
    message = str(exc).lower()
    return "rate limit" in message or "429" in message


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    context: str,
    retry,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` and retry it while it fails with a rate-limit error.

    The delay before attempt ``n + 1`` is
    ``min(initial_delay * backoff_factor ** (n - 1), max_delay)``; any other
    error, or a rate-limit error on the last attempt, propagates unchanged.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_rate_limit_error(exc) or attempt >= retry.max_attempts:
                raise
            delay_ms = min(
                retry.initial_delay_ms * retry.backoff_factor ** (attempt - 1),
                retry.max_delay_ms,
            )
            logger.warning(
                "Rate limit hit for %s. Attempt %d/%d. Retrying in %dms",
                context, attempt, retry.max_attempts, delay_ms,
            )
            await sleep(delay_ms / 1000)
            attempt += 1

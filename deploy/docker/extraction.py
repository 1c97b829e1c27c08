# deploy/docker/extraction.py

from __future__ import annotations
import json, logging, re
from typing import Any, Dict, Optional

import httpx

from config import LLMSettings
from fetchers import INVALID_URL_ERROR, PageFetcher
from rotation import RotationPool
from schemas import ExtractedData, ScrapedContent
from utils import MAX_PROMPT_LENGTH, is_valid_url, validate_prompt

logger = logging.getLogger(__name__)

LLM_NOT_CONFIGURED = "LLM configuration not available"
INVALID_PROMPT_ERROR = f"Prompt must be between 1 and {MAX_PROMPT_LENGTH - 1} characters"

# safe vocabulary; provider bodies are never surfaced
LLM_AUTH_ERROR = "LLM authentication failed"
LLM_RATE_LIMIT_ERROR = "LLM rate limit exceeded"
LLM_TIMEOUT_ERROR = "LLM request timed out"
LLM_RESPONSE_TOO_LARGE = "LLM response exceeded size limit"
LLM_BAD_RESPONSE = "LLM returned an unexpected response"
LLM_REQUEST_ERROR = "LLM request failed"

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class LLMError(Exception):
    """LLM call failure carrying one of the safe messages above."""


def build_extraction_prompt(page: ScrapedContent, instruction: str, schema: Optional[Dict[str, Any]] = None) -> str:
    parts = [
        "You are a data extraction assistant. Extract information from the web page below.",
        "",
        f"URL: {page.url}",
        f"Title: {page.title}",
        "",
        "Content:",
        page.content,
        "",
    ]
    if schema is not None:
        parts += ["Return data that matches this JSON schema:", json.dumps(schema, indent=2), ""]
    parts += [
        f"Instructions: {instruction}",
        "",
        "Respond with valid JSON only, without any surrounding explanation.",
    ]
    return "\n".join(parts)


def parse_llm_output(text: str) -> Any:
    """Decode the model's answer, keeping unparseable text as ``raw_response``."""
    candidate = text.strip()
    fenced = _CODE_FENCE.match(candidate)
    if fenced:
        candidate = fenced.group(1)
    try:
        return json.loads(candidate)
    except ValueError:
        return {"raw_response": text}


class ExtractionClient:
    def __init__(
        self,
        fetcher: PageFetcher,
        llm: LLMSettings,
        proxies: RotationPool[str],
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._fetcher = fetcher
        self._llm = llm
        self._proxies = proxies
        self._transport = transport

    def with_fetcher(self, fetcher: PageFetcher) -> "ExtractionClient":
        return ExtractionClient(fetcher, self._llm, self._proxies, transport=self._transport)

    async def extract(self, url: str, prompt: str, schema: Optional[Dict[str, Any]] = None) -> ExtractedData:
        if not is_valid_url(url):
            return ExtractedData(url=url, success=False, error=INVALID_URL_ERROR)
        if not validate_prompt(prompt):
            return ExtractedData(url=url, success=False, error=INVALID_PROMPT_ERROR)

        page = await self._fetcher.fetch_page(url, only_main_content=True)
        if not page.success:
            return ExtractedData(url=url, success=False, error=page.error)

        if not self._llm.configured:
            return ExtractedData(url=url, success=False, error=LLM_NOT_CONFIGURED)

        try:
            answer = await self.complete(build_extraction_prompt(page, prompt, schema))
        except LLMError as exc:
            logger.warning("Extraction failed for %s: %s", url, exc)
            return ExtractedData(url=url, success=False, error=str(exc))

        return ExtractedData(url=url, data=parse_llm_output(answer), success=True)

    async def complete(self, prompt: str) -> str:
        """Send one chat-completion request and return the assistant text."""
        payload = {
            "model": self._llm.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self._llm.temperature,
            "max_tokens": self._llm.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self._llm.api_key}"}
        endpoint = f"{self._llm.base_url.rstrip('/')}/chat/completions"

        try:
            async with httpx.AsyncClient(
                timeout=self._llm.timeout_seconds,
                proxy=self._proxies.next(),
                transport=self._transport,
            ) as client:
                async with client.stream("POST", endpoint, json=payload, headers=headers) as r:
                    if r.status_code in (401, 403):
                        raise LLMError(LLM_AUTH_ERROR)
                    if r.status_code == 429:
                        raise LLMError(LLM_RATE_LIMIT_ERROR)
                    if r.is_error:
                        logger.warning("LLM endpoint answered HTTP %d", r.status_code)
                        raise LLMError(LLM_REQUEST_ERROR)
                    body = bytearray()
                    async for chunk in r.aiter_bytes():
                        body.extend(chunk)
                        if len(body) > self._llm.max_response_bytes:
                            raise LLMError(LLM_RESPONSE_TOO_LARGE)
        except LLMError:
            raise
        except httpx.TimeoutException:
            raise LLMError(LLM_TIMEOUT_ERROR) from None
        except httpx.HTTPError as exc:
            logger.warning("LLM transport error: %s", exc.__class__.__name__)
            raise LLMError(LLM_REQUEST_ERROR) from None
        except Exception as exc:
            # client construction (e.g. an unsupported proxy scheme) fails outside httpx.HTTPError
            logger.warning("LLM client error: %s", exc.__class__.__name__)
            raise LLMError(LLM_REQUEST_ERROR) from None

        try:
            return json.loads(bytes(body))["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError):
            raise LLMError(LLM_BAD_RESPONSE) from None

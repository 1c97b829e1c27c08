from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class _ToolArgs(BaseModel):
    # URL ceilings and prompt bounds are published via json_schema_extra;
    # the dispatcher enforces them with its own error messages
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class ScrapePageArgs(_ToolArgs):
    """Arguments for the scrape_page tool."""
    url: str = Field(
        ...,
        description="Webpage URL to scrape",
        examples=["https://example.com"]
    )
    only_main_content: bool = Field(
        True,
        alias="onlyMainContent",
        description="Extract only main content"
    )


class BatchScrapeArgs(_ToolArgs):
    """Arguments for the batch_scrape tool."""
    urls: List[str] = Field(
        ...,
        min_length=1,
        json_schema_extra={"maxItems": 10},
        description="Array of URLs to scrape (at most 10)",
        examples=[["https://example.com", "https://example.org"]]
    )
    only_main_content: bool = Field(
        True,
        alias="onlyMainContent",
        description="Extract only main content"
    )


class ExtractDataArgs(_ToolArgs):
    """Arguments for the extract_data tool."""
    urls: List[str] = Field(
        ...,
        min_length=1,
        json_schema_extra={"maxItems": 5},
        description="URLs to extract data from (at most 5)"
    )
    prompt: str = Field(
        ...,
        json_schema_extra={"minLength": 1, "maxLength": 9999},
        description="Instructions for what data to extract (1-9999 characters)",
        examples=["Extract the product name and price"]
    )
    enable_web_search: bool = Field(
        False,
        alias="enableWebSearch",
        description="Enable web search for additional context"
    )


class ExtractWithSchemaArgs(_ToolArgs):
    """Arguments for the extract_with_schema tool."""
    urls: List[str] = Field(
        ...,
        min_length=1,
        description="URLs to extract data from"
    )
    schema_: Dict[str, Any] = Field(
        ...,
        alias="schema",
        description="JSON schema defining the data structure to extract",
        examples=[{"type": "object", "properties": {"title": {"type": "string"}}}]
    )
    prompt: Optional[str] = Field(
        None,
        description="Optional instructions for extraction"
    )
    enable_web_search: bool = Field(
        False,
        alias="enableWebSearch",
        description="Enable web search for additional context"
    )


class ScreenshotArgs(_ToolArgs):
    """Arguments for the screenshot tool."""
    url: str = Field(
        ...,
        description="Webpage URL to capture"
    )
    width: int = Field(1920, ge=1, le=10000, description="Viewport width in pixels")
    height: int = Field(1080, ge=1, le=10000, description="Viewport height in pixels")
    full_page: bool = Field(
        False,
        alias="fullPage",
        description="Capture the full scrollable page instead of the viewport"
    )


# ── results ─────────────────────────────────────────────────────
class ScrapedContent(BaseModel):
    url: str
    title: str = ""
    content: str = ""
    markdown: str = ""
    html: str = ""
    success: bool
    error: Optional[str] = None

    def summary(self) -> Dict[str, Any]:
        """Per-URL record used in batch results (no raw HTML)."""
        if not self.success:
            return {"url": self.url, "success": False, "error": self.error}
        return {
            "url": self.url,
            "success": True,
            "title": self.title,
            "content": self.markdown or self.content,
        }


class ScreenshotResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    success: bool
    mime_type: Optional[str] = Field(None, alias="mimeType")
    data: Optional[str] = None
    error: Optional[str] = None


class ExtractedData(BaseModel):
    url: str
    data: Any = None
    success: bool
    error: Optional[str] = None


class TextBlock(BaseModel):
    type: str = "text"
    text: str


class ToolInvocationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    content: List[TextBlock]
    is_error: bool = Field(False, alias="isError")

    @classmethod
    def ok(cls, text: str) -> "ToolInvocationResult":
        return cls(content=[TextBlock(text=text)], is_error=False)

    @classmethod
    def failure(cls, text: str) -> "ToolInvocationResult":
        return cls(content=[TextBlock(text=text)], is_error=True)

    @property
    def text(self) -> str:
        return "\n".join(block.text for block in self.content)

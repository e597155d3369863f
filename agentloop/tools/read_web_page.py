"""read_web_page tool: fetch a URL and return its readable text."""

import re
from typing import Any
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup

from agentloop import __version__
from agentloop.config import ReadWebPageToolConfig, get_config
from agentloop.logging import get_logger
from agentloop.tools.registry import Tool, ToolResult
from agentloop.tools.tmpfile import write_tmp_file

log = get_logger(__name__)

INLINE_MAX_CHARS = 1024 * 8


class ReadWebPageTool(Tool):
    """Fetch web page content."""

    name = "read_web_page"
    description = "Read and extract page content from a given URL, returning it as plain text"
    parameters = {
        "type": "object",
        "properties": {
            "url": {
                "type": "string",
                "description": "URL to fetch",
            },
        },
        "required": ["url"],
    }

    def __init__(
        self,
        settings: ReadWebPageToolConfig | None = None,
        client: httpx.AsyncClient | None = None,
        metadata_dir: str | None = None,
    ):
        cfg = get_config()
        self.settings = settings or cfg.tools.read_web_page
        self.metadata_dir = metadata_dir or cfg.agent.metadata_dir
        self.client = client or httpx.AsyncClient(
            timeout=self.settings.timeout,
            follow_redirects=True,
            headers={"User-Agent": f"agentloop/{__version__} (read_web_page)"},
        )

    async def execute(self, url: str, **kwargs: Any) -> ToolResult:
        """Fetch ``url``; large pages are saved to a scratch file instead of inlined."""
        try:
            log.info("Fetching URL", url=url)
            response = await self.client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            log.error("HTTP fetch failed", url=url, error=str(e))
            return ToolResult(success=False, error=f"HTTP error: {e}")

        content = extract_readable_text(response.text, base_url=url).strip()
        if len(content) > self.settings.max_chars:
            content = content[: self.settings.max_chars] + "\n... [truncated]"
        if len(content) <= INLINE_MAX_CHARS:
            return ToolResult(success=True, content=content)

        path = write_tmp_file(content, "read_web_page", "md", self.metadata_dir)
        line_count = content.count("\n") + 1
        return ToolResult(
            success=True,
            content=(
                f"Content is large ({len(content)} characters, {line_count} lines) and saved to {path}\n"
                "- Use rg / sed to read specific parts"
            ),
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


def extract_readable_text(html: str, base_url: str | None = None) -> str:
    """Extract human-readable text from raw HTML."""
    soup = BeautifulSoup(html, "html.parser")

    for tag in soup(["script", "style", "noscript", "template", "svg", "canvas", "nav", "footer"]):
        tag.decompose()

    # Keep link targets so later turns can follow them.
    for anchor in soup.find_all("a"):
        href = (anchor.get("href") or "").strip()
        if not href:
            continue
        label = anchor.get_text(" ", strip=True)
        absolute = urljoin(base_url, href) if base_url else href
        anchor.replace_with(f"[{label}]({absolute})" if label else absolute)

    title = soup.title.string.strip() if soup.title and soup.title.string else ""
    body = soup.find("article") or soup.find("main") or soup.body or soup

    lines = []
    for line in body.get_text(separator="\n").splitlines():
        cleaned = re.sub(r"\s+", " ", line).strip()
        if cleaned:
            lines.append(cleaned)

    text = "\n".join(lines)
    if title and not text.startswith(title):
        return f"# {title}\n\n{text}" if text else title
    return text

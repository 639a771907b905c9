"""
Article Reader

Fetches a web page and extracts its readable text with readability-lxml,
falling back to a BeautifulSoup pass over the main content element.
"""

import asyncio
import logging
from typing import Protocol

import aiohttp
from bs4 import BeautifulSoup
from readability import Document

from .errors import ProviderError
from .models import ToolConfiguration

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
)

NOISE_TAGS = ["script", "style", "nav", "header", "footer", "aside", "noscript", "iframe", "form"]
CONTENT_SELECTORS = ["article", "main", "[role=main]", ".post-content", ".article-content", ".entry-content", "#content"]
MIN_PARAGRAPH_LENGTH = 20


class ArticleFetcher(Protocol):
    async def read(self, url: str) -> str: ...


def extract_readable_text(html_content: str) -> str:
    """
    Extract the main text of an HTML page.

    Returns:
        Paragraph text joined by blank lines, or "" when nothing readable
        was found
    """
    doc = Document(html_content)
    content_soup = BeautifulSoup(doc.summary(html_partial=True), "html.parser")

    paragraphs = []
    for element in content_soup.find_all(["p", "li", "h2", "h3"]):
        text = element.get_text(" ", strip=True)
        if text and len(text) > MIN_PARAGRAPH_LENGTH:
            paragraphs.append(text)

    if paragraphs:
        title = (doc.title() or "").strip()
        body = "\n\n".join(paragraphs)
        return f"{title}\n\n{body}" if title and title != "[no-title]" else body

    # Readability found nothing useful; take the main content element instead
    soup = BeautifulSoup(html_content, "html.parser")
    for tag in soup(NOISE_TAGS):
        tag.decompose()

    container = None
    for selector in CONTENT_SELECTORS:
        container = soup.select_one(selector)
        if container is not None:
            break
    container = container or soup.body or soup

    lines = [line.strip() for line in container.get_text("\n").splitlines()]
    return "\n".join(line for line in lines if line)


class ArticleReader:
    """HTTP article fetcher with a per-article character cap."""

    def __init__(self, timeout: int = 30, max_article_length: int = 20000):
        self.timeout = timeout
        self.max_article_length = max_article_length

    @classmethod
    def from_config(cls, config: ToolConfiguration) -> "ArticleReader":
        return cls(timeout=config.timeout, max_article_length=config.max_article_length)

    async def read(self, url: str) -> str:
        """
        Fetch `url` and return its readable text, truncated to the cap.

        Raises:
            ProviderError: On HTTP failure, non-HTML content, or empty text
        """
        headers = {
            "User-Agent": USER_AGENT,
            "Accept": "text/html,application/xhtml+xml",
        }

        try:
            async with aiohttp.ClientSession(headers=headers) as session:
                async with session.get(url, timeout=aiohttp.ClientTimeout(total=self.timeout)) as response:
                    response.raise_for_status()
                    content_type = response.headers.get("Content-Type", "")
                    if content_type and "html" not in content_type.lower():
                        raise ProviderError(f"Unsupported content type for {url}: {content_type}")
                    html_content = await response.text(errors="replace")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderError(f"Failed to fetch {url}: {e}") from e

        try:
            text = await asyncio.to_thread(extract_readable_text, html_content)
        except Exception as e:
            raise ProviderError(f"Failed to extract text from {url}: {e}") from e
        if not text.strip():
            raise ProviderError(f"No readable content at {url}")

        if len(text) > self.max_article_length:
            logger.debug(f"Truncating article {url} from {len(text)} to {self.max_article_length} chars")
            text = text[:self.max_article_length]

        logger.info(f"Read article {url} ({len(text)} chars)")
        return text

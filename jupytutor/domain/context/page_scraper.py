from typing import Optional, Protocol
import asyncio
import re
import time
import aiohttp
import structlog
from bs4 import BeautifulSoup
from pydantic import BaseModel

from jupytutor.domain.errors import PageFetchError
from jupytutor.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)

# Regions that never carry page content
SKIPPED_SELECTORS = [
    "script", "style", "nav", "header", "footer", "aside",
    ".navbar", ".navigation", ".sidebar", ".toc", ".table-of-contents",
    ".breadcrumb", ".pagination", ".social-share", ".comments",
    ".advertisement", ".ads", ".ad", ".sponsor", ".menu",
    ".navigation-menu", ".site-header", ".site-footer",
]

# Main-content containers, tried in order
BASE_SELECTORS = ["main", ".main-content", "#main", ".content", "body"]


class FetchedPage(BaseModel):
    """Status and body of a fetched page"""
    url: str
    status: int
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class PageFetcher(Protocol):
    """HTTP capability used by scraping and link expansion"""

    async def fetch(self, url: str) -> FetchedPage:
        """Fetch a page; raise PageFetchError when no response was received"""
        ...

    async def close(self) -> None:
        """Release network resources"""
        ...


class AiohttpPageFetcher:
    """PageFetcher backed by a lazily created aiohttp session"""
    
    def __init__(self, timeout: float = 15.0, user_agent: str = "jupytutor/0.1"):
        self.timeout = timeout
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None
        self._closed = False
        
    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent}
            )
        return self._session
        
    async def fetch(self, url: str) -> FetchedPage:
        if self._closed:
            raise PageFetchError(url, "fetcher is closed")
            
        session = await self._get_session()
        start = time.perf_counter()
        
        try:
            async with session.get(url) as response:
                text = await response.text(errors="replace")
                return FetchedPage(url=url, status=response.status, text=text)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PageFetchError(url, str(e) or type(e).__name__) from e
        finally:
            metrics.record_latency("page_fetch", (time.perf_counter() - start) * 1000)
            
    async def close(self):
        """Release the session; the fetcher cannot be used afterwards"""
        
        self._closed = True
        if self._session is not None and not self._session.closed:
            await self._session.close()


def html_to_text(html: str) -> str:
    """Extract readable text from the main content region of an HTML page"""
    
    soup = BeautifulSoup(html, "html.parser")
    for selector in SKIPPED_SELECTORS:
        for tag in soup.select(selector):
            # Nested matches are already gone with their ancestor
            if not tag.decomposed:
                tag.decompose()
            
    base = None
    for selector in BASE_SELECTORS:
        base = soup.select_one(selector)
        if base is not None:
            break
            
    text = (base or soup).get_text(separator="\n")
    return normalize_text(text)


def normalize_text(text: str) -> str:
    text = "\n".join(line.strip() for line in text.splitlines())
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def format_page_text(url: str, text: str) -> str:
    """Prefix page text with the source marker line"""
    return f"[LINK] {url} [/LINK]\n{text}"


class PageScraper:
    """Fetches pages and turns them into attributed plain text"""
    
    def __init__(self, fetcher: PageFetcher):
        self.fetcher = fetcher
        
    async def scrape_page_text(self, url: str) -> Optional[str]:
        """
        Scrape one page.
        
        Returns:
            Marker-prefixed page text, or None when the page is missing,
            blocked or unreachable
        """
        
        try:
            page = await self.fetcher.fetch(url)
        except PageFetchError as e:
            logger.warning("Error scraping page text", url=url, reason=e.reason)
            metrics.increment_counter("page_fetch.failed")
            return None
            
        if not page.ok:
            if page.status != 404:
                logger.info("Unscrapable page", url=url, status=page.status)
            metrics.increment_counter("page_fetch.failed")
            return None
            
        metrics.increment_counter("page_fetch.succeeded")
        return format_page_text(url, html_to_text(page.text))

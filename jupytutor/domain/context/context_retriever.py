from typing import Iterable, List, Optional
from enum import Enum
import asyncio
import structlog

from jupytutor.infrastructure.observability.logging import tutor_logger
from .link_expansion import LinkExpander
from .page_scraper import AiohttpPageFetcher, PageFetcher, PageScraper

logger = structlog.get_logger(__name__)

# Readers stop waiting after this long; retrieval keeps running in the background
SOFT_TIMEOUT_SECONDS = 5.0

DEFAULT_BLACKLIST = ["data8.org", "berkeley.edu", "gradescope.com"]


class RetrievalStatus(str, Enum):
    """Context retrieval lifecycle"""
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    EMPTY = "empty"


class NotebookContextRetriever:
    """
    Retrieves the text of the resources a notebook links to.

    Work starts in the background as soon as the retriever is constructed:
    optional JupyterBook link expansion, then whitelist / blacklist filtering,
    then a concurrent fetch of every remaining page. Readers either wait for
    completion (``enforcing=True``) or only until the soft deadline, counted
    from construction.
    """
    
    def __init__(
        self,
        source_links: Optional[Iterable[str]] = None,
        whitelist_domains: Optional[Iterable[str]] = None,
        blacklist_domains: Optional[Iterable[str]] = None,
        book_domains: Optional[Iterable[str]] = None,
        attempt_expansion: bool = False,
        debug_mode: bool = False,
        fetcher: Optional[PageFetcher] = None,
        soft_timeout: float = SOFT_TIMEOUT_SECONDS,
        max_concurrency: Optional[int] = None,
        owns_fetcher: bool = False
    ):
        self._context: Optional[str] = None
        self._source_links: List[str] = list(source_links or [])
        self._whitelist = list(whitelist_domains or [])
        self._blacklist = list(DEFAULT_BLACKLIST if blacklist_domains is None else blacklist_domains)
        self._book_domains = list(book_domains or [])
        self._attempt_expansion = attempt_expansion
        self.debug_mode = debug_mode
        self.soft_timeout = soft_timeout
        
        self.status = RetrievalStatus.UNINITIALIZED
        self.soft_ready = asyncio.Event()
        self._semaphore = asyncio.Semaphore(max_concurrency) if max_concurrency else None
        self._load_task: Optional[asyncio.Task] = None
        self._soft_timer: Optional[asyncio.TimerHandle] = None
        
        if debug_mode:
            self.soft_ready.set()
            return
            
        # Raises RuntimeError outside a running event loop
        loop = asyncio.get_running_loop()
        
        # An owned fetcher is closed once retrieval finishes, not when the caller returns
        self._owns_fetcher = fetcher is None or owns_fetcher
        self.fetcher = fetcher or AiohttpPageFetcher()
        self.scraper = PageScraper(self.fetcher)
        self.expander = LinkExpander(self.fetcher)
        
        self._transition(RetrievalStatus.LOADING)
        self._load_task = loop.create_task(self._load())
        self._load_task.add_done_callback(lambda _task: self._mark_soft_ready())
        self._soft_timer = loop.call_later(soft_timeout, self._mark_soft_ready)
        
    @property
    def is_loaded(self) -> bool:
        return self.status in (RetrievalStatus.READY, RetrievalStatus.EMPTY)
        
    async def get_context(self, enforcing: bool = False) -> Optional[str]:
        """
        Aggregated page text, or None when nothing was retrieved (yet).
        
        Args:
            enforcing: Wait for retrieval to finish instead of the soft deadline
        """
        
        await self._wait(enforcing)
        
        if self._context is None:
            logger.warning("Context does not lead to any detected resource text")
            return None
        return self._context
        
    async def get_source_links(self, enforcing: bool = False) -> List[str]:
        """Current link list: expanded and filtered once retrieval has progressed"""
        
        await self._wait(enforcing)
        return list(self._source_links)
        
    async def scrape_source_links(self) -> None:
        """Filter the link list and fetch every remaining page concurrently"""
        
        if not self._source_links:
            self._context = None
            return
            
        links = self._source_links
        if self._whitelist:
            links = [url for url in links if _matches_any(url, self._whitelist)]
        if self._blacklist:
            links = [url for url in links if not _matches_any(url, self._blacklist)]
        self._source_links = links
        
        results = await asyncio.gather(
            *(self._scrape(url) for url in links),
            return_exceptions=True
        )
        
        texts = []
        for url, result in zip(links, results):
            if isinstance(result, BaseException):
                logger.warning("Error scraping page text", url=url, error=str(result))
                continue
            if result is not None:
                texts.append(result)
                
        self._context = "\n\n".join(texts) or None
        
    async def _scrape(self, url: str) -> Optional[str]:
        if self._semaphore is None:
            return await self.scraper.scrape_page_text(url)
            
        async with self._semaphore:
            return await self.scraper.scrape_page_text(url)
            
    async def _expand_links(self) -> None:
        try:
            self._source_links = await self.expander.expand(self._source_links, self._book_domains)
        except Exception as e:
            logger.warning("Failed to expand JupyterBook links", error=str(e))
            
    async def _load(self) -> None:
        try:
            if self._attempt_expansion:
                await self._expand_links()
            await self.scrape_source_links()
        except Exception:
            logger.exception("Context retrieval failed")
            self._context = None
        finally:
            if self._owns_fetcher:
                await self.fetcher.close()
            self._transition(
                RetrievalStatus.READY if self._context is not None else RetrievalStatus.EMPTY
            )
            
    async def _wait(self, enforcing: bool) -> None:
        if self._load_task is None:
            return
            
        if enforcing:
            # A cancelled reader must not cancel the shared retrieval
            await asyncio.shield(self._load_task)
        else:
            await self.soft_ready.wait()
            
    def _mark_soft_ready(self) -> None:
        if not self.soft_ready.is_set():
            self.soft_ready.set()
        if self._soft_timer is not None:
            self._soft_timer.cancel()
            
    def _transition(self, status: RetrievalStatus) -> None:
        previous = self.status
        self.status = status
        tutor_logger.log_retrieval_transition(
            from_status=previous.value,
            to_status=status.value,
            link_count=len(self._source_links),
            details={"has_context": self._context is not None}
        )


def _matches_any(url: str, domains: Iterable[str]) -> bool:
    return any(domain in url for domain in domains)

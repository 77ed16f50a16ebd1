from typing import Iterable, List, Optional
import structlog

from jupytutor.domain.models.config import PluginConfig
from jupytutor.domain.notebook.parser import ParsedCell
from .context_retriever import SOFT_TIMEOUT_SECONDS, NotebookContextRetriever
from .page_scraper import PageFetcher

logger = structlog.get_logger(__name__)


def collect_source_links(cells: Iterable[ParsedCell]) -> List[str]:
    """Unique links across all cells, in first-seen order"""
    
    links: List[str] = []
    seen = set()
    for cell in cells:
        for link in cell.links:
            if link not in seen:
                seen.add(link)
                links.append(link)
    return links


def build_context_retriever(
    cells: Iterable[ParsedCell],
    config: PluginConfig,
    fetcher: Optional[PageFetcher] = None,
    soft_timeout: float = SOFT_TIMEOUT_SECONDS,
    max_concurrency: Optional[int] = None
) -> NotebookContextRetriever:
    """Start retrieving the resources linked from a notebook, per its config"""
    
    source_links = collect_source_links(cells)
    remote = config.remote_context_gathering
    logger.debug("Gathered unique links from notebook", links=source_links)
    
    return NotebookContextRetriever(
        source_links=source_links,
        whitelist_domains=remote.whitelist,
        blacklist_domains=remote.blacklist,
        book_domains=remote.jupyterbook.urls,
        attempt_expansion=remote.jupyterbook.link_expansion,
        fetcher=fetcher,
        soft_timeout=soft_timeout,
        max_concurrency=max_concurrency,
    )

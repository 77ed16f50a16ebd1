"""
JupyterBook link expansion.

A link to a chapter page (``/chapters/N``) or a subsection page
(``/chapters/N/M``) of a configured book domain is expanded to every page of
the same chapter that the page links to. Expansions are spliced into the link
list directly after the link they came from.
"""

from typing import Iterable, List, Optional, Sequence, Set, Tuple
from urllib.parse import urljoin, urlsplit, urlunsplit
import asyncio
import re
import structlog

from jupytutor.infrastructure.observability.logging import tutor_logger
from .page_scraper import PageFetcher

logger = structlog.get_logger(__name__)

ANCHOR_HREF_RE = re.compile(r"""<a[^>]+href\s*=\s*["']([^"']+)["'][^>]*>""", re.IGNORECASE)
CHAPTER_PATH_RE = re.compile(r"/chapters/(\d+)(?:/(\d+))?")

# Notebook downloads, launchers and build artefacts
EXCLUDED_HREF_MARKERS = (".ipynb", "mybinder", "datahub", "_sources", "_static", "_images")
EXCLUDED_PATH_MARKERS = ("/_sources/", "/_static/", "/_images/")
EXCLUDED_PATH_SUFFIXES = (".ipynb", ".pdf", ".zip", ".tar.gz")


def normalize_url(url: str) -> str:
    """
    Dedup key for a URL: fragment dropped, one trailing slash removed from
    non-root paths. Unparsable input is returned unchanged.
    """

    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    if not parts.scheme or not parts.netloc:
        return url

    path = parts.path or "/"
    if len(path) > 1 and path.endswith("/"):
        path = path[:-1]

    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def chapter_position(url: str) -> Tuple[Optional[int], int]:
    """(chapter, subsection) of a chapter URL; subsection 0 is the chapter page itself"""

    match = CHAPTER_PATH_RE.search(urlsplit(url).path)
    if not match:
        return None, 0
    return int(match.group(1)), int(match.group(2) or 0)


def chapter_sort_key(url: str) -> Tuple[int, int, str]:
    chapter, subsection = chapter_position(url)
    return (chapter if chapter is not None else 0, subsection, urlsplit(url).path)


def sort_chapter_links(links: Iterable[str]) -> List[str]:
    """Chapter ascending, then subsection (chapter page first), then path"""
    return sorted(links, key=chapter_sort_key)


def is_chapter_section_link(path: str, target_chapter: Optional[int]) -> bool:
    """Whether a path is a content page of the target chapter"""

    if any(marker in path for marker in EXCLUDED_PATH_MARKERS):
        return False
    if path.endswith(EXCLUDED_PATH_SUFFIXES):
        return False
    if "/chapters/" not in path or target_chapter is None:
        return False

    match = CHAPTER_PATH_RE.search(path)
    return bool(match) and int(match.group(1)) == target_chapter


def extract_chapter_links(html: str, page_url: str, book_domain: str) -> List[str]:
    """
    Same-chapter links found on a book page, normalized, deduplicated and sorted.

    Anchors are found with a regular expression; a full DOM parse is not needed
    for href extraction.
    """

    target_chapter, _ = chapter_position(page_url)
    if target_chapter is None:
        return []

    links: List[str] = []
    seen: Set[str] = set()

    for match in ANCHOR_HREF_RE.finditer(html):
        href = match.group(1)
        if not href or any(marker in href for marker in EXCLUDED_HREF_MARKERS):
            continue

        full_url = urljoin(page_url, href)
        if book_domain not in full_url:
            continue

        normalized = normalize_url(full_url)
        if normalized in seen:
            continue
        if is_chapter_section_link(urlsplit(normalized).path, target_chapter):
            seen.add(normalized)
            links.append(normalized)

    return sort_chapter_links(links)


def find_book_domain(url: str, book_domains: Iterable[str]) -> Optional[str]:
    for domain in book_domains:
        if domain and domain in url:
            return domain
    return None


class LinkExpander:
    """Expands book-domain links to their whole chapter"""
    
    def __init__(self, fetcher: PageFetcher):
        self.fetcher = fetcher
        
    async def find_chapter_links(self, page_url: str, book_domain: str) -> List[str]:
        """Fetch a book page and return the same-chapter links it contains"""
        
        page = await self.fetcher.fetch(page_url)
        if not page.ok:
            logger.info("Book page not expandable", url=page_url, status=page.status)
            return []
            
        return extract_chapter_links(page.text, page_url, book_domain)
        
    async def _find_chapter_links_safely(self, page_url: str, book_domain: str) -> Optional[List[str]]:
        try:
            return await self.find_chapter_links(page_url, book_domain)
        except Exception as e:
            # One failing page only loses its own expansion
            logger.warning("Failed to expand links", url=page_url, error=str(e))
            return None
        
    async def expand(self, source_links: Sequence[str], book_domains: Iterable[str]) -> List[str]:
        """
        Expand book links and splice the expansions after their source link.
        
        Every link is emitted at most once by normalized form; non-book links
        pass through unchanged.
        """
        
        book_domains = [domain for domain in book_domains if domain]
        book_links = [
            (url, find_book_domain(url, book_domains))
            for url in source_links
            if find_book_domain(url, book_domains)
        ]
        
        discovered = await asyncio.gather(*(
            self._find_chapter_links_safely(url, domain) for url, domain in book_links
        ))
        failed = [url for (url, _), links in zip(book_links, discovered) if links is None]
        expansions = iter(links or [] for links in discovered)
        
        result: List[str] = []
        seen: Set[str] = set()
        added = 0
        
        for link in source_links:
            normalized = normalize_url(link)
            if normalized not in seen:
                result.append(link)
                seen.add(normalized)
                
            if not find_book_domain(link, book_domains):
                continue
                
            for expanded in next(expansions):
                expanded_key = normalize_url(expanded)
                if expanded_key not in seen:
                    result.append(expanded)
                    seen.add(expanded_key)
                    added += 1
                    
        tutor_logger.log_link_expansion(
            source_count=len(source_links),
            expanded_count=added,
            failed_links=failed
        )
        
        return result

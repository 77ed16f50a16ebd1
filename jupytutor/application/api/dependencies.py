from typing import Optional

from jupytutor.domain.context.page_scraper import AiohttpPageFetcher, PageFetcher
from jupytutor.infrastructure.config import ServiceSettings

_settings: Optional[ServiceSettings] = None


def get_settings() -> ServiceSettings:
    global _settings
    if _settings is None:
        _settings = ServiceSettings.from_env()
    return _settings


def get_page_fetcher() -> PageFetcher:
    """
    A fresh fetcher per request.

    Retrieval may outlive the response (soft timeout), so the fetcher is
    handed over to the retriever, which closes it when loading finishes.
    """
    
    settings = get_settings()
    return AiohttpPageFetcher(timeout=settings.request_timeout, user_agent=settings.user_agent)

import asyncio
from typing import Any, Dict, List, Optional, Union

import pytest

from jupytutor.domain.context.page_scraper import FetchedPage
from jupytutor.domain.errors import PageFetchError
from jupytutor.domain.notebook.handles import NbformatNotebook
from jupytutor.infrastructure.observability.logging import metrics


def make_cell(
    cell_type: str = "code",
    source: str = "",
    metadata: Optional[Dict[str, Any]] = None,
    outputs: Optional[List[Dict[str, Any]]] = None,
    tags: Optional[List[Any]] = None,
    cell_id: Optional[str] = None
) -> Dict[str, Any]:
    metadata = dict(metadata or {})
    if tags is not None:
        metadata["tags"] = tags

    cell = {
        "cell_type": cell_type,
        "source": source,
        "metadata": metadata,
    }
    if cell_id is not None:
        cell["id"] = cell_id
    if cell_type == "code":
        cell["outputs"] = list(outputs or [])
        cell["execution_count"] = None
    return cell


def make_notebook(cells: List[Dict[str, Any]], metadata: Optional[Dict[str, Any]] = None) -> NbformatNotebook:
    for index, cell in enumerate(cells):
        cell.setdefault("id", f"cell-{index}")
    return NbformatNotebook.from_dict({
        "nbformat": 4,
        "nbformat_minor": 5,
        "metadata": dict(metadata or {}),
        "cells": cells,
    })


def error_output(ename: str = "NameError", evalue: str = "name 'x' is not defined") -> Dict[str, Any]:
    return {"output_type": "error", "ename": ename, "evalue": evalue, "traceback": []}


def stream_output(text: str) -> Dict[str, Any]:
    return {"output_type": "stream", "name": "stdout", "text": text}


def html_page(*hrefs: str, body: str = "") -> str:
    anchors = "".join(f'<a href="{href}">link</a>' for href in hrefs)
    return f"<html><body><main><p>{body}</p>{anchors}</main></body></html>"


PageSpec = Union[str, int, Exception, FetchedPage]


class FakeFetcher:
    """In-memory PageFetcher: url -> html text, HTTP status, or exception"""

    def __init__(self, pages: Optional[Dict[str, PageSpec]] = None, delays: Optional[Dict[str, float]] = None):
        self.pages = dict(pages or {})
        self.delays = dict(delays or {})
        self.calls: List[str] = []
        self.closed = False

    async def fetch(self, url: str) -> FetchedPage:
        self.calls.append(url)
        if url in self.delays:
            await asyncio.sleep(self.delays[url])

        page = self.pages.get(url, 404)
        if isinstance(page, Exception):
            raise page
        if isinstance(page, int):
            return FetchedPage(url=url, status=page)
        if isinstance(page, FetchedPage):
            return page
        return FetchedPage(url=url, status=200, text=page)

    async def close(self):
        self.closed = True


def unreachable(url: str) -> PageFetchError:
    return PageFetchError(url, "connection refused")


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()

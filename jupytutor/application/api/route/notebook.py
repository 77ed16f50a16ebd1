from typing import Annotated, Any, Dict, List, Optional, Set
import asyncio
import nbformat
import structlog
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from jupytutor.application.notebook_session import load_notebook_config, resolve_active_cell_config
from jupytutor.domain.context.context_retriever import NotebookContextRetriever, RetrievalStatus
from jupytutor.domain.context.page_scraper import PageFetcher
from jupytutor.domain.errors import ConfigValidationError
from jupytutor.domain.models.config import (
    RemoteContextGatheringConfig, RuleConfigOverride, parse_plugin_config
)
from jupytutor.domain.notebook.handles import NbformatNotebook
from jupytutor.infrastructure.config import ServiceSettings
from jupytutor.application.api.dependencies import get_page_fetcher, get_settings

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1")

# Retrievals still loading after their response was sent
_background_loads: Set[asyncio.Task] = set()


class ConfigValidationResponse(BaseModel):
    """Normalized plugin config"""
    valid: bool = True
    config: Dict[str, Any]


class CellConfigRequest(BaseModel):
    """Notebook document plus the index of the cell to resolve"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    notebook: Dict[str, Any]
    cell_index: int = Field(ge=0)


class CellConfigResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    active: bool
    config: Optional[RuleConfigOverride] = None


class ContextRequest(BaseModel):
    """Links to retrieve plus the gathering options to apply"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    source_links: List[str] = Field(default_factory=list)
    remote_context_gathering: RemoteContextGatheringConfig = Field(
        default_factory=RemoteContextGatheringConfig
    )
    enforcing: bool = False


class ContextResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    context: Optional[str] = None
    source_links: List[str]
    status: RetrievalStatus


def _unprocessable(error: ConfigValidationError) -> HTTPException:
    return HTTPException(
        status_code=422,
        detail={"message": str(error), "errors": error.errors}
    )


@router.post("/config/validate", response_model=ConfigValidationResponse)
async def validate_config(document: Annotated[Optional[Dict[str, Any]], Body()] = None):
    try:
        config = parse_plugin_config(document)
    except ConfigValidationError as e:
        raise _unprocessable(e)
        
    return ConfigValidationResponse(config=config.to_metadata())


@router.post("/notebook/cell-config", response_model=CellConfigResponse)
async def cell_config_endpoint(request: CellConfigRequest):
    notebook = NbformatNotebook(nbformat.from_dict(request.notebook))
    if request.cell_index >= len(notebook):
        raise HTTPException(status_code=404, detail=f"No cell at index {request.cell_index}")
        
    try:
        config = load_notebook_config(notebook)
    except ConfigValidationError as e:
        raise _unprocessable(e)
        
    cell_config = resolve_active_cell_config(notebook, config, request.cell_index)
    if cell_config is None:
        return CellConfigResponse(active=False)
    return CellConfigResponse(active=True, config=cell_config)


@router.post("/context", response_model=ContextResponse)
async def context_endpoint(
    request: ContextRequest,
    fetcher: Annotated[PageFetcher, Depends(get_page_fetcher)],
    settings: Annotated[ServiceSettings, Depends(get_settings)]
):
    remote = request.remote_context_gathering
    if not remote.enabled:
        await fetcher.close()
        return ContextResponse(source_links=request.source_links, status=RetrievalStatus.UNINITIALIZED)
        
    retriever = NotebookContextRetriever(
        source_links=request.source_links,
        whitelist_domains=remote.whitelist,
        blacklist_domains=remote.blacklist,
        book_domains=remote.jupyterbook.urls,
        attempt_expansion=remote.jupyterbook.link_expansion,
        fetcher=fetcher,
        soft_timeout=settings.soft_timeout,
        max_concurrency=settings.max_concurrency,
        owns_fetcher=True,
    )
    
    context = await retriever.get_context(enforcing=request.enforcing)
    source_links = await retriever.get_source_links(enforcing=request.enforcing)
    if not retriever.is_loaded:
        _keep_loading(retriever)
    logger.info("Context request served", link_count=len(source_links), status=retriever.status.value)
    
    return ContextResponse(context=context, source_links=source_links, status=retriever.status)


def _keep_loading(retriever: NotebookContextRetriever) -> None:
    """Hold the retriever until its background load, and fetcher shutdown, completes"""
    
    task = asyncio.ensure_future(retriever.get_source_links(enforcing=True))
    _background_loads.add(task)
    task.add_done_callback(_background_loads.discard)

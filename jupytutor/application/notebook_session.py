from typing import Any, Callable, List, Optional
import structlog

from jupytutor.domain.context.notebook_links import build_context_retriever
from jupytutor.domain.context.page_scraper import PageFetcher
from jupytutor.domain.context.context_retriever import SOFT_TIMEOUT_SECONDS
from jupytutor.domain.context.state.state_manager import ConfigChangedHandler, NotebookStateStore
from jupytutor.domain.errors import ConfigValidationError
from jupytutor.domain.models.config import PluginConfig, RuleConfigOverride, parse_plugin_config
from jupytutor.domain.notebook.handles import JUPYTUTOR_METADATA_KEY, NbformatNotebook
from jupytutor.domain.notebook.parser import parse_notebook
from jupytutor.domain.rules.rule_resolver import resolve_cell_config

logger = structlog.get_logger(__name__)

TEXTBOOK_CONTEXT_PREAMBLE = """
IMPORTANT - Response Formatting:
- Use markdown headers (## for h2, ### for h3) for ALL section titles if needed for clarity.
- Always add blank lines before and after headers
- Use proper markdown link syntax: [Link Text](URL), NOT <a> or [LINK] tags.
- Use **bold** or *italic* sparingly and only for emphasis within text (NOT for section headers)
The following input after this is an aggregation of potentially relevant resources to the assignment.
Keep in mind, some are relevant to each particular question, some are not. You should attempt to cite sources when you use the source contents in your response, formatted as Markdown links. This should function to encourage student agency and help to not reveal answers directly.
"""


def load_notebook_config(notebook: NbformatNotebook) -> PluginConfig:
    """Parse the notebook's plugin config; raises ConfigValidationError when malformed"""
    return parse_plugin_config(notebook.get_metadata(JUPYTUTOR_METADATA_KEY))


def parse_config_or_disabled(raw: Any) -> PluginConfig:
    """Parse a plugin config document, treating a malformed one as a disabled plugin"""
    
    try:
        return parse_plugin_config(raw)
    except ConfigValidationError as e:
        logger.error("Invalid jupytutor config, plugin disabled", errors=e.errors)
        return PluginConfig(plugin_enabled=False)


def resolve_active_cell_config(
    notebook: NbformatNotebook,
    config: Optional[PluginConfig],
    cell_index: int
) -> Optional[RuleConfigOverride]:
    """
    Resolve a cell's config under the notebook's plugin config.
    
    Returns:
        Resolved config, or None when the assistant is inactive for the cell
    """
    
    if config is None or not config.plugin_enabled or notebook.cell_at(cell_index) is None:
        return None
        
    cell_config = resolve_cell_config(notebook, cell_index, config.rules)
    if not config.preferences.proactive_enabled:
        # Global preference wins over every rule
        cell_config = cell_config.model_copy(update={"chat_proactive": False})
    return cell_config


class NotebookSession:
    """Connects one open notebook to the rule engine, the state store and context retrieval"""
    
    def __init__(
        self,
        notebook_path: str,
        notebook: NbformatNotebook,
        store: NotebookStateStore,
        fetcher: Optional[PageFetcher] = None,
        soft_timeout: float = SOFT_TIMEOUT_SECONDS,
        max_concurrency: Optional[int] = None
    ):
        self.notebook_path = notebook_path
        self.notebook = notebook
        self.store = store
        self.fetcher = fetcher
        self.soft_timeout = soft_timeout
        self.max_concurrency = max_concurrency
        self._detach_callbacks: List[Callable[[], None]] = []
        self._syncing_from_metadata = False
        
    @property
    def config(self) -> Optional[PluginConfig]:
        state = self.store.get_current_state(self.notebook_path)
        return state.notebook_config if state else None
        
    def attach(self) -> Callable[[], None]:
        """
        Load config, subscribe to metadata changes and start context gathering.
        
        Must be called from a running event loop when the plugin is enabled,
        because context retrieval starts immediately.
        
        Returns:
            Callable that removes every subscription made here
        """
        
        structlog.contextvars.bind_contextvars(notebook_path=self.notebook_path)
        self.store.ensure(self.notebook_path)
        config = parse_config_or_disabled(self.notebook.get_metadata(JUPYTUTOR_METADATA_KEY))
        self.store.set_notebook_config(self.notebook_path, config)
        
        self._detach_callbacks.append(self.notebook.on_metadata_changed(self._on_metadata_changed))
        self._detach_callbacks.append(
            self.store.on_config_changed(self.notebook_path, self._write_back_config)
        )
        
        if not config.plugin_enabled:
            logger.info("Plugin not enabled for notebook, skipping context gathering",
                       notebook_path=self.notebook_path)
            return self.detach
            
        parsed_cells = parse_notebook(self.notebook)
        self.store.set_parsed_cells(self.notebook_path, parsed_cells)
        
        if config.remote_context_gathering.enabled:
            retriever = build_context_retriever(
                parsed_cells,
                config,
                fetcher=self.fetcher,
                soft_timeout=self.soft_timeout,
                max_concurrency=self.max_concurrency,
            )
            self.store.set_context_retriever(self.notebook_path, retriever)
            
        return self.detach
        
    def detach(self) -> None:
        while self._detach_callbacks:
            self._detach_callbacks.pop()()
            
    def on_config_changed(self, handler: ConfigChangedHandler) -> Callable[[], None]:
        """Subscribe to this notebook's config changes"""
        
        unsubscribe = self.store.on_config_changed(self.notebook_path, handler)
        self._detach_callbacks.append(unsubscribe)
        return unsubscribe
        
    def update_config(self, config: PluginConfig) -> None:
        """Replace the notebook config; written back to metadata if the notebook has a config entry"""
        
        self.store.set_notebook_config(self.notebook_path, config)
        
    def refresh_cell_config(self, cell_index: int) -> Optional[RuleConfigOverride]:
        """
        Resolve and store the config for one cell.
        
        Returns:
            Resolved config, or None when the plugin is disabled (assistant inactive)
        """
        
        cell_config = resolve_active_cell_config(self.notebook, self.config, cell_index)
        if cell_config is None:
            return None
            
        cell = self.notebook.cell_at(cell_index)
        self.store.update_widget_state(self.notebook_path, cell.cell_id, cell_config=cell_config)
        logger.debug("Refreshed cell config", cell_id=cell.cell_id, cell_config=cell_config.model_dump())
        return cell_config
        
    async def gather_textbook_context(self, enforcing: bool = False) -> Optional[str]:
        """Retrieved context prefixed with the formatting preamble, or None"""
        
        state = self.store.get_current_state(self.notebook_path)
        retriever = state.context_retriever if state else None
        if retriever is None:
            return None
            
        context = await retriever.get_context(enforcing=enforcing)
        if context is None:
            return None
        return TEXTBOOK_CONTEXT_PREAMBLE + context
        
    def _on_metadata_changed(self, key: str, old_value: Any, new_value: Any) -> None:
        if key != JUPYTUTOR_METADATA_KEY:
            return
            
        logger.debug("jupytutor metadata changed", notebook_path=self.notebook_path)
        config = parse_config_or_disabled(new_value)
        self._syncing_from_metadata = True
        try:
            self.store.set_notebook_config(self.notebook_path, config)
        finally:
            self._syncing_from_metadata = False
        
    def _write_back_config(self, notebook_path: str, config: Optional[PluginConfig]) -> None:
        # Metadata edits are the source of the change; a loaded default must
        # never be written to a notebook that had no config
        if self._syncing_from_metadata or config is None:
            return
        if self.notebook.get_metadata(JUPYTUTOR_METADATA_KEY) is None:
            return
            
        metadata = config.to_metadata()
        if self.notebook.get_metadata(JUPYTUTOR_METADATA_KEY) != metadata:
            self.notebook.set_metadata(JUPYTUTOR_METADATA_KEY, metadata)

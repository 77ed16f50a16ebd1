from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
import structlog

from jupytutor.domain.models.config import PluginConfig, RuleConfigOverride

logger = structlog.get_logger(__name__)

ConfigChangedHandler = Callable[[str, Optional[PluginConfig]], None]


@dataclass
class WidgetState:
    """Per-cell assistant state; cell_config is refreshed when the cell runs"""
    cell_config: Optional[RuleConfigOverride] = None


@dataclass
class NotebookState:
    notebook_path: str
    widget_state_by_cell_id: Dict[str, WidgetState] = field(default_factory=dict)
    notebook_config: Optional[PluginConfig] = None
    parsed_cells: List[Any] = field(default_factory=list)
    context_retriever: Optional[Any] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    last_updated: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class NotebookStateStore:
    """
    Process-wide state keyed by notebook path.

    Entries are created on first touch (``ensure``) and only removed by an
    explicit ``clear_state``.
    """
    
    def __init__(self):
        self.states: Dict[str, NotebookState] = {}
        self._config_handlers: Dict[str, List[ConfigChangedHandler]] = {}
        
    def ensure(self, notebook_path: str) -> NotebookState:
        """Get the state for a notebook, creating it if needed"""
        
        if notebook_path not in self.states:
            self.states[notebook_path] = NotebookState(notebook_path=notebook_path)
        return self.states[notebook_path]
        
    def get_current_state(self, notebook_path: str) -> Optional[NotebookState]:
        return self.states.get(notebook_path)
        
    def widget_state(self, notebook_path: str, cell_id: str) -> WidgetState:
        """Get a cell's widget state, creating notebook and cell entries if needed"""
        
        state = self.ensure(notebook_path)
        if cell_id not in state.widget_state_by_cell_id:
            state.widget_state_by_cell_id[cell_id] = WidgetState()
        return state.widget_state_by_cell_id[cell_id]
        
    def update_widget_state(self, notebook_path: str, cell_id: str, **updates: Any) -> WidgetState:
        """Update fields of a cell's widget state"""
        
        widget = self.widget_state(notebook_path, cell_id)
        for key, value in updates.items():
            if not hasattr(widget, key):
                raise AttributeError(f"Unknown widget state field: {key}")
            setattr(widget, key, value)
        self._touch(notebook_path)
        return widget
        
    def set_notebook_config(self, notebook_path: str, config: Optional[PluginConfig]) -> None:
        """Replace a notebook's config and notify subscribers when it changed"""
        
        state = self.ensure(notebook_path)
        if state.notebook_config == config:
            return
            
        state.notebook_config = config
        self._touch(notebook_path)
        
        for handler in list(self._config_handlers.get(notebook_path, [])):
            handler(notebook_path, config)
            
    def set_parsed_cells(self, notebook_path: str, parsed_cells: List[Any]) -> None:
        self.ensure(notebook_path).parsed_cells = parsed_cells
        self._touch(notebook_path)
        
    def set_context_retriever(self, notebook_path: str, retriever: Optional[Any]) -> None:
        self.ensure(notebook_path).context_retriever = retriever
        self._touch(notebook_path)
        
    def on_config_changed(self, notebook_path: str, handler: ConfigChangedHandler) -> Callable[[], None]:
        """Subscribe to config changes of one notebook; returns an unsubscribe callable"""
        
        handlers = self._config_handlers.setdefault(notebook_path, [])
        handlers.append(handler)
        
        def unsubscribe() -> None:
            if handler in handlers:
                handlers.remove(handler)
                
        return unsubscribe
        
    def clear_state(self, notebook_path: str) -> None:
        """Drop all state for a notebook"""
        
        self.states.pop(notebook_path, None)
        self._config_handlers.pop(notebook_path, None)
        logger.info("Cleared notebook state", notebook_path=notebook_path)
        
    def _touch(self, notebook_path: str) -> None:
        self.states[notebook_path].last_updated = datetime.now(timezone.utc).isoformat()

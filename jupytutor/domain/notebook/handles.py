from typing import Any, Callable, List, Optional, Protocol, Sequence
import nbformat
import structlog

logger = structlog.get_logger(__name__)

# Key used for both the notebook-level plugin config and per-cell overrides
JUPYTUTOR_METADATA_KEY = "jupytutor"

MetadataChangedHandler = Callable[[str, Any, Any], None]


class CellHandle(Protocol):
    """Host cell as seen by the rule engine"""

    @property
    def cell_id(self) -> str: ...

    @property
    def cell_type(self) -> str: ...

    @property
    def source(self) -> str: ...

    @property
    def outputs(self) -> Sequence[Any]: ...

    def get_metadata(self, key: str) -> Any: ...


class NotebookHandle(Protocol):
    """Host notebook as seen by the rule engine and the session"""

    def __len__(self) -> int: ...

    def cell_at(self, index: int) -> Optional[CellHandle]: ...

    def get_metadata(self, key: str) -> Any: ...

    def set_metadata(self, key: str, value: Any) -> None: ...

    def on_metadata_changed(self, handler: MetadataChangedHandler) -> Callable[[], None]: ...


class NbformatCell:
    """CellHandle backed by an nbformat cell node"""

    def __init__(self, node: nbformat.NotebookNode, index: int = 0):
        self.node = node
        self.index = index

    @property
    def cell_id(self) -> str:
        return self.node.get("id") or f"cell-{self.index}"

    @property
    def cell_type(self) -> str:
        return self.node.get("cell_type", "")

    @property
    def source(self) -> str:
        source = self.node.get("source", "")
        if isinstance(source, list):
            return "".join(source)
        return str(source)

    @property
    def outputs(self) -> Sequence[Any]:
        return list(self.node.get("outputs") or [])

    def get_metadata(self, key: str) -> Any:
        metadata = self.node.get("metadata") or {}
        return metadata.get(key)


class NbformatNotebook:
    """NotebookHandle backed by an nbformat notebook, with metadata change callbacks"""

    def __init__(self, nb: nbformat.NotebookNode):
        self.nb = nb
        if self.nb.get("metadata") is None:
            self.nb["metadata"] = nbformat.NotebookNode()
        self._metadata_handlers: List[MetadataChangedHandler] = []

    @classmethod
    def from_file(cls, path: str) -> "NbformatNotebook":
        return cls(nbformat.read(path, as_version=4))

    @classmethod
    def from_dict(cls, data: dict) -> "NbformatNotebook":
        return cls(nbformat.from_dict(data))

    def __len__(self) -> int:
        return len(self.nb.get("cells") or [])

    def cell_at(self, index: int) -> Optional[NbformatCell]:
        if index < 0 or index >= len(self):
            return None
        return NbformatCell(self.nb["cells"][index], index)

    def cells(self) -> List[NbformatCell]:
        return [NbformatCell(node, idx) for idx, node in enumerate(self.nb.get("cells") or [])]

    def index_of(self, cell_id: str) -> Optional[int]:
        for cell in self.cells():
            if cell.cell_id == cell_id:
                return cell.index
        return None

    def get_metadata(self, key: str) -> Any:
        return self.nb["metadata"].get(key)

    def set_metadata(self, key: str, value: Any) -> None:
        """Set a notebook metadata entry and notify subscribers when it changed"""

        old_value = self.nb["metadata"].get(key)
        self.nb["metadata"][key] = nbformat.from_dict(value)
        if old_value == value:
            return

        for handler in list(self._metadata_handlers):
            handler(key, old_value, value)

    def on_metadata_changed(self, handler: MetadataChangedHandler) -> Callable[[], None]:
        self._metadata_handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._metadata_handlers:
                self._metadata_handlers.remove(handler)

        return unsubscribe

    def save(self, path: str) -> None:
        nbformat.write(self.nb, path)
        logger.info("Notebook saved", path=path)

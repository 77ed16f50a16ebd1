from typing import Any, Literal, Mapping, Tuple
import json
from pydantic import BaseModel, ConfigDict

from jupytutor.domain.notebook.handles import CellHandle


class CellContext(BaseModel):
    """Read-only snapshot of one cell, rebuilt for every resolution pass"""
    model_config = ConfigDict(frozen=True)

    type: Literal["code", "markdown", "unknown"]
    text: str = ""
    editable: bool = True
    tags: Tuple[str, ...] = ()
    output_text: str = ""
    has_error: bool = False


def build_cell_context(cell: CellHandle) -> CellContext:
    """Derive the predicate-facing snapshot of a host cell"""

    cell_type = cell.cell_type if cell.cell_type in ("code", "markdown") else "unknown"

    editable = cell.get_metadata("editable")
    raw_tags = cell.get_metadata("tags")
    tags = tuple(
        tag for tag in (raw_tags if isinstance(raw_tags, list) else [])
        if isinstance(tag, str)
    )

    output_text = ""
    has_error = False
    if cell_type == "code":
        outputs = [_output_record(output) for output in cell.outputs]
        output_text = "\n".join(text for text in map(extract_output_text, outputs) if text)
        has_error = any(_output_kind(output) == "error" for output in outputs)

    return CellContext(
        type=cell_type,
        text=cell.source,
        editable=True if editable is None else bool(editable),
        tags=tags,
        output_text=output_text,
        has_error=has_error,
    )


def extract_output_text(output: Any) -> str:
    """
    Best-effort text for a single output record.

    Precedence: data["text/plain"] (or data["text"]), then a top-level text
    field, then evalue, then the serialized record itself.
    """

    record = _output_record(output)
    if not record:
        return ""

    if not isinstance(record, Mapping):
        return json.dumps(record, default=str)

    data = record.get("data")
    if isinstance(data, Mapping):
        text_plain = data.get("text/plain")
        if text_plain is None:
            text_plain = data.get("text")
        if text_plain is not None:
            return _join_lines(text_plain)

    if record.get("text") is not None:
        return _join_lines(record["text"])

    if record.get("evalue") is not None:
        return str(record["evalue"])

    return json.dumps(record, default=str)


def _output_record(output: Any) -> Any:
    to_json = getattr(output, "to_json", None)
    if callable(to_json):
        return to_json()
    return output


def _output_kind(record: Any) -> Any:
    if not isinstance(record, Mapping):
        return None
    return record.get("output_type") or record.get("type")


def _join_lines(value: Any) -> str:
    if isinstance(value, list):
        return "\n".join(str(line) for line in value)
    return str(value)

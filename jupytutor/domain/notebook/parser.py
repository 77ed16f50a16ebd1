from typing import Any, List, Literal, Tuple
import markdown
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from .handles import CellHandle, NbformatNotebook


class ParsedCell(BaseModel):
    """Per-cell view used for notebook-wide context gathering"""
    cell_id: str
    type: Literal["code", "markdown", "unknown"]
    text: str = ""
    editable: bool = True
    tags: List[Any] = Field(default_factory=list)
    outputs: List[Any] = Field(default_factory=list)
    links: List[str] = Field(default_factory=list)
    image_sources: List[str] = Field(default_factory=list, description="Image URLs, not image content")


def extract_links_and_images(text: str) -> Tuple[List[str], List[str]]:
    """Link and image URLs referenced by Markdown text, in document order"""
    
    if not text.strip():
        return [], []
        
    soup = BeautifulSoup(markdown.markdown(text), "html.parser")
    links = [anchor["href"] for anchor in soup.find_all("a", href=True)]
    images = [image["src"] for image in soup.find_all("img", src=True)]
    return links, images


def parse_cell(cell: CellHandle) -> ParsedCell:
    cell_type = cell.cell_type if cell.cell_type in ("code", "markdown") else "unknown"
    links, images = extract_links_and_images(cell.source)
    editable = cell.get_metadata("editable")
    tags = cell.get_metadata("tags")
    
    return ParsedCell(
        cell_id=cell.cell_id,
        type=cell_type,
        text=cell.source,
        editable=True if editable is None else bool(editable),
        tags=list(tags) if isinstance(tags, list) else [],
        outputs=list(cell.outputs) if cell_type == "code" else [],
        links=links,
        image_sources=images,
    )


def parse_notebook(notebook: NbformatNotebook) -> List[ParsedCell]:
    return [parse_cell(cell) for cell in notebook.cells()]

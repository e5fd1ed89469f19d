"""
Document models.

Two families live here:

* AI elements -- the closed set of structural elements the AI document
  parser returns (heading, paragraph, code, table, list, blockquote,
  diagram, hr), decoded from its JSON reply.
* Output elements -- the target-agnostic, fully styled paragraphs and
  tables the renderer emits and the assembler writes to DOCX.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Union

from mdword.diagram import decode_components, decode_connections

logger = logging.getLogger(__name__)


class ElementDecodeError(ValueError):
    """The AI reply does not have the expected document shape."""


# ---------------------------------------------------------------------------
# AI elements
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class InlineRun:
    text: str
    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    code: bool = False
    link: str | None = None


@dataclass(frozen=True)
class HeadingElement:
    level: int
    text: str


@dataclass(frozen=True)
class ParagraphElement:
    runs: tuple = ()


@dataclass(frozen=True)
class CodeElement:
    content: str
    language: str = ""


@dataclass(frozen=True)
class TableElement:
    headers: tuple = ()
    rows: tuple = ()


@dataclass(frozen=True)
class ListElement:
    items: tuple = ()
    ordered: bool = False


@dataclass(frozen=True)
class BlockquoteElement:
    text: str


@dataclass(frozen=True)
class DiagramElement:
    title: str = ""
    description: str = ""
    components: tuple = ()
    connections: tuple = ()


@dataclass(frozen=True)
class RuleElement:
    pass


AIElement = Union[
    HeadingElement,
    ParagraphElement,
    CodeElement,
    TableElement,
    ListElement,
    BlockquoteElement,
    DiagramElement,
    RuleElement,
]


def _text(value) -> str:
    return "" if value is None else str(value)


def _decode_run(item) -> InlineRun | None:
    if isinstance(item, str):
        return InlineRun(item)
    if not isinstance(item, dict):
        return None
    link = item.get("link")
    return InlineRun(
        text=_text(item.get("text")),
        bold=bool(item.get("bold")),
        italic=bool(item.get("italic")),
        strikethrough=bool(item.get("strikethrough")),
        code=bool(item.get("code")),
        link=str(link) if link else None,
    )


def _decode_heading(data: dict) -> HeadingElement:
    try:
        level = int(data.get("level") or 1)
    except (TypeError, ValueError):
        level = 1
    return HeadingElement(level=min(max(level, 1), 6), text=_text(data.get("text")))


def _decode_paragraph(data: dict) -> ParagraphElement:
    content = data.get("content")
    if isinstance(content, str):
        return ParagraphElement((InlineRun(content),))
    runs = (_decode_run(item) for item in content or ())
    return ParagraphElement(tuple(r for r in runs if r is not None))


def _decode_code(data: dict) -> CodeElement:
    return CodeElement(content=_text(data.get("content")), language=_text(data.get("language")))


def _decode_table(data: dict) -> TableElement:
    headers = tuple(_text(h) for h in data.get("headers") or ())
    rows = tuple(
        tuple(_text(cell) for cell in row)
        for row in data.get("rows") or ()
        if isinstance(row, (list, tuple))
    )
    return TableElement(headers=headers, rows=rows)


def _decode_list(data: dict) -> ListElement:
    return ListElement(items=tuple(_text(i) for i in data.get("items") or ()),
                       ordered=bool(data.get("ordered")))


def _decode_blockquote(data: dict) -> BlockquoteElement:
    return BlockquoteElement(text=_text(data.get("text")))


def _decode_diagram(data: dict) -> DiagramElement:
    return DiagramElement(
        title=_text(data.get("title")),
        description=_text(data.get("description")),
        components=decode_components(data.get("components")),
        connections=decode_connections(data.get("connections")),
    )


def _decode_rule(data: dict) -> RuleElement:
    return RuleElement()


_DECODERS = {
    "heading": _decode_heading,
    "paragraph": _decode_paragraph,
    "code": _decode_code,
    "table": _decode_table,
    "list": _decode_list,
    "blockquote": _decode_blockquote,
    "diagram": _decode_diagram,
    "hr": _decode_rule,
}


def decode_element(data) -> AIElement | None:
    """Decode one element; unknown kinds with text become plain paragraphs."""
    if not isinstance(data, dict):
        logger.warning("Skipping non-object AI element: %r", data)
        return None
    kind = data.get("type")
    decoder = _DECODERS.get(kind)
    if decoder is not None:
        return decoder(data)
    if data.get("text"):
        return ParagraphElement((InlineRun(_text(data["text"])),))
    logger.warning("Skipping AI element of unknown type %r", kind)
    return None


def decode_document(payload) -> tuple:
    """Decode a parsed AI reply into ``(title, elements)``."""
    if not isinstance(payload, dict):
        raise ElementDecodeError(f"Expected a JSON object, got {type(payload).__name__}")
    raw_elements = payload.get("elements")
    if not isinstance(raw_elements, list):
        raise ElementDecodeError("Reply has no 'elements' list")
    elements = [el for el in (decode_element(item) for item in raw_elements) if el is not None]
    return _text(payload.get("title")), elements


# ---------------------------------------------------------------------------
# Output elements
# ---------------------------------------------------------------------------
@dataclass
class Run:
    """A styled text span. Sizes are points, colors are hex strings."""

    text: str = ""
    bold: bool = False
    italic: bool = False
    strike: bool = False
    underline: bool = False
    font: str | None = None
    size: float | None = None
    color: str | None = None
    shading: str | None = None
    link: str | None = None
    line_break: bool = False


@dataclass
class Border:
    side: str  # "left" or "bottom"
    size: int  # eighths of a point
    color: str
    space: int = 1


@dataclass
class Paragraph:
    runs: list = field(default_factory=list)
    heading_level: int | None = None
    space_before: float | None = None
    space_after: float | None = None
    line_spacing: float | None = None
    indent_left: float | None = None  # inches
    shading: str | None = None
    border: Border | None = None

    @property
    def text(self) -> str:
        return "".join("\n" if r.line_break else r.text for r in self.runs)


@dataclass
class Cell:
    paragraph: Paragraph
    shading: str | None = None


@dataclass
class Table:
    """Rows of cells; every row holds ``column_count`` cells."""

    rows: list
    header_rows: int = 1
    width_pct: int = 100
    border_color: str = "000000"
    border_size: int = 4
    inside_color: str | None = None
    cell_margin: int = 100  # twips

    @property
    def column_count(self) -> int:
        return max((len(r) for r in self.rows), default=0)


OutputElement = Union[Paragraph, Table]

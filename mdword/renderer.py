"""
Document renderer: one mapping from either parse representation to output
elements, styled from a single StyleConfig.

``render_ai`` consumes AI elements; ``render_tokens`` walks the local
parser's flat token stream. Both funnel into the same builders (heading,
paragraph, code block, table, list item, blockquote, diagram, rule), so the
two paths produce identically styled documents.
"""

from __future__ import annotations

import logging
import re
import typing
from dataclasses import fields, replace
from typing import Callable

from mdword.diagram import DiagramAnalysis, fallback_analysis, is_ascii_diagram
from mdword.elements import (
    AIElement,
    BlockquoteElement,
    Border,
    Cell,
    CodeElement,
    DiagramElement,
    HeadingElement,
    ListElement,
    Paragraph,
    ParagraphElement,
    RuleElement,
    Run,
    Table,
    TableElement,
)
from mdword.parser import Token, UnbalancedTokensError, find_closing_token
from mdword.style import DEFAULT_STYLE, StyleConfig

logger = logging.getLogger(__name__)

_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_MARKER_RE = re.compile(r"\*\*|~~|[*`]")

_LIST_OPENS = ("bullet_list_open", "ordered_list_open")
_TEXTUAL = ("text", "emoji", "code_inline")
_RUN_STYLE_FIELDS = tuple(f.name for f in fields(Run) if f.name not in ("text",))


def clean_text(text: str) -> str:
    """Strip residual emphasis, code and link markup from AI-supplied heading text."""
    if not text:
        return ""
    text = _LINK_RE.sub(r"\1", text)
    return _MARKER_RE.sub("", text).strip()


def plain_text(children) -> str:
    """Text of inline tokens with all markup dropped."""
    return "".join(t.content for t in children or () if t.type in _TEXTUAL)


def merge_runs(runs: list) -> list:
    """Join neighbouring runs that share every style attribute."""
    merged: list = []
    for run in runs:
        prev = merged[-1] if merged else None
        if (prev is not None and not run.line_break and not prev.line_break
                and all(getattr(prev, n) == getattr(run, n) for n in _RUN_STYLE_FIELDS)):
            merged[-1] = replace(prev, text=prev.text + run.text)
        else:
            merged.append(run)
    return merged


class DocumentRenderer:
    """Maps AI elements or local tokens to output elements.

    ``analyze_diagram`` turns ASCII diagram text found in code blocks into a
    DiagramAnalysis; it must not raise.
    """

    def __init__(self, style: StyleConfig = DEFAULT_STYLE,
                 analyze_diagram: Callable[[str], DiagramAnalysis] = fallback_analysis):
        self.style = style
        self.analyze_diagram = analyze_diagram
        self._ai_routines = {
            HeadingElement: self._ai_heading,
            ParagraphElement: self._ai_paragraph,
            CodeElement: self._ai_code,
            TableElement: self._ai_table,
            ListElement: self._ai_list,
            BlockquoteElement: self._ai_blockquote,
            DiagramElement: self._ai_diagram,
            RuleElement: self._ai_rule,
        }
        missing = set(typing.get_args(AIElement)) - set(self._ai_routines)
        if missing:
            raise TypeError(f"No rendering routine for {sorted(m.__name__ for m in missing)}")

    # -- run helpers ---------------------------------------------------------
    def _body_run(self, text: str, size: float | None = None, **kw) -> Run:
        s = self.style
        return Run(text=text, font=s.font_body, size=size or s.font_size, color=s.color_body, **kw)

    def _code_run(self, text: str, size: float | None = None) -> Run:
        s = self.style
        return Run(text=text, font=s.font_code, size=size or s.code_font_size,
                   color=s.color_code, shading=s.code_bg)

    def _link_run(self, text: str, url: str, size: float | None = None) -> Run:
        s = self.style
        return Run(text=text, font=s.font_body, size=size or s.font_size,
                   color=s.color_link, underline=True, link=url)

    # -- shared builders -----------------------------------------------------
    def heading(self, text: str, level: int) -> Paragraph:
        s = self.style
        level = min(max(level, 1), 6)
        run = Run(text=text.strip(), bold=True, font=s.font_heading,
                  size=s.heading_size(level), color=s.color_heading)
        return Paragraph([run], heading_level=level, space_before=12, space_after=6)

    def paragraph(self, runs: list) -> Paragraph:
        return Paragraph(runs or [self._body_run("")], space_after=8)

    def code_block(self, code: str, language: str = "") -> list:
        s = self.style
        out = []
        if language:
            label = Run(text=f"  {language.upper()}", bold=True, font=s.font_code,
                        size=s.code_font_size, color=s.code_label_text)
            out.append(Paragraph([label], space_before=6, space_after=0, shading=s.code_label_bg))
        for line in code.rstrip("\n").split("\n"):
            # blank lines keep a visible single-space run
            out.append(Paragraph([self._code_run(line or " ")], space_before=0, space_after=0,
                                 line_spacing=1.0, indent_left=0.1, shading=s.code_bg))
        out.append(Paragraph([], space_after=8))
        return out

    def _cell(self, runs: list, header: bool = False) -> Cell:
        s = self.style
        if header:
            runs = [r if r.link else replace(r, bold=True, color=s.table_header_text) for r in runs]
            return Cell(Paragraph(runs, space_before=2, space_after=2), shading=s.table_header_bg)
        return Cell(Paragraph(runs, space_before=2, space_after=2))

    def table(self, header: list, body: list) -> Table | Paragraph:
        """Build a table from run lists; short rows are padded to the widest row."""
        s = self.style
        rows = ([header] if header else []) + list(body)
        width = max((len(r) for r in rows), default=0)
        if width == 0:
            logger.warning("Table has no cells; emitting placeholder")
            return self.paragraph([])
        out_rows = []
        for idx, row in enumerate(rows):
            is_header = bool(header) and idx == 0
            cells = [self._cell(runs, is_header) for runs in row]
            cells.extend(self._cell([], is_header) for _ in range(width - len(cells)))
            out_rows.append(cells)
        return Table(out_rows, header_rows=1 if header else 0, width_pct=100,
                     border_color=s.table_border, border_size=s.table_border_size,
                     cell_margin=s.table_cell_margin)

    def list_item(self, prefix: str, runs: list) -> Paragraph:
        return Paragraph([self._body_run(prefix)] + runs, space_after=4, indent_left=0.25)

    def blockquote(self, runs: list) -> Paragraph:
        s = self.style
        runs = [r if (r.link or r.shading) else replace(r, italic=True, color=s.quote_text) for r in runs]
        return Paragraph(runs, space_after=4, indent_left=0.5,
                         border=Border("left", 24, s.quote_border, 8))

    def rule(self) -> Paragraph:
        return Paragraph([], space_before=10, space_after=10,
                         border=Border("bottom", 6, self.style.rule_color, 1))

    def _components_table(self, components) -> Table:
        s = self.style
        head = [
            Cell(Paragraph([Run(t, bold=True, font=s.font_body, size=s.font_size,
                                color=s.diagram_title_text)]), shading=s.diagram_border)
            for t in ("Component", "Description")
        ]
        rows = [head]
        for comp in components:
            name = Run(comp.name, bold=True, font=s.font_body, size=s.font_size, color=s.diagram_border)
            rows.append([
                Cell(Paragraph([name]), shading=s.diagram_bg),
                Cell(Paragraph([self._body_run(comp.description or "-")])),
            ])
        return Table(rows, header_rows=1, width_pct=100, border_color=s.diagram_border,
                     border_size=s.table_border_size, inside_color=s.table_border,
                     cell_margin=s.table_cell_margin)

    def diagram(self, title: str, description: str, components, connections,
                summary: str = "") -> list:
        s = self.style
        out: list = []
        if title:
            banner = Run(f" 📊 {title}", bold=True, font=s.font_heading,
                         size=s.heading_size(2), color=s.diagram_title_text)
            out.append(Paragraph([banner], space_before=12, space_after=6, shading=s.diagram_border))
        if description:
            band = Run(f" {description}", italic=True, font=s.font_body, size=s.font_size,
                       color=s.diagram_description_text)
            out.append(Paragraph([band], space_after=6, shading=s.diagram_bg))
        if components:
            out.append(self._components_table(components))
        if connections:
            label = Run("🔗 Data Flow:", bold=True, font=s.font_heading, size=s.font_size)
            out.append(Paragraph([label], space_before=8, space_after=4))
            for conn in connections:
                suffix = f" ({conn.label})" if conn.label else ""
                text = f"→ {conn.source}  ➜  {conn.target}{suffix}"
                out.append(Paragraph([self._body_run(text)], space_after=3, indent_left=0.25))
        if not components and summary:
            for line in (ln for ln in summary.split("\n") if ln.strip()):
                text = f" {line}" if line.startswith("•") else f" • {line}"
                out.append(Paragraph([self._body_run(text)], space_after=3,
                                     indent_left=0.25, shading=s.diagram_bg))
        out.append(Paragraph([], space_after=10))
        return out

    def diagram_from_analysis(self, analysis: DiagramAnalysis) -> list:
        return self.diagram(analysis.title, analysis.description, analysis.components,
                            analysis.connections, analysis.summary)

    # -- AI elements ---------------------------------------------------------
    def render_ai(self, elements) -> list:
        out: list = []
        for element in elements:
            routine = self._ai_routines.get(type(element))
            if routine is None:
                raise TypeError(f"Unsupported AI element {type(element).__name__}")
            out.extend(routine(element))
        return out

    def _ai_heading(self, el: HeadingElement) -> list:
        return [self.heading(clean_text(el.text), el.level)]

    def _ai_paragraph(self, el: ParagraphElement) -> list:
        runs = []
        for run in el.runs:
            # fixed precedence: code, then link, then bold/italic/strike
            if run.code:
                runs.append(self._code_run(run.text))
            elif run.link:
                runs.append(self._link_run(run.text, run.link))
            else:
                runs.append(self._body_run(run.text, bold=run.bold, italic=run.italic,
                                           strike=run.strikethrough))
        return [self.paragraph(merge_runs(runs))]

    def _ai_code(self, el: CodeElement) -> list:
        return self.code_block(el.content, el.language)

    def _ai_table(self, el: TableElement) -> list:
        size = self.style.table_font_size
        header = [[self._body_run(h, size=size)] for h in el.headers]
        body = [[[self._body_run(c, size=size)] for c in row] for row in el.rows]
        return [self.table(header, body)]

    def _ai_list(self, el: ListElement) -> list:
        return [
            Paragraph([self._body_run((f"{n}. " if el.ordered else "• ") + item)],
                      space_after=4, indent_left=0.25)
            for n, item in enumerate(el.items, start=1)
        ]

    def _ai_blockquote(self, el: BlockquoteElement) -> list:
        return [self.blockquote([self._body_run(el.text)])]

    def _ai_diagram(self, el: DiagramElement) -> list:
        return self.diagram(el.title, el.description, el.components, el.connections)

    def _ai_rule(self, el: RuleElement) -> list:
        return [self.rule()]

    # -- local tokens --------------------------------------------------------
    def _closing(self, tokens: list, start: int, close_type: str) -> int:
        try:
            return find_closing_token(tokens, start, close_type)
        except UnbalancedTokensError as e:
            logger.warning("%s; consuming to end of stream", e)
            return len(tokens) - 1

    def render_tokens(self, tokens: list) -> list:
        out: list = []
        i = 0
        n = len(tokens)
        while i < n:
            tok = tokens[i]
            tp = tok.type

            if tp == "heading_open":
                inline = tokens[i + 1] if i + 1 < n else None
                text = plain_text(inline.children) if inline is not None and inline.type == "inline" else ""
                out.append(self.heading(text, int(tok.tag[1:] or 1)))
                i += 3
                continue

            if tp == "paragraph_open":
                inline = tokens[i + 1] if i + 1 < n else None
                if inline is not None and inline.type == "inline":
                    out.append(self.paragraph(self.inline_runs(inline.children)))
                i += 3
                continue

            if tp == "fence":
                out.extend(self._code_or_diagram(tok.content, tok.info.split(None, 1)[0] if tok.info else ""))
            elif tp == "code_block":
                out.extend(self._code_or_diagram(tok.content, ""))
            elif tp == "table_open":
                end = self._closing(tokens, i, "table_close")
                out.append(self._table_from_tokens(tokens[i:end + 1]))
                i = end
            elif tp in _LIST_OPENS:
                end = self._closing(tokens, i, tp.replace("_open", "_close"))
                out.extend(self._list_from_tokens(tokens[i:end + 1]))
                i = end
            elif tp == "blockquote_open":
                end = self._closing(tokens, i, "blockquote_close")
                out.extend(self._blockquote_from_tokens(tokens[i + 1:end]))
                i = end
            elif tp == "hr":
                out.append(self.rule())
            elif tp == "html_block":
                logger.debug("Dropping raw HTML block")
            i += 1
        return out

    def _code_or_diagram(self, content: str, language: str) -> list:
        if not is_ascii_diagram(content):
            return self.code_block(content, language)
        try:
            analysis = self.analyze_diagram(content)
        except Exception:
            logger.exception("Diagram analysis raised; rendering as plain text")
            return self.code_block(content, "text")
        return self.diagram_from_analysis(analysis)

    def inline_runs(self, children, size: float | None = None) -> list:
        """Styled runs for an inline token's children."""
        children = children or []
        runs: list = []
        bold = italic = strike = 0
        i = 0
        while i < len(children):
            tok: Token = children[i]
            tp = tok.type
            if tp in ("text", "emoji"):
                runs.append(self._body_run(tok.content, size=size, bold=bold > 0,
                                           italic=italic > 0, strike=strike > 0))
            elif tp == "code_inline":
                runs.append(self._code_run(tok.content, size=size))
            elif tp == "strong_open":
                bold += 1
            elif tp == "strong_close":
                bold = max(bold - 1, 0)
            elif tp == "em_open":
                italic += 1
            elif tp == "em_close":
                italic = max(italic - 1, 0)
            elif tp == "s_open":
                strike += 1
            elif tp == "s_close":
                strike = max(strike - 1, 0)
            elif tp == "link_open":
                end = self._closing(children, i, "link_close")
                text = "".join(t.content for t in children[i + 1:end] if t.type in _TEXTUAL)
                runs.append(self._link_run(text, tok.attrs.get("href", ""), size=size))
                i = end
            elif tp in ("softbreak", "hardbreak"):
                runs.append(Run(line_break=True))
            elif tp == "image":
                alt = tok.content or tok.attrs.get("src", "")
                runs.append(self._body_run(f"[Image: {alt}]", size=size, italic=True))
            i += 1
        return merge_runs(runs)

    def _table_from_tokens(self, tokens: list) -> Table | Paragraph:
        size = self.style.table_font_size
        rows: list = []
        row: list | None = None
        in_head = False
        in_cell = False
        for tok in tokens:
            tp = tok.type
            if tp == "thead_open":
                in_head = True
            elif tp == "thead_close":
                in_head = False
            elif tp == "tr_open":
                row = []
            elif tp == "tr_close":
                if row:
                    rows.append((row, in_head))
                row = None
            elif tp in ("th_open", "td_open"):
                in_cell = True
                if row is not None:
                    row.append([])
            elif tp in ("th_close", "td_close"):
                in_cell = False
            elif tp == "inline" and in_cell and row:
                row[-1].extend(self.inline_runs(tok.children, size=size))
        if not rows:
            logger.warning("Table tokens contained no rows; emitting placeholder")
            return self.paragraph([])
        header = rows[0][0] if rows[0][1] else []
        body = [cells for cells, is_head in (rows[1:] if header else rows)]
        return self.table(header, body)

    def _item_content(self, item: list) -> tuple:
        """Runs of a list item's own paragraphs, plus any nested list ranges."""
        runs: list = []
        nested: list = []
        j = 0
        while j < len(item):
            tok = item[j]
            if tok.type in _LIST_OPENS:
                end = self._closing(item, j, tok.type.replace("_open", "_close"))
                nested.append(item[j:end + 1])
                j = end + 1
                continue
            if tok.type == "inline":
                if runs:
                    runs.append(Run(line_break=True))
                runs.extend(self.inline_runs(tok.children))
            j += 1
        return runs, nested

    def _list_from_tokens(self, tokens: list) -> list:
        """Flat list paragraphs; nested lists follow their parent item."""
        opener = tokens[0]
        ordered = opener.type == "ordered_list_open"
        number = int(opener.attrs.get("start", 1)) if ordered else 1
        out: list = []
        i = 1
        while i < len(tokens) - 1:
            if tokens[i].type != "list_item_open":
                i += 1
                continue
            end = self._closing(tokens, i, "list_item_close")
            runs, nested = self._item_content(tokens[i + 1:end])
            out.append(self.list_item(f"{number}. " if ordered else "• ", runs))
            number += 1
            for sub in nested:
                out.extend(self._list_from_tokens(sub))
            i = end + 1
        return out

    def _blockquote_from_tokens(self, tokens: list) -> list:
        out: list = []
        for tok in tokens:
            if tok.type == "inline":
                out.append(self.blockquote(self.inline_runs(tok.children)))
            elif tok.type == "fence":
                out.extend(self._code_or_diagram(tok.content, tok.info.split(None, 1)[0] if tok.info else ""))
            elif tok.type == "code_block":
                out.extend(self._code_or_diagram(tok.content, ""))
        return out

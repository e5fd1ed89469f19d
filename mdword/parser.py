"""
Local Markdown parser.

mistune produces a nested AST; the converter walks a flat token stream in
which every container is bracketed by balanced ``*_open`` / ``*_close``
tokens and every run of inline content is a single ``inline`` token holding
its own child tokens:

    heading_open(h1)  inline("Title")  heading_close(h1)
    paragraph_open    inline(text, strong_open, text, strong_close, ...)
    table_open thead_open tr_open th_open inline th_close ... table_close
    fence(info="python")   code_block   hr   html_block

``render`` produces preview HTML from the same Markdown.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import emoji
import mistune
from mistune.util import escape as escape_html
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from mdword.diagram import is_ascii_diagram

logger = logging.getLogger(__name__)

_PLUGINS = ["table", "strikethrough", "url"]

_FRONT_MATTER_RE = re.compile(r"^---\s*\n.*?\n---\s*\n", re.DOTALL)

EMOJI_PATTERN = r":[a-z0-9_+\-]+:"

_PLAIN_LANGUAGES = ("", "text", "plaintext")


class UnbalancedTokensError(ValueError):
    """No matching closer exists for an opening token."""


@dataclass
class Token:
    type: str
    tag: str = ""
    nesting: int = 0
    level: int = 0
    content: str = ""
    info: str = ""
    markup: str = ""
    attrs: dict = field(default_factory=dict)
    children: list | None = None
    hidden: bool = False


def strip_front_matter(text: str) -> str:
    return _FRONT_MATTER_RE.sub("", text, count=1)


# ---------------------------------------------------------------------------
# Emoji shortcodes (mistune inline plugin)
# ---------------------------------------------------------------------------
def resolve_shortcode(shortcode: str) -> str | None:
    """The emoji for a GitHub-style ``:name:`` shortcode, or None if unknown."""
    char = emoji.emojize(shortcode, language="alias")
    return None if char == shortcode else char


def _parse_emoji(inline, m, state):
    shortcode = m.group(0)
    char = resolve_shortcode(shortcode)
    if char is None:
        return None  # not a known shortcode; mistune treats it as text
    state.append_token({"type": "emoji", "raw": char, "attrs": {"name": shortcode.strip(":")}})
    return m.end()


def emoji_plugin(md):
    md.inline.register("emoji", EMOJI_PATTERN, _parse_emoji, before="link")


# ---------------------------------------------------------------------------
# Preview HTML
# ---------------------------------------------------------------------------
_TAG_RE = re.compile(r"<[^>]+>")
_SLUG_RE = re.compile(r"[^\w]+")


def slugify(text: str) -> str:
    return _SLUG_RE.sub("-", text.lower())


_HTML_FORMATTER = HtmlFormatter(nowrap=True)


def _highlight(code: str, lang: str, escaped: str) -> str:
    """Pygments markup for ``code``, or ``escaped`` when the language is unknown."""
    try:
        lexer = get_lexer_by_name(lang)
    except ClassNotFound:
        logger.debug("No lexer for %r; leaving code unhighlighted", lang)
        return escaped
    return highlight(code, lexer, _HTML_FORMATTER)


class PreviewRenderer(mistune.HTMLRenderer):
    """HTML renderer with heading anchors and diagram-aware code blocks."""

    def heading(self, text, level, **attrs):
        slug = slugify(_TAG_RE.sub("", text))
        return f'<h{level} id="{slug}">{text}</h{level}>\n'

    def block_code(self, code, info=None):
        lang = (info or "").strip().split(None, 1)[0] if info and info.strip() else ""
        body = escape_html(code)
        if lang.lower() in _PLAIN_LANGUAGES and is_ascii_diagram(code):
            return f'<pre class="ascii-diagram"><code>{body}</code></pre>\n'
        if lang and lang.lower() not in _PLAIN_LANGUAGES:
            body = _highlight(code, lang, body)
        if lang:
            return (f'<pre class="code-block" data-language="{escape_html(lang)}">'
                    f'<code class="language-{escape_html(lang)}">{body}</code></pre>\n')
        return f'<pre class="code-block"><code>{body}</code></pre>\n'

    def emoji(self, text, name=None):
        return text


def _create_html_markdown():
    md = mistune.create_markdown(renderer=PreviewRenderer(escape=False), plugins=_PLUGINS)
    md.use(emoji_plugin)
    return md


def _create_ast_markdown():
    md = mistune.create_markdown(renderer="ast", plugins=_PLUGINS)
    md.use(emoji_plugin)
    return md


_html_md = _create_html_markdown()
_ast_md = _create_ast_markdown()


def render(markdown) -> str:
    """Render Markdown to preview HTML; empty or non-string input gives ''."""
    if not markdown or not isinstance(markdown, str):
        return ""
    return _html_md(markdown)


# ---------------------------------------------------------------------------
# AST -> flat token stream
# ---------------------------------------------------------------------------
def tokenize(markdown) -> list:
    """Parse Markdown into a flat, balanced token list; [] for empty input."""
    if not markdown or not isinstance(markdown, str):
        return []
    ast = _ast_md(markdown)
    tokens: list = []
    _flatten_blocks(ast, tokens, 0)
    return tokens


def _inline_source(children) -> str:
    """Approximate Markdown source for inline nodes (mirrors ``inline.content``)."""
    parts = []
    for node in children or ():
        tp = node.get("type", "")
        if tp == "strong":
            parts.append(f"**{_inline_source(node.get('children'))}**")
        elif tp == "emphasis":
            parts.append(f"*{_inline_source(node.get('children'))}*")
        elif tp == "strikethrough":
            parts.append(f"~~{_inline_source(node.get('children'))}~~")
        elif tp == "codespan":
            parts.append(f"`{node.get('raw', '')}`")
        elif tp == "link":
            url = (node.get("attrs") or {}).get("url", "")
            parts.append(f"[{_inline_source(node.get('children'))}]({url})")
        elif tp == "image":
            url = (node.get("attrs") or {}).get("url", "")
            parts.append(f"![{_inline_source(node.get('children'))}]({url})")
        elif tp in ("softbreak", "linebreak"):
            parts.append("\n")
        elif "raw" in node:
            parts.append(node["raw"])
        else:
            parts.append(_inline_source(node.get("children")))
    return "".join(parts)


def _inline_token(children, level: int) -> Token:
    inline_children: list = []
    _flatten_inline(children or [], inline_children)
    return Token("inline", level=level, content=_inline_source(children), children=inline_children)


def _pair(out: list, name: str, tag: str, level: int, **kwargs):
    out.append(Token(f"{name}_open", tag=tag, nesting=1, level=level, **kwargs))


def _close(out: list, name: str, tag: str, level: int, **kwargs):
    out.append(Token(f"{name}_close", tag=tag, nesting=-1, level=level, **kwargs))


def _flatten_blocks(nodes, out: list, level: int):
    for node in nodes:
        tp = node.get("type", "")
        attrs = node.get("attrs") or {}

        if tp == "heading":
            tag = f"h{attrs.get('level', 1)}"
            _pair(out, "heading", tag, level)
            out.append(_inline_token(node.get("children"), level + 1))
            _close(out, "heading", tag, level)

        elif tp in ("paragraph", "block_text"):
            hidden = tp == "block_text"
            _pair(out, "paragraph", "p", level, hidden=hidden)
            out.append(_inline_token(node.get("children"), level + 1))
            _close(out, "paragraph", "p", level, hidden=hidden)

        elif tp == "block_code":
            raw = node.get("raw", "")
            if node.get("style") == "indent":
                out.append(Token("code_block", tag="code", level=level, content=raw))
            else:
                out.append(Token("fence", tag="code", level=level, content=raw,
                                 info=(attrs.get("info") or "").strip(),
                                 markup=node.get("marker", "```")))

        elif tp == "thematic_break":
            out.append(Token("hr", tag="hr", level=level))

        elif tp == "block_quote":
            _pair(out, "blockquote", "blockquote", level)
            _flatten_blocks(node.get("children", []), out, level + 1)
            _close(out, "blockquote", "blockquote", level)

        elif tp == "list":
            ordered = bool(attrs.get("ordered"))
            name, tag = ("ordered_list", "ol") if ordered else ("bullet_list", "ul")
            list_attrs = {"start": attrs.get("start", 1) or 1} if ordered else {}
            _pair(out, name, tag, level, attrs=list_attrs)
            for item in node.get("children", []):
                _pair(out, "list_item", "li", level + 1)
                _flatten_blocks(item.get("children", []), out, level + 2)
                _close(out, "list_item", "li", level + 1)
            _close(out, name, tag, level)

        elif tp == "table":
            _flatten_table(node, out, level)

        elif tp == "block_html":
            out.append(Token("html_block", level=level, content=node.get("raw", "")))

        elif tp == "blank_line":
            continue

        elif node.get("children"):
            logger.debug("Flattening children of unhandled block %r", tp)
            _flatten_blocks(node["children"], out, level)


def _flatten_table(node, out: list, level: int):
    _pair(out, "table", "table", level)
    for section in node.get("children", []):
        stype = section.get("type", "")
        if stype == "table_head":
            _pair(out, "thead", "thead", level + 1)
            # mistune puts header cells directly under table_head
            _flatten_row(section.get("children", []), "th", out, level + 2)
            _close(out, "thead", "thead", level + 1)
        elif stype == "table_body":
            _pair(out, "tbody", "tbody", level + 1)
            for row in section.get("children", []):
                _flatten_row(row.get("children", []), "td", out, level + 2)
            _close(out, "tbody", "tbody", level + 1)
    _close(out, "table", "table", level)


def _flatten_row(cells, cell_tag: str, out: list, level: int):
    _pair(out, "tr", "tr", level)
    for cell in cells:
        align = (cell.get("attrs") or {}).get("align")
        cell_attrs = {"align": align} if align else {}
        _pair(out, cell_tag, cell_tag, level + 1, attrs=cell_attrs)
        out.append(_inline_token(cell.get("children"), level + 2))
        _close(out, cell_tag, cell_tag, level + 1)
    _close(out, "tr", "tr", level)


_INLINE_PAIRS = {"strong": "strong", "emphasis": "em", "strikethrough": "s"}


def _flatten_inline(nodes, out: list):
    for node in nodes:
        tp = node.get("type", "")
        attrs = node.get("attrs") or {}

        if tp == "text":
            out.append(Token("text", content=node.get("raw", "")))
        elif tp in _INLINE_PAIRS:
            name = _INLINE_PAIRS[tp]
            out.append(Token(f"{name}_open", nesting=1))
            _flatten_inline(node.get("children", []), out)
            out.append(Token(f"{name}_close", nesting=-1))
        elif tp == "codespan":
            out.append(Token("code_inline", content=node.get("raw", "")))
        elif tp == "link":
            out.append(Token("link_open", nesting=1, attrs={"href": attrs.get("url", "")}))
            _flatten_inline(node.get("children", []), out)
            out.append(Token("link_close", nesting=-1))
        elif tp == "image":
            out.append(Token("image", content=_inline_source(node.get("children")),
                             attrs={"src": attrs.get("url", "")}))
        elif tp == "emoji":
            out.append(Token("emoji", content=node.get("raw", ""), markup=attrs.get("name", "")))
        elif tp == "softbreak":
            out.append(Token("softbreak"))
        elif tp == "linebreak":
            out.append(Token("hardbreak"))
        elif tp == "inline_html":
            out.append(Token("html_inline", content=node.get("raw", "")))
        elif "raw" in node:
            out.append(Token("text", content=node["raw"]))
        elif node.get("children"):
            _flatten_inline(node["children"], out)


# ---------------------------------------------------------------------------
# Balanced range helpers
# ---------------------------------------------------------------------------
def find_closing_token(tokens: list, start: int, close_type: str) -> int:
    """Index of the closer matching the opener at ``start``.

    Nested pairs of the same family are skipped by depth counting. Raises
    UnbalancedTokensError when the stream ends before the depth returns to 0.
    """
    open_type = close_type.replace("_close", "_open")
    depth = 1
    for i in range(start + 1, len(tokens)):
        if tokens[i].type == open_type:
            depth += 1
        elif tokens[i].type == close_type:
            depth -= 1
            if depth == 0:
                return i
    raise UnbalancedTokensError(f"No {close_type} for {open_type} at index {start}")

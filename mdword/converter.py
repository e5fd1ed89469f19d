"""
Conversion entry points.

``convert`` picks a parsing path once per document:

    AI enabled and available -> AI parse -> render AI elements
                                  | unavailable / raised
                                  v
    otherwise ---------------> local tokenize -> render tokens

and both paths end in DOCX assembly. AI trouble is logged and never
surfaces to the caller; only empty input or an assembly failure raises
ConversionError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping

from mdword import parser
from mdword.ai import AIBackend, AIParsed, analyze_diagram, parse_document
from mdword.assemble import assemble
from mdword.renderer import DocumentRenderer
from mdword.style import StyleConfig, StyleError, parse_docx_style, resolve_style, strip_docx_style_comment

logger = logging.getLogger(__name__)

PATH_AI = "ai"
PATH_LOCAL = "local"


class ConversionError(Exception):
    """The document could not be produced."""


@dataclass(frozen=True)
class ConversionReport:
    path: str
    reason: str = ""
    element_count: int = 0


# ---------------------------------------------------------------------------
# Process-wide AI backend
# ---------------------------------------------------------------------------
_default_backend: AIBackend | None = None


def default_backend() -> AIBackend:
    """The process-wide backend, configured from the environment on first use."""
    global _default_backend
    if _default_backend is None:
        _default_backend = AIBackend.from_env()
    return _default_backend


def configure_backend(api_key: str | None = None, model: str | None = None,
                      enabled: bool = True, **kwargs) -> AIBackend:
    """Replace the process-wide backend."""
    global _default_backend
    backend = AIBackend.from_env(api_key, model, **kwargs)
    if not enabled:
        backend.disable()
    _default_backend = backend
    return backend


def is_ai_available(backend: AIBackend | None = None) -> bool:
    return (backend or default_backend()).is_available()


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------
def render_preview(markdown) -> str:
    """HTML preview of a Markdown document."""
    if not isinstance(markdown, str):
        return ""
    return parser.render(strip_docx_style_comment(parser.strip_front_matter(markdown)))


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------
def render_elements(content: str, style: StyleConfig, backend: AIBackend | None) -> tuple:
    """Output elements for already-cleaned Markdown, plus a ConversionReport.

    ``backend=None`` forces the local path and the heuristic diagram analyzer.
    """
    renderer = DocumentRenderer(style, analyze_diagram=lambda text: analyze_diagram(text, backend))

    if backend is None:
        reason = "AI disabled"
    elif not backend.is_available():
        reason = "AI backend unavailable"
    else:
        try:
            result = parse_document(content, backend)
            if isinstance(result, AIParsed):
                elements = renderer.render_ai(result.elements)
                logger.info("Conversion path: AI (%d elements)", len(elements))
                return elements, ConversionReport(PATH_AI, "", len(elements))
            reason = result.reason
        except Exception as e:
            logger.exception("AI conversion path failed")
            reason = f"{type(e).__name__}: {e}"

    elements = renderer.render_tokens(parser.tokenize(content))
    logger.info("Conversion path: local (%s; %d elements)", reason, len(elements))
    return elements, ConversionReport(PATH_LOCAL, reason, len(elements))


def convert_with_report(markdown: str, use_ai: bool = True, *,
                        backend: AIBackend | None = None,
                        base_style: Mapping[str, str] | None = None,
                        style_overrides: Mapping[str, str] | None = None,
                        pagination: bool = True) -> tuple:
    """Convert Markdown to ``(docx_bytes, ConversionReport)``.

    ``base_style`` holds style-file settings; ``style_overrides`` holds CLI
    flags and beats the document's inline ``docx-style`` comment.
    """
    if not isinstance(markdown, str) or not markdown.strip():
        raise ConversionError("No Markdown content supplied")

    content = parser.strip_front_matter(markdown)
    inline_style = parse_docx_style(content)
    content = strip_docx_style_comment(content)
    try:
        style = resolve_style(base_style, inline_style, style_overrides)
    except StyleError as e:
        raise ConversionError(f"Invalid style: {e}") from e

    if use_ai:
        backend = backend if backend is not None else default_backend()
    else:
        backend = None

    elements, report = render_elements(content, style, backend)
    try:
        data = assemble(elements, style, pagination=pagination)
    except Exception as e:
        raise ConversionError(f"Document assembly failed: {e}") from e
    return data, report


def convert(markdown: str, use_ai: bool = True, **kwargs) -> bytes:
    """Convert Markdown text to .docx bytes."""
    data, _ = convert_with_report(markdown, use_ai, **kwargs)
    return data

"""Markdown to DOCX conversion with optional AI-assisted structuring."""

from mdword.converter import (
    ConversionError,
    ConversionReport,
    configure_backend,
    convert,
    convert_with_report,
    default_backend,
    is_ai_available,
    render_preview,
)

__version__ = "1.0.0"

__all__ = [
    "ConversionError",
    "ConversionReport",
    "configure_backend",
    "convert",
    "convert_with_report",
    "default_backend",
    "is_ai_available",
    "render_preview",
]

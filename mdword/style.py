"""
Style configuration shared by every renderer.

A StyleConfig is built once from layered ``key: value`` settings and never
mutated afterwards:

    built-in defaults < style file < inline ``docx-style`` comment < CLI flags

The inline comment form lets a Markdown file carry its own look:

    <!-- docx-style
    font_body: Georgia
    color_heading: 1A3D5C
    -->
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Mapping

_STYLE_DEFAULTS = {
    "font_body": "Calibri",
    "font_heading": "Calibri",
    "font_code": "Consolas",
    "font_size": "11",
    "code_font_size": "10",
    "table_font_size": "10",
    "heading_sizes": "28,24,20,18,16,14",
    "color_heading": "1A1A1A",
    "color_body": "333333",
    "color_code": "24292E",
    "color_link": "0366D6",
    "code_bg": "F6F8FA",
    "code_label_bg": "D0D7DE",
    "code_label_text": "57606A",
    "table_header_bg": "F6F8FA",
    "table_header_text": "24292F",
    "table_border": "D0D7DE",
    "table_border_size": "4",
    "table_cell_margin": "100",
    "quote_border": "D0D7DE",
    "quote_text": "6A737D",
    "rule_color": "D0D7DE",
    "diagram_bg": "E8F4FD",
    "diagram_border": "0366D6",
    "diagram_title_text": "FFFFFF",
    "diagram_description_text": "555555",
    "footer_text": "8C959F",
}

STYLE_KEYS = tuple(_STYLE_DEFAULTS)

_DOCX_STYLE_RE = re.compile(r"<!--\s*docx-style\s*\n(.*?)-->", re.DOTALL)
_HEX_RE = re.compile(r"^#?[0-9A-Fa-f]{6}$")


class StyleError(ValueError):
    """Raised when a style setting cannot be interpreted."""


@dataclass(frozen=True)
class StyleConfig:
    """Fonts, sizes (pt) and colors (hex, no '#') for every semantic role."""

    font_body: str
    font_heading: str
    font_code: str
    font_size: float
    code_font_size: float
    table_font_size: float
    heading_sizes: tuple
    color_heading: str
    color_body: str
    color_code: str
    color_link: str
    code_bg: str
    code_label_bg: str
    code_label_text: str
    table_header_bg: str
    table_header_text: str
    table_border: str
    table_border_size: int
    table_cell_margin: int
    quote_border: str
    quote_text: str
    rule_color: str
    diagram_bg: str
    diagram_border: str
    diagram_title_text: str
    diagram_description_text: str
    footer_text: str

    def heading_size(self, level: int) -> float:
        level = min(max(level, 1), 6)
        return self.heading_sizes[level - 1]

    def with_overrides(self, overrides: Mapping[str, str] | None) -> "StyleConfig":
        """Return a new config with ``overrides`` applied on top of this one."""
        if not overrides:
            return self
        return replace(self, **_convert(overrides))


def _color(key: str, value: str) -> str:
    if not _HEX_RE.match(value):
        raise StyleError(f"{key}: expected a 6-digit hex color, got {value!r}")
    return value.lstrip("#").upper()


def _convert(settings: Mapping[str, str]) -> dict:
    """Turn raw string settings into typed StyleConfig field values."""
    out = {}
    for key, value in settings.items():
        if key not in _STYLE_DEFAULTS or value is None:
            continue
        value = str(value).strip()
        try:
            if key.startswith(("font_size", "code_font", "table_font")):
                out[key] = float(value)
            elif key in ("table_border_size", "table_cell_margin"):
                out[key] = int(value)
            elif key == "heading_sizes":
                sizes = tuple(float(v) for v in value.split(","))
                if len(sizes) != 6:
                    raise StyleError(f"heading_sizes: expected 6 values, got {len(sizes)}")
                out[key] = sizes
            elif key.startswith("font_"):
                out[key] = value
            else:
                out[key] = _color(key, value)
        except ValueError as e:
            if isinstance(e, StyleError):
                raise
            raise StyleError(f"{key}: invalid value {value!r}") from e
    return out


def build_style(overrides: Mapping[str, str] | None = None) -> StyleConfig:
    """Build a StyleConfig from defaults plus ``overrides``."""
    cfg = dict(_STYLE_DEFAULTS)
    if overrides:
        cfg.update({k: v for k, v in overrides.items() if k in _STYLE_DEFAULTS and v is not None})
    return StyleConfig(**_convert(cfg))


DEFAULT_STYLE = build_style()


def _parse_settings(text: str) -> dict:
    config = {}
    for line in text.strip().split("\n"):
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        if ":" in line:
            key, value = line.split(":", 1)
            key = key.strip().lower()
            value = value.strip().strip('"').strip("'")
            if key in _STYLE_DEFAULTS:
                config[key] = value
    return config


def parse_docx_style(text: str) -> dict:
    """Extract docx-style configuration from an HTML comment in markdown."""
    match = _DOCX_STYLE_RE.search(text)
    if not match:
        return {}
    return _parse_settings(match.group(1))


def strip_docx_style_comment(text: str) -> str:
    """Remove the docx-style comment from markdown content."""
    return _DOCX_STYLE_RE.sub("", text)


def parse_style_file(path: str | Path) -> dict:
    """Parse a style configuration file (same key: value format)."""
    return _parse_settings(Path(path).read_text(encoding="utf-8"))


def resolve_style(base: Mapping[str, str] | None = None,
                  inline: Mapping[str, str] | None = None,
                  overrides: Mapping[str, str] | None = None) -> StyleConfig:
    """Merge the setting layers (file < inline < CLI) over the defaults."""
    merged: dict = {}
    for layer in (base, inline, overrides):
        if layer:
            merged.update({k: v for k, v in layer.items() if v is not None})
    if not merged:
        return DEFAULT_STYLE
    return build_style(merged)

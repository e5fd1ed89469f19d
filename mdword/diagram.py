"""ASCII diagram detection and the heuristic diagram analyzer."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# Box-drawing lines/corners/junctions, double-line variants, arrows, markers.
DIAGRAM_GLYPHS = "─│┌┐└┘├┤┬┴┼═║╔╗╚╝╠╣╦╩╬▼▲◄►●○■□▪▫"

DIAGRAM_TYPES = ("flowchart", "architecture", "hierarchy", "table", "sequence", "other")

MAX_FALLBACK_COMPONENTS = 20

_GLYPH_RE = re.compile("[" + re.escape(DIAGRAM_GLYPHS) + "]")
_STRIP_GLYPHS_RE = re.compile("[" + re.escape(DIAGRAM_GLYPHS) + r"\[\]]")
_STRIP_FRAME_RE = re.compile(r"[-|+*]")


def is_ascii_diagram(text) -> bool:
    """Return True if ``text`` contains at least one diagram glyph."""
    if not isinstance(text, str):
        return False
    return _GLYPH_RE.search(text) is not None


@dataclass(frozen=True)
class Component:
    name: str
    description: str = ""

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description}


@dataclass(frozen=True)
class Connection:
    """A directed edge; serialized with the wire names ``from``/``to``."""

    source: str
    target: str
    label: str = ""

    def to_dict(self) -> dict:
        data = {"from": self.source, "to": self.target}
        if self.label:
            data["label"] = self.label
        return data


def decode_components(raw) -> tuple:
    components = []
    for item in raw or ():
        if isinstance(item, str):
            if item.strip():
                components.append(Component(item.strip()))
        elif isinstance(item, dict):
            name = str(item.get("name") or "").strip()
            if name:
                components.append(Component(name, str(item.get("description") or "")))
    return tuple(components)


def decode_connections(raw) -> tuple:
    connections = []
    for item in raw or ():
        if not isinstance(item, dict):
            continue
        source = str(item.get("from") or "").strip()
        target = str(item.get("to") or "").strip()
        if source and target:
            connections.append(Connection(source, target, str(item.get("label") or "")))
    return tuple(connections)


@dataclass(frozen=True)
class DiagramAnalysis:
    """Structured description of one diagram, whichever analyzer produced it."""

    success: bool = True
    type: str = "other"
    title: str = ""
    description: str = ""
    components: tuple = field(default_factory=tuple)
    connections: tuple = field(default_factory=tuple)
    summary: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> "DiagramAnalysis":
        kind = str(data.get("type") or "other").lower()
        if kind not in DIAGRAM_TYPES:
            kind = "other"
        return cls(
            success=True,
            type=kind,
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            components=decode_components(data.get("components")),
            connections=decode_connections(data.get("connections")),
            summary=str(data.get("summary") or ""),
        )

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "components": [c.to_dict() for c in self.components],
            "connections": [c.to_dict() for c in self.connections],
            "summary": self.summary,
        }


def extract_fragments(ascii_text: str) -> list:
    """Labeled text left on each line once glyphs and frame characters are removed."""
    fragments = []
    seen = set()
    for line in ascii_text.split("\n"):
        cleaned = _STRIP_FRAME_RE.sub("", _STRIP_GLYPHS_RE.sub("", line)).strip()
        if len(cleaned) <= 2 or cleaned in seen:
            continue
        seen.add(cleaned)
        fragments.append(cleaned)
    return fragments


def fallback_analysis(ascii_text: str) -> DiagramAnalysis:
    """Heuristic analysis used when the AI analyzer is unavailable or fails.

    Connections are always empty: relationships cannot be inferred from the
    text fragments alone.
    """
    fragments = extract_fragments(ascii_text or "")
    return DiagramAnalysis(
        success=True,
        type="architecture",
        title="System Architecture Diagram",
        description="Diagram converted from ASCII representation",
        components=tuple(Component(text) for text in fragments[:MAX_FALLBACK_COMPONENTS]),
        connections=(),
        summary="\n• ".join(fragments),
    )

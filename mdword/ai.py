"""
AI-assisted document structuring and diagram analysis.

The backend is Google's Gemini ``generateContent`` REST endpoint, reached
with ``requests``. Both AI entry points degrade instead of failing:

* ``parse_document`` returns ``AIParsed`` or ``AIUnavailable(reason)``;
  the caller falls back to the local parser on the latter.
* ``analyze_diagram`` always returns a DiagramAnalysis, using the
  heuristic analyzer when the backend is off or keeps failing.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Union

import requests

from mdword.diagram import DIAGRAM_GLYPHS, DiagramAnalysis, fallback_analysis
from mdword.elements import ElementDecodeError, decode_document
from mdword.retry import RetryController, RetryPolicy

logger = logging.getLogger(__name__)

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
DEFAULT_MODEL = "gemini-2.0-flash"
DEFAULT_TIMEOUT = 60

_FENCE_OPEN_RE = re.compile(r"^\s*```[a-zA-Z]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")


class AIBackendError(Exception):
    """A failed backend call. ``status`` is the HTTP status when known."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class AIResponseError(AIBackendError):
    """The backend answered, but not with the JSON we asked for."""


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------
class GeminiClient:
    """Minimal Gemini REST client: one prompt in, reply text out."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL,
                 timeout: float = DEFAULT_TIMEOUT, session: requests.Session | None = None):
        if not api_key:
            raise ValueError("Gemini API key is required")
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.session = session or requests.Session()

    def generate(self, prompt: str) -> str:
        url = GEMINI_URL.format(model=self.model)
        payload = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        try:
            resp = self.session.post(url, params={"key": self.api_key}, json=payload,
                                     timeout=self.timeout)
        except requests.RequestException as e:
            raise AIBackendError(f"Gemini request failed: {e}") from e

        if resp.status_code >= 400:
            raise AIBackendError(f"Gemini API error {resp.status_code}: {resp.text[:500]}",
                                 status=resp.status_code)
        try:
            data = resp.json()
            parts = data["candidates"][0]["content"]["parts"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AIResponseError(f"Unexpected Gemini response shape: {e}") from e
        return "".join(part.get("text", "") for part in parts if isinstance(part, dict))


class AIBackend:
    """The AI capability handed to a conversion: a client plus an on/off switch.

    The switch is read when a call starts; toggling it does not affect calls
    already in flight.
    """

    def __init__(self, client=None, enabled: bool = True,
                 policy: RetryPolicy | None = None, sleep=time.sleep):
        self.client = client
        self.enabled = enabled and client is not None
        self.retry = RetryController(policy, sleep=sleep)

    @classmethod
    def from_env(cls, api_key: str | None = None, model: str | None = None,
                 **kwargs) -> "AIBackend":
        key = api_key or os.environ.get("GEMINI_API_KEY", "")
        if not key:
            logger.warning("Gemini API key not provided; AI parsing disabled")
            return cls(None)
        client = GeminiClient(key, model or os.environ.get("GEMINI_MODEL") or DEFAULT_MODEL)
        logger.info("Gemini backend configured (model %s)", client.model)
        return cls(client, **kwargs)

    def is_available(self) -> bool:
        return self.client is not None and self.enabled

    def enable(self):
        if self.client is not None:
            self.enabled = True
            logger.info("AI backend enabled")

    def disable(self):
        self.enabled = False
        logger.info("AI backend disabled; using local parsing only")


# ---------------------------------------------------------------------------
# Reply decoding
# ---------------------------------------------------------------------------
def strip_code_fences(text: str) -> str:
    """Remove a ```json ... ``` wrapper around a reply, if present."""
    text = text.strip()
    text = _FENCE_OPEN_RE.sub("", text, count=1)
    text = _FENCE_CLOSE_RE.sub("", text, count=1)
    return text.strip()


def decode_reply(text: str):
    try:
        return json.loads(strip_code_fences(text or ""))
    except json.JSONDecodeError as e:
        raise AIResponseError(f"Reply is not valid JSON: {e}") from e


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------
DOCUMENT_PROMPT = """You are a document parser. Convert the Markdown document below into structured JSON for building a Word document.

MARKDOWN DOCUMENT:
```markdown
{markdown}
```

Return one JSON object of this shape:
{{
  "title": "document title (first h1, or inferred)",
  "elements": [
    {{"type": "heading", "level": 1, "text": "heading text, emoji kept"}},
    {{"type": "paragraph", "content": [
      {{"text": "plain"}},
      {{"text": "bold", "bold": true}},
      {{"text": "italic", "italic": true}},
      {{"text": "struck", "strikethrough": true}},
      {{"text": "code", "code": true}},
      {{"text": "link text", "link": "https://url"}}
    ]}},
    {{"type": "code", "language": "python", "content": "source with all whitespace and newlines"}},
    {{"type": "table", "headers": ["Col1", "Col2"], "rows": [["a", "b"], ["c", "d"]]}},
    {{"type": "list", "ordered": false, "items": ["item 1", "item 2"]}},
    {{"type": "blockquote", "text": "quoted text"}},
    {{"type": "diagram", "title": "what the diagram shows", "description": "its purpose",
      "components": [{{"name": "Component", "description": "what it does"}}],
      "connections": [{{"from": "Source", "to": "Target", "label": "relationship"}}]}},
    {{"type": "hr"}}
  ]
}}

RULES:
1. ASCII diagrams (box-drawing characters such as {glyphs}, or boxes drawn with +--+) MUST be "diagram" elements, never "code".
2. For diagrams, list every box as a component with a description, and every arrow or line between boxes as a connection.
3. Keep code blocks verbatim, with their language tag.
4. Keep inline formatting (bold, italic, strikethrough, inline code, links) inside paragraph content.
5. Keep emoji in headings and text.
6. Capture every table row and column.
7. Horizontal rules (---) become "hr" elements.
8. Numbered lists have "ordered": true.

Respond with ONLY the JSON object: no code fences, no commentary."""

DIAGRAM_PROMPT = """Analyze this ASCII diagram and describe it in structured form for a Word document.

ASCII DIAGRAM:
```
{diagram}
```

Respond with a JSON object containing:
1. "type": one of "flowchart", "architecture", "hierarchy", "table", "sequence", "other"
2. "title": a short title
3. "description": a brief description of what the diagram shows
4. "components": array of {{"name", "description"}} for each box or component
5. "connections": array of {{"from", "to", "label"}} for each connection
6. "summary": a readable text summary of the diagram's meaning

Respond with ONLY valid JSON, no code fences."""


# ---------------------------------------------------------------------------
# Document parsing
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class AIParsed:
    elements: list
    title: str = ""


@dataclass(frozen=True)
class AIUnavailable:
    """Why the AI path produced nothing usable."""

    reason: str


AIParseResult = Union[AIParsed, AIUnavailable]


def _describe(error: BaseException | None) -> str:
    if error is None:
        return "unknown error"
    return f"{type(error).__name__}: {str(error)[:200]}"


def parse_document(markdown: str, backend: AIBackend) -> AIParseResult:
    """Structure a whole document with the AI backend; never raises."""
    if not backend.is_available():
        return AIUnavailable("AI backend unavailable")

    prompt = DOCUMENT_PROMPT.format(markdown=markdown, glyphs=DIAGRAM_GLYPHS[:11])

    def call() -> AIParsed:
        logger.info("Sending document to Gemini for parsing (%d chars)", len(markdown))
        payload = decode_reply(backend.client.generate(prompt))
        try:
            title, elements = decode_document(payload)
        except ElementDecodeError as e:
            raise AIResponseError(str(e)) from e
        return AIParsed(elements=elements, title=title)

    result = backend.retry.run(call, lambda error: AIUnavailable(_describe(error)),
                               label="Document parse")
    if isinstance(result, AIParsed):
        if not result.elements:
            return AIUnavailable("AI reply contained no elements")
        logger.info("Gemini parsed document %r into %d elements", result.title, len(result.elements))
    else:
        logger.info("Falling back to local parsing: %s", result.reason)
    return result


# ---------------------------------------------------------------------------
# Diagram analysis
# ---------------------------------------------------------------------------
def analyze_diagram(ascii_text: str, backend: AIBackend | None) -> DiagramAnalysis:
    """Describe one ASCII diagram; never raises."""
    if backend is None or not backend.is_available():
        return fallback_analysis(ascii_text)

    prompt = DIAGRAM_PROMPT.format(diagram=ascii_text)

    def call() -> DiagramAnalysis:
        payload = decode_reply(backend.client.generate(prompt))
        if not isinstance(payload, dict):
            raise AIResponseError("Diagram reply is not a JSON object")
        return DiagramAnalysis.from_dict(payload)

    def fallback(error):
        logger.warning("Diagram analysis failed, using heuristic analyzer: %s", _describe(error))
        return fallback_analysis(ascii_text)

    return backend.retry.run(call, fallback, label="Diagram analysis")

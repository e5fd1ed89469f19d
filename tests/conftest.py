import io
import json
import zipfile

import pytest

from mdword.ai import AIBackend


class FakeClient:
    """Scripted stand-in for GeminiClient.

    Each ``generate`` call pops the next reply; exceptions are raised,
    anything else is returned (dicts as JSON text).
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts = []

    def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise AssertionError("FakeClient ran out of scripted replies")
        reply = self.replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, (dict, list)):
            return json.dumps(reply)
        return reply

    @property
    def calls(self) -> int:
        return len(self.prompts)


class RecordingSleep:
    def __init__(self):
        self.delays = []

    def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def no_sleep():
    return RecordingSleep()


@pytest.fixture
def make_backend(no_sleep):
    def factory(*replies):
        return AIBackend(FakeClient(*replies), sleep=no_sleep)
    return factory


def get_docx_text(data: bytes) -> str:
    """All paragraph and table-cell text of a .docx given as bytes."""
    from docx import Document
    doc = Document(io.BytesIO(data))
    parts = [p.text for p in doc.paragraphs]
    for tbl in doc.tables:
        for row in tbl.rows:
            for cell in row.cells:
                parts.append(cell.text)
    return "\n".join(parts)


def get_docx_xml(data: bytes, part: str = "word/document.xml") -> str:
    with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
        return zf.read(part).decode("utf-8")

#!/usr/bin/env python3
"""
End-to-end test suite for the mdword command line converter.

Generates synthetic Markdown, runs the CLI as a subprocess with the AI
backend switched off, and validates the produced DOCX programmatically.
Exits non-zero when any check fails.

Usage:
    python tests/run_tests.py                     # Run all tests
    python tests/run_tests.py --verbose           # Verbose output
    python tests/run_tests.py --module A          # Only conversion tests
    python tests/run_tests.py --module A,C        # Multiple modules
    python tests/run_tests.py --keep-artifacts    # Keep generated files for inspection
"""

from __future__ import annotations

import argparse
import os
import shutil
import subprocess
import sys
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

SCRIPT_DIR = Path(__file__).resolve().parent          # tests/
ROOT_DIR = SCRIPT_DIR.parent                           # repository root

# ---------------------------------------------------------------------------
# Synthetic Markdown content
# ---------------------------------------------------------------------------

COMPREHENSIVE_MD = r"""---
title: "Test Document"
tags: [test]
---

<!-- docx-style
font_size: 11
color_heading: 1A3D5C
table_header_bg: 4BACC6
-->

# Test Document Title

## Section 1: Text Formatting

**bold**, *italic*, ~~strikethrough~~, `inline code` :rocket:

Link to [Example](https://example.com).

- Level 1 A
- Level 1 B
  - Level 2 B.1
- Level 1 C

1. First
2. Second

> Blockquote single line.

---

## Section 2: Tables

| Header A | Header B | Header C |
|----------|----------|----------|
| Row 1 A  | Row 1 B  | Row 1 C  |
| Row 2 A  | Row 2 B  | Row 2 C  |

## Section 3: Code Blocks

```python
def hello():

    return "world"
```

## Section 4: Diagram

```
┌──────────────┐      ┌──────────────┐
│ Web Frontend │ ───► │ API Gateway  │
└──────────────┘      └──────────────┘
```

**End of document.**
"""

MINIMAL_MD = """# Hello

Simple paragraph.

| A | B |
|---|---|
| 1 | 2 |
"""

# ---------------------------------------------------------------------------
# Test infrastructure
# ---------------------------------------------------------------------------


@dataclass
class TestResult:
    name: str
    status: str  # PASS or FAIL
    error: str = ""
    stdout: str = ""
    stderr: str = ""


def _cli_env():
    """Environment for the CLI: UTF-8 output, no AI credentials."""
    env = os.environ.copy()
    env["PYTHONIOENCODING"] = "utf-8"
    env.pop("GEMINI_API_KEY", None)
    env["PYTHONPATH"] = str(ROOT_DIR) + os.pathsep + env.get("PYTHONPATH", "")
    return env


def run_cli(args: list, timeout: int = 120) -> subprocess.CompletedProcess:
    """Run the mdword CLI as a subprocess."""
    cmd = [sys.executable, "-m", "mdword.cli"] + [str(a) for a in args]
    return subprocess.run(cmd, capture_output=True, text=True, timeout=timeout,
                          cwd=str(ROOT_DIR), env=_cli_env())


def get_docx_text(path: Path) -> str:
    """Paragraph and table-cell text of a DOCX, via python-docx."""
    from docx import Document
    doc = Document(str(path))
    parts = [p.text for p in doc.paragraphs]
    for tbl in doc.tables:
        for row in tbl.rows:
            for cell in row.cells:
                parts.append(cell.text)
    return "\n".join(parts)


def get_docx_xml(path: Path, part: str = "word/document.xml") -> str:
    with zipfile.ZipFile(path, "r") as zf:
        return zf.read(part).decode("utf-8")


def has_docx_part(path: Path, part: str) -> bool:
    with zipfile.ZipFile(path, "r") as zf:
        return part in zf.namelist()


class ArtifactDir:
    """Scratch directory holding the generated Markdown and DOCX files."""

    def __init__(self, base: Path):
        self.base = base

    def path(self, name: str) -> Path:
        return self.base / name

    def write_text(self, name: str, content: str) -> Path:
        p = self.path(name)
        p.write_text(content, encoding="utf-8")
        return p


def _convert_md(art: ArtifactDir, content: str, out_name: str,
                extra_args: list | None = None) -> tuple[subprocess.CompletedProcess, Path]:
    """Write ``content`` to disk and convert it with --no-ai."""
    md = art.write_text(out_name.replace(".docx", ".md"), content)
    out = art.path(out_name)
    r = run_cli([md, out, "--no-ai"] + (extra_args or []))
    return r, out


def _failed_run(name: str, r: subprocess.CompletedProcess) -> TestResult:
    return TestResult(name, "FAIL", error=f"Exit code {r.returncode}", stdout=r.stdout, stderr=r.stderr)


# ---------------------------------------------------------------------------
# Module A: Conversion
# ---------------------------------------------------------------------------

def test_basic_conversion(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "basic.docx")
    if r.returncode != 0:
        return _failed_run("test_basic_conversion", r)
    if not out.exists() or not zipfile.is_zipfile(out):
        return TestResult("test_basic_conversion", "FAIL", error="Output is not a valid DOCX ZIP")
    if not has_docx_part(out, "word/document.xml"):
        return TestResult("test_basic_conversion", "FAIL", error="Missing word/document.xml")
    if "Parser: local" not in r.stdout:
        return TestResult("test_basic_conversion", "FAIL", error="Local parser path not reported", stdout=r.stdout)
    return TestResult("test_basic_conversion", "PASS")


def test_yaml_stripped(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "yaml_stripped.docx")
    if r.returncode != 0:
        return _failed_run("test_yaml_stripped", r)
    text = get_docx_text(out)
    if "tags:" in text or "docx-style" in text:
        return TestResult("test_yaml_stripped", "FAIL", error="Front matter or style comment leaked into text")
    return TestResult("test_yaml_stripped", "PASS")


def test_headings_present(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "headings.docx")
    if r.returncode != 0:
        return _failed_run("test_headings_present", r)
    from docx import Document
    doc = Document(str(out))
    headings = [p.text for p in doc.paragraphs if p.style.name.startswith("Heading")]
    expected = ["Test Document Title", "Section 1: Text Formatting", "Section 2: Tables",
                "Section 3: Code Blocks", "Section 4: Diagram"]
    missing = [h for h in expected if h not in headings]
    if missing:
        return TestResult("test_headings_present", "FAIL", error=f"Missing headings: {missing}")
    return TestResult("test_headings_present", "PASS")


def test_text_formatting(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "formatting.docx")
    if r.returncode != 0:
        return _failed_run("test_text_formatting", r)
    xml = get_docx_xml(out)
    checks = {
        "bold (w:b)": "<w:b/>" in xml,
        "italic (w:i)": "<w:i/>" in xml,
        "strike (w:strike)": "<w:strike/>" in xml,
        "emoji": "\U0001F680" in xml,
    }
    failed = [k for k, v in checks.items() if not v]
    if failed:
        return TestResult("test_text_formatting", "FAIL", error=f"Missing formatting: {failed}")
    return TestResult("test_text_formatting", "PASS")


def test_links(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "links.docx")
    if r.returncode != 0:
        return _failed_run("test_links", r)
    if "w:hyperlink" not in get_docx_xml(out):
        return TestResult("test_links", "FAIL", error="No w:hyperlink element in document.xml")
    rels_xml = get_docx_xml(out, "word/_rels/document.xml.rels")
    if "example.com" not in rels_xml:
        return TestResult("test_links", "FAIL", error="Hyperlink relationship target missing")
    return TestResult("test_links", "PASS")


def test_lists_and_quotes(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "lists.docx")
    if r.returncode != 0:
        return _failed_run("test_lists_and_quotes", r)
    text = get_docx_text(out)
    for needle in ("• Level 1 A", "• Level 2 B.1", "1. First", "2. Second", "Blockquote single line."):
        if needle not in text:
            return TestResult("test_lists_and_quotes", "FAIL", error=f"{needle!r} not found")
    if 'w:left w:val="single"' not in get_docx_xml(out):
        return TestResult("test_lists_and_quotes", "FAIL", error="Blockquote left border missing")
    return TestResult("test_lists_and_quotes", "PASS")


def test_tables_present(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "tables.docx")
    if r.returncode != 0:
        return _failed_run("test_tables_present", r)
    from docx import Document
    doc = Document(str(out))
    texts = [[c.text for c in row.cells] for tbl in doc.tables for row in tbl.rows]
    if ["Header A", "Header B", "Header C"] not in texts:
        return TestResult("test_tables_present", "FAIL", error=f"Header row not found in {texts[:3]}")
    if 'w:type="pct"' not in get_docx_xml(out):
        return TestResult("test_tables_present", "FAIL", error="Table width is not percentage based")
    return TestResult("test_tables_present", "PASS")


def test_code_blocks(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "codeblocks.docx")
    if r.returncode != 0:
        return _failed_run("test_code_blocks", r)
    text = get_docx_text(out)
    if "def hello():" not in text or "PYTHON" not in text:
        return TestResult("test_code_blocks", "FAIL", error="Code block or language label not found")
    return TestResult("test_code_blocks", "PASS")


def test_footer_pagination(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, MINIMAL_MD, "footer.docx")
    if r.returncode != 0:
        return _failed_run("test_footer_pagination", r)
    with zipfile.ZipFile(out, "r") as zf:
        footers = [zf.read(n).decode("utf-8") for n in zf.namelist() if "footer" in n and n.endswith(".xml")]
    if not any("PAGE" in f for f in footers):
        return TestResult("test_footer_pagination", "FAIL", error="PAGE field not found in any footer")
    return TestResult("test_footer_pagination", "PASS")


def test_no_pagination(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, MINIMAL_MD, "no_pagination.docx", ["--no-pagination"])
    if r.returncode != 0:
        return _failed_run("test_no_pagination", r)
    with zipfile.ZipFile(out, "r") as zf:
        for name in zf.namelist():
            if "footer" in name and name.endswith(".xml") and "PAGE" in zf.read(name).decode("utf-8"):
                return TestResult("test_no_pagination", "FAIL", error="PAGE field present despite --no-pagination")
    return TestResult("test_no_pagination", "PASS")


# ---------------------------------------------------------------------------
# Module B: Diagrams
# ---------------------------------------------------------------------------

def test_diagram_rendered(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "diagram.docx")
    if r.returncode != 0:
        return _failed_run("test_diagram_rendered", r)
    text = get_docx_text(out)
    if "System Architecture Diagram" not in text:
        return TestResult("test_diagram_rendered", "FAIL", error="Diagram banner not found")
    if "Web Frontend" not in text or "Component" not in text:
        return TestResult("test_diagram_rendered", "FAIL", error="Components table not found")
    if "┌" in text:
        return TestResult("test_diagram_rendered", "FAIL", error="Raw box-drawing glyphs leaked into output")
    return TestResult("test_diagram_rendered", "PASS")


def test_ordinary_code_not_diagram(art: ArtifactDir) -> TestResult:
    md = "# Code\n\n```js\nconst a = b > c ? 1 : 2;\n```\n"
    r, out = _convert_md(art, md, "plain_code.docx")
    if r.returncode != 0:
        return _failed_run("test_ordinary_code_not_diagram", r)
    text = get_docx_text(out)
    if "System Architecture Diagram" in text or "const a = b > c ? 1 : 2;" not in text:
        return TestResult("test_ordinary_code_not_diagram", "FAIL", error="Plain code was treated as a diagram")
    return TestResult("test_ordinary_code_not_diagram", "PASS")


# ---------------------------------------------------------------------------
# Module C: Styling
# ---------------------------------------------------------------------------

def test_inline_style(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, COMPREHENSIVE_MD, "inline_style.docx")
    if r.returncode != 0:
        return _failed_run("test_inline_style", r)
    xml = get_docx_xml(out)
    if "1A3D5C" not in xml or "4BACC6" not in xml:
        return TestResult("test_inline_style", "FAIL", error="Inline style colors not found in output XML")
    return TestResult("test_inline_style", "PASS")


def test_style_file(art: ArtifactDir) -> TestResult:
    style = art.write_text("custom.style", "# house style\nfont_body: Georgia\ncolor_body: 112233\n")
    r, out = _convert_md(art, MINIMAL_MD, "style_file.docx", ["--style", style])
    if r.returncode != 0:
        return _failed_run("test_style_file", r)
    xml = get_docx_xml(out)
    if "Georgia" not in xml or "112233" not in xml:
        return TestResult("test_style_file", "FAIL", error="Style file settings not applied")
    return TestResult("test_style_file", "PASS")


def test_cli_style_override(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, MINIMAL_MD, "cli_override.docx", ["--font-size", "14"])
    if r.returncode != 0:
        return _failed_run("test_cli_style_override", r)
    from docx import Document
    doc = Document(str(out))
    sizes = {run.font.size.pt for p in doc.paragraphs for run in p.runs if run.font.size}
    if 14.0 not in sizes:
        return TestResult("test_cli_style_override", "FAIL", error=f"14pt body runs not found: {sorted(sizes)}")
    return TestResult("test_cli_style_override", "PASS")


def test_bad_style_value(art: ArtifactDir) -> TestResult:
    r, _ = _convert_md(art, MINIMAL_MD, "bad_style.docx", ["--color-body", "not-a-color"])
    if r.returncode == 0:
        return TestResult("test_bad_style_value", "FAIL", error="Invalid color accepted")
    return TestResult("test_bad_style_value", "PASS")


# ---------------------------------------------------------------------------
# Module D: CLI surface
# ---------------------------------------------------------------------------

def test_preview_html(art: ArtifactDir) -> TestResult:
    preview = art.path("preview.html")
    r, _ = _convert_md(art, COMPREHENSIVE_MD, "preview.docx", ["--preview", preview])
    if r.returncode != 0:
        return _failed_run("test_preview_html", r)
    html = preview.read_text(encoding="utf-8")
    checks = {
        "heading id": 'id="section-2-tables"' in html,
        "diagram block": 'class="ascii-diagram"' in html,
        "code block": 'data-language="python"' in html,
    }
    failed = [k for k, v in checks.items() if not v]
    if failed:
        return TestResult("test_preview_html", "FAIL", error=f"Missing in preview: {failed}")
    return TestResult("test_preview_html", "PASS")


def test_missing_input(art: ArtifactDir) -> TestResult:
    r = run_cli([art.path("does_not_exist.md"), art.path("never.docx"), "--no-ai"])
    if r.returncode != 1:
        return TestResult("test_missing_input", "FAIL", error=f"Expected exit 1, got {r.returncode}")
    return TestResult("test_missing_input", "PASS")


def test_empty_input(art: ArtifactDir) -> TestResult:
    r, out = _convert_md(art, "   \n\n", "empty.docx")
    if r.returncode == 0 or out.exists():
        return TestResult("test_empty_input", "FAIL", error="Empty input produced a document")
    return TestResult("test_empty_input", "PASS")


def test_no_api_key_falls_back(art: ArtifactDir) -> TestResult:
    md = art.write_text("ai_fallback.md", MINIMAL_MD)
    out = art.path("ai_fallback.docx")
    r = run_cli([md, out])
    if r.returncode != 0:
        return _failed_run("test_no_api_key_falls_back", r)
    if "Parser: local" not in r.stdout:
        return TestResult("test_no_api_key_falls_back", "FAIL", error="Expected local fallback", stdout=r.stdout)
    return TestResult("test_no_api_key_falls_back", "PASS")


# ---------------------------------------------------------------------------
# Module registry
# ---------------------------------------------------------------------------

MODULES = {
    "A": ("Conversion", [
        test_basic_conversion,
        test_yaml_stripped,
        test_headings_present,
        test_text_formatting,
        test_links,
        test_lists_and_quotes,
        test_tables_present,
        test_code_blocks,
        test_footer_pagination,
        test_no_pagination,
    ]),
    "B": ("Diagrams", [
        test_diagram_rendered,
        test_ordinary_code_not_diagram,
    ]),
    "C": ("Styling", [
        test_inline_style,
        test_style_file,
        test_cli_style_override,
        test_bad_style_value,
    ]),
    "D": ("CLI", [
        test_preview_html,
        test_missing_input,
        test_empty_input,
        test_no_api_key_falls_back,
    ]),
}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------

def run_module(tests: list, art: ArtifactDir, verbose: bool = False) -> list:
    results = []
    for test_fn in tests:
        try:
            result = test_fn(art)
        except Exception as e:
            result = TestResult(test_fn.__name__, "FAIL", error=f"Exception: {e}")
        if verbose or result.status == "FAIL":
            print(f"  {result.name}: {result.status}" + (f" - {result.error}" if result.error else ""))
            if result.status == "FAIL" and verbose:
                for label, text in (("stdout", result.stdout), ("stderr", result.stderr)):
                    if text:
                        print(f"    {label}: {text[:500]}")
        results.append(result)
    return results


def main():
    parser = argparse.ArgumentParser(description="Run the mdword end-to-end test suite")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")
    parser.add_argument("--module", "-m", type=str, default=None,
                        help=f"Comma-separated module codes to run ({','.join(MODULES)})")
    parser.add_argument("--keep-artifacts", action="store_true",
                        help="Keep generated files for inspection")
    args = parser.parse_args()

    codes = [c.strip().upper() for c in args.module.split(",")] if args.module else list(MODULES)
    unknown = [c for c in codes if c not in MODULES]
    if unknown:
        print(f"ERROR: Unknown module(s) {unknown}. Valid: {', '.join(MODULES)}")
        sys.exit(1)

    base = Path(tempfile.mkdtemp(prefix="mdword_e2e_"))
    art = ArtifactDir(base)
    passed = failed = 0
    for code in codes:
        name, tests = MODULES[code]
        print(f"Module {code}: {name} ({len(tests)} tests)")
        results = run_module(tests, art, verbose=args.verbose)
        ok = sum(1 for r in results if r.status == "PASS")
        passed += ok
        failed += len(results) - ok
        print(f"  -> {ok} passed, {len(results) - ok} failed")

    print("=" * 60)
    print(f"TOTAL: {passed + failed} tests | PASS: {passed} | FAIL: {failed}")
    print("=" * 60)

    if args.keep_artifacts:
        print(f"Artifacts kept at {base}")
    else:
        shutil.rmtree(base, ignore_errors=True)

    sys.exit(1 if failed else 0)


if __name__ == "__main__":
    main()

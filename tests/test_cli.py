import pytest

from conftest import get_docx_text, get_docx_xml
from mdword.cli import build_parser, main

SAMPLE = "# CLI Test\n\nBody with **bold**.\n\n- one\n- two\n"


@pytest.fixture(autouse=True)
def no_api_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "in.md"
    path.write_text(SAMPLE, encoding="utf-8")
    return path


class TestArguments:
    def test_defaults(self):
        args = build_parser().parse_args(["a.md", "b.docx"])
        assert args.use_ai
        assert args.pagination
        assert args.font_body is None

    def test_flags(self):
        args = build_parser().parse_args(["a.md", "b.docx", "--no-ai", "--no-pagination",
                                          "--font-code", "Menlo"])
        assert not args.use_ai
        assert not args.pagination
        assert args.font_code == "Menlo"


class TestMain:
    def test_convert_local(self, source, tmp_path, capsys):
        out = tmp_path / "out" / "result.docx"
        assert main([str(source), str(out), "--no-ai"]) == 0
        assert "CLI Test" in get_docx_text(out.read_bytes())
        printed = capsys.readouterr().out
        assert "Saved:" in printed
        assert "Parser: local (AI disabled)" in printed

    def test_without_key_falls_back(self, source, tmp_path, capsys):
        out = tmp_path / "out.docx"
        assert main([str(source), str(out)]) == 0
        assert "AI backend unavailable" in capsys.readouterr().out

    def test_missing_input(self, tmp_path, capsys):
        assert main([str(tmp_path / "nope.md"), str(tmp_path / "out.docx")]) == 1
        assert "Input file not found" in capsys.readouterr().out

    def test_empty_input(self, tmp_path):
        empty = tmp_path / "empty.md"
        empty.write_text("  \n", encoding="utf-8")
        assert main([str(empty), str(tmp_path / "out.docx"), "--no-ai"]) == 1

    def test_preview(self, source, tmp_path):
        preview = tmp_path / "preview.html"
        assert main([str(source), str(tmp_path / "out.docx"), "--no-ai", "--preview", str(preview)]) == 0
        assert 'id="cli-test"' in preview.read_text(encoding="utf-8")

    def test_style_file_and_flag(self, source, tmp_path):
        style = tmp_path / "style.txt"
        style.write_text("color_heading: 112233\nfont_heading: Georgia\n", encoding="utf-8")
        out = tmp_path / "out.docx"
        code = main([str(source), str(out), "--no-ai", "--style", str(style),
                     "--color-heading", "445566"])
        assert code == 0
        xml = get_docx_xml(out.read_bytes(), "word/styles.xml")
        assert "445566" in xml
        assert "Georgia" in xml

    def test_missing_style_file(self, source, tmp_path):
        assert main([str(source), str(tmp_path / "o.docx"), "--style", str(tmp_path / "x.txt")]) == 1

    def test_bad_color(self, source, tmp_path, capsys):
        out = tmp_path / "out.docx"
        assert main([str(source), str(out), "--no-ai", "--color-body", "nothex"]) == 1
        assert "Error:" in capsys.readouterr().out
        assert not out.exists()

"""
Command line entry point.

Usage:
    mdword input.md output.docx [--no-ai] [--preview out.html] [--style style.txt]
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

from mdword.converter import ConversionError, configure_backend, convert_with_report, render_preview
from mdword.style import StyleError, parse_style_file

_STYLE_FLAGS = (
    ("--font-body", "font_body", "Body text font (default: Calibri)"),
    ("--font-heading", "font_heading", "Heading font (default: Calibri)"),
    ("--font-code", "font_code", "Code font (default: Consolas)"),
    ("--font-size", "font_size", "Body text size in pt (default: 11)"),
    ("--color-heading", "color_heading", "Heading color hex (default: 1A1A1A)"),
    ("--color-body", "color_body", "Body text color hex (default: 333333)"),
    ("--table-header-bg", "table_header_bg", "Table header background hex (default: F6F8FA)"),
    ("--table-border", "table_border", "Table border color hex (default: D0D7DE)"),
    ("--code-bg", "code_bg", "Code block background hex (default: F6F8FA)"),
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mdword", description="Convert Markdown to DOCX")
    parser.add_argument("input", help="Input Markdown file")
    parser.add_argument("output", help="Output DOCX file")
    parser.add_argument("--no-ai", dest="use_ai", action="store_false",
                        help="Parse locally only; never call the AI backend")
    parser.add_argument("--api-key", default=None, help="Gemini API key (default: $GEMINI_API_KEY)")
    parser.add_argument("--model", default=None, help="Gemini model (default: $GEMINI_MODEL or gemini-2.0-flash)")
    parser.add_argument("--preview", default=None, help="Also write an HTML preview to this file")
    parser.add_argument("--no-pagination", dest="pagination", action="store_false",
                        help="Disable page numbers in footer (enabled by default)")
    parser.add_argument("--style", dest="style_file", default=None,
                        help="Style file (key: value format, same as inline comment)")
    for flag, dest, help_text in _STYLE_FLAGS:
        parser.add_argument(flag, dest=dest, default=None, help=help_text)
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO,
                        format="%(levelname)s %(name)s: %(message)s")

    if not os.path.isfile(args.input):
        print(f"Error: Input file not found: {args.input}")
        return 1

    base_style = {}
    if args.style_file:
        try:
            base_style = parse_style_file(args.style_file)
        except OSError as e:
            print(f"Error: Cannot read style file: {e}")
            return 1
    overrides = {dest: getattr(args, dest) for _, dest, _ in _STYLE_FLAGS
                 if getattr(args, dest) is not None}

    input_path = os.path.abspath(args.input)
    output_path = os.path.abspath(args.output)
    print(f"Reading: {input_path}")
    content = Path(input_path).read_text(encoding="utf-8")

    backend = configure_backend(args.api_key, args.model) if args.use_ai else None
    try:
        data, report = convert_with_report(content, args.use_ai, backend=backend,
                                           base_style=base_style, style_overrides=overrides,
                                           pagination=args.pagination)
    except (ConversionError, StyleError) as e:
        print(f"Error: {e}")
        return 1

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
    Path(output_path).write_bytes(data)
    print(f"Saved: {output_path}")
    print(f"  Parser: {report.path}" + (f" ({report.reason})" if report.reason else ""))
    print(f"  Elements: {report.element_count}")

    if args.preview:
        Path(args.preview).write_text(render_preview(content), encoding="utf-8")
        print(f"Preview: {os.path.abspath(args.preview)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

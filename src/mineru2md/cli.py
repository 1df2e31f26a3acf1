"""Command-line interface for mineru2md."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from . import core
from .models import LayoutParseError, load_layout_file
from .version import __version__

EXIT_OK = 0
EXIT_FAILURE = 1


def _get_usage() -> str:
    return (
        f"mineru2md {__version__}\n"
        "Usage: mineru2md [--help] [--version|--ver] [--verbose] [--debug] <path-to-json-file> [output-file]\n"
        "Example: mineru2md layout.json output.md\n\n"
        "Options:\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs (missing images, headings)"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs")
    parser.add_argument("input", nargs="?", help="MinerU layout JSON file")
    parser.add_argument("output", nargs="?", help="Markdown output file (default: input with .md extension)")
    return parser


def default_output_path(input_path: Path) -> Path:
    return input_path.with_suffix(".md")


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage(), file=sys.stderr)
        return EXIT_FAILURE

    if args.help:
        print(_get_usage())
        return EXIT_OK

    if args.version or args.ver:
        print(__version__)
        return EXIT_OK

    if not args.input:
        print(_get_usage(), file=sys.stderr)
        return EXIT_FAILURE

    input_path = Path(args.input).expanduser().resolve()

    if not input_path.exists():
        print(f"Error: File not found: {input_path}", file=sys.stderr)
        return EXIT_FAILURE

    core.setup_logging(args.verbose, args.debug)

    print(f"Reading: {input_path}")
    try:
        document = load_layout_file(input_path)
    except LayoutParseError as exc:
        print(f"Error parsing JSON: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    except OSError as exc:
        print(f"Error reading file: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    output_path = Path(args.output).expanduser().resolve() if args.output else default_output_path(input_path)

    print(f"Processing {len(document.pdf_info)} pages...")
    result = core.convert_layout(document, input_path.parent)
    core.log_conversion_summary(result)

    try:
        core.write_markdown(output_path, result.markdown)
    except OSError as exc:
        print(f"Error writing output: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    print(f"Output written to: {output_path}")
    print("Done!")
    return EXIT_OK


if __name__ == "__main__":
    raise SystemExit(main())

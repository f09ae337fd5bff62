"""
cli.py - Command line front end.

Usage:
    fotopdf convert a.jpg b.png -o album.pdf
    fotopdf convert *.jpg --page-size letter --no-ai
    fotopdf compress report.pdf --level high
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from . import __version__
from .config import DEFAULT_COMPRESSION_LEVEL, DEFAULT_MARGIN_MM, PAGE_SIZES_MM, AdvisorSettings, CompressionLevel
from .errors import FotoPdfError
from .filename_advisor import FilenameAdvisor, normalize_filename
from .layout import PageGeometry
from .session import Session
from .utils import format_bytes


def setup_logging(verbose: bool = False):
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S"
    )


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="fotopdf",
        description="Turn images into a PDF, or shrink a PDF by re-encoding its images.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fotopdf convert scan1.jpg scan2.png -o scans.pdf
  fotopdf convert holiday/*.jpg
  fotopdf compress report.pdf --level high

Without -o, convert asks the AI service for a filename (set FOTOPDF_API_KEY)
and falls back to a name derived from the first image.
"""
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    convert = commands.add_parser("convert", help="Images to PDF, one image per page")
    convert.add_argument("images", nargs="+", type=Path, help="Input image file(s), in page order")
    convert.add_argument("-o", "--output", type=Path, help="Output PDF")
    convert.add_argument(
        "--page-size",
        choices=sorted(PAGE_SIZES_MM),
        default="a4",
        help="Page size (default: a4)"
    )
    convert.add_argument(
        "--margin-mm",
        type=float,
        default=DEFAULT_MARGIN_MM,
        help=f"Margin on every side in mm (default: {DEFAULT_MARGIN_MM:g})"
    )
    convert.add_argument("--no-ai", action="store_true", help="Do not ask the AI service for a filename")

    compress = commands.add_parser("compress", help="Re-encode the images of a PDF")
    compress.add_argument("input", type=Path, help="Input PDF")
    compress.add_argument("-o", "--output", type=Path, help="Output PDF (default: <name>-compressed.pdf)")
    compress.add_argument(
        "-l", "--level",
        type=CompressionLevel.from_name,
        default=DEFAULT_COMPRESSION_LEVEL,
        help="low, medium or high (default: medium)"
    )

    return parser.parse_args(argv)


def print_notifications(session: Session):
    for note in session.drain_notifications():
        stream = sys.stderr if note.destructive else sys.stdout
        print(f"{note.title}: {note.description}", file=stream)


async def run_convert(args) -> int:
    settings = AdvisorSettings.from_env()
    if args.no_ai:
        settings.api_key = None

    session = Session(
        advisor=FilenameAdvisor(settings),
        geometry=PageGeometry.from_name(args.page_size, args.margin_mm),
    )
    with session:
        missing = [p for p in args.images if not p.exists()]
        for p in missing:
            print(f"Error: File not found: {p}", file=sys.stderr)

        try:
            session.add_images(p for p in args.images if p.exists())
        except FotoPdfError as e:
            print_notifications(session)
            print(f"Error: {e}", file=sys.stderr)
            return 1

        if args.output is None:
            await session.suggest_filename()
        else:
            session.filename = normalize_filename(args.output.name)

        result = await session.convert()
        print_notifications(session)

        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1

        output_path = args.output or Path(session.filename)
        session.conversion.save(output_path)
        print(f"\n{result.summary()}\nSaved: {output_path}")
        return 0 if result.items_failed == 0 else 2


async def run_compress(args) -> int:
    session = Session()
    with session:
        if not args.input.exists():
            print(f"Error: File not found: {args.input}", file=sys.stderr)
            return 1

        try:
            session.set_pdf(args.input.name, args.input.read_bytes())
        except FotoPdfError as e:
            print_notifications(session)
            print(f"Error: {e}", file=sys.stderr)
            return 1

        session.compression_level = args.level
        print(
            f"{args.level.label}: {args.level.description}\n"
            f"Original size: {format_bytes(session.pdf_file.size)}, "
            f"estimated: ~{format_bytes(session.estimated_size)} (estimate only)"
        )

        result = await session.compress()
        print_notifications(session)

        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1

        output_path = args.output or args.input.with_name(session.compressed.filename)
        session.compressed.save(output_path)
        print(f"\n{result.summary()}\nFinal size: {format_bytes(result.output_size)}\nSaved: {output_path}")
        return 0


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.verbose)

    if args.command == "convert":
        code = asyncio.run(run_convert(args))
    else:
        code = asyncio.run(run_compress(args))
    sys.exit(code)


if __name__ == "__main__":
    main()

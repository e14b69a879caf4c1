#!/usr/bin/env python3
"""
Math Comic Generator - Main Entry Point

Generates illustrated multi-panel math comics from a short topic, and
serves the HTTP API.

Usage:
    python main.py generate "加法运算"
    python main.py generate "fractions" --age-group teen --panels 5 --export pdf
    python main.py list
    python main.py export <comic_id> --format zip
    python main.py serve --reload
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from src.core.config import (
    AppConfig,
    DEFAULT_PANEL_COUNT,
    PANEL_COUNT_MAX,
    PANEL_COUNT_MIN,
    SUPPORTED_LANGUAGES,
)
from src.core.errors import ComicGenerationError
from src.core.models import AgeGroup, ExportFormat, VisualStyle
from src.services.comic_pipeline import ComicGenerationPipeline
from src.services.context import PipelineContext


def create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        description="Generate illustrated math comics from a topic",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s generate "加法运算"
  %(prog)s generate "triangle area" --age-group adult --panels 6 --language en
  %(prog)s list
  %(prog)s export 3f2b... --format pdf --output comic.pdf
  %(prog)s serve --port 8000
        """
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # generate
    generate = subparsers.add_parser("generate", help="Generate and store a comic")
    generate.add_argument("topic", type=str, help="Math topic, e.g. '加法运算'")
    generate.add_argument(
        "--age-group",
        choices=[g.value for g in AgeGroup],
        default=AgeGroup.CHILD.value,
        help="Target reader age group (default: child)"
    )
    generate.add_argument(
        "--panels",
        type=int,
        default=DEFAULT_PANEL_COUNT,
        help=f"Number of panels, {PANEL_COUNT_MIN}-{PANEL_COUNT_MAX} (default: {DEFAULT_PANEL_COUNT})"
    )
    generate.add_argument(
        "--style",
        choices=[s.value for s in VisualStyle],
        default=VisualStyle.CARTOON.value,
        help="Illustration style (default: cartoon)"
    )
    generate.add_argument(
        "--language", "-l",
        choices=list(SUPPORTED_LANGUAGES),
        default="zh",
        help="Language for dialogue and narration (default: zh)"
    )
    generate.add_argument(
        "--no-narration",
        action="store_true",
        help="Tell the story through dialogue only"
    )
    generate.add_argument(
        "--export",
        choices=[f.value for f in ExportFormat],
        help="Also export the comic in this format"
    )
    generate.add_argument(
        "--output-dir",
        type=str,
        default="output",
        help="Directory for exported files (default: output)"
    )

    # list
    subparsers.add_parser("list", help="List stored comics")

    # export
    export = subparsers.add_parser("export", help="Export a stored comic")
    export.add_argument("comic_id", type=str)
    export.add_argument(
        "--format", "-f",
        choices=[f.value for f in ExportFormat],
        default=ExportFormat.JSON.value,
    )
    export.add_argument("--output", "-o", type=str, help="Output path (default: output/comic_<id>.<format>)")

    # serve
    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes")

    return parser


def _print_error(error) -> None:
    print(f"Error [{error.error_code}]: {error.user_message}", file=sys.stderr)
    for step in error.resolution_steps:
        print(f"  - {step}", file=sys.stderr)
    if error.should_retry:
        wait = f" in {int(error.retry_after)}s" if error.retry_after else ""
        print(f"You can retry{wait}.", file=sys.stderr)


async def _export(context: PipelineContext, comic_id: str, fmt: str, output: Path) -> Path:
    data = await context.storage.export_comic(comic_id, fmt)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(data)
    return output


async def run_generate(args, config: AppConfig) -> int:
    options = {
        "age_group": args.age_group,
        "panel_count": args.panels,
        "style": args.style,
        "language": args.language,
        "include_narration": not args.no_narration,
    }
    async with PipelineContext.create(config) as context:
        result = await ComicGenerationPipeline(context).generate_comic(args.topic, options)
        if not result.success:
            _print_error(result.error)
            return 1

        comic = result.comic
        print(f"✓ Comic '{comic.title}' saved as {comic.id}")
        for panel in comic.panels:
            print(f"  Panel {panel.order}: {panel.image_file}")
        if args.verbose:
            timings = ", ".join(f"{k}={v:.0f}ms" for k, v in result.stage_durations_ms.items())
            print(f"Stage timings: {timings}")

        if args.export:
            path = Path(args.output_dir) / f"comic_{comic.id}.{args.export}"
            try:
                await _export(context, comic.id, args.export, path)
            except ComicGenerationError as e:
                _print_error(e.to_error_response())
                return 1
            print(f"✓ Exported: {path}")
    return 0


async def run_list(config: AppConfig) -> int:
    async with PipelineContext.create(config) as context:
        entries = await context.storage.list_comics()
    if not entries:
        print("No comics stored yet.")
        return 0
    for m in entries:
        print(f"{m.id}  {m.created_at:%Y-%m-%d %H:%M}  {m.panel_count} panels  {m.title}")
    return 0


async def run_export(args, config: AppConfig) -> int:
    output = Path(args.output) if args.output else Path("output") / f"comic_{args.comic_id}.{args.format}"
    async with PipelineContext.create(config) as context:
        try:
            path = await _export(context, args.comic_id, args.format, output)
        except ComicGenerationError as e:
            _print_error(e.to_error_response())
            return 1
    print(f"✓ Exported: {path}")
    return 0


def main():
    """Main entry point."""
    parser = create_argument_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "serve":
        import uvicorn
        uvicorn.run("src.api.app:app", host=args.host, port=args.port, reload=args.reload)
        return 0

    config = AppConfig()
    if args.command == "generate":
        if not config.llm.validate():
            print("Warning: OpenRouter API key not configured.", file=sys.stderr)
            print("Set OPENROUTER_API_KEY in .env file", file=sys.stderr)
        return asyncio.run(run_generate(args, config))
    if args.command == "list":
        return asyncio.run(run_list(config))
    return asyncio.run(run_export(args, config))


if __name__ == "__main__":
    sys.exit(main())

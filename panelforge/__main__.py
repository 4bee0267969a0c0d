"""
PanelForge Main Entry Point

Generate a comic from a story file.

    python -m panelforge story.txt --audience children --character "a girl in a red coat"
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from panelforge.core.config import apply_env_overrides, load_config
from panelforge.core.env_loader import get_render_api_token
from panelforge.core.exceptions import PanelforgeError
from panelforge.core.logging_config import LogLevel, get_logger, setup_logging
from panelforge.core.asset_store import LocalObjectStore
from panelforge.core.startup import validate_environment
from panelforge.llm.api_clients import HttpBeatGenerator, HttpRenderClient
from panelforge.llm.offline import OfflineBeatGenerator, OfflineIdentityExtractor, PlaceholderRenderClient
from panelforge.pipelines.comic_pipeline import ComicPipeline
from panelforge.quality.feedback import JsonlFeedbackSink


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="panelforge",
        description="PanelForge - consistency-constrained comic generation"
    )
    parser.add_argument("story", help="Path to a story text file, or - for stdin")
    parser.add_argument(
        "--audience", "-a",
        default="children",
        choices=["children", "young_adults", "adults"],
        help="Audience tier (default: children)"
    )
    parser.add_argument("--reference-image", help="Handle of the character reference image")
    parser.add_argument("--character", help="Text description of the main character")
    parser.add_argument("--title", help="Comic title")
    parser.add_argument("--config", "-c", help="Path to configuration file")
    parser.add_argument("--render-url", help="Base URL of the render service")
    parser.add_argument("--beats-url", help="Base URL of an OpenAI-compatible chat endpoint for beats")
    parser.add_argument("--beats-model", default="gpt-4o-mini", help="Model name for --beats-url")
    parser.add_argument("--offline", action="store_true", help="Use offline placeholder services")
    parser.add_argument("--output", "-o", default="comic.json", help="Where to write the comic JSON")
    parser.add_argument("--assets-dir", help="Directory for rendered panels (default: <output_dir>/assets)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose log format")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def _read_story(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


async def run_job(args, config) -> int:
    logger = get_logger("main")
    offline = args.offline or not config.dispatch.render_url

    if offline:
        logger.info("Running with offline placeholder services")
        render_client = PlaceholderRenderClient()
    else:
        render_client = HttpRenderClient(
            config.dispatch.render_url,
            api_token=get_render_api_token(),
            timeout=config.dispatch.timeout_seconds,
        )

    if args.beats_url:
        beat_generator = HttpBeatGenerator(args.beats_url, args.beats_model, api_token=get_render_api_token())
    else:
        beat_generator = OfflineBeatGenerator()

    assets_dir = Path(args.assets_dir) if args.assets_dir else config.output_dir / "assets"
    feedback_sink = JsonlFeedbackSink(config.quality.feedback_path) if config.quality.feedback_path else None

    pipeline = ComicPipeline.from_config(
        config,
        render_client,
        beat_generator,
        LocalObjectStore(assets_dir),
        identity_extractor=OfflineIdentityExtractor(),
        feedback_sink=feedback_sink,
    )

    request = {
        "story": _read_story(args.story),
        "audience": args.audience,
        "reference_image": args.reference_image,
        "character_description": args.character,
        "title": args.title,
    }

    try:
        result = await pipeline.run(request)
        await pipeline.flush_feedback()
    finally:
        for client in (render_client, beat_generator):
            if hasattr(client, "aclose"):
                await client.aclose()

    if not result.success:
        logger.error(f"Comic generation failed: {result.error}")
        print(json.dumps({"status": result.status.value, "error": result.error, **result.metadata},
                         indent=2, default=str))
        return 1

    comic = result.output
    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(comic.to_dict(), indent=2, default=str), encoding="utf-8")

    report = comic.quality_report
    print(f"{comic.panel_count} panels on {comic.page_count} pages, "
          f"quality {report.overall_score} ({report.grade}) -> {output_path}")
    return 0


def main(argv=None) -> int:
    """Main entry point for PanelForge."""
    args = build_parser().parse_args(argv)

    try:
        config = apply_env_overrides(load_config(Path(args.config) if args.config else None))
    except PanelforgeError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    if args.render_url:
        config.dispatch.render_url = args.render_url

    if args.debug:
        log_level = LogLevel.DEBUG
    else:
        log_level = LogLevel.from_name(config.logging.level)
    setup_logging(level=log_level, log_file=config.logging.log_file,
                  verbose=args.verbose or config.logging.verbose)

    logger = get_logger("main")
    validation = validate_environment(config, offline=args.offline or not config.dispatch.render_url)
    if not validation.valid:
        for error in validation.errors:
            logger.error(error)
        return 2
    for warning in validation.warnings:
        logger.warning(warning)

    return asyncio.run(run_job(args, config))


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
cli.py - Entry point for shopmirror
Mirror the shop catalog (metadata and media) for a set of regions and languages.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

from rich.console import Console
from rich.table import Table

from shopmirror import logger
from shopmirror.__version__ import __version__
from shopmirror.catalog.context import CrawlOptions, open_context
from shopmirror.catalog.locales import crawl_locales, enumerate_locales
from shopmirror.catalog.store import MirrorStore
from shopmirror.catalog.transcode import convert_pending
from shopmirror.catalog.types import CrawlReport
from shopmirror.config import DEFAULT_STATIC_ENDPOINTS, MirrorConfig, load_config

console = Console()
_CLI_SESSION_START_MONOTONIC = time.monotonic()


def _ui_info(message: str) -> None:
    console.print(f"[cyan][INFO][/cyan] {message}")


def _ui_warn(message: str) -> None:
    console.print(f"[yellow][WARNING][/yellow] {message}")


def _ui_error(message: str) -> None:
    console.print(f"[red][ERROR][/red] {message}")


def _format_elapsed_runtime(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3_600:
        return f"{seconds / 60:.1f}m"
    if seconds < 86_400:
        return f"{seconds / 3_600:.1f}h"
    return f"{seconds / 86_400:.1f}d"


def _ui_goodbye_with_elapsed() -> None:
    elapsed = max(0.0, time.monotonic() - _CLI_SESSION_START_MONOTONIC)
    _ui_info(f"Goodbye! Elapsed {_format_elapsed_runtime(elapsed)}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shopmirror",
        description=f"shopmirror v{__version__} - archive the shop catalog and its media",
    )
    parser.add_argument("-c", "--config", metavar="PATH", help="Path to config.toml (file or directory)")
    parser.add_argument("-o", "--output", metavar="DIR", help="Mirror root directory (default: ./mirror)")
    parser.add_argument("-d", "--debug", action="store_true", help="Debug mode with request details and timestamps")

    commands = parser.add_subparsers(dest="command", required=True, metavar="{metadata,media,all,convert}")
    crawl_help = {
        "metadata": "Fetch catalog documents only",
        "media": "Fetch images (and videos) for documents, reusing documents already on disk",
        "all": "Fetch catalog documents and media",
    }
    for name, help_text in crawl_help.items():
        sub = commands.add_parser(name, help=help_text)
        for args, kwargs in (
            (("--title",), {"dest": "title_ids", "action": "append", "default": [], "metavar": "ID",
                            "help": "Only fetch data for the given title"}),
            (("--movie",), {"dest": "movie_ids", "action": "append", "default": [], "metavar": "ID",
                            "help": "Only fetch data for the given movie"}),
            (("--directory",), {"dest": "directory_ids", "action": "append", "default": [], "metavar": "ID",
                                "help": "Only fetch data for the given directory and its contents"}),
            (("--region",), {"dest": "regions", "action": "append", "metavar": "CODE",
                             "help": "Region to crawl (repeatable, e.g. US, DE)"}),
            (("--language",), {"dest": "languages", "action": "append", "metavar": "CODE",
                               "help": "Language to crawl (repeatable, e.g. en, de)"}),
            (("--endpoints",), {"nargs": "+", "choices": DEFAULT_STATIC_ENDPOINTS, "metavar": "NAME",
                                "help": "Single-document endpoints to fetch (defaults to all)"}),
            (("--cert",), {"metavar": "PEM", "help": "Client certificate for the pricing service"}),
            (("--omit-ninja-contents",), {"action": "store_true",
                                          "help": "Skip pricing and title-id documents"}),
            (("--refresh",), {"action": "store_true",
                              "help": "Re-fetch detail documents already on disk"}),
        ):
            sub.add_argument(*args, **kwargs)
        if name != "metadata":
            sub.add_argument("--fetch-videos", action="store_true", help="Download associated video files")
            sub.add_argument(
                "--confirm-large-download",
                action="store_true",
                help="Required together with --fetch-videos; video downloads take a lot of disk space",
            )
    commands.add_parser("convert", help="Convert downloaded videos that have no MP4 yet (offline)")
    return parser


def resolve_config_path(args_config: Optional[str]) -> Optional[Path]:
    if args_config:
        p = Path(args_config).expanduser()
        if p.is_dir():
            p = p / "config.toml"
        return p

    cwd_candidate = Path.cwd() / "config.toml"
    if cwd_candidate.exists():
        return cwd_candidate
    return None


def apply_overrides(config: MirrorConfig, args: argparse.Namespace) -> MirrorConfig:
    """Fold command-line flags into the loaded configuration."""
    updates: dict = {}
    if args.output:
        updates["output_dir"] = Path(args.output).expanduser()
    if getattr(args, "regions", None):
        updates["regions"] = args.regions
    if getattr(args, "languages", None):
        updates["languages"] = args.languages
    if getattr(args, "endpoints", None):
        updates["endpoints"] = args.endpoints
    if getattr(args, "fetch_videos", False):
        updates["fetch_videos"] = True
    if getattr(args, "refresh", False):
        updates["refresh"] = True

    services = config.services
    if getattr(args, "cert", None):
        services = services.model_copy(update={"cert": Path(args.cert).expanduser()})
    if getattr(args, "omit_ninja_contents", False):
        services = services.model_copy(update={"omit_ninja": True})
    updates["services"] = services

    # Re-validate so CLI values get the same normalization as file values.
    return MirrorConfig.model_validate({**config.model_dump(), **updates})


def build_options(config: MirrorConfig, args: argparse.Namespace) -> CrawlOptions:
    return CrawlOptions(
        fetch_metadata=args.command in ("metadata", "all"),
        fetch_media=args.command in ("media", "all"),
        fetch_videos=config.fetch_videos and args.command != "metadata",
        omit_ninja=config.services.omit_ninja,
        refresh=config.refresh,
        endpoints=tuple(config.endpoints),
        title_ids=tuple(args.title_ids),
        movie_ids=tuple(args.movie_ids),
        directory_ids=tuple(args.directory_ids),
    )


def check_preconditions(config: MirrorConfig, args: argparse.Namespace) -> List[str]:
    """Return blocking problems with the requested run (empty when it may start)."""
    problems: List[str] = []
    if args.command in ("metadata", "all") and config.services.cert is None and not config.services.omit_ninja:
        problems.append(
            "A client certificate is required to download data from the pricing service. "
            "Specify its location with --cert, or use --omit-ninja-contents to skip this data."
        )
    if config.services.cert is not None and not config.services.cert.is_file():
        problems.append(f"Certificate file not found: {config.services.cert}")
    if config.fetch_videos and args.command != "metadata" and not getattr(args, "confirm_large_download", False):
        problems.append("--fetch-videos downloads very large files; add --confirm-large-download to proceed.")
    if not config.regions or not config.languages:
        problems.append("At least one region and one language are required.")
    return problems


async def run_crawl(config: MirrorConfig, options: CrawlOptions) -> List[CrawlReport]:
    locales = enumerate_locales(config.regions, config.languages)
    async with open_context(config) as context:
        return await crawl_locales(context, locales, options)


def render_reports(reports: Sequence[CrawlReport]) -> None:
    table = Table(title="Crawl Summary")
    table.add_column("Locale", style="cyan", no_wrap=True)
    table.add_column("Status", no_wrap=True)
    table.add_column("Documents", justify="right")
    table.add_column("Reused", justify="right")
    table.add_column("Downloaded", justify="right")
    table.add_column("Skipped", justify="right")
    table.add_column("Failed", justify="right")
    for report in reports:
        if report.aborted:
            status = "[red]✗ Aborted[/red]"
        elif report.resources_failed:
            status = "[yellow]⚠ Partial media[/yellow]"
        else:
            status = "[green]✓ Complete[/green]"
        table.add_row(
            str(report.locale),
            status,
            str(report.documents_fetched),
            str(report.documents_reused),
            str(report.resources_downloaded),
            str(report.resources_skipped),
            str(len(report.resources_failed)),
        )
    console.print(table)


def main(argv: Optional[Sequence[str]] = None):
    """Entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = apply_overrides(load_config(resolve_config_path(args.config)), args)
        output_dir = config.output_dir

        log_instance = logger.MirrorLogger(logger.next_run_path(output_dir / "logs"), debug=args.debug)
        logger.set_logger(log_instance)
        with log_instance:
            if args.command == "convert":
                convert_pending(MirrorStore(output_dir).media_path("kanzashi-movie"), ffmpeg=config.ffmpeg)
                sys.exit(0)

            problems = check_preconditions(config, args)
            for problem in problems:
                _ui_error(problem)
            if problems:
                sys.exit(1)

            reports = asyncio.run(run_crawl(config, build_options(config, args)))
            render_reports(reports)
            failed = sum(len(report.resources_failed) for report in reports)
            if failed:
                _ui_warn(f"{failed} resource(s) failed; run the same command again to retry them")
            sys.exit(0 if all(report.ok for report in reports) else 1)
    except KeyboardInterrupt:
        _ui_goodbye_with_elapsed()
        sys.exit(0)
    except Exception as e:
        _ui_error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""
main.py – JDK detection CLI
===========================
Entry point: one-shot detection or a live watch of installed JDKs.

Usage:
    python main.py detect [--jdk-path DIR]... [--json]
    python main.py watch  [--jdk-path DIR]...
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from config import DEFAULT_CONFIG_PATH, Settings, load_settings
from detector import JdkDetector
from watcher import ErrorEvent

logger = logging.getLogger("jdk_detect")


# ──────────────────────────────────────────────
#  Logging
# ──────────────────────────────────────────────

def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


# ──────────────────────────────────────────────
#  CLI
# ──────────────────────────────────────────────

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        description="Detect installed Java Development Kits",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p.add_argument("command", choices=["detect", "watch"], help="What to do")
    p.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to settings JSON")
    p.add_argument(
        "--jdk-path", dest="jdk_paths", action="append", default=None,
        metavar="DIR", help="Extra directory to search (repeatable)",
    )
    p.add_argument(
        "--ignore-platform-paths", action="store_true",
        help="Skip well-known OS install locations",
    )
    p.add_argument("--force", action="store_true", help="Bypass cached scan results")
    p.add_argument("--json", action="store_true", help="Print JSON instead of a table")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


# ──────────────────────────────────────────────
#  Output
# ──────────────────────────────────────────────

def render_results(console: Console, results: Dict[str, Any], as_json: bool = False) -> None:
    if as_json:
        console.print_json(json.dumps(results))
        return

    if not results:
        console.print("[yellow]No JDKs found[/]")
        return

    t = Table(title=f"Detected JDKs ({len(results)})")
    t.add_column("Key", style="cyan")
    t.add_column("Version", style="white")
    t.add_column("Build", style="white")
    t.add_column("Arch", style="magenta")
    t.add_column("Path", style="green")
    for key, info in sorted(results.items()):
        t.add_row(
            key,
            info.get("version") or "?",
            info.get("build") or "?",
            info.get("architecture") or "?",
            info.get("path", ""),
        )
    console.print(t)


# ──────────────────────────────────────────────
#  Commands
# ──────────────────────────────────────────────

async def run_detect(detector: JdkDetector, settings: Settings, args: argparse.Namespace) -> int:
    console = Console()
    results = await detector.detect(
        jdk_paths=settings.jdk_paths,
        ignore_platform_paths=settings.ignore_platform_paths,
        force=args.force,
    )
    render_results(console, results, as_json=args.json)
    return 0


async def run_watch(detector: JdkDetector, settings: Settings, args: argparse.Namespace) -> int:
    console = Console()
    handle = detector.watch(
        jdk_paths=settings.jdk_paths,
        ignore_platform_paths=settings.ignore_platform_paths,
    )
    console.print("[bold green]Watching for JDK changes[/] (Ctrl+C to stop)")
    try:
        async for event in handle:
            if isinstance(event, ErrorEvent):
                console.print(f"[bold red]Watch failed:[/] {event.error}")
                return 1
            render_results(console, event.results, as_json=args.json)
    finally:
        handle.stop()
    return 0


# ──────────────────────────────────────────────
#  Entry Point
# ──────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = load_settings(args.config)
    if args.jdk_paths:
        settings.jdk_paths = settings.jdk_paths + args.jdk_paths
    if args.ignore_platform_paths:
        settings.ignore_platform_paths = True

    setup_logging("DEBUG" if args.verbose else settings.log_level)
    detector = JdkDetector(settings=settings)

    command = run_detect if args.command == "detect" else run_watch
    try:
        return asyncio.run(command(detector, settings, args))
    except KeyboardInterrupt:
        return 0
    except TypeError as exc:
        logger.error("Invalid arguments: %s", exc)
        return 2
    except Exception as exc:
        logger.error("Detection failed: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())

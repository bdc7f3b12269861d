#!/usr/bin/env python3
"""
Command line entry point for the mission relay.

Usage:
    python -m mission_relay serve [--base-dir DIR] [--port PORT]
    python -m mission_relay watch [--server URL] [--launch --linkedin-url URL]
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from .config import MISSION_LABELS, RelaySettings, ViewerSettings
from .models.schemas import LaunchConfig

logger = logging.getLogger("mission_relay")


class EventPrinter:
    """Session listener that prints log, timeline and badge events."""

    def __init__(self, out=None):
        self.out = out or sys.stdout
        self._last_log = {}

    def __call__(self, kind: str, mission: str, text: str):
        label = MISSION_LABELS.get(mission, mission)
        if kind == "log":
            self._last_log[mission] = text
            print(f"[{label}] {text}", file=self.out)
        elif kind == "timeline":
            # A new detail is both a log line and a timeline entry; print it once
            if self._last_log.get(mission) != text:
                print(f"[{label}] * {text}", file=self.out)
        elif kind == "badge":
            print(f"[{label}] -- {text} --", file=self.out)


async def _watch(args) -> int:
    from .viewer import Viewer, render_summary_text

    settings = ViewerSettings.from_env()
    if args.server:
        settings.server_url = args.server
    if args.preview_url:
        settings.preview_url = args.preview_url

    viewer = Viewer(settings)
    viewer.session.listeners.append(EventPrinter())

    if not await viewer.control.health():
        print(f"Relay server not reachable at {settings.server_url}", file=sys.stderr)
        return 1

    async with viewer:
        if args.launch:
            config = LaunchConfig(
                linkedin_url=args.linkedin_url,
                style_preference=args.style or "Minimal",
                documents_path=args.documents_path or "~/Documents",
                documents_prompt=args.documents_prompt or ""
            )
            if not await viewer.launch(config):
                print("Launch failed", file=sys.stderr)
                return 1
        else:
            viewer.start()

        summaries = await viewer.wait_complete()

    print()
    for summary in summaries:
        print(render_summary_text(summary))
        print()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mission-relay",
        description="Relay mission status files to viewers and follow them to completion",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    # Also accepted after the subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", "-v", action="store_true", default=argparse.SUPPRESS,
                        help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", parents=[common], help="Run the relay server")
    serve.add_argument("--base-dir", type=str, help="Directory holding status/, config.json and scripts")
    serve.add_argument("--status-dir", type=str, help="Status directory to watch")
    serve.add_argument("--host", type=str, help="Interface to bind")
    serve.add_argument("--port", type=int, help="Port to listen on")
    serve.add_argument("--polling", action="store_true", help="Poll the status directory instead of native events")

    watch = subparsers.add_parser("watch", parents=[common], help="Follow missions from the terminal")
    watch.add_argument("--server", type=str, help="Relay server URL")
    watch.add_argument("--preview-url", type=str, help="Website preview address to probe")
    watch.add_argument("--launch", action="store_true", help="Save config and launch the missions first")
    watch.add_argument("--linkedin-url", type=str, help="LinkedIn profile URL (required with --launch)")
    watch.add_argument("--style", type=str, help="Website style preference")
    watch.add_argument("--documents-path", type=str, help="Folder for the documents mission")
    watch.add_argument("--documents-prompt", type=str, help="Instructions for the documents mission")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if args.command == "serve":
        from .main import run

        settings = RelaySettings.from_env(args.base_dir)
        if args.status_dir:
            settings.status_dir = args.status_dir
        if args.host:
            settings.host = args.host
        if args.port:
            settings.port = args.port
        if args.polling:
            settings.use_polling = True
        run(settings, log_level="debug" if args.verbose else "info")
        return 0

    if args.launch and not args.linkedin_url:
        parser.error("--launch requires --linkedin-url")

    try:
        return asyncio.run(_watch(args))
    except KeyboardInterrupt:
        print("\nStopped watching")
        return 130


if __name__ == "__main__":
    sys.exit(main())

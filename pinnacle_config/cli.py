#!/usr/bin/env python3
"""
Pinnacle Configuration CLI

Command-line interface for running configuration scripts and querying the
compositor.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .api import Pinnacle
from .client import PinnacleClient
from .errors import PinnacleError
from .runner import ConfigRunner
from .settings import ClientSettings, get_default_script_path


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def _banner(title: str) -> None:
    print("\n═══════════════════════════════════════════════════════")
    print(f"  {title}")
    print("═══════════════════════════════════════════════════════")


class PinnacleConfigCLI:
    """CLI for the Pinnacle configuration client."""

    def settings_from_args(self, args) -> ClientSettings:
        overrides: Dict[str, Any] = {}
        if getattr(args, "socket", None):
            overrides["socket_path"] = Path(args.socket)
        if getattr(args, "timeout", None) is not None:
            overrides["default_call_timeout"] = args.timeout
        if getattr(args, "log_level", None):
            overrides["log_level"] = args.log_level
        return ClientSettings.from_env(**overrides)

    async def cmd_run(self, args, settings: ClientSettings) -> int:
        """Run a configuration script."""
        script = Path(args.script) if args.script else get_default_script_path()
        runner = ConfigRunner(script, settings=settings, watch=args.watch)
        return await runner.run()

    async def cmd_query(self, args, settings: ClientSettings) -> int:
        """Print compositor state."""
        async with PinnacleClient(settings) as client:
            pinnacle = Pinnacle(client)
            fetch = {
                "outputs": pinnacle.output.get_infos,
                "windows": pinnacle.window.get_infos,
                "tags": pinnacle.tag.get_infos,
                "devices": pinnacle.input.get_device_infos,
            }[args.what]
            items = [item.model_dump(mode="json") for item in await fetch()]

        if args.json:
            print(json.dumps(items, indent=2))
            return 0

        _banner(args.what.upper())
        if not items:
            print(f"No {args.what}")
            return 0
        for item in items:
            print(self._format_item(args.what, item))
        return 0

    async def cmd_version(self, args, settings: ClientSettings) -> int:
        """Print client and compositor versions."""
        print(f"pinnacle-config {__version__}")
        async with PinnacleClient(settings) as client:
            version = await Pinnacle(client).compositor.version()
        print(f"pinnacle {version}")
        return 0

    def _format_item(self, what: str, item: Dict[str, Any]) -> str:
        if what == "outputs":
            mode = item.get("current_mode") or {}
            marker = "●" if item.get("focused") else " "
            size = f"{mode.get('width', '?')}x{mode.get('height', '?')}"
            return f"{marker} {item['name']:12} {size:12} scale {item.get('scale')}  {item.get('make', '')} {item.get('model', '')}"
        if what == "windows":
            marker = "●" if item.get("focused") else " "
            return f"{marker} {item['id']:<6} {item.get('app_id', ''):30} {item.get('title', '')}"
        if what == "tags":
            marker = "●" if item.get("active") else " "
            return f"{marker} {item['id']:<6} {item['name']:10} {item.get('output', '')}"
        return f"  {item['sysname']:12} {item.get('device_type', ''):10} {item.get('name', '')}"

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Pinnacle compositor configuration client",
            prog="pinnacle-config"
        )
        parser.add_argument("--socket", help="Compositor socket (default: $PINNACLE_SOCKET or $XDG_RUNTIME_DIR/pinnacle/config.sock)")
        parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")

        subparsers = parser.add_subparsers(dest="command", help="Command to execute")

        # Run command
        run_parser = subparsers.add_parser("run", help="Run a configuration script")
        run_parser.add_argument("script", nargs="?", help="Script path (default: $XDG_CONFIG_HOME/pinnacle/config.py)")
        run_parser.add_argument("--watch", action="store_true", help="Restart when the script changes")
        run_parser.add_argument("--timeout", type=float, help="Default call timeout in seconds")

        # Query command
        query_parser = subparsers.add_parser("query", help="Show compositor state")
        query_parser.add_argument("what", choices=["outputs", "windows", "tags", "devices"])
        query_parser.add_argument("--json", action="store_true", help="Output as JSON")

        # Version command
        subparsers.add_parser("version", help="Show client and compositor versions")

        return parser

    def run(self, argv: Optional[List[str]] = None) -> int:
        """Run CLI."""
        parser = self.build_parser()
        args = parser.parse_args(argv)

        if not args.command:
            parser.print_help()
            return 1

        cmd_map = {
            "run": self.cmd_run,
            "query": self.cmd_query,
            "version": self.cmd_version,
        }

        try:
            settings = self.settings_from_args(args)
        except ValueError as e:
            print(f"❌ Invalid settings: {e}")
            return 2

        configure_logging(settings.log_level)

        try:
            return asyncio.run(cmd_map[args.command](args, settings))
        except KeyboardInterrupt:
            print("\nInterrupted")
            return 130
        except PinnacleError as e:
            print(f"❌ {e.message}")
            if e.suggestion:
                print(f"  → {e.suggestion}")
            return 1


def main():
    """Main entry point."""
    cli = PinnacleConfigCLI()
    sys.exit(cli.run())


if __name__ == "__main__":
    main()

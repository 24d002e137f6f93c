"""Command-line interface for hostterm.

Starts the terminal WebSocket server, or reports which shell a new
terminal would get without spawning anything.
"""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="hostterm",
        description="Browser terminal bridge to a local or host shell",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to YAML configuration file (default: config/hostterm.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the terminal WebSocket server")
    serve_parser.add_argument("--host", type=str, default=None, help="Override server.host")
    serve_parser.add_argument("--port", type=int, default=None, help="Override server.port")

    subparsers.add_parser("detect", help="Show the detected environment and terminal command")

    return parser.parse_args(argv)


def _detect(settings) -> None:
    """Print container detection and the command line a terminal would run."""
    from hostterm.endpoint.environment import EnvironmentResolver

    resolver = EnvironmentResolver.from_config(settings.terminal)
    in_container = resolver.is_running_in_container()
    plan = resolver.resolve()

    print(f"Container:   {'yes' if in_container else 'no'}")
    print(f"nsenter:     {resolver.nsenter_path} ({'usable' if resolver.nsenter_usable() else 'not usable'})")
    print(f"Shells:      {', '.join(resolver.shell_paths)}")
    print(f"Simple mode: {'forced' if settings.terminal.use_simple_mode else 'auto'}")
    print(f"Mode:        {plan.mode.value}")
    print(f"Command:     {plan.display}")


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the hostterm CLI."""
    args = parse_args(argv)

    if args.command is None:
        parse_args(["--help"])
        return

    from hostterm.config.settings import load_settings
    from hostterm.utils.logging import setup_logging

    settings = load_settings(args.config)

    if args.verbose:
        settings.logging.level = "DEBUG"

    setup_logging(settings.logging)

    if args.command == "serve":
        from hostterm.endpoint.server import create_app
        import uvicorn

        if args.host:
            settings.server.host = args.host
        if args.port:
            settings.server.port = args.port
        logger.info("Starting terminal server on %s:%d", settings.server.host, settings.server.port)
        app = create_app(settings)
        uvicorn.run(
            app,
            host=settings.server.host,
            port=settings.server.port,
            log_config=None,
        )

    elif args.command == "detect":
        _detect(settings)


if __name__ == "__main__":
    main()

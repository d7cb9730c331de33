"""
stepwise entry point.

This file handles startup concerns (arg-parsing, env setup, logging) and launches the appropriate
interface (API or CLI).
"""

import argparse
import logging
import sys

from stepwise.agent.planner_interface import list_planners
from stepwise.api.app import run_api
from stepwise.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        stream=sys.stdout,
    )
    # Reduce httpx log level to WARNING
    logging.getLogger("httpx").setLevel(logging.WARNING)


def build_parser() -> argparse.ArgumentParser:
    """Command-line options."""
    parser = argparse.ArgumentParser(description="Run stepwise tool-using agents")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Launch the REST API, or the API plus an interactive CLI (default: api)",
    )
    parser.add_argument(
        "--planner",
        choices=list_planners(),
        type=str.lower,
        default=settings.PLANNER,
        help="Model collaborator back-end (default from env: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=settings.MAX_ITERATIONS,
        help="Tool-call steps allowed per run (default from env: %(default)s)",
    )
    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the stepwise application.

    This function parses the command line, initializes logging, and starts the application in
    either API or CLI mode.
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.max_iterations < 0:
        parser.error("--max-iterations must be >= 0")

    # Command-line arguments override env settings; the app factory reads them from here
    settings.LOG_LEVEL = args.log_level
    settings.PLANNER = args.planner
    settings.MAX_ITERATIONS = args.max_iterations

    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting stepwise [%s mode, %s planner]", args.mode, settings.PLANNER)

    if args.mode == "api":
        run_api(host="0.0.0.0", port=settings.API_PORT, reload=settings.DEBUG)
        return

    # Lazy import to avoid threading unless the CLI is used
    import threading  # pylint: disable=import-outside-toplevel

    from stepwise.client.cli import run_cli  # pylint: disable=import-outside-toplevel

    # Start API server in a separate thread
    api_thread = threading.Thread(
        target=run_api,
        kwargs={
            "host": "127.0.0.1",
            "port": settings.API_PORT,
            "reload": False,  # Reload doesn't work with threading
            "log_level": "warning",
        },
        daemon=True,
    )
    api_thread.start()

    # Run CLI in main thread
    run_cli()


if __name__ == "__main__":
    main()

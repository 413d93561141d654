"""
ConvoIQ entry point.

This file handles startup concerns (arg-parsing, settings, logging) and launches the appropriate
interface (API server, or API server plus the interactive terminal client).
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from convoiq.api.app import run_api
from convoiq.config import Settings
from convoiq.core.schema import ComponentDraft

logger = logging.getLogger(__name__)

SECRET_SETTINGS = {"OPENAI_API_KEY", "OPENROUTER_API_KEY", "ANTHROPIC_API_KEY"}


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
    # Keep HTTP client noise out of the agent logs
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _load_draft(path: str | None) -> ComponentDraft:
    if not path:
        return ComponentDraft()
    return ComponentDraft.model_validate(json.loads(Path(path).read_text(encoding="utf-8")))


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    """Command-line interface of the ``convoiq`` script."""
    parser = argparse.ArgumentParser(description="Run the ConvoIQ component agent")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Serve the REST API only, or the API plus an interactive CLI (default: api)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument("--api-url", default=None, help="Agent API base URL for the CLI")
    parser.add_argument("--component-id", default="draft", help="Component being edited")
    parser.add_argument("--component-title", default="Untitled component")
    parser.add_argument("--conversation-id", help="Grounding conversation (required for cli)")
    parser.add_argument("--conversation-title", default="")
    parser.add_argument("--draft", help="JSON file with prompt / structuredOutput / uiCode")
    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the ConvoIQ application.

    Settings are read once here; the API builds its collaborators from them at startup.
    """
    if argv is None:
        argv = sys.argv[1:]

    settings = Settings()
    parser = build_parser(settings)
    args = parser.parse_args(argv)

    # Override log level setting with command-line argument
    settings.LOG_LEVEL = args.log_level
    _init_logging(settings.LOG_LEVEL)

    logger.info("Starting ConvoIQ [%s mode]", args.mode)
    logger.debug("Settings: %s", settings.model_dump(exclude=SECRET_SETTINGS))

    if args.mode == "api":
        run_api(
            settings,
            host=settings.API_HOST,
            port=settings.API_PORT,
            reload=settings.DEBUG,
            log_level=settings.LOG_LEVEL,
        )
        return

    if not args.conversation_id:
        parser.error("--conversation-id is required in cli mode")

    # Lazy import to avoid CLI dependencies if not needed
    import threading  # pylint: disable=import-outside-toplevel

    from convoiq.client.cli import (  # pylint: disable=import-outside-toplevel
        AgentSession,
        run_cli,
    )

    api_url = args.api_url
    if api_url is None:
        # Serve the API from a background thread unless an external one was given
        api_thread = threading.Thread(
            target=run_api,
            args=(settings,),
            kwargs={
                "host": settings.API_HOST,
                "port": settings.API_PORT,
                "reload": False,  # Reload doesn't work well with threading
                "log_level": "warning",
            },
            daemon=True,
        )
        api_thread.start()
        api_url = f"http://localhost:{settings.API_PORT}"

    session = AgentSession(
        api_url=api_url,
        component_id=args.component_id,
        conversation_id=args.conversation_id,
        component_title=args.component_title,
        conversation_title=args.conversation_title,
        draft=_load_draft(args.draft),
    )
    run_cli(session)


if __name__ == "__main__":
    main()

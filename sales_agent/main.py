"""
Command line entry point.

    sales-agent "What were sales for store 7 last week?" [--no-history | --restart] [--timeout 30]

The answer is printed to stdout; logs go to stderr.
"""

import argparse
import asyncio
import logging
import sys

from .config import Settings
from .dependencies import AgentContainer
from .errors import AgentError
from .logging_config import initialize_logging
from .tracing import setup_tracing, shutdown_tracing

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sales-agent",
        description="Answer questions about the store sales dataset with a tool-calling agent",
    )
    parser.add_argument("prompt", help="Question to ask the agent")
    history = parser.add_mutually_exclusive_group()
    history.add_argument(
        "--no-history",
        action="store_true",
        help="Do not load or save conversation history",
    )
    history.add_argument(
        "--restart",
        action="store_true",
        help="Start a new conversation and replace the saved history",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Deadline in seconds for the whole run (overrides RUN_TIMEOUT)",
    )
    return parser


async def run_agent(
    settings: Settings,
    prompt: str,
    *,
    use_history: bool,
    timeout: float | None,
    restart: bool = False,
) -> str:
    """Run the agent once and return its answer."""
    async with AgentContainer(settings, use_history=use_history) as container:
        result = await container.agent.ask(prompt, timeout=timeout, restart_history=restart)
    return result.answer


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings()
    initialize_logging(settings.log_level)

    tracer_provider = setup_tracing(
        enabled=settings.enable_tracing,
        project_name=settings.phoenix_project_name,
        endpoint=settings.phoenix_collector_endpoint,
        enable_console_export=settings.enable_console_tracing,
    )
    timeout = args.timeout if args.timeout is not None else settings.run_timeout

    try:
        answer = asyncio.run(
            run_agent(
                settings,
                args.prompt,
                use_history=not args.no_history,
                timeout=timeout,
                restart=args.restart,
            ),
        )
    except AgentError as e:
        logger.error(f"Agent run failed: {e.message}")
        return 1
    finally:
        shutdown_tracing(tracer_provider)

    print(answer)
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()

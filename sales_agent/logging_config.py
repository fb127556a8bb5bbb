"""
Logging configuration for the sales agent.

This module configures Python's logging for the command line entry point and
reduces the verbosity of third-party libraries while preserving important logs.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """
    Configure root logging to stderr.

    Stdout is reserved for the agent's answer, so log records never mix with it.
    """
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        stream=sys.stderr,
        force=True,
    )


def quiet_third_party_loggers() -> None:
    """
    Keep request-level logging of HTTP libraries out of agent logs.

    The OTLP exporter logs every failed export attempt; when the collector is
    down this floods the output, so only errors are kept.
    """
    for name in ("httpx", "httpcore", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("opentelemetry.exporter").setLevel(logging.ERROR)


def initialize_logging(level: str = "INFO") -> None:
    """
    Initialize all logging configuration.

    Should be called once during startup, before any other code that might
    generate logs.
    """
    configure_logging(level)
    quiet_third_party_loggers()

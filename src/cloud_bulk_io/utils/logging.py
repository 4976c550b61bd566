"""Structured logging configuration using structlog."""

import logging
import sys
from typing import Any, MutableMapping

import structlog
from structlog.types import FilteringBoundLogger, Processor

SENSITIVE_HEADERS = frozenset({"authorization", "proxy-authorization", "x-auth-token"})


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    """Return a copy of headers safe to write to a log."""
    return {
        name: "***" if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


def _redact_header_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    headers = event_dict.get("headers")
    if isinstance(headers, dict):
        event_dict["headers"] = redact_headers(headers)
    return event_dict


def configure_logging(log_file: str | None = None, verbose: bool = False) -> None:
    """Configure structlog for the application.

    Events carry the emitting thread's name, since deletes and part
    uploads are logged from worker threads. A ``headers`` field is always
    redacted before rendering, whichever module logged it.

    Args:
        log_file: Append JSON lines to this file. If None, render for a
            human on stderr.
        verbose: Log DEBUG events, which include every request sent.
    """
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.CallsiteParameterAdder(
            {structlog.processors.CallsiteParameter.THREAD_NAME}
        ),
        _redact_header_fields,
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if log_file:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        output = open(log_file, "a")
    else:
        processors.append(structlog.dev.ConsoleRenderer())
        output = sys.stderr

    level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> FilteringBoundLogger:
    """Get a module logger; ``name`` is the caller's ``__name__``."""
    return structlog.get_logger(name)

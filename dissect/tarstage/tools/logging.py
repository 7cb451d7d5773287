from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from dissect.tarstage.helpers.logging import TRACE_LEVEL

# Index is the number of -v flags, anything above the last one stays at TRACE
VERBOSITY_LEVELS = [logging.WARNING, logging.INFO, logging.DEBUG, TRACE_LEVEL]


def stringify_values(
    logger: structlog.types.WrappedLogger,
    name: str,
    event_dict: structlog.types.EventDict,
) -> dict[Any, str]:
    """Render every event dict value with ``str()``, so paths and enums print the same in both renderers."""
    return {key: str(value) for key, value in event_dict.items()}


def add_staging_directory(
    logger: structlog.types.WrappedLogger,
    name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Move the staging directory of a :class:`~dissect.tarstage.helpers.logging.StagingLogAdapter` message
    into a ``stage`` key of its own.

    The adapter also prefixes the message with the directory, for plain ``logging`` handlers. That prefix is
    removed from the event.
    """
    stage = getattr(event_dict.get("_record"), "stage", None)
    if stage is None:
        return event_dict

    stage = str(stage)
    prefix = f"{stage}: "
    event = event_dict.get("event")
    if isinstance(event, str) and event.startswith(prefix):
        event_dict["event"] = event[len(prefix) :]

    event_dict["stage"] = stage
    return event_dict


def render_exception_below_debug(
    logger: structlog.types.WrappedLogger,
    name: str,
    event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Keep the stack trace of an exception for ``DEBUG`` and ``TRACE`` only, otherwise render ``str()`` of it."""
    exc_info = event_dict.get("exc_info")
    if not exc_info or logger.getEffectiveLevel() <= logging.DEBUG:
        return event_dict

    event_dict.pop("exc_info")
    if isinstance(exc_info, BaseException):
        exc = exc_info
    elif isinstance(exc_info, tuple):
        exc = exc_info[1]
    else:
        _, exc, _ = sys.exc_info()
    event_dict["exc"] = str(exc)
    return event_dict


def level_for(verbose_value: int, be_quiet: bool) -> int:
    """Return the level of the ``dissect`` logger for a number of ``-v`` flags, or ``CRITICAL`` when quiet."""
    if be_quiet:
        return logging.CRITICAL
    return VERBOSITY_LEVELS[min(max(verbose_value, 0), len(VERBOSITY_LEVELS) - 1)]


def configure_logging(verbose_value: int, be_quiet: bool, as_plain_text: bool = True) -> None:
    """Configure the ``dissect`` logger and route all records through structlog.

    Without ``-v`` only warnings are shown. Every ``-v`` lowers the level one step, down to ``TRACE`` which
    shows every archiver command line and its output. ``be_quiet`` only lets ``CRITICAL`` through.

    Messages of a staging area carry its directory in a separate ``stage`` key.
    """
    renderer = (
        structlog.dev.ConsoleRenderer(colors=True, pad_event=10)
        if as_plain_text
        else structlog.processors.JSONRenderer(sort_keys=True)
    )

    attr_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    structlog.configure(
        processors=(
            # Drop anything below the level of the logger before doing any work
            [structlog.stdlib.filter_by_level]
            + attr_processors
            + [
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.StackInfoRenderer(),
                stringify_values,
                render_exception_below_debug,
                # The handler formatter below does the rendering
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ]
        ),
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.captureWarnings(True)
    logging.getLogger("dissect").setLevel(level_for(verbose_value, be_quiet))

    # Records of plain ``logging`` loggers only pass through this chain
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[*attr_processors, add_staging_directory],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.getLogger().handlers = [handler]

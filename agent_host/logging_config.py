from __future__ import annotations

import logging
import sys

import structlog

HTTP_LOGGER = "agent-host.http"

_HANDLER_NAME = "agent-host-stdout"


def configure_logging(
    *,
    human_readable: bool = False,
    level: str = "INFO",
    silent_request_handling: bool = False,
) -> None:
    """
    Route stdlib logging through structlog's ProcessorFormatter.

    Output is one JSON object per line unless `human_readable` is set. Safe
    to call more than once; the previous handler is replaced.
    """
    shared_processors = [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if human_readable:
        renderer = structlog.dev.ConsoleRenderer()
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    # Request logs (including function errors) go nowhere when silenced.
    http_logger = logging.getLogger(HTTP_LOGGER)
    http_logger.disabled = silent_request_handling

"""structlog setup shared by the client, the views and the HTTP facade."""
from __future__ import annotations
import logging
import sys

import structlog

from . import config

_configured = False


def configure_logging(level: str | None = None, json: bool | None = None) -> None:
    """Configure stdlib logging and structlog once per process."""
    global _configured
    if _configured:
        return

    level_name = (level or config.LOG_LEVEL).upper()
    use_json = config.LOG_JSON if json is None else json

    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level_name, logging.INFO))

    renderer = structlog.processors.JSONRenderer() if use_json else structlog.dev.ConsoleRenderer(colors=False)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True

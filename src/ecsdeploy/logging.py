import logging
from typing import Any

import structlog


def configure_logging(level: int | str = logging.INFO, json_output: bool = True) -> None:
    """Configure structlog/standard logging bridge.

    JSON lines are the default so deploy logs can be shipped as-is;
    ``json_output=False`` switches to the human console renderer.
    """

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    renderer: Any = (
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")


def bind_deployment(deployment: str, **kwargs: Any) -> None:
    """Bind the deployment name (and extra fields) into every later log event."""

    structlog.contextvars.bind_contextvars(deployment=deployment, **kwargs)


def clear_deployment() -> None:
    """Drop fields bound by :func:`bind_deployment`."""

    structlog.contextvars.clear_contextvars()

"""Structured logging setup using structlog.

One shared processor chain (context vars, log level, timestamps, stack
info) feeds either a coloured ConsoleRenderer for local development or a
JSONRenderer for production.  The renderer follows the ``APP_ENV``
environment variable unless ``json_output`` forces JSON.

Standard-library ``logging`` is routed through the same formatter so that
chromadb, httpx and aiosqlite messages share the pipeline's format.
"""

import logging
import os
import sys

import structlog


def configure_logging(log_level: str = "INFO", json_output: bool = False) -> structlog.BoundLogger:
    """Configure structlog with environment-appropriate rendering.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        json_output: Force JSON output. When False, JSON is only used when
                     ``APP_ENV`` is ``production``.

    Returns:
        A configured structlog BoundLogger.
    """
    app_env = os.environ.get("APP_ENV", "development")
    use_json = json_output or app_env == "production"

    # Shared by the structlog and stdlib paths; only the renderer differs.
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,  # job_id / stage bound by workers
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if use_json:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            renderer,
        ],
        # Events below log_level are dropped before any processor runs.
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *shared_processors,
            renderer,
        ],
    )

    # Route stdlib records from chromadb, httpx and aiosqlite through the same chain.
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()  # repeat calls must not stack handlers
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())

    return structlog.get_logger()


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a named structlog logger.

    Calls :func:`configure_logging` with its defaults when nothing has
    configured structlog yet, so library use and tests still get output.

    Args:
        name: Logger name, typically the module name.

    Returns:
        A structlog BoundLogger bound with the given name.
    """
    if not structlog.is_configured():
        configure_logging()

    return structlog.get_logger(logger_name=name)

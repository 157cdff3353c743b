"""
Structured logging setup.

The tracker only emits through structlog.get_logger(); applications call
configure_logging() once at startup if they want this processor chain.
"""
import logging
import structlog


def configure_logging(json: bool = True, level: str = "INFO"):
    """
    Configure structlog for JSON (or console) output.

    Args:
        json: Render JSON lines, otherwise human-readable console output
        level: Minimum log level name
    """
    renderer = structlog.processors.JSONRenderer() if json else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False
    )

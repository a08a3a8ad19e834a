import logging
import sys
import structlog
from antipodes.core.config import settings

# Loggers whose own handlers are dropped so their records reach the root handler
PROPAGATED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

# Per-request INFO lines from these would duplicate our nominatim_* events
QUIET_LOGGERS = {"httpx": logging.WARNING, "httpcore": logging.WARNING}

def _renderers(env: str) -> list:
    if env.lower() == "development":
        return [structlog.dev.ConsoleRenderer()]
    return [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

def configure_logging(level: int = logging.INFO):
    """structlog for the app and stdlib alike; JSON lines outside development."""
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.FUNC_NAME,
            }
        ),
    ]

    structlog.configure(
        processors=processors + _renderers(settings.ENV),
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    for name in PROPAGATED_LOGGERS:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = []
        stdlib_logger.propagate = True

"""structlog setup for the gate engine.

Application events and third-party stdlib records (uvicorn, SQLAlchemy,
asyncio) share one processor chain and one renderer, so every line carries
the service name, request correlation id and, where bound, the merchant and
gate being evaluated.
"""

import logging
import logging.config

import structlog
from asgi_correlation_id.context import correlation_id

SERVICE_NAME = "gate-engine"

# Noisy libraries; their INFO chatter drowns out gate events
QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "httpx", "asyncio")


def add_service_name(logger, method, event_dict):
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def add_correlation_id(logger, method, event_dict):
    """Attach the X-Request-ID of the request being served, if any."""
    cid = correlation_id.get(None)
    if cid:
        event_dict["correlation_id"] = cid
    return event_dict


def drop_color_message(logger, method, event_dict):
    """uvicorn duplicates its message with ANSI codes under color_message."""
    event_dict.pop("color_message", None)
    return event_dict


def build_processors() -> list:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_name,
        add_correlation_id,
        drop_color_message,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def configure_structlog(
    log_level: str = "INFO",
    json_logs: bool = True,
    app_log_level: str | None = None,
) -> None:
    """Route structlog and stdlib logging through one formatter.

    Must run before gate_engine modules log anything; loggers are cached
    on first use.

    Args:
        log_level: Root level for all loggers
        json_logs: JSON lines when True, colored console output otherwise
        app_log_level: Separate level for gate_engine.* loggers
    """
    processors = build_processors()
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    loggers = {name: {"level": "WARNING"} for name in QUIET_LOGGERS}
    loggers["gate_engine"] = {"level": app_log_level or log_level}

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": processors,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": loggers,
    })

    structlog.configure(
        processors=processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

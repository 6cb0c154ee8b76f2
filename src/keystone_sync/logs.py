import logging

import structlog

from keystone_sync.config import settings


def resolve_level(log_level: str | int | None = None) -> int:
    # Accept both standard level names (e.g. "INFO") and numeric values.
    raw = settings.log_level if log_level is None else log_level
    if isinstance(raw, int):
        return raw
    level = getattr(logging, str(raw).upper(), None)
    if not isinstance(level, int):
        try:
            level = int(raw)
        except ValueError:
            level = logging.INFO
    return level


def configure_logging(
    log_level: str | int | None = None,
    json_format: bool | None = None,
) -> None:
    level = resolve_level(log_level)
    if json_format is None:
        json_format = settings.log_json

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    processors = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

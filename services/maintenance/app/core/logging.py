import logging
import re
from typing import Any, Dict

import structlog

_URL_PASSWORD = re.compile(r"(?P<scheme>[a-z][a-z0-9+.\-]*://[^:/@\s]*):[^@\s]+@")


def _configure_stdlib_logging(level: int) -> None:
    logging.basicConfig(
        format="%(message)s",
        level=level,
    )


def _redact_event_logger(_logger, _name, event_dict: Dict[str, Any]):  # type: ignore[override]
    secret_keys = {"password", "pg_password", "pgpassword"}
    for k in list(event_dict.keys()):
        if str(k).lower() in secret_keys:
            event_dict[k] = "[REDACTED]"
    # credentials embedded in connection URLs
    for k, v in list(event_dict.items()):
        if isinstance(v, str) and "://" in v:
            event_dict[k] = _URL_PASSWORD.sub(r"\g<scheme>:[REDACTED]@", v)
    return event_dict


def parse_level(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def configure_structlog(level: str | int = "INFO", json: bool = True) -> None:
    numeric = parse_level(level)
    _configure_stdlib_logging(numeric)

    renderer = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        processors=[
            _redact_event_logger,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str):
    return structlog.get_logger(name)

"""
structlog configuration.

Every line carries the acting user (and the admin behind an impersonation
token, if any). PIX keys and bearer tokens never reach the output.
"""
import logging
import sys
from typing import Any, MutableMapping

import structlog

SENSITIVE_KEYS = frozenset({"pix_key", "token", "authorization", "access_token"})
NOISY_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")


def redact_sensitive(_logger: Any, _method: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    """Mask values of sensitive keys, keeping the last 4 characters for support lookups."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        value = str(event_dict[key] or "")
        event_dict[key] = f"***{value[-4:]}" if len(value) > 8 else "***"
    return event_dict


def setup_logging(log_level: str = "INFO", json_format: bool = True) -> None:
    """
    Route structlog through stdlib logging on stdout.

    json_format=True for production (one JSON object per line), False for a
    colored console renderer.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer = structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer(colors=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            redact_sensitive,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def bind_actor(user_id: Any, impersonated_by: Any = None) -> None:
    """
    Attach the acting user to every log line emitted while handling the request.

    When an admin acts through an impersonation token both ids are bound so the
    audit trail shows who really performed the action.
    """
    structlog.contextvars.clear_contextvars()
    context = {"actor_id": str(user_id)}
    if impersonated_by is not None:
        context["impersonated_by"] = str(impersonated_by)
    structlog.contextvars.bind_contextvars(**context)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)

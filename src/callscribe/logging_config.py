"""
Structured logging for callscribe.

structlog renders through the stdlib root logger so uvicorn and aiohttp
records share one format. Every event carries the service name, the emitting
component and, inside a request, its correlation id. Secrets are redacted
before rendering.

Environment switches:
  - LOG_LEVEL: debug|info|warning|error|critical
  - LOG_FORMAT: json|console (default: json)
  - LOG_COLOR: 0|1, console only (default: 1)
  - LOG_SHOW_TRACEBACKS: auto|always|never (auto: debug level only)
"""

import contextvars
import logging
import os
import sys
import uuid
from dataclasses import dataclass

import structlog
from structlog import dev as structlog_dev

SERVICE_NAME = "callscribe"

NOISY_LOGGERS = ("aiohttp", "asyncio", "uvicorn.access")

REDACTED = "***REDACTED***"

# Matched after lower-casing and dropping '_' and '-', as the whole key or its suffix
SENSITIVE_KEYS = frozenset({
    "apikey", "apikeys",
    "token", "accesstoken", "refreshtoken", "authtoken", "bearer",
    "password", "passwd", "pwd",
    "authorization", "auth",
    "credential", "credentials", "secret", "secrets",
    "privatekey", "clientsecret",
    "webhookkey", "validationcode",
})

correlation_id_var = contextvars.ContextVar("correlation_id", default=None)


def get_correlation_id():
    return correlation_id_var.get()


def set_correlation_id(value=None) -> str:
    """Bind ``value`` (or a fresh uuid4) as the current correlation id and return it."""
    value = value or str(uuid.uuid4())
    correlation_id_var.set(value)
    return value


def add_correlation_id(logger, method_name, event_dict):
    correlation_id = correlation_id_var.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_service_context(logger, method_name, event_dict):
    event_dict["service"] = SERVICE_NAME
    event_dict["component"] = (
        event_dict.get("logger")
        or getattr(getattr(logger, "logger", None), "name", None)
        or getattr(logger, "name", None)
        or "unknown"
    )
    return event_dict


def is_sensitive_key(key) -> bool:
    normalized = str(key).lower().replace("_", "").replace("-", "")
    return any(normalized == k or normalized.endswith(k) for k in SENSITIVE_KEYS)


def redact(value):
    """Mask a secret; strings longer than four characters keep a two character prefix."""
    if value is None or isinstance(value, bool) or value == "":
        return value
    if isinstance(value, str):
        return f"{value[:2]}{REDACTED}" if len(value) > 4 else REDACTED
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    if isinstance(value, dict):
        return {k: redact(v) for k, v in value.items()}
    return REDACTED


def _scrub(value):
    if isinstance(value, dict):
        return {k: redact(v) if is_sensitive_key(k) else _scrub(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(v) for v in value]
    return value


def sanitize_secrets(logger, method_name, event_dict):
    """Processor: redact values stored under sensitive keys at any depth."""
    return _scrub(event_dict)


@dataclass(frozen=True)
class LogOptions:
    level: int
    level_name: str
    console: bool
    colors: bool
    tracebacks: bool

    @classmethod
    def resolve(cls, log_level) -> "LogOptions":
        if os.getenv("LOG_LEVEL"):
            log_level = os.environ["LOG_LEVEL"]
        if isinstance(log_level, int):
            level = log_level
            level_name = logging.getLevelName(level)
        else:
            level_name = str(log_level).strip().upper()
            level = getattr(logging, level_name, logging.INFO)

        tb_mode = os.getenv("LOG_SHOW_TRACEBACKS", "auto").strip().lower()
        tracebacks = {"always": True, "never": False}.get(tb_mode, level_name == "DEBUG")

        return cls(
            level=level,
            level_name=level_name,
            console=os.getenv("LOG_FORMAT", "json").strip().lower() == "console",
            colors=os.getenv("LOG_COLOR", "1").strip().lower() not in ("0", "false"),
            tracebacks=tracebacks,
        )


def configure_logging(log_level="INFO"):
    """Install the structlog pipeline and a single stdout handler on the root logger."""
    options = LogOptions.resolve(log_level)

    def drop_exc_info(logger, method_name, event_dict):
        if not options.tracebacks:
            event_dict.pop("exc_info", None)
        return event_dict

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_service_context,
            add_correlation_id,
            sanitize_secrets,
            drop_exc_info,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if options.console:
        renderer = structlog_dev.ConsoleRenderer(colors=options.colors)
    else:
        renderer = structlog.processors.JSONRenderer()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_service_context,
        ],
    ))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(options.level)
    root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    get_logger(__name__).debug("Logging configured", level=options.level_name, console=options.console)


def get_logger(name: str):
    return structlog.get_logger(name)

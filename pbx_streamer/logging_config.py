"""
Structured Logging Configuration

This module configures structured logging using the 'structlog' library.
It sets up processors for adding timestamps, log levels, correlation IDs,
and renders logs in JSON (default) or colorized console format based on env.
"""

import os
import logging
import sys
import contextvars
import uuid
import time

import structlog
from structlog import dev as structlog_dev
from logging.handlers import RotatingFileHandler

SERVICE_NAME = "pbx-streamer"

# One id per inbound event; upload tasks inherit it through contextvars
correlation_id_var = contextvars.ContextVar('correlation_id', default=None)

SENSITIVE_KEYS = {
    'token', 'access_token', 'refresh_token', 'auth_token', 'bearer',
    'password', 'passwd', 'pwd',
    'authorization', 'auth',
    'credential', 'credentials', 'secret', 'secrets',
    'client_secret', 'client-secret', 'clientsecret',
    'api_key', 'apikey', 'api-key',
}
_SENSITIVE_NORMALIZED = {k.replace('_', '').replace('-', '') for k in SENSITIVE_KEYS}


def get_correlation_id():
    """Get the current correlation ID."""
    return correlation_id_var.get()


def set_correlation_id(value=None):
    """Set the correlation ID, generating a short random one when omitted."""
    if value is None:
        value = uuid.uuid4().hex[:12]
    correlation_id_var.set(value)
    return value


def add_correlation_id(logger, method_name, event_dict):
    """Add correlation ID to the log record."""
    correlation_id = get_correlation_id()
    if correlation_id:
        event_dict['correlation_id'] = correlation_id
    return event_dict


def add_service_context(logger, method_name, event_dict):
    """Add service context to the log record."""
    event_dict['service'] = SERVICE_NAME
    component = event_dict.get('logger')
    if not component:
        component = getattr(getattr(logger, 'logger', None), 'name', None) or getattr(logger, 'name', 'unknown')
    event_dict['component'] = component
    return event_dict


def _is_sensitive(key) -> bool:
    normalized = str(key).lower().replace('_', '').replace('-', '')
    return any(normalized == p or normalized.endswith(p) for p in _SENSITIVE_NORMALIZED)


def _redact_value(value):
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        if not value:
            return ''
        # Keep a short prefix ("Be" for bearer headers) for debugging
        if len(value) > 4:
            return f"{value[:2]}***REDACTED***"
        return "***REDACTED***"
    if isinstance(value, (list, tuple)):
        return [_redact_value(v) for v in value]
    return "***REDACTED***"


def _sanitize_dict(d):
    sanitized = {}
    for key, value in d.items():
        if _is_sensitive(key):
            sanitized[key] = _redact_value(value)
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_dict(value)
        elif isinstance(value, (list, tuple)):
            sanitized[key] = [_sanitize_dict(v) if isinstance(v, dict) else v for v in value]
        else:
            sanitized[key] = value
    return sanitized


def sanitize_secrets(logger, method_name, event_dict):
    """
    Redact bearer tokens, client secrets and authorization headers.

    Keys are matched case-insensitively, ignoring '_' and '-', either exactly
    or as a suffix ("client_secret", "upstream_authorization"). Nested dicts
    and lists of dicts are sanitized recursively.
    """
    return _sanitize_dict(event_dict)


def configure_logging(log_level="INFO", log_to_file=False, log_file_path="pbx-streamer.log", service_name=SERVICE_NAME):
    """
    Set up structured logging.

    Environment overrides (optional):
      - LOG_LEVEL: debug|info|warning|error|critical (default: INFO)
      - LOG_FORMAT: json|console (default: json)
      - LOG_COLOR:  0|1 (console only; default: 1)
      - LOG_TO_FILE: 0|1 (default: 0)
      - LOG_FILE_PATH: path, a directory, or a name containing {ts}
      - LOG_SHOW_TRACEBACKS: auto|always|never (default: auto, debug only)
    """
    level_name = _level_name(os.getenv("LOG_LEVEL") or log_level)
    level_value = getattr(logging, level_name, logging.INFO)
    log_to_file = _env_flag("LOG_TO_FILE", log_to_file)
    log_file_path = os.getenv("LOG_FILE_PATH", log_file_path)
    use_console_format = os.getenv("LOG_FORMAT", "json").strip().lower() == "console"
    show_tracebacks = _traceback_policy(level_name)

    def drop_exc_info(logger, method_name, event_dict):
        """Tracebacks are only rendered when the policy allows them."""
        if not show_tracebacks:
            event_dict.pop("exc_info", None)
        return event_dict

    structlog.configure(
        processors=[
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

    if use_console_format:
        renderer = structlog_dev.ConsoleRenderer(colors=_env_flag("LOG_COLOR", True))
    else:
        renderer = structlog.processors.JSONRenderer()
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=[
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
        ],
    )

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(level_value)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        path = _log_file_target(log_file_path, service_name)
        try:
            directory = os.path.dirname(path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            file_handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)
            file_handler.setFormatter(formatter)
            root_logger.addHandler(file_handler)
            get_logger(__name__).info("File logging configured", log_file_path=path)
        except OSError as e:
            get_logger(__name__).warning(
                "File logging disabled; continuing with console only",
                error=str(e),
                configured_path=log_file_path,
            )

    # websockets logs every frame at DEBUG
    for noisy in ('websockets', 'aiohttp', 'asyncio'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _level_name(level) -> str:
    if isinstance(level, int):
        return logging.getLevelName(level)
    return str(level).strip().upper()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _traceback_policy(level_name: str) -> bool:
    mode = os.getenv("LOG_SHOW_TRACEBACKS", "auto").strip().lower()
    if mode in ("always", "never"):
        return mode == "always"
    return level_name == "DEBUG"


def _log_file_target(path: str, service_name: str) -> str:
    ts = time.strftime("%Y%m%d-%H%M%S")
    if path.endswith(os.sep) or os.path.isdir(path):
        return os.path.join(path, f"{service_name}-{ts}.log")
    return path.replace("{ts}", ts)


def get_logger(name: str):
    """Get a structlog logger."""
    return structlog.get_logger(name)

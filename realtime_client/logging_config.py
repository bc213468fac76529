"""
Structured Logging Configuration

Configures structlog on top of stdlib logging: timestamps, log levels, the
realtime session id bound through contextvars, secret redaction and elision
of base64 audio payloads. Output is JSON (default) or colorized console
depending on env.
"""

import logging
import os
import sys
import time
from logging.handlers import RotatingFileHandler
from typing import Optional

import structlog
from structlog import dev as structlog_dev

from .config.models import LoggingConfig

SERVICE_NAME = "realtime-client"

# Keys that must never reach a log sink (matched case-insensitively, separators ignored)
SENSITIVE_KEYS = frozenset({
    'apikey', 'apikeys',
    'token', 'accesstoken', 'refreshtoken', 'authtoken', 'bearer',
    'password', 'passwd', 'pwd',
    'authorization', 'auth',
    'credential', 'credentials', 'secret', 'secrets',
    'privatekey', 'clientsecret',
})

# Event fields that may carry base64 PCM16 audio
AUDIO_KEYS = frozenset({'audio', 'delta'})
_AUDIO_PREVIEW_LIMIT = 64


def bind_session_id(session_id: Optional[str]) -> None:
    """Attach the realtime session id to every subsequent log line in this context."""
    if session_id:
        structlog.contextvars.bind_contextvars(session_id=session_id)
    else:
        structlog.contextvars.unbind_contextvars("session_id")


def add_service_context(logger, method_name, event_dict):
    """Add service and component names to the log record."""
    event_dict['service'] = SERVICE_NAME
    component = event_dict.get('logger')
    if not component:
        component = getattr(getattr(logger, 'logger', None), 'name', None) or getattr(logger, 'name', 'unknown')
    event_dict['component'] = component
    return event_dict


def _normalize_key(key) -> str:
    return str(key).lower().replace('_', '').replace('-', '')


def _is_sensitive_key(key) -> bool:
    normalized = _normalize_key(key)
    # suffix match covers e.g. "openai_api_key" without catching "passthrough"
    return any(normalized == pattern or normalized.endswith(pattern) for pattern in SENSITIVE_KEYS)


def _redact_value(value):
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str):
        if not value:
            return ''
        # first 2 chars stay visible, e.g. "sk" identifies the key family
        return f"{value[:2]}***REDACTED***" if len(value) > 4 else "***REDACTED***"
    if isinstance(value, (list, tuple)):
        return [_redact_value(v) for v in value]
    if isinstance(value, dict):
        return {k: _redact_value(v) for k, v in value.items()}
    return "***REDACTED***"


def _sanitize(value):
    if isinstance(value, dict):
        return {
            key: _redact_value(item) if _is_sensitive_key(key) else _sanitize(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return value


def sanitize_secrets(logger, method_name, event_dict):
    """
    Redact API keys, tokens and authorization headers from log events.

    Values are replaced with '***REDACTED***' while preserving log context.
    Nested dicts and lists (e.g. a logged event payload) are walked recursively.
    """
    return _sanitize(event_dict)


def _elide_audio(value):
    if isinstance(value, dict):
        elided = {}
        for key, item in value.items():
            if key in AUDIO_KEYS and isinstance(item, str) and len(item) > _AUDIO_PREVIEW_LIMIT:
                elided[key] = f"<{len(item)} chars base64>"
            else:
                elided[key] = _elide_audio(item)
        return elided
    if isinstance(value, list):
        return [_elide_audio(item) for item in value]
    return value


def elide_audio_payloads(logger, method_name, event_dict):
    """Replace long base64 audio strings with their length so debug logs stay readable."""
    return _elide_audio(event_dict)


def configure_logging(log_level="INFO", log_format="json", log_to_file=False, log_file_path="logs/"):
    """
    Set up structured logging.

    Environment overrides (optional):
      - LOG_LEVEL: debug|info|warning|error|critical
      - LOG_FORMAT: json|console
      - LOG_COLOR:  0|1 (console only; default: 1)
      - LOG_TO_FILE: 0|1
      - LOG_FILE_PATH: file path, directory, or path containing {ts}
      - LOG_SHOW_TRACEBACKS: auto|always|never (auto: only at debug level)
    """
    log_level = (os.getenv("LOG_LEVEL") or str(log_level)).upper()
    log_format = os.getenv("LOG_FORMAT", log_format).strip().lower()
    log_color = os.getenv("LOG_COLOR", "1").strip() not in ("0", "false", "False")
    if os.getenv("LOG_TO_FILE") is not None:
        log_to_file = os.getenv("LOG_TO_FILE", "0").strip() in ("1", "true", "True")
    log_file_path = os.getenv("LOG_FILE_PATH", log_file_path)

    tb_mode = os.getenv("LOG_SHOW_TRACEBACKS", "auto").strip().lower()
    if tb_mode == "always":
        show_tracebacks = True
    elif tb_mode == "never":
        show_tracebacks = False
    else:
        show_tracebacks = log_level == "DEBUG"

    def suppress_exc_info_if_disabled(logger, method_name, event_dict):
        if not show_tracebacks and event_dict.get("exc_info"):
            event_dict.pop("exc_info", None)
        return event_dict

    level_value = getattr(logging, log_level, logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_service_context,
            sanitize_secrets,
            elide_audio_payloads,
            suppress_exc_info_if_disabled,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer = (
        structlog_dev.ConsoleRenderer(colors=log_color)
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    processor_formatter = structlog.stdlib.ProcessorFormatter(
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
    console_handler.setFormatter(processor_formatter)
    root_logger.addHandler(console_handler)

    if log_to_file:
        path = _resolve_log_file(log_file_path)
        try:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            file_handler = RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5)
        except OSError as e:
            root_logger.warning("File logging disabled; continuing with console only: %s", e)
        else:
            file_handler.setFormatter(processor_formatter)
            root_logger.addHandler(file_handler)

    # The websocket library logs every frame at debug level
    logging.getLogger('websockets').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


def configure_from_config(config: LoggingConfig) -> None:
    """Apply a validated LoggingConfig (env variables still take precedence)."""
    configure_logging(
        log_level=config.level,
        log_format=config.format,
        log_to_file=config.to_file,
        log_file_path=config.file_path,
    )


def _resolve_log_file(path: str) -> str:
    ts = time.strftime("%Y%m%d-%H%M%S")
    if path.endswith(os.sep) or os.path.isdir(path):
        return os.path.join(path, f"{SERVICE_NAME}-{ts}.log")
    return path.replace("{ts}", ts)


def get_logger(name: str):
    """Get a structlog logger."""
    return structlog.get_logger(name)

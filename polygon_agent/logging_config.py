"""
structlog setup for the CLI.

Log lines go to stderr; stdout is reserved for command JSON. Event fields
whose names look like key material are masked before rendering.
"""

import logging
import sys
from typing import Any, Mapping, MutableMapping, Optional, TextIO

import structlog

from .config import settings

REDACTED = "***"

SECRET_FIELDS = frozenset({
    "private_key",
    "privateKey",
    "secret",
    "api_secret",
    "passphrase",
    "ciphertext",
    "session",
    "vault_key",
})

QUIET_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "httpcore", "httpx")


def redact_secrets(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> Mapping[str, Any]:
    """Mask credential fields so vault contents never reach a log sink."""
    for key in SECRET_FIELDS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = REDACTED
    return event_dict


def setup_logging(log_level: Optional[str] = None, stream: Optional[TextIO] = None) -> None:
    """Configure structlog and route stdlib logging through it.

    Args:
        log_level: Override log level (default: settings.log_level)
        stream: Destination, stderr unless given
    """
    level = getattr(logging, (log_level or settings.log_level).upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
    ]

    if level == logging.DEBUG:
        renderer = structlog.dev.ConsoleRenderer(colors=(stream or sys.stderr).isatty())
    else:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    # The callback listener runs uvicorn in-process
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

"""
Structured logging configuration using structlog.

JSON output for deployments, console output for development. Credential
values are masked before rendering so provider keys never reach the logs.
"""

import sys
from collections.abc import MutableMapping
from typing import Any, Dict, List, cast

import structlog
from structlog.types import EventDict, WrappedLogger

# Key names whose values are always masked
SECRET_KEYS = frozenset({
    "api_key",
    "apikey",
    "secret",
    "password",
    "token",
    "authorization",
    "credential",
    "user_api_key",
    "platform_secret",
})

LEVELS = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}


def mask_secret(value: str) -> str:
    """Keep the last four characters of a secret for correlation."""
    if len(value) <= 8:
        return "[REDACTED]"
    return f"[REDACTED]...{value[-4:]}"


class SecretRedactor:
    """Processor that masks secret values in log events."""

    def __call__(
        self,
        _logger: WrappedLogger,
        _method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        return cast(EventDict, self._redact(event_dict))

    def _redact(self, data: MutableMapping) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key.lower() in SECRET_KEYS and value is not None:
                result[key] = mask_secret(str(value))
            elif isinstance(value, MutableMapping):
                result[key] = self._redact(value)
            else:
                result[key] = value
        return result


def _stderr_logger(*_args: Any) -> structlog.PrintLogger:
    # sys.stderr is looked up on every call
    return structlog.PrintLogger(sys.stderr)


def setup_logging(level: str = "INFO", format: str = "console") -> None:
    """Configure structured logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        format: "json" for deployments, "console" for development
    """
    processors: List[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        SecretRedactor(),
    ]

    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LEVELS.get(level.upper(), 20)),
        context_class=dict,
        logger_factory=_stderr_logger,
        cache_logger_on_first_use=False,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound to the given module name."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))

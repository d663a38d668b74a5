from __future__ import annotations

import json
import logging
import os
import re
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from typing import Any, Mapping, MutableMapping, Optional

LOGGER_NAME = "mori"

_VALID_FORMATS = frozenset({"text", "json"})


@dataclass(frozen=True)
class LoggingOptions:
    level: str = "INFO"
    format: str = "text"  # text | json
    file: Optional[str] = None
    redact: bool = True
    max_bytes: int = 10 * 1024 * 1024
    backup_count: int = 3


# Witness material: anything that would let a reader open a commitment or
# link a nullifier to its owner.
_WITNESS_KEY_FRAGMENTS = (
    "secret",
    "randomness",
    "balance",
    "witness",
    "private",
    "key",
)

_RE_WITNESS_KV = re.compile(
    r"(?P<key>user_?secret|secret|randomness|balance|stub_key)\s*[:=]\s*(?P<value>[^\s,;)]+)",
    flags=re.IGNORECASE,
)


class JSONFormatter(logging.Formatter):
    """One JSON object per record; structured ``context`` is kept as-is."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context is not None:
            payload["context"] = context
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _is_witness_key(key: str) -> bool:
    lowered = key.lower()
    return any(fragment in lowered for fragment in _WITNESS_KEY_FRAGMENTS)


def _redact_text(value: str) -> str:
    return _RE_WITNESS_KV.sub(lambda m: f"{m.group('key')}=[REDACTED]", value)


def _redact_value(value: Any, *, depth: int, max_depth: int) -> Any:
    """Replace witness-like values in nested structures with ``[REDACTED]``.

    Stops descending at ``max_depth`` and redacts whatever lies below it.
    """
    if depth > max_depth:
        return "[REDACTED]"
    if isinstance(value, str):
        return _redact_text(value)
    if isinstance(value, bytes):
        return "[REDACTED]"
    if isinstance(value, Mapping):
        return {
            k: "[REDACTED]" if isinstance(k, str) and _is_witness_key(k)
            else _redact_value(v, depth=depth + 1, max_depth=max_depth)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact_value(v, depth=depth + 1, max_depth=max_depth) for v in value]
    return value


class RedactionFilter(logging.Filter):
    def __init__(self, *, max_depth: int = 4):
        super().__init__()
        self._max_depth = max_depth

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = _redact_text(record.msg)
        if record.args:
            if isinstance(record.args, tuple):
                record.args = tuple(_redact_text(a) if isinstance(a, str) else a for a in record.args)

        context = getattr(record, "context", None)
        if isinstance(context, MutableMapping):
            record.context = _redact_value(context, depth=0, max_depth=self._max_depth)
        return True


def _normalize_format(fmt: str) -> str:
    lowered = fmt.strip().lower()
    if lowered not in _VALID_FORMATS:
        raise ValueError(f"Invalid log format: {fmt}")
    return lowered


def _parse_flag(raw: str) -> bool:
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def load_logging_options_from_env(prefix: str = "MORI") -> LoggingOptions:
    """Load logging options from environment.

    Env vars:
        - MORI_LOG_LEVEL
        - MORI_LOG_FORMAT
        - MORI_LOG_FILE
        - MORI_LOG_REDACT ("0" disables redaction)
    """
    defaults = LoggingOptions()
    return LoggingOptions(
        level=os.getenv(f"{prefix}_LOG_LEVEL", defaults.level),
        format=os.getenv(f"{prefix}_LOG_FORMAT", defaults.format),
        file=os.getenv(f"{prefix}_LOG_FILE") or None,
        redact=_parse_flag(os.getenv(f"{prefix}_LOG_REDACT", "1")),
    )


def _attach(logger: logging.Logger, handler: logging.Handler, fmt: str, text_pattern: str, redact: bool) -> None:
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(text_pattern))
    if redact:
        handler.addFilter(RedactionFilter())
    logger.addHandler(handler)


def configure_logging(options: LoggingOptions) -> logging.Logger:
    """Configure the ``mori`` logger hierarchy.

    Replaces any handlers installed by a previous call. Logs go to stderr and,
    when ``options.file`` is set, to a rotating file as well.

    Raises:
        ValueError: If ``options.format`` is not ``text`` or ``json``
    """
    fmt = _normalize_format(options.format)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, options.level.strip().upper(), logging.INFO))
    logger.handlers.clear()
    logger.propagate = False

    _attach(logger, logging.StreamHandler(sys.stderr), fmt, "%(levelname)s %(name)s: %(message)s", options.redact)

    if options.file:
        file_handler = RotatingFileHandler(
            options.file,
            maxBytes=options.max_bytes,
            backupCount=options.backup_count,
        )
        _attach(logger, file_handler, fmt, "%(asctime)s %(levelname)s %(name)s: %(message)s", options.redact)

    return logger

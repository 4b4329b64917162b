from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_REDACTED_FIELDS = frozenset({"token", "interaction_token", "bot_token"})


@dataclass(frozen=True)
class LogConfig:
    path: Optional[Path]
    level: str = "INFO"
    max_bytes: int = 5 * 1024 * 1024
    backup_count: int = 3


def _coerce(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_coerce(item) for item in value]
    if isinstance(value, dict):
        return {str(key): _coerce(item) for key, item in value.items()}
    if isinstance(value, Path):
        return str(value)
    return repr(value)


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    *,
    exc: Optional[BaseException] = None,
    **fields: Any,
) -> None:
    """Emit one structured log line: the event name plus JSON fields."""

    if not logger.isEnabledFor(level):
        return
    payload: dict[str, Any] = {"event": event}
    for key, value in fields.items():
        if key in _REDACTED_FIELDS and value:
            payload[key] = "<redacted>"
            continue
        payload[key] = _coerce(value)
    if exc is not None:
        payload["error"] = str(exc)
        payload["error_type"] = type(exc).__name__
    logger.log(
        level,
        json.dumps(payload, ensure_ascii=True, sort_keys=False),
        exc_info=exc if exc is not None and level >= logging.ERROR else None,
    )


def setup_rotating_logger(name: str, config: LogConfig) -> logging.Logger:
    logger = logging.getLogger(name)
    level = logging.getLevelName(config.level.upper())
    logger.setLevel(level if isinstance(level, int) else logging.INFO)
    formatter = logging.Formatter(_LOG_FORMAT)

    if not any(getattr(h, "_jill_stream", False) for h in logger.handlers):
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(formatter)
        stream._jill_stream = True  # type: ignore[attr-defined]
        logger.addHandler(stream)

    if config.path is not None and not any(
        isinstance(h, RotatingFileHandler) for h in logger.handlers
    ):
        config.path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            config.path,
            maxBytes=config.max_bytes,
            backupCount=config.backup_count,
            encoding="utf-8",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False
    return logger

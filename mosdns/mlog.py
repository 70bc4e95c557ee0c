"""Logger construction: console or JSON output to stderr or a file."""

from __future__ import annotations

import datetime
import itertools
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any, Dict, Union

_ROOT_NAME = "mosdns"

_LEVELS = {
    "": logging.INFO,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
}

_LEVEL_NAMES = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "fatal",
}

_STANDARD_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {
    "message",
    "asctime",
}


@dataclass
class LogConfig:
    """Logger settings.

    level: debug, info, warn, error, dpanic, panic or fatal; empty means info.
    file: path of a file to append to; empty means stderr.
    production: write JSON lines instead of console text.
    """

    level: str = ""
    file: str = ""
    production: bool = False


def _parse_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    key = level.lower() if level.isupper() else level
    try:
        return _LEVELS[key]
    except KeyError:
        raise ValueError(f"invalid log level: unrecognized level: {level!r}") from None


def _level_name(record: logging.LogRecord) -> str:
    return _LEVEL_NAMES.get(record.levelno, record.levelname.lower())


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


class _ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.datetime.fromtimestamp(record.created).astimezone()
        parts = [
            ts.isoformat(timespec="milliseconds"),
            _level_name(record).upper(),
            record.name,
            record.getMessage(),
        ]
        extra = _fields(record)
        if extra:
            parts.append(json.dumps(extra, default=str))
        text = "\t".join(parts)
        if record.exc_info:
            text += "\n" + self.formatException(record.exc_info)
        return text


class _JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "level": _level_name(record),
            "ts": record.created,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(_fields(record))
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _configure(lg: logging.Logger, handler: logging.Handler, level: int) -> logging.Logger:
    for old in list(lg.handlers):
        lg.removeHandler(old)
    lg.addHandler(handler)
    lg.setLevel(level)
    lg.propagate = False
    return lg


_logger_ids = itertools.count(1)


def new_logger(config: LogConfig) -> logging.Logger:
    """Build a new logger from config."""
    level = _parse_level(config.level)
    handler: logging.Handler
    if config.file:
        try:
            handler = logging.FileHandler(config.file, mode="a", encoding="utf-8")
        except OSError as exc:
            raise OSError(f"open log file: {exc}") from exc
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_JSONFormatter() if config.production else _ConsoleFormatter())
    lg = logging.getLogger(f"{_ROOT_NAME}.{next(_logger_ids)}")
    return _configure(lg, handler, level)


def _make_global() -> logging.Logger:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_ConsoleFormatter())
    return _configure(logging.getLogger(_ROOT_NAME), handler, logging.INFO)


def _make_nop() -> logging.Logger:
    return _configure(
        logging.getLogger(f"{_ROOT_NAME}.nop"), logging.NullHandler(), logging.CRITICAL + 1
    )


_global = _make_global()
_nop = _make_nop()


def logger() -> logging.Logger:
    """The global logger, writing console text to stderr."""
    return _global


def set_level(level: Union[str, int]) -> None:
    """Set the level of the global logger."""
    _global.setLevel(_parse_level(level))


def nop() -> logging.Logger:
    """A logger that never writes anything."""
    return _nop
import json
import logging
import os
import re

QUIET_LOGGERS = ("httpx", "httpcore", "urllib3", "PIL")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] - %(message)s"

_WHITESPACE = re.compile(r"\s+")


def squash(text: str, max_len: int = 0) -> str:
    """Collapse whitespace to single spaces and cut at ``max_len`` (0 keeps everything)."""
    text = _WHITESPACE.sub(" ", text).strip()
    if max_len and len(text) > max_len:
        return text[:max_len] + " …(truncated)"
    return text


class OneLineFormatter(logging.Formatter):
    """Keeps each record on one line so multi-line prompts and tracebacks stay greppable."""

    def __init__(self, fmt=None, datefmt=None, max_len: int = 0):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.max_len = max_len

    def format(self, record: logging.LogRecord) -> str:
        return squash(super().format(record), self.max_len)


def compact_json(data, max_len: int = 0) -> str:
    """Single-line JSON for log messages (node outputs, provider payloads)."""
    try:
        text = json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        text = repr(data)
    return squash(text, max_len)


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, "") or default)
    except ValueError:
        return default


def setup_logging() -> None:
    """
    Configure the root logger from WORKFLOW_LOG_LEVEL and WORKFLOW_LOG_MAX_LEN.

    When something else already installed handlers (pytest, gunicorn) only
    the level is applied. HTTP client and imaging loggers never go below
    WARNING since httpx logs every poll request at INFO.
    """
    level = logging.getLevelName(os.getenv("WORKFLOW_LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(OneLineFormatter(
            fmt=LOG_FORMAT, datefmt="%H:%M:%S", max_len=_env_int("WORKFLOW_LOG_MAX_LEN", 0),
        ))
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, level))

"""Logging for the sync pipeline.

Humans read the console; upload runs are analysed later from the JSONL
files, one object per record, with sync events flattened into top-level keys.
"""

import json
import logging
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

__all__ = [
    "setup_logging",
    "get_logger",
    "log_sync_event",
    "mask_token",
    "TokenRedactionFilter",
    "LOG_DIR",
]

LOG_DIR = Path(__file__).parent.parent / "logs"

ROOT_LOGGER = "catalog_sync"

BEARER_RE = re.compile(r"(Bearer\s+)([A-Za-z0-9._~+/=-]{13,})")


def mask_token(token: Optional[str]) -> str:
    """Shorten a bearer token for log output."""
    if not token:
        return "<none>"
    return f"{token[:12]}..."


class TokenRedactionFilter(logging.Filter):
    """Masks ``Bearer <token>`` occurrences in messages, e.g. in dumped
    request headers."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if "Bearer" in message:
            record.msg = BEARER_RE.sub(lambda m: m.group(1) + mask_token(m.group(2)), message)
            record.args = ()
        return True


class SyncEventFileHandler(logging.Handler):
    """Appends records to ``<prefix>_YYYYMMDD.jsonl`` in ``log_dir``.

    The file name is resolved per record, so a run crossing midnight rolls
    over to the next day's file.
    """

    def __init__(self, log_dir: Path, prefix: str = "sync"):
        super().__init__()
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.prefix = prefix

    def current_file(self) -> Path:
        return self.log_dir / f"{self.prefix}_{datetime.now():%Y%m%d}.jsonl"

    @staticmethod
    def to_entry(record: logging.LogRecord) -> Dict[str, Any]:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        event_type = getattr(record, "event_type", None)
        if event_type:
            entry["event_type"] = event_type
            entry.update(getattr(record, "event_data", None) or {})
        if record.exc_info:
            entry["exception"] = logging.Formatter().formatException(record.exc_info)
        return entry

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.to_entry(record), ensure_ascii=False, default=str)
            with open(self.current_file(), "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except Exception:
            self.handleError(record)


class ConsoleFormatter(logging.Formatter):
    """``HH:MM:SS [LEVEL] message``, with the level colored on a terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool):
        super().__init__("%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S")
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        if not self.use_color:
            return text
        tag = f"[{record.levelname}]"
        color = self.LEVEL_COLORS.get(record.levelname, "")
        return text.replace(tag, f"{color}{tag}{self.RESET}", 1)


def setup_logging(
    level: int = logging.INFO,
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_dir: Optional[Path] = None,
) -> logging.Logger:
    """Configure the ``catalog_sync`` logger tree.

    Args:
        level: Console level; the JSONL file always captures DEBUG
        log_to_file: Write JSONL records under ``log_dir``
        log_to_console: Write human-readable lines to stdout
        log_dir: Directory for JSONL files (default: ``logs/``)

    Returns:
        The package root logger
    """
    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(logging.DEBUG if log_to_file else level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    redaction = TokenRedactionFilter()

    if log_to_console:
        console = logging.StreamHandler(sys.stdout)
        console.setLevel(level)
        console.setFormatter(ConsoleFormatter(use_color=sys.stdout.isatty()))
        console.addFilter(redaction)
        root.addHandler(console)

    if log_to_file:
        events = SyncEventFileHandler(log_dir or LOG_DIR)
        events.setLevel(logging.DEBUG)
        events.addFilter(redaction)
        root.addHandler(events)

    return root


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Logger below the package root (``catalog_sync.<name>``)."""
    if name == ROOT_LOGGER or name.startswith(f"{ROOT_LOGGER}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def log_sync_event(
    event_type: str,
    data: Dict[str, Any],
    level: int = logging.INFO,
    logger_name: str = ROOT_LOGGER,
) -> None:
    """Log a structured sync event.

    ``data["message"]`` is the human-readable line; every other key becomes a
    top-level field of the JSONL entry.

    Args:
        event_type: e.g. 'product_upload', 'deferred_batch', 'retry_scheduled'
        data: Event payload
        level: Log level
        logger_name: Logger to emit on
    """
    logger = get_logger(logger_name)
    if not logger.isEnabledFor(level):
        return
    payload = {k: v for k, v in data.items() if k != "message"}
    logger.log(
        level,
        data.get("message", event_type),
        extra={"event_type": event_type, "event_data": payload},
    )

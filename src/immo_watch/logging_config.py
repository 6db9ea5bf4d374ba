from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

CONSOLE_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
AUDIT_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"

_INSTALLED_HANDLERS: list[logging.Handler] = []


class IsoFormatter(logging.Formatter):
    """Formatter whose timestamps are ISO-8601 in UTC."""

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        return created.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def setup_logging(level: str = "INFO", audit_log_path: str | Path | None = None) -> None:
    """Log to stderr and, when a path is given, append to the instance audit log.

    The audit log always records DEBUG and up so evictions and persistence
    details are kept even when the console is quieter.
    """
    root = logging.getLogger()
    for handler in _INSTALLED_HANDLERS:
        root.removeHandler(handler)
        handler.close()
    _INSTALLED_HANDLERS.clear()

    console_level = logging.getLevelName(level.upper())
    if not isinstance(console_level, int):
        console_level = logging.INFO

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    _INSTALLED_HANDLERS.append(console)

    root_level = console_level
    if audit_log_path is not None:
        path = Path(audit_log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        audit = logging.FileHandler(path, mode="a", encoding="utf-8")
        audit.setLevel(logging.DEBUG)
        audit.setFormatter(IsoFormatter(AUDIT_FORMAT))
        _INSTALLED_HANDLERS.append(audit)
        root_level = logging.DEBUG

    for handler in _INSTALLED_HANDLERS:
        root.addHandler(handler)
    root.setLevel(root_level)

    # Third-party chatter stays out of the audit log.
    for noisy in ("urllib3", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

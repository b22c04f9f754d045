# medtracker/core/logging_utils.py
from __future__ import annotations

import logging
import os
from datetime import datetime, timedelta
from enum import Enum
from logging.handlers import RotatingFileHandler
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s — %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER = "medtracker"

# marks handlers installed by setup_logging so a second call replaces only those
_OWNED = "_medtracker_owned"


def _owned(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _OWNED, True)
    return handler


def setup_logging(cfg: Any) -> logging.Logger:
    """
    Configure the `medtracker` logger tree:
    - audit file (rotating) keeps DEBUG and above, i.e. every trigger swap,
      zone change and dose status change;
    - console shows CONSOLE_LOG_LEVEL (INFO by default) and above.

    Handlers added by the host on the same logger are left alone.
    """
    path = cfg.AUDIT_LOG_FILE
    log_dir = os.path.dirname(path)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(logging.DEBUG)
    for h in [h for h in root.handlers if getattr(h, _OWNED, False)]:
        root.removeHandler(h)
        h.close()

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)

    audit = _owned(
        RotatingFileHandler(
            path,
            maxBytes=int(getattr(cfg, "AUDIT_LOG_MAX_BYTES", 1_000_000)),
            backupCount=int(getattr(cfg, "AUDIT_LOG_BACKUPS", 10)),
            encoding="utf-8",
        )
    )
    audit.setLevel(logging.DEBUG)
    audit.setFormatter(formatter)

    console = _owned(logging.StreamHandler())
    console.setLevel(getattr(cfg, "CONSOLE_LOG_LEVEL", "INFO"))
    console.setFormatter(formatter)

    root.addHandler(audit)
    root.addHandler(console)
    return root


def _render(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return f"{value.total_seconds():g}s"
    if isinstance(value, Enum):
        return value.value
    return value


def kv(**kwargs: Any) -> str:
    """`key='value'` pairs for structured log lines (values repr()'d)."""
    return " ".join(f"{k}={_render(v)!r}" for k, v in kwargs.items())

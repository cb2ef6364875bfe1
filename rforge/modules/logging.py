# rforge/modules/logging.py
# -*- coding: utf-8 -*-
"""
rforge logging

Features:
 - Console color formatter
 - Optional rotating file handler (logging.file in the config)
 - Per-module tagging through LoggerAdapter ('rforge_module' on every record)
 - Thread-safe reconfiguration from a configuration snapshot
 - Level counters (get_metrics) used by the CLI summary
"""

from __future__ import annotations

import sys
import logging
import logging.handlers
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

_DEFAULT_FORMAT = "[%(asctime)s] [%(levelname)s] [%(rforge_module)s] %(message)s"
_FILE_FORMAT = "%(asctime)s %(levelname)s [%(rforge_module)s] %(message)s"


# ----------------------
# Color formatter
# ----------------------
class ColorFormatter(logging.Formatter):
    COLORS = {
        logging.DEBUG: "\033[37m",    # light gray
        logging.INFO: "\033[36m",     # cyan
        logging.WARNING: "\033[33m",  # yellow
        logging.ERROR: "\033[31m",    # red
        logging.CRITICAL: "\033[41;37m",  # white on red
    }
    RESET = "\033[0m"

    def __init__(self, fmt: Optional[str] = None, datefmt: Optional[str] = None, color: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt)
        self.color = color

    def format(self, record):
        msg = super().format(record)
        if self.color:
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{msg}{self.RESET}"
        return msg


class _ModuleDefault(logging.Filter):
    """Records emitted outside an adapter still need 'rforge_module' for the format string."""

    def filter(self, record):
        if not hasattr(record, "rforge_module"):
            record.rforge_module = record.name
        return True


# ----------------------
# RforgeLogger (singleton)
# ----------------------
class RforgeLogger:
    _instance = None
    _singleton_lock = threading.Lock()

    def __new__(cls):
        with cls._singleton_lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._inited = False
        return cls._instance

    def __init__(self):
        if self._inited:
            return
        self._lock = threading.RLock()
        self._root = logging.getLogger("rforge")
        self._root.propagate = False
        self._handlers: List[logging.Handler] = []
        self._metrics: Dict[str, int] = {lvl: 0 for lvl in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")}
        self._root.addFilter(_ModuleDefault())
        self._root.addFilter(self._count_levels_filter)
        self.apply({})
        self._inited = True

    def _count_levels_filter(self, record):
        name = record.levelname
        if name in self._metrics:
            self._metrics[name] += 1
        return True

    def apply(self, cfg: Dict[str, Any]) -> None:
        """(Re)build handlers from a logging settings mapping: level, file, color."""
        with self._lock:
            for h in list(self._handlers):
                self._root.removeHandler(h)
                h.close()
            self._handlers.clear()

            level = getattr(logging, str(cfg.get("level") or "INFO").upper(), logging.INFO)

            ch = logging.StreamHandler(sys.stderr)
            ch.setLevel(level)
            ch.addFilter(_ModuleDefault())
            ch.setFormatter(ColorFormatter(_DEFAULT_FORMAT, datefmt="%H:%M:%S", color=bool(cfg.get("color", True))))
            self._root.addHandler(ch)
            self._handlers.append(ch)

            if cfg.get("file"):
                file_path = Path(cfg["file"]).expanduser()
                file_path.parent.mkdir(parents=True, exist_ok=True)
                fh = logging.handlers.RotatingFileHandler(str(file_path), maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
                fh.setLevel(logging.DEBUG)
                fh.addFilter(_ModuleDefault())
                fh.setFormatter(logging.Formatter(_FILE_FORMAT))
                self._root.addHandler(fh)
                self._handlers.append(fh)

            # the root captures everything the handlers may want
            self._root.setLevel(logging.DEBUG if cfg.get("file") else level)

    def get_logger(self, module_name: str) -> logging.LoggerAdapter:
        """Return a LoggerAdapter that injects 'rforge_module' into records."""
        return logging.LoggerAdapter(self._root, {"rforge_module": module_name})

    def get_metrics(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._metrics)


# ----------------------
# Public factory
# ----------------------
_GLOBAL_LOGGER = RforgeLogger()


def get_logger(module: str) -> logging.LoggerAdapter:
    return _GLOBAL_LOGGER.get_logger(module)


def configure(settings: Any) -> None:
    """Apply a snapshot's logging section (pydantic model or plain mapping)."""
    if hasattr(settings, "model_dump"):
        settings = settings.model_dump()
    _GLOBAL_LOGGER.apply(dict(settings or {}))


def get_metrics() -> Dict[str, int]:
    return _GLOBAL_LOGGER.get_metrics()

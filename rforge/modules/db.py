# rforge/modules/db.py
"""
Build state ledger for rforge.

Persisted as JSON:

    {"built": {"<name>": {"version": "...", "release": "..."}}}

- load(): empty ledger when the file is absent; LedgerError when it is not
  valid JSON of that shape (a lost ledger would silently rebuild everything)
- record(): update memory, then flush the whole document under the ledger
  lock; written to a temporary sibling and moved into place
- A name in the ledger counts as built. There is no expiry.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Dict, Iterator, Optional, Union

from rforge.modules.errors import LedgerError
from rforge.modules.logging import get_logger

_logger = get_logger("db")


class BuildLedger:
    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._built: Dict[str, Dict[str, str]] = {}

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------
    # Load / flush
    # ------------------------
    def load(self) -> "BuildLedger":
        if not self._path.exists():
            _logger.info("ledger %s not found; starting empty", self._path)
            self._built = {}
            return self
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise LedgerError(f"cannot read ledger {self._path}: {e}") from e
        built = data.get("built") if isinstance(data, dict) else None
        if not isinstance(built, dict):
            raise LedgerError(f"ledger {self._path} has no 'built' mapping")
        self._built = {str(k): dict(v) for k, v in built.items() if isinstance(v, dict)}
        _logger.info("ledger loaded: %d packages built", len(self._built))
        return self

    def _flush(self) -> None:
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps({"built": self._built}, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self._path)
        except OSError as e:
            raise LedgerError(f"cannot write ledger {self._path}: {e}") from e

    # ------------------------
    # API
    # ------------------------
    def record(self, name: str, version: str, release: str) -> None:
        with self._lock:
            self._built[name] = {"version": version, "release": release}
            self._flush()
        _logger.debug("ledger: %s-%s-%s recorded", name, version, release)

    def get(self, name: str) -> Optional[Dict[str, str]]:
        entry = self._built.get(name)
        return dict(entry) if entry is not None else None

    def __contains__(self, name: object) -> bool:
        return name in self._built

    def __len__(self) -> int:
        return len(self._built)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._built))

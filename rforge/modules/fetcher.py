# rforge/modules/fetcher.py
"""
fetcher.py - source package fetch + content-addressed cache for rforge

Features:
- Cache key: sha256 of name-version-release; artifact stored as <key>.src.rpm
- Cache hit = file exists; no process is spawned
- Cache miss: dnf download --source into the cache dir, locate the produced
  .src.rpm (exact sourcerpm name when known, else name-version-release glob),
  atomically rename it to the keyed name
- Never invalidated automatically; clear() is the operator's reset

Two concurrent misses for the same key may both download; the final
os.replace is atomic so the cache never holds a partial file under the key.
"""

from __future__ import annotations

import os
import hashlib
from pathlib import Path
from typing import Dict, List

from rforge.modules.config import Snapshot
from rforge.modules.errors import FetchError, SourceNotFound
from rforge.modules.logging import get_logger
from rforge.modules.pkgtool import PackageTool
from rforge.modules.resolver import Candidate

logger = get_logger("fetcher")

SRPM_SUFFIX = ".src.rpm"


def cache_key(name: str, version: str, release: str) -> str:
    return hashlib.sha256(f"{name}-{version}-{release}".encode("utf-8")).hexdigest()


class SourceFetcher:
    def __init__(self, snapshot: Snapshot, pkgtool: PackageTool):
        self.cache_dir = Path(snapshot.system.cache_dir)
        self.pkgtool = pkgtool
        self._metrics = {"cache.hits": 0, "cache.misses": 0}

    def cache_path_for(self, cand: Candidate) -> Path:
        return self.cache_dir / (cache_key(cand.name, cand.version, cand.release) + SRPM_SUFFIX)

    def _locate(self, cand: Candidate) -> List[Path]:
        if cand.sourcerpm:
            exact = self.cache_dir / cand.sourcerpm
            return [exact] if exact.is_file() else []
        return sorted(self.cache_dir.glob(f"{cand.nvr}*{SRPM_SUFFIX}"))

    def fetch(self, cand: Candidate) -> Path:
        target = self.cache_path_for(cand)
        if target.is_file():
            self._metrics["cache.hits"] += 1
            logger.info("cache hit for %s (%s)", cand.nvr, target.name)
            return target
        self._metrics["cache.misses"] += 1
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.info("downloading source for %s", cand.nvr)
        self.pkgtool.download_source(cand.nvr, str(self.cache_dir))
        found = self._locate(cand)
        if not found:
            raise SourceNotFound(f"no source package produced for {cand.nvr} in {self.cache_dir}")
        if len(found) > 1:
            logger.debug("several source packages match %s, using %s", cand.nvr, found[0].name)
        try:
            os.replace(found[0], target)
        except OSError as e:
            raise FetchError(f"cannot store {found[0].name} in cache: {e}") from e
        return target

    def clear(self) -> int:
        """Delete every cached artifact; returns how many were removed."""
        removed = 0
        if not self.cache_dir.is_dir():
            return removed
        for p in self.cache_dir.glob(f"*{SRPM_SUFFIX}"):
            p.unlink()
            removed += 1
        logger.info("cleared %d cached source packages from %s", removed, self.cache_dir)
        return removed

    def get_metrics(self) -> Dict[str, int]:
        return dict(self._metrics)

# rforge/modules/depends.py
"""Build-requirement edges of a fetched source package."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Set, Union

from rforge.modules.config import Snapshot
from rforge.modules.logging import get_logger
from rforge.modules.pkgtool import PackageTool

logger = get_logger("depends")


def filter_requirements(lines: Iterable[str], snapshot: Snapshot) -> Set[str]:
    """Reduce raw ``rpm -qpR`` lines to a set of buildable package names."""
    names: Set[str] = set()
    for line in lines:
        tokens = line.split()
        if not tokens:
            continue
        req = tokens[0]
        # rpmlib(...) features, file paths and boolean expressions are not packages
        if req.startswith("rpmlib(") or req.startswith("/") or req.startswith("("):
            continue
        if snapshot.is_excluded(req):
            continue
        names.add(req)
    return names


class DependencyExtractor:
    def __init__(self, snapshot: Snapshot, pkgtool: PackageTool):
        self.snapshot = snapshot
        self.pkgtool = pkgtool

    def deps(self, artifact: Union[str, Path]) -> Set[str]:
        found = filter_requirements(self.pkgtool.requires(str(artifact)), self.snapshot)
        logger.debug("%s requires %s", Path(artifact).name, sorted(found))
        return found

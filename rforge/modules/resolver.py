# rforge/modules/resolver.py
"""
resolver.py - candidate query and selection for rforge

Features:
- query(name): one combined repoquery across every configured repository group
- pick_best(candidates, name): filter -> tier -> tie-break
    1. drop names matching an exclusion glob
    2. drop unstable-keyworded candidates unless the package is accepted
    3. tier by origin: VCS > rolling > testing > stable
    4. highest tier wins; within a tier the greater version (rpm semantics) wins
- resolve(name): query + pick_best, None when nothing survives
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import List, Optional, Sequence, Tuple

from rforge.modules.config import Snapshot
from rforge.modules.logging import get_logger
from rforge.modules.pkgtool import PackageTool

logger = get_logger("resolver")

VCS_MARKERS = frozenset({"git", "svn", "hg", "bzr"})
_WORD = re.compile(r"[a-z]+")
# snapshot releases glue the marker to a short hash: 20240101gitdeadbee
_VCS = re.compile(r"(?<![a-z])(" + "|".join(sorted(VCS_MARKERS)) + ")")


class Tier(IntEnum):
    STABLE = 0
    TESTING = 1
    ROLLING = 2
    VCS = 3


def _vcs_markers(*values: str) -> List[str]:
    return [m for v in values for m in _VCS.findall((v or "").lower())]


def _words(*values: str, extra: Sequence[str] = ()) -> Tuple[str, ...]:
    out: List[str] = []
    for w in [w for v in values for w in _WORD.findall((v or "").lower())] + list(extra):
        if w not in out:
            out.append(w)
    return tuple(out)


@dataclass(frozen=True)
class Candidate:
    name: str
    version: str
    release: str
    repo: str
    keywords: Tuple[str, ...] = ()
    sourcerpm: Optional[str] = None
    epoch: str = "0"
    tier: Optional[Tier] = field(default=None, compare=False)

    @property
    def evr(self) -> str:
        return f"{self.epoch}:{self.version}-{self.release}"

    @property
    def nvr(self) -> str:
        return f"{self.name}-{self.version}-{self.release}"

    @classmethod
    def parse(cls, line: str) -> Optional["Candidate"]:
        """Parse one ``name|version|release|repoid|sourcerpm|epoch`` repoquery line."""
        parts = line.strip().split("|")
        if len(parts) < 4 or not all(parts[:4]):
            return None
        name, version, release, repo = parts[:4]
        srpm = parts[4] if len(parts) > 4 and parts[4] and parts[4] != "(none)" else None
        epoch = parts[5] if len(parts) > 5 and parts[5].isdigit() else "0"
        return cls(name=name, version=version, release=release, repo=repo,
                   keywords=_words(version, release, repo, extra=_vcs_markers(version, release)),
                   sourcerpm=srpm, epoch=epoch)


class PackageResolver:
    def __init__(self, snapshot: Snapshot, pkgtool: PackageTool):
        self.snapshot = snapshot
        self.pkgtool = pkgtool

    # -----------------------
    # Query
    # -----------------------
    def query(self, name: str) -> List[Candidate]:
        repos = self.snapshot.all_repos()
        if not repos:
            logger.warning("no repositories configured; cannot query %s", name)
            return []
        out: List[Candidate] = []
        for line in self.pkgtool.repoquery(name, repos):
            cand = Candidate.parse(line)
            if cand is None:
                logger.debug("unparseable repoquery line for %s: %r", name, line)
                continue
            out.append(cand)
        return out

    # -----------------------
    # Selection
    # -----------------------
    def tier_of(self, cand: Candidate) -> Tier:
        if _vcs_markers(cand.version, cand.release):
            return Tier.VCS
        repos = self.snapshot.repos
        if cand.repo in repos.get("rolling", ()):
            return Tier.ROLLING
        if cand.repo in repos.get("testing", ()):
            return Tier.TESTING
        return Tier.STABLE

    def _viable(self, cand: Candidate, name: str) -> bool:
        if self.snapshot.is_excluded(cand.name):
            return False
        unstable = self.snapshot.build.unstable_keywords.intersection(cand.keywords)
        if unstable and not self.snapshot.is_accepted(name):
            logger.debug("%s-%s from %s is keyworded %s; not accepted", cand.name, cand.evr, cand.repo, sorted(unstable))
            return False
        return True

    def _compare(self, a: Candidate, b: Candidate) -> int:
        if a.tier != b.tier:
            return 1 if a.tier > b.tier else -1
        return self.pkgtool.vercmp(a.evr, b.evr)

    def pick_best(self, candidates: List[Candidate], name: str) -> Optional[Candidate]:
        best: Optional[Candidate] = None
        for cand in candidates:
            if not self._viable(cand, name):
                continue
            scored = replace(cand, tier=self.tier_of(cand))
            if best is None or self._compare(scored, best) > 0:
                best = scored
        return best

    def resolve(self, name: str) -> Optional[Candidate]:
        best = self.pick_best(self.query(name), name)
        if best is not None:
            logger.info("selected %s-%s from %s (tier=%s)", best.name, best.evr, best.repo, best.tier.name.lower())
        return best

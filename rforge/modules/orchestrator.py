# rforge/modules/orchestrator.py
"""
orchestrator.py - recursive source rebuild driver for rforge

build_pkg(name), depth first with the ledger as memo:
  1. ledgered                -> nothing to do
  2. no viable candidate     -> warning, soft skip (not ledgered, retried next run)
  3. fetch the source package
  4. build every build requirement first (post-order)
  5. isolated build in a Workspace (always torn down)
  6. copy RPMs to <build_root>/<name>/ and record the ledger entry

A package met again while it is still being built raises CycleDetected.
rebuild_all() / build_many() keep going after a top-level failure and
return a BatchReport.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from rforge.modules.buildsystem import RpmBuildBackend, assemble_env
from rforge.modules.config import Snapshot
from rforge.modules.db import BuildLedger
from rforge.modules.depends import DependencyExtractor
from rforge.modules.errors import BuildError, CycleDetected, RforgeError
from rforge.modules.fetcher import SourceFetcher
from rforge.modules.logging import get_logger
from rforge.modules.pkgtool import CommandRunner, PackageTool
from rforge.modules.resolver import Candidate, PackageResolver
from rforge.modules.sandbox import ContainerTool, Workspace

logger = get_logger("orchestrator")

STAGING_DIR = ".staging"


class Outcome(Enum):
    BUILT = "built"
    LEDGERED = "ledgered"
    SKIPPED = "skipped"


@dataclass
class BatchReport:
    """Per-batch result. ``built`` includes dependencies built on the way."""
    built: List[str] = field(default_factory=list)
    ledgered: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


class Orchestrator:
    def __init__(self, snapshot: Snapshot, *, resolver: PackageResolver, fetcher: SourceFetcher,
                 extractor: DependencyExtractor, ledger: BuildLedger, backend: RpmBuildBackend,
                 containers: ContainerTool, pkgtool: PackageTool):
        self.snapshot = snapshot
        self.resolver = resolver
        self.fetcher = fetcher
        self.extractor = extractor
        self.ledger = ledger
        self.backend = backend
        self.containers = containers
        self.pkgtool = pkgtool
        self.build_root = Path(snapshot.system.build_root)
        self._built: List[str] = []

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, runner: Optional[CommandRunner] = None) -> "Orchestrator":
        """Wire the default dnf/rpm/buildah collaborators and load the ledger."""
        runner = runner or CommandRunner()
        pkgtool = PackageTool(runner)
        return cls(
            snapshot,
            resolver=PackageResolver(snapshot, pkgtool),
            fetcher=SourceFetcher(snapshot, pkgtool),
            extractor=DependencyExtractor(snapshot, pkgtool),
            ledger=BuildLedger(snapshot.system.state_file).load(),
            backend=RpmBuildBackend(snapshot),
            containers=ContainerTool(runner, snapshot.system.container_tool),
            pkgtool=pkgtool,
        )

    # -----------------------
    # Single package
    # -----------------------
    def build_pkg(self, name: str) -> Outcome:
        return self._build(name, [])

    def _build(self, name: str, stack: List[str]) -> Outcome:
        if name in self.ledger:
            logger.debug("%s already built", name)
            return Outcome.LEDGERED
        if name in stack:
            raise CycleDetected(stack[stack.index(name):] + [name])
        cand = self.resolver.resolve(name)
        if cand is None:
            logger.warning("no viable candidate for %s; skipping", name)
            return Outcome.SKIPPED
        stack.append(name)
        try:
            artifact = self.fetcher.fetch(cand)
            for dep in sorted(self.extractor.deps(artifact)):
                if dep == name:
                    continue
                self._build(dep, stack)
            self._isolated_build(name, cand, artifact)
        finally:
            stack.pop()
        return Outcome.BUILT

    def _isolated_build(self, name: str, cand: Candidate, artifact: Path) -> None:
        flags = self.snapshot.flags_for(name)
        env = assemble_env(self.snapshot.compiler_flags, self.snapshot.jobs)
        dest = self.build_root / name
        logger.info("building %s (flags: %s)", cand.nvr, " ".join(flags) or "-")
        with Workspace(self.containers, name, self.snapshot.system.base_image,
                       staging_root=self.build_root / STAGING_DIR) as ws:
            rpms = self.backend.build(ws, artifact, flags, env)
            try:
                dest.mkdir(parents=True, exist_ok=True)
                for rpm in rpms:
                    shutil.copy2(rpm, dest / rpm.name)
            except OSError as e:
                raise BuildError(name, "collect", e) from e
        self.ledger.record(name, cand.version, cand.release)
        self._built.append(name)
        logger.info("built %s -> %s", cand.nvr, dest)

    # -----------------------
    # Batches
    # -----------------------
    def build_many(self, names: Iterable[str]) -> BatchReport:
        report = BatchReport()
        for name in names:
            mark = len(self._built)
            try:
                outcome = self.build_pkg(name)
            except (RforgeError, OSError) as e:
                logger.error("%s failed: %s", name, e)
                report.failed[name] = str(e)
            else:
                if outcome is Outcome.SKIPPED:
                    report.skipped.append(name)
                elif outcome is Outcome.LEDGERED:
                    report.ledgered.append(name)
            # dependencies may have been built before a failure
            report.built.extend(self._built[mark:])
        logger.info("batch done: %d built, %d already built, %d skipped, %d failed",
                    len(report.built), len(report.ledgered), len(report.skipped), len(report.failed))
        return report

    def rebuild_all(self) -> BatchReport:
        names: List[str] = []
        seen = set()
        for n in self.pkgtool.list_installed():
            if n in seen or self.snapshot.is_excluded(n):
                continue
            seen.add(n)
            names.append(n)
        logger.info("rebuilding %d installed packages", len(names))
        return self.build_many(names)

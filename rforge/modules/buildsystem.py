# rforge/modules/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - rpmbuild backend for rforge workspaces

API:
  backend = RpmBuildBackend(snapshot)
  rpms = backend.build(workspace, artifact, flags, env)

Stages (each failure raises BuildError naming the stage):
  toolchain  dnf install -y <build.toolchain>
  copy       buildah copy <srpm> into the container
  builddep   dnf builddep -y <srpm>
  env        buildah config --env for every compiler flag
  rpmbuild   rpmbuild --rebuild with --with/--without and optflags/build_ldflags/_smp_mflags
  extract    tar the RPMS tree out of the container and unpack *.rpm on the host
"""

from __future__ import annotations

import io
import shutil
import tarfile
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Sequence, TypeVar, Union

from rforge.modules.config import Snapshot
from rforge.modules.errors import BuildError, CommandError
from rforge.modules.logging import get_logger
from rforge.modules.sandbox import Workspace

logger = get_logger("buildsystem")

T = TypeVar("T")

SRPM_DIR = "/root/rpmbuild/SRPMS/"
RPMS_DIR = "/root/rpmbuild/RPMS"

# compiler flag -> rpm macro it overrides
MACRO_FLAGS = (
    ("CFLAGS", "optflags"),
    ("LDFLAGS", "build_ldflags"),
    ("MAKEOPTS", "_smp_mflags"),
)


# --- environment assembly ---
def assemble_env(compiler_flags: Mapping[str, str], jobs: int) -> Dict[str, str]:
    """
    Environment exported into the build container.
    Every compiler flag is passed through; MAKEFLAGS mirrors MAKEOPTS and JOBS the resolved job count.
    """
    env = {k: str(v) for k, v in compiler_flags.items() if v}
    if "MAKEOPTS" in env and "MAKEFLAGS" not in env:
        env["MAKEFLAGS"] = env["MAKEOPTS"]
    env["JOBS"] = str(jobs)
    return env


def feature_args(flags: Sequence[str]) -> List[str]:
    """``foo`` -> ``--with foo``; ``-foo`` -> ``--without foo``."""
    args: List[str] = []
    for tok in flags:
        if tok.startswith("-") and len(tok) > 1:
            args += ["--without", tok[1:]]
        elif tok and tok != "-":
            args += ["--with", tok]
    return args


def macro_args(env: Mapping[str, str]) -> List[str]:
    args: List[str] = []
    for key, macro in MACRO_FLAGS:
        if env.get(key):
            args += ["--define", f"{macro} {env[key]}"]
    return args


class RpmBuildBackend:
    def __init__(self, snapshot: Snapshot):
        self.toolchain = tuple(snapshot.build.toolchain)

    def _stage(self, ws: Workspace, stage: str, fn: Callable[[], T]) -> T:
        logger.info("%s: %s", ws.package, stage)
        try:
            return fn()
        except (CommandError, OSError, tarfile.TarError) as e:
            raise BuildError(ws.package, stage, e) from e

    def build(self, ws: Workspace, artifact: Union[str, Path], flags: Sequence[str],
              env: Mapping[str, str]) -> List[Path]:
        """Run every stage in ``ws``; returns the RPMs extracted into ``ws.output_dir``."""
        artifact = Path(artifact)
        inside = SRPM_DIR + artifact.name
        if self.toolchain:
            self._stage(ws, "toolchain", lambda: ws.run(["dnf", "install", "-y", *self.toolchain]))
        self._stage(ws, "copy", lambda: ws.copy_in(artifact, SRPM_DIR))
        self._stage(ws, "builddep", lambda: ws.run(["dnf", "builddep", "-y", inside]))
        self._stage(ws, "env", lambda: ws.set_env(dict(env)))
        argv = ["rpmbuild", "--rebuild", *feature_args(flags), *macro_args(env), inside]
        self._stage(ws, "rpmbuild", lambda: ws.run(argv))
        rpms = self._stage(ws, "extract", lambda: self._extract(ws))
        if not rpms:
            raise BuildError(ws.package, "extract", RuntimeError("rpmbuild produced no packages"))
        logger.info("%s: produced %s", ws.package, ", ".join(p.name for p in rpms))
        return rpms

    def _extract(self, ws: Workspace) -> List[Path]:
        res = ws.run(["tar", "-C", RPMS_DIR, "-cf", "-", "."], binary=True)
        outdir = Path(ws.output_dir)
        outdir.mkdir(parents=True, exist_ok=True)
        found: List[Path] = []
        with tarfile.open(fileobj=io.BytesIO(res.stdout), mode="r:") as tf:
            for member in tf.getmembers():
                if not member.isfile() or not member.name.endswith(".rpm"):
                    continue
                src = tf.extractfile(member)
                if src is None:
                    continue
                # flattened: arch subdirectories are not kept
                dest = outdir / Path(member.name).name
                with src, open(dest, "wb") as fh:
                    shutil.copyfileobj(src, fh)
                found.append(dest)
        return sorted(found)

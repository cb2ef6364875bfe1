# rforge/modules/pkgtool.py
"""
pkgtool.py - external command layer for rforge

Features:
- CommandRunner: single place where rforge spawns processes (debug-logged argv,
  CommandError on unexpected exit codes, binary or text capture)
- PackageTool: the dnf/rpm operations the rebuild pipeline consumes
    - repoquery(name, repos)         -> raw candidate lines
    - download_source(nvr, destdir)  -> dnf download --source
    - requires(srpm)                 -> rpm -qpR
    - vercmp(a, b)                   -> rpmdev-vercmp tri-state exit
    - list_installed()               -> rpm -qa names

Calls are blocking and carry no timeout: a hung tool blocks the run.
"""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Union

from rforge.modules.errors import CommandError
from rforge.modules.logging import get_logger

logger = get_logger("pkgtool")

# repoquery output, one candidate per line
QUERY_FORMAT = "%{name}|%{version}|%{release}|%{repoid}|%{sourcerpm}|%{epoch}\n"

# rpmdev-vercmp exit statuses
_VERCMP_EQUAL = 0
_VERCMP_FIRST = 11
_VERCMP_SECOND = 12


@dataclass
class CommandResult:
    argv: List[str]
    returncode: int
    stdout: Union[str, bytes]
    stderr: str


class CommandRunner:
    """Run external commands and capture their output."""

    def run(self, argv: Sequence[str], *, ok_codes: Iterable[int] = (0,), binary: bool = False,
            env: Optional[Dict[str, str]] = None, cwd: Optional[str] = None) -> CommandResult:
        argv = [str(a) for a in argv]
        logger.debug("RUN: %s", " ".join(argv))
        full_env = None
        if env:
            full_env = dict(os.environ)
            full_env.update(env)
        proc = subprocess.run(argv, stdout=subprocess.PIPE, stderr=subprocess.PIPE, env=full_env, cwd=cwd)
        stdout: Union[str, bytes] = proc.stdout if binary else proc.stdout.decode("utf-8", errors="replace")
        stderr = proc.stderr.decode("utf-8", errors="replace")
        if proc.returncode not in tuple(ok_codes):
            raise CommandError(argv, proc.returncode, stderr)
        return CommandResult(argv=argv, returncode=proc.returncode, stdout=stdout, stderr=stderr)


class PackageTool:
    def __init__(self, runner: Optional[CommandRunner] = None, dnf: str = "dnf"):
        self.runner = runner or CommandRunner()
        self.dnf = dnf

    def repoquery(self, name: str, repos: Sequence[str]) -> List[str]:
        """One combined query restricted to ``repos``; returns non-empty output lines."""
        argv = [self.dnf, "repoquery", "--quiet", "--disablerepo=*"]
        argv += [f"--enablerepo={r}" for r in repos]
        argv += ["--queryformat", QUERY_FORMAT, name]
        res = self.runner.run(argv)
        return [ln.strip() for ln in str(res.stdout).splitlines() if ln.strip()]

    def download_source(self, nvr: str, destdir: str) -> None:
        self.runner.run([self.dnf, "download", "--source", "--destdir", destdir, nvr])

    def requires(self, srpm: str) -> List[str]:
        res = self.runner.run(["rpm", "-qpR", srpm])
        return [ln.strip() for ln in str(res.stdout).splitlines() if ln.strip()]

    def vercmp(self, a: str, b: str) -> int:
        """Return 1 if a > b, -1 if a < b, 0 when equal."""
        res = self.runner.run(["rpmdev-vercmp", a, b], ok_codes=(_VERCMP_EQUAL, _VERCMP_FIRST, _VERCMP_SECOND))
        if res.returncode == _VERCMP_FIRST:
            return 1
        if res.returncode == _VERCMP_SECOND:
            return -1
        return 0

    def list_installed(self) -> List[str]:
        res = self.runner.run(["rpm", "-qa", "--queryformat", "%{NAME}\n"])
        return [ln.strip() for ln in str(res.stdout).splitlines() if ln.strip()]

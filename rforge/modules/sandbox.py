# rforge/modules/sandbox.py
"""
sandbox.py - isolated build workspaces for rforge

Features:
- ContainerTool: thin buildah wrapper (from / run / copy / config --env / rm),
  every instance addressed by name
- Workspace: one container plus a host staging directory for one package;
  a context manager that creates on entry and removes both exactly once on
  exit, whether the body succeeds, raises, or container creation itself fails
"""

from __future__ import annotations

import re
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

from rforge.modules.errors import CommandError
from rforge.modules.logging import get_logger
from rforge.modules.pkgtool import CommandResult, CommandRunner

logger = get_logger("sandbox")

_UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")


def container_name_for(package: str) -> str:
    return f"rforge-{_UNSAFE.sub('_', package)}-{uuid.uuid4().hex[:8]}"


class ContainerTool:
    def __init__(self, runner: Optional[CommandRunner] = None, tool: str = "buildah"):
        self.runner = runner or CommandRunner()
        self.tool = tool

    def create(self, name: str, image: str) -> None:
        self.runner.run([self.tool, "from", "--name", name, image])

    def run(self, name: str, argv: Sequence[str], *, binary: bool = False) -> CommandResult:
        return self.runner.run([self.tool, "run", name, "--", *argv], binary=binary)

    def copy(self, name: str, src: Union[str, Path], dest: str) -> None:
        self.runner.run([self.tool, "copy", name, str(src), dest])

    def set_env(self, name: str, env: Dict[str, str]) -> None:
        if not env:
            return
        argv: List[str] = [self.tool, "config"]
        for k, v in sorted(env.items()):
            argv += ["--env", f"{k}={v}"]
        self.runner.run(argv + [name])

    def remove(self, name: str) -> None:
        self.runner.run([self.tool, "rm", name])


class Workspace:
    """Scoped container for a single package build.

    ``output_dir`` is a fresh host directory that lives exactly as long as the
    container; callers copy what they want to keep before leaving the block.
    """

    def __init__(self, tool: ContainerTool, package: str, image: str,
                 staging_root: Optional[Union[str, Path]] = None):
        self.tool = tool
        self.package = package
        self.image = image
        self.staging_root = Path(staging_root) if staging_root else None
        self.name = container_name_for(package)
        self.output_dir: Optional[Path] = None

    def __enter__(self) -> "Workspace":
        if self.staging_root is not None:
            self.staging_root.mkdir(parents=True, exist_ok=True)
        self.output_dir = Path(tempfile.mkdtemp(prefix=f"{self.name}-", dir=self.staging_root))
        logger.info("workspace %s: creating from %s", self.name, self.image)
        try:
            self.tool.create(self.name, self.image)
        except BaseException:
            self._teardown()
            raise
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._teardown()
        return False

    def _teardown(self) -> None:
        try:
            self.tool.remove(self.name)
            logger.info("workspace %s: removed", self.name)
        except (CommandError, OSError) as e:
            logger.warning("workspace %s: removal failed: %s", self.name, e)
        finally:
            if self.output_dir is not None:
                shutil.rmtree(self.output_dir, ignore_errors=True)

    # convenience passthroughs used by build backends
    def run(self, argv: Sequence[str], *, binary: bool = False) -> CommandResult:
        return self.tool.run(self.name, argv, binary=binary)

    def copy_in(self, src: Union[str, Path], dest: str) -> None:
        self.tool.copy(self.name, src, dest)

    def set_env(self, env: Dict[str, str]) -> None:
        self.tool.set_env(self.name, env)

# rforge/modules/errors.py
"""
Exception taxonomy shared by every rforge module.

Resolution misses (no viable candidate) are deliberately absent: they are
reported as a warning and a ``None`` result, never raised.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class RforgeError(Exception):
    """Base class for all rforge failures."""


class CommandError(RforgeError):
    """An external tool exited with an unexpected status."""

    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr or ""
        tail = self.stderr.strip().splitlines()[-1:] if self.stderr.strip() else []
        msg = f"command failed ({returncode}): {' '.join(self.argv)}"
        if tail:
            msg += f": {tail[0]}"
        super().__init__(msg)


class ConfigError(RforgeError):
    """Invalid configuration; carries every offending key."""

    def __init__(self, issues: List[str]):
        self.issues = list(issues)
        super().__init__("invalid configuration: " + "; ".join(self.issues))


class FetchError(RforgeError):
    pass


class SourceNotFound(FetchError):
    """The download step ran but produced no matching source package."""


class BuildError(RforgeError):
    def __init__(self, package: str, step: str, cause: Optional[BaseException] = None):
        self.package = package
        self.step = step
        self.cause = cause
        msg = f"{package}: build step '{step}' failed"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class LedgerError(RforgeError):
    pass


class CycleDetected(RforgeError):
    def __init__(self, path: Sequence[str]):
        self.path = list(path)
        super().__init__("dependency cycle: " + " -> ".join(self.path))


class PrivilegeError(RforgeError):
    pass

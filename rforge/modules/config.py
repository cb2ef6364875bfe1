# rforge/modules/config.py
# -*- coding: utf-8 -*-
"""
rforge configuration resolver

Builds one immutable Snapshot per run from, in increasing precedence:
  (a) compiled-in DEFAULTS
  (b) an INI override file (RFORGE_CONFIG or /etc/rforge/rforge.conf); only
      sections/keys present in DEFAULTS are honoured, list values are
      whitespace-split, scalars are validated against the typed schema
  (c) make.conf style KEY=VALUE compiler flags (CXXFLAGS and MAKEOPTS synthesized)
  (d) a package.use directory, one file per scope (file stem = scope name)
  (e) a package.accept_keywords file, one package per line

Missing files fall back to defaults. Invalid values are collected over the
whole schema and raised together as a ConfigError.
"""

from __future__ import annotations

import os
import platform
import configparser
from copy import deepcopy
from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from rforge.modules.errors import ConfigError
from rforge.modules.logging import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = "/etc/rforge/rforge.conf"
GLOBAL_SCOPE = "global"

# ----------------------------
# DEFAULT configuration (authoritative base)
# ----------------------------
DEFAULTS: Dict[str, Any] = {
    "system": {
        "arch": platform.machine() or "x86_64",
        "release": "40",
        "base_image": "registry.fedoraproject.org/fedora:40",
        "build_root": "/var/lib/rforge/builds",
        "state_file": "/var/lib/rforge/state.json",
        "cache_dir": "/var/cache/rforge/distfiles",
        "use_dir": "/etc/rforge/package.use",
        "accept_keywords": "/etc/rforge/package.accept_keywords",
        "make_conf": "/etc/rforge/make.conf",
        "container_tool": "buildah",
    },
    "repos": {
        "stable": ["fedora", "updates"],
        "testing": ["updates-testing"],
        "rolling": [],
    },
    "build": {
        "jobs": "auto",
        "exclude": ["gpg-pubkey", "*-debuginfo", "*-debugsource"],
        "use": [],
        "unstable_keywords": ["alpha", "beta", "rc", "pre", "git", "svn", "hg", "bzr", "snapshot", "testing", "rawhide"],
        "toolchain": ["rpm-build", "dnf-plugins-core", "redhat-rpm-config"],
    },
    "logging": {
        "level": "INFO",
        "file": "",
        "color": True,
    },
}

DEFAULT_COMPILER_FLAGS: Dict[str, str] = {
    "CFLAGS": "-O2 -pipe",
}


def _expand_path(val: Any) -> Any:
    if isinstance(val, str) and val:
        return os.path.abspath(os.path.expanduser(os.path.expandvars(val)))
    return val


def _read_text(path: Path) -> str:
    try:
        return Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError([f"{path}: {e}"]) from e


# ----------------------------
# Typed schema
# ----------------------------
class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class SystemSettings(_Frozen):
    arch: str
    release: str
    base_image: str
    build_root: Path
    state_file: Path
    cache_dir: Path
    use_dir: Path
    accept_keywords: Path
    make_conf: Path
    container_tool: str

    @field_validator("build_root", "state_file", "cache_dir", "use_dir", "accept_keywords", "make_conf", mode="before")
    @classmethod
    def _paths(cls, v):
        return _expand_path(v)


class BuildPolicy(_Frozen):
    jobs: Union[int, Literal["auto"]]
    exclude: Tuple[str, ...]
    use: Tuple[str, ...]
    unstable_keywords: FrozenSet[str]
    toolchain: Tuple[str, ...]

    @field_validator("jobs", mode="before")
    @classmethod
    def _jobs(cls, v):
        if isinstance(v, str) and v.strip().lower() == "auto":
            return "auto"
        try:
            n = int(v)
        except (TypeError, ValueError):
            raise ValueError("must be 'auto' or a positive integer")
        if n < 1:
            raise ValueError("must be 'auto' or a positive integer")
        return n


class LoggingSettings(_Frozen):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    file: Optional[str]
    color: bool

    @field_validator("level", mode="before")
    @classmethod
    def _level(cls, v):
        return str(v).strip().upper()

    @field_validator("file", mode="before")
    @classmethod
    def _file(cls, v):
        return _expand_path(v) or None


class Settings(_Frozen):
    system: SystemSettings
    repos: Dict[str, Tuple[str, ...]]
    build: BuildPolicy
    logging: LoggingSettings

    @field_validator("repos", mode="after")
    @classmethod
    def _freeze_repos(cls, v):
        return MappingProxyType({k: tuple(ids) for k, ids in v.items()})


# ----------------------------
# Snapshot
# ----------------------------
@dataclass(frozen=True)
class Snapshot:
    """Everything downstream components read; built once per run."""
    settings: Settings
    jobs: int
    compiler_flags: Mapping[str, str] = field(default_factory=dict)
    use_flags: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    accept_keywords: FrozenSet[str] = frozenset()
    source: Optional[Path] = None

    @property
    def system(self) -> SystemSettings:
        return self.settings.system

    @property
    def build(self) -> BuildPolicy:
        return self.settings.build

    @property
    def repos(self) -> Mapping[str, Tuple[str, ...]]:
        return self.settings.repos

    def all_repos(self) -> List[str]:
        """Every repository id across every group, first occurrence wins."""
        seen: List[str] = []
        for ids in self.settings.repos.values():
            for r in ids:
                if r not in seen:
                    seen.append(r)
        return seen

    def is_excluded(self, name: str) -> bool:
        return any(fnmatch(name, pat) for pat in self.settings.build.exclude)

    def flags_for(self, name: str) -> Tuple[str, ...]:
        if name in self.use_flags:
            return self.use_flags[name]
        return self.use_flags.get(GLOBAL_SCOPE, ())

    def is_accepted(self, name: str) -> bool:
        return name in self.accept_keywords


# ----------------------------
# Override file (INI)
# ----------------------------
def _find_path(explicit: Optional[str] = None) -> Optional[Path]:
    if explicit:
        p = Path(explicit)
        if not p.exists():
            logger.warning("config: override file %s not found, using defaults", p)
            return None
        return p
    env = os.environ.get("RFORGE_CONFIG")
    for cand in ([Path(env)] if env else []) + [Path(DEFAULT_CONFIG_PATH)]:
        if cand.exists():
            return cand
    return None


def merge_override(defaults: Dict[str, Any], path: Optional[Path]) -> Dict[str, Any]:
    """Apply an INI file on top of ``defaults``; values stay strings for the schema to cast."""
    merged = deepcopy(defaults)
    if path is None:
        return merged
    parser = configparser.ConfigParser(interpolation=None)
    try:
        parser.read_string(_read_text(path), source=str(path))
    except configparser.Error as e:
        raise ConfigError([f"{path}: {e}"]) from e
    for section in parser.sections():
        if section not in merged or not isinstance(merged[section], dict):
            logger.warning("config: ignoring unknown section [%s] in %s", section, path)
            continue
        target = merged[section]
        for key, value in parser.items(section):
            if key not in target:
                logger.warning("config: ignoring unknown key %s.%s in %s", section, key, path)
                continue
            if isinstance(target[key], list):
                target[key] = value.split()
            else:
                target[key] = value.strip()
    return merged


def validate_settings(merged: Dict[str, Any]) -> Settings:
    try:
        return Settings.model_validate(merged)
    except ValidationError as e:
        issues: List[str] = []
        for err in e.errors():
            key = ".".join(str(p) for p in err["loc"][:2])
            line = f"{key}: {err['msg']}"
            if line not in issues:
                issues.append(line)
        raise ConfigError(issues) from e


def resolve_jobs(jobs: Union[int, str], cpu_count: Optional[int] = None) -> int:
    if jobs == "auto":
        n = cpu_count if cpu_count is not None else os.cpu_count()
        return max(1, int(n or 1))
    return int(jobs)


# ----------------------------
# make.conf / package.use / package.accept_keywords
# ----------------------------
def _unquote(val: str) -> str:
    if len(val) >= 2 and val[0] == val[-1] and val[0] in ("'", '"'):
        return val[1:-1]
    return val


def load_compiler_flags(path: Optional[Path], jobs: int,
                        defaults: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    flags: Dict[str, str] = dict(DEFAULT_COMPILER_FLAGS if defaults is None else defaults)
    if path is not None and Path(path).is_file():
        for lineno, line in enumerate(_read_text(path).splitlines(), 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                logger.warning("config: %s:%d: not a KEY=VALUE line, skipped", path, lineno)
                continue
            key, val = line.split("=", 1)
            flags[key.strip()] = _unquote(val.strip())
    if "CXXFLAGS" not in flags and "CFLAGS" in flags:
        flags["CXXFLAGS"] = flags["CFLAGS"]
    if "MAKEOPTS" not in flags:
        flags["MAKEOPTS"] = f"-j{jobs}"
    return flags


def load_use_flags(use_dir: Optional[Path], global_flags: Tuple[str, ...]) -> Dict[str, Tuple[str, ...]]:
    scopes: Dict[str, Tuple[str, ...]] = {GLOBAL_SCOPE: tuple(global_flags)}
    if use_dir is None or not Path(use_dir).is_dir():
        return scopes
    for f in sorted(Path(use_dir).iterdir()):
        if not f.is_file() or f.name.startswith("."):
            continue
        scopes[f.stem] = tuple(_read_text(f).split())
    return scopes


def load_accept_keywords(path: Optional[Path]) -> FrozenSet[str]:
    if path is None or not Path(path).is_file():
        return frozenset()
    names = set()
    for line in _read_text(path).splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        names.add(line.split()[0])
    return frozenset(names)


# ----------------------------
# Entry point
# ----------------------------
def load_snapshot(explicit_path: Optional[str] = None, *, defaults: Optional[Dict[str, Any]] = None,
                  cpu_count: Optional[int] = None) -> Snapshot:
    """Resolve every configuration layer once and return the frozen result."""
    path = _find_path(explicit_path)
    merged = merge_override(defaults if defaults is not None else DEFAULTS, path)
    settings = validate_settings(merged)
    jobs = resolve_jobs(settings.build.jobs, cpu_count)
    compiler_flags = load_compiler_flags(settings.system.make_conf, jobs)
    use_flags = load_use_flags(settings.system.use_dir, settings.build.use)
    accepted = load_accept_keywords(settings.system.accept_keywords)
    logger.info("config: loaded (from=%s, jobs=%d, scopes=%d, accepted=%d)",
                str(path) if path else "<defaults>", jobs, len(use_flags), len(accepted))
    return Snapshot(
        settings=settings,
        jobs=jobs,
        compiler_flags=MappingProxyType(compiler_flags),
        use_flags=MappingProxyType(use_flags),
        accept_keywords=accepted,
        source=path,
    )

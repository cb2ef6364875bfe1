"""Shared fakes for the external collaborators (dnf, rpm, buildah, rpmbuild)."""

import re
from pathlib import Path

import pytest

from rforge.modules.config import load_snapshot
from rforge.modules.errors import BuildError, CommandError
from rforge.modules.pkgtool import CommandResult


BASE_CONF = """\
[system]
build_root = {root}/builds
state_file = {root}/state/state.json
cache_dir = {root}/cache
use_dir = {root}/etc/package.use
accept_keywords = {root}/etc/accept_keywords
make_conf = {root}/etc/make.conf

[repos]
stable = fedora updates
testing = updates-testing
rolling = rolling-copr

"""


def repo_line(name, version, release, repo, srpm=None, epoch="(none)"):
    return f"{name}|{version}|{release}|{repo}|{srpm or '(none)'}|{epoch}"


class FakeRunner:
    """CommandRunner stand-in; ``handler(argv) -> (returncode, stdout)``."""

    def __init__(self):
        self.calls = []
        self.handler = None

    def run(self, argv, *, ok_codes=(0,), binary=False, env=None, cwd=None):
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        if self.handler is not None:
            rc, out = self.handler(argv)
        else:
            rc, out = 0, (b"" if binary else "")
        if rc not in tuple(ok_codes):
            raise CommandError(argv, rc, "simulated failure")
        return CommandResult(argv=argv, returncode=rc, stdout=out, stderr="")


def _version_key(evr):
    return tuple(int(x) for x in re.findall(r"\d+", evr))


class FakePkgTool:
    """In-memory repositories. Downloaded source packages contain their own NVR."""

    def __init__(self):
        self.available = {}
        self.requirements = {}
        self.installed = []
        self.unfetchable = set()
        self.queries = []
        self.downloads = []

    def add(self, name, version="1.0", release="1.fc40", repo="fedora", requires=()):
        self.available.setdefault(name, []).append(repo_line(name, version, release, repo))
        self.requirements[f"{name}-{version}-{release}"] = list(requires)

    def repoquery(self, name, repos):
        self.queries.append((name, tuple(repos)))
        return list(self.available.get(name, []))

    def download_source(self, nvr, destdir):
        self.downloads.append(nvr)
        if nvr in self.unfetchable:
            return
        Path(destdir, f"{nvr}.src.rpm").write_text(nvr)

    def requires(self, srpm):
        return list(self.requirements.get(Path(srpm).read_text(), []))

    def vercmp(self, a, b):
        ka, kb = _version_key(a), _version_key(b)
        return (ka > kb) - (ka < kb)

    def list_installed(self):
        return list(self.installed)


class FakeContainers:
    """ContainerTool stand-in recording the container lifecycle."""

    def __init__(self):
        self.created = []
        self.removed = []
        self.fail_create = False
        self.remove_error = None

    def create(self, name, image):
        self.created.append(name)
        if self.fail_create:
            raise CommandError(["buildah", "from", image], 125, "image not found")

    def remove(self, name):
        self.removed.append(name)
        if self.remove_error is not None:
            raise self.remove_error

    def run(self, name, argv, *, binary=False):
        return CommandResult(argv=list(argv), returncode=0, stdout=b"" if binary else "", stderr="")

    def copy(self, name, src, dest):
        pass

    def set_env(self, name, env):
        pass


class FakeBackend:
    """Writes one RPM per build into the workspace; fails for names in ``failing``."""

    def __init__(self):
        self.builds = []
        self.failing = set()

    def build(self, ws, artifact, flags, env):
        self.builds.append({"name": ws.package, "artifact": Path(artifact), "flags": tuple(flags), "env": dict(env)})
        if ws.package in self.failing:
            raise BuildError(ws.package, "rpmbuild", CommandError(["rpmbuild"], 1, "error: Bad exit status"))
        rpm = Path(ws.output_dir) / f"{ws.package}-1.0-1.x86_64.rpm"
        rpm.write_bytes(b"rpm")
        return [rpm]


@pytest.fixture
def make_snapshot(tmp_path):
    def _make(extra="", make_conf=None, use=None, accept=None, cpu_count=4):
        etc = tmp_path / "etc"
        etc.mkdir(exist_ok=True)
        if make_conf is not None:
            (etc / "make.conf").write_text(make_conf)
        if use:
            d = etc / "package.use"
            d.mkdir(exist_ok=True)
            for scope, text in use.items():
                (d / scope).write_text(text)
        if accept is not None:
            (etc / "accept_keywords").write_text(accept)
        conf = etc / "rforge.conf"
        conf.write_text(BASE_CONF.format(root=tmp_path) + extra)
        return load_snapshot(str(conf), cpu_count=cpu_count)
    return _make


@pytest.fixture
def snapshot(make_snapshot):
    return make_snapshot()


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def pkgtool():
    return FakePkgTool()


@pytest.fixture
def containers():
    return FakeContainers()


@pytest.fixture
def backend():
    return FakeBackend()

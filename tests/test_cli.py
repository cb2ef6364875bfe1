"""Tests for the command line front end."""

import pytest

from rforge.modules import cli
from rforge.modules.errors import ConfigError
from rforge.modules.orchestrator import BatchReport


class StubOrchestrator:
    def __init__(self, report):
        self.report = report
        self.calls = []

    def build_many(self, names):
        self.calls.append(("build", list(names)))
        return self.report

    def rebuild_all(self):
        self.calls.append(("rebuild",))
        return self.report


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(cli.os, "geteuid", lambda: 0)


@pytest.fixture
def wired(monkeypatch, as_root, snapshot):
    stub = StubOrchestrator(BatchReport(built=["curl"]))
    monkeypatch.setattr(cli, "load_snapshot", lambda path: snapshot)
    monkeypatch.setattr(cli.Orchestrator, "from_snapshot", classmethod(lambda cls, snap: stub))
    return stub


def test_parser():
    args = cli.make_parser().parse_args(["--config", "/x.conf", "-v", "build", "a", "b"])
    assert (args.cmd, args.names, args.config, args.verbose) == ("build", ["a", "b"], "/x.conf", True)
    args = cli.make_parser().parse_args(["rebuild", "--full"])
    assert args.cmd == "rebuild" and args.full


def test_build_requires_names():
    with pytest.raises(SystemExit):
        cli.make_parser().parse_args(["build"])


def test_non_root_refused_before_config(monkeypatch, capsys):
    monkeypatch.setattr(cli.os, "geteuid", lambda: 1000)

    def boom(path):
        raise AssertionError("configuration must not be loaded")

    monkeypatch.setattr(cli, "load_snapshot", boom)
    assert cli.main(["build", "curl"]) == 2
    assert "root" in capsys.readouterr().out


def test_no_subcommand():
    assert cli.main([]) == 2


def test_config_errors_all_printed(monkeypatch, as_root, capsys):
    def bad(path):
        raise ConfigError(["build.jobs: must be 'auto' or a positive integer", "logging.level: bad level"])

    monkeypatch.setattr(cli, "load_snapshot", bad)
    assert cli.main(["rebuild"]) == 2
    out = capsys.readouterr().out
    assert "build.jobs" in out
    assert "logging.level" in out


def test_build_success(wired, capsys):
    assert cli.main(["build", "curl", "wget"]) == 0
    assert wired.calls == [("build", ["curl", "wget"])]
    assert "curl" in capsys.readouterr().out


def test_rebuild_full(wired):
    assert cli.main(["rebuild", "--full"]) == 0
    assert wired.calls == [("rebuild",)]


def test_failure_sets_exit_status(wired, capsys):
    wired.report = BatchReport(built=["zlib"], failed={"curl": "curl: build step 'rpmbuild' failed"})
    assert cli.main(["build", "curl"]) == 1
    assert "failed" in capsys.readouterr().out

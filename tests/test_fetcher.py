"""Tests for the content-addressed source cache."""

import hashlib

import pytest

from rforge.modules.errors import FetchError, SourceNotFound
from rforge.modules.fetcher import SourceFetcher, cache_key
from rforge.modules.resolver import Candidate


def cand(name="curl", version="8.6.0", release="1.fc40", srpm=None):
    return Candidate(name=name, version=version, release=release, repo="fedora", sourcerpm=srpm)


def test_cache_key_is_sha256_of_nvr():
    assert cache_key("curl", "8.6.0", "1.fc40") == hashlib.sha256(b"curl-8.6.0-1.fc40").hexdigest()


def test_miss_downloads_then_hit_does_not(snapshot, pkgtool):
    f = SourceFetcher(snapshot, pkgtool)
    first = f.fetch(cand())
    assert first.name == cache_key("curl", "8.6.0", "1.fc40") + ".src.rpm"
    assert first.parent == snapshot.system.cache_dir
    assert first.read_text() == "curl-8.6.0-1.fc40"
    assert not (snapshot.system.cache_dir / "curl-8.6.0-1.fc40.src.rpm").exists()

    second = f.fetch(cand())
    assert second == first
    assert pkgtool.downloads == ["curl-8.6.0-1.fc40"]
    assert f.get_metrics() == {"cache.hits": 1, "cache.misses": 1}


def test_cache_survives_new_fetcher(snapshot, pkgtool):
    SourceFetcher(snapshot, pkgtool).fetch(cand())
    SourceFetcher(snapshot, pkgtool).fetch(cand())
    assert len(pkgtool.downloads) == 1


def test_distinct_triples_distinct_paths(snapshot, pkgtool):
    f = SourceFetcher(snapshot, pkgtool)
    a = f.fetch(cand(release="1.fc40"))
    b = f.fetch(cand(release="2.fc40"))
    assert a != b
    assert a.is_file() and b.is_file()


def test_exact_sourcerpm_name_used(snapshot, pkgtool):
    # binary subpackage whose source package has a different name
    c = cand(name="curl-devel", srpm="curl-8.6.0-1.fc40.src.rpm")
    pkgtool.download_source = lambda nvr, destdir: (snapshot.system.cache_dir / c.sourcerpm).write_text("src")
    path = SourceFetcher(snapshot, pkgtool).fetch(c)
    assert path.read_text() == "src"


def test_nothing_downloaded_raises(snapshot, pkgtool):
    pkgtool.unfetchable.add("curl-8.6.0-1.fc40")
    with pytest.raises(SourceNotFound):
        SourceFetcher(snapshot, pkgtool).fetch(cand())


def test_clear(snapshot, pkgtool):
    f = SourceFetcher(snapshot, pkgtool)
    f.fetch(cand())
    assert f.clear() == 1
    f.fetch(cand())
    assert len(pkgtool.downloads) == 2


def test_store_failure_is_fetch_error(snapshot, pkgtool):
    f = SourceFetcher(snapshot, pkgtool)
    # a non-empty directory squats on the cache name
    blocker = f.cache_path_for(cand())
    blocker.mkdir(parents=True)
    (blocker / "junk").write_text("x")
    with pytest.raises(FetchError, match="cannot store"):
        f.fetch(cand())

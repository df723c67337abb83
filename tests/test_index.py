# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import pytest

from fakes import aur, installed, make_index, repo
from pacforge.core.cache import MetadataCache
from pacforge.core.exceptions import PackageNotFound
from pacforge.core.models import PackageSource
from pacforge.core.version import Dependency


@pytest.mark.asyncio
async def test_satisfiers_source_order():
    """Test candidates come Installed, then BinaryRepo, then RemoteSource"""
    index = make_index(
        installed=[installed("foo", "1.0-1")],
        repos={"extra": [repo("foo", "1.1-1", repo="extra")]},
        remote=[aur("foo", "1.2-1")],
    )
    await index.prefetch(["foo"])

    sources = [p.source for p in index.satisfiers(Dependency("foo"))]
    assert sources == [PackageSource.INSTALLED, PackageSource.BINARY_REPO, PackageSource.REMOTE_SOURCE]


@pytest.mark.asyncio
async def test_satisfiers_by_version_within_source():
    """Test each source group is sorted newest first"""
    index = make_index(
        repos={
            "core": [repo("jre8", "8.1-1", provides=["java-runtime=8"])],
            "extra": [repo("jre17", "17.0-1", repo="extra", provides=["java-runtime=17"])],
        }
    )
    found = index.satisfiers(Dependency("java-runtime"))
    assert [p.name for p in found] == ["jre17", "jre8"]

    found = index.satisfiers(Dependency.parse("java-runtime<10"))
    assert [p.name for p in found] == ["jre8"]


@pytest.mark.asyncio
async def test_prefetch_batches_and_caches():
    """Test one remote request per batch and no repeat for cached names"""
    index = make_index(remote=[aur("a"), aur("b")])

    await index.prefetch(["a", "b", "missing"])
    await index.prefetch(["a", "missing"])

    assert index.requests == 1
    assert index.remote.info_calls == [("a", "b", "missing")]
    assert index.remote_package("a").name == "a"
    assert index.remote_package("missing") is None


@pytest.mark.asyncio
async def test_prefetch_providers():
    """Test provider search results become remote candidates"""
    index = make_index(remote=[aur("foo-git", provides=["foo"])])

    assert index.satisfiers(Dependency("foo")) == []
    await index.prefetch_providers("foo")
    await index.prefetch_providers("foo")

    assert [p.name for p in index.satisfiers(Dependency("foo"))] == ["foo-git"]
    assert index.remote.provider_calls == ["foo"]


def test_require_unknown_name():
    """Test require raises for names no source knows"""
    index = make_index(repos={"core": [repo("bash")]})
    assert index.require("bash")[0].name == "bash"
    with pytest.raises(PackageNotFound):
        index.require("nonexistent")


def test_local_database_foreign_packages():
    """Test foreign detection and repository order"""
    index = make_index(
        installed=[installed("bash"), installed("yay")],
        repos={"core": [repo("bash")], "extra": [repo("vim", repo="extra")]},
    )
    db = index.db
    assert db.repo_names() == ["core", "extra"]
    assert db.is_foreign("yay")
    assert not db.is_foreign("bash")
    assert not db.is_foreign("vim")


def test_installed_satisfier_respects_version():
    """Test an installed package only satisfies matching constraints"""
    index = make_index(installed=[installed("openssl", "3.0-1", provides=["libssl.so=3-64"])])
    assert index.installed_satisfier(Dependency.parse("openssl>=3")).name == "openssl"
    assert index.installed_satisfier(Dependency.parse("openssl>=4")) is None
    assert index.installed_satisfier(Dependency.parse("libssl.so=3-64")).name == "openssl"


def test_metadata_cache_negative_entries():
    """Test negative results are cached but never hide a real record"""
    cache = MetadataCache()
    cache.put_many(["a", "b"], [aur("a")])

    assert cache.has_info("b")
    assert cache.get("b") is None
    assert cache.size() == 2

    cache.put("a", None)
    assert cache.get("a").name == "a"
    assert [p.name for p in cache.packages()] == ["a"]

    cache.clear()
    assert cache.size() == 0

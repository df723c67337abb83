# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import pytest

from fakes import RecordingDecisions, aur, index_of, installed, repo
from pacforge.core.conflicts import ConflictDetector, find_conflicts
from pacforge.core.exceptions import PackageConflict
from pacforge.core.models import NodeState
from pacforge.core.resolver import Resolver


async def detector_for(index, targets):
    graph = await Resolver(index).resolve(targets)
    return ConflictDetector(graph, index.db)


def test_shared_provides_conflict():
    """Two packages providing the same name conflict"""
    a = repo("a", provides=["libfoo"])
    b = repo("b", provides=["libfoo"])
    conflicts = find_conflicts(a, b)
    assert [(c.a, c.b, c.detail) for c in conflicts] == [("a", "b", "libfoo")]


def test_replaces_lifts_shared_provides():
    """No conflict when one package replaces the other"""
    a = repo("a", provides=["libfoo"], replaces=["b"])
    b = repo("b", provides=["libfoo"])
    assert find_conflicts(a, b) == []
    assert find_conflicts(b, a) == []


def test_explicit_conflict_by_name_and_version():
    """Test conflicts entries match names with their constraints"""
    old = repo("libfoo", "1.0-1")
    assert find_conflicts(repo("a", conflicts=["libfoo<2"]), old)
    assert not find_conflicts(repo("a", conflicts=["libfoo>=2"]), old)


def test_explicit_conflict_reported_once_per_pair():
    """Test mutual conflicts entries produce one report"""
    a = repo("a", conflicts=["b"])
    b = repo("b", conflicts=["a"])
    assert len(find_conflicts(a, b)) == 1


@pytest.mark.asyncio
async def test_check_collects_all_conflicts():
    """Test every conflicting pair is reported together"""
    index = index_of(
        repo("a", provides=["libfoo"]),
        repo("b", provides=["libfoo"]),
        repo("c", conflicts=["d"]),
        repo("d"),
    )
    detector = await detector_for(index, ["a", "b", "c", "d"])

    with pytest.raises(PackageConflict) as exc_info:
        detector.check()

    assert sorted(exc_info.value.pairs) == [("a", "b"), ("c", "d")]
    assert detector.graph.nodes["a"].state is NodeState.CONFLICTED
    assert detector.graph.nodes["d"].state is NodeState.CONFLICTED


@pytest.mark.asyncio
async def test_replacing_package_passes_check():
    """Test a replacing provider is accepted"""
    index = index_of(
        repo("a", provides=["libfoo"], replaces=["b"]),
        repo("b", provides=["libfoo"]),
    )
    detector = await detector_for(index, ["a", "b"])
    assert detector.check() == []


@pytest.mark.asyncio
async def test_conflict_with_installed_package():
    """Test nodes are checked against installed packages outside the set"""
    index = index_of(
        installed("vim"),
        installed("emacs", conflicts=["editor-x"]),
        aur("neovim-nightly", conflicts=["vim"]),
        aur("editor-x"),
    )
    detector = await detector_for(index, ["neovim-nightly", "editor-x"])
    conflicts = detector.detect()

    assert {(c.a, c.b) for c in conflicts} == {("neovim-nightly", "vim"), ("editor-x", "emacs")}
    assert all(c.installed for c in conflicts)


@pytest.mark.asyncio
async def test_gate_accepts_installed_conflicts_through_decisions():
    """Test installed-only conflicts can be confirmed"""
    index = index_of(installed("vim"), aur("neovim-nightly", conflicts=["vim"]))
    detector = await detector_for(index, ["neovim-nightly"])

    with pytest.raises(PackageConflict):
        await detector.gate(RecordingDecisions(accept=False))

    accepted = await detector.gate(RecordingDecisions(accept=True))
    assert [(c.a, c.b) for c in accepted] == [("neovim-nightly", "vim")]


@pytest.mark.asyncio
async def test_gate_never_accepts_conflicts_inside_the_set():
    """Test conflicts between resolved packages are always fatal"""
    index = index_of(repo("a", provides=["libfoo"]), repo("b", provides=["libfoo"]))
    detector = await detector_for(index, ["a", "b"])
    with pytest.raises(PackageConflict):
        await detector.gate(RecordingDecisions(accept=True))


@pytest.mark.asyncio
async def test_upgrading_installed_package_is_not_a_conflict():
    """Test the installed copy of a resolved package is ignored"""
    index = index_of(
        installed("foo", "1.0-1", provides=["libfoo"]),
        repo("foo", "2.0-1", provides=["libfoo"]),
    )
    detector = await detector_for(index, ["foo"])
    assert detector.detect() == []

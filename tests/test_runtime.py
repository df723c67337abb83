# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the resolve -> plan -> execute pipeline
"""

import pytest

from fakes import RecordingDecisions, aur, index_of, installed, repo
from pacforge.core.events import EventBus, EventType
from pacforge.core.exceptions import PackageConflict, PackageNotFound
from pacforge.core.models import Policy, TargetStatus
from pacforge.core.runtime import execute, prepare, run_install


@pytest.mark.asyncio
async def test_satisfied_request_does_nothing(fetcher, builder, installer):
    """Test an already installed target never reaches a collaborator"""
    index = index_of(installed("zlib", "1.3-1"), repo("zlib", "1.3-1"))

    prepared = await prepare(["zlib"], index)
    assert prepared.empty

    result = await execute(prepared, fetcher, builder, installer)
    assert result.ok
    assert result.succeeded == []
    assert result.targets == {"zlib": TargetStatus.SATISFIED}
    assert fetcher.fetched == []
    assert builder.built == []
    assert installer.transactions == []


@pytest.mark.asyncio
async def test_satisfied_request_keeps_target_spelling(fetcher, builder, installer):
    """Test satisfied versioned and repository-qualified targets are reported as typed"""
    index = index_of(installed("zlib", "1.3-1"), repo("zlib", "1.3-1"))

    prepared = await prepare(["core/zlib", "zlib>=1.2"], index)
    result = await execute(prepared, fetcher, builder, installer)

    assert prepared.empty
    assert result.targets == {
        "core/zlib": TargetStatus.SATISFIED,
        "zlib>=1.2": TargetStatus.SATISFIED,
    }


@pytest.mark.asyncio
async def test_errors_raised_before_side_effects(fetcher, builder, installer):
    """Test resolution errors stop the pipeline before any fetch"""
    index = index_of(aur("app", depends=["nowhere"]))

    with pytest.raises(PackageNotFound):
        await run_install(["app"], index, fetcher, builder, installer)

    assert fetcher.fetched == []
    assert installer.transactions == []


@pytest.mark.asyncio
async def test_conflict_gate_rejects(fetcher, builder, installer):
    """Test a rejected installed-package conflict aborts the run"""
    index = index_of(
        installed("vim", "9.0-1"),
        aur("neovim-git", conflicts=["vim"]),
    )

    with pytest.raises(PackageConflict):
        await run_install(
            ["neovim-git"], index, fetcher, builder, installer, decisions=RecordingDecisions()
        )
    assert installer.transactions == []


@pytest.mark.asyncio
async def test_prepare_reports_accepted_conflicts():
    """Test accepted conflicts travel with the prepared plan"""
    index = index_of(
        installed("vim", "9.0-1"),
        aur("neovim-git", conflicts=["vim"]),
    )
    prepared = await prepare(["neovim-git"], index, decisions=RecordingDecisions(accept=True))

    assert [(c.a, c.b) for c in prepared.conflicts] == [("neovim-git", "vim")]
    assert [b.key for b in prepared.plan] == ["neovim-git"]


@pytest.mark.asyncio
async def test_run_install_end_to_end(fetcher, builder, installer):
    """Test a mixed request goes all the way through"""
    index = index_of(
        installed("glibc", "2.39-1"),
        repo("glibc", "2.39-1"),
        repo("python", "3.12.1-1", repo="extra", depends=["glibc"]),
        aur("python-foo", depends=["python", "python-bar>=2"], make_depends=["python-build"]),
        aur("python-bar", "2.1-1", depends=["python"]),
        repo("python-build", repo="extra", depends=["python"]),
    )
    bus = EventBus()
    finished = []
    bus.subscribe(EventType.RUN_END, lambda event: finished.append(event.data))

    result = await run_install(
        ["python-foo"],
        index,
        fetcher,
        builder,
        installer,
        policy=Policy(remove_make_deps=True),
        event_bus=bus,
    )

    assert result.ok
    assert builder.built == ["python-bar", "python-foo"]
    assert installer.transactions[0] == ("repo", ["python", "python-build"])
    assert installer.removed == ["python-build"]
    assert result.targets == {"python-foo": TargetStatus.SUCCEEDED}
    assert finished[0]["targets"] == {"python-foo": "succeeded"}

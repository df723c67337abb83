# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the package database lock
"""

import asyncio

import pytest

from pacforge.core.lock import TransactionLock


@pytest.mark.asyncio
async def test_scopes_are_exclusive():
    """Test a build and a transaction never overlap"""
    lock = TransactionLock()
    timeline = []

    async def hold(scope, label):
        async with scope(label):
            timeline.append(f"enter {label}")
            await asyncio.sleep(0.01)
            timeline.append(f"exit {label}")

    await asyncio.gather(hold(lock.build, "a"), hold(lock.transaction, "b"))

    assert timeline == ["enter a", "exit a", "enter b", "exit b"]
    assert lock.active is None
    assert not lock.busy


@pytest.mark.asyncio
async def test_released_on_error():
    lock = TransactionLock()
    with pytest.raises(RuntimeError):
        async with lock.transaction("doomed"):
            assert lock.active == "transaction doomed"
            raise RuntimeError("pacman crashed")

    assert not lock.busy
    assert lock.active is None


@pytest.mark.asyncio
async def test_waits_for_host_lock_file(tmp_path):
    """Test acquisition waits while another process holds the database"""
    lock_file = tmp_path / "db.lck"
    lock_file.touch()
    lock = TransactionLock(lock_file, poll_interval=0.01)

    async def release_later():
        await asyncio.sleep(0.05)
        lock_file.unlink()

    releaser = asyncio.create_task(release_later())
    async with lock.transaction("install"):
        assert not lock_file.exists()
    await releaser

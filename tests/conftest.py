# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import sys
from pathlib import Path

import pytest

# Add pacforge and the test helpers to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import FakeBuilder, FakeFetcher, FakeInstaller  # noqa: E402


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def builder():
    return FakeBuilder()


@pytest.fixture
def installer():
    return FakeInstaller()

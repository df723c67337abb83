# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Package metadata sources: the host database and the remote repository.
"""

from .alpm import load_database
from .aur import AurClient
from .snapshot import SnapshotRemote, load_snapshot

__all__ = ["load_database", "AurClient", "SnapshotRemote", "load_snapshot"]

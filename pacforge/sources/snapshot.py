# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
YAML package snapshots.

A snapshot describes installed packages, sync repositories and remote
source packages in one file, for offline planning and tests:

    installed:
      - {name: glibc, version: 2.39-1}
    repos:
      core:
        - {name: gcc, version: 14.1-1, depends: [glibc]}
    aur:
      - {name: yay, version: 12.0-1, makedepends: [go]}
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import yaml

from ..core.exceptions import ConfigError
from ..core.index import LocalDatabase, RemoteMetadata
from ..core.models import Package, PackageSource

logger = logging.getLogger("pacforge.sources.snapshot")

# snapshot key -> Package field
_FIELD_ALIASES = {
    "makedepends": "make_depends",
    "checkdepends": "check_depends",
    "optdepends": "opt_depends",
    "outofdate": "out_of_date",
}

_FIELDS = {
    "name",
    "version",
    "base",
    "repo",
    "depends",
    "make_depends",
    "check_depends",
    "opt_depends",
    "provides",
    "conflicts",
    "replaces",
    "explicit",
    "out_of_date",
}


def package_from_dict(data: Dict[str, Any], source: PackageSource, repo: str = "") -> Package:
    """Build a Package from a snapshot entry."""
    values = {}
    for key, value in data.items():
        field = _FIELD_ALIASES.get(key, key)
        if field not in _FIELDS:
            raise ConfigError(f"Unknown package field: {key}", details={"entry": data})
        values[field] = value

    if "name" not in values or "version" not in values:
        raise ConfigError("Snapshot entry needs name and version", details={"entry": data})
    if repo and "repo" not in values:
        values["repo"] = repo
    values["version"] = str(values["version"])
    return Package.create(source=source, **values)


class SnapshotRemote(RemoteMetadata):
    """Remote metadata served from memory"""

    def __init__(self, packages: Iterable[Package] = ()):
        self.packages: Dict[str, Package] = {p.name: p for p in packages}
        self.info_calls: List[Tuple[str, ...]] = []
        self.provider_calls: List[str] = []

    async def info(self, names: Sequence[str]) -> List[Package]:
        self.info_calls.append(tuple(names))
        return [self.packages[n] for n in names if n in self.packages]

    async def providers(self, name: str) -> List[Package]:
        self.provider_calls.append(name)
        return [
            p
            for p in self.packages.values()
            if p.name == name or name in p.provided_names()
        ]


def parse_snapshot(data: Dict[str, Any]) -> Tuple[LocalDatabase, SnapshotRemote]:
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError("Snapshot must be a mapping")

    installed = [
        package_from_dict(entry, PackageSource.INSTALLED)
        for entry in data.get("installed") or []
    ]
    repos = [
        (repo, [package_from_dict(entry, PackageSource.BINARY_REPO, repo) for entry in entries or []])
        for repo, entries in (data.get("repos") or {}).items()
    ]
    remote = [
        package_from_dict(entry, PackageSource.REMOTE_SOURCE)
        for entry in data.get("aur") or []
    ]
    return LocalDatabase(installed=installed, repos=repos), SnapshotRemote(remote)


def load_snapshot(path: Path) -> Tuple[LocalDatabase, SnapshotRemote]:
    """
    Load a YAML snapshot file.

    Raises:
        ConfigError: If the file is missing or malformed
    """
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(f"Snapshot file not found: {path}", cause=e)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in snapshot {path}", cause=e)

    db, remote = parse_snapshot(data)
    logger.debug(f"Loaded snapshot {path}: {len(db.installed)} installed, {len(remote.packages)} remote")
    return db, remote

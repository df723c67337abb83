# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Host package database loader.

Reads pacman's on-disk database without libalpm:
- ``<dbpath>/local/<name>-<version>/desc`` for installed packages
- ``<dbpath>/sync/<repo>.db`` tar archives for sync repositories

Repository order comes from ``pacman.conf`` when available, which is the
order pacman itself searches them in.
"""

import logging
import tarfile
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..core.exceptions import ConfigError
from ..core.index import LocalDatabase
from ..core.models import Package, PackageSource

logger = logging.getLogger("pacforge.sources.alpm")

DEFAULT_PACMAN_CONF = Path("/etc/pacman.conf")

# desc section -> Package field
_LIST_FIELDS = {
    "DEPENDS": "depends",
    "MAKEDEPENDS": "make_depends",
    "CHECKDEPENDS": "check_depends",
    "OPTDEPENDS": "opt_depends",
    "PROVIDES": "provides",
    "CONFLICTS": "conflicts",
    "REPLACES": "replaces",
}


def parse_desc(text: str) -> Dict[str, List[str]]:
    """Parse a ``desc`` file into ``{SECTION: [values]}``."""
    sections: Dict[str, List[str]] = {}
    current: Optional[str] = None
    for raw in text.splitlines():
        line = raw.strip()
        if not line:
            current = None
            continue
        if line.startswith("%") and line.endswith("%") and len(line) > 2:
            current = line[1:-1]
            sections.setdefault(current, [])
        elif current is not None:
            sections[current].append(line)
    return sections


def package_from_desc(
    sections: Dict[str, List[str]],
    source: PackageSource,
    repo: str = "",
) -> Package:
    """Build a Package from parsed ``desc`` sections."""
    try:
        name = sections["NAME"][0]
        version = sections["VERSION"][0]
    except (KeyError, IndexError) as e:
        raise ConfigError("Package description lacks %NAME% or %VERSION%", cause=e)

    lists = {field: sections.get(key, []) for key, field in _LIST_FIELDS.items()}
    base = (sections.get("BASE") or [name])[0]
    # REASON 1 means installed as a dependency
    explicit = source is PackageSource.INSTALLED and sections.get("REASON", ["0"])[0] != "1"
    return Package.create(
        name=name,
        version=version,
        source=source,
        base=base,
        repo=repo,
        explicit=explicit,
        **lists,
    )


def load_local(db_path: Path) -> List[Package]:
    """Installed packages from ``<db_path>/local``."""
    local_dir = Path(db_path) / "local"
    if not local_dir.is_dir():
        logger.warning(f"No local database at {local_dir}")
        return []

    packages = []
    for desc in sorted(local_dir.glob("*/desc")):
        text = desc.read_text(encoding="utf-8", errors="replace")
        packages.append(package_from_desc(parse_desc(text), PackageSource.INSTALLED))
    logger.debug(f"Loaded {len(packages)} installed package(s)")
    return packages


def load_sync_db(path: Path, repo: str) -> List[Package]:
    """Packages from one sync database archive."""
    packages = []
    # Older databases keep dependency fields in a separate ``depends`` entry
    entries: Dict[str, Dict[str, List[str]]] = {}
    try:
        with tarfile.open(path, "r:*") as archive:
            for member in archive:
                if not member.isfile():
                    continue
                directory, _, filename = member.name.rpartition("/")
                if filename not in ("desc", "depends"):
                    continue
                handle = archive.extractfile(member)
                if handle is None:
                    continue
                text = handle.read().decode("utf-8", errors="replace")
                entries.setdefault(directory, {}).update(parse_desc(text))
    except (tarfile.TarError, OSError) as e:
        raise ConfigError(f"Cannot read sync database {path}", cause=e)

    for directory in sorted(entries):
        packages.append(package_from_desc(entries[directory], PackageSource.BINARY_REPO, repo))
    return packages


def read_repo_order(pacman_conf: Path) -> List[str]:
    """Repository section names from pacman.conf, in file order."""
    repos = []
    for raw in Path(pacman_conf).read_text(encoding="utf-8").splitlines():
        line = raw.split("#", 1)[0].strip()
        if line.startswith("[") and line.endswith("]"):
            section = line[1:-1].strip()
            if section and section != "options":
                repos.append(section)
    return repos


def load_database(
    db_path: Path,
    repos: Optional[Iterable[str]] = None,
    pacman_conf: Optional[Path] = DEFAULT_PACMAN_CONF,
) -> LocalDatabase:
    """
    Load an installed + sync snapshot from pacman's on-disk database.

    Args:
        db_path: Database root (usually /var/lib/pacman)
        repos: Explicit repository order; defaults to pacman.conf order,
            then to the sync archives sorted by name
        pacman_conf: pacman configuration used for repository order
    """
    db_path = Path(db_path)
    sync_dir = db_path / "sync"
    available = {p.stem: p for p in sync_dir.glob("*.db")} if sync_dir.is_dir() else {}

    if repos is None:
        if pacman_conf is not None and Path(pacman_conf).is_file():
            repos = read_repo_order(pacman_conf)
        else:
            repos = sorted(available)

    sync = []
    for repo in repos:
        archive = available.get(repo)
        if archive is None:
            logger.warning(f"Repository {repo} has no sync database, run pacman -Sy")
            continue
        sync.append((repo, load_sync_db(archive, repo)))

    installed = load_local(db_path)
    logger.info(
        f"Loaded {len(installed)} installed package(s) and {len(sync)} repositories"
    )
    return LocalDatabase(installed=installed, repos=sync)

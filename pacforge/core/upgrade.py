# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
System upgrade discovery.

Finds installed packages with a newer version available, either in a sync
repository or (for foreign packages) in the remote source repository, plus
devel packages whose git sources gained new commits, and lets the user
exclude entries through a number menu.
"""

import fnmatch
import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Set, Tuple

from .base_adapter import Fetcher
from .devel import DevelStore, changed_bases
from .index import PackageIndex
from .models import Policy
from .version import vercmp

logger = logging.getLogger("pacforge.upgrade")

AUR_REPO = "aur"
DEVEL_REPO = "devel"
LATEST_COMMIT = "latest-commit"


@dataclass(frozen=True)
class Upgrade:
    name: str
    repo: str
    old_version: str
    new_version: str

    @property
    def is_remote(self) -> bool:
        return self.repo in (AUR_REPO, DEVEL_REPO)


@dataclass
class Upgrades:
    repo_keep: List[str] = field(default_factory=list)
    repo_skip: List[str] = field(default_factory=list)
    aur_keep: List[str] = field(default_factory=list)
    aur_skip: List[str] = field(default_factory=list)

    @property
    def targets(self) -> List[str]:
        return self.repo_keep + self.aur_keep

    @property
    def empty(self) -> bool:
        return not self.targets


def is_ignored(name: str, patterns: Iterable[str]) -> bool:
    return any(fnmatch.fnmatchcase(name, pattern) for pattern in patterns)


# ============================================================================
# Discovery
# ============================================================================


def repo_upgrades(index: PackageIndex) -> List[Upgrade]:
    """Installed packages with a newer version in the first sync repo carrying them."""
    db = index.db
    positions = {name: i for i, name in enumerate(db.repo_names())}
    upgrades = []
    for installed in db.iter_installed():
        candidates = db.repo_packages(installed.name)
        if not candidates:
            continue
        newest = candidates[0]
        if vercmp(newest.version, installed.version) > 0:
            upgrades.append(
                Upgrade(installed.name, newest.repo, installed.version, newest.version)
            )
    upgrades.sort(key=lambda u: (positions.get(u.repo, len(positions)), u.name))
    return upgrades


async def remote_upgrades(index: PackageIndex) -> List[Upgrade]:
    """Foreign installed packages with a newer remote version."""
    db = index.db
    foreign = sorted(p.name for p in db.iter_installed() if db.is_foreign(p.name))
    if not foreign:
        return []

    await index.prefetch(foreign)
    upgrades = []
    for name in foreign:
        remote = index.remote_package(name)
        installed = db.installed_package(name)
        if remote is None:
            logger.debug(f"{name} is not available remotely")
            continue
        if vercmp(remote.version, installed.version) > 0:
            upgrades.append(Upgrade(name, AUR_REPO, installed.version, remote.version))
    return upgrades


async def devel_upgrades(
    index: PackageIndex, store: DevelStore, fetcher: Fetcher, concurrency: int = 4
) -> List[Upgrade]:
    """
    Installed devel packages whose recorded git heads have moved.

    Records of packages that are no longer installed, or no longer
    available remotely, are ignored.
    """
    db = index.db
    records = {
        base: record
        for base, record in store.load().items()
        if any(db.installed_package(name) for name in record.packages)
    }
    if not records:
        return []

    names = sorted(
        {
            name
            for base in await changed_bases(records, fetcher, concurrency)
            for name in records[base].packages
            if db.installed_package(name) is not None
        }
    )
    if not names:
        return []

    await index.prefetch(names)
    upgrades = []
    for name in names:
        if index.remote_package(name) is None:
            logger.debug(f"{name} is not available remotely")
            continue
        installed = db.installed_package(name)
        upgrades.append(Upgrade(name, DEVEL_REPO, installed.version, LATEST_COMMIT))
    return upgrades


async def find_upgrades(
    index: PackageIndex,
    policy: Optional[Policy] = None,
    include_repo: bool = True,
    include_remote: bool = True,
    devel_store: Optional[DevelStore] = None,
    fetcher: Optional[Fetcher] = None,
) -> List[Upgrade]:
    """
    Collect available upgrades: repository ones, then remote, then devel.

    Devel upgrades are only looked for when both ``devel_store`` and
    ``fetcher`` are given; a package with a devel upgrade is not listed
    again as a plain remote upgrade. Packages matching an ignore pattern
    are reported with a warning and left out.
    """
    policy = policy or Policy()
    found: List[Upgrade] = []
    if include_repo:
        found.extend(repo_upgrades(index))
    if include_remote:
        remote = await remote_upgrades(index)
        devel: List[Upgrade] = []
        if devel_store is not None and fetcher is not None:
            devel = await devel_upgrades(index, devel_store, fetcher)
        devel_names = {u.name for u in devel}
        found.extend(u for u in remote if u.name not in devel_names)
        found.extend(devel)

    upgrades = []
    for upgrade in found:
        if is_ignored(upgrade.name, policy.ignore):
            logger.warning(
                f"{upgrade.name}: ignoring package upgrade "
                f"({upgrade.old_version} => {upgrade.new_version})"
            )
            continue
        upgrades.append(upgrade)

    logger.info(f"Found {len(upgrades)} upgrade(s)")
    return upgrades


# ============================================================================
# Number menu
# ============================================================================

_RANGE_RE = re.compile(r"^(\d+)(?:-(\d+))?$")


class NumberMenu:
    """
    Parsed selection input such as ``1 2 3``, ``1-3``, ``^4`` or ``extra``.

    Plain entries include, ``^`` entries exclude. Words match repository
    names.
    """

    def __init__(self, text: str):
        self.text = text.strip()
        self.in_range: List[Tuple[int, int]] = []
        self.ex_range: List[Tuple[int, int]] = []
        self.in_word: Set[str] = set()
        self.ex_word: Set[str] = set()

        for token in re.split(r"[\s,]+", self.text):
            if not token:
                continue
            exclude = token.startswith("^")
            if exclude:
                token = token[1:]
            if not token:
                continue

            match = _RANGE_RE.match(token)
            if match:
                start = int(match.group(1))
                end = int(match.group(2) or start)
                span = (min(start, end), max(start, end))
                (self.ex_range if exclude else self.in_range).append(span)
            else:
                (self.ex_word if exclude else self.in_word).add(token)

    @property
    def empty(self) -> bool:
        return not self.text

    def contains(self, number: int, word: str = "") -> bool:
        if any(lo <= number <= hi for lo, hi in self.in_range) or word in self.in_word:
            return True
        if any(lo <= number <= hi for lo, hi in self.ex_range) or word in self.ex_word:
            return False
        return not self.in_range and not self.in_word


def number_upgrades(upgrades: List[Upgrade]) -> List[Tuple[int, Upgrade]]:
    """Menu numbers: the first listed entry gets the highest number."""
    total = len(upgrades)
    return [(total - i, upgrade) for i, upgrade in enumerate(upgrades)]


def select_upgrades(
    upgrades: List[Upgrade], selection: str = "", menu: bool = True
) -> Upgrades:
    """
    Split upgrades into kept and skipped according to an exclusion menu.

    With ``menu`` off the selection is not consulted and everything is kept.
    """
    numbers = NumberMenu(selection if menu else "")
    result = Upgrades()
    for number, upgrade in number_upgrades(upgrades):
        skip = not numbers.empty and numbers.contains(number, upgrade.repo)
        if upgrade.is_remote:
            (result.aur_skip if skip else result.aur_keep).append(upgrade.name)
        else:
            (result.repo_skip if skip else result.repo_keep).append(upgrade.name)
    return result


def version_diff(old: str, new: str) -> Tuple[str, str, str]:
    """
    Split two versions for highlighting.

    Returns:
        (common prefix, rest of old, rest of new); the prefix ends at a
        separator so a partly changed alphanumeric run is highlighted whole
    """
    split = 0
    for i, (a, b) in enumerate(zip(old, new)):
        if a != b:
            break
        if not a.isalnum():
            split = i + 1
    return old[:split], old[split:], new[split:]

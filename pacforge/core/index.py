# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
PackageIndex: one lookup surface over installed state, binary repositories
and the remote source-package repository.
"""

import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from .cache import MetadataCache
from .exceptions import PackageNotFound
from .models import Package, PackageSource
from .version import Dependency, VersionKey

logger = logging.getLogger("pacforge.index")


def _by_version_desc(packages: Iterable[Package]) -> List[Package]:
    # stable: equal versions keep source (db) order
    return sorted(packages, key=lambda p: VersionKey(p.version), reverse=True)


def _provider_map(packages: Iterable[Package]) -> Dict[str, List[Package]]:
    result: Dict[str, List[Package]] = defaultdict(list)
    for package in packages:
        for provide in package.provides:
            result[provide.name].append(package)
    return result


# ============================================================================
# Sources
# ============================================================================


class LocalDatabase:
    """
    Read-only snapshot of installed packages and sync repositories.

    Repositories are kept in configuration order; that order is the
    discovery order used for tie-breaks.
    """

    def __init__(
        self,
        installed: Iterable[Package] = (),
        repos: Sequence[Tuple[str, Iterable[Package]]] = (),
    ):
        self.installed: Dict[str, Package] = {p.name: p for p in installed}
        self.repos: List[Tuple[str, Dict[str, Package]]] = [
            (repo_name, {p.name: p for p in packages}) for repo_name, packages in repos
        ]
        self._installed_provides = _provider_map(self.installed.values())
        self._repo_provides = _provider_map(self.iter_repo())

    def repo_names(self) -> List[str]:
        return [name for name, _ in self.repos]

    def installed_package(self, name: str) -> Optional[Package]:
        return self.installed.get(name)

    def iter_installed(self) -> Iterator[Package]:
        return iter(self.installed.values())

    def iter_repo(self) -> Iterator[Package]:
        for _, packages in self.repos:
            yield from packages.values()

    def repo_packages(self, name: str, repo: Optional[str] = None) -> List[Package]:
        """All sync packages named ``name``, in repository order."""
        result = []
        for repo_name, packages in self.repos:
            if repo is not None and repo_name != repo:
                continue
            if name in packages:
                result.append(packages[name])
        return result

    def installed_providers(self, name: str) -> List[Package]:
        return list(self._installed_provides.get(name, []))

    def repo_providers(self, name: str) -> List[Package]:
        return list(self._repo_provides.get(name, []))

    def is_foreign(self, name: str) -> bool:
        """Installed but present in no sync repository."""
        return name in self.installed and not self.repo_packages(name)


class RemoteMetadata(ABC):
    """Read-only metadata lookup against the remote source repository"""

    @abstractmethod
    async def info(self, names: Sequence[str]) -> List[Package]:
        """Fetch records for exact package names (unknown names are omitted)."""

    @abstractmethod
    async def providers(self, name: str) -> List[Package]:
        """Fetch records of packages providing ``name``."""


class NoRemote(RemoteMetadata):
    """Remote repository disabled (binary repositories only)"""

    async def info(self, names: Sequence[str]) -> List[Package]:
        return []

    async def providers(self, name: str) -> List[Package]:
        return []


# ============================================================================
# PackageIndex
# ============================================================================


class PackageIndex:
    """
    Unified candidate lookup.

    Candidates are ordered Installed, then BinaryRepo, then RemoteSource,
    each group by descending version. Remote records are loaded through
    ``prefetch``/``prefetch_providers`` and cached for the lifetime of the
    index, which is one resolution run.
    """

    def __init__(
        self,
        db: LocalDatabase,
        remote: Optional[RemoteMetadata] = None,
        cache: Optional[MetadataCache] = None,
    ):
        self.db = db
        self.remote = remote or NoRemote()
        self.cache = cache or MetadataCache()
        self.requests = 0

    # ------------------------------------------------------------------
    # Remote loading
    # ------------------------------------------------------------------

    async def prefetch(self, names: Iterable[str]) -> None:
        """Load remote records for every not-yet-cached name in one request."""
        wanted = []
        for name in names:
            if not self.cache.has_info(name) and name not in wanted:
                wanted.append(name)
        if not wanted:
            return

        logger.debug(f"Querying remote metadata for {len(wanted)} name(s)")
        self.requests += 1
        packages = await self.remote.info(wanted)
        self.cache.put_many(wanted, packages)

    async def prefetch_providers(self, name: str) -> None:
        """Load remote packages providing ``name``."""
        if self.cache.has_providers(name):
            return
        logger.debug(f"Searching remote providers of {name}")
        self.requests += 1
        packages = await self.remote.providers(name)
        self.cache.put_providers(name, packages)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def installed(self, name: str) -> Optional[Package]:
        return self.db.installed_package(name)

    def remote_package(self, name: str) -> Optional[Package]:
        return self.cache.get(name)

    def lookup(self, name: str) -> List[Package]:
        """
        Candidates named exactly ``name``.

        Returns:
            Installed, then BinaryRepo, then RemoteSource candidates
        """
        result: List[Package] = []
        installed = self.db.installed_package(name)
        if installed:
            result.append(installed)
        result.extend(_by_version_desc(self.db.repo_packages(name)))
        remote = self.cache.get(name)
        if remote:
            result.append(remote)
        return result

    def require(self, name: str) -> List[Package]:
        """Like lookup, but a name with zero candidates raises PackageNotFound."""
        candidates = self.lookup(name)
        if not candidates and not self._providers_by_name(name):
            raise PackageNotFound(f"Package not found: {name}", missing=[name])
        return candidates

    def satisfiers(
        self,
        dep: Dependency,
        sources: Optional[Iterable[PackageSource]] = None,
    ) -> List[Package]:
        """
        Candidates whose name or provides match ``dep`` (name and version).

        Args:
            dep: Constraint to satisfy
            sources: Restrict to these sources (all by default)
        """
        allowed = set(sources) if sources is not None else set(PackageSource)
        result: List[Package] = []

        if PackageSource.INSTALLED in allowed:
            group = []
            installed = self.db.installed_package(dep.name)
            if installed:
                group.append(installed)
            group.extend(self.db.installed_providers(dep.name))
            result.extend(_by_version_desc(self._matching(group, dep)))

        if PackageSource.BINARY_REPO in allowed:
            group = self.db.repo_packages(dep.name) + self.db.repo_providers(dep.name)
            result.extend(_by_version_desc(self._matching(group, dep)))

        if PackageSource.REMOTE_SOURCE in allowed:
            group = []
            remote = self.cache.get(dep.name)
            if remote:
                group.append(remote)
            group.extend(self.cache.providers(dep.name))
            group.extend(
                p
                for p in self.cache.packages()
                if dep.name in p.provided_names()
            )
            result.extend(_by_version_desc(self._matching(group, dep)))

        return result

    def installed_satisfier(self, dep: Dependency) -> Optional[Package]:
        """The installed package meeting ``dep``, if any ("already satisfied")."""
        found = self.satisfiers(dep, sources=[PackageSource.INSTALLED])
        return found[0] if found else None

    def known(self, name: str) -> bool:
        """True when any source knows ``name`` as a package or a provide."""
        return bool(self.lookup(name) or self._providers_by_name(name))

    def _providers_by_name(self, name: str) -> List[Package]:
        result = self.db.installed_providers(name) + self.db.repo_providers(name)
        result.extend(self.cache.providers(name))
        result.extend(p for p in self.cache.packages() if name in p.provided_names())
        return result

    @staticmethod
    def _matching(packages: Iterable[Package], dep: Dependency) -> List[Package]:
        seen = set()
        result = []
        for package in packages:
            ident = (package.source, package.repo, package.name)
            if ident in seen:
                continue
            seen.add(ident)
            if package.satisfies(dep):
                result.append(package)
        return result

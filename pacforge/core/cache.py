# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Remote metadata cache for one resolution run.

Entries are never invalidated or evicted: a run must see one consistent
snapshot of the remote repository even if it changes underneath.
"""

from collections import OrderedDict
from typing import Dict, Iterable, Iterator, List, Optional

from .models import Package


class MetadataCache:
    """
    Name-keyed cache of remote package records.

    Caches negative results too, so a name unknown to the remote
    repository is only asked for once.
    """

    def __init__(self):
        self._info: "OrderedDict[str, Optional[Package]]" = OrderedDict()
        self._providers: Dict[str, List[str]] = {}

    def has_info(self, name: str) -> bool:
        return name in self._info

    def get(self, name: str) -> Optional[Package]:
        """
        Get a cached remote record.

        Returns:
            The package, or None when unknown or not cached
        """
        return self._info.get(name)

    def put(self, name: str, package: Optional[Package]):
        """Cache a record (None marks the name as absent remotely)."""
        if package is None and self._info.get(name) is not None:
            return
        self._info[name] = package

    def put_many(self, requested: Iterable[str], packages: Iterable[Package]):
        """Cache the answer to one batched info request."""
        found = set()
        for package in packages:
            self.put(package.name, package)
            found.add(package.name)
        for name in requested:
            if name not in found:
                self.put(name, None)

    def has_providers(self, name: str) -> bool:
        return name in self._providers

    def put_providers(self, name: str, packages: Iterable[Package]):
        names = []
        for package in packages:
            if not self.has_info(package.name) or self._info[package.name] is None:
                self._info[package.name] = package
            names.append(package.name)
        self._providers[name] = names

    def providers(self, name: str) -> List[Package]:
        result = []
        for pkg_name in self._providers.get(name, []):
            package = self._info.get(pkg_name)
            if package is not None:
                result.append(package)
        return result

    def packages(self) -> Iterator[Package]:
        """Iterate over every cached remote record, in insertion order."""
        for package in self._info.values():
            if package is not None:
                yield package

    def size(self) -> int:
        """Get number of cached names (including negative entries)"""
        return len(self._info)

    def clear(self):
        """Clear all cache entries"""
        self._info.clear()
        self._providers.clear()

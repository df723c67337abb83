# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Conflict detection over a frozen dependency graph.

Checks every pair of resolved nodes, and every node against installed
packages outside the resolved set. All conflicts are collected before
anything is reported.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .decisions import Decisions, resolve_decision
from .exceptions import PackageConflict
from .graph import DependencyGraph
from .index import LocalDatabase
from .models import NodeState, Package

logger = logging.getLogger("pacforge.conflicts")

CONFLICTS = "conflicts"
PROVIDES = "provides"


@dataclass(frozen=True)
class Conflict:
    """Two packages that cannot be installed together"""

    a: str
    b: str
    reason: str
    detail: str
    installed: bool = False  # ``b`` is installed and not part of the run

    def __str__(self) -> str:
        where = " (installed)" if self.installed else ""
        if self.reason == PROVIDES:
            return f"{self.a} and {self.b}{where} both provide {self.detail}"
        return f"{self.a} and {self.b}{where} are in conflict ({self.detail})"


def find_conflicts(a: Package, b: Package, installed: bool = False) -> List[Conflict]:
    """Conflicts between two distinct packages, in both directions."""
    found: List[Conflict] = []

    for entry in a.conflicts:
        if b.satisfies(entry):
            found.append(Conflict(a.name, b.name, CONFLICTS, str(entry), installed))
            break
    for entry in b.conflicts:
        if a.satisfies(entry):
            found.append(Conflict(a.name, b.name, CONFLICTS, str(entry), installed))
            break

    if found:
        # one report per pair is enough when they conflict explicitly
        found = found[:1]

    shared = sorted(set(a.provided_names()) & set(b.provided_names()))
    if shared and not a.replaces_package(b) and not b.replaces_package(a):
        for name in shared:
            found.append(Conflict(a.name, b.name, PROVIDES, name, installed))

    return found


class ConflictDetector:
    """
    Pure read over a frozen graph; only marks nodes CONFLICTED.

    Args:
        graph: Frozen dependency graph
        db: Installed/sync snapshot
    """

    def __init__(self, graph: DependencyGraph, db: LocalDatabase):
        self.graph = graph
        self.db = db

    def detect(self) -> List[Conflict]:
        """Collect every conflict in the resolved set and against installed state."""
        nodes = list(self.graph)
        conflicts: List[Conflict] = []

        for i, left in enumerate(nodes):
            for right in nodes[i + 1 :]:
                conflicts.extend(find_conflicts(left.package, right.package))

        for node in nodes:
            for installed in self._installed_candidates(node.package).values():
                conflicts.extend(find_conflicts(node.package, installed, installed=True))

        for conflict in conflicts:
            self.graph.nodes[conflict.a].state = NodeState.CONFLICTED
            if conflict.b in self.graph.nodes:
                self.graph.nodes[conflict.b].state = NodeState.CONFLICTED

        if conflicts:
            logger.warning(f"Found {len(conflicts)} conflict(s)")
        return conflicts

    def _installed_candidates(self, package: Package) -> Dict[str, Package]:
        """Installed packages outside the resolved set that could clash with ``package``."""
        result: Dict[str, Package] = {}

        def consider(candidate: Optional[Package]):
            if candidate is not None and candidate.name not in self.graph.nodes:
                result[candidate.name] = candidate

        for entry in package.conflicts:
            consider(self.db.installed_package(entry.name))
            for provider in self.db.installed_providers(entry.name):
                consider(provider)
        for name in package.provided_names():
            for provider in self.db.installed_providers(name):
                consider(provider)
        for installed in self.db.iter_installed():
            if installed.conflicts:
                consider(installed)
        return result

    def check(self) -> List[Conflict]:
        """Raise PackageConflict if any conflict exists."""
        conflicts = self.detect()
        if conflicts:
            raise PackageConflict(
                f"{len(conflicts)} conflicting package pair(s)", conflicts=conflicts
            )
        return conflicts

    async def gate(self, decisions: Decisions) -> List[Conflict]:
        """
        Conflict gate used by the pipeline.

        Conflicts inside the resolved set are always fatal. Conflicts that
        only involve installed packages may be accepted through
        ``decisions.confirm_conflicts``; the accepted list is returned.
        """
        conflicts = self.detect()
        if not conflicts:
            return []

        inner = [c for c in conflicts if not c.installed]
        if not inner:
            accepted = await resolve_decision(decisions.confirm_conflicts(conflicts))
            if accepted:
                logger.info("Conflicts with installed packages accepted")
                return conflicts

        raise PackageConflict(
            f"{len(conflicts)} conflicting package pair(s)", conflicts=conflicts
        )

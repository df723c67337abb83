# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Dependency resolver.

Breadth-first expansion from the explicit targets into a DependencyGraph.
Each level of the expansion is processed as a whole so the remote
repository is queried once per level rather than once per name.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from .config import PROVIDER_ORDER_KEYS
from .decisions import Decisions, resolve_decision
from .exceptions import PackageNotFound, UnsatisfiedDependency, VersionConflict
from .graph import DependencyGraph, SatisfiedEdge
from .index import PackageIndex
from .models import (
    EdgeKind,
    MissingDependency,
    Node,
    NodeReason,
    NodeState,
    Package,
    PackageSource,
    Policy,
)
from .version import Dependency, VersionKey, vercmp

logger = logging.getLogger("pacforge.resolver")

REMOTE_REPO = "aur"


@dataclass
class Request:
    """One requirement waiting to be bound to a node"""

    parent: Optional[str]
    dep: Dependency
    kind: Optional[EdgeKind] = None  # None for explicit targets
    optional: bool = False
    repo: Optional[str] = None  # restrict a target to one repository
    text: Optional[str] = None  # target as the user typed it

    @property
    def is_target(self) -> bool:
        return self.parent is None

    @property
    def allows_remote(self) -> bool:
        return self.repo in (None, REMOTE_REPO)


def parse_target(target: str) -> Request:
    """Parse ``name``, ``name>=1.0``, ``repo/name`` or ``aur/name``."""
    repo = None
    text = target.strip()
    if "/" in text:
        repo, text = text.split("/", 1)
    return Request(
        parent=None, dep=Dependency.parse(text), repo=repo or None, text=target.strip()
    )


# Sort keys for ambiguous candidates; smaller sorts first
_RANK_KEYS: Dict[str, Callable[[Dependency, Package], object]] = {
    "name": lambda dep, pkg: 0 if pkg.name == dep.name else 1,
    "source": lambda dep, pkg: 0 if pkg.source is PackageSource.BINARY_REPO else 1,
}


class Resolver:
    """
    Builds the transitive closure of requirements for a set of targets.

    Args:
        index: Candidate lookup
        policy: Per-run policy flags
        decisions: Provider choice for ties the ranking cannot break
        provider_order: Priority of the "name", "source" and "version" keys
    """

    def __init__(
        self,
        index: PackageIndex,
        policy: Optional[Policy] = None,
        decisions: Optional[Decisions] = None,
        provider_order: Optional[Sequence[str]] = None,
    ):
        self.index = index
        self.policy = policy or Policy()
        self.decisions = decisions or Decisions()
        self.provider_order = list(provider_order or PROVIDER_ORDER_KEYS)

    async def resolve(self, targets: Sequence[str]) -> DependencyGraph:
        """
        Resolve ``targets`` into a frozen dependency graph.

        Raises:
            PackageNotFound: A required name is unknown to every source
            UnsatisfiedDependency: Candidates exist but none satisfies
            VersionConflict: A constraint contradicts an existing binding
        """
        graph = DependencyGraph()
        level = [parse_target(t) for t in targets if t.strip()]
        depth = 0

        while level:
            logger.debug(f"Resolving level {depth}: {len(level)} requirement(s)")
            await self._prefetch(graph, level)

            next_level: List[Request] = []
            for request in level:
                node = await self._bind(graph, request)
                if node is not None:
                    next_level.extend(self._expand(node))
            level = next_level
            depth += 1

        self._raise_missing(graph)
        graph.freeze()
        logger.info(
            f"Resolved {len(graph)} package(s), "
            f"{len(graph.satisfied)} requirement(s) already satisfied"
        )
        return graph

    # ------------------------------------------------------------------
    # Level processing
    # ------------------------------------------------------------------

    async def _prefetch(self, graph: DependencyGraph, level: List[Request]):
        names = []
        for request in level:
            if not request.allows_remote:
                continue
            dep = request.dep
            if graph.find_satisfier(dep) is not None:
                continue
            if not request.is_target and self.index.installed_satisfier(dep):
                continue
            names.append(dep.name)
        if names:
            await self.index.prefetch(names)

    async def _bind(self, graph: DependencyGraph, request: Request) -> Optional[Node]:
        """Bind one requirement; returns the node when it is new."""
        dep = request.dep

        existing = graph.find_satisfier(dep)
        if existing is not None:
            self._link(graph, request, existing)
            return None

        same_name = graph.nodes.get(dep.name)
        if same_name is not None:
            raise VersionConflict(
                f"{dep} required by {request.parent or 'target'} conflicts with "
                f"resolved {same_name.package}",
                name=dep.name,
                bound_version=same_name.package.version,
                constraint=str(dep),
            )

        if not request.is_target:
            installed = self.index.installed_satisfier(dep)
            if installed is not None and installed.name in graph.nodes:
                raise VersionConflict(
                    f"{dep} required by {request.parent} is met by installed {installed}, "
                    f"which {graph.nodes[installed.name].package} replaces",
                    name=installed.name,
                    bound_version=graph.nodes[installed.name].package.version,
                    constraint=str(dep),
                )
            if installed is not None:
                graph.mark_satisfied(request.parent, dep, installed)
                return None

        candidates = await self._candidates(request)
        taken = [c for c in candidates if c.name in graph.nodes]
        candidates = [c for c in candidates if c.name not in graph.nodes]

        if request.is_target:
            installed = self.index.installed(dep.name)
            if installed is not None and dep.allows(installed.version):
                if self._target_satisfied(installed, candidates):
                    logger.info(f"{installed.name}-{installed.version} is already installed -- skipping")
                    graph.add_target(installed.name, request.text)
                    graph.mark_satisfied(None, dep, installed)
                    return None

        if not candidates:
            if taken:
                node = graph.nodes[taken[0].name]
                raise VersionConflict(
                    f"{dep} can only be provided by {taken[0]}, but {node.package} "
                    f"is already resolved",
                    name=taken[0].name,
                    bound_version=node.package.version,
                    constraint=str(dep),
                )
            self._missing(graph, request)
            return None

        compatible = [c for c in candidates if self._broken_requirement(graph, c) is None]
        if not compatible:
            broken = self._broken_requirement(graph, candidates[0])
            raise VersionConflict(
                f"{broken.dep} required by {broken.src or 'target'} is met by installed "
                f"{broken.installed}, but {dep} needs {candidates[0]}",
                name=broken.installed.name,
                bound_version=broken.installed.version,
                constraint=str(dep),
            )

        chosen = await self._choose(dep, compatible)
        reason = NodeReason.EXPLICIT_TARGET if request.is_target else request.kind.reason
        node = graph.add_node(chosen, reason, installed=self.index.installed(chosen.name))
        logger.debug(f"{dep} -> {chosen}")
        self._link(graph, request, node)
        return node

    def _link(self, graph: DependencyGraph, request: Request, node: Node):
        if request.is_target:
            graph.add_target(node.name, request.text)
        else:
            graph.add_edge(request.parent, node.name, request.kind, request.dep)

    def _target_satisfied(self, installed: Package, candidates: List[Package]) -> bool:
        if not self.policy.needed:
            return not candidates
        if self.policy.rebuild:
            return not any(c.name == installed.name and c.is_remote for c in candidates)
        return True

    @staticmethod
    def _broken_requirement(graph: DependencyGraph, package: Package) -> Optional[SatisfiedEdge]:
        """An already satisfied requirement that replacing the installed copy would break."""
        for entry in graph.satisfied_by(package.name):
            if not package.satisfies(entry.dep):
                return entry
        return None

    async def _candidates(self, request: Request) -> List[Package]:
        sources = [PackageSource.BINARY_REPO]
        if request.allows_remote:
            sources.append(PackageSource.REMOTE_SOURCE)
        if request.repo == REMOTE_REPO:
            sources = [PackageSource.REMOTE_SOURCE]

        candidates = self._filter_repo(self.index.satisfiers(request.dep, sources), request)
        if not candidates and request.allows_remote:
            await self.index.prefetch_providers(request.dep.name)
            candidates = self._filter_repo(
                self.index.satisfiers(request.dep, sources), request
            )
        return candidates

    @staticmethod
    def _filter_repo(candidates: List[Package], request: Request) -> List[Package]:
        if request.repo in (None, REMOTE_REPO):
            return candidates
        return [c for c in candidates if c.repo == request.repo]

    async def _choose(self, dep: Dependency, candidates: List[Package]) -> Package:
        """
        Pick one candidate.

        Ranking follows ``provider_order`` (exact name, binary repository,
        highest version by default) with discovery order as the final key;
        equally ranked providers of different names go to the decisions hook.
        """
        if len(candidates) == 1:
            return candidates[0]

        ranked = list(candidates)
        for key in reversed(self.provider_order):
            if key == "version":
                ranked.sort(key=lambda p: VersionKey(p.version), reverse=True)
            else:
                rank = _RANK_KEYS[key]
                ranked.sort(key=lambda p, rank=rank: rank(dep, p))

        best = ranked[0]
        tied = [p for p in ranked if self._same_rank(dep, best, p)]
        if len({p.name for p in tied}) > 1 and best.name != dep.name:
            logger.debug(f"{len(tied)} equally ranked providers for {dep}")
            return await resolve_decision(self.decisions.choose_provider(dep, tied))
        return best

    @staticmethod
    def _same_rank(dep: Dependency, a: Package, b: Package) -> bool:
        return (
            all(rank(dep, a) == rank(dep, b) for rank in _RANK_KEYS.values())
            and vercmp(a.version, b.version) == 0
        )

    def _expand(self, node: Node) -> List[Request]:
        package = node.package
        requests = [Request(node.name, dep, EdgeKind.RUNTIME) for dep in package.depends]
        if package.is_remote:
            requests.extend(
                Request(node.name, dep, EdgeKind.BUILD) for dep in package.make_depends
            )
            if self.policy.check_depends:
                requests.extend(
                    Request(node.name, dep, EdgeKind.CHECK) for dep in package.check_depends
                )
        if node.explicit and self.policy.optional_depends:
            requests.extend(
                Request(node.name, dep, EdgeKind.RUNTIME, optional=True)
                for dep in package.opt_depends
            )
        return requests

    # ------------------------------------------------------------------
    # Missing dependencies
    # ------------------------------------------------------------------

    def _missing(self, graph: DependencyGraph, request: Request):
        dep = request.dep
        if request.optional or (
            request.kind is EdgeKind.CHECK and not self.policy.check_depends
        ):
            logger.debug(f"Dropping unavailable {dep} of {request.parent}")
            graph.mark_dropped(request.parent, dep)
            return

        missing = MissingDependency(
            dep=dep,
            chain=graph.chain(request.parent),
            known=self.index.known(dep.name),
        )
        logger.debug(f"Missing {missing}")
        graph.mark_missing(missing)
        if request.parent is not None:
            graph.nodes[request.parent].state = NodeState.MISSING

    @staticmethod
    def _raise_missing(graph: DependencyGraph):
        if not graph.missing:
            return
        listing = ", ".join(str(m) for m in graph.missing)
        if any(not m.known for m in graph.missing):
            raise PackageNotFound(
                f"Could not find all required packages: {listing}",
                missing=list(graph.missing),
            )
        raise UnsatisfiedDependency(
            f"Could not satisfy all dependencies: {listing}",
            missing=list(graph.missing),
        )

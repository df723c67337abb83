# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Dependency graph over resolution nodes.

Built incrementally by the resolver, then frozen. A frozen graph binds
every edge to a concrete node and rejects further mutation.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .exceptions import GraphFrozenError
from .models import Edge, EdgeKind, MissingDependency, Node, NodeReason, NodeState, Package
from .version import Dependency


@dataclass(frozen=True)
class SatisfiedEdge:
    """A requirement already met by an installed package"""

    src: Optional[str]
    dep: Dependency
    installed: Package


class DependencyGraph:
    """
    Directed graph of nodes keyed by package name.

    Edge ``(a -> b, kind)`` means ``a`` requires ``b``.
    """

    def __init__(self):
        self.nodes: Dict[str, Node] = {}
        self.edges: List[Edge] = []
        self.targets: List[str] = []
        self.requested: Dict[str, str] = {}  # target as typed -> bound name
        self.satisfied: List[SatisfiedEdge] = []
        self.dropped: List[Tuple[Optional[str], Dependency]] = []
        self.missing: List[MissingDependency] = []
        self._out: Dict[str, List[Edge]] = defaultdict(list)
        self._in: Dict[str, List[Edge]] = defaultdict(list)
        self._edge_keys: Set[Tuple[str, str, EdgeKind]] = set()
        self._frozen = False

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._frozen

    def _check_mutable(self):
        if self._frozen:
            raise GraphFrozenError("Dependency graph is frozen")

    def add_node(
        self, package: Package, reason: NodeReason, installed: Optional[Package] = None
    ) -> Node:
        self._check_mutable()
        if package.name in self.nodes:
            return self.nodes[package.name]
        node = Node(package=package, reason=reason, order=len(self.nodes), installed=installed)
        self.nodes[package.name] = node
        return node

    def rebind(self, name: str, package: Package):
        """Swap the chosen package of an unfrozen node."""
        self._check_mutable()
        if package.name != name:
            raise ValueError(f"Cannot rebind {name} to {package.name}")
        self.nodes[name].package = package

    def add_edge(self, src: str, dst: str, kind: EdgeKind, dep: Optional[Dependency] = None):
        self._check_mutable()
        if src == dst:
            return
        key = (src, dst, kind)
        if key in self._edge_keys:
            return
        self._edge_keys.add(key)
        edge = Edge(src=src, dst=dst, kind=kind, dep=dep)
        self.edges.append(edge)
        self._out[src].append(edge)
        self._in[dst].append(edge)

    def add_target(self, name: str, requested: Optional[str] = None):
        self._check_mutable()
        if name not in self.targets:
            self.targets.append(name)
        self.requested.setdefault(requested or name, name)

    def mark_satisfied(self, src: Optional[str], dep: Dependency, installed: Package):
        self._check_mutable()
        self.satisfied.append(SatisfiedEdge(src=src, dep=dep, installed=installed))

    def mark_dropped(self, src: Optional[str], dep: Dependency):
        self._check_mutable()
        self.dropped.append((src, dep))

    def mark_missing(self, missing: MissingDependency):
        self._check_mutable()
        self.missing.append(missing)

    def freeze(self):
        """Freeze the graph; every edge must point at a known node."""
        for edge in self.edges:
            if edge.src not in self.nodes or edge.dst not in self.nodes:
                raise GraphFrozenError(
                    f"Unbound edge {edge.src} -> {edge.dst}",
                    details={"kind": edge.kind.value},
                )
        for node in self.nodes.values():
            if node.state is NodeState.PENDING:
                node.state = NodeState.RESOLVED
        self._frozen = True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __contains__(self, name: str) -> bool:
        return name in self.nodes

    def __len__(self) -> int:
        return len(self.nodes)

    def __iter__(self) -> Iterator[Node]:
        return iter(sorted(self.nodes.values(), key=lambda n: n.order))

    def node(self, name: str) -> Node:
        return self.nodes[name]

    def out_edges(self, name: str, kinds: Optional[Iterable[EdgeKind]] = None) -> List[Edge]:
        edges = self._out.get(name, [])
        if kinds is None:
            return list(edges)
        wanted = set(kinds)
        return [e for e in edges if e.kind in wanted]

    def in_edges(self, name: str, kinds: Optional[Iterable[EdgeKind]] = None) -> List[Edge]:
        edges = self._in.get(name, [])
        if kinds is None:
            return list(edges)
        wanted = set(kinds)
        return [e for e in edges if e.kind in wanted]

    def dependencies(self, name: str) -> List[str]:
        return [e.dst for e in self._out.get(name, [])]

    def dependents(self, name: str) -> List[str]:
        return [e.src for e in self._in.get(name, [])]

    def find_satisfier(self, dep: Dependency) -> Optional[Node]:
        """The node already bound to ``dep`` (by name first, then provides)."""
        node = self.nodes.get(dep.name)
        if node and node.package.satisfies(dep):
            return node
        for node in self:
            if node.package.provide_satisfies(dep):
                return node
        return None

    def satisfied_by(self, name: str) -> List[SatisfiedEdge]:
        """Requirements currently met by the installed package ``name``."""
        return [entry for entry in self.satisfied if entry.installed.name == name]

    def needed_at_runtime(self, name: str) -> bool:
        """True for targets and anything they reach through runtime edges."""
        seen: Set[str] = set()
        stack = [name]
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            if self.nodes[current].explicit:
                return True
            stack.extend(
                e.src for e in self._in.get(current, []) if e.kind is EdgeKind.RUNTIME
            )
        return False

    def chain(self, name: Optional[str]) -> Tuple[str, ...]:
        """A requirement chain from some target down to ``name``."""
        if name is None:
            return ()
        path = [name]
        seen = {name}
        current = name
        while True:
            parents = [e.src for e in self._in.get(current, []) if e.src not in seen]
            if not parents:
                break
            current = min(parents, key=lambda n: self.nodes[n].order)
            seen.add(current)
            path.append(current)
        return tuple(reversed(path))

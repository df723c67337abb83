# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Build planner: turns a frozen dependency graph into an ordered list of
batches.

Source packages are grouped by package base (split packages build
together). Circular dependencies are legal only inside one base; the
strongly connected components of the source subgraph are checked for
that before batching. Batches are then ordered with Kahn's algorithm.
"""

import heapq
import logging
from collections import defaultdict, deque
from typing import Dict, Iterable, List, Set

from .exceptions import PlanError, UnresolvableCycle
from .graph import DependencyGraph
from .models import Batch, BatchKind, BuildPlan, EdgeKind, Node

logger = logging.getLogger("pacforge.planner")

REPO_BATCH = "<repo>"


def find_strongly_connected_components(graph: Dict[str, Iterable[str]]) -> List[List[str]]:
    """
    Find strongly connected components using Tarjan's algorithm.

    Args:
        graph: Adjacency mapping node -> successors

    Returns:
        List of components, each a list of nodes
    """
    index_counter = [0]
    stack: List[str] = []
    lowlinks: Dict[str, int] = {}
    index: Dict[str, int] = {}
    on_stack: Dict[str, bool] = {}
    sccs: List[List[str]] = []

    def strongconnect(node: str):
        index[node] = index_counter[0]
        lowlinks[node] = index_counter[0]
        index_counter[0] += 1
        stack.append(node)
        on_stack[node] = True

        for successor in graph.get(node, []):
            if successor not in index:
                strongconnect(successor)
                lowlinks[node] = min(lowlinks[node], lowlinks[successor])
            elif on_stack.get(successor, False):
                lowlinks[node] = min(lowlinks[node], index[successor])

        if lowlinks[node] == index[node]:
            component = []
            while True:
                w = stack.pop()
                on_stack[w] = False
                component.append(w)
                if w == node:
                    break
            sccs.append(component)

    for node in graph:
        if node not in index:
            strongconnect(node)

    return sccs


class BuildPlanner:
    """
    Derives the batch sequence from a frozen graph.

    Args:
        graph: Frozen dependency graph
    """

    def __init__(self, graph: DependencyGraph):
        if not graph.frozen:
            raise PlanError("Dependency graph must be frozen before planning")
        self.graph = graph

    def plan(self) -> BuildPlan:
        """
        Build the ordered plan.

        Raises:
            UnresolvableCycle: A dependency cycle spans more than one base
        """
        nodes = list(self.graph)
        if not nodes:
            return BuildPlan()

        self._check_cycles([n for n in nodes if n.package.is_remote])

        keys = self._batch_keys(nodes)
        batches = self._group(nodes, keys)
        deps = self._batch_dependencies(keys)
        ordered = self._order(batches, deps)

        make_only = [
            n.name
            for n in nodes
            if n.installed is None and not self.graph.needed_at_runtime(n.name)
        ]
        plan = BuildPlan(batches=ordered, make_only=make_only)
        logger.info(
            f"Planned {len(plan)} batch(es): "
            + ", ".join(b.key for b in plan.batches)
        )
        return plan

    # ------------------------------------------------------------------
    # Step 1: cycles among source packages
    # ------------------------------------------------------------------

    def _check_cycles(self, remote_nodes: List[Node]):
        names = {n.name for n in remote_nodes}
        adjacency = {
            name: [d for d in self.graph.dependencies(name) if d in names]
            for name in sorted(names, key=lambda n: self.graph.nodes[n].order)
        }

        for component in find_strongly_connected_components(adjacency):
            if len(component) < 2:
                continue
            bases = sorted({self.graph.nodes[name].base for name in component})
            if len(bases) > 1:
                raise UnresolvableCycle(
                    f"Dependency cycle spans package bases: {', '.join(bases)}",
                    cycle=sorted(component),
                )
            logger.debug(f"Split package cycle collapsed into {bases[0]}: {component}")

    # ------------------------------------------------------------------
    # Steps 2 & 3: grouping
    # ------------------------------------------------------------------

    def _reaching_source(self, nodes: List[Node]) -> Set[str]:
        """Names with a dependency path to some source package."""
        queue = deque(n.name for n in nodes if n.package.is_remote)
        reached: Set[str] = set()
        while queue:
            name = queue.popleft()
            for dependent in self.graph.dependents(name):
                if dependent not in reached:
                    reached.add(dependent)
                    queue.append(dependent)
        return reached

    def _batch_keys(self, nodes: List[Node]) -> Dict[str, str]:
        keys: Dict[str, str] = {}
        reaching = self._reaching_source(nodes)
        for node in nodes:
            if node.package.is_remote:
                keys[node.name] = node.base
            elif node.name not in reaching:
                keys[node.name] = REPO_BATCH

        # binary packages needing a source package go in later transactions,
        # one per group of mutually dependent packages
        order = {n.name: n.order for n in nodes}
        late = sorted((n.name for n in nodes if n.name not in keys), key=order.__getitem__)
        adjacency = {
            name: [d for d in self.graph.dependencies(name) if d in order and d not in keys]
            for name in late
        }
        for component in find_strongly_connected_components(adjacency):
            head = min(component, key=order.__getitem__)
            for name in component:
                keys[name] = f"{REPO_BATCH}:{head}"
        return keys

    def _group(self, nodes: List[Node], keys: Dict[str, str]) -> Dict[str, Batch]:
        batches: Dict[str, Batch] = {}
        for node in nodes:
            key = keys[node.name]
            batch = batches.get(key)
            if batch is None:
                if node.package.is_remote:
                    batch = Batch(kind=BatchKind.SOURCE, key=key, nodes=[], base=node.base)
                else:
                    batch = Batch(kind=BatchKind.REPO, key=key, nodes=[])
                batches[key] = batch
            batch.nodes.append(node)

        for batch in batches.values():
            members = set(batch.names)
            batch.build_edges = [
                edge
                for name in batch.names
                for edge in self.graph.out_edges(name, kinds=(EdgeKind.BUILD, EdgeKind.CHECK))
                if edge.dst not in members
            ]
        return batches

    def _batch_dependencies(self, keys: Dict[str, str]) -> Dict[str, Set[str]]:
        deps: Dict[str, Set[str]] = defaultdict(set)
        for edge in self.graph.edges:
            src, dst = keys[edge.src], keys[edge.dst]
            if src != dst:
                deps[src].add(dst)
        return deps

    # ------------------------------------------------------------------
    # Step 4: ordering
    # ------------------------------------------------------------------

    def _order(self, batches: Dict[str, Batch], deps: Dict[str, Set[str]]) -> List[Batch]:
        """Kahn's algorithm over batches, ties broken by discovery order."""
        rank = {key: min(n.order for n in batch.nodes) for key, batch in batches.items()}
        if REPO_BATCH in rank:
            rank[REPO_BATCH] = -1
        in_degree = {key: len(deps.get(key, ())) for key in batches}
        dependents: Dict[str, Set[str]] = defaultdict(set)
        for key, requires in deps.items():
            for dep in requires:
                dependents[dep].add(key)

        heap = [(rank[key], key) for key, degree in in_degree.items() if degree == 0]
        heapq.heapify(heap)
        ordered: List[Batch] = []

        while heap:
            _, key = heapq.heappop(heap)
            ordered.append(batches[key])
            for dependent in dependents[key]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, (rank[dependent], dependent))

        if len(ordered) != len(batches):
            stuck = sorted(key for key, degree in in_degree.items() if degree > 0)
            raise UnresolvableCycle(
                f"Dependency cycle between package bases: {', '.join(stuck)}",
                cycle=stuck,
            )

        position = {batch.key: i for i, batch in enumerate(ordered)}
        for batch in ordered:
            batch.depends_on = sorted(deps.get(batch.key, ()), key=position.__getitem__)
        return ordered

# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0


import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .base_adapter import Builder, Fetcher, Installer
from .conflicts import Conflict, ConflictDetector
from .decisions import Decisions
from .events import EventBus
from .graph import DependencyGraph
from .index import PackageIndex
from .lock import TransactionLock
from .models import BuildPlan, Policy, RunResult, TargetStatus
from .orchestrator import Orchestrator
from .planner import BuildPlanner
from .resolver import Resolver

logger = logging.getLogger("pacforge.runtime")


@dataclass
class Prepared:
    """Everything decided before the first side effect"""

    graph: DependencyGraph
    plan: BuildPlan
    conflicts: List[Conflict]

    @property
    def empty(self) -> bool:
        return self.plan.empty


async def prepare(
    targets: Sequence[str],
    index: PackageIndex,
    policy: Optional[Policy] = None,
    decisions: Optional[Decisions] = None,
    provider_order: Optional[Sequence[str]] = None,
) -> Prepared:
    """
    Resolve, check conflicts and plan.

    Every fatal error (PackageNotFound, VersionConflict, UnsatisfiedDependency,
    PackageConflict, UnresolvableCycle) is raised from here, before anything
    is fetched, built or installed.

    Args:
        targets: Requested package names
        index: Candidate lookup
        policy: Per-run policy
        decisions: Interactive decisions
        provider_order: Provider tie-break key order

    Returns:
        Frozen graph, ordered plan and any accepted installed-package conflicts
    """
    policy = policy or Policy()
    decisions = decisions or Decisions()

    # 1. Resolve
    resolver = Resolver(index, policy, decisions, provider_order)
    graph = await resolver.resolve(targets)

    # 2. Conflicts
    conflicts = await ConflictDetector(graph, index.db).gate(decisions)

    # 3. Plan
    plan = BuildPlanner(graph).plan()
    return Prepared(graph=graph, plan=plan, conflicts=conflicts)


async def execute(
    prepared: Prepared,
    fetcher: Fetcher,
    builder: Builder,
    installer: Installer,
    policy: Optional[Policy] = None,
    decisions: Optional[Decisions] = None,
    event_bus: Optional[EventBus] = None,
    lock: Optional[TransactionLock] = None,
    fetch_concurrency: int = 4,
    fetch_timeout: Optional[float] = 30.0,
    cancel: Optional[asyncio.Event] = None,
) -> RunResult:
    """Run a prepared plan."""
    if prepared.empty:
        logger.info("Nothing to do")
        return RunResult(
            targets={name: TargetStatus.SATISFIED for name in prepared.graph.requested}
        )

    orchestrator = Orchestrator(
        plan=prepared.plan,
        graph=prepared.graph,
        policy=policy or Policy(),
        fetcher=fetcher,
        builder=builder,
        installer=installer,
        decisions=decisions,
        lock=lock,
        event_bus=event_bus,
        fetch_concurrency=fetch_concurrency,
        fetch_timeout=fetch_timeout,
        cancel=cancel,
    )
    return await orchestrator.run()


async def run_install(
    targets: Sequence[str],
    index: PackageIndex,
    fetcher: Fetcher,
    builder: Builder,
    installer: Installer,
    policy: Optional[Policy] = None,
    decisions: Optional[Decisions] = None,
    provider_order: Optional[Sequence[str]] = None,
    **options,
) -> RunResult:
    """
    Resolve and install ``targets`` in one go.

    ``options`` are passed through to :func:`execute` (event bus, lock,
    fetch limits, cancellation).
    """
    prepared = await prepare(targets, index, policy, decisions, provider_order)
    return await execute(
        prepared, fetcher, builder, installer, policy=policy, decisions=decisions, **options
    )

# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Build plan execution.

Each batch moves through a small state machine:

    PENDING -> FETCHED -> REVIEWED -> BUILT -> INSTALLED

with FAILED, PRUNED and ABORTED as terminal states. Binary repository
batches go straight from PENDING to INSTALLED.

Execution happens in three phases:
1. Fetch every source batch concurrently (bounded, with a timeout)
2. Review fetched recipes one by one in plan order
3. Build and install strictly in plan order

A failed batch prunes every batch that transitively depends on it;
independent batches keep going. Nothing is installed before review has
finished, so an abort during review leaves the system untouched.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from .base_adapter import Builder, Fetcher, Installer
from .decisions import Decisions, resolve_decision
from .events import Event, EventBus, EventType
from .exceptions import (
    BatchError,
    BuildFailure,
    FetchFailure,
    InstallFailure,
    InvalidTransition,
    UserAbort,
)
from .graph import DependencyGraph
from .lock import TransactionLock
from .models import (
    Batch,
    BatchKind,
    BuildPlan,
    ErrorKind,
    Policy,
    RunResult,
    TargetStatus,
)

logger = logging.getLogger("pacforge.orchestrator")


class BatchState(Enum):
    PENDING = "pending"
    FETCHED = "fetched"
    REVIEWED = "reviewed"
    BUILT = "built"
    INSTALLED = "installed"
    FAILED = "failed"
    PRUNED = "pruned"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (
            BatchState.INSTALLED,
            BatchState.FAILED,
            BatchState.PRUNED,
            BatchState.ABORTED,
        )


_STOPPABLE = {BatchState.FAILED, BatchState.PRUNED, BatchState.ABORTED}

TRANSITIONS: Dict[BatchState, Set[BatchState]] = {
    BatchState.PENDING: {BatchState.FETCHED, BatchState.INSTALLED} | _STOPPABLE,
    BatchState.FETCHED: {BatchState.REVIEWED} | _STOPPABLE,
    BatchState.REVIEWED: {BatchState.BUILT} | _STOPPABLE,
    # building and installing one batch is never interrupted
    BatchState.BUILT: {BatchState.INSTALLED, BatchState.FAILED},
    BatchState.INSTALLED: set(),
    BatchState.FAILED: set(),
    BatchState.PRUNED: set(),
    BatchState.ABORTED: set(),
}


@dataclass
class BatchRun:
    """Mutable execution record for one batch"""

    batch: Batch
    state: BatchState = BatchState.PENDING
    workdir: Optional[Path] = None
    artifacts: Dict[str, Path] = field(default_factory=dict)
    error_kind: Optional[ErrorKind] = None
    error: Optional[str] = None

    @property
    def key(self) -> str:
        return self.batch.key

    def advance(self, state: BatchState):
        if state not in TRANSITIONS[self.state]:
            raise InvalidTransition(
                f"Batch {self.key}: {self.state.value} -> {state.value} is not allowed"
            )
        logger.debug(f"Batch {self.key}: {self.state.value} -> {state.value}")
        self.state = state


class Orchestrator:
    """
    Drives a build plan through fetch, review, build and install.

    Args:
        plan: Ordered batches from the planner
        graph: The frozen graph the plan was derived from
        policy: Per-run policy
        fetcher: Recipe retrieval collaborator
        builder: Build tool collaborator
        installer: Package manager collaborator
        decisions: Review decisions
        lock: Host package database lock
        event_bus: Lifecycle event sink
        fetch_concurrency: Maximum concurrent fetches
        fetch_timeout: Seconds allowed per fetch
        cancel: Cancellation request, honoured at batch boundaries and review
    """

    def __init__(
        self,
        plan: BuildPlan,
        graph: DependencyGraph,
        policy: Policy,
        fetcher: Fetcher,
        builder: Builder,
        installer: Installer,
        decisions: Optional[Decisions] = None,
        lock: Optional[TransactionLock] = None,
        event_bus: Optional[EventBus] = None,
        fetch_concurrency: int = 4,
        fetch_timeout: Optional[float] = 30.0,
        cancel: Optional[asyncio.Event] = None,
    ):
        self.plan = plan
        self.graph = graph
        self.policy = policy
        self.fetcher = fetcher
        self.builder = builder
        self.installer = installer
        self.decisions = decisions or Decisions()
        self.lock = lock or TransactionLock()
        self.event_bus = event_bus or EventBus()
        self.fetch_concurrency = max(1, fetch_concurrency)
        self.fetch_timeout = fetch_timeout
        self.cancel = cancel or asyncio.Event()

        self.runs: Dict[str, BatchRun] = {b.key: BatchRun(b) for b in plan}
        self.aborted = False
        self._dependents: Dict[str, Set[str]] = defaultdict(set)
        for batch in plan:
            for dep in batch.depends_on:
                self._dependents[dep].add(batch.key)

    # ========================================================================
    # Entry point
    # ========================================================================

    async def run(self) -> RunResult:
        """Execute the plan and report per-batch outcomes."""
        await self._emit(EventType.RUN_START, batches=[b.key for b in self.plan])

        if not self.plan.empty:
            await self._fetch_all()
            try:
                await self._review_all()
            except UserAbort as e:
                logger.warning(f"Aborted: {e.message}")
                await self._abort_remaining()
            else:
                await self._execute_all()
                if self.policy.remove_make_deps and not self.aborted:
                    await self._remove_make_only()

        result = self.result()
        await self._emit(EventType.RUN_END, **result.to_dict())
        return result

    # ========================================================================
    # Phase 1: fetch
    # ========================================================================

    async def _fetch_all(self):
        semaphore = asyncio.Semaphore(self.fetch_concurrency)
        source_runs = [
            run for run in self.runs.values() if run.batch.kind is BatchKind.SOURCE
        ]
        if not source_runs:
            return

        async def fetch(run: BatchRun) -> Any:
            async with semaphore:
                base = run.batch.base or run.key
                logger.info(f"Fetching {base}")
                return await asyncio.wait_for(self.fetcher.fetch(base), self.fetch_timeout)

        outcomes = await asyncio.gather(
            *(fetch(run) for run in source_runs), return_exceptions=True
        )

        for run, outcome in zip(source_runs, outcomes):
            if run.state.terminal:
                continue
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                if isinstance(outcome, asyncio.TimeoutError):
                    message = f"timed out after {self.fetch_timeout}s"
                else:
                    message = getattr(outcome, "message", None) or str(outcome)
                await self._fail(run, ErrorKind.FETCH, FetchFailure(message, batch=run.key))
                continue
            run.workdir = Path(outcome)
            run.advance(BatchState.FETCHED)
            await self._emit(EventType.BATCH_FETCHED, batch=run.key, workdir=str(run.workdir))

    # ========================================================================
    # Phase 2: review
    # ========================================================================

    async def _review_all(self):
        for batch in self.plan:
            run = self.runs[batch.key]
            if run.state is not BatchState.FETCHED:
                continue
            if self.cancel.is_set():
                raise UserAbort("Cancelled before review")
            approved = await resolve_decision(self.decisions.review(batch, run.workdir))
            if not approved:
                raise UserAbort(f"Review of {batch.base} rejected")
            run.advance(BatchState.REVIEWED)
            await self._emit(EventType.BATCH_REVIEWED, batch=run.key)

    # ========================================================================
    # Phase 3: build and install
    # ========================================================================

    async def _execute_all(self):
        for batch in self.plan:
            run = self.runs[batch.key]
            if run.state.terminal:
                continue
            if self.cancel.is_set():
                logger.warning("Cancellation requested, stopping at batch boundary")
                await self._abort_remaining()
                return
            try:
                if batch.kind is BatchKind.REPO:
                    await self._install_repo(run)
                else:
                    await self._build(run)
                    await self._install_built(run)
            except BuildFailure as e:
                await self._fail(run, ErrorKind.BUILD, e)
            except InstallFailure as e:
                await self._fail(run, ErrorKind.INSTALL, e)
            except InvalidTransition:
                raise
            except Exception as e:
                await self._fail_unexpected(run, e)

    async def _install_repo(self, run: BatchRun):
        names = run.batch.names
        targets = [
            f"{n.package.repo}/{n.name}" if n.package.repo else n.name for n in run.batch.nodes
        ]
        as_deps, as_explicit = self._reasons(run.batch)
        logger.info(f"Installing from repositories: {', '.join(targets)}")
        async with self.lock.transaction(run.key):
            await self._uninterruptible(
                self.installer.install_repo, targets, as_deps, as_explicit
            )
        run.advance(BatchState.INSTALLED)
        await self._emit(EventType.BATCH_INSTALLED, batch=run.key, packages=names)

    async def _build(self, run: BatchRun):
        logger.info(f"Building {run.batch}")
        async with self.lock.build(run.key):
            artifacts = await self._uninterruptible(
                self.builder.build, run.batch, run.workdir
            )

        missing = [name for name in run.batch.names if name not in artifacts]
        if missing:
            raise BuildFailure(
                f"Build of {run.batch.base} produced no package for {', '.join(missing)}",
                batch=run.key,
            )
        run.artifacts = {name: Path(artifacts[name]) for name in run.batch.names}
        run.advance(BatchState.BUILT)
        await self._emit(EventType.BATCH_BUILT, batch=run.key, packages=run.batch.names)

    async def _install_built(self, run: BatchRun):
        as_deps, as_explicit = self._reasons(run.batch)
        async with self.lock.transaction(run.key):
            await self._uninterruptible(
                self.installer.install_files, run.artifacts, as_deps, as_explicit
            )
        run.advance(BatchState.INSTALLED)
        await self._emit(EventType.BATCH_INSTALLED, batch=run.key, packages=run.batch.names)

    def _reasons(self, batch: Batch) -> Tuple[List[str], List[str]]:
        as_deps = [n.name for n in batch.nodes if self.policy.install_as_dep(n)]
        as_explicit = [n.name for n in batch.nodes if self.policy.install_as_explicit(n)]
        return as_deps, as_explicit

    async def _uninterruptible(self, func: Callable, *args: Any) -> Any:
        """Run a blocking step in a worker thread; cancellation waits for it to finish."""
        task = asyncio.ensure_future(asyncio.to_thread(func, *args))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning("Cancellation deferred until the running step completes")
            self.cancel.set()
            await asyncio.wait({task})
            raise

    async def _remove_make_only(self):
        installed = {
            name
            for run in self.runs.values()
            if run.state is BatchState.INSTALLED
            for name in run.batch.names
        }
        names = [name for name in self.plan.make_only if name in installed]
        if not names:
            return
        logger.info(f"Removing make dependencies: {', '.join(names)}")
        try:
            async with self.lock.transaction("cleanup"):
                await self._uninterruptible(self.installer.remove, names)
        except InstallFailure as e:
            logger.error(f"Failed to remove make dependencies: {e.message}")

    # ========================================================================
    # Failure propagation
    # ========================================================================

    async def _fail(self, run: BatchRun, kind: ErrorKind, error: BatchError):
        run.error_kind = kind
        run.error = error.message
        run.advance(BatchState.FAILED)
        logger.error(f"Batch {run.key} failed ({kind.value}): {error.message}")
        await self._emit(
            EventType.BATCH_FAILED, batch=run.key, kind=kind.value, error=error.message
        )
        await self._prune_dependents(run.key)

    async def _fail_unexpected(self, run: BatchRun, error: Exception):
        """Record a collaborator error that is not a BatchError."""
        message = f"{type(error).__name__}: {error}"
        if run.state is BatchState.REVIEWED:
            await self._fail(run, ErrorKind.BUILD, BuildFailure(message, batch=run.key))
        else:
            await self._fail(run, ErrorKind.INSTALL, InstallFailure(message, batch=run.key))

    async def _prune_dependents(self, key: str):
        stack = list(self._dependents.get(key, ()))
        while stack:
            dependent = self.runs[stack.pop()]
            if dependent.state.terminal:
                continue
            dependent.advance(BatchState.PRUNED)
            logger.warning(f"Skipping {dependent.key}: depends on failed {key}")
            await self._emit(EventType.BATCH_PRUNED, batch=dependent.key, cause=key)
            stack.extend(self._dependents.get(dependent.key, ()))

    async def _abort_remaining(self):
        self.aborted = True
        for batch in self.plan:
            run = self.runs[batch.key]
            if run.state.terminal:
                continue
            run.advance(BatchState.ABORTED)
            await self._emit(EventType.BATCH_ABORTED, batch=run.key)

    # ========================================================================
    # Reporting
    # ========================================================================

    def result(self) -> RunResult:
        result = RunResult(aborted=self.aborted)
        for batch in self.plan:
            run = self.runs[batch.key]
            if run.state is BatchState.INSTALLED:
                result.succeeded.extend(batch.labels)
            elif run.state is BatchState.FAILED:
                result.failed.extend((label, run.error_kind) for label in batch.labels)
            elif run.state is BatchState.PRUNED:
                result.pruned.extend(batch.labels)
        result.targets = self._target_status()
        return result

    def _target_status(self) -> Dict[str, TargetStatus]:
        by_name = {name: run for run in self.runs.values() for name in run.batch.names}
        statuses = {
            BatchState.INSTALLED: TargetStatus.SUCCEEDED,
            BatchState.FAILED: TargetStatus.FAILED,
            BatchState.PRUNED: TargetStatus.PRUNED,
            BatchState.ABORTED: TargetStatus.ABORTED,
        }
        targets: Dict[str, TargetStatus] = {}
        for requested, name in self.graph.requested.items():
            run = by_name.get(name)
            if run is None:
                targets[requested] = TargetStatus.SATISFIED
            else:
                targets[requested] = statuses.get(run.state, TargetStatus.ABORTED)
        return targets

    async def _emit(self, event_type: EventType, **data: Any):
        await self.event_bus.emit(Event(event_type, data))

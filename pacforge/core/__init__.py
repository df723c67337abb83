# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
pacforge Core - Init file

Exports the resolution, planning and execution pipeline.
"""

from .conflicts import Conflict, ConflictDetector
from .decisions import AutoDecisions, Decisions, PromptDecisions
from .events import Event, EventBus, EventType
from .graph import DependencyGraph
from .index import LocalDatabase, PackageIndex, RemoteMetadata
from .lock import TransactionLock
from .models import (
    Batch,
    BatchKind,
    BuildPlan,
    Package,
    PackageSource,
    Policy,
    RunResult,
)
from .orchestrator import BatchState, Orchestrator
from .planner import BuildPlanner
from .resolver import Resolver
from .runtime import execute, prepare, run_install
from .version import Dependency, vercmp

__all__ = [
    # Pipeline
    "prepare",
    "execute",
    "run_install",
    "Resolver",
    "ConflictDetector",
    "Conflict",
    "BuildPlanner",
    "Orchestrator",
    "BatchState",
    # Data
    "Package",
    "PackageSource",
    "Dependency",
    "vercmp",
    "DependencyGraph",
    "Batch",
    "BatchKind",
    "BuildPlan",
    "Policy",
    "RunResult",
    # Collaborators
    "PackageIndex",
    "LocalDatabase",
    "RemoteMetadata",
    "Decisions",
    "AutoDecisions",
    "PromptDecisions",
    "TransactionLock",
    "EventBus",
    "Event",
    "EventType",
]

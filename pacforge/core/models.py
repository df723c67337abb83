# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Core data model: packages, resolution nodes, plan batches and run results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .version import Dependency, parse_depends


class PackageSource(Enum):
    """Where a candidate package record came from"""

    INSTALLED = "installed"
    BINARY_REPO = "repo"
    REMOTE_SOURCE = "aur"


@dataclass(frozen=True)
class Package:
    """
    Immutable snapshot of one package record.

    The same name may exist as several candidates from different sources;
    exactly one of them is chosen per resolved node.
    """

    name: str
    version: str
    source: PackageSource
    base: str = ""
    repo: str = ""
    depends: Tuple[Dependency, ...] = ()
    make_depends: Tuple[Dependency, ...] = ()
    check_depends: Tuple[Dependency, ...] = ()
    opt_depends: Tuple[Dependency, ...] = ()
    provides: Tuple[Dependency, ...] = ()
    conflicts: Tuple[Dependency, ...] = ()
    replaces: Tuple[Dependency, ...] = ()
    explicit: bool = False
    out_of_date: bool = False

    def __post_init__(self):
        if not self.base:
            object.__setattr__(self, "base", self.name)
        if not self.repo:
            default_repo = {
                PackageSource.INSTALLED: "local",
                PackageSource.REMOTE_SOURCE: "aur",
            }.get(self.source, "")
            object.__setattr__(self, "repo", default_repo)

    @classmethod
    def create(
        cls,
        name: str,
        version: str,
        source: PackageSource,
        depends: Iterable = (),
        make_depends: Iterable = (),
        check_depends: Iterable = (),
        opt_depends: Iterable = (),
        provides: Iterable = (),
        conflicts: Iterable = (),
        replaces: Iterable = (),
        **kwargs: Any,
    ) -> "Package":
        """Build a package from plain dependency strings."""
        return cls(
            name=name,
            version=version,
            source=source,
            depends=parse_depends(depends),
            make_depends=parse_depends(make_depends),
            check_depends=parse_depends(check_depends),
            opt_depends=parse_depends(opt_depends),
            provides=parse_depends(provides),
            conflicts=parse_depends(conflicts),
            replaces=parse_depends(replaces),
            **kwargs,
        )

    @property
    def is_installed(self) -> bool:
        return self.source is PackageSource.INSTALLED

    @property
    def is_remote(self) -> bool:
        return self.source is PackageSource.REMOTE_SOURCE

    def satisfies(self, dep: Dependency) -> bool:
        """True when this package's name or one of its provides meets ``dep``."""
        if dep.name == self.name and dep.allows(self.version):
            return True
        return self.provide_satisfies(dep)

    def provide_satisfies(self, dep: Dependency) -> bool:
        for provide in self.provides:
            if provide.name != dep.name:
                continue
            # A versionless provide only satisfies a versionless requirement
            if not dep.versioned or dep.allows(provide.version):
                return True
        return False

    def provided_names(self) -> List[str]:
        return [provide.name for provide in self.provides]

    def replaces_package(self, other: "Package") -> bool:
        return any(other.satisfies(rep) for rep in self.replaces)

    def __str__(self) -> str:
        return f"{self.repo}/{self.name}-{self.version}"


class NodeReason(Enum):
    EXPLICIT_TARGET = "explicit"
    RUNTIME_DEPENDENCY = "depends"
    BUILD_DEPENDENCY = "makedepends"
    CHECK_DEPENDENCY = "checkdepends"


class NodeState(Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    MISSING = "missing"
    CONFLICTED = "conflicted"


class EdgeKind(Enum):
    RUNTIME = "runtime"
    BUILD = "build"
    CHECK = "check"

    @property
    def reason(self) -> NodeReason:
        return {
            EdgeKind.RUNTIME: NodeReason.RUNTIME_DEPENDENCY,
            EdgeKind.BUILD: NodeReason.BUILD_DEPENDENCY,
            EdgeKind.CHECK: NodeReason.CHECK_DEPENDENCY,
        }[self]


@dataclass
class Node:
    """Resolution unit: a chosen package plus resolution metadata"""

    package: Package
    reason: NodeReason
    order: int
    state: NodeState = NodeState.PENDING
    installed: Optional[Package] = None  # version this node upgrades

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def base(self) -> str:
        return self.package.base

    @property
    def explicit(self) -> bool:
        return self.reason is NodeReason.EXPLICIT_TARGET


@dataclass(frozen=True)
class Edge:
    """``src`` requires ``dst`` (through ``dep``) for ``kind``"""

    src: str
    dst: str
    kind: EdgeKind
    dep: Optional[Dependency] = None


@dataclass(frozen=True)
class MissingDependency:
    """A required dependency no source could satisfy"""

    dep: Dependency
    chain: Tuple[str, ...] = ()
    known: bool = False  # some candidate exists, just not a satisfying one

    def __str__(self) -> str:
        if self.chain:
            return f"{self.dep} (required by {' -> '.join(self.chain)})"
        return str(self.dep)


class BatchKind(Enum):
    REPO = "repo"
    SOURCE = "source"


@dataclass
class Batch:
    """
    Unit of the build plan.

    Either one binary install transaction (REPO) or one package base built
    from source (SOURCE). Immutable once the planner hands it out.
    """

    kind: BatchKind
    key: str
    nodes: List[Node]
    base: Optional[str] = None
    depends_on: List[str] = field(default_factory=list)
    build_edges: List[Edge] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [node.name for node in self.nodes]

    @property
    def labels(self) -> List[str]:
        """Names reported in run results for this batch."""
        if self.kind is BatchKind.SOURCE:
            return [self.base or self.key]
        return self.names

    def __str__(self) -> str:
        if self.kind is BatchKind.SOURCE:
            return f"{self.base} ({', '.join(self.names)})"
        return f"repo ({', '.join(self.names)})"


@dataclass
class BuildPlan:
    batches: List[Batch] = field(default_factory=list)
    make_only: List[str] = field(default_factory=list)

    def __iter__(self):
        return iter(self.batches)

    def __len__(self) -> int:
        return len(self.batches)

    @property
    def empty(self) -> bool:
        return not self.batches

    def get(self, key: str) -> Batch:
        for batch in self.batches:
            if batch.key == key:
                return batch
        raise KeyError(key)


@dataclass
class Policy:
    """Per-run boolean policy set"""

    as_deps: bool = False
    as_explicit: bool = False
    needed: bool = True
    rebuild: bool = False
    check_depends: bool = False
    optional_depends: bool = False
    remove_make_deps: bool = False
    ignore: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config, **overrides: Any) -> "Policy":
        """Seed a policy from configuration, then apply non-None overrides."""
        values = {
            "as_deps": config.install.as_deps,
            "needed": config.install.needed,
            "rebuild": config.install.rebuild,
            "check_depends": config.resolver.check_depends,
            "optional_depends": config.resolver.optional_depends,
            "remove_make_deps": config.install.remove_make_deps,
            "ignore": list(config.resolver.ignore),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def install_as_dep(self, node: Node) -> bool:
        if not node.explicit:
            # Upgrades keep the install reason already recorded
            return node.installed is None
        return self.as_deps and not self.as_explicit

    def install_as_explicit(self, node: Node) -> bool:
        return node.explicit and self.as_explicit


class ErrorKind(Enum):
    FETCH = "fetch"
    BUILD = "build"
    INSTALL = "install"


class TargetStatus(Enum):
    SATISFIED = "satisfied"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PRUNED = "pruned"
    ABORTED = "aborted"


@dataclass
class RunResult:
    succeeded: List[str] = field(default_factory=list)
    failed: List[Tuple[str, ErrorKind]] = field(default_factory=list)
    pruned: List[str] = field(default_factory=list)
    aborted: bool = False
    targets: Dict[str, TargetStatus] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.aborted and not self.failed and not self.pruned

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "failed": [(label, kind.value) for label, kind in self.failed],
            "pruned": list(self.pruned),
            "aborted": self.aborted,
            "targets": {name: status.value for name, status in self.targets.items()},
        }

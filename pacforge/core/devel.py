# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Devel (VCS) package tracking.

Source packages built from a git checkout carry a version that only
changes when their recipe does. To notice new upstream commits, the head
commit of every git source is recorded when such a package is installed,
and compared against ``git ls-remote`` later.

The records live in one YAML file keyed by package base.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .base_adapter import Fetcher
from .events import Event, EventType

logger = logging.getLogger("pacforge.devel")

SRCINFO = ".SRCINFO"


@dataclass
class DevelSource:
    """One git source of a package base and the commit it was built from"""

    url: str
    branch: Optional[str] = None
    commit: str = ""


@dataclass
class DevelRecord:
    base: str
    packages: List[str] = field(default_factory=list)
    sources: List[DevelSource] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"packages": list(self.packages), "sources": [asdict(s) for s in self.sources]}

    @classmethod
    def from_dict(cls, base: str, data: Dict[str, Any]) -> "DevelRecord":
        return cls(
            base=base,
            packages=[str(p) for p in data.get("packages") or []],
            sources=[DevelSource(**s) for s in data.get("sources") or []],
        )


def parse_vcs_source(entry: str) -> Optional[DevelSource]:
    """
    Parse one ``source`` entry of a recipe.

    Only ``git+`` sources that follow a branch (or the default head) are
    tracked; ``#commit=`` and ``#tag=`` pins never change.

    Examples:
        ``foo::git+https://host/foo.git#branch=dev`` -> url, branch ``dev``
        ``https://host/foo-1.0.tar.gz`` -> None
    """
    if "::" in entry:
        entry = entry.split("::", 1)[1]
    if not entry.startswith("git+"):
        return None

    url, _, fragment = entry[len("git+"):].partition("#")
    url = url.split("?", 1)[0]
    branch = None
    if fragment:
        kind, _, value = fragment.partition("=")
        if kind != "branch":
            return None
        branch = value or None
    return DevelSource(url=url, branch=branch)


def parse_srcinfo_sources(text: str) -> List[DevelSource]:
    """Tracked git sources listed in a ``.SRCINFO`` file."""
    sources = []
    for line in text.splitlines():
        key, sep, value = line.strip().partition(" = ")
        if not sep or not (key == "source" or key.startswith("source_")):
            continue
        source = parse_vcs_source(value.strip())
        if source is not None and source not in sources:
            sources.append(source)
    return sources


class DevelStore:
    """YAML file of DevelRecords keyed by package base"""

    def __init__(self, path: Path):
        self.path = Path(path)

    @classmethod
    def from_config(cls, config) -> "DevelStore":
        return cls(config.paths.devel_file)

    def load(self) -> Dict[str, DevelRecord]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to read devel records {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Ignoring devel records {self.path}: expected a mapping")
            return {}

        records = {}
        for base, entry in data.items():
            try:
                records[str(base)] = DevelRecord.from_dict(str(base), entry or {})
            except (TypeError, AttributeError) as e:
                logger.warning(f"Skipping malformed devel record {base}: {e}")
        return records

    def save(self, records: Dict[str, DevelRecord]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {base: record.to_dict() for base, record in sorted(records.items())}
        with open(self.path, "w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, sort_keys=False)

    def record(self, record: DevelRecord):
        records = self.load()
        records[record.base] = record
        self.save(records)
        logger.debug(f"Recorded {len(record.sources)} devel source(s) for {record.base}")


# ============================================================================
# Head checks
# ============================================================================


async def _heads(
    sources: List[DevelSource], fetcher: Fetcher, semaphore: asyncio.Semaphore
) -> List[Optional[str]]:
    async def head(source: DevelSource) -> Optional[str]:
        async with semaphore:
            return await fetcher.latest_commit(source.url, source.branch)

    return list(await asyncio.gather(*(head(s) for s in sources)))


async def changed_bases(
    records: Dict[str, DevelRecord], fetcher: Fetcher, concurrency: int = 4
) -> List[str]:
    """
    Bases with at least one source whose head moved past the recorded commit.

    Sources whose head cannot be determined are skipped with a warning.
    """
    semaphore = asyncio.Semaphore(concurrency)
    bases = sorted(records)
    results = await asyncio.gather(
        *(_heads(records[base].sources, fetcher, semaphore) for base in bases)
    )

    changed = []
    for base, heads in zip(bases, results):
        for source, head in zip(records[base].sources, heads):
            if head is None:
                logger.warning(f"{base}: could not check {source.url} for new commits")
                continue
            if head != source.commit:
                logger.debug(f"{base}: {source.url} moved {source.commit[:12]} -> {head[:12]}")
                changed.append(base)
                break
    return changed


# ============================================================================
# Recording
# ============================================================================


class DevelRecorder:
    """
    Event subscriber that records git heads of installed source batches.

    Subscribe :meth:`on_event` to BATCH_FETCHED and BATCH_INSTALLED.
    """

    def __init__(self, store: DevelStore, fetcher: Fetcher):
        self.store = store
        self.fetcher = fetcher
        self.workdirs: Dict[str, Path] = {}

    async def on_event(self, event: Event):
        batch = event.data.get("batch")
        if event.type == EventType.BATCH_FETCHED:
            self.workdirs[batch] = Path(event.data["workdir"])
        elif event.type == EventType.BATCH_INSTALLED and batch in self.workdirs:
            await self.record(batch, event.data.get("packages") or [], self.workdirs[batch])

    async def record(self, base: str, packages: List[str], workdir: Path):
        srcinfo = workdir / SRCINFO
        if not srcinfo.exists():
            return
        try:
            sources = parse_srcinfo_sources(srcinfo.read_text(encoding="utf-8"))
        except OSError as e:
            logger.warning(f"{base}: cannot read {srcinfo}: {e}")
            return
        if not sources:
            return

        heads = await _heads(sources, self.fetcher, asyncio.Semaphore(len(sources)))
        for source, head in zip(sources, heads):
            source.commit = head or ""
        try:
            self.store.record(DevelRecord(base=base, packages=list(packages), sources=sources))
        except OSError as e:
            logger.error(f"Failed to record devel sources for {base}: {e}")

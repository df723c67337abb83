# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
pacforge collaborator interfaces

The orchestrator drives three external collaborators:
- Fetcher: retrieves a package base's build recipe (async, network bound)
- Builder: runs the external build tool (synchronous process)
- Installer: runs host package manager transactions (synchronous process)

CLIAdapter provides the shared subprocess plumbing for the default
implementations in ``pacforge.adapters``.
"""

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from .models import Batch

logger = logging.getLogger("pacforge.adapters")


@dataclass
class CommandResult:
    """Outcome of one external command"""

    args: List[str]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def error(self) -> str:
        return self.stderr.strip() or f"{self.args[0]} exited with code {self.exit_code}"


class CLIAdapter:
    """
    Base for collaborators backed by a command line tool.

    Args:
        cli_tool: Executable name
        adapter_name: Logger suffix
    """

    def __init__(self, cli_tool: str, adapter_name: Optional[str] = None):
        self.cli_tool = cli_tool
        self.adapter_name = adapter_name or self.__class__.__name__
        self.logger = logging.getLogger(f"pacforge.adapters.{self.adapter_name}")

    def available(self) -> bool:
        """Check if the CLI tool is on PATH"""
        return shutil.which(self.cli_tool) is not None

    def run_command(
        self,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        capture: bool = False,
    ) -> CommandResult:
        """
        Run a command to completion.

        Output goes straight to the terminal unless ``capture`` is set,
        since build and install tools may prompt.
        """
        args = [str(a) for a in args]
        self.logger.debug(f"Running: {' '.join(args)}")
        try:
            proc = subprocess.run(
                args,
                cwd=str(cwd) if cwd else None,
                env=dict(env) if env is not None else None,
                capture_output=capture,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            return CommandResult(args=args, exit_code=127, stderr=f"{args[0]} not found: {e}")
        except OSError as e:
            return CommandResult(args=args, exit_code=126, stderr=f"{args[0]}: {e}")

        return CommandResult(
            args=args,
            exit_code=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )


class Fetcher(ABC):
    """Retrieves build recipes into a per-base working directory"""

    @abstractmethod
    async def fetch(self, base: str) -> Path:
        """
        Fetch or update the recipe for ``base``.

        Returns:
            Local directory holding the recipe

        Raises:
            FetchFailure: On any retrieval error
        """

    async def latest_commit(self, url: str, branch: Optional[str] = None) -> Optional[str]:
        """Head commit of a VCS source, or None when it cannot be determined."""
        return None


class Builder(ABC):
    """Runs the external build tool for one source batch"""

    @abstractmethod
    def build(self, batch: Batch, workdir: Path) -> Dict[str, Path]:
        """
        Build ``batch`` inside ``workdir``.

        Returns:
            Mapping of package name to built artifact

        Raises:
            BuildFailure: When the build tool fails
        """


class Installer(ABC):
    """Runs install/remove transactions against the host package manager"""

    @abstractmethod
    def install_repo(
        self, targets: Sequence[str], as_deps: Sequence[str], as_explicit: Sequence[str] = ()
    ) -> None:
        """
        Install binary repository packages given as ``repo/name`` targets.

        ``as_deps`` and ``as_explicit`` name the packages whose install
        reason is set; the others keep the package manager default.
        """

    @abstractmethod
    def install_files(
        self, files: Mapping[str, Path], as_deps: Sequence[str], as_explicit: Sequence[str] = ()
    ) -> None:
        """Install built artifacts (name -> file)."""

    @abstractmethod
    def remove(self, names: Sequence[str]) -> None:
        """Remove packages (make-only dependency cleanup)."""

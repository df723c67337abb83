# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

from pathlib import Path
from typing import List, Mapping, Optional, Sequence

from pacforge.core.base_adapter import CLIAdapter, Installer
from pacforge.core.exceptions import InstallFailure


class PacmanInstaller(CLIAdapter, Installer):
    """Install and remove transactions through pacman"""

    def __init__(
        self,
        pacman: str = "pacman",
        sudo: Optional[str] = "sudo",
        noconfirm: bool = False,
        db_path: Optional[Path] = None,
    ):
        super().__init__(pacman, "pacman")
        self.sudo = sudo
        self.noconfirm = noconfirm
        self.db_path = db_path

    @classmethod
    def from_config(cls, config, noconfirm: bool = False) -> "PacmanInstaller":
        return cls(
            config.install.pacman,
            config.install.sudo,
            noconfirm,
            config.paths.db_path,
        )

    def _base(self) -> List[str]:
        args = [self.sudo] if self.sudo else []
        args.append(self.cli_tool)
        if self.db_path is not None:
            args.extend(["--dbpath", str(self.db_path)])
        return args

    def _run(self, operation: Sequence[str], targets: Sequence[str], confirm: bool = True):
        args = self._base() + list(operation)
        if confirm and self.noconfirm:
            args.append("--noconfirm")
        args.extend(targets)
        result = self.run_command(args)
        if not result.success:
            raise InstallFailure(
                f"{' '.join(operation)} {' '.join(targets)}: {result.error}",
                exit_code=result.exit_code,
            )

    def _set_reason(self, as_deps: Sequence[str], as_explicit: Sequence[str]):
        if as_deps:
            self._run(["-D", "--asdeps"], as_deps, confirm=False)
        if as_explicit:
            self._run(["-D", "--asexplicit"], as_explicit, confirm=False)

    def install_repo(
        self, targets: Sequence[str], as_deps: Sequence[str], as_explicit: Sequence[str] = ()
    ) -> None:
        self._run(["-S"], targets)
        self._set_reason(as_deps, as_explicit)

    def install_files(
        self, files: Mapping[str, Path], as_deps: Sequence[str], as_explicit: Sequence[str] = ()
    ) -> None:
        self._run(["-U"], [str(path) for path in files.values()])
        self._set_reason(as_deps, as_explicit)

    def remove(self, names: Sequence[str]) -> None:
        self._run(["-Rsu"], names)

# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

from pathlib import Path
from typing import Dict, List, Optional

from pacforge.core.base_adapter import Builder, CLIAdapter
from pacforge.core.exceptions import BuildFailure
from pacforge.core.models import Batch


def package_name(artifact: Path) -> str:
    """``foo-bar-1.0-1-x86_64.pkg.tar.zst`` -> ``foo-bar``"""
    stem = artifact.name.split(".pkg.tar", 1)[0]
    return stem.rsplit("-", 3)[0]


class MakepkgBuilder(CLIAdapter, Builder):
    """Builds a package base with makepkg"""

    def __init__(
        self,
        makepkg: str = "makepkg",
        flags: Optional[List[str]] = None,
        check: bool = False,
    ):
        super().__init__(makepkg, "makepkg")
        self.flags = list(flags or [])
        self.check = check

    @classmethod
    def from_config(cls, config, check: bool = False) -> "MakepkgBuilder":
        return cls(config.install.makepkg, config.install.makepkg_flags, check)

    def command(self) -> List[str]:
        args = [self.cli_tool, "--force", "--noconfirm"]
        if not self.check:
            args.append("--nocheck")
        return args + self.flags

    def build(self, batch: Batch, workdir: Path) -> Dict[str, Path]:
        label = batch.base or batch.key
        result = self.run_command(self.command(), cwd=workdir)
        if not result.success:
            raise BuildFailure(
                f"{label}: {result.error}", batch=batch.key, exit_code=result.exit_code
            )

        listing = self.run_command([self.cli_tool, "--packagelist"], cwd=workdir, capture=True)
        if not listing.success:
            raise BuildFailure(
                f"{label}: cannot list built packages: {listing.error}",
                batch=batch.key,
                exit_code=listing.exit_code,
            )

        artifacts: Dict[str, Path] = {}
        for line in listing.stdout.splitlines():
            if not line.strip():
                continue
            path = Path(line.strip())
            if path.exists():
                artifacts[package_name(path)] = path
        self.logger.info(f"Built {label}: {', '.join(sorted(artifacts))}")
        return artifacts

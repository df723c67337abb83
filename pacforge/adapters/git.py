# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

from pacforge.core.base_adapter import Fetcher
from pacforge.core.exceptions import FetchFailure

logger = logging.getLogger("pacforge.adapters.git")


class GitFetcher(Fetcher):
    """
    Clones or fast-forwards ``<aur_url>/<base>.git`` into ``<clone_dir>/<base>``.

    Working directories are reused across runs.
    """

    def __init__(self, clone_dir: Path, aur_url: str = "https://aur.archlinux.org", git: str = "git"):
        self.clone_dir = Path(clone_dir)
        self.aur_url = aur_url.rstrip("/")
        self.git = git

    @classmethod
    def from_config(cls, config) -> "GitFetcher":
        return cls(config.paths.clone_dir, config.remote.aur_url, config.install.git)

    def url(self, base: str) -> str:
        return f"{self.aur_url}/{base}.git"

    async def fetch(self, base: str) -> Path:
        workdir = self.clone_dir / base
        if (workdir / ".git").is_dir():
            await self._git(base, "-C", str(workdir), "pull", "--ff-only", "-q")
        else:
            self.clone_dir.mkdir(parents=True, exist_ok=True)
            await self._git(base, "clone", "--no-progress", self.url(base), str(workdir))

        if not (workdir / "PKGBUILD").exists():
            raise FetchFailure(f"{base}: no PKGBUILD after fetch", batch=base)
        return workdir

    async def latest_commit(self, url: str, branch: Optional[str] = None) -> Optional[str]:
        """Head of ``branch`` (default: HEAD) from ``git ls-remote``."""
        ref = f"refs/heads/{branch}" if branch else "HEAD"
        try:
            output = await self._git(url, "ls-remote", url, ref)
        except FetchFailure as e:
            logger.warning(f"ls-remote {url} failed: {e.message}")
            return None
        for line in output.splitlines():
            commit, _, name = line.partition("\t")
            if name.strip() == ref and commit:
                return commit.strip()
        return None

    async def _git(self, base: str, *args: str) -> str:
        command: Sequence[str] = [self.git, *args]
        logger.debug(f"Running: {' '.join(command)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise FetchFailure(f"{self.git} not found", batch=base, cause=e)

        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise

        if proc.returncode != 0:
            message = stderr.decode(errors="replace").strip() or f"git exited with {proc.returncode}"
            raise FetchFailure(f"{base}: {message}", batch=base)
        return stdout.decode(errors="replace")

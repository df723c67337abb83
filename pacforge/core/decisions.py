# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Injectable interactive decisions.

The resolver, conflict gate and orchestrator never prompt on their own;
they call a Decisions object and wait on its answer. Methods may be plain
functions or coroutines.
"""

import inspect
import logging
from pathlib import Path
from typing import Any, List, Sequence

import click

from .models import Batch, Package
from .version import Dependency

logger = logging.getLogger("pacforge.decisions")


async def resolve_decision(value: Any) -> Any:
    """Await ``value`` when a decision method returned a coroutine."""
    if inspect.isawaitable(value):
        return await value
    return value


class Decisions:
    """Canned decisions: first provider, reject installed conflicts, approve review."""

    def choose_provider(self, dep: Dependency, candidates: Sequence[Package]) -> Package:
        return candidates[0]

    def confirm_conflicts(self, conflicts: List[Any]) -> bool:
        return False

    def review(self, batch: Batch, workdir: Path) -> bool:
        return True


AutoDecisions = Decisions


class PromptDecisions(Decisions):
    """Terminal prompts through click"""

    def __init__(self, noconfirm: bool = False):
        self.noconfirm = noconfirm

    def choose_provider(self, dep: Dependency, candidates: Sequence[Package]) -> Package:
        if self.noconfirm:
            return candidates[0]
        click.echo(f":: There are {len(candidates)} providers available for {dep}:")
        for number, package in enumerate(candidates, start=1):
            click.echo(f"    {number}) {package.repo}/{package.name} {package.version}")
        choice = click.prompt(
            "Enter a number",
            default=1,
            type=click.IntRange(1, len(candidates)),
        )
        return candidates[choice - 1]

    def confirm_conflicts(self, conflicts: List[Any]) -> bool:
        click.echo(":: Conflicting packages will have to be removed:")
        for conflict in conflicts:
            click.echo(f"    {conflict}")
        if self.noconfirm:
            return False
        return click.confirm("Proceed and let the package manager remove them?", default=False)

    def review(self, batch: Batch, workdir: Path) -> bool:
        if self.noconfirm:
            return True
        recipe = workdir / "PKGBUILD"
        if click.confirm(f":: Review build files for {batch.base}?", default=False):
            if recipe.exists():
                click.echo_via_pager(recipe.read_text(encoding="utf-8", errors="replace"))
            else:
                logger.warning(f"No build recipe found in {workdir}")
        return click.confirm(f":: Proceed with {batch.base}?", default=True)

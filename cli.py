# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""pacforge CLI - resolve, build and install AUR packages"""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence, Tuple

import click

from pacforge import __version__
from pacforge.adapters import GitFetcher, MakepkgBuilder, PacmanInstaller
from pacforge.core.config import PacforgeConfig, get_config, load_config
from pacforge.core.decisions import PromptDecisions
from pacforge.core.devel import DevelRecorder, DevelStore
from pacforge.core.events import Event, EventBus, EventType
from pacforge.core.exceptions import PacforgeError, UserAbort
from pacforge.core.index import PackageIndex, RemoteMetadata
from pacforge.core.lock import TransactionLock
from pacforge.core.logger import configure_logging
from pacforge.core.models import BatchKind, Policy, RunResult
from pacforge.core.runtime import Prepared, execute, prepare
from pacforge.core.upgrade import find_upgrades, number_upgrades, select_upgrades, version_diff
from pacforge.sources import AurClient, load_database, load_snapshot

logger = logging.getLogger("pacforge.cli")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_ABORTED = 2


@click.group()
@click.version_option(version=__version__)
def cli():
    """pacforge - dependency resolution and build orchestration for AUR packages.

    Core commands:
        pacforge plan     - Show what would be installed, in which order
        pacforge install  - Resolve, build and install packages
        pacforge upgrade  - Upgrade repository and AUR packages
    """
    pass


# =============================================================================
# Shared setup
# =============================================================================


def source_options(func):
    """Options selecting configuration and the package database."""
    func = click.option(
        "--config", "config_file", type=click.Path(exists=True), help="Configuration file"
    )(func)
    func = click.option(
        "--snapshot",
        type=click.Path(exists=True),
        help="Read packages from a YAML snapshot instead of the system",
    )(func)
    func = click.option("--dbpath", type=click.Path(), help="Package database root")(func)
    return func


def policy_options(func):
    """Options that change how targets are resolved."""
    func = click.option(
        "--needed/--no-needed", default=None, help="Skip targets that are already up to date"
    )(func)
    func = click.option("--rebuild", is_flag=True, default=None, help="Rebuild up to date AUR targets")(func)
    func = click.option("--check", is_flag=True, default=None, help="Resolve and run check dependencies")(func)
    func = click.option("--optional", is_flag=True, default=None, help="Resolve optional dependencies of targets")(func)
    return func


def _load_config(config_file: Optional[str]) -> PacforgeConfig:
    config = load_config(Path(config_file)) if config_file else get_config()
    configure_logging(config)
    return config


def _open_index(
    config: PacforgeConfig, snapshot: Optional[str], dbpath: Optional[str]
) -> Tuple[PackageIndex, RemoteMetadata]:
    if snapshot:
        db, remote = load_snapshot(Path(snapshot))
        return PackageIndex(db, remote), remote

    db_path = Path(dbpath) if dbpath else config.paths.db_path
    db = load_database(db_path)
    remote = AurClient.from_config(config)
    return PackageIndex(db, remote), remote


async def _close(remote: RemoteMetadata):
    if isinstance(remote, AurClient):
        await remote.close()


def _report_error(error: PacforgeError):
    click.echo(f"error: {error.message}", err=True)
    for item in getattr(error, "missing", None) or []:
        click.echo(f"    {item}", err=True)
    for item in getattr(error, "conflicts", None) or []:
        click.echo(f"    {item}", err=True)
    for item in getattr(error, "cycle", None) or []:
        click.echo(f"    {item}", err=True)


def _print_plan(prepared: Prepared):
    graph = prepared.graph
    if prepared.empty:
        click.echo(" there is nothing to do")
        return

    make_only = set(prepared.plan.make_only)
    click.echo(f":: Resolved {len(graph)} package(s) in {len(prepared.plan)} batch(es)")
    for number, batch in enumerate(prepared.plan, start=1):
        kind = "repo" if batch.kind is BatchKind.REPO else "aur"
        title = batch.base if batch.kind is BatchKind.SOURCE else "repository transaction"
        click.echo(f"  {number}) [{kind}] {title}")
        for node in batch.nodes:
            marker = " (make)" if node.name in make_only else ""
            click.echo(f"       {node.package}{marker}")
    for conflict in prepared.conflicts:
        click.echo(f"  ! {conflict}")


def _print_result(result: RunResult):
    if result.succeeded:
        click.echo(f":: Installed: {', '.join(result.succeeded)}")
    for label, kind in result.failed:
        click.echo(f":: Failed ({kind.value}): {label}", err=True)
    if result.pruned:
        click.echo(f":: Skipped, dependency failed: {', '.join(result.pruned)}", err=True)
    if result.aborted:
        click.echo(":: Aborted", err=True)


def _print_upgrades(upgrades):
    width = len(str(len(upgrades)))
    for number, item in number_upgrades(upgrades):
        common, old, new = version_diff(item.old_version, item.new_version)
        click.echo(
            f"{number:>{width}} {item.repo}/{click.style(item.name, bold=True)} "
            f"{common}{click.style(old, fg='red')} -> "
            f"{common}{click.style(new, fg='green')}"
        )


def _exit_code(result: RunResult) -> int:
    if result.aborted:
        return EXIT_ABORTED
    if result.failed or result.pruned:
        return EXIT_FAILED
    return EXIT_OK


def _echo_event(event: Event):
    data = event.data
    if event.type == EventType.BATCH_BUILT:
        click.echo(f"==> Built {data['batch']}")
    elif event.type == EventType.BATCH_PRUNED:
        click.echo(f"==> Skipping {data['batch']} ({data['cause']} failed)", err=True)


async def _run_prepared(
    config: PacforgeConfig,
    prepared: Prepared,
    policy: Policy,
    decisions: PromptDecisions,
    noconfirm: bool,
    dbpath: Optional[str],
) -> RunResult:
    if prepared.empty:
        return await execute(prepared, None, None, None)

    if not noconfirm and not click.confirm(":: Proceed with installation?", default=True):
        raise UserAbort("Installation declined")

    event_bus = EventBus()
    event_bus.subscribe(EventType.BATCH_BUILT, _echo_event)
    event_bus.subscribe(EventType.BATCH_PRUNED, _echo_event)

    installer = PacmanInstaller.from_config(config, noconfirm=noconfirm)
    if dbpath:
        installer.db_path = Path(dbpath)

    fetcher = GitFetcher.from_config(config)
    if config.install.devel:
        recorder = DevelRecorder(DevelStore.from_config(config), fetcher)
        event_bus.subscribe(EventType.BATCH_FETCHED, recorder.on_event)
        event_bus.subscribe(EventType.BATCH_INSTALLED, recorder.on_event)

    cancel = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.set)
    except NotImplementedError:
        pass

    return await execute(
        prepared,
        fetcher=fetcher,
        builder=MakepkgBuilder.from_config(config, check=policy.check_depends),
        installer=installer,
        policy=policy,
        decisions=decisions,
        event_bus=event_bus,
        lock=TransactionLock(config.paths.lock_file),
        fetch_concurrency=config.remote.fetch_concurrency,
        fetch_timeout=config.remote.timeout_seconds,
        cancel=cancel,
    )


def _finish(runner) -> None:
    """Run an async command body and exit with the proper status."""
    try:
        result = asyncio.run(runner())
    except UserAbort as e:
        click.echo(f":: {e.message}", err=True)
        sys.exit(EXIT_ABORTED)
    except PacforgeError as e:
        _report_error(e)
        sys.exit(EXIT_FAILED)

    if isinstance(result, RunResult):
        _print_result(result)
        sys.exit(_exit_code(result))


# =============================================================================
# Commands
# =============================================================================


@cli.command()
@click.argument("targets", nargs=-1, required=True)
@source_options
@policy_options
@click.option("--output", "-o", type=click.Choice(["text", "json"]), default="text")
def plan(
    targets: Sequence[str],
    config_file: Optional[str],
    snapshot: Optional[str],
    dbpath: Optional[str],
    needed: Optional[bool],
    rebuild: Optional[bool],
    check: Optional[bool],
    optional: Optional[bool],
    output: str,
):
    """Resolve TARGETS and print the build plan without changing anything.

    Examples:
        pacforge plan yay
        pacforge plan paru --check -o json
    """
    config = _load_config(config_file)
    policy = Policy.from_config(
        config, needed=needed, rebuild=rebuild, check_depends=check, optional_depends=optional
    )

    async def _plan():
        index, remote = _open_index(config, snapshot, dbpath)
        try:
            return await prepare(
                targets, index, policy, PromptDecisions(noconfirm=True), config.resolver.provider_order
            )
        finally:
            await _close(remote)

    try:
        prepared = asyncio.run(_plan())
    except PacforgeError as e:
        _report_error(e)
        sys.exit(EXIT_FAILED)

    if output == "json":
        click.echo(
            json.dumps(
                {
                    "batches": [
                        {"kind": b.kind.value, "key": b.key, "packages": b.names}
                        for b in prepared.plan
                    ],
                    "make_only": prepared.plan.make_only,
                    "satisfied": [s.installed.name for s in prepared.graph.satisfied],
                },
                indent=2,
            )
        )
    else:
        _print_plan(prepared)


@cli.command()
@click.argument("targets", nargs=-1, required=True)
@source_options
@policy_options
@click.option("--asdeps", is_flag=True, default=None, help="Install targets as dependencies")
@click.option("--asexplicit", is_flag=True, default=None, help="Install targets as explicit")
@click.option("--removemake", is_flag=True, default=None, help="Remove make dependencies afterwards")
@click.option("--noconfirm", is_flag=True, help="Do not ask for any confirmation")
def install(
    targets: Sequence[str],
    config_file: Optional[str],
    snapshot: Optional[str],
    dbpath: Optional[str],
    needed: Optional[bool],
    rebuild: Optional[bool],
    check: Optional[bool],
    optional: Optional[bool],
    asdeps: Optional[bool],
    asexplicit: Optional[bool],
    removemake: Optional[bool],
    noconfirm: bool,
):
    """Resolve, build and install TARGETS.

    Exit status is 0 when everything was installed, 1 on an error or any
    failed or skipped package, and 2 when the run was aborted.

    Examples:
        pacforge install yay
        pacforge install repo/pkg aur/other --asdeps
    """
    config = _load_config(config_file)
    policy = Policy.from_config(
        config,
        as_deps=asdeps,
        as_explicit=asexplicit,
        needed=needed,
        rebuild=rebuild,
        check_depends=check,
        optional_depends=optional,
        remove_make_deps=removemake,
    )
    decisions = PromptDecisions(noconfirm=noconfirm)

    async def _install():
        index, remote = _open_index(config, snapshot, dbpath)
        try:
            prepared = await prepare(
                targets, index, policy, decisions, config.resolver.provider_order
            )
        finally:
            await _close(remote)
        _print_plan(prepared)
        return await _run_prepared(config, prepared, policy, decisions, noconfirm, dbpath)

    _finish(_install)


@cli.command()
@source_options
@click.option("--repo-only", is_flag=True, help="Only upgrade repository packages")
@click.option("--aur-only", is_flag=True, help="Only upgrade AUR packages")
@click.option("--devel/--no-devel", default=None, help="Check VCS packages for new commits")
@click.option("--noconfirm", is_flag=True, help="Do not ask for any confirmation")
def upgrade(
    config_file: Optional[str],
    snapshot: Optional[str],
    dbpath: Optional[str],
    repo_only: bool,
    aur_only: bool,
    devel: Optional[bool],
    noconfirm: bool,
):
    """Upgrade installed repository and AUR packages.

    Lists the available upgrades and asks which to exclude
    (eg: 1 2 3, 1-3, ^4, or a repository name such as extra, aur or devel).
    Set install.upgrade_menu to false to upgrade everything without asking.
    """
    config = _load_config(config_file)
    if devel is not None:
        config.install.devel = devel
    policy = Policy.from_config(config, needed=False)
    menu = config.install.upgrade_menu
    decisions = PromptDecisions(noconfirm=noconfirm)

    async def _upgrade():
        index, remote = _open_index(config, snapshot, dbpath)
        try:
            click.echo(":: Looking for upgrades")
            upgrades = await find_upgrades(
                index,
                policy,
                include_repo=not aur_only,
                include_remote=not repo_only,
                devel_store=DevelStore.from_config(config) if config.install.devel else None,
                fetcher=GitFetcher.from_config(config),
            )
            if not upgrades:
                click.echo(" there is nothing to do")
                return RunResult()

            selection = ""
            if menu:
                _print_upgrades(upgrades)
            if menu and not noconfirm:
                selection = click.prompt(
                    ":: Packages to exclude (eg: 1 2 3, 1-3)", default="", show_default=False
                )
            chosen = select_upgrades(upgrades, selection, menu=menu)
            if chosen.empty:
                click.echo(" there is nothing to do")
                return RunResult()

            prepared = await prepare(
                chosen.targets, index, policy, decisions, config.resolver.provider_order
            )
        finally:
            await _close(remote)
        _print_plan(prepared)
        return await _run_prepared(config, prepared, policy, decisions, noconfirm, dbpath)

    _finish(_upgrade)


if __name__ == "__main__":
    cli()

# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the git, makepkg and pacman collaborators

External commands are replaced by recording stubs; only harmless
binaries (``true``) are actually executed.
"""

from pathlib import Path

import pytest

from fakes import aur
from pacforge.adapters import GitFetcher, MakepkgBuilder, PacmanInstaller
from pacforge.adapters.makepkg import package_name
from pacforge.core.base_adapter import CLIAdapter, CommandResult
from pacforge.core.config import PacforgeConfig
from pacforge.core.exceptions import BuildFailure, FetchFailure, InstallFailure
from pacforge.core.models import Batch, BatchKind, Node, NodeReason


class Recorder:
    """Stand-in for CLIAdapter.run_command"""

    def __init__(self, results=None):
        self.calls = []
        self.results = list(results or [])

    def __call__(self, args, cwd=None, env=None, capture=False):
        self.calls.append(list(args))
        if self.results:
            return self.results.pop(0)
        return CommandResult(args=list(args), exit_code=0)


def source_batch(*names, base="foo"):
    nodes = [
        Node(aur(name, base=base), NodeReason.EXPLICIT_TARGET, order)
        for order, name in enumerate(names)
    ]
    return Batch(BatchKind.SOURCE, base, nodes, base=base)


# ============================================================================
# CLIAdapter
# ============================================================================


def test_missing_binary_reports_127():
    adapter = CLIAdapter("pacforge-no-such-binary")
    result = adapter.run_command(["pacforge-no-such-binary", "--version"])

    assert result.exit_code == 127
    assert not result.success
    assert "not found" in result.error
    assert not adapter.available()


def test_unrunnable_binary_reports_126(monkeypatch):
    """Test other OS errors become a failed result instead of escaping"""

    def denied(*args, **kwargs):
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr("pacforge.core.base_adapter.subprocess.run", denied)
    result = CLIAdapter("makepkg").run_command(["makepkg", "-f"])

    assert result.exit_code == 126
    assert "Permission denied" in result.error


def test_command_result_error_fallback():
    result = CommandResult(args=["makepkg"], exit_code=4)
    assert result.error == "makepkg exited with code 4"


# ============================================================================
# makepkg
# ============================================================================


@pytest.mark.parametrize(
    "filename,expected",
    [
        ("yay-12.3.5-1-x86_64.pkg.tar.zst", "yay"),
        ("python-foo-bar-1:2.0-3-any.pkg.tar.xz", "python-foo-bar"),
        ("lib32-glibc-2.39+r6-1-x86_64.pkg.tar.zst", "lib32-glibc"),
    ],
)
def test_package_name(filename, expected):
    assert package_name(Path("/tmp") / filename) == expected


def test_makepkg_command():
    assert MakepkgBuilder().command() == ["makepkg", "--force", "--noconfirm", "--nocheck"]
    assert MakepkgBuilder(flags=["--skippgpcheck"], check=True).command() == [
        "makepkg",
        "--force",
        "--noconfirm",
        "--skippgpcheck",
    ]


def test_makepkg_from_config():
    config = PacforgeConfig(install={"makepkg": "/usr/bin/makepkg", "makepkg_flags": ["-c"]})
    builder = MakepkgBuilder.from_config(config, check=True)
    assert builder.command() == ["/usr/bin/makepkg", "--force", "--noconfirm", "-c"]


def test_makepkg_build_collects_artifacts(tmp_path, monkeypatch):
    """Test the package list is mapped back to package names"""
    built = [tmp_path / "foo-1.0-1-x86_64.pkg.tar.zst", tmp_path / "foo-docs-1.0-1-any.pkg.tar.zst"]
    for path in built:
        path.touch()
    listing = "\n".join(str(p) for p in built) + "\n" + str(tmp_path / "foo-debug-1.0-1-x86_64.pkg.tar.zst")

    builder = MakepkgBuilder()
    recorder = Recorder(
        [
            CommandResult(args=["makepkg"], exit_code=0),
            CommandResult(args=["makepkg", "--packagelist"], exit_code=0, stdout=listing),
        ]
    )
    monkeypatch.setattr(builder, "run_command", recorder)

    artifacts = builder.build(source_batch("foo", "foo-docs"), tmp_path)

    assert artifacts == {"foo": built[0], "foo-docs": built[1]}
    assert recorder.calls[1] == ["makepkg", "--packagelist"]


def test_makepkg_build_failure(tmp_path, monkeypatch):
    builder = MakepkgBuilder()
    monkeypatch.setattr(
        builder,
        "run_command",
        Recorder([CommandResult(args=["makepkg"], exit_code=4, stderr="==> ERROR: A failure occurred in build().")]),
    )

    with pytest.raises(BuildFailure) as exc_info:
        builder.build(source_batch("foo"), tmp_path)

    assert exc_info.value.exit_code == 4
    assert exc_info.value.batch == "foo"
    assert "build()" in exc_info.value.message


# ============================================================================
# pacman
# ============================================================================


def test_pacman_install_repo(monkeypatch):
    """Test repository-qualified sync installs followed by install reason changes"""
    installer = PacmanInstaller(noconfirm=True)
    recorder = Recorder()
    monkeypatch.setattr(installer, "run_command", recorder)

    installer.install_repo(["core/openssl", "extra/cmake"], as_deps=["openssl", "cmake"])

    assert recorder.calls == [
        ["sudo", "pacman", "-S", "--noconfirm", "core/openssl", "extra/cmake"],
        ["sudo", "pacman", "-D", "--asdeps", "openssl", "cmake"],
    ]


def test_pacman_install_files(monkeypatch):
    installer = PacmanInstaller(sudo=None, db_path=Path("/tmp/db"))
    recorder = Recorder()
    monkeypatch.setattr(installer, "run_command", recorder)

    installer.install_files(
        {"foo": Path("/w/foo-1.0-1-x86_64.pkg.tar.zst")}, as_deps=[], as_explicit=["foo"]
    )

    assert recorder.calls == [
        ["pacman", "--dbpath", "/tmp/db", "-U", "/w/foo-1.0-1-x86_64.pkg.tar.zst"],
        ["pacman", "--dbpath", "/tmp/db", "-D", "--asexplicit", "foo"],
    ]


def test_pacman_remove_and_failure(monkeypatch):
    installer = PacmanInstaller()
    recorder = Recorder([CommandResult(args=["sudo"], exit_code=1, stderr="error: target not found: cmake")])
    monkeypatch.setattr(installer, "run_command", recorder)

    with pytest.raises(InstallFailure) as exc_info:
        installer.remove(["cmake"])

    assert recorder.calls == [["sudo", "pacman", "-Rsu", "cmake"]]
    assert exc_info.value.exit_code == 1
    assert "target not found" in exc_info.value.message


def test_pacman_from_config():
    config = PacforgeConfig(install={"sudo": "doas"}, paths={"db_path": "/srv/pacman"})
    installer = PacmanInstaller.from_config(config, noconfirm=True)
    assert installer._base() == ["doas", "pacman", "--dbpath", "/srv/pacman"]


# ============================================================================
# git
# ============================================================================


def test_git_url():
    fetcher = GitFetcher(Path("/tmp/clone"), "https://aur.archlinux.org/")
    assert fetcher.url("yay") == "https://aur.archlinux.org/yay.git"


@pytest.mark.asyncio
async def test_git_fetch_reuses_existing_clone(tmp_path):
    """Test an existing clone is updated in place"""
    workdir = tmp_path / "yay"
    (workdir / ".git").mkdir(parents=True)
    (workdir / "PKGBUILD").write_text("pkgname=yay\n")

    fetcher = GitFetcher(tmp_path, git="true")
    assert await fetcher.fetch("yay") == workdir


@pytest.mark.asyncio
async def test_git_fetch_failures(tmp_path):
    """Test git errors and missing recipes become FetchFailure"""
    with pytest.raises(FetchFailure, match="not found"):
        await GitFetcher(tmp_path, git="pacforge-no-such-git").fetch("yay")

    with pytest.raises(FetchFailure, match="exited with 1"):
        await GitFetcher(tmp_path, git="false").fetch("yay")

    with pytest.raises(FetchFailure, match="no PKGBUILD"):
        await GitFetcher(tmp_path, git="true").fetch("yay")


@pytest.mark.asyncio
async def test_git_latest_commit(tmp_path, monkeypatch):
    """Test ls-remote output is matched against the requested ref"""
    fetcher = GitFetcher(tmp_path)
    calls = []

    async def ls_remote(base, *args):
        calls.append(list(args))
        return "abc123\trefs/heads/main\nfff000\trefs/heads/mainline\n"

    monkeypatch.setattr(fetcher, "_git", ls_remote)

    assert await fetcher.latest_commit("https://host/foo.git", "main") == "abc123"
    assert await fetcher.latest_commit("https://host/foo.git") is None
    assert calls[0] == ["ls-remote", "https://host/foo.git", "refs/heads/main"]
    assert calls[1][-1] == "HEAD"

    failing = GitFetcher(tmp_path, git="false")
    assert await failing.latest_commit("https://host/foo.git") is None

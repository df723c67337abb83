# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the command line interface (against YAML snapshots)
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from cli import EXIT_ABORTED, EXIT_FAILED, EXIT_OK, cli

SYSTEM = {
    "installed": [
        {"name": "glibc", "version": "2.39-1", "explicit": True},
        {"name": "bash", "version": "5.1-1", "explicit": True},
    ],
    "repos": {
        "core": [
            {"name": "glibc", "version": "2.39-1"},
            {"name": "bash", "version": "5.2-1"},
            {"name": "git", "version": "2.44-1", "depends": ["glibc"]},
        ],
        "extra": [{"name": "go", "version": "2:1.22.0-1"}],
    },
    "aur": [
        {"name": "yay", "version": "12.0-1", "depends": ["git"], "makedepends": ["go"]},
        {"name": "broken", "version": "1.0-1", "depends": ["does-not-exist"]},
    ],
}


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """Snapshot and quiet configuration files"""
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.chdir(tmp_path)

    snapshot = tmp_path / "system.yaml"
    snapshot.write_text(yaml.safe_dump(SYSTEM))
    config = tmp_path / "config.yaml"
    config.write_text(
        yaml.safe_dump(
            {
                "observability": {"log_level": "ERROR", "file_logs": False},
                "paths": {"lock_file": str(tmp_path / "db.lck")},
            }
        )
    )
    return ["--config", str(config), "--snapshot", str(snapshot)]


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_plan_text(runner, workspace):
    """Test the plan lists the repository transaction before the build"""
    result = runner.invoke(cli, ["plan", "yay", *workspace])

    assert result.exit_code == EXIT_OK, result.output
    assert "1) [repo] repository transaction" in result.output
    assert "2) [aur] yay" in result.output
    assert "(make)" in result.output


def test_plan_json(runner, workspace):
    result = runner.invoke(cli, ["plan", "yay", "-o", "json", *workspace])

    assert result.exit_code == EXIT_OK, result.output
    data = json.loads(result.output)
    assert data["batches"] == [
        {"kind": "repo", "key": "<repo>", "packages": ["git", "go"]},
        {"kind": "source", "key": "yay", "packages": ["yay"]},
    ]
    assert data["make_only"] == ["go"]
    assert data["satisfied"] == ["glibc"]


def test_plan_missing_dependency(runner, workspace):
    """Test resolution errors exit with status 1 and list what is missing"""
    result = runner.invoke(cli, ["plan", "broken", *workspace])

    assert result.exit_code == EXIT_FAILED
    assert "error:" in result.output
    assert "does-not-exist" in result.output


def test_install_nothing_to_do(runner, workspace):
    result = runner.invoke(cli, ["install", "glibc", *workspace])

    assert result.exit_code == EXIT_OK, result.output
    assert "there is nothing to do" in result.output


def test_install_declined(runner, workspace):
    """Test declining the confirmation aborts with status 2"""
    result = runner.invoke(cli, ["install", "yay", *workspace], input="n\n")

    assert result.exit_code == EXIT_ABORTED
    assert "Proceed with installation?" in result.output
    assert "declined" in result.output


def test_upgrade_excluding_everything(runner, workspace):
    """Test the exclusion menu can skip every upgrade"""
    result = runner.invoke(cli, ["upgrade", "--repo-only", *workspace], input="1\n")

    assert result.exit_code == EXIT_OK, result.output
    assert "core/bash" in result.output
    assert "there is nothing to do" in result.output


def test_upgrade_aur_only_without_updates(runner, workspace):
    result = runner.invoke(cli, ["upgrade", "--aur-only", *workspace])

    assert result.exit_code == EXIT_OK, result.output
    assert "there is nothing to do" in result.output


def test_upgrade_without_menu(runner, workspace, tmp_path):
    """Test upgrade_menu off upgrades everything without asking for exclusions"""
    config = tmp_path / "nomenu.yaml"
    config.write_text(
        yaml.safe_dump(
            {
                "observability": {"log_level": "ERROR", "file_logs": False},
                "install": {"upgrade_menu": False},
            }
        )
    )
    options = ["--config", str(config), *workspace[2:]]
    result = runner.invoke(cli, ["upgrade", "--repo-only", *options], input="n\n")

    assert result.exit_code == EXIT_ABORTED
    assert "Packages to exclude" not in result.output
    assert "core/bash-5.2-1" in result.output
    assert "Proceed with installation?" in result.output

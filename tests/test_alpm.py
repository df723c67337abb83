# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the on-disk pacman database loader
"""

import io
import tarfile

import pytest

from pacforge.core.exceptions import ConfigError
from pacforge.core.models import PackageSource
from pacforge.sources.alpm import (
    load_database,
    load_local,
    load_sync_db,
    package_from_desc,
    parse_desc,
    read_repo_order,
)

BASH_DESC = """%NAME%
bash

%VERSION%
5.2.026-2

%BASE%
bash

%DEPENDS%
readline>=7.0
glibc
ncurses

%PROVIDES%
sh

%REASON%
1
"""


def write_local(db_path, name, version, extra=""):
    entry = db_path / "local" / f"{name}-{version}"
    entry.mkdir(parents=True)
    (entry / "desc").write_text(f"%NAME%\n{name}\n\n%VERSION%\n{version}\n\n{extra}")


def write_sync(db_path, repo, entries):
    sync = db_path / "sync"
    sync.mkdir(parents=True, exist_ok=True)
    with tarfile.open(sync / f"{repo}.db", "w:gz") as archive:
        for directory, files in entries.items():
            for filename, text in files.items():
                data = text.encode()
                info = tarfile.TarInfo(f"{directory}/{filename}")
                info.size = len(data)
                archive.addfile(info, io.BytesIO(data))


def test_parse_desc():
    """Test sections are split on blank lines"""
    sections = parse_desc(BASH_DESC)
    assert sections["NAME"] == ["bash"]
    assert sections["DEPENDS"] == ["readline>=7.0", "glibc", "ncurses"]
    assert sections["REASON"] == ["1"]


def test_package_from_desc():
    """Test desc sections become a package"""
    bash = package_from_desc(parse_desc(BASH_DESC), PackageSource.INSTALLED)
    assert bash.name == "bash"
    assert bash.version == "5.2.026-2"
    assert [str(d) for d in bash.depends] == ["readline>=7.0", "glibc", "ncurses"]
    assert bash.provided_names() == ["sh"]
    assert not bash.explicit

    with pytest.raises(ConfigError):
        package_from_desc({"NAME": ["broken"]}, PackageSource.INSTALLED)


def test_load_local(tmp_path):
    """Test installed packages and their install reason"""
    write_local(tmp_path, "vim", "9.1-1")
    write_local(tmp_path, "libsodium", "1.0.19-1", "%REASON%\n1\n")

    packages = {p.name: p for p in load_local(tmp_path)}
    assert set(packages) == {"vim", "libsodium"}
    assert packages["vim"].explicit
    assert not packages["libsodium"].explicit
    assert packages["vim"].source is PackageSource.INSTALLED


def test_load_local_missing_directory(tmp_path):
    assert load_local(tmp_path) == []


def test_load_sync_db_merges_depends_entries(tmp_path):
    """Test desc and depends entries of one package are merged"""
    write_sync(
        tmp_path,
        "core",
        {
            "zlib-1.3-1": {"desc": "%NAME%\nzlib\n\n%VERSION%\n1:1.3-1\n"},
            "bash-5.2-2": {
                "desc": "%NAME%\nbash\n\n%VERSION%\n5.2-2\n",
                "depends": "%DEPENDS%\nglibc\n",
            },
        },
    )
    packages = {p.name: p for p in load_sync_db(tmp_path / "sync" / "core.db", "core")}

    assert packages["zlib"].version == "1:1.3-1"
    assert packages["bash"].repo == "core"
    assert packages["bash"].source is PackageSource.BINARY_REPO
    assert [str(d) for d in packages["bash"].depends] == ["glibc"]


def test_load_sync_db_rejects_garbage(tmp_path):
    bogus = tmp_path / "core.db"
    bogus.write_bytes(b"not a tar archive")
    with pytest.raises(ConfigError):
        load_sync_db(bogus, "core")


def test_read_repo_order(tmp_path):
    """Test repository sections in file order, options excluded"""
    conf = tmp_path / "pacman.conf"
    conf.write_text(
        "[options]\nHoldPkg = pacman glibc\n\n"
        "#[testing]\n#Include = /etc/pacman.d/mirrorlist\n\n"
        "[core]\nInclude = /etc/pacman.d/mirrorlist\n\n"
        "[extra] # main\nInclude = /etc/pacman.d/mirrorlist\n"
    )
    assert read_repo_order(conf) == ["core", "extra"]


def test_load_database(tmp_path):
    """Test repository order follows pacman.conf"""
    write_local(tmp_path, "bash", "5.1-1")
    write_sync(tmp_path, "extra", {"vim-9.1-1": {"desc": "%NAME%\nvim\n\n%VERSION%\n9.1-1\n"}})
    write_sync(tmp_path, "core", {"bash-5.2-1": {"desc": "%NAME%\nbash\n\n%VERSION%\n5.2-1\n"}})
    conf = tmp_path / "pacman.conf"
    conf.write_text("[options]\n[core]\n[extra]\n[multilib]\n")

    db = load_database(tmp_path, pacman_conf=conf)
    assert db.repo_names() == ["core", "extra"]
    assert db.installed_package("bash").version == "5.1-1"
    assert db.repo_packages("vim")[0].repo == "extra"


def test_load_database_without_pacman_conf(tmp_path):
    """Test archives are used in name order without pacman.conf"""
    write_sync(tmp_path, "extra", {"vim-9.1-1": {"desc": "%NAME%\nvim\n\n%VERSION%\n9.1-1\n"}})
    write_sync(tmp_path, "core", {"bash-5.2-1": {"desc": "%NAME%\nbash\n\n%VERSION%\n5.2-1\n"}})

    db = load_database(tmp_path, pacman_conf=None)
    assert db.repo_names() == ["core", "extra"]

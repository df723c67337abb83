# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Default collaborators backed by git, makepkg and pacman.
"""

from .git import GitFetcher
from .makepkg import MakepkgBuilder
from .pacman import PacmanInstaller

__all__ = ["GitFetcher", "MakepkgBuilder", "PacmanInstaller"]

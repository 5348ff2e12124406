"""Filesystem layout of a partner charts repository."""

import os
from dataclasses import dataclass
from pathlib import Path

from .exceptions import ConfigurationError

ASSETS_DIR = "assets"
CHARTS_DIR = "charts"
PACKAGES_DIR = "packages"
ICONS_DIR = "icons"
INDEX_FILE = "index.yaml"
CONFIGURATION_FILE = "configuration.yaml"


@dataclass(frozen=True)
class Paths:
    """All of the paths the reconciler reads and writes.

    Passed explicitly to every component that touches the repository so
    that tests can point them at a temporary directory.

    Attributes:
        repo_root: Absolute path of the repository root
        assets: Directory holding the released chart archives
        charts: Directory holding the unpacked chart versions
        packages: Directory holding package configuration
        icons: Directory holding downloaded chart icons
        index_yaml: The Helm repository index
        configuration_yaml: Repository level configuration
    """

    repo_root: Path
    assets: Path
    charts: Path
    packages: Path
    icons: Path
    index_yaml: Path
    configuration_yaml: Path

    @classmethod
    def from_repo_root(cls, repo_root: str | Path, require_git: bool = False) -> "Paths":
        """Build the repository layout rooted at repo_root.

        Args:
            repo_root: Repository root directory
            require_git: Whether repo_root must contain a .git directory

        Returns:
            Paths for the repository

        Raises:
            ConfigurationError: If require_git is set and repo_root is not
                the root of a git repository
        """
        root = Path(repo_root).resolve()
        if require_git and not (root / ".git").is_dir():
            raise ConfigurationError(f"{root} must be the root of a git repo")

        assets = root / ASSETS_DIR
        return cls(
            repo_root=root,
            assets=assets,
            charts=root / CHARTS_DIR,
            packages=root / PACKAGES_DIR,
            icons=assets / ICONS_DIR,
            index_yaml=root / INDEX_FILE,
            configuration_yaml=root / CONFIGURATION_FILE,
        )

    @classmethod
    def from_cwd(cls) -> "Paths":
        """Build the repository layout for the current working directory."""
        return cls.from_repo_root(os.getcwd(), require_git=True)

    def relative(self, path: Path) -> str:
        """Return path relative to the repository root, using forward slashes."""
        return Path(path).resolve().relative_to(self.repo_root).as_posix()

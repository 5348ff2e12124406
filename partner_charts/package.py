"""Packages: configuration referring to an upstream chart plus local changes."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from .config_manager import UPSTREAM_YAML, UpstreamConfig
from .exceptions import ConfigurationError
from .index_file import get_stored_versions
from .models import ChartSourceMetadata, ChartVersion
from .paths import Paths
from .upstream import UpstreamClient
from .version_selector import filter_versions

logger = logging.getLogger(__name__)

OVERLAY_DIR = "overlay"


@dataclass
class PackageWrapper:
    """A package directory, packages/<vendor>/<name>.

    Attributes:
        name: Chart name, taken from the package directory
        vendor: Vendor directory name
        path: Package directory
        upstream: Parsed upstream.yaml
        display_vendor: User-facing vendor name
        display_name: User-facing chart name
        source_metadata: What the upstream offers, once populated
        fetch_versions: Versions selected for fetching, once populated
        stored_versions: Versions already in index.yaml, once populated
    """

    name: str
    vendor: str
    path: Path
    upstream: UpstreamConfig
    display_vendor: str = ""
    display_name: str = ""
    source_metadata: ChartSourceMetadata | None = None
    fetch_versions: list[ChartVersion] = field(default_factory=list)
    stored_versions: list[ChartVersion] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.display_vendor:
            self.display_vendor = self.upstream.vendor or self.vendor
        if not self.display_name:
            self.display_name = self.upstream.display_name or self.name

    @property
    def full_name(self) -> str:
        return f"{self.vendor}/{self.name}"

    @property
    def sort_key(self) -> tuple[str, str]:
        return (self.vendor, self.name)

    @property
    def is_new(self) -> bool:
        """Whether the repository holds no version of this package yet."""
        return not self.stored_versions

    def get_overlay_files(self) -> dict[str, bytes]:
        """Read the package's overlay files.

        Returns:
            Map of path relative to the chart root (e.g. "values.yaml") to
            file contents; empty if the package has no overlay directory
        """
        overlay_dir = self.path / OVERLAY_DIR
        if not overlay_dir.is_dir():
            return {}

        overlay_files = {}
        for file_path in sorted(overlay_dir.rglob("*")):
            if file_path.is_file():
                overlay_files[file_path.relative_to(overlay_dir).as_posix()] = file_path.read_bytes()
        return overlay_files

    def populate(self, client: UpstreamClient, paths: Paths) -> bool:
        """Fetch upstream metadata and select the versions to fetch.

        Args:
            client: Upstream client
            paths: Repository layout, used to read the stored versions

        Returns:
            True if there are versions to fetch

        Raises:
            UpstreamError: If the upstream cannot be read or has no
                eligible versions
        """
        self.source_metadata = client.fetch_upstream(self.upstream)
        upstream_name = self.source_metadata.versions[0].name if self.source_metadata.versions else ""
        if upstream_name != self.name:
            logger.warning(f"upstream name {upstream_name!r} does not match package name {self.name!r}")

        self.stored_versions = get_stored_versions(paths.index_yaml, self.name)
        self.fetch_versions = filter_versions(
            self.source_metadata.versions,
            self.stored_versions,
            self.upstream.fetch,
            self.upstream.track_versions,
        )
        return bool(self.fetch_versions)


def list_package_wrappers(paths: Paths, current_package: str = "") -> list[PackageWrapper]:
    """Read every package, or only current_package, from the packages directory.

    Args:
        paths: Repository layout
        current_package: Optional package in <vendor>/<name> form

    When listing every package, packages with an invalid upstream.yaml are
    logged and left out.

    Returns:
        Packages sorted by vendor then name

    Raises:
        ConfigurationError: If current_package does not exist or its
            upstream.yaml is invalid
    """
    if current_package:
        parts = current_package.strip("/").split("/")
        if len(parts) != 2 or not all(parts):
            raise ConfigurationError(f"package {current_package!r} must be in <vendor>/<name> form")
        package_dirs = [paths.packages / parts[0] / parts[1]]
        if not package_dirs[0].is_dir():
            raise ConfigurationError(f"failed to find package {current_package!r}")
    else:
        package_dirs = [p for p in paths.packages.glob("*/*") if p.is_dir()]

    packages = []
    for package_dir in package_dirs:
        try:
            upstream = UpstreamConfig.from_yaml(package_dir / UPSTREAM_YAML)
        except ConfigurationError as e:
            if current_package:
                raise
            logger.error(f"Skipping package {package_dir.parent.name}/{package_dir.name}: {e}")
            continue
        packages.append(
            PackageWrapper(
                name=package_dir.name,
                vendor=package_dir.parent.name,
                path=package_dir,
                upstream=upstream,
            )
        )

    packages.sort(key=lambda p: p.sort_key)
    return packages

"""Reading and writing Helm repository index files."""

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import yaml

from .chart_loader import load_archive
from .exceptions import ChartLoadError, PartnerChartsException
from .models import ChartVersion, format_timestamp
from .utils import version_sort_key

logger = logging.getLogger(__name__)

INDEX_API_VERSION = "v1"


def sha256_digest(path: Path) -> str:
    """Calculate the hex SHA-256 digest of a file."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


@dataclass
class IndexFile:
    """A Helm repository index: chart name to its versions, newest first."""

    entries: dict[str, list[ChartVersion]] = field(default_factory=dict)
    api_version: str = INDEX_API_VERSION
    generated: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexFile":
        entries = {}
        for name, versions in (data.get("entries") or {}).items():
            entries[name] = [ChartVersion.from_dict(v) for v in versions or []]
        generated = data.get("generated") or ""
        if isinstance(generated, datetime):
            generated = format_timestamp(generated)
        return cls(
            entries=entries,
            api_version=data.get("apiVersion") or INDEX_API_VERSION,
            generated=str(generated),
        )

    @classmethod
    def load(cls, path: Path) -> "IndexFile":
        """Load an index.yaml file.

        Raises:
            FileNotFoundError: If path does not exist
            PartnerChartsException: If the file is not a valid index
        """
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise PartnerChartsException(f"failed to parse {path}: {e}") from e
        if not isinstance(data, dict):
            raise PartnerChartsException(f"{path} is not a valid index file")
        return cls.from_dict(data)

    @classmethod
    def parse(cls, content: str | bytes) -> "IndexFile":
        """Parse index contents fetched from a remote repository."""
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise PartnerChartsException(f"failed to parse index: {e}") from e
        if not isinstance(data, dict):
            raise PartnerChartsException("index is not a mapping")
        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "apiVersion": self.api_version,
            "entries": {
                name: [version.to_dict() for version in versions]
                for name, versions in sorted(self.entries.items())
            },
            "generated": self.generated,
        }

    def write(self, path: Path) -> None:
        """Write the index to path, stamping the generated time."""
        self.generated = format_timestamp(datetime.now(timezone.utc))
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        logger.debug(f"Wrote index to {path}")

    def get(self, name: str, version: str) -> ChartVersion | None:
        """Find a specific chart version."""
        for chart_version in self.entries.get(name, []):
            if chart_version.version == version:
                return chart_version
        return None

    def sort_entries(self) -> None:
        """Sort every entry's versions newest first."""
        for versions in self.entries.values():
            versions.sort(key=lambda v: version_sort_key(v.version), reverse=True)

    def remove_version(self, name: str, version: str) -> None:
        """Remove a single version of a chart.

        Raises:
            KeyError: If the chart or version is not in the index
        """
        if name not in self.entries:
            raise KeyError(f"{name} not present in index entries")
        versions = self.entries[name]
        for i, chart_version in enumerate(versions):
            if chart_version.version == version:
                del versions[i]
                return
        raise KeyError(f"version {version} not found for chart {name} in index")


def index_directory(directory: Path, base_url: str) -> IndexFile:
    """Build an index from every chart archive in directory.

    Archives directly inside directory and one level below it are indexed.
    Each entry's URL is base_url joined with the archive's relative path.

    Raises:
        ChartLoadError: If an archive cannot be loaded
    """
    index = IndexFile()
    created = format_timestamp(datetime.now(timezone.utc))
    archives = sorted(list(directory.glob("*.tgz")) + list(directory.glob("*/*.tgz")))
    for archive in archives:
        try:
            chart = load_archive(archive)
        except ChartLoadError as e:
            raise ChartLoadError(f"failed to index {archive}: {e}") from e

        relative = archive.relative_to(directory).as_posix()
        chart_version = ChartVersion(
            metadata=chart.metadata,
            urls=[f"{base_url.rstrip('/')}/{relative}"],
            created=created,
            digest=sha256_digest(archive),
        )
        index.entries.setdefault(chart.name, []).append(chart_version)

    index.sort_entries()
    return index


def get_stored_versions(index_path: Path, chart_name: str) -> list[ChartVersion]:
    """Return the versions of chart_name in the index, newest first.

    A missing index file means nothing is stored yet.
    """
    try:
        index = IndexFile.load(index_path)
    except FileNotFoundError:
        logger.debug(f"No index at {index_path}, treating {chart_name} as new")
        return []
    return list(index.entries.get(chart_name, []))

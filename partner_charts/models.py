"""Data models for the partner charts reconciler."""

import copy
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

# Chart.yaml keys, mapped to ChartMetadata attribute names
_SCALAR_FIELDS = {
    "apiVersion": "api_version",
    "name": "name",
    "home": "home",
    "version": "version",
    "kubeVersion": "kube_version",
    "description": "description",
    "type": "type",
    "icon": "icon",
    "appVersion": "app_version",
    "condition": "condition",
    "tags": "tags",
}
_LIST_FIELDS = {
    "sources": "sources",
    "keywords": "keywords",
    "maintainers": "maintainers",
    "dependencies": "dependencies",
}


@dataclass
class ChartMetadata:
    """The contents of a chart's Chart.yaml."""

    name: str = ""
    version: str = ""
    api_version: str = ""
    home: str = ""
    kube_version: str = ""
    description: str = ""
    type: str = ""
    icon: str = ""
    app_version: str = ""
    condition: str = ""
    tags: str = ""
    deprecated: bool = False
    sources: list[str] | None = None
    keywords: list[str] | None = None
    maintainers: list[dict[str, Any]] | None = None
    dependencies: list[dict[str, Any]] | None = None
    annotations: dict[str, str] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ChartMetadata":
        """Create ChartMetadata from a Chart.yaml or index.yaml mapping.

        Keys that are not part of Chart.yaml (urls, digest, created) are
        ignored.
        """
        data = data or {}
        metadata = cls()
        for key, attr in _SCALAR_FIELDS.items():
            value = data.get(key)
            if value is not None:
                setattr(metadata, attr, str(value))
        for key, attr in _LIST_FIELDS.items():
            value = data.get(key)
            if value is not None:
                setattr(metadata, attr, copy.deepcopy(list(value)))
        metadata.deprecated = bool(data.get("deprecated", False))
        annotations = data.get("annotations")
        if annotations is not None:
            metadata.annotations = {str(k): str(v) for k, v in annotations.items()}
        return metadata

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a Chart.yaml mapping, omitting empty fields."""
        data: dict[str, Any] = {}
        for key, attr in _SCALAR_FIELDS.items():
            value = getattr(self, attr)
            if value:
                data[key] = value
        for key, attr in _LIST_FIELDS.items():
            value = getattr(self, attr)
            if value:
                data[key] = copy.deepcopy(value)
        if self.deprecated:
            data["deprecated"] = True
        if self.annotations:
            data["annotations"] = dict(self.annotations)
        return data


@dataclass
class ChartFile:
    """A file inside a chart, named by its path relative to the chart root."""

    name: str
    data: bytes


@dataclass
class Chart:
    """An in-memory chart: its metadata plus every other file it contains."""

    metadata: ChartMetadata
    files: list[ChartFile] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def version(self) -> str:
        return self.metadata.version

    def get_file(self, name: str) -> ChartFile | None:
        for chart_file in self.files:
            if chart_file.name == name:
                return chart_file
        return None

    def tgz_filename(self) -> str:
        """Archive file name, matching what helm package produces."""
        return f"{self.name}-{self.version}.tgz"


@dataclass
class ChartWrapper:
    """A chart together with a dirty bit.

    The modified flag records whether the chart differs from what is
    currently persisted in the repository, so that unchanged charts are
    never re-serialized.
    """

    chart: Chart
    modified: bool = False

    @property
    def name(self) -> str:
        return self.chart.name

    @property
    def version(self) -> str:
        return self.chart.version


@dataclass
class ChartVersion:
    """A single version entry of a Helm repository index.

    created is kept as the RFC 3339 string found in the index so that
    rewriting an index does not reformat untouched entries.
    """

    metadata: ChartMetadata
    urls: list[str] = field(default_factory=list)
    created: str = ""
    digest: str = ""

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def version(self) -> str:
        return self.metadata.version

    @property
    def annotations(self) -> dict[str, str]:
        return self.metadata.annotations or {}

    @property
    def created_at(self) -> datetime | None:
        """The created timestamp as an aware datetime, or None if unset."""
        if not self.created:
            return None
        value = self.created.replace("Z", "+00:00")
        # fromisoformat accepts at most microsecond precision
        match = re.match(r"^(.*T\d\d:\d\d:\d\d)(\.\d+)?(.*)$", value)
        if match and match.group(2):
            value = match.group(1) + match.group(2)[:7] + match.group(3)
        created = datetime.fromisoformat(value)
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        return created

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChartVersion":
        """Create a ChartVersion from an index.yaml entry."""
        created = data.get("created") or ""
        if isinstance(created, datetime):
            created = format_timestamp(created)
        return cls(
            metadata=ChartMetadata.from_dict(data),
            urls=list(data.get("urls") or []),
            created=str(created),
            digest=data.get("digest", "") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to an index.yaml entry."""
        data = self.metadata.to_dict()
        data["urls"] = list(self.urls)
        if self.created:
            data["created"] = self.created
        if self.digest:
            data["digest"] = self.digest
        return data


def format_timestamp(moment: datetime) -> str:
    """Format a datetime the way Helm writes index timestamps."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class ChartSourceMetadata:
    """What an upstream reported about the chart it serves.

    Attributes:
        source: Kind of upstream ("HelmRepo", "ArtifactHub" or "Git")
        versions: Available versions, newest first
        commit: Commit the chart was read from (git upstreams only)
        subdirectory: Chart directory inside the git repository
    """

    source: str
    versions: list[ChartVersion]
    commit: str = ""
    subdirectory: str = ""

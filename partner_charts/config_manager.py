"""Configuration files of a partner charts repository.

Each package has a packages/<vendor>/<name>/upstream.yaml describing
where its chart comes from and how it is modified, and the repository
root has a configuration.yaml describing the released branch to
validate against.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError
from .models import ChartMetadata

UPSTREAM_YAML = "upstream.yaml"

FETCH_LATEST = "latest"
FETCH_NEWER = "newer"
FETCH_ALL = "all"
FETCH_MODES = (FETCH_LATEST, FETCH_NEWER, FETCH_ALL)


def _load_yaml_mapping(yaml_path: Path) -> dict[str, Any]:
    try:
        with open(yaml_path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"failed to read {yaml_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"failed to parse {yaml_path} as YAML: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"{yaml_path} must contain a mapping")
    return data


@dataclass
class UpstreamConfig:
    """Contents of a package's upstream.yaml.

    Attributes:
        helm_repo: URL of an upstream Helm repository
        helm_chart: Chart name inside helm_repo
        artifacthub_repo: Artifact Hub repository name
        artifacthub_package: Artifact Hub package name
        git_repo: URL of an upstream git repository
        git_branch: Branch of git_repo to use
        git_subdirectory: Chart directory inside git_repo
        github_release: Use the commit of the latest GitHub release of git_repo
        fetch: Fetch mode, one of "latest", "newer" or "all"
        track_versions: major.minor release streams to track independently
        package_version: Repository local revision encoded into chart versions
        chart_metadata: Partial Chart.yaml merged into every new chart
        auto_install: Value of the auto-install annotation
        display_name: Value of the display-name annotation
        experimental: Mark charts experimental
        hidden: Hide charts in the UI
        namespace: Value of the namespace annotation
        release_name: Value of the release-name annotation
        vendor: Display name of the vendor
        remote_dependencies: Keep dependency repositories as published upstream
        deprecated: Mark the package deprecated
    """

    helm_repo: str = ""
    helm_chart: str = ""
    artifacthub_repo: str = ""
    artifacthub_package: str = ""
    git_repo: str = ""
    git_branch: str = ""
    git_subdirectory: str = ""
    github_release: bool = False
    fetch: str = FETCH_LATEST
    track_versions: list[str] = field(default_factory=list)
    package_version: int | None = None
    chart_metadata: ChartMetadata = field(default_factory=ChartMetadata)
    auto_install: str = ""
    display_name: str = ""
    experimental: bool = False
    hidden: bool = False
    namespace: str = ""
    release_name: str = ""
    vendor: str = ""
    remote_dependencies: bool = False
    deprecated: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "UpstreamConfig":
        """Create an UpstreamConfig from parsed upstream.yaml contents.

        Defaults are filled in and the result is validated.

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        package_version = data.get("PackageVersion")
        if package_version is not None:
            try:
                package_version = int(package_version)
            except (TypeError, ValueError) as e:
                raise ConfigurationError(f"PackageVersion must be an integer: {e}") from e
            # zero means "no package version"
            package_version = package_version or None

        track_versions = [str(v) for v in data.get("TrackVersions") or []]

        chart_metadata = data.get("ChartMetadata") or {}
        if not isinstance(chart_metadata, dict):
            raise ConfigurationError("ChartMetadata must be a mapping")

        config = cls(
            helm_repo=data.get("HelmRepo", "") or "",
            helm_chart=data.get("HelmChart", "") or "",
            artifacthub_repo=data.get("ArtifactHubRepo", "") or "",
            artifacthub_package=data.get("ArtifactHubPackage", "") or "",
            git_repo=data.get("GitRepo", "") or "",
            git_branch=data.get("GitBranch", "") or "",
            git_subdirectory=data.get("GitSubdirectory", "") or "",
            github_release=bool(data.get("GitHubRelease", False)),
            fetch=str(data.get("Fetch") or FETCH_LATEST).lower(),
            track_versions=track_versions,
            package_version=package_version,
            chart_metadata=ChartMetadata.from_dict(chart_metadata),
            auto_install=data.get("AutoInstall", "") or "",
            display_name=data.get("DisplayName", "") or "",
            experimental=bool(data.get("Experimental", False)),
            hidden=bool(data.get("Hidden", False)),
            namespace=data.get("Namespace", "") or "",
            release_name=data.get("ReleaseName", "") or "",
            vendor=data.get("Vendor", "") or "",
            remote_dependencies=bool(data.get("RemoteDependencies", False)),
            deprecated=bool(data.get("Deprecated", False)),
        )
        if not config.release_name:
            config.release_name = config.helm_chart
        config.validate()
        return config

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "UpstreamConfig":
        """Load an upstream.yaml file.

        Args:
            yaml_path: Path to the upstream.yaml file

        Returns:
            The validated UpstreamConfig

        Raises:
            ConfigurationError: If the file is unreadable or invalid
        """
        data = _load_yaml_mapping(Path(yaml_path))
        try:
            return cls.from_dict(data)
        except ConfigurationError as e:
            raise ConfigurationError(f"invalid {yaml_path}: {e}") from e

    def validate(self) -> None:
        """Check that the configuration describes exactly one usable upstream.

        Raises:
            ConfigurationError: On the first problem found
        """
        if self.fetch not in FETCH_MODES:
            raise ConfigurationError(
                f"Fetch must be one of {', '.join(FETCH_MODES)}, got {self.fetch!r}"
            )
        if self.fetch != FETCH_LATEST and not self.helm_chart:
            raise ConfigurationError(f"Fetch is {self.fetch} but HelmChart is not set")
        if self.fetch != FETCH_LATEST and not self.helm_repo:
            raise ConfigurationError(f"Fetch is {self.fetch} but HelmRepo is not set")

        if self.track_versions and not self.helm_chart:
            raise ConfigurationError("TrackVersions is set but HelmChart is not set")
        if self.track_versions and not self.helm_repo:
            raise ConfigurationError("TrackVersions is set but HelmRepo is not set")

        if self.artifacthub_package and not self.artifacthub_repo:
            raise ConfigurationError("ArtifactHubPackage is set but ArtifactHubRepo is not set")
        if self.artifacthub_repo and not self.artifacthub_package:
            raise ConfigurationError("ArtifactHubRepo is set but ArtifactHubPackage is not set")

        if self.git_branch and not self.git_repo:
            raise ConfigurationError("GitBranch is set but GitRepo is not set")
        if self.github_release and not self.git_repo:
            raise ConfigurationError("GitHubRelease is set but GitRepo is not set")
        if self.git_subdirectory and not self.git_repo:
            raise ConfigurationError("GitSubdirectory is set but GitRepo is not set")

        if self.helm_chart and not self.helm_repo:
            raise ConfigurationError("HelmChart is set but HelmRepo is not set")
        if self.helm_repo and not self.helm_chart:
            raise ConfigurationError("HelmRepo is set but HelmChart is not set")

        if not (
            (self.artifacthub_repo and self.artifacthub_package)
            or self.git_repo
            or (self.helm_repo and self.helm_chart)
        ):
            raise ConfigurationError("must define upstream")

        if self.package_version is not None and not 0 < self.package_version < 100:
            raise ConfigurationError(
                f"PackageVersion must be between 1 and 99, got {self.package_version}"
            )


@dataclass
class ValidateUpstream:
    """A released repository branch to validate against."""

    url: str
    branch: str


@dataclass
class RepositoryConfig:
    """Contents of the repository's configuration.yaml.

    Attributes:
        validate: Released branches to validate against; only the first
            one is used
    """

    validate: list[ValidateUpstream] = field(default_factory=list)

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "RepositoryConfig":
        """Load and check configuration.yaml.

        Raises:
            ConfigurationError: If the file is unreadable or lacks a usable
                validation target
        """
        data = _load_yaml_mapping(Path(yaml_path))
        upstreams = []
        for entry in data.get("validate") or []:
            if not isinstance(entry, dict):
                raise ConfigurationError("validate entries must be mappings")
            upstreams.append(
                ValidateUpstream(
                    url=entry.get("url") or entry.get("Url") or "",
                    branch=entry.get("branch") or entry.get("Branch") or "",
                )
            )

        config = cls(validate=upstreams)
        config.check()
        return config

    def check(self) -> None:
        if not self.validate:
            raise ConfigurationError("must provide validation configuration")
        if not self.validate[0].branch:
            raise ConfigurationError("must provide branch in validation configuration")
        if not self.validate[0].url:
            raise ConfigurationError("must provide URL in validation configuration")

    @property
    def release_upstream(self) -> ValidateUpstream:
        """The branch released charts are validated against."""
        return self.validate[0]

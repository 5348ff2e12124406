"""Fetching chart versions and charts from upstream sources."""

import logging
import re
from pathlib import Path

import requests

from .chart_loader import load_archive, load_directory
from .config import ENV_GITHUB_TOKEN, get_env_var
from .config_manager import UpstreamConfig
from .exceptions import ChartLoadError, PartnerChartsException, UpstreamError
from .git_repo import checkout_commit, cloned_repo, head_commit
from .http_session import DEFAULT_TIMEOUT, create_session
from .index_file import IndexFile
from .models import Chart, ChartSourceMetadata, ChartVersion

logger = logging.getLogger(__name__)

ARTIFACTHUB_API = "https://artifacthub.io/api/v1/packages/helm"
GITHUB_API = "https://api.github.com"

SOURCE_HELM_REPO = "HelmRepo"
SOURCE_ARTIFACTHUB = "ArtifactHub"
SOURCE_GIT = "Git"

_HTTP_URL_RE = re.compile(r"^https?://")


def github_owner_and_repo(git_url: str) -> tuple[str, str]:
    """Split a GitHub repository URL into owner and repository name.

    Raises:
        UpstreamError: If git_url is not a GitHub URL
    """
    if not git_url.startswith("https://github.com/"):
        raise UpstreamError(f"{git_url} is not a GitHub URL")
    path = git_url.removeprefix("https://github.com/").removesuffix(".git").strip("/")
    parts = path.split("/")
    if len(parts) < 2:
        raise UpstreamError(f"{git_url} does not name a GitHub repository")
    return parts[0], parts[1]


class UpstreamClient:
    """Client for the upstreams a package may track."""

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, github_token: str | None = None):
        """Initialize the upstream client.

        Args:
            timeout: Request timeout in seconds
            github_token: Token for the GitHub API. Defaults to the
                GITHUB_TOKEN environment variable
        """
        self.timeout = timeout
        self.github_token = github_token or get_env_var(ENV_GITHUB_TOKEN)
        self.session = create_session()

    def _get(self, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.get(url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as e:
            raise UpstreamError(f"request to {url} failed: {e}") from e
        return response

    def fetch_helm_repo(self, helm_repo: str, helm_chart: str) -> ChartSourceMetadata:
        """Read the versions of a chart from a Helm repository index.

        Relative chart URLs are made absolute against the repository URL.

        Raises:
            UpstreamError: If the index cannot be fetched or lacks the chart
        """
        helm_repo = helm_repo.rstrip("/")
        url = f"{helm_repo}/index.yaml"
        if not _HTTP_URL_RE.match(url):
            raise UpstreamError(f"{helm_chart}: invalid URL {url}")

        logger.debug(f"Fetching index {url}")
        response = self._get(url)
        try:
            index = IndexFile.parse(response.content)
        except PartnerChartsException as e:
            raise UpstreamError(f"failed to parse {url}: {e}") from e

        if helm_chart not in index.entries:
            raise UpstreamError(f"Helm chart: {helm_repo}/{helm_chart} not found")

        index.sort_entries()
        versions = index.entries[helm_chart]
        for version in versions:
            if version.urls and not version.urls[0].startswith("http"):
                version.urls[0] = f"{helm_repo}/{version.urls[0]}"

        return ChartSourceMetadata(source=SOURCE_HELM_REPO, versions=versions)

    def fetch_artifacthub(self, repo: str, package: str) -> ChartSourceMetadata:
        """Resolve an Artifact Hub package to its Helm repository and read it.

        Raises:
            UpstreamError: If the package is unknown or its repository fails
        """
        url = f"{ARTIFACTHUB_API}/{repo}/{package}"
        response = self._get(url)
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"failed to parse response from {url}: {e}") from e

        if not data.get("content_url"):
            raise UpstreamError(f"ArtifactHub package: {repo}/{package} not found")

        repository_url = (data.get("repository") or {}).get("url", "")
        source_metadata = self.fetch_helm_repo(repository_url, data.get("name", ""))
        source_metadata.source = SOURCE_ARTIFACTHUB
        return source_metadata

    def fetch_github_release_commit(self, repo_url: str) -> str:
        """Return the commit of the latest GitHub release of repo_url.

        Raises:
            UpstreamError: If the release or its tag cannot be found
        """
        owner, repo = github_owner_and_repo(repo_url)
        headers = {"Accept": "application/vnd.github+json"}
        if self.github_token:
            headers["Authorization"] = f"Bearer {self.github_token}"

        release = self._get(f"{GITHUB_API}/repos/{owner}/{repo}/releases/latest", headers=headers).json()
        tag_name = release.get("tag_name", "")

        page = 1
        while True:
            tags = self._get(
                f"{GITHUB_API}/repos/{owner}/{repo}/tags",
                headers=headers,
                params={"per_page": 50, "page": page},
            ).json()
            if not tags:
                break
            for tag in tags:
                if tag.get("name") == tag_name:
                    commit = tag["commit"]["sha"]
                    logger.debug(f"Fetching GitHub Release: {release.get('name')} ({commit})")
                    return commit
            page += 1

        raise UpstreamError(f"Commit not found for GitHub release {tag_name} of {repo_url}")

    def fetch_git(self, config: UpstreamConfig) -> ChartSourceMetadata:
        """Read the chart at the tip of a git branch, or at the latest GitHub release.

        Raises:
            UpstreamError: If cloning fails or the chart cannot be loaded
        """
        with cloned_repo(config.git_repo, config.git_branch, shallow=not config.github_release) as clone_path:
            if config.github_release:
                logger.debug("Fetching GitHub Release")
                commit = self.fetch_github_release_commit(config.git_repo)
                checkout_commit(clone_path, commit)
            else:
                commit = head_commit(clone_path)

            chart = _load_git_chart(clone_path, config.git_subdirectory)

        version = ChartVersion(metadata=chart.metadata, urls=[config.git_repo])
        return ChartSourceMetadata(
            source=SOURCE_GIT,
            versions=[version],
            commit=commit,
            subdirectory=config.git_subdirectory,
        )

    def fetch_upstream(self, config: UpstreamConfig) -> ChartSourceMetadata:
        """Fetch the available versions from whichever upstream config names.

        If the package overrides the chart name, the versions carry that name.

        Raises:
            UpstreamError: If the upstream cannot be read
        """
        if config.artifacthub_repo and config.artifacthub_package:
            source_metadata = self.fetch_artifacthub(config.artifacthub_repo, config.artifacthub_package)
        elif config.helm_repo and config.helm_chart:
            source_metadata = self.fetch_helm_repo(config.helm_repo, config.helm_chart)
        elif config.git_repo:
            source_metadata = self.fetch_git(config)
        else:
            raise UpstreamError("no valid repo options found")

        if config.chart_metadata.name:
            for version in source_metadata.versions:
                version.metadata.name = config.chart_metadata.name

        return source_metadata

    def load_chart_from_url(self, url: str) -> Chart:
        """Download and load a chart archive.

        Raises:
            UpstreamError: If the download fails or the archive is invalid
        """
        logger.debug(f"Loading chart from {url}")
        response = self._get(url)
        try:
            return load_archive(response.content)
        except ChartLoadError as e:
            raise UpstreamError(f"failed to load chart from {url}: {e}") from e

    def load_chart_from_git(self, url: str, subdirectory: str, commit: str) -> Chart:
        """Load the chart in subdirectory of url as of commit.

        Raises:
            UpstreamError: If cloning fails or the chart cannot be loaded
        """
        with cloned_repo(url, shallow=False) as clone_path:
            checkout_commit(clone_path, commit)
            return _load_git_chart(clone_path, subdirectory)

    def load_chart(self, source_metadata: ChartSourceMetadata, version: ChartVersion) -> Chart:
        """Load the chart behind one of source_metadata's versions."""
        if not version.urls:
            raise UpstreamError(f"version {version.version} of {version.name} has no URL")
        if source_metadata.source == SOURCE_GIT:
            return self.load_chart_from_git(version.urls[0], source_metadata.subdirectory, source_metadata.commit)
        return self.load_chart_from_url(version.urls[0])


def _load_git_chart(clone_path: Path, subdirectory: str) -> Chart:
    chart_path = clone_path / subdirectory if subdirectory else clone_path
    if not chart_path.exists():
        raise UpstreamError(f"git subdirectory '{subdirectory}' does not exist")
    logger.debug(f"Loading chart from {chart_path}")
    try:
        return load_directory(chart_path)
    except ChartLoadError as e:
        raise UpstreamError(str(e)) from e

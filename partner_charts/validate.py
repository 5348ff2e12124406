"""Validation of the repository against its released state and its own rules.

Every check returns a list of error messages; an empty list means the check
passed. run_validations runs all of them.
"""

import hashlib
import logging
import os
import tempfile
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from .chart_loader import export_chart_directory, load_archive
from .config_manager import UPSTREAM_YAML, RepositoryConfig
from .conform import strip_rancher_annotations
from .exceptions import PartnerChartsException
from .git_repo import cloned_repo
from .icons import ICON_URL_PREFIX
from .index_file import IndexFile
from .package import OVERLAY_DIR, PackageWrapper, list_package_wrappers
from .paths import ASSETS_DIR, ICONS_DIR, Paths

logger = logging.getLogger(__name__)

# Files under assets/ that may change after release
RELEASE_SKIP_FILES = ("README.md",)


@dataclass
class DirectoryComparison:
    """Outcome of comparing a released directory with the working copy.

    Every list holds working-copy paths.
    """

    unchanged: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    def match(self) -> bool:
        """Whether nothing was modified, added or removed."""
        return not (self.modified or self.added or self.removed)

    def merge(self, other: "DirectoryComparison") -> None:
        self.unchanged.extend(other.unchanged)
        self.modified.extend(other.modified)
        self.added.extend(other.added)
        self.removed.extend(other.removed)


def checksum_file(path: Path) -> str:
    """Calculate the hex SHA-256 digest of a file."""
    sha256 = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def _is_skipped(relative_path: str, skip: set[str]) -> bool:
    return any(relative_path == s or relative_path.startswith(f"{s}/") for s in skip)


def _walk_files(root: Path, skip: set[str]) -> list[str]:
    """Return the root relative paths of every file under root outside the skipped subtrees."""
    files = []
    for dir_path, dir_names, file_names in os.walk(root):
        relative_dir = Path(dir_path).relative_to(root).as_posix()
        prefix = "" if relative_dir == "." else f"{relative_dir}/"
        dir_names[:] = [d for d in dir_names if not _is_skipped(f"{prefix}{d}", skip)]
        for file_name in file_names:
            relative_path = f"{prefix}{file_name}"
            if not _is_skipped(relative_path, skip):
                files.append(relative_path)
    return sorted(files)


def compare_directories(upstream_path: Path, update_path: Path, skip: Iterable[str] = ()) -> DirectoryComparison:
    """Compare every file of a released directory with the working copy.

    Chart archives whose bytes differ are compared by content, ignoring
    Rancher annotations and the deprecated field.

    Args:
        upstream_path: Released directory
        update_path: Working-copy directory
        skip: Paths relative to both directories, files or whole subtrees,
            to leave out of the comparison

    Raises:
        FileNotFoundError: If either directory does not exist
    """
    upstream_path = Path(upstream_path)
    update_path = Path(update_path)
    logger.debug(f"Comparing directories {upstream_path} and {update_path}")
    for directory in (upstream_path, update_path):
        if not directory.is_dir():
            raise FileNotFoundError(f"directory {directory} does not exist")

    skip = {s.strip("/") for s in skip}
    comparison = DirectoryComparison()

    upstream_files = _walk_files(upstream_path, skip)
    for relative_path in upstream_files:
        upstream_file = upstream_path / relative_path
        update_file = update_path / relative_path
        recorded = str(update_file)

        if not update_file.is_file():
            comparison.removed.append(recorded)
            continue

        if checksum_file(upstream_file) == checksum_file(update_file):
            comparison.unchanged.append(recorded)
        elif relative_path.endswith(".tgz") and match_helm_charts(upstream_file, update_file):
            comparison.unchanged.append(recorded)
        else:
            comparison.modified.append(recorded)

    checked = set(upstream_files)
    for relative_path in _walk_files(update_path, skip):
        if relative_path not in checked:
            comparison.added.append(str(update_path / relative_path))

    return comparison


def prepare_tgz_for_comparison(tgz_path: Path, target_dir: Path) -> None:
    """Unpack a chart archive into target_dir without the fields allowed to change."""
    chart = load_archive(tgz_path)
    strip_rancher_annotations(chart)
    chart.metadata.deprecated = False
    export_chart_directory(chart, target_dir)


def match_helm_charts(upstream_tgz: Path, update_tgz: Path) -> bool:
    """Whether two chart archives hold the same chart.

    Archives that cannot be loaded never match.
    """
    with tempfile.TemporaryDirectory(prefix="partner-charts-validate-") as temp_dir:
        upstream_dir = Path(temp_dir) / "upstream"
        update_dir = Path(temp_dir) / "update"
        try:
            prepare_tgz_for_comparison(upstream_tgz, upstream_dir)
            prepare_tgz_for_comparison(update_tgz, update_dir)
        except PartnerChartsException as e:
            logger.debug(f"Failed to prepare {upstream_tgz} and {update_tgz} for comparison: {e}")
            return False
        return compare_directories(upstream_dir, update_dir).match()


def prevent_released_chart_modifications(paths: Paths, repo_config: RepositoryConfig) -> list[str]:
    """Check that no released chart in assets/ was modified.

    The release branch from configuration.yaml is cloned and its assets/
    directory compared with the working copy.

    Raises:
        UpstreamError: If the release branch cannot be cloned
    """
    release = repo_config.release_upstream
    comparison = DirectoryComparison()
    with cloned_repo(release.url, release.branch) as clone_path:
        upstream_path = clone_path / ASSETS_DIR
        update_path = paths.repo_root / ASSETS_DIR
        if not update_path.is_dir():
            logger.info(f"Directory {ASSETS_DIR!r} not in source, skipping")
        elif not upstream_path.is_dir():
            logger.info(f"Directory {ASSETS_DIR!r} not in upstream, skipping")
        else:
            comparison.merge(compare_directories(upstream_path, update_path, RELEASE_SKIP_FILES))

    return [f"{modified} was modified" for modified in comparison.modified]


def find_duplicate_names(package_wrappers: list[PackageWrapper]) -> list[str]:
    """Report packages of different vendors sharing a chart name."""
    errors = []
    package_names: dict[str, str] = {}
    for package in package_wrappers:
        if package.name in package_names:
            errors.append(f"duplicate package names {package_names[package.name]} and {package.full_name}")
        else:
            package_names[package.name] = package.full_name
    return errors


def prevent_duplicate_package_names(paths: Paths) -> list[str]:
    return find_duplicate_names(list_package_wrappers(paths))


def validate_loaded_icons(index: IndexFile, icon_files: list[str]) -> list[str]:
    """Cross-check the icons referenced by index.yaml against the stored icons.

    Args:
        index: Repository index
        icon_files: Stored icon paths relative to the repository root

    Returns:
        Errors for referenced icons that are missing and stored icons that
        nothing references
    """
    errors = []
    referenced = dict.fromkeys(icon_files, False)
    for chart_versions in index.entries.values():
        for chart_version in chart_versions:
            icon_path = chart_version.metadata.icon.removeprefix(ICON_URL_PREFIX)
            if icon_path in referenced:
                referenced[icon_path] = True
            else:
                errors.append(
                    f"icon file {icon_path} for {chart_version.name} version {chart_version.version} does not exist"
                )

    for icon_path, present in referenced.items():
        if not present:
            errors.append(f"icon file {icon_path} is not referenced in index.yaml")
    return errors


def validate_icons(paths: Paths) -> list[str]:
    try:
        index = IndexFile.load(paths.index_yaml)
    except (FileNotFoundError, PartnerChartsException) as e:
        return [f"failed to load index.yaml: {e}"]
    if not paths.icons.is_dir():
        return [f"failed to read icons directory {paths.icons}"]

    icon_files = sorted(f"{ASSETS_DIR}/{ICONS_DIR}/{p.name}" for p in paths.icons.iterdir())
    return validate_loaded_icons(index, icon_files)


def match_package_names(index: IndexFile, package_wrappers: list[PackageWrapper]) -> list[str]:
    """Report chart names present in only one of packages/ and index.yaml."""
    errors = []
    index_names = dict.fromkeys(index.entries, False)
    for package in package_wrappers:
        if package.name in index_names:
            index_names[package.name] = True
        else:
            errors.append(f"chart name {package.name!r} is present in packages/ but not in index.yaml")

    for chart_name, present in index_names.items():
        if not present:
            errors.append(f"chart name {chart_name!r} is present in index.yaml but not in packages/")
    return errors


def validate_index_and_package_names_match(paths: Paths) -> list[str]:
    try:
        index = IndexFile.load(paths.index_yaml)
    except (FileNotFoundError, PartnerChartsException) as e:
        return [f"failed to read index.yaml: {e}"]
    return match_package_names(index, list_package_wrappers(paths))


def validate_packages_directory(paths: Paths) -> list[str]:
    """Check the shape of packages/.

    packages/ and packages/<vendor> may hold only directories, and a package
    directory only upstream.yaml and an overlay directory.
    """
    errors = []
    for pattern in ("*", "*/*"):
        for match in sorted(paths.packages.glob(pattern)):
            if not match.is_dir():
                errors.append(f"{match.parent} may contain only directories, but {match} is not a directory")

    for match in sorted(paths.packages.glob("*/*/*")):
        if match.name == UPSTREAM_YAML:
            if match.is_dir():
                errors.append(f"{match} must be a file")
        elif match.name == OVERLAY_DIR:
            if not match.is_dir():
                errors.append(f"{match} must be a directory")
        else:
            errors.append(
                f"only {UPSTREAM_YAML} and {OVERLAY_DIR} directory may exist in package directories but found {match}"
            )
    return errors


def run_validations(paths: Paths, repo_config: RepositoryConfig | None = None) -> list[str]:
    """Run every repository check and collect their errors.

    Args:
        paths: Repository layout
        repo_config: Repository configuration; read from configuration.yaml
            if not given

    Raises:
        ConfigurationError: If configuration.yaml is missing or invalid
    """
    if repo_config is None:
        repo_config = RepositoryConfig.from_yaml(paths.configuration_yaml)

    checks: list[Callable[[], list[str]]] = [
        lambda: prevent_released_chart_modifications(paths, repo_config),
        lambda: validate_packages_directory(paths),
        lambda: prevent_duplicate_package_names(paths),
        lambda: validate_index_and_package_names_match(paths),
        lambda: validate_icons(paths),
    ]
    errors = []
    for check in checks:
        errors.extend(check())
    return errors

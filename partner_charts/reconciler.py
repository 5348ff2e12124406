"""Reconciliation runs: bringing the repository up to date with upstreams."""

import fnmatch
import logging
import shutil
from datetime import datetime, timedelta, timezone

import requests

from .chart_loader import export_chart_directory, extract_archive, load_archive, save
from .conform import (
    ANNOTATION_FEATURED,
    ANNOTATION_HIDDEN,
    apply_chart_annotations,
    remove_chart_annotations,
)
from .exceptions import (
    AllPackagesFailedError,
    NoEligibleVersionsError,
    PartnerChartsException,
)
from .git_repo import commit_changes
from .icons import IconStore
from .index_file import IndexFile, get_stored_versions, index_directory
from .integrator import FeaturedPlacement, integrate_charts
from .models import ChartVersion, ChartWrapper
from .package import PackageWrapper, list_package_wrappers
from .paths import ASSETS_DIR, CHARTS_DIR, ICONS_DIR, INDEX_FILE, PACKAGES_DIR, Paths
from .upstream import UpstreamClient

logger = logging.getLogger(__name__)

FEATURED_MAX = 5

# Errors that cost a single package its update without stopping the run
PACKAGE_ERRORS = (PartnerChartsException, requests.RequestException, OSError, ValueError)


class Reconciler:
    """Updates a partner charts repository from its packages' upstreams."""

    def __init__(
        self,
        paths: Paths,
        client: UpstreamClient | None = None,
        icon_store: IconStore | None = None,
        placement: FeaturedPlacement = FeaturedPlacement.LAST_NEW,
    ):
        """Initialize the reconciler.

        Args:
            paths: Repository layout
            client: Upstream client
            icon_store: Local icon storage
            placement: Which new chart receives the featured annotation
        """
        self.paths = paths
        self.client = client or UpstreamClient()
        self.icon_store = icon_store or IconStore(paths)
        self.placement = placement

    def load_existing_charts(self, vendor: str, package_name: str) -> list[ChartWrapper]:
        """Load every stored archive of a package from assets/<vendor>."""
        assets_dir = self.paths.assets / vendor
        if not assets_dir.is_dir():
            return []

        existing = []
        for tgz_path in sorted(assets_dir.iterdir()):
            if not tgz_path.is_file() or not fnmatch.fnmatch(tgz_path.name, f"{package_name}-*.tgz"):
                continue
            chart = load_archive(tgz_path)
            if chart.name != package_name:
                logger.debug(f"Skipping {tgz_path}, it holds chart {chart.name}")
                continue
            existing.append(ChartWrapper(chart))
        return existing

    def write_charts(self, package: PackageWrapper, chart_wrappers: list[ChartWrapper]) -> None:
        """Persist charts as archives under assets/ and unpacked under charts/.

        Charts that are unmodified and already on disk are not rewritten.
        """
        charts_dir = self.paths.charts / package.vendor / package.name
        assets_dir = self.paths.assets / package.vendor

        shutil.rmtree(charts_dir, ignore_errors=True)

        for wrapper in chart_wrappers:
            assets_path = assets_dir / wrapper.chart.tgz_filename()
            if wrapper.modified or not assets_path.exists():
                save(wrapper.chart, assets_dir)

            chart_path = charts_dir / wrapper.version
            if wrapper.modified or not chart_path.exists():
                extract_archive(assets_path, chart_path)

    def apply_updates(self, package: PackageWrapper) -> list[ChartWrapper]:
        """Fetch a package's selected versions and integrate them.

        Returns:
            Every chart of the package after integration

        Raises:
            PartnerChartsException: If fetching or integrating fails
        """
        logger.debug(f"Applying updates for package {package.full_name}")
        existing_charts = self.load_existing_charts(package.vendor, package.name)

        new_charts = []
        for chart_version in package.fetch_versions:
            chart = self.client.load_chart(package.source_metadata, chart_version)
            chart.metadata.version = chart_version.version
            new_charts.append(ChartWrapper(chart))

        all_charts = integrate_charts(package, existing_charts, new_charts, self.icon_store, self.placement)
        self.write_charts(package, all_charts)
        return all_charts

    def populate_packages(
        self, current_package: str = "", only_updates: bool = False, print_versions: bool = False
    ) -> list[PackageWrapper]:
        """List packages and check their upstreams for new versions.

        Packages whose upstream fails are logged and left out.

        Args:
            current_package: Restrict to one <vendor>/<name> package
            only_updates: Leave out packages without new versions
            print_versions: Log the versions selected for each package
        """
        populated = []
        for package in list_package_wrappers(self.paths, current_package):
            logger.debug(f"Populating package from {package.path}")
            try:
                updated = package.populate(self.client, self.paths)
            except NoEligibleVersionsError as e:
                logger.warning(str(e))
                continue
            except PACKAGE_ERRORS as e:
                logger.error(f"failed to populate {package.full_name}: {e}")
                continue

            if print_versions:
                logger.info(f"Parsed {package.full_name}")
                if not package.fetch_versions:
                    logger.info(f"{package.display_vendor} ({package.name}) is up-to-date")
                for version in package.fetch_versions:
                    logger.info(
                        f"Source: {package.source_metadata.source} Vendor: {package.display_vendor} "
                        f"Chart: {package.name} Version: {version.version} URL: {version.urls[0] if version.urls else ''}"
                    )

            if only_updates and not updated:
                continue
            populated.append(package)
        return populated

    def write_index(self) -> None:
        """Regenerate index.yaml from the charts in assets/.

        Created timestamps of versions already in the old index are kept,
        and each version's icon points at its package's stored icon.
        """
        new_index = index_directory(self.paths.assets, ASSETS_DIR)

        try:
            old_index = IndexFile.load(self.paths.index_yaml)
        except FileNotFoundError:
            old_index = None

        for chart_name, chart_versions in new_index.entries.items():
            for chart_version in chart_versions:
                if old_index is not None:
                    old_version = old_index.get(chart_name, chart_version.version)
                    if old_version is not None and old_version.created:
                        chart_version.created = old_version.created

                # Older charts may still carry remote icon URLs in Chart.yaml;
                # Rancher reads the icon from index.yaml.
                try:
                    chart_version.metadata.icon = self.icon_store.get_icon_url(chart_name)
                except FileNotFoundError as e:
                    logger.error(
                        f"failed to get downloaded icon path for chart {chart_name!r} "
                        f"version {chart_version.version!r}: {e}"
                    )

        new_index.sort_entries()
        new_index.write(self.paths.index_yaml)

    def generate_changes(self, auto: bool = False, current_package: str = "") -> list[PackageWrapper]:
        """Update every package with new upstream versions.

        Args:
            auto: Commit the changes
            current_package: Restrict to one <vendor>/<name> package

        Returns:
            The packages that were updated

        Raises:
            AllPackagesFailedError: If every package with updates failed
        """
        packages = self.populate_packages(current_package, only_updates=True, print_versions=True)
        if not packages:
            logger.info("No updates available")
            return []

        skipped = []
        updated = []
        for package in packages:
            try:
                self.apply_updates(package)
            except PACKAGE_ERRORS as e:
                logger.error(f"failed to apply updates for chart {package.name!r}: {e}")
                skipped.append(package.name)
            else:
                updated.append(package)

        if skipped:
            logger.error(f"Skipped due to error: {', '.join(skipped)}")
        if len(skipped) >= len(packages):
            raise AllPackagesFailedError(skipped)

        self.write_index()

        if auto:
            self.commit(updated)
        return updated

    def commit(self, packages: list[PackageWrapper]) -> str:
        """Commit the changes made for packages, returning the new commit hash."""
        paths = [INDEX_FILE, f"{ASSETS_DIR}/{ICONS_DIR}"]
        for package in packages:
            paths.append(f"{ASSETS_DIR}/{package.vendor}")
            paths.append(f"{CHARTS_DIR}/{package.vendor}/{package.name}")
            paths.append(f"{PACKAGES_DIR}/{package.vendor}/{package.name}")
        return commit_changes(self.paths.repo_root, paths, build_commit_message(packages))

    def _stored_versions(self, chart_name: str) -> list[ChartVersion]:
        return get_stored_versions(self.paths.index_yaml, chart_name)

    def annotate(
        self,
        package: PackageWrapper,
        annotation: str,
        value: str,
        remove: bool = False,
        only_latest: bool = False,
    ) -> int:
        """Add or remove an annotation on a package's stored chart versions.

        Changed charts are rewritten in assets/ and charts/. The caller is
        responsible for rewriting index.yaml afterwards.

        Args:
            package: Package whose charts to change
            annotation: Annotation key
            value: Annotation value; when removing, only this value is
                removed unless it is empty
            remove: Remove instead of add
            only_latest: Change only the newest stored version

        Returns:
            Number of chart versions changed

        Raises:
            PartnerChartsException: If the package has no stored versions
        """
        stored_versions = self._stored_versions(package.name)
        if not stored_versions:
            raise PartnerChartsException(f"no stored versions of {package.name} in {INDEX_FILE}")
        if only_latest:
            stored_versions = stored_versions[:1]

        changed = 0
        for stored_version in stored_versions:
            if not stored_version.urls:
                logger.error(f"{package.name} version {stored_version.version} has no URL")
                continue
            chart = load_archive(self.paths.repo_root / stored_version.urls[0])

            if remove:
                modified = remove_chart_annotations(chart, {annotation: value})
            else:
                modified = apply_chart_annotations(chart, {annotation: value}, override=True)
            if not modified:
                continue

            logger.debug(f"Modified annotations of {package.name} ({chart.version})")
            save(chart, self.paths.assets / package.vendor)
            export_chart_directory(chart, self.paths.charts / package.vendor / package.name / chart.version)
            changed += 1
        return changed

    def get_by_annotation(self, annotation: str, value: str = "") -> dict[str, list[ChartVersion]]:
        """Find stored chart versions carrying an annotation.

        If value is empty every version with the annotation matches,
        whatever its value.
        """
        try:
            index = IndexFile.load(self.paths.index_yaml)
        except FileNotFoundError:
            return {}

        matched: dict[str, list[ChartVersion]] = {}
        for chart_name, chart_versions in index.entries.items():
            for chart_version in chart_versions:
                if annotation not in chart_version.annotations:
                    continue
                if value and chart_version.annotations[annotation] != value:
                    continue
                matched.setdefault(chart_name, []).append(chart_version)
        return matched

    def hide(self, current_package: str) -> None:
        """Hide every stored version of a package in the Rancher UI."""
        package = list_package_wrappers(self.paths, current_package)[0]
        self.annotate(package, ANNOTATION_HIDDEN, "true")
        self.write_index()

    def list_featured(self) -> dict[int, list[str]]:
        """Map each featured slot to the charts occupying it.

        Raises:
            PartnerChartsException: If a featured value is not a valid slot
        """
        featured: dict[int, list[str]] = {}
        for chart_name, chart_versions in sorted(self.get_by_annotation(ANNOTATION_FEATURED).items()):
            raw_value = chart_versions[0].annotations[ANNOTATION_FEATURED]
            try:
                slot = int(raw_value)
            except ValueError as e:
                raise PartnerChartsException(
                    f"{chart_name} has invalid featured value {raw_value!r}"
                ) from e
            featured.setdefault(slot, []).append(chart_name)

        if any(len(names) > 1 for names in featured.values()):
            logger.error("Multiple charts given same featured index")
        return featured

    def add_featured(self, current_package: str, slot: int) -> None:
        """Feature the newest version of a package in the given slot.

        Raises:
            PartnerChartsException: If slot is out of range or already taken
        """
        if not 1 <= slot <= FEATURED_MAX:
            raise PartnerChartsException(f"Featured number must be between 1 and {FEATURED_MAX}")

        taken = self.get_by_annotation(ANNOTATION_FEATURED, str(slot))
        if taken:
            raise PartnerChartsException(f"{', '.join(sorted(taken))} already featured at index {slot}")

        package = list_package_wrappers(self.paths, current_package)[0]
        self.annotate(package, ANNOTATION_FEATURED, str(slot), only_latest=True)
        self.write_index()

    def remove_featured(self, current_package: str) -> None:
        """Remove the featured annotation from every version of a package."""
        package = list_package_wrappers(self.paths, current_package)[0]
        self.annotate(package, ANNOTATION_FEATURED, "", remove=True)
        self.write_index()

    def cull_charts(self, chart_name: str, days: int, now: datetime | None = None) -> list[ChartVersion]:
        """Remove stored versions of a chart created more than days ago.

        Their archives are deleted and index.yaml is rewritten without them.

        Returns:
            The removed versions

        Raises:
            PartnerChartsException: If the chart is not in index.yaml
        """
        index = IndexFile.load(self.paths.index_yaml)
        if chart_name not in index.entries:
            raise PartnerChartsException(f"chart {chart_name!r} not present in {INDEX_FILE}")

        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        newer, older = [], []
        for chart_version in index.entries[chart_name]:
            created = chart_version.created_at
            if created is not None and created > cutoff:
                newer.append(chart_version)
            else:
                older.append(chart_version)

        for chart_version in older:
            for url in chart_version.urls:
                logger.info(f"Removing {url}")
                (self.paths.repo_root / url).unlink()

        index.entries[chart_name] = newer
        index.write(self.paths.index_yaml)
        return older


def build_commit_message(packages: list[PackageWrapper]) -> str:
    """Describe added and updated packages, sorted by vendor then name."""
    additions = ""
    updates = ""
    for package in sorted(packages, key=lambda p: p.sort_key):
        line_item = f"  {package.vendor}/{package.name}:\n"
        for version in package.fetch_versions:
            line_item += f"    - {version.version}\n"
        if package.is_new:
            additions += line_item
        else:
            updates += line_item

    message = "Charts CI\n```"
    if additions:
        message += f"\nAdded:\n{additions}"
    if updates:
        message += f"\nUpdated:\n{updates}"
    message += "```"
    return message

"""Integration of newly fetched charts with a package's existing charts.

New charts get the package's overlay files, metadata overlay, Rancher
annotations, package version and a local icon. Existing charts are never
changed except for moving the featured annotation onto a new chart.
"""

import enum
import logging
from collections.abc import Sequence

from .conform import (
    ANNOTATION_AUTO_INSTALL,
    ANNOTATION_CERTIFIED,
    ANNOTATION_DISPLAY_NAME,
    ANNOTATION_EXPERIMENTAL,
    ANNOTATION_FEATURED,
    ANNOTATION_HIDDEN,
    ANNOTATION_KUBE_VERSION,
    ANNOTATION_NAMESPACE,
    ANNOTATION_RELEASE_NAME,
    annotate_chart,
    apply_chart_annotations,
    deannotate_chart,
    generate_package_version,
    overlay_chart_metadata,
)
from .exceptions import FeaturedAnnotationConflict
from .icons import ICON_URL_PREFIX, IconStore
from .models import Chart, ChartFile, ChartWrapper
from .package import PackageWrapper
from .utils import version_sort_key

logger = logging.getLogger(__name__)


class FeaturedPlacement(enum.Enum):
    """Which new chart receives the featured annotation."""

    # The last chart in the list of new charts
    LAST_NEW = "last-new"
    # The new chart with the highest version
    HIGHEST_VERSION = "highest-version"


def apply_overlay_files(overlay_files: dict[str, bytes], chart: Chart) -> None:
    """Add overlay files to a chart, replacing files at the same path."""
    for relative_path, contents in overlay_files.items():
        existing = chart.get_file(relative_path)
        if existing is not None:
            logger.debug(f"Replacing {relative_path} with overlay file")
            existing.data = contents
        else:
            chart.files.append(ChartFile(name=relative_path, data=contents))


def add_annotations(package: PackageWrapper, chart: Chart) -> bool:
    """Set the Rancher annotations and package version on a new chart.

    Annotations already present on the chart are kept.

    Returns:
        True if any annotation was added

    Raises:
        PackageVersionError: If the package version cannot be applied
    """
    upstream = package.upstream
    annotations: dict[str, str] = {}

    if upstream.auto_install:
        annotations[ANNOTATION_AUTO_INSTALL] = upstream.auto_install
    if upstream.experimental:
        annotations[ANNOTATION_EXPERIMENTAL] = "true"
    if upstream.hidden:
        annotations[ANNOTATION_HIDDEN] = "true"

    if not upstream.remote_dependencies:
        for dependency in chart.metadata.dependencies or []:
            dependency["repository"] = f"file://./charts/{dependency.get('name', '')}"

    annotations[ANNOTATION_CERTIFIED] = "partner"
    annotations[ANNOTATION_DISPLAY_NAME] = package.display_name
    annotations[ANNOTATION_RELEASE_NAME] = upstream.release_name or package.name

    if upstream.namespace:
        annotations[ANNOTATION_NAMESPACE] = upstream.namespace

    kube_version = upstream.chart_metadata.kube_version or chart.metadata.kube_version
    if kube_version:
        annotations[ANNOTATION_KUBE_VERSION] = kube_version

    if upstream.package_version:
        chart.metadata.version = generate_package_version(chart.metadata.version, upstream.package_version)

    return apply_chart_annotations(chart, annotations, override=False)


def ensure_icon(package: PackageWrapper, chart: Chart, icon_store: IconStore) -> None:
    """Point a chart's icon at the package's locally stored icon.

    The icon is downloaded from the chart's current icon URL if the package
    has none stored yet.
    """
    try:
        chart.metadata.icon = icon_store.get_icon_url(package.name)
        return
    except FileNotFoundError:
        pass

    local_icon_path = icon_store.ensure_icon_downloaded(chart.metadata.icon, package.name)
    chart.metadata.icon = ICON_URL_PREFIX + local_icon_path


def _select_featured_chart(new_charts: Sequence[ChartWrapper], placement: FeaturedPlacement) -> ChartWrapper:
    if placement is FeaturedPlacement.HIGHEST_VERSION:
        return max(new_charts, key=lambda c: version_sort_key(c.version))
    return new_charts[-1]


def ensure_featured_annotation(
    existing_charts: Sequence[ChartWrapper],
    new_charts: Sequence[ChartWrapper],
    placement: FeaturedPlacement = FeaturedPlacement.LAST_NEW,
) -> None:
    """Move the package's featured annotation onto a new chart.

    At most one version of a package may be featured. If an existing chart
    is featured, the chart chosen by placement gets the annotation and the
    existing charts lose it.

    Raises:
        FeaturedAnnotationConflict: If existing charts carry different
            featured values
    """
    featured_value = ""
    for existing_chart in existing_charts:
        value = (existing_chart.chart.metadata.annotations or {}).get(ANNOTATION_FEATURED)
        if value is None:
            continue
        if featured_value and featured_value != value:
            raise FeaturedAnnotationConflict(featured_value, value)
        featured_value = value

    if not featured_value or not new_charts:
        return

    featured_chart = _select_featured_chart(new_charts, placement)
    if annotate_chart(featured_chart.chart, ANNOTATION_FEATURED, featured_value, override=True):
        featured_chart.modified = True

    for existing_chart in existing_charts:
        if deannotate_chart(existing_chart.chart, ANNOTATION_FEATURED):
            existing_chart.modified = True


def integrate_charts(
    package: PackageWrapper,
    existing_charts: Sequence[ChartWrapper],
    new_charts: Sequence[ChartWrapper],
    icon_store: IconStore,
    placement: FeaturedPlacement = FeaturedPlacement.LAST_NEW,
) -> list[ChartWrapper]:
    """Apply package policy to new charts and reconcile them with existing ones.

    Args:
        package: Package the charts belong to
        existing_charts: Charts already in the repository
        new_charts: Charts freshly fetched from upstream
        icon_store: Local icon storage
        placement: Which new chart receives the featured annotation

    Returns:
        Existing charts followed by new charts, each with its modified flag

    Raises:
        PartnerChartsException: If a new chart cannot be conformed
        requests.RequestException: If an icon download fails
    """
    overlay_files = package.get_overlay_files()

    for new_chart in new_charts:
        chart = new_chart.chart
        apply_overlay_files(overlay_files, chart)
        overlay_chart_metadata(chart, package.upstream.chart_metadata)
        if package.upstream.deprecated:
            chart.metadata.deprecated = True
        add_annotations(package, chart)
        ensure_icon(package, chart, icon_store)
        new_chart.modified = True

    ensure_featured_annotation(existing_charts, new_charts, placement)

    return list(existing_charts) + list(new_charts)

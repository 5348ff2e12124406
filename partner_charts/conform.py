"""Chart metadata conformance: annotations, metadata overlays and package versions."""

import copy
import logging

from .exceptions import PackageVersionError
from .models import Chart, ChartMetadata
from .utils import SemVer, parse_version

logger = logging.getLogger(__name__)

# Patch numbers of charts with a package version are multiplied by this
PATCH_NUM_MULTIPLIER = 100

RANCHER_ANNOTATION_PREFIX = "catalog.cattle.io"

ANNOTATION_AUTO_INSTALL = "catalog.cattle.io/auto-install"
ANNOTATION_CERTIFIED = "catalog.cattle.io/certified"
ANNOTATION_DISPLAY_NAME = "catalog.cattle.io/display-name"
ANNOTATION_EXPERIMENTAL = "catalog.cattle.io/experimental"
ANNOTATION_FEATURED = "catalog.cattle.io/featured"
ANNOTATION_HIDDEN = "catalog.cattle.io/hidden"
ANNOTATION_KUBE_VERSION = "catalog.cattle.io/kube-version"
ANNOTATION_NAMESPACE = "catalog.cattle.io/namespace"
ANNOTATION_RELEASE_NAME = "catalog.cattle.io/release-name"


def annotate_chart(chart: Chart, annotation: str, value: str, override: bool) -> bool:
    """Set an annotation on a chart.

    Args:
        chart: Chart to annotate
        annotation: Annotation key
        value: Annotation value
        override: Whether to replace an existing, different value

    Returns:
        True if the chart's annotations changed
    """
    if chart.metadata.annotations is None:
        chart.metadata.annotations = {}
    annotations = chart.metadata.annotations

    current = annotations.get(annotation)
    if current is None or (current != value and override):
        logger.debug(f"Adding annotation '{annotation}: {value}' to {chart.name} ({chart.version})")
        annotations[annotation] = value
        return True
    return False


def deannotate_chart(chart: Chart, annotation: str, value: str = "") -> bool:
    """Remove an annotation from a chart.

    If value is non-empty the annotation is only removed when it holds
    that value. Returns True if the annotation was removed.
    """
    annotations = chart.metadata.annotations
    if not annotations or annotation not in annotations:
        return False
    if value and annotations[annotation] != value:
        return False

    logger.debug(f"Removing annotation '{annotation}' from {chart.name} ({chart.version})")
    del annotations[annotation]
    return True


def apply_chart_annotations(chart: Chart, annotations: dict[str, str], override: bool) -> bool:
    """Apply several annotations, returning True if any of them changed the chart."""
    modified = False
    for annotation, value in annotations.items():
        if annotate_chart(chart, annotation, value, override):
            modified = True
    return modified


def remove_chart_annotations(chart: Chart, annotations: dict[str, str]) -> bool:
    """Remove several annotations, returning True if any of them were removed."""
    modified = False
    for annotation, value in annotations.items():
        if deannotate_chart(chart, annotation, value):
            modified = True
    return modified


def strip_rancher_annotations(chart: Chart) -> None:
    """Drop every annotation in the catalog.cattle.io namespace."""
    if not chart.metadata.annotations:
        return
    for annotation in list(chart.metadata.annotations):
        if annotation.startswith(RANCHER_ANNOTATION_PREFIX):
            del chart.metadata.annotations[annotation]


def overlay_chart_metadata(chart: Chart, overlay: ChartMetadata) -> None:
    """Merge an overlay into a chart's metadata.

    Non-empty scalar fields of the overlay replace the chart's, list fields
    are appended, deprecated can only be switched on, and annotations are
    merged with the overlay winning. The overlay's kubeVersion is not
    copied; it is surfaced through the kube-version annotation instead.
    """
    metadata = chart.metadata

    for attr in (
        "name",
        "home",
        "version",
        "description",
        "icon",
        "api_version",
        "condition",
        "tags",
        "app_version",
        "type",
    ):
        value = getattr(overlay, attr)
        if value:
            setattr(metadata, attr, value)

    for attr in ("sources", "keywords", "maintainers", "dependencies"):
        value = getattr(overlay, attr)
        if value is not None:
            current = getattr(metadata, attr) or []
            setattr(metadata, attr, current + copy.deepcopy(value))

    if overlay.deprecated:
        metadata.deprecated = True

    if overlay.annotations:
        for annotation, value in overlay.annotations.items():
            annotate_chart(chart, annotation, value, override=True)


def generate_package_version(upstream_version: str, package_version: int | None) -> str:
    """Encode a package version into the patch number of a chart version.

    Args:
        upstream_version: Version reported by the upstream
        package_version: Repository local revision of that version, or None

    Returns:
        The normalized version string, with patch set to
        upstream_patch * 100 + package_version when a package version is given

    Raises:
        PackageVersionError: If the version cannot be parsed or the package
            version is out of range

    Examples:
        >>> generate_package_version("1.4.2", 3)
        '1.4.203'
    """
    try:
        version = SemVer.parse(upstream_version)
    except ValueError as e:
        raise PackageVersionError(str(e)) from e

    if package_version is None:
        return str(version)

    if not 0 <= package_version < PATCH_NUM_MULTIPLIER:
        raise PackageVersionError(
            f"package version {package_version} must be between 0 and {PATCH_NUM_MULTIPLIER - 1}"
        )

    return str(version.with_patch(version.patch * PATCH_NUM_MULTIPLIER + package_version))


def strip_package_version(chart_version: str) -> str:
    """Recover the upstream version from a version with an encoded package version.

    Versions whose patch number is below 100 carry no package version and are
    only normalized. Unparseable versions are returned unchanged.
    """
    version = parse_version(chart_version)
    if version is None:
        logger.error(f"Cannot strip package version from invalid version {chart_version!r}")
        return chart_version

    if version.patch >= PATCH_NUM_MULTIPLIER:
        version = version.with_patch(version.patch // PATCH_NUM_MULTIPLIER)
    return str(version)

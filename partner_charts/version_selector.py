"""Selection of the upstream chart versions a package needs to fetch.

Every function here is pure: given the same upstream versions, stored
versions and policy it returns the same selection. Version lists are
expected newest first, as Helm repository indexes are sorted.
"""

import logging
from collections.abc import Sequence

from .config_manager import FETCH_ALL, FETCH_LATEST, FETCH_NEWER
from .conform import strip_package_version
from .exceptions import NoEligibleVersionsError, UpstreamError
from .models import ChartVersion
from .utils import SemVer, parse_version, version_sort_key

logger = logging.getLogger(__name__)


def strip_pre_release(versions: Sequence[ChartVersion]) -> list[ChartVersion]:
    """Drop pre-release and unparseable versions, keeping order."""
    stripped = []
    for version in versions:
        parsed = parse_version(version.version)
        if parsed is None:
            logger.error(f"Ignoring invalid version {version.version!r} of {version.name}")
            continue
        if not parsed.prerelease:
            stripped.append(version)
    return stripped


def _parse_tracked(tracked: Sequence[str]) -> list[tuple[str, SemVer]]:
    streams = []
    for stream in tracked:
        parsed = parse_version(stream)
        if parsed is None:
            logger.error(f"Ignoring invalid tracked version {stream!r}")
            continue
        streams.append((stream, parsed))
    return streams


def latest_tracked(tracked: Sequence[str]) -> SemVer | None:
    """Return the highest tracked release stream, or None if there is none."""
    streams = [parsed for _, parsed in _parse_tracked(tracked)]
    return max(streams) if streams else None


def check_newer_untracked(tracked: Sequence[str], versions: Sequence[ChartVersion]) -> list[str]:
    """List upstream versions from release streams above every tracked stream.

    The scan stops at the first version of the highest tracked stream.
    """
    latest = latest_tracked(tracked)
    if latest is None:
        return []

    logger.debug(f"Checking for versions newer than latest tracked {latest.major}.{latest.minor}")
    newer_untracked = []
    for version in versions:
        parsed = parse_version(version.version)
        if parsed is None:
            continue
        if latest.stream_before(parsed):
            newer_untracked.append(str(parsed))
        elif parsed.same_stream(latest):
            break
    return newer_untracked


def ensure_descending(versions: Sequence[ChartVersion]) -> None:
    """Check that versions are sorted newest first.

    Raises:
        UpstreamError: If a version is newer than the one before it
    """
    previous: SemVer | None = None
    for version in versions:
        parsed = parse_version(version.version)
        if parsed is None:
            continue
        if previous is not None and previous < parsed:
            raise UpstreamError(
                f"versions of {version.name} are not sorted newest first: "
                f"{previous} comes before {parsed}"
            )
        previous = parsed


def collect_tracked_versions(
    versions: Sequence[ChartVersion], tracked: Sequence[str]
) -> dict[str, list[ChartVersion]]:
    """Partition versions by tracked major.minor release stream.

    Each stream's scan stops at the first version from an older stream.

    Args:
        versions: Versions sorted newest first
        tracked: Tracked streams such as "1.2"

    Returns:
        Map of each tracked stream to its versions, newest first

    Raises:
        UpstreamError: If versions are not sorted newest first
    """
    ensure_descending(versions)

    tracked_versions: dict[str, list[ChartVersion]] = {}
    for stream, stream_version in _parse_tracked(tracked):
        bucket = []
        for version in versions:
            parsed = parse_version(version.version)
            if parsed is None:
                logger.error(f"Ignoring invalid version {version.version!r}")
                continue
            if parsed.same_stream(stream_version):
                logger.debug(f"Appending version {version.version} tracking {stream}")
                bucket.append(version)
            elif parsed.stream_before(stream_version):
                break
        tracked_versions[stream] = bucket
    return tracked_versions


def is_stored(version: str, stored_versions: Sequence[ChartVersion]) -> bool:
    """Whether an upstream version is already in the repository.

    A stored version matches if it equals the upstream version or if it does
    once its package version is stripped.
    """
    for stored in stored_versions:
        if stored.version == version:
            logger.debug(f"Found version {stored.version}")
            return True
        if strip_package_version(stored.version) == version:
            logger.debug(f"Found modified version {stored.version}")
            return True
    return False


def _newest_stored(stored_versions: Sequence[ChartVersion]) -> SemVer | None:
    parsed = [parse_version(strip_package_version(v.version)) for v in stored_versions]
    parsed = [v for v in parsed if v is not None]
    return max(parsed) if parsed else None


def collect_non_stored_versions(
    versions: Sequence[ChartVersion],
    stored_versions: Sequence[ChartVersion],
    fetch: str,
) -> list[ChartVersion]:
    """Select the versions to fetch according to a fetch mode.

    Args:
        versions: Upstream versions, newest first, without pre-releases
        stored_versions: Versions already in the repository
        fetch: "latest" (or empty), "newer" or "all"

    Returns:
        The selected versions, newest first
    """
    fetch = (fetch or FETCH_LATEST).lower()
    newest_stored = _newest_stored(stored_versions) if fetch == FETCH_NEWER else None

    selected = []
    for i, version in enumerate(versions):
        parsed = parse_version(version.version)
        if parsed is None:
            logger.error(f"Ignoring invalid version {version.version!r}")
            continue

        logger.debug(f"Checking if version {version.version} is stored")
        stored = is_stored(str(parsed), stored_versions)

        if fetch in (FETCH_NEWER, FETCH_ALL):
            if stored:
                continue
            if fetch == FETCH_NEWER and newest_stored is not None and not parsed > newest_stored:
                continue
            selected.append(version)
        else:
            if stored:
                if i == 0:
                    logger.debug("Latest version already stored")
                    break
                continue
            selected.append(version)
            break

    return selected


def filter_versions(
    upstream_versions: Sequence[ChartVersion],
    stored_versions: Sequence[ChartVersion],
    fetch: str,
    tracked: Sequence[str] = (),
) -> list[ChartVersion]:
    """Compute the versions a package must fetch from its upstream.

    Args:
        upstream_versions: Versions offered by the upstream, newest first
        stored_versions: Versions already in the repository, in any order
        fetch: Fetch mode
        tracked: major.minor release streams selected independently

    Returns:
        Selected versions: per tracked stream in the order the streams are
        listed, newest first within each

    Raises:
        NoEligibleVersionsError: If the upstream has no release versions
        UpstreamError: If a tracked version list is not sorted newest first
    """
    name = upstream_versions[0].name if upstream_versions else "unknown chart"
    logger.debug(f"Filtering versions for {name}")

    eligible = strip_pre_release(upstream_versions)
    if tracked:
        newer_untracked = check_newer_untracked(tracked, eligible)
        if newer_untracked:
            logger.warning(f"Newer untracked version available: {name} ({', '.join(newer_untracked)})")
        else:
            logger.debug("No newer untracked versions found")

    if not eligible:
        raise NoEligibleVersionsError(
            f"{name}: no versions available in upstream or all versions are marked pre-release"
        )

    if not tracked:
        return collect_non_stored_versions(eligible, stored_versions, fetch)

    upstream_by_stream = collect_tracked_versions(eligible, tracked)
    # Stored versions come from index.yaml in any order
    stored_sorted = sorted(stored_versions, key=lambda v: version_sort_key(v.version), reverse=True)
    stored_by_stream = collect_tracked_versions(stored_sorted, tracked)
    selected = []
    for stream in upstream_by_stream:
        selected.extend(
            collect_non_stored_versions(upstream_by_stream[stream], stored_by_stream.get(stream, []), fetch)
        )
    return selected

"""Exceptions raised by the partner charts reconciler."""

__all__ = [
    "PartnerChartsException",
    "ConfigurationError",
    "UpstreamError",
    "NoEligibleVersionsError",
    "PackageVersionError",
    "FeaturedAnnotationConflict",
    "ChartLoadError",
    "ValidationError",
    "AllPackagesFailedError",
]


class PartnerChartsException(Exception):
    """Generic base exception used for this library."""


class ConfigurationError(PartnerChartsException):
    """Raised when upstream.yaml or configuration.yaml is malformed."""


class UpstreamError(PartnerChartsException):
    """Raised when an upstream cannot be fetched or returns unusable data."""


class NoEligibleVersionsError(UpstreamError):
    """Raised when an upstream has no release versions left to consider."""


class PackageVersionError(PartnerChartsException):
    """Raised when a package version cannot be encoded into a chart version."""


class FeaturedAnnotationConflict(PartnerChartsException):
    """Raised when existing charts carry different featured annotation values."""

    def __init__(self, first_value: str, second_value: str) -> None:
        super().__init__(
            f"found two different values for featured annotation "
            f"{first_value!r} and {second_value!r}"
        )
        self.first_value = first_value
        self.second_value = second_value


class ChartLoadError(PartnerChartsException):
    """Raised when a chart archive or directory cannot be loaded."""


class ValidationError(PartnerChartsException):
    """Raised when the repository fails validation."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            f"validation failed with {len(errors)} error(s):\n - "
            + "\n - ".join(errors)
        )
        self.errors = errors


class AllPackagesFailedError(PartnerChartsException):
    """Raised when every package in a run failed to update."""

    def __init__(self, skipped: list[str]) -> None:
        super().__init__(f"All packages skipped: {', '.join(skipped)}")
        self.skipped = skipped

"""Utility functions for working with chart versions."""

import re
from dataclasses import dataclass
from functools import total_ordering

# Lenient semantic version grammar accepted by Helm: an optional "v" prefix,
# optional minor and patch numbers, then pre-release and build metadata.
_SEMVER_RE = re.compile(
    r"^v?(?P<major>0|[1-9][0-9]*)"
    r"(?:\.(?P<minor>[0-9]+))?"
    r"(?:\.(?P<patch>[0-9]+))?"
    r"(?:-(?P<prerelease>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)


@total_ordering
@dataclass(frozen=True, eq=False)
class SemVer:
    """A parsed semantic version.

    Ordering follows semver precedence: build metadata is ignored and a
    version with a pre-release sorts before the same version without one.
    """

    major: int
    minor: int
    patch: int
    prerelease: str = ""
    build: str = ""

    @classmethod
    def parse(cls, version: str) -> "SemVer":
        """Parse a version string.

        Args:
            version: Version string such as "1.2.3", "v1.2" or "2.0.0-rc.1"

        Returns:
            The parsed SemVer

        Raises:
            ValueError: If version is not a valid semantic version

        Examples:
            >>> str(SemVer.parse("v1.2"))
            '1.2.0'
            >>> SemVer.parse("1.2.3-beta") < SemVer.parse("1.2.3")
            True
        """
        if not isinstance(version, str):
            raise ValueError(f"Invalid semantic version: {version!r}")
        match = _SEMVER_RE.match(version.strip())
        if match is None:
            raise ValueError(f"Invalid semantic version: {version!r}")
        return cls(
            major=int(match.group("major")),
            minor=int(match.group("minor") or 0),
            patch=int(match.group("patch") or 0),
            prerelease=match.group("prerelease") or "",
            build=match.group("build") or "",
        )

    def with_patch(self, patch: int) -> "SemVer":
        """Return a copy of this version with a different patch number."""
        return SemVer(self.major, self.minor, patch, self.prerelease, self.build)

    def same_stream(self, other: "SemVer") -> bool:
        """Whether both versions share the same major.minor release stream."""
        return (self.major, self.minor) == (other.major, other.minor)

    def stream_before(self, other: "SemVer") -> bool:
        """Whether this version's major.minor is lower than other's."""
        return (self.major, self.minor) < (other.major, other.minor)

    def _precedence_key(self) -> tuple:
        if not self.prerelease:
            pre: tuple = (1,)
        else:
            identifiers = []
            for part in self.prerelease.split("."):
                if part.isdigit():
                    identifiers.append((0, int(part), ""))
                else:
                    identifiers.append((1, 0, part))
            pre = (0, tuple(identifiers))
        return (self.major, self.minor, self.patch, pre)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._precedence_key() == other._precedence_key()

    def __lt__(self, other: "SemVer") -> bool:
        if not isinstance(other, SemVer):
            return NotImplemented
        return self._precedence_key() < other._precedence_key()

    def __hash__(self) -> int:
        return hash(self._precedence_key())

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        if self.build:
            version += f"+{self.build}"
        return version


def parse_version(version: str) -> SemVer | None:
    """Parse a version string, returning None when it is not valid semver.

    Args:
        version: Version string to parse

    Returns:
        The parsed SemVer, or None for unparseable input
    """
    try:
        return SemVer.parse(version)
    except ValueError:
        return None


def version_sort_key(version: str) -> tuple[int, SemVer]:
    """Sort key placing unparseable versions before every valid one."""
    parsed = parse_version(version)
    if parsed is None:
        return (0, SemVer(0, 0, 0))
    return (1, parsed)

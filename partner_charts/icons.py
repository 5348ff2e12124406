"""Local storage of chart icons.

Icons are downloaded once per package into assets/icons so that air-gapped
Rancher installations can show them without reaching the internet.
"""

import logging
from pathlib import PurePosixPath
from urllib.parse import urlparse

import requests

from .http_session import DEFAULT_TIMEOUT, create_session
from .paths import Paths

logger = logging.getLogger(__name__)

ICON_URL_PREFIX = "file://"

# Extensions checked, in order, when looking for an existing icon
VALID_EXTENSIONS = (".png", ".jpg", ".jpeg", ".svg", ".ico", ".gif")
# Extensions a downloaded icon may be stored under
DOWNLOAD_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif", ".svg")


def detect_extension(data: bytes) -> str:
    """Guess an image file extension from its leading bytes.

    Returns:
        ".jpg", ".png", ".gif" or ".svg", or "" if the type is unknown
    """
    if data.startswith(b"\xff\xd8\xff"):
        return ".jpg"
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return ".png"
    if data.startswith((b"GIF87a", b"GIF89a")):
        return ".gif"

    head = data[:512].lstrip().lower()
    if head.startswith(b"\xef\xbb\xbf"):
        head = head[3:].lstrip()
    if head.startswith(b"<svg") or (head.startswith(b"<?xml") and b"<svg" in head):
        return ".svg"
    return ""


def extension_from_url(url: str) -> str:
    """Return the image extension of the URL's path, or "" if it has no supported one."""
    ext = PurePosixPath(urlparse(url).path).suffix.lower()
    return ext if ext in DOWNLOAD_EXTENSIONS else ""


class IconStore:
    """Finds and downloads package icons under the repository's icons directory."""

    def __init__(self, paths: Paths, timeout: int = DEFAULT_TIMEOUT):
        """Initialize the icon store.

        Args:
            paths: Repository layout
            timeout: Request timeout in seconds
        """
        self.paths = paths
        self.timeout = timeout
        self.session = create_session()

    def _relative_icon_path(self, package_name: str, ext: str) -> str:
        return self.paths.relative(self.paths.icons / f"{package_name}{ext}")

    def get_downloaded_icon_path(self, package_name: str) -> str:
        """Return the repository relative path of a package's stored icon.

        Raises:
            FileNotFoundError: If no icon has been stored for the package
        """
        for ext in VALID_EXTENSIONS:
            if (self.paths.icons / f"{package_name}{ext}").is_file():
                return self._relative_icon_path(package_name, ext)
        raise FileNotFoundError(f"no icon found for package {package_name!r}")

    def get_icon_url(self, package_name: str) -> str:
        """Return the file:// URL charts use to refer to a stored icon.

        Raises:
            FileNotFoundError: If no icon has been stored for the package
        """
        return ICON_URL_PREFIX + self.get_downloaded_icon_path(package_name)

    def ensure_icon_downloaded(self, icon_url: str, package_name: str) -> str:
        """Download the icon at icon_url unless the package already has one.

        Args:
            icon_url: Remote icon URL from the chart
            package_name: Package the icon belongs to

        Returns:
            Repository relative path of the stored icon

        Raises:
            requests.RequestException: If the download fails
            ValueError: If icon_url is empty or the image type is unknown
        """
        try:
            return self.get_downloaded_icon_path(package_name)
        except FileNotFoundError:
            pass

        if not icon_url:
            raise ValueError(f"chart for package {package_name!r} has no icon URL")

        logger.info(f"Downloading icon for {package_name} from {icon_url}")
        try:
            response = self.session.get(icon_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            logger.error(f"Failed to download icon from {icon_url}: {e}")
            raise

        ext = extension_from_url(icon_url) or detect_extension(response.content)
        if not ext:
            raise ValueError(f"failed to detect file type of icon {icon_url}")

        icon_path = self.paths.icons / f"{package_name}{ext}"
        icon_path.parent.mkdir(parents=True, exist_ok=True)
        icon_path.write_bytes(response.content)
        logger.info(f"Saved icon for {package_name} at {icon_path}")

        return self._relative_icon_path(package_name, ext)

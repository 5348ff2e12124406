"""Loading and saving Helm chart archives and directories."""

import fnmatch
import io
import logging
import os
import shutil
import tarfile
import tempfile
import time
from pathlib import Path

import yaml

from .exceptions import ChartLoadError
from .models import Chart, ChartFile, ChartMetadata

logger = logging.getLogger(__name__)

CHART_FILE = "Chart.yaml"
HELMIGNORE_FILE = ".helmignore"


def _strip_root(name: str) -> str:
    """Remove the leading chart directory from an archive member name."""
    parts = [part for part in name.replace("\\", "/").split("/") if part not in ("", ".")]
    return "/".join(parts[1:])


def _check_relative(name: str) -> None:
    if name.startswith("/") or ".." in name.split("/"):
        raise ChartLoadError(f"chart contains illegal file path {name!r}")


def _build_chart(files: dict[str, bytes], source: str) -> Chart:
    """Turn a map of chart-relative paths to contents into a Chart."""
    if CHART_FILE not in files:
        raise ChartLoadError(f"{source}: {CHART_FILE} file is missing")

    try:
        raw_metadata = yaml.safe_load(files.pop(CHART_FILE)) or {}
    except yaml.YAMLError as e:
        raise ChartLoadError(f"{source}: cannot parse {CHART_FILE}: {e}") from e
    if not isinstance(raw_metadata, dict):
        raise ChartLoadError(f"{source}: {CHART_FILE} must be a mapping")

    try:
        metadata = ChartMetadata.from_dict(raw_metadata)
    except (AttributeError, TypeError, ValueError) as e:
        raise ChartLoadError(f"{source}: invalid {CHART_FILE}: {e}") from e
    if not metadata.name:
        raise ChartLoadError(f"{source}: chart name is required")

    return Chart(
        metadata=metadata,
        files=[ChartFile(name=name, data=data) for name, data in files.items()],
    )


def load_archive(source: str | Path | bytes) -> Chart:
    """Load a chart from a gzipped tar archive.

    Args:
        source: Path to a .tgz file, or the archive contents

    Returns:
        The loaded Chart

    Raises:
        ChartLoadError: If the archive is unreadable or not a valid chart
    """
    if isinstance(source, bytes):
        data = source
        description = "chart archive"
    else:
        description = str(source)
        try:
            data = Path(source).read_bytes()
        except OSError as e:
            raise ChartLoadError(f"failed to read {description}: {e}") from e

    files: dict[str, bytes] = {}
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            for member in tar:
                if not member.isreg():
                    continue
                name = _strip_root(member.name)
                if not name:
                    continue
                _check_relative(name)
                extracted = tar.extractfile(member)
                if extracted is None:
                    continue
                files[name] = extracted.read()
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ChartLoadError(f"failed to read archive {description}: {e}") from e

    return _build_chart(files, description)


def _read_helmignore(chart_dir: Path) -> list[str]:
    ignore_file = chart_dir / HELMIGNORE_FILE
    if not ignore_file.is_file():
        return []
    patterns = []
    for line in ignore_file.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line.rstrip("/"))
    return patterns


def _is_ignored(relative_path: str, patterns: list[str]) -> bool:
    basename = relative_path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if fnmatch.fnmatch(relative_path, pattern) or fnmatch.fnmatch(basename, pattern):
            return True
    return False


def load_directory(chart_dir: str | Path) -> Chart:
    """Load an unpacked chart directory, honoring its .helmignore file.

    Raises:
        ChartLoadError: If the directory does not hold a valid chart
    """
    root = Path(chart_dir)
    if not root.is_dir():
        raise ChartLoadError(f"{root} is not a directory")

    patterns = _read_helmignore(root)
    files: dict[str, bytes] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        rel_dir = Path(dirpath).relative_to(root).as_posix()
        dirnames[:] = sorted(
            d
            for d in dirnames
            if d != ".git"
            and not _is_ignored(d if rel_dir == "." else f"{rel_dir}/{d}", patterns)
        )
        for filename in sorted(filenames):
            relative_path = filename if rel_dir == "." else f"{rel_dir}/{filename}"
            if _is_ignored(relative_path, patterns):
                continue
            files[relative_path] = (Path(dirpath) / filename).read_bytes()

    return _build_chart(files, str(root))


def load(path: str | Path) -> Chart:
    """Load a chart from either a directory or an archive file."""
    if Path(path).is_dir():
        return load_directory(path)
    return load_archive(path)


def dump_chart_yaml(metadata: ChartMetadata) -> bytes:
    """Serialize chart metadata to Chart.yaml contents."""
    return yaml.safe_dump(metadata.to_dict(), default_flow_style=False, sort_keys=True).encode()


def _add_tar_file(tar: tarfile.TarFile, name: str, data: bytes, mtime: float) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mode = 0o644
    info.mtime = int(mtime)
    tar.addfile(info, io.BytesIO(data))


def save(chart: Chart, dest_dir: str | Path) -> Path:
    """Write chart as <name>-<version>.tgz into dest_dir.

    Args:
        chart: Chart to save
        dest_dir: Directory to write the archive to, created if missing

    Returns:
        Path of the written archive
    """
    dest = Path(dest_dir)
    dest.mkdir(parents=True, exist_ok=True)
    archive_path = dest / chart.tgz_filename()

    now = time.time()
    with tarfile.open(archive_path, "w:gz") as tar:
        _add_tar_file(tar, f"{chart.name}/{CHART_FILE}", dump_chart_yaml(chart.metadata), now)
        for chart_file in chart.files:
            _check_relative(chart_file.name)
            _add_tar_file(tar, f"{chart.name}/{chart_file.name}", chart_file.data, now)

    logger.debug(f"Saved chart {chart.name} ({chart.version}) to {archive_path}")
    return archive_path


def extract_archive(tgz_path: str | Path, out_path: str | Path) -> None:
    """Unpack a chart archive into out_path, dropping the chart's root directory.

    Raises:
        ChartLoadError: If tgz_path is not a .tgz/.gz file or is unreadable
    """
    tgz_path = Path(tgz_path)
    if tgz_path.suffix not in (".tgz", ".gz"):
        raise ChartLoadError(f"expecting file of type .gz or .tgz, got {tgz_path}")

    out = Path(out_path)
    try:
        with tarfile.open(tgz_path, "r:gz") as tar:
            for member in tar:
                name = _strip_root(member.name)
                if not name:
                    continue
                _check_relative(name)
                target = out / name
                if member.isdir():
                    target.mkdir(parents=True, exist_ok=True)
                elif member.isreg():
                    target.parent.mkdir(parents=True, exist_ok=True)
                    extracted = tar.extractfile(member)
                    target.write_bytes(extracted.read() if extracted else b"")
                    target.chmod(member.mode & 0o777 or 0o644)
                else:
                    raise ChartLoadError(f"unknown file type for {member.name}")
    except (tarfile.TarError, OSError, EOFError) as e:
        raise ChartLoadError(f"failed to unpack {tgz_path}: {e}") from e


def export_chart_directory(chart: Chart, target_path: str | Path) -> None:
    """Write chart as an unpacked directory at target_path, replacing it."""
    target = Path(target_path)
    with tempfile.TemporaryDirectory(prefix="chart-dir-") as temp_dir:
        archive_path = save(chart, temp_dir)
        unpacked = Path(temp_dir) / "unpacked"
        extract_archive(archive_path, unpacked)

        shutil.rmtree(target, ignore_errors=True)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(unpacked), str(target))

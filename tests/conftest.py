"""Shared fixtures for building charts and repositories on disk."""

import textwrap

import pytest
import yaml

from partner_charts.chart_loader import save
from partner_charts.models import Chart, ChartFile, ChartMetadata, ChartVersion
from partner_charts.paths import Paths

VALUES_YAML = b"replicaCount: 1\n"
DEPLOYMENT_YAML = textwrap.dedent("""\
    apiVersion: apps/v1
    kind: Deployment
    metadata:
      name: {{ .Release.Name }}
""").encode()


def make_chart(name="demo", version="1.0.0", annotations=None, values=VALUES_YAML, **metadata):
    """Build an in-memory chart with a values file and one template."""
    return Chart(
        metadata=ChartMetadata(
            name=name,
            version=version,
            api_version="v2",
            description=f"{name} chart",
            icon=metadata.pop("icon", "https://example.com/icon.png"),
            annotations=dict(annotations) if annotations is not None else None,
            **metadata,
        ),
        files=[
            ChartFile(name="values.yaml", data=values),
            ChartFile(name="templates/deployment.yaml", data=DEPLOYMENT_YAML),
        ],
    )


def make_version(version, name="demo", annotations=None, urls=None, created=""):
    """Build an index entry for a chart version."""
    return ChartVersion(
        metadata=ChartMetadata(name=name, version=version, annotations=annotations),
        urls=urls if urls is not None else [f"https://charts.example.com/{name}-{version}.tgz"],
        created=created,
    )


@pytest.fixture
def repo_paths(tmp_path):
    """An empty repository layout rooted at a temporary directory."""
    paths = Paths.from_repo_root(tmp_path)
    paths.packages.mkdir()
    paths.assets.mkdir()
    paths.charts.mkdir()
    return paths


@pytest.fixture
def write_package(repo_paths):
    """Factory writing packages/<vendor>/<name>/upstream.yaml."""

    def _write(vendor, name, upstream=None, overlay=None):
        package_dir = repo_paths.packages / vendor / name
        package_dir.mkdir(parents=True)
        upstream = upstream or {"HelmRepo": "https://charts.example.com", "HelmChart": name}
        (package_dir / "upstream.yaml").write_text(yaml.safe_dump(upstream))
        for relative_path, contents in (overlay or {}).items():
            overlay_file = package_dir / "overlay" / relative_path
            overlay_file.parent.mkdir(parents=True, exist_ok=True)
            overlay_file.write_bytes(contents)
        return package_dir

    return _write


@pytest.fixture
def store_chart(repo_paths):
    """Factory saving a chart archive under assets/<vendor>."""

    def _store(vendor, chart):
        return save(chart, repo_paths.assets / vendor)

    return _store

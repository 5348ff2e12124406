"""Tests for loading and saving charts."""

import io
import tarfile

import pytest
import yaml

from partner_charts.chart_loader import (
    export_chart_directory,
    extract_archive,
    load,
    load_archive,
    load_directory,
    save,
)
from partner_charts.exceptions import ChartLoadError

from conftest import DEPLOYMENT_YAML, VALUES_YAML, make_chart


def write_tgz(path, members):
    """Write a gzipped tar holding members, a map of name to contents."""
    with tarfile.open(path, "w:gz") as tar:
        for name, data in members.items():
            info = tarfile.TarInfo(name=name)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return path


class TestSave:
    def test_archive_layout(self, tmp_path):
        archive = save(make_chart(version="1.2.3"), tmp_path)

        assert archive == tmp_path / "demo-1.2.3.tgz"
        with tarfile.open(archive, "r:gz") as tar:
            names = tar.getnames()
        assert names[0] == "demo/Chart.yaml"
        assert set(names) == {"demo/Chart.yaml", "demo/values.yaml", "demo/templates/deployment.yaml"}

    def test_creates_destination(self, tmp_path):
        archive = save(make_chart(), tmp_path / "assets" / "acme")
        assert archive.is_file()

    def test_load_saved_chart(self, tmp_path):
        chart = make_chart(annotations={"catalog.cattle.io/hidden": "true"})
        loaded = load_archive(save(chart, tmp_path))

        assert loaded.metadata == chart.metadata
        assert loaded.get_file("values.yaml").data == VALUES_YAML
        assert loaded.get_file("templates/deployment.yaml").data == DEPLOYMENT_YAML


class TestLoadArchive:
    def test_from_bytes(self, tmp_path):
        data = save(make_chart(), tmp_path).read_bytes()
        assert load_archive(data).name == "demo"

    def test_missing_chart_yaml(self, tmp_path):
        archive = write_tgz(tmp_path / "bad.tgz", {"demo/values.yaml": b"a: 1\n"})
        with pytest.raises(ChartLoadError, match="Chart.yaml"):
            load_archive(archive)

    def test_chart_without_name(self, tmp_path):
        archive = write_tgz(tmp_path / "bad.tgz", {"demo/Chart.yaml": b"version: 1.0.0\n"})
        with pytest.raises(ChartLoadError, match="name"):
            load_archive(archive)

    @pytest.mark.parametrize(
        "chart_yaml",
        [
            b"name: demo\nversion: 1.0.0\nannotations: [x]\n",
            b"name: demo\nversion: 1.0.0\nmaintainers: 5\n",
        ],
    )
    def test_malformed_metadata(self, tmp_path, chart_yaml):
        archive = write_tgz(tmp_path / "bad.tgz", {"demo/Chart.yaml": chart_yaml})
        with pytest.raises(ChartLoadError, match="invalid Chart.yaml"):
            load_archive(archive)

    def test_path_traversal_rejected(self, tmp_path):
        archive = write_tgz(
            tmp_path / "bad.tgz",
            {"demo/Chart.yaml": b"name: demo\nversion: 1.0.0\n", "demo/../../evil": b"x"},
        )
        with pytest.raises(ChartLoadError):
            load_archive(archive)

    def test_not_an_archive(self, tmp_path):
        path = tmp_path / "notes.tgz"
        path.write_text("not gzip")
        with pytest.raises(ChartLoadError):
            load_archive(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ChartLoadError):
            load_archive(tmp_path / "missing.tgz")


class TestLoadDirectory:
    def test_helmignore_honored(self, tmp_path):
        (tmp_path / "Chart.yaml").write_text(yaml.safe_dump({"name": "demo", "version": "0.1.0"}))
        (tmp_path / "values.yaml").write_bytes(VALUES_YAML)
        (tmp_path / ".helmignore").write_text("# comment\n*.bak\nci/\n")
        (tmp_path / "values.yaml.bak").write_text("old")
        (tmp_path / "ci").mkdir()
        (tmp_path / "ci" / "test-values.yaml").write_text("x: 1")
        (tmp_path / ".git").mkdir()
        (tmp_path / ".git" / "HEAD").write_text("ref: refs/heads/main")

        chart = load_directory(tmp_path)

        assert chart.version == "0.1.0"
        assert sorted(f.name for f in chart.files) == [".helmignore", "values.yaml"]

    def test_not_a_directory(self, tmp_path):
        with pytest.raises(ChartLoadError):
            load_directory(tmp_path / "missing")

    def test_load_dispatches(self, tmp_path):
        archive = save(make_chart(), tmp_path / "archives")
        extract_archive(archive, tmp_path / "unpacked")
        assert load(archive).name == "demo"
        assert load(tmp_path / "unpacked").name == "demo"


class TestExtract:
    def test_extract_drops_root_directory(self, tmp_path):
        archive = save(make_chart(), tmp_path)
        extract_archive(archive, tmp_path / "out")

        assert (tmp_path / "out" / "Chart.yaml").is_file()
        assert (tmp_path / "out" / "templates" / "deployment.yaml").read_bytes() == DEPLOYMENT_YAML

    def test_requires_tgz_suffix(self, tmp_path):
        path = tmp_path / "chart.zip"
        path.write_bytes(b"")
        with pytest.raises(ChartLoadError, match="expecting file of type"):
            extract_archive(path, tmp_path / "out")

    def test_export_replaces_directory(self, tmp_path):
        target = tmp_path / "charts" / "acme" / "demo" / "1.0.0"
        target.mkdir(parents=True)
        (target / "stale.yaml").write_text("stale")

        export_chart_directory(make_chart(), target)

        assert not (target / "stale.yaml").exists()
        assert (target / "values.yaml").read_bytes() == VALUES_YAML

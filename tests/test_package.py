"""Tests for reading packages from the packages directory."""

import logging
from unittest.mock import MagicMock

import pytest

from partner_charts.exceptions import ConfigurationError
from partner_charts.index_file import IndexFile
from partner_charts.models import ChartSourceMetadata
from partner_charts.package import list_package_wrappers
from partner_charts.upstream import SOURCE_HELM_REPO, UpstreamClient

from conftest import make_version


class TestListPackageWrappers:
    def test_sorted_by_vendor_then_name(self, repo_paths, write_package):
        write_package("zeta", "alpha")
        write_package("acme", "tool")
        write_package("acme", "demo")

        packages = list_package_wrappers(repo_paths)

        assert [p.full_name for p in packages] == ["acme/demo", "acme/tool", "zeta/alpha"]

    def test_display_names(self, repo_paths, write_package):
        write_package(
            "acme",
            "demo",
            {"HelmRepo": "https://x", "HelmChart": "demo", "Vendor": "Acme Corp", "DisplayName": "Demo"},
        )
        write_package("other", "tool")

        demo, tool = list_package_wrappers(repo_paths)

        assert (demo.display_vendor, demo.display_name) == ("Acme Corp", "Demo")
        assert (tool.display_vendor, tool.display_name) == ("other", "tool")

    def test_single_package(self, repo_paths, write_package):
        write_package("acme", "demo")
        write_package("acme", "tool")
        assert [p.name for p in list_package_wrappers(repo_paths, "acme/tool")] == ["tool"]

    def test_unknown_package(self, repo_paths):
        with pytest.raises(ConfigurationError, match="failed to find package"):
            list_package_wrappers(repo_paths, "acme/missing")

    def test_package_must_name_vendor(self, repo_paths):
        with pytest.raises(ConfigurationError, match="<vendor>/<name>"):
            list_package_wrappers(repo_paths, "demo")

    def test_invalid_package_skipped(self, repo_paths, write_package, caplog):
        write_package("acme", "demo")
        write_package("acme", "broken", {"HelmChart": "broken"})

        with caplog.at_level(logging.ERROR):
            packages = list_package_wrappers(repo_paths)

        assert [p.name for p in packages] == ["demo"]
        assert "Skipping package acme/broken" in caplog.text

    def test_invalid_requested_package_raises(self, repo_paths, write_package):
        write_package("acme", "broken", {"HelmChart": "broken"})
        with pytest.raises(ConfigurationError):
            list_package_wrappers(repo_paths, "acme/broken")


class TestPackageWrapper:
    def test_overlay_files(self, repo_paths, write_package):
        write_package("acme", "demo", overlay={"values.yaml": b"a: 1\n", "templates/cm.yaml": b"kind: ConfigMap\n"})
        package = list_package_wrappers(repo_paths)[0]
        assert package.get_overlay_files() == {
            "templates/cm.yaml": b"kind: ConfigMap\n",
            "values.yaml": b"a: 1\n",
        }

    def test_populate_selects_versions(self, repo_paths, write_package):
        write_package("acme", "demo", {"HelmRepo": "https://x", "HelmChart": "demo", "Fetch": "all"})
        IndexFile(entries={"demo": [make_version("1.0.0")]}).write(repo_paths.index_yaml)

        client = MagicMock(spec=UpstreamClient)
        client.fetch_upstream.return_value = ChartSourceMetadata(
            source=SOURCE_HELM_REPO,
            versions=[make_version(v) for v in ["1.2.0", "1.1.0", "1.0.0"]],
        )

        package = list_package_wrappers(repo_paths)[0]
        assert package.populate(client, repo_paths) is True
        assert [v.version for v in package.fetch_versions] == ["1.2.0", "1.1.0"]
        assert [v.version for v in package.stored_versions] == ["1.0.0"]
        assert not package.is_new

    def test_populate_up_to_date(self, repo_paths, write_package):
        write_package("acme", "demo")
        client = MagicMock(spec=UpstreamClient)
        client.fetch_upstream.return_value = ChartSourceMetadata(
            source=SOURCE_HELM_REPO, versions=[make_version("1.0.0")]
        )
        IndexFile(entries={"demo": [make_version("1.0.0")]}).write(repo_paths.index_yaml)

        package = list_package_wrappers(repo_paths)[0]
        assert package.populate(client, repo_paths) is False
        assert package.fetch_versions == []

    def test_populate_warns_on_name_mismatch(self, repo_paths, write_package, caplog):
        write_package("acme", "demo")
        client = MagicMock(spec=UpstreamClient)
        client.fetch_upstream.return_value = ChartSourceMetadata(
            source=SOURCE_HELM_REPO, versions=[make_version("1.0.0", name="upstream-demo")]
        )

        package = list_package_wrappers(repo_paths)[0]
        with caplog.at_level(logging.WARNING):
            package.populate(client, repo_paths)

        assert "does not match package name" in caplog.text
        assert package.is_new

"""Tests for reconciliation runs against a repository on disk."""

import textwrap
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import yaml

from partner_charts.chart_loader import load_archive
from partner_charts.config_manager import UpstreamConfig
from partner_charts.conform import ANNOTATION_FEATURED, ANNOTATION_HIDDEN
from partner_charts.exceptions import (
    AllPackagesFailedError,
    NoEligibleVersionsError,
    PartnerChartsException,
    UpstreamError,
)
from partner_charts.icons import IconStore
from partner_charts.index_file import IndexFile
from partner_charts.models import ChartSourceMetadata
from partner_charts.package import PackageWrapper
from partner_charts.reconciler import Reconciler, build_commit_message
from partner_charts.upstream import SOURCE_HELM_REPO, UpstreamClient

from conftest import make_chart, make_version

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def upstream_versions(name, *versions):
    return ChartSourceMetadata(
        source=SOURCE_HELM_REPO,
        versions=[make_version(v, name=name) for v in versions],
    )


@pytest.fixture
def client():
    client = MagicMock(spec=UpstreamClient)
    client.load_chart.side_effect = lambda source_metadata, version: make_chart(
        name=version.name, version=version.version
    )
    return client


@pytest.fixture
def reconciler(repo_paths, client):
    repo_paths.icons.mkdir(parents=True)
    for name in ("demo", "tool"):
        (repo_paths.icons / f"{name}.png").write_bytes(PNG_BYTES)
    return Reconciler(repo_paths, client=client, icon_store=IconStore(repo_paths))


def load_index(paths):
    return IndexFile.load(paths.index_yaml)


class TestGenerateChanges:
    def test_new_package_written(self, reconciler, repo_paths, write_package, client):
        write_package("acme", "demo")
        client.fetch_upstream.return_value = upstream_versions("demo", "1.1.0", "1.0.0")

        updated = reconciler.generate_changes()

        assert [p.full_name for p in updated] == ["acme/demo"]
        assert (repo_paths.assets / "acme" / "demo-1.1.0.tgz").is_file()
        assert (repo_paths.charts / "acme" / "demo" / "1.1.0" / "Chart.yaml").is_file()

        entry = load_index(repo_paths).entries["demo"][0]
        assert entry.version == "1.1.0"
        assert entry.urls == ["assets/acme/demo-1.1.0.tgz"]
        assert entry.metadata.icon == "file://assets/icons/demo.png"
        assert entry.annotations["catalog.cattle.io/certified"] == "partner"

    def test_existing_charts_untouched(self, reconciler, repo_paths, write_package, store_chart, client):
        write_package("acme", "demo", {"HelmRepo": "https://x", "HelmChart": "demo", "Fetch": "newer"})
        existing = store_chart("acme", make_chart(version="1.0.0", icon="file://assets/icons/demo.png"))
        reconciler.write_index()
        existing_bytes = existing.read_bytes()
        created = load_index(repo_paths).entries["demo"][0].created

        client.fetch_upstream.return_value = upstream_versions("demo", "1.1.0", "1.0.0")
        reconciler.generate_changes()

        assert existing.read_bytes() == existing_bytes
        index = load_index(repo_paths)
        assert [v.version for v in index.entries["demo"]] == ["1.1.0", "1.0.0"]
        assert index.get("demo", "1.0.0").created == created
        assert (repo_paths.charts / "acme" / "demo" / "1.0.0" / "values.yaml").is_file()

    def test_featured_annotation_moves_to_new_chart(
        self, reconciler, repo_paths, write_package, store_chart, client
    ):
        write_package("acme", "demo")
        store_chart("acme", make_chart(version="1.0.0", annotations={ANNOTATION_FEATURED: "2"}))
        reconciler.write_index()

        client.fetch_upstream.return_value = upstream_versions("demo", "1.1.0", "1.0.0")
        reconciler.generate_changes()

        old = load_archive(repo_paths.assets / "acme" / "demo-1.0.0.tgz")
        new = load_archive(repo_paths.assets / "acme" / "demo-1.1.0.tgz")
        assert ANNOTATION_FEATURED not in (old.metadata.annotations or {})
        assert new.metadata.annotations[ANNOTATION_FEATURED] == "2"

    def test_no_updates(self, reconciler, repo_paths, write_package, client):
        write_package("acme", "demo")
        client.fetch_upstream.side_effect = NoEligibleVersionsError("only pre-releases")

        assert reconciler.generate_changes() == []
        assert not repo_paths.index_yaml.exists()

    def test_all_packages_failing_is_fatal(self, reconciler, write_package, client):
        write_package("acme", "demo")
        client.fetch_upstream.return_value = upstream_versions("demo", "1.0.0")
        client.load_chart.side_effect = UpstreamError("download failed")

        with pytest.raises(AllPackagesFailedError, match="demo"):
            reconciler.generate_changes()

    def test_partial_failure_is_logged(self, reconciler, repo_paths, write_package, client, caplog):
        write_package("acme", "demo")
        write_package("acme", "tool")
        client.fetch_upstream.side_effect = [
            upstream_versions("demo", "1.0.0"),
            upstream_versions("tool", "2.0.0"),
        ]

        def load_chart(source_metadata, version):
            if version.name == "demo":
                raise UpstreamError("download failed")
            return make_chart(name=version.name, version=version.version)

        client.load_chart.side_effect = load_chart

        updated = reconciler.generate_changes()

        assert [p.name for p in updated] == ["tool"]
        assert "Skipped due to error: demo" in caplog.text
        assert list(load_index(repo_paths).entries) == ["tool"]

    def test_failing_upstream_skipped(self, reconciler, write_package, client):
        write_package("acme", "demo")
        write_package("acme", "tool")
        client.fetch_upstream.side_effect = [UpstreamError("timeout"), upstream_versions("tool", "2.0.0")]

        packages = reconciler.populate_packages(only_updates=True)

        assert [p.name for p in packages] == ["tool"]

    def test_auto_commits(self, reconciler, repo_paths, write_package, client):
        write_package("acme", "demo")
        client.fetch_upstream.return_value = upstream_versions("demo", "1.0.0")

        with patch("partner_charts.reconciler.commit_changes", return_value="abc") as commit_changes:
            reconciler.generate_changes(auto=True)

        root, paths, message = commit_changes.call_args[0]
        assert root == repo_paths.repo_root
        assert paths == ["index.yaml", "assets/icons", "assets/acme", "charts/acme/demo", "packages/acme/demo"]
        assert "Added:\n  acme/demo:\n    - 1.0.0\n" in message


class TestCommitMessage:
    def make_package(self, vendor, name, fetch, stored):
        package = PackageWrapper(
            name=name,
            vendor=vendor,
            path=Path("packages") / vendor / name,
            upstream=UpstreamConfig.from_dict({"HelmRepo": "https://x", "HelmChart": name}),
        )
        package.fetch_versions = [make_version(v, name=name) for v in fetch]
        package.stored_versions = [make_version(v, name=name) for v in stored]
        return package

    def test_added_and_updated_sections(self):
        packages = [
            self.make_package("other", "tool", ["2.0.0"], ["1.0.0"]),
            self.make_package("acme", "demo", ["1.1.0", "1.0.0"], []),
        ]
        assert build_commit_message(packages) == textwrap.dedent("""\
            Charts CI
            ```
            Added:
              acme/demo:
                - 1.1.0
                - 1.0.0

            Updated:
              other/tool:
                - 2.0.0
            ```""")

    def test_only_updates(self):
        message = build_commit_message([self.make_package("acme", "demo", ["1.1.0"], ["1.0.0"])])
        assert message == "Charts CI\n```\nUpdated:\n  acme/demo:\n    - 1.1.0\n```"


@pytest.fixture
def stored_repo(reconciler, repo_paths, write_package, store_chart):
    """A repository holding two stored versions of acme/demo and one of acme/tool."""
    write_package("acme", "demo")
    write_package("acme", "tool")
    store_chart("acme", make_chart(version="1.0.0"))
    store_chart("acme", make_chart(version="1.1.0"))
    store_chart("acme", make_chart(name="tool", version="0.1.0"))
    reconciler.write_index()
    return repo_paths


class TestAnnotations:
    def test_hide(self, reconciler, stored_repo):
        reconciler.hide("acme/demo")

        for version in load_index(stored_repo).entries["demo"]:
            assert version.annotations[ANNOTATION_HIDDEN] == "true"
        chart = load_archive(stored_repo.assets / "acme" / "demo-1.0.0.tgz")
        assert chart.metadata.annotations[ANNOTATION_HIDDEN] == "true"
        assert ANNOTATION_HIDDEN in yaml.safe_load(
            (stored_repo.charts / "acme" / "demo" / "1.1.0" / "Chart.yaml").read_text()
        )["annotations"]

    def test_annotate_without_stored_versions(self, reconciler, stored_repo, write_package):
        write_package("acme", "unreleased")
        with pytest.raises(PartnerChartsException, match="no stored versions"):
            reconciler.hide("acme/unreleased")

    def test_get_by_annotation(self, reconciler, stored_repo):
        reconciler.hide("acme/tool")
        matched = reconciler.get_by_annotation(ANNOTATION_HIDDEN)
        assert list(matched) == ["tool"]
        assert reconciler.get_by_annotation(ANNOTATION_HIDDEN, "false") == {}


class TestFeatured:
    def test_add_features_latest_version_only(self, reconciler, stored_repo):
        reconciler.add_featured("acme/demo", 1)

        index = load_index(stored_repo)
        assert index.get("demo", "1.1.0").annotations[ANNOTATION_FEATURED] == "1"
        assert ANNOTATION_FEATURED not in index.get("demo", "1.0.0").annotations
        assert reconciler.list_featured() == {1: ["demo"]}

    def test_slot_in_use(self, reconciler, stored_repo):
        reconciler.add_featured("acme/demo", 1)
        with pytest.raises(PartnerChartsException, match="already featured at index 1"):
            reconciler.add_featured("acme/tool", 1)

    @pytest.mark.parametrize("slot", [0, 6])
    def test_slot_out_of_range(self, reconciler, stored_repo, slot):
        with pytest.raises(PartnerChartsException, match="between 1 and 5"):
            reconciler.add_featured("acme/demo", slot)

    def test_remove(self, reconciler, stored_repo):
        reconciler.add_featured("acme/demo", 3)
        reconciler.remove_featured("acme/demo")
        assert reconciler.list_featured() == {}


class TestCull:
    def test_removes_old_versions(self, reconciler, stored_repo):
        index = load_index(stored_repo)
        index.get("demo", "1.0.0").created = "2020-01-01T00:00:00Z"
        index.get("demo", "1.1.0").created = "2024-06-01T00:00:00.500000Z"
        index.write(stored_repo.index_yaml)

        removed = reconciler.cull_charts("demo", 30, now=datetime(2024, 6, 10, tzinfo=timezone.utc))

        assert [v.version for v in removed] == ["1.0.0"]
        assert not (stored_repo.assets / "acme" / "demo-1.0.0.tgz").exists()
        assert (stored_repo.assets / "acme" / "demo-1.1.0.tgz").exists()
        assert [v.version for v in load_index(stored_repo).entries["demo"]] == ["1.1.0"]

    def test_unknown_chart(self, reconciler, stored_repo):
        with pytest.raises(PartnerChartsException, match="not present"):
            reconciler.cull_charts("missing", 30)

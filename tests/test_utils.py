"""Unit tests for partner_charts/utils.py - semantic version parsing."""

import pytest

from partner_charts.utils import SemVer, parse_version, version_sort_key


class TestSemVerParse:
    def test_three_part_version(self):
        assert SemVer.parse("1.2.3") == SemVer(1, 2, 3)

    def test_v_prefix(self):
        assert SemVer.parse("v1.2.3") == SemVer(1, 2, 3)

    def test_missing_patch_defaults_to_zero(self):
        assert str(SemVer.parse("1.2")) == "1.2.0"

    def test_major_only(self):
        assert str(SemVer.parse("3")) == "3.0.0"

    def test_prerelease_and_build(self):
        version = SemVer.parse("2.0.0-rc.1+build.5")
        assert version.prerelease == "rc.1"
        assert version.build == "build.5"
        assert str(version) == "2.0.0-rc.1+build.5"

    def test_large_patch(self):
        assert SemVer.parse("1.4.203").patch == 203

    @pytest.mark.parametrize("version", ["", "latest", "1.2.3.4", "01.2.3", "1.2.x", None])
    def test_invalid_versions_raise(self, version):
        with pytest.raises(ValueError):
            SemVer.parse(version)


class TestSemVerOrdering:
    def test_numeric_ordering(self):
        assert SemVer.parse("1.10.0") > SemVer.parse("1.9.0")

    def test_prerelease_sorts_before_release(self):
        assert SemVer.parse("1.2.3-beta") < SemVer.parse("1.2.3")

    def test_numeric_prerelease_identifiers(self):
        assert SemVer.parse("1.0.0-rc.2") < SemVer.parse("1.0.0-rc.10")

    def test_build_metadata_ignored(self):
        assert SemVer.parse("1.0.0+a") == SemVer.parse("1.0.0+b")

    def test_sorting(self):
        versions = ["1.0.0", "0.9.1", "1.0.0-alpha", "2.0.0", "1.10.0"]
        ordered = sorted(versions, key=SemVer.parse, reverse=True)
        assert ordered == ["2.0.0", "1.10.0", "1.0.0", "1.0.0-alpha", "0.9.1"]


class TestSemVerStreams:
    def test_same_stream(self):
        assert SemVer.parse("1.2.9").same_stream(SemVer.parse("1.2.0"))
        assert not SemVer.parse("1.3.0").same_stream(SemVer.parse("1.2.0"))

    def test_stream_before(self):
        assert SemVer.parse("1.1.99").stream_before(SemVer.parse("1.2.0"))
        assert not SemVer.parse("1.2.5").stream_before(SemVer.parse("1.2.0"))

    def test_with_patch(self):
        assert SemVer.parse("1.4.2-rc").with_patch(203) == SemVer.parse("1.4.203-rc")


class TestParseVersion:
    def test_valid(self):
        assert parse_version("0.0.1") == SemVer(0, 0, 1)

    def test_invalid_returns_none(self):
        assert parse_version("not-a-version") is None

    def test_sort_key_places_invalid_first(self):
        versions = ["1.0.0", "bogus", "0.1.0"]
        assert sorted(versions, key=version_sort_key) == ["bogus", "0.1.0", "1.0.0"]

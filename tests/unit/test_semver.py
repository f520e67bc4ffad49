"""Tests for semantic versions and npm-style ranges."""

from __future__ import annotations

import pytest

from pushgate.core.semver import (
    Version,
    gtr,
    is_matching_app_version,
    ltr,
    satisfies,
    valid,
    valid_range,
)


class TestVersion:
    def test_parse(self):
        v = Version.parse("1.2.3-beta.1+build.5")
        assert v.core == (1, 2, 3)
        assert v.prerelease == ("beta", 1)
        assert v.build == ("build", "5")

    @pytest.mark.parametrize("text", ["1.2", "01.2.3", "1.2.3-01", "abc", ""])
    def test_parse_rejects_invalid(self, text):
        with pytest.raises(ValueError):
            Version.parse(text)

    def test_precedence(self):
        ordered = [
            "1.0.0-alpha",
            "1.0.0-alpha.1",
            "1.0.0-alpha.beta",
            "1.0.0-beta",
            "1.0.0-beta.2",
            "1.0.0-beta.11",
            "1.0.0-rc.1",
            "1.0.0",
            "1.0.1",
            "1.10.0",
        ]
        versions = [Version.parse(v) for v in ordered]
        assert versions == sorted(versions)
        assert sorted(reversed(versions)) == versions

    def test_build_metadata_ignored(self):
        assert Version.parse("1.0.0+a") == Version.parse("1.0.0+b")


class TestValid:
    def test_valid(self):
        assert valid("1.2.3") == "1.2.3"
        assert valid("v1.2.3") == "1.2.3"
        assert valid("1.2") is None
        assert valid(None) is None

    def test_valid_range(self):
        assert valid_range("^1.2") == ">=1.2.0 <2.0.0-0"
        assert valid_range("1.2.3") == "1.2.3"
        assert valid_range("*") == "*"
        assert valid_range("not a range") is None
        assert valid_range(None) is None


class TestSatisfies:
    @pytest.mark.parametrize(
        "version, range_text",
        [
            ("1.2.3", "1.2.3"),
            ("1.2.3", "^1.0.0"),
            ("1.2.3", "1.x"),
            ("1.2.3", "1.2.*"),
            ("1.2.9", "~1.2"),
            ("1.2.9", "~>1.2.3"),
            ("1.4.0", "1.0.0 - 1.4.0"),
            ("1.4.7", "1.0 - 1.4"),
            ("2.1.0", "^1.0.0 || 2.x"),
            ("1.5.0", ">=1.0.0 <2.0.0"),
            ("1.5.0", ">= 1.0.0"),
            ("0.2.5", "^0.2.3"),
            ("3.0.0", "*"),
            ("1.0.0-beta.2", ">=1.0.0-beta.1"),
        ],
    )
    def test_satisfied(self, version, range_text):
        assert satisfies(version, range_text) is True

    @pytest.mark.parametrize(
        "version, range_text",
        [
            ("2.0.0", "^1.0.0"),
            ("1.3.0", "~1.2"),
            ("1.5.0", "1.0.0 - 1.4.0"),
            ("0.3.0", "^0.2.3"),
            ("0.0.4", "^0.0.3"),
            ("1.2.4", "1.2.3"),
            ("1.0.0-beta", ">=0.9.0"),
            ("2.0.0-rc.1", "^1.0.0-beta"),
            ("1.0.0", "<*"),
        ],
    )
    def test_not_satisfied(self, version, range_text):
        assert satisfies(version, range_text) is False

    def test_invalid_inputs_never_satisfy(self):
        assert satisfies("garbage", "1.x") is False
        assert satisfies("1.0.0", "garbage") is False


class TestOutside:
    def test_ltr(self):
        assert ltr("1.0.0", "2.0.0") is True
        assert ltr("1.0.0", "^2.0.0") is True
        assert ltr("0.5.0", "1.0.0") is True
        assert ltr("2.5.0", "^2.0.0") is False
        assert ltr("3.0.0", "^2.0.0") is False
        assert ltr("2.0.0", "1.0.0") is False

    def test_gtr(self):
        assert gtr("3.0.0", "^2.0.0") is True
        assert gtr("2.0.0", "1.0.0") is True
        assert gtr("1.0.0", "^2.0.0") is False
        assert gtr("2.1.0", "^2.0.0") is False

    def test_union_range(self):
        # below the first set, but within the gap of neither side
        assert ltr("0.1.0", "1.x || 3.x") is True
        assert ltr("2.0.0", "1.x || 3.x") is False
        assert gtr("2.0.0", "1.x || 3.x") is False


class TestMatchingAppVersion:
    def test_exact_against_range(self):
        assert is_matching_app_version("1.2.3", "^1.0.0") is True
        assert is_matching_app_version("2.0.0", "^1.0.0") is False

    def test_range_against_exact(self):
        assert is_matching_app_version("^1.0.0", "1.5.0") is True

    def test_ranges_match_only_when_equivalent(self):
        assert is_matching_app_version("^1.0.0", "^1.0.0") is True
        assert is_matching_app_version("^1.0.0", ">=1.0.0 <2.0.0-0") is True
        assert is_matching_app_version("^1.0.0", "~1.0.0") is False

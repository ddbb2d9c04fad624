"""Unit tests for utils/tag_matching.py"""

import pytest

from utils.tag_matching import matches_any_prefix, matching_prefixes, parse_prefix_list, tag_matches_prefix


class TestTagMatchesPrefix:
    """Tests for literal prefix matching"""

    @pytest.mark.parametrize("tag", ["dev", "dev-1234", "develop"])
    def test_matches(self, tag):
        assert tag_matches_prefix(tag, "dev")

    @pytest.mark.parametrize("tag", ["Dev", "my-dev", "de"])
    def test_no_match(self, tag):
        assert not tag_matches_prefix(tag, "dev")

    def test_prefix_is_literal(self):
        """Regex metacharacters have no special meaning"""
        assert tag_matches_prefix("v1.2-rc", "v1.2")
        assert not tag_matches_prefix("v1x2", "v1.2")


class TestMatchingPrefixes:
    """Tests for matching_prefixes and matches_any_prefix"""

    def test_returns_prefixes_in_configured_order(self):
        tags = ["main-42", "latest"]
        assert matching_prefixes(tags, ("latest", "dev", "main")) == ("latest", "main")

    def test_untagged_matches_nothing(self):
        assert matching_prefixes([], ("latest",)) == ()
        assert not matches_any_prefix([], ("latest",))

    def test_accepts_generators(self):
        assert matching_prefixes((t for t in ["dev-1"]), ("dev",)) == ("dev",)

    def test_matches_any_prefix(self):
        assert matches_any_prefix({"feature-x", "release-1"}, ("release",))
        assert not matches_any_prefix({"feature-x"}, ("release", "latest"))


class TestParsePrefixList:
    """Tests for comma-separated prefix parsing"""

    def test_strips_whitespace(self):
        assert parse_prefix_list("latest, dev ,main") == ("latest", "dev", "main")

    def test_drops_empty_entries(self):
        assert parse_prefix_list("latest,,dev,") == ("latest", "dev")

    def test_removes_duplicates_keeping_order(self):
        assert parse_prefix_list("dev,latest,dev") == ("dev", "latest")

    @pytest.mark.parametrize("raw", ["", None, " , "])
    def test_empty_input(self, raw):
        assert parse_prefix_list(raw) == ()

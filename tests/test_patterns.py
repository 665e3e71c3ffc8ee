"""Tests for wildcard path patterns and prefix/depth grouping."""

from __future__ import annotations

import re

import pytest

from site_analytics.exceptions import ValidationError
from site_analytics.query import build_prefix_regex, pattern_to_regex


class TestPatternToRegex:
    """Tests for pattern_to_regex."""

    def test_single_star_is_one_segment(self) -> None:
        """* matches exactly one path segment."""
        regex = pattern_to_regex("/blog/*")

        assert regex == "^/blog/[^/]+$"
        assert re.match(regex, "/blog/hello")
        assert not re.match(regex, "/blog/hello/world")
        assert not re.match(regex, "/blog/")

    def test_double_star_spans_segments(self) -> None:
        """** matches any sequence including slashes."""
        regex = pattern_to_regex("/docs/**")

        assert regex == "^/docs/.*$"
        assert re.match(regex, "/docs/a/b/c")
        assert re.match(regex, "/docs/")

    def test_mixed_wildcards(self) -> None:
        """** is never expanded as two single stars."""
        regex = pattern_to_regex("/x/**/y/*")

        assert regex == "^/x/.*/y/[^/]+$"
        assert re.match(regex, "/x/1/2/y/z")
        assert not re.match(regex, "/x/1/y/z/extra")

    def test_metacharacters_are_literal(self) -> None:
        """Regex metacharacters in the pattern match themselves."""
        regex = pattern_to_regex("/a.b/(c)+/*")

        assert regex == r"^/a\.b/\(c\)\+/[^/]+$"
        assert re.match(regex, "/a.b/(c)+/page")
        assert not re.match(regex, "/aXb/(c)+/page")

    def test_pattern_without_wildcards_is_exact(self) -> None:
        """A plain path matches only itself."""
        regex = pattern_to_regex("/pricing")

        assert re.match(regex, "/pricing")
        assert not re.match(regex, "/pricing/enterprise")


class TestBuildPrefixRegex:
    """Tests for build_prefix_regex."""

    def test_depth_one(self) -> None:
        regex = build_prefix_regex("/news", 1)

        assert regex == "^/news/[^/]+$"
        assert re.match(regex, "/news/today")
        assert not re.match(regex, "/news/today/sport")
        assert not re.match(regex, "/newsletter")

    def test_depth_two_with_trailing_slash(self) -> None:
        """A trailing slash on the prefix is ignored."""
        assert build_prefix_regex("/news/", 2) == "^/news/[^/]+/[^/]+$"

    def test_no_depth_is_prefix_match(self) -> None:
        regex = build_prefix_regex("/news", None)

        assert regex == "^/news"
        assert re.match(regex, "/news/a/b/c")

    def test_prefix_metacharacters_escaped(self) -> None:
        """Every metacharacter of the prefix, * included, is literal."""
        assert build_prefix_regex("/a+b", 1) == r"^/a\+b/[^/]+$"
        assert build_prefix_regex("/c*", None) == r"^/c\*"

    @pytest.mark.parametrize("depth", [0, -1, True, "2", 1.5])
    def test_invalid_depth_rejected(self, depth) -> None:
        """Depth must be a positive integer."""
        with pytest.raises(ValidationError) as exc_info:
            build_prefix_regex("/news", depth)

        assert exc_info.value.field == "depth"

"""
Path pattern to regular expression translation.

Wildcard patterns let dashboard users group pages:

- ``*`` matches exactly one path segment (anything but ``/``)
- ``**`` matches any sequence, slashes included

The produced expressions use RE2-compatible syntax, so they can be bound
as the pattern argument of DuckDB's ``regexp_matches``.
"""

from __future__ import annotations

import re

from ..exceptions import ValidationError

# Regex metacharacters, minus "*" which carries wildcard meaning.
_METACHARACTERS = re.compile(r"[.+?^${}()|\[\]\\]")
_ALL_METACHARACTERS = re.compile(r"[.*+?^${}()|\[\]\\]")

_DOUBLE_STAR_MARKER = "\x00DOUBLE_STAR\x00"

SEGMENT = "[^/]+"
ANY_SEQUENCE = ".*"


def pattern_to_regex(pattern: str) -> str:
    """
    Convert a wildcard path pattern to an anchored regex.

    ``**`` is swapped for a marker before single stars are expanded, and
    restored afterwards, so it never degrades into two segment matches.

    Args:
        pattern: Path pattern with wildcards, e.g. ``/blog/*/comments/**``

    Returns:
        Regex string matching the whole path, e.g. ``^/blog/[^/]+/comments/.*$``
    """
    escaped = _METACHARACTERS.sub(lambda m: "\\" + m.group(0), pattern)
    protected = escaped.replace("**", _DOUBLE_STAR_MARKER)
    expanded = protected.replace("*", SEGMENT)
    final = expanded.replace(_DOUBLE_STAR_MARKER, ANY_SEQUENCE)
    return f"^{final}$"


def build_prefix_regex(prefix: str, depth: int | None) -> str:
    """
    Build a regex for prefix + depth page grouping.

    prefix=/news, depth=1 -> ``^/news/[^/]+$``
    prefix=/news, depth=2 -> ``^/news/[^/]+/[^/]+$``
    prefix=/news, no depth -> ``^/news``

    Raises:
        ValidationError: If depth is given but is not a positive integer.
    """
    if depth is not None and (isinstance(depth, bool) or not isinstance(depth, int) or depth < 1):
        raise ValidationError("depth", "must be a positive integer", depth)

    escaped = _ALL_METACHARACTERS.sub(lambda m: "\\" + m.group(0), prefix)
    normalized = escaped[:-1] if escaped.endswith("/") else escaped

    if depth is None:
        return f"^{normalized}"

    segments = ("/" + SEGMENT) * depth
    return f"^{normalized}{segments}$"

#!/usr/bin/env python3
"""
Tag matching utilities for Docker image tags.

Provides the literal prefix matching used by the retention policy: a tag
matches a retained prefix when its text begins with that prefix.
"""

from typing import Iterable, Sequence, Tuple


def tag_matches_prefix(tag: str, prefix: str) -> bool:
    """Check if a tag starts with a retained prefix.

    Matching is case-sensitive and literal (no globbing or regex), so
    ``"dev"`` matches ``"dev"``, ``"dev-1234"`` and ``"develop"`` but not
    ``"Dev"`` or ``"my-dev"``.
    """
    return tag.startswith(prefix)


def matching_prefixes(tags: Iterable[str], prefixes: Sequence[str]) -> Tuple[str, ...]:
    """Return the retained prefixes matched by any of the given tags.

    Args:
        tags: Tags attached to one image
        prefixes: Retained prefixes, in configured order

    Returns:
        Tuple of matched prefixes, in the same order as ``prefixes``
    """
    tags = tuple(tags)
    return tuple(
        prefix for prefix in prefixes
        if any(tag_matches_prefix(tag, prefix) for tag in tags)
    )


def matches_any_prefix(tags: Iterable[str], prefixes: Sequence[str]) -> bool:
    """Check if at least one tag matches at least one retained prefix"""
    return any(tag_matches_prefix(tag, prefix) for tag in tags for prefix in prefixes)


def parse_prefix_list(raw: str) -> Tuple[str, ...]:
    """Parse a comma-separated prefix list such as ``"latest, dev,main"``.

    Whitespace around entries is stripped. Empty entries are dropped because an
    empty prefix would match every tag. Duplicates are removed, keeping the
    first occurrence.
    """
    if not raw:
        return ()

    seen = []
    for part in raw.split(','):
        prefix = part.strip()
        if prefix and prefix not in seen:
            seen.append(prefix)
    return tuple(seen)

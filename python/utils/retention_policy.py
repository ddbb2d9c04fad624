#!/usr/bin/env python3
"""
Retention policy engine for container images.

Classifies every image of one repository as KEEP or DELETE from its tags,
digest and push timestamp. Two policies are supported:

- ``global`` (variant A): images matching any retained prefix are ranked
  together by push time and only the newest ``keep_per_prefix`` of them are
  kept. Every other match is deleted, as is every untagged image.
- ``per-prefix`` (variant B): the newest ``keep_per_prefix`` images of each
  prefix group are kept. Remaining tagged images are kept or deleted by age
  against ``max_age_days``, and untagged images are deleted.

Images without a push timestamp are never decided on (unknown age).

The engine performs no I/O and never reads the clock: ``now`` is passed in.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from utils.error_utils import create_config_error
from utils.tag_matching import matches_any_prefix, matching_prefixes


class Action(Enum):
    KEEP = "KEEP"
    DELETE = "DELETE"


class Reason(Enum):
    """Why an image was kept or deleted"""
    RETAINED_RECENT_MATCH = "RETAINED_RECENT_MATCH"  # newest match for a retained prefix
    UNTAGGED = "UNTAGGED"
    AGED_OUT = "AGED_OUT"
    RETAINED_WITHIN_AGE = "RETAINED_WITHIN_AGE"
    NOT_MATCHED = "NOT_MATCHED"  # global policy only: tagged, no retained prefix


class PolicyVariant(Enum):
    GLOBAL = "global"
    PER_PREFIX = "per-prefix"


_VARIANT_ALIASES = {
    "a": PolicyVariant.GLOBAL,
    "global": PolicyVariant.GLOBAL,
    "b": PolicyVariant.PER_PREFIX,
    "per-prefix": PolicyVariant.PER_PREFIX,
    "per_prefix": PolicyVariant.PER_PREFIX,
}


def parse_variant(value) -> PolicyVariant:
    """Resolve a variant selector ('A', 'global', 'B', 'per-prefix', ...)"""
    if isinstance(value, PolicyVariant):
        return value
    variant = _VARIANT_ALIASES.get(str(value).strip().lower())
    if variant is None:
        raise create_config_error("variant", value, "expected one of A, B, global, per-prefix")
    return variant


def _as_utc(moment: datetime) -> datetime:
    """Interpret naive datetimes as UTC so they compare with aware ones"""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass(frozen=True)
class ImageRecord:
    """One image digest within a repository"""
    digest: str
    tags: FrozenSet[str] = field(default_factory=frozenset)
    pushed_at: Optional[datetime] = None
    size_bytes: Optional[int] = None

    def __post_init__(self):
        # Accept any iterable of tags but store an immutable set
        object.__setattr__(self, "tags", frozenset(self.tags))
        if self.pushed_at is not None:
            object.__setattr__(self, "pushed_at", _as_utc(self.pushed_at))

    @property
    def is_tagged(self) -> bool:
        return bool(self.tags)

    def age_days(self, now: datetime) -> Optional[int]:
        """Whole days elapsed since push, rounded down; None if unknown"""
        if self.pushed_at is None:
            return None
        return (_as_utc(now) - self.pushed_at).days


@dataclass(frozen=True)
class PolicyConfig:
    """Immutable parameters for one evaluation run"""
    retained_prefixes: Tuple[str, ...] = ()
    keep_per_prefix: int = 2
    max_age_days: int = 30
    dry_run: bool = True
    variant: PolicyVariant = PolicyVariant.PER_PREFIX

    def __post_init__(self):
        if isinstance(self.retained_prefixes, str):
            raise create_config_error(
                "retained_prefixes", self.retained_prefixes, "must be a sequence of prefixes, not a single string"
            )
        object.__setattr__(self, "retained_prefixes", tuple(self.retained_prefixes))


@dataclass(frozen=True)
class Decision:
    digest: str
    action: Action
    reason: Reason


def validate_policy_config(config: PolicyConfig) -> None:
    """Check policy parameters, raising ConfigurationError on the first problem"""
    keep = config.keep_per_prefix
    if isinstance(keep, bool) or not isinstance(keep, int) or keep < 1:
        raise create_config_error("keep_per_prefix", keep, "must be an integer of at least 1")

    max_age = config.max_age_days
    if isinstance(max_age, bool) or not isinstance(max_age, int) or max_age < 0:
        raise create_config_error("max_age_days", max_age, "must be an integer of at least 0")

    if not isinstance(config.variant, PolicyVariant):
        raise create_config_error("variant", config.variant, "must be a PolicyVariant")

    for prefix in config.retained_prefixes:
        if not isinstance(prefix, str) or not prefix:
            raise create_config_error("retained_prefixes", prefix, "prefixes must be non-empty strings")

    if config.variant is PolicyVariant.GLOBAL and not config.retained_prefixes:
        raise create_config_error(
            "retained_prefixes", config.retained_prefixes, "the global policy requires at least one prefix"
        )


def _recency_key(image: ImageRecord):
    # Newest first, then smallest digest first
    return (-image.pushed_at.timestamp(), image.digest)


def rank_by_recency(images: Iterable[ImageRecord]) -> List[ImageRecord]:
    """Sort images newest first; equal push times fall back to digest order"""
    return sorted(images, key=_recency_key)


def _check_unique_digests(images: Sequence[ImageRecord]) -> None:
    duplicates = [digest for digest, count in Counter(i.digest for i in images).items() if count > 1]
    if duplicates:
        raise ValueError(f"Duplicate image digests in input: {', '.join(sorted(duplicates))}")


def _evaluate_global(images: Sequence[ImageRecord], config: PolicyConfig) -> Dict[str, Decision]:
    matched = [i for i in images if i.is_tagged and matches_any_prefix(i.tags, config.retained_prefixes)]
    kept = {i.digest for i in rank_by_recency(matched)[:config.keep_per_prefix]}
    matched_digests = {i.digest for i in matched}

    def decide(image: ImageRecord) -> Decision:
        if not image.is_tagged:
            return Decision(image.digest, Action.DELETE, Reason.UNTAGGED)
        if image.digest in kept:
            return Decision(image.digest, Action.KEEP, Reason.RETAINED_RECENT_MATCH)
        if image.digest in matched_digests:
            return Decision(image.digest, Action.DELETE, Reason.AGED_OUT)
        return Decision(image.digest, Action.KEEP, Reason.NOT_MATCHED)

    return {image.digest: decide(image) for image in images}


def retained_by_prefix(images: Sequence[ImageRecord], config: PolicyConfig) -> Set[str]:
    """Union of the newest ``keep_per_prefix`` digests of every prefix group"""
    groups: Dict[str, List[ImageRecord]] = {prefix: [] for prefix in config.retained_prefixes}
    for image in images:
        for prefix in matching_prefixes(image.tags, config.retained_prefixes):
            groups[prefix].append(image)

    retained: Set[str] = set()
    for group in groups.values():
        retained.update(i.digest for i in rank_by_recency(group)[:config.keep_per_prefix])
    return retained


def _evaluate_per_prefix(images: Sequence[ImageRecord], config: PolicyConfig,
                         now: datetime) -> Dict[str, Decision]:
    retained = retained_by_prefix(images, config)

    def decide(image: ImageRecord) -> Decision:
        if image.digest in retained:
            return Decision(image.digest, Action.KEEP, Reason.RETAINED_RECENT_MATCH)
        if not image.is_tagged:
            return Decision(image.digest, Action.DELETE, Reason.UNTAGGED)
        if image.age_days(now) > config.max_age_days:
            return Decision(image.digest, Action.DELETE, Reason.AGED_OUT)
        return Decision(image.digest, Action.KEEP, Reason.RETAINED_WITHIN_AGE)

    return {image.digest: decide(image) for image in images}


def evaluate(images: Sequence[ImageRecord], config: PolicyConfig, now: datetime) -> List[Decision]:
    """Decide KEEP or DELETE for every image of one repository.

    Args:
        images: Image records of a single repository; digests must be unique
        config: Policy parameters; validated before any image is examined
        now: Reference time for age computations

    Returns:
        One Decision per image with a known push time, in input order.
        Images without ``pushed_at`` are left out.

    Raises:
        ConfigurationError: If ``config`` is invalid
        ValueError: If two records share a digest
    """
    validate_policy_config(config)
    images = tuple(images)
    _check_unique_digests(images)

    dated = tuple(i for i in images if i.pushed_at is not None)
    if config.variant is PolicyVariant.GLOBAL:
        decisions = _evaluate_global(dated, config)
    else:
        decisions = _evaluate_per_prefix(dated, config, now)

    return [decisions[image.digest] for image in dated]


def skipped_images(images: Iterable[ImageRecord]) -> List[ImageRecord]:
    """Images that evaluate() leaves undecided because their age is unknown"""
    return [i for i in images if i.pushed_at is None]


def partition(decisions: Iterable[Decision]) -> Tuple[List[str], List[str]]:
    """Split decisions into (keep digests, delete digests)"""
    keep, delete = [], []
    for decision in decisions:
        (keep if decision.action is Action.KEEP else delete).append(decision.digest)
    return keep, delete


def summarize(decisions: Iterable[Decision]) -> Dict[str, Dict[str, int]]:
    """Count decisions per action and per reason"""
    decisions = list(decisions)
    return {
        "actions": dict(Counter(d.action.value for d in decisions)),
        "reasons": dict(Counter(d.reason.value for d in decisions)),
    }

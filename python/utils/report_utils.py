"""
Utility functions for retention report generation and saving.

This module provides functions to:
- Format decision tables for the console
- Build the JSON retention report for a run
- Save reports with optional timestamped filenames
"""
import json
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from tabulate import tabulate

from utils.logging_utils import get_logger
from utils.retention_policy import Action, Decision, ImageRecord, PolicyConfig, summarize

logger = get_logger(__name__)


# ============================================================================
# Formatting Utilities
# ============================================================================

def sizeof_fmt(num: float, suffix: str = "B") -> str:
	"""Format bytes into human-readable size.

	Args:
	    num: Number of bytes
	    suffix: Suffix to append (default: "B")

	Returns:
	    Formatted string like "1.5GiB", "500MiB", etc.
	"""
	for unit in ("", "Ki", "Mi", "Gi", "Ti", "Pi", "Ei", "Zi"):
		if abs(num) < 1024.0:
			return f"{num:3.1f}{unit}{suffix}"
		num /= 1024.0
	return f"{num:.1f}Yi{suffix}"


def short_digest(digest: str, length: int = 19) -> str:
    """Shorten 'sha256:<hex>' digests for display"""
    return digest if len(digest) <= length else digest[:length] + "…"


def format_tags(tags: Iterable[str]) -> str:
    tags = sorted(tags)
    return ", ".join(tags) if tags else "<untagged>"


def format_decision_table(images: Sequence[ImageRecord], decisions: Sequence[Decision],
                          now: datetime) -> str:
    """Render decisions as a grid table, newest image first"""
    by_digest = {image.digest: image for image in images}
    rows = []
    for decision in decisions:
        image = by_digest[decision.digest]
        rows.append((
            image.pushed_at,
            [
                short_digest(decision.digest),
                format_tags(image.tags),
                image.pushed_at.strftime("%Y-%m-%d %H:%M") if image.pushed_at else "-",
                image.age_days(now),
                decision.action.value,
                decision.reason.value,
            ],
        ))
    rows.sort(key=lambda r: r[0], reverse=True)
    headers = ["Digest", "Tags", "Pushed", "Age (days)", "Action", "Reason"]
    return tabulate([r[1] for r in rows], headers=headers, tablefmt="grid")


# ============================================================================
# Timestamp Utilities
# ============================================================================

def get_timestamp_suffix() -> str:
    """
    Generate a timestamp suffix for report filenames.

    Returns:
        String in format: YYYY-MM-DD-HH-MM-SS
    """
    return datetime.now().strftime("%Y-%m-%d-%H-%M-%S")


def add_timestamp_to_path(path: str, timestamp: Optional[str] = None) -> str:
    """
    Add a timestamp to a file path before the extension.

    Args:
        path: Original file path (e.g., 'reports/retention-report.json')
        timestamp: Optional timestamp string (defaults to current time)

    Returns:
        Path with timestamp inserted (e.g., 'reports/retention-report-2026-01-15-14-30-00.json')
    """
    if timestamp is None:
        timestamp = get_timestamp_suffix()

    p = Path(path)
    return str(p.parent / f"{p.stem}-{timestamp}{p.suffix}")


# ============================================================================
# Report Building
# ============================================================================

def _decision_entry(image: ImageRecord, decision: Decision, now: datetime) -> Dict[str, Any]:
    return {
        "digest": decision.digest,
        "tags": sorted(image.tags),
        "pushed_at": image.pushed_at,
        "age_days": image.age_days(now),
        "size_bytes": image.size_bytes,
        "action": decision.action,
        "reason": decision.reason,
    }


def build_retention_report(evaluations: Sequence[Any], config: PolicyConfig, now: datetime,
                           region: Optional[str] = None) -> Dict[str, Any]:
    """Build the JSON report for a run.

    Args:
        evaluations: Per-repository results exposing ``repository``, ``images``,
            ``decisions``, ``skipped`` and ``error``
        config: Policy used for the run
        now: Reference time of the run
        region: AWS region, recorded in the metadata

    Returns:
        Dict with 'summary', 'repositories' and 'metadata' sections
    """
    all_decisions: List[Decision] = []
    reclaimable = 0
    repositories = {}
    failed = []

    for evaluation in evaluations:
        if evaluation.error:
            failed.append(evaluation.repository)
            repositories[evaluation.repository] = {"error": evaluation.error}
            continue

        by_digest = {image.digest: image for image in evaluation.images}
        entries = [_decision_entry(by_digest[d.digest], d, now) for d in evaluation.decisions]
        for decision in evaluation.decisions:
            size = by_digest[decision.digest].size_bytes
            if decision.action is Action.DELETE and size:
                reclaimable += size
        all_decisions.extend(evaluation.decisions)

        repositories[evaluation.repository] = {
            "summary": summarize(evaluation.decisions),
            "decisions": entries,
            "skipped_missing_push_time": [image.digest for image in evaluation.skipped],
        }

    totals = summarize(all_decisions)
    return {
        "summary": {
            "repositories_evaluated": len(repositories) - len(failed),
            "repositories_failed": failed,
            "total_decisions": len(all_decisions),
            "keep": totals["actions"].get(Action.KEEP.value, 0),
            "delete": totals["actions"].get(Action.DELETE.value, 0),
            "by_reason": totals["reasons"],
            "reclaimable_bytes": reclaimable,
            "reclaimable": sizeof_fmt(reclaimable),
        },
        "repositories": repositories,
        "metadata": {
            "region": region,
            "variant": config.variant,
            "retained_prefixes": list(config.retained_prefixes),
            "keep_per_prefix": config.keep_per_prefix,
            "max_age_days": config.max_age_days,
            "dry_run": config.dry_run,
            "evaluated_at": now,
        },
    }


# ============================================================================
# Report Saving Functions
# ============================================================================

def _normalize(data: Any) -> Any:
    """Recursively convert values json cannot serialize.

    - datetime/date: ISO format strings
    - Enum: its value
    - set/frozenset/tuple: lists (sets sorted for deterministic output)
    """
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    if isinstance(data, Enum):
        return data.value
    if isinstance(data, dict):
        return {str(k): _normalize(v) for k, v in data.items()}
    if isinstance(data, (set, frozenset)):
        try:
            return [_normalize(item) for item in sorted(data)]
        except TypeError:
            return [_normalize(item) for item in data]
    if isinstance(data, (list, tuple)):
        return [_normalize(item) for item in data]
    return data


def save_json(path: str, data: Any, timestamp: bool = False) -> str:
    """
    Write JSON data to a file with indentation.

    Args:
        path: Path to save the JSON file
        data: Data to save
        timestamp: If True, add timestamp to filename (default: False)

    Returns:
        Path to the saved file
    """
    if timestamp:
        path = add_timestamp_to_path(path)

    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(_normalize(data), f, indent=2)

    logger.debug(f"Saved JSON report to {path}")
    return path

#!/usr/bin/env python3
"""
Apply tag-prefix and age based retention to Amazon ECR repositories.

For every repository in a region, images are classified as KEEP or DELETE:
- untagged images are always deleted
- the newest images whose tags start with a retained prefix are kept
- with the per-prefix policy (B), other tagged images are kept until they
  are older than --max-age-days; with the global policy (A), only the newest
  --keep-per-prefix prefix matches across all prefixes are kept

Runs are dry-run by default: decisions are logged and written to a JSON report
but nothing is deleted until --apply is given.

Usage examples:
  # Dry-run with settings from config.yaml
  python main.py

  # Keep 2 newest images per prefix, delete the rest after 10 days
  python main.py --region us-east-1 --prefixes latest,dev,main --max-age-days 10

  # Global policy: keep only the 3 newest prefix matches per repository
  python main.py --variant A --prefixes latest,release --keep-per-prefix 3

  # Only some repositories, and actually delete
  python main.py --repository api --repository worker --apply

  # Prompt for region, retention, prefixes and dry-run like the legacy tool
  python main.py --interactive
"""

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from utils.config_manager import ConfigManager, ConfigValidationError, config_manager, parse_bool
from utils.deletion_executor import RepositoryEvaluation, RetentionExecutor
from utils.ecr_client import ECRRegistryClient
from utils.error_utils import ActionableError, create_config_error
from utils.logging_utils import get_logger, log_exception, parse_log_level, setup_logging
from utils.report_utils import build_retention_report, format_decision_table, save_json
from utils.retention_policy import PolicyConfig
from utils.tag_matching import parse_prefix_list

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_DELETE_FAILURES = 2


def parse_arguments(argv: Optional[Sequence[str]] = None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Apply tag-prefix and age based retention to Amazon ECR repositories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Dry-run with settings from config.yaml
  python main.py

  # Per-prefix policy with a 10 day age cutoff
  python main.py --region us-east-1 --prefixes latest,dev,main --max-age-days 10

  # Global policy, deleting for real without a prompt
  python main.py --variant A --prefixes latest --apply --force
        """
    )

    parser.add_argument('--config', help='Path to config YAML file (default: config.yaml or CONFIG_FILE env var)')
    parser.add_argument('--region', help='AWS region (default: from config or AWS_REGION)')
    parser.add_argument('--prefixes', help='Comma-separated tag prefixes to retain, e.g. latest,dev,main')
    parser.add_argument('--keep-per-prefix', type=int, help='Newest matching images to keep (default: from config)')
    parser.add_argument('--max-age-days', type=int, help='Age in days after which images may be deleted')
    parser.add_argument(
        '--variant',
        choices=['A', 'B', 'global', 'per-prefix'],
        help='Retention policy: A/global ranks all prefix matches together, B/per-prefix ranks each prefix '
             'and applies the age cutoff to the rest (default: from config)'
    )
    parser.add_argument(
        '--repository',
        action='append',
        dest='repositories',
        help='Only process this repository (repeatable; default: all repositories)'
    )
    parser.add_argument('--output', help='Report output path (default: reports/retention-report-<timestamp>.json)')
    parser.add_argument('--log-file', help='Also append logs to this file (default: from config)')
    parser.add_argument('--max-workers', type=int, help='Repositories evaluated in parallel (default: from config)')
    parser.add_argument('--table', action='store_true', help='Print a decision table per repository')
    parser.add_argument('--apply', action='store_true', help='Actually delete images (default: dry-run)')
    parser.add_argument('--force', action='store_true', help='Skip confirmation prompt when using --apply')
    parser.add_argument('--interactive', action='store_true', help='Prompt for region, retention, prefixes and dry-run')
    parser.add_argument('--show-config', action='store_true', help='Log the effective configuration and exit')

    return parser.parse_args(argv)


def _prompt(message: str) -> str:
    return input(message).strip()


def prompt_for_settings(args) -> None:
    """Fill in settings interactively; empty answers keep the configured value"""
    region = _prompt("Enter AWS Region (e.g., us-east-1): ")
    if region:
        args.region = region

    retention = _prompt("Enter retention period in days (e.g., 10): ")
    if retention:
        try:
            args.max_age_days = int(retention)
        except ValueError:
            raise create_config_error("max_age_days", retention, "must be an integer")

    prefixes = _prompt("Enter comma-separated tag prefixes to keep (e.g., latest,dev,main): ")
    if prefixes:
        args.prefixes = prefixes

    dry_run = _prompt("Dry-run mode? (yes/no): ")
    if dry_run:
        try:
            args.apply = not parse_bool(dry_run)
        except ConfigValidationError:
            logger.warning(f"Unrecognized answer '{dry_run}', staying in dry-run mode")
            args.apply = False


def build_policy(args, cm: ConfigManager) -> PolicyConfig:
    """Combine command line arguments with configuration into a PolicyConfig"""
    return cm.build_policy_config(
        prefixes=parse_prefix_list(args.prefixes) if args.prefixes is not None else None,
        keep_per_prefix=args.keep_per_prefix,
        max_age_days=args.max_age_days,
        dry_run=False if args.apply else None,
        variant=args.variant,
    )


def select_repositories(available: Sequence[str], wanted: Sequence[str]) -> List[str]:
    """Keep only the requested repositories, warning about unknown names"""
    if not wanted:
        return list(available)
    missing = [name for name in wanted if name not in available]
    for name in missing:
        logger.warning(f"[WARNING] Repository not found in region: {name}")
    return [name for name in available if name in wanted]


def evaluate_repositories(executor: RetentionExecutor, repositories: Sequence[str], now: datetime,
                          max_workers: int = 1) -> List[RepositoryEvaluation]:
    """Evaluate each repository independently, in input order"""
    if max_workers <= 1 or len(repositories) <= 1:
        return [executor.evaluate_repository(name, now) for name in repositories]
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        return list(pool.map(lambda name: executor.evaluate_repository(name, now), repositories))


def run(args, cm: ConfigManager, registry_client=None, now: Optional[datetime] = None) -> int:
    """Run one cleanup pass and return the process exit code"""
    policy = build_policy(args, cm)
    region = args.region or cm.get_region()
    max_workers = args.max_workers or cm.get_max_workers()

    logger.info(
        f"[INFO] Starting ECR cleanup in region {region} | Variant: {policy.variant.value} "
        f"| Retention: {policy.max_age_days} days | Keep per prefix: {policy.keep_per_prefix} "
        f"| Prefixes: {','.join(policy.retained_prefixes) or '(none)'} | Dry-run: {policy.dry_run}"
    )

    if registry_client is None:
        registry_client = ECRRegistryClient(region)

    repositories = registry_client.list_repositories()
    if not repositories:
        logger.warning("[WARNING] No repositories found in the specified region.")
        return EXIT_OK
    repositories = select_repositories(repositories, args.repositories or cm.get_repositories())

    now = now or datetime.now(timezone.utc)
    executor = RetentionExecutor(registry_client, policy)
    evaluations = evaluate_repositories(executor, repositories, now, max_workers=max_workers)

    for evaluation in evaluations:
        logger.info(f"\n[INFO] 📦 Processing Repository: {evaluation.repository}")
        executor.log_decisions(evaluation, now)
        if args.table and evaluation.decisions:
            print(format_decision_table(evaluation.images, evaluation.decisions, now))

    report = build_retention_report(evaluations, policy, now, region=region)
    if args.output:
        report_path = save_json(args.output, report)
    else:
        report_path = save_json(cm.get_retention_report_path(), report, timestamp=True)
    logger.info(f"Detailed report saved to: {report_path}")

    pending = sum(len(e.delete_digests) for e in evaluations)
    if not policy.dry_run and pending:
        force = args.force or not cm.requires_confirmation()
        if not executor.confirm_deletion(pending, "images", force=force):
            logger.info("Operation cancelled by user")
            return EXIT_OK

    summaries = [executor.apply(e) for e in evaluations if not e.error]
    executor.log_summary(summaries)

    if any(s.failures for s in summaries):
        return EXIT_DELETE_FAILURES
    logger.info("[INFO] ✅ ECR cleanup completed.")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main function"""
    args = parse_arguments(argv)

    # Policy values are validated after command line overrides are applied
    cm = ConfigManager(config_file=args.config, validate=False) if args.config else config_manager

    level = parse_log_level(cm.get_log_level())
    setup_logging(level=level, log_file=args.log_file or cm.get_log_file())
    logging.getLogger().setLevel(level)

    try:
        cm.validate_config(include_policy=False)
        if args.show_config:
            cm.print_config(build_policy(args, cm), region=args.region)
            return EXIT_OK
        if args.interactive:
            prompt_for_settings(args)
        return run(args, cm)
    except (ActionableError, ConfigValidationError) as e:
        logger.error(str(e))
        return EXIT_ERROR
    except KeyboardInterrupt:
        logger.warning("\n⚠️  Operation interrupted by user")
        return EXIT_ERROR
    except Exception as e:
        log_exception(logger, f"\n❌ Operation failed: {e}", e)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())

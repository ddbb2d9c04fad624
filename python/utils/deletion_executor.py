"""
Executor for retention decisions.

This module provides the run-time side of the retention cleaner:
- Fetching a repository snapshot and evaluating it with the policy engine
- Per-image decision logging
- Standardized confirmation prompt
- Applying DELETE decisions, or only logging them in dry-run mode
- Summary logging
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from utils.error_utils import ActionableError
from utils.logging_utils import get_logger
from utils.report_utils import format_tags, sizeof_fmt
from utils.retention_policy import (
    Action,
    Decision,
    ImageRecord,
    PolicyConfig,
    evaluate,
    partition,
    skipped_images,
)


@dataclass
class RepositoryEvaluation:
    """Snapshot and decisions for one repository"""
    repository: str
    images: List[ImageRecord] = field(default_factory=list)
    decisions: List[Decision] = field(default_factory=list)
    skipped: List[ImageRecord] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def delete_digests(self) -> List[str]:
        return partition(self.decisions)[1]

    @property
    def reclaimable_bytes(self) -> int:
        sizes = {image.digest: image.size_bytes or 0 for image in self.images}
        return sum(sizes[digest] for digest in self.delete_digests)


@dataclass
class ExecutionSummary:
    """Outcome of applying one repository's decisions"""
    repository: str
    dry_run: bool
    kept: int = 0
    to_delete: int = 0
    deleted: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)
    reclaimable_bytes: int = 0


class RetentionExecutor:
    """Evaluates repositories and applies the resulting decisions"""

    def __init__(self, registry_client, policy: PolicyConfig):
        """Initialize executor

        Args:
            registry_client: Object providing list_images() and delete_images()
            policy: Validated policy; policy.dry_run decides whether deletions run
        """
        self.registry_client = registry_client
        self.policy = policy
        self.logger = get_logger(self.__class__.__name__)

    @property
    def dry_run(self) -> bool:
        return self.policy.dry_run

    def evaluate_repository(self, repository: str, now: datetime) -> RepositoryEvaluation:
        """Fetch a repository snapshot and run the policy engine on it.

        Registry failures are recorded on the result instead of raised, so one
        unreadable repository does not stop the others.
        """
        try:
            images = self.registry_client.list_images(repository)
        except ActionableError as e:
            self.logger.warning(f"[WARNING] Failed to describe images for {repository}: {e.message}")
            return RepositoryEvaluation(repository=repository, error=e.message)

        evaluation = RepositoryEvaluation(repository=repository, images=images)
        if not images:
            self.logger.info(f"[INFO] No images found in repository {repository}")
            return evaluation

        evaluation.skipped = skipped_images(images)
        for image in evaluation.skipped:
            self.logger.warning(
                f"[WARNING] Skipping image with unknown push time: {image.digest} | Tags: {format_tags(image.tags)}"
            )

        evaluation.decisions = evaluate(images, self.policy, now)
        return evaluation

    def log_decisions(self, evaluation: RepositoryEvaluation, now: datetime) -> None:
        """Log one line per decision"""
        by_digest = {image.digest: image for image in evaluation.images}
        for decision in evaluation.decisions:
            image = by_digest[decision.digest]
            tags = format_tags(image.tags)
            if decision.action is Action.KEEP:
                self.logger.info(f"[KEEP] ✅ {decision.digest} | Tags: {tags} | Reason: {decision.reason.value}")
            else:
                self.logger.info(
                    f"[DELETE] 🗑️ {decision.digest} | Age: {image.age_days(now)} days | Tags: {tags} "
                    f"| Reason: {decision.reason.value}"
                )

    def confirm_deletion(self, count: int, item_type: str = "images", force: bool = False) -> bool:
        """Standardized confirmation prompt for deletions

        Args:
            count: Number of items to be deleted
            item_type: Type of items (e.g., "images")
            force: If True, skip confirmation and return True

        Returns:
            True if user confirmed, False otherwise
        """
        if force:
            self.logger.warning("⚠️  Force mode enabled - skipping confirmation prompt")
            return True

        print("\n" + "=" * 60)
        print("⚠️  WARNING: You are about to DELETE images from ECR!")
        print("=" * 60)
        print(f"This will delete {count} {item_type}.")
        print("This action cannot be undone.")
        print("Make sure you have reviewed the decisions above.")
        print("=" * 60)

        while True:
            response = input("Are you sure you want to proceed with deletion? (yes/no): ").lower().strip()
            if response in ["yes", "y"]:
                return True
            elif response in ["no", "n"]:
                return False
            else:
                print("Please enter 'yes' or 'no'.")

    def apply(self, evaluation: RepositoryEvaluation) -> ExecutionSummary:
        """Delete the images marked DELETE, or only log them in dry-run mode"""
        keep, delete = partition(evaluation.decisions)
        summary = ExecutionSummary(
            repository=evaluation.repository,
            dry_run=self.dry_run,
            kept=len(keep),
            to_delete=len(delete),
            reclaimable_bytes=evaluation.reclaimable_bytes,
        )
        if not delete:
            return summary

        if self.dry_run:
            for digest in delete:
                self.logger.info(f"ℹ️ Dry-run: Would delete image {digest} from {evaluation.repository}")
            return summary

        result = self.registry_client.delete_images(evaluation.repository, delete)
        summary.deleted = list(result.deleted)
        summary.failures = dict(result.failures)
        for digest in result.deleted:
            self.logger.info(f"[SUCCESS] ✅ Image deleted: {digest}")
        if not result.ok:
            for digest, reason in result.failures.items():
                self.logger.error(f"[ERROR] ❌ Error deleting image {digest}: {reason}")
            self.logger.warning(
                f"⚠️  {len(result.failures)} of {len(delete)} deletions failed in {evaluation.repository}"
            )
        return summary

    def log_summary(self, summaries: Sequence[ExecutionSummary]) -> None:
        """Log a standardized deletion summary across repositories"""
        mode = "DRY RUN: " if self.dry_run else ""
        total_kept = sum(s.kept for s in summaries)
        total_to_delete = sum(s.to_delete for s in summaries)
        total_deleted = sum(len(s.deleted) for s in summaries)
        total_failed = sum(len(s.failures) for s in summaries)
        reclaimable = sum(s.reclaimable_bytes for s in summaries)

        self.logger.info(f"\n📊 {mode}Retention Summary:")
        self.logger.info(f"   Repositories: {len(summaries)}")
        self.logger.info(f"   Kept: {total_kept}")
        if self.dry_run:
            self.logger.info(f"   Would delete: {total_to_delete}")
            self.logger.info(f"   Would save: {sizeof_fmt(reclaimable)}")
        else:
            self.logger.info(f"   Successfully deleted: {total_deleted}")
            self.logger.info(f"   Failed deletions: {total_failed}")

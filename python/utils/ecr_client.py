#!/usr/bin/env python3
"""
Amazon ECR registry client.

Lists repositories and image metadata and deletes images by digest. Failures
are reported, never retried: every run works on a fresh snapshot, so anything
that fails now is picked up by the next run.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from utils.error_utils import create_aws_credentials_error, create_ecr_error
from utils.logging_utils import get_logger
from utils.retention_policy import ImageRecord

logger = get_logger(__name__)

# BatchDeleteImage accepts at most 100 image ids per call
BATCH_DELETE_LIMIT = 100


@dataclass
class DeletionResult:
    """Outcome of deleting images from one repository"""
    repository: str
    deleted: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)  # digest -> reason

    @property
    def ok(self) -> bool:
        return not self.failures


def get_ecr_client(region_name: str):
    return boto3.client("ecr", region_name=region_name)


def image_record_from_detail(detail: Dict[str, Any]) -> ImageRecord:
    """Convert one DescribeImages ``imageDetails`` entry to an ImageRecord"""
    return ImageRecord(
        digest=detail["imageDigest"],
        tags=frozenset(detail.get("imageTags") or ()),
        pushed_at=detail.get("imagePushedAt"),
        size_bytes=detail.get("imageSizeInBytes"),
    )


class ECRRegistryClient:
    """Thin wrapper over the boto3 ECR client"""

    def __init__(self, region: str, client=None):
        """
        Args:
            region: AWS region of the registry
            client: Pre-built boto3 ECR client (a new one is created if omitted)
        """
        self.region = region
        if client is None:
            try:
                client = get_ecr_client(region)
            except (BotoCoreError, ClientError) as e:
                raise create_aws_credentials_error(region, e) from e
        self.client = client

    def list_repositories(self) -> List[str]:
        """Return the names of all repositories in the region"""
        names = []
        try:
            paginator = self.client.get_paginator("describe_repositories")
            for page in paginator.paginate():
                names.extend(repo["repositoryName"] for repo in page.get("repositories", []))
        except (BotoCoreError, ClientError) as e:
            raise create_ecr_error("DescribeRepositories", e) from e
        logger.debug(f"Found {len(names)} repositories in {self.region}")
        return names

    def list_images(self, repository: str) -> List[ImageRecord]:
        """Return image records for every digest in a repository"""
        images = []
        try:
            paginator = self.client.get_paginator("describe_images")
            for page in paginator.paginate(repositoryName=repository):
                images.extend(image_record_from_detail(d) for d in page.get("imageDetails", []))
        except (BotoCoreError, ClientError) as e:
            raise create_ecr_error("DescribeImages", e, repository=repository) from e
        return images

    def delete_images(self, repository: str, digests: Sequence[str]) -> DeletionResult:
        """Delete images by digest in batches.

        A failing batch is recorded against each of its digests and the
        remaining batches are still attempted.
        """
        result = DeletionResult(repository=repository)
        digests = list(digests)

        for start in range(0, len(digests), BATCH_DELETE_LIMIT):
            chunk = digests[start:start + BATCH_DELETE_LIMIT]
            try:
                response = self.client.batch_delete_image(
                    repositoryName=repository,
                    imageIds=[{"imageDigest": digest} for digest in chunk],
                )
            except (BotoCoreError, ClientError) as e:
                error = create_ecr_error("BatchDeleteImage", e, repository=repository)
                logger.error(error.message)
                for digest in chunk:
                    result.failures[digest] = str(e)
                continue

            for image_id in response.get("imageIds", []):
                digest = image_id.get("imageDigest")
                if digest and digest not in result.deleted:
                    result.deleted.append(digest)

            for failure in response.get("failures", []):
                digest = failure.get("imageId", {}).get("imageDigest", "unknown")
                reason = failure.get("failureReason") or failure.get("failureCode", "unknown reason")
                result.failures[digest] = reason

        return result

"""
Error message utilities for providing actionable guidance to users.

This module provides the exception types raised by the retention cleaner and
helpers that attach suggested fixes to registry and configuration failures.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    PERMISSION = "permission"
    RESOURCE = "resource"
    NETWORK = "network"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class ConfigurationError(ActionableError):
    """Raised when retention policy parameters are invalid.

    Always raised before any image is examined, so a run that fails with this
    error has produced no decisions.
    """

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None,
                 suggestions: Optional[List[str]] = None):
        self.field = field
        self.value = value
        details = {}
        if field is not None:
            details = {"field": field, "value": value}
        super().__init__(
            message,
            category=ErrorCategory.CONFIGURATION,
            suggestions=suggestions,
            details=details,
        )


def create_config_error(field: str, value: Any, reason: str) -> ConfigurationError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml or the matching command line flag",
        "Verify the value matches the expected format",
        "Check config-example.yaml for the correct format",
    ]

    if "prefix" in field.lower():
        suggestions.insert(1, "Prefixes are given as a comma-separated list, e.g. latest,dev,main")
    elif "keep" in field.lower():
        suggestions.insert(1, "keep_per_prefix must be an integer of at least 1")
    elif "age" in field.lower():
        suggestions.insert(1, "max_age_days must be an integer of at least 0")
    elif "variant" in field.lower():
        suggestions.insert(1, "Use 'A'/'global' or 'B'/'per-prefix'")

    return ConfigurationError(
        f"Configuration error: Invalid value for '{field}': {reason}",
        field=field,
        value=value,
        suggestions=suggestions,
    )


def _client_error_code(error: Exception) -> str:
    """Extract the AWS error code from a botocore ClientError, if any"""
    response = getattr(error, "response", None) or {}
    return str(response.get("Error", {}).get("Code", ""))


def create_ecr_error(operation: str, error: Exception, repository: Optional[str] = None) -> ActionableError:
    """Create actionable error for ECR API failures"""
    code = _client_error_code(error)
    error_str = f"{code} {error}".lower()

    suggestions = [
        "Verify AWS credentials are configured (aws configure)",
        "Check that the region is correct for your registry",
        "Verify IAM permissions for ECR access",
    ]
    category = ErrorCategory.UNKNOWN

    if "accessdenied" in error_str or "not authorized" in error_str or "403" in error_str:
        category = ErrorCategory.PERMISSION
        suggestions.insert(0, "Grant ecr:DescribeRepositories, ecr:DescribeImages and ecr:BatchDeleteImage")
    elif "repositorynotfound" in error_str or "not found" in error_str:
        category = ErrorCategory.RESOURCE
        suggestions.insert(0, f"Verify repository '{repository}' exists in this region")
    elif "expiredtoken" in error_str or "unrecognizedclient" in error_str or "credentials" in error_str:
        category = ErrorCategory.AUTHENTICATION
        suggestions.insert(0, "Refresh your AWS session credentials")
    elif "timeout" in error_str or "connect" in error_str or "endpoint" in error_str:
        category = ErrorCategory.NETWORK
        suggestions.insert(0, "Check network connectivity to the ECR endpoint")

    details = {
        "operation": operation,
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    if repository:
        details["repository"] = repository
    if code:
        details["error_code"] = code

    target = f" for repository {repository}" if repository else ""
    return ActionableError(
        message=f"ECR operation failed: {operation}{target}",
        category=category,
        suggestions=suggestions,
        details=details,
    )


def create_aws_credentials_error(region: str, error: Exception) -> ActionableError:
    """Create actionable error for AWS session/credential setup failures"""
    suggestions = [
        "Configure AWS credentials: aws configure",
        "Or set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables",
        "Or select a named profile with AWS_PROFILE",
        f"Verify '{region}' is a valid AWS region name",
    ]

    return ActionableError(
        message=f"Failed to create AWS session in region {region}",
        category=ErrorCategory.AUTHENTICATION,
        suggestions=suggestions,
        details={
            "region": region,
            "error_type": type(error).__name__,
            "error_message": str(error),
        },
    )

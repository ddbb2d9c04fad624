#!/usr/bin/env python3
"""
Configuration Manager for the ECR image retention cleaner

This module handles loading and managing configuration from config.yaml
and environment variables, and turns it into a validated PolicyConfig.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

import yaml

from utils.error_utils import ConfigurationError
from utils.retention_policy import PolicyConfig, PolicyVariant, parse_variant, validate_policy_config
from utils.tag_matching import parse_prefix_list

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "y", "on")
_FALSE_VALUES = ("false", "0", "no", "n", "off")


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


def parse_bool(value: Any) -> bool:
    """Coerce yes/no style values to bool"""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigValidationError(f"Expected a yes/no value, got: {value!r}")


def _as_prefix_tuple(value: Any) -> Tuple[str, ...]:
    """Accept either a YAML list or a comma-separated string of prefixes"""
    if value is None:
        return ()
    if isinstance(value, str):
        return parse_prefix_list(value)
    if isinstance(value, (list, tuple)):
        return parse_prefix_list(",".join(str(v) for v in value))
    raise ConfigValidationError(
        f"retention.prefixes must be a list or comma-separated string, got: {type(value).__name__}"
    )


def _as_int(name: str, value: Any) -> int:
    """Coerce a config value to int, rejecting booleans and fractional numbers"""
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ConfigValidationError(f"{name} must be an integer, got: {value} (type: {type(value).__name__})")
    try:
        return int(value)
    except (ValueError, TypeError):
        raise ConfigValidationError(f"{name} must be an integer, got: {value} (type: {type(value).__name__})")


class ConfigManager:
    """Manages configuration for the ECR retention cleaner"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        # Allow override via environment variable for containerized deployments
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "aws": {"region": "us-east-1"},
            "retention": {
                "prefixes": ["latest"],
                "keep_per_prefix": 2,
                "max_age_days": 30,
                "variant": PolicyVariant.PER_PREFIX.value,
                "repositories": [],
            },
            "analysis": {"max_workers": 4, "output_dir": "reports"},
            "reports": {"retention_report": "retention-report.json"},
            "logging": {"level": "INFO", "file": "ecr-image-cleanup.log"},
            "security": {"dry_run_by_default": True, "require_confirmation": True},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logger.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error loading config file: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    # AWS configuration
    def get_region(self) -> str:
        """Get AWS region from environment or config"""
        return (
            os.environ.get("AWS_REGION")
            or os.environ.get("AWS_DEFAULT_REGION")
            or self.config["aws"]["region"]
        )

    # Retention policy configuration
    def get_retained_prefixes(self) -> Tuple[str, ...]:
        """Get retained tag prefixes (env RETAINED_PREFIXES is a comma-separated list)"""
        env_value = os.environ.get("RETAINED_PREFIXES")
        if env_value is not None:
            return parse_prefix_list(env_value)
        return _as_prefix_tuple(self.config["retention"]["prefixes"])

    def get_keep_per_prefix(self) -> int:
        """Get number of newest matching images kept per prefix, with type coercion"""
        keep = os.environ.get("KEEP_PER_PREFIX") or self.config["retention"]["keep_per_prefix"]
        return _as_int("keep_per_prefix", keep)

    def get_max_age_days(self) -> int:
        """Get max image age in days, with type coercion"""
        max_age = os.environ.get("MAX_AGE_DAYS") or self.config["retention"]["max_age_days"]
        return _as_int("max_age_days", max_age)

    def get_policy_variant(self) -> PolicyVariant:
        """Get the retention policy variant ('global'/'A' or 'per-prefix'/'B')"""
        value = os.environ.get("POLICY_VARIANT") or self.config["retention"]["variant"]
        try:
            return parse_variant(value)
        except ConfigurationError:
            raise ConfigValidationError(f"retention.variant must be one of A, B, global, per-prefix, got: {value}")

    def get_repositories(self) -> List[str]:
        """Get repository name filter; empty means every repository"""
        env_value = os.environ.get("REPOSITORIES")
        if env_value is not None:
            return list(parse_prefix_list(env_value))
        return list(_as_prefix_tuple(self.config["retention"].get("repositories")))

    # Analysis configuration
    def get_max_workers(self) -> int:
        """Get max workers from config, with type coercion"""
        workers = self.config["analysis"]["max_workers"]
        return _as_int("max_workers", workers)

    def get_output_dir(self) -> str:
        """Get output directory from environment or config"""
        return os.environ.get("OUTPUT_DIR") or self.config["analysis"]["output_dir"]

    def get_retention_report_path(self) -> str:
        """Get retention report path, relative paths resolved under output_dir"""
        path = self.config["reports"]["retention_report"]
        if os.path.isabs(path):
            return path
        return os.path.join(self.get_output_dir(), path)

    # Logging configuration
    def get_log_level(self) -> str:
        return (os.environ.get("LOG_LEVEL") or self.config["logging"]["level"]).upper()

    def get_log_file(self) -> Optional[str]:
        """Get log file path; an empty value disables file logging"""
        value = os.environ.get("LOG_FILE")
        if value is None:
            value = self.config["logging"].get("file")
        return value or None

    # Security configuration
    def is_dry_run_by_default(self) -> bool:
        """Check if dry run is enabled by default (env DRY_RUN wins)"""
        env_value = os.environ.get("DRY_RUN")
        if env_value is not None:
            return parse_bool(env_value)
        return parse_bool(self.config["security"]["dry_run_by_default"])

    def requires_confirmation(self) -> bool:
        """Check if a confirmation prompt is required before deletions"""
        return parse_bool(self.config["security"]["require_confirmation"])

    def build_policy_config(
        self,
        prefixes: Optional[Sequence[str]] = None,
        keep_per_prefix: Optional[int] = None,
        max_age_days: Optional[int] = None,
        dry_run: Optional[bool] = None,
        variant: Any = None,
    ) -> PolicyConfig:
        """Build a validated PolicyConfig.

        Explicit arguments (usually command line flags) take precedence over
        environment variables, which take precedence over the config file.

        Raises:
            ConfigurationError: If the resulting policy is invalid
        """
        policy = PolicyConfig(
            retained_prefixes=tuple(prefixes) if prefixes is not None else self.get_retained_prefixes(),
            keep_per_prefix=keep_per_prefix if keep_per_prefix is not None else self.get_keep_per_prefix(),
            max_age_days=max_age_days if max_age_days is not None else self.get_max_age_days(),
            dry_run=dry_run if dry_run is not None else self.is_dry_run_by_default(),
            variant=parse_variant(variant) if variant is not None else self.get_policy_variant(),
        )
        validate_policy_config(policy)
        return policy

    def validate_config(self, include_policy: bool = True) -> None:
        """Validate configuration values

        Args:
            include_policy: If False, skip the retention policy values; callers that
                apply command line overrides validate the final policy through
                build_policy_config instead

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        region = self.get_region()
        if not region or not str(region).strip():
            errors.append("AWS region is required and cannot be empty")
        elif not self._is_valid_region(region):
            warnings.append(f"AWS region '{region}' may be invalid (expected format like us-east-1)")

        if include_policy:
            try:
                prefixes = self.get_retained_prefixes()
                keep = self.get_keep_per_prefix()
                max_age = self.get_max_age_days()
                variant = self.get_policy_variant()
            except ConfigValidationError as e:
                errors.append(str(e))
            else:
                if keep < 1:
                    errors.append(f"keep_per_prefix must be at least 1, got: {keep}")
                if max_age < 0:
                    errors.append(f"max_age_days must be non-negative, got: {max_age}")
                if variant is PolicyVariant.GLOBAL and not prefixes:
                    errors.append("retention.prefixes cannot be empty with the global policy variant")
                elif not prefixes:
                    warnings.append("No retained prefixes configured; only the age cutoff protects tagged images")

        try:
            max_workers = self.get_max_workers()
            if max_workers < 1:
                errors.append(f"max_workers must be a positive integer, got: {max_workers}")
            elif max_workers > 50:
                warnings.append(f"max_workers is very high ({max_workers}), ECR may throttle requests")
        except ConfigValidationError as e:
            errors.append(str(e))

        output_dir = self.get_output_dir()
        if not output_dir or not str(output_dir).strip():
            errors.append("output_dir is required and cannot be empty")

        try:
            self.is_dry_run_by_default()
            self.requires_confirmation()
        except ConfigValidationError as e:
            errors.append(str(e))

        for warning in warnings:
            logger.warning(f"Config warning: {warning}")

        if errors:
            message = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
            raise ConfigValidationError(message)

    def _is_valid_region(self, region: str) -> bool:
        """Check AWS region name format, e.g. us-east-1 or us-gov-west-1"""
        return bool(re.match(r"^[a-z]{2}(-[a-z]+)+-\d+$", region))

    def print_config(self, policy: Optional[PolicyConfig] = None, region: Optional[str] = None):
        """Log current configuration

        Args:
            policy: Effective policy (e.g. with command line overrides); built from config if None
            region: Region override; configured region if None
        """
        if policy is None:
            policy = self.build_policy_config()
        logger.info("Current Configuration:")
        logger.info(f"  AWS Region: {region or self.get_region()}")
        logger.info(f"  Retained Prefixes: {', '.join(policy.retained_prefixes) or '(none)'}")
        logger.info(f"  Keep Per Prefix: {policy.keep_per_prefix}")
        logger.info(f"  Max Age Days: {policy.max_age_days}")
        logger.info(f"  Policy Variant: {policy.variant.value}")
        logger.info(f"  Repositories: {', '.join(self.get_repositories()) or '(all)'}")
        logger.info(f"  Max Workers: {self.get_max_workers()}")
        logger.info(f"  Output Dir: {self.get_output_dir()}")
        logger.info(f"  Dry Run: {policy.dry_run}")


# Global config manager instance
# Validation can be disabled by setting SKIP_CONFIG_VALIDATION=true environment variable
# This is useful for testing or when you know the config is valid
# Policy values are left to build_policy_config so command line overrides apply first
config_manager = ConfigManager(validate=False)
if os.environ.get("SKIP_CONFIG_VALIDATION", "").lower() not in ("true", "1", "yes"):
    config_manager.validate_config(include_policy=False)

"""
Tests for the command line entry point in main.py

The registry client is mocked; tests exercise argument handling, policy
construction, report writing and the deletion flow.
"""

import json
import logging
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import yaml

import main
from utils.config_manager import ConfigManager
from utils.ecr_client import DeletionResult
from utils.error_utils import ConfigurationError
from utils.retention_policy import ImageRecord, PolicyVariant

NOW = datetime(2026, 4, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for key in ["AWS_REGION", "AWS_DEFAULT_REGION", "RETAINED_PREFIXES", "KEEP_PER_PREFIX", "MAX_AGE_DAYS",
                "POLICY_VARIANT", "REPOSITORIES", "DRY_RUN"]:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("LOG_FILE", "")


@pytest.fixture
def cm():
    return ConfigManager(config_file="/nonexistent/config.yaml", validate=False)


@pytest.fixture
def registry_client():
    client = MagicMock()
    client.list_repositories.return_value = ["api", "web"]
    client.list_images.side_effect = lambda repo: {
        "api": [
            ImageRecord("sha256:a1", {"latest"}, NOW - timedelta(days=1)),
            ImageRecord("sha256:a2", {"dev-1"}, NOW - timedelta(days=60)),
            ImageRecord("sha256:a3", set(), NOW - timedelta(days=2)),
        ],
        "web": [
            ImageRecord("sha256:w1", {"latest"}, NOW - timedelta(days=5)),
        ],
    }[repo]
    client.delete_images.side_effect = lambda repo, digests: DeletionResult(repository=repo, deleted=list(digests))
    return client


def read_report(path):
    with open(path) as f:
        return json.load(f)


class TestParseArguments:
    """Tests for argument parsing"""

    def test_defaults(self):
        args = main.parse_arguments([])
        assert not args.apply
        assert not args.force
        assert args.prefixes is None
        assert args.repositories is None

    def test_repeatable_repository(self):
        args = main.parse_arguments(["--repository", "api", "--repository", "web"])
        assert args.repositories == ["api", "web"]

    def test_rejects_unknown_variant(self):
        with pytest.raises(SystemExit):
            main.parse_arguments(["--variant", "C"])


class TestBuildPolicy:
    """Tests for combining flags and configuration"""

    def test_flags_override_config(self, cm):
        args = main.parse_arguments([
            "--prefixes", "release, main", "--keep-per-prefix", "3", "--max-age-days", "9",
            "--variant", "A", "--apply",
        ])
        policy = main.build_policy(args, cm)
        assert policy.retained_prefixes == ("release", "main")
        assert policy.keep_per_prefix == 3
        assert policy.max_age_days == 9
        assert policy.variant is PolicyVariant.GLOBAL
        assert policy.dry_run is False

    def test_dry_run_is_default(self, cm):
        assert main.build_policy(main.parse_arguments([]), cm).dry_run is True

    def test_invalid_keep_raises(self, cm):
        with pytest.raises(ConfigurationError):
            main.build_policy(main.parse_arguments(["--keep-per-prefix", "0"]), cm)


class TestPromptForSettings:
    """Tests for interactive prompts"""

    def test_answers_fill_arguments(self):
        args = main.parse_arguments([])
        with patch("builtins.input", side_effect=["eu-west-1", "10", "latest,dev,main", "no"]):
            main.prompt_for_settings(args)
        assert args.region == "eu-west-1"
        assert args.max_age_days == 10
        assert args.prefixes == "latest,dev,main"
        assert args.apply is True

    def test_empty_answers_keep_defaults(self):
        args = main.parse_arguments(["--max-age-days", "5"])
        with patch("builtins.input", side_effect=["", "", "", ""]):
            main.prompt_for_settings(args)
        assert args.region is None
        assert args.max_age_days == 5
        assert args.apply is False

    def test_non_numeric_retention(self):
        args = main.parse_arguments([])
        with patch("builtins.input", side_effect=["us-east-1", "ten"]):
            with pytest.raises(ConfigurationError):
                main.prompt_for_settings(args)


class TestSelectRepositories:
    """Tests for the repository filter"""

    def test_no_filter(self):
        assert main.select_repositories(["a", "b"], []) == ["a", "b"]

    def test_filter_keeps_registry_order(self):
        assert main.select_repositories(["a", "b", "c"], ["c", "a", "zzz"]) == ["a", "c"]


class TestRun:
    """Tests for a full cleanup pass"""

    def test_dry_run_writes_report_and_deletes_nothing(self, cm, registry_client, tmp_path):
        output = tmp_path / "report.json"
        args = main.parse_arguments(["--prefixes", "latest", "--max-age-days", "30", "--output", str(output)])

        exit_code = main.run(args, cm, registry_client=registry_client, now=NOW)

        assert exit_code == main.EXIT_OK
        registry_client.delete_images.assert_not_called()
        report = read_report(output)
        assert report["summary"]["delete"] == 2
        assert report["metadata"]["dry_run"] is True
        reasons = {d["digest"]: d["reason"] for d in report["repositories"]["api"]["decisions"]}
        assert reasons == {"sha256:a1": "RETAINED_RECENT_MATCH", "sha256:a2": "AGED_OUT", "sha256:a3": "UNTAGGED"}

    def test_apply_with_force_deletes(self, cm, registry_client, tmp_path):
        args = main.parse_arguments([
            "--prefixes", "latest", "--apply", "--force", "--output", str(tmp_path / "r.json"),
        ])

        exit_code = main.run(args, cm, registry_client=registry_client, now=NOW)

        assert exit_code == main.EXIT_OK
        registry_client.delete_images.assert_called_once_with("api", ["sha256:a2", "sha256:a3"])

    def test_apply_declined(self, cm, registry_client, tmp_path):
        args = main.parse_arguments(["--apply", "--output", str(tmp_path / "r.json")])
        with patch("builtins.input", return_value="no"):
            exit_code = main.run(args, cm, registry_client=registry_client, now=NOW)
        assert exit_code == main.EXIT_OK
        registry_client.delete_images.assert_not_called()

    def test_delete_failures_exit_code(self, cm, registry_client, tmp_path):
        registry_client.delete_images.side_effect = lambda repo, digests: DeletionResult(
            repository=repo, failures={d: "denied" for d in digests}
        )
        args = main.parse_arguments(["--apply", "--force", "--output", str(tmp_path / "r.json")])
        assert main.run(args, cm, registry_client=registry_client, now=NOW) == main.EXIT_DELETE_FAILURES

    def test_repository_filter(self, cm, registry_client, tmp_path):
        args = main.parse_arguments(["--repository", "web", "--output", str(tmp_path / "r.json")])
        main.run(args, cm, registry_client=registry_client, now=NOW)
        registry_client.list_images.assert_called_once_with("web")

    def test_parallel_evaluation_keeps_order(self, cm, registry_client, tmp_path):
        output = tmp_path / "r.json"
        args = main.parse_arguments(["--max-workers", "4", "--output", str(output)])
        main.run(args, cm, registry_client=registry_client, now=NOW)
        assert list(read_report(output)["repositories"]) == ["api", "web"]

    def test_no_repositories(self, cm, tmp_path):
        client = MagicMock()
        client.list_repositories.return_value = []
        args = main.parse_arguments(["--output", str(tmp_path / "r.json")])
        assert main.run(args, cm, registry_client=client, now=NOW) == main.EXIT_OK
        assert not os.path.exists(tmp_path / "r.json")


class TestMain:
    """Tests for main() exit codes"""

    def test_configuration_error_exits_1(self):
        with patch.object(main, "ECRRegistryClient") as mock_client:
            assert main.main(["--config", "/nonexistent/config.yaml", "--keep-per-prefix", "0"]) == main.EXIT_ERROR
        mock_client.assert_not_called()

    def test_show_config(self, caplog):
        with patch.object(main, "ECRRegistryClient") as mock_client:
            with caplog.at_level("INFO"):
                exit_code = main.main(["--config", "/nonexistent/config.yaml", "--show-config"])
        assert exit_code == main.EXIT_OK
        assert "Policy Variant: per-prefix" in caplog.text
        mock_client.assert_not_called()

    def test_success(self, registry_client, tmp_path):
        with patch.object(main, "ECRRegistryClient", return_value=registry_client):
            exit_code = main.main([
                "--config", "/nonexistent/config.yaml", "--region", "us-east-1",
                "--output", str(tmp_path / "r.json"),
            ])
        assert exit_code == main.EXIT_OK


@pytest.fixture
def config_file(tmp_path):
    """Config file that is invalid on its own: global variant, no prefixes, keep 0"""
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"retention": {"variant": "global", "prefixes": [], "keep_per_prefix": 0}}))
    return str(path)


@pytest.fixture
def remove_file_handlers():
    """Detach file handlers main() adds to the root logger"""
    root = logging.getLogger()
    before = list(root.handlers)
    yield
    for handler in list(root.handlers):
        if handler not in before:
            root.removeHandler(handler)
            handler.close()


class TestCommandLinePrecedence:
    """Command line flags override the config file before validation"""

    def test_flags_repair_invalid_config_file(self, config_file, caplog):
        with caplog.at_level("INFO"):
            exit_code = main.main([
                "--config", config_file, "--prefixes", "latest", "--keep-per-prefix", "2", "--show-config",
            ])
        assert exit_code == main.EXIT_OK
        assert "Keep Per Prefix: 2" in caplog.text
        assert "Retained Prefixes: latest" in caplog.text
        assert "Policy Variant: global" in caplog.text

    def test_invalid_config_file_without_flags(self, config_file):
        assert main.main(["--config", config_file, "--show-config"]) == main.EXIT_ERROR

    def test_run_uses_overridden_policy(self, config_file, registry_client, tmp_path):
        output = tmp_path / "r.json"
        with patch.object(main, "ECRRegistryClient", return_value=registry_client):
            exit_code = main.main([
                "--config", config_file, "--prefixes", "latest", "--keep-per-prefix", "1",
                "--output", str(output),
            ])
        assert exit_code == main.EXIT_OK
        metadata = read_report(output)["metadata"]
        assert metadata["variant"] == "global"
        assert metadata["keep_per_prefix"] == 1

    def test_invalid_non_policy_setting_still_fails(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump({"analysis": {"max_workers": 0}}))
        assert main.main(["--config", str(path), "--show-config"]) == main.EXIT_ERROR


class TestLogFile:
    """Logs are appended to the configured log file as well as stdout"""

    def test_log_file_receives_output(self, tmp_path, remove_file_handlers):
        log_file = tmp_path / "ecr-image-cleanup.log"
        log_file.write_text("previous run\n")

        exit_code = main.main(["--config", "/nonexistent/config.yaml", "--log-file", str(log_file), "--show-config"])

        for handler in logging.getLogger().handlers:
            handler.flush()
        content = log_file.read_text()
        assert exit_code == main.EXIT_OK
        assert content.startswith("previous run\n")
        assert "Current Configuration:" in content

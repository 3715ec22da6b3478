# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Configuration and environment loading tests.
"""

from pathlib import Path

import pytest

from loanvault.config import BackupConfig
from loanvault.env import create_config_from_env
from loanvault.exceptions import ConfigurationError

ENV_VARS = [
    "S3_BUCKET",
    "S3_BACKUP_BUCKET",
    "DATABASE_URL",
    "S3_REGION",
    "S3_ENDPOINT",
    "S3_ACCESS_KEY",
    "S3_SECRET_KEY",
    "BACKUP_RETENTION_DAYS",
    "LOANVAULT_WORKSPACE_ROOT",
    "LOANVAULT_MAX_CONCURRENCY",
    "LOANVAULT_PROCESS_TIMEOUT",
]


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults():
    config = BackupConfig(files_bucket="loan-files")

    assert config.backup_bucket is None
    assert config.effective_backup_bucket == "loan-files"
    assert config.backup_prefix == "backups/"
    assert config.retention_days == 14
    assert config.force_path_style is True
    assert config.upload_max_attempts == 3


def test_validation_collects_all_errors():
    with pytest.raises(ConfigurationError) as exc_info:
        BackupConfig(
            files_bucket="Bad_Bucket",
            backup_prefix="backups",
            retention_days=-1,
            max_concurrent_transfers=0,
            upload_max_attempts=0,
        )

    errors = exc_info.value.details["errors"]
    assert len(errors) == 5


@pytest.mark.parametrize("bucket", ["ab", "192.168.0.1", "a..b", "-abc", "UPPER"])
def test_invalid_bucket_names(bucket: str):
    with pytest.raises(ConfigurationError):
        BackupConfig(files_bucket=bucket)


def test_with_updates_returns_validated_copy():
    config = BackupConfig(files_bucket="loan-files")

    updated = config.with_updates(backup_bucket="loan-backups", retention_days=30)

    assert updated.effective_backup_bucket == "loan-backups"
    assert updated.retention_days == 30
    assert config.retention_days == 14

    with pytest.raises(ConfigurationError):
        config.with_updates(retention_days=-5)


def test_from_env(clean_env):
    clean_env.setenv("S3_BUCKET", "loan-files")
    clean_env.setenv("S3_BACKUP_BUCKET", "loan-backups")
    clean_env.setenv("DATABASE_URL", "postgresql://loan:pw@db/loans")
    clean_env.setenv("S3_ENDPOINT", "http://minio:9000")
    clean_env.setenv("S3_ACCESS_KEY", "minio")
    clean_env.setenv("S3_SECRET_KEY", "minio123")
    clean_env.setenv("BACKUP_RETENTION_DAYS", "30")
    clean_env.setenv("LOANVAULT_WORKSPACE_ROOT", "/var/tmp/loanvault")
    clean_env.setenv("LOANVAULT_MAX_CONCURRENCY", "16")
    clean_env.setenv("LOANVAULT_PROCESS_TIMEOUT", "600")

    config = create_config_from_env()

    assert config.files_bucket == "loan-files"
    assert config.effective_backup_bucket == "loan-backups"
    assert config.database_url == "postgresql://loan:pw@db/loans"
    assert config.endpoint_url == "http://minio:9000"
    assert config.access_key_id == "minio"
    assert config.secret_access_key == "minio123"
    assert config.retention_days == 30
    assert config.workspace_root == Path("/var/tmp/loanvault")
    assert config.max_concurrent_transfers == 16
    assert config.process_timeout_seconds == 600.0


def test_from_env_defaults(clean_env):
    clean_env.setenv("S3_BUCKET", "loan-files")

    config = create_config_from_env()

    assert config.backup_bucket is None
    assert config.retention_days == 14
    assert config.region == "us-east-1"
    assert config.max_concurrent_transfers == 8


def test_from_env_requires_bucket(clean_env):
    with pytest.raises(ConfigurationError, match="S3_BUCKET"):
        create_config_from_env()


@pytest.mark.parametrize("value", ["abc", "-3"])
def test_from_env_invalid_retention(clean_env, value: str):
    clean_env.setenv("S3_BUCKET", "loan-files")
    clean_env.setenv("BACKUP_RETENTION_DAYS", value)

    with pytest.raises(ConfigurationError, match="BACKUP_RETENTION_DAYS"):
        create_config_from_env()


def test_from_env_invalid_concurrency(clean_env):
    clean_env.setenv("S3_BUCKET", "loan-files")
    clean_env.setenv("LOANVAULT_MAX_CONCURRENCY", "0")

    with pytest.raises(ConfigurationError, match="LOANVAULT_MAX_CONCURRENCY"):
        create_config_from_env()

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

These helpers read the same environment variables the loan application
already uses for its S3 and database settings and turn them into a
BackupConfig.
"""

from __future__ import annotations

import os
from pathlib import Path

from loanvault.config import BackupConfig
from loanvault.errors import (
    explain_invalid_positive_int_env,
    explain_invalid_retention_days_env,
    explain_missing_bucket_env,
)
from loanvault.exceptions import ConfigurationError


def _parse_retention_days(value: str | None) -> int:
    if not value:
        return 14
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_retention_days_env(value)) from exc
    if days < 0:
        raise ConfigurationError(explain_invalid_retention_days_env(value))
    return days


def _parse_positive_int(name: str, value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_positive_int_env(name, value)) from exc
    if parsed < 1:
        raise ConfigurationError(explain_invalid_positive_int_env(name, value))
    return parsed


def create_config_from_env() -> BackupConfig:
    """
    Create a BackupConfig from environment variables.

    Required:
        - S3_BUCKET: Canonical bucket holding application files

    Optional environment variables:
        - DATABASE_URL: PostgreSQL URL used for dumps, restores and key inventory
        - S3_BACKUP_BUCKET: Separate bucket for backups (default: S3_BUCKET)
        - S3_ENDPOINT: Custom endpoint for S3-compatible stores
        - S3_REGION: Region (default: us-east-1)
        - S3_ACCESS_KEY / S3_SECRET_KEY: Static credentials
        - BACKUP_RETENTION_DAYS: Non-negative integer (default: 14)
        - LOANVAULT_WORKSPACE_ROOT: Parent directory for staging workspaces
        - LOANVAULT_MAX_CONCURRENCY: Worker count for object transfers (default: 8)
        - LOANVAULT_PROCESS_TIMEOUT: Seconds allowed for pg_dump/psql (default: 3600)
    """

    bucket = os.getenv("S3_BUCKET")
    if not bucket:
        raise ConfigurationError(explain_missing_bucket_env())

    kwargs: dict = {
        "files_bucket": bucket,
        "backup_bucket": os.getenv("S3_BACKUP_BUCKET") or None,
        "database_url": os.getenv("DATABASE_URL") or None,
        "region": os.getenv("S3_REGION", "us-east-1"),
        "endpoint_url": os.getenv("S3_ENDPOINT") or None,
        "access_key_id": os.getenv("S3_ACCESS_KEY") or None,
        "secret_access_key": os.getenv("S3_SECRET_KEY") or None,
        "retention_days": _parse_retention_days(os.getenv("BACKUP_RETENTION_DAYS")),
        "max_concurrent_transfers": _parse_positive_int(
            "LOANVAULT_MAX_CONCURRENCY", os.getenv("LOANVAULT_MAX_CONCURRENCY"), 8
        ),
        "process_timeout_seconds": float(
            _parse_positive_int(
                "LOANVAULT_PROCESS_TIMEOUT", os.getenv("LOANVAULT_PROCESS_TIMEOUT"), 3600
            )
        ),
    }

    workspace_root = os.getenv("LOANVAULT_WORKSPACE_ROOT")
    if workspace_root:
        kwargs["workspace_root"] = Path(workspace_root)

    return BackupConfig(**kwargs)

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation so that concurrent
backup and restore calls can share one instance safely.
"""

import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

MANIFEST_VERSION = "1.0"

DEFAULT_BACKUP_PREFIX = "backups/"


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    # Must be lowercase letters, numbers, hyphens, or periods
    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    # No consecutive periods
    if ".." in bucket:
        return False

    # Not IP address format
    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable configuration for the backup/restore subsystem.

    The database URL is only parsed when a dump or restore runs, so a
    config without one can still list, sweep and delete backups.
    """

    # Required: canonical bucket holding live application files
    files_bucket: str

    # Bucket receiving backup artifacts (defaults to files_bucket)
    backup_bucket: str | None = None

    # Key prefix for backup artifacts
    backup_prefix: str = DEFAULT_BACKUP_PREFIX

    # PostgreSQL connection URL used by pg_dump/psql and key inventory
    database_url: str | None = None

    # S3 connection
    region: str = "us-east-1"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    force_path_style: bool = True

    # Artifacts older than this many days are swept
    retention_days: int = 14

    # Parent directory of per-operation staging workspaces
    workspace_root: Path = field(
        default_factory=lambda: Path(tempfile.gettempdir()) / "loanvault"
    )

    # Worker count for per-object downloads and uploads
    max_concurrent_transfers: int = 8

    # Upper bound for a single pg_dump/psql run
    process_timeout_seconds: float = 3600.0

    # External binaries
    pg_dump_path: str = "pg_dump"
    psql_path: str = "psql"

    # Presigned download URL lifetime
    download_url_expiry_seconds: int = 3600

    # Retry policy for restore re-uploads
    upload_max_attempts: int = 3
    upload_retry_base_delay: float = 0.5

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not _validate_bucket_name(self.files_bucket):
            errors.append(f"Invalid bucket name: {self.files_bucket}")

        if self.backup_bucket is not None and not _validate_bucket_name(
            self.backup_bucket
        ):
            errors.append(f"Invalid backup bucket name: {self.backup_bucket}")

        if not self.backup_prefix or not self.backup_prefix.endswith("/"):
            errors.append(
                f"backup_prefix must be non-empty and end with '/', got {self.backup_prefix!r}"
            )

        if self.retention_days < 0:
            errors.append(f"retention_days must be >= 0, got {self.retention_days}")

        if self.max_concurrent_transfers < 1:
            errors.append(
                f"max_concurrent_transfers must be >= 1, got {self.max_concurrent_transfers}"
            )

        if self.process_timeout_seconds <= 0:
            errors.append(
                f"process_timeout_seconds must be > 0, got {self.process_timeout_seconds}"
            )

        if self.download_url_expiry_seconds < 1:
            errors.append(
                "download_url_expiry_seconds must be >= 1, "
                f"got {self.download_url_expiry_seconds}"
            )

        if self.upload_max_attempts < 1:
            errors.append(
                f"upload_max_attempts must be >= 1, got {self.upload_max_attempts}"
            )

        if self.upload_retry_base_delay < 0:
            errors.append(
                f"upload_retry_base_delay must be >= 0, got {self.upload_retry_base_delay}"
            )

        # Raise all errors at once
        if errors:
            from loanvault.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def effective_backup_bucket(self) -> str:
        """Bucket that actually receives backup artifacts."""
        return self.backup_bucket or self.files_bucket

    def with_updates(self, **kwargs) -> "BackupConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return BackupConfig(**current)

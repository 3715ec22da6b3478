# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Retention - Delete backups older than the retention window.
"""

from datetime import datetime, timedelta, UTC
from typing import TYPE_CHECKING

import structlog

from loanvault.audit import ACTION_BACKUP_EXPIRED, AuditEntry
from loanvault.backup.catalog import list_backups
from loanvault.config import BackupConfig
from loanvault.exceptions import StorageError
from loanvault.storage import delete_object

if TYPE_CHECKING:
    from loanvault.core import BackupState

logger = structlog.get_logger()

SWEEP_USER = "system"


async def sweep_expired_backups(
    config: BackupConfig,
    state: "BackupState",
    retention_days: int | None = None,
    *,
    now: datetime | None = None,
) -> int:
    """
    Delete every backup created strictly before now - retention_days.

    One failing delete never stops the sweep; it is logged and the
    remaining backups are still processed.

    Args:
        config: Backup configuration
        state: Runtime state
        retention_days: Window in days (default: config.retention_days)
        now: Reference time (default: current UTC time)

    Returns:
        Number of backups actually deleted
    """
    if retention_days is None:
        retention_days = config.retention_days
    if retention_days < 0:
        raise ValueError(f"retention days must be >= 0, got {retention_days}")

    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=retention_days)
    bucket = config.effective_backup_bucket

    deleted = 0
    failed = 0

    for artifact in await list_backups(config, state):
        if artifact.created_at >= cutoff:
            continue

        try:
            await delete_object(state["s3_client"], bucket, artifact.key)
        except StorageError as e:
            failed += 1
            logger.warning("backup_sweep_delete_failed", backup_id=artifact.id, error=str(e))
            continue

        deleted += 1
        logger.info(
            "backup_expired",
            backup_id=artifact.id,
            age_days=(now - artifact.created_at).days,
        )

        try:
            await state["audit_log"].record(
                AuditEntry(
                    performed_by=SWEEP_USER,
                    action=ACTION_BACKUP_EXPIRED,
                    target_id=artifact.id,
                    metadata={
                        "kind": artifact.kind.value,
                        "retention_days": retention_days,
                        "created_at": artifact.created_at.isoformat(),
                    },
                )
            )
        except Exception as e:
            logger.warning("backup_sweep_audit_failed", backup_id=artifact.id, error=str(e))

    logger.info(
        "backup_sweep_completed",
        retention_days=retention_days,
        cutoff=cutoff.isoformat(),
        deleted=deleted,
        failed=failed,
    )

    return deleted

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Core - Runtime state and the operations exposed to callers.

The S3 client, the inventory key sources and the audit log are created
once by initialize_backup_state() and handed to every operation in a
BackupState. Nothing is kept in module globals, so tests can assemble a
BackupState from fakes.
"""

from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, List, TypedDict

import structlog

from loanvault.audit import AuditLog, SqliteAuditLog
from loanvault.backup.catalog import delete_backup, get_download_url, list_backups
from loanvault.backup.composer import compose_database_backup, compose_full_backup
from loanvault.backup.models import BackupArtifact
from loanvault.backup.restore import RestoreResult, restore_backup
from loanvault.backup.retention import sweep_expired_backups
from loanvault.config import BackupConfig
from loanvault.inventory import KeySource, default_key_sources

logger = structlog.get_logger()

SYSTEM_USER = "system"


class BackupState(TypedDict):
    """Runtime collaborators shared by backup operations."""

    s3_client: Any  # aiobotocore S3 client
    key_sources: List[KeySource]
    audit_log: AuditLog
    exit_stack: AsyncExitStack | None


async def initialize_backup_state(
    config: BackupConfig,
    audit_log: AuditLog | None = None,
    key_sources: List[KeySource] | None = None,
    audit_db_path: Path | None = None,
) -> BackupState:
    """
    Initialize runtime state for backup operations.

    Opens one S3 client for the lifetime of the state and, unless given,
    builds the default key sources and a SQLite audit log.

    Args:
        config: Backup configuration
        audit_log: Audit collaborator of the host application
        key_sources: Inventory sources (default: the three loan domains)
        audit_db_path: Location of the default SQLite audit log

    Returns:
        Initialized BackupState dictionary
    """
    from aiobotocore.config import AioConfig
    from aiobotocore.session import get_session

    exit_stack = AsyncExitStack()

    session = get_session()
    client_config = AioConfig(
        s3={"addressing_style": "path" if config.force_path_style else "auto"}
    )
    s3_client = await exit_stack.enter_async_context(
        session.create_client(
            "s3",
            region_name=config.region,
            endpoint_url=config.endpoint_url,
            aws_access_key_id=config.access_key_id,
            aws_secret_access_key=config.secret_access_key,
            config=client_config,
        )
    )

    if audit_log is None:
        sqlite_log = SqliteAuditLog(audit_db_path or config.workspace_root / "audit.db")
        await sqlite_log.initialize()
        audit_log = sqlite_log

    if key_sources is None:
        key_sources = default_key_sources(config.database_url) if config.database_url else []

    logger.info(
        "backup_state_initialized",
        files_bucket=config.files_bucket,
        backup_bucket=config.effective_backup_bucket,
        key_sources=[source.name for source in key_sources],
    )

    return BackupState(
        s3_client=s3_client,
        key_sources=key_sources,
        audit_log=audit_log,
        exit_stack=exit_stack,
    )


async def shutdown_backup_state(state: BackupState) -> None:
    """Cleanup resources."""
    if state["exit_stack"] is not None:
        try:
            await state["exit_stack"].aclose()
        except Exception as e:
            logger.warning("s3_client_close_failed", error=str(e))

    logger.info("backup_state_shutdown_complete")


async def create_full(
    config: BackupConfig,
    state: BackupState,
    performed_by: str,
    is_automatic: bool = False,
) -> BackupArtifact:
    """Create and upload a full backup (database and files)."""
    return await compose_full_backup(config, state, performed_by, is_automatic)


async def create_database_only(
    config: BackupConfig,
    state: BackupState,
    performed_by: str,
    is_automatic: bool = False,
) -> BackupArtifact:
    """Create and upload a database-only backup."""
    return await compose_database_backup(config, state, performed_by, is_automatic)


async def list_artifacts(config: BackupConfig, state: BackupState) -> List[BackupArtifact]:
    """List stored backups, newest first."""
    return await list_backups(config, state)


async def get_artifact_download_url(
    config: BackupConfig,
    state: BackupState,
    backup_id: str,
) -> str:
    """Time-limited download URL for a backup."""
    return await get_download_url(config, state, backup_id)


async def delete_artifact(
    config: BackupConfig,
    state: BackupState,
    backup_id: str,
    performed_by: str,
) -> None:
    """Delete a backup."""
    await delete_backup(config, state, backup_id, performed_by)


async def restore_artifact(
    config: BackupConfig,
    state: BackupState,
    backup_id: str,
    performed_by: str,
) -> RestoreResult:
    """Restore the database (and files, for full backups) from a backup."""
    return await restore_backup(config, state, backup_id, performed_by)


async def sweep_expired(config: BackupConfig, state: BackupState) -> int:
    """Delete backups older than the configured retention window."""
    return await sweep_expired_backups(config, state, config.retention_days)


async def run_scheduled_backup(config: BackupConfig, state: BackupState) -> BackupArtifact | None:
    """
    Body of the nightly backup job.

    Creates an automatic full backup as the system user, then sweeps
    expired backups. Failures are logged, not raised, so a scheduler
    keeps running.

    Returns:
        The new artifact, or None if the backup failed
    """
    logger.info("scheduled_backup_started")

    try:
        artifact = await create_full(config, state, SYSTEM_USER, is_automatic=True)
    except Exception as e:
        logger.error("scheduled_backup_failed", error=str(e))
        return None

    logger.info("scheduled_backup_completed", backup_id=artifact.id, size=artifact.size)

    try:
        deleted = await sweep_expired(config, state)
        if deleted:
            logger.info("old_backups_cleaned_up", deleted=deleted)
    except Exception as e:
        logger.error("scheduled_sweep_failed", error=str(e))

    return artifact

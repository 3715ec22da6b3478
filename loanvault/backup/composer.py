# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Backup Composer - Build and upload backup artifacts.

A full backup is one .tar.gz holding:
    database.sql.gz   pg_dump output
    files.tar.zst     every referenced object, keyed by storage key
    manifest.json     id, creator, timestamp, version

A database-only backup is the .sql.gz dump itself. Artifacts are only
uploaded once complete, so a partial backup never shows up in a listing.
"""

import asyncio
import tarfile
from datetime import datetime, UTC
from pathlib import Path
from typing import TYPE_CHECKING, List, Tuple

import structlog

from loanvault.archive import build_file_archive
from loanvault.audit import ACTION_BACKUP_CREATED, ACTION_DATABASE_BACKUP, AuditEntry
from loanvault.backup.models import (
    DUMP_MEMBER,
    FILES_MEMBER,
    MANIFEST_MEMBER,
    BackupArtifact,
    BackupKind,
    BackupManifest,
    artifact_key,
    encode_metadata,
    new_backup_id,
)
from loanvault.config import BackupConfig
from loanvault.database import dump_database
from loanvault.inventory import collect_referenced_keys
from loanvault.storage import upload_file
from loanvault.workspace import acquire_workspace

if TYPE_CHECKING:
    from loanvault.core import BackupState

logger = structlog.get_logger()


async def compose_full_backup(
    config: BackupConfig,
    state: "BackupState",
    performed_by: str,
    is_automatic: bool = False,
) -> BackupArtifact:
    """
    Create a full backup: database dump, file archive and manifest.

    Objects that cannot be downloaded are skipped and reported in the
    audit entry; dump or upload failures abort the backup.

    Args:
        config: Backup configuration
        state: Runtime state
        performed_by: User id recorded as creator
        is_automatic: True for scheduled backups

    Returns:
        Descriptor of the uploaded artifact
    """
    created_at = datetime.now(UTC)
    kind = BackupKind.FULL
    backup_id = new_backup_id(kind, created_at)
    key = artifact_key(config.backup_prefix, backup_id, kind)
    filename = key[len(config.backup_prefix):]

    logger.info("full_backup_started", backup_id=backup_id, performed_by=performed_by)

    async with acquire_workspace(config.workspace_root, backup_id) as workspace:
        dump_path = workspace / DUMP_MEMBER
        await dump_database(
            config.database_url,
            dump_path,
            pg_dump_path=config.pg_dump_path,
            timeout=config.process_timeout_seconds,
        )

        keys = await collect_referenced_keys(state["key_sources"])

        files_path = workspace / FILES_MEMBER
        archive = await build_file_archive(
            state["s3_client"],
            config.files_bucket,
            keys,
            files_path,
            spool_dir=workspace / "spool",
            max_concurrency=config.max_concurrent_transfers,
        )

        manifest = BackupManifest(
            id=backup_id,
            created_at=created_at.isoformat(),
            created_by=performed_by,
            is_automatic=is_automatic,
        )
        manifest_path = workspace / MANIFEST_MEMBER
        manifest_path.write_bytes(manifest.to_json())

        artifact_path = workspace / filename
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(
            None,
            _write_outer_archive,
            artifact_path,
            [
                (dump_path, DUMP_MEMBER),
                (files_path, FILES_MEMBER),
                (manifest_path, MANIFEST_MEMBER),
            ],
        )

        size = await upload_file(
            state["s3_client"],
            config.effective_backup_bucket,
            key,
            artifact_path,
            metadata=encode_metadata(backup_id, kind, performed_by, is_automatic),
            content_type="application/gzip",
        )

    artifact = BackupArtifact(
        id=backup_id,
        filename=filename,
        key=key,
        kind=kind,
        size=size,
        created_at=created_at,
        created_by=performed_by,
        is_automatic=is_automatic,
    )

    await state["audit_log"].record(
        AuditEntry(
            performed_by=performed_by,
            action=ACTION_BACKUP_CREATED,
            target_id=backup_id,
            metadata={
                "kind": kind.value,
                "filename": filename,
                "size": size,
                "is_automatic": is_automatic,
                "objects": len(archive.archived_keys),
                "skipped_objects": archive.failed_keys,
            },
        )
    )

    logger.info(
        "full_backup_completed",
        backup_id=backup_id,
        key=key,
        size=size,
        objects=len(archive.archived_keys),
        skipped=len(archive.failures),
    )

    return artifact


async def compose_database_backup(
    config: BackupConfig,
    state: "BackupState",
    performed_by: str,
    is_automatic: bool = False,
) -> BackupArtifact:
    """
    Create a database-only backup (gzip-compressed SQL dump).

    Args:
        config: Backup configuration
        state: Runtime state
        performed_by: User id recorded as creator
        is_automatic: True for scheduled backups

    Returns:
        Descriptor of the uploaded artifact
    """
    created_at = datetime.now(UTC)
    kind = BackupKind.DATABASE_ONLY
    backup_id = new_backup_id(kind, created_at)
    key = artifact_key(config.backup_prefix, backup_id, kind)
    filename = key[len(config.backup_prefix):]

    logger.info("database_backup_started", backup_id=backup_id, performed_by=performed_by)

    async with acquire_workspace(config.workspace_root, backup_id) as workspace:
        artifact_path = workspace / filename
        await dump_database(
            config.database_url,
            artifact_path,
            pg_dump_path=config.pg_dump_path,
            timeout=config.process_timeout_seconds,
        )

        size = await upload_file(
            state["s3_client"],
            config.effective_backup_bucket,
            key,
            artifact_path,
            metadata=encode_metadata(backup_id, kind, performed_by, is_automatic),
            content_type="application/gzip",
        )

    artifact = BackupArtifact(
        id=backup_id,
        filename=filename,
        key=key,
        kind=kind,
        size=size,
        created_at=created_at,
        created_by=performed_by,
        is_automatic=is_automatic,
    )

    await state["audit_log"].record(
        AuditEntry(
            performed_by=performed_by,
            action=ACTION_DATABASE_BACKUP,
            target_id=backup_id,
            metadata={
                "kind": kind.value,
                "filename": filename,
                "size": size,
                "is_automatic": is_automatic,
            },
        )
    )

    logger.info("database_backup_completed", backup_id=backup_id, key=key, size=size)

    return artifact


def _write_outer_archive(artifact_path: Path, members: List[Tuple[Path, str]]) -> None:
    """Wrap the staged parts into one gzip-compressed tarball."""
    with tarfile.open(artifact_path, "w:gz") as tar:
        for path, arcname in members:
            tar.add(path, arcname=arcname)

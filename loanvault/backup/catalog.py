# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Backup Catalog - List, resolve, share and delete backups.

Backup storage itself is the only source of truth: there is no index
table. Each artifact's kind and creator are read back from the S3 user
metadata written at compose time. Objects uploaded without that metadata
are recognised by their extension.
"""

import asyncio
from datetime import datetime, UTC
from typing import TYPE_CHECKING, Any, Dict, List

import structlog

from loanvault.audit import ACTION_BACKUP_DELETED, AuditEntry
from loanvault.backup.models import (
    META_AUTOMATIC,
    META_BACKUP_ID,
    META_KIND,
    BackupArtifact,
    BackupKind,
    decode_created_by,
)
from loanvault.config import BackupConfig
from loanvault.exceptions import NotFoundError, StorageError
from loanvault.storage import delete_object

if TYPE_CHECKING:
    from loanvault.core import BackupState

logger = structlog.get_logger()


def decode_artifact(
    prefix: str,
    listed: Dict[str, Any],
    metadata: Dict[str, str],
) -> BackupArtifact | None:
    """
    Build a BackupArtifact from a listing entry and its user metadata.

    Args:
        prefix: Backup key prefix
        listed: Entry of a list_objects_v2 "Contents" array
        metadata: User metadata of the object (may be empty)

    Returns:
        The artifact, or None if the object is not a backup
    """
    key = listed["Key"]
    filename = key[len(prefix):] if key.startswith(prefix) else key
    if not filename or "/" in filename:
        return None

    raw_kind = metadata.get(META_KIND)
    kind: BackupKind | None = None
    if raw_kind:
        try:
            kind = BackupKind(raw_kind)
        except ValueError:
            logger.warning("backup_kind_unknown", key=key, kind=raw_kind)
            return None
    else:
        for candidate in BackupKind:
            if filename.endswith(candidate.extension):
                kind = candidate
                break

    if kind is None:
        logger.warning("backup_object_unrecognised", key=key)
        return None

    backup_id = metadata.get(META_BACKUP_ID)
    if not backup_id:
        backup_id = filename[: -len(kind.extension)] if filename.endswith(kind.extension) else filename

    created_at = listed.get("LastModified") or datetime.fromtimestamp(0, UTC)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=UTC)

    return BackupArtifact(
        id=backup_id,
        filename=filename,
        key=key,
        kind=kind,
        size=int(listed.get("Size", 0)),
        created_at=created_at,
        created_by=decode_created_by(metadata),
        is_automatic=metadata.get(META_AUTOMATIC) == "true",
    )


async def list_backups(config: BackupConfig, state: "BackupState") -> List[BackupArtifact]:
    """
    List all backups in backup storage, newest first.

    Args:
        config: Backup configuration
        state: Runtime state

    Returns:
        Artifacts sorted by creation time, descending
    """
    s3_client = state["s3_client"]
    bucket = config.effective_backup_bucket
    listed: List[Dict[str, Any]] = []

    try:
        paginator = s3_client.get_paginator("list_objects_v2")
        async for page in paginator.paginate(Bucket=bucket, Prefix=config.backup_prefix):
            for obj in page.get("Contents", []):
                listed.append(obj)
    except Exception as e:
        raise StorageError(
            f"Failed to list backups: {e}",
            details={"bucket": bucket, "prefix": config.backup_prefix},
        ) from e

    semaphore = asyncio.Semaphore(config.max_concurrent_transfers)

    async def describe(obj: Dict[str, Any]) -> BackupArtifact | None:
        async with semaphore:
            try:
                head = await s3_client.head_object(Bucket=bucket, Key=obj["Key"])
                metadata = head.get("Metadata", {})
            except Exception as e:
                logger.warning("backup_metadata_unavailable", key=obj["Key"], error=str(e))
                metadata = {}
        return decode_artifact(config.backup_prefix, obj, metadata)

    described = await asyncio.gather(*[describe(obj) for obj in listed])
    artifacts = [artifact for artifact in described if artifact is not None]
    artifacts.sort(key=lambda artifact: artifact.created_at, reverse=True)

    logger.debug("backups_listed", count=len(artifacts))

    return artifacts


async def resolve_backup(
    config: BackupConfig,
    state: "BackupState",
    backup_id: str,
) -> BackupArtifact:
    """
    Find a backup by id.

    A linear scan of the listing: backup counts are small and this keeps
    storage the single source of truth.

    Raises:
        NotFoundError: If no stored backup has this id
    """
    for artifact in await list_backups(config, state):
        if artifact.id == backup_id:
            return artifact

    raise NotFoundError(
        f"Backup not found: {backup_id}",
        details={"backup_id": backup_id},
    )


async def get_download_url(
    config: BackupConfig,
    state: "BackupState",
    backup_id: str,
) -> str:
    """
    Presigned GET URL for a backup, valid for download_url_expiry_seconds.

    Raises:
        NotFoundError: If no stored backup has this id
    """
    artifact = await resolve_backup(config, state, backup_id)

    try:
        url = await state["s3_client"].generate_presigned_url(
            "get_object",
            Params={"Bucket": config.effective_backup_bucket, "Key": artifact.key},
            ExpiresIn=config.download_url_expiry_seconds,
        )
    except Exception as e:
        raise StorageError(
            f"Failed to presign backup URL: {e}",
            details={"backup_id": backup_id},
        ) from e

    logger.info(
        "backup_download_url_issued",
        backup_id=backup_id,
        expires_in=config.download_url_expiry_seconds,
    )

    return url


async def delete_backup(
    config: BackupConfig,
    state: "BackupState",
    backup_id: str,
    performed_by: str,
) -> BackupArtifact:
    """
    Delete a backup and record the deletion.

    Raises:
        NotFoundError: If no stored backup has this id
        StorageError: If the delete fails
    """
    artifact = await resolve_backup(config, state, backup_id)

    await delete_object(state["s3_client"], config.effective_backup_bucket, artifact.key)

    await state["audit_log"].record(
        AuditEntry(
            performed_by=performed_by,
            action=ACTION_BACKUP_DELETED,
            target_id=backup_id,
            metadata={"kind": artifact.kind.value, "filename": artifact.filename},
        )
    )

    logger.info("backup_deleted", backup_id=backup_id, key=artifact.key)

    return artifact

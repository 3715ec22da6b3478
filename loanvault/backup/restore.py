# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Restore Engine - Rebuild the database and file storage from a backup.

Flow per call:
    resolved -> downloaded -> unpacked -> db_restored -> files_restored -> done

Database-only backups stop after db_restored. For full backups every
archived object is uploaded again, one by one, to the files bucket.
Unlike archive building, a failed upload here is never skipped: it is
retried and, if it still fails, reported with RestoreIncompleteError.
"""

import asyncio
import shutil
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Dict, List, Tuple

import structlog
from ulid import ULID

from loanvault.archive import extract_file_archive
from loanvault.audit import ACTION_BACKUP_RESTORED, AuditEntry
from loanvault.backup.catalog import resolve_backup
from loanvault.backup.models import (
    DUMP_MEMBER,
    FILES_MEMBER,
    MANIFEST_MEMBER,
    BackupKind,
    BackupManifest,
)
from loanvault.config import BackupConfig
from loanvault.database import restore_database
from loanvault.exceptions import RestoreIncompleteError, StorageError
from loanvault.storage import download_to_file, upload_with_retry
from loanvault.workspace import acquire_workspace

if TYPE_CHECKING:
    from loanvault.core import BackupState

logger = structlog.get_logger()

_OUTER_MEMBERS = (DUMP_MEMBER, FILES_MEMBER, MANIFEST_MEMBER)


@dataclass
class RestoreResult:
    """Outcome of a restore call."""

    backup_id: str
    kind: BackupKind
    restore_operation_id: str
    database_restored: bool = False
    restored_keys: List[str] = field(default_factory=list)
    failed_keys: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    manifest: BackupManifest | None = None


async def restore_backup(
    config: BackupConfig,
    state: "BackupState",
    backup_id: str,
    performed_by: str,
) -> RestoreResult:
    """
    Restore a backup into the live database and files bucket.

    Args:
        config: Backup configuration
        state: Runtime state
        backup_id: Id of the backup to restore
        performed_by: User id recorded in the audit log

    Returns:
        RestoreResult describing what was restored

    Raises:
        NotFoundError: If the backup does not exist
        ProcessError: If psql fails
        StorageError: If the artifact cannot be downloaded or unpacked
        RestoreIncompleteError: If some objects could not be re-uploaded
    """
    start_time = time.time()
    operation_id = f"restore_{ULID()}"

    artifact = await resolve_backup(config, state, backup_id)
    result = RestoreResult(
        backup_id=artifact.id,
        kind=artifact.kind,
        restore_operation_id=operation_id,
    )
    logger.info(
        "restore_resolved",
        backup_id=artifact.id,
        kind=artifact.kind.value,
        operation_id=operation_id,
        performed_by=performed_by,
    )

    async with acquire_workspace(config.workspace_root, operation_id) as workspace:
        artifact_path = workspace / artifact.filename
        size = await download_to_file(
            state["s3_client"],
            config.effective_backup_bucket,
            artifact.key,
            artifact_path,
        )
        logger.info("restore_downloaded", backup_id=artifact.id, size=size)

        if artifact.kind is BackupKind.DATABASE_ONLY:
            await _restore_dump(config, artifact_path)
            result.database_restored = True
            logger.info("restore_db_restored", backup_id=artifact.id)
        else:
            unpack_dir = workspace / "unpacked"
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, _unpack_outer_archive, artifact_path, unpack_dir)

            result.manifest = _read_manifest(unpack_dir / MANIFEST_MEMBER)
            if result.manifest.id != artifact.id:
                logger.warning(
                    "restore_manifest_id_mismatch",
                    backup_id=artifact.id,
                    manifest_id=result.manifest.id,
                )

            # Objects are unpacked before psql touches the database
            objects = await extract_file_archive(unpack_dir / FILES_MEMBER, workspace / "files")

            await _restore_dump(config, unpack_dir / DUMP_MEMBER)
            result.database_restored = True
            logger.info("restore_db_restored", backup_id=artifact.id)

            result.restored_keys, result.failed_keys = await _reupload_objects(
                config, state, objects
            )
            logger.info(
                "restore_files_restored",
                backup_id=artifact.id,
                restored=len(result.restored_keys),
                failed=len(result.failed_keys),
            )

    result.duration_seconds = time.time() - start_time

    metadata = {
        "kind": artifact.kind.value,
        "filename": artifact.filename,
        "operation_id": operation_id,
        "database_restored": result.database_restored,
        "objects_restored": len(result.restored_keys),
    }
    if result.failed_keys:
        metadata["failed_keys"] = result.failed_keys

    await state["audit_log"].record(
        AuditEntry(
            performed_by=performed_by,
            action=ACTION_BACKUP_RESTORED,
            target_id=artifact.id,
            metadata=metadata,
        )
    )

    if result.failed_keys:
        logger.error(
            "restore_incomplete",
            backup_id=artifact.id,
            failed_keys=result.failed_keys,
        )
        raise RestoreIncompleteError(artifact.id, result.failed_keys)

    logger.info(
        "restore_done",
        backup_id=artifact.id,
        objects=len(result.restored_keys),
        duration_seconds=result.duration_seconds,
    )

    return result


async def _restore_dump(config: BackupConfig, dump_path: Path) -> None:
    await restore_database(
        config.database_url,
        dump_path,
        psql_path=config.psql_path,
        timeout=config.process_timeout_seconds,
    )


async def _reupload_objects(
    config: BackupConfig,
    state: "BackupState",
    objects: Dict[str, Path],
) -> Tuple[List[str], List[str]]:
    """
    Upload extracted objects back to the files bucket with a fixed pool of workers.

    Returns:
        (restored keys, keys that failed after all retries)
    """
    queue: asyncio.Queue[str] = asyncio.Queue()
    for key in sorted(objects):
        queue.put_nowait(key)

    restored: List[str] = []
    failed: List[str] = []

    async def worker() -> None:
        while True:
            try:
                key = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            try:
                await upload_with_retry(
                    state["s3_client"],
                    config.files_bucket,
                    key,
                    objects[key],
                    max_attempts=config.upload_max_attempts,
                    base_delay=config.upload_retry_base_delay,
                )
            except StorageError:
                failed.append(key)
            else:
                restored.append(key)

    worker_count = min(config.max_concurrent_transfers, len(objects))
    await asyncio.gather(*[worker() for _ in range(worker_count)])

    return sorted(restored), sorted(failed)


def _unpack_outer_archive(artifact_path: Path, dest_dir: Path) -> None:
    """Extract the fixed members of a full backup, ignoring anything else."""
    dest_dir.mkdir(parents=True, exist_ok=True)
    found = set()

    try:
        with tarfile.open(artifact_path, "r:gz") as tar:
            for member in tar:
                if member.name not in _OUTER_MEMBERS or not member.isfile():
                    logger.warning("restore_unexpected_member", member=member.name)
                    continue
                source = tar.extractfile(member)
                with source, (dest_dir / member.name).open("wb") as out:
                    shutil.copyfileobj(source, out)
                found.add(member.name)
    except (tarfile.TarError, OSError, EOFError) as e:
        raise StorageError(
            f"Failed to unpack backup artifact: {e}",
            details={"artifact_path": str(artifact_path)},
        ) from e

    missing = [name for name in _OUTER_MEMBERS if name not in found]
    if missing:
        raise StorageError(
            "Backup artifact is incomplete",
            details={"artifact_path": str(artifact_path), "missing": missing},
        )


def _read_manifest(path: Path) -> BackupManifest:
    try:
        return BackupManifest.from_json(path.read_bytes())
    except (ValueError, KeyError, OSError) as e:
        raise StorageError(
            f"Invalid backup manifest: {e}",
            details={"path": str(path)},
        ) from e

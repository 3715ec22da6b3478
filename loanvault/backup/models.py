# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup data structures: artifact kinds, catalog entries and manifests.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, UTC
from enum import Enum
from typing import Any, Dict
from urllib.parse import quote, unquote

from loanvault.config import MANIFEST_VERSION

# Members of a full backup's outer archive
DUMP_MEMBER = "database.sql.gz"
FILES_MEMBER = "files.tar.zst"
MANIFEST_MEMBER = "manifest.json"

# S3 user metadata keys stored on every artifact (returned lower-case)
META_BACKUP_ID = "backup-id"
META_KIND = "backup-kind"
META_CREATED_BY = "created-by"
META_AUTOMATIC = "automatic"
META_MANIFEST_VERSION = "manifest-version"


class BackupKind(str, Enum):
    """What a backup artifact contains."""

    FULL = "full"  # Database dump + file archive + manifest
    DATABASE_ONLY = "database"  # Database dump only

    @property
    def extension(self) -> str:
        return ".tar.gz" if self is BackupKind.FULL else ".sql.gz"

    @property
    def id_prefix(self) -> str:
        return "backup_" if self is BackupKind.FULL else "backup_db_"


@dataclass(frozen=True)
class BackupArtifact:
    """A backup as seen in backup storage."""

    id: str
    filename: str
    key: str
    kind: BackupKind
    size: int
    created_at: datetime
    created_by: str | None = None
    is_automatic: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "filename": self.filename,
            "key": self.key,
            "kind": self.kind.value,
            "size": self.size,
            "created_at": self.created_at.isoformat(),
            "created_by": self.created_by,
            "is_automatic": self.is_automatic,
        }


@dataclass(frozen=True)
class BackupManifest:
    """Intent recorded inside a full backup at compose time."""

    id: str
    created_at: str  # ISO 8601
    created_by: str
    is_automatic: bool
    version: str = MANIFEST_VERSION

    def to_json(self) -> bytes:
        return json.dumps(asdict(self), indent=2, sort_keys=True).encode("utf-8")

    @classmethod
    def from_json(cls, raw: bytes) -> "BackupManifest":
        data = json.loads(raw)
        return cls(
            id=data["id"],
            created_at=data["created_at"],
            created_by=data["created_by"],
            is_automatic=bool(data["is_automatic"]),
            version=data.get("version", MANIFEST_VERSION),
        )


_last_issued: datetime | None = None


def new_backup_id(kind: BackupKind, now: datetime | None = None) -> str:
    """
    Generate a backup id such as backup_2026-10-18T02-00-00-000000Z.

    Ids are strictly increasing within a process, so two calls never
    return the same id even on a coarse clock.
    """
    global _last_issued

    stamp = (now or datetime.now(UTC)).astimezone(UTC)
    if _last_issued is not None and stamp <= _last_issued:
        stamp = _last_issued + timedelta(microseconds=1)
    _last_issued = stamp

    return f"{kind.id_prefix}{stamp.strftime('%Y-%m-%dT%H-%M-%S-%fZ')}"


def artifact_key(prefix: str, backup_id: str, kind: BackupKind) -> str:
    """Deterministic storage key of an artifact."""
    return f"{prefix}{backup_id}{kind.extension}"


def encode_metadata(
    backup_id: str,
    kind: BackupKind,
    created_by: str,
    is_automatic: bool,
) -> Dict[str, str]:
    """S3 user metadata describing an artifact."""
    return {
        META_BACKUP_ID: backup_id,
        META_KIND: kind.value,
        META_CREATED_BY: quote(created_by, safe=""),
        META_AUTOMATIC: "true" if is_automatic else "false",
        META_MANIFEST_VERSION: MANIFEST_VERSION,
    }


def decode_created_by(metadata: Dict[str, str]) -> str | None:
    raw = metadata.get(META_CREATED_BY)
    return unquote(raw) if raw else None

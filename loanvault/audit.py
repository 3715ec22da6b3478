# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Audit - Audit entries for backup operations.

Every compose, delete and restore call records exactly one entry through
an AuditLog. The host application normally supplies its own audit
service; SqliteAuditLog is an append-only default for standalone use.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Dict, List, Protocol, TypedDict

import aiosqlite
import structlog

from loanvault.exceptions import StorageError

logger = structlog.get_logger()

# Actions recorded by the backup subsystem
ACTION_BACKUP_CREATED = "BACKUP_CREATED"
ACTION_DATABASE_BACKUP = "DATABASE_BACKUP"
ACTION_BACKUP_DELETED = "BACKUP_DELETED"
ACTION_BACKUP_EXPIRED = "BACKUP_EXPIRED"
ACTION_BACKUP_RESTORED = "BACKUP_RESTORED"

TARGET_TYPE_SYSTEM = "System"


@dataclass(frozen=True)
class AuditEntry:
    """One audit record."""

    performed_by: str
    action: str
    target_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    target_type: str = TARGET_TYPE_SYSTEM


class AuditLog(Protocol):
    """Protocol for the audit collaborator."""

    async def record(self, entry: AuditEntry) -> None:
        """Persist one audit entry."""
        ...


class AuditRecord(TypedDict):
    """Stored audit entry."""

    id: int
    performed_by: str
    action: str
    target_type: str
    target_id: str
    metadata: dict
    created_at: str  # ISO 8601


class SqliteAuditLog:
    """Append-only audit log stored in a SQLite database."""

    def __init__(self, db_path: Path):
        self.db_path = db_path

    async def initialize(self) -> None:
        """
        Create the audit table if it doesn't exist. This is idempotent.
        """
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("""
                    CREATE TABLE IF NOT EXISTS audit_entries (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        performed_by TEXT NOT NULL,
                        action TEXT NOT NULL,
                        target_type TEXT NOT NULL,
                        target_id TEXT NOT NULL,
                        metadata TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)

                await db.execute("""
                    CREATE INDEX IF NOT EXISTS idx_audit_entries_target_id
                    ON audit_entries(target_id)
                """)

                await db.commit()

            logger.info("audit_db_initialized", db_path=str(self.db_path))

        except Exception as e:
            raise StorageError(
                f"Failed to initialize audit database: {e}",
                details={"db_path": str(self.db_path)},
            )

    async def record(self, entry: AuditEntry) -> None:
        now = datetime.now(UTC).isoformat()

        async with aiosqlite.connect(self.db_path) as db:
            await db.execute(
                """
                INSERT INTO audit_entries
                (performed_by, action, target_type, target_id, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.performed_by,
                    entry.action,
                    entry.target_type,
                    entry.target_id,
                    json.dumps(entry.metadata, default=str),
                    now,
                ),
            )
            await db.commit()

        logger.info(
            "audit_entry_recorded",
            action=entry.action,
            target_id=entry.target_id,
            performed_by=entry.performed_by,
        )

    async def list_entries(
        self,
        target_id: str | None = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """
        List audit entries, newest first.

        Args:
            target_id: Filter by backup id
            limit: Maximum results
        """
        query = """
            SELECT id, performed_by, action, target_type, target_id, metadata, created_at
            FROM audit_entries
        """
        params: List = []

        if target_id:
            query += " WHERE target_id = ?"
            params.append(target_id)

        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        records: List[AuditRecord] = []

        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(query, params) as cursor:
                async for row in cursor:
                    records.append(
                        AuditRecord(
                            id=row[0],
                            performed_by=row[1],
                            action=row[2],
                            target_type=row[3],
                            target_id=row[4],
                            metadata=json.loads(row[5]),
                            created_at=row[6],
                        )
                    )

        return records

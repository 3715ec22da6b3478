# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Compose, catalog, expire and restore backups.
"""

from loanvault.backup.models import (
    BackupArtifact,
    BackupKind,
    BackupManifest,
)

from loanvault.backup.composer import (
    compose_full_backup,
    compose_database_backup,
)

from loanvault.backup.catalog import (
    list_backups,
    resolve_backup,
    get_download_url,
    delete_backup,
)

from loanvault.backup.retention import sweep_expired_backups

from loanvault.backup.restore import (
    restore_backup,
    RestoreResult,
)

__all__ = [
    # Models
    "BackupArtifact",
    "BackupKind",
    "BackupManifest",
    # Composer
    "compose_full_backup",
    "compose_database_backup",
    # Catalog
    "list_backups",
    "resolve_backup",
    "get_download_url",
    "delete_backup",
    # Retention
    "sweep_expired_backups",
    # Restore
    "restore_backup",
    "RestoreResult",
]

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault - Backup and restore for the equipment-loan platform.

Snapshots the PostgreSQL database and every stored file referenced by
it into S3-compatible backup storage, lists and expires those snapshots,
and rebuilds both the database and the files bucket from one of them.
"""

__version__ = "0.1.0"

# Configuration
from loanvault.config import BackupConfig
from loanvault.env import create_config_from_env

# Core functions
from loanvault.core import (
    BackupState,
    initialize_backup_state,
    shutdown_backup_state,
    create_full,
    create_database_only,
    list_artifacts,
    get_artifact_download_url,
    delete_artifact,
    restore_artifact,
    sweep_expired,
    run_scheduled_backup,
)

from loanvault.backup.models import BackupArtifact, BackupKind
from loanvault.backup.restore import RestoreResult

__all__ = [
    # Version
    "__version__",
    # Configuration
    "BackupConfig",
    "create_config_from_env",
    # State
    "BackupState",
    "initialize_backup_state",
    "shutdown_backup_state",
    # Operations
    "create_full",
    "create_database_only",
    "list_artifacts",
    "get_artifact_download_url",
    "delete_artifact",
    "restore_artifact",
    "sweep_expired",
    "run_scheduled_backup",
    # Models
    "BackupArtifact",
    "BackupKind",
    "RestoreResult",
]

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Workspace - Per-operation staging directories.

Every compose or restore call stages its files in a directory named
after its own operation id, so concurrent calls never share files.
The directory is removed on every exit path, including cancellation.
"""

import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import structlog

from loanvault.exceptions import StorageError

logger = structlog.get_logger()


@asynccontextmanager
async def acquire_workspace(root: Path, operation_id: str) -> AsyncIterator[Path]:
    """
    Create a staging directory for one operation and remove it afterwards.

    Args:
        root: Parent directory for all workspaces
        operation_id: Unique id of the operation (backup id or ULID)

    Yields:
        Path to the freshly created, empty workspace

    Raises:
        StorageError: If the workspace cannot be created or already exists
    """
    if not operation_id or "/" in operation_id or operation_id in (".", ".."):
        raise StorageError(
            f"Invalid workspace id: {operation_id!r}",
            details={"root": str(root)},
        )

    workspace = root / operation_id

    try:
        root.mkdir(parents=True, exist_ok=True)
        workspace.mkdir()
    except FileExistsError:
        raise StorageError(
            f"Workspace already in use: {workspace}",
            details={"operation_id": operation_id},
        )
    except OSError as e:
        raise StorageError(
            f"Failed to create workspace: {e}",
            details={"operation_id": operation_id, "root": str(root)},
        )

    logger.debug("workspace_acquired", path=str(workspace))

    try:
        yield workspace
    finally:
        # No awaits below this point: this also runs on cancellation
        try:
            shutil.rmtree(workspace)
            logger.debug("workspace_released", path=str(workspace))
        except OSError as e:
            logger.warning(
                "workspace_cleanup_failed",
                path=str(workspace),
                error=str(e),
            )

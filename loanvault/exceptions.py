# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Exceptions - Custom exceptions for the loanvault package.
"""

from typing import List


class LoanVaultError(Exception):
    """Base exception for all LoanVault errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(LoanVaultError):
    """Raised when configuration or the connection descriptor is invalid."""

    pass


class ProcessError(LoanVaultError):
    """Raised when an external dump/restore process fails."""

    pass


class NotFoundError(LoanVaultError):
    """Raised when a backup id is not present in backup storage."""

    pass


class PartialTransferError(LoanVaultError):
    """
    Raised for a single object that could not be downloaded while
    building a file archive. Never aborts the archive build.
    """

    def __init__(self, s3_key: str, cause: Exception):
        super().__init__(
            f"Failed to download object: {cause}",
            details={"s3_key": s3_key},
        )
        self.s3_key = s3_key
        self.cause = cause


class StorageError(LoanVaultError):
    """Raised when a backup or canonical store operation fails."""

    pass


class RestoreIncompleteError(StorageError):
    """
    Raised when restored file objects could not be written back to
    the canonical store after all retries.
    """

    def __init__(self, backup_id: str, failed_keys: List[str]):
        super().__init__(
            f"Restore of {backup_id} left {len(failed_keys)} object(s) unrestored",
            details={"backup_id": backup_id, "failed_keys": failed_keys},
        )
        self.backup_id = backup_id
        self.failed_keys = failed_keys

# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Storage - Object transfers between S3 and the local workspace.

Both the backup bucket and the canonical files bucket are reached
through the same aiobotocore client; every function takes the client
explicitly. Low-level errors are wrapped into StorageError.
"""

import asyncio
import mimetypes
from pathlib import Path
from typing import Any, Dict

import aiofiles
import structlog

from loanvault.exceptions import StorageError

logger = structlog.get_logger()

CHUNK_SIZE = 1024 * 1024


def get_mime_type(s3_key: str) -> str:
    """
    Get MIME type for an S3 key based on extension.

    Args:
        s3_key: S3 key or filename

    Returns:
        MIME type string
    """
    mime_type, _ = mimetypes.guess_type(s3_key)
    return mime_type or "application/octet-stream"


async def download_to_file(
    s3_client: Any,
    bucket: str,
    s3_key: str,
    dest: Path,
) -> int:
    """
    Stream an object to a local file.

    Args:
        s3_client: aiobotocore S3 client
        bucket: Source bucket
        s3_key: Object key
        dest: Local destination path

    Returns:
        Number of bytes written
    """
    written = 0
    try:
        response = await s3_client.get_object(Bucket=bucket, Key=s3_key)
        async with response["Body"] as stream:
            async with aiofiles.open(dest, "wb") as f:
                while True:
                    chunk = await stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    await f.write(chunk)
                    written += len(chunk)
    except Exception as e:
        raise StorageError(
            f"Failed to download object: {e}",
            details={"bucket": bucket, "s3_key": s3_key},
        ) from e

    logger.debug("object_downloaded", bucket=bucket, s3_key=s3_key, size=written)
    return written


async def upload_file(
    s3_client: Any,
    bucket: str,
    s3_key: str,
    source: Path,
    metadata: Dict[str, str] | None = None,
    content_type: str | None = None,
) -> int:
    """
    Upload a local file to S3.

    Args:
        s3_client: aiobotocore S3 client
        bucket: Destination bucket
        s3_key: Destination key
        source: Local file
        metadata: Optional user metadata (x-amz-meta-*)
        content_type: Optional Content-Type, guessed from the key if omitted

    Returns:
        Number of bytes uploaded
    """
    try:
        size = source.stat().st_size
        params: Dict[str, Any] = {
            "Bucket": bucket,
            "Key": s3_key,
            "ContentLength": size,
            "ContentType": content_type or get_mime_type(s3_key),
        }
        if metadata:
            params["Metadata"] = metadata

        with source.open("rb") as body:
            await s3_client.put_object(Body=body, **params)
    except Exception as e:
        raise StorageError(
            f"Failed to upload object: {e}",
            details={"bucket": bucket, "s3_key": s3_key, "source": str(source)},
        ) from e

    logger.debug("object_uploaded", bucket=bucket, s3_key=s3_key, size=size)
    return size


async def upload_with_retry(
    s3_client: Any,
    bucket: str,
    s3_key: str,
    source: Path,
    max_attempts: int = 3,
    base_delay: float = 0.5,
) -> int:
    """
    Upload a file, retrying with exponential backoff.

    The delay before attempt n+1 is base_delay * 2**(n-1).

    Raises:
        StorageError: The error of the last attempt once all attempts failed
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await upload_file(s3_client, bucket, s3_key, source)
        except StorageError as e:
            if attempt >= max_attempts:
                logger.error(
                    "upload_attempts_exhausted",
                    s3_key=s3_key,
                    attempts=attempt,
                    error=str(e),
                )
                raise
            delay = base_delay * 2 ** (attempt - 1)
            logger.warning(
                "upload_retry_scheduled",
                s3_key=s3_key,
                attempt=attempt,
                delay=delay,
                error=str(e),
            )
            await asyncio.sleep(delay)


async def delete_object(s3_client: Any, bucket: str, s3_key: str) -> None:
    """Delete an object, wrapping failures into StorageError."""
    try:
        await s3_client.delete_object(Bucket=bucket, Key=s3_key)
    except Exception as e:
        raise StorageError(
            f"Failed to delete object: {e}",
            details={"bucket": bucket, "s3_key": s3_key},
        ) from e

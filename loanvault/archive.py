# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault File Archiver - Referenced objects in and out of a tar.zst archive.

Building an archive:
1. A fixed pool of download workers streams objects into a spool directory
2. A single writer task appends each spooled file to the tar stream
3. The tar stream is compressed with zstd (level 19) as it is written

Storage keys are opaque: "docs/a" and "docs/a/b.pdf" can both exist.
Members are therefore named objects/<sha256 of key> and carry the real
key in a PAX header, so no key can collide with or escape another.

A key that cannot be downloaded is logged and skipped; the archive is
still completed with everything else. An archive never has zero
entries: a placeholder is written when nothing else was.
"""

import asyncio
import hashlib
import io
import shutil
import tarfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List

import structlog
import zstandard as zstd

from loanvault.exceptions import PartialTransferError, StorageError
from loanvault.storage import download_to_file

logger = structlog.get_logger()

# Maximum compression
DEFAULT_ZSTD_LEVEL = 19

PLACEHOLDER_NAME = ".empty"
PLACEHOLDER_CONTENT = b"This backup references no stored objects.\n"

# PAX header holding the storage key of a member
KEY_HEADER = "LOANVAULT.key"
MEMBER_DIR = "objects"

_COPY_BUFFER = 1024 * 1024

# Sentinel closing the writer queue
_DONE = None


@dataclass
class ArchiveResult:
    """Outcome of a file archive build."""

    archive_path: Path
    archived_keys: List[str] = field(default_factory=list)
    failures: List[PartialTransferError] = field(default_factory=list)
    placeholder: bool = False

    @property
    def failed_keys(self) -> List[str]:
        return [failure.s3_key for failure in self.failures]


def key_digest(s3_key: str) -> str:
    """Stable file name for a storage key."""
    return hashlib.sha256(s3_key.encode("utf-8")).hexdigest()


def member_name(s3_key: str) -> str:
    """Archive path of the member holding s3_key."""
    return f"{MEMBER_DIR}/{key_digest(s3_key)}"


async def build_file_archive(
    s3_client: Any,
    bucket: str,
    keys: Iterable[str],
    output_path: Path,
    spool_dir: Path,
    max_concurrency: int = 8,
    zstd_level: int = DEFAULT_ZSTD_LEVEL,
) -> ArchiveResult:
    """
    Download referenced objects into a zstd-compressed tar archive.

    Each object is stored as objects/<sha256 of key> with the key itself
    in the LOANVAULT.key PAX header.

    Args:
        s3_client: aiobotocore S3 client for the canonical bucket
        bucket: Canonical bucket name
        keys: Storage keys to archive
        output_path: Destination .tar.zst file
        spool_dir: Scratch directory for downloads (inside the workspace)
        max_concurrency: Number of parallel downloads
        zstd_level: zstd compression level

    Returns:
        ArchiveResult listing archived and skipped keys
    """
    spool_dir.mkdir(parents=True, exist_ok=True)
    result = ArchiveResult(archive_path=output_path)

    pending: asyncio.Queue = asyncio.Queue()
    for key in sorted(set(keys)):
        pending.put_nowait(key)
    total = pending.qsize()

    # Bounded so downloads cannot run far ahead of the writer
    ready: asyncio.Queue = asyncio.Queue(maxsize=max_concurrency)

    logger.info("file_archive_started", objects=total, workers=max_concurrency)

    with output_path.open("wb") as raw:
        compressor = zstd.ZstdCompressor(level=zstd_level)
        with compressor.stream_writer(raw, closefd=False) as compressed:
            with tarfile.open(fileobj=compressed, mode="w|", format=tarfile.PAX_FORMAT) as tar:
                downloads = asyncio.gather(
                    *[
                        _download_worker(s3_client, bucket, pending, ready, spool_dir, result)
                        for _ in range(max_concurrency)
                    ]
                )
                writer = asyncio.create_task(_append_entries(tar, ready, result))

                try:
                    await asyncio.wait(
                        {downloads, writer}, return_when=asyncio.FIRST_COMPLETED
                    )
                    if writer.done():
                        # Only an exception ends the writer before the sentinel
                        writer.result()
                    await downloads
                    await ready.put(_DONE)
                    await writer
                finally:
                    downloads.cancel()
                    writer.cancel()

                if not result.archived_keys:
                    _append_placeholder(tar)
                    result.placeholder = True

    logger.info(
        "file_archive_completed",
        archive_path=str(output_path),
        archived=len(result.archived_keys),
        skipped=len(result.failures),
        size=output_path.stat().st_size,
    )

    return result


async def _download_worker(
    s3_client: Any,
    bucket: str,
    pending: asyncio.Queue,
    ready: asyncio.Queue,
    spool_dir: Path,
    result: ArchiveResult,
) -> None:
    """Download keys until the pending queue is empty."""
    while True:
        try:
            key = pending.get_nowait()
        except asyncio.QueueEmpty:
            return

        spool_path = spool_dir / key_digest(key)
        try:
            await download_to_file(s3_client, bucket, key, spool_path)
        except StorageError as e:
            failure = PartialTransferError(key, e)
            result.failures.append(failure)
            logger.warning("archive_object_skipped", s3_key=key, error=str(e))
            spool_path.unlink(missing_ok=True)
            continue

        await ready.put((key, spool_path))


async def _append_entries(
    tar: tarfile.TarFile,
    ready: asyncio.Queue,
    result: ArchiveResult,
) -> None:
    """Sole owner of the tar stream: append spooled files one at a time."""
    loop = asyncio.get_running_loop()
    while True:
        item = await ready.get()
        if item is _DONE:
            return
        key, spool_path = item
        await loop.run_in_executor(None, _append_file, tar, key, spool_path)
        spool_path.unlink(missing_ok=True)
        result.archived_keys.append(key)


def _append_file(tar: tarfile.TarFile, key: str, path: Path) -> None:
    info = tarfile.TarInfo(name=member_name(key))
    info.pax_headers = {KEY_HEADER: key}
    stat = path.stat()
    info.size = stat.st_size
    info.mtime = int(stat.st_mtime)
    info.mode = 0o644
    with path.open("rb") as fh:
        tar.addfile(info, fh)


def _append_placeholder(tar: tarfile.TarFile) -> None:
    info = tarfile.TarInfo(name=PLACEHOLDER_NAME)
    info.size = len(PLACEHOLDER_CONTENT)
    info.mtime = int(time.time())
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(PLACEHOLDER_CONTENT))


def member_key(member: tarfile.TarInfo) -> str | None:
    """Storage key of an archive member, None for the placeholder."""
    key = member.pax_headers.get(KEY_HEADER)
    if key is not None:
        return key
    if member.name == PLACEHOLDER_NAME:
        return None
    # Plain tar written without the key header
    return member.name


async def extract_file_archive(archive_path: Path, dest_dir: Path) -> Dict[str, Path]:
    """
    Extract every object of a file archive into a flat directory.

    Files are named after the digest of their key, so keys that are
    prefixes of each other, or that contain "..", cannot clash or
    escape dest_dir.

    Args:
        archive_path: .tar.zst file produced by build_file_archive
        dest_dir: Directory receiving the objects

    Returns:
        Mapping of storage key to extracted file (placeholder excluded)

    Raises:
        StorageError: If the archive is corrupt
    """
    loop = asyncio.get_running_loop()
    try:
        objects = await loop.run_in_executor(None, _extract_sync, archive_path, dest_dir)
    except StorageError:
        raise
    except (tarfile.TarError, zstd.ZstdError, OSError, EOFError) as e:
        raise StorageError(
            f"Failed to extract file archive: {e}",
            details={"archive_path": str(archive_path)},
        ) from e

    logger.info("file_archive_extracted", archive_path=str(archive_path), objects=len(objects))
    return objects


def _extract_sync(archive_path: Path, dest_dir: Path) -> Dict[str, Path]:
    dest_dir.mkdir(parents=True, exist_ok=True)
    extracted: Dict[str, Path] = {}

    dctx = zstd.ZstdDecompressor()
    with archive_path.open("rb") as raw:
        with dctx.stream_reader(raw) as reader:
            with tarfile.open(fileobj=reader, mode="r|") as tar:
                for member in tar:
                    if not member.isfile():
                        continue
                    key = member_key(member)
                    if key is None:
                        continue
                    if not key:
                        raise StorageError(
                            "Archive member has an empty storage key",
                            details={"member": member.name},
                        )

                    target = dest_dir / key_digest(key)
                    source = tar.extractfile(member)
                    with source, target.open("wb") as out:
                        shutil.copyfileobj(source, out, _COPY_BUFFER)
                    extracted[key] = target

    return extracted

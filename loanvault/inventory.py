# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
LoanVault Inventory - Collect the storage keys referenced by the database.

Three metadata domains own objects in the canonical bucket: generic
files, product files and movement photos. Each is exposed as a
KeySource; the collector only ever asks them for their keys.
"""

import asyncio
from dataclasses import dataclass
from typing import Iterable, List, Protocol, Set

import structlog

from loanvault.database import mask_password
from loanvault.exceptions import StorageError

logger = structlog.get_logger()

# (table, column) pairs of the loan application schema
DEFAULT_KEY_COLUMNS = [
    ("File", "key"),
    ("ProductFile", "s3Key"),
    ("MovementPhoto", "s3Key"),
]


class KeySource(Protocol):
    """Protocol for anything that can list the storage keys it references."""

    name: str

    async def list_keys(self) -> Iterable[str]:
        """Return every storage key currently referenced by this source."""
        ...


def _quote_identifier(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


@dataclass(frozen=True)
class PostgresKeySource:
    """Key source reading a single column of a PostgreSQL table."""

    connection_url: str
    table: str
    column: str

    @property
    def name(self) -> str:
        return f"{self.table}.{self.column}"

    async def list_keys(self) -> List[str]:
        import asyncpg

        column = _quote_identifier(self.column)
        query = (
            f"SELECT DISTINCT {column} FROM {_quote_identifier(self.table)} "
            f"WHERE {column} IS NOT NULL"
        )

        try:
            conn = await asyncpg.connect(self.connection_url)
        except Exception as e:
            raise StorageError(
                f"Failed to connect for key inventory: {e}",
                details={"connection_url": mask_password(self.connection_url)},
            ) from e

        try:
            rows = await conn.fetch(query)
        finally:
            await conn.close()

        return [row[0] for row in rows]


def default_key_sources(connection_url: str) -> List[KeySource]:
    """Build the key sources of the three metadata domains."""
    return [
        PostgresKeySource(connection_url, table, column)
        for table, column in DEFAULT_KEY_COLUMNS
    ]


async def collect_referenced_keys(sources: Iterable[KeySource]) -> Set[str]:
    """
    Union the keys of all sources into a deduplicated set.

    Args:
        sources: Key sources to query

    Returns:
        Set of non-empty storage keys
    """
    sources = list(sources)
    results = await asyncio.gather(*[source.list_keys() for source in sources])

    keys: Set[str] = set()
    for source, source_keys in zip(sources, results):
        source_keys = [key for key in source_keys if key]
        keys.update(source_keys)
        logger.debug("key_source_listed", source=source.name, count=len(source_keys))

    logger.info("referenced_keys_collected", sources=len(sources), total=len(keys))

    return keys

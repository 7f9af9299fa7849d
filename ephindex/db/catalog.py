# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Read-only catalog queries against a TimescaleDB database.

Every failure of the driver surfaces as ``DataAccessError``; a failed query
is never reported as an empty result.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

import psycopg
from psycopg import sql

from ephindex.config import DEFAULT_CHUNK_SCHEMA
from ephindex.db.postgres_sync_manager import PostgreSQLSyncConnectionManager
from ephindex.exceptions import DataAccessError
from ephindex.index.models import INDEX_PREFIX, qualify_partition, split_qualified_name

logger = logging.getLogger(__name__)

# Chunk names of a hypertable, newest chunk id first. Chunk ids grow at
# creation time, so this approximates recency without reading any rows.
SHOW_CHUNKS = "SELECT show_chunks::text FROM show_chunks(%s::regclass) ORDER BY show_chunks DESC"

# Every index we own, with the chunk it lives on
LIST_EPHEMERAL_INDEXES = (
    "SELECT concat(schemaname, '.', tablename), indexname FROM pg_indexes "
    "WHERE indexname LIKE %s ORDER BY indexname"
)

# Chunk to hypertable pairing
CHUNK_TO_HYPERTABLE = """
SELECT concat(hypertable.schema_name, '.', hypertable.table_name) AS regular_table,
       concat(chunk.schema_name, '.', chunk.table_name) AS chunk_table
FROM _timescaledb_catalog.chunk
INNER JOIN _timescaledb_catalog.hypertable ON hypertable.id = chunk.hypertable_id
"""

# Same pairing restricted to a set of hypertables
CHUNK_TO_HYPERTABLE_LIMITED = (
    CHUNK_TO_HYPERTABLE
    + "WHERE lower(concat(hypertable.schema_name, '.', hypertable.table_name)) = ANY(%s)\n"
)

# Newest value of a column: {0} column, {1} table
SELECT_NEWEST_VALUE = "SELECT {0} FROM {1} ORDER BY {0} DESC LIMIT 1"


def qualified_identifier(name: str, default_schema: str = "public") -> sql.Identifier:
    schema, local = split_qualified_name(name, default_schema)
    return sql.Identifier(schema, local)


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("_", "\\_").replace("%", "\\%")


class CatalogAccessor:
    """Read-only queries used by the reconciler"""

    def __init__(self, client: PostgreSQLSyncConnectionManager, chunk_schema: str = DEFAULT_CHUNK_SCHEMA):
        self._client = client
        self._chunk_schema = chunk_schema

    def _fetchall(self, query, params=None) -> List[tuple]:
        try:
            with self._client.get_cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()
        except psycopg.Error as e:
            logger.error(f"Catalog query failed: {e}")
            raise DataAccessError(f"Catalog query failed: {e}") from e

    def list_partitions(self, table: str) -> List[str]:
        """
        Chunks of ``table``, most recently created first

        Args:
            table: Qualified hypertable name
        """
        if not table:
            raise ValueError("table is required")
        rows = self._fetchall(SHOW_CHUNKS, (table,))
        return [qualify_partition(row[0], self._chunk_schema) for row in rows]

    def list_managed_indexes(self) -> List[Tuple[str, str]]:
        """All ephemeral indexes as (qualified chunk name, index name) pairs"""
        rows = self._fetchall(LIST_EPHEMERAL_INDEXES, (_escape_like(INDEX_PREFIX) + "%",))
        return [(row[0], row[1]) for row in rows]

    def map_partitions_to_tables(self, tables: Optional[Iterable[str]] = None) -> Dict[str, str]:
        """
        Pair every chunk with its hypertable

        Args:
            tables: Restrict the scan to these qualified hypertable names.
                None scans the whole catalog; an empty collection returns nothing.
        """
        if tables is None:
            rows = self._fetchall(CHUNK_TO_HYPERTABLE)
        else:
            wanted = sorted({table.lower() for table in tables})
            if not wanted:
                return {}
            rows = self._fetchall(CHUNK_TO_HYPERTABLE_LIMITED, (wanted,))
        return {row[1]: row[0] for row in rows}

    def newest_value(self, table: str, column: str) -> Optional[datetime]:
        """
        Most recent value of ``column`` in ``table``, or None when it has no rows

        Naive timestamps are taken to be UTC.
        """
        query = sql.SQL(SELECT_NEWEST_VALUE).format(sql.Identifier(column), qualified_identifier(table))
        rows = self._fetchall(query)
        if not rows or rows[0][0] is None:
            return None
        value = rows[0][0]
        if not isinstance(value, datetime):
            raise DataAccessError(f"Column {column} of {table} is not a timestamp: {type(value).__name__}")
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

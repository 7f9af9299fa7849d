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

import logging
from typing import Optional

import psycopg
from psycopg import sql

from ephindex.config import DEFAULT_CHUNK_SCHEMA
from ephindex.db.postgres_sync_manager import PostgreSQLSyncConnectionManager
from ephindex.exceptions import DataAccessError, PreconditionViolation
from ephindex.index.models import (
    CHUNK_PREFIX,
    INDEX_PREFIX,
    MAX_IDENTIFIER_LENGTH,
    full_index_name,
    split_qualified_name,
)

logger = logging.getLogger(__name__)

# {0} index name, {1} chunk, {2} index columns, {3} tablespace clause, {4} predicate clause
CREATE_EPHEMERAL_INDEX = "CREATE INDEX {0} ON {1} USING BTREE ({2}){3}{4}"

DROP_INDEX = "DROP INDEX {0}"


class DDLExecutor:
    """Creates and drops ephemeral indexes on hypertable chunks"""

    def __init__(
        self,
        client: PostgreSQLSyncConnectionManager,
        chunk_schema: str = DEFAULT_CHUNK_SCHEMA,
        tablespace: Optional[str] = None,
    ):
        self._client = client
        self._chunk_schema = chunk_schema
        self._tablespace = tablespace

    def _execute(self, statement: sql.Composable, description: str):
        try:
            with self._client.get_cursor() as cur:
                cur.execute(statement)
        except psycopg.Error as e:
            logger.error(f"Failed to {description}: {e}")
            raise DataAccessError(f"Failed to {description}: {e}") from e

    def create_index(
        self, partition: str, friendly_name: str, columns: str, predicate: Optional[str] = None
    ) -> str:
        """
        Creates a new index on a chunk

        Args:
            partition: Chunk to index, qualified or local ('_hyper_1_2_chunk')
            friendly_name: Label of the owning policy. The full index name is
                'ephemeral_hyper_' + friendly_name + '_' + chunk local name.
            columns: Columns for the index
            predicate: Optional WHERE predicate for a partial index

        Returns:
            The full name of the created index

        Raises:
            PreconditionViolation: the target is not a hypertable chunk, or the
                generated name does not fit in a PostgreSQL identifier
        """
        if not partition:
            raise PreconditionViolation("partition is required")
        if not friendly_name:
            raise PreconditionViolation("friendly_name is required")
        if not columns or not columns.strip():
            raise PreconditionViolation("columns are required")

        schema, chunk = split_qualified_name(partition, self._chunk_schema)

        # Either we were handed the hypertable itself, or chunk naming changed
        if not chunk.startswith(CHUNK_PREFIX):
            raise PreconditionViolation(f"{partition} does not appear to be a hypertable chunk")

        index_name = full_index_name(friendly_name, chunk)
        if len(index_name.encode("utf-8")) > MAX_IDENTIFIER_LENGTH:
            raise PreconditionViolation(
                f"Index name {index_name} exceeds {MAX_IDENTIFIER_LENGTH} bytes and would be truncated"
            )

        tablespace_clause = sql.SQL("")
        if self._tablespace:
            tablespace_clause = sql.SQL(" TABLESPACE {0}").format(sql.Identifier(self._tablespace))
        predicate_clause = sql.SQL("")
        if predicate:
            predicate_clause = sql.SQL(" WHERE {0}").format(sql.SQL(predicate))

        statement = sql.SQL(CREATE_EPHEMERAL_INDEX).format(
            sql.Identifier(index_name),
            sql.Identifier(schema, chunk),
            sql.SQL(columns),
            tablespace_clause,
            predicate_clause,
        )
        self._execute(statement, f"create index {index_name}")
        logger.info(f"Created index {index_name} on {schema}.{chunk}")
        return index_name

    def drop_index(self, index_name: str, schema: Optional[str] = None):
        """
        Drops an index. Dropping an index that does not exist is an error.

        Args:
            index_name: Full name of the index to drop
            schema: Schema of the index, defaults to the chunk schema
        """
        if not index_name:
            raise PreconditionViolation("index_name is required")
        if not index_name.startswith(INDEX_PREFIX):
            raise PreconditionViolation(f"{index_name} is not an ephemeral index")

        statement = sql.SQL(DROP_INDEX).format(sql.Identifier(schema or self._chunk_schema, index_name))
        self._execute(statement, f"drop index {index_name}")
        logger.info(f"Dropped index {index_name}")

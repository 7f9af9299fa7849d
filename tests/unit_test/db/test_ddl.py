"""
Unit tests for DDLExecutor.

Statements are rendered without a connection, so no database is needed.
"""

from unittest.mock import MagicMock

import psycopg
import pytest
from psycopg import sql

from ephindex.db.ddl import DDLExecutor
from ephindex.exceptions import DataAccessError, PreconditionViolation


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def client(cursor):
    client = MagicMock()
    client.get_cursor.return_value.__enter__.return_value = cursor
    return client


def executed(cursor) -> str:
    statement = cursor.execute.call_args[0][0]
    assert isinstance(statement, sql.Composable)
    return statement.as_string(None)


class TestCreateIndex:
    """Test suite for index creation and its preconditions."""

    def test_create_index(self, client, cursor):
        ddl = DDLExecutor(client)

        name = ddl.create_index("_timescaledb_internal._hyper_1_2_chunk", "idx1", "sample_time, machine_id")

        assert name == "ephemeral_hyper_idx1__hyper_1_2_chunk"
        assert executed(cursor) == (
            'CREATE INDEX "ephemeral_hyper_idx1__hyper_1_2_chunk" ON "_timescaledb_internal"."_hyper_1_2_chunk" '
            "USING BTREE (sample_time, machine_id)"
        )

    def test_local_chunk_name_uses_chunk_schema(self, client, cursor):
        ddl = DDLExecutor(client, chunk_schema="chunks")

        ddl.create_index("_hyper_1_2_chunk", "idx1", "sample_time")

        assert ' ON "chunks"."_hyper_1_2_chunk" ' in executed(cursor)

    def test_partial_index_with_tablespace(self, client, cursor):
        ddl = DDLExecutor(client, tablespace="eph_idx")

        ddl.create_index("_timescaledb_internal._hyper_1_2_chunk", "errors", "event_time", "level = 'error'")

        assert executed(cursor).endswith("USING BTREE (event_time) TABLESPACE \"eph_idx\" WHERE level = 'error'")

    @pytest.mark.parametrize(
        "partition, friendly_name, columns",
        [
            ("", "idx1", "sample_time"),
            ("_timescaledb_internal._hyper_1_2_chunk", "", "sample_time"),
            ("_timescaledb_internal._hyper_1_2_chunk", "idx1", " "),
        ],
    )
    def test_required_arguments(self, client, cursor, partition, friendly_name, columns):
        with pytest.raises(PreconditionViolation):
            DDLExecutor(client).create_index(partition, friendly_name, columns)
        cursor.execute.assert_not_called()

    def test_refuses_non_chunk(self, client, cursor):
        with pytest.raises(PreconditionViolation, match="does not appear to be a hypertable chunk"):
            DDLExecutor(client).create_index("demo.samples", "idx1", "sample_time")
        cursor.execute.assert_not_called()

    def test_refuses_name_longer_than_identifier_limit(self, client, cursor):
        with pytest.raises(PreconditionViolation, match="exceeds 63 bytes"):
            DDLExecutor(client).create_index("_timescaledb_internal._hyper_1_2_chunk", "x" * 40, "sample_time")
        cursor.execute.assert_not_called()

    def test_driver_error(self, client, cursor):
        cursor.execute.side_effect = psycopg.errors.DuplicateTable("already exists")

        with pytest.raises(DataAccessError, match="already exists"):
            DDLExecutor(client).create_index("_timescaledb_internal._hyper_1_2_chunk", "idx1", "sample_time")


class TestDropIndex:
    def test_drop_index_in_chunk_schema(self, client, cursor):
        DDLExecutor(client).drop_index("ephemeral_hyper_idx1__hyper_1_2_chunk")

        assert executed(cursor) == 'DROP INDEX "_timescaledb_internal"."ephemeral_hyper_idx1__hyper_1_2_chunk"'

    def test_drop_index_in_given_schema(self, client, cursor):
        DDLExecutor(client).drop_index("ephemeral_hyper_idx1__hyper_1_2_chunk", "other")

        assert executed(cursor) == 'DROP INDEX "other"."ephemeral_hyper_idx1__hyper_1_2_chunk"'

    @pytest.mark.parametrize("index_name", ["", "samples_pkey", "hyper_idx1"])
    def test_refuses_foreign_indexes(self, client, cursor, index_name):
        with pytest.raises(PreconditionViolation):
            DDLExecutor(client).drop_index(index_name)
        cursor.execute.assert_not_called()

    def test_missing_index_is_an_error(self, client, cursor):
        cursor.execute.side_effect = psycopg.errors.UndefinedObject('index "x" does not exist')

        with pytest.raises(DataAccessError, match="does not exist"):
            DDLExecutor(client).drop_index("ephemeral_hyper_idx1__hyper_1_2_chunk")

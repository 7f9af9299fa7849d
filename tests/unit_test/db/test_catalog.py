"""
Unit tests for CatalogAccessor.

Note: These tests use a mocked connection manager; the SQL itself is not
executed.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import psycopg
import pytest
from psycopg import sql

from ephindex.db.catalog import (
    CHUNK_TO_HYPERTABLE,
    CHUNK_TO_HYPERTABLE_LIMITED,
    LIST_EPHEMERAL_INDEXES,
    SHOW_CHUNKS,
    CatalogAccessor,
    qualified_identifier,
)
from ephindex.exceptions import DataAccessError


@pytest.fixture
def cursor():
    return MagicMock()


@pytest.fixture
def catalog(cursor):
    client = MagicMock()
    client.get_cursor.return_value.__enter__.return_value = cursor
    return CatalogAccessor(client)


class TestListPartitions:
    def test_returns_qualified_chunks_in_query_order(self, catalog, cursor):
        cursor.fetchall.return_value = [
            ("_timescaledb_internal._hyper_1_3_chunk",),
            ("_hyper_1_2_chunk",),
        ]

        partitions = catalog.list_partitions("demo.samples")

        cursor.execute.assert_called_once_with(SHOW_CHUNKS, ("demo.samples",))
        assert partitions == [
            "_timescaledb_internal._hyper_1_3_chunk",
            "_timescaledb_internal._hyper_1_2_chunk",
        ]

    def test_table_is_required(self, catalog):
        with pytest.raises(ValueError):
            catalog.list_partitions("")

    def test_driver_error_is_not_an_empty_result(self, catalog, cursor):
        cursor.execute.side_effect = psycopg.OperationalError("server closed the connection")

        with pytest.raises(DataAccessError, match="server closed the connection"):
            catalog.list_partitions("demo.samples")


class TestListManagedIndexes:
    def test_filters_by_escaped_prefix(self, catalog, cursor):
        cursor.fetchall.return_value = [
            ("_timescaledb_internal._hyper_1_2_chunk", "ephemeral_hyper_idx1__hyper_1_2_chunk"),
        ]

        indexes = catalog.list_managed_indexes()

        cursor.execute.assert_called_once_with(LIST_EPHEMERAL_INDEXES, ("ephemeral\\_hyper\\_%",))
        assert indexes == [("_timescaledb_internal._hyper_1_2_chunk", "ephemeral_hyper_idx1__hyper_1_2_chunk")]


class TestMapPartitionsToTables:
    def test_full_scan(self, catalog, cursor):
        cursor.fetchall.return_value = [("demo.samples", "_timescaledb_internal._hyper_1_1_chunk")]

        mapping = catalog.map_partitions_to_tables()

        cursor.execute.assert_called_once_with(CHUNK_TO_HYPERTABLE, None)
        assert mapping == {"_timescaledb_internal._hyper_1_1_chunk": "demo.samples"}

    def test_restricted_scan_lowercases_tables(self, catalog, cursor):
        cursor.fetchall.return_value = []

        catalog.map_partitions_to_tables(["Demo.Samples", "demo.events", "demo.samples"])

        cursor.execute.assert_called_once_with(CHUNK_TO_HYPERTABLE_LIMITED, (["demo.events", "demo.samples"],))

    def test_empty_restriction_skips_the_query(self, catalog, cursor):
        assert catalog.map_partitions_to_tables([]) == {}
        cursor.execute.assert_not_called()


class TestNewestValue:
    def test_aware_timestamp(self, catalog, cursor):
        newest = datetime(2026, 10, 19, 11, 0, tzinfo=timezone(timedelta(hours=2)))
        cursor.fetchall.return_value = [(newest,)]

        assert catalog.newest_value("_timescaledb_internal._hyper_1_2_chunk", "sample_time") == newest

        query = cursor.execute.call_args[0][0]
        assert isinstance(query, sql.Composed)
        assert query.as_string(None) == (
            'SELECT "sample_time" FROM "_timescaledb_internal"."_hyper_1_2_chunk" '
            'ORDER BY "sample_time" DESC LIMIT 1'
        )

    def test_naive_timestamp_is_utc(self, catalog, cursor):
        cursor.fetchall.return_value = [(datetime(2026, 10, 19, 11, 0),)]

        newest = catalog.newest_value("_timescaledb_internal._hyper_1_2_chunk", "sample_time")

        assert newest == datetime(2026, 10, 19, 11, 0, tzinfo=timezone.utc)

    def test_empty_chunk(self, catalog, cursor):
        cursor.fetchall.return_value = []
        assert catalog.newest_value("_timescaledb_internal._hyper_1_2_chunk", "sample_time") is None

    def test_non_timestamp_column(self, catalog, cursor):
        cursor.fetchall.return_value = [(42,)]
        with pytest.raises(DataAccessError, match="not a timestamp"):
            catalog.newest_value("_timescaledb_internal._hyper_1_2_chunk", "sample_id")


def test_qualified_identifier_defaults_to_public():
    assert qualified_identifier("samples").as_string(None) == '"public"."samples"'
    assert qualified_identifier("demo.samples").as_string(None) == '"demo"."samples"'

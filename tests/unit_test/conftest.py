"""
Shared fixtures for unit tests.

FakeTimescaleStore stands in for both the catalog accessor and the DDL
executor, keeping chunks, their newest timestamps and the ephemeral indexes in
memory and recording every create/drop call.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest

from ephindex.config import Settings
from ephindex.exceptions import DataAccessError, PreconditionViolation
from ephindex.index.models import CHUNK_PREFIX, INDEX_PREFIX, full_index_name, split_qualified_name

CHUNK_SCHEMA = "_timescaledb_internal"
BASE_TIME = datetime(2026, 10, 19, 12, 30, tzinfo=timezone.utc)
CONNECTION_TARGET = "host=localhost dbname=metrics"


def chunk(local: str) -> str:
    return f"{CHUNK_SCHEMA}.{local}"


class FakeClock:
    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta):
        self.now = self.now + delta


class FakeTimescaleStore:
    """In-memory hypertables, chunks and ephemeral indexes"""

    def __init__(self):
        # table -> chunks, most recently created first
        self.tables: Dict[str, List[str]] = {}
        self.newest: Dict[str, Optional[datetime]] = {}
        # index name -> chunk
        self.indexes: Dict[str, str] = {}
        self.created: List[str] = []
        self.dropped: List[str] = []
        self.catalog_calls: List[str] = []
        # method name -> exception raised on every call
        self.failures: Dict[str, Exception] = {}
        # chunk -> exception raised by newest_value for that chunk
        self.newest_failures: Dict[str, Exception] = {}

    def add_table(self, table: str, chunks: Dict[str, Optional[datetime]]):
        """Register ``table`` with chunks given most recent first"""
        self.tables[table] = [chunk(local) for local in chunks]
        for local, newest in chunks.items():
            self.newest[chunk(local)] = newest

    def add_index(self, index_name: str, partition: str):
        self.indexes[index_name] = partition

    def reset_calls(self):
        self.created.clear()
        self.dropped.clear()
        self.catalog_calls.clear()

    def _check(self, method: str):
        self.catalog_calls.append(method)
        if method in self.failures:
            raise self.failures[method]

    # Catalog accessor surface

    def list_partitions(self, table: str) -> List[str]:
        self._check("list_partitions")
        return list(self.tables.get(table, []))

    def list_managed_indexes(self):
        self._check("list_managed_indexes")
        return [(partition, name) for name, partition in sorted(self.indexes.items())]

    def map_partitions_to_tables(self, tables=None) -> Dict[str, str]:
        self._check("map_partitions_to_tables")
        wanted = None if tables is None else {table.lower() for table in tables}
        mapping = {}
        for table, chunks in self.tables.items():
            if wanted is not None and table.lower() not in wanted:
                continue
            for partition in chunks:
                mapping[partition] = table
        return mapping

    def newest_value(self, table: str, column: str) -> Optional[datetime]:
        self._check("newest_value")
        if table in self.newest_failures:
            raise self.newest_failures[table]
        return self.newest.get(table)

    # DDL executor surface

    def create_index(self, partition, friendly_name, columns, predicate=None) -> str:
        self._check("create_index")
        _, local = split_qualified_name(partition, CHUNK_SCHEMA)
        if not local.startswith(CHUNK_PREFIX):
            raise PreconditionViolation(f"{partition} does not appear to be a hypertable chunk")
        name = full_index_name(friendly_name, partition)
        if name in self.indexes:
            raise DataAccessError(f'relation "{name}" already exists')
        self.indexes[name] = partition
        self.created.append(name)
        return name

    def drop_index(self, index_name, schema=None):
        self._check("drop_index")
        if index_name not in self.indexes:
            raise DataAccessError(f'index "{index_name}" does not exist')
        assert index_name.startswith(INDEX_PREFIX)
        del self.indexes[index_name]
        self.dropped.append(index_name)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return FakeTimescaleStore()


@pytest.fixture
def settings():
    return Settings(database_url=CONNECTION_TARGET)

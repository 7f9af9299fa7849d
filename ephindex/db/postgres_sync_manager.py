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
import os
import threading
from contextlib import contextmanager
from typing import Dict, Optional

from psycopg_pool import ConnectionPool

from ephindex.config import Settings

logger = logging.getLogger(__name__)

# Set psycopg logger level to WARNING to suppress per-connection noise
logging.getLogger("psycopg").setLevel(logging.WARNING)


class PostgreSQLSyncConnectionManager:
    """
    Connection pool for a single connection target.

    Connections are handed out in autocommit mode: every catalog query and
    every DDL statement is its own transaction.
    """

    def __init__(self, conninfo: str, min_size: int = 1, max_size: int = 4, timeout: int = 30):
        self._conninfo = conninfo
        self._min_size = min_size
        self._max_size = max_size
        self._timeout = timeout
        self._connection_pool: Optional[ConnectionPool] = None
        self._lock = threading.Lock()

    @property
    def conninfo(self) -> str:
        return self._conninfo

    def initialize(self):
        """Open the pool if it is not open yet."""
        with self._lock:
            if self._connection_pool is None:
                logger.info(f"Initializing PostgreSQL sync connection pool for worker {os.getpid()}")

                self._connection_pool = ConnectionPool(
                    self._conninfo,
                    min_size=self._min_size,
                    max_size=self._max_size,
                    timeout=self._timeout,
                    kwargs={"autocommit": True},
                    open=False,
                )
                self._connection_pool.open()

                logger.info(f"PostgreSQL sync connection pool initialized for worker {os.getpid()}")

    def get_pool(self) -> ConnectionPool:
        if self._connection_pool is None:
            self.initialize()
        return self._connection_pool

    @contextmanager
    def get_connection(self):
        """Get a connection from the pool, returning it afterwards."""
        pool = self.get_pool()
        connection = pool.getconn()
        try:
            yield connection
        finally:
            pool.putconn(connection)

    @contextmanager
    def get_cursor(self, row_factory=None):
        """Get a cursor from a pooled connection."""
        with self.get_connection() as conn:
            cursor_kwargs = {}
            if row_factory:
                cursor_kwargs["row_factory"] = row_factory
            with conn.cursor(**cursor_kwargs) as cur:
                yield cur

    def close(self):
        with self._lock:
            if self._connection_pool:
                logger.info(f"Closing PostgreSQL connection pool for worker {os.getpid()}")
                self._connection_pool.close()
                self._connection_pool = None


class PostgreSQLClientManager:
    """
    Process-wide registry of connection managers, one per connection target.
    """

    _clients: Dict[str, PostgreSQLSyncConnectionManager] = {}
    _lock = threading.Lock()

    @classmethod
    def get_client(cls, conninfo: str, settings: Optional[Settings] = None) -> PostgreSQLSyncConnectionManager:
        with cls._lock:
            client = cls._clients.get(conninfo)
            if client is None:
                settings = settings or Settings()
                client = PostgreSQLSyncConnectionManager(
                    conninfo,
                    min_size=settings.pool_min_size,
                    max_size=settings.pool_max_size,
                    timeout=settings.pool_timeout,
                )
                cls._clients[conninfo] = client
                logger.info("Created PostgreSQL client for a new connection target")
            return client

    @classmethod
    def release_client(cls, conninfo: str) -> None:
        with cls._lock:
            client = cls._clients.pop(conninfo, None)
        if client:
            client.close()

    @classmethod
    def close_all(cls):
        with cls._lock:
            clients = list(cls._clients.values())
            cls._clients.clear()
        for client in clients:
            client.close()


# Celery signal handler for worker lifecycle
def cleanup_worker_postgres(**kwargs):
    """Close every pool when a worker shuts down."""
    PostgreSQLClientManager.close_all()
    logger.info(f"Worker {os.getpid()}: PostgreSQL connections closed")

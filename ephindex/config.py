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
Runtime settings for the ephemeral index keeper.

Settings are read from environment variables. A ``.env`` file in the working
directory is loaded first, values already present in the environment win.
"""

import logging
import os
from datetime import timedelta
from typing import Mapping, Optional

import dotenv
from pydantic import BaseModel, Field

from ephindex.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SCHEMA = "_timescaledb_internal"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class Settings(BaseModel):
    policy_file: str = Field("policies.yaml", description="Path of the YAML policy file.")
    database_url: Optional[str] = Field(
        None, description="Fallback connection target when the policy file does not name one."
    )
    tick_interval: timedelta = Field(timedelta(seconds=60), description="Delay between reconciliation ticks.")
    refresh_interval: timedelta = Field(timedelta(hours=1), description="Maximum age of the cached inventory.")
    align_refresh_to_hour: bool = Field(True, description="Also refresh whenever the UTC hour changes.")
    index_tablespace: Optional[str] = Field(None, description="Tablespace for created indexes.")
    chunk_schema: str = Field(DEFAULT_CHUNK_SCHEMA, description="Schema holding hypertable chunks.")
    pool_min_size: int = 1
    pool_max_size: int = 4
    pool_timeout: int = 30
    log_level: str = "INFO"
    celery_broker_url: str = "redis://localhost:6379/0"

    model_config = {"frozen": True}


def _get_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")


def _get_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{key} must be a boolean, got {raw!r}")


def load_settings(env: Optional[Mapping[str, str]] = None, load_env_file: bool = True) -> Settings:
    """
    Build settings from the environment

    Args:
        env: Mapping to read instead of ``os.environ`` (used by tests)
        load_env_file: Load ``.env`` into ``os.environ`` before reading it
    """
    if env is None:
        if load_env_file:
            dotenv.load_dotenv(".env")
        env = os.environ

    tick_seconds = _get_int(env, "EPHINDEX_TICK_INTERVAL", 60)
    refresh_seconds = _get_int(env, "EPHINDEX_REFRESH_INTERVAL", 3600)
    if tick_seconds <= 0:
        raise ConfigurationError("EPHINDEX_TICK_INTERVAL must be positive")
    if refresh_seconds <= 0:
        raise ConfigurationError("EPHINDEX_REFRESH_INTERVAL must be positive")

    pool_min_size = _get_int(env, "EPHINDEX_POOL_MIN_SIZE", 1)
    pool_max_size = _get_int(env, "EPHINDEX_POOL_MAX_SIZE", 4)
    if pool_min_size < 0 or pool_max_size < max(pool_min_size, 1):
        raise ConfigurationError(
            f"Invalid pool sizes: min={pool_min_size}, max={pool_max_size}"
        )

    return Settings(
        policy_file=env.get("EPHINDEX_POLICY_FILE") or "policies.yaml",
        database_url=env.get("EPHINDEX_DATABASE_URL") or None,
        tick_interval=timedelta(seconds=tick_seconds),
        refresh_interval=timedelta(seconds=refresh_seconds),
        align_refresh_to_hour=_get_bool(env, "EPHINDEX_ALIGN_REFRESH_TO_HOUR", True),
        index_tablespace=env.get("EPHINDEX_INDEX_TABLESPACE") or None,
        chunk_schema=env.get("EPHINDEX_CHUNK_SCHEMA") or DEFAULT_CHUNK_SCHEMA,
        pool_min_size=pool_min_size,
        pool_max_size=pool_max_size,
        pool_timeout=_get_int(env, "EPHINDEX_POOL_TIMEOUT", 30),
        log_level=(env.get("EPHINDEX_LOG_LEVEL") or "INFO").upper(),
        celery_broker_url=env.get("CELERY_BROKER_URL") or "redis://localhost:6379/0",
    )

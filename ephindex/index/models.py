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

import re
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ephindex.config import DEFAULT_CHUNK_SCHEMA

# Every index this system owns carries this prefix; nothing else is touched
INDEX_PREFIX = "ephemeral_hyper_"
# Local name prefix of TimescaleDB chunks
CHUNK_PREFIX = "_hyper"
# PostgreSQL NAMEDATALEN - 1
MAX_IDENTIFIER_LENGTH = 63

_FRIENDLY_NAME_RE = re.compile(r"^[a-z0-9_]+$")


def split_qualified_name(name: str, default_schema: str = DEFAULT_CHUNK_SCHEMA) -> Tuple[str, str]:
    """Split ``schema.object`` into its parts, applying ``default_schema`` when unqualified."""
    if "." in name:
        schema, local = name.split(".", 1)
        return schema, local
    return default_schema, name


def local_name(partition: str) -> str:
    return split_qualified_name(partition)[1]


def qualify_partition(partition: str, default_schema: str = DEFAULT_CHUNK_SCHEMA) -> str:
    schema, local = split_qualified_name(partition, default_schema)
    return f"{schema}.{local}"


def full_index_name(friendly_name: str, partition: str) -> str:
    """Name of the index a policy with ``friendly_name`` owns on ``partition``."""
    return f"{INDEX_PREFIX}{friendly_name}_{local_name(partition)}"


def same_table(left: Optional[str], right: Optional[str]) -> bool:
    if left is None or right is None:
        return False
    return left.lower() == right.lower()


class IndexPolicy(BaseModel):
    """Indexing options for one hypertable"""

    model_config = ConfigDict(frozen=True)

    enabled: bool = Field(True, description="True if this policy is enabled.")
    friendly_name: Optional[str] = Field(None, description="Label embedded in every index name of this policy.")
    column_list: Optional[str] = Field(None, description="Index columns, e.g. 'sample_time, machine_id'.")
    predicate: Optional[str] = Field(None, description="Optional WHERE predicate for partial indexes.")
    age_window: timedelta = Field(timedelta(hours=12), description="Chunks newer than this are indexed.")
    time_column: Optional[str] = Field(None, description="Time column of the hypertable.")
    table: Optional[str] = Field(None, description="Qualified hypertable name, e.g. 'demo.samples'.")

    @field_validator("friendly_name")
    @classmethod
    def fold_friendly_name(cls, value: Optional[str]) -> Optional[str]:
        # PostgreSQL folds unquoted identifiers to lower case
        return value.lower() if value else value

    def problems(self) -> List[str]:
        """Reasons this policy cannot be applied; empty when it is usable."""
        problems = []
        if not self.table:
            problems.append("missing table")
        if not self.friendly_name:
            problems.append("missing friendly_name")
        elif not _FRIENDLY_NAME_RE.match(self.friendly_name):
            problems.append(f"friendly_name {self.friendly_name!r} must match {_FRIENDLY_NAME_RE.pattern}")
        if not self.column_list or not self.column_list.strip():
            problems.append("missing column_list")
        if not self.time_column:
            problems.append("missing time_column")
        if self.age_window <= timedelta(0):
            problems.append("age_window must be positive")
        return problems

    @property
    def is_valid(self) -> bool:
        return not self.problems()

    def owns(self, index: "ManagedIndex") -> bool:
        """True if ``index`` is the index this policy generates for its partition."""
        return same_table(index.owner_table, self.table) and index.index_name == full_index_name(
            self.friendly_name, index.partition_name
        )

    def describe(self) -> str:
        return f"{self.table}/{self.friendly_name}"


class PolicySet(BaseModel):
    """Ordered collection of index policies plus the database they apply to"""

    model_config = ConfigDict(frozen=True)

    connection_target: Optional[str] = Field(None, description="libpq connection string.")
    policies: List[IndexPolicy] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.policies

    def enabled_policies(self) -> List[IndexPolicy]:
        return [policy for policy in self.policies if policy.enabled]

    def managed_tables(self) -> List[str]:
        """Distinct tables referenced by enabled policies, in policy order."""
        tables = []
        seen = set()
        for policy in self.enabled_policies():
            if policy.table and policy.table.lower() not in seen:
                seen.add(policy.table.lower())
                tables.append(policy.table)
        return tables


@dataclass(frozen=True)
class ManagedIndex:
    """An ephemeral index on a chunk, paired with the hypertable owning the chunk"""

    partition_name: str
    index_name: str
    # None means no enabled policy covers the owning table any more
    owner_table: Optional[str] = None

    @property
    def is_orphaned(self) -> bool:
        return self.owner_table is None

    def orphaned(self) -> "ManagedIndex":
        return replace(self, owner_table=None)


class Inventory:
    """
    Cached view of the managed indexes, keyed by index name.

    Readers iterate over ``snapshot()``; mutation only goes through ``add``,
    ``remove`` and ``replace_all``.
    """

    def __init__(self, entries: Iterable[ManagedIndex] = ()):
        self._entries: Dict[str, ManagedIndex] = {}
        self.replace_all(entries)

    def replace_all(self, entries: Iterable[ManagedIndex]):
        self._entries = {entry.index_name: entry for entry in entries}

    def add(self, entry: ManagedIndex):
        self._entries[entry.index_name] = entry

    def remove(self, index_name: str) -> Optional[ManagedIndex]:
        return self._entries.pop(index_name, None)

    def get(self, index_name: str) -> Optional[ManagedIndex]:
        return self._entries.get(index_name)

    def snapshot(self) -> Tuple[ManagedIndex, ...]:
        return tuple(self._entries.values())

    def orphans(self) -> Tuple[ManagedIndex, ...]:
        return tuple(entry for entry in self._entries.values() if entry.is_orphaned)

    def owned_by(self, policy: IndexPolicy) -> Tuple[ManagedIndex, ...]:
        return tuple(entry for entry in self._entries.values() if policy.owns(entry))

    def for_partition(self, partition: str) -> Tuple[ManagedIndex, ...]:
        return tuple(entry for entry in self._entries.values() if entry.partition_name == partition)

    def __contains__(self, index_name: str) -> bool:
        return index_name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ManagedIndex]:
        return iter(self.snapshot())

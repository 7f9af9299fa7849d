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
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set, Tuple

from ephindex.config import Settings
from ephindex.db.catalog import CatalogAccessor
from ephindex.db.ddl import DDLExecutor
from ephindex.db.postgres_sync_manager import PostgreSQLClientManager
from ephindex.exceptions import ConfigurationError
from ephindex.index.models import (
    IndexPolicy,
    Inventory,
    ManagedIndex,
    PolicySet,
    full_index_name,
    same_table,
    split_qualified_name,
)
from ephindex.index.policy_source import PolicyFileSource, PolicySource

logger = logging.getLogger(__name__)

Backend = Tuple[CatalogAccessor, DDLExecutor]
BackendFactory = Callable[[str], Backend]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def postgres_backend_factory(settings: Settings) -> BackendFactory:
    """Build catalog and DDL accessors sharing one pool per connection target"""

    def factory(conninfo: str) -> Backend:
        client = PostgreSQLClientManager.get_client(conninfo, settings)
        catalog = CatalogAccessor(client, chunk_schema=settings.chunk_schema)
        ddl = DDLExecutor(client, chunk_schema=settings.chunk_schema, tablespace=settings.index_tablespace)
        return catalog, ddl

    return factory


@dataclass
class ReconcilerContext:
    """State carried from one tick to the next"""

    inventory: Inventory = field(default_factory=Inventory)
    last_inventory_refresh: Optional[datetime] = None
    policy_set: PolicySet = field(default_factory=PolicySet)
    last_policy_load: Optional[datetime] = None
    # Connection target the inventory was read from
    connection_target: Optional[str] = None
    force_refresh: bool = False


@dataclass
class TickReport:
    """What one tick did"""

    refreshed: bool = False
    created: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)
    skipped_policies: List[str] = field(default_factory=list)
    failed_policies: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.dropped)


class EphemeralIndexReconciler:
    """
    Keeps ephemeral indexes on the recent chunks of policy-managed hypertables.

    Each tick converges the indexes that exist towards the ones the policies
    ask for. The expensive catalog scan only runs when the cached inventory is
    due for a refresh; ticks in between do nothing.
    """

    def __init__(
        self,
        policy_source: PolicySource,
        settings: Optional[Settings] = None,
        backend_factory: Optional[BackendFactory] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or Settings()
        self.context = ReconcilerContext()
        self._policy_source = policy_source
        self._backend_factory = backend_factory or postgres_backend_factory(self.settings)
        self._clock = clock
        self._backend: Optional[Backend] = None

    def request_refresh(self):
        """Make the next tick rescan the catalog regardless of the refresh interval."""
        self.context.force_refresh = True

    def run_reconciliation_tick(self) -> TickReport:
        """
        Run one reconciliation pass. Never raises: failures are logged and the
        next tick starts over from catalog truth.
        """
        report = TickReport()
        try:
            self._reload_policies()

            policy_set = self.context.policy_set
            if policy_set.is_empty:
                # Nothing to do, existing indexes are left alone
                logger.debug("No index policies configured")
                return report

            catalog, ddl = self._get_backend(policy_set)

            now = self._clock()
            if not self._refresh_due(now):
                logger.debug("Inventory is fresh, skipping reconciliation")
                return report

            try:
                self._refresh_inventory(catalog, policy_set, now)
            except Exception:
                self.context.force_refresh = True
                raise
            report.refreshed = True

            self._sweep_orphans(ddl, report)

            for policy in self._usable_policies(policy_set, report):
                try:
                    logger.info(f"Checking indexing for: {policy.table}")
                    covered = self._sweep_retention(policy, catalog, ddl, now, report)
                    self._sweep_coverage(policy, catalog, ddl, now, covered, report)
                except Exception as e:
                    logger.error(
                        f"Failure in policy for table {policy.table} with friendly name {policy.friendly_name}: {e}",
                        exc_info=True,
                    )
                    report.failed_policies.append(policy.describe())
                    # Resume from catalog truth on the next tick
                    self.context.force_refresh = True

            if report.changed:
                logger.info(
                    f"Reconciliation created {len(report.created)} and dropped {len(report.dropped)} indexes"
                )
        except Exception as e:
            logger.error(f"Error in indexing tick: {e}", exc_info=True)
        return report

    def _reload_policies(self):
        try:
            policy_set = self._policy_source.load_if_changed()
        except ConfigurationError as e:
            logger.error(f"Failed to reload index policies, keeping the previous set: {e}")
            return

        if policy_set is None:
            return

        self.context.policy_set = policy_set
        self.context.last_policy_load = self._clock()
        # New policies should not wait for the next scheduled refresh
        self.context.force_refresh = True

    def _get_backend(self, policy_set: PolicySet) -> Backend:
        target = policy_set.connection_target or self.settings.database_url
        if not target:
            raise ConfigurationError("No connection target configured for index policies")

        if self._backend is None or target != self.context.connection_target:
            if self.context.connection_target is not None:
                logger.info("Connection target changed, discarding cached inventory")
            self._backend = self._backend_factory(target)
            self.context.connection_target = target
            self.context.inventory = Inventory()
            self.context.last_inventory_refresh = None
        return self._backend

    def _refresh_due(self, now: datetime) -> bool:
        last = self.context.last_inventory_refresh
        if self.context.force_refresh or last is None:
            return True
        if now - last >= self.settings.refresh_interval:
            return True
        if self.settings.align_refresh_to_hour:
            return now.replace(minute=0, second=0, microsecond=0) != last.replace(minute=0, second=0, microsecond=0)
        return False

    def _refresh_inventory(self, catalog: CatalogAccessor, policy_set: PolicySet, now: datetime):
        logger.debug("Getting latest chunk map")
        current_indexes = catalog.list_managed_indexes()
        chunk_map = catalog.map_partitions_to_tables(policy_set.managed_tables())
        enabled = policy_set.enabled_policies()

        entries = []
        for partition, index_name in current_indexes:
            owner = chunk_map.get(partition)
            if owner is None:
                logger.warning(f"No enabled policy covers the table of chunk {partition}, orphaning {index_name}")
            elif not any(
                same_table(policy.table, owner)
                and policy.friendly_name
                and index_name == full_index_name(policy.friendly_name, partition)
                for policy in enabled
            ):
                logger.warning(f"No enabled policy on {owner} generates {index_name}, orphaning it")
                owner = None
            entries.append(ManagedIndex(partition_name=partition, index_name=index_name, owner_table=owner))

        self.context.inventory.replace_all(entries)
        self.context.last_inventory_refresh = now
        self.context.force_refresh = False
        logger.info(
            f"Inventory refreshed: {len(entries)} ephemeral indexes, "
            f"{len(self.context.inventory.orphans())} orphaned"
        )

    def _sweep_orphans(self, ddl: DDLExecutor, report: TickReport):
        for index in self.context.inventory.orphans():
            try:
                logger.info(f"Dropping orphaned index {index.index_name} on {index.partition_name}")
                ddl.drop_index(index.index_name, self._schema_of(index.partition_name))
            except Exception as e:
                logger.error(f"Failed to drop orphaned index {index.index_name}: {e}")
                self.context.force_refresh = True
                continue
            self.context.inventory.remove(index.index_name)
            report.dropped.append(index.index_name)

    def _usable_policies(self, policy_set: PolicySet, report: TickReport) -> List[IndexPolicy]:
        usable = []
        seen = set()
        for policy in policy_set.enabled_policies():
            problems = policy.problems()
            if problems:
                error = ConfigurationError(f"Skipping invalid index policy {policy.describe()}: {', '.join(problems)}")
                logger.error(error.get_message())
                report.skipped_policies.append(policy.describe())
                continue
            key = (policy.table.lower(), policy.friendly_name)
            if key in seen:
                logger.error(f"Skipping duplicate index policy {policy.describe()}")
                report.skipped_policies.append(policy.describe())
                continue
            seen.add(key)
            usable.append(policy)
        return usable

    def _sweep_retention(
        self, policy: IndexPolicy, catalog: CatalogAccessor, ddl: DDLExecutor, now: datetime, report: TickReport
    ) -> Set[str]:
        """Drop this policy's indexes on chunks that aged out; return the chunks still covered."""
        covered = set()
        for index in self.context.inventory.owned_by(policy):
            newest = catalog.newest_value(index.partition_name, policy.time_column)
            if self._aged_out(newest, policy, now):
                logger.info(f"Chunk {index.partition_name} age exceeds indexing window, dropping: {index.index_name}")
                ddl.drop_index(index.index_name, self._schema_of(index.partition_name))
                self.context.inventory.remove(index.index_name)
                report.dropped.append(index.index_name)
            else:
                covered.add(index.partition_name)
        return covered

    def _sweep_coverage(
        self,
        policy: IndexPolicy,
        catalog: CatalogAccessor,
        ddl: DDLExecutor,
        now: datetime,
        covered: Set[str],
        report: TickReport,
    ):
        """Index recent chunks, newest first, stopping at the first chunk outside the window."""
        for partition in catalog.list_partitions(policy.table):
            if partition in covered:
                continue
            if full_index_name(policy.friendly_name, partition) in self.context.inventory:
                continue
            newest = catalog.newest_value(partition, policy.time_column)
            if self._aged_out(newest, policy, now):
                # Older chunks are assumed to be older still
                break
            logger.info(f"Creating new index for chunk: {partition}")
            index_name = ddl.create_index(partition, policy.friendly_name, policy.column_list, policy.predicate)
            self.context.inventory.add(
                ManagedIndex(partition_name=partition, index_name=index_name, owner_table=policy.table)
            )
            report.created.append(index_name)

    @staticmethod
    def _aged_out(newest: Optional[datetime], policy: IndexPolicy, now: datetime) -> bool:
        # An empty chunk counts as infinitely old
        return newest is None or newest + policy.age_window < now

    def _schema_of(self, partition: str) -> str:
        return split_qualified_name(partition, self.settings.chunk_schema)[0]


def create_reconciler(settings: Settings) -> EphemeralIndexReconciler:
    """Reconciler reading policies from the configured YAML file"""
    return EphemeralIndexReconciler(PolicyFileSource(settings.policy_file), settings=settings)

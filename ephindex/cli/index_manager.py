#!/usr/bin/env python3
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
CLI tool for the ephemeral index keeper

Usage:
    python -m ephindex.cli.index_manager --help
    python -m ephindex.cli.index_manager run
    python -m ephindex.cli.index_manager tick
    python -m ephindex.cli.index_manager list
    python -m ephindex.cli.index_manager validate --policy-file policies.yaml
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import List, Optional

from ephindex.config import Settings, load_settings
from ephindex.exceptions import EphemeralIndexError
from ephindex.index.policy_source import load_policy_file

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def run_service(settings: Settings) -> int:
    """Reconcile on a fixed interval until SIGINT / SIGTERM"""
    from ephindex.db.postgres_sync_manager import PostgreSQLClientManager
    from ephindex.index.reconciler import create_reconciler
    from ephindex.tasks.service import IndexingService

    service = IndexingService(create_reconciler(settings), settings.tick_interval)
    service.install_signal_handlers()
    try:
        service.run()
    finally:
        PostgreSQLClientManager.close_all()
    return 0


def run_single_tick(settings: Settings) -> int:
    """Run one reconciliation tick with a forced inventory refresh"""
    from ephindex.db.postgres_sync_manager import PostgreSQLClientManager
    from ephindex.index.reconciler import create_reconciler

    reconciler = create_reconciler(settings)
    reconciler.request_refresh()
    try:
        report = reconciler.run_reconciliation_tick()
    finally:
        PostgreSQLClientManager.close_all()
    print(json.dumps(asdict(report), indent=2, ensure_ascii=False))
    return 0


def list_managed_indexes(settings: Settings) -> int:
    """Print every ephemeral index with the hypertable owning its chunk"""
    from ephindex.db.catalog import CatalogAccessor
    from ephindex.db.postgres_sync_manager import PostgreSQLClientManager

    policy_set = load_policy_file(settings.policy_file)
    target = policy_set.connection_target or settings.database_url
    if not target:
        logger.error("No connection target configured")
        return 1

    client = PostgreSQLClientManager.get_client(target, settings)
    try:
        catalog = CatalogAccessor(client, chunk_schema=settings.chunk_schema)
        chunk_map = catalog.map_partitions_to_tables()
        indexes = [
            {"chunk": partition, "index": index_name, "table": chunk_map.get(partition)}
            for partition, index_name in catalog.list_managed_indexes()
        ]
    finally:
        PostgreSQLClientManager.close_all()

    print(json.dumps(indexes, indent=2, ensure_ascii=False))
    return 0


def validate_policies(settings: Settings) -> int:
    """Check the policy file, reporting every policy that would be skipped"""
    policy_set = load_policy_file(settings.policy_file)

    invalid = 0
    for position, policy in enumerate(policy_set.policies, start=1):
        problems = policy.problems()
        state = "enabled" if policy.enabled else "disabled"
        if problems:
            invalid += 1
            print(f"#{position} {policy.describe()} ({state}): {'; '.join(problems)}")
        else:
            print(f"#{position} {policy.describe()} ({state}): ok")

    if not policy_set.connection_target and not settings.database_url:
        print("No connection target configured")
        invalid += 1

    print(f"{len(policy_set.policies)} policies, {invalid} problems")
    return 1 if invalid else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Ephemeral hypertable index keeper")
    parser.add_argument("--policy-file", help="YAML policy file (overrides EPHINDEX_POLICY_FILE)")
    parser.add_argument("--log-level", help="Log level (overrides EPHINDEX_LOG_LEVEL)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("run", help="Reconcile periodically until interrupted")
    subparsers.add_parser("tick", help="Run a single reconciliation tick")
    subparsers.add_parser("list", help="List ephemeral indexes")
    subparsers.add_parser("validate", help="Validate the policy file")
    return parser


COMMANDS = {
    "run": run_service,
    "tick": run_single_tick,
    "list": list_managed_indexes,
    "validate": validate_policies,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        settings = load_settings()
        overrides = {}
        if args.policy_file:
            overrides["policy_file"] = args.policy_file
        if args.log_level:
            overrides["log_level"] = args.log_level.upper()
        if overrides:
            settings = settings.model_copy(update=overrides)

        logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
        return COMMANDS[args.command](settings)
    except EphemeralIndexError as e:
        logger.error(e.get_message())
        return 1
    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return 1


if __name__ == "__main__":
    sys.exit(main())

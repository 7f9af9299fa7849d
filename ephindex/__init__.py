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
Ephemeral Hypertable Index Keeper

Keeps short-lived B-tree indexes on the recent chunks of TimescaleDB
hypertables, following per-table policies.

Key components:
- EphemeralIndexReconciler: converges existing indexes towards the policies
- CatalogAccessor / DDLExecutor: read the catalog, create and drop indexes
- IndexingService: runs reconciliation ticks on a fixed interval

Indexes are named 'ephemeral_hyper_<friendly name>_<chunk>'; no other index
is ever created or dropped.
"""

__version__ = "0.1.0"

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
import threading
from typing import Any, Dict, Optional

from config.celery import app, settings
from ephindex.index.reconciler import EphemeralIndexReconciler, create_reconciler

logger = logging.getLogger(__name__)

# One reconciler per worker process; its inventory survives between ticks
_reconciler: Optional[EphemeralIndexReconciler] = None
_reconciler_lock = threading.Lock()


def get_reconciler() -> EphemeralIndexReconciler:
    global _reconciler
    with _reconciler_lock:
        if _reconciler is None:
            _reconciler = create_reconciler(settings)
        return _reconciler


@app.task
def reconcile_ephemeral_indexes_task() -> Dict[str, Any]:
    """Periodic task running one reconciliation tick"""
    logger.info("Starting ephemeral index reconciliation")
    report = get_reconciler().run_reconciliation_tick()
    logger.info("Ephemeral index reconciliation completed")
    return {
        "refreshed": report.refreshed,
        "created": report.created,
        "dropped": report.dropped,
    }

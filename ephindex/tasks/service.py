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
import signal
import threading
from datetime import timedelta
from typing import Optional

from ephindex.index.reconciler import EphemeralIndexReconciler

logger = logging.getLogger(__name__)


class IndexingService:
    """
    Runs reconciliation ticks back to back on a fixed interval.

    Ticks never overlap. Stopping is only observed while waiting between
    ticks, so an in-flight catalog or DDL call always runs to completion.
    """

    def __init__(self, reconciler: EphemeralIndexReconciler, interval: timedelta):
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")
        self._reconciler = reconciler
        self._interval = interval
        self._stop_event = threading.Event()
        self.ticks = 0

    @property
    def stop_event(self) -> threading.Event:
        return self._stop_event

    def stop(self):
        self._stop_event.set()

    def run(self, max_ticks: Optional[int] = None):
        """
        Loop until stopped

        Args:
            max_ticks: Return after this many ticks (None runs until stopped)
        """
        logger.info(f"Ephemeral indexing service started, interval {self._interval.total_seconds():.0f}s")
        while not self._stop_event.is_set():
            self._reconciler.run_reconciliation_tick()
            self.ticks += 1
            if max_ticks is not None and self.ticks >= max_ticks:
                break
            self._stop_event.wait(self._interval.total_seconds())
        logger.info(f"Ephemeral indexing service stopped after {self.ticks} ticks")

    def install_signal_handlers(self):
        """Stop on SIGINT / SIGTERM. Must be called from the main thread."""

        def _handle(signum, frame):
            logger.info(f"Received signal {signum}, stopping after the current tick")
            self.stop()

        signal.signal(signal.SIGINT, _handle)
        signal.signal(signal.SIGTERM, _handle)

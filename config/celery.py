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

from celery import Celery
from celery.signals import worker_process_shutdown

from config.celery_beat_schedule import CELERY_BEAT_SCHEDULE, CELERY_TIMEZONE
from ephindex.config import load_settings
from ephindex.db.postgres_sync_manager import cleanup_worker_postgres

logger = logging.getLogger(__name__)

settings = load_settings()

app = Celery("ephindex", broker=settings.celery_broker_url, include=["config.celery_tasks"])
app.conf.update(
    beat_schedule=CELERY_BEAT_SCHEDULE,
    timezone=CELERY_TIMEZONE,
    # Ticks must never run concurrently; run workers with --concurrency=1
    worker_concurrency=1,
    worker_prefetch_multiplier=1,
    task_ignore_result=True,
)

worker_process_shutdown.connect(cleanup_worker_postgres)

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
Celery Beat schedule for ephemeral index reconciliation
"""

# Beat schedule for the reconciliation tick
CELERY_BEAT_SCHEDULE = {
    # Run one reconciliation tick every minute
    'reconcile-ephemeral-indexes': {
        'task': 'config.celery_tasks.reconcile_ephemeral_indexes_task',
        'schedule': 60.0,
        'options': {
            'expires': 55,  # Task expires before the next one is due to avoid overlap
        }
    },
}

# Timezone for the scheduler
CELERY_TIMEZONE = 'UTC'

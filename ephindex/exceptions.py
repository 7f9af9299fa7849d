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


class EphemeralIndexError(Exception):
    """Base class for ephemeral index errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def get_message(self) -> str:
        return self.message


class ConfigurationError(EphemeralIndexError):
    """Invalid settings, unreadable policy source, or a malformed policy."""


class DataAccessError(EphemeralIndexError):
    """Connectivity or query failure against the data store."""


class PreconditionViolation(EphemeralIndexError):
    """An index operation was requested on an object it must never touch."""

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
import os
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from ephindex.exceptions import ConfigurationError
from ephindex.index.models import PolicySet

logger = logging.getLogger(__name__)


class PolicySource(ABC):
    """Supplies the policy set to the reconciler"""

    @abstractmethod
    def load_if_changed(self) -> Optional[PolicySet]:
        """
        Return a fresh PolicySet when the source changed since the last load,
        None when it did not.

        Raises:
            ConfigurationError: the source exists but cannot be read or parsed
        """
        pass


class StaticPolicySource(PolicySource):
    """In-memory policy set, handed out once"""

    def __init__(self, policy_set: PolicySet):
        self._policy_set = policy_set
        self._delivered = False

    def update(self, policy_set: PolicySet):
        self._policy_set = policy_set
        self._delivered = False

    def load_if_changed(self) -> Optional[PolicySet]:
        if self._delivered:
            return None
        self._delivered = True
        return self._policy_set


def parse_policy_set(text: str, origin: str = "<string>") -> PolicySet:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Policy file {origin} is not valid YAML: {e}") from e

    if data is None:
        return PolicySet()
    if not isinstance(data, dict):
        raise ConfigurationError(f"Policy file {origin} must contain a mapping at the top level")

    try:
        return PolicySet.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Policy file {origin} is invalid: {e}") from e


def load_policy_file(path: Union[str, Path]) -> PolicySet:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read policy file {path}: {e}") from e
    return parse_policy_set(text, str(path))


class PolicyFileSource(PolicySource):
    """
    YAML policy file, reloaded whenever its modification time changes.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = Path(path)
        self._last_mtime: Optional[float] = None

    @property
    def path(self) -> Path:
        return self._path

    def load_if_changed(self) -> Optional[PolicySet]:
        try:
            mtime = os.stat(self._path).st_mtime
        except OSError as e:
            raise ConfigurationError(f"Policy file {self._path} is not accessible: {e}") from e

        if self._last_mtime is not None and mtime == self._last_mtime:
            return None

        policy_set = load_policy_file(self._path)
        # Only remember the mtime once the file parsed, so a broken edit is retried
        self._last_mtime = mtime
        logger.info(f"Loaded {len(policy_set.policies)} index policies from {self._path}")
        return policy_set

# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
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
Catalog of base environments (toolchains) that build stages execute in.
"""

import json
import os
from pathlib import Path
from typing import Dict, List, Optional

from .image_reference import ImageReference
from ..MODELS.orchestration_config import BaseEnvironment
from ..UTILS.hashing import json_digest
from ..errors import ProvisioningError


class BaseImageCatalog:
    """
    Resolves base image references to registered toolchains.

    Entries come from a persistent JSON index (managed with ``b2l base``)
    and from the ``base_images`` section of the configuration; configured
    entries win on conflict.
    """

    def __init__(self, index_file: str, configured: Optional[Dict[str, BaseEnvironment]] = None):
        """
        Initialize the catalog.

        Args:
            index_file: Path of the JSON index of registered base environments.
            configured: Base environments declared in the configuration.
        """
        self.index_file = Path(index_file)
        self.configured = {
            ImageReference.parse(ref).full_name: env.model_copy(update={"reference": ref})
            for ref, env in (configured or {}).items()
        }
        self._index = self._load_index()

    def _load_index(self) -> Dict[str, Dict]:
        if self.index_file.exists():
            try:
                with open(self.index_file, 'r') as f:
                    return json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                raise ProvisioningError(f"Base image index {self.index_file} is unreadable: {e}")
        return {}

    def _save_index(self) -> None:
        self.index_file.parent.mkdir(parents=True, exist_ok=True)
        with open(self.index_file, 'w') as f:
            json.dump(self._index, f, indent=2)

    def register(self, reference: str, root: Optional[str] = None,
                 env: Optional[Dict[str, str]] = None) -> BaseEnvironment:
        """
        Register (or replace) a base environment.

        Args:
            reference: Image reference, e.g. 'rust:1.75'.
            root: Toolchain prefix directory; its bin/ is put first on PATH.
            env: Variables set for every stage command.

        Returns:
            The registered BaseEnvironment.
        """
        ref = ImageReference.parse(reference)
        if root is not None:
            root = os.path.abspath(root)
        entry = BaseEnvironment(reference=ref.short_name, root=root, env=env or {})
        self._index[ref.full_name] = entry.model_dump(exclude={"digest"})
        self._save_index()
        print(f"Registered base image {ref.short_name}")
        return entry

    def unregister(self, reference: str) -> bool:
        key = ImageReference.parse(reference).full_name
        if key in self._index:
            del self._index[key]
            self._save_index()
            return True
        return False

    def list(self) -> List[BaseEnvironment]:
        entries = {key: BaseEnvironment(**value) for key, value in self._index.items()}
        entries.update(self.configured)
        return [entries[key] for key in sorted(entries)]

    def select(self, reference: str) -> BaseEnvironment:
        """
        Select the base environment for a build.

        Args:
            reference: Image reference from the manifest.

        Returns:
            The BaseEnvironment with its content digest filled in.

        Raises:
            ProvisioningError: If the reference is invalid, unknown, or its
                root directory is not readable.
        """
        try:
            ref = ImageReference.parse(reference)
        except ValueError as e:
            raise ProvisioningError(str(e))

        if ref.full_name in self.configured:
            env = self.configured[ref.full_name]
        elif ref.full_name in self._index:
            env = BaseEnvironment(**self._index[ref.full_name])
        else:
            raise ProvisioningError(
                f"Base image {ref.short_name} not found; register it with 'b2l base add {ref.short_name}'"
            )

        if env.root is not None:
            if not os.path.isdir(env.root) or not os.access(env.root, os.R_OK | os.X_OK):
                raise ProvisioningError(f"Base image {ref.short_name}: root {env.root} is not a readable directory")

        if not ref.is_pinned:
            print(f"Warning: base image {ref.short_name} is not pinned to a version")

        digest = json_digest(ref.full_name, env.root, env.env)
        return env.model_copy(update={"reference": ref.short_name, "digest": digest})

    @staticmethod
    def stage_environment(base: BaseEnvironment,
                          extra: Optional[Dict[str, str]] = None,
                          host_env: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """
        Build the process environment for a stage command: host variables,
        then the base environment's, then ``extra`` (manifest ENV).
        """
        env = dict(os.environ if host_env is None else host_env)
        env.update(base.env)
        if base.root:
            env["PATH"] = os.path.join(base.root, "bin") + os.pathsep + env.get("PATH", "")
        env.update(extra or {})
        return env

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
Persistent data volumes and their attachment to container mount points.
"""
import os
import re
import shutil
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..UTILS.paths import container_to_host
from ..errors import VolumeError

VOLUME_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.-]*$')


@dataclass
class NamedVolume:
    """A volume owned by the orchestrator home, outliving any container."""
    name: str
    path: str


class VolumeManager:
    """
    Manages named volumes and binds volumes to the mount points an image
    declares. Binding uses a symlink so the data stays outside the
    container rootfs.
    """
    def __init__(self, base_dir: str = ".", volumes_root: str = "volumes"):
        """
        Initializes the volume manager.

        :param base_dir: Orchestrator home; relative host paths resolve against the cwd.
        :param volumes_root: Directory under ``base_dir`` holding named volumes.
        """
        self.base_dir = os.path.abspath(base_dir)
        self.volumes_root = os.path.join(self.base_dir, volumes_root)
        os.makedirs(self.volumes_root, exist_ok=True)

    def create_volume(self, name: str) -> NamedVolume:
        """
        Creates a named volume; an existing one is returned unchanged.

        :raises VolumeError: If the name is not a valid volume name.
        """
        if not VOLUME_NAME_PATTERN.match(name):
            raise VolumeError(f"Invalid volume name '{name}'")
        path = os.path.join(self.volumes_root, name)
        os.makedirs(path, exist_ok=True)
        return NamedVolume(name=name, path=path)

    def get_volume(self, name: str) -> Optional[NamedVolume]:
        path = os.path.join(self.volumes_root, name)
        if VOLUME_NAME_PATTERN.match(name) and os.path.isdir(path):
            return NamedVolume(name=name, path=path)
        return None

    def list_volumes(self) -> List[NamedVolume]:
        return [NamedVolume(name=n, path=os.path.join(self.volumes_root, n))
                for n in sorted(os.listdir(self.volumes_root))
                if os.path.isdir(os.path.join(self.volumes_root, n))]

    def remove_volume(self, name: str, force: bool = False) -> bool:
        """
        Removes a named volume. A non-empty volume is only removed with ``force``.
        """
        volume = self.get_volume(name)
        if volume is None:
            return False
        if os.listdir(volume.path) and not force:
            return False
        shutil.rmtree(volume.path)
        return True

    def get_volume_size(self, name: str) -> int:
        volume = self.get_volume(name)
        if volume is None:
            return 0
        total = 0
        for dirpath, _, filenames in os.walk(volume.path):
            for filename in filenames:
                total += os.path.getsize(os.path.join(dirpath, filename))
        return total

    def prune(self, keep: Optional[List[str]] = None) -> Dict[str, int]:
        """
        Removes empty named volumes not listed in ``keep``.
        """
        keep = set(keep or [])
        removed = 0
        for volume in self.list_volumes():
            if volume.name not in keep and not os.listdir(volume.path):
                os.rmdir(volume.path)
                removed += 1
        return {"volumes_removed": removed}

    def resolve_source(self, source: str) -> str:
        """
        Resolves a volume source: a bare name is a named volume, anything
        with a path separator or leading dot is a host path.

        :param source: The source path or volume name.
        :return: The absolute path to the source.
        """
        if not os.path.isabs(source) and not source.startswith('.') and os.sep not in source:
            return self.create_volume(source).path
        return os.path.abspath(source)

    def attach(self, source: str, mount_point: str, rootfs: str, working_dir: str = "/") -> str:
        """
        Binds ``source`` to ``mount_point`` inside ``rootfs``.

        Data the image left at the mount point seeds an empty volume, the way
        container runtimes populate fresh volumes.

        :param source: Named volume or host directory.
        :param mount_point: Path inside the container.
        :param rootfs: Host directory of the container filesystem.
        :param working_dir: Container working directory, for relative mount points.
        :return: The host path backing the mount point.
        """
        source_path = self.resolve_source(source)
        os.makedirs(source_path, exist_ok=True)
        target_path = container_to_host(rootfs, mount_point, working_dir)
        os.makedirs(os.path.dirname(target_path), exist_ok=True)

        print(f"Mapping volume: {source_path} -> {mount_point}")

        if os.path.islink(target_path):
            os.unlink(target_path)
        elif os.path.isdir(target_path):
            if os.listdir(target_path) and not os.listdir(source_path):
                shutil.copytree(target_path, source_path, symlinks=True, dirs_exist_ok=True)
            shutil.rmtree(target_path)
        elif os.path.exists(target_path):
            raise VolumeError(f"Mount point {mount_point} is a file in the image")

        try:
            os.symlink(source_path, target_path, target_is_directory=True)
        except (OSError, NotImplementedError):
            # No symlink support; the copy is not written back to the volume
            print(f"Symlink failed for {mount_point}, falling back to copy.")
            shutil.copytree(source_path, target_path, dirs_exist_ok=True)
        return source_path

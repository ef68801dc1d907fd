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
Local store of built images.
Images are content addressed by their build cache key. A published image
is never modified; a rebuild of the same inputs replaces it as a whole.
"""

import json
import os
import shutil
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from ..MODELS.container_image import ImageRecord
from ..errors import ImageNotFoundError

ID_LENGTH = 12


class ImageStore:
    """
    Manages published images and the staging area builds run in.

    Layout::

        <home>/images/index.json        name -> image id
        <home>/images/<id>/image.json   ImageRecord
        <home>/images/<id>/rootfs/      image filesystem
        <home>/staging/<uuid>/rootfs/   in-progress builds
    """

    def __init__(self, home: str):
        """
        Initialize the image store.

        Args:
            home: Orchestrator state directory.
        """
        self.home = Path(home)
        self.images_dir = self.home / "images"
        self.staging_dir = self.home / "staging"
        self.index_file = self.images_dir / "index.json"

        self.images_dir.mkdir(parents=True, exist_ok=True)
        self.staging_dir.mkdir(parents=True, exist_ok=True)

        self._index = self._load_index()

    @staticmethod
    def image_id(cache_key: str) -> str:
        return cache_key.split(":", 1)[-1][:ID_LENGTH]

    def _load_index(self) -> Dict[str, str]:
        if self.index_file.exists():
            try:
                with open(self.index_file, 'r') as f:
                    return json.load(f)
            except (json.JSONDecodeError, IOError):
                print(f"Warning: image index {self.index_file} is unreadable, rebuilding it")
        return self._rebuild_index()

    def _rebuild_index(self) -> Dict[str, str]:
        index = {}
        for record in self._scan():
            index[record.name] = record.id
        return index

    def _save_index(self) -> None:
        tmp = self.index_file.with_suffix(".tmp")
        with open(tmp, 'w') as f:
            json.dump(self._index, f, indent=2)
        os.replace(tmp, self.index_file)

    def _scan(self) -> List[ImageRecord]:
        records = []
        for meta in sorted(self.images_dir.glob("*/image.json")):
            records.append(self._read_record(meta))
        return records

    def _read_record(self, meta: Path) -> ImageRecord:
        with open(meta, 'r') as f:
            return ImageRecord(**json.load(f))

    @contextmanager
    def staging(self) -> Iterator[Path]:
        """
        Provide a fresh staging directory with an empty ``rootfs``.
        The directory is removed when the block raises, so a failed build
        never leaves anything publishable behind.
        """
        path = self.staging_dir / uuid.uuid4().hex
        (path / "rootfs").mkdir(parents=True)
        try:
            yield path
        except BaseException:
            shutil.rmtree(path, ignore_errors=True)
            raise
        if path.exists():
            # publish() moves the directory away; anything left is unused
            shutil.rmtree(path, ignore_errors=True)

    def publish(self, staging_path: Path, record: ImageRecord) -> ImageRecord:
        """
        Move a finished staging directory to its content-addressed location
        and tag it with ``record.name``.

        Args:
            staging_path: Directory yielded by ``staging()``.
            record: Image metadata; ``rootfs_path`` is rewritten.

        Returns:
            The published ImageRecord.
        """
        final = self.images_dir / record.id
        record = record.model_copy(update={"rootfs_path": str(final / "rootfs")})
        with open(staging_path / "image.json", 'w') as f:
            json.dump(record.model_dump(), f, indent=2)

        if final.exists():
            # rebuild of identical inputs replaces the published copy
            retired = self.staging_dir / f"{record.id}-retired-{uuid.uuid4().hex}"
            os.rename(final, retired)
            os.rename(staging_path, final)
            shutil.rmtree(retired, ignore_errors=True)
        else:
            os.rename(staging_path, final)

        self._index[record.name] = record.id
        self._save_index()
        return record

    def tag(self, record: ImageRecord, name: str) -> ImageRecord:
        self._index[name] = record.id
        self._save_index()
        return record.model_copy(update={"name": name})

    def find_by_cache_key(self, cache_key: str) -> Optional[ImageRecord]:
        meta = self.images_dir / self.image_id(cache_key) / "image.json"
        if not meta.exists():
            return None
        record = self._read_record(meta)
        if record.cache_key != cache_key or not os.path.isdir(record.rootfs_path):
            return None
        return record

    def get(self, name_or_id: str) -> ImageRecord:
        """
        Get an image by name or id (a unique id prefix is accepted).

        Raises:
            ImageNotFoundError: If nothing matches.
        """
        image_id = self._index.get(name_or_id)
        if image_id is None:
            matches = [p.name for p in self.images_dir.iterdir()
                       if p.is_dir() and p.name.startswith(name_or_id)] if name_or_id else []
            if len(matches) == 1:
                image_id = matches[0]
        meta = self.images_dir / image_id / "image.json" if image_id else None
        if meta is None or not meta.exists():
            raise ImageNotFoundError(f"Image {name_or_id} not found")
        record = self._read_record(meta)
        names = [n for n, i in self._index.items() if i == record.id]
        if name_or_id in names:
            return record.model_copy(update={"name": name_or_id})
        return record

    def list_images(self) -> List[ImageRecord]:
        """
        List tagged images, one entry per name.
        """
        images = []
        for name, image_id in sorted(self._index.items()):
            meta = self.images_dir / image_id / "image.json"
            if meta.exists():
                images.append(self._read_record(meta).model_copy(update={"name": name}))
        return images

    def remove(self, name_or_id: str) -> ImageRecord:
        """
        Remove an image. Other names pointing at the same image are removed too.
        """
        record = self.get(name_or_id)
        image_dir = self.images_dir / record.id
        if image_dir.exists():
            shutil.rmtree(image_dir)
        self._index = {n: i for n, i in self._index.items() if i != record.id}
        self._save_index()
        return record

    def get_size(self, path: str) -> int:
        total = 0
        for dirpath, _, filenames in os.walk(path):
            for name in filenames:
                file_path = os.path.join(dirpath, name)
                if not os.path.islink(file_path):
                    total += os.path.getsize(file_path)
        return total

    def format_size(self, size_bytes: float) -> str:
        for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
            if size_bytes < 1024:
                return f"{size_bytes:.1f} {unit}"
            size_bytes /= 1024
        return f"{size_bytes:.1f} PB"

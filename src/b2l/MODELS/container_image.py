"""
Models representing built images.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel

class ImageRecord(BaseModel):
    """
    A built image: an immutable rootfs snapshot plus the metadata needed to
    launch it. Stored as ``image.json`` next to the rootfs.
    """
    id: str
    name: str
    cache_key: str

    base_image: str
    base_digest: str
    source_digest: str
    created: str

    rootfs_path: str
    working_dir: str = "/"
    artifact_path: str
    volumes: List[str] = []
    env: Dict[str, str] = {}

    entrypoint: List[str] = []
    cmd: List[str] = []

    build_states: List[str] = []
    system_packages: List[str] = []
    build_command: List[str] = []
    labels: Dict[str, str] = {}
    size: Optional[int] = None

    def default_command(self) -> List[str]:
        return self.entrypoint + self.cmd

"""
Models for containers instantiated from an image.
"""
from typing import List, Optional
from pydantic import BaseModel
from .build_state import RunState
from .service_definition import VolumeMount

class Container(BaseModel):
    """
    One launch of an image: a private rootfs, its volume bindings and the
    single process started in it.
    """
    id: str
    name: str
    image_id: str
    image_name: str

    command: List[str]
    rootfs_path: str
    working_dir: str = "/"
    volumes: List[VolumeMount] = []

    state: RunState = RunState.IMAGE_READY
    state_history: List[str] = []
    pid: Optional[int] = None
    process_started: Optional[float] = None
    exit_code: Optional[int] = None
    detached: bool = False
    log_path: Optional[str] = None
    created: str

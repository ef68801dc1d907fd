"""
Models for the orchestrator configuration (``b2l.yml``).
"""
import os
from typing import List, Dict, Optional
from pydantic import BaseModel, Field
from .manifest import BuildManifest

class BaseEnvironment(BaseModel):
    """
    A registered toolchain that build stages run in.

    ``root`` is the toolchain prefix (its ``bin`` goes first on PATH);
    ``env`` is applied to every stage command.
    """
    reference: str
    root: Optional[str] = None
    env: Dict[str, str] = {}
    digest: Optional[str] = None

class LaunchSettings(BaseModel):
    """
    Paths passed to the artifact by the default command. Unset fields keep
    the manifest value.
    """
    config_path: Optional[str] = None
    log_config_path: Optional[str] = None

class OrchestratorConfig(BaseModel):
    """
    Complete orchestrator configuration. Every manifest literal can be
    overridden here so one manifest serves several deployments.
    """
    home: str = ".b2l"
    manifest: str = "Dockerfile"

    base_image: Optional[str] = None
    base_images: Dict[str, BaseEnvironment] = {}

    package_manager: List[str] = Field(default_factory=lambda: ["apt-get"])
    system_packages: Optional[List[str]] = None
    build_command: Optional[List[str]] = None
    artifact_path: Optional[str] = None
    launch: Optional[LaunchSettings] = None

    stop_timeout: int = 10

    def apply_to(self, manifest: BuildManifest) -> BuildManifest:
        """
        Returns a copy of ``manifest`` with the configured overrides applied.
        """
        update = {}
        if self.base_image:
            update["base_image"] = self.base_image
        if self.system_packages is not None:
            update["system_packages"] = list(self.system_packages)
        if self.build_command:
            update["build_command"] = list(self.build_command)
        if self.artifact_path:
            update["artifact_path"] = self.artifact_path
            cmd = list(manifest.cmd)
            # keep the default command pointing at the artifact
            if cmd and cmd[0] in (manifest.artifact_path, f"./{manifest.artifact_path}"):
                cmd[0] = self.artifact_path if os.path.isabs(self.artifact_path) else f"./{self.artifact_path}"
                update["cmd"] = cmd
        result = manifest.model_copy(update=update)
        if self.launch is not None:
            result = result.with_launch_paths(self.launch.config_path,
                                              self.launch.log_config_path)
        return result

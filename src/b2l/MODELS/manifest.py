"""
Models for the build manifest: what to build an image from and how to launch it.
"""
from typing import List, Dict, Optional
from pydantic import BaseModel, Field

DEFAULT_BASE_IMAGE = "rust"
DEFAULT_VOLUME = "/data"
DEFAULT_WORKING_DIR = "/"
DEFAULT_SYSTEM_PACKAGES = ["clang", "cmake", "build-essential", "pkg-config", "libssl-dev"]
DEFAULT_BUILD_COMMAND = ["cargo", "build", "--release"]
DEFAULT_ARTIFACT_PATH = "target/release/zgs_node"
DEFAULT_CONFIG_PATH = "run/config-testnet-turbo.toml"
DEFAULT_LOG_CONFIG_PATH = "run/log_config"

CONFIG_FLAG = "--config"
LOG_FLAG = "--log"


class LaunchInvocation(BaseModel):
    """
    The default command line of an image: the artifact plus its config and
    log-config paths.
    """
    executable: str = f"./{DEFAULT_ARTIFACT_PATH}"
    config_path: str = DEFAULT_CONFIG_PATH
    log_config_path: str = DEFAULT_LOG_CONFIG_PATH
    extra_args: List[str] = []

    def argv(self) -> List[str]:
        return [self.executable,
                CONFIG_FLAG, self.config_path,
                LOG_FLAG, self.log_config_path] + self.extra_args


class CopyInstruction(BaseModel):
    """
    Copies ``sources`` (relative to the build context) to ``destination``
    (a path inside the image).
    """
    sources: List[str]
    destination: str


class BuildManifest(BaseModel):
    """
    Everything needed to build an image and fix its default launch command.
    """
    base_image: str = DEFAULT_BASE_IMAGE
    volumes: List[str] = Field(default_factory=lambda: [DEFAULT_VOLUME])
    copies: List[CopyInstruction] = Field(
        default_factory=lambda: [CopyInstruction(sources=["."], destination="/")]
    )
    working_dir: str = DEFAULT_WORKING_DIR
    env: Dict[str, str] = {}

    system_packages: List[str] = Field(default_factory=lambda: list(DEFAULT_SYSTEM_PACKAGES))
    build_command: List[str] = Field(default_factory=lambda: list(DEFAULT_BUILD_COMMAND))
    artifact_path: str = DEFAULT_ARTIFACT_PATH

    entrypoint: List[str] = []
    cmd: List[str] = Field(default_factory=lambda: LaunchInvocation().argv())

    labels: Dict[str, str] = {}

    @classmethod
    def default(cls) -> "BuildManifest":
        """
        The manifest used when the build context ships none.
        """
        return cls()

    def default_command(self) -> List[str]:
        return self.entrypoint + self.cmd

    def with_launch_paths(self,
                          config_path: Optional[str] = None,
                          log_config_path: Optional[str] = None) -> "BuildManifest":
        """
        Returns a copy whose ``cmd`` carries the given ``--config`` and ``--log``
        values. A flag missing from ``cmd`` is appended.
        """
        cmd = list(self.cmd)
        for flag, value in ((CONFIG_FLAG, config_path), (LOG_FLAG, log_config_path)):
            if value is None:
                continue
            if flag in cmd and cmd.index(flag) + 1 < len(cmd):
                cmd[cmd.index(flag) + 1] = value
            elif flag in cmd:
                cmd.append(value)
            else:
                cmd.extend([flag, value])
        return self.model_copy(update={"cmd": cmd})

    def stage_plan(self) -> List[str]:
        """
        Human readable description of each build stage, in execution order.
        """
        copies = "; ".join(f"{' '.join(c.sources)} -> {c.destination}" for c in self.copies)
        return [
            f"select base environment {self.base_image}",
            f"declare mount points {', '.join(self.volumes) or '(none)'}",
            f"copy source tree {copies} (workdir {self.working_dir})",
            f"install system packages {' '.join(self.system_packages) or '(none)'}",
            f"compile release artifact: {' '.join(self.build_command)} -> {self.artifact_path}",
            f"set default command {' '.join(self.default_command())}",
        ]

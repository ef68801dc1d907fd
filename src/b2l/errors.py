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
Exception hierarchy for building images and launching containers.

Every build-time error is fatal: the pipeline stops at the failing stage and
nothing is published. The CLI maps each error to its ``exit_code``.
"""
from typing import List, Optional


class B2LError(Exception):
    """Base class for all errors raised by b2l."""
    exit_code = 1


class ManifestError(B2LError):
    """The build manifest could not be read or uses unsupported instructions."""
    exit_code = 2

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class ConfigError(B2LError):
    """The orchestrator configuration is malformed."""
    exit_code = 2


class BuildError(B2LError):
    """
    A build stage failed.

    :param message: Human readable reason.
    :param stage: Name of the stage that failed.
    :param command: Command that failed, if the stage ran one.
    :param returncode: Exit status of that command.
    """
    stage = "build"

    def __init__(self,
                 message: str,
                 command: Optional[List[str]] = None,
                 returncode: Optional[int] = None):
        self.command = command
        self.returncode = returncode
        super().__init__(message)


class ProvisioningError(BuildError):
    """The base environment is unknown or unreadable."""
    stage = "select-base"


class SourceCopyError(BuildError):
    """A source file is missing or unreadable."""
    stage = "copy-source"


class DependencyInstallError(BuildError):
    """Refreshing the package index or installing packages failed."""
    stage = "install-dependencies"


class CompilationError(BuildError):
    """The release build failed or did not produce the artifact."""
    stage = "compile"


class LaunchFailure(B2LError):
    """
    The launch command could not be executed at all.

    A process that starts and then exits non-zero is not a LaunchFailure;
    its exit code is reported as is.
    """

    def __init__(self, message: str, exit_code: int = 127):
        self.exit_code = exit_code
        super().__init__(message)


class ImageNotFoundError(B2LError):
    """No image with the given name or id exists in the store."""


class ContainerNotFoundError(B2LError):
    """No container with the given name or id exists."""


class VolumeError(B2LError):
    """A volume name is invalid or a mount point cannot be bound."""
    exit_code = 2

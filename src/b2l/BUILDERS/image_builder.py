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
Builds images from a manifest: select the base environment, copy the
source tree, install native dependencies, compile the release artifact and
fix the default launch command.
"""
import os
import re
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Type

from .source_copier import SourceCopier
from ..MODELS.build_state import BuildState, StateMachine
from ..MODELS.container_image import ImageRecord
from ..MODELS.manifest import BuildManifest
from ..MODELS.orchestration_config import OrchestratorConfig
from ..PARSERS.manifest_parser import ManifestParser
from ..REGISTRY.base_images import BaseImageCatalog
from ..REGISTRY.image_store import ImageStore
from ..RUNNERS.process_runner import ProcessRunner
from ..UTILS.hashing import json_digest, tree_digest
from ..UTILS.paths import container_to_host
from ..errors import (
    B2LError,
    BuildError,
    CompilationError,
    DependencyInstallError,
    ManifestError,
    SourceCopyError,
)

# Debian package names, optionally with :arch and =version
PACKAGE_NAME_PATTERN = re.compile(r'^[a-z0-9][a-z0-9+.\-]+(:[a-z0-9]+)?(=[A-Za-z0-9.+:~\-]+)?$')

STAGE_COUNT = 6


class ImageBuilder:
    """
    Runs the build pipeline. Stages execute strictly in order and the first
    failure aborts the build; nothing is retried and no image is published.
    """
    def __init__(self,
                 config: OrchestratorConfig,
                 store: Optional[ImageStore] = None,
                 catalog: Optional[BaseImageCatalog] = None,
                 runner_factory: Callable[..., ProcessRunner] = ProcessRunner):
        """
        Initializes the ImageBuilder.

        :param config: Orchestrator configuration.
        :param store: Image store; defaults to one under ``config.home``.
        :param catalog: Base environments; defaults to the catalog under ``config.home``.
        :param runner_factory: Creates the runner for stage commands.
        """
        self.config = config
        self.store = store or ImageStore(config.home)
        self.catalog = catalog or BaseImageCatalog(
            os.path.join(config.home, "base-images.json"), config.base_images
        )
        self.runner_factory = runner_factory
        self.parser = ManifestParser()
        self.history: List[str] = []

    def load_manifest(self, context_dir: str, manifest_name: Optional[str] = None) -> BuildManifest:
        """
        Reads the context's manifest and applies the configured overrides.
        """
        manifest = self.parser.load(context_dir, manifest_name or self.config.manifest)
        return self.config.apply_to(manifest)

    def plan(self, manifest: BuildManifest) -> List[str]:
        return manifest.stage_plan()

    def build(self,
              context_dir: str,
              image_name: str,
              manifest: Optional[BuildManifest] = None,
              use_cache: bool = True,
              log_file: Optional[str] = None) -> ImageRecord:
        """
        Builds an image from a build context.

        :param context_dir: Directory copied into the image.
        :param image_name: Name to tag the image with.
        :param manifest: Manifest to build; read from the context when omitted.
        :param use_cache: Reuse a published image with the same inputs.
        :param log_file: File that also receives stage command output.
        :return: The published image.
        :raises BuildError: If any stage fails.
        """
        context_dir = os.path.abspath(context_dir)
        if not os.path.isdir(context_dir):
            raise SourceCopyError(f"Build context {context_dir} is not a directory")
        if manifest is None:
            manifest = self.load_manifest(context_dir)
        if not manifest.default_command():
            raise ManifestError("Manifest has no default command")

        tag = f"build:{image_name}"
        plan = manifest.stage_plan()
        machine = StateMachine.for_build()
        runner = self.runner_factory(tag, log_file=log_file)
        exclude = [self.config.home]

        try:
            self._step(tag, 1, plan)
            base = self.catalog.select(manifest.base_image)
            env = BaseImageCatalog.stage_environment(base, manifest.env)
            machine.advance(BuildState.BASE_SELECTED)

            # mount points are recorded in the image metadata only
            self._step(tag, 2, plan)

            self._step(tag, 3, plan)
            source_digest = tree_digest(context_dir, exclude=exclude)
            cache_key = json_digest(base.digest, manifest.model_dump(), source_digest,
                                    self.config.package_manager)
            if use_cache:
                cached = self.store.find_by_cache_key(cache_key)
                if cached:
                    print(f"[{tag}] Using cached image {cached.id}")
                    self.history = cached.build_states
                    return self.store.tag(cached, image_name)

            with self.store.staging() as staging:
                rootfs = str(staging / "rootfs")
                SourceCopier(context_dir, exclude=exclude).copy(manifest.copies, rootfs,
                                                                manifest.working_dir)
                machine.advance(BuildState.SOURCE_COPIED)

                self._step(tag, 4, plan)
                self._install_dependencies(runner, manifest.system_packages, env)
                machine.advance(BuildState.DEPENDENCIES_INSTALLED)

                self._step(tag, 5, plan)
                self._compile(runner, manifest, env, rootfs)
                machine.advance(BuildState.COMPILED)

                self._step(tag, 6, plan)
                machine.advance(BuildState.LAUNCH_CONFIGURED)
                machine.advance(BuildState.IMAGE_READY)

                record = ImageRecord(
                    id=ImageStore.image_id(cache_key),
                    name=image_name,
                    cache_key=cache_key,
                    base_image=base.reference,
                    base_digest=base.digest,
                    source_digest=source_digest,
                    created=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                    rootfs_path=rootfs,
                    working_dir=manifest.working_dir,
                    artifact_path=manifest.artifact_path,
                    volumes=list(manifest.volumes),
                    env=dict(manifest.env),
                    entrypoint=list(manifest.entrypoint),
                    cmd=list(manifest.cmd),
                    build_states=machine.states(),
                    system_packages=list(manifest.system_packages),
                    build_command=list(manifest.build_command),
                    labels=dict(manifest.labels),
                )
                record = record.model_copy(update={"size": self.store.get_size(rootfs)})
                record = self.store.publish(staging, record)
        except B2LError as e:
            if not machine.is_terminal:
                machine.advance(BuildState.BUILD_FAILED)
            self.history = machine.states()
            stage = e.stage if isinstance(e, BuildError) else "manifest"
            print(f"[{tag}] Build failed during {stage}: {e}")
            raise

        self.history = machine.states()
        print(f"[{tag}] Successfully built {record.id} ({record.name})")
        return record

    def _step(self, tag: str, number: int, plan: List[str]):
        print(f"[{tag}] Step {number}/{STAGE_COUNT} : {plan[number - 1]}")

    def _install_dependencies(self, runner: ProcessRunner, packages: List[str], env: Dict[str, str]):
        """
        Refreshes the package index, then installs ``packages`` non-interactively.
        """
        if not packages:
            print(f"[{runner.name}] No system packages to install")
            return
        invalid = [p for p in packages if not PACKAGE_NAME_PATTERN.match(p)]
        if invalid:
            raise DependencyInstallError(f"Invalid package name(s): {', '.join(invalid)}")

        manager = list(self.config.package_manager)
        env = dict(env, DEBIAN_FRONTEND="noninteractive")
        self._run_stage(runner, manager + ["update"], env, None,
                        DependencyInstallError, "Package index refresh failed")
        self._run_stage(runner, manager + ["install", "-y"] + list(packages), env, None,
                        DependencyInstallError, "Package installation failed")

    def _compile(self, runner: ProcessRunner, manifest: BuildManifest, env: Dict[str, str], rootfs: str):
        """
        Runs the release build in the copied working directory and checks
        that it produced an executable artifact.
        """
        workdir = container_to_host(rootfs, manifest.working_dir)
        try:
            os.makedirs(workdir, exist_ok=True)
        except OSError as e:
            raise CompilationError(f"Cannot use working directory {manifest.working_dir}: {e}",
                                   command=list(manifest.build_command))
        self._run_stage(runner, list(manifest.build_command), env, workdir,
                        CompilationError, "Release build failed")

        artifact = container_to_host(rootfs, manifest.artifact_path, manifest.working_dir)
        if not os.path.isfile(artifact) or not os.access(artifact, os.X_OK):
            raise CompilationError(
                f"Release build did not produce an executable {manifest.artifact_path}",
                command=list(manifest.build_command),
            )

    def _run_stage(self,
                   runner: ProcessRunner,
                   command: List[str],
                   env: Dict[str, str],
                   working_dir: Optional[str],
                   error: Type[BuildError],
                   what: str):
        try:
            code = runner.run(command, env=env, working_dir=working_dir)
        except OSError as e:
            raise error(f"{what}: {e}", command=command)
        if code != 0:
            raise error(f"{what} (exit code {code})", command=command, returncode=code)


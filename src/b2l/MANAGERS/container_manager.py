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
Launching images as containers: one private rootfs, its volumes, and a
single process running the image's default (or overridden) command.
"""
import json
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import psutil

from .environment_manager import EnvironmentManager
from .log_aggregator import LogAggregator
from .volume_manager import VolumeManager
from ..MODELS.build_state import RunState, StateMachine
from ..MODELS.container import Container
from ..MODELS.container_image import ImageRecord
from ..MODELS.orchestration_config import OrchestratorConfig
from ..MODELS.service_definition import VolumeMount
from ..REGISTRY.image_store import ImageStore
from ..RUNNERS.entrypoint_executor import EntrypointExecutor
from ..RUNNERS.process_runner import ProcessRunner
from ..UTILS.paths import container_to_host
from ..errors import B2LError, ConfigError, ContainerNotFoundError, LaunchFailure


class ContainerManager:
    """
    Starts, inspects and stops containers. It never restarts or health
    checks a process: once started, the process is on its own.
    """
    def __init__(self,
                 config: OrchestratorConfig,
                 store: Optional[ImageStore] = None,
                 runner_factory: Callable[..., ProcessRunner] = ProcessRunner):
        """
        Initializes the container manager.

        :param config: Orchestrator configuration.
        :param store: Image store; defaults to one under ``config.home``.
        :param runner_factory: Creates the runner for container processes.
        """
        self.config = config
        self.home = os.path.abspath(config.home)
        self.store = store or ImageStore(self.home)
        self.containers_dir = Path(self.home) / "containers"
        self.containers_dir.mkdir(parents=True, exist_ok=True)

        self.volume_manager = VolumeManager(self.home)
        self.env_manager = EnvironmentManager()
        self.executor = EntrypointExecutor()
        self.log_aggregator = LogAggregator(os.path.join(self.home, "logs"))
        self.runner_factory = runner_factory

    def run(self,
            image: str,
            command: Optional[List[str]] = None,
            volumes: Optional[List[VolumeMount]] = None,
            env: Optional[Dict[str, str]] = None,
            env_files: Optional[List[str]] = None,
            name: Optional[str] = None,
            detach: bool = False) -> Container:
        """
        Launches an image.

        :param image: Image name or id.
        :param command: Replaces the image CMD entirely when given.
        :param volumes: Explicit bindings; declared mount points without one
            get an anonymous named volume.
        :param env: Extra environment variables.
        :param env_files: .env files to load.
        :param name: Container name; generated when omitted.
        :param detach: Return once the process runs instead of waiting for it.
        :return: The container, in a terminal state unless detached.
        :raises LaunchFailure: If the command cannot be executed.
        """
        record = self.store.get(image)
        container_id = uuid.uuid4().hex[:12]
        name = name or f"{record.name.replace(':', '-')}-{container_id[:6]}"
        if self._find(name) is not None:
            raise B2LError(f"Container name {name} is already in use")

        try:
            process_env = self.env_manager.get_merged_environment(record.env, env, env_files)
        except FileNotFoundError as e:
            raise ConfigError(str(e))

        machine = StateMachine.for_run()
        container_dir = self.containers_dir / container_id
        rootfs = str(container_dir / "rootfs")
        argv = self.executor.get_full_command(record.entrypoint, record.cmd, command)

        container = Container(
            id=container_id,
            name=name,
            image_id=record.id,
            image_name=record.name,
            command=argv,
            rootfs_path=rootfs,
            working_dir=record.working_dir,
            detached=detach,
            log_path=self.log_aggregator.log_path(name) if detach else None,
            created=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        )

        container_dir.mkdir(parents=True)
        shutil.copytree(record.rootfs_path, rootfs, symlinks=True)
        try:
            container.volumes = self._attach_volumes(record, volumes or [], rootfs, name)
        except B2LError:
            shutil.rmtree(container_dir, ignore_errors=True)
            raise
        self._transition(container, machine, RunState.CONTAINER_STARTED)

        runner = self.runner_factory(name, log_file=container.log_path)
        try:
            runner.start(self._host_command(argv, rootfs, record.working_dir),
                         env=process_env,
                         working_dir=container_to_host(rootfs, record.working_dir))
        except OSError as e:
            exit_code = 127 if isinstance(e, FileNotFoundError) else 126
            container.exit_code = exit_code
            self._transition(container, machine, RunState.PROCESS_EXITED)
            raise LaunchFailure(f"Cannot execute {argv[0] if argv else '(empty command)'}: {e}",
                                exit_code=exit_code)

        container.pid = runner.pid
        self._transition(container, machine, RunState.PROCESS_RUNNING)
        if detach:
            return container

        try:
            exit_code = runner.wait()
        except KeyboardInterrupt:
            runner.stop(self.config.stop_timeout)
            exit_code = runner.get_exit_code()

        container.exit_code = exit_code
        final = RunState.PROCESS_KILLED if exit_code is not None and exit_code < 0 else RunState.PROCESS_EXITED
        self._transition(container, machine, final)
        return container

    def get(self, name_or_id: str) -> Container:
        container = self._find(name_or_id)
        if container is None:
            raise ContainerNotFoundError(f"Container {name_or_id} not found")
        return self._refresh(container)

    def list(self) -> List[Container]:
        return [self._refresh(c) for c in self._load_all()]

    def stop(self, name_or_id: str, timeout: Optional[int] = None) -> Container:
        """
        Sends SIGTERM to the container process, then SIGKILL after ``timeout``.
        """
        container = self.get(name_or_id)
        if container.state != RunState.PROCESS_RUNNING:
            return container
        timeout = self.config.stop_timeout if timeout is None else timeout
        print(f"[{container.name}] Stopping process {container.pid}...")
        try:
            process = psutil.Process(container.pid)
            process.terminate()
            try:
                process.wait(timeout=timeout)
            except psutil.TimeoutExpired:
                print(f"[{container.name}] Process did not terminate, killing...")
                process.kill()
                process.wait(timeout=timeout)
        except psutil.NoSuchProcess:
            pass
        self._finish(container, RunState.PROCESS_KILLED)
        return container

    def remove(self, name_or_id: str) -> Container:
        container = self.get(name_or_id)
        if container.state == RunState.PROCESS_RUNNING:
            raise B2LError(f"Container {container.name} is running; stop it first")
        shutil.rmtree(self.containers_dir / container.id, ignore_errors=True)
        if container.log_path and os.path.exists(container.log_path):
            os.remove(container.log_path)
        return container

    def logs(self, name_or_id: str, follow: bool = False):
        container = self.get(name_or_id)
        if not container.log_path:
            print(f"Container {container.name} ran in the foreground; its output was not captured")
            return
        self.log_aggregator.tail_logs([container.name], follow=follow)

    def _attach_volumes(self,
                        record: ImageRecord,
                        volumes: List[VolumeMount],
                        rootfs: str,
                        name: str) -> List[VolumeMount]:
        """
        Binds explicit volumes, then gives every remaining declared mount
        point an anonymous volume.
        """
        bound = {v.target.rstrip("/") or "/": v for v in volumes}
        for index, mount_point in enumerate(record.volumes):
            key = mount_point.rstrip("/") or "/"
            if key not in bound:
                bound[key] = VolumeMount(source=f"{name}-{index}", target=mount_point)
        for mount in bound.values():
            self.volume_manager.attach(mount.source, mount.target, rootfs, record.working_dir)
        return list(bound.values())

    def _host_command(self, argv: List[str], rootfs: str, working_dir: str) -> List[str]:
        """
        Points an absolute executable path at its copy inside the rootfs.
        Relative paths already resolve against the working directory.
        """
        if argv and argv[0].startswith("/"):
            candidate = container_to_host(rootfs, argv[0], working_dir)
            if os.path.exists(candidate):
                return [candidate] + argv[1:]
        return list(argv)

    def _transition(self, container: Container, machine: StateMachine, state: RunState):
        machine.advance(state)
        container.state = state
        container.state_history = machine.states()
        if state == RunState.PROCESS_RUNNING and container.pid:
            try:
                container.process_started = psutil.Process(container.pid).create_time()
            except psutil.NoSuchProcess:
                pass
        self._save(container)

    def _finish(self, container: Container, state: RunState):
        container.state = state
        container.state_history = container.state_history + [state.value]
        self._save(container)

    def _refresh(self, container: Container) -> Container:
        """
        Marks a detached container exited once its process is gone.
        """
        if container.state != RunState.PROCESS_RUNNING or not container.pid:
            return container
        try:
            process = psutil.Process(container.pid)
            alive = process.is_running() and process.status() != psutil.STATUS_ZOMBIE
            if container.process_started is not None:
                # pid reused by an unrelated process
                alive = alive and abs(process.create_time() - container.process_started) < 1.0
        except psutil.NoSuchProcess:
            alive = False
        if not alive:
            self._finish(container, RunState.PROCESS_EXITED)
        return container

    def _save(self, container: Container):
        path = self.containers_dir / container.id / "container.json"
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(container.model_dump(mode="json"), f, indent=2)

    def _load_all(self) -> List[Container]:
        containers = []
        for meta in sorted(self.containers_dir.glob("*/container.json")):
            with open(meta, 'r') as f:
                containers.append(Container(**json.load(f)))
        return sorted(containers, key=lambda c: c.created)

    def _find(self, name_or_id: str) -> Optional[Container]:
        for container in self._load_all():
            if name_or_id in (container.name, container.id):
                return container
        return None

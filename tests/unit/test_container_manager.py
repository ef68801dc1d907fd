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
Unit tests for launching images. The image artifact is a small shell
script that records its arguments in the /data volume.
"""
import os
import time
import pytest
from b2l.MANAGERS.container_manager import ContainerManager
from b2l.MANAGERS.environment_manager import EnvironmentManager
from b2l.MODELS.build_state import RunState
from b2l.MODELS.container_image import ImageRecord
from b2l.MODELS.manifest import LaunchInvocation
from b2l.MODELS.orchestration_config import OrchestratorConfig
from b2l.MODELS.service_definition import VolumeMount
from b2l.REGISTRY.image_store import ImageStore
from b2l.RUNNERS.entrypoint_executor import EntrypointExecutor
from b2l.errors import B2LError, ConfigError, ContainerNotFoundError, LaunchFailure, VolumeError

ARTIFACT = """#!/bin/sh
echo "$@" > data/args
exit ${NODE_EXIT:-0}
"""

DEFAULT_ARGS = "--config run/config-testnet-turbo.toml --log run/log_config"


@pytest.fixture
def config(tmp_path):
    return OrchestratorConfig(home=str(tmp_path / "home"), stop_timeout=2)


@pytest.fixture
def image(config):
    store = ImageStore(config.home)
    cache_key = "sha256:" + "ef" * 32
    with store.staging() as staging:
        artifact = staging / "rootfs" / "target" / "release" / "zgs_node"
        artifact.parent.mkdir(parents=True)
        artifact.write_text(ARTIFACT)
        artifact.chmod(0o755)
        record = store.publish(staging, ImageRecord(
            id=ImageStore.image_id(cache_key),
            name="node",
            cache_key=cache_key,
            base_image="rust:latest",
            base_digest="sha256:base",
            source_digest="sha256:src",
            created="2024-01-01T00:00:00Z",
            rootfs_path=str(staging / "rootfs"),
            artifact_path="target/release/zgs_node",
            volumes=["/data"],
            cmd=LaunchInvocation().argv(),
        ))
    return record


def wait_for(predicate, timeout=5.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return False


class TestContainerManager:
    """Tests for ContainerManager."""

    def test_default_command(self, config, image, tmp_path):
        manager = ContainerManager(config)
        container = manager.run("node", volumes=[VolumeMount(source=str(tmp_path / "host"), target="/data")])

        assert container.state == RunState.PROCESS_EXITED
        assert container.exit_code == 0
        assert container.state_history == ["image-ready", "container-started",
                                           "process-running", "process-exited"]
        assert container.command == ["./target/release/zgs_node"] + DEFAULT_ARGS.split()
        assert (tmp_path / "host" / "args").read_text().strip() == DEFAULT_ARGS

    def test_override_replaces_default_arguments(self, config, image, tmp_path):
        manager = ContainerManager(config)
        manager.run("node",
                    command=["./target/release/zgs_node", "--help"],
                    volumes=[VolumeMount.parse(f"{tmp_path / 'host'}:/data")])
        assert (tmp_path / "host" / "args").read_text().strip() == "--help"

    def test_anonymous_volume_for_declared_mount_point(self, config, image):
        manager = ContainerManager(config)
        container = manager.run("node", name="n1")
        assert container.volumes == [VolumeMount(source="n1-0", target="/data")]
        volume = manager.volume_manager.get_volume("n1-0")
        assert open(os.path.join(volume.path, "args")).read().strip() == DEFAULT_ARGS

    def test_container_writes_do_not_touch_the_image(self, config, image):
        ContainerManager(config).run("node")
        assert os.listdir(image.rootfs_path) == ["target"]

    def test_overwriting_an_image_file_leaves_the_image_intact(self, config, image):
        artifact = os.path.join(image.rootfs_path, "target", "release", "zgs_node")
        container = ContainerManager(config).run(
            "node", command=["sh", "-c", "echo tampered > target/release/zgs_node; echo more >> target/release/zgs_node"])
        assert container.exit_code == 0
        assert open(artifact).read() == ARTIFACT
        copy = os.path.join(container.rootfs_path, "target", "release", "zgs_node")
        assert open(copy).read() == "tampered\nmore\n"

    def test_invalid_volume_name(self, config, image):
        manager = ContainerManager(config)
        with pytest.raises(VolumeError):
            manager.run("node", name="bad", volumes=[VolumeMount.parse("bad@vol:/data")])
        assert manager.list() == []

    def test_mount_point_on_an_image_file(self, config, image):
        with pytest.raises(VolumeError):
            ContainerManager(config).run("node", volumes=[VolumeMount.parse("vol:/target/release/zgs_node")])

    def test_non_zero_exit_is_reported(self, config, image):
        container = ContainerManager(config).run("node", env={"NODE_EXIT": "3"})
        assert container.state == RunState.PROCESS_EXITED
        assert container.exit_code == 3

    def test_env_file(self, config, image, tmp_path):
        env_file = tmp_path / "node.env"
        env_file.write_text("NODE_EXIT=4\n")
        container = ContainerManager(config).run("node", env_files=[str(env_file)])
        assert container.exit_code == 4

    def test_missing_env_file(self, config, image, tmp_path):
        with pytest.raises(ConfigError):
            ContainerManager(config).run("node", env_files=[str(tmp_path / "missing.env")])

    def test_killed_process(self, config, image):
        container = ContainerManager(config).run("node", command=["sh", "-c", "kill -9 $$"])
        assert container.state == RunState.PROCESS_KILLED
        assert container.exit_code == -9

    def test_missing_executable_is_launch_failure(self, config, image):
        manager = ContainerManager(config)
        with pytest.raises(LaunchFailure) as excinfo:
            manager.run("node", command=["./target/release/missing"], name="broken")
        assert excinfo.value.exit_code == 127
        broken = manager.get("broken")
        assert broken.state == RunState.PROCESS_EXITED
        assert broken.state_history[-2:] == ["container-started", "process-exited"]

    def test_duplicate_name(self, config, image):
        manager = ContainerManager(config)
        manager.run("node", name="n1")
        with pytest.raises(B2LError):
            manager.run("node", name="n1")

    def test_unknown_container(self, config):
        with pytest.raises(ContainerNotFoundError):
            ContainerManager(config).get("missing")

    def test_detached_container_lifecycle(self, config, image, capsys):
        manager = ContainerManager(config)
        container = manager.run("node", command=["sh", "-c", "echo started; exec sleep 30"],
                                name="bg", detach=True)
        assert container.state == RunState.PROCESS_RUNNING
        assert container.pid is not None
        assert manager.get("bg").state == RunState.PROCESS_RUNNING
        assert wait_for(lambda: os.path.exists(container.log_path)
                        and "started" in open(container.log_path).read())

        with pytest.raises(B2LError):
            manager.remove("bg")

        stopped = manager.stop("bg", timeout=2)
        assert stopped.state == RunState.PROCESS_KILLED
        assert [c.state for c in manager.list()] == [RunState.PROCESS_KILLED]

        capsys.readouterr()
        manager.logs("bg")
        assert "bg" in capsys.readouterr().out

        manager.remove("bg")
        assert manager.list() == []

    def test_detached_container_exits(self, config, image):
        manager = ContainerManager(config)
        manager.run("node", command=["sh", "-c", "true"], name="short", detach=True)
        assert wait_for(lambda: manager.get("short").state == RunState.PROCESS_EXITED)


def test_entrypoint_executor_override():
    executor = EntrypointExecutor()
    default = ["--config", "a.toml"]
    assert executor.get_full_command([], ["./node"] + default) == ["./node", "--config", "a.toml"]
    assert executor.get_full_command([], ["./node"] + default, ["./node", "--help"]) == ["./node", "--help"]
    assert executor.get_full_command(["./node"], default, ["--version"]) == ["./node", "--version"]
    assert executor.get_full_command(["./node"], default, []) == ["./node", "--config", "a.toml"]

def test_environment_merge_order(tmp_path, monkeypatch):
    monkeypatch.setenv("B2L_TEST_VALUE", "host")
    env_file = tmp_path / ".env"
    env_file.write_text("B2L_TEST_VALUE=file\nFROM_FILE=1\n")
    manager = EnvironmentManager(str(tmp_path))

    assert manager.get_merged_environment({"B2L_TEST_VALUE": "image"})["B2L_TEST_VALUE"] == "image"
    merged = manager.get_merged_environment({"B2L_TEST_VALUE": "image"}, env_files=[".env"])
    assert merged["B2L_TEST_VALUE"] == "file"
    assert merged["FROM_FILE"] == "1"
    merged = manager.get_merged_environment({}, {"B2L_TEST_VALUE": "explicit"}, [".env"])
    assert merged["B2L_TEST_VALUE"] == "explicit"

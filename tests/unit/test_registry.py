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
Unit tests for the registry module.
"""
import os
import pytest
from b2l.MODELS.container_image import ImageRecord
from b2l.MODELS.orchestration_config import BaseEnvironment
from b2l.REGISTRY.base_images import BaseImageCatalog
from b2l.REGISTRY.image_reference import ImageReference
from b2l.REGISTRY.image_store import ImageStore
from b2l.errors import ImageNotFoundError, ProvisioningError


class TestImageReference:
    """Tests for ImageReference parsing."""

    def test_parse_simple_name(self):
        """Test parsing a simple image name."""
        ref = ImageReference.parse("rust")
        assert ref.registry == "docker.io"
        assert ref.repository == "library/rust"
        assert ref.tag == "latest"
        assert not ref.is_pinned

    def test_parse_with_tag(self):
        """Test parsing image with tag."""
        ref = ImageReference.parse("rust:1.75")
        assert ref.repository == "library/rust"
        assert ref.tag == "1.75"
        assert ref.is_pinned

    def test_parse_full_reference(self):
        """Test parsing full registry reference."""
        ref = ImageReference.parse("ghcr.io/org/toolchain:2024")
        assert ref.registry == "ghcr.io"
        assert ref.repository == "org/toolchain"
        assert ref.short_name == "ghcr.io/org/toolchain:2024"

    def test_parse_with_digest(self):
        """Test parsing image with digest."""
        ref = ImageReference.parse("rust@sha256:abc123")
        assert ref.digest == "sha256:abc123"
        assert ref.tag is None
        assert ref.is_pinned

    def test_parse_localhost_registry(self):
        """Test parsing localhost registry."""
        ref = ImageReference.parse("localhost:5000/rust")
        assert ref.registry == "localhost:5000"
        assert ref.repository == "rust"
        assert ref.tag == "latest"

    def test_spellings_share_full_name(self):
        """Every spelling of the same image selects the same entry."""
        assert (ImageReference.parse("rust").full_name
                == ImageReference.parse("docker.io/library/rust:latest").full_name
                == "docker.io/library/rust:latest")

    @pytest.mark.parametrize("reference", ["", "   ", "rust 1.75"])
    def test_invalid_reference_raises(self, reference):
        with pytest.raises(ValueError):
            ImageReference.parse(reference)

    def test_str_representation(self):
        """Test string representation."""
        assert str(ImageReference.parse("docker.io/library/rust:1.75")) == "rust:1.75"


class TestBaseImageCatalog:
    """Tests for the base environment catalog."""

    def test_unknown_base_fails_provisioning(self, tmp_path):
        catalog = BaseImageCatalog(str(tmp_path / "base-images.json"))
        with pytest.raises(ProvisioningError) as excinfo:
            catalog.select("rust:1.75")
        assert "b2l base add rust:1.75" in str(excinfo.value)

    def test_register_and_select(self, tmp_path):
        catalog = BaseImageCatalog(str(tmp_path / "base-images.json"))
        catalog.register("rust:1.75", root=str(tmp_path), env={"CARGO_HOME": "/cargo"})

        reloaded = BaseImageCatalog(str(tmp_path / "base-images.json"))
        base = reloaded.select("docker.io/library/rust:1.75")
        assert base.reference == "rust:1.75"
        assert base.root == str(tmp_path)
        assert base.digest.startswith("sha256:")

    def test_digest_depends_on_settings(self, tmp_path):
        catalog = BaseImageCatalog(str(tmp_path / "base-images.json"))
        catalog.register("rust:1.75", env={"A": "1"})
        first = catalog.select("rust:1.75").digest
        catalog.register("rust:1.75", env={"A": "2"})
        assert catalog.select("rust:1.75").digest != first

    def test_configured_entries_win(self, tmp_path):
        catalog = BaseImageCatalog(str(tmp_path / "base-images.json"),
                                   {"rust": BaseEnvironment(reference="rust", env={"FROM": "config"})})
        catalog.register("rust", env={"FROM": "index"})
        assert catalog.select("rust").env == {"FROM": "config"}
        assert len(catalog.list()) == 1

    def test_unreadable_root(self, tmp_path):
        catalog = BaseImageCatalog(str(tmp_path / "base-images.json"))
        catalog.register("rust:1.75", root=str(tmp_path / "gone"))
        with pytest.raises(ProvisioningError):
            catalog.select("rust:1.75")

    def test_unregister(self, tmp_path):
        catalog = BaseImageCatalog(str(tmp_path / "base-images.json"))
        catalog.register("rust:1.75")
        assert catalog.unregister("rust:1.75")
        assert not catalog.unregister("rust:1.75")
        assert catalog.list() == []

    def test_stage_environment(self, tmp_path):
        base = BaseEnvironment(reference="rust", root="/opt/rust", env={"CARGO_HOME": "/cargo", "X": "base"})
        env = BaseImageCatalog.stage_environment(base, {"X": "manifest"}, host_env={"PATH": "/usr/bin"})
        assert env["PATH"] == os.path.join("/opt/rust", "bin") + os.pathsep + "/usr/bin"
        assert env["CARGO_HOME"] == "/cargo"
        assert env["X"] == "manifest"


def _record(store, staging, name="node", cache_key="sha256:" + "ab" * 32):
    return ImageRecord(
        id=ImageStore.image_id(cache_key),
        name=name,
        cache_key=cache_key,
        base_image="rust:1.75",
        base_digest="sha256:base",
        source_digest="sha256:src",
        created="2024-01-01T00:00:00Z",
        rootfs_path=str(staging / "rootfs"),
        artifact_path="target/release/zgs_node",
    )


class TestImageStore:
    """Tests for the local image store."""

    def test_image_id(self):
        assert ImageStore.image_id("sha256:0123456789abcdef") == "0123456789ab"

    def test_publish_and_get(self, tmp_path):
        store = ImageStore(str(tmp_path))
        with store.staging() as staging:
            (staging / "rootfs" / "file").write_text("content")
            published = store.publish(staging, _record(store, staging))

        assert published.rootfs_path == str(tmp_path / "images" / published.id / "rootfs")
        assert (tmp_path / "images" / published.id / "rootfs" / "file").read_text() == "content"
        assert store.get("node").id == published.id
        assert store.get(published.id[:6]).id == published.id
        assert list(store.staging_dir.iterdir()) == []

    def test_failed_staging_is_removed(self, tmp_path):
        store = ImageStore(str(tmp_path))
        with pytest.raises(RuntimeError):
            with store.staging() as staging:
                (staging / "rootfs" / "partial").write_text("x")
                raise RuntimeError("stage failed")
        assert list(store.staging_dir.iterdir()) == []
        assert store.list_images() == []

    def test_find_by_cache_key(self, tmp_path):
        store = ImageStore(str(tmp_path))
        key = "sha256:" + "cd" * 32
        assert store.find_by_cache_key(key) is None
        with store.staging() as staging:
            store.publish(staging, _record(store, staging, cache_key=key))
        assert store.find_by_cache_key(key).cache_key == key

    def test_tag_and_list(self, tmp_path):
        store = ImageStore(str(tmp_path))
        with store.staging() as staging:
            record = store.publish(staging, _record(store, staging))
        store.tag(record, "node:stable")
        assert [i.name for i in store.list_images()] == ["node", "node:stable"]

        reloaded = ImageStore(str(tmp_path))
        assert reloaded.get("node:stable").id == record.id

    def test_remove(self, tmp_path):
        store = ImageStore(str(tmp_path))
        with store.staging() as staging:
            record = store.publish(staging, _record(store, staging))
        store.remove("node")
        assert not (tmp_path / "images" / record.id).exists()
        with pytest.raises(ImageNotFoundError):
            store.get("node")

    def test_get_unknown(self, tmp_path):
        with pytest.raises(ImageNotFoundError):
            ImageStore(str(tmp_path)).get("missing")

    def test_format_size(self, tmp_path):
        store = ImageStore(str(tmp_path))
        assert store.format_size(512) == "512.0 B"
        assert store.format_size(2048) == "2.0 KB"

"""
Unit tests for translating manifests into build manifests.
"""
import pytest
from b2l.MODELS.manifest import BuildManifest, DEFAULT_ARTIFACT_PATH
from b2l.PARSERS.manifest_parser import ManifestParser, artifact_from_command, build_command_from_steps
from b2l.errors import ManifestError

NODE_MANIFEST = """
FROM rust
VOLUME ["/data"]
COPY . .
RUN apt-get update && apt-get install -y clang cmake build-essential pkg-config libssl-dev
RUN cargo build --release
CMD ["./target/release/zgs_node", "--config", "run/config-testnet-turbo.toml", "--log", "run/log_config"]
"""


class TestManifestParser:
    """Tests for ManifestParser."""

    def test_node_manifest_matches_default(self):
        """The canonical manifest and the built-in default describe the same build."""
        manifest = ManifestParser().parse_from_string(NODE_MANIFEST)
        assert manifest == BuildManifest.default()

    def test_default_command(self):
        manifest = ManifestParser().parse_from_string(NODE_MANIFEST)
        assert manifest.default_command() == [
            "./target/release/zgs_node",
            "--config", "run/config-testnet-turbo.toml",
            "--log", "run/log_config",
        ]

    def test_packages_and_build_command(self):
        manifest = ManifestParser().parse_from_string(NODE_MANIFEST)
        assert manifest.system_packages == ["clang", "cmake", "build-essential", "pkg-config", "libssl-dev"]
        assert manifest.build_command == ["cargo", "build", "--release"]
        assert manifest.artifact_path == DEFAULT_ARTIFACT_PATH

    def test_workdir_resolves_copy_destination(self):
        manifest = ManifestParser().parse_from_string(
            "FROM rust:1.75\nWORKDIR /app\nCOPY src ./src/\nRUN make\nCMD [\"./bin/node\"]\n"
        )
        assert manifest.working_dir == "/app"
        assert manifest.copies[0].destination == "/app/src/"
        assert manifest.artifact_path == "bin/node"

    def test_several_build_steps_are_chained(self):
        manifest = ManifestParser().parse_from_string(
            "FROM rust\nRUN cargo fetch\nRUN cargo build --release\nCMD [\"./a\"]\n"
        )
        assert manifest.build_command == ["/bin/sh", "-c", "cargo fetch && cargo build --release"]

    def test_artifact_label(self):
        manifest = ManifestParser().parse_from_string(
            "FROM rust\nLABEL b2l.artifact=out/node\nRUN make\nCMD node --serve\n"
        )
        assert manifest.artifact_path == "out/node"
        assert manifest.cmd == ["/bin/sh", "-c", "node --serve"]

    def test_entrypoint_and_cmd(self):
        manifest = ManifestParser().parse_from_string(
            "FROM rust\nRUN make\nENTRYPOINT [\"./node\"]\nCMD [\"--config\", \"a.toml\"]\n"
        )
        assert manifest.default_command() == ["./node", "--config", "a.toml"]
        assert manifest.artifact_path == "node"

    @pytest.mark.parametrize("content, message", [
        ("", "empty"),
        ("RUN make\nFROM rust\nCMD [\"./a\"]", "must start with FROM"),
        ("FROM rust\nFROM debian\nRUN make\nCMD [\"./a\"]", "exactly one FROM"),
        ("FROM rust\nCMD [\"./a\"]", "no build step"),
        ("FROM rust\nRUN make", "no CMD"),
        ("FROM rust\nEXPOSE 8080\nRUN make\nCMD [\"./a\"]", "Unsupported instruction EXPOSE"),
        ("FROM rust\nVOLUME data\nRUN make\nCMD [\"./a\"]", "absolute path"),
        ("FROM rust\nCOPY --chown=1 . .\nRUN make\nCMD [\"./a\"]", "flags"),
        ("FROM rust\nRUN apt-get remove clang\nRUN make\nCMD [\"./a\"]", "Unsupported apt-get action"),
    ])
    def test_rejected_manifests(self, content, message):
        with pytest.raises(ManifestError) as excinfo:
            ManifestParser().parse_from_string(content)
        assert message in str(excinfo.value)

    def test_unsupported_instruction_has_line(self):
        with pytest.raises(ManifestError) as excinfo:
            ManifestParser().parse_from_string("FROM rust\nRUN make\nHEALTHCHECK NONE\nCMD [\"./a\"]")
        assert excinfo.value.line == 3

    def test_load_without_manifest_uses_default(self, tmp_path):
        manifest = ManifestParser().load(str(tmp_path))
        assert manifest == BuildManifest.default()

    def test_load_reads_context_manifest(self, tmp_path):
        (tmp_path / "Dockerfile").write_text(NODE_MANIFEST)
        assert ManifestParser().load(str(tmp_path)).volumes == ["/data"]


def test_build_command_from_single_step():
    assert build_command_from_steps([["cargo", "build"]]) == ["cargo", "build"]

def test_artifact_from_command():
    assert artifact_from_command(["./target/release/zgs_node", "--config", "x"]) == "target/release/zgs_node"
    assert artifact_from_command(["/usr/local/bin/node"]) == "/usr/local/bin/node"
    assert artifact_from_command(["/bin/sh", "-c", "node"]) == DEFAULT_ARTIFACT_PATH

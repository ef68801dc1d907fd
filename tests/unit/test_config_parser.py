"""
Unit tests for b2l.yml parsing and environment overrides.
"""
import os
import pytest
from b2l.MODELS.manifest import BuildManifest
from b2l.MODELS.orchestration_config import OrchestratorConfig, LaunchSettings
from b2l.PARSERS.config_parser import ConfigParser
from b2l.UTILS.string_interpolation import EnvironmentInterpolator
from b2l.errors import ConfigError


class TestConfigParser:
    """Tests for ConfigParser."""

    def test_empty_config(self):
        config = ConfigParser({}).parse_from_string("")
        assert config == OrchestratorConfig()

    def test_full_config(self):
        content = """
home: state
base_image: rust:1.75
base_images:
  rust:1.75:
    root: /opt/rust
    env:
      CARGO_HOME: /opt/cargo
package_manager: sudo apt-get
system_packages: clang cmake
build_command: cargo build --release --locked
artifact_path: target/release/node
launch:
  config_path: run/config-mainnet.toml
stop_timeout: 3
"""
        config = ConfigParser({}).parse_from_string(content)
        assert config.home == "state"
        assert config.package_manager == ["sudo", "apt-get"]
        assert config.system_packages == ["clang", "cmake"]
        assert config.build_command == ["cargo", "build", "--release", "--locked"]
        assert config.base_images["rust:1.75"].reference == "rust:1.75"
        assert config.base_images["rust:1.75"].env == {"CARGO_HOME": "/opt/cargo"}
        assert config.launch.config_path == "run/config-mainnet.toml"
        assert config.launch.log_config_path is None
        assert config.stop_timeout == 3

    def test_interpolation(self):
        config = ConfigParser({"TOOLCHAIN": "rust:1.80"}).parse_from_string(
            "base_image: ${TOOLCHAIN}\nhome: ${STATE:-.state}\n"
        )
        assert config.base_image == "rust:1.80"
        assert config.home == ".state"

    def test_missing_variable(self):
        with pytest.raises(ConfigError):
            ConfigParser({}).parse_from_string("base_image: ${UNSET_TOOLCHAIN}")

    def test_invalid_yaml(self):
        with pytest.raises(ConfigError):
            ConfigParser({}).parse_from_string("home: [unclosed")

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            ConfigParser({}).parse_from_string("- a\n- b\n")

    def test_invalid_field_type(self):
        with pytest.raises(ConfigError):
            ConfigParser({}).parse_from_string("stop_timeout: soon")

    def test_environment_overrides(self):
        parser = ConfigParser({
            "B2L_BASE_IMAGE": "rust:1.80",
            "B2L_PACKAGES": "clang, cmake",
            "B2L_BUILD_COMMAND": "cargo build --release --features turbo",
            "B2L_LOG_CONFIG_PATH": "run/log_config_debug",
        })
        config = parser.apply_environment(OrchestratorConfig(launch=LaunchSettings(config_path="a.toml")))
        assert config.base_image == "rust:1.80"
        assert config.system_packages == ["clang", "cmake"]
        assert config.build_command[-2:] == ["--features", "turbo"]
        assert config.launch.config_path == "a.toml"
        assert config.launch.log_config_path == "run/log_config_debug"

    def test_empty_packages_override_disables_install(self):
        config = ConfigParser({"B2L_PACKAGES": ""}).apply_environment(OrchestratorConfig())
        assert config.system_packages == []

    def test_load_from_context(self, tmp_path):
        (tmp_path / "b2l.yml").write_text("home: state\nartifact_path: bin/node\n")
        config = ConfigParser({}).load(str(tmp_path))
        assert config.home == os.path.join(str(tmp_path), "state")
        assert config.artifact_path == "bin/node"

    def test_load_without_config(self, tmp_path):
        config = ConfigParser({}).load(str(tmp_path))
        assert config.home == os.path.join(str(tmp_path), ".b2l")

    def test_load_missing_explicit_config(self, tmp_path):
        with pytest.raises(ConfigError):
            ConfigParser({}).load(str(tmp_path), "missing.yml")

    def test_for_context_reads_dotenv(self, tmp_path, monkeypatch):
        monkeypatch.delenv("B2L_BASE_IMAGE", raising=False)
        (tmp_path / ".env").write_text("B2L_BASE_IMAGE=rust:1.70\n")
        config = ConfigParser.for_context(str(tmp_path)).load(str(tmp_path))
        assert config.base_image == "rust:1.70"

    def test_process_environment_beats_dotenv(self, tmp_path, monkeypatch):
        monkeypatch.setenv("B2L_BASE_IMAGE", "rust:1.81")
        (tmp_path / ".env").write_text("B2L_BASE_IMAGE=rust:1.70\n")
        config = ConfigParser.for_context(str(tmp_path)).load(str(tmp_path))
        assert config.base_image == "rust:1.81"


class TestApplyTo:
    """Tests for applying configuration overrides to a manifest."""

    def test_no_overrides(self):
        manifest = BuildManifest.default()
        assert OrchestratorConfig().apply_to(manifest) == manifest

    def test_launch_paths(self):
        config = OrchestratorConfig(launch=LaunchSettings(config_path="run/config-mainnet.toml"))
        manifest = config.apply_to(BuildManifest.default())
        assert manifest.cmd == ["./target/release/zgs_node",
                                "--config", "run/config-mainnet.toml",
                                "--log", "run/log_config"]

    def test_artifact_override_follows_command(self):
        config = OrchestratorConfig(artifact_path="target/release/other")
        manifest = config.apply_to(BuildManifest.default())
        assert manifest.artifact_path == "target/release/other"
        assert manifest.cmd[0] == "./target/release/other"

    def test_packages_override(self):
        manifest = OrchestratorConfig(system_packages=[]).apply_to(BuildManifest.default())
        assert manifest.system_packages == []


class TestEnvironmentInterpolator:
    """Tests for ${VAR} expansion."""

    def test_plain(self):
        assert EnvironmentInterpolator.interpolate("${A}-${B}", {"A": "1", "B": "2"}) == "1-2"

    def test_default(self):
        assert EnvironmentInterpolator.interpolate("${A:-x}", {}) == "x"
        assert EnvironmentInterpolator.interpolate("${A:-x}", {"A": ""}) == "x"
        assert EnvironmentInterpolator.interpolate("${A:-x}", {"A": "y"}) == "y"

    def test_alternative(self):
        assert EnvironmentInterpolator.interpolate("${A:+set}", {"A": "1"}) == "set"
        assert EnvironmentInterpolator.interpolate("${A:+set}", {}) == ""

    def test_escape(self):
        assert EnvironmentInterpolator.interpolate("cost $$5 ${A}", {"A": "!"}) == "cost $5 !"

    def test_missing(self):
        with pytest.raises(KeyError):
            EnvironmentInterpolator.interpolate("${MISSING}", {})

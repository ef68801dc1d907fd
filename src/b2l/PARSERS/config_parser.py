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
Parser for the orchestrator configuration file (b2l.yml) and its
environment overrides.
"""
import os
import re
import shlex
from typing import Dict, Any, Optional

import yaml
from dotenv import dotenv_values
from pydantic import ValidationError

from ..MODELS.orchestration_config import OrchestratorConfig, LaunchSettings
from ..UTILS.string_interpolation import EnvironmentInterpolator
from ..errors import ConfigError

DEFAULT_CONFIG_FILE = "b2l.yml"
ENV_PREFIX = "B2L_"


class ConfigParser:
    """
    Loads an OrchestratorConfig from YAML, then applies ``B2L_*`` overrides
    from the environment context.
    """
    def __init__(self, context: Optional[Dict[str, str]] = None):
        """
        Initializes the parser with an environment context used both for
        ``${VAR}`` interpolation and for ``B2L_*`` overrides.

        :param context: Variables; defaults to the process environment.
        """
        self.context = context if context is not None else dict(os.environ)

    @classmethod
    def for_context(cls, context_dir: str) -> "ConfigParser":
        """
        Builds a parser whose context is the build context's ``.env`` file
        overlaid by the process environment.
        """
        values: Dict[str, str] = {}
        env_file = os.path.join(context_dir, ".env")
        if os.path.exists(env_file):
            values.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
        values.update(os.environ)
        return cls(values)

    def load(self, context_dir: str, config_file: Optional[str] = None) -> OrchestratorConfig:
        """
        Loads the configuration of a build context.

        :param context_dir: The build context directory.
        :param config_file: Config path, relative to the context; defaults to b2l.yml.
        :return: The configuration, with ``home`` made absolute.
        """
        path = os.path.join(context_dir, config_file or DEFAULT_CONFIG_FILE)
        if os.path.exists(path):
            config = self.parse(path)
        elif config_file:
            raise ConfigError(f"Config file {path} not found")
        else:
            config = OrchestratorConfig()

        config = self.apply_environment(config)
        config.home = os.path.abspath(os.path.join(context_dir, config.home))
        return config

    def parse(self, config_path: str) -> OrchestratorConfig:
        with open(config_path, 'r') as f:
            content = f.read()
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> OrchestratorConfig:
        """
        Parses configuration YAML.

        :param content: YAML text.
        :return: Parsed configuration.
        :raises ConfigError: On interpolation, YAML or validation errors.
        """
        try:
            content = EnvironmentInterpolator.interpolate(content, self.context)
        except KeyError as e:
            raise ConfigError(f"Cannot interpolate config: {e}")

        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML: {e}")
        if not data:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Config must be a mapping")

        return self._validate(self._normalize(data))

    def apply_environment(self, config: OrchestratorConfig) -> OrchestratorConfig:
        """
        Applies ``B2L_*`` variables from the context on top of ``config``.
        """
        env = {k[len(ENV_PREFIX):]: v for k, v in self.context.items() if k.startswith(ENV_PREFIX)}
        update: Dict[str, Any] = {}

        if env.get("HOME"):
            update["home"] = env["HOME"]
        if env.get("BASE_IMAGE"):
            update["base_image"] = env["BASE_IMAGE"]
        try:
            if env.get("PACKAGE_MANAGER"):
                update["package_manager"] = shlex.split(env["PACKAGE_MANAGER"])
            if env.get("BUILD_COMMAND"):
                update["build_command"] = shlex.split(env["BUILD_COMMAND"])
        except ValueError as e:
            raise ConfigError(f"Invalid {ENV_PREFIX} command override: {e}")
        if "PACKAGES" in env:
            update["system_packages"] = [p for p in re.split(r"[,\s]+", env["PACKAGES"]) if p]
        if env.get("ARTIFACT_PATH"):
            update["artifact_path"] = env["ARTIFACT_PATH"]
        if env.get("CONFIG_PATH") or env.get("LOG_CONFIG_PATH"):
            launch = config.launch or LaunchSettings()
            update["launch"] = launch.model_copy(update={
                k: v for k, v in (("config_path", env.get("CONFIG_PATH")),
                                  ("log_config_path", env.get("LOG_CONFIG_PATH"))) if v
            })

        if not update:
            return config
        return self._validate({**config.model_dump(), **update})

    def _normalize(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Accepts shell strings where lists are expected and fills in base
        image references from their mapping keys.
        """
        data = dict(data)
        for key in ("package_manager", "build_command"):
            if isinstance(data.get(key), str):
                try:
                    data[key] = shlex.split(data[key])
                except ValueError as e:
                    raise ConfigError(f"{key}: {e}")
        if isinstance(data.get("system_packages"), str):
            data["system_packages"] = data["system_packages"].split()

        base_images = data.get("base_images") or {}
        if not isinstance(base_images, dict):
            raise ConfigError("base_images must be a mapping of reference to settings")
        normalized = {}
        for ref, spec in base_images.items():
            if not isinstance(spec, (dict, type(None))):
                raise ConfigError(f"base_images.{ref} must be a mapping")
            normalized[ref] = {"reference": ref, **(spec or {})}
        data["base_images"] = normalized
        return data

    def _validate(self, data: Dict[str, Any]) -> OrchestratorConfig:
        try:
            return OrchestratorConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}")

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
Parser for ssd.yaml configuration files.
"""
import yaml
from typing import Dict
from pydantic import ValidationError

from ..MODELS.service_config import RootConfig, ServiceConfig
from ..exceptions import ConfigError

DEFAULT_CONFIG_FILE = "ssd.yaml"


class ConfigParser:
    """
    Loads ssd.yaml into a RootConfig and resolves individual services.
    """

    def parse(self, config_path: str = DEFAULT_CONFIG_FILE) -> RootConfig:
        """
        Parses a configuration file from a path.

        :param config_path: Path to ssd.yaml.
        :return: Parsed root configuration.
        :raises ConfigError: If the file cannot be read or parsed.
        """
        try:
            with open(config_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ConfigError(f"failed to read config file: {e}") from e
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> RootConfig:
        """
        Parses configuration from a YAML string. Never raises anything but
        ConfigError, whatever the input.

        :param content: YAML content of ssd.yaml.
        :return: Parsed root configuration.
        """
        try:
            data = yaml.safe_load(content)
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse config: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("failed to parse config: top level must be a mapping")

        services = data.get('services') or {}
        if not isinstance(services, dict):
            raise ConfigError("failed to parse config: services must be a mapping")
        for name, spec in services.items():
            if spec is not None and not isinstance(spec, dict):
                raise ConfigError(f"failed to parse config: service {name} must be a mapping")

        try:
            return RootConfig(
                server=str(data.get('server') or ''),
                stack=str(data.get('stack') or ''),
                services={str(k): v for k, v in services.items()},
            )
        except ValidationError as e:
            raise ConfigError(f"failed to parse config: {e}") from e

    def load_service(self, root: RootConfig, name: str) -> ServiceConfig:
        """
        Resolves one service, turning lookup and validation failures into ConfigError.
        """
        try:
            return root.get_service(name)
        except KeyError as e:
            raise ConfigError(e.args[0]) from e
        except ValidationError as e:
            raise ConfigError(f"invalid configuration for service {name}: {e}") from e

    def load_all(self, root: RootConfig) -> Dict[str, ServiceConfig]:
        return {name: self.load_service(root, name) for name in root.list_services()}

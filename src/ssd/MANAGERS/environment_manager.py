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
Managers for the per-service .env files kept in the remote stack directory.
"""
import posixpath
import re
from io import StringIO
from typing import Dict, Iterable

from dotenv import dotenv_values

_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def parse_env(content: str) -> Dict[str, str]:
    """
    Parses .env content; keys without a value read as empty strings.
    """
    values = dotenv_values(stream=StringIO(content), interpolate=False)
    return {k: (v if v is not None else "") for k, v in values.items()}


def render_env(values: Dict[str, str]) -> str:
    if not values:
        return ""
    return "".join(f"{k}={v}\n" for k, v in values.items())


class EnvironmentManager:
    """
    Reads and rewrites ``{stack}/{service}.env`` on the remote host.

    Files are created empty with mode 600 and never overwritten on creation;
    set and remove rewrite the whole file.
    """

    def __init__(self, client, stack: str = ""):
        """
        Initializes the environment manager.

        :param client: Remote client for the stack's server.
        :param stack: The stack directory holding the env files.
        """
        self.client = client
        self.stack = stack or client.stack

    def path(self, service: str) -> str:
        return posixpath.join(self.stack, f"{service}.env")

    def create_env_files(self, services: Iterable[str]) -> None:
        """
        Makes sure every service has an env file, keeping existing contents.
        """
        for service in services:
            self.client.create_file_if_missing(self.path(service))

    def get(self, service: str) -> Dict[str, str]:
        return parse_env(self.client.read_file(self.path(service)))

    def set(self, service: str, key: str, value: str) -> None:
        """
        Sets one variable. An existing key keeps its position; a new one is appended.

        :raises ValueError: If the key is not a valid variable name or the value spans lines.
        """
        if not _KEY.match(key):
            raise ValueError(f"invalid environment variable name: {key!r}")
        if "\n" in value or "\r" in value:
            raise ValueError("environment values cannot contain newlines")

        values = self.get(service)
        values[key] = value
        self._write(service, values)

    def remove(self, service: str, key: str) -> bool:
        """
        Removes one variable.

        :return: False if the key was not set; the file is then left alone.
        """
        values = self.get(service)
        if key not in values:
            return False
        del values[key]
        self._write(service, values)
        return True

    def _write(self, service: str, values: Dict[str, str]) -> None:
        self.client.ensure_dir(self.stack)
        self.client.install_file(self.path(service), render_env(values))

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
Validation of names and paths that end up inside remote shell commands.
"""
import posixpath
import re

SHELL_METACHARACTERS = ";|&$`(){}[]<>\\\"'"

_NAME = re.compile(r"^[A-Za-z0-9_-]+$")
_SERVER = re.compile(r"^[\w.-]+$")


def validate_name(name: str) -> str:
    """
    Validates a service name.

    :param name: The service name.
    :return: The name, unchanged.
    :raises ValueError: If the name is empty, too long or has unsafe characters.
    """
    if not name:
        raise ValueError("name cannot be empty")
    if len(name) > 128:
        raise ValueError("name exceeds maximum length of 128 characters")
    if name.startswith("-") or name.startswith("."):
        raise ValueError("name cannot start with '-' or '.'")
    for ch in name:
        if ch in SHELL_METACHARACTERS:
            raise ValueError(f"name contains invalid character: {ch}")
    if not _NAME.match(name):
        raise ValueError(
            "name contains invalid characters (only alphanumeric, hyphens, and underscores allowed)"
        )
    return name


def validate_server(server: str) -> str:
    """
    Validates an SSH host name or ~/.ssh/config alias.
    """
    if not server:
        raise ValueError("server cannot be empty")
    if len(server) > 253:
        raise ValueError("server name exceeds maximum length of 253 characters")
    for ch in server:
        if ch in SHELL_METACHARACTERS:
            raise ValueError(f"server name contains invalid character: {ch!r}")
    if not _SERVER.match(server):
        raise ValueError("server name contains invalid characters")
    return server


def validate_stack_path(path: str) -> str:
    """
    Validates the absolute path of a stack directory on the remote host.
    """
    if not path:
        raise ValueError("stack path cannot be empty")
    if len(path) > 4096:
        raise ValueError("stack path exceeds maximum length of 4096 characters")
    if not path.startswith("/"):
        raise ValueError("stack path must be absolute (start with /)")
    if ".." in path:
        raise ValueError("stack path contains path traversal sequence (..)")
    for ch in SHELL_METACHARACTERS + "*?":
        if ch in path:
            raise ValueError(f"stack path contains shell metacharacter: {ch}")
    return path


def validate_temp_path(path: str) -> str:
    """
    Makes sure a path handed to ``rm -rf`` is a temporary directory.

    :raises ValueError: If the path is empty, escapes /tmp or is /tmp itself.
    """
    if not path:
        raise ValueError("temp path cannot be empty")
    if ".." in path:
        raise ValueError(f"temp path contains path traversal sequence: {path}")
    normalized = posixpath.normpath(path)
    if not normalized.startswith("/tmp/"):
        raise ValueError(f"refusing to remove path outside /tmp: {path}")
    return normalized

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
Shared test doubles: an in-memory remote host and a recording command executor.
"""
import posixpath
import threading
from typing import Dict, List, Optional

import pytest
import yaml

from ssd.MODELS.service_config import ServiceConfig
from ssd.RUNNERS.command_executor import CommandExecutor
from ssd.exceptions import DescriptorValidationError, RemoteCommandError


class FakeRemote:
    """
    Implements the RemoteClient surface against an in-memory host.

    ``running`` maps a compose service name to the image its container runs;
    ``start_service`` takes the image from compose.yaml as docker compose would.
    """

    def __init__(self, stack: str = "/stacks/myapp", server: str = "prod"):
        self.stack = stack
        self.server = server
        self.files: Dict[str, str] = {}
        self.modes: Dict[str, int] = {}
        self.dirs = set()
        self.networks: List[str] = []
        self.running: Dict[str, str] = {}
        self.pulled: List[str] = []
        self.built: List[str] = []
        self.unhealthy_images = set()
        self.invalid_marker: Optional[str] = None
        self.failures: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.temp_dirs = 0
        self.cleaned: List[str] = []
        self._lock = threading.Lock()

    @property
    def compose_path(self) -> str:
        return posixpath.join(self.stack, "compose.yaml")

    @property
    def compose(self) -> str:
        return self.files.get(self.compose_path, "")

    def _record(self, name: str, *args):
        with self._lock:
            self.calls.append((name,) + args)
        if name in self.failures:
            raise self.failures[name]

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    # Files

    def read_file(self, path):
        self._record("read_file", path)
        return self.files.get(path, "")

    def write_file(self, path, content):
        self._record("write_file", path)
        self.files[path] = content

    def install_file(self, path, content):
        self._record("install_file", path)
        self.files[path] = content
        self.modes[path] = 0o600

    def create_file_if_missing(self, path):
        self._record("create_file_if_missing", path)
        if path not in self.files:
            self.files[path] = ""
            self.modes[path] = 0o600

    def ensure_dir(self, path):
        self._record("ensure_dir", path)
        self.dirs.add(path)

    def move_file(self, source, destination):
        self._record("move_file", source, destination)
        self.files[destination] = self.files.pop(source)

    def remove_file(self, path):
        self._record("remove_file", path)
        self.files.pop(path, None)

    # Stack

    def stack_exists(self):
        self._record("stack_exists")
        return self.stack in self.dirs and self.compose_path in self.files

    def validate_compose(self, path):
        self._record("validate_compose", path)
        content = self.files[path]
        if self.invalid_marker and self.invalid_marker in content:
            raise DescriptorValidationError(f"invalid content: {self.invalid_marker}")
        yaml.safe_load(content)

    def ensure_network(self, name):
        self._record("ensure_network", name)
        if name not in self.networks:
            self.networks.append(name)

    # Build

    def make_temp_dir(self):
        self._record("make_temp_dir")
        self.temp_dirs += 1
        return f"/tmp/tmp.{self.temp_dirs}"

    def cleanup(self, path):
        self._record("cleanup", path)
        self.cleaned.append(path)

    def sync_source(self, local_path, remote_path):
        self._record("sync_source", local_path, remote_path)

    def build_image(self, build_dir, version):
        self._record("build_image", build_dir, version)
        self.built.append(version)

    def pull_image(self, image):
        self._record("pull_image", image)
        self.pulled.append(image)

    # Services

    def _descriptor_image(self, service):
        data = yaml.safe_load(self.compose) or {}
        entry = (data.get("services") or {}).get(service)
        if entry is None:
            raise RemoteCommandError(f"docker compose up {service}", 1, "no such service: " + service)
        return entry["image"]

    def start_service(self, service):
        self._record("start_service", service)
        self.running[service] = self._descriptor_image(service)

    def stop_service(self, service):
        self._record("stop_service", service)
        self.running.pop(service, None)

    def remove_service(self, service):
        self._record("remove_service", service)
        self.running.pop(service, None)

    def is_service_running(self, service):
        self._record("is_service_running", service)
        return service in self.running

    def service_health(self, service):
        self._record("service_health", service)
        if service not in self.running:
            return "", ""
        if self.running[service] in self.unhealthy_images:
            return "running", "unhealthy"
        return "running", "healthy"

    def container_status(self):
        self._record("container_status")
        return "\n".join(f"{name}\tUp" for name in sorted(self.running))

    def logs(self, service, follow=False, tail=0):
        self._record("logs", service, follow, tail)

    def ssh(self, command, input=None):
        self._record("ssh", command)
        return ""

    def ssh_stream(self, command):
        self._record("ssh_stream", command)


class RecordingExecutor(CommandExecutor):
    """
    Records every command line and answers from a list of (substring, output)
    rules. A rule whose output is an exception raises it.
    """

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.commands: List[List[str]] = []
        self.inputs: List[Optional[str]] = []
        self.timeouts: List[float] = []
        self.pipelines: List[tuple] = []

    def _answer(self, argv):
        line = " ".join(argv)
        for needle, output in self.responses:
            if needle in line:
                if isinstance(output, Exception):
                    raise output
                return output
        return ""

    def run(self, argv, timeout, input=None):
        self.commands.append(list(argv))
        self.inputs.append(input)
        self.timeouts.append(timeout)
        return self._answer(argv)

    def run_interactive(self, argv, timeout):
        self.commands.append(list(argv))
        self.inputs.append(None)
        self.timeouts.append(timeout)
        self._answer(argv)

    def run_pipeline(self, producer, consumer, timeout):
        self.pipelines.append((list(producer), list(consumer)))
        self.timeouts.append(timeout)

    @property
    def remote_commands(self) -> List[str]:
        return [argv[2] for argv in self.commands if argv[:1] == ["ssh"]]


def make_config(**overrides) -> ServiceConfig:
    values = {"name": "api", "server": "prod", "stack": "/stacks/myapp"}
    values.update(overrides)
    return ServiceConfig(**values)


@pytest.fixture
def remote():
    return FakeRemote()


@pytest.fixture
def executor():
    return RecordingExecutor()


@pytest.fixture
def api_config():
    return make_config(domain="example.com", path="/api", port=8080)


@pytest.fixture
def service_factory():
    return make_config


@pytest.fixture
def executor_factory():
    return RecordingExecutor


@pytest.fixture
def remote_factory():
    return FakeRemote

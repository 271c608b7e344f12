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
Remote operations on the deployment host, carried out over ssh.

Every value interpolated into a remote command line is quoted with
``shlex.quote``; names and paths are also validated when the configuration
is loaded.
"""
import json
import logging
import os
import posixpath
from shlex import quote
from typing import Any, Dict, List, Optional, Tuple

from ..MODELS.service_config import ServiceConfig
from ..RUNNERS.command_executor import CommandExecutor, SubprocessExecutor
from ..UTILS.validation import validate_temp_path
from ..exceptions import DescriptorValidationError, RemoteCommandError
from .health_monitor import HealthMonitor

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEFAULT_STREAM_TIMEOUT = 1800.0
RSYNC_EXCLUDES = [".git", "node_modules", ".next", ".DS_Store", "*.log"]


class RemoteClient:
    """
    Runs commands on one server for one stack.
    """

    def __init__(self,
                 config: ServiceConfig,
                 executor: Optional[CommandExecutor] = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 stream_timeout: float = DEFAULT_STREAM_TIMEOUT):
        """
        Initializes the client.

        :param config: Configuration of the service being operated on; its
            server and stack select the target.
        :param executor: Runs the local ssh and git processes.
        :param timeout: Deadline for captured commands, in seconds.
        :param stream_timeout: Deadline for streamed commands (builds, pulls, transfers).
        """
        self.config = config
        self.server = config.server
        self.stack = config.stack
        self.executor = executor or SubprocessExecutor()
        self.timeout = timeout
        self.stream_timeout = stream_timeout

    # Transport

    def ssh(self, command: str, input: Optional[str] = None) -> str:
        """
        Runs a command on the server and returns its stdout.
        """
        return self.executor.run(["ssh", self.server, command], self.timeout, input=input)

    def ssh_stream(self, command: str) -> None:
        """
        Runs a command on the server with its output passed through live.
        """
        self.executor.run_interactive(["ssh", self.server, command], self.stream_timeout)

    def _in_stack(self, command: str) -> str:
        return f"cd {quote(self.stack)} && {command}"

    # Files

    def read_file(self, path: str) -> str:
        """
        Reads a remote file. A missing file reads as empty; transport
        failures propagate.
        """
        p = quote(path)
        return self.ssh(f"if [ -f {p} ]; then cat {p}; fi")

    def write_file(self, path: str, content: str) -> None:
        self.ssh(f"cat > {quote(path)}", input=content)

    def install_file(self, path: str, content: str) -> None:
        """Writes a file readable by its owner only."""
        self.ssh(f"install -m 600 /dev/stdin {quote(path)}", input=content)

    def create_file_if_missing(self, path: str) -> None:
        """Creates an empty mode 600 file; an existing file is left untouched."""
        p = quote(path)
        self.ssh(f"mkdir -p {quote(posixpath.dirname(path))} && "
                 f"(test -f {p} || install -m 600 /dev/null {p})")

    def ensure_dir(self, path: str) -> None:
        self.ssh(f"mkdir -p {quote(path)}")

    def move_file(self, source: str, destination: str) -> None:
        self.ssh(f"mv {quote(source)} {quote(destination)}")

    def remove_file(self, path: str) -> None:
        self.ssh(f"rm -f {quote(path)}")

    # Stack

    def stack_exists(self) -> bool:
        s = quote(self.stack)
        compose = quote(self.config.compose_path)
        output = self.ssh(f"test -d {s} && test -f {compose} && echo yes || echo no")
        return output.strip() == "yes"

    def validate_compose(self, path: str) -> None:
        """
        Asks docker compose to parse a descriptor.

        :raises DescriptorValidationError: With the first line of the
            validator's error output.
        """
        try:
            self.ssh(self._in_stack(f"docker compose -f {quote(path)} config -q"))
        except RemoteCommandError as e:
            lines = [line.strip() for line in e.stderr.splitlines() if line.strip()]
            raise DescriptorValidationError(lines[0] if lines else str(e)) from e

    def ensure_network(self, name: str) -> None:
        self.ssh(f"docker network create {quote(name)} 2>/dev/null || true")

    # Build

    def make_temp_dir(self) -> str:
        return self.ssh("mktemp -d").strip()

    def cleanup(self, path: str) -> None:
        """
        Removes a temporary directory.

        :raises ValueError: If the path is not under /tmp.
        """
        path = validate_temp_path(path)
        self.ssh(f"rm -rf {quote(path)}")

    def sync_source(self, local_path: str, remote_path: str) -> None:
        """
        Copies the build context of ``local_path`` into ``remote_path``.

        Inside a git repository the committed tree (``git archive HEAD``) is
        sent; a context below the repository root is archived on its own and
        its leading directories stripped. Any other directory is copied as it
        is on disk with rsync.
        """
        local_path = os.path.abspath(local_path)
        try:
            root = self.executor.run(
                ["git", "-C", local_path, "rev-parse", "--show-toplevel"], self.timeout
            ).strip()
        except (RemoteCommandError, OSError) as e:
            logger.debug("%s is not a git work tree (%s), syncing with rsync", local_path, e)
            self._rsync(local_path, remote_path)
            return

        producer = ["git", "-C", root, "archive", "--format=tar", "HEAD"]
        extract = f"tar xf - -C {quote(remote_path)}"

        relative = os.path.relpath(local_path, root)
        if relative != ".":
            sub = relative.replace(os.sep, "/")
            producer += ["--", sub]
            extract += f" --strip-components={len(sub.split('/'))}"

        self.executor.run_pipeline(producer, ["ssh", self.server, extract], self.stream_timeout)

    def _rsync(self, local_path: str, remote_path: str) -> None:
        argv = ["rsync", "-az", "--delete", "--protect-args"]
        for pattern in RSYNC_EXCLUDES:
            argv += ["--exclude", pattern]
        argv += [local_path.rstrip("/") + "/", f"{self.server}:{remote_path}"]
        self.executor.run_interactive(argv, self.stream_timeout)

    def build_image(self, build_dir: str, version: int) -> None:
        dockerfile = self.config.dockerfile
        if dockerfile.startswith("./"):
            dockerfile = dockerfile[2:]
        tag = self.config.versioned_image(version)
        command = f"cd {quote(build_dir)} && docker build -t {quote(tag)} -f {quote(dockerfile)}"
        if self.config.target:
            command += f" --target {quote(self.config.target)}"
        self.ssh_stream(command + " .")

    def pull_image(self, image: str) -> None:
        self.ssh_stream(f"docker pull {quote(image)}")

    # Services

    def start_service(self, service: str) -> None:
        self.ssh_stream(self._in_stack(
            f"docker compose up -d --no-deps --force-recreate {quote(service)}"
        ))

    def stop_service(self, service: str) -> None:
        self.ssh_stream(self._in_stack(f"docker compose stop {quote(service)}"))

    def remove_service(self, service: str) -> None:
        """
        Stops and removes a service's containers by their compose labels, so it
        works after the service has left the descriptor.
        """
        project = self.config.project
        self.ssh(
            "docker ps -aq"
            f" --filter {quote('label=com.docker.compose.project=' + project)}"
            f" --filter {quote('label=com.docker.compose.service=' + service)}"
            " | xargs -r docker rm -f"
        )

    def _ps(self) -> List[Dict[str, Any]]:
        # Unfiltered: compose rejects service names missing from compose.yaml.
        output = self.ssh(self._in_stack("docker compose ps --format json"))
        return parse_ps_output(output)

    def service_health(self, service: str) -> Tuple[str, str]:
        """
        Returns ``(state, health)`` of the service's first container; both
        empty when it has none.
        """
        for entry in self._ps():
            if entry.get("Service") == service:
                return str(entry.get("State", "")), str(entry.get("Health", ""))
        return "", ""

    def is_service_running(self, service: str) -> bool:
        state, _ = self.service_health(service)
        return state == "running"

    def wait_for_healthy(self, service: str, timeout: float, interval: float = 2.0) -> None:
        HealthMonitor(self, interval=interval).wait_for_healthy(service, timeout)

    def container_status(self) -> str:
        return self.ssh(self._in_stack(
            "docker compose ps --format " + quote("table {{.Name}}\t{{.Status}}")
        ))

    def logs(self, service: str, follow: bool = False, tail: int = 0) -> None:
        command = "docker compose logs"
        if follow:
            command += " -f"
        if tail > 0:
            command += f" --tail {int(tail)}"
        self.ssh_stream(self._in_stack(f"{command} {quote(service)}"))


def parse_ps_output(output: str) -> List[Dict[str, Any]]:
    """
    Parses ``docker compose ps --format json``, which is a JSON array on older
    Compose releases and one object per line on newer ones.
    """
    text = output.strip()
    if not text:
        return []
    if text.startswith("["):
        data = json.loads(text)
        return [entry for entry in data if isinstance(entry, dict)]
    entries = []
    for line in text.splitlines():
        line = line.strip()
        if line:
            entry = json.loads(line)
            if isinstance(entry, dict):
                entries.append(entry)
    return entries

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
One-time host setup: Docker, the shared ingress network and the Traefik proxy.
Every step can be re-run safely.
"""
import posixpath
import re
from typing import IO, Optional

from ..CONVERTERS.to_compose import INGRESS_NETWORK, generate_traefik_compose
from ..MODELS.service_config import ServiceConfig
from ..exceptions import DeployError, SSDError
from .stack_store import StackStore

TRAEFIK_STACK = "/stacks/traefik"
TRAEFIK_IMAGE = "traefik:3"
DOCKER_INSTALL = "curl -fsSL https://get.docker.com | sh"

_EMAIL = re.compile(r"^[^@\s'\"`$;|&<>]+@[^@\s'\"`$;|&<>]+\.[^@\s'\"`$;|&<>]+$")


def traefik_config(server: str) -> ServiceConfig:
    """Configuration that points a RemoteClient at the Traefik stack."""
    return ServiceConfig(name="traefik", server=server, stack=TRAEFIK_STACK, image=TRAEFIK_IMAGE)


class Provisioner:
    """
    Prepares a server to receive deployments.
    """

    def __init__(self, client, output: Optional[IO[str]] = None):
        """
        :param client: Remote client whose stack is the Traefik stack.
        :param output: Stream for progress lines.
        """
        self.client = client
        self.output = output

    def _log(self, message: str) -> None:
        if self.output is not None:
            print(message, file=self.output)

    def provision(self, email: str) -> None:
        """
        Runs every provisioning step in order.

        :param email: Address registered with Let's Encrypt.
        :raises ValueError: If the email address is not usable.
        :raises DeployError: Naming the step that failed.
        """
        if not email:
            raise ValueError("email cannot be empty")
        if not _EMAIL.match(email):
            raise ValueError(f"invalid email address: {email}")

        steps = [
            ("install Docker", self.install_docker),
            ("create network", lambda: self.client.ensure_network(INGRESS_NETWORK)),
            ("create traefik directory", lambda: self.client.ensure_dir(TRAEFIK_STACK)),
            ("create acme.json", lambda: self.client.create_file_if_missing(
                posixpath.join(TRAEFIK_STACK, "acme.json"))),
            ("write compose.yaml", lambda: StackStore(self.client, TRAEFIK_STACK).write(
                generate_traefik_compose(email))),
            ("start Traefik", self.start_traefik),
        ]
        for stage, step in steps:
            self._log(f"==> {stage[0].upper()}{stage[1:]}...")
            try:
                step()
            except (SSDError, OSError) as e:
                raise DeployError(stage, e) from e

    def install_docker(self) -> None:
        if self.client.ssh("command -v docker || true").strip():
            self._log("Docker is already installed")
            return
        self.client.ssh_stream(DOCKER_INSTALL)

    def start_traefik(self) -> None:
        self.client.ssh_stream(f"cd {TRAEFIK_STACK} && docker compose up -d")

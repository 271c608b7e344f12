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
Dependency resolution for services: startup order and making sure declared
dependencies are up before a service starts.
"""
from typing import IO, Iterable, List, Mapping, Optional

from ..MODELS.service_config import ServiceConfig
from ..exceptions import SSDError


class CircularDependencyError(SSDError):
    """Services depend on each other in a loop."""


def resolve_order(services: Mapping[str, ServiceConfig]) -> List[str]:
    """
    Determines the order to start services in using a topological sort.
    Dependencies that are not defined in ``services`` are ignored.

    :param services: Service name to configuration.
    :return: Service names, every dependency before its dependents.
    :raises CircularDependencyError: If a circular dependency is detected.
    """
    ordered: List[str] = []
    visited = set()
    processing = set()

    def visit(name: str) -> None:
        if name in processing:
            raise CircularDependencyError(f"circular dependency detected involving {name}")
        if name in visited:
            return
        processing.add(name)
        for dep in services[name].depends_on:
            if dep in services:
                visit(dep)
        processing.remove(name)
        visited.add(name)
        ordered.append(name)

    for name in services:
        visit(name)
    return ordered


class DependencyResolver:
    """
    Starts a service's dependencies that are not already running.

    A running dependency is never restarted, since other deployed services may
    share it.
    """

    def __init__(self, client, services: Mapping[str, ServiceConfig],
                 output: Optional[IO[str]] = None):
        """
        :param client: Remote client for the stack.
        :param services: Known service configurations, used to find pre-built images.
        :param output: Stream for progress lines.
        """
        self.client = client
        self.services = services
        self.output = output

    def _log(self, message: str) -> None:
        if self.output is not None:
            print(message, file=self.output)

    def ensure(self, dependencies: Iterable[str]) -> None:
        """
        Makes sure every dependency is running, in declaration order.

        Any failure propagates and aborts the caller's deployment.
        """
        for name in dependencies:
            if self.client.is_service_running(name):
                self._log(f"Dependency {name} is already running")
                continue

            dep = self.services.get(name)
            if dep is not None and dep.is_prebuilt:
                self._log(f"Pulling {dep.image} for dependency {name}...")
                self.client.pull_image(dep.image)

            self._log(f"Starting dependency {name}...")
            self.client.start_service(name)

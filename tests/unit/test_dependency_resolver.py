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
Unit tests for dependency ordering and startup.
"""
import io

import pytest

from ssd.MANAGERS.remote_client import RemoteClient
from ssd.RUNNERS.dependency_resolver import CircularDependencyError, DependencyResolver, resolve_order
from ssd.exceptions import RemoteCommandError

DESCRIPTOR = """services:
  d1:
    image: ssd-myapp-d1:1
  d2:
    image: ssd-myapp-d2:1
  redis:
    image: redis:7
"""


def test_resolve_order(service_factory):
    services = {
        "web": service_factory(name="web", depends_on=["api"]),
        "api": service_factory(name="api", depends_on=["db", "cache"]),
        "db": service_factory(name="db"),
    }
    order = resolve_order(services)
    assert sorted(order) == ["api", "db", "web"]
    assert order.index("db") < order.index("api") < order.index("web")


def test_resolve_order_cycle(service_factory):
    services = {
        "a": service_factory(name="a", depends_on=["b"]),
        "b": service_factory(name="b", depends_on=["a"]),
    }
    with pytest.raises(CircularDependencyError):
        resolve_order(services)


class TestDependencyResolver:
    """Tests for DependencyResolver."""

    def test_starts_only_missing_dependencies(self, remote):
        remote.files[remote.compose_path] = DESCRIPTOR
        remote.running["d1"] = "ssd-myapp-d1:1"

        DependencyResolver(remote, {}).ensure(["d1", "d2"])

        starts = [c for c in remote.calls if c[0] == "start_service"]
        assert starts == [("start_service", "d2")]
        assert remote.pulled == []

    def test_prebuilt_dependency_is_pulled(self, remote, service_factory):
        remote.files[remote.compose_path] = DESCRIPTOR
        out = io.StringIO()
        services = {"redis": service_factory(name="redis", image="redis:7")}

        DependencyResolver(remote, services, out).ensure(["redis"])

        assert remote.pulled == ["redis:7"]
        names = remote.call_names()
        assert names.index("pull_image") < names.index("start_service")
        assert "Starting dependency redis" in out.getvalue()

    def test_failure_propagates(self, remote):
        remote.files[remote.compose_path] = DESCRIPTOR
        with pytest.raises(RemoteCommandError):
            DependencyResolver(remote, {}).ensure(["missing"])

    def test_dependency_absent_from_compose_file_is_started(self, service_factory, executor_factory):
        executor = executor_factory([
            ("ps --format json redis", RemoteCommandError("docker compose ps redis", 1, "no such service: redis")),
            ("ps --format json", "[]"),
        ])
        client = RemoteClient(service_factory(), executor)
        services = {"redis": service_factory(name="redis", image="redis:7")}

        DependencyResolver(client, services).ensure(["redis"])

        commands = executor.remote_commands
        assert commands[0] == "cd /stacks/myapp && docker compose ps --format json"
        assert "docker pull redis:7" in commands
        assert commands[-1] == "cd /stacks/myapp && docker compose up -d --no-deps --force-recreate redis"

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
Unit tests for health polling.
"""
import pytest

from ssd.MANAGERS.health_monitor import DEFAULT_HEALTH_TIMEOUT, HealthMonitor, health_deadline
from ssd.MODELS.service_config import HealthCheckSpec
from ssd.exceptions import HealthCheckTimeout, ServiceUnhealthyError


class StubClient:
    """Replays a sequence of (state, health) observations; the last one repeats."""

    def __init__(self, *observations):
        self.observations = list(observations)
        self.polls = 0

    def service_health(self, service):
        self.polls += 1
        if len(self.observations) > 1:
            return self.observations.pop(0)
        return self.observations[0]


class TestHealthMonitor:
    """Tests for HealthMonitor."""

    def test_healthy_after_starting(self):
        client = StubClient(("running", "starting"), ("running", "starting"), ("running", "healthy"))
        HealthMonitor(client, interval=0).wait_for_healthy("api", timeout=5)
        assert client.polls == 3

    def test_running_without_healthcheck_counts_as_healthy(self):
        client = StubClient(("running", ""))
        HealthMonitor(client, interval=0).wait_for_healthy("api", timeout=5)
        assert client.polls == 1

    def test_unhealthy_fails_fast(self):
        client = StubClient(("running", "unhealthy"))
        with pytest.raises(ServiceUnhealthyError):
            HealthMonitor(client, interval=0).wait_for_healthy("api", timeout=60)
        assert client.polls == 1

    def test_exited_fails_fast(self):
        with pytest.raises(ServiceUnhealthyError):
            HealthMonitor(StubClient(("exited", "")), interval=0).wait_for_healthy("api", timeout=60)

    def test_timeout(self):
        client = StubClient(("running", "starting"))
        with pytest.raises(HealthCheckTimeout) as excinfo:
            HealthMonitor(client, interval=0).wait_for_healthy("api", timeout=0)
        assert excinfo.value.last_state == "running/starting"
        assert "api" in str(excinfo.value)

    def test_missing_container_keeps_waiting(self):
        client = StubClient(("", ""), ("running", "healthy"))
        HealthMonitor(client, interval=0).wait_for_healthy("api", timeout=5)
        assert client.polls == 2


def test_health_deadline_default(service_factory):
    assert health_deadline(service_factory()) == DEFAULT_HEALTH_TIMEOUT


def test_health_deadline_from_policy(service_factory):
    cfg = service_factory(healthcheck=HealthCheckSpec(cmd="true", interval="10s", retries=5))
    assert health_deadline(cfg) == 80

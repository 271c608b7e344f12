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
Health monitoring for deployed services: polls the container state reported by
docker compose until the service is healthy or its deadline passes.
"""
import logging
from enum import Enum
from typing import Tuple

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from ..MODELS.service_config import ServiceConfig
from ..exceptions import HealthCheckTimeout, ServiceUnhealthyError

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_TIMEOUT = 60.0
HEALTH_SAFETY_MARGIN = 30.0


class HealthStatus(str, Enum):
    """Health status of a container, as docker reports it."""

    STARTING = "starting"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
    NONE = ""  # No health check configured


FAILED_STATES = {"exited", "dead"}


def health_deadline(config: ServiceConfig) -> float:
    """
    How long to wait for a service to become healthy.

    Without a health check policy this is a fixed default; with one it is
    ``retries * interval`` plus a safety margin.
    """
    if not config.has_health_check:
        return DEFAULT_HEALTH_TIMEOUT
    hc = config.healthcheck
    return hc.retries * hc.interval_seconds + HEALTH_SAFETY_MARGIN


class HealthMonitor:
    """
    Waits for services to report healthy.

    A container counts as healthy when docker reports ``healthy``, or when it
    has no health check and is running.
    """

    def __init__(self, client, interval: float = 2.0):
        """
        Initializes the health monitor.

        :param client: Anything with ``service_health(service) -> (state, health)``.
        :param interval: Seconds between polls.
        """
        self.client = client
        self.interval = interval

    def check(self, service: str) -> Tuple[bool, str]:
        """
        Polls once.

        Returns:
            (healthy, description of the observed state)

        Raises:
            ServiceUnhealthyError: If docker already gave up on the container.
        """
        state, health = self.client.service_health(service)
        observed = f"{state or 'missing'}/{health or 'no healthcheck'}"

        if health == HealthStatus.UNHEALTHY or state in FAILED_STATES:
            raise ServiceUnhealthyError(service, observed)
        if health == HealthStatus.HEALTHY:
            return True, observed
        if not health and state == "running":
            return True, observed
        return False, observed

    def wait_for_healthy(self, service: str, timeout: float) -> None:
        """
        Polls until the service is healthy.

        :raises HealthCheckTimeout: If the deadline passes first.
        :raises ServiceUnhealthyError: If the container turns unhealthy or exits.
        """
        last = {"observed": ""}

        def poll() -> bool:
            healthy, observed = self.check(service)
            last["observed"] = observed
            logger.debug("%s health: %s", service, observed)
            return healthy

        retryer = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self.interval),
            retry=retry_if_result(lambda healthy: not healthy),
        )
        try:
            retryer(poll)
        except RetryError as e:
            raise HealthCheckTimeout(service, timeout, last["observed"]) from e

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
Orchestration of deploy, restart and rollback for one service of a stack.

A deploy runs, under the stack's deployment lock:

    bootstrap stack -> start dependencies -> build or pull ->
    update compose.yaml -> canary rollout or direct start

Every remote failure is reported as a DeployError naming the stage that failed.
"""
import logging
import os
from dataclasses import dataclass
from typing import IO, Callable, Dict, Mapping, Optional, TypeVar

from ..CONVERTERS.to_compose import (
    INGRESS_NETWORK,
    add_canary,
    canary_name,
    generate_compose,
    internal_network,
    service_image,
)
from ..MODELS.service_config import ServiceConfig
from ..PARSERS.version_parser import extract_version, replace_version
from ..RUNNERS.dependency_resolver import DependencyResolver
from ..exceptions import (
    CanaryHealthCheckError,
    DeployError,
    HealthCheckTimeout,
    NoPreviousVersionError,
    PrebuiltRollbackError,
    SSDError,
    ServiceUnhealthyError,
)
from .deployment_lock import DEFAULT_LOCK_TIMEOUT, DeploymentLock
from .environment_manager import EnvironmentManager
from .health_monitor import HealthMonitor, health_deadline
from .stack_store import StackStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DeployOptions:
    """
    Knobs for one orchestration run.

    ``all_services`` is every service known to the stack. When given, env files
    are created for all of them on bootstrap and compose.yaml is regenerated
    as a whole on deploy; otherwise only the deployed service's image tag is
    patched.
    """
    output: Optional[IO[str]] = None
    all_services: Optional[Dict[str, ServiceConfig]] = None
    dependencies: Optional[Dict[str, ServiceConfig]] = None
    build_only: bool = False
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT
    lock_dir: Optional[str] = None
    health_interval: float = 2.0


class DeploymentOrchestrator:
    """
    Deploys, restarts and rolls back one service.

    An orchestrator holds per-run state (the cached compose.yaml), so create a
    new one for each operation.
    """

    def __init__(self, config: ServiceConfig, client, options: Optional[DeployOptions] = None):
        """
        Initializes the orchestrator.

        :param config: The service to operate on.
        :param client: Remote client for the service's server and stack.
        :param options: Run options; defaults deploy a single service quietly.
        """
        self.config = config
        self.client = client
        self.options = options or DeployOptions()
        self.store = StackStore(client, config.stack)
        self.env = EnvironmentManager(client, config.stack)
        self.monitor = HealthMonitor(client, interval=self.options.health_interval)

    # Helpers

    def _log(self, message: str) -> None:
        if self.options.output is not None:
            print(message, file=self.options.output)

    def _stage(self, stage: str, fn: Callable[..., T], *args) -> T:
        try:
            return fn(*args)
        except (SSDError, OSError, ValueError) as e:
            raise DeployError(stage, e) from e

    def _lock(self) -> Callable[[], None]:
        lock = DeploymentLock(
            self.config.stack,
            timeout=self.options.lock_timeout,
            lock_dir=self.options.lock_dir,
        )
        return lock.acquire()

    @property
    def known_services(self) -> Dict[str, ServiceConfig]:
        if self.options.all_services:
            return dict(self.options.all_services)
        return {self.config.name: self.config}

    # Operations

    def deploy(self) -> int:
        """
        Builds (or pulls) the service and rolls it out.

        :return: The deployed version; 0 for a pre-built service.
        :raises LockTimeoutError: If another deployment holds the stack.
        :raises DeployError: If a stage fails.
        :raises CanaryHealthCheckError: If the new version never became healthy;
            the previous version is still serving.
        """
        release = self._lock()
        try:
            return self._deploy()
        finally:
            release()

    def restart(self) -> None:
        """
        Recreates the service at whatever version compose.yaml lists.
        """
        release = self._lock()
        try:
            self._log(f"Restarting {self.config.name}...")
            self._stage("restart service", self.client.start_service, self.config.name)
            self._log(f"Restarted {self.config.name} successfully!")
        finally:
            release()

    def rollback(self) -> int:
        """
        Moves the service back one version and starts it. There is no canary
        phase: the previous version is assumed good.

        :return: The version rolled back to.
        :raises PrebuiltRollbackError: For services running a pre-built image.
        :raises NoPreviousVersionError: When the current version is 1 or lower.
        """
        cfg = self.config
        if cfg.is_prebuilt:
            raise PrebuiltRollbackError(cfg.name, cfg.image or "")

        release = self._lock()
        try:
            self._log(f"Checking current version on {cfg.server}...")
            current = self._stage("read current version", self.store.current_version, cfg)
            if current <= 1:
                raise NoPreviousVersionError(cfg.name, current)

            target = current - 1
            self._log(f"Rolling back {cfg.name} from version {current} to {target}...")
            content = self._stage("update compose.yaml", self._patch_version, self.store.read(), target)
            self._stage("update compose.yaml", self.store.write, content)

            self._log("Starting service...")
            self._stage("start service", self.client.start_service, cfg.name)
            self._log(f"Rolled back {cfg.name} to version {target} successfully!")
            return target
        finally:
            release()

    # Deploy stages

    def _deploy(self) -> int:
        cfg = self.config
        opts = self.options

        self._stage("bootstrap stack", self._bootstrap)

        if not opts.build_only and cfg.depends_on:
            self._log(f"Checking dependencies: {', '.join(cfg.depends_on)}")
            lookup = dict(self.known_services)
            lookup.update(opts.dependencies or {})
            resolver = DependencyResolver(self.client, lookup, opts.output)
            self._stage("start dependencies", resolver.ensure, cfg.depends_on)

        self._log(f"Checking current version on {cfg.server}...")
        previous = self._stage("read current version", self.store.read)
        current = self.store.current_version(cfg)

        if cfg.is_prebuilt:
            new_version = 0
            self._log(f"Pulling image {cfg.image}...")
            self._stage("pull image", self.client.pull_image, cfg.image)
        else:
            new_version = current + 1
            self._log(f"Current version: {current}, deploying version: {new_version}")
            self._build(new_version)

        final = self._stage("generate compose.yaml", self._render, previous, new_version)

        if opts.build_only:
            if final != previous:
                self._log("Updating compose.yaml...")
                self._stage("update compose.yaml", self.store.write, final)
            self._log(f"Built {cfg.name} version {new_version}")
            return new_version

        running = self._stage("check service status", self.client.is_service_running, cfg.name)
        if running:
            self._canary_rollout(previous, final, current, new_version)
        else:
            if final != previous:
                self._log("Updating compose.yaml...")
                self._stage("update compose.yaml", self.store.write, final)
            self._log("Starting service...")
            self._stage("start service", self.client.start_service, cfg.name)

        if cfg.is_prebuilt:
            self._log(f"\nDeployed {cfg.name} ({cfg.image}) successfully!")
        else:
            self._log(f"\nDeployed {cfg.name} version {new_version} successfully!")
        return new_version

    def _bootstrap(self) -> None:
        if self.store.exists():
            return
        cfg = self.config
        services = self.known_services
        self._log(f"Creating stack {cfg.stack}...")
        self.env.create_env_files(services)
        self.store.write(generate_compose(services, cfg.stack, {}))
        self.client.ensure_network(INGRESS_NETWORK)
        self.client.ensure_network(internal_network(cfg.project))

    def _build(self, version: int) -> None:
        cfg = self.config
        self._log("Creating temp build directory...")
        temp_dir = self._stage("create temp directory", self.client.make_temp_dir)
        try:
            self._log(f"Syncing code to {cfg.server}:{temp_dir}...")
            self._stage("sync code", self.client.sync_source, os.path.abspath(cfg.context), temp_dir)
            self._log(f"Building image {cfg.versioned_image(version)}...")
            self._stage("build image", self.client.build_image, temp_dir, version)
        finally:
            self._log("Cleaning up temp directory...")
            try:
                self.client.cleanup(temp_dir)
            except (SSDError, OSError, ValueError) as e:
                logger.warning("failed to clean up temp directory %s: %s", temp_dir, e)

    def _render(self, previous: str, version: int) -> str:
        """
        The compose.yaml to commit for this deploy.

        With the full service set the file is regenerated, carrying forward
        every other service's recorded version. Otherwise only this service's
        image tag is rewritten.
        """
        cfg = self.config
        if self.options.all_services:
            services = self.known_services
            services[cfg.name] = cfg
            versions = {
                name: extract_version(previous, svc.image_name, legacy_name=f"ssd-{name}")
                for name, svc in services.items()
                if not svc.is_prebuilt
            }
            versions[cfg.name] = version
            self.env.create_env_files(services)
            return generate_compose(services, cfg.stack, versions)

        if cfg.is_prebuilt:
            return previous
        return self._patch_version(previous, version)

    def _patch_version(self, content: str, version: int) -> str:
        cfg = self.config
        try:
            return replace_version(content, cfg.image_name, version)
        except ValueError:
            # Stacks deployed before image names were scoped by project.
            return replace_version(content, f"ssd-{cfg.name}", version)

    def _canary_rollout(self, previous: str, final: str, current: int, version: int) -> None:
        cfg = self.config
        canary = canary_name(cfg.name)
        deadline = health_deadline(cfg)
        new_image = cfg.versioned_image(version)
        old_image = service_image(previous, cfg.name) or cfg.versioned_image(current)

        self._log(f"Starting canary {canary} with {new_image}...")
        variant = self._stage("generate canary compose.yaml", add_canary, final, cfg.name,
                              new_image, old_image)
        self._stage("write canary compose.yaml", self.store.write, variant)
        try:
            self.client.start_service(canary)
            self._log(f"Waiting up to {deadline:g}s for {canary} to become healthy...")
            self.monitor.wait_for_healthy(canary, deadline)
        except (SSDError, OSError) as e:
            self._abort_canary(canary, previous)
            if isinstance(e, (HealthCheckTimeout, ServiceUnhealthyError)):
                raise CanaryHealthCheckError(cfg.name, e) from e
            raise DeployError("start canary", e) from e

        self._log(f"Canary healthy, promoting {cfg.name} to {new_image}...")
        self._stage("update compose.yaml", self.store.write, final)
        self._stage("start service", self.client.start_service, cfg.name)
        self._stage(f"wait for {cfg.name} to become healthy",
                    self.monitor.wait_for_healthy, cfg.name, deadline)

        self._log(f"Removing canary {canary}...")
        try:
            self.client.remove_service(canary)
        except (SSDError, OSError) as e:
            logger.warning("failed to remove canary %s: %s", canary, e)

    def _abort_canary(self, canary: str, previous: str) -> None:
        """
        Removes the canary and puts the pre-rollout compose.yaml back. The
        primary service is never touched.
        """
        self._log(f"Canary {canary} failed, removing it...")
        try:
            self.client.remove_service(canary)
        except (SSDError, OSError) as e:
            logger.warning("failed to remove canary %s: %s", canary, e)
        try:
            self.store.write(previous)
        except (SSDError, OSError, ValueError) as e:
            logger.warning("failed to restore compose.yaml after canary failure: %s", e)

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
Exceptions raised by SSD.
"""
from typing import Optional


class SSDError(Exception):
    """Base class for every error SSD raises on purpose."""


class ConfigError(SSDError):
    """The ssd.yaml file could not be loaded or failed validation."""


class RemoteCommandError(SSDError):
    """
    A command exited with a non-zero status.
    """

    def __init__(self, command: str, returncode: Optional[int], stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip()
        message = f"command failed (exit {returncode}): {command}"
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)


class DeadlineExceeded(SSDError):
    """
    A command ran past its deadline and was killed.
    """

    def __init__(self, command: str, timeout: float):
        self.command = command
        self.timeout = timeout
        super().__init__(f"deadline exceeded after {timeout:g}s: {command}")


class LockTimeoutError(SSDError):
    """
    Another deployment held the stack lock for longer than we were willing to wait.
    """

    def __init__(self, stack_path: str, timeout: float):
        self.stack_path = stack_path
        self.timeout = timeout
        super().__init__(
            f"timeout waiting for deployment lock on {stack_path} after {timeout:g}s"
        )


class DescriptorValidationError(SSDError):
    """docker compose rejected a candidate compose file."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"compose validation failed: {reason}")


class DeployError(SSDError):
    """
    A deployment stage failed. ``stage`` names the step, the original error is
    chained as ``__cause__``.
    """

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"failed to {stage}: {cause}")


class NoPreviousVersionError(SSDError):
    """Rollback asked for while the service is at version 1 or below."""

    def __init__(self, service: str, current: int):
        self.service = service
        self.current = current
        super().__init__(
            f"no previous version to roll back to for {service} (current version: {current})"
        )


class PrebuiltRollbackError(SSDError):
    """Rollback asked for on a service that runs a pre-built image."""

    def __init__(self, service: str, image: str):
        self.service = service
        self.image = image
        super().__init__(
            f"cannot rollback {service}: it uses the pre-built image {image}, which has no versions"
        )


class HealthCheckTimeout(SSDError):
    """A service did not report healthy before its deadline."""

    def __init__(self, service: str, timeout: float, last_state: str = ""):
        self.service = service
        self.timeout = timeout
        self.last_state = last_state
        message = f"{service} did not become healthy within {timeout:g}s"
        if last_state:
            message = f"{message} (last state: {last_state})"
        super().__init__(message)


class ServiceUnhealthyError(SSDError):
    """Docker reported a service unhealthy, or its container exited."""

    def __init__(self, service: str, state: str):
        self.service = service
        self.state = state
        super().__init__(f"{service} is unhealthy (state: {state})")


class CanaryHealthCheckError(SSDError):
    """
    The canary never became healthy. The previous version is still serving.
    """

    def __init__(self, service: str, reason: BaseException):
        self.service = service
        self.reason = reason
        super().__init__(
            f"canary health check failed for {service}: {reason}; previous version left running"
        )

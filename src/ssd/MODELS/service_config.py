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
Models for ssd.yaml: the root document and one configuration per deployable service.
"""
import posixpath
import re
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from ..UTILS.durations import parse_duration
from ..UTILS.validation import validate_name, validate_server, validate_stack_path

_PROJECT_INVALID = re.compile(r"[^a-z0-9_-]")


def project_name(stack: str) -> str:
    """
    Compose project name for a stack directory: its basename, lowercased,
    with the characters Compose drops removed.
    """
    name = _PROJECT_INVALID.sub("", posixpath.basename(stack.rstrip("/")).lower())
    return name.lstrip("_-")


class HealthCheckSpec(BaseModel):
    """
    A check command run inside the container, Docker healthcheck style.
    """
    cmd: str
    interval: str = "30s"
    timeout: str = "10s"
    retries: int = 3

    @field_validator("interval", "timeout")
    @classmethod
    def _check_duration(cls, value: str) -> str:
        parse_duration(value, require_unit=True)
        return value

    @field_validator("retries")
    @classmethod
    def _check_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("retries cannot be negative")
        return value

    @property
    def interval_seconds(self) -> float:
        return parse_duration(self.interval)

    @property
    def timeout_seconds(self) -> float:
        return parse_duration(self.timeout)


class ServiceConfig(BaseModel):
    """
    The full configuration of a single service after inheritance and defaults.

    A service either builds from source (``dockerfile``, ``context``,
    ``target``) or runs a pre-built ``image``; never both.
    """
    name: str
    server: str
    stack: str
    dockerfile: str = "./Dockerfile"
    context: str = "."
    target: Optional[str] = None
    image: Optional[str] = None

    # Routing
    domain: Union[str, List[str], None] = None
    aliases: List[str] = []
    path: str = ""
    https: bool = True
    port: int = 80

    # Storage and lifecycle
    volumes: Dict[str, str] = {}
    depends_on: List[str] = []
    healthcheck: Optional[HealthCheckSpec] = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return validate_name(value)

    @field_validator("server")
    @classmethod
    def _check_server(cls, value: str) -> str:
        return validate_server(value)

    @field_validator("stack")
    @classmethod
    def _check_stack(cls, value: str) -> str:
        return validate_stack_path(value)

    @field_validator("port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 1 <= value <= 65535:
            raise ValueError(f"port must be between 1 and 65535, got {value}")
        return value

    @field_validator("depends_on")
    @classmethod
    def _check_depends_on(cls, value: List[str]) -> List[str]:
        for dep in value:
            validate_name(dep)
        return value

    @model_validator(mode="after")
    def _check_build_inputs(self) -> "ServiceConfig":
        if self.image and self.target:
            raise ValueError("image and target are mutually exclusive")
        if self.name in self.depends_on:
            raise ValueError(f"service {self.name} cannot depend on itself")
        return self

    @property
    def is_prebuilt(self) -> bool:
        return bool(self.image)

    @property
    def domains(self) -> List[str]:
        """All configured hostnames, primary first, duplicates removed."""
        if isinstance(self.domain, str):
            candidates = [self.domain]
        else:
            candidates = list(self.domain or [])
        candidates += self.aliases

        seen: List[str] = []
        for domain in candidates:
            domain = domain.strip()
            if domain and domain not in seen:
                seen.append(domain)
        return seen

    @property
    def primary_domain(self) -> str:
        domains = self.domains
        return domains[0] if domains else ""

    @property
    def alias_domains(self) -> List[str]:
        return self.domains[1:]

    @property
    def has_routing(self) -> bool:
        return bool(self.primary_domain)

    @property
    def has_health_check(self) -> bool:
        return self.healthcheck is not None and bool(self.healthcheck.cmd)

    @property
    def use_https(self) -> bool:
        return self.https

    @property
    def project(self) -> str:
        """Compose project name derived from the stack path."""
        return project_name(self.stack)

    @property
    def image_name(self) -> str:
        """
        Image reference without a tag for built services, or the literal
        reference for pre-built ones.
        """
        if self.image:
            return self.image
        return f"ssd-{self.project}-{self.name}"

    @property
    def compose_path(self) -> str:
        return posixpath.join(self.stack, "compose.yaml")

    @property
    def env_file_path(self) -> str:
        return posixpath.join(self.stack, f"{self.name}.env")

    def versioned_image(self, version: int) -> str:
        if self.image:
            return self.image
        return f"{self.image_name}:{version}"


class RootConfig(BaseModel):
    """
    The parsed ssd.yaml document.
    """
    server: str = ""
    stack: str = ""
    services: Dict[str, Optional[Dict[str, Any]]] = Field(default_factory=dict)

    def list_services(self) -> List[str]:
        return list(self.services.keys())

    def get_service(self, name: str) -> ServiceConfig:
        """
        Resolves one service: inherits ``server`` and ``stack`` from the root,
        applies defaults and validates the result.

        :param name: Key of the service under ``services:``.
        :return: The validated service configuration.
        :raises KeyError: If the service is not defined.
        :raises pydantic.ValidationError: If the resolved configuration is invalid.
        """
        if not self.services:
            raise KeyError("services: is required")
        if name not in self.services:
            raise KeyError(f"service {name!r} not found")

        raw = {str(k): v for k, v in (self.services[name] or {}).items() if v is not None}
        raw.setdefault("name", name)
        if not raw.get("server"):
            raw["server"] = self.server
        if not raw.get("stack"):
            raw["stack"] = self.stack or posixpath.join("/stacks", str(raw["name"]))
        return ServiceConfig(**raw)

    def all_services(self) -> Dict[str, ServiceConfig]:
        return {name: self.get_service(name) for name in self.services}

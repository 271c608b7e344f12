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
Converters for rendering the stack descriptor (compose.yaml) from service configurations.
"""
import copy
from typing import Dict, Mapping, Optional

import yaml

from ..MODELS.compose_file import ComposeFile, ComposeHealthCheck, ComposeNetwork, ComposeService
from ..MODELS.service_config import ServiceConfig, project_name
from .traefik_labels import generate_labels

INGRESS_NETWORK = "traefik_web"
CANARY_SUFFIX = "-canary"


def internal_network(project: str) -> str:
    return f"{project}_internal"


def canary_name(service: str) -> str:
    return f"{service}{CANARY_SUFFIX}"


def _dump(data: dict) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False)


def generate_compose(services: Mapping[str, ServiceConfig], stack: str,
                     versions: Mapping[str, int]) -> str:
    """
    Renders the whole descriptor for a stack.

    Services are emitted in name order and volumes sorted, so the same input
    always yields the same text.

    :param services: Service name to configuration, for every service of the stack.
    :param stack: Stack directory on the remote host; its basename names the project.
    :param versions: Image tag per built service. Missing entries render as 0.
    :return: compose.yaml content.
    :raises ValueError: If no services are given.
    """
    if not services:
        raise ValueError("at least one service is required")

    project = project_name(stack)
    private = internal_network(project)

    compose_services: Dict[str, ComposeService] = {}
    volumes_used = set()

    for name in sorted(services):
        cfg = services[name]
        svc = ComposeService(
            image=cfg.versioned_image(versions.get(name, 0)),
            env_file=f"./{name}.env",
            networks=[INGRESS_NETWORK, private],
            depends_on=list(cfg.depends_on),
        )

        for volume_name, mount_path in sorted(cfg.volumes.items()):
            svc.volumes.append(f"{volume_name}:{mount_path}")
            volumes_used.add(volume_name)

        if cfg.healthcheck is not None:
            svc.healthcheck = ComposeHealthCheck(
                test=["CMD", "sh", "-c", cfg.healthcheck.cmd],
                interval=cfg.healthcheck.interval,
                timeout=cfg.healthcheck.timeout,
                retries=cfg.healthcheck.retries,
            )

        svc.labels = generate_labels(project, name, cfg)
        compose_services[name] = svc

    compose = ComposeFile(
        services=compose_services,
        networks={
            INGRESS_NETWORK: ComposeNetwork(external=True),
            private: ComposeNetwork(external=True),
        },
        volumes={name: None for name in sorted(volumes_used)},
    )
    return _dump(compose.to_dict())


def service_image(content: str, service: str) -> Optional[str]:
    """The image a descriptor assigns to ``service``, if any."""
    data = yaml.safe_load(content) if content else None
    if not isinstance(data, dict):
        return None
    entry = (data.get("services") or {}).get(service)
    if not isinstance(entry, dict):
        return None
    return entry.get("image")


def add_canary(content: str, service: str, image: str,
               primary_image: Optional[str] = None) -> str:
    """
    Produces a descriptor variant with a temporary ``{service}-canary`` entry
    running ``image`` next to the primary entry.

    The canary carries the primary's labels, so the proxy balances across both
    instances while the canary is up.

    :param content: Descriptor to start from.
    :param service: Service to run a canary for.
    :param image: Image for the canary.
    :param primary_image: If given, the primary entry is pinned to this image.
    :raises ValueError: If the service is not in the descriptor.
    """
    data = yaml.safe_load(content) or {}
    entries = data.get("services") or {}
    if service not in entries:
        raise ValueError(f"service {service} not found in compose file")

    canary = copy.deepcopy(entries[service])
    canary["image"] = image
    if primary_image:
        entries[service]["image"] = primary_image
    entries[canary_name(service)] = canary
    data["services"] = entries
    return _dump(data)


def generate_traefik_compose(email: str) -> str:
    """
    Descriptor for the shared Traefik proxy: HTTP and HTTPS entrypoints and a
    Let's Encrypt resolver named ``letsencrypt``.
    """
    traefik = ComposeService(
        image="traefik:3",
        ports=["80:80", "443:443"],
        command=[
            "--api.dashboard=true",
            "--providers.docker=true",
            "--providers.docker.exposedbydefault=false",
            "--entrypoints.web.address=:80",
            "--entrypoints.websecure.address=:443",
            f"--certificatesresolvers.letsencrypt.acme.email={email}",
            "--certificatesresolvers.letsencrypt.acme.storage=/acme.json",
            "--certificatesresolvers.letsencrypt.acme.httpchallenge.entrypoint=web",
        ],
        networks=[INGRESS_NETWORK],
        volumes=[
            "/var/run/docker.sock:/var/run/docker.sock:ro",
            "./acme.json:/acme.json",
        ],
    )
    compose = ComposeFile(
        services={"traefik": traefik},
        networks={INGRESS_NETWORK: ComposeNetwork(external=True)},
    )
    return _dump(compose.to_dict())

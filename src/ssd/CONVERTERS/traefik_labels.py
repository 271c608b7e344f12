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
Converters for generating Traefik routing labels from a service configuration.

Labels are returned as ``key=value`` strings in a fixed order so that two
renderings of the same configuration produce identical compose files.
"""
from typing import List

from ..MODELS.service_config import ServiceConfig

SECURE_ENTRYPOINT = "websecure"
PLAIN_ENTRYPOINT = "web"
CERT_RESOLVER = "letsencrypt"
REDIRECT_TO_HTTPS = "redirect-to-https"

_REGEX_METACHARACTERS = set("\\.+*?()|[]{}^$")


def escape_regex(text: str) -> str:
    """
    Escapes regex metacharacters for Traefik's (Go RE2) regex syntax.

    Unlike ``re.escape`` this leaves hyphens alone, which keeps labels
    readable for hostnames.
    """
    return "".join("\\" + ch if ch in _REGEX_METACHARACTERS else ch for ch in text)


def _router(name: str, attr: str, value: str) -> str:
    return f"traefik.http.routers.{name}.{attr}={value}"


def _middleware(name: str, attr: str, value: str) -> str:
    return f"traefik.http.middlewares.{name}.{attr}={value}"


def _tls_labels(router: str) -> List[str]:
    return [
        _router(router, "entrypoints", SECURE_ENTRYPOINT),
        _router(router, "tls", "true"),
        _router(router, "tls.certresolver", CERT_RESOLVER),
    ]


def has_sub_path(path: str) -> bool:
    """A path of ``/`` routes the same as no path at all."""
    return bool(path) and path != "/"


def routing_rule(domain: str, path: str = "") -> str:
    rule = f"Host(`{domain}`)"
    if has_sub_path(path):
        rule = f"{rule} && PathPrefix(`{path}`)"
    return rule


def generate_labels(project: str, service: str, config: ServiceConfig) -> List[str]:
    """
    Builds the Traefik labels for one service.

    :param project: Compose project name (basename of the stack path).
    :param service: Service name as it appears in the compose file.
    :param config: The service configuration.
    :return: Labels in a deterministic order; empty when the service has no domain.
    """
    primary = config.primary_domain
    if not primary:
        return []

    labels = _primary_labels(project, service, config, primary)
    for alias in config.alias_domains:
        labels.extend(_alias_labels(project, service, config, alias, primary))
    return labels


def _primary_labels(project: str, service: str, config: ServiceConfig, domain: str) -> List[str]:
    router = f"{project}-{service}"
    rule = routing_rule(domain, config.path)

    labels = [
        "traefik.enable=true",
        _router(router, "rule", rule),
        f"traefik.http.services.{router}.loadbalancer.server.port={config.port}",
    ]

    strip = ""
    if has_sub_path(config.path):
        strip = f"{router}-strip"
        labels.append(_middleware(strip, "stripprefix.prefixes", config.path))
        labels.append(_router(router, "middlewares", strip))

    if not config.use_https:
        labels.append(_router(router, "entrypoints", PLAIN_ENTRYPOINT))
        return labels

    labels.extend(_tls_labels(router))

    http_router = f"{router}-http"
    chain = f"{strip},{REDIRECT_TO_HTTPS}" if strip else REDIRECT_TO_HTTPS
    labels.extend([
        _router(http_router, "rule", rule),
        _router(http_router, "entrypoints", PLAIN_ENTRYPOINT),
        _router(http_router, "middlewares", chain),
        _middleware(REDIRECT_TO_HTTPS, "redirectscheme.scheme", "https"),
    ])
    return labels


def _alias_labels(project: str, service: str, config: ServiceConfig,
                  alias: str, primary: str) -> List[str]:
    sanitized = alias.replace(".", "-")
    router = f"{project}-{service}-alias-{sanitized}"
    redirect = f"{project}-{service}-redirect-{sanitized}"
    scheme = "https" if config.use_https else "http"

    # "$$" survives compose interpolation as a literal "$".
    labels = [
        _router(router, "rule", f"Host(`{alias}`)"),
        _router(router, "middlewares", redirect),
        _middleware(redirect, "redirectregex.regex", f"^{scheme}://{escape_regex(alias)}/(.*)"),
        _middleware(redirect, "redirectregex.replacement", f"{scheme}://{primary}/$${{1}}"),
        _middleware(redirect, "redirectregex.permanent", "false"),
    ]

    if not config.use_https:
        labels.append(_router(router, "entrypoints", PLAIN_ENTRYPOINT))
        return labels

    labels.extend(_tls_labels(router))

    http_router = f"{router}-http"
    labels.extend([
        _router(http_router, "rule", f"Host(`{alias}`)"),
        _router(http_router, "entrypoints", PLAIN_ENTRYPOINT),
        _router(http_router, "middlewares", REDIRECT_TO_HTTPS),
    ])
    return labels

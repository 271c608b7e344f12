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
Converters for generating a starter ssd.yaml.
"""
import os
from typing import Optional

from jinja2 import Template

from ..UTILS.validation import validate_name, validate_server, validate_stack_path

CONFIG_TEMPLATE = """server: {{ server }}
{% if stack %}stack: {{ stack }}
{% endif %}
services:
  {{ service }}:
{% if domain %}    domain: {{ domain }}
{% endif %}{% if port %}    port: {{ port }}
{% endif %}{% if not domain or not port %}    # Uncomment and configure as needed:
{% if not domain %}    # domain: example.com
{% endif %}{% if not port %}    # port: 3000
{% endif %}{% endif %}"""


class ConfigScaffold:
    """
    Renders and writes a minimal ssd.yaml for a new project.
    """

    def __init__(self,
                 server: str,
                 stack: Optional[str] = None,
                 service: str = "app",
                 domain: Optional[str] = None,
                 port: int = 0):
        """
        Initializes the scaffold.

        :param server: SSH host the project deploys to.
        :param stack: Stack directory on the server; omitted to use the default.
        :param service: Name of the first service.
        :param domain: Domain routed to the service.
        :param port: Container port the service listens on.
        :raises ValueError: If any value is invalid.
        """
        validate_server(server)
        validate_name(service)
        if stack:
            validate_stack_path(stack)
        if port < 0 or port > 65535:
            raise ValueError("port must be between 1 and 65535")
        self.server = server
        self.stack = stack
        self.service = service
        self.domain = domain
        self.port = port
        self.template = Template(CONFIG_TEMPLATE, trim_blocks=True, keep_trailing_newline=True)

    def render(self) -> str:
        return self.template.render(
            server=self.server,
            stack=self.stack,
            service=self.service,
            domain=self.domain,
            port=self.port,
        )

    def write(self, directory: str = ".", force: bool = False) -> str:
        """
        Writes ssd.yaml into ``directory``.

        :param force: Overwrite an existing file.
        :return: The path written.
        :raises FileExistsError: If ssd.yaml exists and ``force`` is not set.
        """
        path = os.path.join(directory, "ssd.yaml")
        if os.path.exists(path) and not force:
            raise FileExistsError("ssd.yaml already exists (use --force to overwrite)")

        with open(path, "w") as f:
            f.write(self.render())
        return path

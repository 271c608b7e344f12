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
Storage of the stack descriptor (compose.yaml) on the remote host.
"""
import logging
import posixpath
from typing import Optional

from ..MODELS.service_config import ServiceConfig
from ..PARSERS.version_parser import extract_version
from ..exceptions import SSDError

logger = logging.getLogger(__name__)

COMPOSE_FILE = "compose.yaml"
TMP_SUFFIX = ".tmp"


class StackStore:
    """
    Reads, versions and atomically replaces one stack's descriptor.

    The descriptor read is cached on the instance; create one store per
    orchestration run.
    """

    def __init__(self, client, stack: Optional[str] = None):
        """
        Initializes the store.

        :param client: Remote client for the stack's server.
        :param stack: Stack directory; defaults to the client's stack.
        """
        self.client = client
        self.stack = stack or client.stack
        self.path = posixpath.join(self.stack, COMPOSE_FILE)
        self._cache: Optional[str] = None

    def read(self) -> str:
        """
        Returns the descriptor text, or an empty string if the stack has none yet.
        """
        if self._cache is None:
            self._cache = self.client.read_file(self.path)
        return self._cache

    def current_version(self, config: ServiceConfig) -> int:
        """
        The version of ``config``'s image recorded in the descriptor; 0 when
        the stack was never deployed or the service is pre-built.
        """
        if config.is_prebuilt:
            return 0
        return extract_version(self.read(), config.image_name, legacy_name=f"ssd-{config.name}")

    def exists(self) -> bool:
        return self.client.stack_exists()

    def write(self, content: str) -> None:
        """
        Replaces the descriptor: write a ``.tmp`` sibling, have docker compose
        validate it, then rename it into place. On any failure the previous
        descriptor is untouched and the temporary file removed.

        :raises ValueError: If ``content`` is empty; nothing is sent to the host.
        :raises DescriptorValidationError: If docker compose rejects the content.
        """
        if not content or not content.strip():
            raise ValueError("refusing to write an empty compose file")

        tmp_path = self.path + TMP_SUFFIX
        self._cache = None

        self.client.ensure_dir(self.stack)
        try:
            self.client.write_file(tmp_path, content)
            self.client.validate_compose(tmp_path)
            self.client.move_file(tmp_path, self.path)
        except (SSDError, OSError):
            self._discard(tmp_path)
            raise

    def _discard(self, tmp_path: str) -> None:
        try:
            self.client.remove_file(tmp_path)
        except (SSDError, OSError) as e:
            logger.warning("failed to remove %s: %s", tmp_path, e)

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
Reads and rewrites the numeric image tag of one service inside compose.yaml text.
"""
import re
from typing import Optional, Pattern


def _image_pattern(image_name: str) -> Pattern:
    # The name must not continue past the colon, otherwise ssd-app-web would
    # also match ssd-app-web-worker.
    return re.compile(r"(image:\s*['\"]?)(" + re.escape(image_name) + r"):(\d+)\b")


def extract_version(content: str, image_name: str, legacy_name: Optional[str] = None) -> int:
    """
    Finds the trailing integer after ``{image_name}:`` on an ``image:`` line.

    :param content: compose.yaml text, possibly empty.
    :param image_name: Image reference without tag, e.g. ``ssd-myapp-api``.
    :param legacy_name: Name used before images were scoped by stack
        (``ssd-{service}``), tried when ``image_name`` is not found.
    :return: The version, or 0 when no such reference exists.
    """
    if not content:
        return 0
    match = _image_pattern(image_name).search(content)
    if match is None and legacy_name:
        match = _image_pattern(legacy_name).search(content)
    if match is None:
        return 0
    return int(match.group(3))


def replace_version(content: str, image_name: str, version: int) -> str:
    """
    Rewrites the tag of ``image_name`` to ``version``. Every other byte of
    ``content`` is left as it was.

    :raises ValueError: If the image is not referenced in the content.
    """
    pattern = _image_pattern(image_name)
    new_content, count = pattern.subn(
        lambda m: f"{m.group(1)}{m.group(2)}:{version}", content
    )
    if count == 0:
        raise ValueError(f"image {image_name} not found in compose file")
    return new_content

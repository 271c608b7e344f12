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
Models for the compose.yaml document written to the remote stack directory.
"""
from typing import Dict, List, Optional, Any
from pydantic import BaseModel


class ComposeHealthCheck(BaseModel):
    """
    A compose healthcheck block.
    """
    test: List[str]
    interval: Optional[str] = None
    timeout: Optional[str] = None
    retries: Optional[int] = None


class ComposeNetwork(BaseModel):
    """
    A top-level network entry.
    """
    external: Optional[bool] = None
    driver: Optional[str] = None


class ComposeService(BaseModel):
    """
    One service entry of the stack descriptor.
    """
    image: str
    restart: str = "unless-stopped"
    env_file: Optional[str] = None
    ports: List[str] = []
    command: List[str] = []
    networks: List[str] = []
    volumes: List[str] = []
    labels: List[str] = []
    depends_on: List[str] = []
    healthcheck: Optional[ComposeHealthCheck] = None


class ComposeFile(BaseModel):
    """
    The whole stack descriptor.
    """
    services: Dict[str, ComposeService]
    networks: Dict[str, ComposeNetwork] = {}
    volumes: Dict[str, Any] = {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Plain data for YAML rendering; empty and unset fields are left out.
        """
        data: Dict[str, Any] = {
            "services": {
                name: svc.model_dump(exclude_none=True, exclude_defaults=False)
                for name, svc in self.services.items()
            }
        }
        for svc in data["services"].values():
            for key in [k for k, v in svc.items() if v == []]:
                del svc[key]
        if self.networks:
            data["networks"] = {
                name: net.model_dump(exclude_none=True)
                for name, net in self.networks.items()
            }
        if self.volumes:
            data["volumes"] = dict(self.volumes)
        return data

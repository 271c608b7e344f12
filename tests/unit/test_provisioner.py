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
Unit tests for server provisioning.
"""
import io

import pytest
import yaml

from ssd.MANAGERS.provisioner import TRAEFIK_STACK, Provisioner, traefik_config
from ssd.exceptions import DeployError, RemoteCommandError


@pytest.fixture
def traefik_remote(remote):
    remote.stack = TRAEFIK_STACK
    return remote


class TestProvisioner:
    """Tests for Provisioner."""

    def test_provision(self, traefik_remote):
        out = io.StringIO()
        Provisioner(traefik_remote, out).provision("ops@example.com")

        assert "traefik_web" in traefik_remote.networks
        assert TRAEFIK_STACK in traefik_remote.dirs
        assert traefik_remote.files[TRAEFIK_STACK + "/acme.json"] == ""
        assert traefik_remote.modes[TRAEFIK_STACK + "/acme.json"] == 0o600

        compose = yaml.safe_load(traefik_remote.files[TRAEFIK_STACK + "/compose.yaml"])
        assert compose["services"]["traefik"]["image"] == "traefik:3"

        streamed = [c[1] for c in traefik_remote.calls if c[0] == "ssh_stream"]
        assert streamed[0].startswith("curl -fsSL https://get.docker.com")
        assert streamed[-1] == "cd /stacks/traefik && docker compose up -d"
        assert "==> Install Docker..." in out.getvalue()

    def test_keeps_existing_acme_file(self, traefik_remote):
        traefik_remote.files[TRAEFIK_STACK + "/acme.json"] = '{"certs": 1}'
        Provisioner(traefik_remote).provision("ops@example.com")
        assert traefik_remote.files[TRAEFIK_STACK + "/acme.json"] == '{"certs": 1}'

    @pytest.mark.parametrize("email", ["", "not-an-email", "a@b.com; reboot", "$(id)@x.com"])
    def test_rejects_bad_email(self, traefik_remote, email):
        with pytest.raises(ValueError):
            Provisioner(traefik_remote).provision(email)
        assert traefik_remote.calls == []

    def test_failure_names_step(self, traefik_remote):
        traefik_remote.failures["ensure_network"] = RemoteCommandError("docker network create", 1, "denied")
        with pytest.raises(DeployError) as excinfo:
            Provisioner(traefik_remote).provision("ops@example.com")
        assert excinfo.value.stage == "create network"
        assert "compose.yaml" not in str(traefik_remote.files)


def test_traefik_config():
    cfg = traefik_config("prod")
    assert cfg.stack == TRAEFIK_STACK
    assert cfg.server == "prod"
    assert cfg.is_prebuilt

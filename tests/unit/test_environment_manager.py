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
Unit tests for per-service env files.
"""
import pytest

from ssd.MANAGERS.environment_manager import EnvironmentManager, parse_env, render_env


def test_parse_env():
    content = "# comment\nA=1\nB='quoted value'\nC=\nD=x=y\n"
    assert parse_env(content) == {"A": "1", "B": "quoted value", "C": "", "D": "x=y"}


def test_parse_env_keeps_dollar_signs():
    assert parse_env("PASSWORD=pa$word\n") == {"PASSWORD": "pa$word"}


def test_render_env():
    assert render_env({}) == ""
    assert render_env({"A": "1", "B": "2"}) == "A=1\nB=2\n"


class TestEnvironmentManager:
    """Tests for EnvironmentManager."""

    def test_path(self, remote):
        assert EnvironmentManager(remote).path("api") == "/stacks/myapp/api.env"

    def test_create_env_files_keeps_existing(self, remote):
        remote.files["/stacks/myapp/api.env"] = "A=1\n"
        EnvironmentManager(remote).create_env_files(["api", "db"])
        assert remote.files["/stacks/myapp/api.env"] == "A=1\n"
        assert remote.files["/stacks/myapp/db.env"] == ""
        assert remote.modes["/stacks/myapp/db.env"] == 0o600

    def test_set_appends_and_updates_in_place(self, remote):
        remote.files["/stacks/myapp/api.env"] = "A=1\nB=2\n"
        env = EnvironmentManager(remote)
        env.set("api", "A", "10")
        env.set("api", "C", "3")
        assert remote.files["/stacks/myapp/api.env"] == "A=10\nB=2\nC=3\n"
        assert remote.modes["/stacks/myapp/api.env"] == 0o600

    def test_set_rejects_bad_input(self, remote):
        env = EnvironmentManager(remote)
        with pytest.raises(ValueError):
            env.set("api", "1BAD", "x")
        with pytest.raises(ValueError):
            env.set("api", "GOOD", "two\nlines")
        assert "install_file" not in remote.call_names()

    def test_remove(self, remote):
        remote.files["/stacks/myapp/api.env"] = "A=1\nB=2\n"
        env = EnvironmentManager(remote)
        assert env.remove("api", "A") is True
        assert remote.files["/stacks/myapp/api.env"] == "B=2\n"

    def test_remove_missing_key_does_not_write(self, remote):
        remote.files["/stacks/myapp/api.env"] = "A=1\n"
        assert EnvironmentManager(remote).remove("api", "Z") is False
        assert "install_file" not in remote.call_names()

    def test_get_missing_file(self, remote):
        assert EnvironmentManager(remote).get("api") == {}

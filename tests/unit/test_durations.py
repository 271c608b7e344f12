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
Unit tests for duration strings.
"""
import pytest

from ssd.UTILS.durations import parse_duration


@pytest.mark.parametrize("value,expected", [
    ("30s", 30.0),
    ("1m30s", 90.0),
    ("2h", 7200.0),
    ("500ms", 0.5),
    ("1.5s", 1.5),
    ("45", 45.0),
    (10, 10.0),
])
def test_parse_duration(value, expected):
    assert parse_duration(value) == pytest.approx(expected)


@pytest.mark.parametrize("value", ["", "soon", "10x", "s10", "10s junk"])
def test_parse_duration_invalid(value):
    with pytest.raises(ValueError):
        parse_duration(value)


@pytest.mark.parametrize("value", ["45", "0.5", 30])
def test_parse_duration_requires_unit(value):
    with pytest.raises(ValueError, match="no unit"):
        parse_duration(value, require_unit=True)


def test_parse_duration_with_unit_when_required():
    assert parse_duration("1m30s", require_unit=True) == 90.0

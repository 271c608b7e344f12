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
Unit tests for local process execution.
"""
import sys

import pytest

from ssd.RUNNERS.command_executor import SubprocessExecutor
from ssd.exceptions import DeadlineExceeded, RemoteCommandError


class TestSubprocessExecutor:
    """Tests for SubprocessExecutor."""

    def test_run_captures_stdout(self):
        out = SubprocessExecutor().run([sys.executable, "-c", "print('hello')"], timeout=30)
        assert out.strip() == "hello"

    def test_run_passes_input(self):
        code = "import sys; sys.stdout.write(sys.stdin.read().upper())"
        assert SubprocessExecutor().run([sys.executable, "-c", code], timeout=30, input="abc") == "ABC"

    def test_run_nonzero_exit(self):
        code = "import sys; sys.stderr.write('boom'); sys.exit(3)"
        with pytest.raises(RemoteCommandError) as excinfo:
            SubprocessExecutor().run([sys.executable, "-c", code], timeout=30)
        assert excinfo.value.returncode == 3
        assert "boom" in excinfo.value.stderr

    def test_run_deadline(self):
        with pytest.raises(DeadlineExceeded) as excinfo:
            SubprocessExecutor().run([sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5)
        assert excinfo.value.timeout == 0.5

    def test_run_interactive_deadline(self):
        with pytest.raises(DeadlineExceeded):
            SubprocessExecutor().run_interactive(
                [sys.executable, "-c", "import time; time.sleep(30)"], timeout=0.5
            )

    def test_run_interactive_failure(self):
        with pytest.raises(RemoteCommandError):
            SubprocessExecutor().run_interactive([sys.executable, "-c", "raise SystemExit(2)"], timeout=30)

    def test_run_pipeline(self, tmp_path):
        target = tmp_path / "out.txt"
        producer = [sys.executable, "-c", "print('piped')"]
        consumer = [sys.executable, "-c",
                    f"import sys; open({str(target)!r}, 'w').write(sys.stdin.read())"]
        SubprocessExecutor().run_pipeline(producer, consumer, timeout=30)
        assert target.read_text().strip() == "piped"

    def test_run_pipeline_producer_failure(self):
        producer = [sys.executable, "-c", "raise SystemExit(4)"]
        consumer = [sys.executable, "-c", "import sys; sys.stdin.read()"]
        with pytest.raises(RemoteCommandError) as excinfo:
            SubprocessExecutor().run_pipeline(producer, consumer, timeout=30)
        assert excinfo.value.returncode == 4

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
Execution of local commands (ssh, git) with deadlines.

Everything SSD does on the remote host goes through ``ssh``, so this module is
the only place where processes are spawned. Tests swap in their own
CommandExecutor.
"""
import logging
import shlex
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional

from ..exceptions import DeadlineExceeded, RemoteCommandError

logger = logging.getLogger(__name__)


class CommandExecutor(ABC):
    """
    Runs a command line and either captures or streams its output.
    """

    @abstractmethod
    def run(self, argv: List[str], timeout: float, input: Optional[str] = None) -> str:
        """
        Runs a command and returns its stdout.

        Args:
            argv (List[str]): Command and arguments.
            timeout (float): Seconds before the process is killed.
            input (Optional[str]): Text written to the process's stdin.

        Returns:
            str: Captured stdout.

        Raises:
            RemoteCommandError: On a non-zero exit status.
            DeadlineExceeded: When the deadline elapses.
        """

    @abstractmethod
    def run_interactive(self, argv: List[str], timeout: float) -> None:
        """
        Runs a command with stdout and stderr passed through to the terminal.
        """

    @abstractmethod
    def run_pipeline(self, producer: List[str], consumer: List[str], timeout: float) -> None:
        """
        Pipes the stdout of ``producer`` into the stdin of ``consumer``.
        """


class SubprocessExecutor(CommandExecutor):
    """
    CommandExecutor backed by ``subprocess``.
    """

    def run(self, argv: List[str], timeout: float, input: Optional[str] = None) -> str:
        command = shlex.join(argv)
        logger.debug("run: %s", command)
        process = subprocess.Popen(
            argv,
            stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            # Avoid shell=True for security reasons (CWE-78)
            shell=False,
        )
        try:
            stdout, stderr = process.communicate(input=input, timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill(process)
            raise DeadlineExceeded(command, timeout)

        if process.returncode != 0:
            raise RemoteCommandError(command, process.returncode, stderr or stdout)
        return stdout

    def run_interactive(self, argv: List[str], timeout: float) -> None:
        command = shlex.join(argv)
        logger.debug("stream: %s", command)
        process = subprocess.Popen(argv, shell=False)
        try:
            process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill(process)
            raise DeadlineExceeded(command, timeout)
        if process.returncode != 0:
            raise RemoteCommandError(command, process.returncode)

    def run_pipeline(self, producer: List[str], consumer: List[str], timeout: float) -> None:
        command = f"{shlex.join(producer)} | {shlex.join(consumer)}"
        logger.debug("pipeline: %s", command)
        source = subprocess.Popen(producer, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
        sink = subprocess.Popen(consumer, stdin=source.stdout, stderr=subprocess.PIPE)
        # Let the producer see SIGPIPE if the consumer exits early.
        source.stdout.close()
        try:
            _, sink_err = sink.communicate(timeout=timeout)
            source.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            self._kill(sink)
            self._kill(source)
            raise DeadlineExceeded(command, timeout)

        source_err = source.stderr.read().decode(errors="replace") if source.stderr else ""
        if source.stderr:
            source.stderr.close()
        if source.returncode != 0:
            raise RemoteCommandError(shlex.join(producer), source.returncode, source_err)
        if sink.returncode != 0:
            raise RemoteCommandError(
                shlex.join(consumer), sink.returncode,
                sink_err.decode(errors="replace") if sink_err else "",
            )

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        """
        Terminates a process, killing it if it does not exit promptly.
        """
        process.terminate()
        try:
            process.wait(timeout=5)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

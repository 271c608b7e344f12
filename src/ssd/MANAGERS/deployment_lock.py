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
Cross-process deployment lock, one per stack path.

The lock is an exclusive lock on a file in the local temp directory whose name
is derived from a hash of the stack path, so every invocation naming the same
stack contends for the same file and different stacks never do.
"""
import hashlib
import logging
import os
import tempfile
from typing import Callable, Optional

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from ..exceptions import LockTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 300.0
POLL_INTERVAL = 0.05

if os.name == "nt":
    import msvcrt

    def _try_lock(fd: int) -> bool:
        try:
            msvcrt.locking(fd, msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    def _unlock(fd: int) -> None:
        os.lseek(fd, 0, os.SEEK_SET)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _try_lock(fd: int) -> bool:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            return False
        return True

    def _unlock(fd: int) -> None:
        fcntl.flock(fd, fcntl.LOCK_UN)


def lock_path(stack_path: str, lock_dir: Optional[str] = None) -> str:
    """
    Maps a stack path to its lock file.
    """
    digest = hashlib.sha256(stack_path.encode("utf-8")).hexdigest()
    return os.path.join(lock_dir or tempfile.gettempdir(), f"ssd-lock-{digest[:16]}")


class DeploymentLock:
    """
    Exclusive lock on one stack, with a bounded wait.

    Use ``acquire()`` for a release function, or the lock as a context manager.
    """

    def __init__(self,
                 stack_path: str,
                 timeout: float = DEFAULT_LOCK_TIMEOUT,
                 interval: float = POLL_INTERVAL,
                 lock_dir: Optional[str] = None):
        self.stack_path = stack_path
        self.timeout = timeout
        self.interval = interval
        self.path = lock_path(stack_path, lock_dir)
        self._release: Optional[Callable[[], None]] = None

    def acquire(self) -> Callable[[], None]:
        """
        Blocks until the lock is held or the timeout elapses.

        Returns:
            Callable[[], None]: Releases the lock. Calling it again does nothing.

        Raises:
            LockTimeoutError: If another process held the lock for the whole timeout.
        """
        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o600)

        retryer = Retrying(
            stop=stop_after_delay(self.timeout),
            wait=wait_fixed(self.interval),
            retry=retry_if_result(lambda locked: not locked),
        )
        try:
            retryer(_try_lock, fd)
        except RetryError:
            os.close(fd)
            raise LockTimeoutError(self.stack_path, self.timeout) from None
        except OSError:
            os.close(fd)
            raise

        logger.debug("acquired deployment lock %s for %s", self.path, self.stack_path)
        released = False

        def release() -> None:
            nonlocal released
            if released:
                return
            released = True
            try:
                _unlock(fd)
            except OSError as e:
                logger.warning("failed to unlock %s: %s", self.path, e)
            try:
                os.close(fd)
            except OSError as e:
                logger.warning("failed to close lock file %s: %s", self.path, e)

        return release

    def __enter__(self) -> "DeploymentLock":
        self._release = self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._release is not None:
            self._release()
            self._release = None

# lock.py -- Locks coordinating housekeeping runs
# Copyright (C) 2025 Jelmer Vernooij <jelmer@jelmer.uk>
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# gitmaint is dual-licensed under the Apache License, Version 2.0 and the GNU
# General Public License as published by the Free Software Foundation; version 2.0
# or (at your option) any later version. You can redistribute it and/or
# modify it under the terms of either of these two licenses.
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#
# You should have received a copy of the licenses; if not, see
# <http://www.gnu.org/licenses/> for a copy of the GNU General Public License
# and <http://www.apache.org/licenses/LICENSE-2.0> for a copy of the Apache
# License, Version 2.0.
#

"""Locks coordinating housekeeping runs.

Two locks keep housekeeping runs from overlapping:

``gc.pid``
    Records ``"<pid> <hostname>"`` of the process running gc. It is
    written through ``gc.pid.lock`` and deleted when the run finishes. A
    record is ignored once it is older than twelve hours, or when it names
    a process on this host that no longer exists. A record from another
    host is trusted until it goes stale, since the process cannot be
    probed from here.

``maintenance.lock``
    Held in the object directory for the duration of a maintenance run
    and always rolled back; it carries no content.

:class:`LockCoordinator` is the interface the gc orchestrator talks to, so
another locking scheme can be substituted without touching callers.
"""

__all__ = [
    "GC_PID_STALE_SECONDS",
    "LockCoordinator",
    "LockHolder",
    "MaintenanceLock",
    "PidFileLock",
    "get_hostname",
    "parse_pid_file",
    "pid_is_alive",
]

import logging
import os
import socket
import sys
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from .file import FileLocked, GitFile, _GitFile

logger = logging.getLogger(__name__)

GC_PID_STALE_SECONDS = 12 * 3600


@dataclass(frozen=True)
class LockHolder:
    """Process recorded as holding a lock."""

    hostname: str
    pid: int


def get_hostname() -> str:
    """Return the name of this host as recorded in lock files."""
    try:
        return socket.gethostname()
    except OSError:
        return "unknown"


def _win32_pid_is_alive(pid: int) -> bool:
    import ctypes

    PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
    STILL_ACTIVE = 259
    ERROR_ACCESS_DENIED = 5

    kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
    handle = kernel32.OpenProcess(PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
    if not handle:
        return kernel32.GetLastError() == ERROR_ACCESS_DENIED
    try:
        exit_code = ctypes.c_ulong()
        if not kernel32.GetExitCodeProcess(handle, ctypes.byref(exit_code)):
            return True
        return exit_code.value == STILL_ACTIVE
    finally:
        kernel32.CloseHandle(handle)


def pid_is_alive(pid: int) -> bool:
    """Check whether a process with the given pid exists on this host.

    A process we are not allowed to signal still counts as alive.
    """
    if pid <= 0:
        return False
    if sys.platform == "win32":
        return _win32_pid_is_alive(pid)
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def parse_pid_file(contents: bytes) -> LockHolder | None:
    """Parse the contents of a ``gc.pid`` file.

    Returns:
      The recorded holder, or None if the contents are unusable
    """
    fields = contents.split(None, 1)
    if len(fields) != 2:
        return None
    try:
        pid = int(fields[0])
    except ValueError:
        return None
    hostname = fields[1].split()[0]
    if pid < 0:
        return None
    return LockHolder(hostname=hostname.decode("utf-8", "replace"), pid=pid)


class LockCoordinator(ABC):
    """Mutual exclusion between gc runs."""

    @property
    @abstractmethod
    def held(self) -> bool:
        """Whether this process currently holds the lock."""

    @abstractmethod
    def acquire(self, force: bool = False) -> LockHolder | None:
        """Try to take the lock.

        Taking a lock that is already held by this object succeeds.

        Args:
          force: Take the lock even if another live process holds it

        Returns:
          None when the lock was taken, otherwise the live holder
        """

    @abstractmethod
    def release(self) -> None:
        """Give up the lock; a no-op when it is not held."""


class PidFileLock(LockCoordinator):
    """The ``gc.pid`` lock.

    Args:
      path: Path of the ``gc.pid`` file
      hostname: Name of this host, defaults to :func:`get_hostname`
      pid: Process id to record, defaults to the current process
      is_alive: Liveness probe for pids on this host
      now: Clock used to judge staleness
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        hostname: str | None = None,
        pid: int | None = None,
        is_alive: Callable[[int], bool] = pid_is_alive,
        now: Callable[[], float] = time.time,
    ) -> None:
        self.path = os.fspath(path)
        self.hostname = get_hostname() if hostname is None else hostname
        self.pid = os.getpid() if pid is None else pid
        self._is_alive = is_alive
        self._now = now
        self._held = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"

    @property
    def held(self) -> bool:
        return self._held

    def read_holder(self) -> LockHolder | None:
        """Return the holder recorded in the pid file if it is still live.

        A record older than :data:`GC_PID_STALE_SECONDS`, an unreadable record
        and a record naming a dead process on this host are all ignored.
        """
        try:
            st = os.stat(self.path)
        except FileNotFoundError:
            return None
        if self._now() - st.st_mtime > GC_PID_STALE_SECONDS:
            logger.debug("ignoring stale %s", self.path)
            return None
        try:
            with open(self.path, "rb") as f:
                holder = parse_pid_file(f.read())
        except FileNotFoundError:
            return None
        if holder is None:
            return None
        if holder.hostname != self.hostname:
            return holder
        if self._is_alive(holder.pid):
            return holder
        logger.debug("ignoring %s left by dead process %d", self.path, holder.pid)
        return None

    def acquire(self, force: bool = False) -> LockHolder | None:
        """Take the gc lock.

        Raises:
          FileLocked: If ``gc.pid.lock`` itself is held by another process
        """
        if self._held:
            return None
        f = GitFile(self.path, "wb")
        assert isinstance(f, _GitFile)
        try:
            if not force:
                holder = self.read_holder()
                if holder is not None:
                    f.abort()
                    return holder
            f.write(f"{self.pid} {self.hostname}".encode())
            f.close()
        except BaseException:
            f.abort()
            raise
        self._held = True
        return None

    def release(self) -> None:
        if not self._held:
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        self._held = False


class MaintenanceLock:
    """The lock held around a maintenance run.

    Args:
      objects_dir: Object directory the lock file is created in
    """

    def __init__(self, objects_dir: str | os.PathLike[str]) -> None:
        self.path = os.path.join(os.fspath(objects_dir), "maintenance")
        self._file: _GitFile | None = None

    @property
    def lockfilename(self) -> str:
        """Path of the lock file."""
        return self.path + ".lock"

    @property
    def held(self) -> bool:
        return self._file is not None

    def acquire(self) -> bool:
        """Take the lock.

        Returns:
          False if another maintenance run holds it
        """
        if self._file is not None:
            return True
        try:
            f = GitFile(self.path, "wb")
        except FileLocked:
            return False
        assert isinstance(f, _GitFile)
        self._file = f
        return True

    def release(self) -> None:
        """Roll the lock back; nothing is ever written."""
        if self._file is not None:
            self._file.abort()
            self._file = None

# hooks.py -- for dealing with git hooks
# Copyright (C) 2012-2013 Jelmer Vernooij and others.
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

"""Access to hooks."""

__all__ = [
    "Hook",
    "PreAutoGcShellHook",
    "ShellHook",
]

import logging
import os
import subprocess

from .errors import HookError

logger = logging.getLogger(__name__)


class Hook:
    """Generic hook object."""

    def execute(self, *args: str) -> None:
        """Execute the hook with the given args.

        Args:
          args: argument list to hook
        Raises:
          HookError: hook execution failure
        """
        raise NotImplementedError(self.execute)


class ShellHook(Hook):
    """Hook by executable file.

    Implements standard githooks(5) [0]:

    [0] http://www.kernel.org/pub/software/scm/git/docs/githooks.html
    """

    def __init__(self, name: str, path: str, numparam: int, cwd: str | None = None) -> None:
        """Setup shell hook definition.

        Args:
          name: name of hook for error messages
          path: absolute path to executable file
          numparam: number of requirements parameters
          cwd: working directory to run the hook in
        """
        self.name = name
        self.filepath = path
        self.numparam = numparam
        self.cwd = cwd

    def exists(self) -> bool:
        """Check whether the hook is installed and executable."""
        return os.path.isfile(self.filepath) and os.access(self.filepath, os.X_OK)

    def execute(self, *args: str) -> None:
        """Execute the hook with given args.

        A hook that is not installed succeeds silently.
        """
        if len(args) != self.numparam:
            raise HookError(
                f"Hook {self.name} executed with wrong number of args. "
                f"Expected {self.numparam}. Saw {len(args)}. {args}"
            )

        if not self.exists():
            return

        try:
            ret = subprocess.call([self.filepath, *args], cwd=self.cwd)
        except OSError as e:
            logger.debug("Unable to run hook %s: %s", self.name, e)
            return
        if ret != 0:
            raise HookError(f"Hook {self.name} exited with non-zero status {ret}")


class PreAutoGcShellHook(ShellHook):
    """pre-auto-gc shell hook.

    Runs before an automatic gc; a non-zero exit vetoes it.
    """

    def __init__(self, hooks_dir: str, cwd: str | None = None) -> None:
        """Initialize the hook.

        Args:
          hooks_dir: Directory holding the repository's hooks
          cwd: Working directory to run the hook in
        """
        filepath = os.path.join(hooks_dir, "pre-auto-gc")
        super().__init__("pre-auto-gc", filepath, 0, cwd=cwd)

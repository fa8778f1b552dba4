# command.py -- Running git subcommands
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

"""Running git subcommands.

Writing packs, commit-graphs and multi-pack-indexes, expiring reflogs and
fetching are all left to ``git`` itself. :class:`GitRunner` is the single
place those subprocesses are started, so tests can substitute a recording
runner.
"""

__all__ = [
    "CommandFailed",
    "GitRunner",
]

import logging
import os
import subprocess
from collections.abc import Sequence

logger = logging.getLogger(__name__)


class CommandFailed(Exception):
    """A git subcommand that must succeed exited with a failure."""

    def __init__(self, args: Sequence[str], returncode: int | None = None) -> None:
        """Initialize CommandFailed.

        Args:
          args: Arguments passed to git, starting with the subcommand
          returncode: Exit status of the subcommand, if it ran
        """
        self.argv = list(args)
        self.returncode = returncode
        super().__init__(f"failed to run {self.command}")

    @property
    def command(self) -> str:
        """Name of the git subcommand that failed."""
        return self.argv[0] if self.argv else "git"


class GitRunner:
    """Runs git subcommands against a repository.

    Args:
      path: Directory the subcommands run in
      git: Name or path of the git executable
      env: Extra environment variables for the subcommands
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        git: str = "git",
        env: dict[str, str] | None = None,
    ) -> None:
        self.path = os.fspath(path)
        self.git = git
        self.env = env

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"

    def _environ(self) -> dict[str, str] | None:
        if not self.env:
            return None
        environ = dict(os.environ)
        environ.update(self.env)
        return environ

    def _argv(self, args: Sequence[str]) -> list[str]:
        return [self.git, *args]

    def run(self, args: Sequence[str], stdin: bytes | None = None) -> int:
        """Run a git subcommand to completion.

        Args:
          args: Arguments for git, starting with the subcommand name
          stdin: Optional data fed to the subcommand's standard input

        Returns:
          Exit status of the subcommand; -1 when it could not be started
        """
        logger.debug("Running git %s", " ".join(args))
        try:
            proc = subprocess.run(
                self._argv(args),
                cwd=self.path,
                env=self._environ(),
                input=stdin,
            )
        except OSError as e:
            logger.error("failed to start 'git %s': %s", args[0], e)
            return -1
        return proc.returncode

    def start(self, args: Sequence[str]) -> "subprocess.Popen[bytes]":
        """Start a git subcommand with a pipe to its standard input.

        The caller owns the process: it must close ``stdin`` and wait.

        Raises:
          OSError: If the subcommand could not be started
        """
        logger.debug("Starting git %s", " ".join(args))
        return subprocess.Popen(
            self._argv(args),
            cwd=self.path,
            env=self._environ(),
            stdin=subprocess.PIPE,
        )

    def read(self, args: Sequence[str]) -> bytes:
        """Run a git subcommand and return its standard output.

        Raises:
          CommandFailed: If the subcommand exits with a failure
        """
        logger.debug("Reading from git %s", " ".join(args))
        try:
            proc = subprocess.run(
                self._argv(args),
                cwd=self.path,
                env=self._environ(),
                stdout=subprocess.PIPE,
            )
        except OSError as e:
            raise CommandFailed(args) from e
        if proc.returncode != 0:
            raise CommandFailed(args, proc.returncode)
        return proc.stdout

    def open_batch(self, args: Sequence[str]) -> "subprocess.Popen[bytes]":
        """Start a long-running git subcommand speaking over stdin/stdout.

        Used for ``cat-file --batch`` style commands.

        Raises:
          OSError: If the subcommand could not be started
        """
        logger.debug("Opening git %s", " ".join(args))
        return subprocess.Popen(
            self._argv(args),
            cwd=self.path,
            env=self._environ(),
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
        )

# repo.py -- For dealing with git repositories.
# Copyright (C) 2007 James Westby <jw+debian@jameswestby.net>
# Copyright (C) 2008-2013 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Repository access.

A :class:`Repo` locates the control directory, the common directory (which
differs for linked worktrees), the object store and the configuration of a
repository on disk, and answers the handful of questions about repository
format that decide what housekeeping is allowed to do.
"""

__all__ = [
    "COMMONDIR",
    "CONTROLDIR",
    "OBJECTDIR",
    "REFSDIR",
    "Repo",
    "read_gitfile",
]

import os
from types import TracebackType
from typing import BinaryIO

from .config import Config, ConfigFile, StackedConfig
from .errors import NotGitRepository
from .object_store import DiskObjectStore

CONTROLDIR = ".git"
OBJECTDIR = "objects"
REFSDIR = "refs"
COMMONDIR = "commondir"

BASE_DIRECTORIES = [
    [REFSDIR],
    [REFSDIR, "tags"],
    [REFSDIR, "heads"],
    ["hooks"],
    ["info"],
    [OBJECTDIR],
    [OBJECTDIR, "info"],
    [OBJECTDIR, "pack"],
]


def read_gitfile(f: BinaryIO) -> str:
    """Read a ``.git`` file.

    The first line of the file should start with "gitdir: "

    Args:
      f: File-like object to read from
    Returns: A path
    """
    cs = f.read()
    if not cs.startswith(b"gitdir: "):
        raise ValueError("Expected file to start with 'gitdir: '")
    return cs[len(b"gitdir: ") :].rstrip(b"\r\n").decode("utf-8")


class Repo:
    """A git repository backed by local disk.

    To open an existing repository, call the constructor with
    the path of the repository.

    To create a new repository, use the Repo.init class method.

    Attributes:
      path: Path to the working copy (if it exists) or repository control
        directory (if the repository is bare)
      bare: Whether this is a bare repository
    """

    path: str
    bare: bool
    object_store: DiskObjectStore

    def __init__(self, root: str | os.PathLike[str], bare: bool | None = None) -> None:
        """Open a repository on disk.

        Args:
          root: Path to the repository's root.
          bare: True if this is a bare repository.

        Raises:
          NotGitRepository: If no repository is found at ``root``
        """
        root = os.fspath(root)
        hidden_path = os.path.join(root, CONTROLDIR)
        if bare is None:
            if os.path.isfile(hidden_path) or os.path.isdir(
                os.path.join(hidden_path, OBJECTDIR)
            ):
                bare = False
            elif os.path.isdir(os.path.join(root, OBJECTDIR)) and os.path.isdir(
                os.path.join(root, REFSDIR)
            ):
                bare = True
            else:
                raise NotGitRepository(f"No git repository was found at {root}")

        self.bare = bare
        if bare is False:
            if os.path.isfile(hidden_path):
                with open(hidden_path, "rb") as f:
                    path = read_gitfile(f)
                self._controldir = os.path.join(root, path)
            else:
                self._controldir = hidden_path
        else:
            self._controldir = root
        try:
            with open(os.path.join(self._controldir, COMMONDIR), "rb") as f:
                self._commondir = os.path.join(
                    self._controldir, os.fsdecode(f.read().rstrip(b"\r\n"))
                )
        except FileNotFoundError:
            self._commondir = self._controldir
        self.path = root

        config = self.get_config()
        self.object_store = DiskObjectStore(
            os.path.join(self._commondir, OBJECTDIR),
            self._object_format_hex_length(config),
            use_commit_graph=bool(config.get_boolean("core", "commitGraph", True)),
        )

    @staticmethod
    def _object_format_hex_length(config: ConfigFile) -> int:
        object_format = config.get_str("extensions", "objectFormat", "sha1")
        if object_format is not None and object_format.lower() == "sha256":
            return 64
        return 40

    def __repr__(self) -> str:
        return f"<Repo at {self.path!r}>"

    @classmethod
    def discover(cls, start: str | os.PathLike[str] = ".") -> "Repo":
        """Iterate parent directories to discover a repository.

        Return a Repo object for the first parent directory that looks like a
        Git repository.

        Args:
          start: The directory to start discovery from (defaults to '.')
        """
        path = os.path.abspath(start)
        while True:
            try:
                return cls(path)
            except NotGitRepository:
                new_path, _tail = os.path.split(path)
                if new_path == path:  # Root reached
                    break
                path = new_path
        raise NotGitRepository(f"No git repository was found at {os.fspath(start)}")

    def controldir(self) -> str:
        """Return the path of the control directory."""
        return self._controldir

    def commondir(self) -> str:
        """Return the path of the common directory.

        For a main working tree, it is identical to controldir().

        For a linked working tree, it is the control directory of the
        main working tree. Housekeeping state (``gc.pid``, ``gc.log``) lives
        here so that every worktree of a repository sees the same lock.
        """
        return self._commondir

    def get_config(self) -> ConfigFile:
        """Retrieve the repository's own config file.

        Returns: `ConfigFile` object for the ``.git/config`` file.
        """
        path = os.path.join(self._commondir, "config")
        try:
            return ConfigFile.from_path(path)
        except FileNotFoundError:
            ret = ConfigFile()
            ret.path = path
            return ret

    def get_config_stack(self) -> StackedConfig:
        """Return the repository config stacked on the user and system config."""
        repo_config = self.get_config()
        backends: list[Config] = [repo_config]
        backends.extend(StackedConfig.default_backends())
        return StackedConfig(backends)

    def hooks_dir(self, config: Config | None = None) -> str:
        """Return the directory hooks are run from, honouring core.hooksPath."""
        if config is None:
            config = self.get_config_stack()
        hooks_path = config.get_str("core", "hooksPath")
        if hooks_path:
            return os.path.join(self.path, os.path.expanduser(hooks_path))
        return os.path.join(self._commondir, "hooks")

    def remotes(self, config: Config | None = None) -> list[str]:
        """Names of the configured remotes, in configuration order."""
        if config is None:
            config = self.get_config_stack()
        return [
            section[1].decode("utf-8", "replace")
            for section in config.sections()
            if len(section) == 2 and section[0].lower() == b"remote"
        ]

    def has_precious_objects(self, config: Config | None = None) -> bool:
        """Check whether the repository forbids deleting objects."""
        if config is None:
            config = self.get_config_stack()
        return bool(config.get_boolean("extensions", "preciousObjects", False))

    def has_promisor_remote(self, config: Config | None = None) -> bool:
        """Check whether objects may be lazily fetched from a promisor remote."""
        if config is None:
            config = self.get_config_stack()
        if config.get_str("extensions", "partialClone"):
            return True
        return any(
            config.get_boolean(("remote", name), "promisor", False)
            for name in self.remotes(config)
        )

    def close(self) -> None:
        """Close any files opened by this repository."""
        self.object_store.close()

    def __enter__(self) -> "Repo":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    @classmethod
    def init(
        cls, path: str | os.PathLike[str], *, mkdir: bool = False, bare: bool = False
    ) -> "Repo":
        """Create a new repository.

        Args:
          path: Path in which to create the repository
          mkdir: Whether to create the directory
          bare: Whether to create a bare repository
        Returns: `Repo` instance
        """
        path = os.fspath(path)
        if mkdir:
            os.mkdir(path)
        controldir = path if bare else os.path.join(path, CONTROLDIR)
        if not bare:
            os.mkdir(controldir)
        for d in BASE_DIRECTORIES:
            os.mkdir(os.path.join(controldir, *d))
        with open(os.path.join(controldir, "HEAD"), "wb") as f:
            f.write(b"ref: refs/heads/master\n")
        cf = ConfigFile()
        cf.set("core", "repositoryformatversion", "0")
        cf.set("core", "filemode", True)
        cf.set("core", "bare", bare)
        cf.write_to_path(os.path.join(controldir, "config"))
        return cls(path, bare=bare)

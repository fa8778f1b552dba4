# object_store.py -- Object store inspection for housekeeping
# Copyright (C) 2008-2013 Jelmer Vernooij <jelmer@jelmer.uk>
#                         and others
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

"""Read-only inspection of an on-disk object store.

Nothing here writes objects; that is left to ``git``. The queries answer
the questions housekeeping asks before deciding what to run: how many
loose objects there are (estimated or counted), which packs exist and how
large they are, which packs the multi-pack-index covers and which commits
the commit-graph already knows about.
"""

__all__ = [
    "INFODIR",
    "PACKDIR",
    "DiskObjectStore",
    "PackInfo",
]

import logging
import os
from collections.abc import Iterator
from dataclasses import dataclass

from .commit_graph import CommitGraph, load_commit_graph
from .midx import MultiPackIndex, load_midx
from .pack import UnsupportedPackIndex, read_pack_index_object_count

logger = logging.getLogger(__name__)

INFODIR = "info"
PACKDIR = "pack"

# Loose objects are sampled from this shard only.
SAMPLE_SHARD = "17"

_HEXDIGITS = frozenset("0123456789abcdef")


def _is_hex(name: str) -> bool:
    return all(c in _HEXDIGITS for c in name)


@dataclass(frozen=True)
class PackInfo:
    """A pack file as seen when the pack directory was listed.

    Attributes:
      name: File name of the pack, e.g. ``pack-<hash>.pack``
      path: Full path of the ``.pack`` file
      size: Size of the ``.pack`` file in bytes
      index_size: Size of the matching ``.idx`` file in bytes
      local: Whether the pack lives in this store rather than an alternate
      keep: Whether a ``.keep`` file protects the pack
      mtime: Modification time of the ``.pack`` file
    """

    name: str
    path: str
    size: int
    index_size: int
    local: bool = True
    keep: bool = False
    mtime: float = 0.0

    @property
    def basename(self) -> str:
        """Pack file name without the ``.pack`` extension."""
        return self.name[: -len(".pack")]

    @property
    def index_path(self) -> str:
        """Full path of the pack's ``.idx`` file."""
        return self.path[: -len(".pack")] + ".idx"


class DiskObjectStore:
    """Git-style object store that exists on disk."""

    def __init__(
        self,
        path: str | os.PathLike[str],
        object_format_hex_length: int = 40,
        *,
        use_commit_graph: bool = True,
    ) -> None:
        """Open an object store.

        Args:
          path: Path of the object store (the ``objects`` directory)
          object_format_hex_length: Length of hex object ids (40 or 64)
          use_commit_graph: Whether commit-graph files are consulted
        """
        self.path = os.fspath(path)
        self.pack_dir = os.path.join(self.path, PACKDIR)
        self.hex_length = object_format_hex_length
        self.use_commit_graph = use_commit_graph
        self._alternates: list["DiskObjectStore"] | None = None
        self._midx: MultiPackIndex | None = None
        self._midx_loaded = False

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}({self.path!r})>"

    @property
    def midx_path(self) -> str:
        """Path of the multi-pack-index file."""
        return os.path.join(self.pack_dir, "multi-pack-index")

    @property
    def commit_graph_chain_path(self) -> str:
        """Path of the split commit-graph chain file."""
        return os.path.join(self.path, INFODIR, "commit-graphs", "commit-graph-chain")

    @property
    def loose_pack_prefix(self) -> str:
        """Base name for packs written from loose objects."""
        return os.path.join(self.pack_dir, "loose")

    def _read_alternate_paths(self) -> Iterator[str]:
        try:
            f = open(os.path.join(self.path, INFODIR, "alternates"), "rb")
        except FileNotFoundError:
            return
        with f:
            for line in f.read().splitlines():
                line = line.strip()
                if not line or line.startswith(b"#"):
                    continue
                path = os.fsdecode(line)
                if not os.path.isabs(path):
                    path = os.path.join(self.path, path)
                yield path

    @property
    def alternates(self) -> list["DiskObjectStore"]:
        """Object stores listed in ``info/alternates``."""
        if self._alternates is None:
            self._alternates = [
                DiskObjectStore(path, self.hex_length)
                for path in self._read_alternate_paths()
            ]
        return self._alternates

    def close(self) -> None:
        """Forget cached pack and index state.

        Called before collaborators rewrite packs, so that later queries see
        the new state.
        """
        self._midx = None
        self._midx_loaded = False
        self._alternates = None

    # Loose objects

    def _loose_name_ok(self, name: str) -> bool:
        return len(name) == self.hex_length - 2 and _is_hex(name)

    def too_many_loose_objects(self, auto_threshold: int) -> bool:
        """Estimate whether there are more loose objects than the threshold.

        Only one shard directory is inspected; object ids are uniformly
        distributed, so more than ``ceil(auto_threshold / 256)`` entries in it
        means the store as a whole is likely over the threshold.

        Args:
          auto_threshold: The ``gc.auto`` value
        """
        # ceil(auto_threshold / 256)
        limit = (auto_threshold + 255) // 256
        try:
            names = os.listdir(os.path.join(self.path, SAMPLE_SHARD))
        except (FileNotFoundError, NotADirectoryError):
            return False
        count = 0
        for name in names:
            if not self._loose_name_ok(name):
                continue
            count += 1
            if count > limit:
                return True
        return False

    def iter_loose_objects(self) -> Iterator[bytes]:
        """Iterate over the hex ids of all loose objects."""
        for i in range(256):
            shard = f"{i:02x}"
            try:
                names = os.listdir(os.path.join(self.path, shard))
            except (FileNotFoundError, NotADirectoryError):
                continue
            for name in sorted(names):
                if self._loose_name_ok(name):
                    yield (shard + name).encode("ascii")

    def has_loose_objects(self) -> bool:
        """Check whether there is at least one loose object."""
        for _ in self.iter_loose_objects():
            return True
        return False

    def count_loose_objects(self, limit: int | None = None) -> int:
        """Count loose objects.

        Args:
          limit: Stop counting once this many have been seen

        Returns:
          Number of loose objects, at most ``limit`` when one is given
        """
        count = 0
        for _ in self.iter_loose_objects():
            count += 1
            if limit is not None and count >= limit:
                break
        return count

    # Packs

    def _list_packs(self, local: bool) -> list[PackInfo]:
        try:
            names = set(os.listdir(self.pack_dir))
        except (FileNotFoundError, NotADirectoryError):
            return []
        packs = []
        for name in names:
            if not name.endswith(".pack"):
                continue
            base = name[: -len(".pack")]
            if base + ".idx" not in names:
                # Not fully written yet.
                continue
            path = os.path.join(self.pack_dir, name)
            try:
                st = os.stat(path)
                index_size = os.stat(os.path.join(self.pack_dir, base + ".idx")).st_size
            except FileNotFoundError:
                # Removed by a concurrent repack.
                continue
            packs.append(
                PackInfo(
                    name=name,
                    path=path,
                    size=st.st_size,
                    index_size=index_size,
                    local=local,
                    keep=(base + ".keep") in names,
                    mtime=st.st_mtime,
                )
            )
        packs.sort(key=lambda p: p.mtime, reverse=True)
        return packs

    @property
    def packs(self) -> list[PackInfo]:
        """All packs, local ones first, each group newest first.

        The pack directory is listed afresh on every access.
        """
        ret = self._list_packs(local=True)
        for alternate in self.alternates:
            ret.extend(alternate._list_packs(local=False))
        return ret

    def count_relevant_packs(self) -> int:
        """Count local packs that are not protected by a ``.keep`` file."""
        return sum(1 for p in self.packs if p.local and not p.keep)

    def find_pack_garbage(self) -> list[str]:
        """Find ``.idx`` files whose ``.pack`` is missing.

        These are left behind when a repack races with another process.
        """
        try:
            names = set(os.listdir(self.pack_dir))
        except (FileNotFoundError, NotADirectoryError):
            return []
        return sorted(
            os.path.join(self.pack_dir, name)
            for name in names
            if name.endswith(".idx") and name[: -len(".idx")] + ".pack" not in names
        )

    def clean_pack_garbage(self) -> list[str]:
        """Remove pack garbage.

        Returns:
          The paths that were removed
        """
        removed = []
        for path in self.find_pack_garbage():
            try:
                os.unlink(path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("unable to unlink '%s': %s", path, e.strerror)
                continue
            removed.append(path)
        return removed

    # Auxiliary indexes

    def load_midx(self) -> MultiPackIndex | None:
        """Load the multi-pack-index, or None if there is no usable one."""
        if not self._midx_loaded:
            try:
                self._midx = load_midx(self.midx_path)
            except FileNotFoundError:
                self._midx = None
            except ValueError as e:
                logger.warning("ignoring invalid multi-pack-index: %s", e)
                self._midx = None
            self._midx_loaded = True
        return self._midx

    def load_commit_graph(self) -> CommitGraph:
        """Load the commits recorded in the commit-graph.

        Returns an empty graph when the commit-graph is disabled or missing.
        """
        if not self.use_commit_graph:
            return CommitGraph()
        try:
            return load_commit_graph(self.path)
        except ValueError as e:
            logger.warning("ignoring invalid commit-graph: %s", e)
            return CommitGraph()

    def packs_not_in_midx(self) -> list[PackInfo]:
        """Local packs not covered by the multi-pack-index."""
        midx = self.load_midx()
        return [
            p
            for p in self.packs
            if p.local and (midx is None or not midx.covers(p.name))
        ]

    def approximate_object_count(self) -> int:
        """Approximate number of packed objects.

        Adds the multi-pack-index object count to the index object counts of
        packs it does not cover. Loose objects are not included.
        """
        midx = self.load_midx()
        count = len(midx) if midx is not None else 0
        for pack in self.packs:
            if pack.local and midx is not None and midx.covers(pack.name):
                continue
            try:
                count += read_pack_index_object_count(pack.index_path)
            except FileNotFoundError:
                continue
            except UnsupportedPackIndex as e:
                logger.warning("%s", e)
        return count

# commit_graph.py -- Git commit graph membership lookups
# Copyright (C) 2024 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Git commit graph membership lookups.

The commit-graph task only needs to know which commits are already in
the commit-graph, so this reads the OID Lookup chunk of either a single
``objects/info/commit-graph`` file or every layer listed in
``objects/info/commit-graphs/commit-graph-chain``.

The commit graph format is documented at:
https://git-scm.com/docs/gitformat-commit-graph
"""

__all__ = [
    "COMMIT_GRAPH_SIGNATURE",
    "CommitGraph",
    "find_commit_graph_files",
    "load_commit_graph",
    "read_commit_graph",
]

import binascii
import os
import struct
from collections.abc import Iterable, Iterator
from typing import BinaryIO

COMMIT_GRAPH_SIGNATURE = b"CGPH"
COMMIT_GRAPH_VERSION = 1
HASH_VERSION_SHA1 = 1
HASH_VERSION_SHA256 = 2

CHUNK_OID_FANOUT = b"OIDF"
CHUNK_OID_LOOKUP = b"OIDL"


class CommitGraph:
    """The set of commits recorded in one or more commit-graph layers."""

    def __init__(self, commit_ids: Iterable[bytes] = ()) -> None:
        self._oids: set[bytes] = set(commit_ids)

    def __contains__(self, commit_id: object) -> bool:
        """Check whether a hex commit id is in the graph."""
        return commit_id in self._oids

    def __len__(self) -> int:
        return len(self._oids)

    def __iter__(self) -> Iterator[bytes]:
        return iter(self._oids)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(<{len(self._oids)} commits>)"

    def update(self, other: "CommitGraph") -> None:
        """Add the commits of another layer."""
        self._oids.update(other._oids)

    @classmethod
    def from_file(cls, f: BinaryIO) -> "CommitGraph":
        """Read the commit ids of a single commit-graph file.

        Raises:
            ValueError: If the file is not a valid commit-graph
        """
        header = f.read(8)
        if len(header) < 8:
            raise ValueError("Commit graph file too small")
        if header[:4] != COMMIT_GRAPH_SIGNATURE:
            raise ValueError(f"Invalid commit graph signature: {header[:4]!r}")
        version, hash_version, num_chunks = header[4], header[5], header[6]
        if version != COMMIT_GRAPH_VERSION:
            raise ValueError(f"Unsupported commit graph version: {version}")
        if hash_version == HASH_VERSION_SHA1:
            hash_size = 20
        elif hash_version == HASH_VERSION_SHA256:
            hash_size = 32
        else:
            raise ValueError(f"Unknown hash version: {hash_version}")

        chunks: dict[bytes, int] = {}
        for _ in range(num_chunks + 1):
            entry = f.read(12)
            if len(entry) < 12:
                raise ValueError("Truncated commit graph chunk table")
            (offset,) = struct.unpack(">Q", entry[4:])
            chunks[entry[:4]] = offset

        if CHUNK_OID_FANOUT not in chunks or CHUNK_OID_LOOKUP not in chunks:
            raise ValueError("Commit graph lacks required OID chunks")

        f.seek(chunks[CHUNK_OID_FANOUT] + 255 * 4)
        (num_commits,) = struct.unpack(">L", f.read(4))

        f.seek(chunks[CHUNK_OID_LOOKUP])
        lookup = f.read(num_commits * hash_size)
        if len(lookup) < num_commits * hash_size:
            raise ValueError("Truncated OID lookup chunk")
        return cls(
            binascii.hexlify(lookup[i : i + hash_size])
            for i in range(0, len(lookup), hash_size)
        )


def read_commit_graph(path: str | os.PathLike[str]) -> CommitGraph | None:
    """Read commit graph from file path, or None if it does not exist."""
    try:
        f = open(path, "rb")
    except FileNotFoundError:
        return None
    with f:
        return CommitGraph.from_file(f)


def find_commit_graph_files(objects_dir: str | os.PathLike[str]) -> list[str]:
    """Find the commit-graph files of an object directory.

    Returns the single commit-graph file if there is one, plus every layer
    named in the split commit-graph chain.
    """
    info_dir = os.path.join(os.fspath(objects_dir), "info")
    paths = []
    single = os.path.join(info_dir, "commit-graph")
    if os.path.exists(single):
        paths.append(single)

    graphs_dir = os.path.join(info_dir, "commit-graphs")
    try:
        with open(os.path.join(graphs_dir, "commit-graph-chain"), "rb") as f:
            chain = f.read().split()
    except FileNotFoundError:
        chain = []
    for graph_hash in chain:
        paths.append(os.path.join(graphs_dir, f"graph-{graph_hash.decode('ascii')}.graph"))
    return paths


def load_commit_graph(objects_dir: str | os.PathLike[str]) -> CommitGraph:
    """Load every commit-graph layer of an object directory.

    An object directory without a commit-graph yields an empty graph.
    """
    graph = CommitGraph()
    for path in find_commit_graph_files(objects_dir):
        layer = read_commit_graph(path)
        if layer is not None:
            graph.update(layer)
    return graph

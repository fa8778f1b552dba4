# walk.py -- Bounded history walks for housekeeping decisions
# Copyright (C) 2010 Google, Inc.
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

"""Bounded history walks for housekeeping decisions.

The commit-graph task asks "are there at least N commits the commit-graph
does not know about yet?". Answering it means walking history from every
ref, but only until N such commits have been seen. Objects are read through
a long-running ``git cat-file --batch``.
"""

__all__ = [
    "CatFileReader",
    "ObjectReader",
    "commit_parents",
    "count_commits_not_in_graph",
    "iter_peeled_refs",
    "peel",
]

import collections
import subprocess
from collections.abc import Container, Iterable, Iterator
from types import TracebackType
from typing import Protocol

from .command import GitRunner

# Tags pointing at tags are peeled at most this many times.
MAX_PEEL_DEPTH = 32


class ObjectReader(Protocol):
    """Source of raw objects for a walk."""

    def get_object(self, oid: bytes) -> tuple[bytes, bytes] | None:
        """Return ``(type, body)`` for a hex object id, or None if missing."""
        ...


def _header_value(body: bytes, field: bytes) -> Iterator[bytes]:
    for line in body.split(b"\n"):
        if not line:
            # End of headers.
            return
        if line.startswith(field + b" "):
            yield line[len(field) + 1 :].strip()


def peel(reader: ObjectReader, oid: bytes) -> tuple[bytes, bytes] | None:
    """Follow tags until a non-tag object is reached.

    Returns:
      ``(oid, type)`` of the peeled object, or None if an object is missing
    """
    for _ in range(MAX_PEEL_DEPTH):
        obj = reader.get_object(oid)
        if obj is None:
            return None
        obj_type, body = obj
        if obj_type != b"tag":
            return oid, obj_type
        target = next(_header_value(body, b"object"), None)
        if target is None:
            return None
        oid = target
    return None


def commit_parents(reader: ObjectReader, oid: bytes) -> list[bytes] | None:
    """Return the parents of a commit, or None if it is not a readable commit."""
    obj = reader.get_object(oid)
    if obj is None or obj[0] != b"commit":
        return None
    return list(_header_value(obj[1], b"parent"))


def count_commits_not_in_graph(
    tips: Iterable[bytes],
    reader: ObjectReader,
    in_graph: Container[bytes],
    limit: int,
) -> bool:
    """Check whether at least ``limit`` commits are missing from the commit-graph.

    History is walked from each tip. A parent is counted, and walked
    further, when it is a readable commit, not in the commit-graph and not
    seen before. The count and the set of seen commits are shared across
    all tips and discarded afterwards.

    Args:
      tips: Object ids the refs point at; tags are peeled
      reader: Source of objects
      in_graph: Commit ids already recorded in the commit-graph
      limit: Number of missing commits that answers yes

    Returns:
      True once ``limit`` missing commits have been seen
    """
    seen: set[bytes] = set()
    count = 0
    for tip in tips:
        peeled = peel(reader, tip)
        if peeled is None or peeled[1] != b"commit":
            continue
        parents = commit_parents(reader, peeled[0])
        if parents is None:
            continue
        pending = collections.deque([parents])
        while pending:
            for parent in pending.popleft():
                if parent in in_graph or parent in seen:
                    continue
                grandparents = commit_parents(reader, parent)
                if grandparents is None:
                    continue
                seen.add(parent)
                count += 1
                if count >= limit:
                    return True
                pending.append(grandparents)
    return False


class CatFileReader:
    """Reads objects through ``git cat-file --batch``.

    Use as a context manager so the subprocess is always reaped.
    """

    def __init__(self, runner: GitRunner) -> None:
        self._runner = runner
        self._proc: "subprocess.Popen[bytes] | None" = None

    def __enter__(self) -> "CatFileReader":
        self._proc = self._runner.open_batch(["cat-file", "--batch"])
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        """Stop the ``cat-file`` subprocess."""
        if self._proc is None:
            return
        proc, self._proc = self._proc, None
        assert proc.stdin is not None and proc.stdout is not None
        proc.stdin.close()
        proc.stdout.close()
        proc.wait()

    def get_object(self, oid: bytes) -> tuple[bytes, bytes] | None:
        if self._proc is None:
            raise ValueError("reader is not open")
        stdin, stdout = self._proc.stdin, self._proc.stdout
        assert stdin is not None and stdout is not None
        stdin.write(oid + b"\n")
        stdin.flush()
        header = stdout.readline().split()
        if len(header) != 3:
            # "<oid> missing" or "<oid> ambiguous"
            return None
        size = int(header[2])
        body = stdout.read(size)
        stdout.read(1)
        return header[1], body


def iter_peeled_refs(runner: GitRunner) -> Iterator[bytes]:
    """Iterate over the objects all refs point at, peeling one level of tags."""
    output = runner.read(["for-each-ref", "--format=%(objectname) %(*objectname)"])
    for line in output.splitlines():
        fields = line.split()
        if not fields:
            continue
        yield fields[-1]

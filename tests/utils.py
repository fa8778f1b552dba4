# utils.py -- Test utilities for gitmaint.
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

"""Utility functions common to gitmaint tests.

Nothing here runs git: :class:`RecordingRunner` stands in for
:class:`gitmaint.command.GitRunner` and the ``write_*`` helpers lay out
on-disk files (packs, indexes, loose objects, locks) byte for byte.
"""

__all__ = [
    "FakeProcess",
    "RecordingRunner",
    "make_oid",
    "write_commit_graph",
    "write_gc_pid",
    "write_loose_object",
    "write_midx",
    "write_pack",
]

import binascii
import os
import struct
import time

from gitmaint.command import CommandFailed, GitRunner
from gitmaint.pack import PACK_INDEX_MAGIC


def make_oid(n):
    """Return a hex object id (as bytes) derived from an integer."""
    return b"%040x" % n


class _Pipe:
    """In-memory pipe that keeps what was written after it is closed."""

    def __init__(self, data=b""):
        self._buffer = bytearray(data)
        self._pos = 0
        self.closed = False

    def feed(self, data):
        self._buffer.extend(data)

    def getvalue(self):
        return bytes(self._buffer)

    def write(self, data):
        if self.closed:
            raise ValueError("write to closed pipe")
        self._buffer.extend(data)
        return len(data)

    def flush(self):
        pass

    def readline(self):
        end = self._buffer.find(b"\n", self._pos)
        end = len(self._buffer) if end == -1 else end + 1
        line = bytes(self._buffer[self._pos : end])
        self._pos = end
        return line

    def read(self, size=-1):
        end = len(self._buffer) if size < 0 else self._pos + size
        data = bytes(self._buffer[self._pos : end])
        self._pos += len(data)
        return data

    def close(self):
        self.closed = True


class _BrokenPipe(_Pipe):
    """Pipe whose reader goes away after ``limit`` writes."""

    def __init__(self, limit):
        super().__init__()
        self._limit = limit
        self.writes = 0

    def write(self, data):
        if self.writes >= self._limit:
            raise BrokenPipeError(32, "Broken pipe")
        self.writes += 1
        return super().write(data)


class _CatFileInput(_Pipe):
    """Standard input of a fake ``git cat-file --batch``."""

    def __init__(self, objects, stdout):
        super().__init__()
        self._objects = objects
        self._stdout = stdout

    def write(self, data):
        super().write(data)
        for oid in data.splitlines():
            obj = self._objects.get(oid)
            if obj is None:
                self._stdout.feed(oid + b" missing\n")
            else:
                obj_type, body = obj
                self._stdout.feed(b"%s %s %d\n" % (oid, obj_type, len(body)))
                self._stdout.feed(body + b"\n")
        return len(data)


class FakeProcess:
    """Stand-in for a :class:`subprocess.Popen` started by the runner."""

    def __init__(self, args, returncode=0, stdin=None, stdout=None):
        self.args = args
        self.returncode = returncode
        self.stdin = stdin if stdin is not None else _Pipe()
        self.stdout = stdout
        self.waited = False

    def wait(self, timeout=None):
        self.waited = True
        return self.returncode


class RecordingRunner(GitRunner):
    """Runner that records git invocations instead of running git.

    Return codes are scripted per command prefix: ``returncodes`` maps a
    tuple of leading arguments to an exit status, or to a list of exit
    statuses handed out one call at a time (the last one repeats). The
    longest matching prefix wins; unmatched commands succeed.

    Args:
      path: Directory the commands would run in
      returncodes: Scripted exit statuses
      output: Standard output of ``read`` calls, by command prefix
      objects: Objects served by ``cat-file --batch``, as ``{oid: (type, body)}``
      side_effects: Callables invoked with the arguments of matching ``run``
        calls, to let a command change the repository
    """

    def __init__(
        self, path, returncodes=None, output=None, objects=None, side_effects=None
    ):
        super().__init__(path)
        self.returncodes = dict(returncodes or {})
        self.output = dict(output or {})
        self.objects = dict(objects or {})
        self.side_effects = dict(side_effects or {})
        self.calls = []
        self.processes = []
        self.pipe_limit = None

    def _lookup(self, table, args):
        best = None
        for prefix in table:
            if tuple(args[: len(prefix)]) == tuple(prefix):
                if best is None or len(prefix) > len(best):
                    best = prefix
        return best

    def _returncode(self, args):
        prefix = self._lookup(self.returncodes, args)
        if prefix is None:
            return 0
        code = self.returncodes[prefix]
        if isinstance(code, list):
            if len(code) > 1:
                return code.pop(0)
            return code[0]
        return code

    def commands(self):
        """Return the subcommand name of each recorded call."""
        return [call[0] for call in self.calls]

    def run(self, args, stdin=None):
        args = list(args)
        self.calls.append(args)
        prefix = self._lookup(self.side_effects, args)
        if prefix is not None:
            self.side_effects[prefix](args)
        return self._returncode(args)

    def start(self, args):
        args = list(args)
        self.calls.append(args)
        stdin = _BrokenPipe(self.pipe_limit) if self.pipe_limit is not None else None
        proc = FakeProcess(args, self._returncode(args), stdin=stdin)
        self.processes.append(proc)
        return proc

    def read(self, args):
        args = list(args)
        self.calls.append(args)
        returncode = self._returncode(args)
        if returncode != 0:
            raise CommandFailed(args, returncode)
        prefix = self._lookup(self.output, args)
        if prefix is None:
            return b""
        return self.output[prefix]

    def open_batch(self, args):
        args = list(args)
        self.calls.append(args)
        stdout = _Pipe()
        proc = FakeProcess(
            args,
            self._returncode(args),
            stdin=_CatFileInput(self.objects, stdout),
            stdout=stdout,
        )
        self.processes.append(proc)
        return proc


def write_pack(
    pack_dir, n, size=100, object_count=10, keep=False, mtime=None, prefix="pack"
):
    """Write a pack and a version 2 index into a pack directory.

    Args:
      pack_dir: Directory to write to
      n: Number the pack name is derived from
      size: Size of the ``.pack`` file in bytes
      object_count: Number of objects recorded in the index
      keep: Whether to add a ``.keep`` file
      mtime: Modification time of the ``.pack`` file
      prefix: Prefix of the pack name, as passed to ``git pack-objects``

    Returns:
      File name of the pack
    """
    basename = prefix + "-" + make_oid(n).decode("ascii")
    pack_path = os.path.join(pack_dir, basename + ".pack")
    with open(pack_path, "wb") as f:
        f.write(b"PACK" + b"\0" * max(size - 4, 0))
    fanout = [0] * 255 + [object_count]
    with open(os.path.join(pack_dir, basename + ".idx"), "wb") as f:
        f.write(PACK_INDEX_MAGIC + struct.pack(">L", 2))
        f.write(struct.pack(">256L", *fanout))
    if keep:
        with open(os.path.join(pack_dir, basename + ".keep"), "wb") as f:
            f.write(b"")
    if mtime is None:
        mtime = time.time() - 1000 + n
    os.utime(pack_path, (mtime, mtime))
    return basename + ".pack"


def write_loose_object(objects_dir, oid):
    """Create an (empty) loose object file for a hex object id."""
    if isinstance(oid, bytes):
        oid = oid.decode("ascii")
    shard = os.path.join(objects_dir, oid[:2])
    os.makedirs(shard, exist_ok=True)
    path = os.path.join(shard, oid[2:])
    with open(path, "wb") as f:
        f.write(b"x")
    return path


def write_midx(pack_dir, pack_names, object_count):
    """Write a multi-pack-index with PNAM and OIDF chunks."""
    names = b"".join(name.encode("ascii") + b"\0" for name in sorted(pack_names))
    names += b"\0" * (-len(names) % 4)
    header = b"MIDX" + bytes([1, 1, 2, 0]) + struct.pack(">L", len(pack_names))
    pnam_offset = len(header) + 3 * 12
    oidf_offset = pnam_offset + len(names)
    end = oidf_offset + 256 * 4
    table = (
        b"PNAM"
        + struct.pack(">Q", pnam_offset)
        + b"OIDF"
        + struct.pack(">Q", oidf_offset)
        + b"\0\0\0\0"
        + struct.pack(">Q", end)
    )
    fanout = struct.pack(">256L", *([0] * 255 + [object_count]))
    path = os.path.join(pack_dir, "multi-pack-index")
    with open(path, "wb") as f:
        f.write(header + table + names + fanout)
    return path


def write_commit_graph(objects_dir, commit_ids):
    """Write a single commit-graph file listing the given hex commit ids."""
    oids = sorted(binascii.unhexlify(oid) for oid in commit_ids)
    fanout = [0] * 256
    for oid in oids:
        for i in range(oid[0], 256):
            fanout[i] += 1
    header = b"CGPH" + bytes([1, 1, 2, 0])
    oidf_offset = len(header) + 3 * 12
    oidl_offset = oidf_offset + 256 * 4
    end = oidl_offset + 20 * len(oids)
    table = (
        b"OIDF"
        + struct.pack(">Q", oidf_offset)
        + b"OIDL"
        + struct.pack(">Q", oidl_offset)
        + b"\0\0\0\0"
        + struct.pack(">Q", end)
    )
    info_dir = os.path.join(objects_dir, "info")
    os.makedirs(info_dir, exist_ok=True)
    path = os.path.join(info_dir, "commit-graph")
    with open(path, "wb") as f:
        f.write(header + table + struct.pack(">256L", *fanout) + b"".join(oids))
    return path


def write_gc_pid(path, pid, hostname, mtime=None):
    """Write a ``gc.pid`` file, optionally backdated."""
    with open(path, "wb") as f:
        f.write(b"%d %s" % (pid, hostname.encode("utf-8")))
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path

# midx.py -- Multi-Pack-Index (MIDX) reading
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

"""Multi-Pack-Index (MIDX) reading.

Writing, verifying and expiring the multi-pack-index is done by
``git multi-pack-index``. Housekeeping only reads two things from it:
which packs it covers (the PNAM chunk) and how many objects it indexes
(the last entry of the OIDF fan-out chunk).

The file starts with a 12 byte header:
- signature ``MIDX``
- version (1 byte), hash algorithm (1 byte), chunk count (1 byte),
  base MIDX count (1 byte)
- pack count (4 bytes)

followed by the chunk table of (4-byte id, 8-byte offset) entries.
"""

__all__ = [
    "CHUNK_OIDF",
    "CHUNK_PNAM",
    "MIDX_SIGNATURE",
    "MultiPackIndex",
    "load_midx",
    "load_midx_file",
]

import os
import struct
from typing import IO

from .file import GitFile

MIDX_SIGNATURE = b"MIDX"
MIDX_VERSION = 1

CHUNK_PNAM = b"PNAM"  # Packfile names
CHUNK_OIDF = b"OIDF"  # OID fanout table

HASH_ALGORITHM_SHA1 = 1
HASH_ALGORITHM_SHA256 = 2


def _pack_stem(name: str) -> str:
    for suffix in (".idx", ".pack"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


class MultiPackIndex:
    """Multi-pack-index covering a set of pack files."""

    def __init__(self, filename: str | os.PathLike[str], contents: bytes) -> None:
        """Initialize a MultiPackIndex.

        Args:
            filename: Path to the MIDX file
            contents: Raw contents of the MIDX file

        Raises:
            ValueError: If the contents are not a valid multi-pack-index
        """
        self._filename = os.fspath(filename)
        self._contents = contents
        self.pack_names: list[str] = []
        self.object_count = 0
        self._parse_header()
        self._parse_chunks()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._filename!r})"

    def __len__(self) -> int:
        """Return the number of objects in this MIDX."""
        return self.object_count

    def _parse_header(self) -> None:
        if len(self._contents) < 12:
            raise ValueError("MIDX file too small")

        signature = self._contents[0:4]
        if signature != MIDX_SIGNATURE:
            raise ValueError(f"Invalid MIDX signature: {signature!r}")

        self.version = self._contents[4]
        if self.version != MIDX_VERSION:
            raise ValueError(f"Unsupported MIDX version: {self.version}")

        self.hash_algorithm = self._contents[5]
        if self.hash_algorithm not in (HASH_ALGORITHM_SHA1, HASH_ALGORITHM_SHA256):
            raise ValueError(f"Unknown hash algorithm: {self.hash_algorithm}")

        self.chunk_count = self._contents[6]
        (self.pack_count,) = struct.unpack(">L", self._contents[8:12])

    def _parse_chunks(self) -> None:
        chunks: dict[bytes, int] = {}
        offset = 12
        for _ in range(self.chunk_count + 1):
            entry = self._contents[offset : offset + 12]
            if len(entry) < 12:
                raise ValueError("Truncated MIDX chunk table")
            chunk_id = entry[:4]
            if chunk_id == b"\x00\x00\x00\x00":
                break
            (chunks[chunk_id],) = struct.unpack(">Q", entry[4:])
            offset += 12

        if CHUNK_PNAM not in chunks:
            raise ValueError("Required PNAM chunk not found")
        if CHUNK_OIDF not in chunks:
            raise ValueError("Required OIDF chunk not found")

        start = chunks[CHUNK_PNAM]
        end = min(
            (o for chunk_id, o in chunks.items() if chunk_id != CHUNK_PNAM and o >= start),
            default=len(self._contents),
        )
        for name in self._contents[start:end].split(b"\x00"):
            if name:
                self.pack_names.append(name.decode("utf-8"))

        last_fanout = chunks[CHUNK_OIDF] + 255 * 4
        fanout_entry = self._contents[last_fanout : last_fanout + 4]
        if len(fanout_entry) < 4:
            raise ValueError("Truncated OIDF chunk")
        (self.object_count,) = struct.unpack(">L", fanout_entry)

    def covers(self, pack_name: str) -> bool:
        """Check whether a pack is part of this multi-pack-index.

        Args:
            pack_name: Pack file name, with or without ``.pack``/``.idx``
        """
        stem = _pack_stem(pack_name)
        return any(_pack_stem(name) == stem for name in self.pack_names)


def load_midx_file(path: str | os.PathLike[str], f: IO[bytes]) -> MultiPackIndex:
    """Load a multi-pack-index from a file-like object."""
    return MultiPackIndex(path, f.read())


def load_midx(path: str | os.PathLike[str]) -> MultiPackIndex:
    """Load a multi-pack-index file by path.

    Raises:
        FileNotFoundError: If there is no multi-pack-index
        ValueError: If the file is not a valid multi-pack-index
    """
    with GitFile(path, "rb") as f:
        return load_midx_file(path, f)

# pack.py -- Inspection of pack index files
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

"""Inspection of pack index files.

Housekeeping never reads objects out of packs; it only needs to know how
many objects a pack holds. That number is the last entry of the fan-out
table of the pack's index:

* version 1 indexes start directly with the 256-entry fan-out table;
* version 2 indexes start with the magic ``\\377tOc`` and a version
  number, followed by the fan-out table.
"""

__all__ = [
    "PACK_INDEX_MAGIC",
    "UnsupportedPackIndex",
    "pack_index_object_count",
    "read_pack_index_object_count",
]

import os
import struct
from typing import IO

from .file import GitFile

PACK_INDEX_MAGIC = b"\377tOc"

_FANOUT_ENTRIES = 256
_FANOUT_ENTRY = struct.Struct(">L")


class UnsupportedPackIndex(Exception):
    """A pack index file could not be interpreted."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"{path}: {reason}")


def pack_index_object_count(f: IO[bytes], path: str = "<unknown>") -> int:
    """Return the number of objects recorded in a pack index.

    Args:
      f: File-like object positioned at the start of the index
      path: Name used in error messages

    Raises:
      UnsupportedPackIndex: If the index is truncated or of an unknown version
    """
    header = f.read(8)
    if header[:4] == PACK_INDEX_MAGIC:
        (version,) = struct.unpack(">L", header[4:8])
        if version != 2:
            raise UnsupportedPackIndex(path, f"unknown pack index version {version}")
        fanout_start = b""
    else:
        fanout_start = header
    fanout = fanout_start + f.read(_FANOUT_ENTRIES * 4 - len(fanout_start))
    if len(fanout) < _FANOUT_ENTRIES * 4:
        raise UnsupportedPackIndex(path, "truncated fan-out table")
    (count,) = _FANOUT_ENTRY.unpack_from(fanout, (_FANOUT_ENTRIES - 1) * 4)
    return count


def read_pack_index_object_count(path: str | os.PathLike[str]) -> int:
    """Return the number of objects in the pack index at ``path``."""
    path = os.fspath(path)
    with GitFile(path, "rb") as f:
        return pack_index_object_count(f, path)

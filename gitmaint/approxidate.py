# approxidate.py -- Parsing of Git's expiry specifications
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

"""Parsing of Git's "approxidate" and expiry specifications.

Expiry settings such as ``gc.pruneExpire`` or ``gc.logExpiry`` accept:
- Relative times: "2 weeks ago", "2.weeks.ago", "yesterday"
- Absolute dates: "2005-04-07", "2005-04-07 22:13:13"
- Unix timestamps: "1234567890"
- "never"/"false" (nothing expires) and "all"/"now" (everything expires)
"""

__all__ = [
    "EXPIRE_ALL",
    "EXPIRE_NEVER",
    "InvalidExpiry",
    "parse_approxidate",
    "parse_expiry_date",
    "parse_relative_time",
]

import time
from datetime import datetime

# Cut-off timestamps for the special expiry keywords. Everything is older
# than EXPIRE_ALL and nothing is older than EXPIRE_NEVER.
EXPIRE_NEVER = 0
EXPIRE_ALL = 2**63 - 1

_UNIT_SECONDS = {
    "second": 1,
    "minute": 60,
    "hour": 3600,
    "day": 86400,
    "week": 604800,
    "month": 2592000,  # 30 days
    "year": 31536000,  # 365 days
}

_ABSOLUTE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
]


class InvalidExpiry(ValueError):
    """An expiry specification could not be parsed."""

    def __init__(self, value: str, setting: str | None = None) -> None:
        """Initialize InvalidExpiry.

        Args:
          value: The offending value
          setting: Name of the setting the value came from, if any
        """
        self.value = value
        self.setting = setting
        if setting is None:
            message = f"failed to parse expiry value {value!r}"
        else:
            message = f"failed to parse '{setting}' value '{value}'"
        super().__init__(message)


def parse_relative_time(time_str: str) -> int:
    """Parse a relative time string like '2 weeks ago' into seconds.

    Args:
        time_str: String like '2 weeks ago', '2.weeks.ago', or 'now'

    Returns:
        Number of seconds (relative to current time)

    Raises:
        ValueError: If the time string cannot be parsed
    """
    if time_str == "now":
        return 0

    normalized = time_str.replace(".ago", " ago").replace(".", " ")
    if not normalized.endswith(" ago"):
        raise ValueError(f"Invalid relative time format: {time_str}")

    parts = normalized[:-4].split()
    if len(parts) != 2:
        raise ValueError(f"Invalid relative time format: {time_str}")

    try:
        num = int(parts[0])
    except ValueError:
        raise ValueError(f"Invalid number in relative time: {parts[0]}")

    unit = parts[1]
    if unit.endswith("s"):
        unit = unit[:-1]
    try:
        return num * _UNIT_SECONDS[unit]
    except KeyError:
        raise ValueError(f"Unknown time unit: {parts[1]}")


def parse_approxidate(time_spec: str | bytes, now: float | None = None) -> int:
    """Parse a Git approxidate specification and return a Unix timestamp.

    Args:
        time_spec: Time specification
        now: Reference time, defaults to the current time

    Returns:
        Unix timestamp (seconds since epoch)

    Raises:
        ValueError: If the time specification cannot be parsed
    """
    if isinstance(time_spec, bytes):
        time_spec = time_spec.decode("utf-8")
    time_spec = time_spec.strip()
    if now is None:
        now = time.time()

    if time_spec == "now":
        return int(now)
    if time_spec == "yesterday":
        return int(now - 86400)
    if time_spec == "today":
        dt = datetime.fromtimestamp(now).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return int(dt.timestamp())

    try:
        return int(time_spec)
    except ValueError:
        pass

    if " ago" in time_spec or ".ago" in time_spec:
        return int(now - parse_relative_time(time_spec))

    for fmt in _ABSOLUTE_FORMATS:
        try:
            return int(datetime.strptime(time_spec, fmt).timestamp())
        except ValueError:
            continue

    raise ValueError(f"Unable to parse time specification: {time_spec!r}")


def parse_expiry_date(
    value: str | bytes, now: float | None = None, setting: str | None = None
) -> int:
    """Parse an expiry specification into a cut-off timestamp.

    Objects (or log files) older than the returned timestamp have expired.

    Args:
      value: Expiry specification
      now: Reference time, defaults to the current time
      setting: Name of the configuration setting, used in error messages

    Returns:
      EXPIRE_NEVER for "never"/"false", EXPIRE_ALL for "all"/"now",
      otherwise the approxidate timestamp

    Raises:
      InvalidExpiry: If the value cannot be parsed
    """
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")
    if value in ("never", "false"):
        return EXPIRE_NEVER
    if value in ("all", "now"):
        return EXPIRE_ALL
    try:
        return parse_approxidate(value, now=now)
    except ValueError:
        raise InvalidExpiry(value, setting)

# config.py - Reading of git configuration files
# Copyright (C) 2011-2013 Jelmer Vernooij and others
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

"""Reading of git configuration files.

Only the parts of git's configuration syntax that housekeeping needs are
handled: sections, quoted subsections, escapes, comments and line
continuations. Include directives are not followed.

Values are typed the way git types them:

* booleans accept true/yes/on/1 and false/no/off/0, an empty value is
  false and any other integer is true when non-zero;
* integers accept a k, m or g suffix (powers of 1024).
"""

__all__ = [
    "CaseInsensitiveOrderedMultiDict",
    "Config",
    "ConfigError",
    "ConfigDict",
    "ConfigFile",
    "StackedConfig",
    "get_xdg_config_home_path",
    "parse_git_boolean",
    "parse_git_int",
]

import logging
import os
import sys
from collections.abc import Iterator, MutableMapping
from typing import IO, Generic, TypeVar

from .file import GitFile

logger = logging.getLogger(__name__)

ConfigKey = str | bytes | tuple[str | bytes, ...]

Name = bytes
NameLike = bytes | str
Section = tuple[bytes, ...]
SectionLike = bytes | str | tuple[bytes | str, ...]
Value = bytes
ValueLike = bytes | str | int

_TRUE_WORDS = (b"true", b"yes", b"on")
_FALSE_WORDS = (b"false", b"no", b"off", b"")

_INT_SUFFIXES = {b"k": 1024, b"m": 1024**2, b"g": 1024**3}


class ConfigError(ValueError):
    """A configuration file or value is malformed."""


def lower_key(key: ConfigKey) -> ConfigKey:
    """Lowercase a config key, preserving the case of subsection names."""
    if isinstance(key, (bytes, str)):
        return key.lower()
    if isinstance(key, tuple):
        if len(key) > 0:
            return (key[0].lower(), *key[1:])
        return key
    raise TypeError(key)


def parse_git_boolean(value: bytes) -> bool:
    """Interpret a configuration value as a boolean, the way git does.

    Raises:
      ConfigError: If the value is neither a boolean word nor an integer
    """
    lowered = value.strip().lower()
    if lowered in _TRUE_WORDS:
        return True
    if lowered in _FALSE_WORDS:
        return False
    try:
        return parse_git_int(lowered) != 0
    except ConfigError:
        raise ConfigError(f"not a valid boolean string: {value!r}")


def parse_git_int(value: bytes) -> int:
    """Interpret a configuration value as an integer with optional unit.

    Raises:
      ConfigError: If the value is not a valid integer
    """
    value = value.strip()
    factor = _INT_SUFFIXES.get(value[-1:].lower(), 1)
    if factor != 1:
        value = value[:-1]
    try:
        return int(value) * factor
    except ValueError:
        raise ConfigError(f"not a valid integer: {value!r}")


def _display(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", "replace")
    return value


def _format_key(section: SectionLike, name: NameLike) -> str:
    """Render a setting the way git names it, e.g. ``gc.auto``."""
    if not isinstance(section, tuple):
        section = (section,)
    return ".".join(_display(part) for part in (*section, name))


K = TypeVar("K", bound=ConfigKey)
V = TypeVar("V")


class CaseInsensitiveOrderedMultiDict(MutableMapping[K, V], Generic[K, V]):
    """An ordered, case-insensitive mapping that keeps every assigned value.

    Lookups return the last value set for a key; :meth:`get_all` returns
    all of them in insertion order.
    """

    def __init__(self) -> None:
        self._real: list[tuple[K, V]] = []
        self._keyed: dict[ConfigKey, V] = {}

    def __len__(self) -> int:
        return len(self._keyed)

    def __iter__(self) -> Iterator[K]:
        seen = set()
        for key, _ in self._real:
            lowered = lower_key(key)
            if lowered not in seen:
                seen.add(lowered)
                yield key

    def __setitem__(self, key: K, value: V) -> None:
        self._real.append((key, value))
        self._keyed[lower_key(key)] = value

    def __delitem__(self, key: K) -> None:
        lowered = lower_key(key)
        del self._keyed[lowered]
        self._real = [(k, v) for (k, v) in self._real if lower_key(k) != lowered]

    def __getitem__(self, item: K) -> V:
        return self._keyed[lower_key(item)]

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._real!r})"

    def set(self, key: K, value: V) -> None:
        """Set a value for a key, replacing all existing values."""
        lowered = lower_key(key)
        self._real = [(k, v) for (k, v) in self._real if lower_key(k) != lowered]
        self._real.append((key, value))
        self._keyed[lowered] = value

    def get_all(self, key: K) -> Iterator[V]:
        """Iterate over all values for a key in insertion order."""
        lowered = lower_key(key)
        for actual, value in self._real:
            if lower_key(actual) == lowered:
                yield value


class Config:
    """A Git configuration."""

    def get(self, section: SectionLike, name: NameLike) -> Value:
        """Retrieve the contents of a configuration setting.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
        Returns:
          Contents of the setting
        Raises:
          KeyError: if the value is not set
        """
        raise NotImplementedError(self.get)

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        """Retrieve all values of a multivar configuration setting."""
        raise NotImplementedError(self.get_multivar)

    def sections(self) -> Iterator[Section]:
        """Iterate over the sections."""
        raise NotImplementedError(self.sections)

    def set(self, section: SectionLike, name: NameLike, value: ValueLike | bool) -> None:
        """Set a configuration value."""
        raise NotImplementedError(self.set)

    def has_section(self, name: Section) -> bool:
        """Check if a specified section exists."""
        return name in self.sections()

    def get_str(
        self, section: SectionLike, name: NameLike, default: str | None = None
    ) -> str | None:
        """Retrieve a configuration setting as text.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
          default: Value returned when the setting is absent
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        return value.decode("utf-8", "replace")

    def get_boolean(
        self, section: SectionLike, name: NameLike, default: bool | None = None
    ) -> bool | None:
        """Retrieve a configuration setting as boolean.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
          default: Value returned when the setting is absent

        Raises:
          ConfigError: If the value is not a valid boolean
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        try:
            return parse_git_boolean(value)
        except ConfigError:
            raise ConfigError(
                f"bad boolean config value '{_display(value)}' "
                f"for '{_format_key(section, name)}'"
            )

    def get_int(
        self, section: SectionLike, name: NameLike, default: int | None = None
    ) -> int | None:
        """Retrieve a configuration setting as an integer.

        Args:
          section: Tuple with section name and optional subsection name
          name: Variable name
          default: Value returned when the setting is absent

        Raises:
          ConfigError: If the value is not a valid integer
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        try:
            return parse_git_int(value)
        except ConfigError:
            raise ConfigError(
                f"bad numeric config value '{_display(value)}' "
                f"for '{_format_key(section, name)}'"
            )

    def get_boolean_or_str(
        self, section: SectionLike, name: NameLike, default: bool | str | None = None
    ) -> bool | str | None:
        """Retrieve a setting that is either a boolean or a keyword.

        Settings such as ``gc.packRefs`` accept a boolean or a special
        word ("notbare"); the word is returned as text.
        """
        try:
            value = self.get(section, name)
        except KeyError:
            return default
        try:
            return parse_git_boolean(value)
        except ValueError:
            return value.decode("utf-8", "replace")


class ConfigDict(Config):
    """Git configuration stored in a dictionary."""

    def __init__(self, encoding: str | None = None) -> None:
        """Create a new ConfigDict."""
        if encoding is None:
            encoding = sys.getdefaultencoding()
        self.encoding = encoding
        self._values: CaseInsensitiveOrderedMultiDict[
            Section, CaseInsensitiveOrderedMultiDict[Name, Value]
        ] = CaseInsensitiveOrderedMultiDict()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._values!r})"

    def _check_section_and_name(
        self, section: SectionLike, name: NameLike
    ) -> tuple[Section, Name]:
        if not isinstance(section, tuple):
            section = (section,)
        checked_section = tuple(
            subsection.encode(self.encoding)
            if not isinstance(subsection, bytes)
            else subsection
            for subsection in section
        )
        if not isinstance(name, bytes):
            name = name.encode(self.encoding)
        return checked_section, name

    def _section(self, section: Section) -> CaseInsensitiveOrderedMultiDict[Name, Value]:
        try:
            return self._values[section]
        except KeyError:
            values: CaseInsensitiveOrderedMultiDict[Name, Value] = (
                CaseInsensitiveOrderedMultiDict()
            )
            self._values[section] = values
            return values

    def get(self, section: SectionLike, name: NameLike) -> Value:
        section, name = self._check_section_and_name(section, name)
        if len(section) > 1:
            try:
                return self._values[section][name]
            except KeyError:
                pass
        return self._values[(section[0],)][name]

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        section, name = self._check_section_and_name(section, name)
        if len(section) > 1:
            try:
                return self._values[section].get_all(name)
            except KeyError:
                pass
        return self._values[(section[0],)].get_all(name)

    def set(self, section: SectionLike, name: NameLike, value: ValueLike | bool) -> None:
        """Set a configuration value, replacing any existing values.

        Args:
            section: Section name or (section, subsection) tuple
            name: Setting name
            value: Configuration value
        """
        section, name = self._check_section_and_name(section, name)
        if isinstance(value, bool):
            value = b"true" if value else b"false"
        elif isinstance(value, int):
            value = str(value).encode("ascii")
        elif not isinstance(value, bytes):
            value = value.encode(self.encoding)
        self._section(section).set(name, value)

    def sections(self) -> Iterator[Section]:
        return iter(self._values)

    def subsections(self, name: NameLike) -> Iterator[bytes]:
        """Iterate over the subsection names of a section.

        For example ``subsections("remote")`` yields every remote name.
        """
        if not isinstance(name, bytes):
            name = name.encode(self.encoding)
        for section in self._values:
            if len(section) == 2 and section[0].lower() == name.lower():
                yield section[1]


_ESCAPE_TABLE = {
    ord(b"\\"): ord(b"\\"),
    ord(b'"'): ord(b'"'),
    ord(b"n"): ord(b"\n"),
    ord(b"t"): ord(b"\t"),
    ord(b"b"): ord(b"\b"),
}
_COMMENT_CHARS = [ord(b"#"), ord(b";")]
_WHITESPACE_CHARS = [ord(b"\t"), ord(b" ")]


def _parse_string(value: bytes) -> bytes:
    value_array = bytearray(value.strip())
    ret = bytearray()
    whitespace = bytearray()
    in_quotes = False
    i = 0
    while i < len(value_array):
        c = value_array[i]
        if c == ord(b"\\"):
            i += 1
            if whitespace:
                ret.extend(whitespace)
                whitespace = bytearray()
            if i >= len(value_array):
                ret.append(ord(b"\\"))
            elif value_array[i] in _ESCAPE_TABLE:
                ret.append(_ESCAPE_TABLE[value_array[i]])
            else:
                ret.append(ord(b"\\"))
                i -= 1
        elif c == ord(b'"'):
            in_quotes = not in_quotes
        elif c in _COMMENT_CHARS and not in_quotes:
            break
        elif c in _WHITESPACE_CHARS:
            whitespace.append(c)
        else:
            if whitespace:
                ret.extend(whitespace)
                whitespace = bytearray()
            ret.append(c)
        i += 1

    if in_quotes:
        raise ConfigError("missing end quote")

    return bytes(ret)


def _escape_value(value: bytes) -> bytes:
    value = value.replace(b"\\", b"\\\\")
    value = value.replace(b"\n", b"\\n")
    value = value.replace(b"\t", b"\\t")
    value = value.replace(b'"', b'\\"')
    return value


def _format_string(value: bytes) -> bytes:
    if (
        value.startswith((b" ", b"\t"))
        or value.endswith((b" ", b"\t"))
        or b"#" in value
        or b";" in value
    ):
        return b'"' + _escape_value(value) + b'"'
    return _escape_value(value)


def _check_variable_name(name: bytes) -> bool:
    return all(c.isalnum() or c == b"-" for c in (name[i : i + 1] for i in range(len(name))))


def _check_section_name(name: bytes) -> bool:
    return all(
        c.isalnum() or c in (b"-", b".") for c in (name[i : i + 1] for i in range(len(name)))
    )


def _strip_comments(line: bytes) -> bytes:
    string_open = False
    for i, character in enumerate(bytearray(line)):
        if character == ord(b'"'):
            string_open = not string_open
        elif not string_open and character in _COMMENT_CHARS:
            return line[:i]
    return line


def _continued_value(value: bytes) -> bytes | None:
    """Return the value without its trailing backslash-newline, if continued."""
    content = value.rstrip(b"\r\n")
    if content == value or not content.endswith(b"\\"):
        return None
    trailing = len(content) - len(content.rstrip(b"\\"))
    if trailing % 2 == 0:
        return None
    return content[:-1]


def _parse_section_header_line(line: bytes) -> tuple[Section, bytes]:
    line = _strip_comments(line).rstrip()
    in_quotes = False
    escaped = False
    for i, c in enumerate(line):
        if escaped:
            escaped = False
            continue
        if c == ord(b'"'):
            in_quotes = not in_quotes
        if c == ord(b"\\"):
            escaped = True
        if c == ord(b"]") and not in_quotes:
            last = i
            break
    else:
        raise ConfigError("expected trailing ]")
    pts = line[1:last].split(b" ", 1)
    rest = line[last + 1 :]
    if not _check_section_name(pts[0]):
        raise ConfigError(f"invalid section name {pts[0]!r}")
    if len(pts) == 2:
        if pts[1][:1] != b'"' or pts[1][-1:] != b'"':
            raise ConfigError(f"Invalid subsection {pts[1]!r}")
        return (pts[0], pts[1][1:-1]), rest
    pts = pts[0].split(b".", 1)
    if len(pts) == 2:
        return (pts[0], pts[1]), rest
    return (pts[0],), rest


class ConfigFile(ConfigDict):
    """A Git configuration file, like .git/config or ~/.gitconfig."""

    def __init__(self, encoding: str | None = None) -> None:
        super().__init__(encoding=encoding)
        self.path: str | None = None

    @classmethod
    def from_file(cls, f: IO[bytes]) -> "ConfigFile":
        """Read configuration from a file-like object.

        Raises:
          ConfigError: If the file is not valid git configuration
        """
        ret = cls()
        section: Section | None = None
        setting: bytes | None = None
        continuation = b""
        for lineno, line in enumerate(f.readlines()):
            if lineno == 0 and line.startswith(b"\xef\xbb\xbf"):
                line = line[3:]
            if setting is not None:
                assert section is not None
                partial = _continued_value(line)
                if partial is not None:
                    continuation += partial
                    continue
                ret._section(section)[setting] = _parse_string(continuation + line)
                setting = None
                continue

            line = line.lstrip()
            if line[:1] == b"[":
                section, line = _parse_section_header_line(line)
                ret._section(section)
            if _strip_comments(line).strip() == b"":
                continue
            if section is None:
                raise ConfigError(f"setting {line!r} without section")
            try:
                name, value = line.split(b"=", 1)
            except ValueError:
                name = line
                value = b"true"
            name = name.strip()
            if not _check_variable_name(name):
                raise ConfigError(f"invalid variable name {name!r}")
            partial = _continued_value(value)
            if partial is not None:
                setting = name
                continuation = partial
            else:
                ret._section(section)[name] = _parse_string(value)
        return ret

    @classmethod
    def from_path(cls, path: str | os.PathLike[str]) -> "ConfigFile":
        """Read configuration from a file on disk."""
        abs_path = os.fspath(path)
        with GitFile(abs_path, "rb") as f:
            ret = cls.from_file(f)
        ret.path = abs_path
        return ret

    def write_to_path(self, path: str | os.PathLike[str] | None = None) -> None:
        """Write configuration to a file on disk."""
        if path is None:
            if self.path is None:
                raise ValueError("No path specified and no default path available")
            path = self.path
        with GitFile(path, "wb") as f:
            self.write_to_file(f)

    def write_to_file(self, f: IO[bytes]) -> None:
        """Write configuration to a file-like object."""
        for section in self._values:
            if len(section) == 1:
                f.write(b"[" + section[0] + b"]\n")
            else:
                f.write(b"[" + section[0] + b' "' + section[1] + b'"]\n')
            values = self._values[section]
            for key in values:
                for value in values.get_all(key):
                    f.write(b"\t" + key + b" = " + _format_string(value) + b"\n")


def get_xdg_config_home_path(*path_segments: str) -> str:
    """Get a path in the XDG config home directory."""
    xdg_config_home = os.environ.get(
        "XDG_CONFIG_HOME",
        os.path.expanduser("~/.config/"),
    )
    return os.path.join(xdg_config_home, *path_segments)


class StackedConfig(Config):
    """Configuration which reads from multiple config files."""

    def __init__(self, backends: list[Config]) -> None:
        """Initialize a StackedConfig.

        Args:
          backends: Config files to read from, highest precedence first
        """
        self.backends = backends

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} for {self.backends!r}>"

    @classmethod
    def default(cls) -> "StackedConfig":
        """Create a StackedConfig with the user and system config files."""
        return cls(list(cls.default_backends()))

    @classmethod
    def default_backends(cls) -> list[ConfigFile]:
        """Retrieve the default configuration.

        See git-config(1) for details on the files searched.
        """
        paths = []

        try:
            paths.append(os.environ["GIT_CONFIG_GLOBAL"])
        except KeyError:
            paths.append(os.path.expanduser("~/.gitconfig"))
            paths.append(get_xdg_config_home_path("git", "config"))

        try:
            paths.append(os.environ["GIT_CONFIG_SYSTEM"])
        except KeyError:
            if "GIT_CONFIG_NOSYSTEM" not in os.environ:
                paths.append("/etc/gitconfig")

        logger.debug("Loading gitconfig from paths: %s", paths)

        backends = []
        for path in paths:
            try:
                cf = ConfigFile.from_path(path)
            except (FileNotFoundError, NotADirectoryError):
                logger.debug("Gitconfig file not found: %s", path)
                continue
            backends.append(cf)
        return backends

    def get(self, section: SectionLike, name: NameLike) -> Value:
        if not isinstance(section, tuple):
            section = (section,)
        for backend in self.backends:
            try:
                return backend.get(section, name)
            except KeyError:
                pass
        raise KeyError(name)

    def get_multivar(self, section: SectionLike, name: NameLike) -> Iterator[Value]:
        if not isinstance(section, tuple):
            section = (section,)
        for backend in self.backends:
            try:
                yield from backend.get_multivar(section, name)
            except KeyError:
                pass

    def sections(self) -> Iterator[Section]:
        seen = set()
        for backend in self.backends:
            for section in backend.sections():
                if section not in seen:
                    seen.add(section)
                    yield section

#!/usr/bin/python3 -u
#
# gitmaint - Housekeeping for git repositories
# Copyright (C) 2008-2011 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Command-line interface to gitmaint.

Supports ``gc`` and ``maintenance run`` with the options of the
corresponding git commands. Fatal errors exit with status 128, usage
errors with 129 and failed maintenance tasks with 1.
"""

__all__ = [
    "Command",
    "SuperCommand",
    "cmd_gc",
    "cmd_maintenance",
    "cmd_maintenance_run",
    "commands",
    "main",
    "signal_int",
    "signal_quit",
]

import argparse
import logging
import os
import signal
import sys
import types
from collections.abc import Sequence
from typing import ClassVar, NoReturn

from . import porcelain
from .approxidate import InvalidExpiry
from .command import CommandFailed
from .config import ConfigError
from .errors import NotGitRepository
from .file import FileLocked
from .gc import DEFAULT_PRUNE_EXPIRE, GcError, RepackPlan
from .log_utils import default_logging_config
from .maintenance import InvalidTask, MaintenanceError

logger = logging.getLogger(__name__)

EXIT_FAILURE = 1
EXIT_FATAL = 128
EXIT_USAGE = 129

# Errors that abort a command.
FATAL_ERRORS = (
    CommandFailed,
    ConfigError,
    FileLocked,
    GcError,
    InvalidExpiry,
    MaintenanceError,
    NotGitRepository,
)


def signal_int(signal: int, frame: types.FrameType | None) -> None:
    """Handle interrupt signal by exiting.

    Args:
        signal: Signal number
        frame: Current stack frame
    """
    sys.exit(1)


def signal_quit(signal: int, frame: types.FrameType | None) -> None:
    """Handle quit signal by entering debugger.

    Args:
        signal: Signal number
        frame: Current stack frame
    """
    import pdb

    pdb.set_trace()


class UsageError(Exception):
    """A command was invoked with invalid arguments."""


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        raise UsageError(f"{self.prog}: {message}")


class Command:
    """A gitmaint subcommand."""

    def run(self, args: Sequence[str]) -> int | None:
        """Run the command."""
        raise NotImplementedError(self.run)


class SuperCommand(Command):
    """Base class for commands that have subcommands."""

    subcommands: ClassVar[dict[str, type[Command]]] = {}
    default_command: ClassVar[type[Command] | None] = None

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the subcommand command.

        Args:
            args: Command line arguments
        """
        if not args:
            if self.default_command:
                return self.default_command().run(args)
            raise UsageError(
                "Supported subcommands: {}".format(", ".join(self.subcommands.keys()))
            )
        cmd = args[0]
        try:
            cmd_kls = self.subcommands[cmd]
        except KeyError:
            raise UsageError(f"No such subcommand: {args[0]}")
        return cmd_kls().run(args[1:])


class cmd_gc(Command):
    """Cleanup unnecessary files and optimize the local repository."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the gc command.

        Args:
            args: Command line arguments
        """
        parser = _ArgumentParser(prog="gitmaint gc")
        parser.add_argument(
            "--quiet",
            "-q",
            action="store_true",
            help="Suppress progress reporting",
        )
        parser.add_argument(
            "--prune",
            nargs="?",
            const=DEFAULT_PRUNE_EXPIRE,
            metavar="date",
            help="Prune unreferenced objects older than date",
        )
        parser.add_argument(
            "--no-prune",
            action="store_true",
            help="Do not prune unreferenced objects",
        )
        parser.add_argument(
            "--aggressive",
            action="store_true",
            help="Be more thorough (increased runtime)",
        )
        parser.add_argument(
            "--auto",
            action="store_true",
            help="Only run gc if needed",
        )
        parser.add_argument(
            "--force",
            action="store_true",
            help="Force running gc even if there may be another gc running",
        )
        parser.add_argument(
            "--keep-largest-pack",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Repack all other packs except the largest pack",
        )
        parser.add_argument("--detached-plan", help=argparse.SUPPRESS)
        parsed_args = parser.parse_args(args)

        detached_plan = None
        if parsed_args.detached_plan is not None:
            try:
                detached_plan = RepackPlan.from_json(parsed_args.detached_plan)
            except ValueError as e:
                raise UsageError(str(e)) from e

        result = porcelain.gc(
            ".",
            auto=parsed_args.auto,
            aggressive=parsed_args.aggressive,
            quiet=parsed_args.quiet,
            force=parsed_args.force,
            keep_largest_pack=parsed_args.keep_largest_pack,
            prune=parsed_args.prune,
            no_prune=parsed_args.no_prune,
            detached_plan=detached_plan,
        )
        logger.debug("gc finished: %s", result.value)
        return 0


class cmd_maintenance_run(Command):
    """Run maintenance tasks."""

    def run(self, args: Sequence[str]) -> int | None:
        """Execute the maintenance run command.

        Args:
            args: Command line arguments
        """
        parser = _ArgumentParser(prog="gitmaint maintenance run")
        parser.add_argument(
            "--auto",
            action="store_true",
            help="Run tasks based on the state of the repository",
        )
        parser.add_argument(
            "--quiet",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Do not report progress or other information over stderr",
        )
        parser.add_argument(
            "--task",
            action="append",
            dest="tasks",
            default=[],
            metavar="task",
            help="Run a specific task (can be specified multiple times)",
        )
        parsed_args = parser.parse_args(args)

        try:
            result = porcelain.maintenance_run(
                ".",
                tasks=parsed_args.tasks,
                auto=parsed_args.auto,
                quiet=parsed_args.quiet,
            )
        except InvalidTask as e:
            raise UsageError(str(e)) from e
        if not result.success:
            return EXIT_FAILURE
        return 0


class cmd_maintenance(SuperCommand):
    """Run tasks to optimize Git repository data."""

    subcommands: ClassVar[dict[str, type[Command]]] = {
        "run": cmd_maintenance_run,
    }


commands = {
    "gc": cmd_gc,
    "maintenance": cmd_maintenance,
}


def main(argv: Sequence[str] | None = None) -> int | None:
    """Main entry point for the gitmaint CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code or None
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = argparse.ArgumentParser(
        prog="gitmaint",
        description="Housekeeping for git repositories",
    )
    parser.add_argument(
        "-C",
        dest="directory",
        action="append",
        default=[],
        help="Run as if started in this directory",
    )
    parser.add_argument(
        "command",
        help=f"Command to run. Available: {', '.join(sorted(commands.keys()))}",
    )
    parser.add_argument("args", nargs=argparse.REMAINDER)
    if not argv:
        parser.print_help()
        return EXIT_USAGE
    global_args = parser.parse_args(argv)

    default_logging_config()

    for directory in global_args.directory:
        try:
            os.chdir(directory)
        except OSError as e:
            logger.error("cannot change to '%s': %s", directory, e.strerror)
            return EXIT_FATAL

    try:
        cmd_kls = commands[global_args.command]
    except KeyError:
        logger.error("No such subcommand: %s", global_args.command)
        return EXIT_USAGE
    try:
        return cmd_kls().run(global_args.args)
    except UsageError as e:
        logger.error("%s", e)
        return EXIT_USAGE
    except FATAL_ERRORS as e:
        logger.error("fatal: %s", e)
        return EXIT_FATAL


def _main() -> None:
    if "GITMAINT_PDB" in os.environ and getattr(signal, "SIGQUIT", None):
        signal.signal(signal.SIGQUIT, signal_quit)  # type: ignore[attr-defined,unused-ignore]
    signal.signal(signal.SIGINT, signal_int)

    sys.exit(main())


if __name__ == "__main__":
    _main()

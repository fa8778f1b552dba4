# porcelain.py -- Porcelain-like layer on top of gitmaint
# Copyright (C) 2013 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Simple wrapper that provides porcelain-like functions on top of gitmaint.

Currently implemented:
 * gc
 * maintenance_run

These functions are meant to behave similarly to the git subcommands.
Differences in behaviour are considered bugs.
"""

__all__ = [
    "gc",
    "maintenance_run",
    "open_repo_closing",
]

import os
from collections.abc import Iterator, Sequence
from contextlib import AbstractContextManager, closing, contextmanager
from typing import TypeVar, Union, overload

from .command import GitRunner
from .gc import GarbageCollector, GcResult, RepackPlan
from .maintenance import MaintenanceResult, run_maintenance
from .repo import Repo

T = TypeVar("T", bound=Repo)

RepoPath = Union[str, os.PathLike[str], Repo]


@contextmanager
def _noop_context_manager(obj: T) -> Iterator[T]:
    """Context manager that has the same api as closing but does nothing."""
    yield obj


@overload
def open_repo_closing(path_or_repo: T) -> AbstractContextManager[T]: ...


@overload
def open_repo_closing(
    path_or_repo: Union[str, os.PathLike[str]],
) -> AbstractContextManager[Repo]: ...


def open_repo_closing(
    path_or_repo: Union[str, os.PathLike[str], T],
) -> AbstractContextManager[Union[T, Repo]]:
    """Open an argument that can be a repository or a path for a repository.

    returns a context manager that will close the repo on exit if the argument
    is a path, else does nothing if the argument is a repo.
    """
    if isinstance(path_or_repo, Repo):
        return _noop_context_manager(path_or_repo)
    return closing(Repo(path_or_repo))


def gc(
    repo: RepoPath,
    auto: bool = False,
    aggressive: bool = False,
    quiet: bool = False,
    force: bool = False,
    keep_largest_pack: bool | None = None,
    prune: str | None = None,
    no_prune: bool = False,
    detached_plan: RepackPlan | None = None,
    runner: GitRunner | None = None,
) -> GcResult:
    """Run garbage collection on a repository.

    Args:
      repo: Path to the repository or a Repo object
      auto: If True, only run gc if needed
      aggressive: If True, use more aggressive settings
      quiet: Suppress progress output
      force: Run even if another gc appears to be running
      keep_largest_pack: Keep or include the largest pack; None defers to
        ``gc.bigPackThreshold``
      prune: Prune unreachable objects older than this date; None uses
        ``gc.pruneExpire``
      no_prune: Do not prune unreachable objects
      detached_plan: Continue a detached automatic gc with this plan
      runner: Runs git subcommands

    Returns:
      How the run ended
    """
    with open_repo_closing(repo) as r:
        collector = GarbageCollector(
            r,
            auto=auto,
            quiet=quiet,
            force=force,
            aggressive=aggressive,
            keep_largest_pack=keep_largest_pack,
            prune_expire=prune,
            no_prune=no_prune,
            runner=runner,
        )
        if detached_plan is not None:
            return collector.run_detached(detached_plan)
        return collector.run()


def maintenance_run(
    repo: RepoPath,
    tasks: Sequence[str] | None = None,
    auto: bool = False,
    quiet: bool | None = None,
    runner: GitRunner | None = None,
) -> MaintenanceResult:
    """Run maintenance tasks on a repository.

    Args:
      repo: Path to the repository or a Repo object
      tasks: Optional list of specific task names to run, in order
             (e.g., ['commit-graph', 'gc'])
      auto: If True, only run tasks if needed
      quiet: Suppress progress output; by default only a terminal gets it
      runner: Runs git subcommands

    Returns:
      MaintenanceResult object with task execution results
    """
    with open_repo_closing(repo) as r:
        return run_maintenance(r, tasks=tasks, auto=auto, quiet=quiet, runner=runner)

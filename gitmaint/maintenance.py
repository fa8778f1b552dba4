# maintenance.py -- Git maintenance implementation
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

"""Git maintenance implementation.

A maintenance run executes a subset of named tasks under a single lock in
the object directory. Which tasks run depends on how the run was invoked:

* with ``--task``, exactly the selected tasks, in the order they were
  selected;
* otherwise every task enabled by ``maintenance.<task>.enabled`` (only
  ``gc`` is enabled by default), in registration order.

With ``--auto`` a task additionally only runs when its auto condition says
the repository needs it; a task without an auto condition never runs
automatically. The run stops at the first task that fails.
"""

__all__ = [
    "MAINTENANCE_TASKS",
    "CommitGraphTask",
    "FetchTask",
    "GcTask",
    "InvalidTask",
    "LooseObjectsTask",
    "MaintenanceError",
    "MaintenanceOptions",
    "MaintenanceResult",
    "MaintenanceSettings",
    "MaintenanceTask",
    "PackFilesTask",
    "TaskRegistry",
    "get_auto_pack_size",
    "initialize_tasks",
    "maintenance_run",
    "run_maintenance",
]

import logging
import os
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field

from .approxidate import InvalidExpiry
from .command import CommandFailed, GitRunner
from .config import Config
from .file import FileLocked
from .gc import GarbageCollector, GcError, GcSettings, need_to_gc
from .lock import MaintenanceLock
from .object_store import PackInfo
from .repo import Repo
from .walk import CatFileReader, count_commits_not_in_graph, iter_peeled_refs

logger = logging.getLogger(__name__)

DEFAULT_LOOSE_OBJECTS_AUTO = 100
DEFAULT_PACK_FILES_AUTO = 10
DEFAULT_COMMIT_GRAPH_AUTO = 100

# pack-objects is fed at most this many loose objects (plus one) per run.
LOOSE_OBJECT_BATCH_SIZE = 50000

# Upper bound for the multi-pack-index repack batch size.
TWO_GIGABYTES = 2147483647


class InvalidTask(ValueError):
    """A task selection was rejected."""


class MaintenanceError(Exception):
    """A maintenance task hit an error it cannot recover from."""


@dataclass
class MaintenanceOptions:
    """How a maintenance run was invoked."""

    auto: bool = False
    quiet: bool = False


@dataclass
class MaintenanceSettings:
    """Maintenance configuration, read once per invocation.

    Attributes:
      enabled: ``maintenance.<task>.enabled`` for tasks where it is set
      loose_objects_auto: ``maintenance.loose-objects.auto``
      pack_files_auto: ``maintenance.pack-files.auto``
      commit_graph_auto: ``maintenance.commit-graph.auto``
      multi_pack_index: ``core.multiPackIndex``
      gc: Settings for the gc task
    """

    enabled: dict[str, bool] = field(default_factory=dict)
    loose_objects_auto: int = DEFAULT_LOOSE_OBJECTS_AUTO
    pack_files_auto: int = DEFAULT_PACK_FILES_AUTO
    commit_graph_auto: int = DEFAULT_COMMIT_GRAPH_AUTO
    multi_pack_index: bool = False
    gc: GcSettings = field(default_factory=GcSettings)

    @classmethod
    def from_config(
        cls, config: Config, task_names: Sequence[str] | None = None
    ) -> "MaintenanceSettings":
        """Read maintenance settings from configuration.

        Args:
          config: Configuration to read
          task_names: Tasks to look up ``maintenance.<task>.enabled`` for,
            defaults to all built-in tasks
        """
        if task_names is None:
            task_names = [task_cls.name for task_cls in MAINTENANCE_TASKS]
        enabled = {}
        for name in task_names:
            value = config.get_boolean(("maintenance", name), "enabled")
            if value is not None:
                enabled[name] = value
        return cls(
            enabled=enabled,
            loose_objects_auto=config.get_int(
                ("maintenance", "loose-objects"), "auto", DEFAULT_LOOSE_OBJECTS_AUTO
            ),
            pack_files_auto=config.get_int(
                ("maintenance", "pack-files"), "auto", DEFAULT_PACK_FILES_AUTO
            ),
            commit_graph_auto=config.get_int(
                ("maintenance", "commit-graph"), "auto", DEFAULT_COMMIT_GRAPH_AUTO
            ),
            multi_pack_index=bool(config.get_boolean("core", "multiPackIndex", False)),
            gc=GcSettings.from_config(config),
        )


@dataclass
class MaintenanceResult:
    """Result from running maintenance tasks."""

    tasks_run: list[str] = field(default_factory=list)
    tasks_succeeded: list[str] = field(default_factory=list)
    tasks_failed: list[str] = field(default_factory=list)
    lock_contended: bool = False

    @property
    def success(self) -> bool:
        """Whether every task that ran succeeded."""
        return not self.tasks_failed


def _limit_condition(limit: int, reached: Callable[[int], bool]) -> bool:
    # 0 disables a condition, a negative limit forces it.
    if not limit:
        return False
    if limit < 0:
        return True
    return reached(limit)


class MaintenanceTask(ABC):
    """Base class for maintenance tasks.

    Attributes:
      name: Name the task is selected and configured by
      enabled: Whether the task runs when none are selected
      selected: Whether the task was selected explicitly
      order: Position in the selection sequence, starting at 1
      auto_condition: Callable telling whether an automatic run should run
        the task, or None if it never runs automatically
    """

    name: str = ""
    auto_condition: Callable[[], bool] | None = None

    def __init__(
        self,
        repo: Repo,
        options: MaintenanceOptions,
        settings: MaintenanceSettings,
        runner: GitRunner,
    ) -> None:
        """Initialize maintenance task.

        Args:
          repo: Repository object
          options: How the run was invoked
          settings: Maintenance settings
          runner: Runs git subcommands
        """
        self.repo = repo
        self.options = options
        self.settings = settings
        self.runner = runner
        self.enabled = self.default_enabled()
        self.selected = False
        self.order = 0

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"

    @abstractmethod
    def run(self) -> bool:
        """Run the maintenance task.

        Returns:
            True if successful, False otherwise
        """

    def default_enabled(self) -> bool:
        """Return default enabled state for this task.

        Returns:
            True if task should be enabled by default
        """
        return False

    @property
    def quiet(self) -> bool:
        return self.options.quiet


class FetchTask(MaintenanceTask):
    """Fetch from every remote into a hidden ref namespace.

    Branches of remote ``<name>`` land in ``refs/hidden/<name>/``, so the
    user's remote-tracking branches are left alone. A remote that cannot be
    reached does not fail the task.
    """

    name = "fetch"

    def fetch_args(self, remote: str) -> list[str]:
        args = [
            "fetch",
            remote,
            "--prune",
            "--no-tags",
            "--refmap=",
            f"+refs/heads/*:refs/hidden/{remote}/*",
        ]
        if self.quiet:
            args.append("--quiet")
        return args

    def run(self) -> bool:
        for remote in self.repo.remotes():
            returncode = self.runner.run(self.fetch_args(remote))
            if returncode != 0:
                logger.debug("fetch from %s failed with status %d", remote, returncode)
        return True


class LooseObjectsTask(MaintenanceTask):
    """Loose-objects maintenance task.

    Deletes loose objects that are already packed, then packs the rest
    into a new pack named after ``pack/loose``.
    """

    name = "loose-objects"

    def auto_condition(self) -> bool:  # type: ignore[override]
        """Check whether there are enough loose objects to pack."""
        store = self.repo.object_store
        return _limit_condition(
            self.settings.loose_objects_auto,
            lambda limit: store.count_loose_objects(limit) >= limit,
        )

    def prune_packed(self) -> bool:
        args = ["prune-packed"]
        if self.quiet:
            args.append("--quiet")
        return self.runner.run(args) == 0

    def pack_loose(self) -> bool:
        """Feed loose objects to ``git pack-objects``.

        Returns:
          False if pack-objects could not be started or failed
        """
        store = self.repo.object_store
        if not store.has_loose_objects():
            return True
        args = ["pack-objects"]
        if self.quiet:
            args.append("--quiet")
        args.append(store.loose_pack_prefix)
        try:
            proc = self.runner.start(args)
        except OSError as e:
            logger.error("failed to start 'git pack-objects' process: %s", e)
            return False
        stdin = proc.stdin
        assert stdin is not None
        count = 0
        try:
            try:
                for oid in store.iter_loose_objects():
                    stdin.write(oid + b"\n")
                    count += 1
                    if count > LOOSE_OBJECT_BATCH_SIZE:
                        break
            finally:
                stdin.close()
        except BrokenPipeError:
            logger.debug("git pack-objects exited after %d objects", count)
        if proc.wait() != 0:
            logger.error("failed to finish 'git pack-objects' process")
            return False
        return True

    def run(self) -> bool:
        return self.prune_packed() and self.pack_loose()


def get_auto_pack_size(packs: Sequence[PackInfo]) -> int:
    """Pick the multi-pack-index repack batch size.

    One byte more than the second largest pack, so that at least two packs
    are repacked whenever there are three or more; at most two gigabytes.
    """
    max_size = 0
    second_largest_size = 0
    for pack in packs:
        if pack.size > max_size:
            second_largest_size = max_size
            max_size = pack.size
        elif pack.size > second_largest_size:
            second_largest_size = pack.size
    return min(second_largest_size + 1, TWO_GIGABYTES)


class PackFilesTask(MaintenanceTask):
    """Incrementally repack through the multi-pack-index.

    Writes the multi-pack-index, expires packs it no longer needs and
    repacks small packs in batches. Whenever verification fails the
    multi-pack-index is deleted and written from scratch.
    """

    name = "pack-files"

    def auto_condition(self) -> bool:  # type: ignore[override]
        if not self.settings.multi_pack_index:
            return False
        store = self.repo.object_store
        return _limit_condition(
            self.settings.pack_files_auto,
            lambda limit: len(store.packs_not_in_midx()) >= limit,
        )

    def _midx(self, subcommand: str, *extra: str) -> bool:
        args = ["multi-pack-index", subcommand]
        if self.quiet:
            args.append("--no-progress")
        args.extend(extra)
        return self.runner.run(args) == 0

    def rewrite(self) -> bool:
        """Delete the multi-pack-index and write it again."""
        try:
            os.unlink(self.repo.object_store.midx_path)
        except FileNotFoundError:
            pass
        if not self._midx("write"):
            logger.error("failed to rewrite multi-pack-index")
            return False
        return True

    def repack(self) -> bool:
        store = self.repo.object_store
        batch_size = get_auto_pack_size(store.packs)
        store.close()
        if self._midx("repack", f"--batch-size={batch_size}"):
            return True
        if not self._midx("verify"):
            logger.warning("multi-pack-index verify failed after repack")
            return self.rewrite()
        return False

    def run(self) -> bool:
        if not self._midx("write"):
            logger.error("failed to write multi-pack-index")
            return False
        if not self._midx("verify"):
            logger.warning("multi-pack-index verify failed after initial write")
            return self.rewrite()
        self.repo.object_store.close()
        if not self._midx("expire"):
            logger.error("multi-pack-index expire failed")
            return False
        if not self._midx("verify"):
            logger.warning("multi-pack-index verify failed after expire")
            return self.rewrite()
        if not self.repack():
            logger.error("multi-pack-index repack failed")
            return False
        return True


class GcTask(MaintenanceTask):
    """Garbage collection maintenance task."""

    name = "gc"

    def default_enabled(self) -> bool:
        """GC is enabled by default."""
        return True

    def auto_condition(self) -> bool:  # type: ignore[override]
        return need_to_gc(self.repo, self.settings.gc) is not None

    def run(self) -> bool:
        """Run garbage collection.

        Returns:
            True if successful, False otherwise
        """
        self.repo.object_store.close()
        collector = GarbageCollector(
            self.repo,
            self.settings.gc,
            auto=self.options.auto,
            quiet=self.quiet,
            runner=self.runner,
        )
        try:
            collector.run()
        except (GcError, CommandFailed, InvalidExpiry, FileLocked) as e:
            logger.error("%s", e)
            return False
        return True


class CommitGraphTask(MaintenanceTask):
    """Write a split commit-graph covering everything reachable.

    The written commit-graph is verified; if verification fails the chain
    is deleted and written again.
    """

    name = "commit-graph"

    def auto_condition(self) -> bool:  # type: ignore[override]
        """Check whether enough commits are missing from the commit-graph."""
        return _limit_condition(self.settings.commit_graph_auto, self._enough_new_commits)

    def _enough_new_commits(self, limit: int) -> bool:
        graph = self.repo.object_store.load_commit_graph()
        try:
            with CatFileReader(self.runner) as reader:
                return count_commits_not_in_graph(
                    iter_peeled_refs(self.runner), reader, graph, limit
                )
        except (CommandFailed, OSError) as e:
            logger.warning("unable to walk history: %s", e)
            return False

    def _write(self) -> bool:
        args = ["commit-graph", "write", "--split", "--reachable"]
        if self.quiet:
            args.append("--no-progress")
        return self.runner.run(args) == 0

    def _verify(self) -> bool:
        args = ["commit-graph", "verify", "--shallow"]
        if self.quiet:
            args.append("--no-progress")
        return self.runner.run(args) == 0

    def run(self) -> bool:
        """Update the commit-graph.

        Raises:
          MaintenanceError: If a corrupt commit-graph chain cannot be removed
        """
        # Not written during automatic maintenance; gc takes care of it.
        if self.options.auto:
            return True
        self.repo.object_store.close()
        if not self._write():
            logger.error("failed to write commit-graph")
            return False
        if self._verify():
            return True
        logger.warning("commit-graph verify caught error, rewriting")
        chain_path = self.repo.object_store.commit_graph_chain_path
        try:
            os.unlink(chain_path)
        except OSError as e:
            raise MaintenanceError(
                f"failed to remove commit-graph at {chain_path}"
            ) from e
        if not self._write():
            logger.error("failed to rewrite commit-graph")
            return False
        return True


# Built-in tasks, in default execution order.
MAINTENANCE_TASKS: list[type[MaintenanceTask]] = [
    FetchTask,
    LooseObjectsTask,
    PackFilesTask,
    GcTask,
    CommitGraphTask,
]


class TaskRegistry:
    """Maintenance tasks by case-insensitive name, in registration order."""

    def __init__(self) -> None:
        self._tasks: dict[str, MaintenanceTask] = {}
        self._selections = 0

    def __iter__(self) -> Iterator[MaintenanceTask]:
        return iter(self._tasks.values())

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._tasks

    def register(self, task: MaintenanceTask) -> None:
        """Add a task.

        Raises:
          ValueError: If a task with the same name is already registered
        """
        key = task.name.lower()
        if not key:
            raise ValueError("maintenance tasks must have a name")
        if key in self._tasks:
            raise ValueError(f"task '{task.name}' is already registered")
        self._tasks[key] = task

    def get(self, name: str) -> MaintenanceTask | None:
        return self._tasks.get(name.lower())

    @property
    def any_selected(self) -> bool:
        """Whether any task was selected explicitly."""
        return self._selections > 0

    def select(self, name: str) -> MaintenanceTask:
        """Select a task to run, as ``--task=<name>`` does.

        Raises:
          InvalidTask: If the name is empty, unknown or already selected
        """
        if not name:
            raise InvalidTask("--task requires a value")
        task = self.get(name)
        if task is None:
            raise InvalidTask(f"'{name}' is not a valid task")
        if task.selected:
            raise InvalidTask(f"task '{name}' cannot be selected multiple times")
        self._selections += 1
        task.selected = True
        task.order = self._selections
        return task

    def candidates(self) -> list[MaintenanceTask]:
        """Tasks in execution order: selection order if any were selected."""
        tasks = list(self)
        if self.any_selected:
            tasks.sort(key=lambda task: task.order)
        return tasks


def initialize_tasks(
    repo: Repo,
    options: MaintenanceOptions,
    settings: MaintenanceSettings | None = None,
    runner: GitRunner | None = None,
) -> TaskRegistry:
    """Build the registry of built-in tasks.

    ``maintenance.<task>.enabled`` overrides the default enabled state of
    each task.
    """
    if settings is None:
        settings = MaintenanceSettings.from_config(repo.get_config_stack())
    if runner is None:
        runner = GitRunner(repo.path)
    registry = TaskRegistry()
    for task_cls in MAINTENANCE_TASKS:
        task = task_cls(repo, options, settings, runner)
        enabled = settings.enabled.get(task.name)
        if enabled is not None:
            task.enabled = enabled
        registry.register(task)
    return registry


def maintenance_run(
    repo: Repo, registry: TaskRegistry, options: MaintenanceOptions
) -> MaintenanceResult:
    """Run maintenance tasks under the maintenance lock.

    Another maintenance run holding the lock is not an error: nothing is
    run and ``lock_contended`` is set on the result.

    Args:
      repo: Repository object
      registry: Tasks, with enablement and selection applied
      options: How the run was invoked

    Returns:
      MaintenanceResult with task execution results
    """
    result = MaintenanceResult()
    lock = MaintenanceLock(repo.object_store.path)
    if not lock.acquire():
        # Most likely a maintenance run that triggered this one.
        if not options.auto and not options.quiet:
            logger.error("lock file '%s' exists, skipping maintenance", lock.path)
        result.lock_contended = True
        return result

    try:
        selected = registry.any_selected
        for task in registry.candidates():
            if selected and not task.selected:
                continue
            if not selected and not task.enabled:
                continue
            if options.auto and (
                task.auto_condition is None or not task.auto_condition()
            ):
                continue
            result.tasks_run.append(task.name)
            if not task.run():
                result.tasks_failed.append(task.name)
                break
            result.tasks_succeeded.append(task.name)
    finally:
        lock.release()
    return result


def run_maintenance(
    repo: Repo,
    tasks: Sequence[str] | None = None,
    auto: bool = False,
    quiet: bool | None = None,
    runner: GitRunner | None = None,
) -> MaintenanceResult:
    """Run maintenance tasks on a repository.

    Args:
        repo: Repository object
        tasks: Names of tasks to run, in order; defaults to the enabled tasks
        auto: If True, only run tasks if needed
        quiet: Suppress progress output; defaults to True unless standard
          error is a terminal
        runner: Runs git subcommands

    Returns:
        MaintenanceResult with task execution results

    Raises:
        InvalidTask: If a task name is invalid or repeated
    """
    if quiet is None:
        quiet = sys.stderr is None or not sys.stderr.isatty()
    options = MaintenanceOptions(auto=auto, quiet=quiet)
    registry = initialize_tasks(repo, options, runner=runner)
    for name in tasks or ():
        registry.select(name)
    return maintenance_run(repo, registry, options)

# gc.py -- Automatic and manual garbage collection
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

"""Automatic and manual garbage collection.

This module decides whether an automatic gc is worth running and with which
``repack`` arguments (:func:`need_to_gc`), and sequences the gc pipeline
(:class:`GarbageCollector`)::

    pack-refs -> reflog expire -> repack -> prune -> worktree prune -> rerere gc

The heavy lifting is done by ``git`` subcommands. What lives here is the
admission control: sampling loose objects, counting packs, picking a base
pack to keep aside and estimating whether a full repack fits in memory.

An automatic gc may move itself into the background. The detached process
captures its standard error in ``gc.log``; a non-empty ``gc.log`` stops
later automatic runs until somebody removes it or it expires.
"""

__all__ = [
    "DEFAULT_PRUNE_EXPIRE",
    "GCLocked",
    "GarbageCollector",
    "GcError",
    "GcLogCapture",
    "GcLogError",
    "GcResult",
    "GcSettings",
    "GcState",
    "RepackPlan",
    "daemonize",
    "estimate_repack_memory",
    "find_base_packs",
    "need_to_gc",
    "report_last_gc_error",
    "total_ram",
]

import json
import logging
import os
import signal
import subprocess
import sys
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from types import FrameType, TracebackType

from .approxidate import EXPIRE_NEVER, parse_expiry_date
from .command import CommandFailed, GitRunner
from .config import Config, ConfigError
from .errors import HookError
from .file import GitFile, _GitFile
from .hooks import Hook, PreAutoGcShellHook
from .lock import LockCoordinator, PidFileLock
from .object_store import DiskObjectStore, PackInfo
from .repo import Repo

logger = logging.getLogger(__name__)

DEFAULT_GC_AUTO = 6700
DEFAULT_GC_AUTO_PACK_LIMIT = 50
DEFAULT_AGGRESSIVE_DEPTH = 50
DEFAULT_AGGRESSIVE_WINDOW = 250
DEFAULT_LOG_EXPIRY = "1.day.ago"
DEFAULT_PRUNE_EXPIRE = "2.weeks.ago"
DEFAULT_WORKTREE_PRUNE_EXPIRE = "3.months.ago"
DEFAULT_DELTA_CACHE_SIZE = 256 * 1024 * 1024
DEFAULT_DELTA_BASE_CACHE_LIMIT = 96 * 1024 * 1024

# Sizes of the in-memory structures pack-objects allocates per object, as
# laid out on a 64-bit host.
OBJECT_ENTRY_SIZE = 80
BLOB_SIZE = 40
TREE_SIZE = 56
POINTER_SIZE = 8
REVINDEX_ENTRY_SIZE = 16

GC_PID = "gc.pid"
GC_LOG = "gc.log"


class GcError(Exception):
    """Garbage collection could not be carried out."""


class GCLocked(GcError):
    """Another gc is already running on this repository."""

    def __init__(self, hostname: str, pid: int) -> None:
        """Initialize GCLocked.

        Args:
          hostname: Host the other gc is running on
          pid: Process id of the other gc
        """
        self.hostname = hostname
        self.pid = pid
        super().__init__(
            f"gc is already running on machine '{hostname}' pid {pid} "
            "(use --force if not)"
        )


class GcLogError(GcError):
    """``gc.log`` exists but could not be inspected."""


class GcState(Enum):
    """Progress of a gc run through its pipeline."""

    IDLE = "idle"
    PREFLIGHT_CHECKED = "preflight-checked"
    LOCKED = "locked"
    PRE_REPACK_DONE = "pre-repack-done"
    REPACKED = "repacked"
    PRUNED = "pruned"
    FINALIZED = "finalized"


class GcResult(Enum):
    """How a gc run ended."""

    NOT_NEEDED = "not-needed"
    SKIPPED = "skipped"
    ALREADY_RUNNING = "already-running"
    DETACHED = "detached"
    DONE = "done"


def _is_expiry_never(config: Config, name: str) -> bool:
    value = config.get_str("gc", name)
    if value is None:
        return False
    return parse_expiry_date(value, setting=f"gc.{name}") == EXPIRE_NEVER


@dataclass
class GcSettings:
    """gc configuration, read once per invocation.

    Attributes:
      pack_refs: Whether to pack refs; ``"notbare"`` packs them only in
        repositories with a working tree
      prune_reflogs: Whether to expire reflog entries
      aggressive_depth: Delta depth for ``--aggressive``
      aggressive_window: Delta window for ``--aggressive``
      auto_threshold: Approximate number of loose objects that triggers an
        automatic gc; 0 or less disables automatic gc
      auto_pack_limit: Number of packs that triggers a full automatic gc;
        0 or less disables the check
      auto_detach: Whether automatic gc runs in the background
      prune_expire: Cut-off for pruning unreachable loose objects, or None
      worktree_prune_expire: Cut-off for pruning stale worktrees, or None
      log_expiry: Age after which a ``gc.log`` no longer blocks automatic gc
      big_pack_threshold: Packs at least this big are kept during a full
        repack; 0 disables this
      delta_cache_size: ``pack.deltaCacheSize``
      delta_base_cache_limit: ``core.deltaBaseCacheLimit``
      write_commit_graph: Whether gc updates the commit-graph
    """

    pack_refs: bool | str = True
    prune_reflogs: bool = True
    aggressive_depth: int = DEFAULT_AGGRESSIVE_DEPTH
    aggressive_window: int = DEFAULT_AGGRESSIVE_WINDOW
    auto_threshold: int = DEFAULT_GC_AUTO
    auto_pack_limit: int = DEFAULT_GC_AUTO_PACK_LIMIT
    auto_detach: bool = True
    prune_expire: str | None = DEFAULT_PRUNE_EXPIRE
    worktree_prune_expire: str | None = DEFAULT_WORKTREE_PRUNE_EXPIRE
    log_expiry: str = DEFAULT_LOG_EXPIRY
    big_pack_threshold: int = 0
    delta_cache_size: int = DEFAULT_DELTA_CACHE_SIZE
    delta_base_cache_limit: int = DEFAULT_DELTA_BASE_CACHE_LIMIT
    write_commit_graph: bool = True

    @classmethod
    def from_config(cls, config: Config) -> "GcSettings":
        """Read gc settings from configuration.

        Raises:
          InvalidExpiry: If a reflog expiry setting cannot be parsed
          ConfigError: If a boolean or integer setting is malformed
        """
        pack_refs = config.get_boolean_or_str("gc", "packRefs", True)
        if isinstance(pack_refs, str) and pack_refs != "notbare":
            raise ConfigError(f"bad boolean config value '{pack_refs}' for 'gc.packrefs'")
        prune_reflogs = not (
            _is_expiry_never(config, "reflogExpire")
            and _is_expiry_never(config, "reflogExpireUnreachable")
        )
        write_commit_graph = bool(
            config.get_boolean("gc", "writeCommitGraph", True)
            and config.get_boolean("core", "commitGraph", True)
        )
        return cls(
            pack_refs=pack_refs,
            prune_reflogs=prune_reflogs,
            aggressive_depth=config.get_int("gc", "aggressiveDepth", DEFAULT_AGGRESSIVE_DEPTH),
            aggressive_window=config.get_int(
                "gc", "aggressiveWindow", DEFAULT_AGGRESSIVE_WINDOW
            ),
            auto_threshold=config.get_int("gc", "auto", DEFAULT_GC_AUTO),
            auto_pack_limit=config.get_int(
                "gc", "autoPackLimit", DEFAULT_GC_AUTO_PACK_LIMIT
            ),
            auto_detach=bool(config.get_boolean("gc", "autoDetach", True)),
            prune_expire=config.get_str("gc", "pruneExpire", DEFAULT_PRUNE_EXPIRE),
            worktree_prune_expire=config.get_str(
                "gc", "worktreePruneExpire", DEFAULT_WORKTREE_PRUNE_EXPIRE
            ),
            log_expiry=config.get_str("gc", "logExpiry", DEFAULT_LOG_EXPIRY)
            or DEFAULT_LOG_EXPIRY,
            big_pack_threshold=config.get_int("gc", "bigPackThreshold", 0),
            delta_cache_size=config.get_int(
                "pack", "deltaCacheSize", DEFAULT_DELTA_CACHE_SIZE
            ),
            delta_base_cache_limit=config.get_int(
                "core", "deltaBaseCacheLimit", DEFAULT_DELTA_BASE_CACHE_LIMIT
            ),
            write_commit_graph=write_commit_graph,
        )

    def should_pack_refs(self, bare: bool) -> bool:
        """Resolve ``gc.packRefs`` for a bare or non-bare repository."""
        if self.pack_refs == "notbare":
            return not bare
        return bool(self.pack_refs)


@dataclass
class RepackPlan:
    """What kind of repack a gc run performs.

    Attributes:
      full: Repack everything into one pack (``-a``/``-A``) rather than just
        absorbing loose objects
      keep_packs: Names of packs left alone by a full repack
      prune_expire: Cut-off for unreachable objects in a full repack
    """

    full: bool
    keep_packs: list[str] = field(default_factory=list)
    prune_expire: str | None = None

    def repack_args(self) -> list[str]:
        """Mode-specific arguments for ``git repack``."""
        if not self.full:
            return ["--no-write-bitmap-index"]
        if self.prune_expire == "now":
            args = ["-a"]
        else:
            args = ["-A"]
            if self.prune_expire:
                args.append(f"--unpack-unreachable={self.prune_expire}")
        args.extend(f"--keep-pack={name}" for name in self.keep_packs)
        return args

    def to_json(self) -> str:
        """Serialize the plan for handing it to a detached process."""
        return json.dumps(
            {
                "full": self.full,
                "keep_packs": self.keep_packs,
                "prune_expire": self.prune_expire,
            }
        )

    @classmethod
    def from_json(cls, text: str) -> "RepackPlan":
        """Deserialize a plan written by :meth:`to_json`.

        Raises:
          ValueError: If the text is not a serialized plan
        """
        try:
            data = json.loads(text)
            return cls(
                full=bool(data["full"]),
                keep_packs=[str(name) for name in data["keep_packs"]],
                prune_expire=data["prune_expire"],
            )
        except (KeyError, TypeError) as e:
            raise ValueError(f"invalid repack plan: {text!r}") from e


def find_base_packs(
    packs: Sequence[PackInfo], limit: int
) -> tuple[PackInfo | None, list[str]]:
    """Choose local packs to keep aside during a full repack.

    With a ``limit`` of 0 the single largest local pack is chosen; a later
    pack only replaces the current choice when it is strictly larger, so the
    first of several equally large packs wins. With a positive ``limit``
    every local pack of at least that size is kept and there is no base.

    Args:
      packs: Packs in enumeration order
      limit: Size threshold in bytes, or 0

    Returns:
      Tuple of the base pack (or None) and the names of the packs to keep
    """
    base: PackInfo | None = None
    keep: list[str] = []
    for pack in packs:
        if not pack.local:
            continue
        if limit:
            if pack.size >= limit:
                keep.append(pack.name)
        elif base is None or base.size < pack.size:
            base = pack
    if base is not None:
        keep.append(base.name)
    return base, keep


def estimate_repack_memory(
    base: PackInfo | None,
    object_count: int,
    delta_cache_size: int = DEFAULT_DELTA_CACHE_SIZE,
    delta_base_cache_limit: int = DEFAULT_DELTA_BASE_CACHE_LIMIT,
) -> int:
    """Estimate how much memory a full repack would need.

    This is a conservative upper bound, not a measurement.

    Args:
      base: The pack that would be read first
      object_count: Approximate number of objects in the repository
      delta_cache_size: Size of the delta cache of pack-objects
      delta_base_cache_limit: Size of the delta base cache

    Returns:
      Estimated number of bytes, or 0 without a base pack or objects
    """
    if base is None or not object_count:
        return 0
    # The whole base pack should fit in the OS file cache.
    os_cache = base.size + base.index_size
    heap = OBJECT_ENTRY_SIZE * object_count
    # Assume half of the objects are blobs and the other half trees.
    heap += BLOB_SIZE * object_count // 2
    heap += TREE_SIZE * object_count // 2
    # The object hash table, underestimated.
    heap += POINTER_SIZE * object_count
    heap += REVINDEX_ENTRY_SIZE * object_count
    heap += delta_base_cache_limit
    heap += delta_cache_size
    return os_cache + heap


def _win32_total_ram() -> int:
    import ctypes

    class MEMORYSTATUSEX(ctypes.Structure):
        _fields_ = [
            ("dwLength", ctypes.c_ulong),
            ("dwMemoryLoad", ctypes.c_ulong),
            ("ullTotalPhys", ctypes.c_ulonglong),
            ("ullAvailPhys", ctypes.c_ulonglong),
            ("ullTotalPageFile", ctypes.c_ulonglong),
            ("ullAvailPageFile", ctypes.c_ulonglong),
            ("ullTotalVirtual", ctypes.c_ulonglong),
            ("ullAvailVirtual", ctypes.c_ulonglong),
            ("ullAvailExtendedVirtual", ctypes.c_ulonglong),
        ]

    status = MEMORYSTATUSEX()
    status.dwLength = ctypes.sizeof(MEMORYSTATUSEX)
    kernel32 = ctypes.windll.kernel32  # type: ignore[attr-defined]
    if not kernel32.GlobalMemoryStatusEx(ctypes.byref(status)):
        return 0
    return int(status.ullTotalPhys)


def total_ram() -> int:
    """Return the amount of physical memory in bytes, or 0 if unknown."""
    if sys.platform == "win32":
        return _win32_total_ram()
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (ValueError, OSError):
        return 0
    if pages < 0 or page_size < 0:
        return 0
    return pages * page_size


def need_to_gc(
    repo: Repo,
    settings: GcSettings,
    *,
    object_store: DiskObjectStore | None = None,
    hook: Hook | None = None,
    total_memory: Callable[[], int] = total_ram,
) -> RepackPlan | None:
    """Decide whether an automatic gc is needed.

    Too many packs call for a full repack; failing that, too many loose
    objects call for an incremental one. Either way the ``pre-auto-gc``
    hook may veto the run.

    Args:
      repo: Repository to inspect
      settings: gc settings
      object_store: Object store to inspect, defaults to the repository's
      hook: The pre-auto-gc hook, defaults to the repository's
      total_memory: Returns the amount of physical memory

    Returns:
      The repack to perform, or None when no gc is needed
    """
    if settings.auto_threshold <= 0:
        return None
    if object_store is None:
        object_store = repo.object_store

    limit = settings.auto_pack_limit
    if limit > 0 and object_store.count_relevant_packs() > limit:
        packs = object_store.packs
        if settings.big_pack_threshold:
            _, keep = find_base_packs(packs, settings.big_pack_threshold)
            if len(keep) >= limit:
                _, keep = find_base_packs(packs, 0)
        else:
            base, keep = find_base_packs(packs, 0)
            mem_have = total_memory()
            mem_want = estimate_repack_memory(
                base,
                object_store.approximate_object_count(),
                settings.delta_cache_size,
                settings.delta_base_cache_limit,
            )
            # Leave half of the memory to the OS and other processes.
            if not mem_have or mem_want < mem_have // 2:
                keep = []
        plan = RepackPlan(full=True, keep_packs=keep, prune_expire=settings.prune_expire)
    elif object_store.too_many_loose_objects(settings.auto_threshold):
        plan = RepackPlan(full=False)
    else:
        return None

    if hook is None:
        hook = PreAutoGcShellHook(repo.hooks_dir(), cwd=repo.path)
    try:
        hook.execute()
    except HookError as e:
        logger.debug("automatic gc vetoed: %s", e)
        return None
    return plan


def report_last_gc_error(path: str, expire_time: int) -> bool:
    """Report the failure recorded by the last detached gc, if any.

    Args:
      path: Path of ``gc.log``
      expire_time: Logs modified before this timestamp are ignored

    Returns:
      True if a recent failure was reported and automatic gc should be
      skipped

    Raises:
      GcLogError: If ``gc.log`` exists but cannot be read
    """
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return False
    except OSError as e:
        raise GcLogError(f"cannot stat '{path}': {e.strerror}") from e
    if st.st_mtime < expire_time:
        return False
    try:
        with open(path, "rb") as f:
            contents = f.read()
    except OSError as e:
        raise GcLogError(f"cannot read '{path}': {e.strerror}") from e
    if not contents:
        return False
    logger.warning(
        "The last gc run reported the following. Please correct the root cause\n"
        "and remove %s.\n"
        "Automatic cleanup will not be performed until the file is removed.\n\n"
        "%s",
        path,
        contents.decode("utf-8", "replace"),
    )
    return True


def daemonize(repo: Repo, args: Sequence[str]) -> bool:
    """Continue a gc in a detached background process.

    Args:
      repo: Repository being collected
      args: Command line arguments for ``python -m gitmaint``

    Returns:
      False if the background process could not be started
    """
    kwargs: dict[str, object] = {}
    if sys.platform == "win32":
        kwargs["creationflags"] = (
            subprocess.DETACHED_PROCESS | subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
        )
    else:
        kwargs["start_new_session"] = True
    try:
        subprocess.Popen(
            [sys.executable, "-m", "gitmaint", "-C", repo.path, *args],
            cwd=repo.path,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            close_fds=True,
            **kwargs,  # type: ignore[call-overload]
        )
    except OSError as e:
        logger.debug("unable to detach gc: %s", e)
        return False
    return True


class _CaptureInterrupted(BaseException):
    """A termination signal arrived while ``gc.log`` was being captured."""

    def __init__(self, signum: int) -> None:
        self.signum = signum
        super().__init__(signum)


_CAPTURED_SIGNALS = tuple(
    getattr(signal, name)
    for name in ("SIGHUP", "SIGINT", "SIGQUIT", "SIGTERM")
    if hasattr(signal, name)
)


class GcLogCapture:
    """Captures standard error of a detached gc in ``gc.log``.

    Standard error (file descriptor 2) is redirected into ``gc.log.lock``
    for the duration of the ``with`` block. On the way out the log is
    kept when anything was written to it, and ``gc.log`` is removed
    otherwise. The same decision is made when the process is terminated
    by SIGHUP, SIGINT, SIGQUIT or SIGTERM, after which the signal is
    delivered again with its default disposition.

    Args:
      path: Path of ``gc.log``
      cleanup: Called before such a signal is delivered again, so that
        state such as ``gc.pid`` does not outlive the process
    """

    def __init__(self, path: str, cleanup: Callable[[], None] | None = None) -> None:
        self.path = path
        self.cleanup = cleanup
        self._file: _GitFile | None = None
        self._saved_stderr: int | None = None
        self._saved_handlers: dict[int, object] = {}

    def __enter__(self) -> "GcLogCapture":
        f = GitFile(self.path, "wb")
        assert isinstance(f, _GitFile)
        self._file = f
        sys.stderr.flush()
        self._saved_stderr = os.dup(2)
        os.dup2(f.fileno(), 2)
        if threading.current_thread() is threading.main_thread():
            for signum in _CAPTURED_SIGNALS:
                self._saved_handlers[signum] = signal.signal(signum, self._on_signal)
        return self

    def _on_signal(self, signum: int, frame: FrameType | None) -> None:
        raise _CaptureInterrupted(signum)

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        for signum, handler in self._saved_handlers.items():
            signal.signal(signum, handler)  # type: ignore[arg-type]
        self._saved_handlers = {}
        sys.stderr.flush()
        if isinstance(exc_val, Exception):
            # Record why the run died so the next automatic gc reports it.
            os.write(2, f"error: {exc_val}\n".encode("utf-8", "replace"))
        try:
            self._process_log_file()
        finally:
            if self._saved_stderr is not None:
                os.dup2(self._saved_stderr, 2)
                os.close(self._saved_stderr)
                self._saved_stderr = None
        if isinstance(exc_val, _CaptureInterrupted):
            if self.cleanup is not None:
                self.cleanup()
            signal.signal(exc_val.signum, signal.SIG_DFL)
            os.kill(os.getpid(), exc_val.signum)

    def _process_log_file(self) -> None:
        f, self._file = self._file, None
        if f is None:
            return
        try:
            st = os.fstat(f.fileno())
        except OSError as e:
            # Leave a note in the log along with whatever else is in it.
            f.write(f"Failed to fstat {f.lockfilename}: {e.strerror}\n".encode())
            f.close()
            return
        if st.st_size:
            f.close()
            return
        try:
            os.unlink(self.path)
        except FileNotFoundError:
            pass
        f.abort()


class GarbageCollector:
    """Runs gc on a repository.

    Args:
      repo: Repository to collect
      settings: gc settings, read from the repository configuration by default
      auto: Only run when :func:`need_to_gc` says so, possibly in the
        background
      quiet: Suppress progress output
      force: Run even if another gc appears to be running
      aggressive: Spend more time on finding deltas
      keep_largest_pack: Keep (True) or include (False) the largest pack in a
        manual gc; None defers to ``gc.bigPackThreshold``
      prune_expire: Cut-off for pruning; None uses ``gc.pruneExpire``
      no_prune: Do not prune unreachable objects at all
      runner: Runs git subcommands
      lock: The gc lock, ``gc.pid`` by default
      daemonize: Starts the detached process; see :func:`daemonize`
    """

    def __init__(
        self,
        repo: Repo,
        settings: GcSettings | None = None,
        *,
        auto: bool = False,
        quiet: bool = False,
        force: bool = False,
        aggressive: bool = False,
        keep_largest_pack: bool | None = None,
        prune_expire: str | None = None,
        no_prune: bool = False,
        runner: GitRunner | None = None,
        lock: LockCoordinator | None = None,
        daemonize: Callable[[Repo, Sequence[str]], bool] = daemonize,
    ) -> None:
        self.repo = repo
        self.config = repo.get_config_stack()
        if settings is None:
            settings = GcSettings.from_config(self.config)
        if no_prune:
            settings = replace(settings, prune_expire=None)
        elif prune_expire is not None:
            settings = replace(settings, prune_expire=prune_expire)
        self.settings = settings
        self.auto = auto
        self.quiet = quiet
        self.force = force
        self.aggressive = aggressive
        self.keep_largest_pack = keep_largest_pack
        self.runner = runner if runner is not None else GitRunner(repo.path)
        if lock is None:
            lock = PidFileLock(os.path.join(repo.commondir(), GC_PID))
        self.lock = lock
        self._daemonize = daemonize
        self.gc_log_path = os.path.join(repo.commondir(), GC_LOG)
        self.state = GcState.IDLE
        self._before_repack_done = False
        self._log_expire_time = 0

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.repo!r}, auto={self.auto!r})"

    def _preflight(self) -> None:
        self._log_expire_time = parse_expiry_date(
            self.settings.log_expiry, setting="gc.logExpiry"
        )
        if self.settings.prune_expire is not None:
            parse_expiry_date(self.settings.prune_expire, setting="gc.pruneExpire")
        if self.settings.worktree_prune_expire is not None:
            parse_expiry_date(
                self.settings.worktree_prune_expire, setting="gc.worktreePruneExpire"
            )
        self.state = GcState.PREFLIGHT_CHECKED

    def _run_git(self, args: list[str]) -> None:
        returncode = self.runner.run(args)
        if returncode != 0:
            raise CommandFailed(args, returncode)

    def repack_argv(self, plan: RepackPlan) -> list[str]:
        """Build the full ``git repack`` argument list for a plan."""
        args = ["repack", "-d", "-l"]
        if self.aggressive:
            args.append("-f")
            if self.settings.aggressive_depth > 0:
                args.append(f"--depth={self.settings.aggressive_depth}")
            if self.settings.aggressive_window > 0:
                args.append(f"--window={self.settings.aggressive_window}")
        if self.quiet:
            args.append("-q")
        args.extend(plan.repack_args())
        return args

    def manual_plan(self) -> RepackPlan:
        """The repack a manual gc performs."""
        packs = self.repo.object_store.packs
        keep: list[str] = []
        if self.keep_largest_pack is not None:
            if self.keep_largest_pack:
                _, keep = find_base_packs(packs, 0)
        elif self.settings.big_pack_threshold:
            _, keep = find_base_packs(packs, self.settings.big_pack_threshold)
        return RepackPlan(
            full=True, keep_packs=keep, prune_expire=self.settings.prune_expire
        )

    def detached_args(self, plan: RepackPlan) -> list[str]:
        """Command line that continues this run in a detached process."""
        args = ["gc", "--auto"]
        if self.quiet:
            args.append("--quiet")
        if self.force:
            args.append("--force")
        if self.aggressive:
            args.append("--aggressive")
        if self.settings.prune_expire is None:
            args.append("--no-prune")
        else:
            args.append(f"--prune={self.settings.prune_expire}")
        args.extend(["--detached-plan", plan.to_json()])
        return args

    def run(self) -> GcResult:
        """Run gc.

        Returns:
          How the run ended

        Raises:
          InvalidExpiry: If an expiry setting cannot be parsed
          GcLogError: If ``gc.log`` cannot be inspected
          GCLocked: If a manual gc finds another gc running
          CommandFailed: If a git subcommand of the pipeline fails
        """
        self._preflight()
        if self.auto:
            plan = need_to_gc(self.repo, self.settings)
            if plan is None:
                return GcResult.NOT_NEEDED
            if not self.quiet:
                if self.settings.auto_detach:
                    logger.info(
                        "Auto packing the repository in background for optimum performance."
                    )
                else:
                    logger.info("Auto packing the repository for optimum performance.")
                logger.info('See "git help gc" for manual housekeeping.')
            if self.settings.auto_detach:
                if report_last_gc_error(self.gc_log_path, self._log_expire_time):
                    return GcResult.SKIPPED
                if self.lock.acquire(self.force) is not None:
                    return GcResult.ALREADY_RUNNING
                try:
                    self._before_repack()
                finally:
                    self.lock.release()
                if self._daemonize(self.repo, self.detached_args(plan)):
                    return GcResult.DETACHED
                # Carry on in the foreground.
        else:
            plan = self.manual_plan()
        return self._run_locked(plan, daemonized=False)

    def run_detached(self, plan: RepackPlan) -> GcResult:
        """Continue an automatic gc in the detached process.

        The steps that precede repacking were already run by the parent.
        Standard error is captured in ``gc.log``.
        """
        self._preflight()
        self._before_repack_done = True
        return self._run_locked(plan, daemonized=True)

    def _run_locked(self, plan: RepackPlan, daemonized: bool) -> GcResult:
        holder = self.lock.acquire(self.force)
        if holder is not None:
            if self.auto:
                return GcResult.ALREADY_RUNNING
            raise GCLocked(holder.hostname, holder.pid)
        self.state = GcState.LOCKED
        try:
            if daemonized:
                with GcLogCapture(self.gc_log_path, cleanup=self.lock.release):
                    self._pipeline(plan, daemonized)
            else:
                self._pipeline(plan, daemonized)
        finally:
            self.lock.release()
        return GcResult.DONE

    def _before_repack(self) -> None:
        # Runs at most once, even across the parent and detached phases.
        if self._before_repack_done:
            return
        self._before_repack_done = True
        if self.settings.should_pack_refs(self.repo.bare):
            self._run_git(["pack-refs", "--all", "--prune"])
        if self.settings.prune_reflogs:
            self._run_git(["reflog", "expire", "--all"])

    def _pipeline(self, plan: RepackPlan, daemonized: bool) -> None:
        self._before_repack()
        self.state = GcState.PRE_REPACK_DONE

        object_store = self.repo.object_store
        if not self.repo.has_precious_objects(self.config):
            object_store.close()
            self._run_git(self.repack_argv(plan))
            if self.settings.prune_expire is not None:
                args = ["prune", "--expire", self.settings.prune_expire]
                if self.quiet:
                    args.append("--no-progress")
                if self.repo.has_promisor_remote(self.config):
                    args.append("--exclude-promisor-objects")
                self._run_git(args)
        self.state = GcState.REPACKED

        if self.settings.worktree_prune_expire is not None:
            self._run_git(
                ["worktree", "prune", "--expire", self.settings.worktree_prune_expire]
            )
        self._run_git(["rerere", "gc"])
        self.state = GcState.PRUNED

        self._finalize(daemonized)
        self.state = GcState.FINALIZED

    def _finalize(self, daemonized: bool) -> None:
        object_store = self.repo.object_store
        if object_store.find_pack_garbage():
            object_store.close()
            object_store.clean_pack_garbage()

        if self.settings.write_commit_graph:
            args = ["commit-graph", "write", "--reachable"]
            if self.quiet or daemonized:
                args.append("--no-progress")
            returncode = self.runner.run(args)
            if returncode != 0:
                if not self.auto:
                    raise CommandFailed(args, returncode)
                logger.warning("failed to write commit-graph")

        if self.auto and object_store.too_many_loose_objects(
            self.settings.auto_threshold
        ):
            logger.warning(
                "There are too many unreachable loose objects; "
                "run 'git prune' to remove them."
            )

        if not daemonized:
            try:
                os.unlink(self.gc_log_path)
            except FileNotFoundError:
                pass

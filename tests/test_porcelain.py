# test_porcelain.py -- porcelain tests
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

"""Tests for gitmaint.porcelain."""

import os
import shutil
import tempfile

from gitmaint import porcelain
from gitmaint.errors import NotGitRepository
from gitmaint.gc import GcResult, RepackPlan
from gitmaint.maintenance import InvalidTask
from gitmaint.repo import Repo

from . import TestCase
from .utils import RecordingRunner, write_loose_object


class PorcelainTestCase(TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.test_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.test_dir)
        self.repo_path = os.path.join(self.test_dir, "repo")
        self.repo = Repo.init(self.repo_path, mkdir=True)
        self.addCleanup(self.repo.close)
        self.runner = RecordingRunner(self.repo_path)


class OpenRepoClosingTests(PorcelainTestCase):
    def test_repo_is_passed_through(self) -> None:
        with porcelain.open_repo_closing(self.repo) as r:
            self.assertIs(self.repo, r)

    def test_path(self) -> None:
        with porcelain.open_repo_closing(self.repo_path) as r:
            self.assertIsInstance(r, Repo)
            self.assertEqual(self.repo_path, r.path)

    def test_not_a_repository(self) -> None:
        self.assertRaises(
            NotGitRepository, porcelain.open_repo_closing, self.test_dir
        )


class GcTests(PorcelainTestCase):
    def test_gc_path(self) -> None:
        result = porcelain.gc(self.repo_path, runner=self.runner)
        self.assertEqual(GcResult.DONE, result)
        self.assertIn("repack", self.runner.commands())

    def test_gc_repo(self) -> None:
        result = porcelain.gc(self.repo, quiet=True, runner=self.runner)
        self.assertEqual(GcResult.DONE, result)
        self.assertIn(["prune", "--expire", "2.weeks.ago", "--no-progress"], self.runner.calls)

    def test_gc_options(self) -> None:
        porcelain.gc(self.repo, aggressive=True, prune="now", runner=self.runner)
        self.assertIn(
            ["repack", "-d", "-l", "-f", "--depth=50", "--window=250", "-a"],
            self.runner.calls,
        )
        self.assertIn(["prune", "--expire", "now"], self.runner.calls)

    def test_gc_no_prune(self) -> None:
        porcelain.gc(self.repo, no_prune=True, runner=self.runner)
        self.assertNotIn("prune", self.runner.commands())

    def test_gc_auto_not_needed(self) -> None:
        result = porcelain.gc(self.repo, auto=True, runner=self.runner)
        self.assertEqual(GcResult.NOT_NEEDED, result)
        self.assertEqual([], self.runner.calls)

    def test_gc_auto_foreground(self) -> None:
        config = self.repo.get_config()
        config.set("gc", "auto", 256)
        config.set("gc", "autoDetach", False)
        config.write_to_path()
        for i in range(2):
            write_loose_object(self.repo.object_store.path, "17" + "%038x" % i)
        result = porcelain.gc(self.repo, auto=True, quiet=True, runner=self.runner)
        self.assertEqual(GcResult.DONE, result)

    def test_gc_detached_plan(self) -> None:
        result = porcelain.gc(
            self.repo_path,
            auto=True,
            detached_plan=RepackPlan(full=False),
            runner=self.runner,
        )
        self.assertEqual(GcResult.DONE, result)
        self.assertNotIn("pack-refs", self.runner.commands())
        self.assertIn(["repack", "-d", "-l", "--no-write-bitmap-index"], self.runner.calls)


class MaintenanceRunTests(PorcelainTestCase):
    def test_default_tasks(self) -> None:
        result = porcelain.maintenance_run(self.repo_path, quiet=True, runner=self.runner)
        self.assertEqual(["gc"], result.tasks_succeeded)
        self.assertTrue(result.success)

    def test_selected_tasks(self) -> None:
        result = porcelain.maintenance_run(
            self.repo, tasks=["commit-graph"], quiet=True, runner=self.runner
        )
        self.assertEqual(["commit-graph"], result.tasks_run)
        self.assertEqual(["commit-graph", "commit-graph"], self.runner.commands())

    def test_invalid_task(self) -> None:
        self.assertRaises(
            InvalidTask,
            porcelain.maintenance_run,
            self.repo,
            tasks=["gc", "gc"],
            runner=self.runner,
        )

    def test_failure(self) -> None:
        self.runner.returncodes[("commit-graph", "write")] = 1
        result = porcelain.maintenance_run(
            self.repo, tasks=["commit-graph", "gc"], quiet=True, runner=self.runner
        )
        self.assertEqual(["commit-graph"], result.tasks_failed)
        self.assertEqual([], result.tasks_succeeded)
        self.assertFalse(result.success)

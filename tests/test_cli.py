# test_cli.py -- tests for gitmaint.cli
# Copyright (C) 2024 Jelmer Vernooij <jelmer@jelmer.uk>
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

"""Tests for gitmaint.cli."""

import io
import logging
import os
import shutil
import tempfile
from unittest.mock import patch

from gitmaint import cli
from gitmaint.command import CommandFailed
from gitmaint.gc import GCLocked, GcResult, RepackPlan
from gitmaint.maintenance import MaintenanceResult
from gitmaint.repo import Repo

from . import TestCase


class CliTestCase(TestCase):
    """Runs cli.main in a scratch repository."""

    def setUp(self) -> None:
        super().setUp()
        self.test_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.test_dir)
        self.repo_path = os.path.join(self.test_dir, "repo")
        Repo.init(self.repo_path, mkdir=True).close()
        self.addCleanup(os.chdir, os.getcwd())
        root = logging.getLogger()
        self.addCleanup(setattr, root, "handlers", list(root.handlers))
        self.addCleanup(root.setLevel, root.level)
        gitmaint_logger = logging.getLogger("gitmaint")
        self.addCleanup(
            setattr, gitmaint_logger, "handlers", list(gitmaint_logger.handlers)
        )

    def run_command(self, *args):
        with patch("sys.stdout", new_callable=io.StringIO), patch(
            "sys.stderr", new_callable=io.StringIO
        ):
            return cli.main(["-C", self.repo_path, *args])


class MainTests(CliTestCase):
    def test_no_arguments(self):
        with patch("sys.stdout", new_callable=io.StringIO) as stdout:
            self.assertEqual(129, cli.main([]))
        self.assertIn("usage: gitmaint", stdout.getvalue())

    def test_unknown_command(self):
        with self.assertLogs("gitmaint.cli", "ERROR") as cm:
            self.assertEqual(129, self.run_command("bogus"))
        self.assertEqual(["No such subcommand: bogus"], [r.getMessage() for r in cm.records])

    def test_bad_directory(self):
        missing = os.path.join(self.test_dir, "missing")
        with self.assertLogs("gitmaint.cli", "ERROR"):
            self.assertEqual(128, cli.main(["-C", missing, "gc"]))

    def test_directory(self):
        with patch("gitmaint.cli.porcelain.gc", return_value=GcResult.DONE):
            self.assertEqual(0, self.run_command("gc"))
        self.assertEqual(
            os.path.realpath(self.repo_path), os.path.realpath(os.getcwd())
        )

    def test_not_a_repository(self):
        with self.assertLogs("gitmaint.cli", "ERROR") as cm:
            self.assertEqual(128, cli.main(["-C", self.test_dir, "gc"]))
        self.assertTrue(cm.records[0].getMessage().startswith("fatal: "))


class GcCommandTests(CliTestCase):
    def setUp(self) -> None:
        super().setUp()
        patcher = patch("gitmaint.cli.porcelain.gc", return_value=GcResult.DONE)
        self.gc = patcher.start()
        self.addCleanup(patcher.stop)

    def gc_kwargs(self):
        self.assertEqual(1, self.gc.call_count)
        args, kwargs = self.gc.call_args
        self.assertEqual((".",), args)
        return kwargs

    def test_defaults(self):
        self.assertEqual(0, self.run_command("gc"))
        self.assertEqual(
            {
                "auto": False,
                "aggressive": False,
                "quiet": False,
                "force": False,
                "keep_largest_pack": None,
                "prune": None,
                "no_prune": False,
                "detached_plan": None,
            },
            self.gc_kwargs(),
        )

    def test_options(self):
        self.run_command(
            "gc", "--auto", "--aggressive", "-q", "--force", "--keep-largest-pack"
        )
        kwargs = self.gc_kwargs()
        self.assertTrue(kwargs["auto"])
        self.assertTrue(kwargs["aggressive"])
        self.assertTrue(kwargs["quiet"])
        self.assertTrue(kwargs["force"])
        self.assertTrue(kwargs["keep_largest_pack"])

    def test_no_keep_largest_pack(self):
        self.run_command("gc", "--no-keep-largest-pack")
        self.assertIs(False, self.gc_kwargs()["keep_largest_pack"])

    def test_prune_without_date(self):
        self.run_command("gc", "--prune")
        self.assertEqual("2.weeks.ago", self.gc_kwargs()["prune"])

    def test_prune_date(self):
        self.run_command("gc", "--prune=now")
        self.assertEqual("now", self.gc_kwargs()["prune"])

    def test_no_prune(self):
        self.run_command("gc", "--no-prune")
        self.assertTrue(self.gc_kwargs()["no_prune"])

    def test_detached_plan(self):
        plan = RepackPlan(full=True, keep_packs=["pack-a.pack"], prune_expire="now")
        self.run_command("gc", "--auto", "--detached-plan", plan.to_json())
        self.assertEqual(plan, self.gc_kwargs()["detached_plan"])

    def test_invalid_detached_plan(self):
        with self.assertLogs("gitmaint.cli", "ERROR"):
            self.assertEqual(129, self.run_command("gc", "--detached-plan", "{}"))
        self.gc.assert_not_called()

    def test_unknown_option(self):
        with self.assertLogs("gitmaint.cli", "ERROR"):
            self.assertEqual(129, self.run_command("gc", "--bogus"))
        self.gc.assert_not_called()

    def test_command_failed(self):
        self.gc.side_effect = CommandFailed(["repack", "-d"], 1)
        with self.assertLogs("gitmaint.cli", "ERROR") as cm:
            self.assertEqual(128, self.run_command("gc"))
        self.assertEqual(["fatal: failed to run repack"], [r.getMessage() for r in cm.records])

    def test_locked(self):
        self.gc.side_effect = GCLocked("otherhost", 1234)
        with self.assertLogs("gitmaint.cli", "ERROR") as cm:
            self.assertEqual(128, self.run_command("gc"))
        self.assertIn("pid 1234", cm.records[0].getMessage())

    def test_skipped_is_success(self):
        self.gc.return_value = GcResult.SKIPPED
        self.assertEqual(0, self.run_command("gc", "--auto"))


class MaintenanceCommandTests(CliTestCase):
    def test_no_subcommand(self):
        with self.assertLogs("gitmaint.cli", "ERROR") as cm:
            self.assertEqual(129, self.run_command("maintenance"))
        self.assertEqual(["Supported subcommands: run"], [r.getMessage() for r in cm.records])

    def test_unknown_subcommand(self):
        with self.assertLogs("gitmaint.cli", "ERROR"):
            self.assertEqual(129, self.run_command("maintenance", "start"))

    def test_invalid_task(self):
        with self.assertLogs("gitmaint.cli", "ERROR") as cm:
            self.assertEqual(129, self.run_command("maintenance", "run", "--task=bogus"))
        self.assertEqual(["'bogus' is not a valid task"], [r.getMessage() for r in cm.records])

    def test_duplicate_task(self):
        with self.assertLogs("gitmaint.cli", "ERROR"):
            self.assertEqual(
                129,
                self.run_command("maintenance", "run", "--task=gc", "--task=gc"),
            )

    @patch("gitmaint.cli.porcelain.maintenance_run")
    def test_run(self, maintenance_run):
        maintenance_run.return_value = MaintenanceResult(
            tasks_run=["commit-graph", "gc"], tasks_succeeded=["commit-graph", "gc"]
        )
        self.assertEqual(
            0,
            self.run_command(
                "maintenance", "run", "--task=commit-graph", "--task=gc", "--quiet"
            ),
        )
        maintenance_run.assert_called_once_with(
            ".", tasks=["commit-graph", "gc"], auto=False, quiet=True
        )

    @patch("gitmaint.cli.porcelain.maintenance_run")
    def test_run_defaults(self, maintenance_run):
        maintenance_run.return_value = MaintenanceResult()
        self.assertEqual(0, self.run_command("maintenance", "run", "--auto"))
        maintenance_run.assert_called_once_with(".", tasks=[], auto=True, quiet=None)

    @patch("gitmaint.cli.porcelain.maintenance_run")
    def test_no_quiet(self, maintenance_run):
        maintenance_run.return_value = MaintenanceResult()
        self.run_command("maintenance", "run", "--no-quiet")
        self.assertIs(False, maintenance_run.call_args.kwargs["quiet"])

    @patch("gitmaint.cli.porcelain.maintenance_run")
    def test_task_failure(self, maintenance_run):
        maintenance_run.return_value = MaintenanceResult(
            tasks_run=["gc"], tasks_failed=["gc"]
        )
        self.assertEqual(1, self.run_command("maintenance", "run"))

    @patch("gitmaint.cli.porcelain.maintenance_run")
    def test_lock_contended_is_success(self, maintenance_run):
        maintenance_run.return_value = MaintenanceResult(lock_contended=True)
        self.assertEqual(0, self.run_command("maintenance", "run"))


class BadConfigTests(CliTestCase):
    def append_config(self, text):
        with open(os.path.join(self.repo_path, ".git", "config"), "ab") as f:
            f.write(text)

    def test_bad_numeric_value(self):
        self.append_config(b"[gc]\n\tauto = lots\n")
        with self.assertLogs("gitmaint.cli", "ERROR") as cm:
            self.assertEqual(128, self.run_command("gc", "--auto"))
        self.assertEqual(
            ["fatal: bad numeric config value 'lots' for 'gc.auto'"],
            [r.getMessage() for r in cm.records],
        )

    def test_bad_pack_refs(self):
        self.append_config(b"[gc]\n\tpackRefs = sometimes\n")
        with self.assertLogs("gitmaint.cli", "ERROR"):
            self.assertEqual(128, self.run_command("gc"))

    def test_bad_maintenance_value(self):
        self.append_config(b'[maintenance "loose-objects"]\n\tauto = many\n')
        with self.assertLogs("gitmaint.cli", "ERROR"):
            self.assertEqual(128, self.run_command("maintenance", "run", "--auto"))

    def test_malformed_file(self):
        self.append_config(b"[gc\n")
        with self.assertLogs("gitmaint.cli", "ERROR") as cm:
            self.assertEqual(128, self.run_command("gc"))
        self.assertTrue(cm.records[0].getMessage().startswith("fatal: "))

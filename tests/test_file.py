# test_file.py -- Test for git files
# Copyright (C) 2010 Google, Inc.
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

import os
import shutil
import tempfile

from gitmaint.file import FileLocked, GitFile, _GitFile, ensure_dir_exists

from . import TestCase


class GitFileTests(TestCase):
    def setUp(self):
        super().setUp()
        self._tempdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self._tempdir)
        with open(self.path("foo"), "wb") as f:
            f.write(b"foo contents")

    def path(self, filename):
        return os.path.join(self._tempdir, filename)

    def test_invalid(self):
        foo = self.path("foo")
        self.assertRaises(IOError, GitFile, foo, mode="r")
        self.assertRaises(IOError, GitFile, foo, mode="ab")
        self.assertRaises(IOError, GitFile, foo, mode="r+b")
        self.assertRaises(IOError, GitFile, foo, mode="w+b")
        self.assertRaises(IOError, GitFile, foo, mode="a+bU")

    def test_readonly(self):
        f = GitFile(self.path("foo"), "rb")
        self.assertNotIsInstance(f, _GitFile)
        self.assertEqual(b"foo contents", f.read())
        f.close()

    def test_default_mode(self):
        f = GitFile(self.path("foo"))
        self.assertEqual(b"foo contents", f.read())
        f.close()

    def test_write(self):
        foo = self.path("foo")
        foo_lock = f"{foo}.lock"

        f = GitFile(foo, "wb")
        self.assertIsInstance(f, _GitFile)
        self.assertTrue(os.path.exists(foo_lock))
        f.write(b"new contents")
        with open(foo, "rb") as orig_f:
            self.assertEqual(b"foo contents", orig_f.read())
        f.close()

        self.assertFalse(os.path.exists(foo_lock))
        with open(foo, "rb") as new_f:
            self.assertEqual(b"new contents", new_f.read())

    def test_open_twice(self):
        foo = self.path("foo")
        f1 = GitFile(foo, "wb")
        f1.write(b"new")
        with self.assertRaises(FileLocked) as cm:
            GitFile(foo, "wb")
        self.assertEqual(foo + ".lock", cm.exception.lockfilename)
        f1.write(b" contents")
        f1.close()

        with open(foo, "rb") as f:
            self.assertEqual(b"new contents", f.read())

    def test_abort(self):
        foo = self.path("foo")
        foo_lock = f"{foo}.lock"

        f = GitFile(foo, "wb")
        f.write(b"new contents")
        f.abort()
        self.assertTrue(f.closed)
        self.assertFalse(os.path.exists(foo_lock))

        with open(foo, "rb") as orig_f:
            self.assertEqual(b"foo contents", orig_f.read())

    def test_abort_close(self):
        foo = self.path("foo")
        f = GitFile(foo, "wb")
        f.abort()
        f.close()
        f.abort()

    def test_abort_close_removed(self):
        foo = self.path("foo")
        f = GitFile(foo, "wb")
        os.remove(foo + ".lock")
        f.abort()
        self.assertTrue(f.closed)

    def test_context_manager_exception(self):
        foo = self.path("foo")
        with self.assertRaises(RuntimeError):
            with GitFile(foo, "wb") as f:
                f.write(b"new contents")
                raise RuntimeError("boom")
        self.assertFalse(os.path.exists(foo + ".lock"))
        with open(foo, "rb") as orig_f:
            self.assertEqual(b"foo contents", orig_f.read())

    def test_lockfilename(self):
        foo = self.path("foo")
        f = GitFile(foo, "wb")
        self.addCleanup(f.abort)
        self.assertEqual(foo + ".lock", f.lockfilename)
        self.assertEqual(foo, f.name)
        self.assertEqual(foo, os.fspath(f))

    def test_new_file(self):
        bar = self.path("bar")
        with GitFile(bar, "wb") as f:
            f.write(b"bar")
        with open(bar, "rb") as f:
            self.assertEqual(b"bar", f.read())


class EnsureDirExistsTests(TestCase):
    def test_nested(self):
        tempdir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, tempdir)
        path = os.path.join(tempdir, "a", "b")
        ensure_dir_exists(path)
        ensure_dir_exists(path)
        self.assertTrue(os.path.isdir(path))

# test_rebuild.py -- Tests for gitpunch.rebuild
# Copyright (C) 2025 The git-remote-punch contributors
#
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later
# git-remote-punch is dual-licensed under the Apache License, Version 2.0 and
# the GNU General Public License as published by the Free Software Foundation;
# version 2.0 or (at your option) any later version. You can redistribute it
# and/or modify it under the terms of either of these two licenses.
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


"""Tests for rebuilding repositories from object lists."""

import os

from gitpunch.errors import IntegrityError, OidMismatchError
from gitpunch.objects import GitObject
from gitpunch.rebuild import (
    RebuildError,
    RepoRebuilder,
    RepoRebuildSpec,
    ScratchWorkspace,
)

from .utils import RepoTestCase, make_commit


class ScratchWorkspaceTests(RepoTestCase):
    def test_path(self) -> None:
        workspace = ScratchWorkspace(self.test_dir, "myrepo", "a" * 40)
        self.assertEqual(os.path.join(self.test_dir, "myrepo", "a" * 40), workspace.path)

    def test_unsafe_repo_name(self) -> None:
        workspace = ScratchWorkspace(self.test_dir, "../evil/x", "a" * 40)
        self.assertEqual(
            os.path.join(self.test_dir, "_evil_x", "a" * 40), workspace.path
        )
        workspace = ScratchWorkspace(self.test_dir, "..", "a" * 40)
        self.assertEqual(os.path.join(self.test_dir, "repo", "a" * 40), workspace.path)

    def test_reset_and_remove(self) -> None:
        workspace = ScratchWorkspace(self.test_dir, "myrepo", "a" * 40)
        os.makedirs(workspace.path)
        with open(os.path.join(workspace.path, "leftover"), "w") as f:
            f.write("stale")
        workspace.reset()
        self.assertFalse(os.path.exists(workspace.path))
        self.assertTrue(os.path.isdir(os.path.dirname(workspace.path)))
        workspace.remove()
        os.makedirs(workspace.path)
        workspace.remove()
        self.assertFalse(os.path.exists(workspace.path))


class RepoRebuilderTests(RepoTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.source = self.make_repo("source")
        self.commit = make_commit(self.source, {b"a": b"one\n", b"b": b"two\n"})
        self.oid = self.commit.id.decode("ascii")
        self.objects = list(self.source.enumerate_objects(self.oid))
        self.workspace = ScratchWorkspace(
            os.path.join(self.test_dir, "scratch"), "myrepo", self.oid
        )
        self.rebuilder = RepoRebuilder(self.source)

    def rebuild(self, spec: RepoRebuildSpec):
        scratch = self.rebuilder.rebuild(spec, self.workspace)
        self.addCleanup(scratch.close)
        return scratch

    def test_rebuild(self) -> None:
        spec = RepoRebuildSpec(
            "sha1", self.objects, refs={"refs/heads/main": self.oid}, head="main"
        )
        scratch = self.rebuild(spec)
        self.assertEqual(self.workspace.path, scratch.path)
        self.assertEqual(f"{self.oid} refs/heads/main\n", scratch.list_refs())
        self.assertEqual("refs/heads/main", scratch.read_head())
        self.assertEqual(1, len(list(scratch.iter_packs())))
        self.assertEqual([], scratch.fsck())

    def test_rebuild_without_head(self) -> None:
        spec = RepoRebuildSpec("sha1", self.objects, refs={"refs/tags/v1": self.oid})
        scratch = self.rebuild(spec)
        self.assertEqual(f"{self.oid} refs/tags/v1\n", scratch.list_refs())

    def test_head_full_ref(self) -> None:
        spec = RepoRebuildSpec(
            "sha1",
            self.objects,
            refs={"refs/heads/dev": self.oid},
            head="refs/heads/dev",
        )
        self.assertEqual("refs/heads/dev", self.rebuild(spec).read_head())

    def test_replaces_stale_workspace(self) -> None:
        os.makedirs(self.workspace.path)
        with open(os.path.join(self.workspace.path, "junk"), "w") as f:
            f.write("junk")
        spec = RepoRebuildSpec("sha1", self.objects, refs={"refs/heads/main": self.oid})
        self.rebuild(spec)
        self.assertNotIn("junk", os.listdir(self.workspace.path))

    def test_size_mismatch_writes_nothing(self) -> None:
        bad = self.objects[0]
        objects = [GitObject(bad.oid, bad.type, bad.size + 1, bad.data), *self.objects[1:]]
        spec = RepoRebuildSpec("sha1", objects, refs={"refs/heads/main": self.oid})
        with self.assertRaises(IntegrityError) as cm:
            self.rebuilder.rebuild(spec, self.workspace)
        self.assertEqual(bad.oid, cm.exception.oid)
        self.assertFalse(os.path.exists(self.workspace.path))

    def test_size_check_disabled(self) -> None:
        bad = self.objects[0]
        objects = [GitObject(bad.oid, bad.type, bad.size + 1, bad.data), *self.objects[1:]]
        spec = RepoRebuildSpec("sha1", objects, refs={"refs/heads/main": self.oid})
        rebuilder = RepoRebuilder(self.source, verify_sizes=False)
        scratch = rebuilder.rebuild(spec, self.workspace)
        self.addCleanup(scratch.close)
        self.assertEqual([], scratch.fsck())

    def test_oid_mismatch(self) -> None:
        blob = next(obj for obj in self.objects if obj.type == "blob")
        objects = [GitObject("f" * 40, "blob", blob.size, blob.data)]
        spec = RepoRebuildSpec("sha1", objects)
        with self.assertRaises(OidMismatchError) as cm:
            self.rebuilder.rebuild(spec, self.workspace)
        self.assertEqual("f" * 40, cm.exception.expected)
        self.assertEqual(blob.oid, cm.exception.got)
        self.assertIn("OID mismatch for blob", str(cm.exception))

    def test_empty_object_set(self) -> None:
        with self.assertRaises(RebuildError):
            self.rebuilder.rebuild(RepoRebuildSpec("sha1", []), self.workspace)
        self.assertFalse(os.path.exists(self.workspace.path))

    def test_unsupported_format(self) -> None:
        spec = RepoRebuildSpec("md5", self.objects)
        self.assertRaises(RebuildError, self.rebuilder.rebuild, spec, self.workspace)

    def test_invalid_entry(self) -> None:
        spec = RepoRebuildSpec("sha1", [GitObject("", "blob", 0, b"")])
        self.assertRaises(RebuildError, self.rebuilder.rebuild, spec, self.workspace)
        spec = RepoRebuildSpec("sha1", [GitObject("a" * 40, "widget", 0, b"")])
        self.assertRaises(RebuildError, self.rebuilder.rebuild, spec, self.workspace)

    def test_missing_object_fails_check(self) -> None:
        objects = [obj for obj in self.objects if obj.type != "blob"]
        spec = RepoRebuildSpec("sha1", objects, refs={"refs/heads/main": self.oid})
        with self.assertRaises(RebuildError) as cm:
            self.rebuilder.rebuild(spec, self.workspace)
        self.assertEqual(2, len(cm.exception.problems))
        self.assertIn("Consistency check failed", str(cm.exception))

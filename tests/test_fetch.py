# test_fetch.py -- Tests for gitpunch.fetch
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


"""Tests for the fetch pipeline."""

import os
from io import StringIO

from gitpunch.fetch import (
    FetchOptions,
    collect_objects,
    fetch_refs,
    resolve_head_fetches,
)
from gitpunch.progress import ProgressReporter
from gitpunch.push import push_refs
from gitpunch.rebuild import RebuildError
from gitpunch.refs import Ref
from gitpunch.store import MemoryRemoteStore

from .utils import RepoTestCase

OID1 = "1" * 40
OID2 = "2" * 40


class ResolveHeadFetchesTests(RepoTestCase):
    def test_head_becomes_main(self) -> None:
        pending = {f"{OID1} HEAD": Ref("HEAD", OID1)}
        resolve_head_fetches(pending)
        self.assertEqual(
            {f"{OID1} refs/heads/main": Ref("refs/heads/main", OID1)}, pending
        )

    def test_head_covered_by_other_ref(self) -> None:
        dev = Ref("refs/heads/dev", OID1)
        pending = {f"{OID1} HEAD": Ref("HEAD", OID1), dev.value: dev}
        resolve_head_fetches(pending)
        self.assertEqual({dev.value: dev}, pending)

    def test_head_and_main(self) -> None:
        main = Ref("refs/heads/main", OID2)
        pending = {f"{OID2} HEAD": Ref("HEAD", OID2), main.value: main}
        resolve_head_fetches(pending)
        self.assertEqual({main.value: main}, pending)

    def test_other_refs_untouched(self) -> None:
        pending = {f"{OID1} refs/tags/v1": Ref("refs/tags/v1", OID1)}
        resolve_head_fetches(pending)
        self.assertEqual([Ref("refs/tags/v1", OID1)], list(pending.values()))


class FetchTestCase(RepoTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.source = self.make_repo("source")
        self.target = self.make_repo("target")
        self.store = MemoryRemoteStore()
        self.scratch_dir = os.path.join(self.test_dir, "scratch")

    def push(self, *refs: Ref) -> None:
        results = push_refs(self.source, self.store, {r.value: r for r in refs}, {})
        self.assertTrue(all(r.ok for r in results))

    def options(self, **kwargs) -> FetchOptions:
        kwargs.setdefault("cloning", True)
        return FetchOptions(self.scratch_dir, "myrepo", **kwargs)


class CollectObjectsTests(FetchTestCase):
    def test_own_records(self) -> None:
        commit = self.make_branch(self.source, {b"a": b"1"})
        ref = Ref("refs/heads/main", commit.id.decode())
        self.push(ref)
        objects = collect_objects(self.store, ref)
        self.assertEqual(3, len(objects))
        self.assertEqual(
            {obj.oid for obj in self.source.enumerate_objects(ref.oid)},
            {obj.oid for obj in objects},
        )

    def test_follows_links_into_earlier_pushes(self) -> None:
        c1 = self.make_branch(self.source, {b"a": b"1"})
        c2 = self.make_branch(self.source, {b"a": b"1", b"b": b"2"}, parents=[c1.id])
        self.push(Ref("refs/heads/main", c2.id.decode()))
        # c1's objects were all recorded under the main push.
        feature = Ref("refs/heads/feature", c1.id.decode())
        self.push(feature)
        self.assertEqual([], list(self.store.iter_objects_by_ref_oid(feature.oid)))
        objects = collect_objects(self.store, feature)
        self.assertEqual(
            {obj.oid for obj in self.source.enumerate_objects(feature.oid)},
            {obj.oid for obj in objects},
        )

    def test_missing_blob_skipped(self) -> None:
        commit = self.make_branch(self.source, {b"a": b"1"})
        ref = Ref("refs/heads/main", commit.id.decode())
        self.push(ref)
        record = next(r for r in self.store.objects if r.type == "blob")
        del self.store.blobs[record.blob_id]
        objects = collect_objects(self.store, ref)
        self.assertEqual(2, len(objects))
        self.assertNotIn(record.oid, {obj.oid for obj in objects})

    def test_unknown_ref(self) -> None:
        self.assertEqual([], collect_objects(self.store, Ref("refs/heads/x", OID1)))


class FetchRefsTests(FetchTestCase):
    def test_fetch_into_empty_repository(self) -> None:
        c1 = self.make_branch(self.source, {b"a": b"1"})
        c2 = self.make_branch(self.source, {b"a": b"2"}, parents=[c1.id])
        ref = Ref("refs/heads/main", c2.id.decode())
        self.push(ref)
        pending = {ref.value: ref}
        count = fetch_refs(self.target, self.store, pending, self.options())
        self.assertEqual(6, count)
        self.assertEqual({}, pending)
        fetched = {obj.oid for obj in self.target.enumerate_objects(ref.oid)}
        expected = {obj.oid for obj in self.source.enumerate_objects(ref.oid)}
        self.assertEqual(expected, fetched)
        self.assertFalse(os.path.exists(os.path.join(self.scratch_dir, "myrepo", ref.oid)))

    def test_fetch_head(self) -> None:
        commit = self.make_branch(self.source, {b"a": b"1"})
        oid = commit.id.decode()
        self.push(Ref("refs/heads/main", oid))
        pending = {f"{oid} HEAD": Ref("HEAD", oid)}
        fetch_refs(self.target, self.store, pending, self.options())
        self.assertEqual({}, pending)
        self.assertEqual(3, len(list(self.target.enumerate_objects(oid))))

    def test_not_cloning_is_acknowledged_only(self) -> None:
        commit = self.make_branch(self.source, {b"a": b"1"})
        ref = Ref("refs/heads/main", commit.id.decode())
        self.push(ref)
        pending = {ref.value: ref}
        self.assertEqual(
            0, fetch_refs(self.target, self.store, pending, self.options(cloning=False))
        )
        self.assertEqual({}, pending)
        self.assertIsNone(self.target.resolve_ref(ref.oid))

    def test_fetch_without_cloning(self) -> None:
        commit = self.make_branch(self.source, {b"a": b"1"})
        ref = Ref("refs/heads/main", commit.id.decode())
        self.push(ref)
        options = self.options(cloning=False, fetch_without_cloning=True)
        self.assertEqual(3, fetch_refs(self.target, self.store, {ref.value: ref}, options))
        self.assertEqual(ref.oid, self.target.resolve_ref(ref.oid))

    def test_incremental_ref(self) -> None:
        c1 = self.make_branch(self.source, {b"a": b"1"})
        c2 = self.make_branch(self.source, {b"a": b"1", b"b": b"2"}, parents=[c1.id])
        self.push(Ref("refs/heads/main", c2.id.decode()))
        feature = Ref("refs/heads/feature", c1.id.decode())
        self.push(feature)
        fetch_refs(self.target, self.store, {feature.value: feature}, self.options())
        self.assertEqual(3, len(list(self.target.enumerate_objects(feature.oid))))

    def test_keep_scratch(self) -> None:
        commit = self.make_branch(self.source, {b"a": b"1"})
        ref = Ref("refs/heads/main", commit.id.decode())
        self.push(ref)
        fetch_refs(self.target, self.store, {ref.value: ref}, self.options(keep_scratch=True))
        workspace = os.path.join(self.scratch_dir, "myrepo", ref.oid)
        self.assertTrue(os.path.isdir(workspace))

    def test_failed_rebuild_removes_scratch(self) -> None:
        commit = self.make_branch(self.source, {b"a": b"1"})
        ref = Ref("refs/heads/main", commit.id.decode())
        self.push(ref)
        record = next(r for r in self.store.objects if r.type == "blob")
        del self.store.blobs[record.blob_id]
        pending = {ref.value: ref}
        with self.assertRaises(RebuildError):
            fetch_refs(self.target, self.store, pending, self.options())
        self.assertIn(ref.value, pending)
        self.assertFalse(os.path.exists(os.path.join(self.scratch_dir, "myrepo", ref.oid)))

    def test_progress(self) -> None:
        commit = self.make_branch(self.source, {b"a": b"1"})
        ref = Ref("refs/heads/main", commit.id.decode())
        self.push(ref)
        stream = StringIO()
        fetch_refs(
            self.target, self.store, {ref.value: ref}, self.options(),
            progress=ProgressReporter(stream),
        )
        self.assertIn("Receiving objects: 100% (3/3), ", stream.getvalue())

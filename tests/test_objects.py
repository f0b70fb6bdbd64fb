# test_objects.py -- Tests for gitpunch.objects
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

"""Tests for object payloads, records and the batch parser."""

from io import BytesIO

from dulwich.objects import Blob, Commit, Tree

from gitpunch.errors import IntegrityError
from gitpunch.objects import (
    GitObject,
    ObjectRecord,
    iter_batch_objects,
    parse_batch_header,
    referenced_oids,
)

from . import TestCase

OID1 = "1" * 40
OID2 = "2" * 40


def batch(*objects: tuple[str, str, bytes]) -> bytes:
    out = b""
    for oid, type_name, data in objects:
        out += f"{oid} {type_name} {len(data)}\n".encode("ascii") + data + b"\n"
    return out


class ParseBatchHeaderTests(TestCase):
    def test_header(self) -> None:
        self.assertEqual((OID1, "blob", 12), parse_batch_header(f"{OID1} blob 12".encode()))

    def test_sha256_header(self) -> None:
        oid = "c" * 64
        self.assertEqual((oid, "tree", 0), parse_batch_header(f"{oid} tree 0".encode()))

    def test_not_a_header(self) -> None:
        self.assertIsNone(parse_batch_header(b""))
        self.assertIsNone(parse_batch_header(f"{OID1} missing".encode()))
        self.assertIsNone(parse_batch_header(f"{OID1} blob x".encode()))
        self.assertIsNone(parse_batch_header(f"{OID1} widget 3".encode()))


class IterBatchObjectsTests(TestCase):
    def parse(self, data: bytes, read_size: int = 65536) -> list[GitObject]:
        return list(iter_batch_objects(BytesIO(data).read, read_size))

    def test_objects(self) -> None:
        data = batch((OID1, "blob", b"hello\n"), (OID2, "commit", b"tree x\n\nmsg"))
        self.assertEqual(
            [
                GitObject(OID1, "blob", 6, b"hello\n"),
                GitObject(OID2, "commit", 11, b"tree x\n\nmsg"),
            ],
            self.parse(data),
        )

    def test_small_reads(self) -> None:
        data = batch((OID1, "blob", b"a\nb\nc" * 10), (OID2, "blob", b""))
        self.assertEqual(self.parse(data), self.parse(data, read_size=3))
        self.assertEqual(2, len(self.parse(data, read_size=1)))

    def test_content_with_header_lookalike(self) -> None:
        content = f"{OID2} blob 3\nabc".encode()
        objects = self.parse(batch((OID1, "blob", content)))
        self.assertEqual([GitObject(OID1, "blob", len(content), content)], objects)

    def test_skips_noise(self) -> None:
        data = b"garbage line\n" + f"{OID2} missing\n".encode() + batch((OID1, "blob", b"x"))
        self.assertEqual([GitObject(OID1, "blob", 1, b"x")], self.parse(data))

    def test_truncated_object(self) -> None:
        data = f"{OID1} blob 10\nabc".encode()
        (obj,) = self.parse(data)
        self.assertEqual(10, obj.size)
        self.assertEqual(b"abc", obj.data)
        self.assertRaises(IntegrityError, obj.verify)

    def test_unterminated_header(self) -> None:
        self.assertEqual([], self.parse(f"{OID1} blob".encode()))

    def test_empty(self) -> None:
        self.assertEqual([], self.parse(b""))


class GitObjectTests(TestCase):
    def test_verify(self) -> None:
        GitObject(OID1, "blob", 3, b"abc").verify()

    def test_verify_mismatch(self) -> None:
        with self.assertRaises(IntegrityError) as cm:
            GitObject(OID1, "blob", 4, b"abc").verify()
        self.assertEqual(OID1, cm.exception.oid)
        self.assertEqual(4, cm.exception.declared)
        self.assertEqual(3, cm.exception.actual)


class ObjectRecordTests(TestCase):
    def test_json(self) -> None:
        record = ObjectRecord(OID1, "blob", 5, "f" * 64, OID2)
        self.assertEqual(
            {
                "oid": OID1,
                "blobId": "f" * 64,
                "type": "blob",
                "size": 5,
                "refOid": OID2,
            },
            record.to_json(),
        )
        self.assertEqual(record, ObjectRecord.from_json(record.to_json()))


class ReferencedOidsTests(TestCase):
    def test_blob(self) -> None:
        self.assertEqual([], referenced_oids("blob", b"anything"))

    def test_tree_and_commit(self) -> None:
        blob = Blob.from_string(b"content")
        tree = Tree()
        tree.add(b"file", 0o100644, blob.id)
        self.assertEqual(
            [blob.id.decode("ascii")],
            referenced_oids("tree", tree.as_raw_string()),
        )
        commit = Commit()
        commit.tree = tree.id
        commit.parents = [b"3" * 40]
        commit.author = commit.committer = b"A <a@example.com>"
        commit.author_time = commit.commit_time = 0
        commit.author_timezone = commit.commit_timezone = 0
        commit.message = b"msg"
        self.assertEqual(
            [tree.id.decode("ascii"), "3" * 40],
            referenced_oids("commit", commit.as_raw_string()),
        )

    def test_submodule_entries_skipped(self) -> None:
        tree = Tree()
        tree.add(b"sub", 0o160000, b"4" * 40)
        self.assertEqual([], referenced_oids("tree", tree.as_raw_string()))

    def test_unknown_type(self) -> None:
        self.assertRaises(ValueError, referenced_oids, "widget", b"")

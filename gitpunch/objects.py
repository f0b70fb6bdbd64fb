# objects.py -- Object payloads, store records and the batch stream parser
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

"""Object payloads and the records that describe them in the remote store."""

import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from dulwich.objects import (
    S_ISGITLINK,
    Commit,
    ShaFile,
    Tag,
    Tree,
    object_class,
)

from .errors import IntegrityError

__all__ = [
    "DEFAULT_READ_SIZE",
    "OBJECT_TYPES",
    "GitObject",
    "ObjectRecord",
    "iter_batch_objects",
    "parse_batch_header",
    "referenced_oids",
    "references",
]

OBJECT_TYPES = ("blob", "tree", "commit", "tag")

DEFAULT_READ_SIZE = 64 * 1024

_BATCH_HEADER_RE = re.compile(
    rb"^([0-9a-f]{40}|[0-9a-f]{64}) (blob|tree|commit|tag) (\d+)$"
)


@dataclass(frozen=True)
class GitObject:
    """A git object as read from, or written to, a repository.

    ``size`` is the size declared by whoever produced the object; ``data``
    is the payload actually received. They only differ when the transfer
    was damaged, see :meth:`verify`.
    """

    oid: str
    type: str
    size: int
    data: bytes

    def verify(self) -> None:
        """Check the payload length against the declared size.

        Raises:
          IntegrityError: if they differ
        """
        if len(self.data) != self.size:
            raise IntegrityError(self.oid, self.size, len(self.data))


@dataclass(frozen=True)
class ObjectRecord:
    """Store record for one object.

    ``ref_oid`` is the oid of the ref push that first stored the object;
    an object reachable from several refs is recorded once.
    """

    oid: str
    type: str
    size: int
    blob_id: Any
    ref_oid: str

    def to_json(self) -> dict[str, Any]:
        return {
            "oid": self.oid,
            "blobId": self.blob_id,
            "type": self.type,
            "size": self.size,
            "refOid": self.ref_oid,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "ObjectRecord":
        return cls(
            oid=data["oid"],
            type=data["type"],
            size=int(data["size"]),
            blob_id=data["blobId"],
            ref_oid=data["refOid"],
        )


def parse_batch_header(line: bytes) -> tuple[str, str, int] | None:
    """Parse a ``<oid> <type> <size>`` header of ``git cat-file --batch``.

    Returns: (oid, type, size) tuple, or None if the line is not a header
    """
    m = _BATCH_HEADER_RE.match(line)
    if m is None:
        return None
    return (m.group(1).decode("ascii"), m.group(2).decode("ascii"), int(m.group(3)))


def iter_batch_objects(
    read: Callable[[int], bytes], read_size: int = DEFAULT_READ_SIZE
) -> Iterator[GitObject]:
    """Parse ``git cat-file --batch`` output incrementally.

    Each object is a header line followed by exactly ``size`` bytes of
    content. Lines that are not headers (the separator newline after each
    object, ``<oid> missing`` answers, noise) are skipped up to the next
    newline. Objects are yielded as soon as their content is complete, so at
    most one object plus one read is buffered.

    If the stream ends in the middle of an object's content, the truncated
    object is still yielded; :meth:`GitObject.verify` reports it.

    Args:
      read: Callable reading up to the given number of bytes; returns b""
        at end of stream
      read_size: Number of bytes to request per read
    """
    buf = bytearray()
    eof = False

    def fill() -> bool:
        nonlocal eof
        if eof:
            return False
        chunk = read(read_size)
        if not chunk:
            eof = True
            return False
        buf.extend(chunk)
        return True

    while True:
        newline = buf.find(b"\n")
        if newline == -1:
            if fill():
                continue
            # Whatever is left is an unterminated header fragment.
            return
        header = parse_batch_header(bytes(buf[:newline]))
        if header is None:
            del buf[: newline + 1]
            continue
        oid, type_name, size = header
        start = newline + 1
        while len(buf) - start < size and fill():
            pass
        data = bytes(buf[start : start + size])
        del buf[: start + size]
        yield GitObject(oid, type_name, size, data)


def references(obj: ShaFile) -> list[bytes]:
    """Return the ids of the objects a parsed object points at.

    Submodule entries of trees are not followed.
    """
    if isinstance(obj, Commit):
        return [obj.tree, *obj.parents]
    if isinstance(obj, Tree):
        return [entry.sha for entry in obj.items() if not S_ISGITLINK(entry.mode)]
    if isinstance(obj, Tag):
        return [obj.object[1]]
    return []


def referenced_oids(type_name: str, data: bytes) -> list[str]:
    """Parse raw object content and return the oids it points at.

    Blobs point at nothing.

    Raises:
      ValueError: if the type is unknown
      ObjectFormatException: if the content does not parse
    """
    if type_name == "blob":
        return []
    cls = object_class(type_name.encode("ascii"))
    if cls is None:
        raise ValueError(f"unknown object type {type_name!r}")
    obj = ShaFile.from_raw_string(cls.type_num, data)
    return [sha.decode("ascii") for sha in references(obj)]

# dulwich_toolchain.py -- In-process repository access through dulwich
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

"""ToolchainClient implemented in-process on top of dulwich.

Behaves like :class:`gitpunch.toolchain.GitToolchain` without needing a
``git`` executable. Only the sha1 object format is supported.
"""

import glob
import logging
import os
from collections.abc import Iterator

from dulwich.errors import NotGitRepository
from dulwich.objects import ShaFile, object_class, valid_hexsha
from dulwich.repo import Repo

from .objects import GitObject, references
from .toolchain import ToolchainError

__all__ = ["DulwichToolchain"]

logger = logging.getLogger(__name__)

SYMREF = b"ref: "


class DulwichToolchain:
    """ToolchainClient for a repository on disk, using dulwich.

    The repository is opened lazily so that a toolchain can be created for a
    path before :meth:`init_bare` creates the repository there.
    """

    def __init__(self, path: str) -> None:
        """Initialize a DulwichToolchain.

        Args:
          path: Path of the repository (bare, or with a working tree)
        """
        self.path = path
        self._repo: Repo | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"

    @property
    def repo(self) -> Repo:
        if self._repo is None:
            try:
                self._repo = Repo(self.path)
            except NotGitRepository as e:
                raise ToolchainError(["open", self.path], 128, str(e)) from e
        return self._repo

    def close(self) -> None:
        if self._repo is not None:
            self._repo.close()
            self._repo = None

    def list_refs(self) -> str:
        refs = self.repo.refs.as_dict()
        lines = []
        for name in sorted(refs):
            if name == b"HEAD":
                continue
            lines.append(f"{refs[name].decode('ascii')} {name.decode('utf-8')}\n")
        return "".join(lines)

    def read_head(self) -> str | None:
        value = self.repo.refs.read_ref(b"HEAD")
        if value is None or not value.startswith(SYMREF):
            return None
        return value[len(SYMREF) :].strip().decode("utf-8")

    def resolve_ref(self, name: str) -> str | None:
        try:
            return self.repo.refs[name.encode("utf-8")].decode("ascii")
        except KeyError:
            pass
        oid = name.encode("ascii", "replace")
        if len(oid) == 40 and valid_hexsha(oid) and oid in self.repo.object_store:
            return name
        return None

    def _get(self, oid: bytes) -> ShaFile:
        try:
            return self.repo.object_store[oid]
        except KeyError as e:
            raise ToolchainError(
                ["rev-list", "--objects", oid.decode("ascii")],
                128,
                f"fatal: missing object {oid.decode('ascii')}",
            ) from e

    def enumerate_objects(self, oid: str) -> Iterator[GitObject]:
        pending = [oid.encode("ascii")]
        seen = set(pending)
        while pending:
            sha = pending.pop()
            obj = self._get(sha)
            raw = obj.as_raw_string()
            yield GitObject(sha.decode("ascii"), obj.type_name.decode("ascii"), len(raw), raw)
            for child in references(obj):
                if child not in seen:
                    seen.add(child)
                    pending.append(child)

    def init_bare(self, object_format: str = "sha1") -> None:
        if object_format != "sha1":
            raise ToolchainError(
                ["init", "--bare", f"--object-format={object_format}"],
                128,
                f"object format {object_format} is not supported in-process",
            )
        self.close()
        os.makedirs(self.path, exist_ok=True)
        self._repo = Repo.init_bare(self.path)

    def hash_and_store(self, type_name: str, content: bytes) -> str:
        cls = object_class(type_name.encode("ascii"))
        if cls is None:
            raise ToolchainError(
                ["hash-object", "-t", type_name], 128, f"invalid object type {type_name}"
            )
        try:
            obj = ShaFile.from_raw_string(cls.type_num, content)
        except Exception as e:
            raise ToolchainError(
                ["hash-object", "-t", type_name], 128, f"corrupt {type_name}: {e}"
            ) from e
        self.repo.object_store.add_object(obj)
        return obj.id.decode("ascii")

    def update_ref(self, name: str, oid: str) -> None:
        self.repo.refs[name.encode("utf-8")] = oid.encode("ascii")

    def set_symbolic_head(self, name: str) -> None:
        self.repo.refs.set_symbolic_ref(b"HEAD", name.encode("utf-8"))

    def repack(self) -> None:
        count = self.repo.object_store.pack_loose_objects()
        logger.debug("Packed %d loose objects in %s", count, self.path)

    def fsck(self) -> list[str]:
        """Check every object, then the connectivity of every ref."""
        problems = []
        store = self.repo.object_store
        for sha in store:
            try:
                store[sha].check()
            except Exception as e:
                problems.append(f"error in object {sha.decode('ascii')}: {e}")
        refs = self.repo.refs.as_dict()
        for name in sorted(refs):
            pending = [refs[name]]
            seen = set(pending)
            while pending:
                sha = pending.pop()
                try:
                    obj = store[sha]
                except KeyError:
                    problems.append(
                        f"missing object {sha.decode('ascii')} "
                        f"reachable from {name.decode('utf-8')}"
                    )
                    continue
                for child in references(obj):
                    if child not in seen:
                        seen.add(child)
                        pending.append(child)
        return problems

    def iter_packs(self) -> Iterator[bytes]:
        pack_dir = self.repo.object_store.pack_dir
        for path in sorted(glob.glob(os.path.join(pack_dir, "*.pack"))):
            with open(path, "rb") as f:
                yield f.read()

    def ingest_pack(self, data: bytes) -> None:
        f, commit, abort = self.repo.object_store.add_pack()
        try:
            f.write(data)
            commit()
        except Exception as e:
            abort()
            raise ToolchainError(["unpack-objects"], 128, str(e)) from e

    def for_path(self, path: str) -> "DulwichToolchain":
        return DulwichToolchain(path)

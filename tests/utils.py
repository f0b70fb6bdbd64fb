# utils.py -- Test utilities for git-remote-punch
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

"""Utility functions common to git-remote-punch tests."""

import os
import shutil
import tempfile

from dulwich.objects import Blob, Commit, Tag, Tree

from gitpunch.config import PunchConfig
from gitpunch.dulwich_toolchain import DulwichToolchain

from . import TestCase

# 2010-01-01 00:00:00 UTC
DEFAULT_TIME = 1262304000


def make_commit(
    toolchain: DulwichToolchain,
    files: dict[bytes, bytes],
    parents: list[bytes] | None = None,
    message: bytes = b"Test message.",
    commit_time: int = DEFAULT_TIME,
) -> Commit:
    """Store a commit of a flat tree holding ``files``.

    Returns: the commit object
    """
    store = toolchain.repo.object_store
    tree = Tree()
    for name, content in sorted(files.items()):
        blob = Blob.from_string(content)
        store.add_object(blob)
        tree.add(name, 0o100644, blob.id)
    store.add_object(tree)
    commit = Commit()
    commit.tree = tree.id
    commit.parents = list(parents or [])
    commit.author = commit.committer = b"Test Author <test@nodomain.com>"
    commit.author_time = commit.commit_time = commit_time
    commit.author_timezone = commit.commit_timezone = 0
    commit.message = message
    store.add_object(commit)
    return commit


def make_tag(
    toolchain: DulwichToolchain, target: Commit, name: bytes = b"v1.0"
) -> Tag:
    """Store an annotated tag pointing at ``target``."""
    tag = Tag()
    tag.name = name
    tag.tagger = b"Test Tagger <test@nodomain.com>"
    tag.tag_time = DEFAULT_TIME
    tag.tag_timezone = 0
    tag.message = b"Tagged.\n"
    tag.object = (Commit, target.id)
    toolchain.repo.object_store.add_object(tag)
    return tag


class RepoTestCase(TestCase):
    """Test case with a scratch directory and helpers for repositories."""

    def setUp(self) -> None:
        super().setUp()
        self.test_dir = tempfile.mkdtemp()
        self.addCleanup(shutil.rmtree, self.test_dir)

    def make_repo(self, name: str = "repo") -> DulwichToolchain:
        """Create an empty bare repository and return its toolchain."""
        toolchain = DulwichToolchain(os.path.join(self.test_dir, name))
        toolchain.init_bare()
        self.addCleanup(toolchain.close)
        return toolchain

    def make_branch(
        self,
        toolchain: DulwichToolchain,
        files: dict[bytes, bytes],
        name: str = "refs/heads/main",
        parents: list[bytes] | None = None,
        message: bytes = b"Test message.",
    ) -> Commit:
        """Commit ``files`` and point branch ``name`` at the commit."""
        commit = make_commit(toolchain, files, parents=parents, message=message)
        toolchain.update_ref(name, commit.id.decode("ascii"))
        return commit

    def make_config(self, **kwargs: object) -> PunchConfig:
        """Settings with every directory inside the scratch directory."""
        settings = PunchConfig(
            punch_dir=os.path.join(self.test_dir, "punch"),
            scratch_dir=os.path.join(self.test_dir, "scratch"),
            progress=False,
        )
        for key, value in kwargs.items():
            setattr(settings, key, value)
        return settings

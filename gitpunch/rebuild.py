# rebuild.py -- Materialize a repository from fetched objects
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

"""Rebuild a repository from a flat list of objects and ref pointers.

Rebuilding is not transactional. A failure part way leaves the objects
written so far in the scratch repository, so every rebuild starts from an
empty workspace.
"""

import logging
import os
import shutil
from dataclasses import dataclass, field

from .errors import OidMismatchError, PunchError
from .objects import OBJECT_TYPES, GitObject
from .refs import LOCAL_BRANCH_PREFIX
from .toolchain import ToolchainClient

__all__ = [
    "OBJECT_FORMATS",
    "RebuildError",
    "RepoRebuildSpec",
    "RepoRebuilder",
    "ScratchWorkspace",
]

logger = logging.getLogger(__name__)

OBJECT_FORMATS = ("sha1", "sha256")


class RebuildError(PunchError):
    """A repository could not be rebuilt, or failed its consistency check."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        self.problems = list(problems or [])
        if self.problems:
            message = f"{message}: " + "; ".join(self.problems)
        PunchError.__init__(self, message)


@dataclass
class RepoRebuildSpec:
    """One unit of rebuild work.

    Attributes:
      object_format: Object id format of the objects, ``sha1`` or ``sha256``
      objects: Objects to store, with their declared oids and sizes
      refs: Ref name to oid pointers to write
      head: Branch HEAD should point at, if any
    """

    object_format: str
    objects: list[GitObject]
    refs: dict[str, str] = field(default_factory=dict)
    head: str | None = None


class ScratchWorkspace:
    """Disposable directory for rebuilding one fetched ref.

    Workspaces are scoped by repository name and ref oid so that fetches of
    different refs never share one.
    """

    def __init__(self, root: str, repo_name: str, ref_oid: str) -> None:
        self.root = root
        self.path = os.path.join(root, _safe_component(repo_name), ref_oid)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"

    def reset(self) -> None:
        """Discard whatever a previous rebuild left behind."""
        if os.path.exists(self.path):
            logger.debug("Removing stale scratch workspace %s", self.path)
            shutil.rmtree(self.path)
        os.makedirs(os.path.dirname(self.path), exist_ok=True)

    def remove(self) -> None:
        """Delete the workspace, logging instead of failing."""
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove scratch workspace %s: %s", self.path, e)


def _safe_component(name: str) -> str:
    cleaned = name.replace(os.sep, "_").strip(".")
    if os.altsep:
        cleaned = cleaned.replace(os.altsep, "_")
    return cleaned or "repo"


def _head_ref(head: str) -> str:
    if head.startswith("refs/"):
        return head
    return LOCAL_BRANCH_PREFIX + head


class RepoRebuilder:
    """Replays objects and refs into a fresh bare repository and checks it."""

    def __init__(self, toolchain: ToolchainClient, verify_sizes: bool = True) -> None:
        """Initialize a RepoRebuilder.

        Args:
          toolchain: Toolchain whose ``for_path`` addresses the scratch repository
          verify_sizes: Check every payload against its declared size first
        """
        self.toolchain = toolchain
        self.verify_sizes = verify_sizes

    def _validate(self, spec: RepoRebuildSpec) -> None:
        if spec.object_format not in OBJECT_FORMATS:
            raise RebuildError(f"Unsupported object format {spec.object_format!r}")
        if not spec.objects:
            raise RebuildError("No objects supplied")
        for obj in spec.objects:
            if not obj.oid or obj.type not in OBJECT_TYPES:
                raise RebuildError(
                    f"Invalid object entry: oid={obj.oid!r} type={obj.type!r}"
                )
            if self.verify_sizes:
                obj.verify()

    def rebuild(self, spec: RepoRebuildSpec, workspace: ScratchWorkspace) -> ToolchainClient:
        """Rebuild ``spec`` in ``workspace``.

        Sizes are checked before anything is written, so a size mismatch
        never leaves a ref pointer behind.

        Returns: a toolchain bound to the rebuilt repository
        Raises:
          IntegrityError: if a payload differs from its declared size
          OidMismatchError: if a stored object hashes to another oid
          RebuildError: on invalid input or failed consistency check
          ToolchainError: if a plumbing command fails
        """
        self._validate(spec)
        workspace.reset()
        scratch = self.toolchain.for_path(workspace.path)
        scratch.init_bare(spec.object_format)
        logger.debug(
            "Rebuilding %d objects in %s", len(spec.objects), workspace.path
        )

        for obj in spec.objects:
            computed = scratch.hash_and_store(obj.type, obj.data)
            if computed != obj.oid:
                raise OidMismatchError(obj.type, obj.oid, computed)

        for name, oid in spec.refs.items():
            scratch.update_ref(name, oid)
        if spec.head:
            scratch.set_symbolic_head(_head_ref(spec.head))

        scratch.repack()
        problems = scratch.fsck()
        if problems:
            raise RebuildError("Consistency check failed", problems)
        return scratch

# fetch.py -- The fetch pipeline
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

"""Fetch refs from the store into the caller's repository.

For every requested ref the objects are gathered from the store, replayed
into a scratch repository, checked, packed, and the pack is fed into the
caller's object database. git updates the caller's refs itself once the
helper reports the fetch done.
"""

import logging
from collections.abc import MutableMapping
from dataclasses import dataclass

from dulwich.errors import ObjectFormatException

from .log_utils import VERBOSE
from .objects import GitObject, ObjectRecord, referenced_oids
from .progress import ProgressReporter
from .rebuild import RepoRebuilder, RepoRebuildSpec, ScratchWorkspace
from .refs import DEFAULT_BRANCH, HEADREF, Ref
from .store import RemoteStore, StoreError
from .toolchain import ToolchainClient

__all__ = [
    "FetchOptions",
    "collect_objects",
    "fetch_refs",
    "resolve_head_fetches",
]

logger = logging.getLogger(__name__)


@dataclass
class FetchOptions:
    """Settings of the fetch pipeline."""

    scratch_dir: str
    repo_name: str
    cloning: bool = False
    fetch_without_cloning: bool = False
    keep_scratch: bool = False


def resolve_head_fetches(pending: MutableMapping[str, Ref]) -> None:
    """Replace fetches of ``HEAD`` by fetches of the branch it stands for.

    HEAD is derived at rebuild time; the concrete branch is fetched instead,
    unless another pending ref already has the same oid.
    """
    for key, ref in list(pending.items()):
        if ref.name != HEADREF:
            continue
        del pending[key]
        if any(other.oid == ref.oid for other in pending.values()):
            logger.debug("Skipping %s, fetched through another ref", ref.value)
            continue
        branch = ref.with_name(DEFAULT_BRANCH)
        logger.debug("Fetching %s for %s", branch.value, ref.value)
        pending.setdefault(branch.value, branch)


def _load(store: RemoteStore, record: ObjectRecord) -> GitObject | None:
    try:
        data = store.get_blob(record.blob_id)
    except StoreError as e:
        logger.debug("Error loading blob of %s: %s", record.oid, e)
        return None
    logger.log(VERBOSE, "Object: %s %s %d", record.oid, record.type, record.size)
    return GitObject(record.oid, record.type, record.size, data)


def collect_objects(store: RemoteStore, ref: Ref) -> list[GitObject]:
    """Gather the objects needed to rebuild ``ref``.

    The records the ref's own push introduced come first. Objects that push
    skipped because the store already held them are then found by following
    commit, tree and tag links from what was loaded, until nothing more is
    missing. Blobs that cannot be loaded are skipped; the consistency check
    of the rebuild reports anything left missing.
    """
    objects: dict[str, GitObject] = {}
    for record in store.iter_objects_by_ref_oid(ref.oid):
        if record.oid in objects:
            continue
        obj = _load(store, record)
        if obj is not None:
            objects[obj.oid] = obj

    visited = set(objects)
    queue = list(objects.values())
    if ref.oid not in visited:
        visited.add(ref.oid)
        queue.extend(_lookup(store, ref.oid))

    while queue:
        obj = queue.pop()
        objects[obj.oid] = obj
        try:
            children = referenced_oids(obj.type, obj.data)
        except (ObjectFormatException, ValueError) as e:
            logger.debug("Cannot parse %s %s: %s", obj.type, obj.oid, e)
            continue
        for oid in children:
            if oid in visited:
                continue
            visited.add(oid)
            queue.extend(_lookup(store, oid))
    return list(objects.values())


def _lookup(store: RemoteStore, oid: str) -> list[GitObject]:
    record = store.get_object(oid)
    if record is None:
        logger.debug("Object %s is not in the store", oid)
        return []
    obj = _load(store, record)
    return [obj] if obj is not None else []


def fetch_refs(
    toolchain: ToolchainClient,
    store: RemoteStore,
    pending: MutableMapping[str, Ref],
    options: FetchOptions,
    progress: ProgressReporter | None = None,
) -> int:
    """Fetch every pending ref into the caller's repository.

    When not cloning, the fetch only acknowledges the request unless
    ``fetch_without_cloning`` is set. Fetched refs are removed from
    ``pending``.

    Returns: number of objects received
    Raises:
      IntegrityError: if a fetched object does not match its record
      RebuildError: if the rebuilt repository fails its consistency check
      ToolchainError: if a plumbing command fails
    """
    if not options.cloning and not options.fetch_without_cloning:
        logger.debug("Not cloning, acknowledging %d fetches", len(pending))
        pending.clear()
        return 0

    resolve_head_fetches(pending)
    if progress is not None and pending:
        progress.start_counting("Receiving objects")

    rebuilder = RepoRebuilder(toolchain)
    total_objects = 0
    total_bytes = 0
    for key, ref in list(pending.items()):
        logger.debug("Fetch: %s", ref.value)
        objects = collect_objects(store, ref)
        logger.debug("Objects: %d", len(objects))
        spec = RepoRebuildSpec(
            object_format="sha1",
            objects=objects,
            refs={ref.name: ref.oid},
            head=ref.name if ref.name == DEFAULT_BRANCH else None,
        )
        workspace = ScratchWorkspace(options.scratch_dir, options.repo_name, ref.oid)
        try:
            scratch = rebuilder.rebuild(spec, workspace)
            for pack in scratch.iter_packs():
                toolchain.ingest_pack(pack)
        finally:
            if not options.keep_scratch:
                workspace.remove()
        del pending[key]

        total_objects += len(objects)
        total_bytes += sum(obj.size for obj in objects)
        if progress is not None:
            progress.update_count(total_objects)
        logger.debug("Done: %s", ref.value)

    if progress is not None and total_objects:
        progress.finish_counting(total_objects)
        progress.receiving(total_objects, total_bytes)
    return total_objects

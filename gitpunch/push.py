# push.py -- Ref reconciliation and the push pipeline
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

"""Ref reconciliation for ``list for-push`` and the push pipeline.

Each pending ref is pushed on its own: the objects reachable from it are
enumerated through the toolchain, objects the store already holds are
skipped, the rest are written to the blob store in batches and recorded,
and finally a ref record is appended. A failure only affects the ref it
happened in.
"""

import logging
from collections.abc import Callable, Iterable, Mapping, MutableMapping

from .config import DEFAULT_BATCH_SIZE
from .errors import PunchError
from .log_utils import VERBOSE
from .objects import GitObject, ObjectRecord
from .progress import ProgressReporter
from .refs import HEADREF, Ref, parse_show_ref
from .store import BlobBatch, RemoteStore, StoreError, get_all_refs
from .toolchain import ToolchainClient

__all__ = [
    "PushObjectError",
    "PushResult",
    "list_for_push",
    "push_refs",
]

logger = logging.getLogger(__name__)


class PushObjectError(PunchError):
    """Writing an object or ref record to the store failed."""

    def __init__(self, ref: Ref, cause: BaseException) -> None:
        self.ref = ref
        self.cause = cause
        PunchError.__init__(self, f"Failed to store objects for {ref.name}: {cause}")


class PushResult:
    """Outcome of pushing one ref."""

    def __init__(self, ref: Ref, error: BaseException | None = None) -> None:
        self.ref = ref
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None

    def status_line(self) -> str:
        """The remote-helper reply for this ref."""
        if self.error is None:
            return f"ok {self.ref.name}"
        message = " ".join(str(self.error).split())
        return f"error {self.ref.name} {message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.ref!r}, {self.error!r})"


def list_for_push(
    toolchain: ToolchainClient,
    store: RemoteStore,
    pending: MutableMapping[str, Ref],
    output: Callable[[str], None],
) -> list[Ref]:
    """Advertise local branches and queue those the store lacks.

    Every local branch is written to ``output``; a branch whose oid the
    store already has a ref record for is not queued. The terminating blank
    line is left to the caller.

    Returns: the refs that were advertised
    """
    advertised = []
    local_refs = parse_show_ref(toolchain.list_refs())
    by_name = {ref.name: ref for ref in local_refs}
    for entry in local_refs:
        logger.debug("Ref: %s %s", entry.name, entry.oid)
        if not entry.is_branch:
            continue
        if entry.branch_name == HEADREF:
            # A branch literally called HEAD stands for the branch HEAD points at.
            head = toolchain.read_head()
            target = by_name.get(head) if head else None
            local = Ref(HEADREF, target.oid) if target is not None else None
        else:
            local = entry
        if local is None:
            logger.debug("No local entry for %s, nothing to push", entry.name)
            continue
        existing = store.get_ref(local.oid)
        output(local.value)
        advertised.append(local)
        if existing is not None:
            logger.debug("Ref already exists, skipping: %s", local.value)
            continue
        logger.debug("Add to pending: %s", local.value)
        pending[local.value] = local
    return advertised


def _enumerate(
    toolchain: ToolchainClient, ref: Ref, seen: set[str]
) -> Iterable[GitObject]:
    for obj in toolchain.enumerate_objects(ref.oid):
        if obj.oid in seen:
            continue
        seen.add(obj.oid)
        yield obj


def count_objects(
    toolchain: ToolchainClient,
    refs: Iterable[Ref],
    progress: ProgressReporter,
) -> int:
    """Count the distinct objects reachable from ``refs``."""
    seen: set[str] = set()
    progress.start_counting("Enumerating objects")
    for ref in refs:
        try:
            for _ in _enumerate(toolchain, ref, seen):
                if len(seen) % 100 == 0:
                    progress.update_count(len(seen))
        except PunchError as e:
            logger.debug("Error counting objects for %s: %s", ref.value, e)
    progress.finish_counting(len(seen))
    return len(seen)


class _RefPush:
    """Writes the objects of one ref, buffering records until their blobs land.

    Oids end up in ``stored`` once the store is known to hold them, so that
    later refs of the same push skip them.
    """

    def __init__(
        self,
        store: RemoteStore,
        pushed: Ref,
        batch_size: int,
        stored: set[str],
    ) -> None:
        self.store = store
        self.pushed = pushed
        self.batch_size = batch_size
        self.stored = stored
        self.batch: BlobBatch = store.blob_batch()
        self._buffered: list[ObjectRecord] = []
        self._buffered_bytes = 0
        self._buffered_oids: set[str] = set()

    def has(self, oid: str) -> bool:
        if oid in self.stored or oid in self._buffered_oids:
            return True
        if self.store.get_object(oid) is not None:
            self.stored.add(oid)
            return True
        return False

    def add(self, obj: GitObject) -> None:
        blob_id = self.batch.put(obj.data)
        self._buffered.append(
            ObjectRecord(obj.oid, obj.type, obj.size, blob_id, self.pushed.oid)
        )
        self._buffered_oids.add(obj.oid)
        self._buffered_bytes += len(obj.data)
        if self._buffered_bytes >= self.batch_size:
            self.flush()

    def flush(self) -> None:
        try:
            self.batch.flush()
            for record in self._buffered:
                self.store.add_object(record)
                self.stored.add(record.oid)
        except (StoreError, OSError) as e:
            raise PushObjectError(self.pushed, e) from e
        logger.debug(
            "Flushed %d objects (%d bytes) for %s",
            len(self._buffered),
            self._buffered_bytes,
            self.pushed.name,
        )
        self._buffered = []
        self._buffered_bytes = 0
        self._buffered_oids.clear()


def push_refs(
    toolchain: ToolchainClient,
    store: RemoteStore,
    pending: MutableMapping[str, Ref],
    renames: Mapping[str, str],
    verify: bool = True,
    batch_size: int = DEFAULT_BATCH_SIZE,
    progress: ProgressReporter | None = None,
) -> list[PushResult]:
    """Push every pending ref to the store.

    Refs are processed in the order they were queued. A ref pushed
    successfully is removed from ``pending``; a ref that failed stays there
    so that the failure is visible and a later push can retry it.

    Args:
      toolchain: Access to the local repository
      store: Remote store to write to
      pending: Queued refs, keyed by their text form
      renames: Local ref name to remote ref name, for ``push src:dst``
      verify: Check every object's payload against its declared size
      batch_size: Buffered blob bytes that trigger a batch flush
      progress: Reporter for progress output, or None for no progress
    Returns: one PushResult per processed ref
    """
    results: list[PushResult] = []
    snapshot = list(pending.items())
    if not snapshot:
        logger.debug("Nothing to push")
        return results

    if progress is not None:
        count_objects(toolchain, [ref for _, ref in snapshot], progress)
        progress.start_writing()

    stored: set[str] = set()
    written_objects = 0
    written_bytes = 0

    for key, ref in snapshot:
        pushed = ref.with_name(renames.get(ref.name, ref.name))
        logger.debug("Pushing %s as %s", ref.value, pushed.name)
        writer = _RefPush(store, pushed, batch_size, stored)
        try:
            for obj in toolchain.enumerate_objects(ref.oid):
                if verify:
                    obj.verify()
                if writer.has(obj.oid):
                    logger.log(VERBOSE, "Object already exists: %s", obj.oid)
                else:
                    writer.add(obj)
                    written_bytes += obj.size
                    logger.log(VERBOSE, "Saved: %s %s %d", obj.oid, obj.type, obj.size)
                written_objects += 1
                if progress is not None:
                    progress.update_writing(written_objects, written_bytes)
            writer.flush()
            _add_ref_record(store, pushed)
        except (PunchError, OSError) as e:
            logger.debug("Push error for %s: %s", pushed.value, e)
            if progress is not None:
                progress.report_error(f"Failed to push {pushed.value}: {e}")
            results.append(PushResult(pushed, e))
            continue
        del pending[key]
        results.append(PushResult(pushed))

    if progress is not None:
        progress.finish_writing()
    return results


def _add_ref_record(store: RemoteStore, pushed: Ref) -> None:
    current = {ref.name: ref.oid for ref in get_all_refs(store)}
    if current.get(pushed.name) == pushed.oid:
        logger.debug("Ref record already present: %s", pushed.value)
        return
    try:
        store.add_ref(pushed)
    except (StoreError, OSError) as e:
        raise PushObjectError(pushed, e) from e
    logger.debug("Stored ref: %s", pushed.value)

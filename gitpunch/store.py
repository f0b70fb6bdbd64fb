# store.py -- Append-only ref, object and blob stores
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

"""Remote stores holding ref records, object records and blobs.

A remote store is append-only: ref records are never overwritten, the
current value of a ref is computed by folding over its whole history (see
:func:`get_all_refs`). Object records are indexed by oid and by the oid of
the ref push that introduced them. Blob content is addressed by the
SHA-256 of its bytes, so concurrent writers storing the same content agree
on its id.

Replication between peers is outside this module; :class:`FileRemoteStore`
is the local replica a replication transport keeps in sync.
"""

import hashlib
import json
import logging
import os
import tempfile
import time
from collections.abc import Callable, Iterable, Iterator
from typing import Any
from typing import Protocol as TypingProtocol

from dulwich.file import GitFile

from .errors import PunchError
from .objects import ObjectRecord
from .refs import DEFAULT_BRANCH, HEADREF, Ref
from .url import KEY_LENGTH, RepoConfig, discovery_key, format_url

__all__ = [
    "BlobBatch",
    "FileRemoteStore",
    "MemoryRemoteStore",
    "PeerTimeoutError",
    "RemoteStore",
    "StoreError",
    "blob_id_for",
    "get_all_refs",
    "iter_file_stores",
    "wait_for_peers",
]

logger = logging.getLogger(__name__)


class StoreError(PunchError):
    """A remote store operation failed."""


class PeerTimeoutError(StoreError):
    """No peer became visible within the allowed time."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        StoreError.__init__(self, f"No peers found after {timeout:g}s")


def blob_id_for(data: bytes) -> str:
    """Return the content address of a blob."""
    return hashlib.sha256(data).hexdigest()


class BlobBatch(TypingProtocol):
    """Batched blob writer.

    ``put`` returns the id of the blob right away; the content is only
    guaranteed to be readable from the store after ``flush``.
    """

    def put(self, data: bytes) -> str: ...

    def flush(self) -> None: ...


class RemoteStore(TypingProtocol):
    """Operations the protocol engine needs from a remote store."""

    def get_ref(self, oid: str) -> Ref | None:
        """Return a ref record pointing at ``oid``, if any."""
        ...

    def add_ref(self, ref: Ref) -> None:
        """Append a ref record."""
        ...

    def get_object(self, oid: str) -> ObjectRecord | None:
        """Return the record of an object, if stored."""
        ...

    def add_object(self, record: ObjectRecord) -> None:
        """Append an object record."""
        ...

    def iter_objects_by_ref_oid(self, ref_oid: str) -> Iterator[ObjectRecord]:
        """Yield the records of the objects a ref push introduced."""
        ...

    def iter_ref_history(self) -> Iterator[Ref]:
        """Yield every ref record, in store order."""
        ...

    def get_blob(self, blob_id: str) -> bytes:
        """Return blob content.

        Raises:
          StoreError: if the blob is not available
        """
        ...

    def blob_batch(self) -> BlobBatch:
        """Start a batch of blob writes."""
        ...

    def peer_count(self) -> int:
        """Number of peers currently serving this store."""
        ...

    def close(self) -> None: ...


def get_all_refs(store: RemoteStore) -> list[Ref]:
    """Compute the current refs of a store from its ref history.

    Records are folded by name, a later record replacing an earlier one
    (last write wins, in the order the history stream yields them). If
    ``refs/heads/main`` was seen, a ``HEAD`` entry at its latest oid is
    added. Stored records named ``HEAD`` are ignored, since HEAD is always
    derived. The result is in reverse of fold order.
    """
    fold: dict[str, Ref] = {}
    main_oid = None
    for ref in store.iter_ref_history():
        if ref.name == HEADREF:
            logger.debug("Ignoring stored HEAD record: %s", ref.value)
            continue
        fold[ref.name] = ref
        if ref.name == DEFAULT_BRANCH:
            main_oid = ref.oid
    refs = list(fold.values())
    if main_oid is not None:
        refs.append(Ref(HEADREF, main_oid))
    refs.reverse()
    return refs


def wait_for_peers(
    store: RemoteStore,
    timeout: float = 30.0,
    interval: float = 0.5,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Block until the store reports at least one peer.

    Returns: the peer count seen
    Raises:
      PeerTimeoutError: if no peer shows up within ``timeout`` seconds
    """
    deadline = clock() + timeout
    while True:
        count = store.peer_count()
        if count > 0:
            logger.info("Found %d peer%s", count, "s" if count > 1 else "")
            return count
        if clock() >= deadline:
            raise PeerTimeoutError(timeout)
        logger.debug("Waiting for peers")
        sleep(interval)


class _MemoryBlobBatch:
    def __init__(self, blobs: dict[str, bytes]) -> None:
        self._blobs = blobs
        self._pending: dict[str, bytes] = {}

    def put(self, data: bytes) -> str:
        blob_id = blob_id_for(data)
        self._pending[blob_id] = bytes(data)
        return blob_id

    def flush(self) -> None:
        self._blobs.update(self._pending)
        self._pending.clear()


class MemoryRemoteStore:
    """Remote store held in memory.

    ``peers`` is the value reported by :meth:`peer_count`.
    """

    def __init__(self, peers: int = 1) -> None:
        self.peers = peers
        self.refs: list[Ref] = []
        self.objects: list[ObjectRecord] = []
        self.blobs: dict[str, bytes] = {}
        self._by_oid: dict[str, ObjectRecord] = {}
        self._by_ref_oid: dict[str, list[ObjectRecord]] = {}
        self.closed = False

    def get_ref(self, oid: str) -> Ref | None:
        for ref in reversed(self.refs):
            if ref.oid == oid:
                return ref
        return None

    def add_ref(self, ref: Ref) -> None:
        self.refs.append(ref)

    def get_object(self, oid: str) -> ObjectRecord | None:
        return self._by_oid.get(oid)

    def add_object(self, record: ObjectRecord) -> None:
        self.objects.append(record)
        self._by_oid.setdefault(record.oid, record)
        self._by_ref_oid.setdefault(record.ref_oid, []).append(record)

    def iter_objects_by_ref_oid(self, ref_oid: str) -> Iterator[ObjectRecord]:
        return iter(list(self._by_ref_oid.get(ref_oid, [])))

    def iter_ref_history(self) -> Iterator[Ref]:
        return iter(list(self.refs))

    def get_blob(self, blob_id: str) -> bytes:
        try:
            return self.blobs[blob_id]
        except KeyError as e:
            raise StoreError(f"Blob {blob_id} not found") from e

    def blob_batch(self) -> _MemoryBlobBatch:
        return _MemoryBlobBatch(self.blobs)

    def peer_count(self) -> int:
        return self.peers

    def close(self) -> None:
        self.closed = True


class _FileBlobBatch:
    def __init__(self, store: "FileRemoteStore") -> None:
        self._store = store
        self._pending: dict[str, bytes] = {}

    def put(self, data: bytes) -> str:
        blob_id = blob_id_for(data)
        self._pending[blob_id] = bytes(data)
        return blob_id

    def flush(self) -> None:
        for blob_id, data in self._pending.items():
            self._store._write_blob(blob_id, data)
        self._pending.clear()


def _config_to_json(config: RepoConfig) -> dict[str, Any]:
    return {
        "name": config.name,
        "key": config.key.hex(),
        "discoveryKey": config.discovery_key.hex(),
        "bootstrap": [[host, port] for host, port in config.bootstrap],
    }


def _config_from_json(data: dict[str, Any]) -> RepoConfig:
    return RepoConfig(
        discovery_key=bytes.fromhex(data["discoveryKey"]),
        key=bytes.fromhex(data["key"]),
        name=data["name"],
        bootstrap=tuple((host, int(port)) for host, port in data.get("bootstrap", [])),
    )


def _ref_from_json(data: dict[str, Any]) -> Ref:
    name, oid = data["name"], data["oid"]
    if not isinstance(name, str) or not isinstance(oid, str):
        raise TypeError(f"name and oid must be strings: {data!r}")
    return Ref(name, oid)

class _RecordLog:
    """Append-only JSON lines file, read incrementally.

    A trailing line without a newline belongs to a write still in progress
    and is left for the next :meth:`read_new`.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self._offset = 0

    def append(self, record: dict[str, Any]) -> None:
        line = json.dumps(record, sort_keys=True).encode("utf-8") + b"\n"
        fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        try:
            os.write(fd, line)
        finally:
            os.close(fd)

    def read_new(self) -> Iterator[dict[str, Any]]:
        try:
            f = open(self.path, "rb")
        except FileNotFoundError:
            return
        with f:
            f.seek(self._offset)
            while True:
                line = f.readline()
                if not line.endswith(b"\n"):
                    break
                self._offset += len(line)
                if not line.strip():
                    continue
                try:
                    yield json.loads(line)
                except ValueError as e:
                    raise StoreError(f"Corrupt record in {self.path}: {e}") from e


class FileRemoteStore:
    """Local replica of a remote store, kept in a directory.

    Layout::

      config.json       repository name, key and discovery key
      refs.jsonl        ref records, one JSON object per line
      objects.jsonl     object records, one JSON object per line
      blobs/ab/cd/<id>  blob content, named by its SHA-256
      tmp/              staging area for blob writes

    Records appended by other processes sharing the directory become
    visible on the next read.
    """

    def __init__(self, path: str) -> None:
        """Open the replica at ``path``.

        Raises:
          StoreError: if the directory has no config.json
        """
        self.path = path
        try:
            with open(os.path.join(path, "config.json"), "rb") as f:
                self.config = _config_from_json(json.load(f))
        except FileNotFoundError as e:
            raise StoreError(f"No punch store at {path}") from e
        except (ValueError, KeyError) as e:
            raise StoreError(f"Invalid config.json in {path}: {e}") from e
        self._refs_log = _RecordLog(os.path.join(path, "refs.jsonl"))
        self._objects_log = _RecordLog(os.path.join(path, "objects.jsonl"))
        self._refs: list[Ref] = []
        self._by_oid: dict[str, ObjectRecord] = {}
        self._by_ref_oid: dict[str, list[ObjectRecord]] = {}
        self.closed = False

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.path!r})"

    @classmethod
    def _init_dir(cls, path: str, config: RepoConfig) -> "FileRemoteStore":
        for subdir in ("blobs", "tmp"):
            os.makedirs(os.path.join(path, subdir), exist_ok=True)
        with GitFile(os.path.join(path, "config.json"), "wb") as f:
            f.write(json.dumps(_config_to_json(config), indent=2).encode("utf-8"))
        return cls(path)

    @classmethod
    def create(
        cls,
        punch_dir: str,
        name: str,
        bootstrap: Iterable[tuple[str, int]] = (),
    ) -> "FileRemoteStore":
        """Create a new store with a fresh random key."""
        key = os.urandom(KEY_LENGTH)
        config = RepoConfig(discovery_key(key), key, name, tuple(bootstrap))
        path = os.path.join(punch_dir, config.discovery_key.hex())
        logger.info("Creating store %s in %s", name, path)
        return cls._init_dir(path, config)

    @classmethod
    def open(cls, punch_dir: str, config: RepoConfig) -> "FileRemoteStore":
        """Open the replica of a store, joining it if there is none yet."""
        path = os.path.join(punch_dir, config.discovery_key.hex())
        if os.path.exists(os.path.join(path, "config.json")):
            return cls(path)
        logger.info("No replica of %s found, joining", config.name)
        return cls._init_dir(path, config)

    @property
    def name(self) -> str:
        return self.config.name

    def remote_url(self) -> str:
        """Address other peers use to reach this store."""
        return format_url(self.config)

    def refresh(self) -> None:
        """Pick up records appended since the last read."""
        for data in self._refs_log.read_new():
            try:
                ref = _ref_from_json(data)
            except (KeyError, TypeError, ValueError) as e:
                raise StoreError(
                    f"Corrupt record in {self._refs_log.path}: {e!r}"
                ) from e
            self._refs.append(ref)
        for data in self._objects_log.read_new():
            try:
                record = ObjectRecord.from_json(data)
            except (KeyError, TypeError, ValueError) as e:
                raise StoreError(
                    f"Corrupt record in {self._objects_log.path}: {e!r}"
                ) from e
            self._by_oid.setdefault(record.oid, record)
            self._by_ref_oid.setdefault(record.ref_oid, []).append(record)

    def get_ref(self, oid: str) -> Ref | None:
        self.refresh()
        for ref in reversed(self._refs):
            if ref.oid == oid:
                return ref
        return None

    def add_ref(self, ref: Ref) -> None:
        self._refs_log.append({"name": ref.name, "oid": ref.oid})

    def get_object(self, oid: str) -> ObjectRecord | None:
        self.refresh()
        return self._by_oid.get(oid)

    def add_object(self, record: ObjectRecord) -> None:
        self._objects_log.append(record.to_json())

    def iter_objects_by_ref_oid(self, ref_oid: str) -> Iterator[ObjectRecord]:
        self.refresh()
        return iter(list(self._by_ref_oid.get(ref_oid, [])))

    def iter_ref_history(self) -> Iterator[Ref]:
        self.refresh()
        return iter(list(self._refs))

    def _blob_path(self, blob_id: str) -> str:
        return os.path.join(self.path, "blobs", blob_id[0:2], blob_id[2:4], blob_id)

    def _write_blob(self, blob_id: str, data: bytes) -> None:
        path = self._blob_path(blob_id)
        if os.path.exists(path):
            return
        os.makedirs(os.path.dirname(path), exist_ok=True)
        tmpdir = os.path.join(self.path, "tmp")
        with tempfile.NamedTemporaryFile(dir=tmpdir, mode="wb", delete=False) as f:
            f.write(data)
            tmppath = f.name
        # Another writer may have stored the same content meanwhile.
        if os.path.exists(path):
            os.remove(tmppath)
        else:
            os.replace(tmppath, path)

    def get_blob(self, blob_id: str) -> bytes:
        if len(blob_id) < 4 or os.sep in blob_id:
            raise StoreError(f"Invalid blob id {blob_id!r}")
        try:
            with open(self._blob_path(blob_id), "rb") as f:
                return f.read()
        except FileNotFoundError as e:
            raise StoreError(f"Blob {blob_id} not found") from e

    def blob_batch(self) -> _FileBlobBatch:
        return _FileBlobBatch(self)

    def peer_count(self) -> int:
        # The replica itself can always serve reads.
        return 1

    def close(self) -> None:
        self.closed = True


def iter_file_stores(punch_dir: str) -> Iterator[FileRemoteStore]:
    """Yield every store replica under ``punch_dir``, sorted by directory."""
    try:
        names = sorted(os.listdir(punch_dir))
    except FileNotFoundError:
        return
    for name in names:
        path = os.path.join(punch_dir, name)
        if not os.path.isfile(os.path.join(path, "config.json")):
            continue
        try:
            yield FileRemoteStore(path)
        except StoreError as e:
            logger.warning("Skipping %s: %s", path, e)

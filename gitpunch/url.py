# url.py -- punch:// repository addresses
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

"""Encoding of ``punch://<hex(config)>/<repo-name>`` addresses.

The config record uses the compact binary layout shared with other
implementations of the store:

* ``discoveryKey``: 32 raw bytes
* ``key``: 32 raw bytes
* ``name``: varint length followed by UTF-8 bytes
* ``bootstrap``: varint count followed by ``(ipv4, port)`` pairs, each four
  address octets and a little-endian 16-bit port

Varints are one byte below 0xfd, otherwise a 0xfd/0xfe/0xff marker followed
by a little-endian 16/32/64-bit integer.
"""

import binascii
import hashlib
import ipaddress
import struct
from dataclasses import dataclass, field

from .errors import PunchError

__all__ = [
    "KEY_LENGTH",
    "SCHEME",
    "ConfigDecodeError",
    "RepoConfig",
    "decode_config",
    "discovery_key",
    "encode_config",
    "find_url",
    "format_url",
    "parse_url",
]

SCHEME = "punch://"
KEY_LENGTH = 32


class ConfigDecodeError(PunchError, ValueError):
    """A repository address or config record could not be decoded."""


@dataclass(frozen=True)
class RepoConfig:
    """Everything needed to locate and join a remote repository."""

    discovery_key: bytes
    key: bytes
    name: str
    bootstrap: tuple[tuple[str, int], ...] = field(default_factory=tuple)


def discovery_key(key: bytes) -> bytes:
    """Derive the public discovery key for a store key."""
    return hashlib.blake2b(b"hypercore", key=key, digest_size=32).digest()


def _encode_uint(n: int) -> bytes:
    if n < 0:
        raise ValueError(f"cannot encode negative integer {n}")
    if n <= 0xFC:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + struct.pack("<H", n)
    if n <= 0xFFFFFFFF:
        return b"\xfe" + struct.pack("<I", n)
    return b"\xff" + struct.pack("<Q", n)


class _Reader:
    """Cursor over a config record; every short read is a decode error."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def take(self, n: int, what: str) -> bytes:
        end = self.offset + n
        if end > len(self.data):
            raise ConfigDecodeError(
                f"truncated config: {what} needs {n} bytes at offset "
                f"{self.offset}, {len(self.data) - self.offset} left"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def uint(self, what: str) -> int:
        first = self.take(1, what)[0]
        if first <= 0xFC:
            return first
        if first == 0xFD:
            return struct.unpack("<H", self.take(2, what))[0]
        if first == 0xFE:
            return struct.unpack("<I", self.take(4, what))[0]
        return struct.unpack("<Q", self.take(8, what))[0]

    def done(self) -> None:
        if self.offset != len(self.data):
            raise ConfigDecodeError(
                f"{len(self.data) - self.offset} trailing bytes after config"
            )


def encode_config(config: RepoConfig) -> bytes:
    """Serialize a RepoConfig into its compact binary form."""
    if len(config.discovery_key) != KEY_LENGTH:
        raise ValueError("discovery key must be 32 bytes")
    if len(config.key) != KEY_LENGTH:
        raise ValueError("key must be 32 bytes")
    name = config.name.encode("utf-8")
    parts = [
        config.discovery_key,
        config.key,
        _encode_uint(len(name)),
        name,
        _encode_uint(len(config.bootstrap)),
    ]
    for host, port in config.bootstrap:
        parts.append(ipaddress.IPv4Address(host).packed)
        parts.append(struct.pack("<H", port))
    return b"".join(parts)


def decode_config(data: bytes) -> RepoConfig:
    """Parse the compact binary form of a RepoConfig.

    Raises:
      ConfigDecodeError: on truncated input, trailing bytes or invalid UTF-8
    """
    reader = _Reader(data)
    disc = reader.take(KEY_LENGTH, "discoveryKey")
    key = reader.take(KEY_LENGTH, "key")
    name_length = reader.uint("name length")
    try:
        name = reader.take(name_length, "name").decode("utf-8")
    except UnicodeDecodeError as e:
        raise ConfigDecodeError(f"repository name is not UTF-8: {e}") from e
    bootstrap = []
    for _ in range(reader.uint("bootstrap count")):
        host = str(ipaddress.IPv4Address(reader.take(4, "bootstrap host")))
        (port,) = struct.unpack("<H", reader.take(2, "bootstrap port"))
        bootstrap.append((host, port))
    reader.done()
    return RepoConfig(disc, key, name, tuple(bootstrap))


def format_url(config: RepoConfig) -> str:
    """Render the address of a repository."""
    return f"{SCHEME}{encode_config(config).hex()}/{config.name}"


def parse_url(url: str) -> tuple[RepoConfig, str]:
    """Decode a repository address.

    Returns: tuple of (config, repository name from the path)
    Raises:
      ConfigDecodeError: if the address is not a valid punch:// URL
    """
    url = url.strip()
    if not url.startswith(SCHEME):
        raise ConfigDecodeError(f"Invalid punch url: {url}: missing {SCHEME}")
    encoded, _, repo = url[len(SCHEME) :].partition("/")
    if not encoded:
        raise ConfigDecodeError(f"Invalid punch url: {url}: empty config")
    try:
        data = binascii.unhexlify(encoded)
    except (binascii.Error, ValueError) as e:
        raise ConfigDecodeError(f"Invalid punch url: {url}: {e}") from e
    config = decode_config(data)
    return config, (repo.strip("/") or config.name)


def find_url(argv: list[str]) -> tuple[str | None, str]:
    """Locate the remote name and address in the helper's arguments.

    git invokes ``git-remote-punch <remote> <url>``; wrappers may add
    arguments in front. The address is the first ``punch://`` argument and
    the remote name the one before it.

    Raises:
      ConfigDecodeError: if no argument is a punch:// URL
    """
    if len(argv) >= 2 and argv[1].startswith(SCHEME):
        return argv[0], argv[1]
    for i, arg in enumerate(argv):
        if arg.startswith(SCHEME):
            return (argv[i - 1] if i > 0 else None), arg
    raise ConfigDecodeError("Punch url could not be found in args")

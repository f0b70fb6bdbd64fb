# protocol.py -- Remote-helper command lines
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

"""Reading and parsing the commands git sends to a remote helper.

See gitremote-helpers(7). Every line is parsed into one of the command
classes below; a line that is none of them raises
:class:`ProtocolViolation`.
"""

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Union

from .errors import PunchError
from .refs import Ref

__all__ = [
    "CAPABILITIES",
    "Capabilities",
    "Command",
    "Fetch",
    "Flush",
    "LineReader",
    "List",
    "Option",
    "ProtocolViolation",
    "Push",
    "parse_command",
]

CAPABILITIES = ("option", "fetch", "push", "list")

DEFAULT_CRLF_DELAY = 30.0


class ProtocolViolation(PunchError):
    """git sent a line that is not a known command."""

    def __init__(self, line: str) -> None:
        self.line = line
        PunchError.__init__(self, f"Unexpected message: {line}")


@dataclass(frozen=True)
class Capabilities:
    pass


@dataclass(frozen=True)
class Option:
    key: str
    value: str


@dataclass(frozen=True)
class List:
    for_push: bool = False


@dataclass(frozen=True)
class Push:
    """``push [+]<src>:<dst>``; an empty ``src`` asks to delete ``dst``."""

    src: str
    dst: str
    force: bool = False

    @property
    def is_delete(self) -> bool:
        return not self.src


@dataclass(frozen=True)
class Fetch:
    ref: Ref


@dataclass(frozen=True)
class Flush:
    pass


Command = Union[Capabilities, Option, List, Push, Fetch, Flush]


def _parse_option(line: str, args: str) -> Option:
    key, _, value = args.partition(" ")
    if not key:
        raise ProtocolViolation(line)
    return Option(key, value)


def _parse_list(line: str, args: str) -> List:
    if not args:
        return List()
    if args == "for-push":
        return List(for_push=True)
    raise ProtocolViolation(line)


def _parse_push(line: str, args: str) -> Push:
    if not args:
        raise ProtocolViolation(line)
    force = args.startswith("+")
    if force:
        args = args[1:]
    src, sep, dst = args.partition(":")
    if not sep:
        dst = src
    if not dst:
        raise ProtocolViolation(line)
    return Push(src, dst, force)


def _parse_fetch(line: str, args: str) -> Fetch:
    if not args:
        raise ProtocolViolation(line)
    return Fetch(Ref.from_value(args))


def _parse_capabilities(line: str, args: str) -> Capabilities:
    if args:
        raise ProtocolViolation(line)
    return Capabilities()


_PARSERS: dict[str, Callable[[str, str], Command]] = {
    "capabilities": _parse_capabilities,
    "option": _parse_option,
    "list": _parse_list,
    "push": _parse_push,
    "fetch": _parse_fetch,
}


def parse_command(line: str) -> Command:
    """Parse one command line, without its line terminator.

    Raises:
      ProtocolViolation: if the line is not a known command
      MalformedRefError: if a ``fetch`` names a malformed ref
    """
    if line == "":
        return Flush()
    verb, _, args = line.partition(" ")
    parser = _PARSERS.get(verb)
    if parser is None:
        raise ProtocolViolation(line)
    return parser(line, args.strip())


def _decode_line(line: bytes) -> str:
    try:
        return line.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ProtocolViolation(line.decode("utf-8", "replace")) from e


class LineReader:
    """Splits a byte stream into text lines.

    ``\\n`` and ``\\r\\n`` end a line. A bare ``\\r`` ends a line too, and a
    ``\\n`` that arrives no later than ``crlf_delay`` seconds after it is
    taken as the second half of a ``\\r\\n`` pair rather than an empty
    line.
    """

    def __init__(
        self,
        read: Callable[[int], bytes],
        crlf_delay: float = DEFAULT_CRLF_DELAY,
        read_size: int = 8192,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize a LineReader.

        Args:
          read: Callable returning up to the given number of available
            bytes, b"" at end of stream (e.g. ``sys.stdin.buffer.read1``)
          crlf_delay: Seconds a ``\\r`` waits for its ``\\n``
          read_size: Number of bytes to request per read
          clock: Monotonic clock
        """
        self._read = read
        self.crlf_delay = crlf_delay
        self.read_size = read_size
        self._clock = clock
        self._cr_at: float | None = None

    def _split(self, buf: bytearray) -> Iterator[str]:
        while True:
            cr = buf.find(b"\r")
            lf = buf.find(b"\n")
            if cr == -1 and lf == -1:
                return
            if lf != -1 and (cr == -1 or lf < cr):
                line = bytes(buf[:lf])
                del buf[: lf + 1]
            elif cr + 1 < len(buf):
                line = bytes(buf[:cr])
                del buf[: cr + (2 if buf[cr + 1 : cr + 2] == b"\n" else 1)]
            else:
                # \r is the last byte read so far; its \n may still come.
                line = bytes(buf[:cr])
                del buf[: cr + 1]
                self._cr_at = self._clock()
            yield _decode_line(line)

    def __iter__(self) -> Iterator[str]:
        buf = bytearray()
        while True:
            chunk = self._read(self.read_size)
            if not chunk:
                if buf:
                    yield _decode_line(bytes(buf))
                return
            if self._cr_at is not None:
                if (
                    chunk[:1] == b"\n"
                    and self._clock() - self._cr_at <= self.crlf_delay
                ):
                    chunk = chunk[1:]
                self._cr_at = None
            buf.extend(chunk)
            yield from self._split(buf)

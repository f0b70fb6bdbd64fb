# progress.py -- Transfer progress on the error channel
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

"""Progress messages in the style git prints for its own transports."""

import sys
import time
from collections.abc import Callable
from typing import TextIO

__all__ = ["ProgressReporter", "format_bytes"]

_UNITS = ("bytes", "KiB", "MiB", "GiB")


def format_bytes(n: float) -> str:
    """Format a byte count with binary units, e.g. ``1.50 KiB``."""
    if n < 1024:
        return f"{int(n)} bytes"
    for unit in _UNITS[1:]:
        n /= 1024.0
        if n < 1024 or unit == _UNITS[-1]:
            return f"{n:.2f} {unit}"
    raise AssertionError("unreachable")


class ProgressReporter:
    """Writes progress lines to a stream, never to the protocol channel.

    Intermediate updates end in a carriage return so that a terminal shows
    them in place; completed phases end in a newline.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stream = stream
        self._clock = clock
        self.total_objects = 0
        self.written_objects = 0
        self.written_bytes = 0
        self._phase: str | None = None
        self._start: float | None = None

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stderr

    def _write(self, text: str) -> None:
        self.stream.write(text)
        self.stream.flush()

    def start_counting(self, phase: str = "Enumerating objects") -> None:
        self._phase = phase
        self._start = self._clock()
        self._write(f"{phase}...\r")

    def update_count(self, count: int) -> None:
        if self._phase is not None:
            self._write(f"{self._phase}: {count}\r")

    def finish_counting(self, total: int) -> None:
        self.total_objects = total
        self._write(f"{self._phase or 'Enumerating objects'}: {total}, done.\n")
        self._phase = None

    def start_writing(self) -> None:
        self._phase = "Writing objects"
        self.written_objects = 0
        self.written_bytes = 0
        if self._start is None:
            self._start = self._clock()
        self._write(self._writing_message() + "\r")

    def update_writing(self, objects: int, nbytes: int) -> None:
        self.written_objects = objects
        self.written_bytes = nbytes
        self._write(self._writing_message() + "\r")

    def _percentage(self) -> int:
        if self.total_objects <= 0:
            return 0
        return min(100, self.written_objects * 100 // self.total_objects)

    def _writing_message(self) -> str:
        return (
            f"Writing objects: {self._percentage()}% "
            f"({self.written_objects}/{self.total_objects}), "
            f"{format_bytes(self.written_bytes)}"
        )

    def rate(self) -> str:
        """Average throughput since counting or writing started."""
        if self._start is None or self.written_bytes == 0:
            return "0 bytes/s"
        elapsed = self._clock() - self._start
        if elapsed <= 0:
            return "0 bytes/s"
        return f"{format_bytes(self.written_bytes / elapsed)}/s"

    def finish_writing(self) -> None:
        self._write(f"{self._writing_message()} | {self.rate()}, done.\n")
        self._phase = None
        self._start = None

    def receiving(self, objects: int, nbytes: int) -> None:
        """Report a completed fetch of one ref."""
        self._write(
            f"Receiving objects: 100% ({objects}/{objects}), "
            f"{format_bytes(nbytes)}, done.\n"
        )

    def report_error(self, error: object) -> None:
        self._write(f"Error: {error}\n")
        self._phase = None

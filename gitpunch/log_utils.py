# log_utils.py -- Logging utilities for git-remote-punch
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

"""Logging utilities for git-remote-punch.

The package is usable as a library, so by default nothing is emitted: the
package logger carries a no-op handler. The remote helper entry point
installs a stderr handler whose level follows the verbosity negotiated with
git. Standard output belongs to the remote-helper protocol and must never
receive log records.

``GIT_TRACE`` is honoured the same way git honours it.
"""

import logging
import os
import sys
from typing import TextIO

__all__ = [
    "VERBOSE",
    "configure_helper_logging",
    "getLogger",
    "level_for_verbosity",
    "remove_null_handler",
    "set_verbosity",
]

getLogger = logging.getLogger

# Below DEBUG; used for per-line protocol echo and per-object chatter.
VERBOSE = 5
logging.addLevelName(VERBOSE, "VERBOSE")

HELPER_FORMAT = "Punch [%(levelname)s]: %(message)s"


class _NullHandler(logging.Handler):
    """No-op logging handler to avoid unexpected logging warnings."""

    def emit(self, record: logging.LogRecord) -> None:
        pass


_NULL_HANDLER = _NullHandler()
_PUNCH_LOGGER = getLogger("gitpunch")
_PUNCH_LOGGER.addHandler(_NULL_HANDLER)

_helper_handler: logging.Handler | None = None
_trace_handlers: list[logging.Handler] = []


def _get_trace_target() -> str | int | None:
    """Get the trace target from the GIT_TRACE environment variable.

    Returns:
        - None if tracing is disabled
        - 2 for stderr output (values "1", "2", "true")
        - int (3-9) for a file descriptor
        - str for a file path (absolute paths or directories)
    """
    trace_value = os.environ.get("GIT_TRACE", "")

    if not trace_value or trace_value.lower() in ("0", "false"):
        return None

    if trace_value.lower() in ("1", "2", "true"):
        return 2

    try:
        fd = int(trace_value)
        if 3 <= fd <= 9:
            return fd
    except ValueError:
        pass

    if os.path.isabs(trace_value):
        return trace_value

    return None


def _trace_handler() -> logging.Handler | None:
    """Build a handler for the GIT_TRACE target, if tracing is enabled."""
    trace_target = _get_trace_target()
    if trace_target is None:
        return None

    if trace_target == 2:
        return logging.StreamHandler(sys.stderr)

    if isinstance(trace_target, int):
        try:
            stream = os.fdopen(trace_target, "w", buffering=1)
        except OSError as e:
            sys.stderr.write(
                f"Warning: Failed to open GIT_TRACE fd {trace_target}: {e}\n"
            )
            return None
        return logging.StreamHandler(stream)

    if os.path.isdir(trace_target):
        filename = os.path.join(trace_target, f"trace.{os.getpid()}")
    else:
        filename = trace_target
    try:
        return logging.FileHandler(filename, mode="a")
    except OSError as e:
        sys.stderr.write(f"Warning: Failed to open GIT_TRACE file {trace_target}: {e}\n")
        return None


def level_for_verbosity(verbosity: int) -> int:
    """Map a remote-helper verbosity onto a logging level.

    git starts helpers at verbosity 1; each ``-v`` adds one and ``-q``
    drops it to 0.
    """
    if verbosity <= 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    if verbosity == 2:
        return logging.DEBUG
    return VERBOSE


def set_verbosity(verbosity: int) -> None:
    """Apply a remote-helper verbosity to the package logger."""
    level = level_for_verbosity(verbosity)
    if _helper_handler is not None:
        _helper_handler.setLevel(level)
    # A trace target sees everything regardless of the negotiated verbosity.
    _PUNCH_LOGGER.setLevel(VERBOSE if _trace_handlers else level)


def configure_helper_logging(stream: TextIO | None = None, verbosity: int = 1) -> None:
    """Route package diagnostics to the helper's error channel.

    Args:
      stream: Stream for diagnostics (defaults to stderr)
      verbosity: Initial verbosity level
    """
    global _helper_handler

    remove_null_handler()
    for old in [_helper_handler, *_trace_handlers]:
        if old is not None:
            _PUNCH_LOGGER.removeHandler(old)
    _trace_handlers.clear()

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(logging.Formatter(HELPER_FORMAT))
    _PUNCH_LOGGER.addHandler(handler)
    _helper_handler = handler

    trace = _trace_handler()
    if trace is not None:
        trace.setFormatter(
            logging.Formatter("%(asctime)s %(name)s %(levelname)s: %(message)s")
        )
        _PUNCH_LOGGER.addHandler(trace)
        _trace_handlers.append(trace)

    set_verbosity(verbosity)


def remove_null_handler() -> None:
    """Remove the null handler from the package logger."""
    _PUNCH_LOGGER.removeHandler(_NULL_HANDLER)

# engine.py -- The remote-helper protocol engine
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

"""Dispatch of remote-helper commands.

:class:`ProtocolEngine` reads command lines one at a time, keeps the
pending push and fetch state of the session in a :class:`Session`, runs the
push or fetch pipeline on every blank line and writes the replies git
expects to the protocol channel. Diagnostics only ever go through logging,
which the helper routes to stderr.
"""

import logging
import sys
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import TextIO

from . import log_utils
from .config import PunchConfig
from .errors import PunchError
from .fetch import FetchOptions, fetch_refs
from .log_utils import VERBOSE
from .progress import ProgressReporter
from .protocol import (
    CAPABILITIES,
    Capabilities,
    Command,
    Fetch,
    Flush,
    List,
    Option,
    Push,
    parse_command,
)
from .push import list_for_push, push_refs
from .refs import Ref
from .store import RemoteStore, get_all_refs
from .toolchain import ToolchainClient

__all__ = ["ProtocolEngine", "Session"]

logger = logging.getLogger(__name__)

_TRUE_VALUES = ("true", "1", "yes", "on")


@dataclass
class Session:
    """Negotiated options and pending work of one helper session.

    Pending refs are keyed by their text form and kept in the order they
    were queued.
    """

    verbosity: int = 1
    progress: bool = False
    cloning: bool = False
    followtags: bool = False
    pending_pushes: dict[str, Ref] = field(default_factory=dict)
    push_renames: dict[str, str] = field(default_factory=dict)
    rejected_pushes: dict[str, str] = field(default_factory=dict)
    push_requested: bool = False
    pending_fetches: dict[str, Ref] = field(default_factory=dict)
    loaded_refs: set[str] = field(default_factory=set)


class ProtocolEngine:
    """Drives one remote-helper session."""

    def __init__(
        self,
        toolchain: ToolchainClient,
        store: RemoteStore,
        config: PunchConfig,
        repo_name: str,
        output: TextIO | None = None,
        progress_stream: TextIO | None = None,
        session: Session | None = None,
    ) -> None:
        """Initialize a ProtocolEngine.

        Args:
          toolchain: Access to the caller's repository
          store: The remote store
          config: Effective settings
          repo_name: Repository name, used to scope scratch workspaces
          output: Protocol channel (defaults to stdout)
          progress_stream: Stream for progress output (defaults to stderr)
          session: Initial session state
        """
        self.toolchain = toolchain
        self.store = store
        self.config = config
        self.repo_name = repo_name
        self._output_stream = output
        self._output_closed = False
        self.progress_stream = progress_stream
        if session is None:
            session = Session(progress=config.progress)
        self.session = session
        self._handlers: dict[type, Callable[[Command], None]] = {
            Capabilities: self._capabilities,
            Option: self._option,
            List: self._list,
            Push: self._push,
            Fetch: self._fetch,
            Flush: self._flush,
        }

    @property
    def output_stream(self) -> TextIO:
        if self._output_stream is not None:
            return self._output_stream
        return sys.stdout

    def output(self, line: str) -> None:
        """Write one protocol line."""
        if self._output_closed:
            logger.debug("Output closed, dropping: %s", line)
            return
        try:
            self.output_stream.write(line + "\n")
            self.output_stream.flush()
        except BrokenPipeError:
            # git stops reading once it has what it needs.
            logger.debug("Output closed, dropping: %s", line)
            self._output_closed = True
            return
        logger.log(VERBOSE, "Echo: %s", line)

    def _progress(self) -> ProgressReporter | None:
        if not self.session.progress:
            return None
        return ProgressReporter(self.progress_stream)

    def handle(self, command: Command) -> None:
        """Execute one parsed command."""
        self._handlers[type(command)](command)

    def handle_line(self, line: str) -> None:
        """Parse and execute one command line.

        Raises:
          ProtocolViolation: if the line is not a known command
        """
        logger.log(VERBOSE, "Line: %s", line)
        self.handle(parse_command(line))

    def run(self, lines: Iterable[str]) -> int:
        """Process command lines until the input ends.

        The store is closed when the session ends, however it ends.

        Returns: process exit status
        """
        try:
            # Reading the input can fail too, e.g. on undecodable bytes.
            for line in lines:
                self.handle_line(line)
        except (PunchError, OSError) as e:
            logger.error("%s", e)
            return 1
        else:
            logger.debug("End of input")
            return 0
        finally:
            self.close()

    def close(self) -> None:
        self.store.close()

    def _capabilities(self, command: Capabilities) -> None:
        for capability in CAPABILITIES:
            self.output(capability)
        self.output("")

    def _option(self, command: Option) -> None:
        session = self.session
        value = command.value.strip()
        if command.key == "verbosity":
            try:
                session.verbosity = int(value)
            except ValueError:
                logger.debug("Ignoring verbosity %r", value)
            else:
                log_utils.set_verbosity(session.verbosity)
        elif command.key == "progress":
            session.progress = value.lower() in _TRUE_VALUES
        elif command.key == "cloning":
            session.cloning = value.lower() in _TRUE_VALUES
        elif command.key == "followtags":
            session.followtags = value.lower() in _TRUE_VALUES
        else:
            logger.debug("Ignoring option %s", command.key)
        logger.debug("Option %s set to %s", command.key, value)
        self.output("ok")

    def _list(self, command: List) -> None:
        if command.for_push:
            logger.log(VERBOSE, "Listing for push to %s", self.repo_name)
            list_for_push(
                self.toolchain, self.store, self.session.pending_pushes, self.output
            )
            self.output("")
            return
        logger.debug("Listing refs")
        refs = get_all_refs(self.store)
        for ref in refs:
            self.output(ref.value)
        self.output("")
        self.session.loaded_refs.update(ref.value for ref in refs)

    def _push(self, command: Push) -> None:
        session = self.session
        session.push_requested = True
        if command.is_delete:
            session.rejected_pushes[command.dst] = "deleting refs is not supported"
            return
        oid = self.toolchain.resolve_ref(command.src)
        if oid is None:
            session.rejected_pushes[command.dst] = (
                f"src refspec {command.src} does not match any"
            )
            return
        logger.debug("Add push refs: %s:%s", command.src, command.dst)
        session.push_renames[command.src] = command.dst
        ref = Ref(command.src, oid)
        session.pending_pushes.setdefault(ref.value, ref)

    def _fetch(self, command: Fetch) -> None:
        ref = command.ref
        logger.debug("Prepare fetch: %s", ref.value)
        if ref.value not in self.session.loaded_refs:
            logger.debug("Not advertised, ignoring: %s", ref.value)
            return
        self.session.pending_fetches.setdefault(ref.value, ref)

    def _flush(self, command: Flush) -> None:
        session = self.session
        if session.pending_fetches:
            options = FetchOptions(
                scratch_dir=self.config.scratch_dir,
                repo_name=self.repo_name,
                cloning=session.cloning,
                fetch_without_cloning=self.config.fetch_without_cloning,
                keep_scratch=self.config.keep_scratch,
            )
            fetch_refs(
                self.toolchain,
                self.store,
                session.pending_fetches,
                options,
                progress=self._progress(),
            )
            self.output("")
            return

        if not session.pending_pushes and not session.push_requested:
            logger.debug("Nothing pending")
            return
        logger.log(VERBOSE, "Pushing refs: %d", len(session.pending_pushes))
        results = push_refs(
            self.toolchain,
            self.store,
            session.pending_pushes,
            session.push_renames,
            verify=self.config.verify,
            batch_size=self.config.batch_size,
            progress=self._progress(),
        )
        for result in results:
            self.output(result.status_line())
        for dst, message in session.rejected_pushes.items():
            self.output(f"error {dst} {message}")
        session.rejected_pushes.clear()
        session.push_requested = False
        self.output("")

# cli.py -- Command line entry points
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

"""Command line entry points.

``git-remote-punch`` is the remote helper git runs for ``punch://`` URLs::

  git clone punch://<config>/<name>

``punch`` manages the local store replicas::

  punch create myrepo
  punch list
  punch show punch://...
"""

import argparse
import logging
import os
import sys
from collections.abc import Mapping, Sequence
from typing import BinaryIO, ClassVar, TextIO

from .config import PunchConfig
from .engine import ProtocolEngine
from .errors import PunchError
from .log_utils import configure_helper_logging
from .protocol import LineReader
from .store import FileRemoteStore, StoreError, iter_file_stores, wait_for_peers
from .toolchain import GitToolchain
from .url import ConfigDecodeError, find_url, format_url, parse_url

logger = logging.getLogger(__name__)


def remote_helper_main(
    argv: Sequence[str] | None = None,
    stdin: BinaryIO | None = None,
    stdout: TextIO | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    """Run the remote helper.

    Args:
      argv: Arguments after the program name, ``<remote> <url>``
      stdin: Binary command channel (defaults to stdin)
      stdout: Protocol reply channel (defaults to stdout)
      environ: Environment (defaults to os.environ)
    Returns: exit status
    """
    if argv is None:
        argv = sys.argv[1:]
    if stdin is None:
        stdin = sys.stdin.buffer
    if environ is None:
        environ = os.environ

    configure_helper_logging(verbosity=1)

    try:
        remote, url = find_url(list(argv))
        repo_config, repo_name = parse_url(url)
    except ConfigDecodeError as e:
        logger.error("%s", e)
        return 1
    logger.debug("Remote %s, repository %s", remote, repo_name)

    try:
        settings = PunchConfig.load(environ.get("GIT_DIR"), environ)
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        return 1

    try:
        store = FileRemoteStore.open(settings.punch_dir, repo_config)
    except (StoreError, OSError) as e:
        logger.error("Failed to join remote: %s", e)
        return 1

    if settings.wait_for_peers:
        try:
            wait_for_peers(store, settings.peer_timeout, settings.peer_interval)
        except StoreError as e:
            logger.error("%s", e)
            store.close()
            return 1

    engine = ProtocolEngine(
        GitToolchain(env=environ),
        store,
        settings,
        repo_name,
        output=stdout,
    )
    reader = LineReader(stdin.read1, crlf_delay=settings.crlf_delay)
    return engine.run(reader)


def _remote_helper() -> None:
    sys.exit(remote_helper_main())


class Command:
    """A punch subcommand."""

    def run(self, args: Sequence[str]) -> int | None:
        """Run the command."""
        raise NotImplementedError(self.run)


def _punch_dir(value: str | None) -> str:
    if value:
        return value
    return PunchConfig.load().punch_dir


def _parse_peer(value: str) -> tuple[str, int]:
    host, sep, port = value.rpartition(":")
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"expected HOST:PORT, got {value!r}")
    try:
        return host, int(port)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid port in {value!r}") from e


class cmd_create(Command):
    """Create a new store and print its URL."""

    def run(self, args: Sequence[str]) -> int | None:
        parser = argparse.ArgumentParser(prog="punch create")
        parser.add_argument("name", help="Repository name")
        parser.add_argument("--dir", help="Directory holding the store replicas")
        parser.add_argument(
            "--bootstrap",
            action="append",
            default=[],
            type=_parse_peer,
            metavar="HOST:PORT",
            help="Bootstrap peer to record in the URL",
        )
        parsed_args = parser.parse_args(args)
        store = FileRemoteStore.create(
            _punch_dir(parsed_args.dir), parsed_args.name, parsed_args.bootstrap
        )
        sys.stdout.write(store.remote_url() + "\n")
        return None


class cmd_list(Command):
    """List the local store replicas."""

    def run(self, args: Sequence[str]) -> int | None:
        parser = argparse.ArgumentParser(prog="punch list")
        parser.add_argument("--dir", help="Directory holding the store replicas")
        parsed_args = parser.parse_args(args)
        for store in iter_file_stores(_punch_dir(parsed_args.dir)):
            sys.stdout.write(f"{store.name}\t{store.remote_url()}\n")
        return None


class cmd_show(Command):
    """Decode a punch:// URL."""

    def run(self, args: Sequence[str]) -> int | None:
        parser = argparse.ArgumentParser(prog="punch show")
        parser.add_argument("url", help="punch:// URL")
        parser.add_argument("--dir", help="Directory holding the store replicas")
        parsed_args = parser.parse_args(args)
        try:
            config, repo_name = parse_url(parsed_args.url)
        except ConfigDecodeError as e:
            logger.error("%s", e)
            return 1
        replica = os.path.join(_punch_dir(parsed_args.dir), config.discovery_key.hex())
        lines = [
            f"name: {config.name}",
            f"repository: {repo_name}",
            f"key: {config.key.hex()}",
            f"discovery key: {config.discovery_key.hex()}",
        ]
        for host, port in config.bootstrap:
            lines.append(f"bootstrap: {host}:{port}")
        if os.path.isdir(replica):
            lines.append(f"replica: {replica}")
        lines.append(f"url: {format_url(config)}")
        sys.stdout.write("\n".join(lines) + "\n")
        return None


class cmd_help(Command):
    """Show the available subcommands."""

    def run(self, args: Sequence[str]) -> int | None:
        logger.info("Available commands:")
        for name in sorted(commands):
            logger.info("  %-8s %s", name, commands[name].__doc__)
        return None


class SuperCommand(Command):
    """Base class for commands that have subcommands."""

    subcommands: ClassVar[dict[str, type[Command]]] = {}
    default_command: ClassVar[type[Command] | None] = None

    def run(self, args: Sequence[str]) -> int | None:
        if not args:
            if self.default_command:
                return self.default_command().run(args)
            logger.info(
                "Supported subcommands: %s", ", ".join(sorted(self.subcommands))
            )
            return 1
        cmd = args[0]
        try:
            cmd_kls = self.subcommands[cmd]
        except KeyError:
            logger.error("No such subcommand: %s", cmd)
            return 1
        return cmd_kls().run(args[1:])


commands: dict[str, type[Command]] = {
    "create": cmd_create,
    "help": cmd_help,
    "list": cmd_list,
    "show": cmd_show,
}


class cmd_punch(SuperCommand):
    """Manage punch stores."""

    subcommands = commands
    default_command = cmd_help


def main(argv: Sequence[str] | None = None) -> int | None:
    """Main entry point for the punch management CLI.

    Args:
      argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
      Exit code or None
    """
    if argv is None:
        argv = sys.argv[1:]
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    try:
        return cmd_punch().run(argv)
    except (PunchError, OSError) as e:
        logger.error("%s", e)
        return 1


def _main() -> None:
    sys.exit(main())


if __name__ == "__main__":
    _main()

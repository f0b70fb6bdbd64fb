# toolchain.py -- Access to a local repository through git plumbing
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

"""Access to a local repository through git plumbing.

:class:`ToolchainClient` is the narrow set of repository operations the
push and fetch pipelines need. :class:`GitToolchain` implements it by running
the ``git`` executable; :mod:`gitpunch.dulwich_toolchain` implements it
in-process.
"""

import glob
import logging
import os
import subprocess
import tempfile
from collections.abc import Iterator, Mapping, Sequence
from typing import Protocol as TypingProtocol

from .errors import PunchError
from .objects import GitObject, iter_batch_objects

__all__ = [
    "GitToolchain",
    "ToolchainClient",
    "ToolchainError",
]

logger = logging.getLogger(__name__)

# Variables that pin git to one repository; dropped when addressing another.
_REPOSITORY_ENV = frozenset(
    [
        "GIT_DIR",
        "GIT_WORK_TREE",
        "GIT_COMMON_DIR",
        "GIT_INDEX_FILE",
        "GIT_OBJECT_DIRECTORY",
        "GIT_ALTERNATE_OBJECT_DIRECTORIES",
        "GIT_NAMESPACE",
    ]
)


class ToolchainError(PunchError):
    """A plumbing command exited with a non-zero status."""

    def __init__(
        self, argv: Sequence[str], returncode: int, stderr: bytes | str = b""
    ) -> None:
        """Initialize a ToolchainError.

        Args:
          argv: Command that was run
          returncode: Its exit status
          stderr: Captured standard error output
        """
        if isinstance(stderr, bytes):
            stderr = stderr.decode("utf-8", "replace")
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        message = f"{' '.join(self.argv)} failed with status {returncode}"
        if stderr.strip():
            message += f": {stderr.strip()}"
        PunchError.__init__(self, message)


class ToolchainClient(TypingProtocol):
    """Repository operations used by the push and fetch pipelines."""

    def list_refs(self) -> str:
        """List local refs as ``git show-ref`` text."""
        ...

    def read_head(self) -> str | None:
        """Return the ref HEAD symbolically points at, if any."""
        ...

    def resolve_ref(self, name: str) -> str | None:
        """Return the oid a ref name points at, or None if it does not exist."""
        ...

    def enumerate_objects(self, oid: str) -> Iterator[GitObject]:
        """Yield every object reachable from ``oid``, with its content."""
        ...

    def init_bare(self, object_format: str = "sha1") -> None:
        """Create an empty bare repository at this toolchain's path."""
        ...

    def hash_and_store(self, type_name: str, content: bytes) -> str:
        """Store an object and return the oid computed for it."""
        ...

    def update_ref(self, name: str, oid: str) -> None:
        """Point a ref at an oid."""
        ...

    def set_symbolic_head(self, name: str) -> None:
        """Make HEAD a symbolic ref to ``name``."""
        ...

    def repack(self) -> None:
        """Pack all objects of the repository."""
        ...

    def fsck(self) -> list[str]:
        """Check the repository; returns the problems found, if any."""
        ...

    def iter_packs(self) -> Iterator[bytes]:
        """Yield the contents of each pack file of the repository."""
        ...

    def ingest_pack(self, data: bytes) -> None:
        """Add the objects of a pack stream to the repository."""
        ...

    def for_path(self, path: str) -> "ToolchainClient":
        """Return a toolchain of the same kind for another repository."""
        ...


class GitToolchain:
    """ToolchainClient that runs the ``git`` executable.

    Without a ``git_dir``, commands run against whatever repository git
    finds from the environment (``GIT_DIR`` as set by git for its remote
    helpers, or the current directory).
    """

    def __init__(
        self,
        git_dir: str | None = None,
        git: str = "git",
        env: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize a GitToolchain.

        Args:
          git_dir: Repository control directory, or None for the ambient one
          git: Name or path of the git executable
          env: Base environment for commands (defaults to os.environ)
        """
        self.git_dir = git_dir
        self.git = git
        self._env = dict(os.environ if env is None else env)
        if git_dir is not None:
            self._env["GIT_DIR"] = git_dir
        self._resolved_git_dir: str | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.git_dir!r})"

    def _argv(self, args: Sequence[str]) -> list[str]:
        return [self.git, *args]

    def _run(
        self,
        args: Sequence[str],
        input: bytes | None = None,
        check: bool = True,
    ) -> subprocess.CompletedProcess[bytes]:
        argv = self._argv(args)
        logger.debug("Running %s", " ".join(argv))
        try:
            result = subprocess.run(
                argv,
                input=input,
                stdin=None if input is not None else subprocess.DEVNULL,
                capture_output=True,
                env=self._env,
            )
        except OSError as e:
            raise ToolchainError(argv, -1, str(e)) from e
        if check and result.returncode != 0:
            raise ToolchainError(argv, result.returncode, result.stderr)
        return result

    def _resolve_git_dir(self) -> str:
        if self._resolved_git_dir is None:
            result = self._run(["rev-parse", "--absolute-git-dir"])
            self._resolved_git_dir = result.stdout.decode("utf-8").strip()
        return self._resolved_git_dir

    def list_refs(self) -> str:
        result = self._run(["show-ref"], check=False)
        # show-ref reports an empty repository with status 1 and no output.
        if result.returncode == 1 and not result.stdout.strip():
            return ""
        if result.returncode != 0:
            raise ToolchainError(self._argv(["show-ref"]), result.returncode, result.stderr)
        return result.stdout.decode("utf-8")

    def read_head(self) -> str | None:
        result = self._run(["symbolic-ref", "-q", "HEAD"], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.decode("utf-8").strip() or None

    def resolve_ref(self, name: str) -> str | None:
        result = self._run(["rev-parse", "--verify", "-q", name], check=False)
        if result.returncode != 0:
            return None
        return result.stdout.decode("ascii").strip()

    def enumerate_objects(self, oid: str) -> Iterator[GitObject]:
        """Stream the objects reachable from ``oid``.

        Equivalent to ``git rev-list --objects | git cat-file --batch``; the
        two processes are connected by a pipe and the batch output is parsed
        as it arrives. Standard error of both goes to temporary files, which
        are read once the processes have exited.
        """
        rev_list_args = ["rev-list", "--objects", "--no-object-names", oid]
        with tempfile.TemporaryFile() as rev_err, tempfile.TemporaryFile() as cat_err:
            rev_list = subprocess.Popen(
                self._argv(rev_list_args),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=rev_err,
                env=self._env,
            )
            assert rev_list.stdout is not None
            cat_file = subprocess.Popen(
                self._argv(["cat-file", "--batch"]),
                stdin=rev_list.stdout,
                stdout=subprocess.PIPE,
                stderr=cat_err,
                env=self._env,
            )
            # cat-file owns the read end now.
            rev_list.stdout.close()
            assert cat_file.stdout is not None
            try:
                yield from iter_batch_objects(cat_file.stdout.read1)
            finally:
                cat_file.stdout.close()
                cat_status = cat_file.wait()
                rev_status = rev_list.wait()
            rev_err.seek(0)
            rev_stderr = rev_err.read()
            cat_err.seek(0)
            cat_stderr = cat_err.read()
        if rev_status != 0:
            raise ToolchainError(self._argv(rev_list_args), rev_status, rev_stderr)
        if cat_status != 0:
            raise ToolchainError(
                self._argv(["cat-file", "--batch"]), cat_status, cat_stderr
            )

    def init_bare(self, object_format: str = "sha1") -> None:
        if self.git_dir is None:
            raise ValueError("init_bare needs an explicit repository path")
        self._run(
            [
                "init",
                "--quiet",
                "--bare",
                f"--object-format={object_format}",
                self.git_dir,
            ]
        )

    def hash_and_store(self, type_name: str, content: bytes) -> str:
        result = self._run(
            ["hash-object", "-w", "-t", type_name, "--stdin"], input=content
        )
        return result.stdout.decode("ascii").strip()

    def update_ref(self, name: str, oid: str) -> None:
        self._run(["update-ref", name, oid])

    def set_symbolic_head(self, name: str) -> None:
        self._run(["symbolic-ref", "HEAD", name])

    def repack(self) -> None:
        self._run(["repack", "-a", "-d", "-q"])

    def fsck(self) -> list[str]:
        result = self._run(["fsck", "--full", "--strict", "--no-progress"], check=False)
        if result.returncode == 0:
            return []
        output = result.stdout + result.stderr
        problems = [
            line for line in output.decode("utf-8", "replace").splitlines() if line
        ]
        return problems or [f"git fsck exited with status {result.returncode}"]

    def iter_packs(self) -> Iterator[bytes]:
        pack_dir = os.path.join(self._resolve_git_dir(), "objects", "pack")
        for path in sorted(glob.glob(os.path.join(pack_dir, "*.pack"))):
            with open(path, "rb") as f:
                yield f.read()

    def ingest_pack(self, data: bytes) -> None:
        self._run(["unpack-objects", "-q"], input=data)

    def for_path(self, path: str) -> "GitToolchain":
        env = {k: v for k, v in self._env.items() if k not in _REPOSITORY_ENV}
        return GitToolchain(path, git=self.git, env=env)

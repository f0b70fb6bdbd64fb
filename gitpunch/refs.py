# refs.py -- Ref values and their textual form
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

"""Ref values and the ``<oid> <name>`` text form.

The same text form is used on the remote-helper wire, in ``git show-ref``
output and in ref records of the remote store.
"""

from dataclasses import dataclass

from .errors import PunchError

__all__ = [
    "DEFAULT_BRANCH",
    "HEADREF",
    "LOCAL_BRANCH_PREFIX",
    "MalformedRefError",
    "Ref",
    "parse_show_ref",
]

HEADREF = "HEAD"
LOCAL_BRANCH_PREFIX = "refs/heads/"
REMOTE_BRANCH_PREFIX = "refs/remotes/"
DEFAULT_BRANCH = "refs/heads/main"


class MalformedRefError(PunchError, ValueError):
    """A ref text form could not be parsed."""

    def __init__(self, value: str, reason: str) -> None:
        """Initialize a MalformedRefError.

        Args:
            value: The text that failed to parse.
            reason: Short description of what is wrong with it.
        """
        self.value = value
        self.reason = reason
        PunchError.__init__(self, f"Malformed ref {value!r}: {reason}")


@dataclass(frozen=True)
class Ref:
    """A named pointer to an object id.

    Two refs are equal when their text forms are equal.
    """

    name: str
    oid: str

    @classmethod
    def from_value(cls, value: str) -> "Ref":
        """Parse a ``<oid> <name>`` text form.

        Raises:
          MalformedRefError: if the separator, oid or name is missing
        """
        oid, sep, name = value.strip("\r\n").partition(" ")
        if not sep:
            raise MalformedRefError(value, "missing separator")
        if not oid:
            raise MalformedRefError(value, "empty oid")
        if not name or " " in name:
            raise MalformedRefError(value, "invalid name")
        return cls(name, oid)

    @property
    def value(self) -> str:
        """The ``<oid> <name>`` text form."""
        return f"{self.oid} {self.name}"

    def remote_value(self, remote: str) -> str:
        """Text form with ``refs/heads/*`` mirrored into ``refs/remotes/<remote>/*``."""
        name = self.name
        if name.startswith(LOCAL_BRANCH_PREFIX):
            name = (
                f"{REMOTE_BRANCH_PREFIX}{remote}/{name[len(LOCAL_BRANCH_PREFIX) :]}"
            )
        return f"{self.oid} {name}"

    def with_name(self, name: str) -> "Ref":
        """Return the same oid under another name."""
        return Ref(name, self.oid)

    @property
    def is_branch(self) -> bool:
        """Whether this ref lives in the local branch namespace."""
        return self.name.startswith(LOCAL_BRANCH_PREFIX)

    @property
    def branch_name(self) -> str | None:
        """Branch name without the ``refs/heads/`` prefix, if a branch."""
        if not self.is_branch:
            return None
        return self.name[len(LOCAL_BRANCH_PREFIX) :]

    def __str__(self) -> str:
        return self.value


def parse_show_ref(text: str) -> list[Ref]:
    """Parse ``git show-ref`` output into refs, in listing order.

    Blank lines are ignored; any other unparseable line raises
    MalformedRefError.
    """
    refs = []
    for line in text.splitlines():
        if not line.strip():
            continue
        refs.append(Ref.from_value(line))
    return refs

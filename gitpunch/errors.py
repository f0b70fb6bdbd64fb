# errors.py -- errors shared by the push and fetch pipelines
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

"""git-remote-punch exception classes.

Please do not add more errors here, but instead add them close to the code
that raises the error.
"""

__all__ = [
    "IntegrityError",
    "OidMismatchError",
    "PunchError",
]


class PunchError(Exception):
    """Base class for all errors raised by git-remote-punch."""


class IntegrityError(PunchError):
    """An object's payload does not match what was declared for it."""

    def __init__(self, oid: str, declared: int, actual: int) -> None:
        """Initialize an IntegrityError.

        Args:
            oid: Object id the payload was declared for.
            declared: Declared size in bytes.
            actual: Length of the payload actually received.
        """
        self.oid = oid
        self.declared = declared
        self.actual = actual
        PunchError.__init__(
            self,
            f"Size mismatch for {oid}: declared {declared}, got {actual} bytes",
        )


class OidMismatchError(IntegrityError):
    """The id computed for stored content differs from the declared one.

    Signals a corrupted transfer, or writer and reader disagreeing about the
    object format.
    """

    def __init__(self, type_name: str, expected: str, got: str) -> None:
        """Initialize an OidMismatchError.

        Args:
            type_name: Object type that was hashed.
            expected: Declared object id.
            got: Object id computed by the toolchain.
        """
        self.oid = expected
        self.type_name = type_name
        self.expected = expected
        self.got = got
        PunchError.__init__(
            self,
            f"OID mismatch for {type_name}: expected {expected} but git computed {got}",
        )

# config.py -- Settings for git-remote-punch
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

"""Settings for git-remote-punch.

Settings live in the ``[punch]`` section of the usual git config files, so
they can be set per repository with ``git config punch.verify false`` or
globally with ``git config --global``. A few have environment overrides.
"""

import logging
import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass

from dulwich.config import Config, ConfigFile, StackedConfig

__all__ = [
    "DEFAULT_BATCH_SIZE",
    "PunchConfig",
    "load_git_config",
]

logger = logging.getLogger(__name__)

SECTION = (b"punch",)

DEFAULT_BATCH_SIZE = 8 * 1024 * 1024


def load_git_config(git_dir: str | None = None) -> StackedConfig:
    """Load the git config stack, with the repository's config on top.

    Args:
      git_dir: Path to the repository's control directory, if any
    """
    backends = []
    if git_dir is not None:
        path = os.path.join(git_dir, "config")
        try:
            backends.append(ConfigFile.from_path(path))
        except FileNotFoundError:
            logger.debug("No repository config at %s", path)
    backends.extend(StackedConfig.default_backends())
    return StackedConfig(backends)


def _get_str(config: Config, name: bytes) -> str | None:
    try:
        value = config.get(SECTION, name)
    except KeyError:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value


def _get_int(config: Config, name: bytes, default: int) -> int:
    value = _get_str(config, name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(
            f"punch.{name.decode()} is not an integer: {value!r}"
        ) from e


@dataclass
class PunchConfig:
    """Effective settings of one helper session."""

    punch_dir: str
    scratch_dir: str
    keep_scratch: bool = False
    verify: bool = True
    progress: bool = True
    wait_for_peers: bool = False
    peer_timeout: float = 30.0
    peer_interval: float = 0.5
    crlf_delay: float = 30.0
    fetch_without_cloning: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE

    @classmethod
    def defaults(cls, environ: Mapping[str, str] | None = None) -> "PunchConfig":
        """Settings used when no configuration is present."""
        if environ is None:
            environ = os.environ
        return cls(
            punch_dir=environ.get("PUNCH_DIR")
            or os.path.join(os.path.expanduser("~"), ".punch"),
            scratch_dir=environ.get("PUNCH_SCRATCH_DIR")
            or os.path.join(tempfile.gettempdir(), "punch-scratch"),
        )

    @classmethod
    def from_config(
        cls, config: Config, environ: Mapping[str, str] | None = None
    ) -> "PunchConfig":
        """Read settings from a git config stack.

        Environment variables take precedence over config files.

        Raises:
          ValueError: if a setting has an invalid value
        """
        if environ is None:
            environ = os.environ
        settings = cls.defaults(environ)
        if "PUNCH_DIR" not in environ:
            settings.punch_dir = os.path.expanduser(
                _get_str(config, b"dir") or settings.punch_dir
            )
        if "PUNCH_SCRATCH_DIR" not in environ:
            settings.scratch_dir = os.path.expanduser(
                _get_str(config, b"scratchdir") or settings.scratch_dir
            )
        settings.keep_scratch = config.get_boolean(
            SECTION, b"keepscratch", settings.keep_scratch
        )
        settings.verify = config.get_boolean(SECTION, b"verify", settings.verify)
        settings.progress = config.get_boolean(SECTION, b"progress", settings.progress)
        settings.wait_for_peers = config.get_boolean(
            SECTION, b"waitforpeers", settings.wait_for_peers
        )
        settings.fetch_without_cloning = config.get_boolean(
            SECTION, b"fetchwithoutcloning", settings.fetch_without_cloning
        )
        settings.peer_timeout = float(_get_int(config, b"peertimeout", 30))
        settings.peer_interval = _get_int(config, b"peerinterval", 500) / 1000.0
        settings.crlf_delay = _get_int(config, b"crlfdelay", 30000) / 1000.0
        settings.batch_size = _get_int(config, b"batchsize", DEFAULT_BATCH_SIZE)
        return settings

    @classmethod
    def load(
        cls, git_dir: str | None = None, environ: Mapping[str, str] | None = None
    ) -> "PunchConfig":
        """Load settings for a repository from git config files."""
        return cls.from_config(load_git_config(git_dir), environ)

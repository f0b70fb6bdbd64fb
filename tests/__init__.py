# __init__.py -- The tests for git-remote-punch
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

"""Tests for git-remote-punch."""

__all__ = [
    "SkipTest",
    "TestCase",
    "expectedFailure",
    "skipIf",
    "test_suite",
]

import logging
import os
import unittest
from unittest import SkipTest, expectedFailure, skipIf
from unittest import TestCase as _TestCase


class TestCase(_TestCase):
    """Test case that keeps the user's configuration out of the way."""

    def setUp(self) -> None:
        super().setUp()
        self.overrideEnv("HOME", "/nonexistent")
        self.overrideEnv("GIT_CONFIG_NOSYSTEM", "1")
        self.overrideEnv("GIT_TRACE", None)
        self.overrideEnv("PUNCH_DIR", None)
        self.overrideEnv("PUNCH_SCRATCH_DIR", None)
        self.addCleanup(_reset_package_logger)

    def overrideEnv(self, name: str, value: str | None) -> None:
        def restore() -> None:
            if oldval is not None:
                os.environ[name] = oldval
            else:
                os.environ.pop(name, None)

        oldval = os.environ.get(name)
        if value is not None:
            os.environ[name] = value
        else:
            os.environ.pop(name, None)
        self.addCleanup(restore)


def _reset_package_logger() -> None:
    from gitpunch import log_utils

    logger = logging.getLogger("gitpunch")
    for handler in [log_utils._helper_handler, *log_utils._trace_handlers]:
        if handler is not None:
            logger.removeHandler(handler)
    log_utils._helper_handler = None
    log_utils._trace_handlers.clear()
    logger.setLevel(logging.NOTSET)
    if log_utils._NULL_HANDLER not in logger.handlers:
        logger.addHandler(log_utils._NULL_HANDLER)


def self_test_suite() -> unittest.TestSuite:
    names = [
        "cli",
        "config",
        "dulwich_toolchain",
        "engine",
        "fetch",
        "log_utils",
        "objects",
        "progress",
        "protocol",
        "push",
        "rebuild",
        "refs",
        "store",
        "toolchain",
        "url",
    ]
    module_names = ["tests.test_" + name for name in names]
    loader = unittest.TestLoader()
    return loader.loadTestsFromNames(module_names)


def test_suite() -> unittest.TestSuite:
    return self_test_suite()

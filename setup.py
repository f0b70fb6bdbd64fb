#!/usr/bin/python3
# Setup file for git-remote-punch
# Copyright (C) 2025 The git-remote-punch contributors
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

tests_require = ["pytest"]

setup(
    name="git-remote-punch",
    version="0.3.0",
    description="Git remote helper backed by a replicated, content-addressed store",
    license="Apache-2.0 OR GPL-2.0-or-later",
    python_requires=">=3.10",
    packages=["gitpunch"],
    install_requires=["dulwich>=0.23"],
    extras_require={"test": tests_require},
    entry_points={
        "console_scripts": [
            "git-remote-punch=gitpunch.cli:_remote_helper",
            "punch=gitpunch.cli:_main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Programming Language :: Python :: 3",
        "Operating System :: POSIX",
        "Topic :: Software Development :: Version Control",
    ],
)

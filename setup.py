#!/usr/bin/python3
# Setup file for gitmaint
# Copyright (C) 2008-2022 Jelmer Vernooĳ <jelmer@jelmer.uk>
# SPDX-License-Identifier: Apache-2.0 OR GPL-2.0-or-later

from setuptools import setup

with open("README.rst", encoding="utf-8") as f:
    long_description = f.read()


setup(
    name="gitmaint",
    version="0.1.0",
    description="Housekeeping for Git object stores: gc and maintenance",
    long_description=long_description,
    long_description_content_type="text/x-rst",
    license="Apache-2.0 OR GPL-2.0-or-later",
    python_requires=">=3.10",
    packages=["gitmaint"],
    package_data={"": ["py.typed"]},
    entry_points={
        "console_scripts": [
            "gitmaint=gitmaint.cli:_main",
        ],
    },
    extras_require={
        "dev": ["ruff==0.14.3", "mypy==1.18.2"],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "License :: OSI Approved :: Apache Software License",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Programming Language :: Python :: Implementation :: CPython",
        "Programming Language :: Python :: Implementation :: PyPy",
        "Operating System :: POSIX",
        "Operating System :: Microsoft :: Windows",
        "Topic :: Software Development :: Version Control",
    ],
)

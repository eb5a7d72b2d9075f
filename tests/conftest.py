#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Shared fixtures."""

from __future__ import annotations

import stat
from collections.abc import Callable
from pathlib import Path

import pytest

from profile_resolver import ProfileResolver, ProfileStore

# SOI, a tiny DQT-shaped segment, some scan bytes, EOI
SDR_JPEG: bytes = b"\xff\xd8\xff\xdb\x00\x04\x01\x02scan-data\xff\xd9"
GAIN_MAP_JPEG: bytes = b"\xff\xd8\xff\xdb\x00\x04\x03\x04gain\xff\xd9"
# APP0/JFIF segment of length 16
JFIF_APP0: bytes = b"\xff\xe0\x00\x10JFIF\x00\x01\x01\x00\x00\x01\x00\x01\x00\x00"


@pytest.fixture
def sdr_jpeg() -> bytes:
    return SDR_JPEG


@pytest.fixture
def jfif_jpeg() -> bytes:
    return SDR_JPEG[:2] + JFIF_APP0 + SDR_JPEG[2:]


@pytest.fixture
def gain_map_jpeg() -> bytes:
    return GAIN_MAP_JPEG


@pytest.fixture
def icc_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "icc"
    directory.mkdir()
    return directory


@pytest.fixture
def store(icc_dir: Path) -> ProfileStore:
    """Store that only sees the (initially empty) test ICC directory."""
    return ProfileStore(search_dirs=(icc_dir,))


@pytest.fixture
def resolver(store: ProfileStore) -> ProfileResolver:
    return ProfileResolver(store)


@pytest.fixture
def make_tool(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write an executable shell script standing in for an external tool."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()

    def _make(name: str, body: str) -> Path:
        path = bin_dir / name
        path.write_text(f"#!/bin/sh\n{body}\n", encoding="ascii")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make

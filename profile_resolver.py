#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
ICC profile resolution for the colour pipeline.

Source profile priority (first available wins):
  1. Standard profile matching the descriptor primaries (when known)
  2. Explicitly configured source profile path
  3. Embedded ICC bytes detected at load time
  4. Standard sRGB

Target profile: explicitly configured target path, else standard sRGB.

Resolution never fails: a missing tier is logged and the next one is tried,
and sRGB is always available through Pillow's built-in profile when no sRGB
file is installed.
"""

from __future__ import annotations

import functools
import io
import logging
import struct
from dataclasses import dataclass, field
from enum import StrEnum, auto
from pathlib import Path
from typing import Final, Self

from PIL import ImageCms

from color_descriptor import ColorDescriptor, ColorPrimaries

__all__: Final[list[str]] = [
    "ProfileError",
    "ProfileNotFound",
    "StandardProfile",
    "ColorProfile",
    "ProfileStore",
    "ProfileResolver",
    "ResolvedProfiles",
    "icc_description",
    "DEFAULT_SEARCH_DIRS",
]

logger = logging.getLogger(__name__)

EMBEDDED_PROFILE_NAME: Final[str] = "Embedded Profile"
ICC_HEADER_SIZE: Final[int] = 128

DEFAULT_SEARCH_DIRS: Final[tuple[Path, ...]] = (
    Path(__file__).resolve().parent / "icc",
    Path("/usr/share/color/icc"),
    Path.home() / ".local/share/icc",
    Path.home() / ".color/icc",
    Path("/Library/ColorSync/Profiles"),
    Path("/System/Library/ColorSync/Profiles"),
    Path("C:/Windows/System32/spool/drivers/color"),
)


# =============================================================================
# Exceptions
# =============================================================================


class ProfileError(Exception):
    """Base exception for colour profile errors."""

    pass


class ProfileNotFound(ProfileError):
    """A profile tier could not be resolved to usable bytes."""

    __slots__ = ("profile",)

    def __init__(self, message: str, *, profile: str | None = None) -> None:
        super().__init__(message)
        self.profile = profile


# =============================================================================
# Profiles
# =============================================================================


class StandardProfile(StrEnum):
    """Named standard colour spaces resolvable to installed ICC files."""

    SRGB = auto()
    BT2020 = auto()
    DISPLAY_P3 = auto()
    ADOBE_RGB = auto()
    PROPHOTO = auto()

    @property
    def filenames(self) -> tuple[str, ...]:
        """Candidate file names, most common first."""
        return _STANDARD_FILENAMES[self]

    @classmethod
    def for_primaries(cls, primaries: ColorPrimaries) -> Self | None:
        """Standard profile for the given primaries, None when unknown."""
        return _PRIMARIES_TO_STANDARD.get(primaries)


_STANDARD_FILENAMES: Final[dict[StandardProfile, tuple[str, ...]]] = {
    StandardProfile.SRGB: (
        "sRGB.icc",
        "sRGB Profile.icc",
        "sRGB IEC61966-2.1.icc",
        "sRGB Color Space Profile.icm",
    ),
    StandardProfile.BT2020: ("Rec2020.icc", "Rec2020.icm", "ITU-R BT.2020.icc"),
    StandardProfile.DISPLAY_P3: ("DisplayP3.icc", "Display P3.icc"),
    StandardProfile.ADOBE_RGB: ("AdobeRGB1998.icc", "Adobe RGB (1998).icc"),
    StandardProfile.PROPHOTO: ("ProPhoto.icm", "ProPhoto.icc", "ROMM RGB.icc"),
}

_PRIMARIES_TO_STANDARD: Final[dict[ColorPrimaries, StandardProfile]] = {
    ColorPrimaries.BT709: StandardProfile.SRGB,
    ColorPrimaries.BT2020: StandardProfile.BT2020,
    ColorPrimaries.DISPLAY_P3: StandardProfile.DISPLAY_P3,
    ColorPrimaries.ADOBE_RGB: StandardProfile.ADOBE_RGB,
    ColorPrimaries.PROPHOTO: StandardProfile.PROPHOTO,
}


@functools.cache
def _builtin_srgb_bytes() -> bytes:
    return ImageCms.ImageCmsProfile(ImageCms.createProfile("sRGB")).tobytes()


@dataclass(frozen=True, slots=True, kw_only=True)
class ColorProfile:
    """A resolved colour profile: a file on disk or raw ICC bytes.

    Attributes:
        name: Standard profile name, None for embedded or custom profiles
        path: Profile file, None for in-memory profiles
        data: Raw ICC bytes, None when the profile is read from path
    """

    name: StandardProfile | None = None
    path: Path | None = None
    data: bytes | None = None

    def __post_init__(self) -> None:
        if self.path is None and self.data is None:
            raise ValueError("ColorProfile needs a path or ICC bytes")

    @classmethod
    def from_path(cls, path: Path, *, name: StandardProfile | None = None) -> Self:
        return cls(name=name, path=path)

    @classmethod
    def from_bytes(cls, data: bytes) -> Self:
        return cls(data=data)

    @classmethod
    def builtin_srgb(cls) -> Self:
        """Pillow's built-in sRGB profile."""
        return cls(name=StandardProfile.SRGB, data=_builtin_srgb_bytes())

    def read_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        assert self.path is not None
        return self.path.read_bytes()

    @property
    def description(self) -> str:
        if self.name is not None:
            return str(self.name)
        if self.data is not None:
            return icc_description(self.data)
        assert self.path is not None
        return self.path.name

    def to_pillow(self) -> ImageCms.ImageCmsProfile:
        """Open the profile for use with ImageCms transforms."""
        return ImageCms.ImageCmsProfile(io.BytesIO(self.read_bytes()))


@dataclass(frozen=True, slots=True)
class ResolvedProfiles:
    source: ColorProfile
    target: ColorProfile


# =============================================================================
# ICC tag parsing
# =============================================================================


def icc_description(data: bytes) -> str:
    """Read the profile description ('desc' tag) from raw ICC bytes.

    Handles the v2 'desc' text type and the v4 'mluc' multi-localized type;
    anything unreadable yields "Embedded Profile".
    """
    try:
        if len(data) < ICC_HEADER_SIZE + 4:
            return EMBEDDED_PROFILE_NAME
        (tag_count,) = struct.unpack_from(">I", data, ICC_HEADER_SIZE)
        for i in range(tag_count):
            sig, offset, size = struct.unpack_from(">4sII", data, ICC_HEADER_SIZE + 4 + i * 12)
            if sig != b"desc":
                continue
            tag = data[offset : offset + size]
            text = _decode_text_tag(tag)
            return text or EMBEDDED_PROFILE_NAME
    except struct.error:
        logger.debug("Malformed ICC tag table", exc_info=True)
    return EMBEDDED_PROFILE_NAME


def _decode_text_tag(tag: bytes) -> str | None:
    type_sig = tag[:4]
    if type_sig == b"desc":
        (count,) = struct.unpack_from(">I", tag, 8)
        return tag[12 : 12 + count].split(b"\x00", 1)[0].decode("ascii", "replace").strip()
    if type_sig == b"mluc":
        records, record_size = struct.unpack_from(">II", tag, 8)
        if records == 0 or record_size < 12:
            return None
        length, offset = struct.unpack_from(">II", tag, 16 + 4)
        return tag[offset : offset + length].decode("utf-16-be", "replace").rstrip("\x00").strip()
    return None


# =============================================================================
# Store and resolver
# =============================================================================


@dataclass(frozen=True, slots=True, kw_only=True)
class ProfileStore:
    """Locates standard ICC profiles in a list of directories."""

    search_dirs: tuple[Path, ...] = DEFAULT_SEARCH_DIRS

    @classmethod
    def create(cls, *, user_dir: Path | None = None) -> Self:
        """Store searching user_dir first, then the platform colour directories."""
        dirs = DEFAULT_SEARCH_DIRS if user_dir is None else (user_dir, *DEFAULT_SEARCH_DIRS)
        return cls(search_dirs=dirs)

    def find(self, standard: StandardProfile) -> Path:
        """Installed file for a standard profile.

        Raises:
            ProfileNotFound: No candidate file exists in any search directory
        """
        for directory in self.search_dirs:
            for filename in standard.filenames:
                candidate = directory / filename
                if candidate.is_file():
                    return candidate
        raise ProfileNotFound(f"No installed profile for {standard}", profile=str(standard))

    def standard(self, standard: StandardProfile) -> ColorProfile:
        return ColorProfile.from_path(self.find(standard), name=standard)

    def srgb(self) -> ColorProfile:
        """sRGB from disk, else Pillow's built-in profile."""
        try:
            return self.standard(StandardProfile.SRGB)
        except ProfileNotFound:
            return ColorProfile.builtin_srgb()


@dataclass(slots=True)
class ProfileResolver:
    """Applies the source/target profile priority chain."""

    store: ProfileStore = field(default_factory=ProfileStore)

    def resolve_source(
        self,
        descriptor: ColorDescriptor,
        *,
        source_path: Path | None = None,
        embedded_icc: bytes | None = None,
    ) -> ColorProfile:
        standard = StandardProfile.for_primaries(descriptor.primaries)
        if standard is not None:
            try:
                profile = self.store.standard(standard)
                logger.debug("Source profile: standard %s (%s)", standard, profile.path)
                return profile
            except ProfileNotFound as e:
                logger.debug("%s, trying next tier", e)

        if source_path is not None:
            if source_path.is_file():
                logger.debug("Source profile: configured %s", source_path)
                return ColorProfile.from_path(source_path)
            logger.warning("Configured source profile not found: %s", source_path)

        if embedded_icc:
            profile = ColorProfile.from_bytes(embedded_icc)
            logger.debug("Source profile: embedded (%s)", profile.description)
            return profile

        logger.debug("Source profile: sRGB fallback")
        return self.store.srgb()

    def resolve_target(self, *, target_path: Path | None = None) -> ColorProfile:
        if target_path is not None:
            if target_path.is_file():
                return ColorProfile.from_path(target_path)
            logger.warning("Configured target profile not found: %s", target_path)
        return self.store.srgb()

    def resolve(
        self,
        descriptor: ColorDescriptor,
        *,
        source_path: Path | None = None,
        target_path: Path | None = None,
        embedded_icc: bytes | None = None,
    ) -> ResolvedProfiles:
        return ResolvedProfiles(
            source=self.resolve_source(
                descriptor, source_path=source_path, embedded_icc=embedded_icc
            ),
            target=self.resolve_target(target_path=target_path),
        )

#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Colour metadata model for decoded images.

A ColorDescriptor is built once per loaded image from detection results and is
never mutated afterwards; loading a new image replaces it wholesale.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from enum import StrEnum, auto
from typing import Final, Self

__all__: Final[list[str]] = [
    "ColorPrimaries",
    "TransferFunction",
    "MatrixCoefficients",
    "ColorRange",
    "MasteringMetadata",
    "GainMapParameters",
    "ColorDescriptor",
    "SYNTHESIZED_MARKER",
]

# Description marker for linear data produced by our own gain-map synthesis
SYNTHESIZED_MARKER: Final[str] = "Synthesized"


class ColorPrimaries(StrEnum):
    """Colour primaries of the source image."""

    UNKNOWN = auto()
    BT709 = auto()
    BT2020 = auto()
    DISPLAY_P3 = auto()
    ADOBE_RGB = auto()
    PROPHOTO = auto()


class TransferFunction(StrEnum):
    """Opto-electronic transfer characteristics."""

    UNKNOWN = auto()
    SRGB = auto()
    BT709 = auto()
    LINEAR = auto()
    PQ = auto()  # SMPTE ST 2084
    HLG = auto()

    @property
    def is_hdr(self) -> bool:
        """True for transfers that carry absolute or scene-referred HDR."""
        return self in (TransferFunction.PQ, TransferFunction.HLG, TransferFunction.LINEAR)


class MatrixCoefficients(StrEnum):
    """YCbCr matrix coefficients."""

    UNKNOWN = auto()
    IDENTITY = auto()  # RGB
    BT601 = auto()
    BT709 = auto()
    BT2020NC = auto()


class ColorRange(StrEnum):
    """Quantization range of the coded values."""

    UNKNOWN = auto()
    FULL = auto()
    LIMITED = auto()


@dataclass(frozen=True, slots=True, kw_only=True)
class MasteringMetadata:
    """HDR10 static metadata. Luminances are in nits, None when absent."""

    max_cll: float | None = None
    max_fall: float | None = None
    min_luminance: float | None = None
    max_luminance: float | None = None

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (self.max_cll, self.max_fall, self.min_luminance, self.max_luminance)
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class GainMapParameters:
    """Gain map reconstruction parameters.

    Attributes:
        gain_map_min: Minimum gain in stops (log2)
        gain_map_max: Maximum gain in stops (log2)
        gamma: Gain map encoding gamma
        offset_sdr: Offset added to the SDR rendition before applying gain
        offset_hdr: Offset subtracted from the HDR rendition after applying gain
        hdr_capacity_min: Display headroom (stops) at which gain starts to apply
        hdr_capacity_max: Display headroom (stops) at which full gain applies
    """

    gain_map_min: float = 0.0
    gain_map_max: float = 1.0
    gamma: float = 1.0
    offset_sdr: float = 0.0
    offset_hdr: float = 0.0
    hdr_capacity_min: float = 0.0
    hdr_capacity_max: float = 1.0

    @classmethod
    def from_headroom(cls, headroom: float) -> Self:
        """Parameters for a gain map spanning 1x..headroom (linear)."""
        stops = math.log2(headroom) if headroom > 1.0 else 0.0
        return cls(gain_map_min=0.0, gain_map_max=stops, hdr_capacity_max=stops)


@dataclass(frozen=True, slots=True, kw_only=True)
class ColorDescriptor:
    """Immutable colour description of one decoded image."""

    primaries: ColorPrimaries = ColorPrimaries.UNKNOWN
    transfer: TransferFunction = TransferFunction.UNKNOWN
    matrix: MatrixCoefficients = MatrixCoefficients.UNKNOWN
    range: ColorRange = ColorRange.UNKNOWN
    mastering: MasteringMetadata = field(default_factory=MasteringMetadata)
    gain_map: GainMapParameters | None = None
    has_gain_map: bool = False
    description: str = "Unknown"
    synthesized: bool = False

    @property
    def is_synthesized(self) -> bool:
        """True when the pixels were produced by our own gain-map synthesis."""
        return self.synthesized or SYNTHESIZED_MARKER in self.description

    @property
    def describes_linear_light(self) -> bool:
        """True when the description marks the data as scRGB or linear."""
        return "scRGB" in self.description or "Linear" in self.description

    def with_changes(self, **changes: object) -> Self:
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)

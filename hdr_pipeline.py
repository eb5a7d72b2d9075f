#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Branch selection and stage-list construction for the HDR colour pipeline.

Given a ColorDescriptor and the capability of the target surface, exactly one
branch is chosen (first match wins):

  A. Absolute HDR   - PQ / HLG / linear data on an HDR-capable target
  B. Gain-map HDR   - descriptor carries a gain map on an HDR-capable target
  C. Standard / SDR - everything else (range expansion + ICC transform)

The result is an immutable Pipeline: the branch, an ordered tuple of stages, the
render target format and a human-readable trace of the decisions made.

Also provides the HDR10 static metadata block that accompanies float render
targets and the binder that reapplies it when a surface is recreated.
"""

from __future__ import annotations

import logging
import struct
from dataclasses import dataclass, field
from enum import IntEnum, StrEnum, auto
from pathlib import Path
from typing import Final, Protocol

import numpy as np
from numpy.typing import NDArray
from PIL import ImageCms

from color_descriptor import (
    ColorDescriptor,
    ColorPrimaries,
    ColorRange,
    GainMapParameters,
    MasteringMetadata,
    TransferFunction,
)
from profile_resolver import ColorProfile, ProfileError, ProfileResolver

__all__: Final[list[str]] = [
    "RenderingIntent",
    "PipelineConfig",
    "RangeExpand",
    "PrimariesMatrix",
    "ScRgbScale",
    "CmsTransform",
    "GainMapApply",
    "PipelineStage",
    "AbsoluteBranch",
    "GainMapBranch",
    "StandardBranch",
    "Branch",
    "RenderFormat",
    "RenderTargetSpec",
    "Pipeline",
    "PipelineBuilder",
    "select_branch",
    "select_render_format",
    "primaries_matrix",
    "Hdr10Metadata",
    "hdr10_metadata_for",
    "HdrSurface",
    "SurfaceMetadataBinder",
    "SCRGB_WHITE_NITS",
    "PQ_MAX_NITS",
    "SYNTHESIZED_BOOST",
    "LIMITED_RANGE_SCALE",
    "LIMITED_RANGE_OFFSET",
    "IDENTITY_MATRIX",
    "DISPLAY_P3_TO_BT709",
    "BT2020_TO_BT709",
]

logger = logging.getLogger(__name__)

type Matrix3 = tuple[
    tuple[float, float, float],
    tuple[float, float, float],
    tuple[float, float, float],
]

# scRGB reference white: 1.0 = 80 nits
SCRGB_WHITE_NITS: Final[float] = 80.0
PQ_MAX_NITS: Final[float] = 10000.0
# 1.0 unit of synthesized linear data ~ 200 nits against the 80-nit reference
SYNTHESIZED_BOOST: Final[float] = 2.5

# Limited ("video") range: Y' occupies 16..235 of 0..255
LIMITED_RANGE_SCALE: Final[float] = 255.0 / 219.0
LIMITED_RANGE_OFFSET: Final[float] = -(16.0 / 255.0) * LIMITED_RANGE_SCALE

IDENTITY_MATRIX: Final[Matrix3] = (
    (1.0, 0.0, 0.0),
    (0.0, 1.0, 0.0),
    (0.0, 0.0, 1.0),
)

# Source primaries -> BT.709 / scRGB, row-major
DISPLAY_P3_TO_BT709: Final[Matrix3] = (
    (1.2249, -0.2247, 0.0000),
    (-0.0420, 1.0419, 0.0000),
    (-0.0196, -0.0786, 1.0982),
)

BT2020_TO_BT709: Final[Matrix3] = (
    (1.6605, -0.5876, -0.0728),
    (-0.1246, 1.1329, -0.0083),
    (-0.0181, -0.1006, 1.1187),
)


def primaries_matrix(primaries: ColorPrimaries) -> Matrix3:
    """Matrix converting the given primaries to BT.709, identity if unsupported."""
    match primaries:
        case ColorPrimaries.DISPLAY_P3:
            return DISPLAY_P3_TO_BT709
        case ColorPrimaries.BT2020:
            return BT2020_TO_BT709
        case _:
            return IDENTITY_MATRIX


def _scale_matrix(m: Matrix3, k: float) -> Matrix3:
    r0, r1, r2 = m
    return (
        (r0[0] * k, r0[1] * k, r0[2] * k),
        (r1[0] * k, r1[1] * k, r1[2] * k),
        (r2[0] * k, r2[1] * k, r2[2] * k),
    )


# =============================================================================
# Configuration
# =============================================================================


class RenderingIntent(IntEnum):
    """ICC rendering intents, numbered as in ImageCms.Intent."""

    PERCEPTUAL = 0
    RELATIVE_COLORIMETRIC = 1
    SATURATION = 2
    ABSOLUTE_COLORIMETRIC = 3


@dataclass(frozen=True, slots=True, kw_only=True)
class PipelineConfig:
    """Per-build pipeline options.

    Attributes:
        rendering_intent: ICC intent for the CMS stage
        cms_disabled: Skip the ICC transform in the standard branch
        source_profile_path: Manually chosen source profile (priority tier 2)
        target_profile_path: Target profile, sRGB when None
        force_pq: Treat the data as PQ-coded regardless of the descriptor
        force_limited_range: Treat the data as limited range
        pq_max_nits: Override for the scRGB boost numerator
        blend_gain_map: Emit the per-pixel gain-map blend in the gain-map branch
        display_boost: Display headroom (linear) used by the blend
    """

    rendering_intent: RenderingIntent = RenderingIntent.PERCEPTUAL
    cms_disabled: bool = False
    source_profile_path: Path | None = None
    target_profile_path: Path | None = None
    force_pq: bool = False
    force_limited_range: bool = False
    pq_max_nits: float | None = None
    blend_gain_map: bool = False
    display_boost: float = 4.0

    def __post_init__(self) -> None:
        if self.pq_max_nits is not None and self.pq_max_nits <= 0:
            msg = f"pq_max_nits must be positive, got {self.pq_max_nits}"
            raise ValueError(msg)
        if self.display_boost < 1.0:
            msg = f"display_boost must be >= 1.0, got {self.display_boost}"
            raise ValueError(msg)


# =============================================================================
# Stages
# =============================================================================


@dataclass(frozen=True, slots=True)
class RangeExpand:
    """Per-channel out = in * scale + offset on RGB, alpha untouched."""

    scale: float
    offset: float

    @property
    def requires_float(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class PrimariesMatrix:
    """3x3 colour matrix with the boost already multiplied into the coefficients."""

    matrix: Matrix3
    boost: float = 1.0

    @property
    def requires_float(self) -> bool:
        return self.boost > 1.0

    def as_array(self) -> NDArray[np.float32]:
        return np.asarray(self.matrix, dtype=np.float32)


@dataclass(frozen=True, slots=True)
class ScRgbScale:
    """Uniform scale of linear RGB into scRGB units (1.0 = 80 nits)."""

    factor: float

    @property
    def requires_float(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class CmsTransform:
    source: ColorProfile
    target: ColorProfile
    intent: RenderingIntent

    @property
    def requires_float(self) -> bool:
        return False


@dataclass(frozen=True, slots=True)
class GainMapApply:
    """Per-pixel gain-map recovery of the HDR rendition."""

    params: GainMapParameters
    display_boost: float

    @property
    def requires_float(self) -> bool:
        return True


type PipelineStage = RangeExpand | PrimariesMatrix | ScRgbScale | CmsTransform | GainMapApply


# =============================================================================
# Branches
# =============================================================================


@dataclass(frozen=True, slots=True)
class AbsoluteBranch:
    transfer: TransferFunction

    def __str__(self) -> str:
        return f"Absolute HDR ({self.transfer.name})"


@dataclass(frozen=True, slots=True)
class GainMapBranch:
    def __str__(self) -> str:
        return "Gain-map HDR"


@dataclass(frozen=True, slots=True)
class StandardBranch:
    def __str__(self) -> str:
        return "Standard / SDR"


type Branch = AbsoluteBranch | GainMapBranch | StandardBranch


class RenderFormat(StrEnum):
    UNORM8 = auto()  # 8-bit normalized
    FLOAT16 = auto()  # 16-bit float, values may exceed 1.0


@dataclass(frozen=True, slots=True)
class RenderTargetSpec:
    format: RenderFormat

    @property
    def is_hdr(self) -> bool:
        return self.format is RenderFormat.FLOAT16


def select_render_format(descriptor: ColorDescriptor, *, source_is_hdr: bool) -> RenderFormat:
    """16-bit float for HDR sources, PQ data or synthesized linear data."""
    if (
        source_is_hdr
        or descriptor.transfer is TransferFunction.PQ
        or (descriptor.is_synthesized and descriptor.transfer is TransferFunction.LINEAR)
    ):
        return RenderFormat.FLOAT16
    return RenderFormat.UNORM8


def select_branch(
    descriptor: ColorDescriptor,
    *,
    target_hdr_capable: bool,
    force_pq: bool = False,
    gain_map_image_present: bool = False,
) -> Branch:
    """Pure branch decision; first matching rule wins."""
    is_absolute = descriptor.transfer.is_hdr or force_pq
    is_gain_map = descriptor.has_gain_map or (gain_map_image_present and not is_absolute)

    if is_absolute and target_hdr_capable:
        transfer = descriptor.transfer if descriptor.transfer.is_hdr else TransferFunction.PQ
        return AbsoluteBranch(transfer)
    if is_gain_map and target_hdr_capable:
        return GainMapBranch()
    return StandardBranch()


@dataclass(frozen=True, slots=True)
class Pipeline:
    branch: Branch
    stages: tuple[PipelineStage, ...]
    render_target: RenderTargetSpec
    trace: tuple[str, ...] = ()


# =============================================================================
# Builder
# =============================================================================


@dataclass(slots=True)
class PipelineBuilder:
    """Builds immutable pipelines from descriptors.

    Profile resolution problems never fail a build; the CMS stage is dropped
    and the reason is recorded in the trace.
    """

    config: PipelineConfig = field(default_factory=PipelineConfig)
    resolver: ProfileResolver = field(default_factory=ProfileResolver)

    def build(
        self,
        descriptor: ColorDescriptor,
        *,
        source_is_hdr: bool = False,
        target_hdr_capable: bool | None = None,
        gain_map_image_present: bool = False,
        embedded_icc: bytes | None = None,
    ) -> Pipeline:
        """Build the stage list for one render pass.

        Args:
            descriptor: Colour description of the loaded image
            source_is_hdr: Detection flagged the source as HDR-potential
            target_hdr_capable: Target surface is float/HDR capable; derived
                from the selected render format when None
            gain_map_image_present: A decoded gain-map image is attached
            embedded_icc: ICC bytes found in the source file
        """
        trace: list[str] = [
            f"Source: {descriptor.description}",
            f"Transfer: {descriptor.transfer.name}, primaries: {descriptor.primaries.name}, "
            f"range: {descriptor.range.name}",
        ]

        render_format = select_render_format(descriptor, source_is_hdr=source_is_hdr)
        if target_hdr_capable is None:
            target_hdr_capable = render_format is RenderFormat.FLOAT16

        branch = select_branch(
            descriptor,
            target_hdr_capable=target_hdr_capable,
            force_pq=self.config.force_pq,
            gain_map_image_present=gain_map_image_present,
        )
        trace.append(f"Branch: {branch}")

        match branch:
            case AbsoluteBranch():
                stages = self._absolute_stages(descriptor, trace)
            case GainMapBranch():
                stages = self._gain_map_stages(descriptor, gain_map_image_present, trace)
            case StandardBranch():
                stages = self._standard_stages(descriptor, embedded_icc, trace)

        if isinstance(branch, AbsoluteBranch) or any(s.requires_float for s in stages):
            if render_format is not RenderFormat.FLOAT16:
                trace.append("Render target promoted to FLOAT16 for HDR stages")
            render_format = RenderFormat.FLOAT16
        trace.append(f"Render target: {render_format.name}")

        for line in trace:
            logger.debug(line)

        return Pipeline(
            branch=branch,
            stages=tuple(stages),
            render_target=RenderTargetSpec(render_format),
            trace=tuple(trace),
        )

    def _absolute_stages(
        self, descriptor: ColorDescriptor, trace: list[str]
    ) -> list[PipelineStage]:
        linear = descriptor.transfer is TransferFunction.LINEAR

        if linear and not descriptor.is_synthesized and descriptor.describes_linear_light:
            max_nits = (
                self.config.pq_max_nits
                or descriptor.mastering.max_luminance
                or PQ_MAX_NITS
            )
            factor = max_nits / SCRGB_WHITE_NITS
            trace.append(f"scRGB normalization: {max_nits:g} / {SCRGB_WHITE_NITS:g} = {factor:g}")
            return [ScRgbScale(factor)]

        if descriptor.is_synthesized:
            boosted = _scale_matrix(primaries_matrix(descriptor.primaries), SYNTHESIZED_BOOST)
            trace.append(
                f"Synthesized linear: boost {SYNTHESIZED_BOOST}x, "
                f"{descriptor.primaries.name} -> BT.709 matrix"
            )
            return [PrimariesMatrix(boosted, SYNTHESIZED_BOOST)]

        trace.append("Passthrough to HDR surface")
        return []

    def _gain_map_stages(
        self,
        descriptor: ColorDescriptor,
        gain_map_image_present: bool,
        trace: list[str],
    ) -> list[PipelineStage]:
        if self.config.blend_gain_map and gain_map_image_present:
            params = descriptor.gain_map or GainMapParameters()
            trace.append(
                f"Gain-map blend: max {params.gain_map_max:.4f} stops, "
                f"display boost {self.config.display_boost:g}"
            )
            return [GainMapApply(params, self.config.display_boost)]

        # Known incompleteness: without the blend the base image is shown as-is
        trace.append("Gain-map blend not enabled, showing base image")
        return []

    def _standard_stages(
        self,
        descriptor: ColorDescriptor,
        embedded_icc: bytes | None,
        trace: list[str],
    ) -> list[PipelineStage]:
        stages: list[PipelineStage] = []

        if descriptor.range is ColorRange.LIMITED or self.config.force_limited_range:
            trace.append(
                f"Limited range expand: scale {LIMITED_RANGE_SCALE:.6f}, "
                f"offset {LIMITED_RANGE_OFFSET:.6f}"
            )
            stages.append(RangeExpand(LIMITED_RANGE_SCALE, LIMITED_RANGE_OFFSET))

        if self.config.cms_disabled:
            trace.append("CMS disabled")
            return stages

        try:
            profiles = self.resolver.resolve(
                descriptor,
                source_path=self.config.source_profile_path,
                target_path=self.config.target_profile_path,
                embedded_icc=embedded_icc,
            )
        except (ProfileError, OSError, ImageCms.PyCMSError) as e:
            logger.warning("Profile resolution failed, skipping CMS: %s", e)
            trace.append(f"CMS skipped: {e}")
            return stages

        trace.append(
            f"CMS: {profiles.source.description} -> {profiles.target.description} "
            f"({self.config.rendering_intent.name})"
        )
        stages.append(CmsTransform(profiles.source, profiles.target, self.config.rendering_intent))
        return stages


# =============================================================================
# HDR10 static metadata
# =============================================================================

# Chromaticity units of 0.00002, BT.2020 primaries with a D65 white point
_BT2020_RED: Final[tuple[int, int]] = (35400, 14600)
_BT2020_GREEN: Final[tuple[int, int]] = (8500, 39850)
_BT2020_BLUE: Final[tuple[int, int]] = (6550, 2300)
_D65_WHITE: Final[tuple[int, int]] = (15635, 16450)

DEFAULT_MAX_MASTERING_NITS: Final[float] = 1000.0

_HDR10_STRUCT: Final[struct.Struct] = struct.Struct("<8H2I2H")


@dataclass(frozen=True, slots=True, kw_only=True)
class Hdr10Metadata:
    """Mastering display block in the DXGI_HDR_METADATA_HDR10 layout.

    Chromaticities are in 0.00002 units, max luminance in nits, min luminance
    in 0.0001-nit units, content light levels in nits.
    """

    red_primary: tuple[int, int] = _BT2020_RED
    green_primary: tuple[int, int] = _BT2020_GREEN
    blue_primary: tuple[int, int] = _BT2020_BLUE
    white_point: tuple[int, int] = _D65_WHITE
    max_mastering_luminance: int = int(DEFAULT_MAX_MASTERING_NITS)
    min_mastering_luminance: int = 0
    max_content_light_level: int = 0
    max_frame_average_light_level: int = 0

    def pack(self) -> bytes:
        """28-byte little-endian structure."""
        return _HDR10_STRUCT.pack(
            *self.red_primary,
            *self.green_primary,
            *self.blue_primary,
            *self.white_point,
            self.max_mastering_luminance,
            self.min_mastering_luminance,
            self.max_content_light_level,
            self.max_frame_average_light_level,
        )


def _clamp_uint(value: float, bits: int) -> int:
    return max(0, min(int(round(value)), (1 << bits) - 1))


def hdr10_metadata_for(mastering: MasteringMetadata) -> Hdr10Metadata:
    """Derive the surface block; absent fields are 0, max luminance 1000 nits."""
    max_lum = mastering.max_luminance
    if max_lum is None:
        max_lum = DEFAULT_MAX_MASTERING_NITS
    return Hdr10Metadata(
        max_mastering_luminance=_clamp_uint(max_lum, 32),
        min_mastering_luminance=_clamp_uint((mastering.min_luminance or 0.0) * 10000.0, 32),
        max_content_light_level=_clamp_uint(mastering.max_cll or 0.0, 16),
        max_frame_average_light_level=_clamp_uint(mastering.max_fall or 0.0, 16),
    )


class HdrSurface(Protocol):
    """Display surface that accepts an HDR10 metadata block."""

    def set_hdr_metadata(self, block: bytes) -> None: ...


@dataclass(slots=True)
class SurfaceMetadataBinder:
    """Keeps a surface's HDR10 metadata in sync across resizes and recreation."""

    surface: HdrSurface
    _metadata: Hdr10Metadata | None = field(init=False, default=None)
    _render_target: RenderTargetSpec | None = field(init=False, default=None)

    def bind(self, render_target: RenderTargetSpec, mastering: MasteringMetadata) -> bool:
        """Attach metadata for a new pipeline; returns True if applied."""
        self._render_target = render_target
        self._metadata = hdr10_metadata_for(mastering)
        return self._apply()

    def on_surface_recreated(self, surface: HdrSurface | None = None) -> bool:
        """Reapply after resize or swapchain recreation."""
        if surface is not None:
            self.surface = surface
        return self._apply()

    def _apply(self) -> bool:
        if self._metadata is None or self._render_target is None:
            return False
        if not self._render_target.is_hdr:
            return False
        self.surface.set_hdr_metadata(self._metadata.pack())
        logger.debug("HDR10 metadata applied: %s", self._metadata)
        return True

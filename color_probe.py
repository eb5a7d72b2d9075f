#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Colour detection with ffprobe.

Maps ffprobe's colour properties and HDR side data onto a ColorDescriptor and
decides whether the source is "HDR-potential" (needs a float render target).
"""

from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

from color_descriptor import (
    ColorDescriptor,
    ColorPrimaries,
    ColorRange,
    GainMapParameters,
    MasteringMetadata,
    MatrixCoefficients,
    TransferFunction,
)

__all__: Final[list[str]] = [
    "ProbeError",
    "ProbeResult",
    "probe_color",
    "detect_color",
    "descriptor_from_ffprobe",
]

logger = logging.getLogger(__name__)

HDR_POTENTIAL_NITS: Final[float] = 200.0

_PRIMARIES: Final[dict[str, ColorPrimaries]] = {
    "bt709": ColorPrimaries.BT709,
    "bt2020": ColorPrimaries.BT2020,
    "smpte431": ColorPrimaries.DISPLAY_P3,
    "smpte432": ColorPrimaries.DISPLAY_P3,
}

_TRANSFERS: Final[dict[str, TransferFunction]] = {
    "smpte2084": TransferFunction.PQ,
    "arib-std-b67": TransferFunction.HLG,
    "iec61966-2-1": TransferFunction.SRGB,
    "srgb": TransferFunction.SRGB,
    "bt709": TransferFunction.BT709,
    "linear": TransferFunction.LINEAR,
}

_MATRICES: Final[dict[str, MatrixCoefficients]] = {
    "bt2020nc": MatrixCoefficients.BT2020NC,
    "bt709": MatrixCoefficients.BT709,
    "bt470bg": MatrixCoefficients.BT601,
    "smpte170m": MatrixCoefficients.BT601,
    "gbr": MatrixCoefficients.IDENTITY,
}

_RANGES: Final[dict[str, ColorRange]] = {
    "tv": ColorRange.LIMITED,
    "limited": ColorRange.LIMITED,
    "pc": ColorRange.FULL,
    "full": ColorRange.FULL,
}

_GAIN_MAP_RE: Final[re.Pattern[str]] = re.compile(
    r"hdrgainmap|gainmapmax|\btmap\b|gain_map|hdr headroom"
)
_VENDOR_MARKERS: Final[tuple[str, ...]] = ("samsung", "galaxy", "apple", "iphone")
_HEADROOM_RE: Final[re.Pattern[str]] = re.compile(
    r"(?:HDR Headroom|hdr_headroom)\"?\s*[:=]\s*\"?([\d.\-]+)", re.IGNORECASE
)


class ProbeError(Exception):
    """Raised when ffprobe fails to analyze an image."""

    pass


@dataclass(frozen=True, slots=True)
class ProbeResult:
    descriptor: ColorDescriptor
    is_hdr_potential: bool = False


def _rational(value: Any) -> float | None:
    """Parse ffprobe rationals such as "40000000/10000"."""
    if value is None:
        return None
    text = str(value)
    num, _, den = text.partition("/")
    try:
        if not den:
            return float(num)
        denominator = float(den)
        return float(num) / denominator if denominator else None
    except ValueError:
        return None


def _mastering_from_side_data(stream: dict[str, Any]) -> MasteringMetadata:
    fields: dict[str, float | None] = {}
    for side_data in stream.get("side_data_list", []):
        kind = side_data.get("side_data_type", "")
        if kind == "Mastering display metadata":
            fields["min_luminance"] = _rational(side_data.get("min_luminance"))
            fields["max_luminance"] = _rational(side_data.get("max_luminance"))
        elif kind == "Content light level metadata":
            fields["max_cll"] = _rational(side_data.get("max_content"))
            fields["max_fall"] = _rational(side_data.get("max_average"))
    return MasteringMetadata(**fields)


def _icc_name(stream: dict[str, Any]) -> str | None:
    for side_data in stream.get("side_data_list", []):
        if side_data.get("side_data_type", "").lower() == "icc profile":
            return side_data.get("name") or "Embedded ICC"
    return None


def descriptor_from_ffprobe(path: Path, data: dict[str, Any]) -> ProbeResult:
    """Build a descriptor from parsed `ffprobe -of json` output."""
    streams = [s for s in data.get("streams", []) if s.get("codec_type", "video") == "video"]
    if not streams:
        raise ProbeError(f"No image stream found in {path}")
    stream = streams[0]

    primaries_str = stream.get("color_primaries", "")
    transfer_str = stream.get("color_transfer", "")
    primaries = _PRIMARIES.get(primaries_str, ColorPrimaries.UNKNOWN)
    transfer = _TRANSFERS.get(transfer_str, TransferFunction.UNKNOWN)
    matrix = _MATRICES.get(stream.get("color_space", ""), MatrixCoefficients.UNKNOWN)
    color_range = _RANGES.get(stream.get("color_range", ""), ColorRange.UNKNOWN)
    mastering = _mastering_from_side_data(stream)

    desc = ""
    hdr = False
    if primaries_str:
        if primaries is ColorPrimaries.BT709 and transfer is TransferFunction.SRGB:
            desc = "sRGB"
        elif primaries is ColorPrimaries.BT2020 and transfer is TransferFunction.PQ:
            desc, hdr = "HDR10 / BT.2020 PQ", True
        elif primaries is ColorPrimaries.BT2020 and transfer is TransferFunction.HLG:
            desc, hdr = "HLG / BT.2020", True
        elif primaries is ColorPrimaries.BT2020:
            desc, hdr = "BT.2020", True
        else:
            desc = f"{primaries_str}/{transfer_str}"

    if (mastering.max_cll or 0.0) > HDR_POTENTIAL_NITS or (
        mastering.max_luminance or 0.0
    ) > HDR_POTENTIAL_NITS:
        hdr = True
        if "HDR" not in desc:
            desc = f"{desc} (HDR Potential)".strip()

    if icc := _icc_name(stream):
        desc = icc

    # Gain-map heuristics work on the whole dump, tags included
    raw = json.dumps(data)
    lowered = raw.lower()
    has_gain_map_context = _GAIN_MAP_RE.search(lowered) is not None
    is_vendor_heic = path.suffix.lower() in (".heic", ".heif") and any(
        m in lowered for m in _VENDOR_MARKERS
    )

    gain_map: GainMapParameters | None = None
    if has_gain_map_context or is_vendor_heic:
        hdr = True
        if not desc:
            desc = "Apple HDR (Gain Map)" if "apple" in lowered else "Gain-Map HDR"
        elif "HDR" not in desc:
            desc = f"{desc} [HDR Potential]"
        if match := _HEADROOM_RE.search(raw):
            try:
                headroom = float(match.group(1))
            except ValueError:
                headroom = 0.0
            if headroom > 0.0:
                gain_map = GainMapParameters.from_headroom(headroom)
                logger.debug("HDR headroom %.3f -> GainMapMax %.4f", headroom, gain_map.gain_map_max)

    descriptor = ColorDescriptor(
        primaries=primaries,
        transfer=transfer,
        matrix=matrix,
        range=color_range,
        mastering=mastering,
        gain_map=gain_map,
        has_gain_map=has_gain_map_context,
        description=f"{desc} (FFmpeg)" if desc else "Unknown",
    )
    logger.debug(
        "Colour info for %s: P=%s T=%s R=%s HDR=%s",
        path.name,
        primaries_str,
        transfer_str,
        color_range,
        hdr,
    )
    return ProbeResult(descriptor=descriptor, is_hdr_potential=hdr)


def probe_color(path: Path, *, ffprobe: str = "ffprobe") -> ProbeResult:
    """Detect colour properties of an image with ffprobe.

    Raises:
        ProbeError: If ffprobe is missing, fails or emits unparseable output.
    """
    try:
        result = subprocess.run(
            [ffprobe, "-v", "quiet", "-show_format", "-show_streams", "-of", "json", str(path)],
            capture_output=True,
            text=True,
            check=True,
        )
        data = json.loads(result.stdout)
    except FileNotFoundError as e:
        raise ProbeError(f"ffprobe not found: {ffprobe}") from e
    except subprocess.CalledProcessError as e:
        raise ProbeError(f"ffprobe failed for {path}: {e.stderr}") from e
    except json.JSONDecodeError as e:
        raise ProbeError(f"Failed to parse ffprobe output for {path}: {e}") from e
    return descriptor_from_ffprobe(path, data)


def detect_color(path: Path, *, ffprobe: str = "ffprobe") -> ProbeResult:
    """probe_color that degrades to an unknown descriptor on failure."""
    try:
        return probe_color(path, ffprobe=ffprobe)
    except ProbeError as e:
        logger.warning("Colour detection failed, assuming unknown: %s", e)
        return ProbeResult(descriptor=ColorDescriptor())

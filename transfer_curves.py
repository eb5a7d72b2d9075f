#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Transfer function and tone curve library.

Every table generator samples its curve on a normalized [0, 1] domain with a
caller-chosen number of entries (typically 1024 or more) and returns a
monotonic non-decreasing float32 lookup table clamped to [0, 1].

Curves:
- PQ EOTF (SMPTE ST 2084): code value -> linear light, 1.0 = 10000 nits
- Linear -> PQ (inverse EOTF)
- Linear -> HLG (ARIB STD-B67 OETF), 1.0 = 1000 nits
- ACES filmic tone map (Narkowicz approximation)

Also hosts the gain-map recovery math used to reconstruct an HDR rendition from
an SDR base and its gain map.
"""

from __future__ import annotations

import math
from typing import Final

import numpy as np
from numpy.typing import ArrayLike, NDArray

from color_descriptor import GainMapParameters

__all__: Final[list[str]] = [
    "pq_eotf",
    "linear_to_pq",
    "linear_to_hlg",
    "aces_tonemap",
    "generate_pq_eotf_table",
    "generate_linear_to_pq_table",
    "generate_linear_to_hlg_table",
    "generate_aces_table",
    "apply_lut",
    "srgb_to_linear",
    "linear_to_srgb",
    "apply_gain_map",
]

# ST 2084 (PQ) constants
PQ_M1: Final[float] = 0.1593017578125  # 2610 / 16384
PQ_M2: Final[float] = 78.84375  # 2523 / 32
PQ_C1: Final[float] = 0.8359375  # 3424 / 4096
PQ_C2: Final[float] = 18.8515625  # 2413 / 128
PQ_C3: Final[float] = 18.6875  # 2392 / 128

# ARIB STD-B67 (HLG) constants
HLG_A: Final[float] = 0.17883277
HLG_B: Final[float] = 0.28466892
HLG_C: Final[float] = 0.55991073

# Narkowicz ACES fit
ACES_A: Final[float] = 2.51
ACES_B: Final[float] = 0.03
ACES_C: Final[float] = 2.43
ACES_D: Final[float] = 0.59
ACES_E: Final[float] = 0.14

MIN_TABLE_SIZE: Final[int] = 2


# =============================================================================
# Element-wise curves
# =============================================================================


def pq_eotf(code: ArrayLike) -> NDArray[np.float64]:
    """ST 2084 EOTF: PQ code value in [0, 1] -> normalized linear light.

    L = (max(V^(1/m2) - c1, 0) / max(c2 - c3 * V^(1/m2), 1e-6)) ^ (1/m1)
    """
    v = np.clip(np.asarray(code, dtype=np.float64), 0.0, 1.0)
    v_pow = np.power(v, 1.0 / PQ_M2)
    num = np.maximum(v_pow - PQ_C1, 0.0)
    den = np.maximum(PQ_C2 - PQ_C3 * v_pow, 1e-6)
    return np.clip(np.power(num / den, 1.0 / PQ_M1), 0.0, 1.0)


def linear_to_pq(linear: ArrayLike) -> NDArray[np.float64]:
    """ST 2084 inverse EOTF: normalized linear light (1.0 = 10000 nits) -> PQ."""
    lum = np.clip(np.asarray(linear, dtype=np.float64), 0.0, 1.0)
    l_m1 = np.power(lum, PQ_M1)
    n = np.power((PQ_C1 + PQ_C2 * l_m1) / (1.0 + PQ_C3 * l_m1), PQ_M2)
    return np.clip(n, 0.0, 1.0)


def linear_to_hlg(linear: ArrayLike) -> NDArray[np.float64]:
    """HLG OETF: normalized scene light (1.0 = 1000 nits) -> HLG signal.

    Piecewise:
        L <= 1/12: sqrt(3 * L)
        L >  1/12: a * ln(12 * L - b) + c
    """
    lum = np.clip(np.asarray(linear, dtype=np.float64), 0.0, 1.0)
    # Keep the log argument positive on the branch np.where discards
    log_arg = np.maximum(12.0 * lum - HLG_B, 1e-12)
    v = np.where(
        lum <= 1.0 / 12.0,
        np.sqrt(3.0 * lum),
        HLG_A * np.log(log_arg) + HLG_C,
    )
    return np.clip(v, 0.0, 1.0)


def aces_tonemap(x: ArrayLike) -> NDArray[np.float64]:
    """Narkowicz ACES filmic curve: (x(ax+b)) / (x(cx+d)+e), clamped to [0, 1]."""
    x = np.maximum(np.asarray(x, dtype=np.float64), 0.0)
    out = (x * (ACES_A * x + ACES_B)) / (x * (ACES_C * x + ACES_D) + ACES_E)
    return np.clip(out, 0.0, 1.0)


# =============================================================================
# Lookup tables
# =============================================================================


def _domain(size: int) -> NDArray[np.float64]:
    if size < MIN_TABLE_SIZE:
        raise ValueError(f"table size must be >= {MIN_TABLE_SIZE}, got {size}")
    return np.linspace(0.0, 1.0, size, dtype=np.float64)


def generate_pq_eotf_table(size: int) -> NDArray[np.float32]:
    """PQ code value -> linear light, 0..10000 nits normalized to 0..1."""
    return pq_eotf(_domain(size)).astype(np.float32)


def generate_linear_to_pq_table(size: int) -> NDArray[np.float32]:
    """Linear light (0..10000 nits normalized) -> PQ code value."""
    return linear_to_pq(_domain(size)).astype(np.float32)


def generate_linear_to_hlg_table(size: int) -> NDArray[np.float32]:
    """Linear light (0..1000 nits normalized) -> HLG signal."""
    return linear_to_hlg(_domain(size)).astype(np.float32)


def generate_aces_table(size: int, input_scale: float) -> NDArray[np.float32]:
    """ACES tone curve table.

    Entry i represents linear input (i / (size - 1)) * input_scale, so a table
    built with input_scale=10.0 maps 0..10x SDR white into 0..1.
    """
    if input_scale <= 0.0:
        raise ValueError(f"input_scale must be positive, got {input_scale}")
    return aces_tonemap(_domain(size) * input_scale).astype(np.float32)


def apply_lut(values: ArrayLike, table: NDArray[np.floating]) -> NDArray[np.float32]:
    """Evaluate a [0, 1]-domain table at arbitrary inputs by linear interpolation."""
    table = np.asarray(table, dtype=np.float64)
    if table.ndim != 1 or table.size < MIN_TABLE_SIZE:
        raise ValueError("table must be a 1-D array with at least two entries")
    x = np.clip(np.asarray(values, dtype=np.float64), 0.0, 1.0)
    xp = np.linspace(0.0, 1.0, table.size)
    return np.interp(x, xp, table).astype(np.float32)


# =============================================================================
# sRGB transfer
# =============================================================================


def srgb_to_linear(encoded: ArrayLike) -> NDArray[np.float32]:
    """Decode sRGB (IEC 61966-2-1) to linear light."""
    v = np.clip(np.asarray(encoded, dtype=np.float32), 0.0, 1.0)
    return np.where(
        v <= 0.04045,
        v / 12.92,
        np.power((v + 0.055) / 1.055, 2.4),
    ).astype(np.float32)


def linear_to_srgb(linear: ArrayLike) -> NDArray[np.float32]:
    """Encode linear light with the sRGB transfer function.

    Piecewise:
        x <= 0.0031308: 12.92 * x
        x > 0.0031308:  1.055 * x^(1/2.4) - 0.055
    """
    linear = np.clip(np.asarray(linear, dtype=np.float32), 0.0, 1.0)
    return np.where(
        linear <= 0.0031308,
        12.92 * linear,
        1.055 * np.power(linear, 1.0 / 2.4) - 0.055,
    ).astype(np.float32)


# =============================================================================
# Gain map recovery
# =============================================================================


def _resize_nearest(gain: NDArray[np.float32], height: int, width: int) -> NDArray[np.float32]:
    """Nearest-neighbour resample; gain maps are usually stored downscaled."""
    gh, gw = gain.shape[:2]
    if (gh, gw) == (height, width):
        return gain
    rows = (np.arange(height) * gh // height).clip(0, gh - 1)
    cols = (np.arange(width) * gw // width).clip(0, gw - 1)
    return gain[rows[:, np.newaxis], cols[np.newaxis, :]]


def apply_gain_map(
    base_linear: NDArray[np.floating],
    gain_map: NDArray[np.floating],
    params: GainMapParameters,
    display_boost: float,
) -> NDArray[np.float32]:
    """Reconstruct HDR linear light from an SDR base and its gain map.

    Args:
        base_linear: SDR base in linear light (H, W, 3), 1.0 = SDR white
        gain_map: Normalized gain map in [0, 1], (h, w) or (h, w, 3)
        params: Gain map parameters (min/max gain and capacities in stops)
        display_boost: Available display headroom, linear (1.0 = SDR display)

    Returns:
        HDR rendition in linear light (H, W, 3), may exceed 1.0

    Per pixel:
        log_boost = gain_min * (1 - g) + gain_max * g
        weight    = clamp((log2(boost) - capacity_min) / (capacity_max - capacity_min))
        hdr       = (sdr + offset_sdr) * 2^(log_boost * weight) - offset_hdr
    """
    base = np.asarray(base_linear, dtype=np.float32)
    height, width = base.shape[:2]

    g = np.clip(np.asarray(gain_map, dtype=np.float32), 0.0, 1.0)
    g = _resize_nearest(g, height, width)
    if g.ndim == 2:
        g = g[:, :, np.newaxis]

    if params.gamma != 1.0:
        g = np.power(g, 1.0 / params.gamma)

    log_boost = params.gain_map_min * (1.0 - g) + params.gain_map_max * g

    headroom = math.log2(max(display_boost, 1.0))
    span = params.hdr_capacity_max - params.hdr_capacity_min
    if span > 0.0:
        weight = min(max((headroom - params.hdr_capacity_min) / span, 0.0), 1.0)
    else:
        weight = 1.0 if headroom >= params.hdr_capacity_max else 0.0

    hdr = (base + params.offset_sdr) * np.exp2(log_boost * weight) - params.offset_hdr
    return hdr.astype(np.float32)

#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

from __future__ import annotations

import numpy as np
import pytest

from color_descriptor import GainMapParameters
from transfer_curves import (
    aces_tonemap,
    apply_gain_map,
    apply_lut,
    generate_aces_table,
    generate_linear_to_hlg_table,
    generate_linear_to_pq_table,
    generate_pq_eotf_table,
    linear_to_hlg,
    linear_to_pq,
    linear_to_srgb,
    pq_eotf,
    srgb_to_linear,
)

TABLE_SIZE = 1024


# =============================================================================
# PQ
# =============================================================================


def test_pq_eotf_endpoints():
    assert pq_eotf(0.0) == 0.0
    assert pq_eotf(1.0) == pytest.approx(1.0, abs=1e-9)


def test_pq_table_endpoints():
    table = generate_pq_eotf_table(TABLE_SIZE)
    assert table.shape == (TABLE_SIZE,)
    assert table.dtype == np.float32
    assert table[0] == 0.0
    assert table[-1] == pytest.approx(1.0, abs=1e-6)


def test_pq_roundtrip_code_to_linear_to_code():
    v = np.linspace(0.0, 1.0, 4097)
    np.testing.assert_allclose(linear_to_pq(pq_eotf(v)), v, atol=1e-4)


def test_pq_roundtrip_linear_to_code_to_linear():
    lum = np.linspace(0.0, 1.0, 4097)
    np.testing.assert_allclose(pq_eotf(linear_to_pq(lum)), lum, atol=1e-4)


def test_pq_100_nits_reference_point():
    # 100 nits sits at roughly 51% of the PQ code range
    assert linear_to_pq(100.0 / 10000.0) == pytest.approx(0.5081, abs=1e-3)


# =============================================================================
# HLG
# =============================================================================


def test_hlg_continuous_at_breakpoint():
    eps = 1e-9
    below = linear_to_hlg(1.0 / 12.0 - eps)
    above = linear_to_hlg(1.0 / 12.0 + eps)
    assert below == pytest.approx(0.5, abs=1e-4)
    assert above == pytest.approx(below, abs=1e-4)


def test_hlg_endpoints():
    assert linear_to_hlg(0.0) == 0.0
    assert linear_to_hlg(1.0) == pytest.approx(1.0, abs=1e-4)


def test_hlg_monotonic_around_breakpoint():
    lum = np.linspace(1.0 / 12.0 - 0.01, 1.0 / 12.0 + 0.01, 2001)
    assert np.all(np.diff(linear_to_hlg(lum)) >= 0.0)


# =============================================================================
# ACES
# =============================================================================


def test_aces_bounded_for_non_negative_inputs():
    x = np.concatenate([np.linspace(0.0, 10.0, 1001), [100.0, 1e3, 1e6]])
    out = aces_tonemap(x)
    assert np.all(out >= 0.0)
    assert np.all(out <= 1.0)
    assert aces_tonemap(0.0) == 0.0


def test_aces_table_uses_input_scale():
    table = generate_aces_table(TABLE_SIZE, input_scale=10.0)
    assert table[-1] == pytest.approx(float(aces_tonemap(10.0)), abs=1e-6)
    narrow = generate_aces_table(TABLE_SIZE, input_scale=1.0)
    assert narrow[-1] < table[-1]


def test_aces_rejects_non_positive_scale():
    with pytest.raises(ValueError):
        generate_aces_table(TABLE_SIZE, input_scale=0.0)


# =============================================================================
# Tables
# =============================================================================


@pytest.mark.parametrize(
    "table",
    [
        generate_pq_eotf_table(TABLE_SIZE),
        generate_linear_to_pq_table(TABLE_SIZE),
        generate_linear_to_hlg_table(TABLE_SIZE),
        generate_aces_table(TABLE_SIZE, input_scale=10.0),
    ],
    ids=["pq_eotf", "linear_to_pq", "linear_to_hlg", "aces"],
)
def test_tables_monotonic_and_clamped(table):
    assert np.all(np.diff(table) >= 0.0)
    assert table.min() >= 0.0
    assert table.max() <= 1.0


def test_table_size_must_be_at_least_two():
    with pytest.raises(ValueError):
        generate_pq_eotf_table(1)


def test_apply_lut_interpolates():
    out = apply_lut(np.array([0.0, 0.25, 0.5, 1.0, 2.0]), np.array([0.0, 1.0]))
    np.testing.assert_allclose(out, [0.0, 0.25, 0.5, 1.0, 1.0])


def test_apply_lut_matches_curve_between_samples():
    table = generate_linear_to_pq_table(4096)
    x = np.array([0.1, 0.33, 0.77])
    np.testing.assert_allclose(apply_lut(x, table), linear_to_pq(x), atol=1e-3)


# =============================================================================
# sRGB and gain maps
# =============================================================================


def test_srgb_roundtrip():
    x = np.linspace(0.0, 1.0, 256, dtype=np.float32)
    np.testing.assert_allclose(linear_to_srgb(srgb_to_linear(x)), x, atol=1e-4)


@pytest.mark.parametrize(
    ("display_boost", "expected"),
    [(1.0, 0.25), (2.0, 0.5), (4.0, 1.0), (16.0, 1.0)],
)
def test_apply_gain_map_scales_with_display_headroom(display_boost, expected):
    base = np.full((4, 4, 3), 0.25, dtype=np.float32)
    gain = np.ones((2, 2), dtype=np.float32)  # stored at half resolution
    params = GainMapParameters.from_headroom(4.0)

    hdr = apply_gain_map(base, gain, params, display_boost)

    assert hdr.shape == (4, 4, 3)
    np.testing.assert_allclose(hdr, expected, rtol=1e-5)


def test_apply_gain_map_zero_gain_keeps_base():
    base = np.full((2, 2, 3), 0.5, dtype=np.float32)
    gain = np.zeros((2, 2, 3), dtype=np.float32)
    hdr = apply_gain_map(base, gain, GainMapParameters.from_headroom(8.0), 8.0)
    np.testing.assert_allclose(hdr, 0.5)

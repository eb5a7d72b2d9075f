#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

from __future__ import annotations

import dataclasses

import pytest

from color_descriptor import (
    ColorDescriptor,
    ColorPrimaries,
    GainMapParameters,
    MasteringMetadata,
    TransferFunction,
)


def test_defaults_are_unknown():
    d = ColorDescriptor()
    assert d.primaries is ColorPrimaries.UNKNOWN
    assert d.transfer is TransferFunction.UNKNOWN
    assert d.mastering.is_empty
    assert d.gain_map is None
    assert not d.has_gain_map
    assert not d.is_synthesized


def test_descriptor_is_immutable():
    d = ColorDescriptor()
    with pytest.raises(dataclasses.FrozenInstanceError):
        d.transfer = TransferFunction.PQ  # type: ignore[misc]


def test_synthesized_from_flag_or_description():
    assert ColorDescriptor(synthesized=True).is_synthesized
    assert ColorDescriptor(description="Synthesized HDR (gain map)").is_synthesized
    assert not ColorDescriptor(description="Display P3").is_synthesized


@pytest.mark.parametrize(
    ("description", "expected"),
    [("scRGB", True), ("Linear BT.709", True), ("sRGB IEC61966-2.1", False)],
)
def test_describes_linear_light(description, expected):
    assert ColorDescriptor(description=description).describes_linear_light is expected


@pytest.mark.parametrize(
    ("transfer", "is_hdr"),
    [
        (TransferFunction.PQ, True),
        (TransferFunction.HLG, True),
        (TransferFunction.LINEAR, True),
        (TransferFunction.SRGB, False),
        (TransferFunction.BT709, False),
        (TransferFunction.UNKNOWN, False),
    ],
)
def test_transfer_is_hdr(transfer, is_hdr):
    assert transfer.is_hdr is is_hdr


def test_gain_map_from_headroom():
    params = GainMapParameters.from_headroom(4.0)
    assert params.gain_map_min == 0.0
    assert params.gain_map_max == pytest.approx(2.0)
    assert params.hdr_capacity_max == pytest.approx(2.0)


def test_gain_map_from_headroom_below_one_is_flat():
    params = GainMapParameters.from_headroom(0.5)
    assert params.gain_map_max == 0.0


def test_with_changes_returns_new_descriptor():
    d = ColorDescriptor(primaries=ColorPrimaries.BT709)
    changed = d.with_changes(primaries=ColorPrimaries.BT2020)
    assert changed.primaries is ColorPrimaries.BT2020
    assert d.primaries is ColorPrimaries.BT709


def test_mastering_metadata_empty():
    assert MasteringMetadata().is_empty
    assert not MasteringMetadata(max_cll=1000.0).is_empty

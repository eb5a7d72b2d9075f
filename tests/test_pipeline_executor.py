#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

from __future__ import annotations

import numpy as np
import png
import pytest

from color_descriptor import ColorDescriptor, ColorRange, GainMapParameters, TransferFunction
from hdr_pipeline import (
    LIMITED_RANGE_OFFSET,
    LIMITED_RANGE_SCALE,
    CmsTransform,
    GainMapApply,
    GainMapBranch,
    Pipeline,
    PipelineBuilder,
    PipelineConfig,
    PrimariesMatrix,
    RangeExpand,
    RenderFormat,
    RenderingIntent,
    RenderTargetSpec,
    ScRgbScale,
    StandardBranch,
)
from pipeline_executor import (
    CompositorError,
    NumpyCompositor,
    PipelineExecutor,
    RenderTargetCreationFailed,
    UnsupportedImageError,
    export_png,
    to_working_buffer,
)
from profile_resolver import ColorProfile


def _pipeline(*stages, fmt=RenderFormat.UNORM8, branch=None) -> Pipeline:
    return Pipeline(
        branch=branch or StandardBranch(),
        stages=tuple(stages),
        render_target=RenderTargetSpec(fmt),
    )


# =============================================================================
# Working buffers
# =============================================================================


def test_working_buffer_adds_opaque_alpha():
    buf = to_working_buffer(np.full((2, 3, 3), 255, dtype=np.uint8))
    assert buf.dtype == np.float32
    assert buf.shape == (2, 3, 4)
    np.testing.assert_allclose(buf, 1.0)


def test_working_buffer_scales_uint16():
    buf = to_working_buffer(np.full((1, 1, 4), 65535, dtype=np.uint16))
    np.testing.assert_allclose(buf, 1.0)


@pytest.mark.parametrize("shape", [(4,), (4, 4, 5), (2, 2, 2, 3)])
def test_working_buffer_rejects_bad_shapes(shape):
    with pytest.raises(UnsupportedImageError):
        to_working_buffer(np.zeros(shape, dtype=np.uint8))


@pytest.mark.parametrize("dtype", [np.int32, np.bool_])
def test_working_buffer_rejects_bad_dtypes(dtype):
    with pytest.raises(UnsupportedImageError):
        to_working_buffer(np.zeros((2, 2, 3), dtype=dtype))


@pytest.mark.parametrize("shape", [(2, 3), (2, 3, 1)])
def test_working_buffer_expands_grey(shape):
    buf = to_working_buffer(np.full(shape, 51, dtype=np.uint8))
    assert buf.shape == (2, 3, 4)
    np.testing.assert_allclose(buf[..., :3], 0.2)
    np.testing.assert_allclose(buf[..., 3], 1.0)


def test_working_buffer_grey_alpha():
    image = np.zeros((1, 1, 2), dtype=np.uint16)
    image[0, 0] = [65535, 0]
    buf = to_working_buffer(image)
    np.testing.assert_allclose(buf[0, 0], [1.0, 1.0, 1.0, 0.0])


# =============================================================================
# Stages
# =============================================================================


def test_range_expand_maps_video_levels_to_full():
    source = np.array([[[16, 16, 16, 255], [235, 235, 235, 255]]], dtype=np.uint8)
    pipeline = _pipeline(RangeExpand(LIMITED_RANGE_SCALE, LIMITED_RANGE_OFFSET))

    result = PipelineExecutor().execute(pipeline, source)

    assert result.success
    assert result.image.dtype == np.uint8
    np.testing.assert_array_equal(result.image[0, 0], [0, 0, 0, 255])
    np.testing.assert_array_equal(result.image[0, 1], [255, 255, 255, 255])


def test_stage_does_not_modify_input():
    compositor = NumpyCompositor()
    image = np.full((2, 2, 4), 0.5, dtype=np.float32)
    before = image.copy()

    out = compositor.apply(ScRgbScale(125.0), image)

    np.testing.assert_array_equal(image, before)
    assert out is not image


def test_scrgb_scale_keeps_alpha_on_float_target():
    source = np.full((2, 2, 4), 0.5, dtype=np.float32)
    source[..., 3] = 0.25

    result = PipelineExecutor().execute(_pipeline(ScRgbScale(4.0), fmt=RenderFormat.FLOAT16), source)

    assert result.image.dtype == np.float16
    np.testing.assert_allclose(result.image[..., :3], 2.0)
    np.testing.assert_allclose(result.image[..., 3], 0.25)


def test_primaries_matrix_applies_boosted_coefficients():
    doubled = ((2.0, 0.0, 0.0), (0.0, 2.0, 0.0), (0.0, 0.0, 2.0))
    image = np.zeros((1, 1, 4), dtype=np.float32)
    image[0, 0] = [0.25, 0.5, 0.125, 1.0]

    out = NumpyCompositor().apply(PrimariesMatrix(doubled, 2.0), image)

    np.testing.assert_allclose(out[0, 0], [0.5, 1.0, 0.25, 1.0])


def test_primaries_matrix_mixes_channels():
    swap = ((0.0, 1.0, 0.0), (1.0, 0.0, 0.0), (0.0, 0.0, 1.0))
    image = np.zeros((1, 1, 4), dtype=np.float32)
    image[0, 0] = [0.1, 0.2, 0.3, 1.0]

    out = NumpyCompositor().apply(PrimariesMatrix(swap), image)

    np.testing.assert_allclose(out[0, 0], [0.2, 0.1, 0.3, 1.0], rtol=1e-6)


def test_cms_srgb_to_srgb_is_near_identity():
    srgb = ColorProfile.builtin_srgb()
    ramp = np.linspace(0, 255, 16, dtype=np.uint8)
    source = np.stack([ramp, ramp[::-1], ramp], axis=-1)[np.newaxis, ...]

    result = PipelineExecutor().execute(
        _pipeline(CmsTransform(srgb, srgb, RenderingIntent.PERCEPTUAL)), source
    )

    assert result.success
    np.testing.assert_allclose(
        result.image[..., :3].astype(np.int16), source.astype(np.int16), atol=2
    )


def test_gain_map_apply_recovers_headroom():
    source = np.full((4, 4, 3), 255, dtype=np.uint8)
    gain_map = np.full((2, 2), 255, dtype=np.uint8)
    stage = GainMapApply(GainMapParameters.from_headroom(4.0), 4.0)
    pipeline = _pipeline(stage, fmt=RenderFormat.FLOAT16, branch=GainMapBranch())

    result = PipelineExecutor().execute(pipeline, source, gain_map=gain_map)

    assert result.success
    np.testing.assert_allclose(result.image[..., :3].astype(np.float32), 4.0, rtol=1e-3)
    np.testing.assert_allclose(result.image[..., 3].astype(np.float32), 1.0)


# =============================================================================
# Failure handling
# =============================================================================


def test_missing_gain_map_returns_source():
    source = np.zeros((2, 2, 3), dtype=np.uint8)
    stage = GainMapApply(GainMapParameters.from_headroom(4.0), 4.0)

    result = PipelineExecutor().execute(_pipeline(stage, fmt=RenderFormat.FLOAT16), source)

    assert not result.success
    assert isinstance(result.error, CompositorError)
    assert result.error.stage == stage
    assert result.image is source


class _FailingCompositor(NumpyCompositor):
    def create_render_target(self, width, height, spec):
        raise RenderTargetCreationFailed("no surface")


def test_render_target_failure_returns_source():
    source = np.zeros((2, 2, 3), dtype=np.uint8)
    result = PipelineExecutor(_FailingCompositor()).execute(_pipeline(), source)
    assert isinstance(result.error, RenderTargetCreationFailed)
    assert result.image is source


def test_empty_source_fails_target_creation():
    source = np.zeros((0, 4, 3), dtype=np.uint8)
    result = PipelineExecutor().execute(_pipeline(), source)
    assert isinstance(result.error, RenderTargetCreationFailed)


@pytest.mark.parametrize(
    "source",
    [
        np.zeros((4, 4, 3), dtype=np.int32),
        np.zeros((4, 4, 3), dtype=np.bool_),
        np.zeros((4, 4, 5), dtype=np.uint8),
        np.zeros(4, dtype=np.uint8),
    ],
    ids=["int32", "bool", "five_channels", "one_dimensional"],
)
def test_unsupported_source_returns_source(source):
    result = PipelineExecutor().execute(_pipeline(), source)
    assert isinstance(result.error, UnsupportedImageError)
    assert result.image is source


def test_bad_gain_map_shape_returns_source():
    source = np.zeros((2, 2, 3), dtype=np.uint8)
    stage = GainMapApply(GainMapParameters.from_headroom(4.0), 4.0)
    pipeline = _pipeline(stage, fmt=RenderFormat.FLOAT16)

    result = PipelineExecutor().execute(
        pipeline, source, gain_map=np.zeros((2, 2, 5), dtype=np.uint8)
    )

    assert isinstance(result.error, CompositorError)
    assert result.error.stage == stage
    assert result.image is source


def test_single_channel_gain_map():
    source = np.full((2, 2, 3), 255, dtype=np.uint8)
    stage = GainMapApply(GainMapParameters.from_headroom(4.0), 4.0)

    result = PipelineExecutor().execute(
        _pipeline(stage, fmt=RenderFormat.FLOAT16),
        source,
        gain_map=np.full((1, 1, 1), 255, dtype=np.uint8),
    )

    assert result.success
    np.testing.assert_allclose(result.image[..., :3].astype(np.float32), 4.0, rtol=1e-3)


# =============================================================================
# Grey sources
# =============================================================================


def test_grayscale_source_renders(resolver):
    builder = PipelineBuilder(PipelineConfig(cms_disabled=True), resolver)
    pipeline = builder.build(
        ColorDescriptor(range=ColorRange.LIMITED, transfer=TransferFunction.SRGB)
    )
    source = np.full((4, 4), 235, dtype=np.uint8)

    result = PipelineExecutor().execute(pipeline, source)

    assert result.success
    assert result.image.shape == (4, 4, 4)
    assert np.all(result.image == 255)


def test_grayscale_alpha_source_keeps_alpha():
    source = np.zeros((2, 2, 2), dtype=np.uint8)
    source[..., 0] = 100
    source[..., 1] = 40

    result = PipelineExecutor().execute(_pipeline(), source)

    assert result.success
    np.testing.assert_array_equal(result.image[0, 0], [100, 100, 100, 40])


def test_grayscale_source_through_cms():
    srgb = ColorProfile.builtin_srgb()
    source = np.full((2, 2), 128, dtype=np.uint8)

    result = PipelineExecutor().execute(
        _pipeline(CmsTransform(srgb, srgb, RenderingIntent.PERCEPTUAL)), source
    )

    assert result.success
    np.testing.assert_allclose(result.image[..., :3].astype(np.int16), 128, atol=2)


# =============================================================================
# CMS precision
# =============================================================================


def test_cms_keeps_values_above_one_on_float_target():
    srgb = ColorProfile.builtin_srgb()
    source = np.zeros((1, 2, 3), dtype=np.float32)
    source[0, 0] = [2.0, 1.5, 3.0]
    source[0, 1] = [0.5012, 0.2503, 0.7519]
    pipeline = _pipeline(
        CmsTransform(srgb, srgb, RenderingIntent.PERCEPTUAL), fmt=RenderFormat.FLOAT16
    )

    result = PipelineExecutor().execute(pipeline, source)

    assert result.success
    out = result.image[..., :3].astype(np.float32)
    np.testing.assert_allclose(out[0, 0], [2.0, 1.5, 3.0], atol=0.01)
    np.testing.assert_allclose(out[0, 1], [0.5012, 0.2503, 0.7519], atol=0.01)


# =============================================================================
# End to end and export
# =============================================================================


def test_builder_and_executor_together(resolver):
    builder = PipelineBuilder(PipelineConfig(cms_disabled=True), resolver)
    pipeline = builder.build(
        ColorDescriptor(range=ColorRange.LIMITED, transfer=TransferFunction.SRGB)
    )
    source = np.full((3, 3, 3), 235, dtype=np.uint8)

    result = PipelineExecutor().execute(pipeline, source)

    assert result.success
    assert result.image.shape == (3, 3, 4)
    assert np.all(result.image == 255)


def test_export_png_8bit(tmp_path):
    image = np.zeros((2, 3, 4), dtype=np.uint8)
    image[..., 0] = 200
    image[..., 3] = 255
    path = tmp_path / "out.png"

    export_png(image, path)

    width, height, rows, info = png.Reader(filename=str(path)).read()
    pixels = np.array([list(row) for row in rows])
    assert (width, height) == (3, 2)
    assert info["bitdepth"] == 8
    assert info["alpha"]
    assert pixels[0][0] == 200
    assert pixels[1][3] == 255


def test_export_png_16bit_clips_hdr_values(tmp_path):
    image = np.zeros((1, 2, 4), dtype=np.float16)
    image[0, 0] = [0.5, 2.0, 0.0, 1.0]
    image[0, 1] = [1.0, 1.0, 1.0, 1.0]
    path = tmp_path / "hdr.png"

    export_png(image, path)

    _, _, rows, info = png.Reader(filename=str(path)).read()
    pixels = [list(row) for row in rows]
    assert info["bitdepth"] == 16
    assert pixels[0][:4] == [32768, 65535, 0, 65535]
    assert pixels[0][4:] == [65535, 65535, 65535, 65535]

#
# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Executes a built Pipeline against a decoded image.

Stages run strictly in order on float32 RGBA working buffers; each stage
returns a new buffer and never modifies its input. The final buffer is
composited onto a render target sized to the source: uint8 for 8-bit
normalized targets, float16 for HDR targets.

If the render target cannot be created or a stage fails, the executor returns
the untransformed source together with the error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Protocol

import numpy as np
import png
from numpy.typing import NDArray
from PIL import Image, ImageCms

from hdr_pipeline import (
    CmsTransform,
    GainMapApply,
    Pipeline,
    PipelineStage,
    PrimariesMatrix,
    RangeExpand,
    RenderFormat,
    RenderTargetSpec,
    ScRgbScale,
)
from transfer_curves import apply_gain_map, srgb_to_linear

__all__: Final[list[str]] = [
    "PipelineError",
    "RenderTargetCreationFailed",
    "CompositorError",
    "UnsupportedImageError",
    "Compositor",
    "NumpyCompositor",
    "ExecutionResult",
    "PipelineExecutor",
    "to_working_buffer",
    "export_png",
]

logger = logging.getLogger(__name__)

type ImageArray = NDArray[np.generic]
type WorkingBuffer = NDArray[np.float32]


# =============================================================================
# Exceptions
# =============================================================================


class PipelineError(Exception):
    """Base exception for pipeline execution errors."""

    pass


class RenderTargetCreationFailed(PipelineError):
    """The render target surface could not be allocated."""

    pass


class CompositorError(PipelineError):
    """A stage could not be applied by the compositor."""

    __slots__ = ("stage",)

    def __init__(self, message: str, *, stage: PipelineStage | None = None) -> None:
        super().__init__(message)
        self.stage = stage


class UnsupportedImageError(PipelineError, ValueError):
    """Image shape or dtype cannot be turned into an RGBA working buffer."""

    pass


# =============================================================================
# Buffers
# =============================================================================


def to_working_buffer(image: ImageArray) -> WorkingBuffer:
    """Normalize a decoded image to float32 RGBA.

    Accepts (H, W) grey, (H, W, 1) grey, (H, W, 2) grey + alpha, (H, W, 3)
    RGB and (H, W, 4) RGBA. uint8 and uint16 are scaled to [0, 1]; float
    input is taken as-is. A missing alpha channel is filled with 1.0.

    Raises:
        UnsupportedImageError: Any other shape or dtype
    """
    if image.ndim == 2:
        image = image[..., np.newaxis]
    if image.ndim != 3 or image.shape[2] not in (1, 2, 3, 4):
        raise UnsupportedImageError(f"Unsupported image shape {image.shape}")

    if image.dtype == np.uint8:
        buf = image.astype(np.float32) / 255.0
    elif image.dtype == np.uint16:
        buf = image.astype(np.float32) / 65535.0
    elif np.issubdtype(image.dtype, np.floating):
        buf = image.astype(np.float32)
    else:
        raise UnsupportedImageError(f"Unsupported image dtype: {image.dtype}")

    channels = buf.shape[2]
    if channels <= 2:
        grey = np.repeat(buf[..., :1], 3, axis=2)
        buf = np.concatenate([grey, buf[..., 1:]], axis=2)
    if buf.shape[2] == 3:
        alpha = np.ones((*buf.shape[:2], 1), dtype=np.float32)
        buf = np.concatenate([buf, alpha], axis=2)
    return buf


class Compositor(Protocol):
    """Image operations needed by the executor."""

    def create_render_target(self, width: int, height: int, spec: RenderTargetSpec) -> ImageArray: ...

    def apply(
        self,
        stage: PipelineStage,
        image: WorkingBuffer,
        *,
        gain_map: ImageArray | None = None,
    ) -> WorkingBuffer: ...

    def composite(self, image: WorkingBuffer, target: ImageArray) -> ImageArray: ...


@dataclass(slots=True)
class NumpyCompositor:
    """CPU compositor on numpy arrays, ICC transforms through Pillow ImageCms."""

    def create_render_target(self, width: int, height: int, spec: RenderTargetSpec) -> ImageArray:
        if width <= 0 or height <= 0:
            raise RenderTargetCreationFailed(f"Invalid render target size {width}x{height}")
        dtype = np.float16 if spec.format is RenderFormat.FLOAT16 else np.uint8
        try:
            return np.zeros((height, width, 4), dtype=dtype)
        except MemoryError as e:
            raise RenderTargetCreationFailed(
                f"Cannot allocate {width}x{height} {spec.format} target"
            ) from e

    def apply(
        self,
        stage: PipelineStage,
        image: WorkingBuffer,
        *,
        gain_map: ImageArray | None = None,
    ) -> WorkingBuffer:
        out = image.copy()
        rgb = image[..., :3]

        match stage:
            case RangeExpand(scale=scale, offset=offset):
                out[..., :3] = rgb * scale + offset
            case PrimariesMatrix():
                out[..., :3] = rgb @ stage.as_array().T
            case ScRgbScale(factor=factor):
                out[..., :3] = rgb * factor
            case CmsTransform():
                out[..., :3] = self._cms(stage, rgb)
            case GainMapApply(params=params, display_boost=boost):
                if gain_map is None:
                    raise CompositorError("Gain-map stage without a gain-map image", stage=stage)
                try:
                    gain = to_working_buffer(gain_map)[..., :3]
                except UnsupportedImageError as e:
                    raise CompositorError(f"Unusable gain map: {e}", stage=stage) from e
                out[..., :3] = apply_gain_map(srgb_to_linear(rgb), gain, params, boost)
            case _:
                raise CompositorError(f"Unsupported stage: {stage!r}", stage=stage)
        return out

    def _cms(self, stage: CmsTransform, rgb: WorkingBuffer) -> WorkingBuffer:
        """ICC transform at working-buffer precision.

        LittleCMS runs on an 8-bit copy through ImageCms; only the per-pixel
        correction it produces is added back to the float input, so values
        between 8-bit steps and above 1.0 survive on float targets.
        """
        rgb8 = (np.clip(rgb, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)
        try:
            transform = ImageCms.buildTransform(
                stage.source.to_pillow(),
                stage.target.to_pillow(),
                "RGB",
                "RGB",
                renderingIntent=ImageCms.Intent(int(stage.intent)),
            )
            converted = ImageCms.applyTransform(Image.fromarray(rgb8), transform)
        except (ImageCms.PyCMSError, OSError) as e:
            raise CompositorError(f"ICC transform failed: {e}", stage=stage) from e
        assert converted is not None
        correction = (
            np.asarray(converted, dtype=np.float32) - rgb8.astype(np.float32)
        ) / 255.0
        return rgb + correction

    def composite(self, image: WorkingBuffer, target: ImageArray) -> ImageArray:
        if image.shape != target.shape:
            raise CompositorError(
                f"Image {image.shape[:2]} does not match render target {target.shape[:2]}"
            )
        if target.dtype == np.uint8:
            target[...] = (np.clip(image, 0.0, 1.0) * 255.0 + 0.5).astype(np.uint8)
        else:
            target[...] = image.astype(target.dtype)
        return target


# =============================================================================
# Executor
# =============================================================================


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """Outcome of one pipeline execution.

    image is the composited render target on success, or the untransformed
    source when error is set.
    """

    image: ImageArray
    render_target: RenderTargetSpec
    error: PipelineError | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class PipelineExecutor:
    compositor: Compositor = field(default_factory=NumpyCompositor)

    def execute(
        self,
        pipeline: Pipeline,
        source: ImageArray,
        *,
        gain_map: ImageArray | None = None,
    ) -> ExecutionResult:
        try:
            if source.ndim < 2:
                raise UnsupportedImageError(f"Unsupported image shape {source.shape}")
            height, width = source.shape[:2]
            target = self.compositor.create_render_target(width, height, pipeline.render_target)
            current = to_working_buffer(source)
            for stage in pipeline.stages:
                logger.debug("Applying %s", type(stage).__name__)
                current = self.compositor.apply(stage, current, gain_map=gain_map)
            image = self.compositor.composite(current, target)
        except PipelineError as e:
            logger.error("Pipeline failed, showing source image: %s", e)
            return ExecutionResult(image=source, render_target=pipeline.render_target, error=e)
        except ValueError as e:
            # numpy shape mismatches raised inside a stage
            error = CompositorError(f"Stage failed: {e}")
            logger.error("Pipeline failed, showing source image: %s", error)
            return ExecutionResult(image=source, render_target=pipeline.render_target, error=error)

        return ExecutionResult(image=image, render_target=pipeline.render_target)


def export_png(image: ImageArray, path: Path) -> None:
    """Write a render target (or source) as RGBA PNG using pypng.

    uint8 images are written at 8 bits; everything else is clipped to [0, 1]
    and written at 16 bits.
    """
    rgba = to_working_buffer(image)
    height, width = rgba.shape[:2]

    if image.dtype == np.uint8:
        rows = (rgba * 255.0 + 0.5).astype(np.uint8)
        bitdepth = 8
    else:
        rows = (np.clip(rgba, 0.0, 1.0) * 65535.0 + 0.5).astype(np.uint16)
        bitdepth = 16

    writer = png.Writer(width=width, height=height, bitdepth=bitdepth, greyscale=False, alpha=True)
    with open(path, "wb") as f:
        writer.write(f, rows.reshape(height, width * 4))

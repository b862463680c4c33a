"""
Frame wrapping utilities.

Turns raw pixel buffers handed over by a capture layer into :class:`Frame`
values, and frames into the grayscale images the detector works on.
Buffers are wrapped as numpy views; nothing here copies pixel data unless a
color conversion is required.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import cv2
import numpy as np

LOGGER = logging.getLogger(__name__)


class ColorLayout(Enum):
    """Supported pixel layouts (8 bits per channel)."""
    GRAY = "gray"
    BGR = "bgr"
    BGRA = "bgra"
    RGB = "rgb"
    RGBA = "rgba"

    @property
    def channels(self) -> int:
        return _CHANNELS[self]


_CHANNELS = {
    ColorLayout.GRAY: 1,
    ColorLayout.BGR: 3,
    ColorLayout.BGRA: 4,
    ColorLayout.RGB: 3,
    ColorLayout.RGBA: 4,
}

_TO_GRAY = {
    ColorLayout.BGR: cv2.COLOR_BGR2GRAY,
    ColorLayout.BGRA: cv2.COLOR_BGRA2GRAY,
    ColorLayout.RGB: cv2.COLOR_RGB2GRAY,
    ColorLayout.RGBA: cv2.COLOR_RGBA2GRAY,
}


@dataclass(frozen=True)
class Frame:
    """A single image borrowed from the caller for one processing pass."""

    width: int
    height: int
    pixels: np.ndarray  # (height, width) or (height, width, channels) view
    color_layout: ColorLayout
    stride: int = 0  # bytes per row in the source buffer

    @property
    def shape(self):
        return self.pixels.shape


class FrameAdapter:
    """Normalizes raw frames into :class:`Frame` values."""

    @staticmethod
    def wrap(
        buffer,
        width: int,
        height: int,
        color_layout: ColorLayout = ColorLayout.BGR,
        stride: Optional[int] = None,
    ) -> Frame:
        """Wrap a raw pixel buffer without copying it.

        Args:
            buffer: Any object exposing the buffer protocol (bytes, bytearray,
                memoryview, numpy array).
            width: Image width in pixels
            height: Image height in pixels
            color_layout: Channel order of the buffer
            stride: Bytes per row; defaults to ``width * channels``

        Returns:
            Frame whose ``pixels`` is a view on ``buffer``
        """
        if width <= 0 or height <= 0:
            raise ValueError(f"Frame dimensions must be positive, got {width}x{height}.")

        layout = ColorLayout(color_layout)
        channels = layout.channels
        row_bytes = width * channels
        stride = row_bytes if stride is None else int(stride)
        if stride < row_bytes:
            raise ValueError(f"Stride {stride} is smaller than a row ({row_bytes} bytes).")

        flat = np.frombuffer(buffer, dtype=np.uint8)
        required = stride * (height - 1) + row_bytes
        if flat.size < required:
            raise ValueError(
                f"Pixel buffer holds {flat.size} bytes, {required} needed for "
                f"{width}x{height} {layout.value}."
            )

        rows = np.lib.stride_tricks.as_strided(
            flat, shape=(height, row_bytes), strides=(stride, 1), writeable=False
        )
        if channels == 1:
            pixels = rows
        else:
            pixels = rows.reshape(height, width, channels)
        return Frame(width=width, height=height, pixels=pixels, color_layout=layout, stride=stride)

    @staticmethod
    def from_image(image: np.ndarray, color_layout: Optional[ColorLayout] = None) -> Frame:
        """Wrap an OpenCV-style image array.

        The layout is inferred from the channel count when not given:
        one channel is gray, three BGR, four BGRA.
        """
        if image is None or image.size == 0:
            raise ValueError("Frame cannot be empty.")
        if image.dtype != np.uint8:
            raise ValueError(f"Expected an 8-bit image, got {image.dtype}.")

        if image.ndim == 2:
            channels = 1
        elif image.ndim == 3:
            channels = image.shape[2]
        else:
            raise ValueError(f"Unsupported image shape {image.shape}.")

        if color_layout is None:
            inferred = {1: ColorLayout.GRAY, 3: ColorLayout.BGR, 4: ColorLayout.BGRA}
            if channels not in inferred:
                raise ValueError(f"Cannot infer color layout for {channels} channels.")
            color_layout = inferred[channels]
        elif color_layout.channels != channels:
            raise ValueError(
                f"Layout {color_layout.value} expects {color_layout.channels} channels, "
                f"image has {channels}."
            )

        if image.ndim == 3 and channels == 1:
            image = image[:, :, 0]

        height, width = image.shape[:2]
        return Frame(
            width=width,
            height=height,
            pixels=image,
            color_layout=color_layout,
            stride=int(image.strides[0]),
        )

    @staticmethod
    def to_grayscale(frame: Frame) -> np.ndarray:
        """Return the single-channel image the detector works on."""
        if frame.color_layout is ColorLayout.GRAY:
            return np.ascontiguousarray(frame.pixels)
        return cv2.cvtColor(np.ascontiguousarray(frame.pixels), _TO_GRAY[frame.color_layout])

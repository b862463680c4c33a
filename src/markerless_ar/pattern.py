"""
Reference pattern description.

A :class:`PatternModel` is built once at startup from the reference image
and shared read-only by every frame afterwards. Pattern keypoints are kept
both in reference-image pixels and in pattern-plane units; the plane is
centred on the pattern with its longer side spanning ``physical_size``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

import numpy as np

from .frame import Frame, FrameAdapter
from .results import InvalidPatternError
from .tracking.feature import FeatureMatcher

LOGGER = logging.getLogger(__name__)

# Fewest keypoints that can still constrain a homography.
MIN_PATTERN_KEYPOINTS = 4


@dataclass(frozen=True)
class PatternModel:
    """Immutable description of the reference pattern."""

    size: Tuple[int, int]  # (width, height) in pixels
    points: np.ndarray  # (N, 2) keypoints in reference pixels
    plane_points: np.ndarray  # (N, 2) the same keypoints in pattern-plane units
    descriptors: np.ndarray  # (N, D)
    corners_2d: np.ndarray  # (4, 2) image corners in reference pixels
    corners_3d: np.ndarray  # (4, 3) physical corners, z = 0
    pixel_to_plane: np.ndarray  # 3x3 reference pixels -> pattern plane
    detector: str = "orb"

    def __len__(self) -> int:
        return len(self.points)

    @property
    def corners_plane(self) -> np.ndarray:
        """Physical corners without the z coordinate."""
        return self.corners_3d[:, :2]


@dataclass
class PatternConfiguration:
    """Configuration for building the reference pattern."""

    physical_size: float = 2.0  # length of the longer side in plane units
    min_keypoints: int = MIN_PATTERN_KEYPOINTS

    def __post_init__(self):
        if self.physical_size <= 0:
            raise ValueError(f"physical_size must be positive, got {self.physical_size}")
        self.min_keypoints = max(int(self.min_keypoints), MIN_PATTERN_KEYPOINTS)


def _readonly(array: np.ndarray) -> np.ndarray:
    array = np.array(array, copy=True)
    array.setflags(write=False)
    return array


class PatternDescriptor:
    """Builds :class:`PatternModel` values from reference images."""

    def __init__(
        self,
        matcher: Optional[FeatureMatcher] = None,
        config: Optional[Union[Dict, PatternConfiguration]] = None,
    ):
        self.matcher = matcher or FeatureMatcher()
        if isinstance(config, PatternConfiguration):
            self.config = config
        else:
            cfg_dict = dict(config or {})
            self.config = PatternConfiguration(**{
                k: v for k, v in cfg_dict.items()
                if k in PatternConfiguration.__dataclass_fields__
            })

    def build(self, reference_image: Union[Frame, np.ndarray]) -> PatternModel:
        """Extract the reference keypoints and lay out the pattern plane.

        Raises:
            InvalidPatternError: if the image is empty or yields fewer than
                ``min_keypoints`` usable keypoints.
        """
        if reference_image is None:
            raise InvalidPatternError("Reference pattern image is missing.")
        try:
            frame = (
                reference_image
                if isinstance(reference_image, Frame)
                else FrameAdapter.from_image(reference_image)
            )
        except ValueError as exc:
            raise InvalidPatternError(f"Unusable reference image: {exc}") from exc

        gray = FrameAdapter.to_grayscale(frame)
        features = self.matcher.extract(gray)
        if len(features) < self.config.min_keypoints:
            raise InvalidPatternError(
                f"Reference pattern has {len(features)} keypoints, "
                f"at least {self.config.min_keypoints} are required."
            )

        width, height = frame.width, frame.height
        pixel_to_plane = self.pixel_to_plane_transform(width, height, self.config.physical_size)
        plane_points = self._apply(pixel_to_plane, features.points.astype(np.float64))

        corners_2d = np.array(
            [[0, 0], [width, 0], [width, height], [0, height]],
            dtype=np.float64,
        )
        corners_plane = self._apply(pixel_to_plane, corners_2d)
        corners_3d = np.hstack([corners_plane, np.zeros((4, 1))])

        model = PatternModel(
            size=(width, height),
            points=_readonly(features.points.astype(np.float64)),
            plane_points=_readonly(plane_points),
            descriptors=_readonly(features.descriptors),
            corners_2d=_readonly(corners_2d),
            corners_3d=_readonly(corners_3d),
            pixel_to_plane=_readonly(pixel_to_plane),
            detector=self.matcher.method,
        )
        LOGGER.info(
            "Pattern built: %dx%d px, %d keypoints, detector=%s",
            width,
            height,
            len(model),
            model.detector,
        )
        return model

    @staticmethod
    def pixel_to_plane_transform(width: int, height: int, physical_size: float = 2.0) -> np.ndarray:
        """Similarity mapping reference pixels onto the centred pattern plane."""
        scale = physical_size / max(width, height)
        return np.array(
            [
                [scale, 0.0, -0.5 * width * scale],
                [0.0, scale, -0.5 * height * scale],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )

    @staticmethod
    def _apply(transform: np.ndarray, points: np.ndarray) -> np.ndarray:
        homogeneous = np.hstack([points, np.ones((len(points), 1))]) @ transform.T
        return homogeneous[:, :2] / homogeneous[:, 2:3]

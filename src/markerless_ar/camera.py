"""
Pinhole camera model.

Holds the intrinsic calibration of the capture device and converts between
pixel coordinates, normalized image coordinates and camera-space points.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

LOGGER = logging.getLogger(__name__)

# Calibration of the webcam the demo was tuned on.
DEFAULT_INTRINSICS = {
    "fx": 545.31565719766058,
    "fy": 545.31565719766058,
    "cx": 326.0,
    "cy": 183.5,
}


@dataclass(frozen=True)
class CameraIntrinsics:
    """Focal lengths and principal point, in pixels."""

    fx: float
    fy: float
    cx: float
    cy: float

    def __post_init__(self):
        values = (self.fx, self.fy, self.cx, self.cy)
        if not all(np.isfinite(v) for v in values):
            raise ValueError("Camera intrinsics must be finite numbers.")
        if self.fx <= 0 or self.fy <= 0:
            raise ValueError(
                f"Focal lengths must be positive (fx={self.fx}, fy={self.fy})."
            )

    @classmethod
    def from_matrix(cls, matrix) -> CameraIntrinsics:
        """Build intrinsics from a 3x3 camera matrix."""
        K = np.asarray(matrix, dtype=np.float64).reshape(3, 3)
        return cls(fx=float(K[0, 0]), fy=float(K[1, 1]), cx=float(K[0, 2]), cy=float(K[1, 2]))

    def as_matrix(self) -> np.ndarray:
        return np.array(
            [
                [self.fx, 0.0, self.cx],
                [0.0, self.fy, self.cy],
                [0.0, 0.0, 1.0],
            ],
            dtype=np.float64,
        )


class CameraModel:
    """
    Stateless pinhole camera.

    All conversion methods accept a single point or an ``(N, k)`` array and
    return the same shape they were given.
    """

    def __init__(self, intrinsics: CameraIntrinsics):
        self.intrinsics = intrinsics
        self._K = intrinsics.as_matrix()
        self._K.setflags(write=False)

    @classmethod
    def from_config(cls, config: Optional[Dict] = None) -> CameraModel:
        """Create a camera from a ``camera`` configuration section.

        Either ``camera_matrix`` (3x3 nested list) or the individual
        ``fx``/``fy``/``cx``/``cy`` values are accepted.
        """
        config = config or {}
        if config.get("camera_matrix") is not None:
            intrinsics = CameraIntrinsics.from_matrix(config["camera_matrix"])
        else:
            values = {key: float(config.get(key, default)) for key, default in DEFAULT_INTRINSICS.items()}
            intrinsics = CameraIntrinsics(**values)
        LOGGER.info(
            "Camera model: fx=%.2f fy=%.2f cx=%.2f cy=%.2f",
            intrinsics.fx,
            intrinsics.fy,
            intrinsics.cx,
            intrinsics.cy,
        )
        return cls(intrinsics)

    def intrinsics_matrix(self) -> np.ndarray:
        """Return a copy of the 3x3 intrinsic matrix."""
        return self._K.copy()

    # ------------------------------------------------------------------ #
    # Coordinate conversions
    # ------------------------------------------------------------------ #
    def normalize(self, pixels) -> np.ndarray:
        """Pixel coordinates -> normalized image coordinates."""
        pts = np.asarray(pixels, dtype=np.float64)
        k = self.intrinsics
        out = np.empty_like(pts)
        out[..., 0] = (pts[..., 0] - k.cx) / k.fx
        out[..., 1] = (pts[..., 1] - k.cy) / k.fy
        return out

    def denormalize(self, normalized) -> np.ndarray:
        """Normalized image coordinates -> pixel coordinates."""
        pts = np.asarray(normalized, dtype=np.float64)
        k = self.intrinsics
        out = np.empty_like(pts)
        out[..., 0] = pts[..., 0] * k.fx + k.cx
        out[..., 1] = pts[..., 1] * k.fy + k.cy
        return out

    def project(self, points_3d) -> np.ndarray:
        """Project camera-space points onto the image plane.

        Raises:
            ValueError: if any point lies at or behind the camera plane.
        """
        pts = np.asarray(points_3d, dtype=np.float64)
        if pts.shape[-1] != 3:
            raise ValueError(f"Expected 3-D points, got shape {pts.shape}")
        z = pts[..., 2]
        if np.any(z <= 0):
            raise ValueError("Cannot project points at or behind the camera.")
        normalized = pts[..., :2] / z[..., np.newaxis]
        return self.denormalize(normalized)

    def unproject(self, points_2d, depth) -> np.ndarray:
        """Lift pixel coordinates to camera-space points at the given depth."""
        pts = np.asarray(points_2d, dtype=np.float64)
        if pts.shape[-1] != 2:
            raise ValueError(f"Expected 2-D points, got shape {pts.shape}")
        depth = np.asarray(depth, dtype=np.float64)
        normalized = self.normalize(pts)
        x = normalized[..., 0] * depth
        y = normalized[..., 1] * depth
        z = np.broadcast_to(depth, x.shape)
        return np.stack([x, y, z], axis=-1)

    def projection_matrix(
        self,
        width: int,
        height: int,
        near: float = 0.01,
        far: float = 100.0,
    ) -> np.ndarray:
        """OpenGL-style 4x4 projection matrix built from the intrinsics.

        Expects GL eye coordinates, i.e. camera space with the y and z axes
        negated. Pixel ``(u, v)`` lands at NDC ``(2u/w - 1, 1 - 2v/h)``.
        """
        if width <= 0 or height <= 0:
            raise ValueError("Viewport dimensions must be positive.")
        if not 0 < near < far:
            raise ValueError("Clip planes must satisfy 0 < near < far.")

        k = self.intrinsics
        proj = np.zeros((4, 4), dtype=np.float64)
        proj[0, 0] = 2.0 * k.fx / width
        proj[1, 1] = 2.0 * k.fy / height
        proj[0, 2] = 1.0 - 2.0 * k.cx / width
        proj[1, 2] = 2.0 * k.cy / height - 1.0
        proj[2, 2] = -(far + near) / (far - near)
        proj[2, 3] = -2.0 * far * near / (far - near)
        proj[3, 2] = -1.0
        return proj

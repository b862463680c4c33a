"""
Pattern pose estimation module.

Recovers the rigid transform of the planar pattern relative to the camera by
decomposing the pattern-plane -> image homography with the camera
intrinsics. Every frame is decomposed independently; no temporal smoothing
is applied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Union

import cv2
import numpy as np

from .camera import CameraIntrinsics, CameraModel
from .homography import Homography
from .results import Found, NotFound, NotFoundReason, StageResult

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transformation:
    """Rotation and translation of the pattern in camera coordinates."""

    rotation: np.ndarray  # 3x3, orthonormal, det = +1
    translation: np.ndarray  # (3,)

    def as_matrix(self) -> np.ndarray:
        """Return the 4x4 homogeneous transformation matrix."""
        transform = np.eye(4, dtype=np.float64)
        transform[:3, :3] = self.rotation
        transform[:3, 3] = self.translation.flatten()
        return transform

    def inverted(self) -> Transformation:
        """Camera pose expressed in pattern coordinates."""
        rotation_t = self.rotation.T
        return Transformation(rotation=rotation_t, translation=-rotation_t @ self.translation)

    def rotation_vector(self) -> np.ndarray:
        """Axis-angle (Rodrigues) form of the rotation, shape (3,)."""
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.flatten()

    def transform_points(self, points) -> np.ndarray:
        """Map pattern-space points into camera space."""
        pts = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        return pts @ self.rotation.T + self.translation

    def euler_angles(self) -> tuple:
        """(roll, pitch, yaw) in degrees."""
        R = self.rotation
        sy = np.sqrt(R[0, 0] ** 2 + R[1, 0] ** 2)
        singular = sy < 1e-6

        if not singular:
            roll = np.arctan2(R[2, 1], R[2, 2])
            pitch = np.arctan2(-R[2, 0], sy)
            yaw = np.arctan2(R[1, 0], R[0, 0])
        else:
            roll = np.arctan2(-R[1, 2], R[1, 1])
            pitch = np.arctan2(-R[2, 0], sy)
            yaw = 0.0

        return float(np.degrees(roll)), float(np.degrees(pitch)), float(np.degrees(yaw))

    def distance(self) -> float:
        """Distance from the camera centre to the pattern origin."""
        return float(np.linalg.norm(self.translation))


def rotation_angle_between(a: np.ndarray, b: np.ndarray) -> float:
    """Angle in degrees of the relative rotation ``a^T b``."""
    relative = a.T @ b
    cos_angle = np.clip((np.trace(relative) - 1.0) / 2.0, -1.0, 1.0)
    return float(np.degrees(np.arccos(cos_angle)))


class PoseEstimator:
    """
    Decomposes homographies into pattern poses.

    With ``K^-1 H = [m1 m2 m3]`` the first two columns are the scaled pattern
    x and y axes and the third is the scaled translation. The scale is
    recovered from the column norms, the third axis from their cross
    product, and the nearest proper rotation from an SVD.
    """

    def __init__(self, camera: Optional[Union[CameraModel, CameraIntrinsics]] = None, min_scale: float = 1e-9):
        if isinstance(camera, CameraIntrinsics):
            camera = CameraModel(camera)
        self.camera = camera
        self.min_scale = min_scale

    def estimate(
        self,
        homography: Union[Homography, np.ndarray],
        intrinsics: Optional[Union[CameraIntrinsics, CameraModel]] = None,
    ) -> StageResult[Transformation]:
        """Recover the pattern pose from a homography.

        Args:
            homography: Validated homography or a raw 3x3 matrix
            intrinsics: Camera to use instead of the one given at construction

        Returns:
            ``Found(Transformation)`` or ``NotFound(DEGENERATE_POSE)``
        """
        K_inv = np.linalg.inv(self._intrinsics_matrix(intrinsics))
        H = homography.matrix if isinstance(homography, Homography) else np.asarray(homography, dtype=np.float64)
        if H.shape != (3, 3) or not np.all(np.isfinite(H)):
            return NotFound(NotFoundReason.DEGENERATE_POSE, "homography is not a finite 3x3 matrix")

        M = K_inv @ H
        m1, m2, m3 = M[:, 0], M[:, 1], M[:, 2]
        norm1 = np.linalg.norm(m1)
        norm2 = np.linalg.norm(m2)
        mean_norm = 0.5 * (norm1 + norm2)

        if not np.isfinite(mean_norm) or min(norm1, norm2) < self.min_scale:
            LOGGER.debug("Degenerate pose: column norms %.3g, %.3g", norm1, norm2)
            return NotFound(NotFoundReason.DEGENERATE_POSE, "near-zero normalization factor")

        scale = 1.0 / mean_norm
        # H is only known up to sign; the pattern must lie in front of the camera
        if m3[2] < 0:
            scale = -scale

        r1 = scale * m1
        r2 = scale * m2
        r3 = np.cross(r1, r2)
        approx = np.column_stack([r1, r2, r3])

        try:
            u, _, vt = np.linalg.svd(approx)
        except np.linalg.LinAlgError as exc:
            LOGGER.debug("SVD failed during pose decomposition: %s", exc)
            return NotFound(NotFoundReason.DEGENERATE_POSE, "orthonormalization failed")

        rotation = u @ vt
        det = np.linalg.det(rotation)
        if not np.isfinite(det) or det <= 0:
            return NotFound(NotFoundReason.DEGENERATE_POSE, f"improper rotation (det={det:.3f})")

        translation = scale * m3
        if translation[2] <= 0:
            return NotFound(NotFoundReason.DEGENERATE_POSE, "pattern behind the camera")

        return Found(Transformation(rotation=rotation, translation=translation))

    def _intrinsics_matrix(self, intrinsics) -> np.ndarray:
        source = intrinsics if intrinsics is not None else self.camera
        if source is None:
            raise ValueError("Camera intrinsics must be provided for pose estimation.")
        if isinstance(source, CameraModel):
            return source.intrinsics_matrix()
        return source.as_matrix()

    def project_axes(self, transformation: Transformation, axis_length: float = 0.5) -> Optional[np.ndarray]:
        """Project the pattern's XYZ axes for visualisation, shape (4, 2)."""
        if self.camera is None:
            return None
        axes = np.array(
            [
                [0.0, 0.0, 0.0],
                [axis_length, 0.0, 0.0],
                [0.0, axis_length, 0.0],
                [0.0, 0.0, -axis_length],  # towards the camera
            ],
            dtype=np.float64,
        )
        camera_points = transformation.transform_points(axes)
        if np.any(camera_points[:, 2] <= 0):
            return None
        return self.camera.project(camera_points)

    def describe(self, transformation: Transformation) -> Dict:
        """Human-readable components of a pose."""
        t = transformation.translation
        return {
            "euler_angles": transformation.euler_angles(),
            "position": (float(t[0]), float(t[1]), float(t[2])),
            "distance": transformation.distance(),
        }

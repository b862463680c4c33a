"""
Robust planar homography estimation.

Fits the projective transform taking pattern-plane coordinates to frame
pixels with a random-sample-consensus loop over minimal 4-point samples,
followed by an optional least-squares re-fit on the inliers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

import numpy as np

from .results import Found, NotFound, NotFoundReason, StageResult
from .tracking.feature import MatchResult

LOGGER = logging.getLogger(__name__)

MIN_CORRESPONDENCES = 4
MAX_REPROJECTION_THRESHOLD = 10.0


def clamp_threshold(value: float) -> float:
    """Clamp a reprojection threshold to the supported [0, 10] px range."""
    return float(min(MAX_REPROJECTION_THRESHOLD, max(0.0, value)))


@dataclass
class HomographyConfiguration:
    """Configuration for the RANSAC homography estimator."""

    reprojection_threshold: float = 3.0  # pixels
    refine: bool = True
    refinement_iterations: int = 3
    max_iterations: int = 2000
    min_inliers: int = 8
    min_inlier_ratio: float = 0.25
    random_seed: int = 0

    def __post_init__(self):
        self.reprojection_threshold = clamp_threshold(self.reprojection_threshold)
        self.min_inliers = max(int(self.min_inliers), MIN_CORRESPONDENCES)
        if not 0.0 <= self.min_inlier_ratio <= 1.0:
            raise ValueError(f"min_inlier_ratio must be in [0, 1], got {self.min_inlier_ratio}")
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")


@dataclass(frozen=True)
class Homography:
    """A validated pattern-plane -> frame-pixel homography."""

    matrix: np.ndarray  # 3x3
    inlier_mask: np.ndarray  # (N,) bool, the RANSAC-selected consensus set
    inlier_count: int
    correspondence_count: int
    reprojection_error: float  # mean error over support_mask, pixels
    refined: bool = False
    # Correspondences within the threshold under ``matrix``; a superset in
    # count of ``inlier_mask`` when refined, equal to it otherwise
    support_mask: Optional[np.ndarray] = None

    def __post_init__(self):
        if self.support_mask is None:
            object.__setattr__(self, "support_mask", self.inlier_mask)

    @property
    def support_count(self) -> int:
        return int(self.support_mask.sum())

    @property
    def inlier_ratio(self) -> float:
        if self.correspondence_count == 0:
            return 0.0
        return self.inlier_count / self.correspondence_count

    def project(self, points) -> np.ndarray:
        """Map pattern-plane points into the frame."""
        projected, _ = project_points(self.matrix, np.asarray(points, dtype=np.float64).reshape(-1, 2))
        return projected


# ---------------------------------------------------------------------- #
# Linear algebra helpers
# ---------------------------------------------------------------------- #
def _normalization(points: np.ndarray) -> Optional[np.ndarray]:
    """Hartley normalization: centroid to origin, mean distance sqrt(2)."""
    centroid = points.mean(axis=0)
    mean_dist = np.linalg.norm(points - centroid, axis=1).mean()
    if not np.isfinite(mean_dist) or mean_dist < 1e-12:
        return None
    s = np.sqrt(2.0) / mean_dist
    return np.array(
        [
            [s, 0.0, -s * centroid[0]],
            [0.0, s, -s * centroid[1]],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )


def fit_homography(src: np.ndarray, dst: np.ndarray) -> Optional[np.ndarray]:
    """Least-squares homography (normalized DLT) mapping ``src`` onto ``dst``.

    Exact for four points in general position. Returns ``None`` when the
    points do not determine a finite, non-singular transform.
    """
    src = np.asarray(src, dtype=np.float64).reshape(-1, 2)
    dst = np.asarray(dst, dtype=np.float64).reshape(-1, 2)
    if len(src) < MIN_CORRESPONDENCES or len(src) != len(dst):
        return None

    T_src = _normalization(src)
    T_dst = _normalization(dst)
    if T_src is None or T_dst is None:
        return None

    ones = np.ones((len(src), 1))
    p = np.hstack([src, ones]) @ T_src.T
    q = np.hstack([dst, ones]) @ T_dst.T

    n = len(src)
    A = np.zeros((2 * n, 9), dtype=np.float64)
    x, y = p[:, 0], p[:, 1]
    u, v = q[:, 0], q[:, 1]
    A[0::2, 0] = x
    A[0::2, 1] = y
    A[0::2, 2] = 1.0
    A[0::2, 6] = -u * x
    A[0::2, 7] = -u * y
    A[0::2, 8] = -u
    A[1::2, 3] = x
    A[1::2, 4] = y
    A[1::2, 5] = 1.0
    A[1::2, 6] = -v * x
    A[1::2, 7] = -v * y
    A[1::2, 8] = -v

    _, s, vt = np.linalg.svd(A)
    # A one-dimensional null space is required for a unique solution
    if s[7] < 1e-10 * s[0]:
        return None
    H_norm = vt[-1].reshape(3, 3)
    H = np.linalg.inv(T_dst) @ H_norm @ T_src

    if not np.all(np.isfinite(H)):
        return None
    if abs(H[2, 2]) > 1e-12:
        H = H / H[2, 2]
    else:
        H = H / np.linalg.norm(H)
    if abs(np.linalg.det(H)) < 1e-12:
        return None
    return H


def project_points(H: np.ndarray, points: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Apply ``H`` to ``(N, 2)`` points; also returns the homogeneous scale."""
    homogeneous = np.hstack([points, np.ones((len(points), 1))]) @ H.T
    w = homogeneous[:, 2]
    with np.errstate(divide="ignore", invalid="ignore"):
        projected = homogeneous[:, :2] / w[:, np.newaxis]
    return projected, w


def reprojection_errors(H: np.ndarray, src: np.ndarray, dst: np.ndarray) -> np.ndarray:
    """Euclidean distance in frame pixels between ``H(src)`` and ``dst``."""
    projected, w = project_points(H, src)
    errors = np.linalg.norm(projected - dst, axis=1)
    errors[~np.isfinite(errors) | (np.abs(w) < 1e-12)] = np.inf
    return errors


def _has_collinear_triplet(points: np.ndarray) -> bool:
    """True if any three of the four sample points are (nearly) collinear."""
    extent = np.ptp(points, axis=0).max()
    if extent <= 0:
        return True
    tolerance = 1e-6 * extent * extent
    for i, j, k in ((0, 1, 2), (0, 1, 3), (0, 2, 3), (1, 2, 3)):
        a = points[j] - points[i]
        b = points[k] - points[i]
        if abs(a[0] * b[1] - a[1] * b[0]) < tolerance:
            return True
    return False


def _orientation_signs(polygon: np.ndarray) -> np.ndarray:
    edges = np.roll(polygon, -1, axis=0) - polygon
    nxt = np.roll(edges, -1, axis=0)
    return np.sign(edges[:, 0] * nxt[:, 1] - edges[:, 1] * nxt[:, 0])


def is_plausible(H: np.ndarray, corners: np.ndarray) -> bool:
    """Whether the pattern outline stays a convex, non-mirrored quad under ``H``."""
    projected, w = project_points(H, corners)
    if np.any(np.sign(w) != np.sign(w[0])) or np.any(np.abs(w) < 1e-12):
        return False
    if not np.all(np.isfinite(projected)):
        return False
    before = _orientation_signs(corners)
    after = _orientation_signs(projected)
    if np.any(after == 0) or np.any(after != after[0]):
        return False
    return bool(after[0] == before[0])


class HomographyEstimator:
    """
    RANSAC homography estimator.

    The sample sequence is seeded on every call, so a given correspondence
    set and configuration always produce the same result, and raising the
    reprojection threshold can only grow the selected inlier set.
    """

    def __init__(self, config: Optional[Union[Dict, HomographyConfiguration]] = None):
        if isinstance(config, HomographyConfiguration):
            self.config = config
        else:
            cfg_dict = dict(config or {})
            self.config = HomographyConfiguration(**{
                k: v for k, v in cfg_dict.items()
                if k in HomographyConfiguration.__dataclass_fields__
            })

    def estimate(
        self,
        matches: MatchResult,
        reprojection_threshold: Optional[float] = None,
        refine: Optional[bool] = None,
        corners: Optional[np.ndarray] = None,
    ) -> StageResult[Homography]:
        """Fit a homography to the correspondences in ``matches``.

        Args:
            matches: Correspondences with aligned pattern/frame points
            reprojection_threshold: Inlier threshold in pixels, overrides config
            refine: Least-squares re-fit on the inliers, overrides config
            corners: Optional pattern-plane outline used to reject mirrored
                or self-intersecting solutions

        Returns:
            ``Found(Homography)`` or ``NotFound`` with the reason
        """
        threshold = clamp_threshold(
            self.config.reprojection_threshold if reprojection_threshold is None else reprojection_threshold
        )
        refine = self.config.refine if refine is None else bool(refine)

        src = np.asarray(matches.pattern_points, dtype=np.float64).reshape(-1, 2)
        dst = np.asarray(matches.frame_points, dtype=np.float64).reshape(-1, 2)
        n = len(src)

        if n < MIN_CORRESPONDENCES:
            return NotFound(
                NotFoundReason.INSUFFICIENT_CORRESPONDENCES,
                f"{n} correspondences, {MIN_CORRESPONDENCES} required",
            )

        best_H, best_mask = self._ransac(src, dst, threshold)
        if best_H is None:
            return NotFound(NotFoundReason.DEGENERATE_HOMOGRAPHY, "no non-degenerate sample")

        inlier_count = int(best_mask.sum())
        required = max(self.config.min_inliers, int(np.ceil(self.config.min_inlier_ratio * n)))
        if inlier_count < required:
            return NotFound(
                NotFoundReason.DEGENERATE_HOMOGRAPHY,
                f"{inlier_count}/{n} inliers, {required} required",
            )

        H, support, refined = best_H, best_mask, False
        if refine:
            H, support, refined = self._refine(src, dst, H, best_mask, threshold)

        if corners is not None and not is_plausible(H, np.asarray(corners, dtype=np.float64)):
            return NotFound(NotFoundReason.DEGENERATE_HOMOGRAPHY, "implausible pattern outline")

        errors = reprojection_errors(H, src, dst)
        homography = Homography(
            matrix=H,
            inlier_mask=best_mask,
            inlier_count=inlier_count,
            correspondence_count=n,
            reprojection_error=float(errors[support].mean()),
            refined=refined,
            support_mask=support,
        )
        LOGGER.debug(
            "Homography: %d/%d inliers (%d after refinement), mean error %.3f px, refined=%s",
            inlier_count,
            n,
            homography.support_count,
            homography.reprojection_error,
            refined,
        )
        return Found(homography)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _ransac(
        self,
        src: np.ndarray,
        dst: np.ndarray,
        threshold: float,
    ) -> Tuple[Optional[np.ndarray], Optional[np.ndarray]]:
        n = len(src)
        rng = np.random.default_rng(self.config.random_seed)
        samples = rng.integers(0, n, size=(self.config.max_iterations, MIN_CORRESPONDENCES))

        best_H: Optional[np.ndarray] = None
        best_mask: Optional[np.ndarray] = None
        best_count = -1
        best_score = np.inf

        for sample in samples:
            if len(np.unique(sample)) < MIN_CORRESPONDENCES:
                continue
            if _has_collinear_triplet(src[sample]) or _has_collinear_triplet(dst[sample]):
                continue
            H = fit_homography(src[sample], dst[sample])
            if H is None:
                continue

            errors = reprojection_errors(H, src, dst)
            mask = errors < threshold
            count = int(mask.sum())
            score = float(errors[mask].sum())
            if count > best_count or (count == best_count and score < best_score):
                best_H, best_mask = H, mask
                best_count, best_score = count, score
                if count == n:
                    break

        return best_H, best_mask

    def _refine(
        self,
        src: np.ndarray,
        dst: np.ndarray,
        H: np.ndarray,
        mask: np.ndarray,
        threshold: float,
    ) -> Tuple[np.ndarray, np.ndarray, bool]:
        """Re-fit on the inliers while the support under the new fit does not shrink.

        ``mask`` is always the set within ``threshold`` of the returned ``H``.
        """
        refined = False
        for _ in range(max(self.config.refinement_iterations, 1)):
            candidate = fit_homography(src[mask], dst[mask])
            if candidate is None:
                break
            new_mask = reprojection_errors(candidate, src, dst) < threshold
            if new_mask.sum() < mask.sum():
                break
            H, refined = candidate, True
            if np.array_equal(new_mask, mask):
                break
            mask = new_mask
        return H, mask, refined

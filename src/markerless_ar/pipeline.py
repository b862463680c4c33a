"""
Per-frame marker detection pipeline.

Runs match -> homography -> pose on every frame from scratch and reports
whether the pattern is present together with its pose. Numerical failures on
a single frame are downgraded to "not present"; only startup problems raise.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Union

import cv2
import numpy as np

from .camera import CameraModel
from .frame import Frame, FrameAdapter
from .homography import Homography, HomographyEstimator, clamp_threshold
from .pattern import PatternDescriptor, PatternModel
from .pose import PoseEstimator, Transformation
from .results import InvalidPatternError, NotFound, NotFoundReason
from .tracking.feature import FeatureMatcher

LOGGER = logging.getLogger(__name__)

THRESHOLD_STEP = 0.2


@dataclass(frozen=True)
class DetectionConfig:
    """Live-tunable detection parameters."""

    reprojection_threshold: float = 3.0
    refinement_enabled: bool = True

    def __post_init__(self):
        object.__setattr__(self, "reprojection_threshold", clamp_threshold(self.reprojection_threshold))
        object.__setattr__(self, "refinement_enabled", bool(self.refinement_enabled))


class PipelineState(Enum):
    """Detection state after the most recent frame."""
    IDLE = "idle"
    SEARCHING = "searching"
    TRACKING = "tracking"


@dataclass
class DetectionResult:
    """Outcome of processing one frame."""

    present: bool
    transformation: Optional[Transformation] = None
    homography: Optional[Homography] = None
    corners: Optional[np.ndarray] = None  # (4, 2) pattern outline in frame pixels
    match_count: int = 0
    inlier_count: int = 0
    reason: Optional[NotFoundReason] = None
    config: DetectionConfig = field(default_factory=DetectionConfig)
    processing_time: float = 0.0

    @property
    def transformations(self) -> List[Transformation]:
        return [self.transformation] if self.transformation is not None else []


class DetectionPipeline:
    """
    Finds the reference pattern in frames and estimates its pose.

    The only state kept between calls is the immutable pattern, the
    collaborators, and the current :class:`DetectionConfig` snapshot, which
    a single writer may replace between frames.
    """

    def __init__(
        self,
        pattern: PatternModel,
        camera: CameraModel,
        matcher: Optional[FeatureMatcher] = None,
        homography_estimator: Optional[HomographyEstimator] = None,
        pose_estimator: Optional[PoseEstimator] = None,
        config: Optional[DetectionConfig] = None,
    ):
        self.pattern = pattern
        self.camera = camera
        self.matcher = matcher or FeatureMatcher({"method": pattern.detector})
        if self.matcher.method != pattern.detector:
            raise InvalidPatternError(
                f"Pattern features ('{pattern.detector}') do not match the "
                f"matcher's detector ('{self.matcher.method}')."
            )
        self.homography_estimator = homography_estimator or HomographyEstimator()
        self.pose_estimator = pose_estimator or PoseEstimator(camera)

        if config is None:
            estimator_cfg = self.homography_estimator.config
            config = DetectionConfig(
                reprojection_threshold=estimator_cfg.reprojection_threshold,
                refinement_enabled=estimator_cfg.refine,
            )
        self._config = config
        self.state = PipelineState.IDLE
        self.last_result: Optional[DetectionResult] = None

        LOGGER.info(
            "Detection pipeline ready: threshold=%.1f px, refinement=%s",
            config.reprojection_threshold,
            config.refinement_enabled,
        )

    # ------------------------------------------------------------------ #
    # Live configuration
    # ------------------------------------------------------------------ #
    @property
    def config(self) -> DetectionConfig:
        return self._config

    @config.setter
    def config(self, value: DetectionConfig):
        self._config = value

    def update_config(self, **changes) -> DetectionConfig:
        """Replace the configuration snapshot with updated values."""
        self._config = dataclasses.replace(self._config, **changes)
        LOGGER.info(
            "Detection config: threshold=%.1f px, refinement=%s",
            self._config.reprojection_threshold,
            self._config.refinement_enabled,
        )
        return self._config

    def adjust_threshold(self, delta: float = THRESHOLD_STEP) -> float:
        """Shift the reprojection threshold, clamped to [0, 10]."""
        current = self._config.reprojection_threshold
        return self.update_config(reprojection_threshold=current + delta).reprojection_threshold

    def toggle_refinement(self) -> bool:
        return self.update_config(refinement_enabled=not self._config.refinement_enabled).refinement_enabled

    # ------------------------------------------------------------------ #
    # Frame processing
    # ------------------------------------------------------------------ #
    @property
    def is_pattern_present(self) -> bool:
        return self.last_result is not None and self.last_result.present

    @property
    def transformations(self) -> List[Transformation]:
        return self.last_result.transformations if self.last_result is not None else []

    def process(self, frame: Union[Frame, np.ndarray]) -> DetectionResult:
        """Detect the pattern in one frame.

        Raises:
            ValueError: if the frame itself is malformed
        """
        config = self._config
        start = time.perf_counter()

        if not isinstance(frame, Frame):
            frame = FrameAdapter.from_image(frame)
        gray = FrameAdapter.to_grayscale(frame)

        try:
            result = self._detect(gray, config)
        except (cv2.error, np.linalg.LinAlgError) as exc:
            LOGGER.debug("Frame dropped after numerical failure: %s", exc)
            result = DetectionResult(
                present=False,
                reason=NotFoundReason.DEGENERATE_HOMOGRAPHY,
                config=config,
            )

        result.processing_time = time.perf_counter() - start
        self.state = PipelineState.TRACKING if result.present else PipelineState.SEARCHING
        self.last_result = result
        return result

    def _detect(self, gray: np.ndarray, config: DetectionConfig) -> DetectionResult:
        features = self.matcher.extract(gray)
        matches = self.matcher.match_features(features, self.pattern)

        homography = self.homography_estimator.estimate(
            matches,
            reprojection_threshold=config.reprojection_threshold,
            refine=config.refinement_enabled,
            corners=self.pattern.corners_plane,
        )
        if isinstance(homography, NotFound):
            return self._not_found(homography, config, match_count=len(matches))

        pose = self.pose_estimator.estimate(homography.value, self.camera)
        if isinstance(pose, NotFound):
            return self._not_found(
                pose,
                config,
                match_count=len(matches),
                inlier_count=homography.value.inlier_count,
            )

        LOGGER.debug(
            "Pattern found: %d matches, %d inliers, distance %.3f",
            len(matches),
            homography.value.inlier_count,
            pose.value.distance(),
        )
        return DetectionResult(
            present=True,
            transformation=pose.value,
            homography=homography.value,
            corners=homography.value.project(self.pattern.corners_plane),
            match_count=len(matches),
            inlier_count=homography.value.inlier_count,
            config=config,
        )

    @staticmethod
    def _not_found(
        outcome: NotFound,
        config: DetectionConfig,
        match_count: int = 0,
        inlier_count: int = 0,
    ) -> DetectionResult:
        LOGGER.debug("Pattern not found: %s (%s)", outcome.reason.value, outcome.detail)
        return DetectionResult(
            present=False,
            match_count=match_count,
            inlier_count=inlier_count,
            reason=outcome.reason,
            config=config,
        )


def create_marker_detection(
    reference_image: Union[Frame, np.ndarray],
    camera: Optional[CameraModel] = None,
    config: Optional[Dict] = None,
) -> DetectionPipeline:
    """Build a ready-to-run pipeline from one configuration dictionary.

    Args:
        reference_image: Image of the planar pattern
        camera: Calibrated camera; built from ``config["camera"]`` if omitted
        config: Dictionary shaped like :func:`markerless_ar.utils.get_config`

    Raises:
        InvalidPatternError: if the reference image is unusable
    """
    config = config or {}
    camera = camera or CameraModel.from_config(config.get("camera"))
    matcher = FeatureMatcher(config.get("feature_matching"))
    pattern = PatternDescriptor(matcher, config.get("pattern")).build(reference_image)
    estimator = HomographyEstimator(config.get("homography"))

    detection_cfg = dict(config.get("detection") or {})
    detection = DetectionConfig(
        reprojection_threshold=detection_cfg.get(
            "reprojection_threshold", estimator.config.reprojection_threshold
        ),
        refinement_enabled=detection_cfg.get("refinement_enabled", estimator.config.refine),
    )

    return DetectionPipeline(
        pattern,
        camera,
        matcher=matcher,
        homography_estimator=estimator,
        pose_estimator=PoseEstimator(camera),
        config=detection,
    )

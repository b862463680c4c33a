"""
Feature extraction and pattern matching.

Supports multiple detector/descriptor combinations:
- ORB (default, fast and robust)
- AKAZE (good for scale/rotation invariance)
- BRISK (balanced speed/accuracy)
- SIFT (most robust, float descriptors)
- Good Features to Track + ORB descriptors

Frame descriptors are matched against the reference pattern with a k=2
nearest-neighbour search and Lowe's ratio test.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple, Union

import cv2
import numpy as np

from ..frame import Frame, FrameAdapter

if TYPE_CHECKING:
    from ..pattern import PatternModel

LOGGER = logging.getLogger(__name__)


class DetectorType(Enum):
    """Supported feature detector types."""
    ORB = "orb"
    AKAZE = "akaze"
    BRISK = "brisk"
    SIFT = "sift"
    GFTT_ORB = "gftt_orb"  # Good Features To Track + ORB descriptors


class MatcherType(Enum):
    """Supported descriptor matcher types."""
    BRUTE_FORCE = "bf"  # Norm follows the descriptor type
    FLANN = "flann"  # Fast approximate matching


@dataclass
class MatcherConfiguration:
    """Configuration for feature extraction and matching."""

    # Detector selection
    method: str = "orb"

    # Common parameters
    max_features: int = 1000
    quality_level: float = 0.01
    min_distance: float = 7.0

    # ORB-specific
    fast_threshold: int = 20
    orb_scale_factor: float = 1.2
    orb_nlevels: int = 8
    orb_edge_threshold: int = 31
    orb_patch_size: int = 31

    # AKAZE-specific
    akaze_threshold: float = 0.001

    # BRISK-specific
    brisk_threshold: int = 30
    brisk_octaves: int = 3

    # SIFT-specific
    sift_contrast_threshold: float = 0.04
    sift_edge_threshold: float = 10.0

    # Matching
    matcher_type: str = "bf"
    use_ratio_test: bool = True
    ratio_threshold: float = 0.75  # Lowe's ratio test threshold
    max_match_distance: float = 64.0  # Used when the ratio test is off
    min_matches: int = 4

    def __post_init__(self):
        if not 0.0 < self.ratio_threshold <= 1.0:
            raise ValueError(f"ratio_threshold must be in (0, 1], got {self.ratio_threshold}")
        self.min_matches = max(int(self.min_matches), 0)


@dataclass
class FrameFeatures:
    """Keypoints and descriptors extracted from one image."""

    points: np.ndarray  # shape (N, 2), pixels
    descriptors: Optional[np.ndarray]  # shape (N, D)
    responses: np.ndarray = field(default_factory=lambda: np.empty((0,), dtype=np.float32))

    def __len__(self) -> int:
        return len(self.points)

    @classmethod
    def empty(cls) -> FrameFeatures:
        return cls(points=np.empty((0, 2), dtype=np.float32), descriptors=None)


@dataclass(frozen=True)
class Correspondence:
    """A pattern keypoint paired with a frame keypoint."""

    pattern_index: int
    frame_index: int
    confidence: float  # 1 - best / second-best distance


@dataclass
class MatchResult:
    """Correspondences for one frame, strongest first.

    ``pattern_points`` (pattern-plane units) and ``frame_points`` (pixels)
    are aligned with ``correspondences``.
    """

    correspondences: List[Correspondence] = field(default_factory=list)
    pattern_points: np.ndarray = field(default_factory=lambda: np.empty((0, 2), dtype=np.float64))
    frame_points: np.ndarray = field(default_factory=lambda: np.empty((0, 2), dtype=np.float64))
    frame_keypoint_count: int = 0

    def __len__(self) -> int:
        return len(self.correspondences)

    def __iter__(self):
        return iter(self.correspondences)

    @classmethod
    def from_points(cls, pattern_points, frame_points, confidences=None) -> MatchResult:
        """Build a match set directly from aligned point arrays."""
        src = np.asarray(pattern_points, dtype=np.float64).reshape(-1, 2)
        dst = np.asarray(frame_points, dtype=np.float64).reshape(-1, 2)
        if len(src) != len(dst):
            raise ValueError("Point arrays must have the same length.")
        if confidences is None:
            confidences = np.ones(len(src))
        correspondences = [
            Correspondence(pattern_index=i, frame_index=i, confidence=float(c))
            for i, c in enumerate(confidences)
        ]
        return cls(correspondences, src, dst, frame_keypoint_count=len(dst))


class FeatureDetectorFactory:
    """Factory for creating feature detectors and descriptor matchers."""

    @staticmethod
    def create_detector(
        detector_type: str,
        config: MatcherConfiguration,
    ) -> Tuple[Optional[cv2.Feature2D], cv2.Feature2D, str]:
        """
        Create detector and descriptor extractor.

        Returns:
            (detector, descriptor_extractor, matcher_norm)
        """
        dtype = DetectorType(detector_type.lower())

        if dtype is DetectorType.ORB:
            detector = cv2.ORB_create(
                nfeatures=config.max_features,
                scaleFactor=config.orb_scale_factor,
                nlevels=config.orb_nlevels,
                edgeThreshold=config.orb_edge_threshold,
                patchSize=config.orb_patch_size,
                fastThreshold=config.fast_threshold,
            )
            return detector, detector, "hamming"

        if dtype is DetectorType.AKAZE:
            detector = cv2.AKAZE_create(threshold=config.akaze_threshold)
            return detector, detector, "hamming"

        if dtype is DetectorType.BRISK:
            detector = cv2.BRISK_create(
                thresh=config.brisk_threshold,
                octaves=config.brisk_octaves,
            )
            return detector, detector, "hamming"

        if dtype is DetectorType.SIFT:
            detector = cv2.SIFT_create(
                nfeatures=config.max_features,
                contrastThreshold=config.sift_contrast_threshold,
                edgeThreshold=config.sift_edge_threshold,
            )
            return detector, detector, "l2"

        # Good Features To Track for detection, ORB for description
        descriptor = cv2.ORB_create(nfeatures=config.max_features)
        return None, descriptor, "hamming"

    @staticmethod
    def create_matcher(matcher_type: str, norm: str) -> cv2.DescriptorMatcher:
        """Create a descriptor matcher."""
        if MatcherType(matcher_type) is MatcherType.FLANN:
            if norm == "hamming":
                index_params = dict(
                    algorithm=6,  # FLANN_INDEX_LSH
                    table_number=6,
                    key_size=12,
                    multi_probe_level=1,
                )
            else:
                index_params = dict(algorithm=1, trees=5)  # FLANN_INDEX_KDTREE
            search_params = dict(checks=50)
            return cv2.FlannBasedMatcher(index_params, search_params)

        norm_type = cv2.NORM_HAMMING if norm == "hamming" else cv2.NORM_L2
        return cv2.BFMatcher(norm_type, crossCheck=False)


class FeatureMatcher:
    """
    Extracts keypoints from frames and matches them against a pattern.

    Matching is stateless: every call to :meth:`match` starts from scratch.
    """

    def __init__(self, config: Optional[Union[Dict, MatcherConfiguration]] = None):
        if isinstance(config, MatcherConfiguration):
            self.config = config
        else:
            cfg_dict = dict(config or {})
            self.config = MatcherConfiguration(**{
                k: v for k, v in cfg_dict.items()
                if k in MatcherConfiguration.__dataclass_fields__
            })

        self.detector, self.descriptor_extractor, self._norm = (
            FeatureDetectorFactory.create_detector(self.config.method, self.config)
        )
        self.matcher = FeatureDetectorFactory.create_matcher(
            self.config.matcher_type, self._norm
        )

        LOGGER.info(
            "FeatureMatcher initialized: detector=%s, matcher=%s, ratio=%.2f",
            self.config.method,
            self.config.matcher_type,
            self.config.ratio_threshold,
        )

    @property
    def method(self) -> str:
        return self.config.method.lower()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def extract(self, gray: np.ndarray) -> FrameFeatures:
        """Detect keypoints and compute descriptors on a grayscale image."""
        if gray is None or gray.size == 0:
            raise ValueError("Image cannot be empty.")
        if gray.ndim != 2:
            raise ValueError(f"Expected a single-channel image, got shape {gray.shape}.")

        keypoints, descriptors = self._detect_features(gray)
        if not keypoints or descriptors is None or len(descriptors) == 0:
            return FrameFeatures.empty()

        return FrameFeatures(
            points=self._keypoints_to_array(keypoints),
            descriptors=descriptors,
            responses=np.array([kp.response for kp in keypoints], dtype=np.float32),
        )

    def match(self, frame: Union[Frame, np.ndarray], pattern: PatternModel) -> MatchResult:
        """Match the keypoints of ``frame`` against the reference pattern.

        Returns an empty :class:`MatchResult` when fewer than
        ``min_matches`` distinctive matches survive filtering.
        """
        if pattern.detector != self.method:
            raise ValueError(
                f"Pattern was built with '{pattern.detector}' features, "
                f"matcher uses '{self.method}'."
            )

        if isinstance(frame, Frame):
            gray = FrameAdapter.to_grayscale(frame)
        else:
            gray = FrameAdapter.to_grayscale(FrameAdapter.from_image(frame))

        features = self.extract(gray)
        return self.match_features(features, pattern)

    def match_features(self, features: FrameFeatures, pattern: PatternModel) -> MatchResult:
        """Match already extracted frame features against the pattern."""
        if features.descriptors is None or len(features) == 0:
            return MatchResult(frame_keypoint_count=len(features))

        candidates = self._knn_candidates(features.descriptors, pattern.descriptors)
        correspondences = self._one_to_one(candidates)

        if len(correspondences) < self.config.min_matches:
            LOGGER.debug(
                "Only %d distinctive matches (need %d)",
                len(correspondences),
                self.config.min_matches,
            )
            return MatchResult(frame_keypoint_count=len(features))

        pattern_idx = [c.pattern_index for c in correspondences]
        frame_idx = [c.frame_index for c in correspondences]
        return MatchResult(
            correspondences=correspondences,
            pattern_points=pattern.plane_points[pattern_idx].astype(np.float64),
            frame_points=features.points[frame_idx].astype(np.float64),
            frame_keypoint_count=len(features),
        )

    # ------------------------------------------------------------------ #
    # Feature Detection
    # ------------------------------------------------------------------ #
    def _detect_features(self, gray: np.ndarray) -> Tuple[List[cv2.KeyPoint], Optional[np.ndarray]]:
        """Detect features using the configured detector."""
        if self.detector is not None:
            keypoints = self.detector.detect(gray, None)
            # Limit to max_features by response
            if len(keypoints) > self.config.max_features:
                keypoints = sorted(keypoints, key=lambda x: x.response, reverse=True)
                keypoints = keypoints[:self.config.max_features]
        else:
            corners = cv2.goodFeaturesToTrack(
                gray,
                maxCorners=self.config.max_features,
                qualityLevel=self.config.quality_level,
                minDistance=self.config.min_distance,
            )
            if corners is None:
                return [], None
            keypoints = [
                cv2.KeyPoint(x=float(pt[0][0]), y=float(pt[0][1]), size=31)
                for pt in corners
            ]

        if not keypoints:
            return [], None
        keypoints, descriptors = self.descriptor_extractor.compute(gray, keypoints)
        return list(keypoints or []), descriptors

    # ------------------------------------------------------------------ #
    # Matching
    # ------------------------------------------------------------------ #
    def _knn_candidates(
        self,
        frame_descriptors: np.ndarray,
        pattern_descriptors: np.ndarray,
    ) -> List[Correspondence]:
        """Nearest pattern keypoint for every distinctive frame keypoint."""
        candidates: List[Correspondence] = []

        if not self.config.use_ratio_test:
            for m in self.matcher.match(frame_descriptors, pattern_descriptors):
                if m.distance <= self.config.max_match_distance:
                    confidence = 1.0 - m.distance / max(self.config.max_match_distance, 1e-9)
                    candidates.append(Correspondence(m.trainIdx, m.queryIdx, float(confidence)))
            return candidates

        knn_matches = self.matcher.knnMatch(frame_descriptors, pattern_descriptors, k=2)
        for match_pair in knn_matches:
            if len(match_pair) < 2:
                # A single neighbour says nothing about ambiguity
                continue
            m, n = match_pair[0], match_pair[1]
            if m.distance < self.config.ratio_threshold * n.distance:
                confidence = 1.0 - m.distance / n.distance
                candidates.append(Correspondence(m.trainIdx, m.queryIdx, float(confidence)))
        return candidates

    @staticmethod
    def _one_to_one(candidates: List[Correspondence]) -> List[Correspondence]:
        """Keep the strongest correspondence per frame and per pattern keypoint."""
        ordered = sorted(
            candidates,
            key=lambda c: (-c.confidence, c.frame_index, c.pattern_index),
        )
        used_frame = set()
        used_pattern = set()
        kept: List[Correspondence] = []
        for c in ordered:
            if c.frame_index in used_frame or c.pattern_index in used_pattern:
                continue
            used_frame.add(c.frame_index)
            used_pattern.add(c.pattern_index)
            kept.append(c)
        return kept

    # ------------------------------------------------------------------ #
    # Utilities
    # ------------------------------------------------------------------ #
    @staticmethod
    def _keypoints_to_array(keypoints: Optional[List[cv2.KeyPoint]]) -> np.ndarray:
        if not keypoints:
            return np.empty((0, 2), dtype=np.float32)
        return np.array([kp.pt for kp in keypoints], dtype=np.float32)

"""
markerless_ar - planar pattern detection and pose estimation.

This package provides functionality for:
- Wrapping raw camera frames
- Describing a reference pattern by its keypoints
- Matching frame features against the pattern
- Robust homography estimation
- Pattern pose recovery from the homography
"""

from .camera import CameraIntrinsics, CameraModel
from .frame import ColorLayout, Frame, FrameAdapter
from .homography import Homography, HomographyConfiguration, HomographyEstimator
from .pattern import PatternConfiguration, PatternDescriptor, PatternModel
from .pipeline import (
    DetectionConfig,
    DetectionPipeline,
    DetectionResult,
    PipelineState,
    create_marker_detection,
)
from .pose import PoseEstimator, Transformation
from .results import Found, InvalidPatternError, NotFound, NotFoundReason
from .tracking import Correspondence, FeatureMatcher, MatcherConfiguration, MatchResult

__version__ = "0.1.0"

__all__ = [
    # Camera & frames
    "CameraIntrinsics",
    "CameraModel",
    "ColorLayout",
    "Frame",
    "FrameAdapter",
    # Pattern & matching
    "PatternConfiguration",
    "PatternDescriptor",
    "PatternModel",
    "Correspondence",
    "FeatureMatcher",
    "MatcherConfiguration",
    "MatchResult",
    # Geometry
    "Homography",
    "HomographyConfiguration",
    "HomographyEstimator",
    "PoseEstimator",
    "Transformation",
    # Pipeline
    "DetectionConfig",
    "DetectionPipeline",
    "DetectionResult",
    "PipelineState",
    "create_marker_detection",
    # Results
    "Found",
    "InvalidPatternError",
    "NotFound",
    "NotFoundReason",
]

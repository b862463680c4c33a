"""
Tracking subpackage.

Provides feature extraction and pattern matching with multiple
detector/descriptor combinations.

Supported detectors:
- ORB (default, fast and robust)
- AKAZE (scale/rotation invariant)
- BRISK (balanced)
- SIFT (most robust)
- GFTT + ORB (Good Features To Track with ORB descriptors)
"""

from .feature import (
    Correspondence,
    DetectorType,
    FeatureDetectorFactory,
    FeatureMatcher,
    FrameFeatures,
    MatcherConfiguration,
    MatcherType,
    MatchResult,
)

__all__ = [
    "Correspondence",
    "DetectorType",
    "FeatureDetectorFactory",
    "FeatureMatcher",
    "FrameFeatures",
    "MatcherConfiguration",
    "MatcherType",
    "MatchResult",
]

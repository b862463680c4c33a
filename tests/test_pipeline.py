"""
Integration tests for the detection pipeline.

Runs the complete match -> homography -> pose chain on synthetic frames
rendered from a textured reference pattern.
"""

from __future__ import annotations

import os
import sys
import unittest

import cv2
import numpy as np
import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))
sys.path.append(os.path.dirname(__file__))

from markerless_ar.camera import CameraIntrinsics, CameraModel  # type: ignore
from markerless_ar.frame import ColorLayout, FrameAdapter  # type: ignore
from markerless_ar.pattern import PatternDescriptor  # type: ignore
from markerless_ar.pipeline import (  # type: ignore
    DetectionConfig,
    DetectionPipeline,
    PipelineState,
    create_marker_detection,
)
from markerless_ar.pose import rotation_angle_between  # type: ignore
from markerless_ar.results import InvalidPatternError, NotFoundReason  # type: ignore
from markerless_ar.tracking.feature import FeatureMatcher  # type: ignore
from markerless_ar.utils import get_config  # type: ignore
from synthetic import (  # type: ignore
    CAMERA_MATRIX,
    apply_homography,
    make_noise_image,
    make_pattern_image,
    pose_homography,
    rotation_from_vector,
)


class TestDetectionPipeline(unittest.TestCase):
    """End-to-end detection on synthetic frames."""

    @classmethod
    def setUpClass(cls):
        cls.image = make_pattern_image(640, 480)
        cls.camera = CameraModel(CameraIntrinsics.from_matrix(CAMERA_MATRIX))
        cls.matcher = FeatureMatcher({"method": "orb"})
        cls.pattern = PatternDescriptor(cls.matcher).build(cls.image)

    def make_pipeline(self, **config) -> DetectionPipeline:
        return DetectionPipeline(
            self.pattern,
            self.camera,
            matcher=self.matcher,
            config=DetectionConfig(**config) if config else None,
        )

    def render_pose(self, rotation, translation) -> np.ndarray:
        """Warp the reference image as seen by the camera from a known pose."""
        H_plane = pose_homography(rotation, translation)
        warp = H_plane @ self.pattern.pixel_to_plane
        return cv2.warpPerspective(self.image, warp, (640, 480))

    def test_initial_state_is_idle(self):
        pipeline = self.make_pipeline()
        self.assertIs(pipeline.state, PipelineState.IDLE)
        self.assertFalse(pipeline.is_pattern_present)
        self.assertEqual(pipeline.transformations, [])

    def test_unmodified_reference_is_found_head_on(self):
        """The reference itself sits straight ahead at the expected standoff."""
        pipeline = self.make_pipeline()
        result = pipeline.process(self.image)

        self.assertTrue(result.present)
        self.assertTrue(pipeline.is_pattern_present)
        self.assertIs(pipeline.state, PipelineState.TRACKING)
        self.assertEqual(len(pipeline.transformations), 1)

        pose = result.transformation
        self.assertLess(rotation_angle_between(pose.rotation, np.eye(3)), 1.0)
        # 2 plane units across 640 px at f = 800 px
        expected = np.array([0.0, 0.0, 800.0 * 2.0 / 640.0])
        self.assertLess(np.linalg.norm(pose.translation - expected), 0.01 * expected[2])

        np.testing.assert_allclose(result.corners, self.pattern.corners_2d, atol=1.0)

    def test_noise_frame_is_not_present(self):
        """A fully occluded pattern is simply absent."""
        pipeline = self.make_pipeline()
        result = pipeline.process(make_noise_image())

        self.assertFalse(result.present)
        self.assertIsNone(result.transformation)
        self.assertIsNotNone(result.reason)
        self.assertIs(pipeline.state, PipelineState.SEARCHING)

    def test_blank_frame_has_insufficient_correspondences(self):
        pipeline = self.make_pipeline()
        result = pipeline.process(np.zeros((480, 640, 3), dtype=np.uint8))

        self.assertFalse(result.present)
        self.assertLess(result.match_count, 4)
        self.assertIs(result.reason, NotFoundReason.INSUFFICIENT_CORRESPONDENCES)
        self.assertEqual(pipeline.transformations, [])

    def test_recovers_pose_of_warped_pattern(self):
        rotation = rotation_from_vector([0.25, 0.1, 0.05])
        translation = np.array([0.1, -0.05, 4.0])
        frame = self.render_pose(rotation, translation)

        result = self.make_pipeline().process(frame)
        self.assertTrue(result.present)
        self.assertGreaterEqual(result.inlier_count, 8)

        pose = result.transformation
        self.assertLess(rotation_angle_between(pose.rotation, rotation), 3.0)
        relative = np.linalg.norm(pose.translation - translation) / np.linalg.norm(translation)
        self.assertLess(relative, 0.05)

        expected_corners = apply_homography(pose_homography(rotation, translation), self.pattern.corners_plane)
        np.testing.assert_allclose(result.corners, expected_corners, atol=5.0)

    def test_process_is_idempotent(self):
        pipeline = self.make_pipeline()
        frame = self.render_pose(rotation_from_vector([0.0, 0.2, 0.0]), np.array([0.0, 0.0, 3.5]))

        first = pipeline.process(frame)
        second = pipeline.process(frame)

        self.assertEqual(first.present, second.present)
        self.assertTrue(first.present)
        np.testing.assert_array_equal(first.transformation.rotation, second.transformation.rotation)
        np.testing.assert_array_equal(first.transformation.translation, second.transformation.translation)

    def test_each_frame_is_independent(self):
        """A miss in between does not affect the next detection."""
        pipeline = self.make_pipeline()
        before = pipeline.process(self.image)
        pipeline.process(make_noise_image())
        after = pipeline.process(self.image)

        self.assertTrue(after.present)
        np.testing.assert_array_equal(before.transformation.translation, after.transformation.translation)

    def test_accepts_wrapped_bgra_buffer(self):
        bgra = cv2.cvtColor(self.image, cv2.COLOR_BGR2BGRA)
        frame = FrameAdapter.wrap(bgra.tobytes(), 640, 480, ColorLayout.BGRA)
        self.assertTrue(self.make_pipeline().process(frame).present)

    def test_malformed_frame_raises(self):
        with self.assertRaises(ValueError):
            self.make_pipeline().process(np.zeros((0, 0, 3), dtype=np.uint8))

    def test_detector_mismatch_is_rejected(self):
        with self.assertRaises(InvalidPatternError):
            DetectionPipeline(self.pattern, self.camera, matcher=FeatureMatcher({"method": "brisk"}))


class TestLiveConfiguration(unittest.TestCase):
    """Runtime tuning of threshold and refinement."""

    @classmethod
    def setUpClass(cls):
        cls.camera = CameraModel(CameraIntrinsics.from_matrix(CAMERA_MATRIX))
        cls.pipeline_image = make_pattern_image(320, 240, seed=5)

    def setUp(self):
        self.pipeline = create_marker_detection(self.pipeline_image, self.camera, get_config())

    def test_defaults_come_from_config(self):
        config = self.pipeline.config
        self.assertEqual(config.reprojection_threshold, 3.0)
        self.assertTrue(config.refinement_enabled)

    def test_threshold_is_clamped(self):
        self.assertEqual(DetectionConfig(reprojection_threshold=42.0).reprojection_threshold, 10.0)
        self.assertEqual(self.pipeline.update_config(reprojection_threshold=-3.0).reprojection_threshold, 0.0)

    def test_adjust_threshold_steps_and_clamps(self):
        self.assertAlmostEqual(self.pipeline.adjust_threshold(0.2), 3.2)
        self.assertAlmostEqual(self.pipeline.adjust_threshold(-0.4), 2.8)
        for _ in range(60):
            self.pipeline.adjust_threshold(0.2)
        self.assertEqual(self.pipeline.config.reprojection_threshold, 10.0)

    def test_toggle_refinement(self):
        self.assertFalse(self.pipeline.toggle_refinement())
        self.assertTrue(self.pipeline.toggle_refinement())

    def test_config_snapshot_is_reported(self):
        self.pipeline.update_config(refinement_enabled=False, reprojection_threshold=4.0)
        result = self.pipeline.process(self.pipeline_image)
        self.assertFalse(result.config.refinement_enabled)
        self.assertEqual(result.config.reprojection_threshold, 4.0)
        self.assertTrue(result.present)
        self.assertFalse(result.homography.refined)

    def test_config_values_are_immutable(self):
        with self.assertRaises(Exception):
            self.pipeline.config.reprojection_threshold = 1.0


@pytest.mark.parametrize("threshold", [1.0, 3.0, 6.0])
def test_reference_found_across_thresholds(threshold):
    image = make_pattern_image()
    camera = CameraModel(CameraIntrinsics.from_matrix(CAMERA_MATRIX))
    pipeline = create_marker_detection(image, camera, get_config())
    pipeline.update_config(reprojection_threshold=threshold)
    assert pipeline.process(image).present


def test_featureless_reference_is_fatal():
    with pytest.raises(InvalidPatternError):
        create_marker_detection(np.full((120, 160, 3), 200, dtype=np.uint8), config=get_config())


if __name__ == "__main__":
    unittest.main()

"""
Tests for the pinhole camera model.
"""

import os
import sys
import unittest

import numpy as np

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from markerless_ar.camera import CameraIntrinsics, CameraModel  # type: ignore


class TestCameraIntrinsics(unittest.TestCase):
    """Construction-time validation of the intrinsics."""

    def test_rejects_non_positive_focal_length(self):
        with self.assertRaises(ValueError):
            CameraIntrinsics(fx=0.0, fy=800.0, cx=320.0, cy=240.0)
        with self.assertRaises(ValueError):
            CameraIntrinsics(fx=800.0, fy=-1.0, cx=320.0, cy=240.0)

    def test_rejects_non_finite_values(self):
        with self.assertRaises(ValueError):
            CameraIntrinsics(fx=800.0, fy=800.0, cx=float("nan"), cy=240.0)

    def test_matrix_round_trip(self):
        matrix = [[700.0, 0.0, 300.0], [0.0, 710.0, 200.0], [0.0, 0.0, 1.0]]
        intrinsics = CameraIntrinsics.from_matrix(matrix)
        self.assertEqual(intrinsics.fy, 710.0)
        np.testing.assert_allclose(intrinsics.as_matrix(), np.array(matrix))


class TestCameraModel(unittest.TestCase):
    """Projection and unprojection with a pinhole model."""

    def setUp(self):
        self.camera = CameraModel(CameraIntrinsics(fx=800.0, fy=780.0, cx=320.0, cy=240.0))

    def test_project_known_point(self):
        pixel = self.camera.project([0.5, -0.25, 2.0])
        np.testing.assert_allclose(pixel, [320.0 + 800.0 * 0.25, 240.0 - 780.0 * 0.125])

    def test_project_rejects_points_behind_camera(self):
        with self.assertRaises(ValueError):
            self.camera.project([[0.0, 0.0, 1.0], [0.0, 0.0, -1.0]])

    def test_unproject_inverts_project(self):
        points = np.array([[0.1, 0.2, 3.0], [-0.4, 0.05, 1.5]])
        pixels = self.camera.project(points)
        recovered = self.camera.unproject(pixels, points[:, 2])
        np.testing.assert_allclose(recovered, points, atol=1e-12)

    def test_principal_point_unprojects_onto_axis(self):
        point = self.camera.unproject([320.0, 240.0], 5.0)
        np.testing.assert_allclose(point, [0.0, 0.0, 5.0])

    def test_intrinsics_matrix_is_a_copy(self):
        K = self.camera.intrinsics_matrix()
        K[0, 0] = 1.0
        self.assertEqual(self.camera.intrinsics_matrix()[0, 0], 800.0)

    def test_from_config_accepts_camera_matrix(self):
        camera = CameraModel.from_config({
            "camera_matrix": [[600.0, 0.0, 310.0], [0.0, 600.0, 250.0], [0.0, 0.0, 1.0]],
        })
        self.assertEqual(camera.intrinsics.cx, 310.0)

    def test_from_config_defaults(self):
        camera = CameraModel.from_config(None)
        self.assertAlmostEqual(camera.intrinsics.fx, 545.3156, places=3)

    def test_projection_matrix_matches_pixel_projection(self):
        width, height = 640, 480
        proj = self.camera.projection_matrix(width, height, near=0.1, far=50.0)
        point = np.array([0.3, -0.2, 2.5])
        u, v = self.camera.project(point)

        eye = np.array([point[0], -point[1], -point[2], 1.0])
        clip = proj @ eye
        ndc = clip[:3] / clip[3]
        self.assertAlmostEqual(ndc[0], 2.0 * u / width - 1.0, places=9)
        self.assertAlmostEqual(ndc[1], 1.0 - 2.0 * v / height, places=9)
        self.assertTrue(-1.0 < ndc[2] < 1.0)

    def test_projection_matrix_validates_planes(self):
        with self.assertRaises(ValueError):
            self.camera.projection_matrix(640, 480, near=1.0, far=0.5)


if __name__ == "__main__":
    unittest.main()

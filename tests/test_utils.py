"""
Tests for configuration helpers.
"""

import json
import os
import sys
import tempfile
import unittest

sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from markerless_ar.utils import (  # type: ignore
    REQUIRED_SECTIONS,
    default_config,
    get_config,
    save_config,
    validate_config,
)


class TestConfig(unittest.TestCase):
    """Loading, saving and validating configuration dictionaries."""

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "config.json")

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_defaults_are_valid(self):
        config = get_config()
        for section in REQUIRED_SECTIONS:
            self.assertIn(section, config)
        self.assertTrue(validate_config(config))

    def test_defaults_are_independent_copies(self):
        first = default_config()
        first["homography"]["min_inliers"] = 99
        self.assertEqual(default_config()["homography"]["min_inliers"], 8)

    def test_file_values_merge_over_defaults(self):
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump({"homography": {"reprojection_threshold": 5.0}, "extra": 1}, f)

        config = get_config(self.path)
        self.assertEqual(config["homography"]["reprojection_threshold"], 5.0)
        self.assertTrue(config["homography"]["refine"])
        self.assertEqual(config["extra"], 1)

    def test_missing_file_falls_back_to_defaults(self):
        config = get_config(os.path.join(self.tmpdir.name, "missing.json"))
        self.assertEqual(config, default_config())

    def test_corrupt_file_falls_back_to_defaults(self):
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")
        self.assertEqual(get_config(self.path), default_config())

    def test_save_round_trip(self):
        config = default_config()
        config["camera"]["fx"] = 700.0
        self.assertTrue(save_config(config, self.path))
        self.assertEqual(get_config(self.path)["camera"]["fx"], 700.0)

    def test_save_to_unwritable_path(self):
        target = os.path.join(self.tmpdir.name, "no", "such", "dir", "config.json")
        self.assertFalse(save_config(default_config(), target))

    def test_validation_failures(self):
        config = default_config()
        del config["pattern"]
        self.assertFalse(validate_config(config))

        config = default_config()
        config["camera"]["fx"] = 0.0
        self.assertFalse(validate_config(config))

        config = default_config()
        config["detection"]["reprojection_threshold"] = 12.0
        self.assertFalse(validate_config(config))

        config = default_config()
        config["feature_matching"]["ratio_threshold"] = 1.5
        self.assertFalse(validate_config(config))


if __name__ == "__main__":
    unittest.main()

"""
Shared helper functions and utilities.

Logging setup and the configuration dictionary consumed by
:func:`markerless_ar.pipeline.create_marker_detection`.
"""

import copy
import json
import logging
import os

from .camera import DEFAULT_INTRINSICS

LOGGER = logging.getLogger(__name__)

REQUIRED_SECTIONS = ("camera", "pattern", "feature_matching", "homography", "detection")


def setup_logging(level=logging.INFO):
    """Set up logging configuration.

    Args:
        level: Logging level (default: INFO)
    """
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    LOGGER.info("Logging initialized")


def default_config():
    """Return a fresh copy of the default configuration."""
    return copy.deepcopy({
        # Pinhole intrinsics, pixels
        'camera': dict(DEFAULT_INTRINSICS),

        # Reference pattern
        'pattern': {
            'physical_size': 2.0,  # longer side, pattern-plane units
            'min_keypoints': 4,
        },

        'feature_matching': {
            # Detector selection: 'orb', 'akaze', 'brisk', 'sift', 'gftt_orb'
            'method': 'orb',
            'max_features': 1000,
            'fast_threshold': 20,
            'orb_scale_factor': 1.2,
            'orb_nlevels': 8,

            # Matching
            'matcher_type': 'bf',  # 'bf', 'flann'
            'use_ratio_test': True,
            'ratio_threshold': 0.75,  # Lowe's ratio test
            'min_matches': 4,
        },

        'homography': {
            'reprojection_threshold': 3.0,  # pixels, clamped to [0, 10]
            'refine': True,
            'refinement_iterations': 3,
            'max_iterations': 2000,
            'min_inliers': 8,
            'min_inlier_ratio': 0.25,
            'random_seed': 0,
        },

        # Live-tunable values, seeded from the homography section if absent
        'detection': {
            'reprojection_threshold': 3.0,
            'refinement_enabled': True,
        },
    })


def get_config(config_path=None):
    """Load configuration from file or return defaults.

    Sections found in the file are merged key by key over the defaults.

    Args:
        config_path: Path to a JSON configuration file (optional)

    Returns:
        dict: Configuration dictionary
    """
    config = default_config()

    if config_path and os.path.exists(config_path):
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                loaded_config = json.load(f)
        except (OSError, ValueError) as e:
            LOGGER.warning("Failed to load config from %s: %s", config_path, e)
            return config

        for key, value in loaded_config.items():
            if isinstance(value, dict) and isinstance(config.get(key), dict):
                config[key].update(value)
            else:
                config[key] = value
        LOGGER.info("Configuration loaded from %s", config_path)
    elif config_path:
        LOGGER.warning("Config file %s not found, using defaults", config_path)

    return config


def save_config(config, config_path):
    """Save configuration to file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration file

    Returns:
        bool: True if save successful, False otherwise
    """
    try:
        with open(config_path, 'w', encoding='utf-8') as f:
            json.dump(config, f, indent=4)
        LOGGER.info("Configuration saved to %s", config_path)
        return True
    except OSError as e:
        LOGGER.error("Failed to save config to %s: %s", config_path, e)
        return False


def validate_config(config):
    """Validate configuration parameters.

    Args:
        config: Configuration dictionary

    Returns:
        bool: True if valid, False otherwise
    """
    for key in REQUIRED_SECTIONS:
        if key not in config:
            LOGGER.error("Missing required config section: %s", key)
            return False

    camera = config['camera']
    if camera.get('camera_matrix') is None:
        if camera.get('fx', 0) <= 0 or camera.get('fy', 0) <= 0:
            LOGGER.error("Focal lengths must be positive")
            return False

    threshold = config['detection'].get('reprojection_threshold', 0.0)
    if not 0.0 <= threshold <= 10.0:
        LOGGER.error("Reprojection threshold must be within [0, 10], got %s", threshold)
        return False

    ratio = config['feature_matching'].get('ratio_threshold', 0.75)
    if not 0.0 < ratio <= 1.0:
        LOGGER.error("Ratio threshold must be within (0, 1], got %s", ratio)
        return False

    LOGGER.info("Configuration validated successfully")
    return True

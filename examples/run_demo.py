"""
Demo script for running the markerless pattern detector.

Detects a reference pattern in a live camera feed, a recorded video or a
single still image (processed in a loop) and draws the detected outline and
pattern axes.

Usage:
    python run_demo.py pattern.png                 # Live camera
    python run_demo.py pattern.png clip.mp4        # Recorded video
    python run_demo.py pattern.png scene.jpg       # Single image in a loop

Controls:
    +/-    - Raise/lower the RANSAC reprojection threshold
    h      - Toggle homography refinement
    q/ESC  - Quit
"""

import argparse
import logging
import os
import sys

import cv2

# Add src directory to path for imports
sys.path.append(os.path.join(os.path.dirname(__file__), "..", "src"))

from markerless_ar import DetectionPipeline, DetectionResult, InvalidPatternError  # noqa: E402
from markerless_ar.pipeline import create_marker_detection  # noqa: E402
from markerless_ar.utils import get_config, setup_logging  # noqa: E402

LOGGER = logging.getLogger(__name__)

WINDOW_NAME = "Markerless AR"

IMAGE_EXTENSIONS = {".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".webp"}


def is_still_image(path) -> bool:
    """Whether the input should be read as a single image rather than a video."""
    return bool(path) and os.path.splitext(path)[1].lower() in IMAGE_EXTENSIONS


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Markerless AR pattern detection demo")
    parser.add_argument("pattern", help="Reference pattern image")
    parser.add_argument("input", nargs="?", help="Video file or still image (default: camera 0)")
    parser.add_argument("--config", "-c", help="JSON configuration file")
    parser.add_argument("--verbose", "-V", action="store_true", help="Enable debug logging")
    return parser.parse_args()


def _draw_result(frame, result: DetectionResult, pipeline: DetectionPipeline):
    config = result.config
    status = "Refinement: On ('h' to switch off)" if config.refinement_enabled else "Refinement: Off ('h' to switch on)"
    cv2.putText(frame, status, (10, 15), cv2.FONT_HERSHEY_PLAIN, 1, (0, 200, 0))
    cv2.putText(
        frame,
        f"RANSAC threshold: {config.reprojection_threshold:.1f} (use '-'/'+' to adjust)",
        (10, 30),
        cv2.FONT_HERSHEY_PLAIN,
        1,
        (0, 200, 0),
    )

    if not result.present:
        return

    outline = result.corners.astype(int).reshape(-1, 1, 2)
    cv2.polylines(frame, [outline], True, (0, 255, 255), 2, cv2.LINE_AA)

    axes = pipeline.pose_estimator.project_axes(result.transformation)
    if axes is None:
        return
    origin = tuple(int(c) for c in axes[0])
    for end, color in zip(axes[1:], ((0, 0, 255), (0, 255, 0), (255, 0, 0))):
        cv2.line(frame, origin, tuple(int(c) for c in end), color, 2, cv2.LINE_AA)


def _handle_key(key: int, pipeline: DetectionPipeline) -> bool:
    """Apply a keypress to the pipeline; returns True to quit."""
    if key in (ord("+"), ord("=")):
        pipeline.adjust_threshold(+0.2)
    elif key == ord("-"):
        pipeline.adjust_threshold(-0.2)
    elif key == ord("h"):
        pipeline.toggle_refinement()
    elif key in (27, ord("q")):
        return True
    return False


def run(pipeline: DetectionPipeline, next_frame):
    while True:
        frame = next_frame()
        if frame is None:
            break
        result = pipeline.process(frame)
        canvas = frame.copy()
        _draw_result(canvas, result, pipeline)
        cv2.imshow(WINDOW_NAME, canvas)
        if _handle_key(cv2.waitKey(5) & 0xFF, pipeline):
            break
    cv2.destroyAllWindows()


def main():
    args = parse_args()
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    config = get_config(args.config)

    pattern_image = cv2.imread(args.pattern)
    if pattern_image is None:
        LOGGER.error("Cannot read pattern image %s", args.pattern)
        sys.exit(1)

    try:
        pipeline = create_marker_detection(pattern_image, config=config)
    except InvalidPatternError as e:
        LOGGER.error("Unusable pattern: %s", e)
        sys.exit(1)

    if is_still_image(args.input):
        still = cv2.imread(args.input)
        if still is None:
            LOGGER.error("Cannot read image %s", args.input)
            sys.exit(1)
        run(pipeline, lambda: still)
        return

    capture = cv2.VideoCapture(args.input if args.input else 0)
    if not capture.isOpened():
        LOGGER.error("Cannot open video source %s", args.input or "camera 0")
        sys.exit(1)

    def read_frame():
        ok, frame = capture.read()
        return frame if ok else None

    try:
        run(pipeline, read_frame)
    finally:
        capture.release()


if __name__ == "__main__":
    main()

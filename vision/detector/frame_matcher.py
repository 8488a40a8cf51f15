"""Template location and whole-frame similarity.

match_template() finds the best top-left alignment of a grayscale template
inside a grayscale frame using normalized cross-correlation
(TM_CCOEFF_NORMED). similarity() compares two same-sized BGR frames and
reports the fraction of pixels that match within a small per-channel
tolerance, e.g. to tell when a screen has stopped animating.
"""

import cv2
import numpy as np


# Per-channel absolute difference at or above this counts as "different".
# Below it is capture noise / compression jitter.
DIFF_NOISE_FLOOR = 20


class DimensionMismatch(ValueError):
    """Two frames that must share a shape do not."""


def match_template_scored(frame: np.ndarray, template: np.ndarray
                          ) -> tuple[tuple[int, int], float]:
    """Best top-left (x, y) and its TM_CCOEFF_NORMED score.

    Ties resolve to the first maximum in OpenCV's scan order. A template
    larger than the frame scores 0.0 at (0, 0).
    """
    fh, fw = frame.shape[:2]
    th, tw = template.shape[:2]
    if th > fh or tw > fw:
        return (0, 0), 0.0

    result = cv2.matchTemplate(frame, template, cv2.TM_CCOEFF_NORMED)
    _, max_val, _, max_loc = cv2.minMaxLoc(result)
    return (int(max_loc[0]), int(max_loc[1])), float(max_val)


def match_template(frame: np.ndarray, template: np.ndarray,
                   threshold: float = 0.9) -> tuple[int, int] | None:
    """Top-left (x, y) of the template in frame, or None below threshold.

    Args:
        frame: Grayscale image that may contain the template.
        template: Grayscale template to scan for.
        threshold: Minimum match score required (0.0-1.0).
    """
    loc, score = match_template_scored(frame, template)
    if score < threshold:
        return None
    return loc


def similarity(frame_a: np.ndarray, frame_b: np.ndarray) -> float:
    """Fraction (0.0-1.0) of pixels that match between two BGR frames.

    A pixel channel differs when its absolute difference is >= 20. Differing
    counts are averaged across the three channels and divided by the pixel
    count, so 1.0 means identical (up to noise).

    Raises:
        DimensionMismatch: the frames differ in size or channel count.
    """
    if frame_a.shape != frame_b.shape:
        raise DimensionMismatch(
            f'cannot compare frames of shape {frame_a.shape} and {frame_b.shape}')

    diff = cv2.absdiff(frame_a, frame_b)
    different = diff >= DIFF_NOISE_FLOOR
    if different.ndim == 3:
        per_channel = different.reshape(-1, different.shape[2]).sum(axis=0)
        nonzero = float(np.mean(per_channel))
    else:
        nonzero = float(np.sum(different))

    h, w = frame_a.shape[:2]
    return 1.0 - nonzero / (h * w)

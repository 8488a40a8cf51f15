"""Resolution normalization for regions and frames.

Detection regions and templates are authored once against a reference
resolution (1280x720). Captures arrive at whatever resolution the stream
uses, so every Rect must be carried into the frame's space (or the frame
into the reference space) before the two are combined.

Key functions:
  rescale_rect(rect, from_res, to_res)    -> Rect in the target space
  rescale_frame(frame, from_res, to_res)  -> bicubic-resized frame
  rescale(x, from_res, to_res)            -> dispatch on Rect vs ndarray
  crop(frame, rect)                       -> pixels under a same-space rect
"""

from typing import NamedTuple

import cv2
import numpy as np


class Resolution(NamedTuple):
    width: int
    height: int


class Rect(NamedTuple):
    x: int
    y: int
    width: int
    height: int


REFERENCE_RESOLUTION = Resolution(1280, 720)


def frame_resolution(frame: np.ndarray) -> Resolution:
    """Resolution of a frame array (height-major numpy shape)."""
    h, w = frame.shape[:2]
    return Resolution(w, h)


def rescale_rect(rect: Rect, from_res: Resolution, to_res: Resolution) -> Rect:
    """Scale a rectangle's position and size into another resolution.

    Width and height ratios are applied independently. Coordinates are
    truncated to int so regressions reproduce pixel-for-pixel.
    """
    if from_res == to_res:
        return rect

    sx = to_res.width / from_res.width
    sy = to_res.height / from_res.height
    return Rect(
        int(rect.x * sx),
        int(rect.y * sy),
        int(rect.width * sx),
        int(rect.height * sy),
    )


def rescale_frame(frame: np.ndarray, from_res: Resolution,
                  to_res: Resolution) -> np.ndarray:
    """Resize a whole frame into another resolution (bicubic)."""
    if from_res == to_res:
        return frame
    return cv2.resize(frame, (to_res.width, to_res.height),
                      interpolation=cv2.INTER_CUBIC)


def rescale(region_or_frame, from_res: Resolution, to_res: Resolution):
    """Rescale either a Rect or a frame between resolutions."""
    if isinstance(region_or_frame, Rect):
        return rescale_rect(region_or_frame, from_res, to_res)
    return rescale_frame(region_or_frame, from_res, to_res)


def crop(frame: np.ndarray, rect: Rect) -> np.ndarray:
    """Pixels under rect, clamped to the frame bounds.

    The rect must already be in the frame's resolution space.
    """
    fh, fw = frame.shape[:2]
    x1 = max(0, rect.x)
    y1 = max(0, rect.y)
    x2 = min(fw, rect.x + rect.width)
    y2 = min(fh, rect.y + rect.height)
    return frame[y1:y2, x1:x2]

"""Prepare captured frames for OCR.

Tesseract wants near-binary, high-contrast glyphs roughly 30-70 px tall.
Captures range from 480p (often a stretched 4:3 source) to 1080p, so the
scale, gamma and threshold are chosen from the frame's height tier.

  frame (BGR) -> [4:3 stretch] -> gray -> upscale -> gamma -> binarize
"""

import json
from dataclasses import dataclass, fields

import cv2
import numpy as np


# ── Tuning table ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PrepConfig:
    gamma: float = 2.5
    threshold: int = 56

    # Low-res captures (height <= low_res_max_height) need stronger gamma
    # and a lower cut-off or thin glyph strokes vanish.
    low_res_max_height: int = 480
    low_res_gamma: float = 3.2
    low_res_threshold: int = 46

    # 4:3 sources at low res have non-square pixels.
    stretch_min_aspect: float = 0.75
    stretch_factor: float = 1.333

    # (min_height, scale) tiers, checked top to bottom.
    scale_tiers: tuple = ((1080, 1.5), (720, 2.4))
    fallback_scale: float = 3.0

    @classmethod
    def from_dict(cls, data: dict) -> 'PrepConfig':
        """Build a config from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        if 'scale_tiers' in kwargs:
            kwargs['scale_tiers'] = tuple(
                (int(h), float(s)) for h, s in kwargs['scale_tiers'])
        return cls(**kwargs)


DEFAULT_PREP = PrepConfig()


def load_prep_config(path: str | None) -> PrepConfig:
    """Load a PrepConfig override file (JSON). None -> defaults."""
    if not path:
        return DEFAULT_PREP
    with open(path) as f:
        return PrepConfig.from_dict(json.load(f))


def select_scale(height: int, config: PrepConfig = DEFAULT_PREP) -> float:
    """Upscale factor for a frame of the given height."""
    for min_height, scale in config.scale_tiers:
        if height >= min_height:
            return scale
    return config.fallback_scale


def gamma_correct(gray: np.ndarray, gamma: float) -> np.ndarray:
    """Non-linear brightness remap: out = 255 * (in / 255) ** gamma."""
    lut = (np.power(np.arange(256) / 255.0, gamma) * 255.0).round()
    return cv2.LUT(gray, lut.astype(np.uint8))


def binarize(gray: np.ndarray, threshold: float) -> np.ndarray:
    """Pixels >= threshold become 255, everything else 0."""
    return np.where(gray >= threshold, 255, 0).astype(np.uint8)


def prepare(frame: np.ndarray, config: PrepConfig = DEFAULT_PREP) -> np.ndarray:
    """Grayscale, upscale, gamma-correct and binarize a frame for OCR.

    Args:
        frame: BGR (H, W, 3) or grayscale (H, W) uint8 array.
        config: Tuning constants.

    Returns:
        New uint8 (H', W') array containing only 0 and 255.

    Raises:
        ValueError: frame has zero area.
    """
    if frame.size == 0:
        raise ValueError('cannot prepare an empty frame')

    h, w = frame.shape[:2]
    scale = select_scale(h, config)
    gamma = config.gamma
    threshold = config.threshold

    if h <= config.low_res_max_height:
        gamma = config.low_res_gamma
        threshold = config.low_res_threshold
        if h / w >= config.stretch_min_aspect:
            new_w = int(np.floor(w * config.stretch_factor))
            frame = cv2.resize(frame, (new_w, h), interpolation=cv2.INTER_CUBIC)
            w = new_w

    if frame.ndim == 3:
        gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    else:
        gray = frame

    gray = cv2.resize(gray, (int(w * scale), int(h * scale)),
                      interpolation=cv2.INTER_CUBIC)
    gray = gamma_correct(gray, gamma)
    return binarize(gray, threshold)

"""Pytest fixtures for vision detector tests."""
import sys
from pathlib import Path

import cv2
import numpy as np
import pytest

VISION_DIR = Path(__file__).parent.parent
OVERLAY_DIR = VISION_DIR.parent / "overlay"
sys.path.insert(0, str(VISION_DIR))
# Detector messages are encoded by the overlay package.
sys.path.insert(0, str(OVERLAY_DIR))


def blocky_noise(height, width, block=10, seed=0):
    """Random grayscale pattern made of block x block squares.

    Blocks survive bicubic resampling, so the pattern still matches itself
    after a round trip through another resolution.
    """
    rng = np.random.default_rng(seed)
    small = rng.integers(0, 256, (-(-height // block), -(-width // block)),
                         dtype=np.uint8)
    big = cv2.resize(small, (small.shape[1] * block, small.shape[0] * block),
                     interpolation=cv2.INTER_NEAREST)
    return big[:height, :width]


@pytest.fixture
def noise():
    return blocky_noise


@pytest.fixture
def marker_dir(tmp_path):
    """Template directory with death and level markers (reference space)."""
    cv2.imwrite(str(tmp_path / 'death.png'), blocky_noise(60, 200, seed=1))
    cv2.imwrite(str(tmp_path / 'level.png'), blocky_noise(40, 240, seed=2))
    return tmp_path

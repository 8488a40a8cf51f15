"""Turn captured frames into overlay events.

Each on-screen marker (death/clear/exit/... banners, the level info card)
has a grayscale template authored at the reference resolution. Frames are
brought into the reference space, matched against every template, and an
event fires on the frame a marker first appears (edge-triggered, with a
per-type cooldown to ride out flicker).

The level card also carries text. Once the card has stopped animating
(two consecutive frames near-identical) the whole frame is binarized with
ocr_prep.prepare(), and the code/name/author regions are cropped from it and
read through the injected OCR callable.
"""

import os
import re
from typing import Callable

import cv2
import numpy as np

from levelbar.events import SIMPLE_EVENTS, Level, LevelLoaded, event_to_message

from .frame_matcher import match_template, similarity
from .geometry import (REFERENCE_RESOLUTION, Rect, Resolution, crop,
                       frame_resolution, rescale_frame, rescale_rect)
from .ocr_prep import DEFAULT_PREP, PrepConfig, prepare


MARKER_TYPES = ('death', 'restart', 'exit', 'gameover', 'clear')
LEVEL_MARKER = 'level'

# Level card text regions at REFERENCE_RESOLUTION.
LEVEL_FIELD_RECTS = {
    'name': Rect(78, 176, 760, 40),
    'code': Rect(78, 236, 216, 32),
    'author': Rect(78, 290, 420, 32),
}

# Card is considered settled once consecutive frames match this closely.
STABLE_SIMILARITY = 0.98

# Course codes: 3x3 groups, no I/O/Z (those read as 1/0/2 on screen).
COURSE_CODE_RE = re.compile(r'^[0-9A-HJ-NP-Y]{3}-[0-9A-HJ-NP-Y]{3}-[0-9A-HJ-NP-Y]{3}$')
_OCR_CONFUSIONS = str.maketrans({'O': '0', 'I': '1', 'Z': '2'})


def normalize_code(text: str) -> str | None:
    """Clean an OCR'd course code. Returns None if it is not a valid code."""
    code = re.sub(r'\s+', '', text).upper().translate(_OCR_CONFUSIONS)
    if len(code) == 9 and '-' not in code:
        code = f'{code[:3]}-{code[3:6]}-{code[6:]}'
    if COURSE_CODE_RE.match(code):
        return code
    return None


class EventDetector:
    """Edge-triggered template detector for game events.

    Args:
        template_dir: Directory of grayscale PNG markers named by event type
                      (death.png, clear.png, level.png, ...).
        capture_res: Resolution of incoming frames.
        ocr: Callable reading a binarized region into text. Without it,
             level cards are ignored.
        threshold: Minimum TM_CCOEFF_NORMED score for a marker.
        cooldown_frames: Frames a type stays suppressed after firing.
        prep_config: OCR preprocessing constants.
    """

    def __init__(self, template_dir: str, capture_res: Resolution,
                 ocr: Callable[[np.ndarray], str] | None = None,
                 threshold: float = 0.8, cooldown_frames: int = 10,
                 prep_config: PrepConfig = DEFAULT_PREP):
        self.capture_res = capture_res
        self.ocr = ocr
        self.threshold = threshold
        self.cooldown_frames = cooldown_frames
        self.prep_config = prep_config
        self.templates: dict[str, np.ndarray] = {}

        if os.path.isdir(template_dir):
            for name in MARKER_TYPES + (LEVEL_MARKER,):
                path = os.path.join(template_dir, f'{name}.png')
                if not os.path.exists(path):
                    continue
                img = cv2.imread(path, cv2.IMREAD_GRAYSCALE)
                if img is not None:
                    self.templates[name] = img

        self.frame_count = 0
        self._visible: set[str] = set()
        self._last_fired: dict[str, int] = {}
        self._level_read = False
        self._prev_frame: np.ndarray | None = None

    def has_templates(self) -> bool:
        return len(self.templates) > 0

    def detect(self, frame: np.ndarray) -> list[dict]:
        """Process one BGR capture frame. Returns event messages."""
        ref = rescale_frame(frame, self.capture_res, REFERENCE_RESOLUTION)
        gray = cv2.cvtColor(ref, cv2.COLOR_BGR2GRAY)

        events: list[dict] = []
        visible: set[str] = set()

        for name, template in self.templates.items():
            if match_template(gray, template, self.threshold) is None:
                continue
            visible.add(name)
            if name == LEVEL_MARKER:
                continue
            if name not in self._visible and self._cooled_down(name):
                events.append(event_to_message(SIMPLE_EVENTS[name]()))
                self._last_fired[name] = self.frame_count

        if LEVEL_MARKER in visible:
            level = self._read_level_card(frame)
            if level is not None:
                events.append(event_to_message(LevelLoaded(Level(**level))))
        else:
            self._level_read = False

        self._visible = visible
        self._prev_frame = frame
        self.frame_count += 1
        return events

    def read_level(self, frame: np.ndarray) -> dict | None:
        """OCR the level card regions of a capture frame.

        Returns {'code', 'name', 'author'} or None when no OCR is configured
        or the code does not read as a valid course code.
        """
        if self.ocr is None:
            return None

        # prepare() picks its constants from the whole frame's height tier,
        # and may stretch/upscale it, so rects go into the prepared space.
        prepared = prepare(frame, self.prep_config)
        prepared_res = frame_resolution(prepared)

        texts = {}
        for field, ref_rect in LEVEL_FIELD_RECTS.items():
            rect = rescale_rect(ref_rect, REFERENCE_RESOLUTION, prepared_res)
            region = crop(prepared, rect)
            if region.size == 0:
                return None
            texts[field] = self.ocr(region).strip()

        code = normalize_code(texts['code'])
        if code is None:
            return None
        return {'code': code, 'name': texts['name'], 'author': texts['author']}

    def reset(self) -> None:
        """Forget edge/cooldown state (e.g. after the stream restarts)."""
        self.frame_count = 0
        self._visible.clear()
        self._last_fired.clear()
        self._level_read = False
        self._prev_frame = None

    def _cooled_down(self, name: str) -> bool:
        last = self._last_fired.get(name)
        return last is None or self.frame_count - last >= self.cooldown_frames

    def _read_level_card(self, frame: np.ndarray) -> dict | None:
        # One successful read per card appearance; keep retrying until then.
        if self._level_read or self.ocr is None:
            return None
        prev = self._prev_frame
        if prev is None or prev.shape != frame.shape:
            return None
        if similarity(prev, frame) < STABLE_SIMILARITY:
            return None
        level = self.read_level(frame)
        if level is not None:
            self._level_read = True
        return level

"""Pytest fixtures for overlay state machine tests."""
import heapq
import itertools
import sys
from pathlib import Path

import pytest

OVERLAY_DIR = Path(__file__).parent.parent
sys.path.insert(0, str(OVERLAY_DIR))

from levelbar.state_machine import OverlaySettings, OverlayStateMachine


class ManualHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class ManualScheduler:
    """Virtual clock: callbacks run only when advance() passes their time."""

    def __init__(self):
        self.t = 0.0
        self._queue = []
        self._seq = itertools.count()

    def now(self):
        return self.t

    def call_later(self, delay, fn):
        handle = ManualHandle()
        heapq.heappush(self._queue, (self.t + delay, next(self._seq), handle, fn))
        return handle

    def advance(self, seconds):
        target = self.t + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle, fn = heapq.heappop(self._queue)
            self.t = when
            if not handle.cancelled:
                fn()
        self.t = target

    @property
    def pending(self):
        return sum(1 for _, _, h, _ in self._queue if not h.cancelled)


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def make_machine(scheduler):
    """Factory: make_machine(**settings) -> OverlayStateMachine on the manual clock."""
    def _make(**kwargs):
        return OverlayStateMachine(OverlaySettings(**kwargs), scheduler)
    return _make

"""Ordered, at-least-once delivery of events to the overlay server.

Events are POSTed one at a time in detection order. When the server is
unreachable or answers 5xx, the outbox keeps everything from the failed
event onward and waits out a fixed back-off before the next attempt, so a
dropped connection delays delivery but never reorders or loses events.
A 4xx answer means the payload itself was refused; that event is dropped.
"""

import sys
import time
from collections import deque
from typing import Callable

import requests


class EventPublisher:
    """Outbox that pushes event dicts to `url` with requests.

    Args:
        url: Endpoint accepting one JSON event per POST.
        retry_interval: Seconds to wait after a failed POST.
        timeout: Per-request timeout in seconds.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(self, url: str, retry_interval: float = 3.0,
                 timeout: float = 1.0,
                 clock: Callable[[], float] = time.monotonic,
                 session: requests.Session | None = None):
        self.url = url
        self.retry_interval = retry_interval
        self.timeout = timeout
        self._clock = clock
        self._session = session or requests.Session()
        self._outbox: deque[dict] = deque()
        self._retry_at: float = 0.0
        self.sent_count = 0

    @property
    def pending(self) -> int:
        return len(self._outbox)

    def publish(self, event: dict) -> None:
        """Queue an event and try to flush."""
        self._outbox.append(event)
        self.flush()

    def flush(self) -> int:
        """Send queued events in order. Returns how many were delivered."""
        if not self._outbox or self._clock() < self._retry_at:
            return 0

        delivered = 0
        while self._outbox:
            event = self._outbox[0]
            try:
                resp = self._session.post(self.url, json=event, timeout=self.timeout)
            except requests.RequestException as e:
                self._retry_at = self._clock() + self.retry_interval
                print(f'[Events] Push failed ({len(self._outbox)} queued), '
                      f'retrying in {self.retry_interval:.0f}s: {e}', file=sys.stderr)
                break

            if resp.status_code >= 500:
                # Server-side failure: keep the event and back off.
                self._retry_at = self._clock() + self.retry_interval
                print(f'[Events] Server error {resp.status_code} on {event.get("type")!r} '
                      f'({len(self._outbox)} queued), retrying in '
                      f'{self.retry_interval:.0f}s', file=sys.stderr)
                break

            self._outbox.popleft()
            if resp.status_code >= 400:
                # Server rejected the payload itself; resending will not help.
                print(f'[Events] Server rejected {event.get("type")!r}: '
                      f'{resp.status_code}', file=sys.stderr)
                continue
            delivered += 1
            self.sent_count += 1

        return delivered

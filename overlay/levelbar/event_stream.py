"""Reconnecting subscriber for a newline-delimited JSON event stream.

The overlay can follow another server's /api/events/stream instead of (or
as well as) receiving pushes. The connection is expected to drop: on
disconnect the client waits retry_interval seconds and reconnects; on a
transient error (a garbled line) it closes the connection itself and takes
the same retry path. Nothing here touches overlay state; every decoded
message is handed to on_message.
"""

import json
import sys
import threading
from typing import Callable

import requests


class TransportDisconnected(Exception):
    """The event stream connection ended or failed."""


class EventStream:
    """Follow an NDJSON event stream in a background thread.

    Args:
        url: Stream endpoint.
        on_message: Called with each decoded message dict, in order.
        retry_interval: Seconds between reconnect attempts.
        timeout: (connect, read) timeout passed to requests.
    """

    def __init__(self, url: str, on_message: Callable[[dict], None],
                 retry_interval: float = 3.0,
                 timeout: tuple[float, float] = (3.0, 60.0),
                 session: requests.Session | None = None):
        self.url = url
        self.on_message = on_message
        self.retry_interval = retry_interval
        self.timeout = timeout
        self._session = session or requests.Session()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.connect_count = 0

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name='event-stream',
                                        daemon=True)
        self._thread.start()

    def stop(self, join_timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(join_timeout)
            self._thread = None

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        """Connect, read until disconnected, back off, repeat until stop()."""
        while not self._stop.is_set():
            try:
                self.read_once()
            except TransportDisconnected as e:
                print(f'[Stream] Disconnected from {self.url}: {e} — '
                      f'retrying in {self.retry_interval:.0f}s', file=sys.stderr)
            if self._stop.wait(self.retry_interval):
                break

    def read_once(self) -> None:
        """One connection lifetime. Always ends in TransportDisconnected
        unless stop() is requested mid-stream."""
        try:
            resp = self._session.get(self.url, stream=True, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise TransportDisconnected(str(e)) from e

        self.connect_count += 1
        print(f'[Stream] Connected to {self.url}', file=sys.stderr)
        with resp:
            try:
                for line in resp.iter_lines():
                    if self._stop.is_set():
                        return
                    if not line:
                        continue  # keep-alive
                    try:
                        message = json.loads(line)
                    except ValueError as e:
                        # Close proactively and let the retry path reconnect.
                        raise TransportDisconnected(f'bad frame {line[:40]!r}') from e
                    self.on_message(message)
            except requests.RequestException as e:
                raise TransportDisconnected(str(e)) from e
        raise TransportDisconnected('stream ended')

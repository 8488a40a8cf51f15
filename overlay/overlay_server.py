"""
Level Bar Overlay Service — overlay state machine via FastAPI

Runs as a persistent HTTP service. The vision engine POSTs game events to
/api/events; the overlay page follows /api/state/stream (or polls
/api/state) for the render snapshot (timer, deaths, level info, fade items).
Optionally follows another event source's NDJSON stream with automatic
reconnect.

Usage:
  python overlay_server.py --port 5124 --timer down --warning-at 10
  LEVELBAR_TIMER=down python -m uvicorn overlay_server:app --port 5124
"""

import argparse
import asyncio
import json
import os
import sys
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from levelbar.event_stream import EventStream
from levelbar.events import MalformedEvent, parse_message
from levelbar.scheduler import AsyncioScheduler
from levelbar.state_machine import OverlaySettings, OverlayStateMachine


# ─── Request Models ───

class EventMessage(BaseModel):
    type: str | None = None
    # Validated by parse_message.
    level: Any = None


# ─── Configuration ───

def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def settings_from_env() -> OverlaySettings:
    return OverlaySettings(
        timer_direction=os.environ.get("LEVELBAR_TIMER", "up"),
        warning_at_minutes=int(os.environ.get("LEVELBAR_WARNING_AT", "10")),
        play_timer_warning=_env_flag("LEVELBAR_PLAY_WARNING", False),
        show_level_name=_env_flag("LEVELBAR_SHOW_NAME", True),
        show_level_author=_env_flag("LEVELBAR_SHOW_AUTHOR", True),
        restart_counts_as_death=_env_flag("LEVELBAR_RESTART_IS_DEATH", True),
    )


# ─── App ───

def create_app(settings: OverlaySettings, source_url: str | None = None) -> FastAPI:

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the state machine on the running loop and start ticking."""
        loop = asyncio.get_running_loop()
        machine = OverlayStateMachine(
            settings, AsyncioScheduler(loop),
            on_warning=lambda: print("[Overlay] Timer warning", file=sys.stderr, flush=True),
        )
        app.state.machine = machine
        app.state.relays = set()
        app.state.watchers = set()
        machine.subscribe(lambda snap: push_snapshot(app, snap))
        machine.start_ticking()

        stream = None
        if source_url:
            stream = EventStream(
                source_url,
                lambda msg: loop.call_soon_threadsafe(accept_message, app, msg),
            )
            stream.start()
            print(f"[Overlay] Following event stream {source_url}", file=sys.stderr, flush=True)

        print(f"[Overlay] Ready (timer={settings.timer_direction}, "
              f"warning_at={settings.warning_at_minutes}m)", file=sys.stderr, flush=True)
        yield

        if stream is not None:
            stream.stop(join_timeout=1.0)
        machine.shutdown()
        print("[Overlay] Shutting down", file=sys.stderr, flush=True)

    app = FastAPI(lifespan=lifespan)

    # ─── Endpoints ───

    @app.get("/health")
    async def health():
        return {"status": "ok", "timer": settings.timer_direction}

    @app.get("/api/state")
    async def state():
        return app.state.machine.snapshot().to_dict()

    @app.get("/api/state/stream")
    async def state_stream():
        """NDJSON push of render snapshots: the current one, then every change."""
        queue: asyncio.Queue = asyncio.Queue()
        app.state.watchers.add(queue)
        queue.put_nowait(app.state.machine.snapshot().to_dict())

        async def push():
            try:
                while True:
                    snap = await queue.get()
                    yield json.dumps(snap) + "\n"
            finally:
                app.state.watchers.discard(queue)

        return StreamingResponse(push(), media_type="application/x-ndjson")

    @app.post("/api/events")
    async def post_event(message: EventMessage):
        payload = message.model_dump(exclude_none=True)
        try:
            events = parse_message(payload)
        except MalformedEvent as e:
            print(f"[Overlay] Rejected event {payload}: {e}", file=sys.stderr, flush=True)
            raise HTTPException(400, str(e))
        apply_events(app, payload, events)
        return {"accepted": [type(ev).__name__ for ev in events]}

    @app.get("/api/events/stream")
    async def event_stream():
        queue: asyncio.Queue = asyncio.Queue()
        app.state.relays.add(queue)

        async def relay():
            try:
                while True:
                    msg = await queue.get()
                    yield json.dumps(msg) + "\n"
            finally:
                app.state.relays.discard(queue)

        return StreamingResponse(relay(), media_type="application/x-ndjson")

    return app


def accept_message(app: FastAPI, message: dict) -> None:
    """Apply a message from the followed stream (runs on the event loop)."""
    try:
        events = parse_message(message)
    except MalformedEvent as e:
        print(f"[Overlay] Ignoring malformed event: {e}", file=sys.stderr, flush=True)
        return
    apply_events(app, message, events)


def push_snapshot(app: FastAPI, snapshot) -> None:
    """State machine listener: queue the snapshot for every state stream."""
    data = snapshot.to_dict()
    for queue in app.state.watchers:
        queue.put_nowait(data)


def apply_events(app: FastAPI, message: dict, events) -> None:
    machine: OverlayStateMachine = app.state.machine
    for event in events:
        machine.handle(event)
    for queue in app.state.relays:
        queue.put_nowait(message)


app = create_app(settings_from_env(), os.environ.get("LEVELBAR_EVENT_SOURCE"))


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Level Bar Overlay Service")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=5124)
    parser.add_argument("--timer", choices=("up", "down"), default="up",
                        help="Count elapsed time up, or remaining time down")
    parser.add_argument("--warning-at", type=int, default=10,
                        help="Minutes at which the timer warning fires")
    parser.add_argument("--play-warning", action="store_true",
                        help="Sound the timer warning")
    parser.add_argument("--hide-name", action="store_true",
                        help="Do not show the level name")
    parser.add_argument("--hide-author", action="store_true",
                        help="Do not show the level author")
    parser.add_argument("--restart-not-death", action="store_true",
                        help="Do not count a restart before clearing as a death")
    parser.add_argument("--source", default=None,
                        help="Follow another server's /api/events/stream")
    return parser.parse_args(argv)


if __name__ == "__main__":
    import uvicorn

    args = parse_args()
    cli_settings = OverlaySettings(
        timer_direction=args.timer,
        warning_at_minutes=args.warning_at,
        play_timer_warning=args.play_warning,
        show_level_name=not args.hide_name,
        show_level_author=not args.hide_author,
        restart_counts_as_death=not args.restart_not_death,
    )
    uvicorn.run(create_app(cli_settings, args.source), host=args.host, port=args.port)

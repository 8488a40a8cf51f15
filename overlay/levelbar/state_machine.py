"""Overlay state machine: level, timer, deaths and visibility.

Consumes GameEvents in delivery order plus a once-per-second tick, and keeps
the OverlayState that renderers draw from. Renderers never see the mutable
state; they get an OverlaySnapshot.

Rules:
- LevelLoaded for the level already shown, while paused and not cleared:
  resume the clock (elapsed is kept) and un-hide.
- LevelLoaded for a different level (or while hidden): show it now if
  hidden, otherwise hide now and show it after display_delay. A newer
  LevelLoaded replaces a pending display.
- Death: counted once per death_debounce window; repeats inside the window
  are duplicate reports of the same death.
- Restart: after a clear, restarts the same level; otherwise a death when
  restart_counts_as_death is set.
- Exit pauses and hides, Clear pauses and marks cleared, GameOver pauses.

Delivery is at-least-once, so every rule above is a no-op (or coalesces)
when the same event arrives twice in a row.
"""

import sys
from dataclasses import asdict, dataclass, field
from typing import Callable

from .events import (Clear, Death, Exit, GameEvent, GameOver, Level,
                     LevelLoaded, MalformedEvent, Restart, parse_message)
from .scheduler import Handle, Scheduler


@dataclass
class OverlaySettings:
    timer_direction: str = 'up'          # 'up' (elapsed) or 'down' (remaining)
    warning_at_minutes: int = 10
    play_timer_warning: bool = False
    show_level_name: bool = True
    show_level_author: bool = True
    restart_counts_as_death: bool = True
    display_delay: float = 1.5           # seconds hidden before a new level shows
    death_debounce: float = 0.5          # seconds

    def __post_init__(self):
        if self.timer_direction not in ('up', 'down'):
            raise ValueError(f"timer_direction must be 'up' or 'down', "
                             f"got {self.timer_direction!r}")

    @property
    def warning_seconds(self) -> int:
        return self.warning_at_minutes * 60


@dataclass(frozen=True)
class FadeItem:
    kind: str   # 'name' or 'author'
    text: str


def format_timer(total_seconds: float) -> str:
    """MM:SS, with an HH: prefix only once an hour has passed."""
    total = int(max(0.0, total_seconds))
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    text = f'{hours:02d}:' if hours > 0 else ''
    return text + f'{minutes:02d}:{seconds:02d}'


class LevelTimer:
    """Pausable stopwatch on the scheduler's clock."""

    def __init__(self, clock: Callable[[], float]):
        self._clock = clock
        self._accumulated = 0.0
        self._resumed_at: float | None = None

    @property
    def running(self) -> bool:
        return self._resumed_at is not None

    @property
    def elapsed(self) -> float:
        if self._resumed_at is None:
            return self._accumulated
        return self._accumulated + (self._clock() - self._resumed_at)

    def start(self) -> None:
        self._accumulated = 0.0
        self._resumed_at = self._clock()

    def pause(self) -> None:
        if self._resumed_at is not None:
            self._accumulated = self.elapsed
            self._resumed_at = None

    def resume(self) -> None:
        if self._resumed_at is None:
            self._resumed_at = self._clock()


@dataclass
class OverlayState:
    timer: LevelTimer
    level: Level | None = None
    hidden: bool = True
    death_count: int = 0
    cleared: bool = False
    timer_text: str = ''
    fade_items: list[FadeItem] = field(default_factory=list)
    warning_count: int = 0
    warned: bool = False
    pending_death: Handle | None = None
    pending_display: Handle | None = None
    pending_level: Level | None = None


@dataclass(frozen=True)
class OverlaySnapshot:
    level: Level | None
    hidden: bool
    death_count: int
    cleared: bool
    timer_running: bool
    timer_text: str
    elapsed: float
    fade_items: tuple[FadeItem, ...]
    warning_count: int
    death_pending: bool
    display_pending: bool

    def to_dict(self) -> dict:
        d = asdict(self)
        d['fade_items'] = list(d['fade_items'])
        return d


class OverlayStateMachine:
    """Single-owner overlay state driven by events and ticks.

    Args:
        settings: Timer direction, warning and visibility options.
        scheduler: Clock and cancelable one-shot timers.
        on_warning: Called when the timer warning should sound.
    """

    def __init__(self, settings: OverlaySettings, scheduler: Scheduler,
                 on_warning: Callable[[], None] | None = None):
        self.settings = settings
        self.scheduler = scheduler
        self.on_warning = on_warning
        self.state = OverlayState(timer=LevelTimer(scheduler.now))
        self._listeners: list[Callable[[OverlaySnapshot], None]] = []
        self._tick_handle: Handle | None = None
        self._tick_interval = 1.0

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def subscribe(self, listener: Callable[[OverlaySnapshot], None]) -> None:
        """Call listener with a fresh snapshot after every state change."""
        self._listeners.append(listener)

    def snapshot(self) -> OverlaySnapshot:
        s = self.state
        return OverlaySnapshot(
            level=s.level,
            hidden=s.hidden,
            death_count=s.death_count,
            cleared=s.cleared,
            timer_running=s.timer.running,
            timer_text=s.timer_text,
            elapsed=s.timer.elapsed,
            fade_items=tuple(s.fade_items),
            warning_count=s.warning_count,
            death_pending=s.pending_death is not None,
            display_pending=s.pending_display is not None,
        )

    def handle(self, event: GameEvent) -> None:
        """Apply one event."""
        match event:
            case LevelLoaded(level=level):
                self._level_loaded(level)
            case Death():
                self._death()
            case Restart():
                self._restart()
            case Exit():
                self._exit()
            case Clear():
                self._clear()
            case GameOver():
                self._game_over()
            case _:
                raise TypeError(f'not a game event: {event!r}')
        self._notify()

    def handle_message(self, message) -> list[GameEvent]:
        """Decode a channel message and apply its events.

        Malformed messages are logged and dropped. Returns the events applied.
        """
        try:
            events = parse_message(message)
        except MalformedEvent as e:
            print(f'[Overlay] Ignoring malformed event: {e}', file=sys.stderr)
            return []
        for event in events:
            self.handle(event)
        return events

    def tick(self) -> None:
        """Advance the timer display. Called once per second."""
        if not self.state.timer.running:
            return
        self._refresh_timer()
        self._notify()

    def _refresh_timer(self) -> None:
        s = self.state
        elapsed = s.timer.elapsed
        warn_at = self.settings.warning_seconds
        counting_down = self.settings.timer_direction == 'down'
        shown = warn_at - elapsed if counting_down else elapsed
        s.timer_text = format_timer(shown)

        if int(elapsed) >= warn_at:
            self._warn()
        if counting_down and int(shown) <= 0:
            s.timer.pause()
            self._warn()

    def start_ticking(self, interval: float = 1.0) -> None:
        """Schedule tick() every `interval` seconds on the scheduler."""
        self._tick_interval = interval
        self.stop_ticking()
        self._tick_handle = self.scheduler.call_later(interval, self._scheduled_tick)

    def stop_ticking(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    def shutdown(self) -> None:
        """Cancel the tick loop and every pending deferred action."""
        self.stop_ticking()
        self._cancel_pending_death()
        self._cancel_pending_display()

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _level_loaded(self, level: Level) -> None:
        s = self.state

        if s.pending_display is not None:
            # Mid-transition: a repeat is a duplicate, anything else supersedes.
            if level.code != s.pending_level.code:
                self._schedule_display(level)
            return

        same_level = s.level is not None and level.code == s.level.code
        if same_level and not s.timer.running and not s.cleared:
            # Back into a level we paused on (exit/game over): keep the clock.
            s.hidden = False
            s.timer.resume()
        elif not same_level or s.hidden:
            if s.hidden:
                self._display_level(level)
            else:
                # Hide now; show once the old panel has scrolled away.
                s.hidden = True
                self._schedule_display(level)

    def _death(self) -> None:
        s = self.state
        if s.pending_death is not None:
            return  # same death reported twice
        s.pending_death = self.scheduler.call_later(
            self.settings.death_debounce, self._count_death)

    def _restart(self) -> None:
        s = self.state
        if s.cleared and s.level is not None:
            self._display_level(s.level)
        elif self.settings.restart_counts_as_death:
            self._death()
        else:
            print('[Overlay] Restart ignored (not cleared, restart_counts_as_death off)',
                  file=sys.stderr)

    def _exit(self) -> None:
        s = self.state
        s.timer.pause()
        s.hidden = True
        self._cancel_pending_display()

    def _clear(self) -> None:
        self.state.timer.pause()
        self.state.cleared = True

    def _game_over(self) -> None:
        self.state.timer.pause()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _display_level(self, level: Level) -> None:
        s = self.state
        self._cancel_pending_display()
        self._cancel_pending_death()
        s.hidden = False
        s.level = level
        s.death_count = 0
        s.cleared = False
        s.warned = False
        s.fade_items = self._fade_items(level)
        s.timer.start()
        self._refresh_timer()

    def _fade_items(self, level: Level) -> list[FadeItem]:
        items = []
        if self.settings.show_level_name:
            items.append(FadeItem('name', level.name))
        if self.settings.show_level_author:
            items.append(FadeItem('author', level.author))
        return items

    def _schedule_display(self, level: Level) -> None:
        self._cancel_pending_display()
        self.state.pending_level = level
        self.state.pending_display = self.scheduler.call_later(
            self.settings.display_delay, lambda: self._deferred_display(level))

    def _deferred_display(self, level: Level) -> None:
        self.state.pending_display = None
        self.state.pending_level = None
        self._display_level(level)
        self._notify()

    def _count_death(self) -> None:
        self.state.pending_death = None
        self.state.death_count += 1
        self._notify()

    def _scheduled_tick(self) -> None:
        self._tick_handle = self.scheduler.call_later(
            self._tick_interval, self._scheduled_tick)
        self.tick()

    def _warn(self) -> None:
        s = self.state
        if s.warned or not self.settings.play_timer_warning:
            return
        s.warned = True
        s.warning_count += 1
        if self.on_warning is not None:
            self.on_warning()

    def _cancel_pending_death(self) -> None:
        if self.state.pending_death is not None:
            self.state.pending_death.cancel()
            self.state.pending_death = None

    def _cancel_pending_display(self) -> None:
        if self.state.pending_display is not None:
            self.state.pending_display.cancel()
            self.state.pending_display = None
            self.state.pending_level = None

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in self._listeners:
            listener(snap)

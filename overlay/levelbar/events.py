"""Typed game events and the channel message codec.

Channel messages are JSON objects:

    {"type": "death" | "restart" | "exit" | "gameover" | "clear" | "level",
     "level": {"code": ..., "name": ..., "author": ...}}   # level optional

A `level` field on any message also means "this level is loaded", so one
message can decode to two events: the type-specific one first, then
LevelLoaded.
"""

import json
import sys
from dataclasses import dataclass


class MalformedEvent(ValueError):
    """A channel message that cannot be decoded into any event."""


@dataclass(frozen=True)
class Level:
    code: str
    name: str = ''
    author: str = ''


@dataclass(frozen=True)
class LevelLoaded:
    level: Level


@dataclass(frozen=True)
class Death:
    pass


@dataclass(frozen=True)
class Restart:
    pass


@dataclass(frozen=True)
class Exit:
    pass


@dataclass(frozen=True)
class Clear:
    pass


@dataclass(frozen=True)
class GameOver:
    pass


GameEvent = LevelLoaded | Death | Restart | Exit | Clear | GameOver

SIMPLE_EVENTS = {
    'death': Death,
    'restart': Restart,
    'exit': Exit,
    'clear': Clear,
    'gameover': GameOver,
}
_EVENT_TYPES = {cls: name for name, cls in SIMPLE_EVENTS.items()}


def _parse_level(data) -> Level:
    if not isinstance(data, dict) or not data.get('code'):
        raise MalformedEvent(f'level must be an object with a code, got {data!r}')
    return Level(
        code=str(data['code']),
        name=str(data.get('name') or ''),
        author=str(data.get('author') or ''),
    )


def parse_message(message: dict | str | bytes) -> list[GameEvent]:
    """Decode one channel message into events, in the order to apply them.

    A known type with an unusable level payload still yields the type
    event; only the LevelLoaded is skipped (and logged).

    Raises:
        MalformedEvent: invalid JSON, not an object, an unknown type with no
            level field, or a level payload that is unusable when nothing
            else in the message decodes.
    """
    if isinstance(message, (str, bytes)):
        try:
            message = json.loads(message)
        except ValueError as e:
            raise MalformedEvent(f'invalid JSON: {e}') from e
    if not isinstance(message, dict):
        raise MalformedEvent(f'expected an object, got {type(message).__name__}')

    kind = message.get('type')
    has_level = message.get('level') is not None
    events: list[GameEvent] = []

    if kind in SIMPLE_EVENTS:
        events.append(SIMPLE_EVENTS[kind]())
    elif kind != 'level' and not has_level:
        raise MalformedEvent(f'unknown event type {kind!r}')

    if has_level:
        try:
            events.append(LevelLoaded(_parse_level(message['level'])))
        except MalformedEvent as e:
            if not events:
                raise
            print(f'[Overlay] Skipping level of {kind!r} event: {e}', file=sys.stderr)
    elif kind == 'level':
        raise MalformedEvent('level event without level data')

    return events


def event_to_message(event: GameEvent) -> dict:
    """Encode an event as a channel message."""
    if isinstance(event, LevelLoaded):
        lvl = event.level
        return {'type': 'level',
                'level': {'code': lvl.code, 'name': lvl.name, 'author': lvl.author}}
    return {'type': _EVENT_TYPES[type(event)]}

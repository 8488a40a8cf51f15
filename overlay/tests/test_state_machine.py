"""Unit tests for OverlayStateMachine.

Time only moves when the test calls scheduler.advance(), so every debounce
and deferred display can be checked just before and just after it fires.

Key rules under test:
- First level while hidden shows immediately; a different level while shown
  hides now and shows after display_delay (1.5s)
- A repeat of the pending level is a duplicate; a different one supersedes it
- Deaths inside the 0.5s debounce window count once
- Restart after clear restarts the level; otherwise it counts as a death
  (configurable)
- Pause/resume keeps elapsed time
- Count-down auto-pauses at zero; the warning sounds once
"""
import dataclasses
import json

import pytest

from levelbar.events import (Clear, Death, Exit, GameOver, Level, LevelLoaded,
                             Restart)
from levelbar.state_machine import (FadeItem, OverlaySettings,
                                    OverlayStateMachine, format_timer)

LEVEL_A = Level('AAA-AAA-AAA', 'Level A', 'alice')
LEVEL_B = Level('BBB-BBB-BBB', 'Level B', 'bob')
LEVEL_C = Level('CCC-CCC-CCC', 'Level C', 'carol')


def _show(machine, level=LEVEL_A):
    machine.handle(LevelLoaded(level))
    return machine.snapshot()


# ── Initial state & display ───────────────────────────────────────────────────

class TestDisplay:

    def test_initial_state(self, make_machine):
        snap = make_machine().snapshot()
        assert snap.hidden
        assert snap.level is None
        assert snap.death_count == 0
        assert not snap.timer_running
        assert snap.timer_text == ''
        assert snap.fade_items == ()

    def test_first_level_shows_immediately(self, make_machine):
        snap = _show(make_machine())
        assert not snap.hidden
        assert snap.level == LEVEL_A
        assert snap.death_count == 0
        assert not snap.cleared
        assert snap.timer_running
        assert snap.timer_text == '00:00'

    def test_fade_items_follow_visibility_settings(self, make_machine):
        assert _show(make_machine()).fade_items == (
            FadeItem('name', 'Level A'), FadeItem('author', 'alice'))
        assert _show(make_machine(show_level_author=False)).fade_items == (
            FadeItem('name', 'Level A'),)
        assert _show(make_machine(show_level_name=False, show_level_author=False)).fade_items == ()

    def test_duplicate_level_does_not_reset_timer(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        scheduler.advance(5)
        machine.handle(LevelLoaded(LEVEL_A))
        snap = machine.snapshot()
        assert snap.elapsed == pytest.approx(5)
        assert not snap.hidden


# ── Deferred level display ────────────────────────────────────────────────────

class TestLevelChange:

    def test_hides_now_and_shows_after_delay(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(LevelLoaded(LEVEL_B))

        snap = machine.snapshot()
        assert snap.hidden
        assert snap.level == LEVEL_A
        assert snap.display_pending

        scheduler.advance(1.4)
        assert machine.snapshot().hidden
        assert machine.snapshot().level == LEVEL_A

        scheduler.advance(0.2)
        snap = machine.snapshot()
        assert not snap.hidden
        assert snap.level == LEVEL_B
        assert not snap.display_pending

    def test_duplicate_pending_level_keeps_original_delay(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(LevelLoaded(LEVEL_B))
        scheduler.advance(1.0)
        machine.handle(LevelLoaded(LEVEL_B))
        assert machine.snapshot().hidden
        scheduler.advance(0.4)
        assert machine.snapshot().hidden
        scheduler.advance(0.2)
        assert machine.snapshot().level == LEVEL_B

    def test_newer_level_supersedes_pending_one(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(LevelLoaded(LEVEL_B))
        scheduler.advance(1.0)
        machine.handle(LevelLoaded(LEVEL_C))

        scheduler.advance(0.6)      # B's original deadline has passed
        snap = machine.snapshot()
        assert snap.hidden
        assert snap.level == LEVEL_A

        scheduler.advance(1.0)
        assert machine.snapshot().level == LEVEL_C
        assert scheduler.pending == 0

    def test_new_level_resets_deaths_and_timer(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(Death())
        scheduler.advance(10)
        assert machine.snapshot().death_count == 1

        machine.handle(LevelLoaded(LEVEL_B))
        scheduler.advance(1.5)
        snap = machine.snapshot()
        assert snap.level == LEVEL_B
        assert snap.death_count == 0
        assert snap.elapsed == pytest.approx(0)

    def test_exit_cancels_pending_display(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(LevelLoaded(LEVEL_B))
        machine.handle(Exit())
        scheduler.advance(5)
        snap = machine.snapshot()
        assert snap.hidden
        assert snap.level == LEVEL_A


# ── Deaths ────────────────────────────────────────────────────────────────────

class TestDeathDebounce:

    def test_counted_after_window(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(Death())
        assert machine.snapshot().death_count == 0
        assert machine.snapshot().death_pending
        scheduler.advance(0.5)
        assert machine.snapshot().death_count == 1

    def test_two_deaths_inside_window_count_once(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(Death())
        scheduler.advance(0.3)
        machine.handle(Death())
        scheduler.advance(1.0)
        assert machine.snapshot().death_count == 1

    def test_two_deaths_outside_window_count_twice(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(Death())
        scheduler.advance(0.6)
        machine.handle(Death())
        scheduler.advance(0.6)
        assert machine.snapshot().death_count == 2

    def test_pending_death_dropped_when_new_level_displays(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(Death())
        machine.handle(Exit())
        machine.handle(LevelLoaded(LEVEL_B))   # hidden -> shows immediately
        scheduler.advance(1.0)
        snap = machine.snapshot()
        assert snap.level == LEVEL_B
        assert snap.death_count == 0


# ── Restart / exit / clear / game over ────────────────────────────────────────

class TestLifecycleEvents:

    def test_exit_pauses_and_hides(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        scheduler.advance(3)
        machine.handle(Exit())
        scheduler.advance(3)
        snap = machine.snapshot()
        assert snap.hidden
        assert not snap.timer_running
        assert snap.elapsed == pytest.approx(3)

    def test_reentering_paused_level_resumes_clock(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        scheduler.advance(10)
        machine.handle(Exit())
        scheduler.advance(20)
        machine.handle(LevelLoaded(LEVEL_A))
        snap = machine.snapshot()
        assert not snap.hidden
        assert snap.timer_running
        assert snap.elapsed == pytest.approx(10)
        scheduler.advance(5)
        assert machine.snapshot().elapsed == pytest.approx(15)

    def test_game_over_pauses_but_stays_visible(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        scheduler.advance(4)
        machine.handle(GameOver())
        scheduler.advance(4)
        snap = machine.snapshot()
        assert not snap.hidden
        assert not snap.timer_running
        assert snap.elapsed == pytest.approx(4)

    def test_clear_pauses_and_marks_cleared(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(Clear())
        scheduler.advance(10)
        snap = machine.snapshot()
        assert snap.cleared
        assert not snap.timer_running
        assert snap.elapsed == pytest.approx(0)

    def test_same_level_after_clear_does_not_resume(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(Clear())
        machine.handle(LevelLoaded(LEVEL_A))
        snap = machine.snapshot()
        assert snap.cleared
        assert not snap.timer_running

    def test_restart_before_clear_counts_as_death(self, make_machine, scheduler):
        machine = make_machine()
        _show(machine)
        machine.handle(Restart())
        scheduler.advance(0.5)
        assert machine.snapshot().death_count == 1

    def test_restart_policy_can_be_disabled(self, make_machine, scheduler):
        machine = make_machine(restart_counts_as_death=False)
        _show(machine)
        machine.handle(Restart())
        scheduler.advance(1)
        assert machine.snapshot().death_count == 0

    def test_restart_after_clear_restarts_level(self, make_machine, scheduler):
        machine = make_machine(restart_counts_as_death=False)
        _show(machine)
        scheduler.advance(30)
        machine.handle(Clear())
        machine.handle(Restart())
        snap = machine.snapshot()
        assert snap.level == LEVEL_A
        assert not snap.cleared
        assert snap.timer_running
        assert snap.elapsed == pytest.approx(0)


class TestEndToEnd:

    def test_level_death_clear_restart(self, make_machine, scheduler):
        machine = make_machine()

        machine.handle_message({'type': 'level', 'level': {'code': 'A', 'name': 'n', 'author': 'a'}})
        snap = machine.snapshot()
        assert snap.level.code == 'A'
        assert snap.death_count == 0
        assert snap.timer_running

        machine.handle_message({'type': 'death'})
        scheduler.advance(0.5)
        assert machine.snapshot().death_count == 1

        scheduler.advance(20)
        machine.handle_message({'type': 'clear'})
        snap = machine.snapshot()
        assert not snap.timer_running
        assert snap.cleared

        machine.handle_message({'type': 'restart'})
        snap = machine.snapshot()
        assert snap.level.code == 'A'
        assert snap.death_count == 0
        assert snap.timer_running
        assert snap.elapsed == pytest.approx(0)

    def test_death_with_level_field_applies_both(self, make_machine, scheduler):
        machine = make_machine()
        events = machine.handle_message({'type': 'death', 'level': {'code': 'A'}})
        assert len(events) == 2
        scheduler.advance(0.5)
        snap = machine.snapshot()
        # Death was pending when the level displayed, so it belonged to the
        # previous level and is dropped.
        assert snap.level.code == 'A'
        assert snap.death_count == 0

    def test_malformed_message_ignored(self, make_machine, capsys):
        machine = make_machine()
        _show(machine)
        before = machine.snapshot()
        assert machine.handle_message({'type': 'mystery'}) == []
        assert machine.snapshot() == before
        assert 'malformed' in capsys.readouterr().err

    def test_non_event_rejected(self, make_machine):
        with pytest.raises(TypeError):
            make_machine().handle('death')


# ── Timer ─────────────────────────────────────────────────────────────────────

class TestTimer:

    def test_count_up_display(self, make_machine, scheduler):
        machine = make_machine()
        machine.start_ticking()
        _show(machine)
        scheduler.advance(75)
        assert machine.snapshot().timer_text == '01:15'

    def test_ticks_do_not_advance_paused_timer(self, make_machine, scheduler):
        machine = make_machine()
        machine.start_ticking()
        _show(machine)
        scheduler.advance(5)
        machine.handle(GameOver())
        scheduler.advance(30)
        assert machine.snapshot().timer_text == '00:05'

    def test_count_down_stops_at_zero(self, make_machine, scheduler):
        machine = make_machine(timer_direction='down', warning_at_minutes=1)
        machine.start_ticking()
        snap = _show(machine)
        assert snap.timer_text == '01:00'

        scheduler.advance(30)
        assert machine.snapshot().timer_text == '00:30'

        scheduler.advance(30)
        snap = machine.snapshot()
        assert not snap.timer_running
        assert snap.timer_text == '00:00'

        scheduler.advance(10)
        assert machine.snapshot().timer_text == '00:00'

    def test_count_down_warning_sounds_once(self, scheduler):
        calls = []
        settings = OverlaySettings(timer_direction='down', warning_at_minutes=1,
                                   play_timer_warning=True)
        machine = OverlayStateMachine(settings, scheduler, on_warning=lambda: calls.append(1))
        machine.start_ticking()
        _show(machine)
        scheduler.advance(59)
        assert calls == []
        scheduler.advance(5)
        assert calls == [1]
        assert machine.snapshot().warning_count == 1

    def test_count_up_warning_at_threshold(self, scheduler):
        calls = []
        settings = OverlaySettings(warning_at_minutes=1, play_timer_warning=True)
        machine = OverlayStateMachine(settings, scheduler, on_warning=lambda: calls.append(1))
        machine.start_ticking()
        _show(machine)
        scheduler.advance(120)
        assert calls == [1]
        snap = machine.snapshot()
        assert snap.timer_running
        assert snap.timer_text == '02:00'

    def test_warning_rearms_for_next_level(self, scheduler):
        settings = OverlaySettings(warning_at_minutes=1, play_timer_warning=True)
        machine = OverlayStateMachine(settings, scheduler)
        machine.start_ticking()
        _show(machine)
        scheduler.advance(61)
        machine.handle(Exit())
        _show(machine, LEVEL_B)
        scheduler.advance(61)
        assert machine.snapshot().warning_count == 2

    def test_warning_disabled(self, make_machine, scheduler):
        machine = make_machine(warning_at_minutes=1)
        machine.start_ticking()
        _show(machine)
        scheduler.advance(90)
        assert machine.snapshot().warning_count == 0

    def test_stop_ticking(self, make_machine, scheduler):
        machine = make_machine()
        machine.start_ticking()
        _show(machine)
        machine.stop_ticking()
        scheduler.advance(10)
        assert machine.snapshot().timer_text == '00:00'
        assert scheduler.pending == 0

    def test_shutdown_cancels_pending_actions(self, make_machine, scheduler):
        machine = make_machine()
        machine.start_ticking()
        _show(machine)
        machine.handle(Death())
        machine.handle(LevelLoaded(LEVEL_B))
        machine.shutdown()
        assert scheduler.pending == 0
        scheduler.advance(5)
        snap = machine.snapshot()
        assert snap.death_count == 0
        assert snap.level == LEVEL_A

    @pytest.mark.parametrize('seconds,text', [
        (0, '00:00'), (59.9, '00:59'), (61, '01:01'),
        (3600, '01:00:00'), (3725, '01:02:05'), (-3, '00:00'),
    ])
    def test_format_timer(self, seconds, text):
        assert format_timer(seconds) == text


# ── Snapshots & settings ──────────────────────────────────────────────────────

class TestSnapshot:

    def test_snapshot_is_frozen(self, make_machine):
        snap = _show(make_machine())
        with pytest.raises(dataclasses.FrozenInstanceError):
            snap.death_count = 5

    def test_snapshot_not_aliased_to_state(self, make_machine, scheduler):
        machine = make_machine()
        snap = _show(machine)
        machine.handle(Death())
        scheduler.advance(1)
        assert snap.death_count == 0
        assert machine.snapshot().death_count == 1

    def test_to_dict_is_json_serializable(self, make_machine):
        data = _show(make_machine()).to_dict()
        decoded = json.loads(json.dumps(data))
        assert decoded['level']['code'] == LEVEL_A.code
        assert decoded['fade_items'][0] == {'kind': 'name', 'text': 'Level A'}

    def test_listeners_receive_snapshots(self, make_machine, scheduler):
        machine = make_machine()
        seen = []
        machine.subscribe(seen.append)
        _show(machine)
        machine.handle(Death())
        scheduler.advance(0.5)
        assert seen[-1].death_count == 1
        assert all(s.level == LEVEL_A for s in seen)

    def test_display_notifies_once(self, make_machine, scheduler):
        machine = make_machine()
        seen = []
        machine.subscribe(seen.append)
        _show(machine)
        assert len(seen) == 1

        machine.handle(LevelLoaded(LEVEL_B))
        assert len(seen) == 2
        assert seen[-1].hidden and seen[-1].display_pending

        scheduler.advance(1.5)
        assert len(seen) == 3
        assert seen[-1].level == LEVEL_B and not seen[-1].hidden

    def test_invalid_timer_direction(self):
        with pytest.raises(ValueError):
            OverlaySettings(timer_direction='sideways')

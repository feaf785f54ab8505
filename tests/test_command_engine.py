"""
Tests for the command / acknowledgment engine.
"""

import pytest

from plclink.core.command_engine import CommandRequest, CommandState
from plclink.core.events import ControlGroup
from plclink.core.frame_codec import decode_status

from conftest import status_frame


def echo(value: int):
    return decode_status(status_frame(echo=value))


class TestCommandRequest:

    def test_zero_is_reserved(self):
        with pytest.raises(ValueError):
            CommandRequest(0)

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            CommandRequest(65536)

    def test_non_integer(self):
        with pytest.raises(ValueError):
            CommandRequest("5")


class TestOneShotCommand:
    """A one-shot command resolves on its echo and clears the register."""

    def test_initial_state(self, engine, store):
        assert engine.state == CommandState.IDLE
        assert engine.controls.is_enabled(ControlGroup.COMMAND_BUTTONS)
        assert engine.controls.is_enabled(ControlGroup.POWER_SWITCHES)
        assert store.command_register == 0

    def test_issue_writes_register_and_disables_controls(self, engine, store):
        controls = engine.issue(CommandRequest(5, "Enable"))
        assert store.command_register == 5
        assert engine.state == CommandState.PENDING
        assert controls.enabled == frozenset()
        assert controls.waiting is True
        assert controls.active_command == 5

    def test_issuing_control_stays_usable_while_pending(self, engine):
        controls = engine.issue(CommandRequest(7, "Jog+", sticky=True))
        assert controls.allows(ControlGroup.COMMAND_BUTTONS, 7)
        assert not controls.allows(ControlGroup.COMMAND_BUTTONS, 8)
        assert not controls.allows(ControlGroup.POWER_SWITCHES, 7)
        assert engine.issue(CommandRequest(7, "Jog+", sticky=True)).waiting
        assert engine.superseded_count == 1

    def test_power_switch_source_tracked(self, engine):
        controls = engine.issue(CommandRequest(3, "Servo", source=ControlGroup.POWER_SWITCHES))
        assert controls.allows(ControlGroup.POWER_SWITCHES, 3)
        assert not controls.allows(ControlGroup.COMMAND_BUTTONS, 3)
        engine.evaluate(echo(3))
        assert engine.controls.enabled_command is None

    def test_non_matching_echo_no_transition(self, engine, store):
        engine.issue(CommandRequest(5, "Enable"))
        assert engine.evaluate(echo(0)) is None
        assert engine.evaluate(echo(4)) is None
        assert engine.state == CommandState.PENDING
        assert store.command_register == 5

    def test_matching_echo_resolves(self, engine, store):
        engine.issue(CommandRequest(5, "Enable"))
        resolved = engine.evaluate(echo(5))
        assert resolved.command_id == 5
        assert resolved.label == "Enable"
        assert resolved.sticky is False
        assert engine.state == CommandState.IDLE
        assert store.command_register == 0
        assert engine.controls.enabled == frozenset(ControlGroup)
        assert engine.controls.active_command is None
        assert engine.resolved_count == 1

    def test_repeated_echo_after_resolution_ignored(self, engine):
        engine.issue(CommandRequest(5))
        engine.evaluate(echo(5))
        assert engine.evaluate(echo(5)) is None
        assert engine.state == CommandState.IDLE


class TestStickyCommand:
    """Sticky commands stay on the wire after acknowledgment."""

    def test_sticky_stays_active(self, engine, store):
        engine.issue(CommandRequest(12, "Jog+", sticky=True))
        resolved = engine.evaluate(echo(12))
        assert resolved.sticky is True
        assert engine.state == CommandState.ACKNOWLEDGED
        assert store.command_register == 12
        assert engine.controls.active_command == 12

    def test_sticky_reenables_command_buttons_only(self, engine):
        engine.issue(CommandRequest(12, "Jog+", sticky=True))
        engine.evaluate(echo(12))
        controls = engine.controls
        assert controls.is_enabled(ControlGroup.COMMAND_BUTTONS)
        assert not controls.is_enabled(ControlGroup.POWER_SWITCHES)
        assert controls.waiting is False

    def test_new_command_supersedes_sticky(self, engine, store):
        engine.issue(CommandRequest(12, "Jog+", sticky=True))
        engine.evaluate(echo(12))
        engine.issue(CommandRequest(13, "Stop"))
        assert engine.state == CommandState.PENDING
        assert store.command_register == 13
        engine.evaluate(echo(13))
        assert engine.state == CommandState.IDLE
        assert store.command_register == 0


class TestSuperseding:
    """A new request replaces the pending one; nothing is queued."""

    def test_second_issue_replaces_pending(self, engine, store):
        engine.issue(CommandRequest(7, "A"))
        engine.issue(CommandRequest(8, "B"))
        assert store.command_register == 8
        assert engine.pending.command_id == 8
        assert engine.superseded_count == 1

    def test_echo_of_superseded_id_ignored(self, engine):
        engine.issue(CommandRequest(7, "A"))
        engine.issue(CommandRequest(8, "B"))
        assert engine.evaluate(echo(7)) is None
        assert engine.state == CommandState.PENDING
        resolved = engine.evaluate(echo(8))
        assert resolved.command_id == 8
        assert engine.state == CommandState.IDLE

    def test_superseded_command_never_resolves_later(self, engine):
        engine.issue(CommandRequest(7))
        engine.issue(CommandRequest(8))
        engine.evaluate(echo(8))
        assert engine.evaluate(echo(7)) is None
        assert engine.resolved_count == 1


class TestReset:

    def test_reset_clears_pending(self, engine, store):
        engine.issue(CommandRequest(5))
        controls = engine.reset()
        assert engine.state == CommandState.IDLE
        assert engine.pending is None
        assert store.command_register == 0
        assert controls.enabled == frozenset(ControlGroup)

    def test_reset_clears_sticky(self, engine, store):
        engine.issue(CommandRequest(12, sticky=True))
        engine.evaluate(echo(12))
        engine.reset()
        assert engine.active is None
        assert store.command_register == 0

    def test_reset_when_idle_is_noop(self, engine):
        engine.reset()
        assert engine.state == CommandState.IDLE

"""
Command / Acknowledgment Engine
================================
Correlates operator-issued command ids with the controller's
echo of the command register.

State Diagram:

    IDLE ──► PENDING ──► ACKNOWLEDGED ──► IDLE      (one-shot)
               ▲  │            │
               └──┘            └──► (stays)         (sticky)
          (superseded)

    ACKNOWLEDGED ──► PENDING   (new command supersedes sticky)
    Any State    ──► IDLE      (reset on disconnect)

A newly issued request always replaces the pending one outright;
there is no queue. Snapshots whose echo does not match the
pending id cause no transition.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from plclink.config.register_map import UINT16_MAX
from plclink.core.events import (
    ALL_CONTROLS,
    CommandResolved,
    ControlGroup,
    ControlsState,
)
from plclink.core.frame_codec import StatusSnapshot
from plclink.core.parameter_store import ParameterStore

logger = logging.getLogger(__name__)


class CommandState(Enum):
    IDLE = "IDLE"
    PENDING = "PENDING"
    ACKNOWLEDGED = "ACKNOWLEDGED"


_TRANSITIONS = {
    CommandState.IDLE:         [CommandState.PENDING],
    CommandState.PENDING:      [CommandState.PENDING, CommandState.ACKNOWLEDGED,
                                CommandState.IDLE],
    CommandState.ACKNOWLEDGED: [CommandState.PENDING, CommandState.IDLE],
}

# Controls usable while a sticky command is active
_STICKY_SAFE_CONTROLS = frozenset({ControlGroup.COMMAND_BUTTONS})


@dataclass(frozen=True)
class CommandRequest:
    """An operator command. Sticky commands stay active after acknowledgment."""
    command_id: int
    label: str = ""
    sticky: bool = False
    source: ControlGroup = ControlGroup.COMMAND_BUTTONS

    def __post_init__(self):
        if isinstance(self.command_id, bool) or not isinstance(self.command_id, int):
            raise ValueError(f"command id must be an integer: {self.command_id!r}")
        if not 1 <= self.command_id <= UINT16_MAX:
            raise ValueError(
                f"command id must be 1-65535 (0 means no command): {self.command_id}"
            )


class CommandEngine:
    """
    State machine for the single control-command register.

    The engine is the only writer of the command slot in the
    ParameterStore. The controller calls `issue()` on operator
    action and `evaluate()` for every decoded StatusSnapshot.
    """

    def __init__(self, store: ParameterStore):
        self.store = store
        self._lock = threading.Lock()
        self._state = CommandState.IDLE
        self._state_entry_time = time.monotonic()
        self._pending: Optional[CommandRequest] = None
        self._active: Optional[CommandRequest] = None
        self._enabled = ALL_CONTROLS
        self._superseded_count = 0
        self._resolved_count = 0

    @property
    def state(self) -> CommandState:
        with self._lock:
            return self._state

    @property
    def pending(self) -> Optional[CommandRequest]:
        with self._lock:
            return self._pending

    @property
    def active(self) -> Optional[CommandRequest]:
        """The highlighted command: pending, or the acknowledged sticky one."""
        with self._lock:
            return self._active

    @property
    def time_in_state(self) -> float:
        with self._lock:
            return time.monotonic() - self._state_entry_time

    @property
    def controls(self) -> ControlsState:
        with self._lock:
            return self._controls()

    @property
    def superseded_count(self) -> int:
        return self._superseded_count

    @property
    def resolved_count(self) -> int:
        return self._resolved_count

    def issue(self, request: CommandRequest) -> ControlsState:
        """Put a command on the wire and wait for its echo."""
        with self._lock:
            previous = self._pending
            if previous is not None:
                self._superseded_count += 1
                logger.warning(
                    "Command %d (%s) superseded by %d before acknowledgment",
                    previous.command_id, previous.label, request.command_id,
                )
            self._pending = request
            self._active = request
            self._enabled = frozenset()
            self.store.set_command_register(request.command_id)
            self._transition(CommandState.PENDING)
            logger.info(
                "Command set: %s (ID: %d%s) - waiting for acknowledgment",
                request.label or "-", request.command_id,
                ", sticky" if request.sticky else "",
            )
            return self._controls()

    def evaluate(self, snapshot: StatusSnapshot) -> Optional[CommandResolved]:
        """Check a status snapshot for the pending command's echo."""
        with self._lock:
            request = self._pending
            if self._state != CommandState.PENDING or request is None:
                return None
            if snapshot.command_echo != request.command_id:
                return None

            self._transition(CommandState.ACKNOWLEDGED)
            self._pending = None
            self._resolved_count += 1

            if request.sticky:
                # Register and highlight stay until superseded
                self._enabled = _STICKY_SAFE_CONTROLS
                logger.info(
                    "Sticky command %d (%s) acknowledged, remains active",
                    request.command_id, request.label or "-",
                )
            else:
                self.store.set_command_register(0)
                self._active = None
                self._enabled = ALL_CONTROLS
                self._transition(CommandState.IDLE)
                logger.info(
                    "Command %d (%s) acknowledged and completed by PLC",
                    request.command_id, request.label or "-",
                )

            return CommandResolved(
                command_id=request.command_id,
                label=request.label,
                sticky=request.sticky,
            )

    def reset(self) -> ControlsState:
        """Drop any pending or active command and clear the register."""
        with self._lock:
            if self._pending is not None:
                logger.warning(
                    "Discarding unacknowledged command %d (%s)",
                    self._pending.command_id, self._pending.label or "-",
                )
            self._pending = None
            self._active = None
            self._enabled = ALL_CONTROLS
            self.store.set_command_register(0)
            if self._state != CommandState.IDLE:
                self._transition(CommandState.IDLE)
            return self._controls()

    def _transition(self, target: CommandState) -> bool:
        if target not in _TRANSITIONS.get(self._state, []):
            logger.warning(
                "Illegal command transition %s -> %s",
                self._state.value, target.value,
            )
            return False
        logger.debug("Command state: %s -> %s", self._state.value, target.value)
        self._state = target
        self._state_entry_time = time.monotonic()
        return True

    def _controls(self) -> ControlsState:
        pending = self._pending
        return ControlsState(
            enabled=self._enabled,
            active_command=self._active.command_id if self._active else None,
            waiting=self._state == CommandState.PENDING,
            enabled_command=pending.command_id if pending else None,
            enabled_source=pending.source if pending else None,
        )

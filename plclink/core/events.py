"""
Typed Event Channels
====================
Message types exchanged between the transport sessions, the
transmit scheduler and the controller, plus the notifications
the controller publishes to observers (console, UI widgets).

Each notification kind has its own EventChannel, so there is no
string-keyed bus and no unmatched emit/listen pair.
"""

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventChannel(Generic[T]):
    """A list of subscribers for one event type."""

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()
        self._subscribers: list = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Add a subscriber; returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: T):
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Subscriber failed on channel %s", self.name)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)


# ── Session → controller messages ────────────────────────────

@dataclass(frozen=True)
class SessionEvent:
    session_id: int


@dataclass(frozen=True)
class FrameReceived(SessionEvent):
    data: bytes = b""


@dataclass(frozen=True)
class FrameDropped(SessionEvent):
    length: int = 0
    reason: str = ""


@dataclass(frozen=True)
class SessionLost(SessionEvent):
    error: Optional[BaseException] = None


# ── Controller → observer notifications ──────────────────────

@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class CommandResolved:
    command_id: int
    label: str
    sticky: bool


class ControlGroup(Enum):
    COMMAND_BUTTONS = "COMMAND_BUTTONS"
    POWER_SWITCHES = "POWER_SWITCHES"


ALL_CONTROLS = frozenset(ControlGroup)


@dataclass(frozen=True)
class ControlsState:
    """Which operator controls may be used right now."""
    enabled: frozenset = field(default_factory=lambda: ALL_CONTROLS)
    active_command: Optional[int] = None
    waiting: bool = False
    # The issuing control stays usable while its group is disabled
    enabled_command: Optional[int] = None
    enabled_source: Optional[ControlGroup] = None

    def is_enabled(self, group: ControlGroup) -> bool:
        return group in self.enabled

    def allows(self, group: ControlGroup, command_id: int) -> bool:
        """True if the control for `command_id` in `group` may be used."""
        if group in self.enabled:
            return True
        return group == self.enabled_source and command_id == self.enabled_command

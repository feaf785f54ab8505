"""
Parameter Store
===============
Shared state between the operator and the transmit cadence:

    - the live outbound parameter vector (16 x uint16)
    - the most recent inbound StatusSnapshot (or None)

Operator edits and command-register updates take the same lock
as the scheduler snapshot, so a tick never encodes a torn vector.
The status snapshot is swapped by reference; readers keep the old
object until the new one is fully decoded.
"""

import logging
import threading
from typing import Callable, Optional, Union

from plclink.config.register_map import (
    COMMAND_SLOT,
    PARAMETER_COUNT,
    UINT16_MAX,
    resolve_slot,
)
from plclink.core.frame_codec import StatusSnapshot

logger = logging.getLogger(__name__)

StatusListener = Callable[[StatusSnapshot], None]


class ParameterStore:
    """
    Thread-safe holder for the outbound vector and inbound status.

    The command-register slot is only writable through
    set_command_register(), which the command engine owns; generic
    parameter edits to that slot are rejected.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._values = [0] * PARAMETER_COUNT
        self._status: Optional[StatusSnapshot] = None
        self._status_count = 0
        self._listeners: list = []

    # ── Outbound vector ──────────────────────────────────────

    def set_value(self, slot: Union[int, str], value: int):
        """Write one operator-editable slot (validated)."""
        index = self._validate(slot, value)
        with self._lock:
            self._values[index] = value

    def set_values(self, values: dict):
        """Write several slots atomically; nothing is written if any is invalid."""
        checked = {self._validate(slot, v): v for slot, v in values.items()}
        with self._lock:
            for index, value in checked.items():
                self._values[index] = value

    def read(self, slot: Union[int, str]) -> int:
        index = resolve_slot(slot).index
        with self._lock:
            return self._values[index]

    def set_command_register(self, value: int):
        """Write the control-command slot (command engine only)."""
        if not 0 <= value <= UINT16_MAX:
            raise ValueError(f"command id out of range 0-65535: {value}")
        with self._lock:
            self._values[COMMAND_SLOT] = value

    @property
    def command_register(self) -> int:
        with self._lock:
            return self._values[COMMAND_SLOT]

    def snapshot_for_send(self) -> tuple:
        """Return an immutable copy of the vector, safe to encode."""
        with self._lock:
            return tuple(self._values)

    @staticmethod
    def _validate(slot: Union[int, str], value: int) -> int:
        try:
            resolved = resolve_slot(slot)
        except KeyError as exc:
            raise ValueError(str(exc)) from None
        if resolved.is_command:
            raise ValueError(
                f"slot {resolved.index} ({resolved.name}) is owned by the command engine"
            )
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"value must be an integer: {value!r}")
        if not 0 <= value <= UINT16_MAX:
            raise ValueError(f"value out of range 0-65535: {value}")
        return resolved.index

    # ── Inbound status ───────────────────────────────────────

    def latest_status(self) -> Optional[StatusSnapshot]:
        """Most recent snapshot, or None before the first receipt."""
        with self._lock:
            return self._status

    @property
    def status_count(self) -> int:
        with self._lock:
            return self._status_count

    def update_status(self, snapshot: StatusSnapshot):
        """Replace the status snapshot and notify listeners."""
        with self._lock:
            self._status = snapshot
            self._status_count += 1
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Status listener failed")

    def clear_status(self):
        with self._lock:
            self._status = None

    def on_status_updated(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener; returns a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def remove():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return remove

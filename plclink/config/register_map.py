"""
Register Map
============
Names and fixed positions of every value carried by the two
wire frames. The frame shapes themselves are fixed; this map
only attaches operator-facing names to slots.

Outbound parameter frame (32 bytes):
  16 x uint16 big-endian, slot 9 = control-command register

Inbound status frame (26 bytes):
  bytes 0-4   40 bit-packed flags
  byte  5     filler (ignored)
  bytes 6-25  10 x uint16 big-endian, index 9 = command echo
"""

from dataclasses import dataclass
from typing import Union

PARAMETER_COUNT = 16
COMMAND_SLOT = 9

STATUS_FLAG_BYTES = 5
STATUS_FLAG_COUNT = STATUS_FLAG_BYTES * 8
STATUS_FILLER_OFFSET = 5
STATUS_VALUE_OFFSET = 6
STATUS_VALUE_COUNT = 10
COMMAND_ECHO_INDEX = 9

OUTBOUND_FRAME_SIZE = PARAMETER_COUNT * 2
INBOUND_FRAME_SIZE = STATUS_VALUE_OFFSET + STATUS_VALUE_COUNT * 2

UINT16_MAX = 0xFFFF


@dataclass(frozen=True)
class ParameterSlot:
    """A named position in the outbound parameter vector."""
    index: int
    name: str
    description: str = ""

    @property
    def is_command(self) -> bool:
        return self.index == COMMAND_SLOT


_NAMED_SLOTS = {
    0: ("SPEED_MODE", "Speed mode selector"),
    1: ("TARGET_SPEED", "Target speed"),
    2: ("POSITION_X", "Target position X"),
    3: ("POSITION_Y", "Target position Y"),
    4: ("POSITION_Z", "Target position Z"),
    5: ("OPERATION_MODE", "Operation mode"),
    COMMAND_SLOT: ("CONTROL_COMMAND", "Control-command register (engine owned)"),
}

PARAMETER_SLOTS = tuple(
    ParameterSlot(i, *_NAMED_SLOTS.get(i, (f"PARAM_{i}", "")))
    for i in range(PARAMETER_COUNT)
)

STATUS_VALUE_NAMES = tuple(
    "COMMAND_ECHO" if i == COMMAND_ECHO_INDEX else f"STATUS_{i}"
    for i in range(STATUS_VALUE_COUNT)
)

# Flag index = byte * 8 + bit (LSB-first numbering)
STATUS_FLAG_NAMES = tuple(
    f"FLAG_{i // 8}_{i % 8}" for i in range(STATUS_FLAG_COUNT)
)

_SLOT_BY_NAME = {slot.name: slot for slot in PARAMETER_SLOTS}


def resolve_slot(key: Union[int, str]) -> ParameterSlot:
    """Look up a parameter slot by index or (case-insensitive) name."""
    if isinstance(key, str):
        text = key.strip()
        if text.isdigit():
            key = int(text)
        else:
            slot = _SLOT_BY_NAME.get(text.upper())
            if slot is None:
                raise KeyError(f"Unknown parameter slot: {key}")
            return slot
    if not 0 <= key < PARAMETER_COUNT:
        raise KeyError(f"Parameter slot out of range: {key}")
    return PARAMETER_SLOTS[key]


def flag_index(name: str) -> int:
    """Return the flag index for a FLAG_<byte>_<bit> name."""
    try:
        return STATUS_FLAG_NAMES.index(name.strip().upper())
    except ValueError:
        raise KeyError(f"Unknown status flag: {name}") from None


def status_value_index(name: str) -> int:
    """Return the status integer index for a STATUS_<n> / COMMAND_ECHO name."""
    try:
        return STATUS_VALUE_NAMES.index(name.strip().upper())
    except ValueError:
        raise KeyError(f"Unknown status value: {name}") from None

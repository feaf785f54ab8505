"""
Frame Codec
===========
Stateless encode/decode of the two fixed wire layouts.

    Outbound (32 bytes):  16 x uint16, big-endian, slot order,
                          no header, length prefix or checksum.

    Inbound (26 bytes):   5 bytes of bit-packed flags (40 flags)
                          1 filler byte (ignored)
                          10 x uint16, big-endian

Flag bit order is explicit. LSB_FIRST (the default) maps bit 0
of byte k to flag 8k; MSB_FIRST maps bit 7 of byte k to flag 8k.
"""

import struct
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Sequence, Union

from plclink.config.register_map import (
    COMMAND_ECHO_INDEX,
    INBOUND_FRAME_SIZE,
    OUTBOUND_FRAME_SIZE,
    PARAMETER_COUNT,
    STATUS_FLAG_BYTES,
    STATUS_FLAG_COUNT,
    STATUS_FLAG_NAMES,
    STATUS_VALUE_COUNT,
    STATUS_VALUE_NAMES,
    STATUS_VALUE_OFFSET,
    UINT16_MAX,
    flag_index,
    status_value_index,
)
from plclink.core.errors import MalformedFrame

_PARAMETER_STRUCT = struct.Struct(f">{PARAMETER_COUNT}H")
_STATUS_VALUE_STRUCT = struct.Struct(f">{STATUS_VALUE_COUNT}H")


class BitOrder(Enum):
    LSB_FIRST = "lsb"
    MSB_FIRST = "msb"


@dataclass(frozen=True)
class StatusSnapshot:
    """
    One decoded inbound frame.

    Immutable; the store replaces it wholesale on every successful
    decode so readers never see a partially updated snapshot.
    """
    flags: tuple
    values: tuple
    received_at: float = field(default_factory=time.monotonic, compare=False)

    @property
    def command_echo(self) -> int:
        return self.values[COMMAND_ECHO_INDEX]

    def flag(self, key: Union[int, str]) -> bool:
        index = flag_index(key) if isinstance(key, str) else key
        return self.flags[index]

    def value(self, key: Union[int, str]) -> int:
        index = status_value_index(key) if isinstance(key, str) else key
        return self.values[index]

    def as_dict(self) -> dict:
        return {
            "flags": dict(zip(STATUS_FLAG_NAMES, self.flags)),
            "values": dict(zip(STATUS_VALUE_NAMES, self.values)),
        }


def _check_uint16(values: Sequence[int], count: int):
    if len(values) != count:
        raise ValueError(f"expected {count} values, got {len(values)}")
    for i, v in enumerate(values):
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValueError(f"value at slot {i} is not an integer: {v!r}")
        if not 0 <= v <= UINT16_MAX:
            raise ValueError(f"value at slot {i} out of range 0-65535: {v}")


def encode_parameters(values: Sequence[int]) -> bytes:
    """Encode 16 parameter values into a 32-byte outbound frame.

    Out-of-range values are rejected with ValueError, never clamped.
    """
    _check_uint16(values, PARAMETER_COUNT)
    return _PARAMETER_STRUCT.pack(*values)


def decode_parameters(frame: bytes) -> tuple:
    """Reverse of encode_parameters (used by the simulator and tests)."""
    if len(frame) != OUTBOUND_FRAME_SIZE:
        raise MalformedFrame(len(frame), OUTBOUND_FRAME_SIZE)
    return _PARAMETER_STRUCT.unpack(frame)


def unpack_flags(data: bytes, bit_order: BitOrder = BitOrder.LSB_FIRST) -> tuple:
    """Expand packed flag bytes into a tuple of booleans."""
    if bit_order is BitOrder.LSB_FIRST:
        shifts = range(8)
    else:
        shifts = range(7, -1, -1)
    return tuple(bool((byte >> s) & 1) for byte in data for s in shifts)


def pack_flags(flags: Sequence[bool], bit_order: BitOrder = BitOrder.LSB_FIRST) -> bytes:
    """Pack booleans into bytes, 8 flags per byte."""
    if len(flags) % 8:
        raise ValueError("flag count must be a multiple of 8")
    out = bytearray()
    for start in range(0, len(flags), 8):
        byte = 0
        for offset, flag in enumerate(flags[start:start + 8]):
            if flag:
                bit = offset if bit_order is BitOrder.LSB_FIRST else 7 - offset
                byte |= 1 << bit
        out.append(byte)
    return bytes(out)


def decode_status(
    frame: bytes, bit_order: BitOrder = BitOrder.LSB_FIRST
) -> StatusSnapshot:
    """Decode a 26-byte inbound frame.

    Raises MalformedFrame for any other length; no partial decode
    is attempted. Any 26-byte buffer decodes successfully.
    """
    if len(frame) != INBOUND_FRAME_SIZE:
        raise MalformedFrame(len(frame), INBOUND_FRAME_SIZE)
    frame = bytes(frame)
    flags = unpack_flags(frame[:STATUS_FLAG_BYTES], bit_order)
    values = _STATUS_VALUE_STRUCT.unpack_from(frame, STATUS_VALUE_OFFSET)
    return StatusSnapshot(flags=flags, values=values)


def encode_status(
    flags: Sequence[bool],
    values: Sequence[int],
    bit_order: BitOrder = BitOrder.LSB_FIRST,
    filler: int = 0,
) -> bytes:
    """Build a 26-byte inbound frame (controller side; simulator and tests)."""
    if len(flags) != STATUS_FLAG_COUNT:
        raise ValueError(f"expected {STATUS_FLAG_COUNT} flags, got {len(flags)}")
    _check_uint16(values, STATUS_VALUE_COUNT)
    return (
        pack_flags(flags, bit_order)
        + bytes([filler & 0xFF])
        + _STATUS_VALUE_STRUCT.pack(*values)
    )

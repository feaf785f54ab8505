"""
Tests for the wire frame codec.
"""

import random
import struct

import pytest

from plclink.core.errors import MalformedFrame
from plclink.core.frame_codec import (
    BitOrder,
    decode_parameters,
    decode_status,
    encode_parameters,
    encode_status,
    pack_flags,
    unpack_flags,
)


class TestParameterFrame:
    """Outbound 32-byte parameter frames."""

    def test_frame_is_32_bytes(self):
        assert len(encode_parameters([0] * 16)) == 32

    def test_big_endian_slot_order(self):
        values = [0] * 16
        values[0] = 0x0102
        values[15] = 0xA0B0
        frame = encode_parameters(values)
        assert frame[0:2] == b"\x01\x02"
        assert frame[30:32] == b"\xa0\xb0"

    def test_command_slot_at_offset_18(self):
        values = [0] * 16
        values[9] = 12
        frame = encode_parameters(values)
        assert frame[18:20] == b"\x00\x0c"

    def test_decode_recovers_values(self):
        values = list(range(100, 116))
        assert decode_parameters(encode_parameters(values)) == tuple(values)

    def test_out_of_range_rejected(self):
        values = [0] * 16
        values[3] = 70000
        with pytest.raises(ValueError, match="out of range"):
            encode_parameters(values)

    def test_negative_rejected(self):
        values = [0] * 16
        values[0] = -1
        with pytest.raises(ValueError):
            encode_parameters(values)

    def test_wrong_count_rejected(self):
        with pytest.raises(ValueError):
            encode_parameters([0] * 15)

    def test_non_integer_rejected(self):
        values = [0] * 16
        values[2] = 1.5
        with pytest.raises(ValueError):
            encode_parameters(values)

    def test_decode_wrong_length(self):
        with pytest.raises(MalformedFrame):
            decode_parameters(b"\x00" * 31)


class TestStatusFrame:
    """Inbound 26-byte status frames."""

    def test_all_zero_frame(self):
        snap = decode_status(bytes(26))
        assert snap.flags == (False,) * 40
        assert snap.values == (0,) * 10
        assert snap.command_echo == 0

    def test_lsb_first_flag_mapping(self):
        frame = bytes([0x01, 0x00, 0x00, 0x00, 0x80]) + bytes(21)
        snap = decode_status(frame, BitOrder.LSB_FIRST)
        assert snap.flags[0] is True
        assert snap.flags[39] is True
        assert sum(snap.flags) == 2

    def test_msb_first_flag_mapping(self):
        frame = bytes([0x01, 0x00, 0x00, 0x00, 0x80]) + bytes(21)
        snap = decode_status(frame, BitOrder.MSB_FIRST)
        assert snap.flags[7] is True
        assert snap.flags[32] is True
        assert sum(snap.flags) == 2

    def test_filler_byte_ignored(self):
        base = bytearray(26)
        other = bytearray(26)
        other[5] = 0xFF
        assert decode_status(bytes(base)) == decode_status(bytes(other))

    def test_values_big_endian(self):
        values = struct.pack(">10H", *range(1, 11))
        snap = decode_status(bytes(6) + values)
        assert snap.values == tuple(range(1, 11))

    def test_echo_is_last_value(self):
        frame = bytes(24) + b"\x00\x05"
        assert decode_status(frame).command_echo == 5

    @pytest.mark.parametrize("length", [0, 25, 27, 32])
    def test_wrong_length_is_malformed(self, length):
        with pytest.raises(MalformedFrame) as exc:
            decode_status(bytes(length))
        assert exc.value.length == length
        assert exc.value.expected == 26

    def test_malformed_is_value_error(self):
        with pytest.raises(ValueError):
            decode_status(b"")

    @pytest.mark.parametrize("order", list(BitOrder))
    def test_encode_then_decode(self, order):
        flags = [i % 3 == 0 for i in range(40)]
        values = [i * 1000 for i in range(10)]
        snap = decode_status(encode_status(flags, values, order), order)
        assert snap.flags == tuple(flags)
        assert snap.values == tuple(values)

    def test_named_accessors(self):
        flags = [False] * 40
        flags[9] = True
        snap = decode_status(encode_status(flags, [0] * 9 + [42]))
        assert snap.flag("FLAG_1_1") is True
        assert snap.value("COMMAND_ECHO") == 42
        assert snap.as_dict()["values"]["COMMAND_ECHO"] == 42


class TestFlagPacking:

    def test_pack_requires_multiple_of_8(self):
        with pytest.raises(ValueError):
            pack_flags([True] * 7)

    def test_unpack_byte(self):
        assert unpack_flags(b"\x05") == (True, False, True, False, False, False, False, False)
        assert unpack_flags(b"\x05", BitOrder.MSB_FIRST)[-1] is True


def _random_vectors(count: int, width: int, seed: int):
    rng = random.Random(seed)
    yield [0] * width
    yield [0xFFFF] * width
    for _ in range(count):
        yield [rng.choice((0, 0xFFFF, rng.randrange(0x10000))) for _ in range(width)]


class TestCodecProperties:
    """Seeded sweeps over arbitrary vectors and buffers."""

    def test_parameter_vectors_survive_encoding(self):
        for values in _random_vectors(500, 16, seed=1):
            frame = encode_parameters(values)
            assert len(frame) == 32
            assert decode_parameters(frame) == tuple(values)

    @pytest.mark.parametrize("slot", range(16))
    def test_boundary_value_in_each_slot(self, slot):
        for boundary in (0, 0xFFFF):
            values = [0x5A5A] * 16
            values[slot] = boundary
            frame = encode_parameters(values)
            assert frame[slot * 2:slot * 2 + 2] == struct.pack(">H", boundary)
            assert decode_parameters(frame)[slot] == boundary

    @pytest.mark.parametrize("order", list(BitOrder))
    def test_status_vectors_survive_encoding(self, order):
        rng = random.Random(2)
        for values in _random_vectors(300, 10, seed=3):
            flags = [rng.random() < 0.5 for _ in range(40)]
            snap = decode_status(encode_status(flags, values, order), order)
            assert snap.flags == tuple(flags)
            assert snap.values == tuple(values)
            assert snap.command_echo == values[9]

    @pytest.mark.parametrize("order", list(BitOrder))
    def test_any_26_byte_buffer_decodes(self, order):
        rng = random.Random(4)
        buffers = [bytes(26), b"\xff" * 26]
        buffers += [bytes(rng.randrange(256) for _ in range(26)) for _ in range(1000)]
        for buf in buffers:
            snap = decode_status(buf, order)
            assert len(snap.flags) == 40
            assert len(snap.values) == 10
            assert all(0 <= v <= 0xFFFF for v in snap.values)
            assert snap.command_echo == int.from_bytes(buf[24:26], "big")

    def test_all_ones_buffer(self):
        for order in BitOrder:
            snap = decode_status(b"\xff" * 26, order)
            assert snap.flags == (True,) * 40
            assert snap.values == (0xFFFF,) * 10

    def test_random_wrong_lengths_are_malformed(self):
        rng = random.Random(5)
        for length in rng.sample([n for n in range(0, 64) if n != 26], 20):
            with pytest.raises(MalformedFrame):
                decode_status(bytes(rng.randrange(256) for _ in range(length)))

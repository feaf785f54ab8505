"""
Tests for the loopback PLC simulator.
"""

import socket

import pytest

from plclink.core.frame_codec import BitOrder, decode_status, encode_parameters

from conftest import wait_until


def params_with_command(command_id: int) -> bytes:
    values = [0] * 16
    values[9] = command_id
    return encode_parameters(values)


class TestPLCSimulator:

    def test_tcp_echo(self, tcp_sim):
        client = socket.create_connection(("127.0.0.1", tcp_sim.port), timeout=1.0)
        try:
            client.sendall(params_with_command(12))
            reply = client.recv(26)
            assert decode_status(reply).command_echo == 12
            assert tcp_sim.frame_count == 1
        finally:
            client.close()

    def test_split_parameter_frame(self, tcp_sim):
        client = socket.create_connection(("127.0.0.1", tcp_sim.port), timeout=1.0)
        try:
            frame = params_with_command(3)
            client.sendall(frame[:10])
            client.sendall(frame[10:])
            assert tcp_sim.wait_for_frames(1)
            assert tcp_sim.last_parameters[9] == 3
        finally:
            client.close()

    def test_flags_and_values(self, plc_sim):
        plc_sim.set_flag(0, True)
        plc_sim.set_value(2, 400)
        snap = decode_status(plc_sim.status_frame())
        assert snap.flags[0] is True
        assert snap.values[2] == 400

    def test_msb_bit_order(self):
        from plclink.drivers.simulator import PLCSimulator
        sim = PLCSimulator(bit_order=BitOrder.MSB_FIRST)
        sim.set_flag(0, True)
        assert sim.status_frame()[0] == 0x80

    def test_value_range_checked(self, plc_sim):
        with pytest.raises(ValueError):
            plc_sim.set_value(0, 65536)

    def test_udp_replies_to_sender(self, plc_sim):
        port = plc_sim.start_udp()
        client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        client.settimeout(1.0)
        try:
            client.sendto(params_with_command(5), ("127.0.0.1", port))
            reply, _ = client.recvfrom(64)
            assert len(reply) == 26
            assert decode_status(reply).command_echo == 5
        finally:
            client.close()

    def test_udp_ignores_wrong_size(self, plc_sim):
        port = plc_sim.start_udp()
        client = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            client.sendto(b"\x00" * 10, ("127.0.0.1", port))
            client.sendto(params_with_command(1), ("127.0.0.1", port))
            assert plc_sim.wait_for_frames(1)
            assert plc_sim.frame_count == 1
        finally:
            client.close()

    def test_start_twice_rejected(self, tcp_sim):
        with pytest.raises(RuntimeError):
            tcp_sim.start_tcp()

    def test_drop_client(self, tcp_sim):
        client = socket.create_connection(("127.0.0.1", tcp_sim.port), timeout=1.0)
        try:
            assert wait_until(lambda: tcp_sim.has_client)
            tcp_sim.drop_client()
            assert client.recv(10) == b""
        finally:
            client.close()

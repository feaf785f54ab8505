"""
Shared test fixtures for the PLC link test suite.
"""

import socket
import time

import pytest

from plclink.config.register_map import STATUS_FLAG_COUNT, STATUS_VALUE_COUNT
from plclink.config.settings import Settings
from plclink.core.command_engine import CommandEngine
from plclink.core.controller import LinkController
from plclink.core.frame_codec import encode_status
from plclink.core.parameter_store import ParameterStore
from plclink.drivers.simulator import PLCSimulator


def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> bool:
    """Poll `predicate` until it is truthy or `timeout` elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())


def status_frame(echo: int = 0, flags=None, values=None) -> bytes:
    """Build a 26-byte status frame with the given command echo."""
    flags = list(flags) if flags is not None else [False] * STATUS_FLAG_COUNT
    values = list(values) if values is not None else [0] * STATUS_VALUE_COUNT
    values[9] = echo
    return encode_status(flags, values)


class FakeClock:
    """Monotonic clock driven by the code under test's own waits."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.waits = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def store():
    return ParameterStore()


@pytest.fixture
def engine(store):
    return CommandEngine(store)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    s = Settings()
    s._config_path = str(tmp_path / "settings.json")
    s.read_timeout_sec = 0.05
    s.connect_timeout_sec = 1.0
    return s


@pytest.fixture
def plc_sim():
    """Loopback PLC simulator (started by the test)."""
    sim = PLCSimulator()
    yield sim
    sim.stop()


@pytest.fixture
def tcp_sim(plc_sim):
    """Simulator listening on an ephemeral TCP port."""
    plc_sim.start_tcp()
    return plc_sim


@pytest.fixture
def controller(settings):
    """Link controller (not connected)."""
    ctrl = LinkController(settings)
    yield ctrl
    ctrl.close()


@pytest.fixture
def free_udp_port():
    """An ephemeral UDP port that was free a moment ago."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port

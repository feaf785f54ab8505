"""
PLC Simulator
=============
Simulates the controller side of the link for development and
testing without real hardware:

  - accepts 32-byte parameter frames over TCP or UDP
  - echoes the command register into the status integers
  - answers every received frame with a 26-byte status frame
  - exposes controls to set flags/values, suppress the echo,
    fragment TCP writes, inject raw bytes and drop the client

Run it on loopback and point the link at it.
"""

import logging
import socket
import threading
import time
from collections import deque
from typing import Optional

from plclink.config.register_map import (
    COMMAND_ECHO_INDEX,
    COMMAND_SLOT,
    OUTBOUND_FRAME_SIZE,
    STATUS_FLAG_COUNT,
    STATUS_VALUE_COUNT,
    UINT16_MAX,
)
from plclink.core.frame_codec import BitOrder, decode_parameters, encode_status
from plclink.drivers.transport import FrameAssembler

logger = logging.getLogger(__name__)


class PLCSimulator:
    """
    Loopback stand-in for the PLC.

    One transport at a time: call start_tcp() or start_udp(),
    then stop(). Received parameter frames are kept (most recent
    last) for inspection.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        bit_order: BitOrder = BitOrder.LSB_FIRST,
        history: int = 1000,
    ):
        self.host = host
        self.bit_order = bit_order
        self._lock = threading.Lock()
        self._flags = [False] * STATUS_FLAG_COUNT
        self._values = [0] * STATUS_VALUE_COUNT

        self.auto_echo = True           # Copy command register into echo value
        self.auto_reply = True          # Answer each frame with a status frame
        self.fragment_size = 0          # >0: split TCP status writes into chunks
        self.filler = 0

        self._received: deque = deque(maxlen=history)
        self._frame_count = 0
        self._frame_event = threading.Condition(self._lock)

        self._server: Optional[socket.socket] = None
        self._client: Optional[socket.socket] = None
        self._peer: Optional[tuple] = None
        self._mode: Optional[str] = None
        self._running = False
        self._thread: Optional[threading.Thread] = None

    # ── Lifecycle ────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.getsockname()[1]

    def start_tcp(self, port: int = 0) -> int:
        """Listen for one TCP client at a time. Returns the bound port."""
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        server.bind((self.host, port))
        server.listen(1)
        server.settimeout(0.1)
        return self._start(server, "tcp", self._serve_tcp)

    def start_udp(self, port: int = 0, reply_to: Optional[tuple] = None) -> int:
        """Bind a UDP port. Replies go to `reply_to` or the sender's address."""
        server = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        server.bind((self.host, port))
        server.settimeout(0.1)
        self._peer = reply_to
        return self._start(server, "udp", self._serve_udp)

    def _start(self, server: socket.socket, mode: str, target) -> int:
        if self._running:
            server.close()
            raise RuntimeError("Simulator already running")
        self._server = server
        self._mode = mode
        self._running = True
        self._thread = threading.Thread(
            target=target, name=f"plc-sim-{mode}", daemon=True
        )
        self._thread.start()
        logger.info("PLC simulator listening on %s %s:%d", mode.upper(), self.host, self.port)
        return self.port

    def stop(self):
        """Stop serving and close all sockets."""
        self._running = False
        if self._thread:
            self._thread.join(timeout=2.0)
        self._thread = None
        self.drop_client()
        if self._server:
            self._server.close()
            self._server = None
        self._mode = None
        logger.info("PLC simulator stopped")

    def drop_client(self):
        """Close the current TCP client connection (simulated remote close)."""
        client, self._client = self._client, None
        if client is not None:
            try:
                client.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            client.close()

    # ── Simulation Controls ──────────────────────────────────

    def set_flag(self, index: int, value: bool):
        with self._lock:
            self._flags[index] = bool(value)

    def set_value(self, index: int, value: int):
        if not 0 <= value <= UINT16_MAX:
            raise ValueError(f"value out of range 0-65535: {value}")
        with self._lock:
            self._values[index] = value

    def set_echo(self, value: int):
        """Force the command echo value (use with auto_echo = False)."""
        self.set_value(COMMAND_ECHO_INDEX, value)

    def status_frame(self) -> bytes:
        with self._lock:
            return encode_status(
                self._flags, self._values, self.bit_order, self.filler
            )

    def push_status(self):
        """Send one unsolicited status frame to the connected peer."""
        self.send_raw(self.status_frame())

    def send_raw(self, data: bytes):
        """Send arbitrary bytes (TCP) or one datagram (UDP) to the peer."""
        if self._mode == "tcp":
            if self._client is None:
                raise RuntimeError("No TCP client connected")
            self._write_tcp(self._client, data)
        elif self._mode == "udp":
            if self._peer is None:
                raise RuntimeError("No UDP peer known yet")
            self._server.sendto(data, self._peer)
        else:
            raise RuntimeError("Simulator not running")

    # ── Inspection ───────────────────────────────────────────

    @property
    def frame_count(self) -> int:
        with self._lock:
            return self._frame_count

    @property
    def last_parameters(self) -> Optional[tuple]:
        with self._lock:
            return self._received[-1] if self._received else None

    @property
    def received(self) -> list:
        with self._lock:
            return list(self._received)

    @property
    def has_client(self) -> bool:
        return self._client is not None

    def wait_for_frames(self, count: int, timeout: float = 2.0) -> bool:
        """Block until at least `count` frames have been received in total."""
        deadline = time.monotonic() + timeout
        with self._frame_event:
            while self._frame_count < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._frame_event.wait(remaining)
            return True

    # ── Internal ─────────────────────────────────────────────

    def _handle_frame(self, frame: bytes) -> Optional[bytes]:
        params = decode_parameters(frame)
        with self._frame_event:
            self._received.append(params)
            self._frame_count += 1
            if self.auto_echo:
                self._values[COMMAND_ECHO_INDEX] = params[COMMAND_SLOT]
            self._frame_event.notify_all()
        if self.auto_reply:
            return self.status_frame()
        return None

    def _serve_tcp(self):
        while self._running:
            try:
                client, addr = self._server.accept()
            except socket.timeout:
                continue
            except OSError:
                break
            logger.info("PLC simulator client connected from %s:%d", *addr)
            client.settimeout(0.1)
            self._client = client
            self._serve_client(client)
            logger.info("PLC simulator client disconnected")

    def _serve_client(self, client: socket.socket):
        assembler = FrameAssembler(frame_size=OUTBOUND_FRAME_SIZE)
        while self._running and self._client is client:
            try:
                data = client.recv(4096)
            except socket.timeout:
                continue
            except OSError:
                break
            if not data:
                break
            frames, _ = assembler.feed(data)
            for frame in frames:
                reply = self._handle_frame(frame)
                if reply is not None:
                    try:
                        self._write_tcp(client, reply)
                    except OSError:
                        break
        if self._client is client:
            self._client = None
            client.close()

    def _write_tcp(self, client: socket.socket, data: bytes):
        if self.fragment_size > 0:
            for start in range(0, len(data), self.fragment_size):
                client.sendall(data[start:start + self.fragment_size])
                time.sleep(0.001)
        else:
            client.sendall(data)

    def _serve_udp(self):
        while self._running:
            try:
                data, addr = self._server.recvfrom(65535)
            except socket.timeout:
                continue
            except OSError:
                break
            if self._peer is None:
                self._peer = addr
            if len(data) != OUTBOUND_FRAME_SIZE:
                logger.warning("PLC simulator ignored %d-byte datagram", len(data))
                continue
            reply = self._handle_frame(data)
            if reply is not None:
                try:
                    self._server.sendto(reply, self._peer)
                except OSError:
                    logger.debug("PLC simulator reply failed", exc_info=True)

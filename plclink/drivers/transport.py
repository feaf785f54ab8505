"""
Transport Sessions (TCP / UDP)
===============================
Uniform session over either transport:

  - TCP: client connection to host:port, optionally bound to a
    fixed local port first. The byte stream is reassembled into
    26-byte status frames.
  - UDP: local socket bound to the listen port; frames are sent
    as datagrams to target host:port. Every datagram is one
    candidate frame; wrong-size datagrams are dropped.

A session never reconnects by itself. Inbound frames and
connection loss are pushed to an event sink as SessionEvents
tagged with the session id, from a reader thread owned by the
session.
"""

import logging
import socket
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Union

from plclink.config.register_map import INBOUND_FRAME_SIZE
from plclink.core.errors import ConnectError, ConnectionLost, SendError
from plclink.core.events import (
    FrameDropped,
    FrameReceived,
    SessionEvent,
    SessionLost,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[SessionEvent], None]

_RECV_SIZE = 4096
_DATAGRAM_SIZE = 65535


class SessionState(Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    FAULTED = "FAULTED"


def _check_port(name: str, port: int, allow_zero: bool = False):
    low = 0 if allow_zero else 1
    if isinstance(port, bool) or not isinstance(port, int) or not low <= port <= 65535:
        raise ValueError(f"{name} must be {low}-65535: {port!r}")


@dataclass(frozen=True)
class TcpConfig:
    """TCP client endpoint. local_port 0 means an ephemeral port."""
    host: str
    port: int
    local_port: int = 0

    kind = "tcp"

    def __post_init__(self):
        if not self.host or not self.host.strip():
            raise ValueError("TCP host is required")
        _check_port("port", self.port)
        _check_port("local_port", self.local_port, allow_zero=True)

    def describe(self) -> str:
        local = f" (client port: {self.local_port})" if self.local_port else ""
        return f"TCP {self.host}:{self.port}{local}"


@dataclass(frozen=True)
class UdpConfig:
    """UDP listen port plus the controller's target endpoint."""
    listen_port: int
    target_host: str
    target_port: int
    listen_host: str = "0.0.0.0"

    kind = "udp"

    def __post_init__(self):
        if not self.target_host or not self.target_host.strip():
            raise ValueError("UDP target host is required")
        _check_port("listen_port", self.listen_port, allow_zero=True)
        _check_port("target_port", self.target_port)

    def describe(self) -> str:
        return (
            f"UDP listen {self.listen_port}, "
            f"target {self.target_host}:{self.target_port}"
        )


ConnectionConfig = Union[TcpConfig, UdpConfig]


class FrameAssembler:
    """
    Reassembles a byte stream into fixed-size frames.

    There is no sync marker on the wire, so alignment is recovered
    by time: once the buffer has failed to land on a frame boundary
    for longer than `stale_after` seconds, the leftover bytes are
    discarded and the next read is taken as a frame boundary. The
    timer only restarts when a read leaves the buffer empty, so a
    steady stream that was shifted by a short write still resyncs.
    """

    def __init__(
        self,
        frame_size: int = INBOUND_FRAME_SIZE,
        stale_after: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.frame_size = frame_size
        self.stale_after = stale_after
        self._clock = clock
        self._buffer = bytearray()
        self._misaligned_since: Optional[float] = None

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> tuple:
        """Add received bytes. Returns (frames, discarded_byte_count)."""
        now = self._clock()
        discarded = 0
        if (
            self._buffer
            and self._misaligned_since is not None
            and now - self._misaligned_since > self.stale_after
        ):
            discarded = len(self._buffer)
            self._buffer.clear()
            self._misaligned_since = None

        self._buffer.extend(data)
        frames = []
        while len(self._buffer) >= self.frame_size:
            frames.append(bytes(self._buffer[:self.frame_size]))
            del self._buffer[:self.frame_size]

        if not self._buffer:
            self._misaligned_since = None
        elif self._misaligned_since is None:
            self._misaligned_since = now
        return frames, discarded

    def reset(self):
        self._buffer.clear()
        self._misaligned_since = None


class TransportSession:
    """
    Base session: socket lifecycle, reader thread, event emission.

    Subclasses implement `_open()`, `_write()` and `_read_once()`.
    """

    kind = ""

    def __init__(
        self,
        config: ConnectionConfig,
        sink: EventSink,
        session_id: int = 0,
        connect_timeout: float = 3.0,
        read_timeout: float = 0.1,
    ):
        self.config = config
        self.session_id = session_id
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self._sink = sink
        self._sock: Optional[socket.socket] = None
        self._state = SessionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._stopping = threading.Event()
        self._reader: Optional[threading.Thread] = None

        self.frames_sent = 0
        self.frames_received = 0
        self.frames_dropped = 0

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == SessionState.CONNECTED

    @property
    def local_address(self) -> Optional[tuple]:
        sock = self._sock
        if sock is None:
            return None
        try:
            return sock.getsockname()
        except OSError:
            return None

    def connect(self):
        """Open the socket and start reading. Raises ConnectError."""
        with self._state_lock:
            if self._state in (SessionState.CONNECTING, SessionState.CONNECTED):
                raise ConnectError(f"Session already {self._state.value.lower()}")
            self._state = SessionState.CONNECTING

        logger.info("Connecting %s...", self.config.describe())
        self._close_socket()
        self._stopping.clear()
        try:
            self._sock = self._open()
        except ConnectError as exc:
            self._state = SessionState.DISCONNECTED
            logger.error("Connection failed: %s", exc)
            raise
        except OSError as exc:
            self._state = SessionState.DISCONNECTED
            logger.error("Connection failed: %s", exc)
            raise ConnectError(str(exc)) from exc

        self._state = SessionState.CONNECTED
        self._reader = threading.Thread(
            target=self._reader_loop,
            name=f"plclink-rx-{self.kind}-{self.session_id}",
            daemon=True,
        )
        self._reader.start()
        logger.info("Connected %s", self.config.describe())

    def send(self, data: bytes):
        """Send one frame. Raises SendError on any socket failure."""
        if self._state != SessionState.CONNECTED or self._sock is None:
            raise SendError(f"Session not connected ({self._state.value})")
        try:
            self._write(self._sock, data)
        except OSError as exc:
            raise SendError(str(exc) or exc.__class__.__name__) from exc
        self.frames_sent += 1

    def disconnect(self):
        """Close the socket and abandon pending reads. Idempotent."""
        self._stopping.set()
        was = self._state
        self._state = SessionState.DISCONNECTED
        sock = self._sock
        if sock is not None:
            self._wake_reader(sock)
        reader = self._reader
        if reader and reader is not threading.current_thread():
            reader.join(timeout=max(1.0, self.read_timeout * 10))
        self._reader = None
        self._close_socket()
        if was in (SessionState.CONNECTED, SessionState.FAULTED):
            logger.info("Disconnected %s", self.config.describe())

    # ── Reader ───────────────────────────────────────────────

    def _reader_loop(self):
        sock = self._sock
        while not self._stopping.is_set():
            try:
                self._read_once(sock)
            except socket.timeout:
                continue
            except ConnectionLost as exc:
                self._fault(exc)
                return
            except OSError as exc:
                if self._stopping.is_set():
                    return
                self._fault(ConnectionLost(f"Socket error: {exc}", cause=exc))
                return

    def _fault(self, error: ConnectionLost):
        if self._stopping.is_set():
            return
        self._state = SessionState.FAULTED
        logger.error("Connection lost on %s: %s", self.config.describe(), error)
        self._emit(SessionLost(self.session_id, error=error))

    def _emit_frame(self, data: bytes):
        self.frames_received += 1
        self._emit(FrameReceived(self.session_id, data=data))

    def _emit_dropped(self, length: int, reason: str):
        self.frames_dropped += 1
        logger.warning("Dropped malformed frame (%d bytes): %s", length, reason)
        self._emit(FrameDropped(self.session_id, length=length, reason=reason))

    def _emit(self, event: SessionEvent):
        if self._stopping.is_set():
            return
        try:
            self._sink(event)
        except Exception:
            logger.exception("Session event sink failed")

    def _wake_reader(self, sock: socket.socket):
        pass

    def _close_socket(self):
        sock, self._sock = self._sock, None
        if sock is not None:
            try:
                sock.close()
            except OSError:
                logger.debug("Socket close failed", exc_info=True)

    # ── Transport specifics ──────────────────────────────────

    def _open(self) -> socket.socket:
        raise NotImplementedError

    def _write(self, sock: socket.socket, data: bytes):
        raise NotImplementedError

    def _read_once(self, sock: socket.socket):
        raise NotImplementedError


class TcpSession(TransportSession):
    """TCP client session with stream-to-frame reassembly."""

    kind = "tcp"

    def __init__(self, config: TcpConfig, sink: EventSink,
                 stale_partial_sec: float = 0.5, **kwargs):
        super().__init__(config, sink, **kwargs)
        self.assembler = FrameAssembler(stale_after=stale_partial_sec)

    def _open(self) -> socket.socket:
        cfg = self.config
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        if cfg.local_port:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
                sock.bind(("", cfg.local_port))
            except OSError as exc:
                sock.close()
                raise ConnectError(
                    f"Failed to bind local port {cfg.local_port}: {exc}"
                ) from exc
        sock.settimeout(self.connect_timeout)
        try:
            sock.connect((cfg.host, cfg.port))
        except OSError as exc:
            sock.close()
            raise ConnectError(
                f"Failed to connect to {cfg.host}:{cfg.port}: {exc}"
            ) from exc
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(self.read_timeout)
        self.assembler.reset()
        return sock

    def _write(self, sock: socket.socket, data: bytes):
        sock.sendall(data)

    def _read_once(self, sock: socket.socket):
        data = sock.recv(_RECV_SIZE)
        if not data:
            raise ConnectionLost("Connection closed by remote host")
        frames, discarded = self.assembler.feed(data)
        if discarded:
            self._emit_dropped(discarded, "stale partial frame discarded to resync")
        for frame in frames:
            self._emit_frame(frame)

    def _wake_reader(self, sock: socket.socket):
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass


class UdpSession(TransportSession):
    """UDP session: one bound socket used for both directions."""

    kind = "udp"

    def __init__(self, config: UdpConfig, sink: EventSink, **kwargs):
        kwargs.pop("stale_partial_sec", None)
        super().__init__(config, sink, **kwargs)
        self._target: Optional[tuple] = None

    def _open(self) -> socket.socket:
        cfg = self.config
        try:
            target_ip = socket.gethostbyname(cfg.target_host)
        except OSError as exc:
            raise ConnectError(
                f"Cannot resolve UDP target {cfg.target_host}: {exc}"
            ) from exc
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            sock.bind((cfg.listen_host, cfg.listen_port))
        except OSError as exc:
            sock.close()
            raise ConnectError(
                f"Failed to bind UDP listen port {cfg.listen_port}: {exc}"
            ) from exc
        sock.settimeout(self.read_timeout)
        self._target = (target_ip, cfg.target_port)
        return sock

    def _write(self, sock: socket.socket, data: bytes):
        sock.sendto(data, self._target)

    def _read_once(self, sock: socket.socket):
        try:
            data, _addr = sock.recvfrom(_DATAGRAM_SIZE)
        except (ConnectionRefusedError, ConnectionResetError):
            # ICMP unreachable from a previous sendto; UDP has no connection to lose
            logger.debug("UDP target unreachable")
            return
        if len(data) != INBOUND_FRAME_SIZE:
            self._emit_dropped(
                len(data), f"datagram is not {INBOUND_FRAME_SIZE} bytes"
            )
            return
        self._emit_frame(data)


def create_session(
    config: ConnectionConfig, sink: EventSink, **kwargs
) -> TransportSession:
    """Build the session class matching the config variant."""
    if isinstance(config, TcpConfig):
        return TcpSession(config, sink, **kwargs)
    if isinstance(config, UdpConfig):
        return UdpSession(config, sink, **kwargs)
    raise TypeError(f"Unsupported connection config: {config!r}")

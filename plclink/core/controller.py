"""
Link Controller — Core Engine
==============================
Single owner of all protocol state. Wires together:

    ParameterStore      operator edits + latest status
    CommandEngine       command register / echo handshake
    TransportSession    live TCP or UDP socket (at most one)
    TransmissionScheduler  fixed-cadence outbound frames

Inbound flow:

    session reader ─► event queue ─► dispatcher thread
        ─► decode ─► ParameterStore.update_status
        ─► CommandEngine.evaluate ─► observer channels

Every session gets a fresh id; queued events carrying an older
id are discarded, so nothing from a torn-down session reaches
observers after the next session begins.
"""

import itertools
import logging
import queue
import threading
from typing import Optional, Union

from plclink.config.register_map import resolve_slot
from plclink.config.settings import PROTOCOLS, Settings
from plclink.core.command_engine import CommandEngine, CommandRequest
from plclink.core.errors import (
    ConnectError,
    ConnectionLost,
    MalformedFrame,
    NotConnectedError,
    SendError,
)
from plclink.core.events import (
    CommandResolved,
    ConnectionStatus,
    ControlGroup,
    ControlsState,
    EventChannel,
    FrameDropped,
    FrameReceived,
    SessionEvent,
    SessionLost,
)
from plclink.core.frame_codec import StatusSnapshot, decode_status, encode_parameters
from plclink.core.history import ProtocolHistory
from plclink.core.parameter_store import ParameterStore
from plclink.core.scheduler import TransmissionScheduler
from plclink.drivers.transport import (
    ConnectionConfig,
    TransportSession,
    create_session,
)

logger = logging.getLogger(__name__)

_STOP = object()


class LinkController:
    """
    Core engine for the operator link.

    Collaborators call set_parameter() / issue_command() /
    connect() / disconnect() and subscribe to the channels:
    connection_status_changed, status_updated, command_issued,
    command_resolved, controls_changed.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or Settings()

        self.store = ParameterStore()
        self.engine = CommandEngine(self.store)
        self.history = ProtocolHistory(self.settings.history_size)

        # Observer channels
        self.connection_status_changed: EventChannel[ConnectionStatus] = \
            EventChannel("connection_status_changed")
        self.status_updated: EventChannel[StatusSnapshot] = EventChannel("status_updated")
        self.command_issued: EventChannel[CommandRequest] = EventChannel("command_issued")
        self.command_resolved: EventChannel[CommandResolved] = \
            EventChannel("command_resolved")
        self.controls_changed: EventChannel[ControlsState] = EventChannel("controls_changed")

        # Session state
        self._lock = threading.RLock()
        self._session: Optional[TransportSession] = None
        self._scheduler: Optional[TransmissionScheduler] = None
        self._session_ids = itertools.count(1)
        self._live_session_id = 0
        self._config: ConnectionConfig = self.settings.connection_config()

        # Inbound dispatch
        self._events: queue.Queue = queue.Queue()
        self._dispatcher: Optional[threading.Thread] = None

        # Counters
        self._frames_received = 0
        self._frames_dropped = 0
        self._last_error: Optional[str] = None

    # ── Properties ───────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        session = self._session
        return session is not None and session.is_connected

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def protocol(self) -> str:
        return self._config.kind

    @property
    def session(self) -> Optional[TransportSession]:
        return self._session

    @property
    def scheduler(self) -> Optional[TransmissionScheduler]:
        return self._scheduler

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    # ── Connection lifecycle ─────────────────────────────────

    def configure(self, config: ConnectionConfig):
        """Replace the connection config. A live session is torn down first."""
        with self._lock:
            if self._session is not None:
                logger.info(
                    "Configuration change to %s: disconnecting current session",
                    config.describe(),
                )
                self._teardown(None)
            self._config = config
            self.settings.apply_connection_config(config)

    def switch_protocol(self, protocol: str) -> bool:
        """Select TCP or UDP. Disconnects if needed; never reconnects."""
        protocol = protocol.strip().lower()
        if protocol not in PROTOCOLS:
            raise ValueError(f"Invalid protocol: {protocol!r}. Must be 'tcp' or 'udp'")
        with self._lock:
            if protocol == self._config.kind and self._session is None:
                return False
            self.configure(self.settings.connection_config(protocol))
            self.history.record("PROTOCOL", f"Switched to {protocol.upper()}")
            logger.info("Switched to %s protocol", protocol.upper())
            return True

    def apply_settings(self, settings: Settings):
        """Replace all settings (e.g. after loading from disk). Disconnects."""
        with self._lock:
            if self._session is not None:
                self._teardown(None)
            self.settings = settings
            self.history.resize(settings.history_size)
            self._config = settings.connection_config()
            logger.info("Settings applied: %s", self._config.describe())

    def connect(self, config: Optional[ConnectionConfig] = None):
        """Open a session (tearing down any previous one). Raises ConnectError."""
        with self._lock:
            if config is not None:
                self.configure(config)
            elif self._session is not None:
                self._teardown(None)

            self._ensure_dispatcher()
            session_id = next(self._session_ids)
            session = create_session(
                self._config,
                self._events.put,
                session_id=session_id,
                connect_timeout=self.settings.connect_timeout_sec,
                read_timeout=self.settings.read_timeout_sec,
                stale_partial_sec=self.settings.stale_partial_sec,
            )
            try:
                session.connect()
            except ConnectError as exc:
                self._last_error = str(exc)
                self.history.record("ERROR", f"Connect failed: {exc}")
                self.connection_status_changed.publish(
                    ConnectionStatus(connected=False, error=str(exc))
                )
                raise

            self._session = session
            self._live_session_id = session_id
            self._last_error = None
            self.engine.reset()
            self.store.clear_status()
            self._scheduler = TransmissionScheduler(
                self.store,
                session.send,
                interval_ms=self.settings.send_interval_ms,
                max_failures=self.settings.max_send_failures,
                on_fatal=lambda err, sid=session_id: self._events.put(
                    SessionLost(sid, error=err)
                ),
                on_skip=lambda err: self.history.record("SKIPPED", f"Tick skipped: {err}"),
            )
            self.history.record("CONNECT", f"Connected {self._config.describe()}")
            self.connection_status_changed.publish(ConnectionStatus(connected=True))
            self.controls_changed.publish(self.engine.controls)
            if self.settings.auto_send:
                self._scheduler.start(blocking=False)

    def disconnect(self):
        """Stop sending, abandon reads and close the socket."""
        with self._lock:
            if self._session is None:
                return
            self._teardown(None)

    def close(self):
        """Disconnect and stop the dispatcher thread."""
        self.disconnect()
        dispatcher = self._dispatcher
        if dispatcher is not None:
            self._events.put(_STOP)
            if dispatcher is not threading.current_thread():
                dispatcher.join(timeout=5.0)
            self._dispatcher = None

    def _teardown(self, error: Optional[BaseException]):
        """Tear down the live session. Caller holds self._lock."""
        scheduler, self._scheduler = self._scheduler, None
        session, self._session = self._session, None
        self._live_session_id = 0

        if scheduler is not None:
            scheduler.stop()
        if session is not None:
            session.disconnect()

        message = str(error) if error else None
        self._last_error = message
        self.engine.reset()
        if error:
            self.history.record("LOST", f"Connection lost: {message}")
        else:
            self.history.record("DISCONNECT", "Disconnected from server")
        self.connection_status_changed.publish(
            ConnectionStatus(connected=False, error=message)
        )
        self.controls_changed.publish(self.engine.controls)

    # ── Operator inputs ──────────────────────────────────────

    def set_parameter(self, slot: Union[int, str], value: int):
        """Edit one outbound parameter (not the command register)."""
        self.store.set_value(slot, value)

    def get_parameter(self, slot: Union[int, str]) -> int:
        return self.store.read(slot)

    def issue_command(
        self,
        command_id: int,
        label: str = "",
        sticky: bool = False,
        source: ControlGroup = ControlGroup.COMMAND_BUTTONS,
    ) -> ControlsState:
        """Write a command id into the register and await its echo."""
        request = CommandRequest(command_id, label, sticky, source)
        with self._lock:
            if not self.is_connected:
                raise NotConnectedError("Not connected to server")
            previous = self.engine.pending
            controls = self.engine.issue(request)
            if previous is not None:
                self.history.record(
                    "SUPERSEDED",
                    f"{previous.label or '-'} (ID: {previous.command_id}) "
                    f"replaced before acknowledgment",
                )
            self.history.record(
                "COMMAND",
                f"Issued {request.label or '-'} (ID: {request.command_id}"
                f"{', sticky' if request.sticky else ''})",
            )
        self.command_issued.publish(request)
        self.controls_changed.publish(controls)
        return controls

    def send_now(self):
        """Send one frame immediately (manual mode). Raises SendError."""
        with self._lock:
            session = self._session
            if session is None or not session.is_connected:
                raise NotConnectedError("Not connected to server")
            session.send(encode_parameters(self.store.snapshot_for_send()))

    def set_send_interval(self, interval_ms: int):
        """Change the transmit interval; a running loop picks it up next tick."""
        if interval_ms < 1:
            raise ValueError("interval_ms must be >= 1")
        self.settings.send_interval_ms = int(interval_ms)
        scheduler = self._scheduler
        if scheduler is not None:
            scheduler.interval_ms = interval_ms
        logger.info("Send interval set to %d ms", interval_ms)

    def set_auto_send(self, enabled: bool):
        """Start or stop the transmit loop on the live session."""
        self.settings.auto_send = bool(enabled)
        with self._lock:
            scheduler = self._scheduler
            if scheduler is None:
                return
            if enabled and not scheduler.is_running:
                scheduler.start(blocking=False)
            elif not enabled and scheduler.is_running:
                scheduler.stop()

    # ── Inbound dispatch ─────────────────────────────────────

    def _ensure_dispatcher(self):
        if self._dispatcher is not None and self._dispatcher.is_alive():
            return
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="plclink-dispatch", daemon=True
        )
        self._dispatcher.start()

    def _dispatch_loop(self):
        while True:
            event = self._events.get()
            try:
                if event is _STOP:
                    return
                self._handle_event(event)
            except Exception:
                logger.exception("Event dispatch exception")
            finally:
                self._events.task_done()

    def _handle_event(self, event: SessionEvent):
        with self._lock:
            if event.session_id != self._live_session_id:
                logger.debug("Discarding %s from stale session %d",
                             type(event).__name__, event.session_id)
                return

            if isinstance(event, FrameReceived):
                self._on_frame(event)
            elif isinstance(event, FrameDropped):
                self._frames_dropped += 1
                self.history.record(
                    "DROPPED", f"Malformed frame ({event.length} bytes): {event.reason}"
                )
            elif isinstance(event, SessionLost):
                error = event.error or ConnectionLost("Connection lost")
                logger.error("Connection lost: %s", error)
                self._teardown(error)

    def _on_frame(self, event: FrameReceived):
        try:
            snapshot = decode_status(event.data, self.settings.flag_bit_order)
        except MalformedFrame as exc:
            self._frames_dropped += 1
            logger.warning("Dropped malformed frame: %s", exc)
            self.history.record("DROPPED", f"Malformed frame: {exc}")
            return

        self._frames_received += 1
        self.store.update_status(snapshot)
        resolved = self.engine.evaluate(snapshot)
        self.status_updated.publish(snapshot)
        if resolved is not None:
            self.history.record(
                "ACK",
                f"Acknowledged {resolved.label or '-'} (ID: {resolved.command_id}"
                f"{', sticky' if resolved.sticky else ''})",
            )
            self.command_resolved.publish(resolved)
            self.controls_changed.publish(self.engine.controls)

    # ── Operator Commands ────────────────────────────────────

    def cmd_connect(self) -> str:
        """Operator: connect with the current configuration."""
        try:
            self.connect()
        except ConnectError as exc:
            return f"Connection failed: {exc}"
        return f"Connected to {self._config.describe()}"

    def cmd_disconnect(self) -> str:
        """Operator: disconnect."""
        if self._session is None:
            return "Not connected"
        self.disconnect()
        return "Disconnected from server"

    def cmd_protocol(self, protocol: str) -> str:
        """Operator: switch between TCP and UDP."""
        try:
            changed = self.switch_protocol(protocol)
        except ValueError as exc:
            return str(exc)
        if not changed:
            return "Already using this protocol"
        return f"Switched to {protocol.strip().upper()} protocol"

    def cmd_set_parameter(self, slot: str, value) -> str:
        """Operator: edit an outbound parameter."""
        try:
            resolved = resolve_slot(slot)
            self.set_parameter(resolved.index, int(value))
        except (KeyError, ValueError) as exc:
            return f"Invalid parameter: {exc}"
        return f"Parameter {resolved.index} ({resolved.name}) set to {int(value)}"

    def cmd_issue(self, command_id, label: str = "", sticky: bool = False,
                  source: ControlGroup = ControlGroup.COMMAND_BUTTONS) -> str:
        """Operator: issue a command."""
        try:
            self.issue_command(int(command_id), label, sticky, source)
        except NotConnectedError as exc:
            return str(exc)
        except ValueError as exc:
            return f"Invalid command: {exc}"
        kind = "sticky " if sticky else ""
        return (f"Command set: {label or '-'} (ID: {int(command_id)}) - "
                f"{kind}waiting for acknowledgment...")

    def cmd_send_once(self) -> str:
        """Operator: send a single frame now."""
        try:
            self.send_now()
        except (NotConnectedError, SendError) as exc:
            return f"Send failed: {exc}"
        return "Frame sent"

    def cmd_update_setting(self, key: str, value) -> str:
        """Operator: update a link setting."""
        if not self.settings.update(key, value):
            return f"Invalid setting: {key}"
        if key == "send_interval_ms":
            self.set_send_interval(self.settings.send_interval_ms)
        elif key == "auto_send":
            self.set_auto_send(self.settings.auto_send)
        elif key == "history_size":
            self.history.resize(self.settings.history_size)
        elif key == "protocol" or key.startswith(self.protocol + "_"):
            # Only the live protocol's endpoint requires a reconnect
            self.configure(self.settings.connection_config())
        return f"Setting {key} updated to {getattr(self.settings, key)}"

    def cmd_save_settings(self, path: str = None) -> str:
        """Persist settings to disk."""
        self.settings.save(path)
        return "Settings saved"

    def get_status(self) -> dict:
        """Return comprehensive status snapshot."""
        scheduler = self._scheduler
        session = self._session
        latest = self.store.latest_status()
        pending = self.engine.pending
        active = self.engine.active
        return {
            "connected": self.is_connected,
            "protocol": self.protocol,
            "endpoint": self._config.describe(),
            "session_state": session.state.value if session else "DISCONNECTED",
            "last_error": self._last_error,
            "auto_send": self.settings.auto_send,
            "send_interval_ms": self.settings.send_interval_ms,
            "tick_count": scheduler.tick_count if scheduler else 0,
            "frames_sent": (session.frames_sent if session else 0),
            "ticks_skipped": scheduler.skipped_count if scheduler else 0,
            "mean_interval_ms": round(scheduler.mean_interval_ms, 2) if scheduler else 0.0,
            "frames_received": self._frames_received,
            "frames_dropped": self._frames_dropped,
            "command_state": self.engine.state.value,
            "command_register": self.store.command_register,
            "pending_command": pending.command_id if pending else None,
            "active_command": active.command_id if active else None,
            "command_echo": latest.command_echo if latest else None,
            "has_status": latest is not None,
        }

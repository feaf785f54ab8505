"""
Link Settings
=============
Connection and runtime configuration for the operator link.
These can be adjusted from the console at runtime and are
persisted to disk as JSON.

Only connection/runtime configuration lives here. Operator
parameter values are never persisted.
"""

from dataclasses import dataclass, field, replace
import json
from pathlib import Path
from typing import Optional

from plclink.core.frame_codec import BitOrder
from plclink.drivers.transport import ConnectionConfig, TcpConfig, UdpConfig

PROTOCOLS = ("tcp", "udp")


@dataclass
class Settings:
    """Tunable link settings."""

    # ── Transport selection ──────────────────────────────────
    protocol: str = "tcp"

    # ── TCP client ───────────────────────────────────────────
    tcp_host: str = "localhost"
    tcp_port: int = 8080
    tcp_client_port: int = 0            # 0 = ephemeral local port

    # ── UDP pair ─────────────────────────────────────────────
    udp_listen_port: int = 8081
    udp_target_host: str = "localhost"
    udp_target_port: int = 8080

    # ── Transmit cadence ─────────────────────────────────────
    send_interval_ms: int = 20          # 50 Hz nominal
    auto_send: bool = True              # Start transmit loop on connect
    max_send_failures: int = 5          # Consecutive failures before link is dropped

    # ── Socket timing ────────────────────────────────────────
    connect_timeout_sec: float = 3.0
    read_timeout_sec: float = 0.1       # Reader poll; bounds disconnect latency
    stale_partial_sec: float = 0.5      # TCP partial-frame resync timeout

    # ── Decoding / display ───────────────────────────────────
    bit_order: str = "lsb"              # Status flag bit order: lsb | msb
    history_size: int = 100             # In-memory history entries

    # ── Persistence ──────────────────────────────────────────
    _config_path: str = field(
        default="config/settings.json", repr=False
    )

    def save(self, path: str = None):
        """Persist current settings to JSON."""
        filepath = Path(path or self._config_path)
        filepath.parent.mkdir(parents=True, exist_ok=True)
        filepath.write_text(json.dumps(self.as_dict(), indent=2))

    @classmethod
    def load(cls, path: str = None) -> "Settings":
        """Load settings from JSON, falling back to defaults."""
        filepath = Path(path or "config/settings.json")
        settings = cls()
        if path:
            settings._config_path = str(filepath)
        if filepath.exists():
            data = json.loads(filepath.read_text())
            for key, value in data.items():
                settings.update(key, value)
        return settings

    def update(self, key: str, value) -> bool:
        """Update a single setting, returning True on success."""
        if not hasattr(self, key) or key.startswith("_"):
            return False
        expected_type = type(getattr(self, key))
        try:
            if expected_type is bool and isinstance(value, str):
                lowered = value.strip().lower()
                if lowered not in ("1", "0", "true", "false", "yes", "no", "on", "off"):
                    return False
                coerced = lowered in ("1", "true", "yes", "on")
            else:
                coerced = expected_type(value)
        except (ValueError, TypeError):
            return False
        if not self._valid(key, coerced):
            return False
        setattr(self, key, coerced)
        return True

    def update_many(self, updates: dict) -> Optional[str]:
        """
        Apply several settings at once. All values are checked on a
        copy first; on failure nothing changes and the offending key
        is returned.
        """
        trial = replace(self)
        for key, value in updates.items():
            if not trial.update(key, value):
                return key
        for key in updates:
            setattr(self, key, getattr(trial, key))
        return None

    @staticmethod
    def _valid(key: str, value) -> bool:
        if key == "protocol":
            return value in PROTOCOLS
        if key == "bit_order":
            return value in ("lsb", "msb")
        if key in ("tcp_port", "udp_target_port"):
            return 1 <= value <= 65535
        if key in ("tcp_client_port", "udp_listen_port"):
            return 0 <= value <= 65535
        if key in ("send_interval_ms", "max_send_failures", "history_size"):
            return value >= 1
        if key.endswith("_sec"):
            return value > 0
        return True

    def as_dict(self) -> dict:
        """Return all settings as a flat dictionary."""
        return {
            k: v for k, v in self.__dict__.items()
            if not k.startswith("_")
        }

    @property
    def flag_bit_order(self) -> BitOrder:
        return BitOrder(self.bit_order)

    def connection_config(self, protocol: str = None) -> ConnectionConfig:
        """Build the connection config for the selected (or given) protocol."""
        protocol = protocol or self.protocol
        if protocol == "tcp":
            return TcpConfig(
                host=self.tcp_host,
                port=self.tcp_port,
                local_port=self.tcp_client_port,
            )
        if protocol == "udp":
            return UdpConfig(
                listen_port=self.udp_listen_port,
                target_host=self.udp_target_host,
                target_port=self.udp_target_port,
            )
        raise ValueError(f"Invalid protocol: {protocol!r}. Must be 'tcp' or 'udp'")

    def apply_connection_config(self, config: ConnectionConfig):
        """Copy an explicit connection config back into the settings."""
        if isinstance(config, TcpConfig):
            self.protocol = "tcp"
            self.tcp_host = config.host
            self.tcp_port = config.port
            self.tcp_client_port = config.local_port
        elif isinstance(config, UdpConfig):
            self.protocol = "udp"
            self.udp_listen_port = config.listen_port
            self.udp_target_host = config.target_host
            self.udp_target_port = config.target_port
        else:
            raise TypeError(f"Unsupported connection config: {config!r}")

from plclink.drivers.transport import (
    TcpConfig,
    UdpConfig,
    SessionState,
    create_session,
)
from plclink.drivers.simulator import PLCSimulator

__all__ = [
    "TcpConfig",
    "UdpConfig",
    "SessionState",
    "create_session",
    "PLCSimulator",
]

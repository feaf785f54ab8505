"""
PLC Link Control System
========================
Operator-side core for the fixed-frame PLC control/status protocol.

Transport:  TCP client or UDP send/receive pair (switchable)
Cadence:    50 Hz outbound parameter frames (32 bytes)
Inbound:    26-byte status frames with command echo
"""

__version__ = "1.0.0"

from plclink.core.parameter_store import ParameterStore
from plclink.core.command_engine import CommandEngine, CommandRequest, CommandState
from plclink.core.scheduler import TransmissionScheduler
from plclink.core.frame_codec import BitOrder, StatusSnapshot

__all__ = [
    "ParameterStore",
    "CommandEngine",
    "CommandRequest",
    "CommandState",
    "TransmissionScheduler",
    "BitOrder",
    "StatusSnapshot",
]

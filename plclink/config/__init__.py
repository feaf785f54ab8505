from plclink.config.register_map import (
    COMMAND_SLOT,
    PARAMETER_SLOTS,
    STATUS_FLAG_NAMES,
    STATUS_VALUE_NAMES,
    resolve_slot,
)

__all__ = [
    "COMMAND_SLOT",
    "PARAMETER_SLOTS",
    "STATUS_FLAG_NAMES",
    "STATUS_VALUE_NAMES",
    "resolve_slot",
]

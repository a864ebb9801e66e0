"""
relforge.eventlog - Stage/task progress log with pluggable devices.
"""

from .log import Log, LogEntry, Stage, Task, TaskState
from .device import Device, JSONDevice, TextDevice
from .factory import DeviceType, EventLogConfig, new_device, new_log

__all__ = [
    "Log",
    "LogEntry",
    "Stage",
    "Task",
    "TaskState",
    "Device",
    "JSONDevice",
    "TextDevice",
    "DeviceType",
    "EventLogConfig",
    "new_device",
    "new_log",
]

"""Events — observer subjects, the debug event log and its export."""

from routewatch.events.export import export_debug_data
from routewatch.events.log import DebugEvent, DebugLevel, EventLog
from routewatch.events.subject import Subject

__all__ = [
    "Subject",
    "DebugEvent",
    "DebugLevel",
    "EventLog",
    "export_debug_data",
]

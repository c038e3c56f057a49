"""State persistence: records, intents and per-resource leases."""

from landform.state.base import StateStore, check_serial
from landform.state.file import FileStateStore
from landform.state.locks import KeyedLock
from landform.state.memory import InMemoryStateStore
from landform.state.models import Intent, StateRecord, StateSnapshot

__all__ = [
    "FileStateStore",
    "InMemoryStateStore",
    "Intent",
    "KeyedLock",
    "StateRecord",
    "StateSnapshot",
    "StateStore",
    "check_serial",
]

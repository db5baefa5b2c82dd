from .manager import StateMachineManager
from .persistence import SnapshotStore
from .scheduler import SessionScheduler

__all__ = ["SessionScheduler", "SnapshotStore", "StateMachineManager"]

from .schemas import Snapshot
from .store import VersionHistory

__all__ = ["Snapshot", "VersionHistory"]

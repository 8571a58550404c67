"""
Group module: countdown sessions, the group aggregate and its coordinator.
"""

from countdownmesh.group.models import GroupState, Session, SessionStatus, sort_sessions
from countdownmesh.group.coordinator import GroupCoordinator
from countdownmesh.group.registry import CoordinatorRegistry

__all__ = [
    "GroupState",
    "Session",
    "SessionStatus",
    "sort_sessions",
    "GroupCoordinator",
    "CoordinatorRegistry",
]

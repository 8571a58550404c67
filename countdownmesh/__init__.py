"""
Countdown Mesh: Per-Group Countdown Session Coordination

Each group of scheduled countdown sessions is owned by a single-writer
coordinator:
- Group Coordinator: serialized reads and mutations, versioned state
- Durable Store: authoritative state slot per group (memory, SQLite, Redis)
- Snapshot Sink: relational replica and audit log (SQLite, PostgreSQL)
- Gateway: HTTP-style edge routing to the coordinator of each group

License: MIT
"""

__version__ = "1.0.0"

# =============================================================================
# PUBLIC API EXPORTS
# =============================================================================
from countdownmesh.core.types import Result, Ok, Err, GroupId, Timestamp
from countdownmesh.core.errors import (
    CountdownError,
    ValidationError,
    NotFoundError,
    ConflictError,
    StorageError,
)
from countdownmesh.core.config import CountdownConfig

from countdownmesh.group import (
    GroupState,
    Session,
    SessionStatus,
    GroupCoordinator,
    CoordinatorRegistry,
)

__all__ = [
    "__version__",
    # Result monad
    "Result",
    "Ok",
    "Err",
    # Identity types
    "GroupId",
    "Timestamp",
    # Errors
    "CountdownError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    # Config
    "CountdownConfig",
    # Groups
    "GroupState",
    "Session",
    "SessionStatus",
    "GroupCoordinator",
    "CoordinatorRegistry",
]

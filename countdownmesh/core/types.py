"""
Core Type Definitions for the Countdown Mesh

Implements Result/Either monads for zero-exception control flow, plus the
identity and time types shared by every subsystem.

Design Principles:
- Never use null for absence (use Optional or Result)
- Domain failures travel as Err values, not exceptions
- All instants are UTC; wire format matches JavaScript toISOString()
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import (
    Any,
    Callable,
    Generic,
    Literal,
    TypeVar,
    Union,
)
from uuid import uuid4

# =============================================================================
# TYPE VARIABLES FOR GENERIC CONTAINERS
# =============================================================================
T = TypeVar("T")  # Success type
E = TypeVar("E")  # Error type
U = TypeVar("U")  # Transform result type


# =============================================================================
# RESULT MONAD: ZERO-EXCEPTION CONTROL FLOW
# =============================================================================
@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """
    Success variant of Result monad.

    Immutable container for successful computation results.
    """

    value: T

    def is_ok(self) -> Literal[True]:
        return True

    def is_err(self) -> Literal[False]:
        return False

    def unwrap(self) -> T:
        """Extract value. Safe to call after is_ok() check."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Return value, ignoring default."""
        return self.value

    def map(self, fn: Callable[[T], U]) -> Ok[U]:
        """Apply transformation to success value."""
        return Ok(fn(self.value))

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[E]):
    """
    Failure variant of Result monad.

    Carries full error context for exhaustive handling.
    """

    error: E

    def is_ok(self) -> Literal[False]:
        return False

    def is_err(self) -> Literal[True]:
        return True

    def unwrap(self) -> Any:
        """
        Attempting to unwrap an error is a programming error.

        Raises:
            RuntimeError: Always, with error context
        """
        raise RuntimeError(f"Called unwrap() on Err: {self.error}")

    def unwrap_or(self, default: T) -> T:
        return default

    def map(self, fn: Callable[[Any], U]) -> Err[E]:
        return self

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


# Union type for pattern matching
Result = Union[Ok[T], Err[E]]


# =============================================================================
# IDENTITY TYPES
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class GroupId:
    """
    Stable group identifier.

    The shard key is a SHA-256 digest of the raw id, so the same id always
    addresses the same coordinator and the same durable namespace no matter
    which characters the caller put in it.
    """

    value: str

    @classmethod
    def generate(cls) -> GroupId:
        return cls(value=str(uuid4()))

    @classmethod
    def parse(cls, raw: Any) -> Result[GroupId, str]:
        """Trim and validate a caller-supplied group id."""
        if not isinstance(raw, str) or not raw.strip():
            return Err("group id must be a non-empty string")
        return Ok(cls(value=raw.strip()))

    @property
    def shard_key(self) -> str:
        return hashlib.sha256(self.value.encode("utf-8")).hexdigest()

    def __str__(self) -> str:
        return self.value


def new_session_id() -> str:
    """Mint an opaque, unique session identifier."""
    return str(uuid4())


def new_event_id() -> str:
    return str(uuid4())


# =============================================================================
# TIMESTAMP WITH MILLISECOND WIRE PRECISION
# =============================================================================
@dataclass(frozen=True, slots=True, order=True)
class Timestamp:
    """
    UTC instant with nanosecond storage and millisecond wire precision.

    Ordering and equality compare the underlying nanoseconds, so two ISO
    strings naming the same instant with different offsets compare equal.
    """

    nanos: int

    NANOS_PER_SECOND = 1_000_000_000
    NANOS_PER_MILLI = 1_000_000

    @classmethod
    def now(cls) -> Timestamp:
        return cls(nanos=time.time_ns())

    @classmethod
    def from_datetime(cls, dt: datetime) -> Timestamp:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        delta = dt - datetime(1970, 1, 1, tzinfo=timezone.utc)
        nanos = (
            (delta.days * 86_400 + delta.seconds) * cls.NANOS_PER_SECOND
            + delta.microseconds * 1_000
        )
        return cls(nanos=nanos)

    @classmethod
    def parse_iso(cls, raw: Any) -> Result[Timestamp, str]:
        """
        Parse an ISO-8601 instant.

        Accepts the trailing ``Z`` designator and explicit offsets; a value
        without an offset is taken to be UTC.
        """
        if not isinstance(raw, str) or not raw.strip():
            return Err("expected an ISO-8601 string")
        text = raw.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return Ok(cls.from_datetime(datetime.fromisoformat(text)))
        except ValueError as e:
            return Err(f"not an ISO-8601 instant: {e}")

    @property
    def millis(self) -> int:
        return self.nanos // self.NANOS_PER_MILLI

    def to_datetime(self) -> datetime:
        seconds, rem = divmod(self.nanos, self.NANOS_PER_SECOND)
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        return dt.replace(microsecond=rem // 1_000)

    def to_iso(self) -> str:
        """Render as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
        return (
            self.to_datetime()
            .isoformat(timespec="milliseconds")
            .replace("+00:00", "Z")
        )

"""
Group Coordinator: Single-Writer Actor for One Group

Every read and mutation of a group's state passes through exactly one
GroupCoordinator, and every public operation holds the coordinator's lock
from load to the last sink attempt. Mutations follow one pipeline:

    load -> validate -> check version -> mutate draft -> persist
         -> install draft as cache -> snapshot upsert -> audit event

The durable write is the commit point. If it fails the draft is dropped,
so the cache and version stay exactly as they were. Snapshot and audit
writes run after the commit and can never undo it.

State machine:
    UNINITIALIZED --first operation--> ACTIVE
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Optional, Union

from countdownmesh.api.router import Request, Response, Router
from countdownmesh.core import constants as C
from countdownmesh.core.config import CountdownConfig
from countdownmesh.core.errors import (
    ConflictError,
    CountdownError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from countdownmesh.core.types import Err, GroupId, Ok, Result, Timestamp, new_session_id
from countdownmesh.group.models import GroupState, Session
from countdownmesh.group.validation import validate_changes, validate_new_session
from countdownmesh.observability.logging import StructuredLogger
from countdownmesh.observability.metrics import CoordinatorMetrics
from countdownmesh.storage.durable import DurableStore
from countdownmesh.storage.snapshot import (
    AuditEvent,
    GroupSnapshot,
    NullSnapshotSink,
    SnapshotSink,
)

_logger = StructuredLogger(__name__)


class GroupCoordinator:
    """
    Authoritative owner of one group's state.

    Usage:
        coordinator = GroupCoordinator(GroupId("finals"), store, sink)
        result = await coordinator.create_session(
            label="Qualifier",
            start_time_utc="2025-01-01T10:00:00Z",
            duration_ms=3_600_000,
        )
        if result.is_ok():
            session, state = result.unwrap()

    All operations return Result values; domain failures never raise.
    """

    __slots__ = (
        "_group_id", "_store", "_sink", "_config", "_metrics",
        "_state", "_lock", "_router", "_log",
    )

    def __init__(
        self,
        group_id: Union[GroupId, str],
        durable_store: DurableStore,
        snapshot_sink: Optional[SnapshotSink] = None,
        config: Optional[CountdownConfig] = None,
        metrics: Optional[CoordinatorMetrics] = None,
    ) -> None:
        self._group_id = group_id if isinstance(group_id, GroupId) else GroupId(group_id)
        self._store = durable_store
        self._sink: SnapshotSink = snapshot_sink or NullSnapshotSink()
        self._config = config or CountdownConfig()
        self._metrics = metrics or CoordinatorMetrics()
        self._state: Optional[GroupState] = None
        self._lock = asyncio.Lock()
        self._log = _logger.with_extra(group_id=self._group_id.value)
        self._router = self._build_router()

    @property
    def group_id(self) -> GroupId:
        return self._group_id

    @property
    def metrics(self) -> CoordinatorMetrics:
        return self._metrics

    @property
    def is_active(self) -> bool:
        """True once state has been loaded or materialized."""
        return self._state is not None

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_state(self) -> Result[GroupState, CountdownError]:
        async with self._lock:
            loaded = await self._load()
            if loaded.is_err():
                return loaded
            return Ok(loaded.unwrap().clone())

    async def list_sessions(self) -> Result[list[Session], CountdownError]:
        """Sessions in start order. Never changes the version."""
        async with self._lock:
            loaded = await self._load()
            if loaded.is_err():
                return loaded
            return Ok(copy.deepcopy(loaded.unwrap().sessions))

    async def get_session(self, session_id: str) -> Result[Session, CountdownError]:
        async with self._lock:
            loaded = await self._load()
            if loaded.is_err():
                return loaded
            session = loaded.unwrap().find_session(session_id)
            if session is None:
                return self._reject(NotFoundError.session(session_id))
            return Ok(copy.deepcopy(session))

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def bootstrap(
        self,
        label: Any,
        timezone: Any = None,
        group_id: Any = None,
        expected_version: Optional[int] = None,
    ) -> Result[GroupState, CountdownError]:
        """
        Set the group's label and timezone.

        An omitted timezone keeps the current one. groupId cannot be
        changed; passing a different id is rejected.
        """
        async with self._lock:
            loaded = await self._load()
            if loaded.is_err():
                return loaded
            state = loaded.unwrap()

            if not label:
                return self._reject(ValidationError.missing_fields("label"))
            if not isinstance(label, str):
                return self._reject(ValidationError.invalid_field("label", label, "must be a string"))
            if timezone and not isinstance(timezone, str):
                return self._reject(
                    ValidationError.invalid_field("timezone", timezone, "must be a string"),
                )
            if group_id:
                parsed = GroupId.parse(group_id)
                if parsed.is_err():
                    return self._reject(ValidationError.invalid_field("groupId", group_id, parsed.error))
                if parsed.unwrap() != self._group_id:
                    return self._reject(ValidationError.immutable_field(
                        "groupId", self._group_id.value, parsed.unwrap().value,
                    ))

            conflict = self._check_version(state, expected_version)
            if conflict is not None:
                return self._reject(conflict)

            draft = state.clone()
            draft.label = label
            if timezone:
                draft.timezone = timezone

            committed = await self._commit(draft, C.ACTION_GROUP_BOOTSTRAPPED)
            if committed.is_err():
                return committed
            return Ok(committed.unwrap().clone())

    async def create_session(
        self,
        label: Any,
        start_time_utc: Any,
        duration_ms: Any,
        metadata: Any = None,
        expected_version: Optional[int] = None,
    ) -> Result[tuple[Session, GroupState], CountdownError]:
        async with self._lock:
            loaded = await self._load()
            if loaded.is_err():
                return loaded
            state = loaded.unwrap()

            validated = validate_new_session({
                "label": label,
                "startTimeUtc": start_time_utc,
                "durationMs": duration_ms,
                "metadata": metadata,
            })
            if validated.is_err():
                return self._reject(validated.error)
            new = validated.unwrap()

            conflict = self._check_version(state, expected_version)
            if conflict is not None:
                return self._reject(conflict)

            session = Session(
                session_id=new_session_id(),
                label=new.label,
                start_time_utc=new.start_time_utc,
                duration_ms=new.duration_ms,
                metadata=new.metadata,
            )
            draft = state.clone()
            draft.sessions.append(session)
            draft.resort()

            committed = await self._commit(draft, C.ACTION_SESSION_CREATED)
            if committed.is_err():
                return committed

            await self._record_event(session.session_id, C.ACTION_SESSION_CREATED, session.to_dict())
            return Ok((copy.deepcopy(session), committed.unwrap().clone()))

    async def update_session(
        self,
        session_id: str,
        changes: Optional[dict[str, Any]],
        expected_version: Optional[int] = None,
    ) -> Result[tuple[Session, GroupState], CountdownError]:
        """
        Apply a partial update.

        Only truthy label, startTimeUtc, durationMs and status values
        overwrite; truthy metadata is shallow-merged. Other keys are ignored.
        """
        async with self._lock:
            loaded = await self._load()
            if loaded.is_err():
                return loaded
            state = loaded.unwrap()

            if state.find_session(session_id) is None:
                return self._reject(NotFoundError.session(session_id))

            validated = validate_changes(changes)
            if validated.is_err():
                return self._reject(validated.error)
            patch = validated.unwrap()

            conflict = self._check_version(state, expected_version)
            if conflict is not None:
                return self._reject(conflict)

            draft = state.clone()
            session = draft.find_session(session_id)
            if patch.label is not None:
                session.label = patch.label
            if patch.start_time_utc is not None:
                session.start_time_utc = patch.start_time_utc
            if patch.duration_ms is not None:
                session.duration_ms = patch.duration_ms
            if patch.status is not None:
                session.status = patch.status
            if patch.metadata is not None:
                session.merge_metadata(patch.metadata)
            draft.resort()

            committed = await self._commit(draft, C.ACTION_SESSION_UPDATED)
            if committed.is_err():
                return committed

            raw = dict(changes) if isinstance(changes, dict) else {}
            await self._record_event(session_id, C.ACTION_SESSION_UPDATED, raw)
            return Ok((copy.deepcopy(session), committed.unwrap().clone()))

    async def delete_session(
        self,
        session_id: str,
        expected_version: Optional[int] = None,
    ) -> Result[str, CountdownError]:
        async with self._lock:
            loaded = await self._load()
            if loaded.is_err():
                return loaded
            state = loaded.unwrap()

            removed = state.find_session(session_id)
            if removed is None:
                return self._reject(NotFoundError.session(session_id))

            conflict = self._check_version(state, expected_version)
            if conflict is not None:
                return self._reject(conflict)

            draft = state.clone()
            draft.sessions = [s for s in draft.sessions if s.session_id != session_id]

            committed = await self._commit(draft, C.ACTION_SESSION_DELETED)
            if committed.is_err():
                return committed

            await self._record_event(session_id, C.ACTION_SESSION_DELETED, removed.to_dict())
            return Ok(session_id)

    # =========================================================================
    # INTERNALS (caller holds the lock)
    # =========================================================================

    async def _load(self) -> Result[GroupState, StorageError]:
        """Return the cache, reading the durable slot on first use."""
        if self._state is not None:
            return Ok(self._state)

        read = await self._store.get(self._group_id.shard_key, self._config.coordinator.state_key)
        if read.is_err():
            self._log.error("Durable read failed", error_code=read.error.code.name)
            return read

        blob = read.unwrap()
        if blob is None:
            self._state = GroupState.fallback(
                self._group_id.value,
                label=self._config.coordinator.default_label,
                timezone=self._config.coordinator.default_timezone,
            )
            self._log.debug("Group materialized from defaults")
            return Ok(self._state)

        decoded = GroupState.from_bytes(blob)
        if decoded.is_err():
            self._log.error("Stored group state is unreadable", error_code=decoded.error.code.name)
            return decoded

        self._state = decoded.unwrap()
        self._log.debug("Group loaded", version=self._state.version)
        return Ok(self._state)

    @staticmethod
    def _check_version(state: GroupState, expected: Optional[int]) -> Optional[ConflictError]:
        if expected is not None and expected != state.version:
            return ConflictError.version_mismatch(expected, state.version)
        return None

    async def _commit(self, draft: GroupState, action: str) -> Result[GroupState, StorageError]:
        """Persist the draft; install it as the cache only if the write succeeds."""
        draft.updated_at = Timestamp.now().to_iso()
        draft.version += 1

        durable = self._config.durable
        blob = draft.to_bytes(
            compress=durable.compression_enabled,
            threshold=durable.compression_threshold_bytes,
        )

        with self._metrics.commit_latency.time(action=action):
            written = await self._store.put(
                self._group_id.shard_key,
                self._config.coordinator.state_key,
                blob,
            )

        if written.is_err():
            self._metrics.rejections.inc(reason="persistence_failure")
            self._log.error(
                "Durable write failed; state unchanged",
                action=action,
                error_code=written.error.code.name,
                error_id=written.error.error_id,
            )
            return written

        self._state = draft
        self._metrics.commits.inc(action=action)
        self._log.debug("Committed", action=action, version=draft.version)

        await self._publish_snapshot(draft)
        return Ok(draft)

    async def _publish_snapshot(self, state: GroupState) -> None:
        snapshot = GroupSnapshot.from_state(state)
        try:
            result = await self._sink.upsert_group(snapshot)
        except Exception as e:
            result = Err(StorageError.sink_write_failed(self._sink.backend, state.group_id, cause=e))

        if result.is_err():
            self._metrics.sink_failures.inc(sink="snapshot")
            self._log.warning(
                "Snapshot upsert failed",
                version=state.version,
                error_code=result.error.code.name,
                cause=repr(result.error.cause),
            )

    async def _record_event(
        self,
        session_id: str,
        action: str,
        payload: Optional[dict[str, Any]],
    ) -> None:
        event = AuditEvent.create(self._group_id.value, session_id, action, payload)
        try:
            result = await self._sink.append_event(event)
        except Exception as e:
            result = Err(StorageError.audit_write_failed(self._sink.backend, event.event_id, cause=e))

        if result.is_err():
            self._metrics.sink_failures.inc(sink="audit")
            self._log.warning(
                "Audit event insert failed",
                session_id=session_id,
                action=action,
                error_code=result.error.code.name,
                cause=repr(result.error.cause),
            )

    def _reject(self, error: CountdownError) -> Err[CountdownError]:
        self._metrics.rejections.inc(reason=error.code.name.lower())
        self._log.info("Rejected", error_code=error.code.name, reason=error.message)
        return Err(error)

    # =========================================================================
    # REQUEST CONTRACT
    # =========================================================================

    async def fetch(self, request: Request) -> Response:
        """Serve one request addressed to this group, relative to its root."""
        return await self._router.dispatch(request)

    def _build_router(self) -> Router:
        router = Router()
        router.add("GET", "/", self._handle_get_state)
        router.add("GET", "/sessions", self._handle_list_sessions)
        router.add("POST", "/sessions", self._handle_create_session)
        router.add("GET", "/sessions/{session_id}", self._handle_get_session)
        router.add("PATCH", "/sessions/{session_id}", self._handle_update_session)
        router.add("DELETE", "/sessions/{session_id}", self._handle_delete_session)
        router.add("POST", "/bootstrap", self._handle_bootstrap)
        return router

    async def _handle_get_state(self, request: Request) -> Response:
        result = await self.get_state()
        return _render(result, lambda state: state.to_dict())

    async def _handle_list_sessions(self, request: Request) -> Response:
        result = await self.list_sessions()
        return _render(result, lambda sessions: [s.to_dict() for s in sessions])

    async def _handle_get_session(self, request: Request) -> Response:
        result = await self.get_session(request.path_params["session_id"])
        return _render(result, lambda session: session.to_dict())

    async def _handle_bootstrap(self, request: Request) -> Response:
        expected = expected_version_from(request)
        if expected.is_err():
            return Response.from_error(expected.error)

        payload = request.json_object()
        result = await self.bootstrap(
            label=payload.get("label"),
            timezone=payload.get("timezone"),
            group_id=payload.get("groupId"),
            expected_version=expected.unwrap(),
        )
        return _render(result, lambda state: state.to_dict(), status=201)

    async def _handle_create_session(self, request: Request) -> Response:
        expected = expected_version_from(request)
        if expected.is_err():
            return Response.from_error(expected.error)

        payload = request.json_object()
        result = await self.create_session(
            label=payload.get("label"),
            start_time_utc=payload.get("startTimeUtc"),
            duration_ms=payload.get("durationMs"),
            metadata=payload.get("metadata"),
            expected_version=expected.unwrap(),
        )
        return _render(result, _session_and_state, status=201)

    async def _handle_update_session(self, request: Request) -> Response:
        expected = expected_version_from(request)
        if expected.is_err():
            return Response.from_error(expected.error)

        result = await self.update_session(
            request.path_params["session_id"],
            request.json_object(),
            expected_version=expected.unwrap(),
        )
        return _render(result, _session_and_state)

    async def _handle_delete_session(self, request: Request) -> Response:
        expected = expected_version_from(request)
        if expected.is_err():
            return Response.from_error(expected.error)

        result = await self.delete_session(
            request.path_params["session_id"],
            expected_version=expected.unwrap(),
        )
        return _render(result, lambda deleted: {"deleted": deleted})


# =============================================================================
# RESPONSE HELPERS
# =============================================================================
def expected_version_from(request: Request) -> Result[Optional[int], ValidationError]:
    """
    Read the optimistic concurrency token from If-Match.

    Accepts a bare or quoted integer, with or without a W/ prefix.
    A missing header or "*" means "any version".
    """
    raw = request.header("if-match")
    if raw is None:
        return Ok(None)

    token = raw.strip()
    if token.startswith("W/"):
        token = token[2:]
    token = token.strip('"')
    if token in ("", "*"):
        return Ok(None)

    try:
        return Ok(int(token))
    except ValueError:
        return Err(ValidationError.invalid_field("If-Match", raw, "must be an integer version"))


def _session_and_state(value: tuple[Session, GroupState]) -> dict[str, Any]:
    session, state = value
    return {"session": session.to_dict(), "state": state.to_dict()}


def _render(
    result: Result[Any, CountdownError],
    body: Callable[[Any], Any],
    status: int = 200,
) -> Response:
    if result.is_err():
        return Response.from_error(result.error)
    return Response.json(body(result.unwrap()), status=status)

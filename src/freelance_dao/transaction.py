"""Transaction manager — all-or-nothing execution of mutating operations.

Every mutating operation runs inside ``atomic()``. Mutations register an
undo callback as they are applied; if anything raises before the
outermost block exits, the undo journal unwinds in reverse order and the
buffered events are discarded. Events reach the event log only when the
outermost transaction commits.

Nested ``atomic()`` blocks join the enclosing transaction. A nested block
that fails is unwound on its own before the exception propagates, so a
caller that catches the failure of a sub-call (a re-entrant recipient,
for instance) keeps its own effects and loses only the sub-call's.

Transactions are serialised by a re-entrant lock: no two callers ever
interleave their intermediate states.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Optional

from freelance_dao.persistence.event_log import EventKind, EventLog, EventRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _Frame:
    undo: list[Callable[[], None]] = field(default_factory=list)
    events: list[tuple[EventKind, str, dict[str, Any], datetime]] = field(
        default_factory=list,
    )


class TransactionManager:
    """Serialises transactions and keeps their undo journals."""

    def __init__(
        self,
        event_log: Optional[EventLog] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self._lock = threading.RLock()
        self._frames: list[_Frame] = []
        self._event_log = event_log if event_log is not None else EventLog()
        self._event_counter = self._event_log.count
        self.clock: Clock = clock or utc_now

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def active(self) -> bool:
        return bool(self._frames)

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """Run the enclosed block as one transaction (or join the current one)."""
        with self._lock:
            frame = _Frame()
            self._frames.append(frame)
            try:
                yield
            except BaseException:
                self._frames.pop()
                self._unwind(frame)
                raise
            self._frames.pop()
            if self._frames:
                parent = self._frames[-1]
                parent.undo.extend(frame.undo)
                parent.events.extend(frame.events)
            else:
                self._commit(frame)

    def on_rollback(self, undo: Callable[[], None]) -> None:
        """Register an undo callback for the mutation just applied."""
        if not self._frames:
            raise RuntimeError("on_rollback() called outside a transaction")
        self._frames[-1].undo.append(undo)

    def emit(self, kind: EventKind, actor_id: str, payload: dict[str, Any]) -> None:
        """Buffer an event; it is written only if the transaction commits."""
        if not self._frames:
            raise RuntimeError("emit() called outside a transaction")
        self._frames[-1].events.append((kind, actor_id, payload, self.clock()))

    def _unwind(self, frame: _Frame) -> None:
        for undo in reversed(frame.undo):
            undo()
        if frame.undo:
            logger.debug("Rolled back %d mutation(s)", len(frame.undo))

    def _commit(self, frame: _Frame) -> None:
        """Write buffered events; a failed write rolls the transaction back."""
        counter = self._event_counter
        records = []
        for kind, actor_id, payload, ts in frame.events:
            counter += 1
            records.append(EventRecord.create(
                event_id=f"EVT-{counter:08d}",
                event_kind=kind,
                actor_id=actor_id,
                payload=payload,
                timestamp_utc=ts,
            ))
        try:
            self._event_log.append_many(records)
        except (ValueError, OSError):
            self._unwind(frame)
            raise
        self._event_counter = counter
